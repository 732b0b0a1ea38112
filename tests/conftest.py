import pytest
from backend.app import create_app, db


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_players(app):
    """Create players and return their ids in creation order."""
    from backend.services.player_registry import create_player

    def _make(count, rating=1500.0, prefix='Player'):
        ratings = rating if isinstance(rating, (list, tuple)) else [rating] * count
        return [
            create_player(f'{prefix} {index + 1}', rating=ratings[index]).id
            for index in range(count)
        ]

    return _make
