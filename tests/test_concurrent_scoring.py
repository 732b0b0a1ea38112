"""Concurrent score submission against a file-backed database."""
import threading

import pytest

from backend.app import create_app, db
from backend.config import TestingConfig
from backend.services import tournament_engine as engine
from backend.services.player_registry import create_player

SCORES = [(13, 11), (14, 10), (15, 9), (16, 8)]


@pytest.fixture
def file_app(tmp_path, monkeypatch):
    monkeypatch.setattr(
        TestingConfig, 'SQLALCHEMY_DATABASE_URI', 'sqlite:///' + str(tmp_path / 'live.db'),
    )
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def _submit_all(app, tournament_id, submissions):
    barrier = threading.Barrier(len(submissions))
    errors = []

    def worker(match_id, scores):
        with app.app_context():
            barrier.wait()
            try:
                engine.submit_score(tournament_id, match_id, *scores)
            except Exception as exc:
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=item) for item in submissions]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    assert not any(thread.is_alive() for thread in threads)
    return errors


def _current_round(tournament_id):
    data = engine.get_live_data(tournament_id)
    current = data['tournament']['current_round']
    return next(r for r in data['rounds'] if r['round_number'] == current)


def test_parallel_scores_on_one_tournament_keep_standings_consistent(file_app):
    player_ids = [create_player(f'Player {i + 1}').id for i in range(16)]
    tournament = engine.create_tournament('Parallel Night', courts_count=4)
    tournament_id = tournament.id
    for pid in player_ids:
        engine.register_players(tournament_id, pid)
    engine.start_tournament(tournament_id)

    submitted = 0
    for round_number in (1, 2):
        rnd = _current_round(tournament_id)
        assert rnd['round_number'] == round_number
        match_ids = [m['id'] for m in rnd['matches']]
        assert len(match_ids) == 4
        db.session.remove()

        errors = _submit_all(file_app, tournament_id, list(zip(match_ids, SCORES)))

        assert errors == []
        submitted += sum(a + b for a, b in SCORES)

    data = engine.get_live_data(tournament_id)
    standings = data['standings']
    # Each side's points land on both of its players.
    assert sum(s['points'] for s in standings) == 2 * submitted
    assert sum(s['points_for'] for s in standings) == sum(s['points_against'] for s in standings)
    assert all(s['wins'] + s['losses'] == 2 for s in standings)
    assert sorted(s['position'] for s in standings) == list(range(1, 17))
    assert [r['status'] for r in data['rounds'][:2]] == ['COMPLETED', 'COMPLETED']
    assert data['tournament']['current_round'] == 3
    assert data['rounds'][2]['status'] == 'IN_PROGRESS'
    assert all(m['status'] == 'COMPLETED' for r in data['rounds'][:2] for m in r['matches'])
    assert engine._tournament_locks == {}
