"""HTTP tests for the player and tournament blueprints."""
import json

import pytest

from backend.app import db
from backend.models import Notification, Player, RatingHistory


def _create_player(client, name, rating=None):
    body = {'name': name}
    if rating is not None:
        body['rating'] = rating
    res = client.post('/api/players', json=body)
    assert res.status_code == 201
    return json.loads(res.data)['player']['id']


def _create_tournament(client, **overrides):
    body = {'name': 'Sunday Americano', 'format': 'AMERICANO', 'courts_count': 1}
    body.update(overrides)
    res = client.post('/api/tournaments', json=body)
    assert res.status_code == 201
    return json.loads(res.data)['tournament']


def _setup(client, player_count=4, **overrides):
    player_ids = [_create_player(client, f'Player {i}') for i in range(player_count)]
    tournament = _create_tournament(client, **overrides)
    for pid in player_ids:
        res = client.post(f'/api/tournaments/{tournament["id"]}/register', json={'player_id': pid})
        assert res.status_code == 201
    return tournament['id'], player_ids


def _live(client, tournament_id):
    res = client.get(f'/api/tournaments/{tournament_id}/live')
    assert res.status_code == 200
    return json.loads(res.data)


def _current_matches(client, tournament_id):
    data = _live(client, tournament_id)
    current = data['tournament']['current_round']
    return next(r for r in data['rounds'] if r['round_number'] == current)['matches']


def _score(client, tournament_id, match_id, team1_score, team2_score):
    return client.post(
        f'/api/tournaments/{tournament_id}/matches/{match_id}/score',
        json={'team1_score': team1_score, 'team2_score': team2_score},
    )


# ─── Players ────────────────────────────────────────────────


def test_create_and_get_player(client):
    player_id = _create_player(client, '  Ana  ', rating=1620)

    res = client.get(f'/api/players/{player_id}')
    data = json.loads(res.data)
    assert res.status_code == 200
    assert data['player']['name'] == 'Ana'
    assert data['player']['rating'] == 1620
    assert data['rating_history'] == []


def test_create_player_validation(client):
    assert client.post('/api/players', json={}).status_code == 400
    assert client.post('/api/players', json={'name': 'X', 'rating': 'high'}).status_code == 400
    assert client.post('/api/players', json={'name': 'X', 'rating': -5}).status_code == 400
    assert client.get('/api/players/999').status_code == 404


def test_rating_preview(client):
    ids = [_create_player(client, f'P{i}') for i in range(4)]

    res = client.post('/api/players/rating-preview', json={
        'team1': ids[:2],
        'team2': ids[2:],
        'sets': [[6, 0], [6, 3]],
    })

    data = json.loads(res.data)
    assert res.status_code == 200
    assert data['winning_team'] == 1
    by_id = {c['player_id']: c['change'] for c in data['changes']}
    assert by_id == {ids[0]: 23, ids[1]: 23, ids[2]: -23, ids[3]: -23}
    # Preview never writes.
    assert all(p.rating == 1500 for p in Player.query.all())


def test_rating_preview_rejects_bad_input(client):
    ids = [_create_player(client, f'P{i}') for i in range(4)]

    level = client.post('/api/players/rating-preview', json={
        'team1': ids[:2], 'team2': ids[2:], 'sets': [[6, 4], [4, 6]],
    })
    assert level.status_code == 400
    repeated = client.post('/api/players/rating-preview', json={
        'team1': ids[:2], 'team2': [ids[0], ids[3]], 'sets': [[6, 4]],
    })
    assert repeated.status_code == 400
    unknown = client.post('/api/players/rating-preview', json={
        'team1': ids[:2], 'team2': [ids[2], 9999], 'sets': [[6, 4]],
    })
    assert unknown.status_code == 404
    no_sets = client.post('/api/players/rating-preview', json={
        'team1': ids[:2], 'team2': ids[2:], 'sets': [],
    })
    assert no_sets.status_code == 400


# ─── Tournaments ────────────────────────────────────────────


def test_create_tournament_defaults_and_validation(client, app):
    tournament = _create_tournament(client, courts_count=None)
    assert tournament['points_per_match'] == app.config['TOURNAMENT_DEFAULT_POINTS_PER_MATCH']
    assert tournament['status'] == 'REGISTRATION'

    bad_format = client.post('/api/tournaments', json={'name': 'X', 'format': 'KNOCKOUT'})
    assert bad_format.status_code == 400
    assert 'KNOCKOUT' in json.loads(bad_format.data)['error']
    assert client.post('/api/tournaments', json={'name': 'X', 'courts_count': 'two'}).status_code == 400
    assert client.post('/api/tournaments', json={'format': 'MEXICANO'}).status_code == 400


def test_list_tournaments_filters_by_status(client):
    tournament_id, _ = _setup(client)
    _create_tournament(client, name='Later')
    client.post(f'/api/tournaments/{tournament_id}/start')

    everything = json.loads(client.get('/api/tournaments').data)['tournaments']
    running = json.loads(client.get('/api/tournaments?status=in_progress').data)['tournaments']

    assert len(everything) == 2
    assert [t['id'] for t in running] == [tournament_id]
    assert client.get('/api/tournaments?status=paused').status_code == 400


def test_register_errors_map_to_status_codes(client):
    tournament_id, player_ids = _setup(client)

    duplicate = client.post(f'/api/tournaments/{tournament_id}/register', json={'player_id': player_ids[0]})
    assert duplicate.status_code == 400
    missing = client.post(f'/api/tournaments/{tournament_id}/register', json={'player_id': 4040})
    assert missing.status_code == 404
    assert client.post(f'/api/tournaments/{tournament_id}/register', json={}).status_code == 400
    assert client.post('/api/tournaments/777/register', json={'player_id': player_ids[0]}).status_code == 404


def test_start_and_invalid_transitions(client):
    tournament_id, _ = _setup(client, player_count=3)
    res = client.post(f'/api/tournaments/{tournament_id}/start')
    assert res.status_code == 400
    assert 'At least 4 players' in json.loads(res.data)['error']

    tournament_id, _ = _setup(client)
    res = client.post(f'/api/tournaments/{tournament_id}/start')
    data = json.loads(res.data)
    assert res.status_code == 200
    assert data['player_count'] == 4
    assert data['total_rounds'] == 3

    again = client.post(f'/api/tournaments/{tournament_id}/start')
    assert again.status_code == 409
    assert client.post(f'/api/tournaments/{tournament_id}/next-round').status_code == 400


def test_score_validation(client):
    tournament_id, _ = _setup(client)
    client.post(f'/api/tournaments/{tournament_id}/start')
    match = _current_matches(client, tournament_id)[0]

    assert _score(client, tournament_id, match['id'], 'twelve', 12).status_code == 400
    assert _score(client, tournament_id, match['id'], 20, 5).status_code == 400
    assert _score(client, tournament_id, 5555, 12, 12).status_code == 404

    ok = _score(client, tournament_id, match['id'], 15, 9)
    assert ok.status_code == 200
    assert json.loads(ok.data)['advanced_to'] == 2
    assert _score(client, tournament_id, match['id'], 15, 9).status_code == 409


def test_full_americano_flow_applies_ratings(client):
    tournament_id, player_ids = _setup(client, rating_multiplier=1.0)
    client.post(f'/api/tournaments/{tournament_id}/start')

    for _ in range(3):
        for match in _current_matches(client, tournament_id):
            assert _score(client, tournament_id, match['id'], 20, 4).status_code == 200

    res = client.post(f'/api/tournaments/{tournament_id}/complete')
    data = json.loads(res.data)
    assert res.status_code == 200
    assert data['tournament']['status'] == 'COMPLETED'
    assert data['standings'][0]['player_id'] == player_ids[0]

    winner = json.loads(client.get(f'/api/players/{player_ids[0]}').data)
    assert winner['player']['rating'] == 1560
    assert winner['player']['matches_played'] == 3
    assert (winner['player']['wins'], winner['player']['losses']) == (3, 0)
    assert winner['rating_history'][0]['change'] == 60
    assert RatingHistory.query.count() == 4

    live = _live(client, tournament_id)
    assert len(live['rating_changes']) == 4
    assert client.post(f'/api/tournaments/{tournament_id}/complete').status_code == 409


def test_complete_is_undone_when_rating_write_fails(client, monkeypatch):
    from backend.routes import tournaments as tournament_routes

    tournament_id, player_ids = _setup(client)
    client.post(f'/api/tournaments/{tournament_id}/start')
    for _ in range(3):
        for match in _current_matches(client, tournament_id):
            _score(client, tournament_id, match['id'], 20, 4)

    def failing(tournament_name, completion, commit=True):
        raise RuntimeError('rating write failed')

    monkeypatch.setattr(tournament_routes, 'apply_rating_changes', failing)
    with pytest.raises(RuntimeError):
        client.post(f'/api/tournaments/{tournament_id}/complete')

    live = _live(client, tournament_id)
    assert live['tournament']['status'] == 'IN_PROGRESS'
    assert live['rating_changes'] == []
    assert RatingHistory.query.count() == 0
    assert all(p.rating == 1500 for p in Player.query.all())

    monkeypatch.undo()
    res = client.post(f'/api/tournaments/{tournament_id}/complete')
    assert res.status_code == 200
    assert RatingHistory.query.count() == 4


def test_mexicano_flow_over_http(client):
    tournament_id, _ = _setup(client, player_count=8, format='MEXICANO', courts_count=2)
    client.post(f'/api/tournaments/{tournament_id}/start')

    early = client.post(f'/api/tournaments/{tournament_id}/next-round')
    assert early.status_code == 409

    for match in _current_matches(client, tournament_id):
        _score(client, tournament_id, match['id'], 13, 11)
    res = client.post(f'/api/tournaments/{tournament_id}/next-round')
    data = json.loads(res.data)
    assert res.status_code == 201
    assert data['round_number'] == 2
    assert data['match_count'] == 2


def test_events_write_notifications(client, app):
    tournament_id, player_ids = _setup(client, player_count=5)
    client.post(f'/api/tournaments/{tournament_id}/start')

    notifications = Notification.query.filter_by(reference_id=tournament_id).all()
    by_type = {}
    for n in notifications:
        by_type.setdefault(n.notif_type, []).append(n.player_id)
    assert sorted(by_type['tournament_round']) == sorted(player_ids[:4])
    assert by_type['tournament_sit_out'] == [player_ids[4]]
    assert 'Court 1' in Notification.query.filter_by(
        player_id=player_ids[0], notif_type='tournament_round',
    ).first().content


def test_notifications_can_be_disabled(client, app):
    app.config['TOURNAMENT_NOTIFICATIONS'] = False
    tournament_id, _ = _setup(client)

    client.post(f'/api/tournaments/{tournament_id}/start')

    assert db.session.query(Notification).count() == 0


def test_live_unknown_tournament(client):
    res = client.get('/api/tournaments/31337/live')
    assert res.status_code == 404
    assert 'not found' in json.loads(res.data)['error']
