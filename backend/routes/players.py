from flask import Blueprint, current_app, jsonify, request

from backend.app import db
from backend.models import Player, RatingHistory
from backend.services.player_registry import create_player, lookup_players
from backend.services.rating import RatingSettings, calculate_rating_changes

players_bp = Blueprint('players', __name__)

_MAX_GAMES_PER_SET = 99


def _parse_team_ids(raw_ids):
    if not isinstance(raw_ids, list) or len(raw_ids) != 2:
        return None
    ids = []
    for raw in raw_ids:
        if isinstance(raw, bool):
            return None
        try:
            value = int(raw)
        except (TypeError, ValueError):
            return None
        if value <= 0:
            return None
        ids.append(value)
    return ids


def _parse_sets(raw_sets):
    if not isinstance(raw_sets, list) or not raw_sets:
        return None
    sets = []
    for raw in raw_sets:
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            return None
        try:
            a, b = int(raw[0]), int(raw[1])
        except (TypeError, ValueError):
            return None
        if not (0 <= a <= _MAX_GAMES_PER_SET and 0 <= b <= _MAX_GAMES_PER_SET):
            return None
        sets.append((a, b))
    return sets


@players_bp.route('', methods=['POST'])
def create():
    data = request.get_json(silent=True) or {}
    rating = data.get('rating')
    if rating is not None:
        try:
            rating = float(rating)
        except (TypeError, ValueError):
            return jsonify({'error': 'rating must be a number'}), 400
        if rating < 0:
            return jsonify({'error': 'rating cannot be negative'}), 400

    try:
        player = create_player(
            data.get('name'),
            rating=rating,
            default_rating=current_app.config['RATING_DEFAULT'],
        )
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    return jsonify({'player': player.to_dict()}), 201


@players_bp.route('/<int:player_id>', methods=['GET'])
def get_player(player_id):
    player = db.session.get(Player, player_id)
    if not player:
        return jsonify({'error': 'Player not found'}), 404

    history = RatingHistory.query.filter_by(player_id=player.id).order_by(
        RatingHistory.created_at.desc(), RatingHistory.id.desc()
    ).limit(20).all()
    return jsonify({
        'player': player.to_dict(),
        'rating_history': [h.to_dict() for h in history],
    })


@players_bp.route('/rating-preview', methods=['POST'])
def rating_preview():
    """Rating changes a set-scored doubles match would produce. Writes nothing."""
    data = request.get_json(silent=True) or {}
    team1_ids = _parse_team_ids(data.get('team1'))
    team2_ids = _parse_team_ids(data.get('team2'))
    if team1_ids is None or team2_ids is None:
        return jsonify({'error': 'Each team needs exactly two player ids'}), 400
    if len(set(team1_ids + team2_ids)) != 4:
        return jsonify({'error': 'All four players must be different'}), 400

    sets = _parse_sets(data.get('sets'))
    if sets is None:
        return jsonify({'error': 'sets must be a list of [team1_games, team2_games]'}), 400

    multiplier = data.get('multiplier', 1.0)
    try:
        multiplier = float(multiplier)
    except (TypeError, ValueError):
        return jsonify({'error': 'multiplier must be a number'}), 400
    if multiplier <= 0:
        return jsonify({'error': 'multiplier must be positive'}), 400

    known = lookup_players(team1_ids + team2_ids)
    missing = [pid for pid in team1_ids + team2_ids if pid not in known]
    if missing:
        return jsonify({'error': f'Player {missing[0]} not found'}), 404

    def _team(ids):
        return [{'id': pid, **known[pid]} for pid in ids]

    try:
        changes, winning_team = calculate_rating_changes(
            _team(team1_ids),
            _team(team2_ids),
            sets,
            tournament_multiplier=multiplier,
            settings=RatingSettings.from_config(current_app.config),
        )
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400

    return jsonify({'winning_team': winning_team, 'changes': changes})
