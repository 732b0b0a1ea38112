"""Live tournament routes (Americano / Mexicano)."""
from flask import Blueprint, current_app, jsonify, request

from backend.errors import TournamentError
from backend.models import Tournament
from backend.services.notifications import publish_tournament_event
from backend.services.player_registry import apply_rating_changes
from backend.services.tournament_engine import (
    complete_tournament,
    create_tournament,
    generate_next_round,
    get_live_data,
    register_players,
    start_tournament,
    submit_score,
)

tournaments_bp = Blueprint('tournaments', __name__)

_ALLOWED_STATUSES = {'REGISTRATION', 'IN_PROGRESS', 'COMPLETED'}
_MAX_LIMIT = 100


@tournaments_bp.errorhandler(TournamentError)
def _handle_tournament_error(exc):
    return jsonify({'error': exc.message}), exc.status_code


def _coerce_int(raw_value):
    if isinstance(raw_value, bool) or raw_value is None:
        return None
    if isinstance(raw_value, float):
        return int(raw_value) if raw_value.is_integer() else None
    try:
        return int(str(raw_value).strip())
    except (TypeError, ValueError):
        return None


def _coerce_float(raw_value):
    if isinstance(raw_value, bool) or raw_value is None:
        return None
    try:
        return float(raw_value)
    except (TypeError, ValueError):
        return None


def _value_or_default(data, key, default):
    value = data.get(key)
    return default if value is None else value


def _event_sink():
    if current_app.config.get('TOURNAMENT_NOTIFICATIONS', True):
        return publish_tournament_event
    return None


@tournaments_bp.route('', methods=['GET'])
def list_tournaments():
    status = str(request.args.get('status', '') or '').strip().upper()
    limit = request.args.get('limit', 50, type=int)
    limit = max(1, min(limit or 50, _MAX_LIMIT))

    query = Tournament.query
    if status:
        if status not in _ALLOWED_STATUSES:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter_by(status=status)

    tournaments = query.order_by(Tournament.created_at.desc(), Tournament.id.desc()).limit(limit).all()
    return jsonify({'tournaments': [t.to_dict() for t in tournaments]})


@tournaments_bp.route('', methods=['POST'])
def create():
    data = request.get_json(silent=True) or {}
    config = current_app.config

    courts_count = _coerce_int(_value_or_default(data, 'courts_count', config['TOURNAMENT_DEFAULT_COURTS']))
    if courts_count is None:
        return jsonify({'error': 'courts_count must be an integer'}), 400
    points_per_match = _coerce_int(
        _value_or_default(data, 'points_per_match', config['TOURNAMENT_DEFAULT_POINTS_PER_MATCH'])
    )
    if points_per_match is None:
        return jsonify({'error': 'points_per_match must be an integer'}), 400
    rating_multiplier = _coerce_float(_value_or_default(data, 'rating_multiplier', 1.0))
    if rating_multiplier is None:
        return jsonify({'error': 'rating_multiplier must be a number'}), 400
    max_teams = None
    if data.get('max_teams') not in (None, ''):
        max_teams = _coerce_int(data.get('max_teams'))
        if max_teams is None:
            return jsonify({'error': 'max_teams must be an integer'}), 400

    tournament = create_tournament(
        data.get('name'),
        format=_value_or_default(data, 'format', 'AMERICANO'),
        courts_count=courts_count,
        points_per_match=points_per_match,
        rating_multiplier=rating_multiplier,
        registration_mode=_value_or_default(data, 'registration_mode', 'INDIVIDUAL'),
        max_teams=max_teams,
    )
    return jsonify({'tournament': tournament.to_dict()}), 201


@tournaments_bp.route('/<int:tournament_id>/register', methods=['POST'])
def register(tournament_id):
    data = request.get_json(silent=True) or {}
    player_id = _coerce_int(data.get('player_id'))
    if player_id is None:
        return jsonify({'error': 'player_id is required'}), 400
    partner_id = None
    if data.get('partner_id') is not None:
        partner_id = _coerce_int(data.get('partner_id'))
        if partner_id is None:
            return jsonify({'error': 'partner_id must be an integer'}), 400

    registration = register_players(tournament_id, player_id, partner_id=partner_id)
    return jsonify({'registration': registration}), 201


@tournaments_bp.route('/<int:tournament_id>/start', methods=['POST'])
def start(tournament_id):
    result = start_tournament(tournament_id, on_event=_event_sink())
    return jsonify({
        'message': 'Tournament started',
        'tournament': result['tournament'],
        'player_count': result['player_count'],
        'total_rounds': result['total_rounds'],
    })


@tournaments_bp.route('/<int:tournament_id>/matches/<int:match_id>/score', methods=['POST'])
def score(tournament_id, match_id):
    data = request.get_json(silent=True) or {}
    team1_score = _coerce_int(data.get('team1_score'))
    team2_score = _coerce_int(data.get('team2_score'))
    if team1_score is None or team2_score is None:
        return jsonify({'error': 'team1_score and team2_score must be integers'}), 400

    result = submit_score(
        tournament_id, match_id, team1_score, team2_score, on_event=_event_sink(),
    )
    return jsonify(result)


@tournaments_bp.route('/<int:tournament_id>/next-round', methods=['POST'])
def next_round(tournament_id):
    result = generate_next_round(tournament_id, on_event=_event_sink())
    return jsonify(result), 201


@tournaments_bp.route('/<int:tournament_id>/complete', methods=['POST'])
def complete(tournament_id):
    def _apply(completion):
        apply_rating_changes(completion['tournament']['name'], completion, commit=False)

    result = complete_tournament(tournament_id, apply_changes=_apply, on_event=_event_sink())
    return jsonify({'message': 'Tournament completed', **result})


@tournaments_bp.route('/<int:tournament_id>/live', methods=['GET'])
def live(tournament_id):
    return jsonify(get_live_data(tournament_id))
