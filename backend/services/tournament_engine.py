"""
Tournament state machine for live Americano and Mexicano tournaments.

Tournament: REGISTRATION -> IN_PROGRESS -> COMPLETED
Round/Match: PENDING -> IN_PROGRESS -> COMPLETED

Every mutating operation runs under a per-tournament lock plus a row lock
on the tournament, validates before it mutates, and commits or rolls back
as a whole. Events are handed to ``on_event`` only after the commit.
"""
import logging
import random
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field

from flask import current_app

from backend.app import db
from backend.errors import (
    InvalidStateError, NotFoundError, TournamentError,
    UnsupportedFormatError, ValidationError,
)
from backend.models import (
    REGISTRATION_MODES, TOURNAMENT_FORMATS,
    Tournament, TournamentMatch, TournamentRatingChange,
    TournamentRegistration, TournamentRound, TournamentStanding,
)
from backend.services import pairing
from backend.services.player_registry import lookup_players
from backend.services.rating import RatingSettings, settle_matches
from backend.time_utils import utcnow_naive

logger = logging.getLogger(__name__)

TOURNAMENT_STARTED = 'tournament_started'
ROUND_ADVANCED = 'round_advanced'
TOURNAMENT_COMPLETED = 'tournament_completed'

_rng = random.Random()
_locks_guard = threading.Lock()
_tournament_locks = {}


@dataclass(frozen=True)
class TournamentEvent:
    kind: str
    tournament_id: int
    round_number: int
    payload: dict = field(default_factory=dict)


# ─── Locking & transactions ─────────────────────────────────


@contextmanager
def _tournament_lock(tournament_id):
    """Hold the in-process lock for one tournament.

    Entries are reference counted and dropped once no caller holds or waits
    on them, so the registry only ever contains tournaments in use.
    """
    with _locks_guard:
        entry = _tournament_locks.get(tournament_id)
        if entry is None:
            entry = _tournament_locks[tournament_id] = [threading.Lock(), 0]
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _tournament_locks[tournament_id]


@contextmanager
def _locked_tournament(tournament_id):
    """Serialize writers of one tournament and commit or roll back as a unit."""
    with _tournament_lock(tournament_id):
        try:
            tournament = (
                db.session.query(Tournament)
                .filter_by(id=tournament_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if tournament is None:
                raise NotFoundError(f'Tournament {tournament_id} not found')
            yield tournament
            db.session.commit()
        except TournamentError as exc:
            db.session.rollback()
            logger.warning('Rejected operation on tournament %s: %s', tournament_id, exc)
            raise
        except Exception:
            db.session.rollback()
            raise


def _emit_events(on_event, events):
    if on_event is None:
        return
    for event in events:
        try:
            on_event(event)
        except Exception:
            db.session.rollback()
            logger.exception(
                'Failed to deliver %s event for tournament %s',
                event.kind, event.tournament_id,
            )


def _rating_settings():
    return RatingSettings.from_config(current_app.config)


# ─── Helpers ────────────────────────────────────────────────


def _require_status(tournament, status, message):
    if tournament.status != status:
        raise InvalidStateError(message)


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def collect_player_ids(tournament):
    """Registered player IDs, deduplicated, in registration order."""
    seen = set()
    player_ids = []
    for registration in tournament.registrations:
        if tournament.registration_mode == 'PAIR':
            candidates = registration.player_ids
        else:
            candidates = [registration.player1_id]
        for pid in candidates:
            if pid not in seen:
                seen.add(pid)
                player_ids.append(pid)
    return player_ids


def recalculate_positions(standings):
    """Re-rank standings by (points desc, points_for desc).

    Ties keep the incoming order, so callers pass standings in insertion
    order. Returns the standings sorted by their new position.
    """
    ordered = sorted(standings, key=lambda s: (-s.points, -s.points_for))
    for position, standing in enumerate(ordered, start=1):
        if standing.position != position:
            standing.position = position
    return ordered


def _create_round(tournament, round_number, assignments, status):
    rnd = TournamentRound(round_number=round_number, status=status)
    tournament.rounds.append(rnd)
    for assignment in assignments:
        rnd.matches.append(TournamentMatch(
            tournament_id=tournament.id,
            court_number=assignment.court,
            team1_player1_id=assignment.team1[0],
            team1_player2_id=assignment.team1[1],
            team2_player1_id=assignment.team2[0],
            team2_player2_id=assignment.team2[1],
            status=status,
        ))
    return rnd


def _round_payload(rnd, player_ids):
    playing = {pid for match in rnd.matches for pid in match.player_ids}
    assignments = {}
    for match in rnd.matches:
        for team, opponents in ((match.team1_ids, match.team2_ids), (match.team2_ids, match.team1_ids)):
            for pid in team:
                assignments[pid] = {
                    'match_id': match.id,
                    'court': match.court_number,
                    'partner_id': team[1] if team[0] == pid else team[0],
                    'opponent_ids': list(opponents),
                }
    return {
        'assignments': assignments,
        'sitting_out': [pid for pid in player_ids if pid not in playing],
    }


def _round_event(kind, tournament, rnd):
    player_ids = [s.player_id for s in tournament.standings]
    return TournamentEvent(
        kind=kind,
        tournament_id=tournament.id,
        round_number=rnd.round_number,
        payload=_round_payload(rnd, player_ids),
    )


def _pairing_call(func, *args, **kwargs):
    try:
        return func(*args, **kwargs)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


# ─── Setup ──────────────────────────────────────────────────


def create_tournament(name, format='AMERICANO', courts_count=1, points_per_match=24,
                      rating_multiplier=1.0, registration_mode='INDIVIDUAL', max_teams=None):
    """Create a tournament in REGISTRATION."""
    name = str(name or '').strip()
    tournament_format = str(format or '').strip().upper()
    mode = str(registration_mode or '').strip().upper()

    if not name:
        raise ValidationError('Tournament name is required')
    if tournament_format not in TOURNAMENT_FORMATS:
        raise UnsupportedFormatError(f"Format '{format}' does not support live play")
    if mode not in REGISTRATION_MODES:
        raise ValidationError(f"Unknown registration mode '{registration_mode}'")
    if not _is_int(courts_count) or courts_count < 1:
        raise ValidationError('At least one court is required')
    if not _is_int(points_per_match) or points_per_match < 1:
        raise ValidationError('Points per match must be a positive integer')
    if isinstance(rating_multiplier, bool) or not isinstance(rating_multiplier, (int, float)) \
            or rating_multiplier <= 0:
        raise ValidationError('Rating multiplier must be positive')
    if max_teams is not None and (not _is_int(max_teams) or max_teams < 1):
        raise ValidationError('Max teams must be a positive integer')

    tournament = Tournament(
        name=name,
        format=tournament_format,
        registration_mode=mode,
        courts_count=courts_count,
        points_per_match=points_per_match,
        rating_multiplier=float(rating_multiplier),
        max_teams=max_teams,
        status='REGISTRATION',
        current_round=0,
    )
    db.session.add(tournament)
    db.session.commit()
    logger.info('Tournament %s created: format=%s courts=%d', tournament.id, tournament_format, courts_count)
    return tournament


def register_players(tournament_id, player_id, partner_id=None, player_lookup=None):
    """Register one player (INDIVIDUAL) or a pair (PAIR) for a tournament."""
    lookup = player_lookup or lookup_players
    with _locked_tournament(tournament_id) as tournament:
        _require_status(tournament, 'REGISTRATION', 'Registration is closed')
        if tournament.registration_mode == 'PAIR' and partner_id is None:
            raise ValidationError('A partner is required for pair registration')
        if tournament.registration_mode == 'INDIVIDUAL' and partner_id is not None:
            raise ValidationError('This tournament takes individual registrations')
        if partner_id is not None and partner_id == player_id:
            raise ValidationError('A player cannot partner themselves')

        player_ids = [pid for pid in (player_id, partner_id) if pid is not None]
        known = lookup(player_ids)
        missing = [pid for pid in player_ids if pid not in known]
        if missing:
            raise NotFoundError(f'Player {missing[0]} not found')

        registered = {pid for r in tournament.registrations for pid in r.player_ids}
        if any(pid in registered for pid in player_ids):
            raise ValidationError('One of the players is already registered')
        if tournament.max_teams and len(tournament.registrations) >= tournament.max_teams:
            raise ValidationError('All places are taken')

        registration = TournamentRegistration(player1_id=player_id, player2_id=partner_id)
        tournament.registrations.append(registration)
        db.session.flush()
        result = registration.to_dict()
    return result


# ─── Lifecycle ──────────────────────────────────────────────


def start_tournament(tournament_id, rng=None, on_event=None):
    """Start a tournament: pair round 1 (Americano: every round) and open standings."""
    with _locked_tournament(tournament_id) as tournament:
        _require_status(tournament, 'REGISTRATION', 'Tournament is not in registration')
        if tournament.format not in TOURNAMENT_FORMATS:
            raise UnsupportedFormatError(f"Format '{tournament.format}' does not support live play")

        player_ids = collect_player_ids(tournament)
        if len(player_ids) < pairing.MIN_PLAYERS:
            raise ValidationError(
                f'At least {pairing.MIN_PLAYERS} players are required to start. '
                f'Registered: {len(player_ids)}'
            )
        courts = tournament.courts_count or 1

        if tournament.format == 'AMERICANO':
            schedule = _pairing_call(pairing.generate_americano_rounds, player_ids, courts)
        else:
            schedule = [_pairing_call(
                pairing.generate_mexicano_round, player_ids, courts,
                shuffle=True, rng=rng or _rng,
            )]

        for round_number, assignments in enumerate(schedule, start=1):
            status = 'IN_PROGRESS' if round_number == 1 else 'PENDING'
            _create_round(tournament, round_number, assignments, status)

        for pid in player_ids:
            tournament.standings.append(TournamentStanding(
                player_id=pid, points=0, points_for=0, points_against=0,
                wins=0, losses=0, position=0,
            ))
        recalculate_positions(tournament.standings)

        tournament.status = 'IN_PROGRESS'
        tournament.current_round = 1
        tournament.started_at = utcnow_naive()
        db.session.flush()

        events = [_round_event(TOURNAMENT_STARTED, tournament, tournament.rounds[0])]
        result = {
            'tournament': tournament.to_dict(),
            'player_count': len(player_ids),
            'total_rounds': len(schedule),
        }
        logger.info(
            'Tournament %s started: format=%s players=%d rounds=%d',
            tournament_id, tournament.format, len(player_ids), len(schedule),
        )

    _emit_events(on_event, events)
    return result


def submit_score(tournament_id, match_id, team1_score, team2_score, on_event=None):
    """Record a match score, update standings and close/advance the round."""
    events = []
    with _locked_tournament(tournament_id) as tournament:
        _require_status(tournament, 'IN_PROGRESS', 'Tournament is not in progress')

        match = db.session.get(TournamentMatch, match_id)
        if match is None or match.tournament_id != tournament.id:
            raise NotFoundError(f'Match {match_id} not found in tournament {tournament_id}')
        if match.status == 'COMPLETED':
            raise InvalidStateError('Score already recorded for this match')
        if match.status != 'IN_PROGRESS':
            raise InvalidStateError('Match has not started yet')

        if not _is_int(team1_score) or not _is_int(team2_score):
            raise ValidationError('Scores must be integers')
        if team1_score < 0 or team2_score < 0:
            raise ValidationError('Scores cannot be negative')
        total = team1_score + team2_score
        if total != tournament.points_per_match:
            raise ValidationError(
                f'Scores must add up to {tournament.points_per_match}. Got: {total}'
            )

        match.team1_score = team1_score
        match.team2_score = team2_score
        match.status = 'COMPLETED'
        match.completed_at = utcnow_naive()

        standings = {s.player_id: s for s in tournament.standings}
        team1_won = team1_score > team2_score
        for team_ids, own, opp, won in (
            (match.team1_ids, team1_score, team2_score, team1_won),
            (match.team2_ids, team2_score, team1_score, not team1_won),
        ):
            for pid in team_ids:
                standing = standings[pid]
                standing.points += own
                standing.points_for += own
                standing.points_against += opp
                if won:
                    standing.wins += 1
                else:
                    standing.losses += 1
        recalculate_positions(tournament.standings)

        rnd = match.round
        round_completed = rnd.is_complete
        advanced_to = None
        if round_completed:
            rnd.status = 'COMPLETED'
            # Mexicano waits for an explicit generate_next_round call.
            if tournament.format == 'AMERICANO':
                next_round = tournament.round_by_number(rnd.round_number + 1)
                if next_round is not None:
                    next_round.status = 'IN_PROGRESS'
                    for next_match in next_round.matches:
                        next_match.status = 'IN_PROGRESS'
                    tournament.current_round = next_round.round_number
                    advanced_to = next_round.round_number
                    events.append(_round_event(ROUND_ADVANCED, tournament, next_round))

        result = {
            'match': match.to_dict(),
            'round_completed': round_completed,
            'advanced_to': advanced_to,
        }
        logger.info(
            'Tournament %s match %s scored %d-%d (round %d complete=%s)',
            tournament_id, match_id, team1_score, team2_score, rnd.round_number, round_completed,
        )

    _emit_events(on_event, events)
    return result


def generate_next_round(tournament_id, rng=None, on_event=None):
    """Pair the next Mexicano round from live standings."""
    with _locked_tournament(tournament_id) as tournament:
        _require_status(tournament, 'IN_PROGRESS', 'Tournament is not in progress')
        if tournament.format != 'MEXICANO':
            raise UnsupportedFormatError('The next round is generated only for Mexicano')

        current = tournament.round_by_number(tournament.current_round)
        if current is None:
            raise InvalidStateError('Current round not found')
        if not current.is_complete:
            raise InvalidStateError('Not all matches of the current round are completed')

        ordered = [s.player_id for s in recalculate_positions(tournament.standings)]
        assignments = _pairing_call(
            pairing.generate_mexicano_round, ordered, tournament.courts_count or 1,
            rng=rng or _rng,
        )
        new_round_number = tournament.current_round + 1
        rnd = _create_round(tournament, new_round_number, assignments, 'IN_PROGRESS')
        tournament.current_round = new_round_number
        db.session.flush()

        events = [_round_event(ROUND_ADVANCED, tournament, rnd)]
        result = {
            'round': rnd.to_dict(),
            'round_number': new_round_number,
            'match_count': len(assignments),
        }
        logger.info('Tournament %s round %d generated', tournament_id, new_round_number)

    _emit_events(on_event, events)
    return result


def complete_tournament(tournament_id, player_lookup=None, settings=None,
                        apply_changes=None, on_event=None):
    """Settle ratings over every completed match and close the tournament.

    Returns rating changes and final standings. ``apply_changes`` is called
    with that result before the commit, so writing the changes to player
    profiles succeeds or fails together with the completion.
    """
    lookup = player_lookup or lookup_players
    with _locked_tournament(tournament_id) as tournament:
        _require_status(tournament, 'IN_PROGRESS', 'Tournament is not in progress')

        current = tournament.round_by_number(tournament.current_round)
        if current is not None:
            pending = [m for m in current.matches if m.status != 'COMPLETED']
            if pending:
                raise InvalidStateError(
                    'Not all matches of the current round are completed '
                    f'({len(pending)} remaining)'
                )

        settings = settings or _rating_settings()
        completed = TournamentMatch.query.filter_by(
            tournament_id=tournament.id,
            status='COMPLETED',
        ).order_by(TournamentMatch.id.asc()).all()

        player_ids = [s.player_id for s in tournament.standings]
        players = lookup(player_ids)
        deltas = settle_matches(
            ((m.team1_ids, m.team2_ids, m.team1_score, m.team2_score) for m in completed),
            players,
            multiplier=tournament.rating_multiplier or 1.0,
            settings=settings,
        )

        rating_changes = []
        for pid in player_ids:
            if pid not in players:
                continue
            old_rating = players[pid]['rating']
            change = deltas[pid]
            new_rating = max(settings.rating_floor, old_rating + change)
            tournament.rating_changes.append(TournamentRatingChange(
                player_id=pid,
                old_rating=old_rating,
                new_rating=new_rating,
                change=change,
            ))
            rating_changes.append({
                'player_id': pid,
                'old_rating': old_rating,
                'new_rating': new_rating,
                'change': change,
            })

        ordered = recalculate_positions(tournament.standings)
        tournament.status = 'COMPLETED'
        tournament.completed_at = utcnow_naive()

        events = [TournamentEvent(
            kind=TOURNAMENT_COMPLETED,
            tournament_id=tournament.id,
            round_number=tournament.current_round,
            payload={
                'positions': {s.player_id: s.position for s in ordered},
                'rating_changes': {c['player_id']: c['change'] for c in rating_changes},
            },
        )]
        result = {
            'tournament': tournament.to_dict(),
            'rating_changes': rating_changes,
            'standings': [s.to_dict() for s in ordered],
        }
        if apply_changes is not None:
            apply_changes(result)
        logger.info(
            'Tournament %s completed: %d matches settled for %d players',
            tournament_id, len(completed), len(rating_changes),
        )

    _emit_events(on_event, events)
    return result


def get_live_data(tournament_id):
    """Read-only snapshot of a tournament for display. Takes no lock."""
    tournament = db.session.get(Tournament, tournament_id)
    if tournament is None:
        raise NotFoundError(f'Tournament {tournament_id} not found')
    standings = sorted(tournament.standings, key=lambda s: (s.position, s.id))
    return {
        'tournament': tournament.to_dict(),
        'registrations': [r.to_dict() for r in tournament.registrations],
        'rounds': [r.to_dict() for r in tournament.rounds],
        'standings': [s.to_dict() for s in standings],
        'rating_changes': [c.to_dict() for c in tournament.rating_changes],
    }
