"""Turns tournament events into player notifications and live broadcasts."""
from backend.app import db, socketio
from backend.models import Notification, Player, Tournament
from backend.services.tournament_engine import (
    ROUND_ADVANCED, TOURNAMENT_COMPLETED, TOURNAMENT_STARTED,
)
from backend.time_utils import utcnow_naive


def _names_for(player_ids):
    players = Player.query.filter(Player.id.in_(set(player_ids))).all()
    return {p.id: p.name for p in players}


def _round_notifications(event, tournament_name):
    assignments = event.payload.get('assignments', {})
    sitting_out = event.payload.get('sitting_out', [])
    involved = set(sitting_out)
    for info in assignments.values():
        involved.add(info['partner_id'])
        involved.update(info['opponent_ids'])
    names = _names_for(involved | set(assignments))

    heading = (
        f'"{tournament_name}" has started'
        if event.kind == TOURNAMENT_STARTED
        else f'Round {event.round_number} of "{tournament_name}" is ready'
    )
    for pid, info in assignments.items():
        opponents = ' + '.join(names.get(oid, '?') for oid in info['opponent_ids'])
        yield Notification(
            player_id=pid,
            notif_type='tournament_round',
            content=(
                f'{heading}. Court {info["court"]}: you and '
                f'{names.get(info["partner_id"], "?")} vs {opponents}.'
            ),
            reference_id=event.tournament_id,
        )
    for pid in sitting_out:
        yield Notification(
            player_id=pid,
            notif_type='tournament_sit_out',
            content=f'{heading}. You sit out round {event.round_number}.',
            reference_id=event.tournament_id,
        )


def _result_notifications(event, tournament_name):
    changes = event.payload.get('rating_changes', {})
    for pid, position in event.payload.get('positions', {}).items():
        change = changes.get(pid, 0)
        yield Notification(
            player_id=pid,
            notif_type='tournament_result',
            content=(
                f'Tournament "{tournament_name}" complete. '
                f'You finished #{position} ({change:+d} rating).'
            ),
            reference_id=event.tournament_id,
        )


def publish_tournament_event(event):
    """Event sink for the tournament engine."""
    tournament = db.session.get(Tournament, event.tournament_id)
    tournament_name = tournament.name if tournament else f'#{event.tournament_id}'

    if event.kind in (TOURNAMENT_STARTED, ROUND_ADVANCED):
        notifications = list(_round_notifications(event, tournament_name))
    elif event.kind == TOURNAMENT_COMPLETED:
        notifications = list(_result_notifications(event, tournament_name))
    else:
        notifications = []

    db.session.add_all(notifications)
    db.session.commit()

    socketio.emit('tournament_update', {
        'tournament_id': event.tournament_id,
        'reason': event.kind,
        'round_number': event.round_number,
        'updated_at': utcnow_naive().isoformat(),
    })
