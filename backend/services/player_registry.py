"""Player registry: rating lookups for the tournament core and profile updates.

The tournament core only reads ratings through ``lookup_players``; applying
the deltas it returns is done here, inside the completion transaction.
"""
from backend.app import db
from backend.models import Player, RatingHistory


def lookup_players(player_ids):
    """Return ``{player_id: {'rating', 'matches_played'}}`` for known players."""
    unique_ids = {pid for pid in player_ids if pid is not None}
    if not unique_ids:
        return {}
    players = Player.query.filter(Player.id.in_(unique_ids)).all()
    return {
        p.id: {'rating': p.rating, 'matches_played': p.matches_played}
        for p in players
    }


def create_player(name, rating=None, default_rating=1500.0):
    name = str(name or '').strip()
    if not name:
        raise ValueError('Player name is required')
    player = Player(
        name=name,
        rating=float(rating) if rating is not None else default_rating,
    )
    db.session.add(player)
    db.session.commit()
    return player


def apply_rating_changes(tournament_name, completion, commit=True):
    """Write a completed tournament's rating changes onto player profiles.

    Args:
        tournament_name: Used for the rating history note.
        completion: Result of ``complete_tournament``.
        commit: Commit the session when done. Pass False when running
            inside ``complete_tournament(apply_changes=...)``, which commits.
    """
    changes = completion['rating_changes']
    standings = {row['player_id']: row for row in completion['standings']}
    players = Player.query.filter(
        Player.id.in_([c['player_id'] for c in changes])
    ).all()
    players_by_id = {p.id: p for p in players}

    for change in changes:
        player = players_by_id.get(change['player_id'])
        if player is None:
            continue
        standing = standings.get(player.id, {})
        wins = standing.get('wins', 0)
        losses = standing.get('losses', 0)

        player.rating = change['new_rating']
        player.matches_played += wins + losses
        player.wins += wins
        player.losses += losses
        db.session.add(RatingHistory(
            player_id=player.id,
            old_rating=change['old_rating'],
            new_rating=change['new_rating'],
            change=change['change'],
            reason='tournament',
            note=f'Tournament: {tournament_name}',
        ))
    if commit:
        db.session.commit()
