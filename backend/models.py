from backend.app import db
from backend.time_utils import isoformat_or_none, utcnow_naive

TOURNAMENT_FORMATS = ('AMERICANO', 'MEXICANO')
REGISTRATION_MODES = ('INDIVIDUAL', 'PAIR')


class Player(db.Model):
    """Player profile. Tournaments only read it through the player registry."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    rating = db.Column(db.Float, default=1500.0, nullable=False)
    matches_played = db.Column(db.Integer, default=0, nullable=False)
    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'rating': self.rating,
            'matches_played': self.matches_played,
            'wins': self.wins, 'losses': self.losses,
            'created_at': isoformat_or_none(self.created_at),
        }


class RatingHistory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    old_rating = db.Column(db.Float, nullable=False)
    new_rating = db.Column(db.Float, nullable=False)
    change = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(40), default='tournament')
    note = db.Column(db.String(300), default='')
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    player = db.relationship('Player', backref='rating_history')

    def to_dict(self):
        return {
            'id': self.id, 'player_id': self.player_id,
            'old_rating': self.old_rating, 'new_rating': self.new_rating,
            'change': self.change, 'reason': self.reason, 'note': self.note,
            'created_at': isoformat_or_none(self.created_at),
        }


class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    notif_type = db.Column(db.String(50), nullable=False)
    # tournament_round, tournament_sit_out, tournament_result
    content = db.Column(db.Text, nullable=False)
    reference_id = db.Column(db.Integer, nullable=True)
    read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'id': self.id, 'player_id': self.player_id,
            'notif_type': self.notif_type, 'content': self.content,
            'reference_id': self.reference_id, 'read': self.read,
            'created_at': isoformat_or_none(self.created_at),
        }


# ── Live tournaments ───────────────────────────────────────────────────

class Tournament(db.Model):
    """Round-based doubles tournament (Americano or Mexicano)."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    format = db.Column(db.String(20), nullable=False)  # AMERICANO, MEXICANO
    registration_mode = db.Column(db.String(20), default='INDIVIDUAL', nullable=False)
    # INDIVIDUAL = one player per registration, PAIR = two
    courts_count = db.Column(db.Integer, default=1, nullable=False)
    points_per_match = db.Column(db.Integer, default=24, nullable=False)
    rating_multiplier = db.Column(db.Float, default=1.0, nullable=False)
    max_teams = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), default='REGISTRATION', nullable=False)
    # REGISTRATION, IN_PROGRESS, COMPLETED
    current_round = db.Column(db.Integer, default=0, nullable=False)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    registrations = db.relationship(
        'TournamentRegistration',
        backref='tournament',
        order_by='TournamentRegistration.id',
        cascade='all, delete-orphan',
    )
    rounds = db.relationship(
        'TournamentRound',
        backref='tournament',
        order_by='TournamentRound.round_number',
        cascade='all, delete-orphan',
    )
    standings = db.relationship(
        'TournamentStanding',
        backref='tournament',
        order_by='TournamentStanding.id',
        cascade='all, delete-orphan',
    )
    rating_changes = db.relationship(
        'TournamentRatingChange',
        backref='tournament',
        order_by='TournamentRatingChange.id',
        cascade='all, delete-orphan',
    )

    def round_by_number(self, round_number):
        return next((r for r in self.rounds if r.round_number == round_number), None)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'format': self.format,
            'registration_mode': self.registration_mode,
            'courts_count': self.courts_count,
            'points_per_match': self.points_per_match,
            'rating_multiplier': self.rating_multiplier,
            'max_teams': self.max_teams,
            'status': self.status,
            'current_round': self.current_round,
            'total_rounds': len(self.rounds),
            'teams_registered': len(self.registrations),
            'started_at': isoformat_or_none(self.started_at),
            'completed_at': isoformat_or_none(self.completed_at),
            'created_at': isoformat_or_none(self.created_at),
        }


class TournamentRegistration(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False)
    player1_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    player2_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    player1 = db.relationship('Player', foreign_keys=[player1_id])
    player2 = db.relationship('Player', foreign_keys=[player2_id])

    @property
    def player_ids(self):
        return [pid for pid in (self.player1_id, self.player2_id) if pid is not None]

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'player1_id': self.player1_id,
            'player2_id': self.player2_id,
            'player1': self.player1.to_dict() if self.player1 else None,
            'player2': self.player2.to_dict() if self.player2 else None,
            'created_at': isoformat_or_none(self.created_at),
        }


class TournamentRound(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), default='PENDING', nullable=False)
    # PENDING, IN_PROGRESS, COMPLETED
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'round_number', name='uq_tournament_round_number'),
    )

    matches = db.relationship(
        'TournamentMatch',
        backref='round',
        order_by='TournamentMatch.court_number',
        cascade='all, delete-orphan',
    )

    @property
    def is_complete(self):
        return all(m.status == 'COMPLETED' for m in self.matches)

    def to_dict(self, include_matches=True):
        data = {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'round_number': self.round_number,
            'status': self.status,
        }
        if include_matches:
            data['matches'] = [m.to_dict() for m in self.matches]
        return data


class TournamentMatch(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False)
    round_id = db.Column(db.Integer, db.ForeignKey('tournament_round.id'), nullable=False)
    court_number = db.Column(db.Integer, nullable=False)
    team1_player1_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    team1_player2_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    team2_player1_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    team2_player2_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    team1_score = db.Column(db.Integer, nullable=True)
    team2_score = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), default='PENDING', nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.Index('ix_tournament_match_tournament_status', 'tournament_id', 'status'),
    )

    @property
    def team1_ids(self):
        return (self.team1_player1_id, self.team1_player2_id)

    @property
    def team2_ids(self):
        return (self.team2_player1_id, self.team2_player2_id)

    @property
    def player_ids(self):
        return (*self.team1_ids, *self.team2_ids)

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'round_id': self.round_id,
            'round_number': self.round.round_number if self.round else None,
            'court_number': self.court_number,
            'team1': list(self.team1_ids),
            'team2': list(self.team2_ids),
            'team1_score': self.team1_score,
            'team2_score': self.team2_score,
            'status': self.status,
            'completed_at': isoformat_or_none(self.completed_at),
        }


class TournamentStanding(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    points = db.Column(db.Integer, default=0, nullable=False)
    points_for = db.Column(db.Integer, default=0, nullable=False)
    points_against = db.Column(db.Integer, default=0, nullable=False)
    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    position = db.Column(db.Integer, default=0, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'player_id', name='uq_tournament_standing_player'),
    )

    player = db.relationship('Player')

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'player': self.player.to_dict() if self.player else None,
            'points': self.points,
            'points_for': self.points_for,
            'points_against': self.points_against,
            'wins': self.wins,
            'losses': self.losses,
            'position': self.position,
        }


class TournamentRatingChange(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    old_rating = db.Column(db.Float, nullable=False)
    new_rating = db.Column(db.Float, nullable=False)
    change = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'player_id', name='uq_tournament_rating_change_player'),
    )

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'old_rating': self.old_rating,
            'new_rating': self.new_rating,
            'change': self.change,
        }
