"""
Rating engine for doubles matches: team-aware ELO with set modifiers.

- Doubles: expected score is computed from team average ratings.
  Each player gains/loses individually with their own K-factor.
- K-factor: tiered by matches played (calibration, intermediate,
  established). Thresholds and K values come from ``RatingSettings``.
- Set modifiers: blowout sets, tight 7-6 sets and three-set matches
  multiply together and compose with the tournament multiplier.
- Formula: E = 1 / (1 + 10^((opp_avg - team_avg) / 400))
           ΔR = round(K * (actual - expected) * modifier), never 0
"""
import math
from dataclasses import dataclass


@dataclass(frozen=True)
class RatingSettings:
    calibration_matches: int = 10
    intermediate_matches: int = 30
    k_calibration: float = 40
    k_intermediate: float = 32
    k_established: float = 24
    blowout_multiplier: float = 1.15
    tight_multiplier: float = 1.05
    three_set_multiplier: float = 1.1
    rating_floor: float = 0.0

    @classmethod
    def from_config(cls, config):
        """Build settings from a Flask config mapping (``RATING_*`` keys)."""
        defaults = cls()
        return cls(
            calibration_matches=int(config.get('RATING_CALIBRATION_MATCHES', defaults.calibration_matches)),
            intermediate_matches=int(config.get('RATING_INTERMEDIATE_MATCHES', defaults.intermediate_matches)),
            k_calibration=float(config.get('RATING_K_CALIBRATION', defaults.k_calibration)),
            k_intermediate=float(config.get('RATING_K_INTERMEDIATE', defaults.k_intermediate)),
            k_established=float(config.get('RATING_K_ESTABLISHED', defaults.k_established)),
            blowout_multiplier=float(config.get('RATING_BLOWOUT_MULTIPLIER', defaults.blowout_multiplier)),
            tight_multiplier=float(config.get('RATING_TIGHT_MULTIPLIER', defaults.tight_multiplier)),
            three_set_multiplier=float(config.get('RATING_THREE_SET_MULTIPLIER', defaults.three_set_multiplier)),
            rating_floor=float(config.get('RATING_FLOOR', defaults.rating_floor)),
        )


DEFAULT_SETTINGS = RatingSettings()


def get_k_factor(matches_played, settings=DEFAULT_SETTINGS):
    """Tiered K-factor: higher while calibrating, lower once established."""
    if matches_played <= settings.calibration_matches:
        return settings.k_calibration
    if matches_played <= settings.intermediate_matches:
        return settings.k_intermediate
    return settings.k_established


def expected_score(team_rating, opponent_rating):
    """Win probability of a team against an opponent team.

    E = 1 / (1 + 10^((opponent - team) / 400))
    """
    return 1.0 / (1.0 + math.pow(10, (opponent_rating - team_rating) / 400.0))


def team_average(ratings):
    ratings = list(ratings)
    return sum(ratings) / len(ratings)


def _set_scores(sets):
    return [(int(a), int(b)) for a, b in sets]


def _is_blowout(a, b):
    return (a == 6 and b <= 1) or (b == 6 and a <= 1)


def _is_tight(a, b):
    return (a == 7 and b == 6) or (b == 7 and a == 6)


def calculate_set_modifier(sets, settings=DEFAULT_SETTINGS):
    """Multiplicative modifier from the set scores of a match.

    Args:
        sets: Sequence of ``(team1_games, team2_games)`` pairs.
    """
    scores = _set_scores(sets)
    multiplier = 1.0
    if any(_is_blowout(a, b) for a, b in scores):
        multiplier *= settings.blowout_multiplier
    if any(_is_tight(a, b) for a, b in scores):
        multiplier *= settings.tight_multiplier
    if len(scores) >= 3:
        multiplier *= settings.three_set_multiplier
    return multiplier


def determine_winner(sets):
    """Return 1 or 2 for the team that won more sets.

    Level set counts fall back to total games. A match that is level on
    both is not a valid result and raises ``ValueError``.
    """
    scores = _set_scores(sets)
    if not scores:
        raise ValueError('At least one set is required')
    team1_sets = sum(1 for a, b in scores if a > b)
    team2_sets = sum(1 for a, b in scores if b > a)
    if team1_sets != team2_sets:
        return 1 if team1_sets > team2_sets else 2
    team1_games = sum(a for a, _ in scores)
    team2_games = sum(b for _, b in scores)
    if team1_games != team2_games:
        return 1 if team1_games > team2_games else 2
    raise ValueError('Match is level on sets and games; no winner can be determined')


def _round_half_away(value):
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def rating_delta(team_avg, opponent_avg, won, k, modifier=1.0):
    """Rating change for one player. Never zero: every match moves the rating."""
    expected = expected_score(team_avg, opponent_avg)
    actual = 1.0 if won else 0.0
    delta = _round_half_away(k * (actual - expected) * modifier)
    if delta == 0:
        delta = 1 if won else -1
    return delta


def calculate_rating_changes(team1_players, team2_players, sets,
                             tournament_multiplier=1.0, settings=DEFAULT_SETTINGS):
    """Calculate rating changes for all four players of a set-scored match.

    Args:
        team1_players: List of dicts with 'id', 'rating' and 'matches_played'.
        team2_players: Same for team 2.
        sets: Sequence of ``(team1_games, team2_games)`` pairs.
        tournament_multiplier: External multiplier composed with set modifiers.

    Returns:
        (changes, winning_team): one dict per player with 'player_id',
        'old_rating', 'new_rating', 'change', 'won'.
    """
    team1_avg = team_average(p['rating'] for p in team1_players)
    team2_avg = team_average(p['rating'] for p in team2_players)
    winning_team = determine_winner(sets)
    modifier = calculate_set_modifier(sets, settings) * tournament_multiplier

    changes = []
    for team_num, players, own_avg, opp_avg in (
        (1, team1_players, team1_avg, team2_avg),
        (2, team2_players, team2_avg, team1_avg),
    ):
        won = team_num == winning_team
        for p in players:
            k = get_k_factor(p['matches_played'], settings)
            delta = rating_delta(own_avg, opp_avg, won, k, modifier)
            changes.append({
                'player_id': p['id'],
                'old_rating': p['rating'],
                'new_rating': max(settings.rating_floor, p['rating'] + delta),
                'change': delta,
                'won': won,
            })
    return changes, winning_team


def settle_matches(matches, players, multiplier=1.0, settings=DEFAULT_SETTINGS):
    """Accumulate rating deltas over a sequence of fixed-points matches.

    Ratings evolve match by match: each match's team averages use the base
    rating plus the deltas already accumulated earlier in the same pass.
    K-factors stay on the base matches-played count.

    Args:
        matches: Iterable of ``(team1_ids, team2_ids, team1_score, team2_score)``
            in the order they were played.
        players: Mapping of player id -> dict with 'rating' and 'matches_played'.
        multiplier: Tournament rating multiplier.

    Returns:
        Dict of player id -> accumulated delta (players without a lookup
        entry are skipped along with the matches they appear in).
    """
    deltas = {pid: 0 for pid in players}
    for team1_ids, team2_ids, team1_score, team2_score in matches:
        if any(pid not in players for pid in (*team1_ids, *team2_ids)):
            continue
        team1_avg = team_average(players[pid]['rating'] + deltas[pid] for pid in team1_ids)
        team2_avg = team_average(players[pid]['rating'] + deltas[pid] for pid in team2_ids)
        team1_won = team1_score > team2_score

        match_deltas = {}
        for team_ids, own_avg, opp_avg, won in (
            (team1_ids, team1_avg, team2_avg, team1_won),
            (team2_ids, team2_avg, team1_avg, not team1_won),
        ):
            for pid in team_ids:
                k = get_k_factor(players[pid]['matches_played'], settings)
                match_deltas[pid] = rating_delta(own_avg, opp_avg, won, k, multiplier)
        for pid, delta in match_deltas.items():
            deltas[pid] += delta
    return deltas
