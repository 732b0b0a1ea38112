"""
Pairing generators for Americano and Mexicano doubles tournaments.

Americano: the whole schedule is generated before play starts. Partners
rotate so every pair plays together before any pair repeats, opponents
are spread as evenly as possible, and sit-outs rotate when the field does
not fill the courts.

Mexicano: one round at a time. Round 1 is random; later rounds take the
players ordered by standings and split every block of four as
#1+#3 vs #2+#4.

Both generators are pure: usage counters live inside a single call and
nothing is shared between calls.
"""
import itertools
import random
from collections import namedtuple

MIN_PLAYERS = 4
PLAYERS_PER_MATCH = 4

CourtAssignment = namedtuple('CourtAssignment', ['court', 'team1', 'team2'])

_rng = random.Random()


def _pair(a, b):
    return frozenset((a, b))


def _validate(player_ids, courts):
    players = list(player_ids)
    if len(players) < MIN_PLAYERS:
        raise ValueError(f'At least {MIN_PLAYERS} players are required, got {len(players)}')
    if len(set(players)) != len(players):
        raise ValueError('Player IDs must be distinct')
    if courts < 1:
        raise ValueError('At least one court is required')
    return players


def matches_per_round(player_count, courts):
    return min(courts * PLAYERS_PER_MATCH, player_count) // PLAYERS_PER_MATCH


def players_in(assignments):
    return [pid for a in assignments for pid in (*a.team1, *a.team2)]


def sitting_out(player_ids, assignments):
    playing = set(players_in(assignments))
    return [pid for pid in player_ids if pid not in playing]


# ─── Americano ──────────────────────────────────────────────


def _opponent_exposure(team1, team2, opponent_usage):
    return sum(opponent_usage.get(_pair(a, b), 0) for a in team1 for b in team2)


def _pick_round(playing, match_count, pair_usage, opponent_usage):
    """Greedy pairing for one round.

    Each match takes the least-used available pair as team 1, then the
    least-used pair among the remaining players as team 2, ties going to
    the pair team 1 has faced least. Remaining ties keep registration order.
    """
    available = list(playing)
    matches = []
    for _ in range(match_count):
        team1 = min(
            itertools.combinations(available, 2),
            key=lambda p: pair_usage[_pair(*p)],
        )
        remaining = [pid for pid in available if pid not in team1]
        team2 = min(
            itertools.combinations(remaining, 2),
            key=lambda p: (pair_usage[_pair(*p)], _opponent_exposure(team1, p, opponent_usage)),
        )
        available = [pid for pid in remaining if pid not in team2]
        matches.append((team1, team2))
    return matches


def generate_americano_rounds(player_ids, courts):
    """Generate the full Americano schedule.

    Args:
        player_ids: Registered player IDs in registration order.
        courts: Number of available courts.

    Returns:
        List of rounds, each a list of ``CourtAssignment``.

    Raises:
        ValueError: Fewer than 4 players, duplicate IDs or no courts.
    """
    players = _validate(player_ids, courts)
    n = len(players)
    match_count = matches_per_round(n, courts)
    seats = match_count * PLAYERS_PER_MATCH

    pair_usage = {_pair(a, b): 0 for a, b in itertools.combinations(players, 2)}
    opponent_usage = {}
    sit_outs = {pid: 0 for pid in players}

    rounds = []
    for _ in range(n * 2):
        # Players who sat out most go first; sorted() keeps registration order on ties.
        selected = set(sorted(players, key=lambda pid: -sit_outs[pid])[:seats])
        playing = [pid for pid in players if pid in selected]

        assignments = []
        for index, (team1, team2) in enumerate(_pick_round(playing, match_count, pair_usage, opponent_usage)):
            pair_usage[_pair(*team1)] += 1
            pair_usage[_pair(*team2)] += 1
            for a in team1:
                for b in team2:
                    key = _pair(a, b)
                    opponent_usage[key] = opponent_usage.get(key, 0) + 1
            assignments.append(CourtAssignment(
                court=(index % courts) + 1,
                team1=team1,
                team2=team2,
            ))
        for pid in sitting_out(players, assignments):
            sit_outs[pid] += 1

        rounds.append(assignments)
        if len(rounds) >= n - 1 and all(count > 0 for count in pair_usage.values()):
            break

    return rounds


# ─── Mexicano ───────────────────────────────────────────────


def generate_mexicano_round(ordered_player_ids, courts, shuffle=False, rng=None):
    """Generate one Mexicano round.

    Args:
        ordered_player_ids: Players in standings order (ignored order when
            ``shuffle`` is set, as for round 1).
        courts: Number of available courts.
        shuffle: Randomize the order first (round 1).
        rng: ``random.Random`` to shuffle with; defaults to the module source.

    Returns:
        List of ``CourtAssignment``. Players beyond the available seats sit out.
    """
    players = _validate(ordered_player_ids, courts)
    if shuffle:
        (rng or _rng).shuffle(players)

    match_count = matches_per_round(len(players), courts)
    assignments = []
    for index in range(match_count):
        a, b, c, d = players[index * 4:index * 4 + 4]
        assignments.append(CourtAssignment(
            court=(index % courts) + 1,
            team1=(a, c),
            team2=(b, d),
        ))
    return assignments
