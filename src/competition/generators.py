"""
Match schedule generation, one function per competition format.
"""
import logging
import random
from collections import Counter
from typing import List, Optional, Sequence, Tuple

from competition.config import (
    AMERICANO, CLASSIC, ELIMINATION, HYBRID, INDIVIDUAL, MEXICANO, PAIRS, POZO,
    VARIANT_FIXED_PAIRS, HybridConfig, RankingConfig, require_format_config,
)
from competition.errors import ConfigurationError, ValidationError
from competition.models import Division, GROUP_STAGE, Match, Pair, StandingRow

logger = logging.getLogger(__name__)

POD_SIZE = 4


def _check_unique(participants: Sequence[str]):
    counts = Counter(participants)
    duplicates = sorted(p for p, n in counts.items() if n > 1)
    if duplicates:
        raise ValidationError(f"Duplicate participant(s): {duplicates}")
    if any(not p for p in participants):
        raise ValidationError("Participant identifiers cannot be empty")


def coerce_pairs(pairs) -> List[Pair]:
    """Validate fixed pairs: two distinct players each, no player in two pairs."""
    result = [Pair.coerce(p) for p in pairs]
    seen = {}
    for pair in result:
        if not pair.p1 or not pair.p2:
            raise ValidationError(f"Fixed pairs need two participants, got {pair}")
        for player in (pair.p1, pair.p2):
            if player in seen:
                raise ValidationError(f"Participant {player} appears in pairs {seen[player]} and {pair}")
            seen[player] = pair
    return result


def circle_rounds(items: Sequence) -> List[List[Tuple]]:
    """
    Round-robin pairings by the circle method.

    The first item stays fixed while the rest rotate; with an odd count a rest
    marker is added and its pairing is dropped, so one item sits out per round.

    Returns:
        One list of (a, b) pairings per round: n-1 rounds for even n, n for odd n.
    """
    items = list(items)
    if len(items) < 2:
        return []
    if len(items) % 2:
        items.append(None)
    n = len(items)
    fixed, rotating = items[0], items[1:]
    rounds = []
    for _ in range(n - 1):
        order = [fixed] + rotating
        pairings = [(order[i], order[n - 1 - i]) for i in range(n // 2)]
        rounds.append([p for p in pairings if None not in p])
        rotating = rotating[-1:] + rotating[:-1]
    return rounds


def _pair_partnerships(partnerships: List[Tuple[str, str]], opponents: Counter) -> List[Tuple[Tuple, Tuple]]:
    """
    Greedily match partnerships against each other, picking for each the
    opponent partnership its players have faced least so far.
    """
    remaining = list(partnerships)
    matchups = []
    while len(remaining) >= 2:
        first = remaining.pop(0)
        best_index = min(
            range(len(remaining)),
            key=lambda i: sum(opponents[frozenset((a, b))] for a in first for b in remaining[i]),
        )
        second = remaining.pop(best_index)
        for a in first:
            for b in second:
                opponents[frozenset((a, b))] += 1
        matchups.append((first, second))
    return matchups


def generate_classic4(participants: Sequence[str], division_number: int = 1) -> List[Match]:
    """
    Generate the classic 4-player schedule: every split of 4 players into two pairs, one per round.

    Returns:
        3 pending matches, rounds 1 to 3.
    """
    participants = list(participants)
    if len(participants) != POD_SIZE:
        raise ValidationError(f"The classic format needs exactly 4 participants, got {len(participants)}")
    _check_unique(participants)
    p0, p1, p2, p3 = participants
    matches = [
        Match(1, Pair(p0, p1), Pair(p2, p3)),
        Match(2, Pair(p0, p2), Pair(p1, p3)),
        Match(3, Pair(p0, p3), Pair(p1, p2)),
    ]
    logger.debug("Division %s: generated classic schedule for %s", division_number, participants)
    return matches


def generate_individual_league(participants: Sequence[str], division_number: int = 1,
                               rounds: Optional[int] = None) -> List[Match]:
    """
    Generate a rotating-partner league for N >= 4 players.

    Partnerships come from the circle method, so over a full cycle every player
    partners every other player exactly once. Within a round the partnerships
    are matched against each other minimising repeated opponents; a leftover
    partnership sits the round out. rounds caps (or cycles) the schedule.
    """
    participants = list(participants)
    if len(participants) < POD_SIZE:
        raise ValidationError(f"An individual league needs at least 4 participants, got {len(participants)}")
    _check_unique(participants)
    if len(participants) == POD_SIZE and rounds is None:
        return generate_classic4(participants, division_number)

    cycle = circle_rounds(participants)
    total_rounds = rounds or len(cycle)
    opponents = Counter()
    matches = []
    for round_index in range(total_rounds):
        partnerships = list(cycle[round_index % len(cycle)])
        if len(partnerships) % 2:
            # The resting partnership rotates with the round
            partnerships.pop(round_index % len(partnerships))
        for first, second in _pair_partnerships(partnerships, opponents):
            matches.append(Match(round_index + 1, Pair(*first), Pair(*second)))
    logger.debug("Division %s: generated %d individual league matches over %d rounds",
                 division_number, len(matches), total_rounds)
    return matches


def generate_pairs_league(pairs, division_number: int = 1) -> List[Match]:
    """Round robin over fixed pairs; with an odd number of pairs one rests each round."""
    pairs = coerce_pairs(pairs)
    if len(pairs) < 2:
        raise ValidationError(f"A pairs league needs at least 2 pairs, got {len(pairs)}")
    matches = []
    for round_index, pairings in enumerate(circle_rounds(pairs)):
        for first, second in pairings:
            matches.append(Match(round_index + 1, first, second))
    logger.debug("Division %s: generated %d pairs league matches", division_number, len(matches))
    return matches


def generate_americano(participants, num_courts: int, division_number: int = 1,
                       variant: str = 'individual', rng: Optional[random.Random] = None) -> List[Match]:
    """
    Generate an Americano schedule limited by court capacity.

    Individual variant: pending partnerships come from a full circle-method
    cycle; each round takes as many disjoint partnerships as the courts hold
    and matches them up. Generation stops once fewer than two disjoint
    partnerships remain. Fixed-pairs variant: a pairs round robin split into
    waves of at most num_courts matches.

    Returns:
        Matches with court indices 1..num_courts, rounds starting at 1.
    """
    if num_courts < 1:
        raise ValidationError(f"num_courts must be at least 1, got {num_courts}")

    if variant == VARIANT_FIXED_PAIRS:
        pairs = coerce_pairs(participants)
        if len(pairs) < 2:
            raise ValidationError("An Americano with fixed pairs needs at least 2 pairs")
        if rng:
            rng.shuffle(pairs)
        matches = []
        round_number = 0
        for pairings in circle_rounds(pairs):
            for start in range(0, len(pairings), num_courts):
                round_number += 1
                for court, (first, second) in enumerate(pairings[start:start + num_courts], start=1):
                    matches.append(Match(round_number, first, second, court=court))
        return matches

    players = list(participants)
    if len(players) < POD_SIZE:
        raise ValidationError(f"An Americano needs at least 4 participants, got {len(players)}")
    _check_unique(players)
    if rng:
        rng.shuffle(players)

    pending = [p for pairings in circle_rounds(players) for p in pairings]
    capacity = 2 * num_courts
    opponents = Counter()
    matches = []
    round_number = 0
    while True:
        picked, busy = [], set()
        for partnership in pending:
            if len(picked) == capacity:
                break
            if busy.isdisjoint(partnership):
                picked.append(partnership)
                busy.update(partnership)
        if len(picked) % 2:
            picked.pop()
        if len(picked) < 2:
            break
        round_number += 1
        for partnership in picked:
            pending.remove(partnership)
        for court, (first, second) in enumerate(_pair_partnerships(picked, opponents), start=1):
            matches.append(Match(round_number, Pair(*first), Pair(*second), court=court))

    if pending:
        logger.debug("Division %s: %d partnerships left unplayed by court capacity",
                     division_number, len(pending))
    return matches


def generate_mexicano_round(participants: Sequence[str], standings: Optional[List[StandingRow]],
                            round_number: int, num_courts: Optional[int] = None) -> List[Match]:
    """
    Generate one Mexicano round from the running standings.

    Players are ordered by points then game differential (the given order
    breaks remaining ties, and the first round uses it as is), cut into
    groups of 4 and paired 1st & 4th against 2nd & 3rd. Players beyond the
    available courts, or a remainder short of 4, rest.
    """
    participants = list(participants)
    if len(participants) < POD_SIZE:
        raise ValidationError(f"A Mexicano round needs at least 4 participants, got {len(participants)}")
    _check_unique(participants)

    rows = {row.participant_id: row for row in (standings or [])}

    def sort_key(player):
        row = rows.get(player)
        if row is None:
            return (0, 0)
        return (-row.points, -row.game_diff)

    ranked = sorted(participants, key=sort_key)
    groups = len(ranked) // POD_SIZE
    if num_courts is not None:
        groups = min(groups, num_courts)

    matches = []
    for index in range(groups):
        a, b, c, d = ranked[index * POD_SIZE:(index + 1) * POD_SIZE]
        matches.append(Match(round_number, Pair(a, d), Pair(b, c), court=index + 1))
    resting = ranked[groups * POD_SIZE:]
    if resting:
        logger.debug("Mexicano round %d: resting %s", round_number, resting)
    return matches


def generate_individual_round(participants: Sequence[str], round_number: int,
                              rng: Optional[random.Random] = None) -> List[Match]:
    """Shuffle players into 4-player pods; a remainder short of 4 rests."""
    players = list(participants)
    if len(players) < POD_SIZE:
        raise ValidationError(f"A round needs at least 4 participants, got {len(players)}")
    _check_unique(players)
    (rng or random.Random()).shuffle(players)
    matches = []
    for start in range(0, len(players) - POD_SIZE + 1, POD_SIZE):
        a, b, c, d = players[start:start + POD_SIZE]
        matches.append(Match(round_number, Pair(a, b), Pair(c, d)))
    return matches


def snake_groups(items: Sequence, num_groups: int) -> List[List]:
    """Distribute seeded items over groups in snake order (1..g, g..1, ...)."""
    groups = [[] for _ in range(num_groups)]
    for index, item in enumerate(items):
        row, col = divmod(index, num_groups)
        if row % 2:
            col = num_groups - 1 - col
        groups[col].append(item)
    return groups


def group_name(index: int) -> str:
    return f"Group {chr(ord('A') + index)}" if index < 26 else f"Group {index + 1}"


def generate_hybrid_groups(pairs, config) -> List[Division]:
    """
    Build the group stage of a hybrid competition.

    pairs are taken in seeding order and snake-distributed into groups of at
    most pairs_per_group; each group plays a pairs round robin.

    Returns:
        One group-stage Division per group, numbered from 1.
    """
    hybrid = require_format_config(config, HybridConfig)
    pairs = coerce_pairs(pairs)
    size = hybrid.pairs_per_group
    num_groups = -(-len(pairs) // size)
    if num_groups == 0:
        raise ValidationError("A hybrid competition needs pairs")
    groups = snake_groups(pairs, num_groups)
    short = [group_name(i) for i, g in enumerate(groups) if len(g) < 2]
    if short:
        raise ValidationError(f"Groups {short} would have fewer than 2 pairs")

    divisions = []
    for index, group in enumerate(groups):
        divisions.append(Division(
            number=index + 1,
            players=[p.key for p in group],
            matches=generate_pairs_league(group, index + 1),
            name=group_name(index),
            stage=GROUP_STAGE,
        ))
    logger.debug("Generated %d hybrid groups for %d pairs", len(divisions), len(pairs))
    return divisions


def generate_for_format(config: RankingConfig, participants, division_number: int,
                        rng: Optional[random.Random] = None) -> List[Match]:
    """
    Generate the opening schedule of a division for the ranking's format.

    participants are player ids, or pairs ("p1::p2" keys or two-element
    sequences) for pair formats.
    """
    if config is None:
        raise ConfigurationError("Missing ranking configuration")
    fmt = config.format
    options = config.format_config
    if fmt == CLASSIC:
        return generate_classic4(participants, division_number)
    if fmt == INDIVIDUAL:
        return generate_individual_league(participants, division_number, options.rounds)
    if fmt in (PAIRS, HYBRID):
        return generate_pairs_league(participants, division_number)
    if fmt == AMERICANO:
        return generate_americano(participants, options.num_courts, division_number,
                                  options.variant, rng)
    if fmt == MEXICANO:
        return generate_mexicano_round(participants, None, 1, options.num_courts)
    if fmt == POZO:
        from competition.pozo import generate_initial_round
        return generate_initial_round(participants, config, rng)
    if fmt == ELIMINATION:
        raise ValidationError("Elimination draws are built with elimination.generate_bracket")
    raise ConfigurationError(f"No generator for format '{fmt}'")
