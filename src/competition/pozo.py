"""
Pozo (king of the court) ladder rotation.

Winners move one court up towards court 1 and losers one court down after
every round. Court 1 winners and last-court losers stay where they are.
"""
import logging
import random
from typing import List, Optional

from competition.config import VARIANT_FIXED_PAIRS, PozoConfig, require_format_config
from competition.errors import RoundNotCompleteError, ValidationError
from competition.generators import coerce_pairs
from competition.models import FINISHED, Division, Match, Pair
from competition.scoring import decisive_winner

logger = logging.getLogger(__name__)

ROUND_PENDING = 'round-pending'
ROUND_COMPLETE = 'round-complete'


def _units(participants, pozo: PozoConfig) -> list:
    """Players (individual variant) or Pairs (fixed-pairs variant), validated."""
    if pozo.variant == VARIANT_FIXED_PAIRS:
        return coerce_pairs(participants)
    players = list(participants)
    if len(set(players)) != len(players):
        raise ValidationError("Duplicate participants in a Pozo roster")
    return players


def generate_initial_round(participants, config, rng: Optional[random.Random] = None) -> List[Match]:
    """
    Shuffle the roster onto courts 1..num_courts, lowest court first.

    A court that cannot be filled (4 players or 2 pairs) is not generated;
    leftover participants sit out.
    """
    pozo = require_format_config(config, PozoConfig)
    units = _units(participants, pozo)
    (rng or random.Random()).shuffle(units)

    per_court = 2 if pozo.variant == VARIANT_FIXED_PAIRS else 4
    matches = []
    for court in range(1, pozo.num_courts + 1):
        chunk = units[(court - 1) * per_court:court * per_court]
        if len(chunk) < per_court:
            break
        if pozo.variant == VARIANT_FIXED_PAIRS:
            pair1, pair2 = chunk
        else:
            pair1, pair2 = Pair(chunk[0], chunk[1]), Pair(chunk[2], chunk[3])
        matches.append(Match(1, pair1, pair2, court=court))

    if not matches:
        raise ValidationError(f"Not enough participants to fill one court ({len(units)} given)")
    seated = len(matches) * per_court
    if seated < len(units) or len(matches) < pozo.num_courts:
        logger.warning("Pozo first round truncated to %d court(s); %d participant(s) sit out",
                       len(matches), len(units) - seated)
    return matches


def calculate_next_round(matches: List[Match], round_number: int, config) -> List[Match]:
    """
    Compute round round_number + 1 from the finished matches of round round_number.

    Matches are processed in court order. Each destination court collects the
    winners coming down or staying and the losers coming up or staying, in
    arrival order. Fixed pairs keep their composition; in the individual
    variant the bucket [a, b, c, d] (partners a & b, c & d) becomes (a, c) vs (b, d).

    Returns:
        One pending match per court in play.
    """
    pozo = require_format_config(config, PozoConfig)
    if not matches:
        raise ValidationError("No matches to advance from")
    pending = [m for m in matches if m.status != FINISHED]
    if pending:
        raise RoundNotCompleteError(
            f"Round {round_number} has {len(pending)} unfinished match(es)"
        )

    ordered = sorted(matches, key=lambda m: m.court or 0)
    num_courts = min(max(m.court or 1 for m in ordered), pozo.num_courts)
    buckets = [[] for _ in range(num_courts)]

    for match in ordered:
        index = min(match.court or 1, num_courts) - 1
        if decisive_winner(match) == 1:
            winners, losers = match.pair1, match.pair2
        else:
            winners, losers = match.pair2, match.pair1
        buckets[max(index - 1, 0)].append(winners)
        buckets[min(index + 1, num_courts - 1)].append(losers)

    next_round = []
    for court, bucket in enumerate(buckets, start=1):
        logger.debug("Round %d court %d bucket: %s", round_number + 1, court, bucket)
        if len(bucket) != 2:
            logger.warning("Court %d received %d pair(s); skipped", court, len(bucket))
            continue
        first, second = bucket
        if pozo.variant == VARIANT_FIXED_PAIRS:
            pair1, pair2 = Pair(first.p1, first.p2), Pair(second.p1, second.p2)
        else:
            pair1, pair2 = Pair(first.p1, second.p1), Pair(first.p2, second.p2)
        next_round.append(Match(round_number + 1, pair1, pair2, court=court))
    return next_round


def round_state(division: Division) -> str:
    current = division.matches_in_round(division.current_round())
    if not current:
        raise ValidationError(f"Division {division.number} has no rounds yet")
    if all(m.status == FINISHED for m in current):
        return ROUND_COMPLETE
    return ROUND_PENDING


def advance_round(division: Division, config) -> List[Match]:
    """
    Generate the next round of a ladder division.

    Only allowed once the current round is complete. The division is left
    untouched; the caller appends and persists the returned matches.
    """
    require_format_config(config, PozoConfig)
    if round_state(division) == ROUND_PENDING:
        raise RoundNotCompleteError(
            f"Round {division.current_round()} of division {division.number} is still in play"
        )
    current = division.current_round()
    return calculate_next_round(division.matches_in_round(current), current, config)
