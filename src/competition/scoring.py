"""
Scoring resolution: turns a raw match score into awarded points.
"""
import logging
from collections import namedtuple
from typing import List, Optional, Tuple

from competition.config import (
    ELIMINATION, INDIVIDUAL, PointTable, SCORING_MODES, total_points_for,
)
from competition.errors import ValidationError
from competition.models import Match, Score

logger = logging.getLogger(__name__)

# Finalization types
COMPLETE = 'complete'
INCOMPLETE_WIN = 'incomplete_win'
INCOMPLETE_LOSS = 'incomplete_loss'
MARGIN_DRAW = 'margin_draw'
AGREED_DRAW = 'agreed_draw'
BYE_RESULT = 'bye'

# A set-1 loser leading set 2 by this many games turns an unfinished match into a draw
COMEBACK_MARGIN = 3

Resolution = namedtuple('Resolution', ['points', 'finalization_type', 'description'])

__all__ = [
    'Resolution', 'count_sets', 'resolve_set_score', 'resolve_points_score',
    'total_points_for', 'match_winner', 'decisive_winner', 'score_match',
]


def _validate_sets(sets: List[Tuple[int, int]]):
    if not sets:
        raise ValidationError("At least one set score is required")
    if len(sets) > 3:
        raise ValidationError(f"A match has at most 3 sets, got {len(sets)}")
    for games in sets:
        if len(games) != 2 or any(not isinstance(g, int) or g < 0 for g in games):
            raise ValidationError(f"Invalid set score {games}")


def count_sets(sets: List[Tuple[int, int]]) -> Tuple[int, int]:
    """Return sets won by each side. Level sets count for nobody."""
    side1 = sum(1 for a, b in sets if a > b)
    side2 = sum(1 for a, b in sets if b > a)
    return side1, side2


def _by_sets(points: PointTable, won: int, lost: int) -> Resolution:
    if won == 2 and lost == 0:
        return Resolution((points.win_2_0, points.loss_0_2), COMPLETE, "Win 2-0")
    if won == 2 and lost == 1:
        return Resolution((points.win_2_1, points.loss_1_2), COMPLETE, "Win 2-1")
    if won == 1 and lost == 2:
        return Resolution((points.loss_1_2, points.win_2_1), COMPLETE, "Loss 1-2")
    if won == 0 and lost == 2:
        return Resolution((points.loss_0_2, points.win_2_0), COMPLETE, "Loss 0-2")
    if won == lost == 1:
        return Resolution((points.draw, points.draw), COMPLETE, "Draw 1-1")
    raise ValidationError(f"Set count {won}-{lost} is not a valid match result")


def resolve_set_score(score: Score, points: PointTable, individual: bool = False,
                      force_draw: bool = False) -> Resolution:
    """
    Resolve a set-based score into awarded points.

    Returns:
        Resolution with the (pair1, pair2) points, the finalization type and
        a short description.
    """
    if force_draw:
        return Resolution((points.draw, points.draw), AGREED_DRAW, "Agreed draw")

    sets = score.sets
    _validate_sets(sets)
    first = sets[0]
    if first[0] == first[1]:
        raise ValidationError("The first set needs a winner")
    pair1_took_first = first[0] > first[1]
    if individual or not score.is_incomplete:
        for number, (a, b) in enumerate(sets, start=1):
            if a == b:
                raise ValidationError(f"Set {number} is level at {a}-{b}; "
                                      "only an unfinished match can stop on a level set")

    if individual and len(sets) <= 2:
        if len(sets) == 1:
            if pair1_took_first:
                return Resolution((points.win_2_0, points.loss_0_2), COMPLETE, "Win (1 set)")
            return Resolution((points.loss_0_2, points.win_2_0), COMPLETE, "Loss (1 set)")
        return _by_sets(points, *count_sets(sets))

    if not score.is_incomplete:
        return _by_sets(points, *count_sets(sets))

    if len(sets) < 2:
        raise ValidationError("Set 2 is required to resolve an incomplete match")
    second = sets[1]
    loser_lead = (second[1] - second[0]) if pair1_took_first else (second[0] - second[1])
    if loser_lead >= COMEBACK_MARGIN:
        return Resolution((points.draw, points.draw), MARGIN_DRAW, "Draw on set 2 margin")
    if pair1_took_first:
        return Resolution((points.win_2_0, points.loss_0_2), INCOMPLETE_WIN, "Incomplete win")
    return Resolution((points.loss_0_2, points.win_2_0), INCOMPLETE_LOSS, "Incomplete loss")


def resolve_points_score(points_scored: Tuple[int, int], scoring_mode: str,
                         total_points: Optional[int] = None) -> Resolution:
    """
    Resolve a fixed-total (or per-game) score. Awarded points equal points scored.

    In fixed modes both sides must add up to the mode's total; per-game
    scores must name a winner.
    """
    if points_scored is None or len(points_scored) != 2:
        raise ValidationError("A points score needs exactly two values")
    a, b = points_scored
    if any(not isinstance(p, int) or p < 0 for p in (a, b)):
        raise ValidationError(f"Invalid points score {points_scored}")
    if scoring_mode not in SCORING_MODES:
        raise ValidationError(f"Unknown scoring mode '{scoring_mode}'")

    if scoring_mode == 'per-game':
        if a == b:
            raise ValidationError("Per-game scoring needs a winner")
    else:
        total = total_points if total_points is not None else total_points_for(scoring_mode)
        if total is None:
            raise ValidationError(f"Scoring mode '{scoring_mode}' needs a total")
        if a + b != total:
            raise ValidationError(f"Points {a}+{b} must add up to {total}")
    return Resolution((a, b), COMPLETE, f"{a}-{b}")


def match_winner(match: Match) -> Optional[int]:
    """1 or 2 for the winning side, None for a draw or an unfinished match."""
    if not match.is_finished():
        return None
    p1, p2 = match.points
    if p1 > p2:
        return 1
    if p2 > p1:
        return 2
    return None


def decisive_winner(match: Match) -> Optional[int]:
    """Like match_winner, but a level result goes to side 1 so a ladder can always advance."""
    if not match.is_finished():
        return None
    p1, p2 = match.points
    return 2 if p2 > p1 else 1


def score_match(match: Match, config, score: Optional[Score] = None, force_draw: bool = False,
                correction: bool = False) -> Resolution:
    """
    Resolve and record a result on a match according to the ranking config.

    score defaults to the raw payload already attached to the match. A finished
    match is only re-scored when correction is True.
    """
    if not match.pair1.players or not match.pair2.players:
        raise ValidationError(f"Match {match.id} is still waiting for its participants")
    score = score if score is not None else match.score
    if score is None and not force_draw:
        raise ValidationError(f"Match {match.id} has no score to resolve")
    score = score or Score()

    if config.uses_sets:
        resolution = resolve_set_score(
            score, config.points,
            individual=config.format == INDIVIDUAL,
            force_draw=force_draw,
        )
        knockout = config.format == ELIMINATION or match.round_name is not None
        if knockout and resolution.points[0] == resolution.points[1]:
            raise ValidationError("Knockout matches need a winner")
    else:
        if force_draw:
            raise ValidationError("Point-based matches cannot be declared drawn")
        options = config.format_config
        resolution = resolve_points_score(
            score.points_scored, options.scoring_mode,
            total_points_for(options.scoring_mode, options.custom_points),
        )

    score.finalization_type = resolution.finalization_type
    score.description = resolution.description
    if correction:
        match.correct_result(score, resolution.points)
        logger.info("Corrected match %s to %s", match.id, resolution.points)
    else:
        match.record_result(score, resolution.points)
    return resolution
