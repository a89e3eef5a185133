"""
Phase transitions: promotion and relegation between divisions, manual
overrides, and the group-to-playoff step of hybrid competitions.
"""
import copy
import logging
import random
from typing import Dict, Iterable, List, Optional, Tuple

from competition.config import HYBRID, HybridConfig, RankingConfig, require_format_config
from competition.elimination import generate_bracket
from competition.errors import ValidationError
from competition.generators import generate_for_format
from competition.models import (
    CONSOLATION, GROUP_STAGE, Division, Movement, Ranking, StandingRow,
)
from competition.standings import division_standings, ladder_offset

logger = logging.getLogger(__name__)


class DivisionSizeWarning:
    """A destination division whose size does not fit the format. Reported, not raised."""

    def __init__(self, division, size, expected=None, reason=None):
        self.division = division
        self.size = size
        self.expected = expected
        self.reason = reason

    @property
    def message(self):
        if self.reason:
            return f"Division {self.division} ({self.size} participants): {self.reason}"
        return f"Division {self.division} has {self.size} participants, expected {self.expected}"

    def to_dict(self):
        return {
            'division': self.division,
            'size': self.size,
            'expected': self.expected,
            'message': self.message,
        }

    def __repr__(self):
        return f"DivisionSizeWarning({self.message})"


def compute_movements(standings_by_division: Dict[int, List[StandingRow]], promotion_count: int,
                      relegation_count: int, retired: Iterable[str] = ()) -> List[Movement]:
    """
    Apply the default promotion/relegation rule.

    The top promotion_count of division N go to N-1 and the bottom
    relegation_count go to N+1; everyone else stays. The highest division
    keeps its promotion zone and the lowest its relegation zone. Where the
    zones overlap in a small division, promotion wins. Retired participants
    get no movement.
    """
    if promotion_count < 0 or relegation_count < 0:
        raise ValidationError("Promotion and relegation counts cannot be negative")
    retired = set(retired)
    numbers = sorted(standings_by_division)
    if not numbers:
        return []
    top, bottom = numbers[0], numbers[-1]

    movements = []
    for number in numbers:
        rows = [r for r in standings_by_division[number] if r.participant_id not in retired]
        size = len(rows)
        for index, row in enumerate(rows):
            if index < promotion_count and number != top:
                destination = number - 1
            elif index >= size - relegation_count and number != bottom:
                destination = number + 1
            else:
                destination = number
            movements.append(Movement(row.participant_id, number, destination))
    return movements


class MovementPlan:
    """
    Computed movements with a separate layer of manual overrides.

    The computed movements are never modified; overrides only replace the
    destination and can be cleared to fall back to the computed one.
    """

    def __init__(self, computed: List[Movement]):
        self._computed = {m.participant_id: m for m in computed}
        self._order = [m.participant_id for m in computed]
        self._overrides: Dict[str, int] = {}

    @property
    def computed(self) -> List[Movement]:
        return [self._computed[p] for p in self._order]

    @property
    def overrides(self) -> Dict[str, int]:
        return dict(self._overrides)

    def override(self, participant: str, division: int):
        if participant not in self._computed:
            raise ValidationError(f"{participant} has no movement to override")
        if not isinstance(division, int) or division < 1:
            raise ValidationError(f"Invalid destination division {division!r}")
        self._overrides[participant] = division
        logger.info("Override: %s to division %d", participant, division)

    def clear_override(self, participant: str):
        if participant not in self._computed:
            raise ValidationError(f"{participant} has no movement")
        self._overrides.pop(participant, None)

    def clear_overrides(self):
        self._overrides.clear()

    @property
    def movements(self) -> List[Movement]:
        result = []
        for participant in self._order:
            base = self._computed[participant]
            if participant in self._overrides:
                result.append(Movement(participant, base.from_division, self._overrides[participant],
                                       overridden=True))
            else:
                result.append(base)
        return result

    def destinations(self) -> Dict[int, List[str]]:
        """Participants per destination division, in movement order."""
        result: Dict[int, List[str]] = {}
        for movement in self.movements:
            result.setdefault(movement.to_division, []).append(movement.participant_id)
        return dict(sorted(result.items()))

    def to_dict(self):
        return {
            'movements': [m.to_dict() for m in self.movements],
            'computed': [m.to_dict() for m in self.computed],
            'overrides': self.overrides,
        }

    @classmethod
    def from_dict(cls, data):
        plan = cls([Movement(m['participant_id'], m['from_division'], m['to_division'], m.get('kind'))
                    for m in data.get('computed', [])])
        for participant, division in (data.get('overrides') or {}).items():
            plan.override(participant, division)
        return plan

    def __repr__(self):
        return f"MovementPlan(movements={len(self._order)}, overrides={len(self._overrides)})"


def validate_destinations(plan: MovementPlan, expected_size: Optional[int]) -> List[DivisionSizeWarning]:
    """Warn about every destination division whose size differs from expected_size."""
    if expected_size is None:
        return []
    warnings = []
    for number, participants in plan.destinations().items():
        if len(participants) != expected_size:
            warnings.append(DivisionSizeWarning(number, len(participants), expected_size))
    return warnings


def plan_transition(ranking: Ranking) -> MovementPlan:
    """Compute the default movement plan from the current standings of every division."""
    standings = {}
    retired = []
    for division in ranking.sorted_divisions():
        standings[division.number] = division_standings(division, ranking)
        retired.extend(division.retired_players)
    config = ranking.config
    return MovementPlan(compute_movements(standings, config.promotion_count,
                                          config.relegation_count, retired))


def confirm_transition(plan: MovementPlan, config: RankingConfig, strict: Optional[bool] = None,
                       rng: Optional[random.Random] = None) -> Tuple[List[Division], List[DivisionSizeWarning]]:
    """
    Materialize the next phase's divisions from a movement plan.

    With the warn policy a mis-sized division is still created (without
    matches when the format cannot schedule it) and reported. With the strict
    policy any mis-sized division raises ValidationError.

    Returns:
        (new divisions, warnings)
    """
    if strict is None:
        strict = config.division_size_policy == 'strict'
    expected = config.format_config.expected_size
    warnings = validate_destinations(plan, expected)
    if strict and warnings:
        raise ValidationError(
            "Division sizes do not fit the format: " + "; ".join(w.message for w in warnings)
        )

    divisions = []
    for number, participants in plan.destinations().items():
        try:
            matches = generate_for_format(config, participants, number, rng)
        except ValidationError as e:
            if strict:
                raise
            if not any(w.division == number for w in warnings):
                warnings.append(DivisionSizeWarning(number, len(participants), expected, str(e)))
            matches = []
        divisions.append(Division(number, players=participants, matches=matches))

    for warning in warnings:
        logger.warning(warning.message)
    return divisions, warnings


def close_phase(ranking: Ranking, plan: MovementPlan, strict: Optional[bool] = None,
                rng: Optional[random.Random] = None) -> Tuple[Ranking, List[DivisionSizeWarning]]:
    """
    Close the current phase: snapshot ladder-wide positions, move its
    matches to history and replace the divisions with the next phase's.

    Returns:
        (updated copy of the ranking, warnings)
    """
    divisions, warnings = confirm_transition(plan, ranking.config, strict=strict, rng=rng)
    closed = copy.deepcopy(ranking)
    snapshot = {}
    for division in closed.sorted_divisions():
        offset = ladder_offset(division, closed)
        for row in division_standings(division, closed):
            snapshot[row.participant_id] = offset + row.position
        closed.history.extend(division.matches)
    closed.previous_positions = snapshot
    closed.divisions = divisions
    return closed, warnings


def hybrid_qualifiers(group_standings: List[List[StandingRow]], config) -> Tuple[List[str], List[str]]:
    """
    Seed qualifiers position-first across groups: every group winner, then
    every runner-up, and so on, groups taken in order.

    Returns:
        (main draw entries, consolation draw entries) in seed order.
    """
    hybrid = require_format_config(config, HybridConfig)
    main, consolation = [], []
    last = hybrid.qualifiers_per_group + hybrid.consolation_qualifiers_per_group
    for position in range(last):
        for rows in group_standings:
            if position >= len(rows):
                continue
            if position < hybrid.qualifiers_per_group:
                main.append(rows[position].participant_id)
            else:
                consolation.append(rows[position].participant_id)
    return main, consolation


def build_playoffs(ranking: Ranking, rng: Optional[random.Random] = None) -> List[Division]:
    """Create the playoff draws of a hybrid ranking once its group stage is complete."""
    if ranking.format != HYBRID:
        raise ValidationError(f"Playoffs are built from hybrid group stages, not '{ranking.format}'")
    hybrid = require_format_config(ranking.config, HybridConfig)
    groups = [d for d in ranking.sorted_divisions() if d.stage == GROUP_STAGE]
    if not groups:
        raise ValidationError("No group stage to build playoffs from")
    unfinished = [d.name or d.number for d in groups
                  if any(not m.is_finished() for m in d.matches)]
    if unfinished:
        raise ValidationError(f"Group stage not complete: {unfinished}")

    main, consolation = hybrid_qualifiers([division_standings(d, ranking) for d in groups], ranking.config)
    next_number = max(d.number for d in ranking.divisions) + 1
    playoffs = generate_bracket(main, third_place=hybrid.third_place_match, rng=rng)
    for division in playoffs:
        division.number = next_number
        next_number += 1
    if len(consolation) >= 2:
        draw = generate_bracket(consolation, rng=rng)[0]
        draw.number = next_number
        draw.name = "Consolation Draw"
        draw.kind = CONSOLATION
        playoffs.append(draw)
    elif consolation:
        logger.warning("Only %d consolation qualifier(s); no consolation draw", len(consolation))
    return playoffs
