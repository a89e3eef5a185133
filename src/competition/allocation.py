import logging
from typing import Dict, List

from competition.errors import ValidationError
from competition.models import Match

logger = logging.getLogger(__name__)


class AllocationManager:
    """Assigns court indices to generated matches, round by round."""

    def __init__(self, num_courts):
        if num_courts < 1:
            raise ValidationError(f"num_courts must be at least 1, got {num_courts}")
        self.num_courts = num_courts
        self.schedule = {court: [] for court in range(1, num_courts + 1)}  # court: [match_id]
        self.warnings = []

    def _pick_court(self, taken):
        # Prioritize courts with fewer matches; lowest number on ties
        free = [c for c in self.schedule if c not in taken]
        return min(free, key=lambda c: (len(self.schedule[c]), c))

    def allocate(self, matches: List[Match]) -> List[str]:
        """Fill match.court for every match, in round order. Returns warnings."""
        rounds: Dict[int, List[Match]] = {}
        for match in matches:
            rounds.setdefault(match.round, []).append(match)

        for round_number in sorted(rounds):
            round_matches = rounds[round_number]
            if len(round_matches) > self.num_courts:
                warning = (f"Round {round_number} has {len(round_matches)} matches for "
                           f"{self.num_courts} court(s); courts are reused in later waves")
                logger.warning(warning)
                self.warnings.append(warning)
            taken = set()
            for match in round_matches:
                if len(taken) == self.num_courts:
                    taken = set()
                court = self._pick_court(taken)
                taken.add(court)
                match.court = court
                self.schedule[court].append(match.id)
        return self.warnings

    def get_schedule_output(self):
        return [{'court': court, 'matches': list(ids)} for court, ids in self.schedule.items()]


def assign_courts(matches: List[Match], num_courts: int) -> List[str]:
    """Assign courts to matches in place. Returns allocation warnings."""
    return AllocationManager(num_courts).allocate(matches)
