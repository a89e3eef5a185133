"""
Standings: aggregate finished matches into rows and order them with a
configurable tie-break cascade.
"""
import logging
import random
from typing import Dict, List, Optional, Sequence

from competition.config import (
    DIRECT_ENCOUNTER, ELIMINATION, HYBRID, PAIRS, RANDOM, VARIANT_FIXED_PAIRS,
)
from competition.models import (
    DOWN, UP, Division, ManualAdjustment, Match, Player, Ranking, StandingRow,
)
from competition.scoring import match_winner

logger = logging.getLogger(__name__)


def uses_pair_keys(config) -> bool:
    """Pair formats rank pairs ("p1::p2"), the others rank individual players."""
    if config.format in (PAIRS, HYBRID, ELIMINATION):
        return True
    return getattr(config.format_config, 'variant', None) == VARIANT_FIXED_PAIRS


def _keys(pair) -> List[str]:
    return [pair.key] if pair.players else []


def _sides(match: Match, pair_mode: bool):
    if pair_mode:
        return _keys(match.pair1), _keys(match.pair2)
    return list(match.pair1.players), list(match.pair2.players)


def _participants_from_matches(matches: List[Match], pair_mode: bool) -> List[str]:
    seen = []
    for match in matches:
        side1, side2 = _sides(match, pair_mode)
        for participant in side1 + side2:
            if participant not in seen:
                seen.append(participant)
    return seen


def apply_adjustment(row: StandingRow, adjustment: Optional[ManualAdjustment]) -> StandingRow:
    """Add a manual adjustment on top of computed values; the delta is kept on the row."""
    if adjustment is None or adjustment.is_empty():
        return row
    row.points += adjustment.points
    row.matches_played += adjustment.matches_played
    row.matches_won += adjustment.matches_won
    row.sets_won += adjustment.sets_won
    row.set_diff += adjustment.set_diff
    row.games_won += adjustment.games_won
    row.game_diff += adjustment.game_diff
    row.adjustment = adjustment
    return row


def _aggregate(matches: List[Match], participants: Sequence[str], pair_mode: bool) -> Dict[str, StandingRow]:
    rows = {p: StandingRow(p) for p in participants}
    for match in matches:
        if not match.is_finished():
            continue
        winner = match_winner(match)
        side1, side2 = _sides(match, pair_mode)
        for side, ids in ((1, side1), (2, side2)):
            own, other = (0, 1) if side == 1 else (1, 0)
            for participant in ids:
                row = rows.get(participant)
                if row is None:
                    continue
                row.matches_played += 1
                row.points += match.points[own]
                if winner == side:
                    row.matches_won += 1
                elif winner is not None:
                    row.matches_lost += 1
                score = match.score
                if score is None:
                    continue
                for games in score.sets:
                    row.games_won += games[own]
                    row.games_lost += games[other]
                    if games[own] > games[other]:
                        row.sets_won += 1
                    elif games[other] > games[own]:
                        row.sets_lost += 1
                if score.points_scored is not None:
                    row.games_won += score.points_scored[own]
                    row.games_lost += score.points_scored[other]
    for row in rows.values():
        row.set_diff = row.sets_won - row.sets_lost
        row.game_diff = row.games_won - row.games_lost
    return rows


def head_to_head(a: str, b: str, matches: List[Match]) -> Optional[str]:
    """Return whichever of a and b won more of their finished meetings, None if level or unmet."""
    wins = {a: 0, b: 0}
    for match in matches:
        side_a, side_b = match.side_of(a), match.side_of(b)
        if side_a is None or side_b is None or side_a == side_b:
            continue
        winner = match_winner(match)
        if winner == side_a:
            wins[a] += 1
        elif winner == side_b:
            wins[b] += 1
    if wins[a] > wins[b]:
        return a
    if wins[b] > wins[a]:
        return b
    return None


def _order(rows: List[StandingRow], criteria: Sequence[str], matches: List[Match], seed) -> List[StandingRow]:
    """Sort by the first criterion, then resolve each tied group with the remaining ones."""
    if len(rows) <= 1 or not criteria:
        return rows
    criterion, rest = criteria[0], criteria[1:]

    if criterion == DIRECT_ENCOUNTER:
        if len(rows) == 2:
            first, second = rows
            winner = head_to_head(first.participant_id, second.participant_id, matches)
            if winner == second.participant_id:
                return [second, first]
            if winner == first.participant_id:
                return rows
        return _order(rows, rest, matches, seed)

    if criterion == RANDOM:
        ids = sorted(r.participant_id for r in rows)
        shuffled = list(rows)
        random.Random(f"{seed}:{'|'.join(ids)}").shuffle(shuffled)
        logger.debug("Coin-flip tie-break between %s", ids)
        return shuffled

    ranked = sorted(rows, key=lambda r: getattr(r, criterion), reverse=True)
    result, group = [], [ranked[0]]
    for row in ranked[1:]:
        if getattr(row, criterion) == getattr(group[0], criterion):
            group.append(row)
        else:
            result.extend(_order(group, rest, matches, seed))
            group = [row]
    result.extend(_order(group, rest, matches, seed))
    return result


def trend(position: int, previous: Optional[int]) -> Optional[str]:
    if previous is None:
        return None
    if position < previous:
        return UP
    if position > previous:
        return DOWN
    return 'same'


def calculate_standings(matches: List[Match], participants: Optional[Sequence[str]], config,
                        adjustments: Optional[Dict[str, ManualAdjustment]] = None,
                        previous_positions: Optional[Dict[str, int]] = None,
                        seed=None, position_offset: int = 0) -> List[StandingRow]:
    """
    Compute ordered standings for one set of matches.

    Only finished matches count. Manual adjustments are added after
    aggregation. Rows are ordered by config.tiebreaks; the random criterion,
    wherever it is listed, only decides ties every other criterion left, and
    remaining ties keep participant order.

    Trend compares position_offset + position with previous_positions, so a
    division can be measured against ladder-wide positions of the last phase.

    Returns:
        StandingRows with positions 1..n.
    """
    pair_mode = uses_pair_keys(config)
    if participants is None:
        participants = _participants_from_matches(matches, pair_mode)
    participants = list(dict.fromkeys(participants))
    rows = _aggregate(matches, participants, pair_mode)
    for participant, adjustment in (adjustments or {}).items():
        if participant in rows:
            apply_adjustment(rows[participant], adjustment)

    criteria = [c for c in config.tiebreaks if c != RANDOM]
    if RANDOM in config.tiebreaks:
        criteria.append(RANDOM)
    if seed is None:
        seed = '|'.join(sorted(participants))

    ordered = _order([rows[p] for p in participants], criteria, matches, seed)
    previous_positions = previous_positions or {}
    for position, row in enumerate(ordered, start=1):
        row.position = position
        row.trend = trend(position_offset + position, previous_positions.get(row.participant_id))
    return ordered


def ladder_offset(division: Division, ranking: Ranking) -> int:
    """Number of participants placed above this division on the ladder."""
    return sum(len(d.players) for d in ranking.divisions
               if d.stage == division.stage and d.number < division.number)


def division_standings(division: Division, ranking: Ranking) -> List[StandingRow]:
    return calculate_standings(
        division.matches, division.players, ranking.config,
        adjustments=ranking.adjustments,
        previous_positions=ranking.previous_positions,
        position_offset=ladder_offset(division, ranking),
    )


def calculate_global_standings(ranking: Ranking) -> List[StandingRow]:
    """Standings over every division plus the matches of closed phases."""
    pair_mode = uses_pair_keys(ranking.config)
    matches, participants = [], []
    for division in ranking.sorted_divisions():
        matches.extend(division.matches)
        for player in division.players:
            if player not in participants:
                participants.append(player)
    matches.extend(ranking.history)
    for participant in _participants_from_matches(ranking.history, pair_mode):
        if participant not in participants:
            participants.append(participant)
    return calculate_standings(matches, participants, ranking.config, adjustments=ranking.adjustments)


def update_player_stats(players: Dict[str, Player], rankings: List[Ranking]) -> Dict[str, Player]:
    """Recompute lifetime match statistics of players from the given rankings."""
    totals = {pid: {'matches_played': 0, 'matches_won': 0, 'matches_lost': 0} for pid in players}
    for ranking in rankings:
        matches = [m for d in ranking.divisions for m in d.matches] + list(ranking.history)
        for match in matches:
            if not match.is_finished():
                continue
            winner = match_winner(match)
            for side, pair in ((1, match.pair1), (2, match.pair2)):
                for pid in pair.players:
                    stats = totals.get(pid)
                    if stats is None:
                        continue
                    stats['matches_played'] += 1
                    if winner == side:
                        stats['matches_won'] += 1
                    elif winner is not None:
                        stats['matches_lost'] += 1
    for pid, stats in totals.items():
        played = stats['matches_played']
        stats['win_rate'] = round(stats['matches_won'] * 100 / played, 1) if played else 0
        players[pid].stats.update(stats)
    return players
