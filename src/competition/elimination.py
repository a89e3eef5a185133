"""
Single elimination bracket generation and result propagation.
"""
import copy
import logging
import math
import random
from typing import Dict, List, Optional

from competition.errors import ResultLockedError, ValidationError
from competition.models import (
    BYE, CONSOLATION, FINISHED, MAIN, PLAYOFF_STAGE, Division, Match, Pair, Score,
)
from competition.scoring import BYE_RESULT, match_winner

logger = logging.getLogger(__name__)

THIRD_PLACE = "Third Place"
CONSOLATION_SUFFIX = " (Consolation)"


def get_round_name(rounds_remaining: int) -> str:
    """Get the name of a round from how many rounds remain, the round itself included."""
    if rounds_remaining == 1:
        return "Final"
    elif rounds_remaining == 2:
        return "Semifinal"
    elif rounds_remaining == 3:
        return "Quarterfinal"
    else:
        return f"Round of {2 ** rounds_remaining}"


def calculate_bracket_size(num_participants: int) -> int:
    """Calculate the bracket size (next power of 2)."""
    if num_participants <= 0:
        return 0
    return 2 ** math.ceil(math.log2(num_participants))


def calculate_byes(num_participants: int) -> int:
    """Calculate number of byes needed."""
    return calculate_bracket_size(num_participants) - num_participants


def _generate_bracket_order(bracket_size: int) -> List[int]:
    """
    Generate the standard tournament bracket order.
    This ensures that if all higher seeds win, they meet in the proper rounds.

    For 8 entries: [1, 8, 4, 5, 2, 7, 3, 6]
    This gives matchups: 1v8, 4v5, 2v7, 3v6
    """
    if bracket_size <= 2:
        return list(range(1, bracket_size + 1))

    upper_half = _generate_bracket_order(bracket_size // 2)
    lower_half = [bracket_size + 1 - seed for seed in upper_half]

    # Interleave: pair each upper seed with its complement
    result = []
    for u, l in zip(upper_half, lower_half):
        result.extend([u, l])
    return result


def _entries(participants) -> List[Pair]:
    entries = []
    for participant in participants:
        if isinstance(participant, (list, tuple)):
            entries.append(Pair.coerce(participant))
        elif isinstance(participant, Pair):
            entries.append(Pair(participant.p1, participant.p2))
        else:
            entries.append(Pair.from_key(participant))
    keys = [e.key for e in entries]
    if len(set(keys)) != len(keys):
        raise ValidationError("Duplicate participants in bracket entries")
    if any(e.is_empty() or e.is_bye() for e in entries):
        raise ValidationError("Bracket entries cannot be empty or BYE")
    return entries


def _fill_slot(match: Match, slot: int, pair: Pair):
    if match.is_finished():
        raise ResultLockedError(f"Match {match.id} is already finished")
    other = match.pair2 if slot == 1 else match.pair1
    if set(pair.players) & set(other.players):
        raise ValidationError(f"{pair} is already on the other side of match {match.id}")
    if slot == 1:
        match.pair1 = Pair(pair.p1, pair.p2)
    else:
        match.pair2 = Pair(pair.p1, pair.p2)


def _resolve_bye(match: Match, by_id: Dict[str, Match], slots: Dict[str, int]):
    """Finish a first-round match against a BYE and move the entry on."""
    if match.pair1.is_bye():
        points, winner = (0, 1), match.pair2
    elif match.pair2.is_bye():
        points, winner = (1, 0), match.pair1
    else:
        return
    match.status = FINISHED
    match.score = Score(finalization_type=BYE_RESULT, description='BYE')
    match.points = points
    if match.next_match_id:
        _fill_slot(by_id[match.next_match_id], slots[match.id], winner)


def generate_bracket(participants, consolation: bool = False, third_place: bool = False,
                     seeded: bool = True, rng: Optional[random.Random] = None) -> List[Division]:
    """
    Build a single elimination draw.

    participants are given in seed order (player ids, "p1::p2" keys or pairs).
    Top seeds receive the byes; unseeded draws are shuffled first so byes fall
    randomly. Later rounds hold placeholders until results propagate.

    Returns:
        [main division] or [main division, consolation division] when a
        consolation draw is requested and the bracket has at least 4 slots.
    """
    entries = _entries(participants)
    if len(entries) < 2:
        raise ValidationError(f"A bracket needs at least 2 participants, got {len(entries)}")
    if not seeded:
        (rng or random.Random()).shuffle(entries)

    size = calculate_bracket_size(len(entries))
    total_rounds = int(math.log2(size))
    order = _generate_bracket_order(size)
    by_id: Dict[str, Match] = {}
    slots: Dict[str, int] = {}  # match id: slot it feeds in its next match

    rounds: List[List[Match]] = []
    for r in range(1, total_rounds + 1):
        round_name = get_round_name(total_rounds - r + 1)
        round_matches = []
        for i in range(size // 2 ** r):
            if r == 1:
                seed1, seed2 = order[2 * i], order[2 * i + 1]
                pair1 = entries[seed1 - 1] if seed1 <= len(entries) else Pair(BYE)
                pair2 = entries[seed2 - 1] if seed2 <= len(entries) else Pair(BYE)
            else:
                pair1 = Pair(placeholder=f"Winner {rounds[-1][0].round_name} {2 * i + 1}")
                pair2 = Pair(placeholder=f"Winner {rounds[-1][0].round_name} {2 * i + 2}")
            match = Match(r, pair1, pair2, round_name=round_name)
            round_matches.append(match)
            by_id[match.id] = match
        if rounds:
            for i, previous in enumerate(rounds[-1]):
                previous.next_match_id = round_matches[i // 2].id
                slots[previous.id] = 1 if i % 2 == 0 else 2
        rounds.append(round_matches)

    main = Division(1, players=[e.key for e in entries], name="Main Draw", kind=MAIN,
                    stage=PLAYOFF_STAGE, matches=[m for rnd in rounds for m in rnd])
    divisions = [main]

    if consolation and size >= 4:
        cons_rounds: List[List[Match]] = []
        for r in range(1, total_rounds):
            count = size // 2 ** (r + 1)
            round_name = get_round_name(total_rounds - r) + CONSOLATION_SUFFIX
            round_matches = []
            for i in range(count):
                if r == 1:
                    first, second = "Loser first round", "Loser first round"
                else:
                    first = f"Winner {cons_rounds[-1][0].round_name} {2 * i + 1}"
                    second = f"Winner {cons_rounds[-1][0].round_name} {2 * i + 2}"
                match = Match(r, Pair(placeholder=first), Pair(placeholder=second),
                              round_name=round_name)
                round_matches.append(match)
                by_id[match.id] = match
            if cons_rounds:
                for i, previous in enumerate(cons_rounds[-1]):
                    previous.next_match_id = round_matches[i // 2].id
                    slots[previous.id] = 1 if i % 2 == 0 else 2
            cons_rounds.append(round_matches)
        for i, first_round in enumerate(rounds[0]):
            first_round.consolation_match_id = cons_rounds[0][i // 2].id
        divisions.append(Division(2, name="Consolation Draw", kind=CONSOLATION, stage=PLAYOFF_STAGE,
                                  matches=[m for rnd in cons_rounds for m in rnd]))

    if third_place and total_rounds >= 2:
        semifinals = rounds[-2]
        if semifinals[0].consolation_match_id:
            logger.debug("Consolation final doubles as the third place match")
        else:
            third = Match(total_rounds, Pair(placeholder="Loser Semifinal 1"),
                          Pair(placeholder="Loser Semifinal 2"), round_name=THIRD_PLACE)
            for semifinal in semifinals:
                semifinal.consolation_match_id = third.id
            main.matches.append(third)

    for match in rounds[0]:
        _resolve_bye(match, by_id, slots)

    logger.debug("Generated bracket of size %d for %d entries (%d byes)",
                 size, len(entries), calculate_byes(len(entries)))
    return divisions


def _locate(divisions: List[Division], match_id: str):
    for division in divisions:
        match = division.find_match(match_id)
        if match:
            return division, match
    return None, None


def _feeding_slot(division: Division, match: Match) -> int:
    """Slot (1 or 2) a match feeds downstream, from its position within its round."""
    same_round = [m for m in division.matches
                  if m.round == match.round and m.round_name == match.round_name]
    return 1 if same_round.index(match) % 2 == 0 else 2


def _had_bye(divisions: List[Division], match: Match, pair: Pair) -> bool:
    for division in divisions:
        for previous in division.matches:
            if (previous.next_match_id == match.id and previous.score is not None
                    and previous.score.finalization_type == BYE_RESULT
                    and pair.key in (previous.pair1.key, previous.pair2.key)):
                return True
    return False


def _first_open_consolation_slot(divisions: List[Division]):
    """First empty consolation slot left over by a first-round bye."""
    first_round = [m for d in divisions if d.kind == MAIN for m in d.matches_in_round(1)]
    for index, feeder in enumerate(first_round):
        if feeder.score is None or feeder.score.finalization_type != BYE_RESULT:
            continue
        if not feeder.consolation_match_id:
            continue
        _, target = _locate(divisions, feeder.consolation_match_id)
        slot = 1 if index % 2 == 0 else 2
        if not target.is_finished() and (target.pair1 if slot == 1 else target.pair2).is_empty():
            return target, slot
    return None, None


def _settle_walkover(divisions: List[Division], match: Match):
    """Finish a match whose other slot can never be filled and move the entry on."""
    if match.is_finished():
        return
    if match.pair1.is_bye() and match.pair2.is_bye():
        points, winner = (0, 0), Pair(BYE)
    elif match.pair1.is_bye() and match.pair2.players:
        points, winner = (0, 1), match.pair2
    elif match.pair2.is_bye() and match.pair1.players:
        points, winner = (1, 0), match.pair1
    else:
        return
    match.status = FINISHED
    match.score = Score(finalization_type=BYE_RESULT, description='BYE')
    match.points = points
    if match.next_match_id:
        division, _ = _locate(divisions, match.id)
        _, next_match = _locate(divisions, match.next_match_id)
        _fill_slot(next_match, _feeding_slot(division, match), winner)
        _settle_walkover(divisions, next_match)


def propagate_result(divisions: List[Division], match_id: str) -> List[Division]:
    """
    Move the winner of a finished bracket match on and route its loser.

    A first-round loser goes to the consolation draw; a second-round loser
    whose first round was a bye takes the first open consolation slot;
    semifinal losers go to the third place match when there is one. A
    consolation slot that no loser can reach any more is closed as a bye,
    so its opponent moves on.

    Returns:
        Updated copies of the divisions; the input is left untouched.
    """
    divisions = copy.deepcopy(divisions)
    division, match = _locate(divisions, match_id)
    if match is None:
        raise ValidationError(f"Match {match_id} not found")
    winner = match_winner(match)
    if winner is None:
        raise ValidationError(f"Match {match_id} has no winner yet")
    winning, losing = (match.pair1, match.pair2) if winner == 1 else (match.pair2, match.pair1)

    if match.next_match_id:
        _, next_match = _locate(divisions, match.next_match_id)
        _fill_slot(next_match, _feeding_slot(division, match), winning)
        _settle_walkover(divisions, next_match)

    if losing.is_bye() or not losing.players:
        return divisions

    second_round = match.round == 2 and division.kind == MAIN
    loser_had_bye = second_round and _had_bye(divisions, match, losing)
    bye_loser = loser_had_bye and match.next_match_id is not None

    target, slot = None, None
    if match.consolation_match_id:
        _, target = _locate(divisions, match.consolation_match_id)
        if target.round_name == THIRD_PLACE:
            semifinals = [m for m in division.matches if m.consolation_match_id == target.id]
            slot = semifinals.index(match) + 1
        else:
            slot = _feeding_slot(division, match)
    elif bye_loser:
        target, slot = _first_open_consolation_slot(divisions)
        if target is None:
            logger.warning("No open consolation slot for %s", losing)

    if target is not None:
        _fill_slot(target, slot, losing)
        _settle_walkover(divisions, target)

    # After round 2 a bye holder can no longer drop into the consolation draw
    unplaced = []
    if second_round and _had_bye(divisions, match, winning):
        unplaced.append(winning)
    if loser_had_bye and (target is None or target.round_name == THIRD_PLACE):
        unplaced.append(losing)
    for pair in unplaced:
        open_match, open_slot = _first_open_consolation_slot(divisions)
        if open_match is None:
            break
        logger.debug("Closing consolation slot left open by %s", pair)
        _fill_slot(open_match, open_slot, Pair(BYE))
        _settle_walkover(divisions, open_match)
    return divisions


def final_placings(division: Division) -> Dict[str, Optional[str]]:
    """Champion, runner-up and third place keys of a main draw, None where undecided."""
    placings = {'champion': None, 'runner_up': None, 'third_place': None}
    for match in division.matches:
        winner = match_winner(match)
        if winner is None:
            continue
        winning, losing = (match.pair1, match.pair2) if winner == 1 else (match.pair2, match.pair1)
        if match.round_name == "Final":
            placings['champion'] = winning.key
            placings['runner_up'] = losing.key
        elif match.round_name == THIRD_PLACE:
            placings['third_place'] = winning.key
    return placings
