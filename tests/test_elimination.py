"""
Unit tests for single elimination bracket generation and propagation.
"""
import random

import pytest

from competition.elimination import (
    THIRD_PLACE, _generate_bracket_order, calculate_bracket_size, calculate_byes,
    final_placings, generate_bracket, get_round_name, propagate_result,
)
from competition.errors import ResultLockedError, ValidationError
from competition.models import CONSOLATION, FINISHED, MAIN, PLAYOFF_STAGE, Score
from competition.scoring import BYE_RESULT


def _entries(n):
    return [f"e{i}" for i in range(1, n + 1)]


def _find(divisions, predicate):
    return [m for d in divisions for m in d.matches if predicate(m)]


def _play(divisions, match_id, winner_side=1):
    """Record a 2-0 for winner_side and propagate it."""
    for division in divisions:
        match = division.find_match(match_id)
        if match:
            points = (4, 0) if winner_side == 1 else (0, 4)
            match.record_result(Score(sets=[(6, 1), (6, 1)]), points)
    return propagate_result(divisions, match_id)


def _named(divisions, round_name):
    return _find(divisions, lambda m: m.round_name == round_name)


class TestBracketHelpers:
    """Tests for bracket helper functions."""

    def test_get_round_name(self):
        """Test round names from rounds remaining."""
        assert get_round_name(1) == "Final"
        assert get_round_name(2) == "Semifinal"
        assert get_round_name(3) == "Quarterfinal"
        assert get_round_name(4) == "Round of 16"

    def test_calculate_bracket_size_not_power(self):
        """Test bracket size rounds up to next power of 2."""
        assert calculate_bracket_size(5) == 8
        assert calculate_bracket_size(8) == 8
        assert calculate_bracket_size(9) == 16
        assert calculate_bracket_size(0) == 0

    def test_calculate_byes(self):
        """Test byes fill the bracket."""
        assert calculate_byes(6) == 2
        assert calculate_byes(8) == 0

    def test_bracket_order_8(self):
        """Test standard order for 8 entries: 1v8, 4v5, 2v7, 3v6."""
        assert _generate_bracket_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]


class TestGenerateBracket:
    """Tests for generate_bracket."""

    def test_eight_entries(self):
        """Test 8 entries give quarterfinals, semifinals and a final."""
        main, = generate_bracket(_entries(8))
        assert main.kind == MAIN
        assert main.stage == PLAYOFF_STAGE
        assert len(main.matches) == 7
        assert len(_named([main], "Quarterfinal")) == 4
        assert len(_named([main], "Final")) == 1
        first = main.matches[0]
        assert (first.pair1.key, first.pair2.key) == ('e1', 'e8')

    def test_links_to_next_round(self):
        """Test every non-final match points at its next match."""
        main, = generate_bracket(_entries(8))
        final = _named([main], "Final")[0]
        for match in main.matches:
            if match is final:
                assert match.next_match_id is None
            else:
                assert main.find_match(match.next_match_id) is not None

    def test_byes_auto_advance(self):
        """Test top seeds receive the byes and move straight on."""
        main, = generate_bracket(_entries(6))
        byes = _find([main], lambda m: m.score is not None and m.score.finalization_type == BYE_RESULT)
        assert len(byes) == 2
        assert all(m.status == FINISHED for m in byes)
        semifinals = _named([main], "Semifinal")
        assert semifinals[0].pair1.key == 'e1'
        assert semifinals[1].pair1.key == 'e2'

    def test_later_rounds_hold_placeholders(self):
        """Test unplayed slots describe where their participant comes from."""
        main, = generate_bracket(_entries(8))
        final = _named([main], "Final")[0]
        assert final.pair1.is_empty()
        assert final.pair1.placeholder == "Winner Semifinal 1"
        assert final.pair2.placeholder == "Winner Semifinal 2"

    def test_unseeded_shuffle_is_repeatable(self):
        """Test an unseeded draw with the same rng is identical."""
        first, = generate_bracket(_entries(8), seeded=False, rng=random.Random(4))
        second, = generate_bracket(_entries(8), seeded=False, rng=random.Random(4))
        assert ([(m.pair1.key, m.pair2.key) for m in first.matches[:4]]
                == [(m.pair1.key, m.pair2.key) for m in second.matches[:4]])

    def test_too_few_entries(self):
        """Test a bracket needs two entries."""
        with pytest.raises(ValidationError):
            generate_bracket(['e1'])

    def test_duplicate_entries(self):
        """Test duplicate entries are rejected."""
        with pytest.raises(ValidationError):
            generate_bracket(['e1', 'e2', 'e1'])

    def test_pair_entries(self):
        """Test pairs are keyed p1::p2."""
        main, = generate_bracket([['a', 'b'], ['c', 'd']])
        assert main.players == ['a::b', 'c::d']

    def test_consolation_draw(self):
        """Test a consolation draw halves the first round."""
        main, consolation = generate_bracket(_entries(8), consolation=True)
        assert consolation.kind == CONSOLATION
        assert len(consolation.matches) == 3
        assert all(m.consolation_match_id for m in main.matches_in_round(1))

    def test_third_place_match(self):
        """Test a third place match is added for semifinal losers."""
        main, = generate_bracket(_entries(4), third_place=True)
        third = _named([main], THIRD_PLACE)
        assert len(third) == 1
        assert all(m.consolation_match_id == third[0].id for m in _named([main], "Semifinal"))

    def test_consolation_replaces_third_place_for_four(self):
        """Test with four entries the consolation final already seats the semifinal losers."""
        divisions = generate_bracket(_entries(4), consolation=True, third_place=True)
        assert _named(divisions, THIRD_PLACE) == []
        assert len(divisions[1].matches) == 1


class TestPropagation:
    """Tests for result propagation."""

    def test_winner_advances(self):
        """Test the winner fills the slot of the next match."""
        divisions = generate_bracket(_entries(4))
        semifinal = _named(divisions, "Semifinal")[1]
        divisions = _play(divisions, semifinal.id, winner_side=2)
        final = _named(divisions, "Final")[0]
        assert final.pair2.key == 'e3'

    def test_input_untouched(self):
        """Test propagation works on copies."""
        divisions = generate_bracket(_entries(4))
        semifinal = _named(divisions, "Semifinal")[0]
        _play(divisions, semifinal.id)
        assert _named(divisions, "Final")[0].pair1.is_empty()

    def test_unfinished_rejected(self):
        """Test a match without a winner cannot propagate."""
        divisions = generate_bracket(_entries(4))
        with pytest.raises(ValidationError):
            propagate_result(divisions, _named(divisions, "Semifinal")[0].id)

    def test_first_round_losers_to_consolation(self):
        """Test first round losers fill the consolation draw in order."""
        divisions = generate_bracket(_entries(8), consolation=True)
        for match in list(divisions[0].matches_in_round(1)):
            divisions = _play(divisions, match.id)
        cons = divisions[1].matches_in_round(1)
        assert (cons[0].pair1.key, cons[0].pair2.key) == ('e8', 'e5')
        assert (cons[1].pair1.key, cons[1].pair2.key) == ('e7', 'e6')

    def test_bye_loser_takes_open_consolation_slot(self):
        """Test a seed that had a bye and lost in round 2 drops into the slot the bye left open."""
        divisions = generate_bracket(_entries(6), consolation=True)
        quarterfinal = divisions[0].matches_in_round(1)[1]
        divisions = _play(divisions, quarterfinal.id)
        semifinal = _named(divisions, "Semifinal")[0]
        divisions = _play(divisions, semifinal.id, winner_side=2)
        cons = divisions[1].matches_in_round(1)[0]
        assert cons.pair1.key == 'e1'
        assert cons.pair2.key == 'e5'

    def test_bye_slots_closed_with_third_place(self):
        """Test consolation slots of bye holders are closed once they pass round 2."""
        divisions = generate_bracket(_entries(6), consolation=True, third_place=True)
        for quarterfinal in [m for m in divisions[0].matches_in_round(1) if not m.is_finished()]:
            divisions = _play(divisions, quarterfinal.id)
        first, second = _named(divisions, "Semifinal")
        divisions = _play(divisions, first.id, winner_side=2)
        divisions = _play(divisions, second.id)

        assert _named(divisions, THIRD_PLACE)[0].pair1.key == 'e1'
        opening = divisions[1].matches_in_round(1)
        assert all(m.status == FINISHED for m in opening)
        assert all(m.score.finalization_type == BYE_RESULT for m in opening)
        final = divisions[1].matches_in_round(2)[0]
        assert (final.pair1.key, final.pair2.key) == ('e5', 'e6')

    def test_third_place_and_placings(self):
        """Test semifinal losers meet for third place and placings are reported."""
        divisions = generate_bracket(_entries(4), third_place=True)
        for semifinal in _named(divisions, "Semifinal"):
            divisions = _play(divisions, semifinal.id)
        third = _named(divisions, THIRD_PLACE)[0]
        assert (third.pair1.key, third.pair2.key) == ('e4', 'e3')
        divisions = _play(divisions, _named(divisions, "Final")[0].id)
        divisions = _play(divisions, third.id)
        assert final_placings(divisions[0]) == {'champion': 'e1', 'runner_up': 'e2', 'third_place': 'e4'}

    def test_finished_target_locked(self):
        """Test re-propagating into a finished match is refused."""
        divisions = generate_bracket(_entries(4))
        first, second = _named(divisions, "Semifinal")
        divisions = _play(divisions, first.id)
        divisions = _play(divisions, second.id)
        divisions = _play(divisions, _named(divisions, "Final")[0].id)
        with pytest.raises(ResultLockedError):
            propagate_result(divisions, first.id)

    def test_placings_undecided(self):
        """Test an unplayed draw has no placings."""
        main, = generate_bracket(_entries(4))
        assert final_placings(main) == {'champion': None, 'runner_up': None, 'third_place': None}
