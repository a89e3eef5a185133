"""
Unit tests for score resolution.
"""
import pytest

from competition.config import PointTable, RankingConfigBuilder
from competition.errors import ResultLockedError, ValidationError
from competition.models import FINISHED, Match, Pair, Score
from competition.scoring import (
    AGREED_DRAW, COMPLETE, INCOMPLETE_LOSS, INCOMPLETE_WIN, MARGIN_DRAW, count_sets,
    decisive_winner, match_winner, resolve_points_score, resolve_set_score, score_match,
)

POINTS = PointTable()


def _match():
    return Match(1, Pair('ana', 'bea'), Pair('carla', 'dora'))


class TestSetScores:
    """Tests for set-based resolution."""

    def test_count_sets(self):
        """Test counting sets won by each side."""
        assert count_sets([(6, 3), (4, 6), (7, 5)]) == (2, 1)

    def test_straight_sets_win(self):
        """Test a 2-0 awards 4 and 0."""
        result = resolve_set_score(Score(sets=[(6, 3), (6, 4)]), POINTS)
        assert result.points == (4, 0)
        assert result.finalization_type == COMPLETE

    def test_three_set_loss(self):
        """Test a 1-2 awards 1 and 3."""
        result = resolve_set_score(Score(sets=[(6, 3), (3, 6), (4, 6)]), POINTS)
        assert result.points == (1, 3)

    def test_split_sets_draw(self):
        """Test a 1-1 is a draw."""
        assert resolve_set_score(Score(sets=[(6, 3), (3, 6)]), POINTS).points == (2, 2)

    def test_first_set_needs_winner(self):
        """Test a level first set is rejected."""
        with pytest.raises(ValidationError):
            resolve_set_score(Score(sets=[(5, 5), (6, 3)]), POINTS)

    def test_invalid_set_values(self):
        """Test negative games are rejected."""
        with pytest.raises(ValidationError):
            resolve_set_score(Score(sets=[(6, -1)]), POINTS)

    def test_forced_draw(self):
        """Test an agreed draw awards the draw points to both sides."""
        result = resolve_set_score(Score(), POINTS, force_draw=True)
        assert result.points == (2, 2)
        assert result.finalization_type == AGREED_DRAW


class TestIncompleteMatches:
    """Tests for matches stopped during set 2."""

    def test_set_one_winner_takes_match(self):
        """Test the set-1 winner takes the 2-0 points."""
        score = Score(sets=[(6, 4), (3, 2)], is_incomplete=True)
        result = resolve_set_score(score, POINTS)
        assert result.points == (4, 0)
        assert result.finalization_type == INCOMPLETE_WIN

    def test_set_one_loser_side_two(self):
        """Test side 2 winning set 1 is an incomplete loss for side 1."""
        score = Score(sets=[(4, 6), (2, 3)], is_incomplete=True)
        result = resolve_set_score(score, POINTS)
        assert result.points == (0, 4)
        assert result.finalization_type == INCOMPLETE_LOSS

    def test_comeback_margin_is_draw(self):
        """Test a set-1 loser leading set 2 by 3 games earns a draw."""
        score = Score(sets=[(6, 4), (1, 4)], is_incomplete=True)
        result = resolve_set_score(score, POINTS)
        assert result.points == (2, 2)
        assert result.finalization_type == MARGIN_DRAW

    def test_lead_of_two_not_enough(self):
        """Test a 2-game lead in set 2 is not a draw."""
        score = Score(sets=[(6, 4), (2, 4)], is_incomplete=True)
        assert resolve_set_score(score, POINTS).finalization_type == INCOMPLETE_WIN

    def test_set_two_required(self):
        """Test an incomplete match needs a set 2 score."""
        with pytest.raises(ValidationError):
            resolve_set_score(Score(sets=[(6, 4)], is_incomplete=True), POINTS)


class TestIndividualLeagueScores:
    """Tests for individual league special cases."""

    def test_single_set_counts_as_straight_win(self):
        """Test one set decides the match as a 2-0."""
        result = resolve_set_score(Score(sets=[(6, 2)]), POINTS, individual=True)
        assert result.points == (4, 0)

    def test_two_split_sets_draw(self):
        """Test two split sets are a draw."""
        result = resolve_set_score(Score(sets=[(6, 2), (2, 6)]), POINTS, individual=True)
        assert result.points == (2, 2)

    def test_level_second_set_rejected(self):
        """Test a level second set is rejected with a message naming the set."""
        with pytest.raises(ValidationError, match="Set 2 is level"):
            resolve_set_score(Score(sets=[(6, 4), (5, 5)]), POINTS, individual=True)


class TestLevelSets:
    """Tests for level sets outside the first set."""

    def test_complete_match_rejects_level_set(self):
        """Test a finished match cannot contain a level set."""
        with pytest.raises(ValidationError, match="Set 2 is level"):
            resolve_set_score(Score(sets=[(6, 4), (5, 5)]), POINTS)

    def test_incomplete_match_may_stop_level(self):
        """Test an unfinished match may stop on a level second set."""
        result = resolve_set_score(Score(sets=[(6, 4), (3, 3)], is_incomplete=True), POINTS)
        assert result.finalization_type == INCOMPLETE_WIN


class TestPointScores:
    """Tests for fixed-total and per-game resolution."""

    def test_fixed_total_accepted(self):
        """Test 15-9 in the 24 mode awards 15 and 9."""
        assert resolve_points_score((15, 9), '24').points == (15, 9)

    def test_fixed_total_mismatch(self):
        """Test scores not adding up to the total are rejected."""
        with pytest.raises(ValidationError):
            resolve_points_score((15, 10), '24')

    def test_custom_total(self):
        """Test a custom total is honored."""
        assert resolve_points_score((20, 20), 'custom', 40).points == (20, 20)

    def test_per_game_needs_winner(self):
        """Test per-game scores cannot tie."""
        with pytest.raises(ValidationError):
            resolve_points_score((5, 5), 'per-game')

    def test_per_game_any_total(self):
        """Test per-game scores have no fixed total."""
        assert resolve_points_score((6, 3), 'per-game').points == (6, 3)


class TestWinners:
    """Tests for winner helpers."""

    def test_unfinished_has_no_winner(self):
        """Test pending matches have no winner."""
        assert match_winner(_match()) is None

    def test_draw_has_no_winner(self):
        """Test a drawn match has no winner but a decisive side 1."""
        match = Match(1, Pair('a', 'b'), Pair('c', 'd'), status=FINISHED, points=(2, 2))
        assert match_winner(match) is None
        assert decisive_winner(match) == 1

    def test_side_two_wins(self):
        """Test side 2 wins when it has more points."""
        match = Match(1, Pair('a', 'b'), Pair('c', 'd'), status=FINISHED, points=(9, 15))
        assert match_winner(match) == 2
        assert decisive_winner(match) == 2


class TestScoreMatch:
    """Tests for score_match dispatch."""

    def test_set_format(self):
        """Test a classic match records set-based points."""
        match = _match()
        score_match(match, RankingConfigBuilder('classic').build(), Score(sets=[(6, 1), (6, 1)]))
        assert match.status == FINISHED
        assert match.points == (4, 0)
        assert match.score.description == "Win 2-0"

    def test_point_format(self):
        """Test an americano match records points scored."""
        match = _match()
        score_match(match, RankingConfigBuilder('americano').build(), Score(points_scored=(13, 11)))
        assert match.points == (13, 11)

    def test_point_format_rejects_forced_draw(self):
        """Test point formats cannot be declared drawn."""
        with pytest.raises(ValidationError):
            score_match(_match(), RankingConfigBuilder('americano').build(), force_draw=True)

    def test_knockout_rejects_draw(self):
        """Test bracket matches need a winner."""
        with pytest.raises(ValidationError):
            score_match(_match(), RankingConfigBuilder('elimination').build(), Score(sets=[(6, 3), (3, 6)]))

    def test_rescoring_locked(self):
        """Test a second result without correction is rejected."""
        config = RankingConfigBuilder('classic').build()
        match = _match()
        score_match(match, config, Score(sets=[(6, 1), (6, 1)]))
        with pytest.raises(ResultLockedError):
            score_match(match, config, Score(sets=[(1, 6), (1, 6)]))

    def test_correction(self):
        """Test a correction replaces the result."""
        config = RankingConfigBuilder('classic').build()
        match = _match()
        score_match(match, config, Score(sets=[(6, 1), (6, 1)]))
        score_match(match, config, Score(sets=[(1, 6), (1, 6)]), correction=True)
        assert match.points == (0, 4)

    def test_waiting_slot_rejected(self):
        """Test a bracket match without both participants cannot be scored."""
        match = Match(2, Pair(placeholder='Winner Semifinal 1'), Pair('c', 'd'), round_name='Final')
        with pytest.raises(ValidationError):
            score_match(match, RankingConfigBuilder('elimination').build(), Score(sets=[(6, 1), (6, 1)]))
