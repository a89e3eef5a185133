"""
Unit tests for ranking configuration and the config builder.
"""
import pytest

from competition.config import (
    DEFAULT_FORMAT_CONFIGS, DEFAULT_TIEBREAKS, DIRECT_ENCOUNTER, GAME_DIFF, MATCHES_WON, POINTS,
    RANDOM, SET_DIFF, AmericanoConfig, ClassicConfig, PozoConfig, RankingConfigBuilder,
    add_tiebreak, config_from_dict, config_to_dict, dump_config, load_config, remove_tiebreak,
    reorder_tiebreaks, require_format_config, total_points_for,
)
from competition.errors import ConfigurationError, ValidationError


class TestDefaults:
    """Tests for the defaults tables."""

    def test_every_format_has_defaults(self):
        """Test each format has both a default config and a default tie-break order."""
        assert set(DEFAULT_FORMAT_CONFIGS) == set(DEFAULT_TIEBREAKS)

    def test_set_based_tiebreaks(self):
        """Test set-based formats default to points, set and game differentials."""
        assert DEFAULT_TIEBREAKS['classic'][:3] == (POINTS, SET_DIFF, GAME_DIFF)

    def test_point_based_tiebreaks(self):
        """Test point-based formats default to points, wins, game differential."""
        assert DEFAULT_TIEBREAKS['americano'] == (POINTS, MATCHES_WON, GAME_DIFF)

    def test_default_point_table(self):
        """Test the default point table is 4/3/2/1/0."""
        points = ClassicConfig().points
        assert (points.win_2_0, points.win_2_1, points.draw, points.loss_1_2, points.loss_0_2) == (4, 3, 2, 1, 0)


class TestBuilder:
    """Tests for RankingConfigBuilder."""

    def test_builder_is_immutable(self):
        """Test with_* returns a new builder and leaves the original untouched."""
        base = RankingConfigBuilder('americano')
        staged = base.with_courts(3)
        assert base.build().num_courts == 2
        assert staged.build().num_courts == 3

    def test_custom_points(self):
        """Test overriding part of the point table."""
        config = RankingConfigBuilder('classic').with_points(win_2_0=5).build()
        assert config.points.win_2_0 == 5
        assert config.points.win_2_1 == 3

    def test_unknown_option_rejected(self):
        """Test an option the format does not have fails at build time."""
        with pytest.raises(ValidationError):
            RankingConfigBuilder('classic').with_options(num_courts=2).build()

    def test_unknown_format_rejected(self):
        """Test an unknown format name is rejected."""
        with pytest.raises(ValidationError):
            RankingConfigBuilder('squash')

    def test_switching_format_drops_options(self):
        """Test with_format discards options of the previous format."""
        config = RankingConfigBuilder('americano').with_courts(5).with_format('classic').build()
        assert isinstance(config.format_config, ClassicConfig)

    def test_custom_scoring_needs_total(self):
        """Test custom scoring without a total is invalid."""
        with pytest.raises(ValidationError):
            RankingConfigBuilder('mexicano').with_options(scoring_mode='custom').build()

    def test_zero_courts_rejected(self):
        """Test at least one court is required."""
        with pytest.raises(ValidationError):
            RankingConfigBuilder('pozo').with_courts(0).build()

    def test_promotion_counts(self):
        """Test promotion and relegation counts are carried into the config."""
        config = RankingConfigBuilder('classic').with_promotion(1, 3).build()
        assert (config.promotion_count, config.relegation_count) == (1, 3)

    def test_unknown_division_size_policy(self):
        """Test only warn and strict are accepted."""
        with pytest.raises(ValidationError):
            RankingConfigBuilder('classic').with_division_size_policy('ignore').build()


class TestTiebreakEdits:
    """Tests for editing the tie-break list."""

    def test_reorder(self):
        """Test reordering keeps the same criteria."""
        config = RankingConfigBuilder('americano').build()
        reordered = reorder_tiebreaks(config, [GAME_DIFF, POINTS, MATCHES_WON])
        assert reordered.tiebreaks == (GAME_DIFF, POINTS, MATCHES_WON)
        assert config.tiebreaks == (POINTS, MATCHES_WON, GAME_DIFF)

    def test_reorder_with_other_criteria_rejected(self):
        """Test a reorder cannot add or drop criteria."""
        config = RankingConfigBuilder('americano').build()
        with pytest.raises(ValidationError):
            reorder_tiebreaks(config, [POINTS, MATCHES_WON])

    def test_add_at_position(self):
        """Test adding a criterion at a given position."""
        config = add_tiebreak(RankingConfigBuilder('americano').build(), DIRECT_ENCOUNTER, 1)
        assert config.tiebreaks[1] == DIRECT_ENCOUNTER

    def test_add_duplicate_rejected(self):
        """Test adding a criterion twice fails."""
        with pytest.raises(ValidationError):
            add_tiebreak(RankingConfigBuilder('americano').build(), POINTS)

    def test_add_unknown_rejected(self):
        """Test adding an unknown criterion fails."""
        with pytest.raises(ValidationError):
            add_tiebreak(RankingConfigBuilder('americano').build(), 'height')

    def test_remove_last_rejected(self):
        """Test the last criterion cannot be removed."""
        config = RankingConfigBuilder('classic').with_tiebreaks(RANDOM).build()
        with pytest.raises(ValidationError):
            remove_tiebreak(config, RANDOM)

    def test_remove(self):
        """Test removing a configured criterion."""
        config = remove_tiebreak(RankingConfigBuilder('americano').build(), MATCHES_WON)
        assert config.tiebreaks == (POINTS, GAME_DIFF)


class TestFormatConfigAccess:
    """Tests for require_format_config."""

    def test_matching_block_returned(self):
        """Test the format block is returned when it matches."""
        config = RankingConfigBuilder('pozo').build()
        assert isinstance(require_format_config(config, PozoConfig), PozoConfig)

    def test_mismatched_block_is_configuration_error(self):
        """Test asking for the wrong block is a configuration error."""
        config = RankingConfigBuilder('classic').build()
        with pytest.raises(ConfigurationError):
            require_format_config(config, AmericanoConfig)

    def test_missing_block_is_configuration_error(self):
        """Test a missing block is a configuration error."""
        with pytest.raises(ConfigurationError):
            require_format_config(None, PozoConfig)


class TestSerialization:
    """Tests for dict and YAML conversion."""

    def test_total_points(self):
        """Test fixed totals per scoring mode."""
        assert total_points_for('24') == 24
        assert total_points_for('custom', 40) == 40
        assert total_points_for('per-game') is None

    def test_absent_fields_use_defaults(self):
        """Test a bare format falls back to the defaults table."""
        config = config_from_dict({'format': 'pozo'})
        assert config.format_config == DEFAULT_FORMAT_CONFIGS['pozo']
        assert config.tiebreaks == DEFAULT_TIEBREAKS['pozo']

    def test_missing_format_rejected(self):
        """Test a config dict needs a format."""
        with pytest.raises(ValidationError):
            config_from_dict({'options': {}})

    def test_dict_round_trip(self):
        """Test a customized config survives to_dict/from_dict."""
        config = (RankingConfigBuilder('hybrid')
                  .with_options(pairs_per_group=3, qualifiers_per_group=1)
                  .with_points(draw=1)
                  .with_tiebreaks(POINTS, DIRECT_ENCOUNTER, RANDOM)
                  .build())
        assert config_from_dict(config_to_dict(config)) == config

    def test_yaml_file_round_trip(self, tmp_path):
        """Test dumping to and loading from a YAML file."""
        config = RankingConfigBuilder('americano').with_options(scoring_mode='32', variant='fixed-pairs').build()
        path = str(tmp_path / 'config.yaml')
        dump_config(config, path)
        assert load_config(path) == config
