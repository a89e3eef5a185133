"""
Ranking configuration: per-format option blocks, defaults, tie-break criteria
and an immutable builder that produces validated configs.
"""
import dataclasses
from dataclasses import dataclass, field
from typing import ClassVar, Dict, Optional, Tuple

import yaml

from competition.errors import ConfigurationError, ValidationError

CLASSIC = 'classic'
INDIVIDUAL = 'individual'
PAIRS = 'pairs'
AMERICANO = 'americano'
MEXICANO = 'mexicano'
POZO = 'pozo'
HYBRID = 'hybrid'
ELIMINATION = 'elimination'

# Participant variants for rotating formats
VARIANT_INDIVIDUAL = 'individual'
VARIANT_FIXED_PAIRS = 'fixed-pairs'
VARIANTS = (VARIANT_INDIVIDUAL, VARIANT_FIXED_PAIRS)

# Fixed-total scoring modes map to their total; None means no fixed total
SCORING_MODES = {
    '16': 16,
    '21': 21,
    '24': 24,
    '31': 31,
    '32': 32,
    'custom': None,
    'per-game': None,
}

POINTS = 'points'
SET_DIFF = 'set_diff'
GAME_DIFF = 'game_diff'
MATCHES_WON = 'matches_won'
SETS_WON = 'sets_won'
GAMES_WON = 'games_won'
WIN_RATE = 'win_rate'
DIRECT_ENCOUNTER = 'direct_encounter'
RANDOM = 'random'

TIEBREAK_CRITERIA = (
    POINTS, SET_DIFF, GAME_DIFF, MATCHES_WON, SETS_WON, GAMES_WON, WIN_RATE,
    DIRECT_ENCOUNTER, RANDOM,
)

DIVISION_SIZE_POLICIES = ('warn', 'strict')


@dataclass(frozen=True)
class PointTable:
    """Points awarded per set-based outcome, seen from one side of the match."""
    win_2_0: int = 4
    win_2_1: int = 3
    draw: int = 2
    loss_1_2: int = 1
    loss_0_2: int = 0


def _check_scoring_mode(scoring_mode, custom_points):
    if scoring_mode not in SCORING_MODES:
        raise ValidationError(f"Unknown scoring mode '{scoring_mode}', expected one of {sorted(SCORING_MODES)}")
    if scoring_mode == 'custom' and (not custom_points or custom_points <= 0):
        raise ValidationError("Scoring mode 'custom' needs a positive custom_points total")


def _check_courts(num_courts):
    if num_courts < 1:
        raise ValidationError(f"num_courts must be at least 1, got {num_courts}")


def _check_variant(variant):
    if variant not in VARIANTS:
        raise ValidationError(f"Unknown variant '{variant}', expected one of {list(VARIANTS)}")


@dataclass(frozen=True)
class ClassicConfig:
    format: ClassVar[str] = CLASSIC
    expected_size: ClassVar[Optional[int]] = 4
    uses_sets: ClassVar[bool] = True

    points: PointTable = field(default_factory=PointTable)


@dataclass(frozen=True)
class IndividualConfig:
    format: ClassVar[str] = INDIVIDUAL
    expected_size: ClassVar[Optional[int]] = None
    uses_sets: ClassVar[bool] = True

    points: PointTable = field(default_factory=PointTable)
    rounds: Optional[int] = None

    def __post_init__(self):
        if self.rounds is not None and self.rounds < 1:
            raise ValidationError(f"rounds must be at least 1, got {self.rounds}")


@dataclass(frozen=True)
class PairsConfig:
    format: ClassVar[str] = PAIRS
    expected_size: ClassVar[Optional[int]] = None
    uses_sets: ClassVar[bool] = True

    points: PointTable = field(default_factory=PointTable)


@dataclass(frozen=True)
class AmericanoConfig:
    format: ClassVar[str] = AMERICANO
    expected_size: ClassVar[Optional[int]] = None
    uses_sets: ClassVar[bool] = False

    num_courts: int = 2
    scoring_mode: str = '24'
    custom_points: Optional[int] = None
    variant: str = VARIANT_INDIVIDUAL

    def __post_init__(self):
        _check_courts(self.num_courts)
        _check_scoring_mode(self.scoring_mode, self.custom_points)
        _check_variant(self.variant)


@dataclass(frozen=True)
class MexicanoConfig:
    format: ClassVar[str] = MEXICANO
    expected_size: ClassVar[Optional[int]] = None
    uses_sets: ClassVar[bool] = False

    num_courts: int = 2
    scoring_mode: str = '24'
    custom_points: Optional[int] = None

    def __post_init__(self):
        _check_courts(self.num_courts)
        _check_scoring_mode(self.scoring_mode, self.custom_points)


@dataclass(frozen=True)
class PozoConfig:
    format: ClassVar[str] = POZO
    expected_size: ClassVar[Optional[int]] = None
    uses_sets: ClassVar[bool] = False

    variant: str = VARIANT_INDIVIDUAL
    scoring_mode: str = 'per-game'
    custom_points: Optional[int] = None
    num_courts: int = 4
    golden_point: bool = True

    def __post_init__(self):
        _check_courts(self.num_courts)
        _check_scoring_mode(self.scoring_mode, self.custom_points)
        _check_variant(self.variant)


@dataclass(frozen=True)
class HybridConfig:
    format: ClassVar[str] = HYBRID
    expected_size: ClassVar[Optional[int]] = None
    uses_sets: ClassVar[bool] = True

    points: PointTable = field(default_factory=PointTable)
    pairs_per_group: int = 4
    qualifiers_per_group: int = 2
    consolation_qualifiers_per_group: int = 0
    third_place_match: bool = False

    def __post_init__(self):
        if self.pairs_per_group < 2:
            raise ValidationError(f"pairs_per_group must be at least 2, got {self.pairs_per_group}")
        if self.qualifiers_per_group < 1:
            raise ValidationError("qualifiers_per_group must be at least 1")
        if self.qualifiers_per_group + self.consolation_qualifiers_per_group > self.pairs_per_group:
            raise ValidationError("Qualifiers per group exceed the group size")


@dataclass(frozen=True)
class EliminationConfig:
    format: ClassVar[str] = ELIMINATION
    expected_size: ClassVar[Optional[int]] = None
    uses_sets: ClassVar[bool] = True

    points: PointTable = field(default_factory=PointTable)
    consolation: bool = False
    third_place_match: bool = False
    seeded: bool = True


FORMAT_CONFIG_TYPES = {
    cls.format: cls
    for cls in (ClassicConfig, IndividualConfig, PairsConfig, AmericanoConfig,
                MexicanoConfig, PozoConfig, HybridConfig, EliminationConfig)
}

# Single source of defaults consulted whenever a field is absent
DEFAULT_FORMAT_CONFIGS = {name: cls() for name, cls in FORMAT_CONFIG_TYPES.items()}

_SET_BASED_TIEBREAKS = (POINTS, SET_DIFF, GAME_DIFF, GAMES_WON)
_POINT_BASED_TIEBREAKS = (POINTS, MATCHES_WON, GAME_DIFF)

DEFAULT_TIEBREAKS = {
    name: _SET_BASED_TIEBREAKS if cls.uses_sets else _POINT_BASED_TIEBREAKS
    for name, cls in FORMAT_CONFIG_TYPES.items()
}

DEFAULT_PROMOTION_COUNT = 2
DEFAULT_RELEGATION_COUNT = 2


def _check_tiebreaks(tiebreaks):
    if not tiebreaks:
        raise ValidationError("At least one tie-break criterion is required")
    unknown = [c for c in tiebreaks if c not in TIEBREAK_CRITERIA]
    if unknown:
        raise ValidationError(f"Unknown tie-break criteria: {unknown}")
    if len(set(tiebreaks)) != len(tiebreaks):
        raise ValidationError(f"Duplicate tie-break criteria in {list(tiebreaks)}")


@dataclass(frozen=True)
class RankingConfig:
    """Finalized configuration of one ranking. Build it with RankingConfigBuilder."""
    format_config: object
    tiebreaks: Tuple[str, ...]
    promotion_count: int = DEFAULT_PROMOTION_COUNT
    relegation_count: int = DEFAULT_RELEGATION_COUNT
    division_size_policy: str = 'warn'

    def __post_init__(self):
        if type(self.format_config) not in FORMAT_CONFIG_TYPES.values():
            raise ConfigurationError(f"Unsupported format configuration: {self.format_config!r}")
        _check_tiebreaks(self.tiebreaks)
        if self.promotion_count < 0 or self.relegation_count < 0:
            raise ValidationError("Promotion and relegation counts cannot be negative")
        if self.division_size_policy not in DIVISION_SIZE_POLICIES:
            raise ValidationError(f"Unknown division size policy '{self.division_size_policy}'")

    @property
    def format(self) -> str:
        return self.format_config.format

    @property
    def points(self) -> PointTable:
        return getattr(self.format_config, 'points', DEFAULT_FORMAT_CONFIGS[CLASSIC].points)

    @property
    def num_courts(self) -> Optional[int]:
        return getattr(self.format_config, 'num_courts', None)

    @property
    def uses_sets(self) -> bool:
        return self.format_config.uses_sets


class RankingConfigBuilder:
    """
    Immutable, step-by-step construction of a RankingConfig.

    Every with_* call returns a new builder; nothing is validated until build(),
    so callers can stage partial choices (wizard style) without the engine ever
    seeing them.
    """

    def __init__(self, format_name: str, values: Optional[Dict] = None):
        if format_name not in FORMAT_CONFIG_TYPES:
            raise ValidationError(f"Unknown format '{format_name}', expected one of {sorted(FORMAT_CONFIG_TYPES)}")
        self._format = format_name
        self._values = dict(values or {})

    @property
    def format(self) -> str:
        return self._format

    def _with(self, **changes) -> 'RankingConfigBuilder':
        values = dict(self._values)
        for key, value in changes.items():
            if isinstance(value, dict) and isinstance(values.get(key), dict):
                merged = dict(values[key])
                merged.update(value)
                value = merged
            values[key] = value
        return RankingConfigBuilder(self._format, values)

    def with_format(self, format_name: str) -> 'RankingConfigBuilder':
        """Switch format; options staged for the previous format are dropped."""
        values = {k: v for k, v in self._values.items() if k not in ('options', 'points')}
        return RankingConfigBuilder(format_name, values)

    def with_points(self, **table) -> 'RankingConfigBuilder':
        return self._with(points=table)

    def with_options(self, **options) -> 'RankingConfigBuilder':
        return self._with(options=options)

    def with_courts(self, num_courts: int) -> 'RankingConfigBuilder':
        return self._with(options={'num_courts': num_courts})

    def with_tiebreaks(self, *criteria) -> 'RankingConfigBuilder':
        return self._with(tiebreaks=tuple(criteria))

    def with_promotion(self, promotion_count: int, relegation_count: int) -> 'RankingConfigBuilder':
        return self._with(promotion_count=promotion_count, relegation_count=relegation_count)

    def with_division_size_policy(self, policy: str) -> 'RankingConfigBuilder':
        return self._with(division_size_policy=policy)

    def build(self) -> RankingConfig:
        default = DEFAULT_FORMAT_CONFIGS[self._format]
        options = dict(self._values.get('options', {}))
        if 'points' in self._values:
            if not hasattr(default, 'points'):
                raise ValidationError(f"Format '{self._format}' has no point table")
            options['points'] = _replace(default.points, self._values['points'])
        format_config = _replace(default, options)
        return RankingConfig(
            format_config=format_config,
            tiebreaks=tuple(self._values.get('tiebreaks', DEFAULT_TIEBREAKS[self._format])),
            promotion_count=self._values.get('promotion_count', DEFAULT_PROMOTION_COUNT),
            relegation_count=self._values.get('relegation_count', DEFAULT_RELEGATION_COUNT),
            division_size_policy=self._values.get('division_size_policy', 'warn'),
        )

    def __repr__(self):
        return f"RankingConfigBuilder(format={self._format}, values={self._values})"


def _replace(instance, changes):
    names = {f.name for f in dataclasses.fields(instance)}
    unknown = set(changes) - names
    if unknown:
        raise ValidationError(f"Unknown option(s) for {type(instance).__name__}: {sorted(unknown)}")
    return dataclasses.replace(instance, **changes)


def require_format_config(config, expected_type):
    """
    Return the format block of config, checking it belongs to the expected format.

    Accepts either a RankingConfig or a bare format block. A missing or
    mismatched block is a programming error and raises ConfigurationError.
    """
    if isinstance(config, RankingConfig):
        config = config.format_config
    if config is None:
        raise ConfigurationError(f"Missing {expected_type.format} configuration")
    if not isinstance(config, expected_type):
        raise ConfigurationError(
            f"Expected {expected_type.__name__}, got {type(config).__name__}"
        )
    return config


def reorder_tiebreaks(config: RankingConfig, order) -> RankingConfig:
    order = tuple(order)
    if sorted(order) != sorted(config.tiebreaks):
        raise ValidationError(
            f"Reordering must use exactly the current criteria {list(config.tiebreaks)}"
        )
    return dataclasses.replace(config, tiebreaks=order)


def add_tiebreak(config: RankingConfig, criterion: str, position: Optional[int] = None) -> RankingConfig:
    if criterion in config.tiebreaks:
        raise ValidationError(f"Tie-break criterion '{criterion}' is already configured")
    tiebreaks = list(config.tiebreaks)
    if position is None:
        tiebreaks.append(criterion)
    else:
        tiebreaks.insert(position, criterion)
    return dataclasses.replace(config, tiebreaks=tuple(tiebreaks))


def remove_tiebreak(config: RankingConfig, criterion: str) -> RankingConfig:
    if criterion not in config.tiebreaks:
        raise ValidationError(f"Tie-break criterion '{criterion}' is not configured")
    if len(config.tiebreaks) == 1:
        raise ValidationError("Cannot remove the last tie-break criterion")
    return dataclasses.replace(config, tiebreaks=tuple(c for c in config.tiebreaks if c != criterion))


def total_points_for(mode: str, custom: Optional[int] = None) -> Optional[int]:
    """Fixed total of a scoring mode; custom mode uses the given total, per-game has none."""
    if mode not in SCORING_MODES:
        raise ValidationError(f"Unknown scoring mode '{mode}'")
    if mode == 'custom':
        return custom
    return SCORING_MODES[mode]


def config_to_dict(config: RankingConfig) -> Dict:
    options = dataclasses.asdict(config.format_config)
    points = options.pop('points', None)
    data = {
        'format': config.format,
        'options': options,
        'tiebreaks': list(config.tiebreaks),
        'promotion_count': config.promotion_count,
        'relegation_count': config.relegation_count,
        'division_size_policy': config.division_size_policy,
    }
    if points is not None:
        data['points'] = points
    return data


def config_from_dict(data: Dict) -> RankingConfig:
    """Build a config from a plain dict; absent fields come from the defaults table."""
    if not data or 'format' not in data:
        raise ValidationError("Configuration needs a 'format'")
    builder = RankingConfigBuilder(data['format'])
    if data.get('options'):
        builder = builder.with_options(**data['options'])
    if data.get('points'):
        builder = builder.with_points(**data['points'])
    if data.get('tiebreaks'):
        builder = builder.with_tiebreaks(*data['tiebreaks'])
    if 'promotion_count' in data or 'relegation_count' in data:
        builder = builder.with_promotion(
            data.get('promotion_count', DEFAULT_PROMOTION_COUNT),
            data.get('relegation_count', DEFAULT_RELEGATION_COUNT),
        )
    if data.get('division_size_policy'):
        builder = builder.with_division_size_policy(data['division_size_policy'])
    return builder.build()


def load_config(path: str) -> RankingConfig:
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    return config_from_dict(data)


def dump_config(config: RankingConfig, path: str):
    with open(path, 'w') as f:
        yaml.dump(config_to_dict(config), f, default_flow_style=False)
