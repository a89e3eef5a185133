"""
Exceptions raised by the competition engine.
"""


class CompetitionError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(CompetitionError):
    """Raised when input is rejected before anything is generated or computed."""


class ConfigurationError(CompetitionError):
    """Raised when a format-specific configuration is missing or belongs to another format."""


class RoundNotCompleteError(ValidationError):
    """Raised when a ladder round is advanced before all of its matches are finished."""


class ResultLockedError(ValidationError):
    """Raised when a finished match would be re-scored without an explicit correction."""
