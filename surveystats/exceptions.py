"""
Exceptions raised by the survey statistics routines.

Every error carries a message naming the offending column, value, or
parameter so command-line runs can report it directly.
"""


class SurveyStatsError(Exception):
    """Base class for all survey statistics errors."""


class MissingColumnError(SurveyStatsError, KeyError):
    """A required column name is absent from the input table."""

    def __init__(self, missing: list[str], context: str = "", available: list[str] = None):
        self.missing = list(missing)
        self.context = context
        ctx = f" in {context}" if context else ""
        message = f"Missing required columns{ctx}: {self.missing}"
        if available is not None:
            message += f". Available columns: {list(available)[:20]}"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class EmptyGroupError(SurveyStatsError, ValueError):
    """A computed group has no valid records after filtering."""


class InvalidLevelError(SurveyStatsError, ValueError):
    """Confidence level outside the open interval (0, 1)."""


class InvalidNormalizeModeError(SurveyStatsError, ValueError):
    """Unrecognized crosstab normalization mode."""


class ZeroNormalizationBaseError(SurveyStatsError, ValueError):
    """A crosstab normalization denominator is zero."""


class EmptyInputError(SurveyStatsError, ValueError):
    """No valid weights remain for the design effect."""


class NonPositiveWeightError(SurveyStatsError, ValueError):
    """A weight of zero or less was passed to the design effect."""


class NegativeWeightError(SurveyStatsError, ValueError):
    """A negative weight was found in an aggregation input."""


class ConfigError(SurveyStatsError, ValueError):
    """An analysis configuration file is malformed."""
