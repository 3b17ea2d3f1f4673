"""
Configuration constants and analysis settings for survey statistics runs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Final, Optional, Union

import pandas as pd
import yaml

from .exceptions import (
    ConfigError,
    InvalidLevelError,
    InvalidNormalizeModeError,
    MissingColumnError,
)

logger = logging.getLogger(__name__)


class NormalizeMode(str, Enum):
    """Crosstab normalization modes (type-safe enum)."""

    NONE = "none"
    ALL = "all"
    ROW = "row"
    COL = "col"


class SEMethod(str, Enum):
    """Standard error estimators selectable by name."""

    LINEARIZED = "linearized"
    KISH = "kish"


# =============================================================================
# OUTPUT PATHS
# =============================================================================

# Relative to the working directory of the run, not the installed package
OUTPUTS_DIRNAME: Final[str] = "outputs"
TABLES_DIRNAME: Final[str] = "tables"


def default_tables_dir() -> Path:
    """Default directory for result tables, under the current working directory."""
    return Path.cwd() / OUTPUTS_DIRNAME / TABLES_DIRNAME


# =============================================================================
# COLUMN DEFAULTS
# =============================================================================

DEFAULT_WEIGHT_COL: Final[str] = "weight"

# =============================================================================
# STATISTICAL THRESHOLDS
# =============================================================================

# Groups with fewer unweighted observations are flagged as small samples
MIN_UNWEIGHTED_N: Final[int] = 30
# Estimates with a larger coefficient of variation are reported as unreliable
MAX_COEFFICIENT_OF_VARIATION: Final[float] = 0.30

DEFAULT_CI_LEVEL: Final[float] = 0.95

# Relative tolerance used when locating the weighted median threshold
MEDIAN_CUMULATIVE_RTOL: Final[float] = 1e-12

# =============================================================================
# OUTPUT FILE NAMES
# =============================================================================

OUTPUT_SUMMARY_FILE: Final[str] = "weighted_summary.csv"
OUTPUT_CROSSTAB_FILE: Final[str] = "weighted_crosstab.csv"


# =============================================================================
# VALIDATION UTILITIES
# =============================================================================


def validate_required_columns(
    df: pd.DataFrame,
    required_columns: list[str],
    context: str = "",
) -> None:
    """
    Validate that required columns exist in DataFrame.

    Args:
        df: DataFrame to check
        required_columns: List of required column names
        context: Context string for error message

    Raises:
        MissingColumnError: If any required column is missing
    """
    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        raise MissingColumnError(missing, context=context, available=list(df.columns))


def validate_ci_level(level: float) -> None:
    """
    Validate a confidence level.

    Raises:
        InvalidLevelError: If level is not strictly between 0 and 1
    """
    try:
        valid = 0.0 < float(level) < 1.0
    except (TypeError, ValueError):
        valid = False
    if not valid:
        raise InvalidLevelError(f"Confidence level {level!r} is outside (0, 1)")


def parse_normalize_mode(normalize: Optional[Union[str, NormalizeMode]]) -> NormalizeMode:
    """Map a user-supplied normalization request to a NormalizeMode."""
    if normalize is None:
        return NormalizeMode.NONE
    try:
        return NormalizeMode(normalize)
    except ValueError:
        raise InvalidNormalizeModeError(
            f"Unknown normalize mode: {normalize!r}. "
            f"Expected one of {[m.value for m in NormalizeMode]}"
        ) from None


# =============================================================================
# ANALYSIS SETTINGS
# =============================================================================


@dataclass
class ColumnRoles:
    """
    Mapping from logical role to column name.

    Attributes:
        weight: Survey weight column
        indicators: Indicator columns to summarize
        group_by: Grouping columns (empty for whole-table estimates)
        strata: Optional stratification column for variance estimation
        cluster: Optional cluster (PSU) column for variance estimation
    """

    weight: str = DEFAULT_WEIGHT_COL
    indicators: list[str] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    strata: Optional[str] = None
    cluster: Optional[str] = None

    def required_columns(self) -> list[str]:
        """All column names referenced, in role order without duplicates."""
        cols = [self.weight, *self.indicators, *self.group_by]
        cols += [c for c in (self.strata, self.cluster) if c is not None]
        return list(dict.fromkeys(cols))

    def validate(self, df: pd.DataFrame, context: str = "") -> None:
        """Raise MissingColumnError if any referenced column is absent."""
        validate_required_columns(df, self.required_columns(), context=context)


@dataclass
class CrosstabConfig:
    """Settings for a weighted crosstabulation."""

    row: str
    col: str
    value: str
    normalize: NormalizeMode = NormalizeMode.NONE


@dataclass
class AnalysisConfig:
    """Complete settings for one analysis run."""

    roles: ColumnRoles
    ci: bool = False
    ci_level: float = DEFAULT_CI_LEVEL
    min_n: int = MIN_UNWEIGHTED_N
    se_method: SEMethod = SEMethod.LINEARIZED
    crosstab: Optional[CrosstabConfig] = None


_CONFIG_KEYS: Final[set[str]] = {
    "weight",
    "indicators",
    "group_by",
    "strata",
    "cluster",
    "ci",
    "ci_level",
    "min_n",
    "se_method",
    "crosstab",
}
_CROSSTAB_KEYS: Final[set[str]] = {"row", "col", "value", "normalize"}


def _as_list(value, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return value
    raise ConfigError(f"'{key}' must be a column name or list of column names, got {value!r}")


def analysis_config_from_dict(raw: dict) -> AnalysisConfig:
    """
    Build an AnalysisConfig from a plain mapping.

    Raises:
        ConfigError: On unknown keys, missing indicators, or bad values
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"Analysis config must be a mapping, got {type(raw).__name__}")

    unknown = sorted(set(raw) - _CONFIG_KEYS)
    if unknown:
        raise ConfigError(f"Unknown config keys: {unknown}")

    indicators = _as_list(raw.get("indicators"), "indicators")
    if not indicators:
        raise ConfigError("Config must name at least one indicator under 'indicators'")

    roles = ColumnRoles(
        weight=raw.get("weight", DEFAULT_WEIGHT_COL),
        indicators=indicators,
        group_by=_as_list(raw.get("group_by"), "group_by"),
        strata=raw.get("strata"),
        cluster=raw.get("cluster"),
    )

    ci_level = raw.get("ci_level", DEFAULT_CI_LEVEL)
    try:
        validate_ci_level(ci_level)
    except InvalidLevelError as e:
        raise ConfigError(str(e)) from e

    try:
        se_method = SEMethod(raw.get("se_method", SEMethod.LINEARIZED.value))
    except ValueError:
        raise ConfigError(
            f"Unknown se_method: {raw.get('se_method')!r}. "
            f"Expected one of {[m.value for m in SEMethod]}"
        ) from None

    crosstab_cfg = None
    if raw.get("crosstab") is not None:
        ct = raw["crosstab"]
        if not isinstance(ct, dict) or not {"row", "col", "value"} <= set(ct):
            raise ConfigError("'crosstab' must be a mapping with 'row', 'col' and 'value'")
        unknown_ct = sorted(set(ct) - _CROSSTAB_KEYS)
        if unknown_ct:
            raise ConfigError(f"Unknown crosstab keys: {unknown_ct}")
        try:
            normalize = parse_normalize_mode(ct.get("normalize"))
        except ValueError as e:
            raise ConfigError(str(e)) from e
        crosstab_cfg = CrosstabConfig(
            row=ct["row"], col=ct["col"], value=ct["value"], normalize=normalize
        )

    return AnalysisConfig(
        roles=roles,
        ci=bool(raw.get("ci", False)),
        ci_level=float(ci_level),
        min_n=int(raw.get("min_n", MIN_UNWEIGHTED_N)),
        se_method=se_method,
        crosstab=crosstab_cfg,
    )


def load_analysis_config(path: Union[str, Path]) -> AnalysisConfig:
    """
    Load analysis settings from a YAML file.

    Example file::

        weight: weight
        indicators: [literacy_rate, numeracy_rate]
        group_by: [adm1_name]
        ci: true
        min_n: 30

    Raises:
        ConfigError: If the file cannot be parsed or is invalid
    """
    path = Path(path)
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse config file {path}: {e}") from e

    logger.debug(f"Loaded analysis config from {path}")
    return analysis_config_from_dict(raw or {})
