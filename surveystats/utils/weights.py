"""
Survey weight calculations and variance estimation utilities.

Standard errors use Taylor linearization of the weighted mean (ratio
estimator) under with-replacement sampling of primary sampling units.
"""

import logging
from typing import Callable, Optional, Union

import numpy as np
import pandas as pd

from .. import config
from ..exceptions import EmptyInputError, NonPositiveWeightError

logger = logging.getLogger(__name__)

ArrayLike = Union[pd.Series, np.ndarray, list]

# (values, weights, strata, clusters, domain) -> standard error
SEEstimator = Callable[
    [
        np.ndarray,
        np.ndarray,
        Optional[np.ndarray],
        Optional[np.ndarray],
        Optional[np.ndarray],
    ],
    float,
]


def as_float_array(values: ArrayLike) -> np.ndarray:
    """
    Convert values to a float array with missing values as NaN.

    Handles pandas nullable dtypes (pd.NA) and object columns holding None.
    """
    if isinstance(values, pd.Series):
        return pd.to_numeric(values).to_numpy(dtype=float, na_value=np.nan)
    return np.asarray(values, dtype=float)


def weighted_mean(
    values: ArrayLike,
    weights: ArrayLike,
) -> float:
    """
    Compute weighted mean.

    Args:
        values: Values to average
        weights: Survey weights

    Returns:
        Weighted mean, or NaN when nothing remains after dropping missing values
    """
    values = as_float_array(values)
    weights = as_float_array(weights)

    # Handle missing values
    mask = ~(np.isnan(values) | np.isnan(weights))
    values = values[mask]
    weights = weights[mask]

    if len(values) == 0 or weights.sum() == 0:
        return np.nan

    return float(np.average(values, weights=weights))


def weighted_median(
    values: ArrayLike,
    weights: ArrayLike,
) -> float:
    """
    Compute weighted median.

    The median is the lowest value at which the cumulative weight, taken
    over values in ascending order, reaches half of the total weight.

    Args:
        values: Values
        weights: Survey weights

    Returns:
        Weighted median, or NaN when there is nothing to summarize
    """
    values = as_float_array(values)
    weights = as_float_array(weights)

    mask = ~(np.isnan(values) | np.isnan(weights))
    values = values[mask]
    weights = weights[mask]

    if len(values) == 0 or weights.sum() <= 0:
        return np.nan

    order = np.argsort(values, kind="stable")
    sorted_values = values[order]
    cumulative = np.cumsum(weights[order])

    threshold = 0.5 * cumulative[-1] * (1 - config.MEDIAN_CUMULATIVE_RTOL)
    idx = int(np.searchsorted(cumulative, threshold, side="left"))
    idx = min(idx, len(sorted_values) - 1)

    return float(sorted_values[idx])


# =============================================================================
# STANDARD ERROR ESTIMATORS
# =============================================================================


def _domain_mask(y: np.ndarray, domain: Optional[ArrayLike]) -> np.ndarray:
    """Records inside the estimation domain that carry a value."""
    in_domain = ~np.isnan(y)
    if domain is not None:
        in_domain &= np.asarray(domain, dtype=bool)
    return in_domain


def linearized_se(
    values: ArrayLike,
    weights: ArrayLike,
    strata: Optional[ArrayLike] = None,
    clusters: Optional[ArrayLike] = None,
    domain: Optional[ArrayLike] = None,
) -> float:
    """
    Standard error of the weighted mean by Taylor linearization.

    The weighted mean over a domain d is a ratio of two totals, so each
    record contributes the score z_i = w_i * (y_i - ybar_d) / sum_d(w)
    inside the domain and 0 outside it. Scores are totalled per primary
    sampling unit (each record is its own PSU when no cluster column is
    given) and the with-replacement variance is

        Var = sum_h n_h / (n_h - 1) * sum_j (z_hj - zbar_h)^2

    over strata h (a single stratum when none are given).

    Every PSU of the design counts towards n_h, including PSUs with no
    domain records, so subgroup estimates use the full sample design.
    Records with a missing value fall outside the domain. Records with a
    missing weight are not part of the design.

    Strata holding one PSU contribute no variance. With fewer than two
    PSUs overall the SE is undefined and NaN is returned.

    Args:
        values: Indicator values for every record of the design
        weights: Survey weights aligned with values
        strata: Optional stratum label per record
        clusters: Optional cluster (PSU) label per record
        domain: Optional boolean mask of records in the subgroup

    Returns:
        Standard error
    """
    y = as_float_array(values)
    w = as_float_array(weights)

    in_design = ~np.isnan(w)
    in_domain = _domain_mask(y, domain) & in_design

    domain_weight = w[in_domain].sum()
    if not in_domain.any() or domain_weight <= 0:
        return np.nan

    mean = np.sum(w[in_domain] * y[in_domain]) / domain_weight
    scores = np.where(in_domain, w * (np.where(in_domain, y, 0.0) - mean) / domain_weight, 0.0)

    frame = pd.DataFrame(
        {
            "score": scores,
            "stratum": np.asarray(strata) if strata is not None else 0,
            "psu": np.asarray(clusters) if clusters is not None else np.arange(len(y)),
        }
    )[in_design]
    psu_totals = frame.groupby(["stratum", "psu"], sort=False, dropna=False)["score"].sum()

    if len(psu_totals) < 2:
        logger.debug("Fewer than two PSUs; standard error undefined")
        return np.nan

    variance = 0.0
    for stratum, totals in psu_totals.groupby(level="stratum", sort=False, dropna=False):
        n_h = len(totals)
        if n_h < 2:
            logger.warning(f"Stratum {stratum!r} has a single PSU; it contributes no variance")
            continue
        deviations = totals.to_numpy() - totals.mean()
        variance += n_h / (n_h - 1) * np.sum(deviations**2)

    return float(np.sqrt(variance))


def kish_se(
    values: ArrayLike,
    weights: ArrayLike,
    strata: Optional[ArrayLike] = None,
    clusters: Optional[ArrayLike] = None,
    domain: Optional[ArrayLike] = None,
) -> float:
    """
    Standard error from the weighted SD and Kish effective sample size.

    Uses only the domain records. Ignores strata and clusters; accepts
    them so it can stand in for linearized_se.
    """
    y = as_float_array(values)
    w = as_float_array(weights)

    in_domain = _domain_mask(y, domain) & ~np.isnan(w)
    y = y[in_domain]
    w = w[in_domain]

    if len(y) < 2 or w.sum() <= 0:
        return np.nan

    mean = np.average(y, weights=w)
    weighted_var = np.average((y - mean) ** 2, weights=w)
    n_eff = w.sum() ** 2 / np.sum(w**2)

    return float(np.sqrt(weighted_var / n_eff))


SE_ESTIMATORS: dict[str, SEEstimator] = {
    config.SEMethod.LINEARIZED.value: linearized_se,
    config.SEMethod.KISH.value: kish_se,
}


def get_se_estimator(method: Union[str, config.SEMethod]) -> SEEstimator:
    """
    Look up an SE estimator by name.

    Raises:
        KeyError: If the method is unknown
    """
    try:
        key = config.SEMethod(method).value
    except ValueError:
        raise KeyError(f"Unknown SE method: {method!r}. Available: {list(SE_ESTIMATORS)}") from None
    return SE_ESTIMATORS[key]


# =============================================================================
# DESIGN EFFECT
# =============================================================================


def _valid_positive_weights(weights: ArrayLike) -> np.ndarray:
    w = as_float_array(weights)
    w = w[~np.isnan(w)]

    if len(w) == 0:
        raise EmptyInputError("No valid (non-missing) weights")

    n_bad = int(np.sum(w <= 0))
    if n_bad:
        raise NonPositiveWeightError(
            f"Found {n_bad} weights <= 0 (minimum {w.min():g}); "
            "design effect requires positive weights"
        )

    return w


def effective_sample_size(weights: ArrayLike) -> float:
    """
    Kish effective sample size (sum w)^2 / sum(w^2).

    Equal weights give exactly n.

    Raises:
        EmptyInputError: If no valid weights remain
        NonPositiveWeightError: If any weight is <= 0
    """
    w = _valid_positive_weights(weights)
    if np.all(w == w[0]):
        return float(len(w))
    return float(w.sum() ** 2 / np.sum(w**2))


def design_effect(weights: ArrayLike) -> float:
    """
    Design effect due to unequal weighting, n / n_eff.

    Missing weights are dropped before counting n. Equal weights give
    exactly 1.0.

    Raises:
        EmptyInputError: If no valid weights remain
        NonPositiveWeightError: If any weight is <= 0
    """
    w = _valid_positive_weights(weights)
    if np.all(w == w[0]):
        return 1.0
    return float(len(w) * np.sum(w**2) / w.sum() ** 2)


def indicator_design_effect(
    df: pd.DataFrame,
    indicator_col: str,
    weight_col: str = config.DEFAULT_WEIGHT_COL,
) -> float:
    """
    Design effect over the records where both indicator and weight are present.

    Raises:
        MissingColumnError: If either column is absent
    """
    config.validate_required_columns(df, [indicator_col, weight_col], context="design effect")
    valid = df[indicator_col].notna() & df[weight_col].notna()
    return design_effect(df.loc[valid, weight_col])


# =============================================================================
# INTERVALS
# =============================================================================


def z_multiplier(level: float = config.DEFAULT_CI_LEVEL) -> float:
    """
    Two-sided standard normal multiplier for a confidence level.

    Raises:
        InvalidLevelError: If level is outside (0, 1)
    """
    from scipy import stats

    config.validate_ci_level(level)
    return float(stats.norm.ppf(0.5 + level / 2))


def confidence_interval(
    mean: float,
    se: float,
    level: float = config.DEFAULT_CI_LEVEL,
) -> tuple[float, float]:
    """
    Compute a symmetric normal-approximation confidence interval.

    No t-distribution or finite-population correction is applied.

    Args:
        mean: Point estimate
        se: Standard error
        level: Confidence level (default 0.95 for 95% CI)

    Returns:
        Tuple of (lower, upper) bounds

    Raises:
        InvalidLevelError: If level is outside (0, 1)
    """
    z = z_multiplier(level)

    lower = mean - z * se
    upper = mean + z * se

    return lower, upper


def coefficient_of_variation(estimate: float, se: float) -> float:
    """
    Compute coefficient of variation (CV).

    Args:
        estimate: Point estimate
        se: Standard error

    Returns:
        CV as proportion (not percentage)
    """
    if estimate == 0:
        return np.inf

    return abs(se / estimate)

