"""
Weighted survey estimates by indicator and sub-group.

For every indicator and every group key present in the data this module
produces one WeightedSummaryRow holding the weighted mean, its standard
error, the weighted median, the unweighted count and the sum of weights.
Confidence intervals and small-sample flags are added on request.

Usage:
    rows = aggregate(df, ["literacy_rate"], "weight", ["adm1_name"], ci=True, min_n=30)
    table = rows_to_frame(rows)
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterator, Optional, Sequence, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from . import config
from .exceptions import EmptyGroupError, NegativeWeightError
from .utils.weights import (
    SEEstimator,
    as_float_array,
    confidence_interval,
    linearized_se,
    weighted_mean,
    weighted_median,
)

logger = logging.getLogger(__name__)

# Ordered (column, value) pairs; empty for the whole table
GroupKey = tuple[tuple[str, Any], ...]


@dataclass(frozen=True)
class WeightedSummaryRow:
    """Weighted statistics for one indicator within one group."""

    indicator: str
    weighted_mean: float
    se: float
    weighted_median: float
    n: int
    total_weight: float
    group: GroupKey = ()
    ci_lower: Optional[float] = None
    ci_upper: Optional[float] = None
    small_sample: Optional[bool] = None

    @property
    def group_values(self) -> tuple:
        """Group key values without column names."""
        return tuple(value for _, value in self.group)

    def to_record(self) -> dict[str, Any]:
        """Flatten into a dict: indicator, group columns, then statistics."""
        record: dict[str, Any] = {"indicator": self.indicator}
        record.update(dict(self.group))
        record.update(
            {
                "weighted_mean": self.weighted_mean,
                "se": self.se,
                "weighted_median": self.weighted_median,
                "n": self.n,
                "total_weight": self.total_weight,
            }
        )
        if self.ci_lower is not None:
            record["ci_lower"] = self.ci_lower
            record["ci_upper"] = self.ci_upper
        if self.small_sample is not None:
            record["small_sample"] = self.small_sample
        return record


def describe_group(group: GroupKey) -> str:
    """Human-readable label for a group key."""
    if not group:
        return "whole table"
    return ", ".join(f"{col}={value!r}" for col, value in group)


def check_non_negative_weights(df: pd.DataFrame, weight_column: str) -> None:
    """
    Reject negative weights.

    Raises:
        NegativeWeightError: If any non-missing weight is below zero
    """
    weights = as_float_array(df[weight_column])
    n_negative = int(np.sum(weights < 0))
    if n_negative:
        raise NegativeWeightError(
            f"Weight column '{weight_column}' has {n_negative} negative values "
            f"(minimum {np.nanmin(weights):g})"
        )


def iter_groups(
    df: pd.DataFrame,
    group_columns: Sequence[str],
) -> Iterator[tuple[GroupKey, np.ndarray]]:
    """
    Yield (group key, boolean row mask) pairs in first-seen order.

    Masks are positional over df. Records with a missing value in any group
    column belong to no group. No group columns yields the whole table once
    under the empty key.
    """
    group_columns = list(group_columns)
    if not group_columns:
        yield (), np.ones(len(df), dtype=bool)
        return

    positional = df[group_columns].reset_index(drop=True)
    keyed = positional.dropna(subset=group_columns)
    n_dropped = len(df) - len(keyed)
    if n_dropped:
        logger.debug(f"Dropped {n_dropped:,} records with missing {group_columns}")

    for values, frame in keyed.groupby(group_columns, sort=False, observed=True):
        if not isinstance(values, tuple):
            values = (values,)
        mask = np.zeros(len(df), dtype=bool)
        mask[frame.index.to_numpy()] = True
        yield tuple(zip(group_columns, values)), mask


def summarize_group(
    df: pd.DataFrame,
    indicator: str,
    weight_column: str,
    group: GroupKey = (),
    in_group: Optional[np.ndarray] = None,
    strata_column: Optional[str] = None,
    cluster_column: Optional[str] = None,
    se_estimator: SEEstimator = linearized_se,
) -> WeightedSummaryRow:
    """
    Compute the weighted statistics for one indicator in one group.

    The group is a domain of the full table: point estimates use the
    records in the group with a non-missing indicator and weight, while the
    standard error is estimated over the whole design with that domain
    marked.

    Args:
        df: Full observation table (the sample design)
        indicator: Indicator column
        weight_column: Survey weight column
        group: Group key, for labels
        in_group: Boolean row mask of the group; None means the whole table
        strata_column: Optional stratum column for the SE estimator
        cluster_column: Optional cluster column for the SE estimator
        se_estimator: Function (values, weights, strata, clusters, domain) -> SE

    Raises:
        EmptyGroupError: If no records remain, or the remaining weights sum to zero
    """
    values = as_float_array(df[indicator])
    weights = as_float_array(df[weight_column])

    domain = ~(np.isnan(values) | np.isnan(weights))
    if in_group is not None:
        domain &= in_group
    if not domain.any():
        raise EmptyGroupError(
            f"No valid records for indicator '{indicator}' in {describe_group(group)}"
        )

    total_weight = float(weights[domain].sum())
    if total_weight <= 0:
        raise EmptyGroupError(
            f"Weights sum to zero for indicator '{indicator}' in {describe_group(group)}"
        )

    strata = df[strata_column].to_numpy() if strata_column else None
    clusters = df[cluster_column].to_numpy() if cluster_column else None

    return WeightedSummaryRow(
        indicator=indicator,
        weighted_mean=weighted_mean(values[domain], weights[domain]),
        se=float(se_estimator(values, weights, strata, clusters, domain)),
        weighted_median=weighted_median(values[domain], weights[domain]),
        n=int(domain.sum()),
        total_weight=total_weight,
        group=group,
    )


def _indicator_rows(
    df: pd.DataFrame,
    indicator: str,
    weight_column: str,
    group_columns: Sequence[str],
    strata_column: Optional[str],
    cluster_column: Optional[str],
    se_estimator: SEEstimator,
) -> list[WeightedSummaryRow]:
    rows = []
    for group, in_group in iter_groups(df, group_columns):
        rows.append(
            summarize_group(
                df,
                indicator,
                weight_column,
                group=group,
                in_group=in_group,
                strata_column=strata_column,
                cluster_column=cluster_column,
                se_estimator=se_estimator,
            )
        )
    logger.debug(f"Summarized '{indicator}' over {len(rows)} groups")
    return rows


def add_confidence_intervals(
    rows: Sequence[WeightedSummaryRow],
    level: float = config.DEFAULT_CI_LEVEL,
) -> list[WeightedSummaryRow]:
    """Return copies of rows with ci_lower/ci_upper filled in."""
    config.validate_ci_level(level)
    result = []
    for row in rows:
        lower, upper = confidence_interval(row.weighted_mean, row.se, level)
        result.append(replace(row, ci_lower=lower, ci_upper=upper))
    return result


def flag_small_samples(
    rows: Sequence[WeightedSummaryRow],
    min_n: int = config.MIN_UNWEIGHTED_N,
) -> list[WeightedSummaryRow]:
    """
    Mark rows whose unweighted count is below min_n.

    Args:
        rows: Summary rows
        min_n: Minimum reliable sample size (strict: n < min_n is flagged)

    Returns:
        New rows with small_sample set; all other fields unchanged
    """
    flagged = [replace(row, small_sample=row.n < min_n) for row in rows]

    n_small = sum(1 for row in flagged if row.small_sample)
    if n_small:
        logger.warning(f"{n_small} of {len(flagged)} estimates based on fewer than {min_n} records")

    return flagged


def _validate_inputs(
    df: pd.DataFrame,
    indicator_columns: Sequence[str],
    weight_column: str,
    group_columns: Sequence[str],
    strata_column: Optional[str],
    cluster_column: Optional[str],
) -> None:
    roles = config.ColumnRoles(
        weight=weight_column,
        indicators=list(indicator_columns),
        group_by=list(group_columns),
        strata=strata_column,
        cluster=cluster_column,
    )
    roles.validate(df, context="weighted aggregation")
    check_non_negative_weights(df, weight_column)


def aggregate(
    df: pd.DataFrame,
    indicator_columns: Union[str, Sequence[str]],
    weight_column: str = config.DEFAULT_WEIGHT_COL,
    group_columns: Union[str, Sequence[str]] = (),
    *,
    strata_column: Optional[str] = None,
    cluster_column: Optional[str] = None,
    se_estimator: SEEstimator = linearized_se,
    ci: bool = False,
    ci_level: float = config.DEFAULT_CI_LEVEL,
    min_n: Optional[int] = None,
    n_jobs: int = 1,
) -> list[WeightedSummaryRow]:
    """
    Compute weighted summary rows per indicator and group.

    Args:
        df: Observation table
        indicator_columns: Indicator column(s) to summarize
        weight_column: Survey weight column
        group_columns: Grouping column(s); empty for one whole-table row
        strata_column: Optional stratum column passed to the SE estimator
        cluster_column: Optional cluster column passed to the SE estimator
        se_estimator: Function (values, weights, strata, clusters, domain) -> SE
        ci: Add normal-approximation confidence intervals
        ci_level: Confidence level for intervals
        min_n: If given, flag rows with n < min_n as small samples
        n_jobs: Parallel jobs across indicators (1 = sequential)

    Returns:
        Rows ordered by indicator, then by first appearance of each group

    Raises:
        MissingColumnError: If a named column is absent
        NegativeWeightError: If any weight is negative
        EmptyGroupError: If a group has no valid records for an indicator
        InvalidLevelError: If ci is requested with a level outside (0, 1)
    """
    if isinstance(indicator_columns, str):
        indicator_columns = [indicator_columns]
    if isinstance(group_columns, str):
        group_columns = [group_columns]
    indicator_columns = list(indicator_columns)
    group_columns = list(group_columns)

    _validate_inputs(
        df, indicator_columns, weight_column, group_columns, strata_column, cluster_column
    )
    if ci:
        config.validate_ci_level(ci_level)

    args = (weight_column, group_columns, strata_column, cluster_column, se_estimator)

    if n_jobs == 1 or len(indicator_columns) < 2:
        per_indicator = [_indicator_rows(df, ind, *args) for ind in indicator_columns]
    else:
        per_indicator = Parallel(n_jobs=n_jobs)(
            delayed(_indicator_rows)(df, ind, *args) for ind in indicator_columns
        )

    rows = [row for indicator_rows in per_indicator for row in indicator_rows]

    if ci:
        rows = add_confidence_intervals(rows, ci_level)
    if min_n is not None:
        rows = flag_small_samples(rows, min_n)

    logger.debug(f"Computed {len(rows)} summary rows from {len(df):,} records")
    return rows


def aggregate_indicator(
    df: pd.DataFrame,
    indicator_column: str,
    weight_column: str = config.DEFAULT_WEIGHT_COL,
    group_columns: Union[str, Sequence[str]] = (),
    **kwargs,
) -> list[WeightedSummaryRow]:
    """
    Single-indicator form of aggregate().

    Lets callers compute indicators one at a time and handle failures per
    indicator. Keyword arguments are passed through to aggregate().
    """
    return aggregate(df, [indicator_column], weight_column, group_columns, **kwargs)


def rows_to_frame(rows: Sequence[WeightedSummaryRow]) -> pd.DataFrame:
    """Convert summary rows to a flat DataFrame."""
    return pd.DataFrame([row.to_record() for row in rows])


# =============================================================================
# CONVENIENCE ENTRY POINTS
# =============================================================================


def national_weighted_stats(
    df: pd.DataFrame,
    indicator_cols: Union[str, Sequence[str]],
    weight_col: str = config.DEFAULT_WEIGHT_COL,
    strata_col: Optional[str] = None,
    cluster_col: Optional[str] = None,
    ci: bool = False,
    ci_level: float = config.DEFAULT_CI_LEVEL,
) -> pd.DataFrame:
    """
    Whole-table weighted statistics, one row per indicator.

    Example:
        stats = national_weighted_stats(df, ["literacy_rate", "numeracy_rate"], ci=True)
    """
    rows = aggregate(
        df,
        indicator_cols,
        weight_col,
        strata_column=strata_col,
        cluster_column=cluster_col,
        ci=ci,
        ci_level=ci_level,
    )
    return rows_to_frame(rows)


def subnational_weighted_stats(
    df: pd.DataFrame,
    indicator_col: str,
    groupby_cols: Union[str, Sequence[str]],
    weight_col: str = config.DEFAULT_WEIGHT_COL,
    strata_col: Optional[str] = None,
    cluster_col: Optional[str] = None,
    min_n: int = config.MIN_UNWEIGHTED_N,
) -> pd.DataFrame:
    """
    Weighted statistics by group with small-sample flags.

    Example:
        regional = subnational_weighted_stats(df, "income", ["adm1_name", "urban_rural"])
    """
    rows = aggregate(
        df,
        [indicator_col],
        weight_col,
        groupby_cols,
        strata_column=strata_col,
        cluster_column=cluster_col,
        min_n=min_n,
    )
    return rows_to_frame(rows)


def time_series_stats(
    df: pd.DataFrame,
    indicator_col: str,
    time_col: str,
    weight_col: str = config.DEFAULT_WEIGHT_COL,
    groupby_col: Optional[str] = None,
) -> pd.DataFrame:
    """Weighted statistics per time period (and optional group), sorted by time."""
    group_columns = [time_col] if groupby_col is None else [time_col, groupby_col]

    table = rows_to_frame(aggregate(df, [indicator_col], weight_col, group_columns))
    return table.sort_values(time_col, kind="stable").reset_index(drop=True)
