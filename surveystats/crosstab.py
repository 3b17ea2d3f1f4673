"""
Weighted two-way crosstabulation.

Each cell holds the weighted mean of a value column for one
(row category, column category) pair, optionally rescaled so that cells
sum to 1 over the whole table, within each row, or within each column.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence, Union

import numpy as np
import pandas as pd

from . import config
from .config import NormalizeMode
from .estimation import check_non_negative_weights, describe_group, iter_groups
from .exceptions import EmptyGroupError, ZeroNormalizationBaseError
from .utils.weights import as_float_array, weighted_mean

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrosstabCell:
    """Weighted mean of the value column for one row/column category pair."""

    row_value: Any
    col_value: Any
    weighted_value: float
    n: int
    total_weight: float


def _base_key(cell: CrosstabCell, mode: NormalizeMode) -> Any:
    """Key of the normalization total a cell belongs to."""
    if mode == NormalizeMode.ROW:
        return cell.row_value
    if mode == NormalizeMode.COL:
        return cell.col_value
    return None


def _normalize(
    cells: list[CrosstabCell],
    mode: NormalizeMode,
) -> list[CrosstabCell]:
    if mode == NormalizeMode.NONE:
        return cells

    totals: dict[Any, float] = defaultdict(float)
    for cell in cells:
        totals[_base_key(cell, mode)] += cell.weighted_value

    for base_key, total in totals.items():
        if total == 0 or not np.isfinite(total):
            where = "grand total" if mode == NormalizeMode.ALL else f"{mode.value} {base_key!r}"
            raise ZeroNormalizationBaseError(
                f"Cannot normalize by {mode.value}: sum of cell values is {total} for {where}"
            )

    return [
        replace(cell, weighted_value=cell.weighted_value / totals[_base_key(cell, mode)])
        for cell in cells
    ]


def crosstab(
    df: pd.DataFrame,
    row_column: str,
    col_column: str,
    value_column: str,
    weight_column: str = config.DEFAULT_WEIGHT_COL,
    normalize: Optional[Union[str, NormalizeMode]] = None,
) -> list[CrosstabCell]:
    """
    Weighted means of value_column cross-classified by two categories.

    Args:
        df: Observation table
        row_column: Column with row categories
        col_column: Column with column categories
        value_column: Column with values to average
        weight_column: Survey weight column
        normalize: None/"none", "all", "row" or "col"

    Returns:
        One cell per (row, col) pair present, in first-seen order

    Raises:
        InvalidNormalizeModeError: If normalize is not a known mode
        MissingColumnError: If a named column is absent
        NegativeWeightError: If any weight is negative
        EmptyGroupError: If a cell's weights sum to zero
        ZeroNormalizationBaseError: If a normalization sum is zero
    """
    mode = config.parse_normalize_mode(normalize)
    config.validate_required_columns(
        df, [row_column, col_column, value_column, weight_column], context="crosstab"
    )
    check_non_negative_weights(df, weight_column)

    valid = df[[row_column, col_column, value_column, weight_column]].notna().all(axis=1)
    work_df = df[valid]
    logger.debug(f"Crosstab over {len(work_df):,} of {len(df):,} records")

    values = as_float_array(work_df[value_column])
    weights = as_float_array(work_df[weight_column])

    cells = []
    for group, in_cell in iter_groups(work_df, [row_column, col_column]):
        total_weight = float(weights[in_cell].sum())
        if total_weight <= 0:
            raise EmptyGroupError(
                f"Weights sum to zero for '{value_column}' in {describe_group(group)}"
            )
        cells.append(
            CrosstabCell(
                row_value=group[0][1],
                col_value=group[1][1],
                weighted_value=weighted_mean(values[in_cell], weights[in_cell]),
                n=int(in_cell.sum()),
                total_weight=total_weight,
            )
        )

    return _normalize(cells, mode)


def crosstab_to_frame(
    cells: Sequence[CrosstabCell],
    row_column: str = "row",
    col_column: str = "col",
    wide: bool = False,
) -> pd.DataFrame:
    """
    Render crosstab cells as a DataFrame.

    Long format has one line per cell with the category columns named
    row_column and col_column. Wide format pivots to rows x columns of
    weighted_value, keeping first-seen category order.
    """
    long_df = pd.DataFrame(
        [
            {
                row_column: cell.row_value,
                col_column: cell.col_value,
                "weighted_value": cell.weighted_value,
                "n": cell.n,
                "total_weight": cell.total_weight,
            }
            for cell in cells
        ],
        columns=[row_column, col_column, "weighted_value", "n", "total_weight"],
    )
    if not wide:
        return long_df

    row_order = list(dict.fromkeys(long_df[row_column]))
    col_order = list(dict.fromkeys(long_df[col_column]))
    pivot = long_df.pivot(index=row_column, columns=col_column, values="weighted_value")
    return pivot.reindex(index=row_order, columns=col_order)
