"""
Weighted survey statistics: estimates by indicator and group, confidence
intervals, small-sample flags, crosstabs and design effects.
"""

from .crosstab import CrosstabCell, crosstab, crosstab_to_frame
from .estimation import (
    WeightedSummaryRow,
    aggregate,
    aggregate_indicator,
    flag_small_samples,
    national_weighted_stats,
    rows_to_frame,
    subnational_weighted_stats,
    time_series_stats,
)
from .utils.weights import confidence_interval, design_effect

__version__ = "0.1.0"

__all__ = [
    "CrosstabCell",
    "WeightedSummaryRow",
    "aggregate",
    "aggregate_indicator",
    "confidence_interval",
    "crosstab",
    "crosstab_to_frame",
    "design_effect",
    "flag_small_samples",
    "national_weighted_stats",
    "rows_to_frame",
    "subnational_weighted_stats",
    "time_series_stats",
]
