"""
Data validation utilities for quality checks on survey tables.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .. import config
from ..exceptions import NegativeWeightError
from . import weights

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a validation check."""

    name: str
    passed: bool
    expected: Optional[float] = None
    actual: Optional[float] = None
    tolerance: Optional[float] = None
    message: str = ""


def check_missing_values(
    df: pd.DataFrame,
    columns: list[str],
    max_missing_pct: float = 0.10,
    name: str = "Missing values",
) -> ValidationResult:
    """
    Check that missing value rates are acceptable.

    Args:
        df: DataFrame
        columns: Columns to check
        max_missing_pct: Maximum acceptable missing rate
        name: Name for the check

    Returns:
        ValidationResult
    """
    n_rows = len(df)
    missing_info = []
    max_missing = 0.0

    for col in columns:
        if col not in df.columns:
            missing_info.append(f"{col}: COLUMN NOT FOUND")
            max_missing = 1.0
            continue

        if n_rows == 0:
            continue

        pct_missing = df[col].isna().sum() / n_rows
        max_missing = max(max_missing, pct_missing)

        if pct_missing > max_missing_pct:
            missing_info.append(f"{col}: {pct_missing:.1%} missing")

    passed = max_missing <= max_missing_pct

    return ValidationResult(
        name=name,
        passed=passed,
        expected=max_missing_pct,
        actual=max_missing,
        tolerance=max_missing_pct,
        message="; ".join(missing_info) if missing_info else "All columns OK",
    )


def check_unweighted_sample_size(
    df: pd.DataFrame,
    group_cols: Sequence[str],
    min_n: int = config.MIN_UNWEIGHTED_N,
    name: str = "Sample size",
) -> dict[tuple, ValidationResult]:
    """
    Check unweighted sample sizes by group.

    Args:
        df: DataFrame
        group_cols: Column(s) defining the groups
        min_n: Minimum acceptable sample size
        name: Base name for checks

    Returns:
        Dict of group key tuple -> ValidationResult
    """
    if isinstance(group_cols, str):
        group_cols = [group_cols]

    results = {}
    keyed = df.dropna(subset=list(group_cols))
    counts = keyed.groupby(list(group_cols), sort=False, observed=True).size()

    for group, n in counts.items():
        key = group if isinstance(group, tuple) else (group,)
        label = ", ".join(str(v) for v in key)
        passed = n >= min_n

        results[key] = ValidationResult(
            name=f"{name} ({label})",
            passed=passed,
            expected=min_n,
            actual=int(n),
            tolerance=None,
            message=f"n={n}, {'OK' if passed else 'BELOW THRESHOLD'}",
        )

    return results


def check_coefficient_of_variation(
    estimate: float,
    se: float,
    max_cv: float = config.MAX_COEFFICIENT_OF_VARIATION,
    name: str = "CV check",
) -> ValidationResult:
    """
    Check if coefficient of variation is acceptable.

    Args:
        estimate: Point estimate
        se: Standard error
        max_cv: Maximum acceptable CV
        name: Name for check

    Returns:
        ValidationResult
    """
    cv = weights.coefficient_of_variation(estimate, se)
    passed = bool(cv <= max_cv)

    return ValidationResult(
        name=name,
        passed=passed,
        expected=max_cv,
        actual=cv,
        tolerance=max_cv,
        message=f"CV = {cv:.2%}",
    )


def check_weights(
    df: pd.DataFrame,
    weight_col: str = config.DEFAULT_WEIGHT_COL,
    name: str = "Survey weights",
) -> ValidationResult:
    """
    Check the weight column and report its design effect.

    Missing and zero weights are reported but do not fail the check.

    Raises:
        MissingColumnError: If the weight column is absent
        NegativeWeightError: If any weight is negative
    """
    config.validate_required_columns(df, [weight_col], context="weight check")

    w = weights.as_float_array(df[weight_col])
    n_missing = int(np.isnan(w).sum())
    n_negative = int(np.sum(w < 0))
    n_zero = int(np.sum(w == 0))

    if n_negative:
        raise NegativeWeightError(f"Weight column '{weight_col}' has {n_negative} negative values")

    positive = w[w > 0]
    deff = weights.design_effect(positive) if len(positive) else np.nan

    details = [f"missing={n_missing}", f"zero={n_zero}", f"design effect={deff:.3f}"]
    return ValidationResult(
        name=name,
        passed=len(positive) > 0,
        expected=None,
        actual=deff,
        tolerance=None,
        message=", ".join(details),
    )


class SurveyDataValidator:
    """
    Run quality checks on an observation table for a set of column roles.
    """

    def __init__(
        self,
        roles: config.ColumnRoles,
        min_n: int = config.MIN_UNWEIGHTED_N,
        max_missing_pct: float = 0.20,
    ):
        self.roles = roles
        self.min_n = min_n
        self.max_missing_pct = max_missing_pct
        self.results: list[ValidationResult] = []

    def add_result(self, result: ValidationResult):
        """Add validation result."""
        self.results.append(result)
        status = "PASS" if result.passed else "FAIL"
        logger.info(f"[{status}] {result.name}: {result.message}")

    def validate(self, df: pd.DataFrame) -> list[ValidationResult]:
        """
        Run all checks.

        Raises:
            MissingColumnError: If a role's column is absent
            NegativeWeightError: If any weight is negative
        """
        self.results = []
        self.roles.validate(df, context="validation")

        self.add_result(check_weights(df, self.roles.weight))

        self.add_result(
            check_missing_values(
                df,
                self.roles.indicators,
                max_missing_pct=self.max_missing_pct,
                name="Indicator missingness",
            )
        )

        if self.roles.group_by:
            sizes = check_unweighted_sample_size(df, self.roles.group_by, min_n=self.min_n)
            for result in sizes.values():
                self.add_result(result)

        return self.results

    def check_estimates(
        self,
        summary: pd.DataFrame,
        max_cv: float = config.MAX_COEFFICIENT_OF_VARIATION,
    ) -> list[ValidationResult]:
        """
        Run a CV check on every estimate in a summary table.

        Args:
            summary: Summary DataFrame from rows_to_frame
            max_cv: Maximum acceptable CV

        Returns:
            The CV results, also appended to self.results
        """
        group_cols = [c for c in self.roles.group_by if c in summary.columns]
        cv_results = []

        for _, row in summary.iterrows():
            label = ", ".join([str(row["indicator"])] + [str(row[c]) for c in group_cols])
            result = check_coefficient_of_variation(
                row["weighted_mean"], row["se"], max_cv=max_cv, name=f"CV ({label})"
            )
            self.add_result(result)
            cv_results.append(result)

        return cv_results

    def summary(self) -> str:
        """Generate summary of validation results."""
        n_passed = sum(1 for r in self.results if r.passed)
        n_failed = sum(1 for r in self.results if not r.passed)

        lines = [
            "Validation Summary",
            f"{'=' * 40}",
            f"Passed: {n_passed}",
            f"Failed: {n_failed}",
            "",
        ]

        if n_failed > 0:
            lines.append("Failed Checks:")
            for r in self.results:
                if not r.passed:
                    lines.append(f"  - {r.name}: {r.message}")

        return "\n".join(lines)
