"""
Compute weighted survey statistics from a data file.

This script:
1. Loads an observation table (CSV or Parquet)
2. Optionally runs data quality checks
3. Computes weighted statistics per indicator and group
4. Optionally computes a weighted crosstab
5. Writes result tables to CSV

All results are computed before anything is written, and each file is
written to a temporary name and moved into place, so a failed run leaves
existing outputs untouched.

Usage:
    python -m surveystats.run_stats --input data/survey.csv --indicators literacy_rate \
        --group-by adm1_name --ci
    python -m surveystats.run_stats --input data/survey.parquet --config analysis.yaml
"""

import argparse
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from . import config
from .crosstab import crosstab, crosstab_to_frame
from .estimation import aggregate, rows_to_frame
from .exceptions import NonPositiveWeightError, SurveyStatsError
from .utils.validation import SurveyDataValidator
from .utils.weights import coefficient_of_variation, get_se_estimator, indicator_design_effect

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging for command-line runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def load_table(path: Path) -> pd.DataFrame:
    """
    Load an observation table from CSV or Parquet.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file extension is not supported
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(path)
    elif suffix in (".parquet", ".pq"):
        df = pd.read_parquet(path)
    else:
        raise ValueError(f"Unsupported input format '{suffix}' (expected .csv or .parquet)")

    logger.info(f"Loaded {len(df):,} records from {path}")
    return df


def build_analysis_config(args: argparse.Namespace) -> config.AnalysisConfig:
    """
    Build analysis settings from a YAML file or from command-line flags.

    Raises:
        ConfigError: If the settings are incomplete or invalid
    """
    if args.config:
        return config.load_analysis_config(args.config)

    raw = {
        "weight": args.weight_col,
        "indicators": args.indicators,
        "group_by": args.group_by,
        "strata": args.strata_col,
        "cluster": args.cluster_col,
        "ci": args.ci,
        "ci_level": args.ci_level,
        "min_n": args.min_n,
        "se_method": args.se_method,
    }
    if args.crosstab:
        row, col, value = args.crosstab
        raw["crosstab"] = {"row": row, "col": col, "value": value, "normalize": args.normalize}

    return config.analysis_config_from_dict(raw)


def run_analysis(
    df: pd.DataFrame,
    settings: config.AnalysisConfig,
    n_jobs: int = 1,
) -> tuple[pd.DataFrame, Optional[pd.DataFrame]]:
    """
    Compute the summary table and, if configured, the crosstab table.

    Returns:
        Tuple of (summary DataFrame, crosstab DataFrame or None)
    """
    roles = settings.roles

    rows = aggregate(
        df,
        roles.indicators,
        roles.weight,
        roles.group_by,
        strata_column=roles.strata,
        cluster_column=roles.cluster,
        se_estimator=get_se_estimator(settings.se_method),
        ci=settings.ci,
        ci_level=settings.ci_level,
        min_n=settings.min_n,
        n_jobs=n_jobs,
    )
    summary = rows_to_frame(rows)

    summary["cv"] = [
        coefficient_of_variation(mean, se)
        for mean, se in zip(summary["weighted_mean"], summary["se"])
    ]
    summary["high_cv"] = summary["cv"] > config.MAX_COEFFICIENT_OF_VARIATION
    n_high_cv = int(summary["high_cv"].sum())
    if n_high_cv:
        logger.warning(
            f"{n_high_cv} of {len(summary)} estimates have CV above "
            f"{config.MAX_COEFFICIENT_OF_VARIATION:.0%}"
        )

    for indicator in roles.indicators:
        try:
            deff = indicator_design_effect(df, indicator, roles.weight)
        except NonPositiveWeightError as e:
            logger.warning(f"Design effect for '{indicator}' unavailable: {e}")
            continue
        logger.info(f"Design effect ({indicator}): {deff:.3f}")

    crosstab_table = None
    if settings.crosstab is not None:
        ct = settings.crosstab
        cells = crosstab(df, ct.row, ct.col, ct.value, roles.weight, normalize=ct.normalize)
        crosstab_table = crosstab_to_frame(cells, ct.row, ct.col)
        logger.info(
            f"Crosstab of '{ct.value}' by {ct.row} x {ct.col}: {len(cells)} cells "
            f"(normalize={ct.normalize.value})"
        )

    return summary, crosstab_table


def write_csv_atomic(df: pd.DataFrame, output_path: Path) -> Path:
    """
    Write a DataFrame to CSV via a temporary file in the same directory.

    The target is replaced only once the temporary file is complete.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        dir=output_path.parent, prefix=f".{output_path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", newline="") as f:
            df.to_csv(f, index=False)
        os.replace(tmp_name, output_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info(f"Saved results: {output_path}")
    return output_path


def print_summary_table(summary: pd.DataFrame, group_cols: list[str]) -> None:
    """
    Log a formatted summary table.

    Args:
        summary: Summary DataFrame from rows_to_frame
        group_cols: Group column names present in the summary
    """
    logger.info("\n" + "=" * 80)
    logger.info("WEIGHTED SURVEY STATISTICS")
    logger.info("=" * 80)

    for indicator, ind_df in summary.groupby("indicator", sort=False):
        logger.info(f"\n{indicator}:")
        logger.info("-" * 50)

        for _, row in ind_df.iterrows():
            label = ", ".join(str(row[c]) for c in group_cols) if group_cols else "All"
            line = f"  {label:30s}: {row['weighted_mean']:10.4f} (SE {row['se']:.4f}, n={row['n']})"
            if "ci_lower" in row and pd.notna(row["ci_lower"]):
                line += f" [{row['ci_lower']:.4f}, {row['ci_upper']:.4f}]"
            if row.get("small_sample", False):
                line += " *"
            logger.info(line)

    if "small_sample" in summary.columns and summary["small_sample"].any():
        logger.info("\n* Small sample: estimate based on fewer records than the minimum")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Compute weighted survey statistics")
    parser.add_argument("--input", type=Path, required=True, help="CSV or Parquet file")
    parser.add_argument("--config", type=Path, help="YAML analysis config (overrides flags)")
    parser.add_argument(
        "--weight-col",
        default=config.DEFAULT_WEIGHT_COL,
        help=f"Weight column (default: {config.DEFAULT_WEIGHT_COL})",
    )
    parser.add_argument("--indicators", nargs="+", default=[], help="Indicator columns")
    parser.add_argument("--group-by", nargs="+", default=[], help="Grouping columns")
    parser.add_argument("--strata-col", help="Stratification column for variance estimation")
    parser.add_argument("--cluster-col", help="Cluster (PSU) column for variance estimation")
    parser.add_argument("--ci", action="store_true", help="Add confidence intervals")
    parser.add_argument(
        "--ci-level",
        type=float,
        default=config.DEFAULT_CI_LEVEL,
        help=f"Confidence level (default: {config.DEFAULT_CI_LEVEL})",
    )
    parser.add_argument(
        "--min-n",
        type=int,
        default=config.MIN_UNWEIGHTED_N,
        help=f"Small-sample threshold (default: {config.MIN_UNWEIGHTED_N})",
    )
    parser.add_argument(
        "--se-method",
        choices=[m.value for m in config.SEMethod],
        default=config.SEMethod.LINEARIZED.value,
        help="Standard error estimator (default: linearized)",
    )
    parser.add_argument(
        "--crosstab",
        nargs=3,
        metavar=("ROW", "COL", "VALUE"),
        help="Also compute a weighted crosstab of VALUE by ROW x COL",
    )
    parser.add_argument(
        "--normalize",
        default=None,
        help="Crosstab normalization: none, all, row or col",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help=f"Summary CSV path (default: ./outputs/tables/{config.OUTPUT_SUMMARY_FILE})",
    )
    parser.add_argument(
        "--crosstab-output",
        type=Path,
        default=None,
        help=f"Crosstab CSV path (default: ./outputs/tables/{config.OUTPUT_CROSSTAB_FILE})",
    )
    parser.add_argument("--validate", action="store_true", help="Run data quality checks")
    parser.add_argument("--n-jobs", type=int, default=1, help="Parallel jobs across indicators")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        settings = build_analysis_config(args)
        df = load_table(args.input)

        validator = None
        if args.validate:
            validator = SurveyDataValidator(settings.roles, min_n=settings.min_n)
            validator.validate(df)

        summary, crosstab_table = run_analysis(df, settings, n_jobs=args.n_jobs)
    except (SurveyStatsError, OSError, ValueError) as e:
        logger.error(str(e))
        return 1

    if validator is not None:
        validator.check_estimates(summary)
        logger.info("\n" + validator.summary())

    print_summary_table(summary, settings.roles.group_by)

    tables_dir = config.default_tables_dir()
    output_path = args.output or tables_dir / config.OUTPUT_SUMMARY_FILE

    try:
        write_csv_atomic(summary, output_path)
        if crosstab_table is not None:
            ct_path = args.crosstab_output or tables_dir / config.OUTPUT_CROSSTAB_FILE
            write_csv_atomic(crosstab_table, ct_path)
    except OSError as e:
        logger.error(f"Could not write output: {e}")
        return 1

    n_small = int(summary["small_sample"].sum()) if "small_sample" in summary.columns else 0
    logger.info(
        f"\nDone: {len(summary)} estimates, {n_small} small-sample, "
        f"{int(np.isnan(summary['se']).sum())} with undefined SE"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
