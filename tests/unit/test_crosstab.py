"""Tests for weighted crosstabulation."""

import numpy as np
import pandas as pd
import pytest

from surveystats.config import NormalizeMode
from surveystats.crosstab import CrosstabCell, crosstab, crosstab_to_frame
from surveystats.exceptions import (
    EmptyGroupError,
    InvalidNormalizeModeError,
    MissingColumnError,
    NegativeWeightError,
    ZeroNormalizationBaseError,
)


def _values(cells: list[CrosstabCell]) -> dict[tuple, float]:
    return {(c.row_value, c.col_value): c.weighted_value for c in cells}


class TestCrosstabRaw:
    """Tests for unnormalized crosstabs."""

    def test_cell_weighted_means(self, crosstab_df):
        """Test raw weighted means per cell."""
        cells = crosstab(crosstab_df, "education", "gender", "value", "weight")

        assert _values(cells) == pytest.approx(
            {("A", "X"): 10.0, ("A", "Y"): 30.0, ("B", "X"): 20.0, ("B", "Y"): 20.0}
        )

    def test_weights_applied_within_cell(self):
        """Test that cell means are weighted."""
        df = pd.DataFrame(
            {"r": ["A", "A"], "c": ["X", "X"], "v": [0.0, 10.0], "weight": [1.0, 3.0]}
        )
        (cell,) = crosstab(df, "r", "c", "v", "weight")

        assert cell.weighted_value == pytest.approx(7.5)
        assert cell.n == 2
        assert cell.total_weight == pytest.approx(4.0)

    def test_first_seen_order(self, crosstab_df):
        """Test that cells follow first appearance of each pair."""
        cells = crosstab(crosstab_df, "education", "gender", "value", "weight")
        assert [(c.row_value, c.col_value) for c in cells] == [
            ("A", "X"),
            ("A", "Y"),
            ("B", "X"),
            ("B", "Y"),
        ]

    def test_missing_values_dropped(self, crosstab_df):
        """Test that records with missing row, column, value or weight are dropped."""
        extra = pd.DataFrame(
            {
                "education": [None, "A", "A", "A"],
                "gender": ["X", None, "X", "X"],
                "value": [1000.0, 1000.0, np.nan, 1000.0],
                "weight": [1.0, 1.0, 1.0, np.nan],
            }
        )
        df = pd.concat([crosstab_df, extra], ignore_index=True)

        cells = crosstab(df, "education", "gender", "value", "weight")
        assert _values(cells)[("A", "X")] == pytest.approx(10.0)
        assert len(cells) == 4

    def test_none_string_same_as_default(self, crosstab_df):
        """Test that 'none' leaves values raw."""
        raw = crosstab(crosstab_df, "education", "gender", "value", "weight")
        explicit = crosstab(crosstab_df, "education", "gender", "value", "weight", normalize="none")
        assert raw == explicit


class TestCrosstabNormalization:
    """Tests for all/row/col normalization."""

    def test_row_normalization_scenario(self, crosstab_df):
        """Test the row-normalized reference values."""
        cells = crosstab(crosstab_df, "education", "gender", "value", "weight", normalize="row")

        assert _values(cells) == pytest.approx(
            {("A", "X"): 0.25, ("A", "Y"): 0.75, ("B", "X"): 0.5, ("B", "Y"): 0.5}
        )

    def test_row_sums_to_one(self, sample_survey_df):
        """Test that each row sums to 1 after row normalization."""
        cells = crosstab(
            sample_survey_df, "adm1_name", "urban_rural", "income", "weight", normalize="row"
        )
        table = crosstab_to_frame(cells, "adm1_name", "urban_rural")

        sums = table.groupby("adm1_name")["weighted_value"].sum()
        assert np.allclose(sums, 1.0)

    def test_col_sums_to_one(self, sample_survey_df):
        """Test that each column sums to 1 after column normalization."""
        cells = crosstab(
            sample_survey_df, "adm1_name", "urban_rural", "income", "weight", normalize="col"
        )
        table = crosstab_to_frame(cells, "adm1_name", "urban_rural")

        sums = table.groupby("urban_rural")["weighted_value"].sum()
        assert np.allclose(sums, 1.0)

    def test_col_normalization_values(self, crosstab_df):
        """Test column-normalized reference values."""
        cells = crosstab(
            crosstab_df, "education", "gender", "value", "weight", normalize=NormalizeMode.COL
        )

        assert _values(cells) == pytest.approx(
            {("A", "X"): 1 / 3, ("A", "Y"): 0.6, ("B", "X"): 2 / 3, ("B", "Y"): 0.4}
        )

    def test_all_normalization(self, crosstab_df):
        """Test grand-total normalization."""
        cells = crosstab(crosstab_df, "education", "gender", "value", "weight", normalize="all")

        assert sum(c.weighted_value for c in cells) == pytest.approx(1.0)
        assert _values(cells)[("A", "Y")] == pytest.approx(30 / 80)

    def test_invalid_mode_raises(self, crosstab_df):
        """Test that unknown modes are rejected."""
        with pytest.raises(InvalidNormalizeModeError, match="rows"):
            crosstab(crosstab_df, "education", "gender", "value", "weight", normalize="rows")

    def test_zero_row_sum_raises(self):
        """Test that a zero row total fails instead of producing NaN."""
        df = pd.DataFrame(
            {
                "r": ["A", "A", "B"],
                "c": ["X", "Y", "X"],
                "v": [0.0, 0.0, 5.0],
                "weight": [1.0, 1.0, 1.0],
            }
        )
        with pytest.raises(ZeroNormalizationBaseError, match="row 'A'"):
            crosstab(df, "r", "c", "v", "weight", normalize="row")

    def test_zero_grand_total_raises(self):
        """Test that a zero grand total fails."""
        df = pd.DataFrame({"r": ["A"], "c": ["X"], "v": [0.0], "weight": [1.0]})
        with pytest.raises(ZeroNormalizationBaseError, match="grand total"):
            crosstab(df, "r", "c", "v", "weight", normalize="all")

    def test_zero_base_ok_without_normalization(self):
        """Test that zero cells are fine when not normalizing."""
        df = pd.DataFrame({"r": ["A"], "c": ["X"], "v": [0.0], "weight": [1.0]})
        (cell,) = crosstab(df, "r", "c", "v", "weight")
        assert cell.weighted_value == 0.0


class TestCrosstabValidation:
    """Tests for crosstab input validation."""

    def test_missing_column(self, crosstab_df):
        """Test that an absent column raises MissingColumnError."""
        with pytest.raises(MissingColumnError, match="region"):
            crosstab(crosstab_df, "region", "gender", "value", "weight")

    def test_zero_weight_cell_raises(self):
        """Test that a cell whose weights are all zero raises EmptyGroupError."""
        df = pd.DataFrame(
            {"r": ["A", "B"], "c": ["X", "X"], "v": [1.0, 2.0], "weight": [1.0, 0.0]}
        )
        with pytest.raises(EmptyGroupError, match="r='B'"):
            crosstab(df, "r", "c", "v", "weight")

    def test_negative_weight(self, crosstab_df):
        """Test that negative weights are rejected."""
        df = crosstab_df.assign(weight=-1.0)
        with pytest.raises(NegativeWeightError):
            crosstab(df, "education", "gender", "value", "weight")


class TestCrosstabToFrame:
    """Tests for rendering cells as DataFrames."""

    def test_long_format(self, crosstab_df):
        """Test long format columns."""
        cells = crosstab(crosstab_df, "education", "gender", "value", "weight")
        table = crosstab_to_frame(cells, "education", "gender")

        assert list(table.columns) == ["education", "gender", "weighted_value", "n", "total_weight"]
        assert len(table) == 4

    def test_wide_format(self, crosstab_df):
        """Test pivoted rows x columns in first-seen order."""
        cells = crosstab(crosstab_df, "education", "gender", "value", "weight")
        wide = crosstab_to_frame(cells, "education", "gender", wide=True)

        assert list(wide.index) == ["A", "B"]
        assert list(wide.columns) == ["X", "Y"]
        assert wide.loc["A", "Y"] == pytest.approx(30.0)

    def test_empty_cells(self):
        """Test that no cells gives an empty frame with the expected columns."""
        table = crosstab_to_frame([], "r", "c")
        assert table.empty
        assert "weighted_value" in table.columns
