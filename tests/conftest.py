"""Shared pytest fixtures for the test suite."""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def sample_survey_df():
    """Create a small household-survey-like DataFrame for testing."""
    np.random.seed(42)
    n = 200

    literacy = np.random.choice([0.0, 1.0], n, p=[0.35, 0.65])
    literacy[np.random.choice(n, 10, replace=False)] = np.nan

    return pd.DataFrame(
        {
            "hh_id": [f"HH{i:05d}" for i in range(n)],
            "adm1_name": np.random.choice(["North", "South", "East"], n),
            "urban_rural": np.random.choice(["urban", "rural"], n, p=[0.4, 0.6]),
            "stratum": np.random.choice(["s1", "s2", "s3", "s4"], n),
            "cluster": np.random.randint(1, 40, n),
            "survey_year": np.random.choice([2019, 2021, 2023], n),
            "weight": np.random.uniform(50, 500, n),
            "literacy_rate": literacy,
            "income": np.random.lognormal(8, 1, n),
            "employed": np.random.choice([0, 1], n, p=[0.45, 0.55]),
        }
    )


@pytest.fixture
def equal_weight_df():
    """100 records with weight 2 and indicator values [1]*50 + [0]*50."""
    return pd.DataFrame(
        {
            "weight": [2.0] * 100,
            "indicator": [1.0] * 50 + [0.0] * 50,
        }
    )


@pytest.fixture
def crosstab_df():
    """Two row and two column categories with known cell means."""
    return pd.DataFrame(
        {
            "education": ["A", "A", "A", "B", "B", "B"],
            "gender": ["X", "Y", "Y", "X", "Y", "X"],
            "value": [10.0, 20.0, 40.0, 20.0, 20.0, 20.0],
            "weight": [1.0, 1.0, 1.0, 2.0, 1.0, 2.0],
        }
    )


@pytest.fixture
def sample_weights():
    """Create sample weight arrays for testing."""
    np.random.seed(42)
    return np.random.randint(1, 1000, 100).astype(float)


@pytest.fixture
def sample_indicator():
    """Create sample binary indicator for testing."""
    np.random.seed(42)
    return np.random.choice([0, 1], 100, p=[0.7, 0.3]).astype(float)
