"""
Shared synthetic tables for the test-suite.
"""
import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from exposure_ml.data_loader import infer_schema


def make_table(
    n: int = 120,
    n_exposures: int = 6,
    covariates=("sex", "age", "bmi", "smoking"),
    effect: float = 2.0,
    noise: float = 1.0,
    seed: int = 0,
) -> pd.DataFrame:
    """
    Synthetic observation table (without the row-index column).

    The outcome depends on the first exposure and the first numeric
    covariate only; every other exposure is noise.
    """
    rng = np.random.RandomState(seed)
    cols = {}
    for c in covariates:
        if c == "sex":
            cols[c] = rng.choice(["F", "M"], size=n)
        elif c == "smoking":
            cols[c] = rng.choice(["never", "former", "current"], size=n)
        else:
            cols[c] = rng.normal(40 if c == "age" else 25, 5, size=n)
    df = pd.DataFrame(cols)

    for j in range(n_exposures):
        df[f"exp_{j + 1}"] = rng.lognormal(mean=0.0, sigma=0.5, size=n)

    first_numeric = [c for c in covariates if c not in ("sex", "smoking")][0]
    df["outcome"] = (
        effect * df["exp_1"]
        + 0.1 * df[first_numeric]
        + rng.normal(0, noise, size=n)
    )
    return df


@pytest.fixture
def table():
    return make_table()


@pytest.fixture
def schema(table):
    return infer_schema(table, n_covariates=4)


@pytest.fixture
def small_table():
    """50 rows, 3 exposures, 2 covariates."""
    return make_table(n=50, n_exposures=3, covariates=("age", "sex"), effect=3.0, noise=0.5, seed=1)


@pytest.fixture
def small_schema(small_table):
    return infer_schema(small_table, n_covariates=2)
