"""
Data loading, schema inference and cleaning.
"""
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import (
    BIOMARKER_PATH, N_COVARIATES, CATEGORICAL_COLS,
    OUTLIER_IQR_FACTOR, MIN_ROWS, MAX_DROP_FRACTION
)
from .errors import InsufficientDataError, DataQualityWarning


@dataclass(frozen=True)
class DatasetSchema:
    """Column roles of the observation table."""

    covariates: Tuple[str, ...]
    categorical: Tuple[str, ...]
    exposures: Tuple[str, ...]
    outcome: str

    @property
    def numeric_covariates(self) -> List[str]:
        return [c for c in self.covariates if c not in self.categorical]

    @property
    def columns(self) -> List[str]:
        return list(self.covariates) + list(self.exposures) + [self.outcome]


def load_dataset(path: Optional[Path] = None) -> pd.DataFrame:
    """
    Load the biomarker table.

    The first column holds a row index and is discarded.

    Parameters
    ----------
    path : Path, optional
        Path to the CSV file. Defaults to config path.

    Returns
    -------
    pd.DataFrame
        Raw observation table
    """
    path = path or BIOMARKER_PATH
    df = pd.read_csv(path)
    return df.iloc[:, 1:].copy()


def infer_schema(
    df: pd.DataFrame,
    n_covariates: int = N_COVARIATES,
    categorical: Iterable[str] = CATEGORICAL_COLS,
) -> DatasetSchema:
    """
    Assign column roles by position.

    The first ``n_covariates`` columns are covariates, the last column is the
    outcome and all columns in between are exposures.
    """
    cols = list(df.columns)
    if len(cols) < n_covariates + 2:
        raise ValueError(
            f"Expected at least {n_covariates + 2} columns, got {len(cols)}"
        )
    covariates = tuple(cols[:n_covariates])
    return DatasetSchema(
        covariates=covariates,
        categorical=tuple(c for c in categorical if c in covariates),
        exposures=tuple(cols[n_covariates:-1]),
        outcome=cols[-1],
    )


def iqr_bounds(s: pd.Series, factor: float = OUTLIER_IQR_FACTOR) -> Tuple[float, float]:
    """Return ``(Q1 - factor*IQR, Q3 + factor*IQR)`` of a series."""
    q1, q3 = s.quantile([0.25, 0.75])
    iqr = q3 - q1
    return float(q1 - factor * iqr), float(q3 + factor * iqr)


def trim_outliers(
    df: pd.DataFrame,
    columns: Sequence[str],
    factor: float = OUTLIER_IQR_FACTOR,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Replace values outside the IQR fences with NaN, column by column.

    Parameters
    ----------
    df : pd.DataFrame
        Input table (not modified)
    columns : Sequence[str]
        Columns to trim
    factor : float
        IQR multiplier for the fences

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        (trimmed copy, report with lower, upper, n_trimmed, frac_trimmed)
    """
    out = df.copy()
    rows = []
    for col in columns:
        out[col] = out[col].astype(float)
        lower, upper = iqr_bounds(out[col], factor=factor)
        mask = (out[col] < lower) | (out[col] > upper)
        out.loc[mask, col] = np.nan
        rows.append({
            "column": col,
            "lower": lower,
            "upper": upper,
            "n_trimmed": int(mask.sum()),
            "frac_trimmed": float(mask.mean()) if len(mask) else 0.0,
        })
    report = pd.DataFrame(rows, columns=["column", "lower", "upper", "n_trimmed", "frac_trimmed"])
    return out, report.set_index("column")


def prepare_dataset(
    df: pd.DataFrame,
    schema: DatasetSchema,
    factor: float = OUTLIER_IQR_FACTOR,
    min_rows: int = MIN_ROWS,
    max_drop_fraction: float = MAX_DROP_FRACTION,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Select schema columns, cast factors, trim exposure outliers and drop
    incomplete rows.

    Raises
    ------
    InsufficientDataError
        If fewer than ``min_rows`` rows survive (always raised on zero rows).

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        (clean table, trimming report)
    """
    data = df[schema.columns].copy()
    for col in schema.categorical:
        data[col] = data[col].astype("category")

    data, report = trim_outliers(data, schema.exposures, factor=factor)
    n_before = len(data)
    data = data.dropna().reset_index(drop=True)
    # drop levels that no longer occur
    for col in schema.categorical:
        data[col] = data[col].cat.remove_unused_categories()

    if len(data) == 0 or len(data) < min_rows:
        raise InsufficientDataError(
            f"{len(data)} of {n_before} rows remain after cleaning (need >= {min_rows})"
        )

    dropped = 1 - len(data) / n_before
    if dropped > max_drop_fraction:
        warnings.warn(
            f"Cleaning removed {dropped:.1%} of rows ({n_before - len(data)} of {n_before})",
            DataQualityWarning,
            stacklevel=2,
        )
    return data, report
