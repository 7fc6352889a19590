"""
Exploratory summaries and covariate-adjusted linear screening.

This module provides:
- Descriptive statistics and correlation of the exposure block
- One OLS per exposure, adjusted for the fixed covariate set
- A single multiple linear regression over all exposures
"""
from typing import List, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.stats.outliers_influence import variance_inflation_factor

from .config import SIGNIFICANCE_LEVEL, CORRELATION_METHOD
from .data_loader import DatasetSchema
from .errors import ZeroVarianceError

RESULT_COLS = ["exposure", "estimate", "ci_low", "ci_high", "p_value"]


def summarize_exposures(df: pd.DataFrame, schema: DatasetSchema) -> pd.DataFrame:
    """Per-exposure descriptive statistics (describe + skew)."""
    desc = df[list(schema.exposures)].describe().T
    desc["skew"] = df[list(schema.exposures)].skew()
    return desc


def exposure_correlation(
    df: pd.DataFrame,
    schema: DatasetSchema,
    method: str = CORRELATION_METHOD,
) -> pd.DataFrame:
    """Pairwise correlation matrix of the exposures."""
    return df[list(schema.exposures)].corr(method=method)


def check_zero_variance(df: pd.DataFrame, columns: List[str]) -> None:
    """Raise ZeroVarianceError if any column is constant."""
    constant = [c for c in columns if df[c].nunique(dropna=True) <= 1]
    if constant:
        raise ZeroVarianceError(constant)


def covariate_design(df: pd.DataFrame, schema: DatasetSchema) -> pd.DataFrame:
    """Covariates with treatment-coded factors (first level as reference)."""
    cov = df[list(schema.covariates)]
    design = pd.get_dummies(cov, columns=list(schema.categorical), drop_first=True, dtype=float)
    return design.astype(float)


def _coef_table(fit, terms: List[str], alpha: float) -> pd.DataFrame:
    ci = fit.conf_int(alpha=alpha)
    return pd.DataFrame({
        "exposure": terms,
        "estimate": fit.params[terms].values,
        "ci_low": ci.loc[terms, 0].values,
        "ci_high": ci.loc[terms, 1].values,
        "p_value": fit.pvalues[terms].values,
    })


def univariate_screening(
    df: pd.DataFrame,
    schema: DatasetSchema,
    alpha: float = SIGNIFICANCE_LEVEL,
) -> pd.DataFrame:
    """
    Fit ``outcome ~ exposure + covariates`` once per exposure.

    Parameters
    ----------
    df : pd.DataFrame
        Clean observation table
    schema : DatasetSchema
        Column roles
    alpha : float
        Level for the confidence interval (1 - alpha) and the Bonferroni flag

    Returns
    -------
    pd.DataFrame
        One row per exposure in schema order, with estimate, CI, p-value,
        ``neg_log10_p`` and ``bonferroni_significant``. P-values are not
        adjusted.
    """
    exposures = list(schema.exposures)
    check_zero_variance(df, exposures)

    y = df[schema.outcome].astype(float)
    covariates = covariate_design(df, schema)

    tables = []
    for exposure in exposures:
        X = pd.concat([df[[exposure]].astype(float), covariates], axis=1)
        X = sm.add_constant(X, has_constant="add")
        fit = sm.OLS(y, X).fit()
        tables.append(_coef_table(fit, [exposure], alpha))

    out = pd.concat(tables, ignore_index=True)
    threshold = bonferroni_threshold(len(exposures), alpha)
    out["neg_log10_p"] = -np.log10(out["p_value"])
    out["bonferroni_significant"] = out["p_value"] < threshold
    return out


def bonferroni_threshold(n_tests: int, alpha: float = SIGNIFICANCE_LEVEL) -> float:
    return alpha / n_tests


def multiple_regression(
    df: pd.DataFrame,
    schema: DatasetSchema,
    alpha: float = SIGNIFICANCE_LEVEL,
    exposures: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Fit one OLS with all exposures plus covariates.

    Returns
    -------
    pd.DataFrame
        One row per exposure with estimate, CI, p-value and VIF
    """
    exposures = exposures or list(schema.exposures)
    check_zero_variance(df, exposures)

    y = df[schema.outcome].astype(float)
    X = pd.concat([df[exposures].astype(float), covariate_design(df, schema)], axis=1)
    X = sm.add_constant(X, has_constant="add")
    fit = sm.OLS(y, X).fit()

    out = _coef_table(fit, exposures, alpha)
    Xv = X.values
    out["vif"] = [variance_inflation_factor(Xv, X.columns.get_loc(e)) for e in exposures]
    return out
