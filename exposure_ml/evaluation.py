"""
Evaluation metrics and model selection utilities.

This module provides:
- Out-of-bag RMSE for bagged forests
- Exhaustive OOB grid search over (mtry, num_trees, min_node_size)
- One-standard-error rule for cross-validated LASSO paths
- Permutation importance
"""
from itertools import product
from typing import Any, Dict, List, Tuple

import numpy as np
import pandas as pd
from sklearn.inspection import permutation_importance

from .config import RANDOM_STATE, RF_PARAM_GRID


def oob_rmse(model, y) -> float:
    """
    Square root of the mean out-of-bag squared error.

    Parameters
    ----------
    model : RandomForestRegressor
        Forest fitted with ``oob_score=True``
    y : array-like
        Training outcome

    Returns
    -------
    float
        OOB RMSE
    """
    resid = np.asarray(y, dtype=float) - model.oob_prediction_
    return float(np.sqrt(np.mean(resid ** 2)))


def grid_search_oob(
    X: pd.DataFrame,
    y,
    param_grid: Dict[str, List[Any]] = RF_PARAM_GRID,
    random_state: int = RANDOM_STATE,
    n_jobs: int = -1,
    verbose: bool = True,
) -> Tuple[pd.DataFrame, Dict[str, Any], float]:
    """
    Fit one forest per grid combination and score it out-of-bag.

    No held-out split is needed: each tree's out-of-bag rows act as its
    validation set.

    Parameters
    ----------
    X : pd.DataFrame
        Predictor matrix
    y : array-like
        Outcome
    param_grid : Dict[str, List[Any]]
        Keys ``mtry``, ``num_trees``, ``min_node_size``
    random_state : int
        Random state, shared by every fit
    n_jobs : int
        Passed to the forest
    verbose : bool
        Print progress

    Returns
    -------
    Tuple[pd.DataFrame, Dict[str, Any], float]
        (grid table in evaluation order, best_params, best_oob_rmse).
        Ties go to the first combination evaluated.
    """
    from .models import create_rf_model

    param_names = list(param_grid.keys())
    param_values = list(param_grid.values())
    n_features = X.shape[1]

    bad = [m for m in param_grid.get("mtry", []) if m is not None and m > n_features]
    if bad:
        raise ValueError(f"mtry values {bad} exceed the number of predictors ({n_features})")

    n_combinations = int(np.prod([len(v) for v in param_values]))
    if verbose:
        print(f"Grid Search: {n_combinations} param combinations scored out-of-bag")

    rows = []
    best_params = None
    best_score = np.inf

    for i, values in enumerate(product(*param_values)):
        params = dict(zip(param_names, values))
        model = create_rf_model(params, random_state=random_state, n_jobs=n_jobs)
        model.fit(X, y)
        score = oob_rmse(model, y)
        rows.append({**params, "oob_rmse": score})

        if verbose:
            print(f"[{i+1}/{n_combinations}] {params} -> OOB RMSE: {score:.4f}")

        if score < best_score:
            best_score = score
            best_params = params

    return pd.DataFrame(rows), best_params, float(best_score)


def one_se_alpha(alphas: np.ndarray, mse_path: np.ndarray) -> Tuple[float, float]:
    """
    Select ``alpha_min`` and the one-standard-error ``alpha_1se``.

    Parameters
    ----------
    alphas : np.ndarray
        Penalty values (any order)
    mse_path : np.ndarray
        CV MSE, shape (n_alphas, n_folds)

    Returns
    -------
    Tuple[float, float]
        (alpha_min, alpha_1se) where alpha_1se is the largest alpha whose mean
        CV error is within one standard error of the minimum.
    """
    mean = mse_path.mean(axis=1)
    se = mse_path.std(axis=1, ddof=1) / np.sqrt(mse_path.shape[1])
    i_min = int(np.argmin(mean))
    within = alphas[mean <= mean[i_min] + se[i_min]]
    return float(alphas[i_min]), float(within.max())


def permutation_importance_scores(
    model,
    X: pd.DataFrame,
    y,
    n_repeats: int = 10,
    random_state: int = RANDOM_STATE,
) -> pd.Series:
    """
    Increase in MSE when each predictor is permuted, sorted descending.

    Scored on the rows passed in. The pipeline passes the training rows, so
    the result is in-sample and optimistic next to an out-of-bag measure.
    """
    result = permutation_importance(
        model, X, y,
        scoring="neg_mean_squared_error",
        n_repeats=n_repeats,
        random_state=random_state,
    )
    return pd.Series(result.importances_mean, index=list(X.columns)).sort_values(ascending=False)
