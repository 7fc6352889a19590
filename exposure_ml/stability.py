"""
Stability selection for the LASSO.

Complementary-pair subsampling with the Meinshausen-Buhlmann error bound:
on every half-sample the first ``q`` exposures to enter the lasso path are
recorded, and exposures whose selection frequency reaches ``cutoff`` are
reported. ``q`` is chosen so that the expected number of falsely selected
exposures is at most ``pfer``.
"""
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from sklearn.linear_model import lasso_path

from .config import (
    RANDOM_STATE, STABILITY_CUTOFF, STABILITY_PFER,
    STABILITY_N_SUBSAMPLES, LASSO_N_ALPHAS
)
from .models import lasso_alpha_grid


@dataclass(frozen=True)
class StabilityResult:
    frequencies: pd.Series
    selected: Tuple[str, ...]
    cutoff: float
    pfer: float
    q: int
    n_fits: int


def q_for_pfer(n_features: int, cutoff: float = STABILITY_CUTOFF, pfer: float = STABILITY_PFER) -> int:
    """
    Number of variables to keep per subsample so that
    ``q**2 / ((2 * cutoff - 1) * p) <= pfer``.
    """
    if not 0.5 < cutoff <= 1:
        raise ValueError(f"cutoff must be in (0.5, 1], got {cutoff}")
    q = int(np.floor(np.sqrt(pfer * (2 * cutoff - 1) * n_features)))
    return max(1, min(q, n_features))


def first_q_selected(X: np.ndarray, y: np.ndarray, q: int, n_alphas: int = LASSO_N_ALPHAS) -> np.ndarray:
    """
    Boolean mask of the variables active at the smallest penalty on the
    lasso path that still has at most ``q`` non-zero coefficients.
    """
    Xc = X - X.mean(axis=0)
    yc = y - y.mean()
    _, coefs, _ = lasso_path(Xc, yc, alphas=lasso_alpha_grid(Xc, yc, n_alphas=n_alphas))
    active = coefs != 0  # (p, n_alphas), alphas decreasing
    over = np.where(active.sum(axis=0) > q)[0]
    stop = over[0] - 1 if len(over) else active.shape[1] - 1
    return active[:, max(stop, 0)]


def stability_selection(
    X: pd.DataFrame,
    y,
    cutoff: float = STABILITY_CUTOFF,
    pfer: float = STABILITY_PFER,
    n_subsamples: int = STABILITY_N_SUBSAMPLES,
    random_state: int = RANDOM_STATE,
) -> StabilityResult:
    """
    Run stability selection over complementary half-samples.

    Parameters
    ----------
    X : pd.DataFrame
        Standardized exposure matrix
    y : array-like
        Outcome
    cutoff : float
        Selection-frequency threshold
    pfer : float
        Upper bound on the expected number of false selections
    n_subsamples : int
        Number of complementary pairs (2 * n_subsamples fits)
    random_state : int
        Seed for the subsample draws

    Returns
    -------
    StabilityResult
    """
    Xv = np.asarray(X, dtype=float)
    yv = np.asarray(y, dtype=float)
    n, p = Xv.shape
    half = n // 2
    q = q_for_pfer(p, cutoff=cutoff, pfer=pfer)

    rng = np.random.RandomState(random_state)
    counts = np.zeros(p)
    n_fits = 0
    for _ in range(n_subsamples):
        perm = rng.permutation(n)
        for idx in (perm[:half], perm[half:2 * half]):
            counts += first_q_selected(Xv[idx], yv[idx], q)
            n_fits += 1

    freq = pd.Series(counts / n_fits, index=list(X.columns), name="frequency")
    selected = tuple(freq.index[freq >= cutoff])
    return StabilityResult(
        frequencies=freq.sort_values(ascending=False),
        selected=selected,
        cutoff=cutoff,
        pfer=pfer,
        q=q,
        n_fits=n_fits,
    )
