"""
Bayesian Kernel Machine Regression.

    y_i = x_i' beta + h(z_i) + e_i,   e_i ~ N(0, sigsq)
    h ~ GP(0, lambda * sigsq * K),    K(z, z') = exp(-sum_m r_m (z_m - z'_m)^2)

The latent h is integrated out, so the sampler only sees
``y ~ N(X beta, sigsq * (I + lambda * K))``. Sampling is delegated to PyMC;
posterior summaries of h at new exposure profiles use the closed-form
Gaussian conditional given the sampled hyperparameters.
"""
import warnings
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
import pytensor.tensor as pt
from scipy.linalg import cho_factor, cho_solve

from .config import (
    RANDOM_STATE, BKMR_DRAWS, BKMR_TUNE, BKMR_CHAINS, BKMR_TARGET_ACCEPT,
    BKMR_JITTER, RHAT_THRESHOLD, BKMR_NGRID, BKMR_Q_FIXED, BKMR_OVERALL_QS,
    BKMR_SINGVAR_QS_FIXED, BKMR_N_POSTERIOR_SAMPLES
)
from .errors import ConvergenceWarning
from .optimization import gaussian_kernel

TRACE_VARS = ["beta", "r", "sigsq", "lambda"]
Z_CRIT = 1.96


@dataclass(frozen=True)
class BKMRFit:
    """Posterior draws plus the data they were conditioned on."""

    idata: az.InferenceData
    y: np.ndarray
    X: np.ndarray
    Z: np.ndarray
    exposures: Tuple[str, ...]
    fixed_effects: Tuple[str, ...]
    z_center: np.ndarray
    z_scale: np.ndarray

    def draws(self) -> Dict[str, np.ndarray]:
        """Posterior draws with chains and draws flattened into one axis."""
        post = self.idata.posterior
        return {
            "beta": post["beta"].stack(sample=("chain", "draw")).transpose("sample", ...).values,
            "r": post["r"].stack(sample=("chain", "draw")).transpose("sample", ...).values,
            "sigsq": post["sigsq"].stack(sample=("chain", "draw")).values,
            "lambda": post["lambda"].stack(sample=("chain", "draw")).values,
        }

    def posterior_means(self) -> Dict[str, np.ndarray]:
        return {k: v.mean(axis=0) for k, v in self.draws().items()}

    def to_original_units(self, z: np.ndarray, m: int) -> np.ndarray:
        return z * self.z_scale[m] + self.z_center[m]


def build_bkmr_model(
    y: np.ndarray,
    X: np.ndarray,
    Z: np.ndarray,
    exposures: Sequence[str],
    fixed_effects: Sequence[str],
    jitter: float = BKMR_JITTER,
) -> pm.Model:
    """
    Build the marginal BKMR likelihood as a PyMC model.

    Parameters
    ----------
    y : np.ndarray
        Outcome (n,)
    X : np.ndarray
        Fixed-effects design including the intercept column (n, P)
    Z : np.ndarray
        Standardized exposures (n, M)
    exposures, fixed_effects : Sequence[str]
        Coordinate labels for r and beta
    jitter : float
        Added to the covariance diagonal for numerical stability
    """
    n = len(y)
    y_sd = float(np.std(y)) or 1.0
    beta_sd = 10.0 * (y_sd + abs(float(np.mean(y))))
    # (n, n, M) squared differences are data; only r is sampled
    sqdiff = (Z[:, None, :] - Z[None, :, :]) ** 2

    coords = {"exposure": list(exposures), "fixed_effect": list(fixed_effects)}
    with pm.Model(coords=coords) as model:
        beta = pm.Normal("beta", mu=0.0, sigma=beta_sd, dims="fixed_effect")
        sigma = pm.HalfNormal("sigma", sigma=y_sd)
        sigsq = pm.Deterministic("sigsq", sigma ** 2)
        lam = pm.Gamma("lambda", mu=10.0, sigma=10.0)
        r = pm.HalfNormal("r", sigma=1.0, dims="exposure")

        K = pt.exp(-pt.tensordot(sqdiff, r, axes=[[2], [0]]))
        cov = sigsq * (pt.eye(n) + lam * K) + jitter * pt.eye(n)
        pm.MvNormal("y_obs", mu=pt.dot(X, beta), cov=cov, observed=y)
    return model


def sample_bkmr(
    model: pm.Model,
    draws: int = BKMR_DRAWS,
    tune: int = BKMR_TUNE,
    chains: int = BKMR_CHAINS,
    cores: Optional[int] = None,
    target_accept: float = BKMR_TARGET_ACCEPT,
    random_state: int = RANDOM_STATE,
    progressbar: bool = False,
) -> az.InferenceData:
    """
    Run NUTS for a fixed number of iterations.

    With ``chains > 1`` the chains run independently (on ``cores``
    processes) and are only combined once all of them finish.
    """
    with model:
        idata = pm.sample(
            draws=draws,
            tune=tune,
            chains=chains,
            cores=cores or 1,
            target_accept=target_accept,
            random_seed=random_state,
            progressbar=progressbar,
            return_inferencedata=True,
        )
    return idata


def convergence_diagnostics(
    idata: az.InferenceData,
    rhat_threshold: float = RHAT_THRESHOLD,
) -> Dict[str, float]:
    """
    Count divergences and, for multi-chain runs, compute the worst R-hat and
    bulk ESS. Issues a ConvergenceWarning when either looks bad.

    Single-chain runs are left to visual trace inspection.
    """
    n_chains = idata.posterior.sizes["chain"]
    out = {"chains": int(n_chains), "divergences": 0, "max_rhat": np.nan, "min_ess_bulk": np.nan}

    if "sample_stats" in idata and "diverging" in idata.sample_stats:
        out["divergences"] = int(idata.sample_stats["diverging"].sum())

    if n_chains > 1:
        summary = az.summary(idata, var_names=TRACE_VARS, kind="diagnostics")
        out["max_rhat"] = float(summary["r_hat"].max())
        out["min_ess_bulk"] = float(summary["ess_bulk"].min())

    if out["divergences"] > 0:
        warnings.warn(
            f"{out['divergences']} divergent transitions; inspect the trace plots",
            ConvergenceWarning,
            stacklevel=2,
        )
    if out["max_rhat"] > rhat_threshold:
        warnings.warn(
            f"max R-hat {out['max_rhat']:.3f} exceeds {rhat_threshold}",
            ConvergenceWarning,
            stacklevel=2,
        )
    return out


# =========================================================
# Posterior of h at new exposure profiles
# =========================================================
def _conditional_h(
    fit: BKMRFit,
    Znew: np.ndarray,
    beta: np.ndarray,
    r: np.ndarray,
    sigsq: float,
    lam: float,
) -> Tuple[np.ndarray, np.ndarray]:
    n = len(fit.y)
    K = gaussian_kernel(fit.Z, fit.Z, r)
    Kn = gaussian_kernel(Znew, fit.Z, r)
    Knn = gaussian_kernel(Znew, Znew, r)

    V = cho_factor(np.eye(n) + lam * K, lower=True)
    resid = fit.y - fit.X @ beta
    mean = lam * Kn @ cho_solve(V, resid)
    cov = sigsq * lam * (Knn - lam * Kn @ cho_solve(V, Kn.T))
    return mean, cov


def posterior_h(
    fit: BKMRFit,
    Znew: np.ndarray,
    method: str = "approx",
    n_samples: int = BKMR_N_POSTERIOR_SAMPLES,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Posterior mean and covariance of h at the rows of ``Znew``.

    Parameters
    ----------
    fit : BKMRFit
        Sampled model
    Znew : np.ndarray
        Standardized exposure profiles (k, M)
    method : str
        ``"approx"`` plugs in posterior-mean hyperparameters;
        ``"exact"`` averages the conditional over ``n_samples`` thinned draws
        (law of total covariance).
    n_samples : int
        Draws used by ``"exact"``

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        (mean (k,), covariance (k, k))
    """
    Znew = np.atleast_2d(np.asarray(Znew, dtype=float))

    if method == "approx":
        pm_ = fit.posterior_means()
        return _conditional_h(fit, Znew, pm_["beta"], pm_["r"], pm_["sigsq"], pm_["lambda"])

    if method != "exact":
        raise ValueError(f"Unknown method: {method!r}")

    d = fit.draws()
    n_draws = len(d["sigsq"])
    idx = np.unique(np.linspace(0, n_draws - 1, min(n_samples, n_draws)).astype(int))

    means, covs = [], []
    for s in idx:
        m, c = _conditional_h(fit, Znew, d["beta"][s], d["r"][s], d["sigsq"][s], d["lambda"][s])
        means.append(m)
        covs.append(c)
    means = np.array(means)
    mean = means.mean(axis=0)
    cov = np.mean(covs, axis=0)
    if len(idx) > 1:
        cov = cov + np.atleast_2d(np.cov(means, rowvar=False))
    return mean, cov


def predict_h(fit: BKMRFit, Znew: np.ndarray) -> np.ndarray:
    """Posterior-mean h at new profiles, without the covariance."""
    Znew = np.atleast_2d(np.asarray(Znew, dtype=float))
    pm_ = fit.posterior_means()
    K = gaussian_kernel(fit.Z, fit.Z, pm_["r"])
    Kn = gaussian_kernel(Znew, fit.Z, pm_["r"])
    V = cho_factor(np.eye(len(fit.y)) + pm_["lambda"] * K, lower=True)
    return pm_["lambda"] * Kn @ cho_solve(V, fit.y - fit.X @ pm_["beta"])


def _band(est: np.ndarray, var: np.ndarray) -> Dict[str, np.ndarray]:
    sd = np.sqrt(np.clip(var, 0.0, None))
    return {"est": est, "sd": sd, "lower": est - Z_CRIT * sd, "upper": est + Z_CRIT * sd}


# =========================================================
# Summaries
# =========================================================
def predictor_response_univariate(
    fit: BKMRFit,
    ngrid: int = BKMR_NGRID,
    q_fixed: float = BKMR_Q_FIXED,
    method: str = "approx",
) -> pd.DataFrame:
    """
    Exposure-response curve of each exposure with the others held at their
    ``q_fixed`` quantile.

    Returns
    -------
    pd.DataFrame
        Long format: variable, z (standardized), value (original units),
        est, sd, lower, upper
    """
    ref = np.quantile(fit.Z, q_fixed, axis=0)
    frames = []
    for m, name in enumerate(fit.exposures):
        grid = np.linspace(fit.Z[:, m].min(), fit.Z[:, m].max(), ngrid)
        Znew = np.tile(ref, (ngrid, 1))
        Znew[:, m] = grid
        mean, cov = posterior_h(fit, Znew, method=method)
        frames.append(pd.DataFrame({
            "variable": name,
            "z": grid,
            "value": fit.to_original_units(grid, m),
            **_band(mean, np.diag(cov)),
        }))
    return pd.concat(frames, ignore_index=True)


def overall_risk_summaries(
    fit: BKMRFit,
    qs: Sequence[float] = BKMR_OVERALL_QS,
    q_fixed: float = BKMR_Q_FIXED,
    method: str = "approx",
) -> pd.DataFrame:
    """
    Change in h when every exposure moves jointly from its ``q_fixed``
    quantile to each quantile in ``qs``.
    """
    qs = list(qs)
    points = np.vstack([np.quantile(fit.Z, q, axis=0) for q in qs]
                       + [np.quantile(fit.Z, q_fixed, axis=0)])
    mean, cov = posterior_h(fit, points, method=method)

    k = len(qs)
    # contrast rows: e_q - e_ref
    A = np.hstack([np.eye(k), -np.ones((k, 1))])
    est = A @ mean
    var = np.einsum("ij,jk,ik->i", A, cov, A)
    return pd.DataFrame({"quantile": qs, **_band(est, var)})


def single_variable_risks(
    fit: BKMRFit,
    qs_diff: Tuple[float, float] = (0.25, 0.75),
    qs_fixed: Sequence[float] = BKMR_SINGVAR_QS_FIXED,
    method: str = "approx",
) -> pd.DataFrame:
    """
    Change in h when one exposure moves from its ``qs_diff[0]`` to its
    ``qs_diff[1]`` quantile while the others are held at each ``qs_fixed``.
    """
    lo = np.quantile(fit.Z, qs_diff[0], axis=0)
    hi = np.quantile(fit.Z, qs_diff[1], axis=0)
    rows = []
    for qf in qs_fixed:
        ref = np.quantile(fit.Z, qf, axis=0)
        for m, name in enumerate(fit.exposures):
            pair = np.vstack([ref, ref])
            pair[0, m] = hi[m]
            pair[1, m] = lo[m]
            mean, cov = posterior_h(fit, pair, method=method)
            est = mean[0] - mean[1]
            var = cov[0, 0] + cov[1, 1] - 2 * cov[0, 1]
            band = _band(np.array([est]), np.array([var]))
            rows.append({"variable": name, "q_fixed": qf, **{k: float(v[0]) for k, v in band.items()}})
    return pd.DataFrame(rows)
