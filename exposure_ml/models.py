"""
Fitted models behind a common interface.

This module provides:
- FittedModel: predict / importance / explain
- LassoModel: cross-validated L1 regression on standardized exposures
- ForestModel: bagged regression trees scored out-of-bag
- KernelMachineModel: BKMR fitted by MCMC
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import shap
from sklearn.ensemble import RandomForestRegressor
from sklearn.linear_model import Lasso, LassoCV, lasso_path
from sklearn.model_selection import KFold

from .config import (
    RANDOM_STATE, LASSO_CV_FOLDS, LASSO_N_ALPHAS, LASSO_MAX_ITER,
    RF_DEFAULT_PARAMS, SHAP_NSAMPLES, BKMR_DRAWS, BKMR_TUNE, BKMR_CHAINS,
    BKMR_TARGET_ACCEPT
)
from .data_loader import DatasetSchema
from .evaluation import oob_rmse, one_se_alpha
from .preprocessing import (
    get_lasso_preprocessor, get_forest_preprocessor,
    get_exposure_scaler, get_covariate_preprocessor
)


class FittedModel(ABC):
    """Common surface of every fitted model in the pipeline."""

    schema: DatasetSchema

    @abstractmethod
    def fit(self, df: pd.DataFrame) -> "FittedModel":
        ...

    @abstractmethod
    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """Predicted outcome for the rows of ``df``."""

    @abstractmethod
    def importance(self) -> pd.Series:
        """Per-feature importance, sorted descending."""

    @abstractmethod
    def explain(self, df: pd.DataFrame, **kwargs) -> shap.Explanation:
        """Shapley-value attribution of the predictions on ``df``."""


def lasso_alpha_grid(X, y, n_alphas: int = LASSO_N_ALPHAS, eps: float = 1e-3) -> np.ndarray:
    """
    Log-spaced penalties from the smallest alpha that zeroes every
    coefficient down to ``eps`` times that value (decreasing).
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    Xc = X - X.mean(axis=0)
    alpha_max = np.abs(Xc.T @ (y - y.mean())).max() / len(y)
    if alpha_max <= 0:
        alpha_max = 1.0
    return np.logspace(np.log10(alpha_max), np.log10(alpha_max * eps), n_alphas)


class LassoModel(FittedModel):
    """
    L1-penalized regression of the outcome on standardized exposures.

    The penalty is chosen by k-fold CV. Both the CV-minimizing ``alpha_min``
    and the sparser one-standard-error ``alpha_1se`` fits are kept.
    """

    def __init__(
        self,
        schema: DatasetSchema,
        cv: int = LASSO_CV_FOLDS,
        n_alphas: int = LASSO_N_ALPHAS,
        max_iter: int = LASSO_MAX_ITER,
        random_state: int = RANDOM_STATE
    ):
        self.schema = schema
        self.cv = cv
        self.n_alphas = n_alphas
        self.max_iter = max_iter
        self.random_state = random_state
        self.preprocessor_ = None
        self.cv_model_ = None
        self.model_min_ = None
        self.model_1se_ = None
        self.X_train_ = None
        self.y_train_ = None

    def fit(self, df: pd.DataFrame):
        self.preprocessor_ = get_lasso_preprocessor(self.schema)
        X = self.preprocessor_.fit_transform(df)
        y = df[self.schema.outcome].astype(float).values
        self.X_train_ = X
        self.y_train_ = y

        alphas = lasso_alpha_grid(X, y, n_alphas=self.n_alphas)
        folds = KFold(n_splits=self.cv, shuffle=True, random_state=self.random_state)
        self.cv_model_ = LassoCV(alphas=alphas, cv=folds, max_iter=self.max_iter)
        self.cv_model_.fit(X, y)

        self.alpha_min_, self.alpha_1se_ = one_se_alpha(self.cv_model_.alphas_, self.cv_model_.mse_path_)
        self.model_min_ = Lasso(alpha=self.alpha_min_, max_iter=self.max_iter).fit(X, y)
        self.model_1se_ = Lasso(alpha=self.alpha_1se_, max_iter=self.max_iter).fit(X, y)
        return self

    @property
    def coefficients(self) -> pd.DataFrame:
        """Coefficients (per SD of exposure) at alpha_min and alpha_1se."""
        return pd.DataFrame({
            "coef_min": self.model_min_.coef_,
            "coef_1se": self.model_1se_.coef_,
        }, index=list(self.schema.exposures))

    def selected(self, rule: str = "min") -> List[str]:
        """Exposures with a non-zero coefficient under ``rule`` ("min" or "1se")."""
        coef = self.coefficients[f"coef_{rule}"]
        return list(coef.index[coef != 0])

    def cv_curve(self) -> pd.DataFrame:
        """Mean and standard error of the CV MSE at every alpha."""
        mse = self.cv_model_.mse_path_
        return pd.DataFrame({
            "alpha": self.cv_model_.alphas_,
            "mse": mse.mean(axis=1),
            "se": mse.std(axis=1, ddof=1) / np.sqrt(mse.shape[1]),
        })

    def coefficient_path(self) -> pd.DataFrame:
        """Coefficients along the alpha path (rows = alphas)."""
        X = self.X_train_.values
        y = self.y_train_
        alphas, coefs, _ = lasso_path(X - X.mean(axis=0), y - y.mean(), alphas=self.cv_model_.alphas_)
        return pd.DataFrame(coefs.T, index=pd.Index(alphas, name="alpha"), columns=list(self.schema.exposures))

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        return self.model_min_.predict(self.preprocessor_.transform(df))

    def importance(self) -> pd.Series:
        return self.coefficients["coef_min"].abs().sort_values(ascending=False)

    def explain(self, df: pd.DataFrame, **kwargs) -> shap.Explanation:
        explainer = shap.LinearExplainer(self.model_min_, self.X_train_)
        return explainer(self.preprocessor_.transform(df))


def create_rf_model(
    params: Optional[Dict[str, Any]] = None,
    random_state: int = RANDOM_STATE,
    n_jobs: int = -1
) -> RandomForestRegressor:
    """
    Create a regression forest from (mtry, num_trees, min_node_size).

    Parameters
    ----------
    params : Dict[str, Any], optional
        Forest parameters. Uses defaults if not provided.
        ``mtry=None`` means floor(sqrt(p)).
    random_state : int
        Random state
    n_jobs : int
        Parallel jobs for tree fitting

    Returns
    -------
    RandomForestRegressor
        Configured model with out-of-bag scoring enabled
    """
    model_params = RF_DEFAULT_PARAMS.copy()
    if params:
        model_params.update(params)

    mtry = model_params["mtry"]
    return RandomForestRegressor(
        n_estimators=int(model_params["num_trees"]),
        max_features="sqrt" if mtry is None else int(mtry),
        min_samples_split=max(2, int(model_params["min_node_size"])),
        bootstrap=True,
        oob_score=True,
        random_state=random_state,
        n_jobs=n_jobs,
    )


class ForestModel(FittedModel):
    """
    Random forest on exposures and covariates (factors as integer codes).
    """

    def __init__(
        self,
        schema: DatasetSchema,
        params: Optional[Dict[str, Any]] = None,
        random_state: int = RANDOM_STATE,
        n_jobs: int = -1
    ):
        self.schema = schema
        self.params = params
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.preprocessor_ = None
        self.model_ = None

    def fit(self, df: pd.DataFrame):
        self.preprocessor_ = get_forest_preprocessor(self.schema)
        X = self.preprocessor_.fit_transform(df)
        y = df[self.schema.outcome].astype(float).values
        self.model_ = create_rf_model(self.params, random_state=self.random_state, n_jobs=self.n_jobs)
        self.model_.fit(X, y)
        self.oob_rmse_ = oob_rmse(self.model_, y)
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        return self.preprocessor_.transform(df)

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        return self.model_.predict(self.transform(df))

    def importance(self) -> pd.Series:
        """Impurity (variance-reduction) importance."""
        return pd.Series(
            self.model_.feature_importances_,
            index=list(self.model_.feature_names_in_),
        ).sort_values(ascending=False)

    def explain(
        self,
        df: pd.DataFrame,
        method: str = "tree",
        features: Optional[List[str]] = None,
        nsamples: int = SHAP_NSAMPLES,
        background_size: int = 50,
        **kwargs
    ) -> shap.Explanation:
        """
        SHAP values for the rows of ``df``.

        ``method="tree"`` is exact over every predictor. ``method="sampling"``
        is a Monte-Carlo approximation that samples only the
        ``features`` columns.
        """
        X = self.transform(df)
        cols = list(X.columns)
        features = features or cols
        idx = [cols.index(c) for c in features]

        if method == "tree":
            explanation = shap.TreeExplainer(self.model_)(X)
            if features == cols:
                return explanation
            return shap.Explanation(
                values=explanation.values[:, idx],
                base_values=explanation.base_values,
                data=X[features].values,
                feature_names=features,
            )

        if method != "sampling":
            raise ValueError(f"Unknown method: {method!r}")

        background = shap.sample(X, min(background_size, len(X)), random_state=self.random_state)

        def f(a):
            return self.model_.predict(pd.DataFrame(a, columns=cols))

        explainer = shap.SamplingExplainer(f, background)
        ref = explainer.data.data
        # sampling_estimate writes its masked rows into this buffer
        explainer.X_masked = np.zeros((2 * nsamples, ref.shape[1]))

        values = np.zeros((len(X), len(idx)))
        rng_state = np.random.get_state()
        np.random.seed(self.random_state)
        try:
            for i, x in enumerate(X.values.astype(float)):
                for k, j in enumerate(idx):
                    phi, _ = explainer.sampling_estimate(j, f, x[None, :], ref, nsamples=nsamples)
                    values[i, k] = float(np.squeeze(phi))
        finally:
            np.random.set_state(rng_state)

        return shap.Explanation(
            values=values,
            base_values=np.full(len(X), explainer.expected_value),
            data=X[features].values,
            feature_names=features,
        )


class KernelMachineModel(FittedModel):
    """
    BKMR: linear covariate effects plus a Gaussian-kernel function of the
    standardized exposures, fitted by MCMC.
    """

    def __init__(
        self,
        schema: DatasetSchema,
        draws: int = BKMR_DRAWS,
        tune: int = BKMR_TUNE,
        chains: int = BKMR_CHAINS,
        cores: Optional[int] = None,
        target_accept: float = BKMR_TARGET_ACCEPT,
        random_state: int = RANDOM_STATE
    ):
        self.schema = schema
        self.draws = draws
        self.tune = tune
        self.chains = chains
        self.cores = cores
        self.target_accept = target_accept
        self.random_state = random_state
        self.exposure_scaler_ = None
        self.covariate_prep_ = None
        self.fit_ = None
        self.diagnostics_ = None

    def _design(self, df: pd.DataFrame):
        Z = self.exposure_scaler_.transform(df).values
        X = np.ones((len(df), 1))
        if self.covariate_prep_ is not None:
            X = np.column_stack([X, self.covariate_prep_.transform(df).values])
        return X, Z

    def fit(self, df: pd.DataFrame):
        from .bkmr import BKMRFit, build_bkmr_model, sample_bkmr, convergence_diagnostics

        self.exposure_scaler_ = get_exposure_scaler(self.schema).fit(df)
        fixed_effects = ["intercept"]
        if self.schema.covariates:
            self.covariate_prep_ = get_covariate_preprocessor(self.schema).fit(df)
            fixed_effects += list(self.covariate_prep_.get_feature_names_out())
        X, Z = self._design(df)
        y = df[self.schema.outcome].astype(float).values

        model = build_bkmr_model(y, X, Z, self.schema.exposures, fixed_effects)
        idata = sample_bkmr(
            model,
            draws=self.draws,
            tune=self.tune,
            chains=self.chains,
            cores=self.cores,
            target_accept=self.target_accept,
            random_state=self.random_state,
        )
        scaler = self.exposure_scaler_.named_transformers_["num"]
        self.fit_ = BKMRFit(
            idata=idata,
            y=y,
            X=X,
            Z=Z,
            exposures=tuple(self.schema.exposures),
            fixed_effects=tuple(fixed_effects),
            z_center=scaler.mean_,
            z_scale=scaler.scale_,
        )
        self.diagnostics_ = convergence_diagnostics(idata)
        return self

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        from .bkmr import predict_h

        X, Z = self._design(df)
        beta = self.fit_.posterior_means()["beta"]
        return X @ beta + predict_h(self.fit_, Z)

    def importance(self) -> pd.Series:
        """Posterior mean of the kernel weight r_m (0 = exposure unused)."""
        r = self.fit_.posterior_means()["r"]
        return pd.Series(r, index=list(self.fit_.exposures)).sort_values(ascending=False)

    def explain(
        self,
        df: pd.DataFrame,
        nsamples: int = SHAP_NSAMPLES,
        background_size: int = 25,
        **kwargs
    ) -> shap.Explanation:
        """
        Kernel SHAP over the exposures. Covariates enter linearly and do not
        interact with h, so they carry no exposure attribution.
        """
        from .bkmr import predict_h

        exposures = list(self.fit_.exposures)
        raw = df[exposures].astype(float)
        center, scale = self.fit_.z_center, self.fit_.z_scale

        def f(a):
            return predict_h(self.fit_, (np.asarray(a, dtype=float) - center) / scale)

        background = shap.sample(raw, min(background_size, len(raw)), random_state=self.random_state)
        explainer = shap.KernelExplainer(f, background)
        values = explainer.shap_values(raw, nsamples=nsamples, silent=True)
        return shap.Explanation(
            values=np.asarray(values),
            base_values=np.full(len(raw), explainer.expected_value),
            data=raw.values,
            feature_names=exposures,
        )
