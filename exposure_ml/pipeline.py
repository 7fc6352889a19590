"""
End-to-end analysis: preparation -> exploration -> screening -> LASSO ->
random forest -> BKMR.

Every stage reads the cleaned table and returns new artifacts; the table is
never modified after preparation.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import (
    RANDOM_STATE, RF_PARAM_GRID, OUTLIER_IQR_FACTOR, MIN_ROWS,
    STABILITY_CUTOFF, STABILITY_PFER, STABILITY_N_SUBSAMPLES,
    BKMR_DRAWS, BKMR_TUNE, BKMR_CHAINS, SHAP_SUBSET_SIZE
)
from .data_loader import DatasetSchema, infer_schema, prepare_dataset
from .evaluation import grid_search_oob, permutation_importance_scores
from .models import LassoModel, ForestModel, KernelMachineModel
from .screening import (
    summarize_exposures, exposure_correlation,
    univariate_screening, multiple_regression
)
from .stability import StabilityResult, stability_selection


@dataclass(frozen=True)
class PipelineResult:
    schema: DatasetSchema
    data: pd.DataFrame
    trim_report: pd.DataFrame
    exposure_summary: pd.DataFrame
    correlation: pd.DataFrame
    univariate: pd.DataFrame
    multiple_regression: pd.DataFrame
    lasso: LassoModel
    stability: StabilityResult
    forest_baseline: ForestModel
    grid: pd.DataFrame
    best_params: Dict[str, Any]
    forest: ForestModel
    permutation_importance: pd.Series
    shap_values: Optional[Any] = None
    shap_subset: Optional[Any] = None
    kernel_machine: Optional[KernelMachineModel] = None
    exposure_response: Optional[pd.DataFrame] = None
    overall_risk: Optional[pd.DataFrame] = None
    single_variable_risks: Optional[pd.DataFrame] = None


def header(title: str, verbose: bool = True):
    if verbose:
        print("\n" + "=" * 70)
        print(title)
        print("=" * 70)


def run_pipeline(
    raw: pd.DataFrame,
    schema: Optional[DatasetSchema] = None,
    outlier_factor: float = OUTLIER_IQR_FACTOR,
    min_rows: int = MIN_ROWS,
    param_grid: Dict[str, List[Any]] = RF_PARAM_GRID,
    stability_cutoff: float = STABILITY_CUTOFF,
    stability_pfer: float = STABILITY_PFER,
    stability_subsamples: int = STABILITY_N_SUBSAMPLES,
    run_shap: bool = True,
    shap_subset_size: int = SHAP_SUBSET_SIZE,
    run_bkmr: bool = True,
    bkmr_draws: int = BKMR_DRAWS,
    bkmr_tune: int = BKMR_TUNE,
    bkmr_chains: int = BKMR_CHAINS,
    random_state: int = RANDOM_STATE,
    n_jobs: int = -1,
    verbose: bool = True,
) -> PipelineResult:
    """
    Run every stage once, top to bottom.

    Parameters
    ----------
    raw : pd.DataFrame
        Observation table without the row-index column
    schema : DatasetSchema, optional
        Column roles. Inferred by position if not provided.
    run_shap, run_bkmr : bool
        Skip the slow explanation / MCMC stages when False

    Returns
    -------
    PipelineResult
    """
    schema = schema or infer_schema(raw)

    header("1. Data preparation", verbose)
    data, trim_report = prepare_dataset(raw, schema, factor=outlier_factor, min_rows=min_rows)
    if verbose:
        print(f"Rows: {len(raw)} -> {len(data)} | trimmed cells: {int(trim_report['n_trimmed'].sum())}")

    header("2. Exploratory summary", verbose)
    summary = summarize_exposures(data, schema)
    corr = exposure_correlation(data, schema)

    header("3. Univariate screening", verbose)
    univariate = univariate_screening(data, schema)
    mlr = multiple_regression(data, schema)
    if verbose:
        print(univariate.sort_values("p_value").head(10).to_string(index=False))

    header("4. LASSO", verbose)
    lasso = LassoModel(schema, random_state=random_state).fit(data)
    stab = stability_selection(
        lasso.X_train_, lasso.y_train_,
        cutoff=stability_cutoff,
        pfer=stability_pfer,
        n_subsamples=stability_subsamples,
        random_state=random_state,
    )
    if verbose:
        print(f"alpha_min={lasso.alpha_min_:.4g} selects {lasso.selected('min')}")
        print(f"alpha_1se={lasso.alpha_1se_:.4g} selects {lasso.selected('1se')}")
        print(f"Stability selection (q={stab.q}, cutoff={stab.cutoff}): {list(stab.selected)}")

    header("5. Random forest", verbose)
    baseline = ForestModel(schema, random_state=random_state, n_jobs=n_jobs).fit(data)
    X_forest = baseline.transform(data)
    y = data[schema.outcome].astype(float).values
    if verbose:
        print(f"Baseline OOB RMSE: {baseline.oob_rmse_:.4f}")
    grid, best_params, best_score = grid_search_oob(
        X_forest, y, param_grid, random_state=random_state, n_jobs=n_jobs, verbose=verbose
    )
    forest = ForestModel(schema, params=best_params, random_state=random_state, n_jobs=n_jobs).fit(data)
    perm = permutation_importance_scores(forest.model_, X_forest, y, random_state=random_state)
    if verbose:
        print(f"Best {best_params} -> OOB RMSE {best_score:.4f}")

    shap_values = shap_subset = None
    if run_shap:
        shap_values = forest.explain(data, method="tree")
        top = list(forest.importance().index[:shap_subset_size])
        shap_subset = forest.explain(data, method="sampling", features=top)

    result = dict(
        schema=schema,
        data=data,
        trim_report=trim_report,
        exposure_summary=summary,
        correlation=corr,
        univariate=univariate,
        multiple_regression=mlr,
        lasso=lasso,
        stability=stab,
        forest_baseline=baseline,
        grid=grid,
        best_params=best_params,
        forest=forest,
        permutation_importance=perm,
        shap_values=shap_values,
        shap_subset=shap_subset,
    )

    if run_bkmr:
        header("6. BKMR", verbose)
        from .bkmr import predictor_response_univariate, overall_risk_summaries, single_variable_risks

        km = KernelMachineModel(
            schema, draws=bkmr_draws, tune=bkmr_tune, chains=bkmr_chains, random_state=random_state
        ).fit(data)
        result.update(
            kernel_machine=km,
            exposure_response=predictor_response_univariate(km.fit_),
            overall_risk=overall_risk_summaries(km.fit_),
            single_variable_risks=single_variable_risks(km.fit_),
        )
        if verbose:
            print(f"Diagnostics: {km.diagnostics_}")

    return PipelineResult(**result)
