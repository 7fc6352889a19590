# ============================================================
# run_analysis.py
# Goal: LASSO, random forest and BKMR on the biomarker table,
#       printing every summary table and saving every figure
# ============================================================
import warnings
warnings.filterwarnings("ignore", category=FutureWarning)

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from exposure_ml.config import RANDOM_STATE, FIGURES_DIR, SIGNIFICANCE_LEVEL
from exposure_ml.data_loader import load_dataset, infer_schema
from exposure_ml.pipeline import run_pipeline, header
from exposure_ml import visualization as viz

np.random.seed(RANDOM_STATE)


def save(fig, name: str):
    FIGURES_DIR.mkdir(parents=True, exist_ok=True)
    path = FIGURES_DIR / f"{name}.png"
    fig.savefig(path, dpi=200, bbox_inches="tight")
    plt.close(fig)
    print(f"Saved: {path}")


def main():
    raw = load_dataset()
    schema = infer_schema(raw)
    print(f"Loaded {raw.shape[0]} rows | {len(schema.covariates)} covariates | "
          f"{len(schema.exposures)} exposures | outcome={schema.outcome}")

    res = run_pipeline(raw, schema=schema)

    header("Trimming report")
    print(res.trim_report[res.trim_report["n_trimmed"] > 0].to_string())

    header("Univariate screening (sorted by p)")
    print(res.univariate.sort_values("p_value").to_string(index=False))

    header("Multiple linear regression")
    print(res.multiple_regression.to_string(index=False))

    header("LASSO coefficients")
    print(res.lasso.coefficients.to_string())

    header("Stability selection")
    print(res.stability.frequencies.to_string())
    print(f"Selected (freq >= {res.stability.cutoff}, PFER <= {res.stability.pfer}): "
          f"{list(res.stability.selected)}")

    header("Random forest grid search")
    print(res.grid.sort_values("oob_rmse").to_string(index=False))
    print(f"Best: {res.best_params}")

    header("Figures")
    save(viz.plot_exposure_boxplots(res.data, schema), "01_exposure_boxplots")
    save(viz.plot_correlation_heatmap(res.correlation), "02_correlation_heatmap")
    save(viz.plot_volcano(res.univariate, alpha=SIGNIFICANCE_LEVEL), "03_volcano")
    save(viz.plot_lasso_cv(res.lasso.cv_curve(), res.lasso.alpha_min_, res.lasso.alpha_1se_), "04_lasso_cv")
    save(viz.plot_lasso_path(res.lasso.coefficient_path(), res.lasso.alpha_min_), "05_lasso_path")
    save(viz.plot_stability(res.stability.frequencies, res.stability.cutoff), "06_stability_selection")
    save(viz.plot_grid_search(res.grid), "07_rf_grid_search")
    save(viz.plot_feature_importance(res.forest.importance()), "08_rf_impurity_importance")
    save(viz.plot_feature_importance(res.permutation_importance, title="Permutation importance, in-sample (MSE increase)"),
         "09_rf_permutation_importance")

    if res.shap_values is not None:
        save(viz.plot_shap_summary(res.shap_values), "10_shap_summary")
        top = res.forest.importance().index[0]
        save(viz.plot_shap_dependence(res.shap_values, top), f"11_shap_dependence_{top}")
        save(viz.plot_shap_waterfall(res.shap_values, row=0), "12_shap_waterfall")
        save(viz.plot_shap_summary(res.shap_subset), "13_shap_sampling_subset")

    if res.kernel_machine is not None:
        save(viz.plot_trace(res.kernel_machine.fit_.idata), "14_bkmr_trace")
        save(viz.plot_exposure_response(res.exposure_response), "15_bkmr_exposure_response")
        save(viz.plot_overall_risk(res.overall_risk), "16_bkmr_overall_risk")
        save(viz.plot_single_variable_risks(res.single_variable_risks), "17_bkmr_single_variable")

        header("BKMR overall risk")
        print(res.overall_risk.to_string(index=False))


if __name__ == "__main__":
    main()
