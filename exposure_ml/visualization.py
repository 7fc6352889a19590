"""
Visualization utilities for the exposure mixture analysis.
"""
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Optional

from .config import SIGNIFICANCE_LEVEL
from .data_loader import DatasetSchema


def plot_exposure_boxplots(
    df: pd.DataFrame,
    schema: DatasetSchema,
    log_scale: bool = True,
    figsize: tuple = (14, 6)
) -> plt.Figure:
    """
    Boxplots of every exposure on a shared axis.

    Log scale is only applied when all values are positive.
    """
    long = df[list(schema.exposures)].melt(var_name="exposure", value_name="value")
    fig, ax = plt.subplots(figsize=figsize)
    sns.boxplot(data=long, x="exposure", y="value", ax=ax, color="lightsteelblue", fliersize=2)
    if log_scale and (long["value"] > 0).all():
        ax.set_yscale("log")
    ax.set_title("Exposure distributions")
    ax.set_xlabel("")
    plt.xticks(rotation=60, ha="right")
    plt.tight_layout()
    return fig


def plot_correlation_heatmap(
    corr: pd.DataFrame,
    figsize: tuple = (11, 9),
    title: str = "Exposure correlations"
) -> plt.Figure:
    """Lower-triangle heatmap of a correlation matrix."""
    fig, ax = plt.subplots(figsize=figsize)
    mask = np.triu(np.ones_like(corr, dtype=bool), k=1)
    sns.heatmap(corr, mask=mask, cmap="RdBu_r", vmin=-1, vmax=1, center=0,
                square=True, linewidths=0.3, cbar_kws={"shrink": 0.7}, ax=ax)
    ax.set_title(title)
    plt.tight_layout()
    return fig


def plot_volcano(
    results: pd.DataFrame,
    alpha: float = SIGNIFICANCE_LEVEL,
    figsize: tuple = (9, 6),
    annotate: bool = True
) -> plt.Figure:
    """
    Effect estimate vs -log10(p) for the univariate screen.

    Two reference lines: the nominal ``alpha`` and the Bonferroni threshold
    ``alpha / n_exposures``.
    """
    fig, ax = plt.subplots(figsize=figsize)
    bonf = alpha / len(results)
    colors = np.where(results["p_value"] < bonf, "firebrick",
                      np.where(results["p_value"] < alpha, "darkorange", "grey"))

    ax.scatter(results["estimate"], results["neg_log10_p"], c=colors, s=40, alpha=0.8)
    ax.axhline(-np.log10(alpha), color="darkorange", linestyle="--", label=f"p = {alpha}")
    ax.axhline(-np.log10(bonf), color="firebrick", linestyle="--", label=f"Bonferroni p = {bonf:.2g}")
    ax.axvline(0, color="black", linewidth=0.5)

    if annotate:
        for _, row in results[results["p_value"] < alpha].iterrows():
            ax.annotate(row["exposure"], (row["estimate"], row["neg_log10_p"]),
                        xytext=(3, 3), textcoords="offset points", fontsize=8)

    ax.set_xlabel("Adjusted effect estimate")
    ax.set_ylabel("-log10(p)")
    ax.set_title("Univariate screening")
    ax.legend()
    plt.tight_layout()
    return fig


def plot_lasso_cv(
    cv_curve: pd.DataFrame,
    alpha_min: float,
    alpha_1se: float,
    figsize: tuple = (8, 5)
) -> plt.Figure:
    """CV error (mean +/- 1 SE) along the penalty path."""
    fig, ax = plt.subplots(figsize=figsize)
    log_alpha = np.log10(cv_curve["alpha"])
    ax.errorbar(log_alpha, cv_curve["mse"], yerr=cv_curve["se"], fmt="o", color="firebrick",
                ecolor="lightgrey", markersize=3)
    ax.axvline(np.log10(alpha_min), color="black", linestyle="--", label="alpha_min")
    ax.axvline(np.log10(alpha_1se), color="grey", linestyle=":", label="alpha_1se")
    ax.set_xlabel("log10(alpha)")
    ax.set_ylabel("Mean squared error")
    ax.set_title("LASSO cross-validation")
    ax.legend()
    plt.tight_layout()
    return fig


def plot_lasso_path(
    path: pd.DataFrame,
    alpha_min: Optional[float] = None,
    figsize: tuple = (9, 6)
) -> plt.Figure:
    """Coefficient trajectories against log10(alpha)."""
    fig, ax = plt.subplots(figsize=figsize)
    log_alpha = np.log10(path.index.values)
    for col in path.columns:
        ax.plot(log_alpha, path[col].values, linewidth=1)
    if alpha_min is not None:
        ax.axvline(np.log10(alpha_min), color="black", linestyle="--")
    ax.invert_xaxis()
    ax.set_xlabel("log10(alpha)")
    ax.set_ylabel("Coefficient (per SD)")
    ax.set_title("LASSO coefficient path")
    plt.tight_layout()
    return fig


def plot_stability(
    frequencies: pd.Series,
    cutoff: float,
    figsize: tuple = (9, 7)
) -> plt.Figure:
    """Selection frequency per exposure with the cutoff line."""
    fig, ax = plt.subplots(figsize=figsize)
    freq = frequencies.sort_values()
    colors = np.where(freq.values >= cutoff, "firebrick", "steelblue")
    ax.barh(freq.index, freq.values, color=colors)
    ax.axvline(cutoff, color="black", linestyle="--", label=f"cutoff = {cutoff}")
    ax.set_xlim(0, 1)
    ax.set_xlabel("Selection frequency")
    ax.set_title("Stability selection")
    ax.legend()
    plt.tight_layout()
    return fig


def plot_grid_search(
    grid: pd.DataFrame,
    figsize: tuple = (12, 4)
) -> plt.Figure:
    """OOB RMSE against mtry, one panel per min_node_size, one line per num_trees."""
    node_sizes = sorted(grid["min_node_size"].unique())
    fig, axes = plt.subplots(1, len(node_sizes), figsize=figsize, sharey=True, squeeze=False)
    for ax, node in zip(axes[0], node_sizes):
        sub = grid[grid["min_node_size"] == node]
        for trees, g in sub.groupby("num_trees"):
            ax.plot(g["mtry"], g["oob_rmse"], "o-", label=f"{trees} trees")
        ax.set_title(f"min_node_size = {node}")
        ax.set_xlabel("mtry")
        ax.grid(True, alpha=0.3)
    axes[0][0].set_ylabel("OOB RMSE")
    axes[0][-1].legend()
    plt.tight_layout()
    return fig


def plot_feature_importance(
    importances: pd.Series,
    top_n: int = 15,
    figsize: tuple = (10, 6),
    title: str = "Impurity importance"
) -> plt.Figure:
    """
    Plot feature importance as horizontal bar chart.

    Parameters
    ----------
    importances : pd.Series
        Feature importances (index=feature name, value=importance)
    top_n : int
        Number of top features to show
    figsize : tuple
        Figure size
    title : str
        Plot title

    Returns
    -------
    plt.Figure
        Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=figsize)

    top_imp = importances.head(top_n).iloc[::-1]  # Reverse for horizontal bars
    colors = plt.cm.RdYlGn_r(np.linspace(0.2, 0.8, len(top_imp)))

    ax.barh(top_imp.index, top_imp.values, color=colors)
    ax.set_xlabel("Importance")
    ax.set_title(title)
    ax.axvline(x=0, color='black', linewidth=0.5)

    plt.tight_layout()
    return fig


def plot_shap_summary(explanation, max_display: int = 20) -> plt.Figure:
    """Beeswarm summary of SHAP values."""
    import shap

    shap.plots.beeswarm(explanation, max_display=max_display, show=False)
    fig = plt.gcf()
    plt.tight_layout()
    return fig


def plot_shap_dependence(explanation, feature: str, figsize: tuple = (7, 5)) -> plt.Figure:
    """SHAP value of one feature against its value, colored by the strongest interaction."""
    import shap

    fig, ax = plt.subplots(figsize=figsize)
    shap.plots.scatter(explanation[:, feature], color=explanation, ax=ax, show=False)
    plt.tight_layout()
    return fig


def plot_shap_waterfall(explanation, row: int = 0, max_display: int = 12) -> plt.Figure:
    """Additive breakdown of one prediction."""
    import shap

    shap.plots.waterfall(explanation[row], max_display=max_display, show=False)
    fig = plt.gcf()
    plt.tight_layout()
    return fig


def plot_trace(idata, var_names=None) -> plt.Figure:
    """MCMC trace plots (density + trajectory) for visual convergence checks."""
    import arviz as az

    var_names = var_names or ["beta", "r", "sigsq", "lambda"]
    axes = az.plot_trace(idata, var_names=var_names, compact=True)
    fig = np.asarray(axes).ravel()[0].figure
    fig.tight_layout()
    return fig


def plot_exposure_response(
    curves: pd.DataFrame,
    ncols: int = 4,
    use_original_units: bool = False
) -> plt.Figure:
    """Univariate exposure-response curves with 95% credible bands."""
    variables = list(dict.fromkeys(curves["variable"]))
    nrows = int(np.ceil(len(variables) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(3.2 * ncols, 2.6 * nrows),
                             sharey=True, squeeze=False)
    xcol = "value" if use_original_units else "z"

    for ax, name in zip(axes.ravel(), variables):
        c = curves[curves["variable"] == name]
        ax.fill_between(c[xcol], c["lower"], c["upper"], color="steelblue", alpha=0.25)
        ax.plot(c[xcol], c["est"], color="steelblue")
        ax.axhline(0, color="black", linewidth=0.4)
        ax.set_title(name, fontsize=9)
    for ax in axes.ravel()[len(variables):]:
        ax.set_visible(False)

    fig.supylabel("h(z)")
    plt.tight_layout()
    return fig


def plot_overall_risk(overall: pd.DataFrame, figsize: tuple = (7, 5)) -> plt.Figure:
    """Joint-exposure effect relative to the reference quantile."""
    fig, ax = plt.subplots(figsize=figsize)
    ax.errorbar(overall["quantile"], overall["est"],
                yerr=[overall["est"] - overall["lower"], overall["upper"] - overall["est"]],
                fmt="o", color="black", capsize=3)
    ax.axhline(0, color="grey", linestyle="--")
    ax.set_xlabel("Quantile of all exposures")
    ax.set_ylabel("Change in outcome")
    ax.set_title("Overall mixture effect")
    plt.tight_layout()
    return fig


def plot_single_variable_risks(risks: pd.DataFrame, figsize: tuple = (8, 9)) -> plt.Figure:
    """25th to 75th percentile effect of each exposure, by level of the others."""
    fig, ax = plt.subplots(figsize=figsize)
    variables = list(dict.fromkeys(risks["variable"]))
    levels = sorted(risks["q_fixed"].unique())
    offsets = np.linspace(-0.25, 0.25, len(levels))
    ypos = np.arange(len(variables))

    for off, q in zip(offsets, levels):
        sub = risks[risks["q_fixed"] == q].set_index("variable").loc[variables]
        ax.errorbar(sub["est"], ypos + off,
                    xerr=[sub["est"] - sub["lower"], sub["upper"] - sub["est"]],
                    fmt="o", markersize=3, capsize=2, label=f"others at q{int(q * 100)}")

    ax.set_yticks(ypos)
    ax.set_yticklabels(variables)
    ax.axvline(0, color="grey", linestyle="--")
    ax.set_xlabel("Change in h (IQR increase)")
    ax.legend()
    plt.tight_layout()
    return fig
