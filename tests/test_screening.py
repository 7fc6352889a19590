"""
Tests for exploratory summaries and covariate-adjusted screening.

Run with: pytest tests/test_screening.py -v
"""
import numpy as np
import pytest

from exposure_ml.data_loader import prepare_dataset
from exposure_ml.errors import ZeroVarianceError
from exposure_ml.screening import (
    bonferroni_threshold,
    covariate_design,
    exposure_correlation,
    multiple_regression,
    summarize_exposures,
    univariate_screening,
)


@pytest.fixture
def clean(table, schema):
    data, _ = prepare_dataset(table, schema)
    return data


class TestExploratory:
    """Tests for descriptive summaries."""

    def test_summary_rows(self, clean, schema):
        summary = summarize_exposures(clean, schema)
        assert list(summary.index) == list(schema.exposures)
        assert {"mean", "std", "skew"} <= set(summary.columns)

    def test_correlation_matrix(self, clean, schema):
        corr = exposure_correlation(clean, schema, method="pearson")
        assert corr.shape == (6, 6)
        assert np.allclose(np.diag(corr.values), 1.0)
        assert np.allclose(corr.values, corr.values.T)


class TestUnivariateScreening:
    """Tests for one-exposure-at-a-time OLS."""

    def test_record_layout(self, clean, schema):
        res = univariate_screening(clean, schema)
        assert list(res["exposure"]) == list(schema.exposures)
        for col in ["estimate", "ci_low", "ci_high", "p_value", "neg_log10_p", "bonferroni_significant"]:
            assert col in res.columns
        assert (res["ci_low"] <= res["estimate"]).all()
        assert (res["estimate"] <= res["ci_high"]).all()

    def test_causal_exposure_ranked_first(self, small_table, small_schema):
        data, _ = prepare_dataset(small_table, small_schema)
        res = univariate_screening(data, small_schema)
        top = res.sort_values("p_value").iloc[0]
        assert top["exposure"] == "exp_1"
        assert top["bonferroni_significant"]
        assert top["estimate"] == pytest.approx(3.0, abs=0.6)

    def test_bonferroni_threshold(self):
        assert bonferroni_threshold(28, 0.05) == pytest.approx(0.05 / 28)

    def test_zero_variance_raises(self, clean, schema):
        df = clean.copy()
        df["exp_3"] = 1.0
        with pytest.raises(ZeroVarianceError) as exc:
            univariate_screening(df, schema)
        assert exc.value.columns == ["exp_3"]


class TestMultipleRegression:
    """Tests for the all-exposures model."""

    def test_layout_and_vif(self, clean, schema):
        res = multiple_regression(clean, schema)
        assert list(res["exposure"]) == list(schema.exposures)
        assert (res["vif"] >= 1.0 - 1e-9).all()
        assert res.set_index("exposure")["p_value"].idxmin() == "exp_1"

    def test_covariate_design_dummies(self, clean, schema):
        design = covariate_design(clean, schema)
        # sex: 1 dummy, smoking: 2 dummies, plus age and bmi
        assert design.shape[1] == 5
        assert design.dtypes.map(lambda d: d.kind == "f").all()
