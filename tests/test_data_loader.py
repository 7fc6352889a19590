"""
Tests for loading, schema inference and outlier trimming.

Run with: pytest tests/test_data_loader.py -v
"""
import warnings

import numpy as np
import pandas as pd
import pytest

from exposure_ml.data_loader import (
    DatasetSchema,
    infer_schema,
    iqr_bounds,
    load_dataset,
    prepare_dataset,
    trim_outliers,
)
from exposure_ml.errors import DataQualityWarning, InsufficientDataError


class TestLoadDataset:
    """Tests for CSV loading."""

    def test_drops_index_column(self, tmp_path, table):
        path = tmp_path / "biomarkers.csv"
        table.to_csv(path)  # writes the index as the first column
        df = load_dataset(path)
        assert list(df.columns) == list(table.columns)
        assert len(df) == len(table)


class TestInferSchema:
    """Tests for positional column roles."""

    def test_positions(self, table):
        schema = infer_schema(table, n_covariates=4)
        assert schema.covariates == ("sex", "age", "bmi", "smoking")
        assert schema.exposures == tuple(f"exp_{i}" for i in range(1, 7))
        assert schema.outcome == "outcome"

    def test_categorical_only_if_present(self, small_table):
        schema = infer_schema(small_table, n_covariates=2)
        assert schema.categorical == ("sex",)
        assert schema.numeric_covariates == ["age"]

    def test_too_few_columns(self):
        df = pd.DataFrame({"a": [1], "b": [2]})
        with pytest.raises(ValueError):
            infer_schema(df, n_covariates=4)


class TestTrimOutliers:
    """Regression tests for the IQR fence."""

    def test_known_trim_count(self):
        df = pd.DataFrame({
            "x": list(range(1, 21)) + [1000],
            "y": list(range(21)),
        })
        out, report = trim_outliers(df, ["x", "y"], factor=10.0)

        # Q1 = 6, Q3 = 16, IQR = 10 -> fences (-94, 116)
        assert report.loc["x", "lower"] == pytest.approx(-94.0)
        assert report.loc["x", "upper"] == pytest.approx(116.0)
        assert report.loc["x", "n_trimmed"] == 1
        assert report.loc["x", "frac_trimmed"] == pytest.approx(1 / 21)
        assert report.loc["y", "n_trimmed"] == 0
        assert np.isnan(out.loc[20, "x"])
        assert out["x"].isna().sum() == 1

    def test_input_not_modified(self):
        df = pd.DataFrame({"x": [1.0, 2.0, 3.0, 4.0, 1e6]})
        before = df.copy()
        trim_outliers(df, ["x"], factor=1.0)
        pd.testing.assert_frame_equal(df, before)

    def test_tighter_factor_trims_more(self, table, schema):
        _, loose = trim_outliers(table, schema.exposures, factor=10.0)
        _, tight = trim_outliers(table, schema.exposures, factor=0.5)
        assert tight["n_trimmed"].sum() >= loose["n_trimmed"].sum()

    def test_iqr_bounds(self):
        lower, upper = iqr_bounds(pd.Series([1.0, 2.0, 3.0, 4.0, 5.0]), factor=1.0)
        assert (lower, upper) == pytest.approx((0.0, 6.0))


class TestPrepareDataset:
    """Tests for the full cleaning step."""

    def test_no_missing_after_cleaning(self, table, schema):
        df = table.copy()
        df.loc[3, "exp_2"] = 1e6
        df.loc[7, "age"] = np.nan
        clean, report = prepare_dataset(df, schema)

        assert clean.isna().sum().sum() == 0
        assert len(clean) == len(table) - 2
        assert report.loc["exp_2", "n_trimmed"] == 1
        assert isinstance(clean["sex"].dtype, pd.CategoricalDtype)
        assert isinstance(clean["smoking"].dtype, pd.CategoricalDtype)

    def test_selects_schema_columns(self, table, schema):
        df = table.assign(extra=1.0)
        clean, _ = prepare_dataset(df, schema)
        assert "extra" not in clean.columns

    def test_empty_result_raises(self, table, schema):
        df = table.copy()
        df["outcome"] = np.nan
        with pytest.raises(InsufficientDataError):
            prepare_dataset(df, schema)

    def test_min_rows(self, small_table, small_schema):
        with pytest.raises(InsufficientDataError):
            prepare_dataset(small_table, small_schema, min_rows=51)

    def test_large_drop_warns(self, table, schema):
        df = table.copy()
        df.loc[: len(df) // 2, "outcome"] = np.nan
        with pytest.warns(DataQualityWarning):
            prepare_dataset(df, schema)

    def test_small_drop_is_silent(self, table, schema):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DataQualityWarning)
            prepare_dataset(table, schema)

    def test_schema_is_frozen(self, schema):
        assert isinstance(schema, DatasetSchema)
        with pytest.raises(AttributeError):
            schema.outcome = "other"
