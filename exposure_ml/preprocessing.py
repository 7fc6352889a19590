"""
Preprocessing pipelines for exposures and covariates.
"""
from typing import List, Optional

from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import OneHotEncoder, OrdinalEncoder, StandardScaler

from .data_loader import DatasetSchema


def create_preprocessing_pipeline(
    num_cols: Optional[List[str]] = None,
    cat_cols: Optional[List[str]] = None,
    scale_numeric: bool = True,
    cat_encoding: str = "onehot",
) -> ColumnTransformer:
    """
    Create a ColumnTransformer for preprocessing features.

    Pipeline structure:
    - Numeric: standardization (or passthrough when ``scale_numeric=False``)
    - Categorical: one-hot with the first level dropped, or integer codes

    Output is a DataFrame with the original column names, so fitted
    models and SHAP plots keep readable feature labels.
    """
    transformers = []

    if num_cols:
        transformers.append(("num", StandardScaler() if scale_numeric else "passthrough", num_cols))

    if cat_cols:
        if cat_encoding == "onehot":
            encoder = OneHotEncoder(drop="first", handle_unknown="ignore", sparse_output=False)
        elif cat_encoding == "ordinal":
            # same as ranger's default handling of unordered factors
            encoder = OrdinalEncoder()
        else:
            raise ValueError(f"Unknown cat_encoding: {cat_encoding!r}")
        transformers.append(("cat", encoder, cat_cols))

    ct = ColumnTransformer(
        transformers=transformers,
        remainder="drop",
        verbose_feature_names_out=False,
    )
    return ct.set_output(transform="pandas")


def get_lasso_preprocessor(schema: DatasetSchema) -> ColumnTransformer:
    """Standardized exposures only."""
    return create_preprocessing_pipeline(num_cols=list(schema.exposures))


def get_forest_preprocessor(schema: DatasetSchema) -> ColumnTransformer:
    """Raw exposures and numeric covariates plus integer-coded factors."""
    return create_preprocessing_pipeline(
        num_cols=list(schema.exposures) + schema.numeric_covariates,
        cat_cols=list(schema.categorical),
        scale_numeric=False,
        cat_encoding="ordinal",
    )


def get_exposure_scaler(schema: DatasetSchema) -> ColumnTransformer:
    """Standardized exposure block for the kernel."""
    return create_preprocessing_pipeline(num_cols=list(schema.exposures))


def get_covariate_preprocessor(schema: DatasetSchema) -> ColumnTransformer:
    """Fixed-effects block: standardized numeric covariates plus dummies."""
    return create_preprocessing_pipeline(
        num_cols=schema.numeric_covariates,
        cat_cols=list(schema.categorical),
        cat_encoding="onehot",
    )
