"""
Exceptions and warnings raised by the analysis stages.
"""


class AnalysisError(Exception):
    """Base class for errors raised by exposure_ml."""


class InsufficientDataError(AnalysisError, ValueError):
    """Too few complete rows remain after filtering."""


class ZeroVarianceError(AnalysisError, ValueError):
    """A predictor is constant, so its effect cannot be estimated."""

    def __init__(self, columns):
        self.columns = list(columns)
        super().__init__(f"Zero-variance predictor(s): {', '.join(self.columns)}")


class DataQualityWarning(UserWarning):
    """Cleaning removed a large share of the data."""


class ConvergenceWarning(UserWarning):
    """The MCMC sampler shows signs of non-convergence."""
