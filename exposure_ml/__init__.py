"""
Exposure Mixture Analysis - ML Pipeline
=======================================

Package structure:
- config: Constants and configuration
- errors: Exceptions and warnings
- data_loader: Data loading, schema inference and outlier trimming
- preprocessing: sklearn transformers for exposures and covariates
- screening: Descriptive summaries, univariate and multiple regression
- models: LASSO, random forest and BKMR behind one interface
- stability: Stability selection for the LASSO
- evaluation: OOB grid search and model-selection helpers
- bkmr: Bayesian Kernel Machine Regression (PyMC)
- optimization: Numba-accelerated kernel computations
- visualization: Figures for every stage
- pipeline: End-to-end run
"""

from . import config
from . import errors
from . import data_loader
from . import preprocessing
from . import screening
from . import models
from . import stability
from . import evaluation
from . import optimization
from . import visualization
from . import pipeline

__version__ = "1.0.0"
__author__ = "Exposome Methods Tutorial Team"
