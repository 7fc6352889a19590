"""
Configuration and constants for the exposure mixture analysis.
"""
from pathlib import Path
from typing import List

# =========================================================
# Paths
# =========================================================
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
FIGURES_DIR = PROJECT_ROOT / "figures"

# Data files
BIOMARKER_PATH = DATA_DIR / "biomarkers.csv"

# =========================================================
# Column conventions
# =========================================================
# Column 1 is a row index, the next N_COVARIATES columns are covariates,
# the last column is the outcome and everything in between is an exposure.
N_COVARIATES = 4

# Covariates treated as factors
CATEGORICAL_COLS: List[str] = [
    "sex",      # 2 levels
    "smoking",  # 3 levels (never / former / current)
]

# =========================================================
# Data preparation
# =========================================================
RANDOM_STATE = 42

# Loose fence so that legitimately high exposures survive
OUTLIER_IQR_FACTOR = 10.0

MIN_ROWS = 10
MAX_DROP_FRACTION = 0.2

# =========================================================
# Univariate screening
# =========================================================
SIGNIFICANCE_LEVEL = 0.05
CORRELATION_METHOD = "spearman"

# =========================================================
# LASSO
# =========================================================
LASSO_CV_FOLDS = 10
LASSO_N_ALPHAS = 100
LASSO_MAX_ITER = 10000

# Stability selection
STABILITY_CUTOFF = 0.75
STABILITY_PFER = 1.0
STABILITY_N_SUBSAMPLES = 50  # complementary pairs -> 100 fits

# =========================================================
# Random forest
# =========================================================
RF_DEFAULT_PARAMS = {
    "num_trees": 500,
    "mtry": None,        # floor(sqrt(p))
    "min_node_size": 5,
}

# Full grid: 4 x 3 x 3 = 36 fits, each scored out-of-bag
RF_PARAM_GRID = {
    "mtry": [3, 5, 7, 10],
    "num_trees": [100, 300, 500],
    "min_node_size": [3, 5, 10],
}

SHAP_NSAMPLES = 200
SHAP_SUBSET_SIZE = 5

# =========================================================
# BKMR
# =========================================================
BKMR_DRAWS = 2000
BKMR_TUNE = 1000
BKMR_CHAINS = 1
BKMR_TARGET_ACCEPT = 0.9
BKMR_JITTER = 1e-6
RHAT_THRESHOLD = 1.05

# Posterior summaries
BKMR_NGRID = 50
BKMR_Q_FIXED = 0.5
BKMR_OVERALL_QS = [0.25, 0.30, 0.35, 0.40, 0.45, 0.50, 0.55, 0.60, 0.65, 0.70, 0.75]
BKMR_SINGVAR_QS_FIXED = [0.25, 0.50, 0.75]
BKMR_N_POSTERIOR_SAMPLES = 200  # thinned draws used by method="exact"
