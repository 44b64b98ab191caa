"""
Pipeline Configuration
======================
Column definitions, the property-type lookup table, default hyperparameter
grids and the ``PipelineConfig`` passed explicitly into every stage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

RNG_SEED = 42

# -- Columns ----------------------------------------------------------------
RAW_COLUMNS = [
    "index", "title", "final_price", "list_price", "bedrooms", "bathrooms",
    "sqft", "parking", "description", "mls", "type", "full_link",
    "full_address", "lat", "long", "city_district", "mean_district_income",
    "district_code", "bedrooms_ag", "bedrooms_bg", "final_price_log",
]

TEXT_ID_COLUMNS = ["title", "description", "mls", "full_address", "full_link"]
DISTRICT_ID_COLUMNS = ["city_district", "district_code"]

AREA = "sqft"
TYPE = "type"
TARGET = "final_price"
AUX_TARGET = "list_price"

NUMERIC_FEATURES = ["sqft", "bedrooms", "bathrooms", "parking", "mean_district_income"]
CATEGORICAL_FEATURES = ["type"]
FEATURES = NUMERIC_FEATURES + CATEGORICAL_FEATURES
TARGETS = [TARGET, AUX_TARGET]
OUTPUT_COLUMNS = FEATURES + TARGETS

# Columns the loader needs from the raw file
REQUIRED_COLUMNS = [
    "sqft", "bedrooms_ag", "bedrooms_bg", "bathrooms", "parking",
    "mean_district_income", "type", "final_price", "list_price",
]

# -- Property types -----------------------------------------------------------
CANONICAL_TYPES = ["Townhouse", "Condo", "Detached", "Semi-Detached", "Plex"]

PROPERTY_TYPE_MAP = {
    # Townhouse
    "Townhouse": "Townhouse",
    "Att/Row/Twnhouse": "Townhouse",
    "Condo Townhouse": "Townhouse",
    "Co-Op Townhouse": "Townhouse",
    "Leasehold Condo Townhouse": "Townhouse",
    # Condo
    "Condo": "Condo",
    "Condo Apt": "Condo",
    "Co-Op Apt": "Condo",
    "Co-Ownership Apt": "Condo",
    "Comm Element Condo": "Condo",
    "Leasehold Condo": "Condo",
    # Detached
    "Detached": "Detached",
    "Det Condo": "Detached",
    "Detached Condo": "Detached",
    "Link": "Detached",
    # Semi-Detached
    "Semi-Detached": "Semi-Detached",
    "Semi-Det Condo": "Semi-Detached",
    # Plex
    "Plex": "Plex",
    "Duplex": "Plex",
    "Triplex": "Plex",
    "Fourplex": "Plex",
    "Multiplex": "Plex",
}

# -- Imputation -------------------------------------------------------------
IMPUTATION_METHODS = ("sample", "mean", "rf", "cart")
MISSINGNESS_ALPHA = 0.05
N_IMPUTATIONS = 5

# -- Model grids ------------------------------------------------------------
CV_FOLDS = 10

DEFAULT_GRIDS: Dict[str, dict] = {
    # ccp_alpha is the cost of adding a split, in squared-price units
    "DecisionTree": {"ccp_alpha": [0.0, 1e8, 1e9, 1e10]},
    "RandomForest": {"n_estimators": [100, 300], "max_features": [2, 4, 6]},
    "GradientBoosting": {
        "n_estimators": [100, 300],
        "learning_rate": [0.05, 0.1],
        "max_depth": [1, 3, 5],
        "min_samples_leaf": [10],
    },
    "XGBoost": {
        "n_estimators": [100, 300],
        "max_depth": [3, 6],
        "learning_rate": [0.05, 0.1],
        "gamma": [0.0],
        "colsample_bytree": [0.8, 1.0],
        "min_child_weight": [1],
        "subsample": [0.8, 1.0],
    },
}


def default_grids() -> Dict[str, dict]:
    return {name: {k: list(v) for k, v in grid.items()} for name, grid in DEFAULT_GRIDS.items()}


@dataclass
class PipelineConfig:
    data_path: Optional[Path] = None
    artifacts_dir: Path = Path("artifacts")
    seed: int = RNG_SEED
    folds: int = CV_FOLDS
    alpha: float = MISSINGNESS_ALPHA
    impute_column: str = AREA
    imputation_methods: Tuple[str, ...] = IMPUTATION_METHODS
    n_imputations: int = N_IMPUTATIONS
    n_jobs: int = 1
    grids: Dict[str, dict] = field(default_factory=default_grids)
    models: List[str] = field(default_factory=lambda: list(DEFAULT_GRIDS))

    def __post_init__(self):
        if self.folds < 2:
            raise ValueError(f"folds must be >= 2, got {self.folds}")
        if not 0.0 < self.alpha < 1.0:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.n_imputations < 1:
            raise ValueError(f"n_imputations must be >= 1, got {self.n_imputations}")
        unknown = set(self.imputation_methods) - set(IMPUTATION_METHODS)
        if unknown:
            raise ValueError(f"Unknown imputation methods: {sorted(unknown)}")
        unknown = set(self.models) - set(DEFAULT_GRIDS)
        if unknown:
            raise ValueError(f"Unknown models: {sorted(unknown)}")
        self.artifacts_dir = Path(self.artifacts_dir)
        if self.data_path is not None:
            self.data_path = Path(self.data_path)
