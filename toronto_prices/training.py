"""
Model training and evaluation.

Each candidate regressor sits behind the same one-hot preprocessing and is
tuned with an exhaustive grid search under k-fold cross-validation. The
configuration with the lowest mean RMSE is refit on all rows; its per-fold
RMSE / MAE / R2 are kept for reporting.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import GradientBoostingRegressor, RandomForestRegressor
from sklearn.model_selection import GridSearchCV, KFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder
from sklearn.tree import DecisionTreeRegressor
from xgboost import XGBRegressor

from toronto_prices.config import (
    CANONICAL_TYPES,
    CATEGORICAL_FEATURES,
    FEATURES,
    NUMERIC_FEATURES,
    TARGET,
    PipelineConfig,
)
from toronto_prices.errors import TrainingError

logger = logging.getLogger(__name__)

SCORING = {
    "rmse": "neg_root_mean_squared_error",
    "mae": "neg_mean_absolute_error",
    "r2": "r2",
}


def split_features(df: pd.DataFrame, target: str = TARGET) -> Tuple[pd.DataFrame, pd.Series]:
    return df[FEATURES].copy(), df[target].astype(float)

# ----------------------------- Model specs -----------------------------

@dataclass
class ModelSpec:
    name: str
    estimator: object
    grid: dict


@dataclass
class EvaluationResult:
    name: str
    rmse: float
    r2: float
    mae: float
    folds: pd.DataFrame = field(repr=False)
    params: dict = field(default_factory=dict)
    model: Optional[Pipeline] = field(default=None, repr=False)
    n_configs: int = 0
    n_failed: int = 0
    fit_seconds: float = 0.0

    @property
    def fold_rmse(self) -> List[float]:
        return self.folds["rmse"].tolist()


def build_preprocessor() -> ColumnTransformer:
    """Numerics pass through; property type is one-hot encoded over the fixed categories."""
    return ColumnTransformer([
        ("num", "passthrough", NUMERIC_FEATURES),
        ("cat", OneHotEncoder(categories=[CANONICAL_TYPES], handle_unknown="ignore",
                              sparse_output=False), CATEGORICAL_FEATURES),
    ], remainder="drop", verbose_feature_names_out=False)


def model_specs(config: PipelineConfig) -> List[ModelSpec]:
    """The four candidate regressors with the grids from ``config``."""
    seed = config.seed
    estimators = {
        "DecisionTree": DecisionTreeRegressor(random_state=seed),
        "RandomForest": RandomForestRegressor(random_state=seed, n_jobs=1),
        "GradientBoosting": GradientBoostingRegressor(random_state=seed),
        "XGBoost": XGBRegressor(objective="reg:squarederror", tree_method="hist",
                                random_state=seed, n_jobs=1, verbosity=0),
    }
    return [
        ModelSpec(name, estimators[name], config.grids[name])
        for name in config.models
    ]

# ----------------------------- Cross-validation -----------------------------

def fold_scores(cv_results: dict, index: int, n_folds: int) -> pd.DataFrame:
    """Per-fold RMSE / MAE / R2 of one grid configuration (sign-corrected)."""
    rows = []
    for i in range(n_folds):
        rows.append({
            "fold": i,
            "rmse": -float(cv_results[f"split{i}_test_rmse"][index]),
            "mae": -float(cv_results[f"split{i}_test_mae"][index]),
            "r2": float(cv_results[f"split{i}_test_r2"][index]),
        })
    return pd.DataFrame(rows)


def aggregate_folds(folds: pd.DataFrame) -> Dict[str, float]:
    return {m: float(folds[m].mean()) for m in ("rmse", "mae", "r2")}


def _log_failed_configs(name: str, cv_results: dict) -> int:
    failed = np.isnan(np.asarray(cv_results["mean_test_rmse"], dtype=float))
    for params in np.asarray(cv_results["params"], dtype=object)[failed]:
        logger.warning(f"{name}: configuration {params} failed to fit; skipped")
    return int(failed.sum())


def evaluate_model(spec: ModelSpec, X: pd.DataFrame, y: pd.Series, config: PipelineConfig) -> EvaluationResult:
    """Grid search with k-fold CV; refit the lowest-RMSE configuration on all rows."""
    pipe = Pipeline([("pre", build_preprocessor()), ("reg", spec.estimator)])
    grid = {f"reg__{k}": v for k, v in spec.grid.items()}
    cv = KFold(n_splits=config.folds, shuffle=True, random_state=config.seed)

    search = GridSearchCV(
        pipe, param_grid=grid, scoring=SCORING, refit="rmse", cv=cv,
        n_jobs=config.n_jobs, error_score=np.nan, verbose=0,
    )
    started = time.perf_counter()
    try:
        search.fit(X, y)
    except ValueError as e:
        raise TrainingError(f"{spec.name}: every grid configuration failed: {e}") from e
    elapsed = time.perf_counter() - started

    n_failed = _log_failed_configs(spec.name, search.cv_results_)
    n_configs = len(search.cv_results_["params"])
    if n_failed == n_configs:
        raise TrainingError(f"{spec.name}: all {n_configs} grid configurations failed")

    folds = fold_scores(search.cv_results_, search.best_index_, config.folds)
    agg = aggregate_folds(folds)
    params = {k.replace("reg__", "", 1): v for k, v in search.best_params_.items()}
    logger.info(
        f"{spec.name}: RMSE={agg['rmse']:,.1f} R2={agg['r2']:.4f} MAE={agg['mae']:,.1f} "
        f"best={params} ({n_configs} configs, {n_failed} failed, {elapsed:.1f}s)"
    )
    return EvaluationResult(
        name=spec.name, rmse=agg["rmse"], r2=agg["r2"], mae=agg["mae"],
        folds=folds, params=params, model=search.best_estimator_,
        n_configs=n_configs, n_failed=n_failed, fit_seconds=elapsed,
    )


def train_all(X: pd.DataFrame, y: pd.Series, config: PipelineConfig) -> List[EvaluationResult]:
    """Evaluate every configured model in turn."""
    results = []
    for spec in model_specs(config):
        logger.info(f"Training {spec.name} with {config.folds}-fold CV over {spec.grid}")
        results.append(evaluate_model(spec, X, y, config))
    return results

# ----------------------------- Importances -----------------------------

def feature_importance(model: Pipeline) -> Optional[pd.Series]:
    """Importances keyed by encoded feature name, largest first; None for models without them."""
    pre = model.named_steps["pre"]
    reg = model.named_steps["reg"]
    if not hasattr(reg, "feature_importances_"):
        return None
    names = pre.get_feature_names_out()
    return (
        pd.Series(np.asarray(reg.feature_importances_, dtype=float), index=names, name="importance")
        .sort_values(ascending=False)
    )
