"""
Model comparison and selection.

Models are ranked by cross-validated RMSE alone: it penalises large errors
more heavily than MAE. The list-price relation is a single OLS fit over the
full data, reported next to the selected model's final-price prediction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression

from toronto_prices.training import EvaluationResult

logger = logging.getLogger(__name__)


def compare_models(results: Sequence[EvaluationResult]) -> pd.DataFrame:
    """Comparison table sorted by RMSE (ties keep input order)."""
    rows = [{
        "model": r.name, "RMSE": r.rmse, "R2": r.r2, "MAE": r.mae,
        "RMSE_fold_min": float(r.folds["rmse"].min()) if len(r.folds) else np.nan,
        "RMSE_fold_max": float(r.folds["rmse"].max()) if len(r.folds) else np.nan,
        "n_configs": r.n_configs, "n_failed": r.n_failed, "params": r.params,
    } for r in results]
    table = pd.DataFrame(rows)
    if table.empty:
        return table
    return table.sort_values("RMSE", kind="stable").reset_index(drop=True)


def select_best(results: Sequence[EvaluationResult]) -> EvaluationResult:
    """Lowest cross-validated RMSE wins."""
    if not results:
        raise ValueError("No evaluation results to select from")
    best = min(results, key=lambda r: r.rmse)
    logger.info(f"Selected {best.name} (RMSE={best.rmse:,.1f})")
    return best


@dataclass
class LinearRelation:
    """list_price ~ slope * final_price + intercept"""
    slope: float
    intercept: float
    r2: float = float("nan")

    def predict(self, final_price):
        return self.slope * np.asarray(final_price, dtype=float) + self.intercept


def fit_list_price_relation(final_price: pd.Series, list_price: pd.Series) -> LinearRelation:
    """Ordinary least squares of list price on final price over every row."""
    X = np.asarray(final_price, dtype=float).reshape(-1, 1)
    y = np.asarray(list_price, dtype=float)
    ols = LinearRegression().fit(X, y)
    relation = LinearRelation(
        slope=float(ols.coef_[0]),
        intercept=float(ols.intercept_),
        r2=float(ols.score(X, y)),
    )
    logger.info(
        f"list_price = {relation.slope:.6f} * final_price {relation.intercept:+,.2f} "
        f"(R2={relation.r2:.4f})"
    )
    return relation


def ranking(results: Sequence[EvaluationResult]) -> List[str]:
    return compare_models(results)["model"].tolist()
