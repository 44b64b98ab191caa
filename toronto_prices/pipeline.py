#!/usr/bin/env python3
"""
Toronto House Prices: End-to-End Pipeline
=========================================
  1) Loads the listing file and normalizes it (derived bedrooms, canonical types)
  2) Produces lightweight EDA artifacts
  3) Tests whether missing area values are MCAR; drops or imputes accordingly,
     keeping the completion closest (KS statistic) to the observed distribution
  4) Tunes Decision Tree, Random Forest, Gradient Boosting and XGBoost with
     grid search under k-fold CV, scoring RMSE / R2 / MAE
  5) Selects the lowest-RMSE model and fits the list-price relation
  6) Writes comparison tables, figures and joblib artifacts
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from toronto_prices.config import (
    AUX_TARGET,
    CV_FOLDS,
    MISSINGNESS_ALPHA,
    N_IMPUTATIONS,
    RNG_SEED,
    TARGET,
    PipelineConfig,
)
from toronto_prices.errors import PipelineError
from toronto_prices.loader import load_listings
from toronto_prices.missingness import ImputationResult, handle_missing
from toronto_prices.report import (
    ensure_dir,
    eda_snapshot,
    persist_artifacts,
    save_imputation_report,
    save_model_report,
    write_summary,
)
from toronto_prices.selection import LinearRelation, fit_list_price_relation, select_best
from toronto_prices.training import EvaluationResult, split_features, train_all

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    listings: pd.DataFrame
    imputation: ImputationResult
    results: List[EvaluationResult]
    best: EvaluationResult
    relation: LinearRelation
    comparison: pd.DataFrame
    artifacts: Dict[str, Path]


def run_pipeline(config: PipelineConfig, listings: Optional[pd.DataFrame] = None) -> PipelineResult:
    """Run every stage once; ``listings`` skips loading when already prepared."""
    artifacts = config.artifacts_dir
    ensure_dir(artifacts)

    # 1) Load
    if listings is None:
        if config.data_path is None:
            raise PipelineError("No listing file given")
        listings = load_listings(config.data_path)

    # 2) EDA (lightweight)
    eda_snapshot(listings, artifacts / "eda")

    # 3) Missingness
    column = config.impute_column
    observed = listings[column].dropna().to_numpy(dtype=float)
    imputation = handle_missing(listings, column, config)
    save_imputation_report(imputation, observed, artifacts / "imputation")
    completed = imputation.data
    imputation.data.to_csv(artifacts / "completed_listings.csv", index=False)

    # 4) Fit & compare candidate models with CV
    X, y = split_features(completed, TARGET)
    results = train_all(X, y, config)

    # 5) Select + auxiliary list price relation
    best = select_best(results)
    relation = fit_list_price_relation(completed[TARGET], completed[AUX_TARGET])

    # 6) Report
    comparison = save_model_report(results, best, artifacts / "models")
    paths = persist_artifacts(results, best, relation, completed, artifacts / "models")
    paths["summary"] = write_summary(artifacts, imputation, results, best, relation,
                                     extra={"seed": config.seed, "folds": config.folds})

    return PipelineResult(listings, imputation, results, best, relation, comparison, paths)

# ----------------------------- Main Entry -----------------------------

def setup_logging(level: str, log_file: Optional[Path] = None) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        ensure_dir(log_file.parent)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Toronto house price modelling pipeline.")
    ap.add_argument("--data", type=str, required=True, help="Listing CSV (21-column layout)")
    ap.add_argument("--artifacts_dir", type=str, default="./artifacts", help="Where to save outputs")
    ap.add_argument("--folds", type=int, default=CV_FOLDS, help="Cross-validation folds")
    ap.add_argument("--seed", type=int, default=RNG_SEED, help="Random seed for CV and imputation")
    ap.add_argument("--alpha", type=float, default=MISSINGNESS_ALPHA, help="Significance level of the MCAR tests")
    ap.add_argument("--n_imputations", type=int, default=N_IMPUTATIONS, help="Draws per stochastic imputation method")
    ap.add_argument("--models", nargs="+", default=None,
                    help="Subset of DecisionTree RandomForest GradientBoosting XGBoost")
    ap.add_argument("--n_jobs", type=int, default=1, help="Parallel jobs for grid search")
    ap.add_argument("--log_level", type=str, default="INFO")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    artifacts = Path(args.artifacts_dir)

    options = dict(
        data_path=Path(args.data), artifacts_dir=artifacts, seed=args.seed,
        folds=args.folds, alpha=args.alpha, n_imputations=args.n_imputations,
        n_jobs=args.n_jobs,
    )
    if args.models:
        options["models"] = list(args.models)
    try:
        config = PipelineConfig(**options)
    except ValueError as e:
        parser.error(str(e))

    setup_logging(args.log_level, artifacts / "pipeline.log")
    try:
        result = run_pipeline(config)
    except (PipelineError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    print("\n=== Model Comparison (sorted by CV RMSE) ===")
    print(result.comparison[["model", "RMSE", "R2", "MAE"]].to_string(index=False))
    print(f"\nSelected best model: {result.best.name}")
    print(f"list_price = {result.relation.slope:.6f} * final_price {result.relation.intercept:+,.2f}")
    print(f"\nArtifacts saved to: {artifacts.resolve()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
