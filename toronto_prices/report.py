"""Report artifacts: tables, figures and persisted models written to the artifacts directory."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional, Sequence

import joblib
import numpy as np
import pandas as pd

# Headless plots saved to files
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from toronto_prices.config import AREA, CANONICAL_TYPES, TARGET, TYPE
from toronto_prices.loader import type_counts
from toronto_prices.missingness import ImputationResult
from toronto_prices.selection import LinearRelation, compare_models, ranking
from toronto_prices.training import EvaluationResult, feature_importance


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)

# ----------------------------- EDA -----------------------------

def eda_snapshot(df: pd.DataFrame, outdir: Path) -> None:
    """Save a compact EDA snapshot (tables + a few plots)."""
    ensure_dir(outdir)
    meta = {
        "n_rows": int(df.shape[0]),
        "n_cols": int(df.shape[1]),
        "type_counts": {k: int(v) for k, v in type_counts(df).items()},
    }
    (outdir / "meta.json").write_text(json.dumps(meta, indent=2))

    miss = df.isna().sum().sort_values(ascending=False).to_frame("missing_count")
    miss["missing_pct"] = miss["missing_count"] / max(len(df), 1) * 100.0
    miss.to_csv(outdir / "missingness.csv")

    summary = df.groupby(TYPE)[[TARGET, AREA, "bedrooms", "bathrooms"]].agg(["count", "mean", "median"])
    summary.reindex([t for t in CANONICAL_TYPES if t in summary.index]).to_csv(outdir / "summary_by_type.csv")
    df.describe().T.to_csv(outdir / "describe.csv")

    y = df[TARGET].dropna().values
    plt.figure(figsize=(7,4))
    plt.hist(y, bins=50)
    plt.title("Final price distribution")
    plt.xlabel("final_price"); plt.ylabel("Count"); plt.tight_layout()
    plt.savefig(outdir / "final_price_hist.png"); plt.close()

    plt.figure(figsize=(7,4))
    plt.scatter(df[AREA], df[TARGET], s=10, alpha=0.6)
    plt.title("Area vs final price")
    plt.xlabel("sqft"); plt.ylabel("final_price"); plt.tight_layout()
    plt.savefig(outdir / "area_vs_price.png"); plt.close()

# ----------------------------- Imputation -----------------------------

def save_imputation_report(result: ImputationResult, observed: np.ndarray, outdir: Path) -> None:
    """Missingness tests, candidate KS table and observed-vs-imputed histogram."""
    ensure_dir(outdir)
    result.report.tests.to_csv(outdir / "missingness_tests.csv", index=False)
    if result.candidates.empty or result.selected is None:
        return
    result.candidates.to_csv(outdir / "imputation_candidates.csv", index=False)

    plt.figure(figsize=(7,4))
    bins = np.histogram_bin_edges(np.concatenate([observed, result.selected.imputed]), bins=40)
    plt.hist(observed, bins=bins, density=True, alpha=0.5, label="Observed")
    plt.hist(result.selected.imputed, bins=bins, density=True, alpha=0.5,
             label=f"Imputed ({result.method})")
    plt.title(f"{result.report.column}: observed vs imputed")
    plt.xlabel(result.report.column); plt.ylabel("Density"); plt.legend(); plt.tight_layout()
    plt.savefig(outdir / "imputation_density.png"); plt.close()

# ----------------------------- Models -----------------------------

def save_feature_influence(importance: pd.Series, title: str, outpath: Path, top: int = 20) -> None:
    """Top-k importances as a horizontal bar chart."""
    top_imp = importance.head(top)[::-1]
    plt.figure(figsize=(8,5))
    plt.barh(top_imp.index, top_imp.values)
    plt.title(title)
    plt.xlabel("Importance")
    plt.tight_layout()
    plt.savefig(outpath); plt.close()


def save_model_report(results: Sequence[EvaluationResult], best: EvaluationResult, outdir: Path) -> pd.DataFrame:
    """Comparison table, per-fold scores and importances for every model."""
    ensure_dir(outdir)
    table = compare_models(results)
    table.to_csv(outdir / "model_comparison.csv", index=False)
    for r in results:
        r.folds.to_csv(outdir / f"{r.name}_folds.csv", index=False)
        if r.model is None:
            continue
        imp = feature_importance(r.model)
        if imp is not None:
            imp.to_frame().to_csv(outdir / f"{r.name}_importance.csv", index_label="feature")
            if r is best:
                save_feature_influence(imp, f"Feature importance ({best.name})",
                                       outdir / "best_feature_importance.png")
    return table


def persist_artifacts(results: Sequence[EvaluationResult], best: EvaluationResult,
                      relation: LinearRelation, imputed: pd.DataFrame, outdir: Path) -> Dict[str, Path]:
    """joblib dumps of every model, the completed dataset and the deployable bundle."""
    ensure_dir(outdir)
    paths = {}
    for r in results:
        if r.model is not None:
            paths[r.name] = outdir / f"{r.name}.joblib"
            joblib.dump(r.model, paths[r.name])
    paths["imputed"] = outdir / "imputed_listings.joblib"
    joblib.dump(imputed, paths["imputed"])
    paths["best"] = outdir / "best_model.joblib"
    joblib.dump({
        "name": best.name,
        "model": best.model,
        "params": best.params,
        "list_price_relation": relation,
    }, paths["best"])
    return paths


def write_summary(outdir: Path, imputation: ImputationResult, results: Sequence[EvaluationResult],
                  best: EvaluationResult, relation: LinearRelation,
                  extra: Optional[dict] = None) -> Path:
    summary = {
        "missingness": {
            "column": imputation.report.column,
            "n_missing": imputation.report.n_missing,
            "n_total": imputation.report.n_total,
            "mechanism": imputation.report.mechanism,
            "method": imputation.method,
            "completed_mean": float(imputation.data[imputation.report.column].mean()),
        },
        "models": {r.name: {"RMSE": r.rmse, "R2": r.r2, "MAE": r.mae, "params": r.params}
                   for r in results},
        "best_model": best.name,
        "ranking": ranking(results),
        "list_price_relation": {"slope": relation.slope, "intercept": relation.intercept,
                                "r2": relation.r2},
    }
    if extra:
        summary.update(extra)
    path = outdir / "summary.json"
    path.write_text(json.dumps(summary, indent=2, default=str))
    return path
