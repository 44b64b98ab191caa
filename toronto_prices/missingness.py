"""
Missingness handling for a single numeric column.

1) Test whether missingness is associated with any other column
   (chi-squared for categoricals, Kruskal-Wallis for numerics).
2) MCAR -> drop the incomplete rows. Otherwise generate several candidate
   completions (random draw, mean, random-forest donors, CART donors).
3) Keep the candidate whose imputed values are closest to the observed
   values by the two-sample Kolmogorov-Smirnov statistic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
import scipy.stats as stats
from sklearn.ensemble import RandomForestRegressor
from sklearn.tree import DecisionTreeRegressor

from toronto_prices.config import PipelineConfig
from toronto_prices.errors import ImputationError

logger = logging.getLogger(__name__)

MCAR = "MCAR"
NOT_RANDOM = "MAR/MNAR"
NO_MISSING = "none"

STOCHASTIC_METHODS = {"sample", "rf", "cart"}

# mice defaults: ntree = 10 for rf, minbucket = 5 for cart
RF_TREES = 10
MIN_LEAF = 5


@dataclass
class MissingnessReport:
    column: str
    n_missing: int
    n_total: int
    alpha: float
    tests: pd.DataFrame
    mechanism: str

    @property
    def requires_imputation(self) -> bool:
        return self.mechanism == NOT_RANDOM


@dataclass
class ImputationCandidate:
    method: str
    draw: int
    values: pd.Series
    imputed: np.ndarray = field(repr=False)


@dataclass
class ImputationResult:
    data: pd.DataFrame
    report: MissingnessReport
    method: Optional[str]
    candidates: pd.DataFrame
    selected: Optional[ImputationCandidate] = None


# ----------------------------- MCAR testing -----------------------------

def _association_test(is_missing: pd.Series, values: pd.Series):
    """Return (test_name, statistic, p_value) or None when the test is undefined."""
    present = values.notna()
    if not pd.api.types.is_numeric_dtype(values):
        table = pd.crosstab(is_missing[present], values[present])
        if table.shape[0] < 2 or table.shape[1] < 2:
            return None
        chi2_stat, p, _, _ = stats.chi2_contingency(table)
        return "chi2", float(chi2_stat), float(p)

    miss_vals = values[is_missing & present].to_numpy(dtype=float)
    obs_vals = values[~is_missing & present].to_numpy(dtype=float)
    if len(miss_vals) == 0 or len(obs_vals) == 0:
        return None
    try:
        h, p = stats.kruskal(miss_vals, obs_vals)
    except ValueError:
        # all values identical: no evidence of association
        return "kruskal", 0.0, 1.0
    if np.isnan(p):
        return "kruskal", 0.0, 1.0
    return "kruskal", float(h), float(p)


def classify_missingness(df: pd.DataFrame, column: str, alpha: float = 0.05) -> MissingnessReport:
    """Classify the missingness of ``column`` as MCAR or MAR/MNAR."""
    is_missing = df[column].isna()
    n_missing = int(is_missing.sum())
    empty = pd.DataFrame(columns=["feature", "test", "statistic", "p_value", "significant"])

    if n_missing == 0:
        logger.info(f"No missing values in '{column}'")
        return MissingnessReport(column, 0, len(df), alpha, empty, NO_MISSING)
    if n_missing == len(df):
        raise ImputationError(f"Column '{column}' has no observed values")

    rows = []
    for col in df.columns:
        if col == column:
            continue
        result = _association_test(is_missing, df[col])
        if result is None:
            logger.debug(f"Skipped missingness test against '{col}' (degenerate groups)")
            continue
        test, stat, p = result
        rows.append({
            "feature": col, "test": test, "statistic": stat,
            "p_value": p, "significant": p < alpha,
        })
        logger.info(f"Missingness of '{column}' vs '{col}': {test}={stat:.3f}, p={p:.4g}")

    tests = pd.DataFrame(rows) if rows else empty
    mechanism = NOT_RANDOM if bool(tests["significant"].any()) else MCAR
    logger.info(
        f"'{column}' missing in {n_missing:,}/{len(df):,} rows; classified as {mechanism}"
    )
    return MissingnessReport(column, n_missing, len(df), alpha, tests, mechanism)


# ----------------------------- Imputation -----------------------------

def _design_matrix(df: pd.DataFrame, column: str) -> pd.DataFrame:
    """Other columns as a numeric matrix; gaps filled with medians/modes for fitting only."""
    X = df.drop(columns=[column]).copy()
    num_cols = X.select_dtypes(include=[np.number]).columns
    cat_cols = X.select_dtypes(exclude=[np.number]).columns
    for c in num_cols:
        if X[c].isna().any():
            X[c] = X[c].fillna(X[c].median())
    for c in cat_cols:
        if X[c].isna().any():
            mode_val = X[c].mode(dropna=True)
            X[c] = X[c].fillna(mode_val.iloc[0] if len(mode_val) else "Unknown")
    return pd.get_dummies(X, columns=list(cat_cols), dtype=float)


def _leaf_donors(leaves_obs: np.ndarray, leaves_mis: np.ndarray, y_obs: np.ndarray, rng) -> np.ndarray:
    """For each missing row draw one observed value sharing its leaf (pooled across trees)."""
    if leaves_obs.ndim == 1:
        leaves_obs = leaves_obs[:, None]
        leaves_mis = leaves_mis[:, None]
    out = np.empty(len(leaves_mis))
    for i, row in enumerate(leaves_mis):
        pooled = np.concatenate([
            y_obs[leaves_obs[:, t] == leaf] for t, leaf in enumerate(row)
        ])
        out[i] = rng.choice(pooled)
    return out


def impute_column(df: pd.DataFrame, column: str, method: str, random_state: int = 0) -> pd.Series:
    """Return a completed copy of ``df[column]`` using one imputation method."""
    values = df[column].astype(float)
    mask = values.isna().to_numpy()
    if not mask.any():
        return df[column].copy()
    observed = values[~mask].to_numpy()
    if len(observed) == 0:
        raise ImputationError(f"Column '{column}' has no observed values")

    rng = np.random.default_rng(random_state)
    if method == "sample":
        fill = rng.choice(observed, size=int(mask.sum()), replace=True)
    elif method == "mean":
        fill = np.full(int(mask.sum()), observed.mean())
    elif method in ("cart", "rf"):
        X = _design_matrix(df, column).to_numpy(dtype=float)
        X_obs, X_mis = X[~mask], X[mask]
        if method == "cart":
            model = DecisionTreeRegressor(min_samples_leaf=MIN_LEAF, random_state=random_state)
        else:
            model = RandomForestRegressor(n_estimators=RF_TREES, random_state=random_state)
        model.fit(X_obs, observed)
        fill = _leaf_donors(model.apply(X_obs), model.apply(X_mis), observed, rng)
    else:
        raise ValueError(f"Unknown imputation method '{method}'")

    out = values.copy()
    out[mask] = fill
    return out


def generate_candidates(df: pd.DataFrame, column: str, config: PipelineConfig) -> List[ImputationCandidate]:
    """Several completions per stochastic method, one for mean substitution."""
    mask = df[column].isna().to_numpy()
    candidates: List[ImputationCandidate] = []
    failed = []
    for method in config.imputation_methods:
        draws = config.n_imputations if method in STOCHASTIC_METHODS else 1
        method_draws = []
        try:
            for draw in range(draws):
                completed = impute_column(df, column, method, random_state=config.seed + draw)
                method_draws.append(ImputationCandidate(
                    method=method, draw=draw, values=completed,
                    imputed=completed.to_numpy()[mask],
                ))
        except (ValueError, np.linalg.LinAlgError) as e:
            # a method counts only when every one of its draws succeeded
            failed.append(method)
            logger.warning(f"Imputation method '{method}' failed on '{column}': {e}")
        else:
            candidates.extend(method_draws)
            logger.info(f"Generated {draws} '{method}' completion(s) of '{column}'")

    if not candidates:
        raise ImputationError(
            f"All imputation methods failed for '{column}': {failed}"
        )
    return candidates


def select_candidate(candidates: List[ImputationCandidate], observed: np.ndarray):
    """Pick the candidate with the smallest KS statistic against the observed values."""
    if not candidates:
        raise ImputationError("No imputation candidates to choose from")
    rows = []
    for cand in candidates:
        ks = stats.ks_2samp(cand.imputed, observed)
        rows.append({
            "method": cand.method, "draw": cand.draw,
            "ks_statistic": float(ks.statistic), "ks_pvalue": float(ks.pvalue),
            "imputed_mean": float(np.mean(cand.imputed)),
            "completed_mean": float(cand.values.mean()),
        })
    table = pd.DataFrame(rows)
    best_idx = int(table["ks_statistic"].idxmin())
    table["selected"] = False
    table.loc[best_idx, "selected"] = True
    return candidates[best_idx], table


def handle_missing(df: pd.DataFrame, column: str, config: PipelineConfig) -> ImputationResult:
    """Test, then drop (MCAR) or impute-and-select (MAR/MNAR)."""
    report = classify_missingness(df, column, alpha=config.alpha)
    empty = pd.DataFrame()

    if report.mechanism == NO_MISSING:
        return ImputationResult(df.copy(), report, None, empty)

    if not report.requires_imputation:
        data = df.dropna(subset=[column]).reset_index(drop=True)
        logger.info(f"Dropped {len(df) - len(data):,} MCAR rows with missing '{column}'")
        return ImputationResult(data, report, "drop", empty)

    observed = df[column].dropna().to_numpy(dtype=float)
    candidates = generate_candidates(df, column, config)
    best, table = select_candidate(candidates, observed)
    logger.info(
        f"Selected '{best.method}' draw {best.draw} for '{column}' "
        f"(KS={table.loc[table['selected'], 'ks_statistic'].iloc[0]:.4f})"
    )

    data = df.copy()
    data[column] = best.values.to_numpy()
    return ImputationResult(data, report, best.method, table, best)
