import numpy as np
import pandas as pd
import pytest

from conftest import make_mcar_listings
from toronto_prices import missingness
from toronto_prices.config import PipelineConfig
from toronto_prices.errors import ImputationError
from toronto_prices.missingness import (
    MCAR,
    NO_MISSING,
    NOT_RANDOM,
    ImputationCandidate,
    classify_missingness,
    generate_candidates,
    handle_missing,
    impute_column,
    select_candidate,
)


def test_independent_missingness_is_mcar():
    df = make_mcar_listings()
    report = classify_missingness(df, "sqft", alpha=0.05)
    assert report.mechanism == MCAR
    assert not report.requires_imputation
    assert set(report.tests["test"]) == {"chi2", "kruskal"}
    assert "type" in set(report.tests["feature"])


def test_correlated_missingness_requires_imputation(listings):
    report = classify_missingness(listings, "sqft", alpha=0.05)
    assert report.mechanism == NOT_RANDOM
    assert report.requires_imputation
    income = report.tests.set_index("feature").loc["mean_district_income"]
    assert income["test"] == "kruskal"
    assert income["p_value"] < 1e-6


def test_no_missing_values(listings):
    complete = listings.dropna(subset=["sqft"]).reset_index(drop=True)
    report = classify_missingness(complete, "sqft")
    assert report.mechanism == NO_MISSING
    assert report.n_missing == 0


def test_all_missing_raises(listings):
    df = listings.copy()
    df["sqft"] = np.nan
    with pytest.raises(ImputationError):
        classify_missingness(df, "sqft")


@pytest.mark.parametrize("method", ["sample", "mean", "rf", "cart"])
def test_imputing_complete_column_returns_it_unchanged(listings, method):
    complete = listings.dropna(subset=["sqft"]).reset_index(drop=True)
    out = impute_column(complete, "sqft", method, random_state=3)
    pd.testing.assert_series_equal(out, complete["sqft"])


@pytest.mark.parametrize("method", ["sample", "mean", "rf", "cart"])
def test_imputation_fills_only_missing_positions(listings, method):
    mask = listings["sqft"].isna()
    out = impute_column(listings, "sqft", method, random_state=0)
    assert not out.isna().any()
    pd.testing.assert_series_equal(out[~mask], listings["sqft"][~mask])


@pytest.mark.parametrize("method", ["sample", "rf", "cart"])
def test_donor_methods_draw_observed_values(listings, method):
    mask = listings["sqft"].isna()
    out = impute_column(listings, "sqft", method, random_state=0)
    assert set(out[mask]) <= set(listings["sqft"].dropna())


def test_mean_imputation_uses_observed_mean(listings):
    mask = listings["sqft"].isna()
    out = impute_column(listings, "sqft", "mean")
    assert np.allclose(out[mask], listings["sqft"].mean())


def test_imputation_is_reproducible(listings):
    a = impute_column(listings, "sqft", "cart", random_state=7)
    b = impute_column(listings, "sqft", "cart", random_state=7)
    pd.testing.assert_series_equal(a, b)


def test_unknown_method(listings):
    with pytest.raises(ValueError):
        impute_column(listings, "sqft", "knn")


def test_candidates_per_method(listings):
    config = PipelineConfig(n_imputations=3)
    candidates = generate_candidates(listings, "sqft", config)
    methods = [c.method for c in candidates]
    assert methods.count("mean") == 1
    assert methods.count("cart") == methods.count("rf") == methods.count("sample") == 3


def test_failed_method_is_skipped(listings, monkeypatch):
    real = missingness.impute_column

    def flaky(df, column, method, random_state=0):
        if method == "rf":
            raise ValueError("degenerate input")
        return real(df, column, method, random_state)

    monkeypatch.setattr(missingness, "impute_column", flaky)
    candidates = generate_candidates(listings, "sqft", PipelineConfig(n_imputations=1))
    assert {c.method for c in candidates} == {"sample", "mean", "cart"}


def test_method_with_one_failed_draw_is_dropped_entirely(listings, monkeypatch):
    real = missingness.impute_column
    config = PipelineConfig(n_imputations=3)

    def fails_second_rf_draw(df, column, method, random_state=0):
        if method == "rf" and random_state == config.seed + 1:
            raise ValueError("degenerate input")
        return real(df, column, method, random_state)

    monkeypatch.setattr(missingness, "impute_column", fails_second_rf_draw)
    candidates = generate_candidates(listings, "sqft", config)
    assert [c for c in candidates if c.method == "rf"] == []
    assert [c.method for c in candidates].count("cart") == 3


def test_all_methods_failing_raises(listings, monkeypatch):
    def broken(df, column, method, random_state=0):
        raise ValueError("degenerate input")

    monkeypatch.setattr(missingness, "impute_column", broken)
    with pytest.raises(ImputationError, match="All imputation methods failed"):
        generate_candidates(listings, "sqft", PipelineConfig())


def test_selection_prefers_closest_distribution():
    rng = np.random.default_rng(0)
    observed = rng.normal(1300, 300, 500)
    values = pd.Series(np.zeros(10))
    close = ImputationCandidate("cart", 0, values, rng.normal(1300, 300, 100))
    far = ImputationCandidate("mean", 0, values, np.full(100, 1300.0))
    shifted = ImputationCandidate("rf", 0, values, rng.normal(2000, 300, 100))

    best, table = select_candidate([far, close, shifted], observed)
    assert best is close
    assert table["selected"].sum() == 1
    assert table.loc[table["selected"], "method"].iloc[0] == "cart"


def test_selection_ties_resolve_to_first():
    observed = np.arange(10, dtype=float)
    values = pd.Series(np.zeros(3))
    first = ImputationCandidate("sample", 0, values, np.arange(10, dtype=float))
    second = ImputationCandidate("sample", 1, values, np.arange(10, dtype=float))
    best, _ = select_candidate([first, second], observed)
    assert best is first


def test_handle_missing_imputes_mar(listings):
    result = handle_missing(listings, "sqft", PipelineConfig(n_imputations=2))
    assert result.method in {"sample", "mean", "rf", "cart"}
    assert not result.data["sqft"].isna().any()
    assert len(result.data) == len(listings)
    assert result.candidates["selected"].sum() == 1
    assert result.candidates.loc[result.candidates["selected"], "ks_statistic"].iloc[0] == \
        result.candidates["ks_statistic"].min()


def test_handle_missing_drops_mcar_rows():
    df = make_mcar_listings()
    result = handle_missing(df, "sqft", PipelineConfig())
    assert result.method == "drop"
    assert len(result.data) == df["sqft"].notna().sum()
    assert not result.data["sqft"].isna().any()


def test_handle_missing_without_gaps_is_identity(listings):
    complete = listings.dropna(subset=["sqft"]).reset_index(drop=True)
    result = handle_missing(complete, "sqft", PipelineConfig())
    assert result.method is None
    pd.testing.assert_frame_equal(result.data, complete)
