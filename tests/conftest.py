import numpy as np
import pandas as pd
import pytest

from toronto_prices.config import PipelineConfig
from toronto_prices.loader import prepare_listings

RAW_TYPES = ["Condo Apt", "Detached", "Semi-Detached", "Att/Row/Twnhouse", "Duplex",
             "Condo Townhouse", "Co-Op Apt", "Triplex"]

FAST_GRIDS = {
    "DecisionTree": {"ccp_alpha": [0.0, 1e9]},
    "RandomForest": {"n_estimators": [20], "max_features": [2, 4]},
    "GradientBoosting": {"n_estimators": [20], "learning_rate": [0.1], "max_depth": [2],
                         "min_samples_leaf": [5]},
    "XGBoost": {"n_estimators": [20], "max_depth": [3], "learning_rate": [0.1], "gamma": [0.0],
                "colsample_bytree": [1.0], "min_child_weight": [1], "subsample": [1.0]},
}


def make_raw_listings(n=300, seed=0, missing="mar"):
    """
    Raw 21-column listings. Returns (raw, true_sqft).
    missing="mar": area goes missing mostly for high-income districts
    missing="none": area always present
    """
    rng = np.random.default_rng(seed)
    sqft = np.clip(rng.normal(1300, 300, n), 400, None).round()
    income = rng.uniform(40000, 150000, n).round()
    bed_ag = rng.integers(1, 5, n)
    bed_bg = rng.integers(0, 2, n)
    baths = rng.integers(1, 5, n)
    parking = rng.integers(0, 4, n)
    raw_type = rng.choice(RAW_TYPES, n)
    final = np.clip(200 * sqft + 3 * income + 50000 * baths + rng.normal(0, 50000, n), 100000, None).round()
    listed = np.clip(1.03 * final - 36000 + rng.normal(0, 10000, n), 50000, None).round()

    raw = pd.DataFrame({
        "index": np.arange(n),
        "title": [f"Listing {i}" for i in range(n)],
        "final_price": final,
        "list_price": listed,
        "bedrooms": [f"{a}+{b}" for a, b in zip(bed_ag, bed_bg)],
        "bathrooms": baths,
        "sqft": sqft.copy(),
        "parking": parking,
        "description": ["Bright unit close to transit"] * n,
        "mls": [f"C{4000000 + i}" for i in range(n)],
        "type": raw_type,
        "full_link": [f"https://example.com/listing/{i}" for i in range(n)],
        "full_address": [f"{i} Queen St W, Toronto, ON" for i in range(n)],
        "lat": rng.uniform(43.6, 43.8, n),
        "long": rng.uniform(-79.6, -79.2, n),
        "city_district": rng.choice(["Annex", "Leaside", "Rosedale"], n),
        "mean_district_income": income,
        "district_code": rng.integers(1, 140, n),
        "bedrooms_ag": bed_ag,
        "bedrooms_bg": bed_bg,
        "final_price_log": np.log(final),
    })
    if missing == "mar":
        p = np.where(income > 110000, 0.6, 0.05)
        raw.loc[rng.random(n) < p, "sqft"] = np.nan
    return raw, pd.Series(sqft, name="sqft")


def make_mcar_listings(n_base=50, copies=4, seed=1):
    """
    Prepared listings whose missing rows are an exact replica of the observed
    ones: every base row appears once with area missing and copies-1 times with
    area present, so no column separates the two groups.
    """
    raw, _ = make_raw_listings(n_base, seed=seed, missing="none")
    base = prepare_listings(raw)
    frames = []
    for k in range(copies):
        part = base.copy()
        if k == 0:
            part["sqft"] = np.nan
        frames.append(part)
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def raw_listings():
    return make_raw_listings()


@pytest.fixture
def listings(raw_listings):
    raw, _ = raw_listings
    return prepare_listings(raw)


@pytest.fixture
def fast_config(tmp_path):
    return PipelineConfig(
        artifacts_dir=tmp_path / "artifacts",
        folds=3,
        n_imputations=2,
        grids={name: dict(grid) for name, grid in FAST_GRIDS.items()},
    )
