"""
Listing loader: reads the raw listing file, derives total bedrooms, maps raw
property-type labels onto the five canonical categories and validates the
result before anything downstream sees it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

import numpy as np
import pandas as pd

from toronto_prices.config import (
    AREA,
    CANONICAL_TYPES,
    DISTRICT_ID_COLUMNS,
    FEATURES,
    OUTPUT_COLUMNS,
    PROPERTY_TYPE_MAP,
    REQUIRED_COLUMNS,
    TARGETS,
    TEXT_ID_COLUMNS,
    TYPE,
)
from toronto_prices.errors import DataValidationError

logger = logging.getLogger(__name__)

COUNT_COLUMNS = ["bedrooms_ag", "bedrooms_bg", "bathrooms", "parking"]
POSITIVE_COLUMNS = [AREA] + TARGETS


def read_listings(path: Union[str, Path]) -> pd.DataFrame:
    """Read the delimited listing file as-is."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Listing file {path} not found")
    try:
        raw = pd.read_csv(path)
    except pd.errors.EmptyDataError as e:
        raise DataValidationError(f"Listing file {path} is empty") from e
    except pd.errors.ParserError as e:
        raise DataValidationError(f"Malformed rows in {path}: {e}") from e
    logger.info(f"Read {len(raw):,} rows, {len(raw.columns)} columns from {path}")
    return raw


def normalize_property_type(types: pd.Series) -> pd.Series:
    """Map raw labels onto the canonical categories; unknown labels are an error."""
    labels = types.astype("string").str.strip()
    mapped = labels.map(PROPERTY_TYPE_MAP)
    unmapped = sorted(labels[mapped.isna()].fillna("<missing>").unique())
    if unmapped:
        raise DataValidationError(f"Unknown property type labels: {unmapped}")
    return mapped.astype(object)


def derive_bedrooms(df: pd.DataFrame) -> pd.Series:
    return df["bedrooms_ag"] + df["bedrooms_bg"]


def _coerce_numeric(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    out = df.copy()
    for col in columns:
        coerced = pd.to_numeric(out[col], errors="coerce")
        bad = coerced.isna() & out[col].notna()
        if bad.any():
            sample = out.loc[bad, col].astype(str).unique()[:5].tolist()
            raise DataValidationError(f"Non-numeric values in '{col}': {sample}")
        out[col] = coerced.astype(float)
    return out


def validate_listings(df: pd.DataFrame, require_targets: bool = True) -> None:
    """
    Reject values the models cannot use.
    - area, final and list price must be positive (area may be missing)
    - counts must be non-negative and present
    - every other feature and target must be present
    """
    problems = []
    for col in [c for c in POSITIVE_COLUMNS if c in df.columns]:
        n_bad = int((df[col] <= 0).sum())
        if n_bad:
            problems.append(f"{n_bad} rows with non-positive '{col}'")
    for col in [c for c in COUNT_COLUMNS + ["bedrooms"] if c in df.columns]:
        n_bad = int((df[col] < 0).sum())
        if n_bad:
            problems.append(f"{n_bad} rows with negative '{col}'")

    must_be_present = [c for c in FEATURES if c != AREA]
    if require_targets:
        must_be_present += TARGETS
    for col in must_be_present:
        n_missing = int(df[col].isna().sum())
        if n_missing:
            problems.append(f"{n_missing} rows with missing '{col}'")

    if TYPE in df.columns:
        bad_types = set(df[TYPE].dropna()) - set(CANONICAL_TYPES)
        if bad_types:
            problems.append(f"non-canonical property types {sorted(bad_types)}")

    if problems:
        raise DataValidationError("Listing validation failed: " + "; ".join(problems))


def prepare_listings(raw: pd.DataFrame, require_targets: bool = True) -> pd.DataFrame:
    """Reduce a raw listing table to the six predictors (plus targets when required)."""
    required = [c for c in REQUIRED_COLUMNS if require_targets or c not in TARGETS]
    missing_cols = [c for c in required if c not in raw.columns]
    if missing_cols:
        raise DataValidationError(f"Missing required columns: {missing_cols}")

    dropped = [c for c in TEXT_ID_COLUMNS + DISTRICT_ID_COLUMNS if c in raw.columns]
    df = raw.drop(columns=dropped)
    logger.debug(f"Dropped identifier columns: {dropped}")

    numeric = [c for c in required if c != TYPE]
    df = _coerce_numeric(df, numeric)
    df["bedrooms"] = derive_bedrooms(df)
    df[TYPE] = normalize_property_type(df[TYPE])

    columns = [c for c in OUTPUT_COLUMNS if c in df.columns and (require_targets or c not in TARGETS)]
    out = df[columns].reset_index(drop=True)
    validate_listings(out, require_targets=require_targets)
    return out


def load_listings(path: Union[str, Path]) -> pd.DataFrame:
    """Read, reduce and validate a listing file."""
    df = prepare_listings(read_listings(path))
    n_missing = int(df[AREA].isna().sum())
    logger.info(
        f"Loaded {len(df):,} listings; '{AREA}' missing in {n_missing:,} rows "
        f"({n_missing / max(len(df), 1) * 100:.1f}%)"
    )
    logger.info(f"Property types: {df[TYPE].value_counts().to_dict()}")
    return df


def type_counts(df: pd.DataFrame) -> pd.Series:
    """Listing counts per canonical type, in canonical order."""
    return df[TYPE].value_counts().reindex(CANONICAL_TYPES, fill_value=0).astype(np.int64)
