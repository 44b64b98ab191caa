#!/usr/bin/env python3
"""Score a listing CSV with the persisted best model."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import joblib
import pandas as pd

from toronto_prices.config import FEATURES
from toronto_prices.errors import PipelineError
from toronto_prices.loader import prepare_listings, read_listings

logger = logging.getLogger(__name__)


def load_bundle(path: Path) -> dict:
    bundle = joblib.load(path)
    if not isinstance(bundle, dict) or "model" not in bundle:
        raise PipelineError(f"{path} is not a best-model bundle")
    return bundle


def score_listings(bundle: dict, raw: pd.DataFrame) -> pd.DataFrame:
    """Predicted final price plus the list price implied by the fitted relation."""
    listings = prepare_listings(raw, require_targets=False)
    if listings["sqft"].isna().any():
        raise PipelineError("Listings to score must have 'sqft' filled in")
    final = bundle["model"].predict(listings[FEATURES])
    out = listings.copy()
    out["predicted_final_price"] = final
    out["predicted_list_price"] = bundle["list_price_relation"].predict(final)
    return out


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Score listings with a persisted model.")
    ap.add_argument("--model", default="artifacts/models/best_model.joblib")
    ap.add_argument("--input", required=True, help="CSV to score (raw listing layout, prices optional)")
    ap.add_argument("--output", default="scored.csv")
    args = ap.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        bundle = load_bundle(Path(args.model))
        scored = score_listings(bundle, read_listings(args.input))
    except (PipelineError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1
    scored.to_csv(args.output, index=False)
    logger.info(f"Scored {len(scored):,} listings with {bundle['name']}; wrote {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
