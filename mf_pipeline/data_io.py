"""
Data I/O Module with Data Quality Checks

Handles loading of pre-split rating files:
- Comma-separated text with a header row
- Columns userId, movieId, rating (or Label)
- Validation of missing columns and non-numeric values
"""

import logging
import os
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .config import DATA_CONFIG
from .exceptions import DataFormatError

logger = logging.getLogger(__name__)

OUTPUT_COLUMNS = ["user_id", "movie_id", "rating"]


def _resolve_rating_column(columns, candidates) -> Optional[str]:
    for name in candidates:
        if name in columns:
            return name
    return None


def load_ratings_csv(path: str,
                     data_config: Optional[Dict] = None,
                     skip_invalid: Optional[bool] = None) -> pd.DataFrame:
    """
    Load user-movie ratings from a delimited text file.

    Args:
        path: Path to the CSV file (header row required)
        data_config: Column names and separator (defaults to config.DATA_CONFIG)
        skip_invalid: Drop malformed rows and log a warning instead of failing.
            Defaults to data_config['skip_invalid'].

    Returns:
        DataFrame with columns: user_id, movie_id, rating (float64)

    Raises:
        FileNotFoundError: If the file doesn't exist
        DataFormatError: On a missing column or a non-numeric / missing value

    Example:
        >>> df = load_ratings_csv("Data/recommendation-ratings-train.csv")
        >>> print(df.columns.tolist())
        ['user_id', 'movie_id', 'rating']
    """
    cfg = dict(DATA_CONFIG)
    if data_config:
        cfg.update(data_config)
    if skip_invalid is None:
        skip_invalid = cfg.get("skip_invalid", False)

    if not os.path.exists(path):
        raise FileNotFoundError(f"Ratings file not found: {path}")

    try:
        raw = pd.read_csv(path, sep=cfg["separator"], dtype=str, skipinitialspace=True)
    except pd.errors.EmptyDataError as e:
        raise DataFormatError(f"{path}: file is empty, expected a header row") from e

    raw.columns = [str(c).strip() for c in raw.columns]
    rating_col = _resolve_rating_column(raw.columns, cfg["rating_columns"])

    missing = [c for c in (cfg["user_column"], cfg["movie_column"]) if c not in raw.columns]
    if rating_col is None:
        missing.append("/".join(cfg["rating_columns"]))
    if missing:
        raise DataFormatError(f"{path}: missing required columns: {missing}")

    df = pd.DataFrame({
        "user_id": raw[cfg["user_column"]].str.strip(),
        "movie_id": raw[cfg["movie_column"]].str.strip(),
        "rating": pd.to_numeric(raw[rating_col], errors="coerce"),
    })

    bad_mask = (
        ~np.isfinite(df["rating"]) |
        df["user_id"].isna() | (df["user_id"] == "") |
        df["movie_id"].isna() | (df["movie_id"] == "")
    )

    if bad_mask.any():
        # +2: one for the header row, one for 1-based line numbers
        bad_lines = (df.index[bad_mask] + 2).tolist()
        if not skip_invalid:
            first = bad_lines[0]
            raise DataFormatError(
                f"{path}: malformed record on line {first} "
                f"({len(bad_lines)} malformed rows in total)"
            )
        logger.warning(f"{path}: skipping {len(bad_lines)} malformed rows (first on line {bad_lines[0]})")
        df = df[~bad_mask].reset_index(drop=True)

    df["user_id"] = _coerce_ids(df["user_id"])
    df["movie_id"] = _coerce_ids(df["movie_id"])
    df["rating"] = df["rating"].astype("float64")
    logger.info(f"Loaded {len(df)} ratings from {path}")
    return df[OUTPUT_COLUMNS]


def _coerce_ids(ids: pd.Series) -> pd.Series:
    """
    Integer-looking IDs become ints so '1' and '1.0' share one key.

    Decided per value, so a single non-numeric ID leaves the others as ints.
    """
    numeric = pd.to_numeric(ids, errors="coerce")
    integral = np.isfinite(numeric) & (numeric % 1 == 0)
    if integral.all():
        return numeric.astype("int64")
    coerced = ids.astype(object)
    if integral.any():
        coerced.loc[integral] = [int(v) for v in numeric[integral]]
    return coerced


def load_data(train_path: str,
              test_path: str,
              data_config: Optional[Dict] = None) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Load the pre-split training and test rating files.

    Args:
        train_path: Path to training CSV
        test_path: Path to test CSV
        data_config: Column names and separator (defaults to config.DATA_CONFIG)

    Returns:
        Tuple of (train_df, test_df)
    """
    train_df = load_ratings_csv(str(train_path), data_config)
    test_df = load_ratings_csv(str(test_path), data_config)
    return train_df, test_df
