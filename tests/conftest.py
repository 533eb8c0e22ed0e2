"""
Pytest configuration and shared fixtures

This file contains fixtures that are available to all test files.
"""

import pytest
import numpy as np
import pandas as pd

from mf_pipeline.config import PipelineContext

# ---------------------------------------------------
# DataFrame fixtures
# ---------------------------------------------------

@pytest.fixture
def tiny_interactions_df():
    """
    Tiny ratings DataFrame (3 users, 3 movies) for unit tests
    """
    return pd.DataFrame({
        'user_id': ['u1', 'u1', 'u2', 'u2', 'u3'],
        'movie_id': ['m1', 'm2', 'm1', 'm3', 'm2'],
        'rating': [5.0, 3.0, 4.0, 5.0, 2.0]
    })


@pytest.fixture
def three_ratings_df():
    """Two users, two movies, three ratings with integer IDs."""
    return pd.DataFrame({
        'user_id': [1, 1, 2],
        'movie_id': [1, 2, 1],
        'rating': [5.0, 1.0, 4.0]
    })


@pytest.fixture(scope="session")
def synthetic_ratings_df():
    """Synthetic dataset (10 users x 15 movies, 100 ratings)."""
    n_users, n_items, n_rows = 10, 15, 100
    rng = np.random.default_rng(seed=42)
    return pd.DataFrame({
        "user_id": [i % n_users for i in range(n_rows)],
        "movie_id": [(i * 7) % n_items for i in range(n_rows)],
        "rating": rng.integers(1, 6, size=n_rows).astype(float),
    })


# ---------------------------------------------------
# Context / model fixtures
# ---------------------------------------------------

@pytest.fixture
def small_context():
    """Fast settings for unit tests."""
    return PipelineContext(n_factors=4, n_iterations=10, seed=7)


@pytest.fixture
def trained_model(three_ratings_df):
    """
    Model fitted on the three-rating scenario (k=2, 50 iterations).
    """
    from mf_pipeline.train import train_mf_model

    ctx = PipelineContext(n_factors=2, n_iterations=50, seed=42)
    model, _ = train_mf_model(three_ratings_df, ctx)
    return model


# ---------------------------------------------------
# File fixtures
# ---------------------------------------------------

@pytest.fixture
def write_csv(tmp_path):
    """Write text to a CSV file under tmp_path and return its path."""
    def _write(name, text):
        path = tmp_path / name
        path.write_text(text)
        return path
    return _write


@pytest.fixture
def ratings_csv_pair(write_csv):
    """Pre-split train/test CSV files in the userId,movieId,rating layout."""
    train = write_csv(
        "recommendation-ratings-train.csv",
        "userId,movieId,rating,timestamp\n"
        "1,1,4.0,964982703\n"
        "1,3,4.0,964981247\n"
        "1,6,4.0,964982224\n"
        "2,1,3.5,964983815\n"
        "2,3,2.0,964982931\n"
        "3,6,5.0,964982400\n"
        "3,1,4.5,964980868\n"
        "4,3,1.0,964982176\n"
    )
    test = write_csv(
        "recommendation-ratings-test.csv",
        "userId,movieId,rating,timestamp\n"
        "1,1,4.0,964982703\n"
        "2,6,3.0,964982931\n"
        "4,1,2.5,964982176\n"
        "99,1,3.0,964982176\n"
    )
    return train, test
