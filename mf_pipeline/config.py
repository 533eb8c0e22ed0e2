"""
Configuration file for ML Pipeline

Contains all hyperparameters, paths, and constants used across the pipeline.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# ============================================================================
# PATHS
# ============================================================================

# Base directories
DATA_DIR = Path(os.getenv("MF_DATA_DIR", Path.cwd() / "Data"))
MODELS_DIR = DATA_DIR

# Data paths
TRAIN_DATA_PATH = DATA_DIR / "recommendation-ratings-train.csv"
TEST_DATA_PATH = DATA_DIR / "recommendation-ratings-test.csv"

# Output paths
DEFAULT_MODEL_PATH = MODELS_DIR / "MovieRecommenderModel.pkl"
DEFAULT_METRICS_PATH = Path(os.getenv("MF_METRICS_PATH", DATA_DIR / "metrics.xlsx"))

# ============================================================================
# INPUT FORMAT
# ============================================================================

DATA_CONFIG = {
    "user_column": "userId",
    "movie_column": "movieId",
    "rating_columns": ["rating", "Label"],  # First one present wins
    "separator": ",",
    "skip_invalid": False,  # Drop malformed rows instead of failing
}

# ============================================================================
# MODEL HYPERPARAMETERS
# ============================================================================

MF_CONFIG = {
    "n_factors": int(os.getenv("MF_N_FACTORS", 50)),  # Approximation rank k
    "n_iterations": int(os.getenv("MF_N_ITERATIONS", 20)),  # Sweeps over the training set
    "learning_rate": 0.1,  # SGD step size
    "regularization": 0.1,  # L2 weight on touched embedding rows
    "solver": os.getenv("MF_SOLVER", "sgd"),  # 'sgd' or 'als'
    "max_update": 5.0,  # Per-element clip on SGD updates
}

# ============================================================================
# TRAINING CONFIGURATION
# ============================================================================

TRAINING_CONFIG = {
    "random_state": int(os.getenv("MF_SEED", 42)),  # Random seed for reproducibility
    "max_training_seconds": None,  # Wall-clock cap, None = iterations only
}

# ============================================================================
# PREDICTION CONFIGURATION
# ============================================================================

PREDICTION_CONFIG = {
    "unknown_policy": os.getenv("MF_UNKNOWN_POLICY", "global_mean"),  # or 'error'
    "recommend_threshold": 3.5,  # Rounded score must exceed this
}

# ============================================================================
# EVALUATION CONFIGURATION
# ============================================================================

EVALUATION_CONFIG = {
    "sheet_name": "EvaluationMetrics",
}


UNKNOWN_POLICIES = ("global_mean", "error")
SOLVERS = ("sgd", "als")


@dataclass(frozen=True)
class PipelineContext:
    """
    Explicit settings passed to every pipeline stage.

    Carries the random seed and all hyperparameters so that no stage reads
    mutable module state while running.
    """
    n_factors: int = 50
    n_iterations: int = 20
    learning_rate: float = 0.1
    regularization: float = 0.1
    solver: str = "sgd"
    max_update: Optional[float] = 5.0  # None disables clipping
    seed: int = 42
    max_training_seconds: Optional[float] = None
    unknown_policy: str = "global_mean"
    recommend_threshold: float = 3.5
    data: dict = field(default_factory=lambda: dict(DATA_CONFIG))

    def __post_init__(self):
        if self.n_factors < 1:
            raise ValueError(f"n_factors must be >= 1, got {self.n_factors}")
        if self.n_iterations < 0:
            raise ValueError(f"n_iterations must be >= 0, got {self.n_iterations}")
        if self.learning_rate < 0:
            raise ValueError(f"learning_rate must be >= 0, got {self.learning_rate}")
        if self.regularization < 0:
            raise ValueError(f"regularization must be >= 0, got {self.regularization}")
        if self.max_update is not None and self.max_update <= 0:
            raise ValueError(f"max_update must be > 0 or None, got {self.max_update}")
        if self.max_training_seconds is not None and self.max_training_seconds < 0:
            raise ValueError(f"max_training_seconds must be >= 0, got {self.max_training_seconds}")
        if self.solver not in SOLVERS:
            raise ValueError(f"Invalid solver: {self.solver}. Must be one of {SOLVERS}")
        if self.unknown_policy not in UNKNOWN_POLICIES:
            raise ValueError(
                f"Invalid unknown_policy: {self.unknown_policy}. Must be one of {UNKNOWN_POLICIES}"
            )

    @classmethod
    def from_config(cls, **overrides) -> "PipelineContext":
        """
        Build a context from the module-level config dicts.

        Every override is applied as given, so max_update=None disables
        clipping. Callers drop settings they leave unset.

        Example:
            >>> ctx = PipelineContext.from_config(n_factors=8, seed=0)
            >>> ctx.n_iterations
            20
        """
        settings = {
            "n_factors": MF_CONFIG["n_factors"],
            "n_iterations": MF_CONFIG["n_iterations"],
            "learning_rate": MF_CONFIG["learning_rate"],
            "regularization": MF_CONFIG["regularization"],
            "solver": MF_CONFIG["solver"],
            "max_update": MF_CONFIG["max_update"],
            "seed": TRAINING_CONFIG["random_state"],
            "max_training_seconds": TRAINING_CONFIG["max_training_seconds"],
            "unknown_policy": PREDICTION_CONFIG["unknown_policy"],
            "recommend_threshold": PREDICTION_CONFIG["recommend_threshold"],
            "data": dict(DATA_CONFIG),
        }
        settings.update(overrides)
        return cls(**settings)

    def hyperparams(self) -> dict:
        """Hyperparameters recorded on the trained model."""
        return {
            "n_factors": self.n_factors,
            "n_iterations": self.n_iterations,
            "learning_rate": self.learning_rate,
            "regularization": self.regularization,
            "solver": self.solver,
            "max_update": self.max_update,
            "seed": self.seed,
        }
