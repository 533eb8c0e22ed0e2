"""
Matrix Factorization Recommendation Model

Trained latent-factor model for rating prediction.
Prediction formula: r_ui = p_u^T * q_i

Where:
- p_u = user latent factors (row u of user_factors)
- q_i = item latent factors (row i of item_factors)
"""

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from .exceptions import UnknownEntityError
from .feature_engineering import IdEncoder

logger = logging.getLogger(__name__)


class MatrixFactorizationModel:
    """
    Embedding matrices plus the vocabularies that index them.

    Instances are produced by train.train_mf_model() and are read-only
    afterwards: both factor arrays are marked non-writeable and both
    encoders are frozen.
    """

    def __init__(self, user_factors: np.ndarray, item_factors: np.ndarray,
                 user_encoder: IdEncoder, item_encoder: IdEncoder,
                 global_mean: float, unknown_policy: str = "global_mean",
                 hyperparams: Optional[Dict] = None,
                 training_history: Optional[List[Dict]] = None):
        """
        Args:
            user_factors: Shape (n_users, n_factors)
            item_factors: Shape (n_items, n_factors)
            user_encoder: Vocabulary for user IDs
            item_encoder: Vocabulary for movie IDs
            global_mean: Mean training rating, returned for unknown IDs
            unknown_policy: 'global_mean' (fallback score) or 'error'
            hyperparams: Settings the factors were trained with
            training_history: Per-iteration training log
        """
        if user_factors.shape[0] != len(user_encoder):
            raise ValueError(f"user_factors has {user_factors.shape[0]} rows for {len(user_encoder)} users")
        if item_factors.shape[0] != len(item_encoder):
            raise ValueError(f"item_factors has {item_factors.shape[0]} rows for {len(item_encoder)} items")
        if user_factors.shape[1] != item_factors.shape[1]:
            raise ValueError("user_factors and item_factors must share the same rank")
        if unknown_policy not in ("global_mean", "error"):
            raise ValueError(f"Invalid unknown_policy: {unknown_policy}. Must be 'global_mean' or 'error'")

        self.user_factors = user_factors
        self.item_factors = item_factors
        self.user_factors.flags.writeable = False
        self.item_factors.flags.writeable = False

        self.user_encoder = user_encoder.freeze()
        self.item_encoder = item_encoder.freeze()

        self.global_mean = float(global_mean)
        self.unknown_policy = unknown_policy
        self.hyperparams = dict(hyperparams or {})
        self.training_history = list(training_history or [])

    @property
    def n_users(self) -> int:
        return self.user_factors.shape[0]

    @property
    def n_items(self) -> int:
        return self.item_factors.shape[0]

    @property
    def n_factors(self) -> int:
        return self.user_factors.shape[1]

    def _fallback(self, kind: str, raw_id: Any) -> float:
        if self.unknown_policy == "error":
            raise UnknownEntityError(kind, raw_id)
        return self.global_mean

    def predict_rating(self, user_id: Any, movie_id: Any) -> float:
        """
        Predict rating for a single user-movie pair.

        Args:
            user_id: Raw user identifier
            movie_id: Raw movie identifier

        Returns:
            Inner product of the two embedding rows. For an ID missing from
            the training vocabulary, the global mean under the 'global_mean'
            policy.

        Raises:
            UnknownEntityError: For an unknown ID under the 'error' policy
        """
        user_idx = self.user_encoder.lookup(user_id)
        if user_idx is None:
            return self._fallback("user", user_id)
        item_idx = self.item_encoder.lookup(movie_id)
        if item_idx is None:
            return self._fallback("item", movie_id)

        return float(np.dot(self.user_factors[user_idx], self.item_factors[item_idx]))

    def predict_many(self, user_ids, movie_ids) -> np.ndarray:
        """
        Vectorized predict_rating() over aligned ID sequences.

        Unknown pairs follow the same policy as predict_rating(); under
        'error' the first unknown ID raises.
        """
        user_ids = list(user_ids)
        movie_ids = list(movie_ids)
        if len(user_ids) != len(movie_ids):
            raise ValueError(f"Got {len(user_ids)} user IDs and {len(movie_ids)} movie IDs")

        u_idx = np.array([self.user_encoder.lookup(u) for u in user_ids], dtype=object)
        i_idx = np.array([self.item_encoder.lookup(m) for m in movie_ids], dtype=object)
        known = np.array([u is not None and i is not None for u, i in zip(u_idx, i_idx)], dtype=bool)

        if self.unknown_policy == "error" and not known.all():
            pos = int(np.flatnonzero(~known)[0])
            if u_idx[pos] is None:
                raise UnknownEntityError("user", user_ids[pos])
            raise UnknownEntityError("item", movie_ids[pos])

        predictions = np.full(len(user_ids), self.global_mean, dtype=np.float64)
        if known.any():
            u = u_idx[known].astype(np.int64)
            i = i_idx[known].astype(np.int64)
            predictions[known] = np.sum(self.user_factors[u] * self.item_factors[i], axis=1)

        n_unknown = int((~known).sum())
        if n_unknown:
            logger.debug(f"{n_unknown} of {len(user_ids)} pairs scored with global mean fallback")
        return predictions

    def recommend(self, user_id: Any, n_recommendations: int = 20) -> List[Any]:
        """
        Top-N movie IDs for a user, sorted by predicted rating (descending).

        Raises:
            UnknownEntityError: If the user is unknown and policy is 'error'.
                Under 'global_mean' an unknown user gets an empty list.
        """
        user_idx = self.user_encoder.lookup(user_id)
        if user_idx is None:
            if self.unknown_policy == "error":
                raise UnknownEntityError("user", user_id)
            return []

        scores = self.item_factors @ self.user_factors[user_idx]
        # Stable sort keeps first-seen order among ties
        top_indices = np.argsort(-scores, kind="stable")[:n_recommendations]
        return [self.item_encoder.decode(int(idx)) for idx in top_indices]

    def is_recommended(self, user_id: Any, movie_id: Any, threshold: float = 3.5) -> bool:
        """A movie is recommended when its score, rounded to 1 decimal, exceeds threshold."""
        return round(self.predict_rating(user_id, movie_id), 1) > threshold

    def get_model_info(self) -> dict:
        """
        Get model metadata and statistics.

        Returns:
            Dict with n_users, n_items, n_factors, etc.
        """
        return {
            'algorithm': 'Matrix Factorization',
            'solver': self.hyperparams.get('solver', 'unknown'),
            'n_factors': self.n_factors,
            'total_users': self.n_users,
            'total_movies': self.n_items,
            'global_mean': self.global_mean,
            'unknown_policy': self.unknown_policy,
            'matrix_size': f"{self.n_users}×{self.n_items}",
        }
