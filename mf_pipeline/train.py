"""
Model Training Module

Learns user and item embeddings by minimizing squared rating error:

    sum over (u, i, r) of (r - p_u . q_i)^2 + regularization * (|p_u|^2 + |q_i|^2)

Two solvers are available:
- 'sgd': stochastic gradient descent over a seeded permutation of the triples
- 'als': alternating least squares, one ridge solve per user row then per item row
"""

import logging
import math
import time
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import linalg

from .config import PipelineContext
from .exceptions import DataFormatError, NumericalInstabilityError
from .feature_engineering import RatingDataset, build_rating_dataset, calculate_global_statistics
from .model import MatrixFactorizationModel

logger = logging.getLogger(__name__)


class MatrixFactorizationTrainer:
    """
    Fits a MatrixFactorizationModel on a RatingDataset.

    All randomness comes from numpy.random.default_rng(context.seed), so
    the same context and dataset always give identical factors.
    """

    def __init__(self, context: Optional[PipelineContext] = None):
        self.context = context or PipelineContext.from_config()
        self.user_factors = None  # Shape: (n_users, n_factors)
        self.item_factors = None  # Shape: (n_items, n_factors)
        self.training_history: List[Dict] = []

    def initialize_factors(self, rng: np.random.Generator, n_users: int, n_items: int):
        """Uniform [0, 1) scaled by sqrt(1/k)."""
        k = self.context.n_factors
        scale = math.sqrt(1.0 / k)
        self.user_factors = rng.random((n_users, k)) * scale
        self.item_factors = rng.random((n_items, k)) * scale

    def fit_epoch_sgd(self, rng: np.random.Generator, dataset: RatingDataset, iteration: int) -> float:
        """One SGD sweep. Returns the mean squared error seen during the sweep."""
        lr = self.context.learning_rate
        reg = self.context.regularization
        clip = self.context.max_update
        P = self.user_factors
        Q = self.item_factors
        users = dataset.user_indices
        items = dataset.item_indices
        labels = dataset.labels

        sq_err = 0.0
        for idx in rng.permutation(len(dataset)):
            u = users[idx]
            i = items[idx]
            p_u = P[u]
            q_i = Q[i]

            error = labels[idx] - np.dot(p_u, q_i)
            if not math.isfinite(error):
                raise NumericalInstabilityError(
                    f"Non-finite prediction error at iteration {iteration} "
                    f"(training row {int(idx)}, user index {int(u)}, item index {int(i)})",
                    iteration=iteration, row=int(idx)
                )
            sq_err += error * error

            p_old = p_u.copy()
            update_u = lr * (error * q_i - reg * p_u)
            update_i = lr * (error * p_old - reg * q_i)
            if clip is not None:
                update_u = np.clip(update_u, -clip, clip)
                update_i = np.clip(update_i, -clip, clip)

            P[u] += update_u
            Q[i] += update_i

        return sq_err / len(dataset)

    def fit_epoch_als(self, by_user, by_item, iteration: int) -> None:
        """One ALS pass: solve every user row with items fixed, then every item row."""
        self._solve_rows(self.user_factors, self.item_factors, by_user, iteration, "user")
        self._solve_rows(self.item_factors, self.user_factors, by_item, iteration, "item")

    def _solve_rows(self, target: np.ndarray, fixed: np.ndarray, neighbourhoods,
                    iteration: int, kind: str) -> None:
        k = self.context.n_factors
        reg = self.context.regularization
        identity = np.eye(k)
        indptr, indices, data = neighbourhoods.indptr, neighbourhoods.indices, neighbourhoods.data

        for row in range(target.shape[0]):
            start, end = indptr[row], indptr[row + 1]
            if start == end:
                continue
            f = fixed[indices[start:end]]
            # Per-rating L2 weight, matching the SGD objective
            a = f.T @ f + reg * (end - start) * identity
            b = f.T @ data[start:end]
            try:
                target[row] = linalg.solve(a, b, assume_a="pos")
            except linalg.LinAlgError as e:
                raise NumericalInstabilityError(
                    f"Singular least-squares system at iteration {iteration} ({kind} index {row}): {e}",
                    iteration=iteration, row=row
                ) from e

    def _training_mse(self, dataset: RatingDataset) -> float:
        preds = np.sum(self.user_factors[dataset.user_indices] * self.item_factors[dataset.item_indices], axis=1)
        return float(np.mean((dataset.labels - preds) ** 2))

    def _check_finite(self, loss: float, iteration: int) -> None:
        if not math.isfinite(loss):
            raise NumericalInstabilityError(
                f"Training loss became non-finite ({loss}) at iteration {iteration}",
                iteration=iteration
            )
        for name, factors in (("user", self.user_factors), ("item", self.item_factors)):
            bad_rows = np.flatnonzero(~np.isfinite(factors).all(axis=1))
            if bad_rows.size:
                row = int(bad_rows[0])
                raise NumericalInstabilityError(
                    f"Non-finite {name} embedding at iteration {iteration} ({name} index {row})",
                    iteration=iteration, row=row
                )

    def fit(self, dataset: RatingDataset) -> MatrixFactorizationModel:
        """
        Train embeddings for exactly context.n_iterations sweeps.

        Training stops earlier only if context.max_training_seconds is set
        and exceeded.

        Args:
            dataset: Training triples (encoders are frozen on return)

        Returns:
            Trained MatrixFactorizationModel

        Raises:
            DataFormatError: If the dataset is empty
            NumericalInstabilityError: If the loss or an embedding value
                becomes non-finite
        """
        if len(dataset) == 0:
            raise DataFormatError("Cannot train on an empty rating dataset")

        ctx = self.context
        rng = np.random.default_rng(ctx.seed)
        self.initialize_factors(rng, dataset.n_users, dataset.n_items)
        self.training_history = []

        by_user = by_item = None
        if ctx.solver == "als":
            by_user = dataset.to_csr()
            by_item = dataset.to_csr(transpose=True)

        logger.info(f"Training setup: users={dataset.n_users} items={dataset.n_items} "
                    f"factors={ctx.n_factors} ratings={len(dataset)} solver={ctx.solver}")

        start_time = time.perf_counter()
        with np.errstate(over="ignore", invalid="ignore"):
            for iteration in range(1, ctx.n_iterations + 1):
                if ctx.solver == "sgd":
                    loss = self.fit_epoch_sgd(rng, dataset, iteration)
                else:
                    self.fit_epoch_als(by_user, by_item, iteration)
                    loss = self._training_mse(dataset)

                self._check_finite(loss, iteration)

                elapsed = time.perf_counter() - start_time
                self.training_history.append({
                    'iteration': iteration,
                    'train_rmse': math.sqrt(loss),
                    'elapsed_sec': elapsed
                })
                logger.info(f"Iteration {iteration:2d}/{ctx.n_iterations}: Train RMSE: {math.sqrt(loss):.4f} ({elapsed:.2f}s)")

                if ctx.max_training_seconds is not None and elapsed > ctx.max_training_seconds:
                    logger.warning(f"Stopping after iteration {iteration}: "
                                   f"exceeded {ctx.max_training_seconds}s training budget")
                    break

        return MatrixFactorizationModel(
            user_factors=self.user_factors,
            item_factors=self.item_factors,
            user_encoder=dataset.user_encoder,
            item_encoder=dataset.item_encoder,
            global_mean=dataset.global_mean,
            unknown_policy=ctx.unknown_policy,
            hyperparams=ctx.hyperparams(),
            training_history=self.training_history
        )


def train_mf_model(train_df: pd.DataFrame,
                   context: Optional[PipelineContext] = None) -> Tuple[MatrixFactorizationModel, RatingDataset]:
    """
    Encode training ratings and fit a matrix factorization model.

    Steps:
    1. Build user/movie vocabularies from train_df (first-seen order)
    2. Encode ratings into (user_index, item_index, label) triples
    3. Run the configured solver
    4. Freeze vocabularies and factors in the returned model

    Args:
        train_df: Training ratings DataFrame (user_id, movie_id, rating)
        context: Seed and hyperparameters (defaults from config)

    Returns:
        Tuple of (trained model, encoded training dataset)

    Example:
        >>> ctx = PipelineContext.from_config(n_factors=50, n_iterations=20)
        >>> model, train_ds = train_mf_model(train_df, ctx)
        >>> print(model.n_users, model.n_items)
        610 9724
    """
    context = context or PipelineContext.from_config()

    logger.info("Encoding user and movie IDs...")
    dataset = build_rating_dataset(train_df)
    stats = calculate_global_statistics(dataset)
    logger.info(f"Users: {stats['n_users']}, Movies: {stats['n_items']}, Ratings: {stats['n_ratings']}")
    logger.info(f"Global mean rating: {stats['global_mean']:.3f}")

    logger.info(f"Training matrix factorization with {context.n_factors} factors "
                f"for {context.n_iterations} iterations...")
    trainer = MatrixFactorizationTrainer(context)
    model = trainer.fit(dataset)
    logger.info("Training completed!")

    return model, dataset
