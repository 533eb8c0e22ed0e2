"""
Tests for mf_pipeline.train module
----------------------------------
Covers:
- MatrixFactorizationTrainer (SGD and ALS)
- train_mf_model()
"""

import pytest
import pandas as pd
import numpy as np

from mf_pipeline import train
from mf_pipeline.config import PipelineContext
from mf_pipeline.evaluate import evaluate
from mf_pipeline.exceptions import DataFormatError, NumericalInstabilityError
from mf_pipeline.feature_engineering import build_rating_dataset
from mf_pipeline.model import MatrixFactorizationModel


# -------------------------------------------------------------------
# Three-rating scenario
# -------------------------------------------------------------------

class TestThreeRatingScenario:
    """k=2, 50 iterations, fixed seed on [(1,1,5), (1,2,1), (2,1,4)]"""

    def test_predictions_within_sanity_bounds(self, trained_model):
        for user in (1, 2):
            for movie in (1, 2):
                score = trained_model.predict_rating(user, movie)
                assert 0.0 <= score <= 6.0, f"score {score} for ({user}, {movie})"

    def test_fits_training_data(self, trained_model, three_ratings_df):
        metrics = evaluate(trained_model, three_ratings_df)
        assert metrics.mean_squared_error < 0.5

    def test_history_has_one_entry_per_iteration(self, trained_model):
        assert len(trained_model.training_history) == 50
        assert [h['iteration'] for h in trained_model.training_history] == list(range(1, 51))
        first = trained_model.training_history[0]['train_rmse']
        last = trained_model.training_history[-1]['train_rmse']
        assert last < first

    def test_model_shape(self, trained_model):
        assert trained_model.user_factors.shape == (2, 2)
        assert trained_model.item_factors.shape == (2, 2)


# -------------------------------------------------------------------
# Determinism
# -------------------------------------------------------------------

class TestDeterminism:
    """Training with the same data and context should yield identical results."""

    @pytest.mark.parametrize("solver", ["sgd", "als"])
    def test_same_seed_same_factors(self, synthetic_ratings_df, solver):
        ctx = PipelineContext(n_factors=5, n_iterations=5, seed=123, solver=solver)
        model1, _ = train.train_mf_model(synthetic_ratings_df, ctx)
        model2, _ = train.train_mf_model(synthetic_ratings_df, ctx)

        np.testing.assert_array_equal(model1.user_factors, model2.user_factors)
        np.testing.assert_array_equal(model1.item_factors, model2.item_factors)

    def test_different_seed_different_factors(self, synthetic_ratings_df):
        model1, _ = train.train_mf_model(synthetic_ratings_df, PipelineContext(n_factors=5, n_iterations=3, seed=1))
        model2, _ = train.train_mf_model(synthetic_ratings_df, PipelineContext(n_factors=5, n_iterations=3, seed=2))
        assert not np.allclose(model1.user_factors, model2.user_factors)


# -------------------------------------------------------------------
# Trainer behaviour
# -------------------------------------------------------------------

class TestMatrixFactorizationTrainer:
    """Unit tests for MatrixFactorizationTrainer"""

    def test_initialization_range(self, tiny_interactions_df):
        ctx = PipelineContext(n_factors=8, n_iterations=0)
        trainer = train.MatrixFactorizationTrainer(ctx)
        trainer.initialize_factors(np.random.default_rng(0), 3, 4)

        assert trainer.user_factors.shape == (3, 8)
        assert trainer.item_factors.shape == (4, 8)
        bound = np.sqrt(1 / 8)
        assert trainer.user_factors.min() >= 0.0
        assert trainer.user_factors.max() < bound

    def test_zero_iterations_returns_initial_factors(self, tiny_interactions_df):
        ctx = PipelineContext(n_factors=3, n_iterations=0, seed=5)
        model, _ = train.train_mf_model(tiny_interactions_df, ctx)

        rng = np.random.default_rng(5)
        expected_users = rng.random((3, 3)) * np.sqrt(1 / 3)
        np.testing.assert_array_equal(model.user_factors, expected_users)
        assert model.training_history == []

    def test_runs_configured_iterations(self, tiny_interactions_df, small_context):
        model, _ = train.train_mf_model(tiny_interactions_df, small_context)
        assert len(model.training_history) == small_context.n_iterations

    def test_sgd_reduces_training_error(self, synthetic_ratings_df):
        ctx = PipelineContext(n_factors=10, n_iterations=30, learning_rate=0.05, regularization=0.02, seed=0)
        model, _ = train.train_mf_model(synthetic_ratings_df, ctx)
        history = [h['train_rmse'] for h in model.training_history]
        assert history[-1] < history[0]

    def test_als_fits_three_ratings(self, three_ratings_df):
        ctx = PipelineContext(n_factors=2, n_iterations=20, regularization=0.01, solver="als", seed=42)
        model, _ = train.train_mf_model(three_ratings_df, ctx)
        preds = model.predict_many([1, 1, 2], [1, 2, 1])
        np.testing.assert_allclose(preds, [5.0, 1.0, 4.0], atol=0.3)

    def test_empty_training_set(self):
        df = pd.DataFrame({"user_id": [], "movie_id": [], "rating": []})
        with pytest.raises(DataFormatError):
            train.train_mf_model(df, PipelineContext(n_factors=2, n_iterations=1))

    def test_model_is_read_only(self, tiny_interactions_df, small_context):
        model, dataset = train.train_mf_model(tiny_interactions_df, small_context)
        assert isinstance(model, MatrixFactorizationModel)
        assert dataset.user_encoder.frozen
        with pytest.raises(ValueError):
            model.user_factors[0, 0] = 1.0

    def test_hyperparams_recorded(self, tiny_interactions_df, small_context):
        model, _ = train.train_mf_model(tiny_interactions_df, small_context)
        assert model.hyperparams["n_factors"] == 4
        assert model.hyperparams["seed"] == 7
        assert model.hyperparams["solver"] == "sgd"

    def test_wall_clock_cap_stops_early(self, synthetic_ratings_df):
        ctx = PipelineContext(n_factors=2, n_iterations=50, max_training_seconds=0.0)
        model, _ = train.train_mf_model(synthetic_ratings_df, ctx)
        assert len(model.training_history) == 1


# -------------------------------------------------------------------
# Numerical instability
# -------------------------------------------------------------------

class TestNumericalInstability:
    """Non-finite loss must abort training with the iteration number."""

    def test_diverging_sgd_raises(self):
        df = pd.DataFrame({"user_id": [1, 2], "movie_id": [1, 1], "rating": [1e300, -1e300]})
        ctx = PipelineContext(n_factors=2, n_iterations=10, learning_rate=1e10, max_update=None, seed=0)
        with pytest.raises(NumericalInstabilityError) as exc:
            train.train_mf_model(df, ctx)
        assert exc.value.iteration >= 1
        assert "iteration" in str(exc.value)

    def test_check_finite_reports_row(self, tiny_interactions_df):
        ds = build_rating_dataset(tiny_interactions_df)
        trainer = train.MatrixFactorizationTrainer(PipelineContext(n_factors=2, n_iterations=1))
        trainer.initialize_factors(np.random.default_rng(0), ds.n_users, ds.n_items)
        trainer.item_factors[2, 1] = np.nan

        with pytest.raises(NumericalInstabilityError) as exc:
            trainer._check_finite(0.5, iteration=3)
        assert exc.value.iteration == 3
        assert exc.value.row == 2

    def test_check_finite_on_loss(self, tiny_interactions_df):
        ds = build_rating_dataset(tiny_interactions_df)
        trainer = train.MatrixFactorizationTrainer(PipelineContext(n_factors=2, n_iterations=1))
        trainer.initialize_factors(np.random.default_rng(0), ds.n_users, ds.n_items)
        with pytest.raises(NumericalInstabilityError):
            trainer._check_finite(float("inf"), iteration=1)

    def test_unregularized_als_singular_system(self, three_ratings_df):
        ctx = PipelineContext(n_factors=2, n_iterations=5, regularization=0.0, solver="als")
        with pytest.raises(NumericalInstabilityError) as exc:
            train.train_mf_model(three_ratings_df, ctx)
        assert exc.value.iteration >= 1

    def test_singular_solve_reports_iteration_and_row(self, tiny_interactions_df):
        ds = build_rating_dataset(tiny_interactions_df)
        trainer = train.MatrixFactorizationTrainer(
            PipelineContext(n_factors=2, n_iterations=1, regularization=0.0, solver="als"))
        trainer.initialize_factors(np.random.default_rng(0), ds.n_users, ds.n_items)
        trainer.item_factors[:] = 0.0

        with pytest.raises(NumericalInstabilityError) as exc:
            trainer.fit_epoch_als(ds.to_csr(), ds.to_csr(transpose=True), iteration=4)
        assert exc.value.iteration == 4
        assert exc.value.row == 0
