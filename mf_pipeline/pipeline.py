"""
ML Pipeline Orchestrator

Main entry point for running the end-to-end ML pipeline:
1. Data loading (pre-split train/test CSV files)
2. ID encoding and model training
3. Model evaluation (xlsx metrics report)
4. Model serialization
5. Optional single prediction

"""

import logging
import time
from typing import Any, Dict, Optional

import pandas as pd

from . import config
from .config import PipelineContext
from .data_io import load_data
from .evaluate import evaluate_model_and_write_to_excel
from .model import MatrixFactorizationModel
from .serialize import get_model_size, load_model, save_model
from .train import train_mf_model

logger = logging.getLogger(__name__)


def build_and_train_model(context: PipelineContext, train_df: pd.DataFrame) -> MatrixFactorizationModel:
    """Encode IDs and train the factorization model on train_df."""
    logger.info("=============== Training the model ===============")
    model, _ = train_mf_model(train_df, context)
    return model


def use_model_for_single_prediction(context: PipelineContext,
                                    model: MatrixFactorizationModel,
                                    user_id: Any, movie_id: Any) -> Dict:
    """
    Score one (user, movie) pair and decide whether to recommend it.

    Returns:
        Dict with user_id, movie_id, score, recommended
    """
    logger.info("=============== Making a prediction ===============")
    score = model.predict_rating(user_id, movie_id)
    recommended = model.is_recommended(user_id, movie_id, context.recommend_threshold)

    if recommended:
        logger.info(f"Movie {movie_id} is recommended for user {user_id}")
    else:
        logger.info(f"Movie {movie_id} is not recommended for user {user_id}")

    return {
        'user_id': user_id,
        'movie_id': movie_id,
        'score': score,
        'recommended': recommended
    }


def run_training_pipeline(train_path: Optional[str] = None,
                          test_path: Optional[str] = None,
                          metrics_output_path: Optional[str] = None,
                          model_output_path: Optional[str] = None,
                          context: Optional[PipelineContext] = None,
                          save: bool = True) -> Dict:
    """
    Run the complete training pipeline from rating files to metrics report.

    Steps:
    1. Load training and test ratings
    2. Encode IDs and train matrix factorization
    3. Evaluate on the test set and write metrics xlsx
    4. Save model to disk (if save)

    Args:
        train_path: Training CSV (uses config default if None)
        test_path: Test CSV (uses config default if None)
        metrics_output_path: Destination xlsx (uses config default if None)
        model_output_path: Destination pickle (uses config default if None)
        context: Seed and hyperparameters (uses config defaults if None)
        save: Whether to persist the trained model

    Returns:
        Dict with pipeline results:
        - model: MatrixFactorizationModel
        - metrics: RegressionMetrics
        - metrics_path: str
        - model_path: str or None
        - model_size_mb: float or None
        - training_time_sec: float
        - hyperparams: Dict

    Example:
        >>> results = run_training_pipeline(
        ...     train_path="Data/recommendation-ratings-train.csv",
        ...     test_path="Data/recommendation-ratings-test.csv",
        ... )
        >>> print(results['metrics'].root_mean_squared_error)
        0.9871
    """
    start_time = time.time()

    # Set defaults from config
    if train_path is None:
        train_path = config.TRAIN_DATA_PATH
    if test_path is None:
        test_path = config.TEST_DATA_PATH
    if metrics_output_path is None:
        metrics_output_path = config.DEFAULT_METRICS_PATH
    if model_output_path is None:
        model_output_path = config.DEFAULT_MODEL_PATH
    if context is None:
        context = PipelineContext.from_config()

    logger.info("=" * 60)
    logger.info("STARTING ML TRAINING PIPELINE")
    logger.info("=" * 60)

    n_steps = 4 if save else 3

    # Step 1: Load data
    logger.info(f"[1/{n_steps}] Loading data from {train_path} and {test_path}...")
    train_df, test_df = load_data(str(train_path), str(test_path), context.data)
    logger.info(f"  Train: {len(train_df)}, Test: {len(test_df)}")

    # Step 2: Train
    logger.info(f"[2/{n_steps}] Training matrix factorization model...")
    model = build_and_train_model(context, train_df)

    # Step 3: Evaluate
    logger.info(f"[3/{n_steps}] Evaluating model on test set...")
    metrics = evaluate_model_and_write_to_excel(model, test_df, str(metrics_output_path))

    # Step 4: Save
    model_path = None
    model_size_mb = None
    if save:
        logger.info(f"[4/{n_steps}] Saving model to {model_output_path}...")
        save_model(model, str(model_output_path))
        model_path = str(model_output_path)
        model_size_mb = get_model_size(model_path)
        logger.info(f"  Model size: {model_size_mb:.2f} MB")

    training_time_sec = time.time() - start_time

    logger.info("=" * 60)
    logger.info("PIPELINE COMPLETED SUCCESSFULLY")
    logger.info("=" * 60)
    logger.info(f"Total time: {training_time_sec:.2f} seconds")
    logger.info(f"RMSE: {metrics.root_mean_squared_error:.4f}")
    logger.info("=" * 60)

    return {
        'model': model,
        'metrics': metrics,
        'metrics_path': str(metrics_output_path),
        'model_path': model_path,
        'model_size_mb': model_size_mb,
        'training_time_sec': training_time_sec,
        'hyperparams': context.hyperparams()
    }


def run_inference_pipeline(model_path: str, user_id: Any, movie_id: Any,
                           context: Optional[PipelineContext] = None) -> Dict:
    """
    Load a saved model and score a single (user, movie) pair.

    Example:
        >>> run_inference_pipeline("Data/MovieRecommenderModel.pkl", 9, 88)
        {'user_id': 9, 'movie_id': 88, 'score': 3.71, 'recommended': True}
    """
    context = context or PipelineContext.from_config()
    logger.info(f"Loading model from {model_path}...")
    model = load_model(model_path)
    return use_model_for_single_prediction(context, model, user_id, movie_id)


def _parse_id(value: Optional[str]):
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return value


def build_arg_parser():
    import argparse

    parser = argparse.ArgumentParser(description='Train and evaluate a matrix factorization rating model')
    parser.add_argument('--train', type=str, default=None, help='Training CSV (userId,movieId,rating)')
    parser.add_argument('--test', type=str, default=None, help='Test CSV (userId,movieId,rating)')
    parser.add_argument('--metrics-out', type=str, default=None, help='Metrics xlsx path')
    parser.add_argument('--model-out', type=str, default=None, help='Model pickle path')
    parser.add_argument('--no-save', action='store_true', help='Do not persist the trained model')
    parser.add_argument('--factors', type=int, default=None, help='Approximation rank k')
    parser.add_argument('--iterations', type=int, default=None, help='Number of training iterations')
    parser.add_argument('--learning-rate', type=float, default=None)
    parser.add_argument('--regularization', type=float, default=None)
    parser.add_argument('--solver', type=str, default=None, choices=list(config.SOLVERS))
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--max-update', type=float, default=None, help='Per-element clip on SGD updates')
    parser.add_argument('--no-clip', action='store_true', help='Disable clipping of SGD updates')
    parser.add_argument('--max-seconds', type=float, default=None, help='Wall-clock training cap')
    parser.add_argument('--unknown-policy', type=str, default=None, choices=list(config.UNKNOWN_POLICIES))
    parser.add_argument('--skip-invalid', action='store_true', help='Drop malformed rows instead of failing')
    parser.add_argument('--predict-user', type=str, default=None, help='User ID for a single prediction')
    parser.add_argument('--predict-movie', type=str, default=None, help='Movie ID for a single prediction')
    return parser


def main(argv=None) -> Dict:
    """
    Run pipeline from command line.

    Usage:
        python -m mf_pipeline.pipeline
        python -m mf_pipeline.pipeline --train Data/train.csv --test Data/test.csv --factors 50
        python -m mf_pipeline.pipeline --predict-user 9 --predict-movie 88
    """
    args = build_arg_parser().parse_args(argv)

    data_config = dict(config.DATA_CONFIG)
    if args.skip_invalid:
        data_config['skip_invalid'] = True

    overrides = {
        'n_factors': args.factors,
        'n_iterations': args.iterations,
        'learning_rate': args.learning_rate,
        'regularization': args.regularization,
        'solver': args.solver,
        'max_update': args.max_update,
        'seed': args.seed,
        'max_training_seconds': args.max_seconds,
        'unknown_policy': args.unknown_policy,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if args.no_clip:
        overrides['max_update'] = None
    context = PipelineContext.from_config(data=data_config, **overrides)

    results = run_training_pipeline(
        train_path=args.train,
        test_path=args.test,
        metrics_output_path=args.metrics_out,
        model_output_path=args.model_out,
        context=context,
        save=not args.no_save,
    )

    if args.predict_user is not None and args.predict_movie is not None:
        results['prediction'] = use_model_for_single_prediction(
            context, results['model'], _parse_id(args.predict_user), _parse_id(args.predict_movie)
        )

    logger.info(f"Metrics saved to: {results['metrics_path']}")
    if results['model_path']:
        logger.info(f"Model saved to: {results['model_path']}")
    logger.info(f"Training time: {results['training_time_sec']:.2f} seconds")
    return results


def cli() -> None:
    logging.basicConfig(level=logging.INFO)
    main()


if __name__ == "__main__":
    cli()
