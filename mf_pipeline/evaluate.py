"""
Model Evaluation Module

Provides regression metrics for rating prediction models:
- MSE (Mean Squared Error)
- RMSE (Root Mean Squared Error)
- MAE (Mean Absolute Error)
- R-squared (coefficient of determination)
- Spreadsheet report of the four metrics
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from .config import EVALUATION_CONFIG
from .model import MatrixFactorizationModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegressionMetrics:
    """
    Regression quality of one evaluation run.

    Field order is the report order. r_squared is NaN when the test set is
    empty or its labels have zero variance.
    """
    mean_squared_error: float
    root_mean_squared_error: float
    mean_absolute_error: float
    r_squared: float

    DISPLAY_NAMES = (
        "Mean Squared Error",
        "Root Mean Squared Error",
        "Mean Absolute Error",
        "RSquared",
    )

    def as_rows(self) -> Iterator[Tuple[str, float]]:
        values = (self.mean_squared_error, self.root_mean_squared_error,
                  self.mean_absolute_error, self.r_squared)
        return zip(self.DISPLAY_NAMES, values)

    def to_dict(self) -> dict:
        return {
            'MeanSquaredError': self.mean_squared_error,
            'RootMeanSquaredError': self.root_mean_squared_error,
            'MeanAbsoluteError': self.mean_absolute_error,
            'RSquared': self.r_squared,
        }


def compute_regression_metrics(labels, predictions) -> RegressionMetrics:
    """
    Compare predictions to ground-truth ratings.

    Metric: How accurately the model predicts ratings
    Operationalization:
        MSE  = mean((label - prediction)^2)
        RMSE = sqrt(MSE)
        MAE  = mean(|label - prediction|)
        R^2  = 1 - SS_res / SS_tot, SS_tot taken about the mean label

    Args:
        labels: Actual ratings
        predictions: Predicted ratings, aligned with labels

    Returns:
        RegressionMetrics. An empty input gives NaN for every metric;
        zero-variance labels give R^2 = NaN.

    Example:
        >>> m = compute_regression_metrics([5.0, 3.0], [4.0, 3.0])
        >>> m.mean_squared_error
        0.5
    """
    y_true = np.asarray(labels, dtype=np.float64)
    y_pred = np.asarray(predictions, dtype=np.float64)
    if y_true.shape != y_pred.shape:
        raise ValueError(f"labels and predictions differ in shape: {y_true.shape} vs {y_pred.shape}")

    if y_true.size == 0:
        logger.warning("Empty test set: all metrics reported as NaN")
        nan = float('nan')
        return RegressionMetrics(nan, nan, nan, nan)

    mse = float(mean_squared_error(y_true, y_pred))
    mae = float(mean_absolute_error(y_true, y_pred))

    if np.all(y_true == y_true[0]):
        logger.warning("Test labels have zero variance: R-squared is undefined, reported as NaN")
        r2 = float('nan')
    else:
        r2 = float(r2_score(y_true, y_pred))

    return RegressionMetrics(
        mean_squared_error=mse,
        root_mean_squared_error=math.sqrt(mse),
        mean_absolute_error=mae,
        r_squared=r2
    )


def evaluate(model: MatrixFactorizationModel, test_df: pd.DataFrame) -> RegressionMetrics:
    """
    Score every test rating with the model and compute regression metrics.

    Args:
        model: Trained model
        test_df: Test DataFrame with user_id, movie_id, rating

    Returns:
        RegressionMetrics

    Raises:
        UnknownEntityError: If the model's unknown_policy is 'error' and a
            test ID is missing from the training vocabulary
    """
    predictions = model.predict_many(test_df['user_id'].tolist(), test_df['movie_id'].tolist())
    return compute_regression_metrics(test_df['rating'].to_numpy(dtype=np.float64), predictions)


def log_metrics(metrics: RegressionMetrics) -> None:
    for name, value in metrics.as_rows():
        logger.info(f"{name} : {value}")


def write_metrics_to_excel(metrics: RegressionMetrics, output_path: str,
                           sheet_name: str = EVALUATION_CONFIG["sheet_name"]) -> Path:
    """
    Write the metrics as a two-column sheet: header row plus one row per metric.

    Args:
        metrics: Evaluation result
        output_path: Destination .xlsx file (parent directories are created)
        sheet_name: Worksheet name

    Returns:
        Path of the written file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    report = pd.DataFrame(list(metrics.as_rows()), columns=["Metric", "Value"])
    report.to_excel(output_path, sheet_name=sheet_name, index=False, engine="openpyxl")

    logger.info(f"Metrics written to {output_path}")
    return output_path


def evaluate_model_and_write_to_excel(model: MatrixFactorizationModel,
                                      test_df: pd.DataFrame,
                                      output_path: str) -> RegressionMetrics:
    """
    Evaluate on the test set, log each metric and write the xlsx report.

    Example:
        >>> metrics = evaluate_model_and_write_to_excel(model, test_df, "Data/metrics.xlsx")
        >>> print(f"RMSE: {metrics.root_mean_squared_error:.4f}")
        RMSE: 0.9871
    """
    logger.info("=============== Evaluating the model ===============")
    metrics = evaluate(model, test_df)
    log_metrics(metrics)
    write_metrics_to_excel(metrics, output_path)
    return metrics
