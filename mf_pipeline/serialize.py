"""
Model Serialization Module

Handles saving and loading trained models to/from disk.
"""

import logging
import os
import pickle
from pathlib import Path

from .model import MatrixFactorizationModel

logger = logging.getLogger(__name__)


def save_model(model: MatrixFactorizationModel, path: str) -> None:
    """
    Save trained model (factors + vocabularies) to a pickle file.

    Args:
        model: Trained MatrixFactorizationModel
        path: File path to save model (.pkl extension)

    Example:
        >>> save_model(trained_model, "Data/MovieRecommenderModel.pkl")
    """
    # Ensure directory exists
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'wb') as f:
        pickle.dump(model, f, protocol=pickle.HIGHEST_PROTOCOL)

    logger.info(f"Model saved to: {path}")


def load_model(path: str) -> MatrixFactorizationModel:
    """
    Load trained model from pickle file.

    Args:
        path: File path to saved model (.pkl)

    Returns:
        Loaded MatrixFactorizationModel

    Raises:
        FileNotFoundError: If model file doesn't exist
        TypeError: If the file holds some other object

    Example:
        >>> model = load_model("Data/MovieRecommenderModel.pkl")
        >>> model.predict_rating(9, 88)
        3.71
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model file not found: {path}")

    with open(path, 'rb') as f:
        model = pickle.load(f)

    if not isinstance(model, MatrixFactorizationModel):
        raise TypeError(f"{path} does not contain a MatrixFactorizationModel (got {type(model).__name__})")

    # Unpickled arrays come back writeable
    model.user_factors.flags.writeable = False
    model.item_factors.flags.writeable = False

    logger.info(f"Model loaded from: {path}")
    return model


def get_model_size(path: str) -> float:
    """
    Get size of saved model file in megabytes.

    Metric: Disk space required for model
    Operationalization: File size in bytes / (1024^2)

    Args:
        path: Path to model file

    Returns:
        Model size in MB
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model file not found: {path}")

    size_bytes = os.path.getsize(path)
    return size_bytes / (1024 ** 2)


def verify_model_integrity(path: str) -> bool:
    """
    Verify that a saved model can be loaded successfully.

    Args:
        path: Path to model file

    Returns:
        True if model loads successfully, False otherwise
    """
    try:
        load_model(path)
        return True
    except Exception as e:
        logger.warning(f"Model integrity check failed: {e}")
        return False
