"""
ML Pipeline Package for Movie Rating Prediction

This package contains modular components for:
- Data loading (comma-separated rating files)
- ID encoding (raw user/movie IDs -> dense indices)
- Model training (matrix factorization, SGD or ALS)
- Model evaluation (MSE, RMSE, MAE, R-squared, xlsx report)
- Model serialization (save/load)
"""

__version__ = "1.0.0"
