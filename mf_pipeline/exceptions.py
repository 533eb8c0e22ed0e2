"""
Pipeline Exceptions

Error types raised by the loading, training and prediction stages.
"""

from typing import Any, Optional


class MFPipelineError(Exception):
    """Base class for pipeline errors."""


class DataFormatError(MFPipelineError, ValueError):
    """Malformed rating input (missing column, non-numeric value, empty set)."""


class UnknownEntityError(MFPipelineError, KeyError):
    """A raw user or movie ID is not in the training vocabulary."""

    def __init__(self, kind: str, raw_id: Any):
        self.kind = kind
        self.raw_id = raw_id
        super().__init__(f"Unknown {kind} id: {raw_id!r}")

    def __str__(self):
        # KeyError would repr() the message
        return self.args[0]


class NumericalInstabilityError(MFPipelineError, ArithmeticError):
    """Training loss or an embedding value became non-finite, or an ALS solve was singular."""

    def __init__(self, message: str, iteration: int, row: Optional[int] = None):
        self.iteration = iteration
        self.row = row
        super().__init__(message)
