"""
Custom exception hierarchy for the cross-validated search pipeline.
"""

class CVSearchException(Exception):
    """Base exception for all system errors."""
    pass

class ConfigurationError(CVSearchException):
    """Configuration validation failed (bad ratios, too many folds, empty grid)."""
    pass

class DataValidationError(CVSearchException):
    """Data validation failed."""
    pass

class ShapeMismatchError(CVSearchException):
    """Predictions and true values differ in length."""
    pass

class FittingError(CVSearchException):
    """The model procedure raised while fitting or predicting."""

    def __init__(self, message: str, candidate=None, fold=None):
        super().__init__(message)
        self.candidate = candidate
        self.fold = fold

class SearchCancelledError(CVSearchException):
    """The sweep was cancelled before all evaluations completed."""

    def __init__(self, message: str, completed_records=None):
        super().__init__(message)
        self.completed_records = list(completed_records or [])

class TestSetReuseError(CVSearchException):
    """The held-out test set was already used for a final evaluation."""
    __test__ = False
