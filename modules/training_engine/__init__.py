"""
Training Engine
===============

Responsibility:
- Explicit refit of the selected candidate on the whole fitting pool.
- One-time scoring of the refit model on the held-out test set.
- Persistence of the final model (joblib) and its metadata.
"""

from .training_engine import TrainingEngine, FinalModel, refit

__all__ = ['TrainingEngine', 'FinalModel', 'refit']
