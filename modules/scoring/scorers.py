"""
Scalar performance measures used to compare hyperparameter candidates.

Every scorer is a ``Scorer``: a named callable ``(y_true, y_pred) -> float``
that also says whether larger values are better, so the search can rank
candidates without knowing which measure it was given.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List

import numpy as np
from sklearn import metrics

from utils.exceptions import ConfigurationError, ShapeMismatchError


def _binomial_deviance(y_true, y_prob) -> float:
    # mean deviance of Bernoulli outcomes = 2 * log loss
    return 2.0 * metrics.log_loss(y_true, np.clip(y_prob, 1e-15, 1 - 1e-15), labels=[0, 1])


def _misclassification(y_true, y_pred) -> float:
    return 1.0 - metrics.accuracy_score(y_true, y_pred)


@dataclass(frozen=True)
class Scorer:
    name: str
    func: Callable[[np.ndarray, np.ndarray], float]
    greater_is_better: bool = False

    def __call__(self, y_true, y_pred) -> float:
        y_true = np.asarray(y_true)
        y_pred = np.asarray(y_pred)
        if y_true.ndim == 2 and y_true.shape[1] == 1:
            y_true = y_true.ravel()
        if y_pred.ndim == 2 and y_pred.shape[1] == 1:
            y_pred = y_pred.ravel()

        if len(y_true) != len(y_pred):
            raise ShapeMismatchError(
                f"{self.name}: y_true has {len(y_true)} values but y_pred has {len(y_pred)}."
            )
        if len(y_true) == 0:
            raise ShapeMismatchError(f"{self.name}: cannot score empty inputs.")
        return float(self.func(y_true, y_pred))

    def sort_key(self, value: float) -> float:
        """Key for ascending sort where the best value comes first."""
        return -value if self.greater_is_better else value


SCORERS: Dict[str, Scorer] = {
    # Regression
    'rmse': Scorer('rmse', lambda y, p: np.sqrt(metrics.mean_squared_error(y, p))),
    'mse': Scorer('mse', metrics.mean_squared_error),
    'mae': Scorer('mae', metrics.mean_absolute_error),
    'r2': Scorer('r2', metrics.r2_score, greater_is_better=True),
    'mean_poisson_deviance': Scorer('mean_poisson_deviance', metrics.mean_poisson_deviance),
    # Classification
    'mean_binomial_deviance': Scorer('mean_binomial_deviance', _binomial_deviance),
    'accuracy': Scorer('accuracy', metrics.accuracy_score, greater_is_better=True),
    'misclassification': Scorer('misclassification', _misclassification),
}


def get_scorer(name: str) -> Scorer:
    """Look up a registered scorer by name."""
    try:
        return SCORERS[name.lower()]
    except KeyError:
        raise ConfigurationError(f"Unknown scorer '{name}'. Available: {available_scorers()}") from None


def available_scorers() -> List[str]:
    return sorted(SCORERS)


def rmse(y_true, y_pred) -> float:
    """Root-mean-squared error, sqrt(mean((y - pred)^2))."""
    return SCORERS['rmse'](y_true, y_pred)
