"""
Evaluation of one hyperparameter candidate on one held-out fold.
"""
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

import numpy as np

from modules.data_manager.dataset import Dataset
from modules.split_engine.split_engine import FoldAssignment
from utils.exceptions import ConfigurationError, CVSearchException, DataValidationError, FittingError

FitPredictFn = Callable[[Dataset, Dataset, Dict[str, Any]], np.ndarray]
ScoreFn = Callable[[np.ndarray, np.ndarray], float]


@dataclass(frozen=True)
class ScoreRecord:
    """Performance of one candidate on one fold. Created once, never mutated."""

    candidate_index: int
    candidate: Dict[str, Any]
    fold: int
    score: float
    train_score: Optional[float] = None
    duration_sec: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _fold_subsets(dataset: Dataset, fold_assignment: FoldAssignment, held_out_fold: int):
    if fold_assignment.n_rows != dataset.n_rows:
        raise DataValidationError(
            f"Fold assignment covers {fold_assignment.n_rows} rows but the dataset has {dataset.n_rows}."
        )
    if not 0 <= held_out_fold < fold_assignment.k:
        raise ConfigurationError(f"Held-out fold {held_out_fold} outside [0, {fold_assignment.k}).")

    scoring_rows = fold_assignment.rows_in(held_out_fold)
    fitting_rows = fold_assignment.complement_of(held_out_fold)
    if len(scoring_rows) == 0 or len(fitting_rows) == 0:
        raise ConfigurationError(f"Fold {held_out_fold} leaves an empty fitting or scoring subset.")
    return dataset.subset(fitting_rows), dataset.subset(scoring_rows)


def _predict(fit_predict_fn: FitPredictFn, fitting: Dataset, queries, hyperparameter):
    """
    Predictions for each query subset. Procedures exposing fit/predict are
    fitted once; plain callables are called once per query subset.
    """
    if hasattr(fit_predict_fn, 'fit') and hasattr(fit_predict_fn, 'predict'):
        model = fit_predict_fn.fit(fitting, hyperparameter)
        return [fit_predict_fn.predict(model, q) for q in queries]
    return [fit_predict_fn(fitting, q, hyperparameter) for q in queries]


def evaluate(dataset: Dataset, fold_assignment: FoldAssignment, held_out_fold: int,
             hyperparameter: Dict[str, Any], fit_predict_fn: FitPredictFn, score_fn: ScoreFn) -> float:
    """
    Fit on every fold except ``held_out_fold`` and score on ``held_out_fold``.

    Errors raised by ``fit_predict_fn`` propagate as FittingError chained to the
    original; a length mismatch in ``score_fn`` propagates as ShapeMismatchError.
    """
    return evaluate_record(
        dataset, fold_assignment, held_out_fold, hyperparameter, fit_predict_fn, score_fn
    ).score


def evaluate_record(dataset: Dataset, fold_assignment: FoldAssignment, held_out_fold: int,
                    hyperparameter: Dict[str, Any], fit_predict_fn: FitPredictFn, score_fn: ScoreFn,
                    candidate_index: int = 0, return_train_score: bool = False) -> ScoreRecord:
    fitting, scoring = _fold_subsets(dataset, fold_assignment, held_out_fold)
    queries = [scoring, fitting] if return_train_score else [scoring]

    start = time.perf_counter()
    try:
        predictions = _predict(fit_predict_fn, fitting, queries, hyperparameter)
    except CVSearchException:
        raise
    except Exception as e:
        raise FittingError(
            f"Model procedure failed for candidate {hyperparameter} on fold {held_out_fold}: {e}",
            candidate=hyperparameter, fold=held_out_fold,
        ) from e

    for values in map(np.asarray, predictions):
        if np.issubdtype(values.dtype, np.number) and not np.isfinite(values).all():
            raise FittingError(
                f"Model procedure returned non-finite predictions for candidate {hyperparameter} "
                f"on fold {held_out_fold}",
                candidate=hyperparameter, fold=held_out_fold,
            )

    score = score_fn(scoring.y, predictions[0])
    train_score = score_fn(fitting.y, predictions[1]) if return_train_score else None

    return ScoreRecord(
        candidate_index=candidate_index,
        candidate=dict(hyperparameter),
        fold=held_out_fold,
        score=float(score),
        train_score=None if train_score is None else float(train_score),
        duration_sec=time.perf_counter() - start,
    )
