"""
Cross-validated hyperparameter search.

The fold assignment is computed once, before any evaluation, and every
candidate is scored on the same folds. (candidate, fold) evaluations are
independent; they run sequentially or in joblib batches and each returns its
own ScoreRecord, so the merge needs no locking.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed, effective_n_jobs
from scipy import stats
from sklearn.model_selection import ParameterGrid

from modules.data_manager.dataset import Dataset
from modules.fold_evaluator.fold_evaluator import ScoreRecord, evaluate_record
from modules.scoring.scorers import Scorer, get_scorer
from modules.split_engine.split_engine import FoldAssignment, assign_folds
from utils.cancellation import CancellationToken
from utils.exceptions import ConfigurationError, FittingError
from utils import constants

logger = logging.getLogger(__name__)

Candidate = Dict[str, Any]


@dataclass
class CandidateResult:
    """Aggregated performance of one candidate across folds."""

    rank: int
    candidate_index: int
    candidate: Candidate
    mean_score: float
    std_score: float
    sem_score: float
    fold_scores: List[float]
    mean_train_score: Optional[float] = None
    status: str = constants.STATUS_SUCCESS
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == constants.STATUS_SUCCESS


@dataclass
class SearchResult:
    """Ranked candidates plus the raw score records they were derived from."""

    ranked: List[CandidateResult]
    records: List[ScoreRecord]
    fold_assignment: FoldAssignment
    scorer: Scorer
    held_out_folds: List[int] = field(default_factory=list)

    @property
    def best(self) -> CandidateResult:
        for result in self.ranked:
            if result.succeeded:
                return result
        raise FittingError("Every candidate failed; there is no best candidate.")

    @property
    def failed(self) -> List[CandidateResult]:
        return [r for r in self.ranked if not r.succeeded]

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for r in self.ranked:
            row = {
                'rank': r.rank,
                'candidate_index': r.candidate_index,
                'status': r.status,
                f'mean_{self.scorer.name}': r.mean_score,
                f'std_{self.scorer.name}': r.std_score,
                f'sem_{self.scorer.name}': r.sem_score,
                'mean_train_score': r.mean_train_score,
                'error': r.error,
            }
            row.update({f'param_{k}': v for k, v in r.candidate.items()})
            row.update({f'fold_{i}': s for i, s in enumerate(r.fold_scores)})
            rows.append(row)
        return pd.DataFrame(rows)

    def records_frame(self) -> pd.DataFrame:
        rows = []
        for rec in self.records:
            row = {k: v for k, v in rec.to_dict().items() if k != 'candidate'}
            row.update({f'param_{k}': v for k, v in rec.candidate.items()})
            rows.append(row)
        return pd.DataFrame(rows)


def expand_grid(grid: Union[Dict[str, Sequence], Sequence], name: Optional[str] = None) -> List[Candidate]:
    """
    Turn a grid specification into an ordered list of candidates.

    - ``{"alpha": [0.1, 1.0], "fit_intercept": [True]}``: Cartesian product.
    - a list of dicts: each dict with list values is expanded, scalar dicts are kept as-is.
    - a list of scalars together with ``name``: one single-valued candidate per value.
    """
    if isinstance(grid, dict):
        candidates = list(ParameterGrid(grid)) if grid else []
    else:
        candidates = []
        for item in grid:
            if isinstance(item, dict):
                if any(isinstance(v, (list, tuple, np.ndarray)) for v in item.values()):
                    candidates.extend(ParameterGrid(item))
                else:
                    candidates.append(dict(item))
            elif name is not None:
                candidates.append({name: item})
            else:
                raise ConfigurationError("Scalar candidates need a hyperparameter name.")

    if not candidates:
        raise ConfigurationError("Candidate set is empty.")
    return candidates


def sample_candidates(candidates: Sequence[Candidate], n_samples: int, seed: Optional[int]) -> List[Candidate]:
    """
    Uniform random subset of ``n_samples`` distinct candidates, kept in grid order.
    Reproducible for a given seed.
    """
    if not candidates:
        raise ConfigurationError("Candidate set is empty.")
    if n_samples < 1:
        raise ConfigurationError(f"Randomized search needs n_samples >= 1, got {n_samples}.")
    if n_samples >= len(candidates):
        logger.warning(
            f"Requested {n_samples} samples from a grid of {len(candidates)} candidates; evaluating the full grid."
        )
        return list(candidates)

    rng = np.random.default_rng(seed)
    picked = np.sort(rng.choice(len(candidates), size=n_samples, replace=False))
    return [candidates[i] for i in picked]


def _as_scorer(score_fn: Union[str, Scorer, Callable]) -> Scorer:
    if isinstance(score_fn, Scorer):
        return score_fn
    if isinstance(score_fn, str):
        return get_scorer(score_fn)
    return Scorer(getattr(score_fn, '__name__', 'custom'), score_fn)


def _run_task(dataset, fold_assignment, fold, candidate_index, candidate, fit_predict_fn, scorer,
              return_train_score, on_candidate_error):
    try:
        return evaluate_record(
            dataset, fold_assignment, fold, candidate, fit_predict_fn, scorer,
            candidate_index=candidate_index, return_train_score=return_train_score,
        )
    except FittingError as e:
        if on_candidate_error == constants.ON_ERROR_RAISE:
            raise
        return e


def _aggregate(candidates, records, failures, scorer, held_out_folds) -> List[CandidateResult]:
    by_candidate: Dict[int, List[ScoreRecord]] = {}
    for rec in records:
        by_candidate.setdefault(rec.candidate_index, []).append(rec)

    succeeded, failed = [], []
    for ci, candidate in enumerate(candidates):
        if ci in failures:
            failed.append(CandidateResult(
                rank=0, candidate_index=ci, candidate=candidate,
                mean_score=np.nan, std_score=np.nan, sem_score=np.nan, fold_scores=[],
                status=constants.STATUS_FAILED, error=failures[ci],
            ))
            continue

        recs = sorted(by_candidate.get(ci, []), key=lambda r: r.fold)
        if [r.fold for r in recs] != list(held_out_folds):
            raise FittingError(f"Candidate {ci} is missing fold scores: got folds {[r.fold for r in recs]}.")

        scores = np.array([r.score for r in recs], dtype=float)
        train_scores = [r.train_score for r in recs if r.train_score is not None]
        succeeded.append(CandidateResult(
            rank=0, candidate_index=ci, candidate=candidate,
            mean_score=float(np.mean(scores)),
            std_score=float(np.std(scores, ddof=1)) if len(scores) > 1 else np.nan,
            sem_score=float(stats.sem(scores)) if len(scores) > 1 else np.nan,
            fold_scores=scores.tolist(),
            mean_train_score=float(np.mean(train_scores)) if train_scores else None,
        ))

    # stable sort keeps first-seen order among ties
    succeeded.sort(key=lambda r: scorer.sort_key(r.mean_score))
    ranked = succeeded + failed
    for rank, result in enumerate(ranked, start=1):
        result.rank = rank
    return ranked


def search(dataset: Dataset, candidates: Sequence[Candidate], k: int, seed: Optional[int],
           fit_predict_fn: Callable, score_fn: Union[str, Scorer, Callable] = constants.DEFAULT_SCORER, *,
           use_groups: bool = False,
           fold_strategy: str = 'balanced',
           fold_assignment: Optional[FoldAssignment] = None,
           held_out_folds: Optional[Sequence[int]] = None,
           n_jobs: int = 1,
           batch_size: Optional[int] = None,
           return_train_score: bool = False,
           on_candidate_error: str = constants.ON_ERROR_MARK_FAILED,
           cancel_token: Optional[CancellationToken] = None,
           completed_records: Optional[Iterable[ScoreRecord]] = None,
           on_record: Optional[Callable[[ScoreRecord], None]] = None) -> SearchResult:
    """
    Score every candidate on every fold and rank candidates by mean score.

    Args:
        dataset: The fitting pool. Never modified.
        candidates: Hyperparameter candidates (dicts), in tie-break order.
        k, seed: Fold count and seed for the one-time fold assignment.
        fit_predict_fn: ``(train_rows, query_rows, hyperparameter) -> predictions``.
        score_fn: Scorer, registered scorer name, or plain ``(y_true, y_pred) -> float``.
        use_groups: Partition on the dataset's group key instead of rows.
        fold_strategy: 'balanced' (equal-sized folds) or 'independent' (uniform fold per unit).
        fold_assignment: Precomputed assignment (three-way scheme); skips partitioning.
        held_out_folds: Folds to score (default: all).
        n_jobs: joblib workers; 1 runs sequentially.
        on_candidate_error: 'mark_failed' records a failed candidate and continues,
            'raise' aborts the sweep on the first FittingError.
        cancel_token: Checked between batches; raises SearchCancelledError.
        completed_records: Records from an earlier interrupted run to reuse.
        on_record: Called in the calling process for every new record.

    Raises:
        ShapeMismatchError: always aborts the sweep; no partial result is returned.
    """
    if not candidates:
        raise ConfigurationError("Candidate set is empty.")
    if on_candidate_error not in (constants.ON_ERROR_MARK_FAILED, constants.ON_ERROR_RAISE):
        raise ConfigurationError(f"Unknown on_candidate_error policy '{on_candidate_error}'.")
    candidates = [dict(c) for c in candidates]
    scorer = _as_scorer(score_fn)

    if fold_assignment is None:
        groups = dataset.groups if use_groups else None
        if use_groups and groups is None:
            raise ConfigurationError("Grouped partitioning requested but the dataset has no group column.")
        fold_assignment = assign_folds(dataset.n_rows, k, seed, groups=groups, strategy=fold_strategy)
    folds = sorted(held_out_folds) if held_out_folds is not None else list(range(fold_assignment.k))

    records: List[ScoreRecord] = []
    done = set()
    for rec in completed_records or []:
        if rec.candidate_index < len(candidates) and rec.fold in folds:
            records.append(rec)
            done.add((rec.candidate_index, rec.fold))

    tasks = [(ci, fold) for ci in range(len(candidates)) for fold in folds if (ci, fold) not in done]
    total = len(candidates) * len(folds)
    logger.info(
        f"Search: {len(candidates)} candidates x {len(folds)} folds = {total} evaluations "
        f"({len(done)} reused, scorer={scorer.name}, n_jobs={n_jobs})."
    )

    failures: Dict[int, str] = {}
    batch_size = batch_size or (1 if n_jobs == 1 else effective_n_jobs(n_jobs) * 2)
    parallel = Parallel(n_jobs=n_jobs) if n_jobs != 1 else None

    position = 0
    while position < len(tasks):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(records)

        batch = [t for t in tasks[position:position + batch_size] if t[0] not in failures]
        position += batch_size
        if not batch:
            continue

        calls = [
            (dataset, fold_assignment, fold, ci, candidates[ci], fit_predict_fn, scorer,
             return_train_score, on_candidate_error)
            for ci, fold in batch
        ]
        if parallel is None:
            outcomes = [_run_task(*args) for args in calls]
        else:
            outcomes = parallel(delayed(_run_task)(*args) for args in calls)

        for (ci, fold), outcome in zip(batch, outcomes):
            if isinstance(outcome, FittingError):
                if ci not in failures:
                    failures[ci] = str(outcome.__cause__ or outcome)
                    logger.error(f"Candidate {ci} {candidates[ci]} failed on fold {fold}: {failures[ci]}")
                continue
            records.append(outcome)
            if on_record is not None:
                on_record(outcome)

        finished = len(records) + len(failures)
        if finished and finished % constants.PROGRESS_LOG_EVERY == 0:
            logger.info(f"Processed {finished}/{total} evaluations...")

    ranked = _aggregate(candidates, [r for r in records if r.candidate_index not in failures],
                        failures, scorer, folds)
    result = SearchResult(ranked=ranked, records=records, fold_assignment=fold_assignment,
                          scorer=scorer, held_out_folds=folds)
    if ranked and ranked[0].succeeded:
        logger.info(f"Best candidate: {ranked[0].candidate} (mean {scorer.name} = {ranked[0].mean_score:.6g})")
    return result
