"""
SplitEngine for the cross-validated search pipeline.

This module assigns every row of the dataset either to one of K folds or to
one of the train/validation/test splits. Assignments are deterministic for a
given seed and can be made at the level of a group key, so that rows sharing
a key (duplicates, repeated measurements, the same trip or customer) always
end up on the same side of a split.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, train_test_split

from modules.base.base_engine import BaseEngine
from modules.data_manager.dataset import Dataset
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationError, DataValidationError
from utils.file_io import save_dataframe
from utils import constants

FOLD_STRATEGIES = ('balanced', 'independent')


@dataclass(frozen=True, eq=False)
class FoldAssignment:
    """Fold id in ``[0, k)`` for every row, fixed for a whole experiment."""

    fold_ids: np.ndarray
    k: int
    seed: Optional[int]
    grouped: bool = False

    @property
    def n_rows(self) -> int:
        return len(self.fold_ids)

    def rows_in(self, fold: int) -> np.ndarray:
        return np.flatnonzero(self.fold_ids == fold)

    def complement_of(self, fold: int) -> np.ndarray:
        return np.flatnonzero(self.fold_ids != fold)

    def fold_sizes(self) -> np.ndarray:
        return np.bincount(self.fold_ids, minlength=self.k)

    def as_mapping(self) -> Dict[int, int]:
        return {i: int(f) for i, f in enumerate(self.fold_ids)}

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({'row_index': np.arange(self.n_rows), 'fold': self.fold_ids})


@dataclass(frozen=True, eq=False)
class SplitAssignment:
    """Split label (train / validation / test) for every row."""

    labels: np.ndarray
    seed: Optional[int]
    ratios: Dict[str, float] = field(default_factory=dict)
    grouped: bool = False

    @property
    def n_rows(self) -> int:
        return len(self.labels)

    def rows_for(self, label: str) -> np.ndarray:
        return np.flatnonzero(self.labels == label)

    def sizes(self) -> Dict[str, int]:
        return {label: int((self.labels == label).sum()) for label in self.ratios}

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({'row_index': np.arange(self.n_rows), 'split': self.labels})


def _unit_codes(n_rows: int, groups: Optional[Sequence]) -> Tuple[np.ndarray, int]:
    """
    Map rows to partitioning units. Without groups every row is its own unit;
    with groups every distinct key is one unit.
    """
    if groups is None:
        return np.arange(n_rows), n_rows

    groups = np.asarray(groups, dtype=object)
    if len(groups) != n_rows:
        raise DataValidationError(f"Group keys ({len(groups)}) do not match the number of rows ({n_rows}).")
    if pd.isna(groups).any():
        raise DataValidationError("Group keys contain missing values.")

    codes, uniques = pd.factorize(pd.Series(groups), sort=True)
    return codes, len(uniques)


def assign_folds(n_rows: int, k: int, seed: Optional[int], groups: Optional[Sequence] = None,
                 strategy: str = 'balanced') -> FoldAssignment:
    """
    Assign every row to one of ``k`` folds.

    ``balanced`` shuffles the units with ``KFold(shuffle=True)`` and gives each
    fold a contiguous chunk of the shuffled order, so fold sizes differ by at
    most one unit. ``independent`` is the simple random partitioning: every unit
    draws a uniform fold id on its own, so fold sizes vary.
    With ``groups`` the distinct keys are partitioned and each row inherits the
    fold of its key.

    Raises:
        ConfigurationError: if k < 2, k exceeds the number of units, or a fold ends up empty.
    """
    if n_rows < 1:
        raise ConfigurationError("Cannot assign folds for an empty dataset.")
    if k < 2:
        raise ConfigurationError(f"Number of folds must be >= 2, got {k}.")
    if strategy not in FOLD_STRATEGIES:
        raise ConfigurationError(f"Unknown fold strategy '{strategy}'. Available: {list(FOLD_STRATEGIES)}")

    codes, n_units = _unit_codes(n_rows, groups)
    unit_name = "distinct groups" if groups is not None else "rows"
    if k > n_units:
        raise ConfigurationError(f"Number of folds ({k}) exceeds the number of {unit_name} ({n_units}).")

    if strategy == 'balanced':
        unit_folds = np.empty(n_units, dtype=int)
        splitter = KFold(n_splits=k, shuffle=True, random_state=seed)
        for fold, (_, held_out) in enumerate(splitter.split(np.zeros((n_units, 1)))):
            unit_folds[held_out] = fold
    else:
        rng = np.random.default_rng(seed)
        unit_folds = rng.integers(0, k, size=n_units)
        empty = np.flatnonzero(np.bincount(unit_folds, minlength=k) == 0)
        if len(empty):
            raise ConfigurationError(
                f"Independent assignment left folds {empty.tolist()} empty; use fewer folds or 'balanced'."
            )

    return FoldAssignment(fold_ids=unit_folds[codes], k=k, seed=seed, grouped=groups is not None)


def validate_ratios(ratios: Mapping[str, float]) -> Dict[str, float]:
    ratios = {str(label): float(value) for label, value in ratios.items()}
    unknown = set(ratios) - set(constants.SPLIT_LABELS)
    if unknown:
        raise ConfigurationError(f"Unknown split labels {sorted(unknown)}. Allowed: {list(constants.SPLIT_LABELS)}")
    if constants.TRAIN not in ratios:
        raise ConfigurationError("Split ratios must include a 'train' share.")
    if len(ratios) < 2:
        raise ConfigurationError("Split ratios need at least one held-out split besides 'train'.")
    for label, value in ratios.items():
        if not (0.0 < value < 1.0):
            raise ConfigurationError(f"Ratio for '{label}' must be between 0 and 1 (exclusive), got {value}")
    if not np.isclose(sum(ratios.values()), 1.0):
        raise ConfigurationError(f"Split ratios must sum to 1.0, got {sum(ratios.values()):.4f}")
    return ratios


def split_by_ratio(n_rows: int, ratios: Mapping[str, float], seed: Optional[int],
                   groups: Optional[Sequence] = None) -> SplitAssignment:
    """
    Two-way or three-way split by ratio.

    The test share is peeled off first, then validation relative to what is
    left, the remainder is train. Grouping works as in ``assign_folds``.
    """
    ratios = validate_ratios(ratios)
    codes, n_units = _unit_codes(n_rows, groups)

    unit_labels = np.full(n_units, constants.TRAIN, dtype=object)
    remaining = np.arange(n_units)
    peeled = 0.0
    for label in (constants.TEST, constants.VALIDATION):
        if label not in ratios:
            continue
        relative = ratios[label] / (1.0 - peeled)
        try:
            remaining, held_out = train_test_split(remaining, test_size=relative, random_state=seed, shuffle=True)
        except ValueError as e:
            raise ConfigurationError(f"Cannot carve a '{label}' split of {ratios[label]} from {n_units} units: {e}") from e
        unit_labels[held_out] = label
        peeled += ratios[label]

    labels = unit_labels[codes]
    assignment = SplitAssignment(labels=labels, seed=seed, ratios=ratios, grouped=groups is not None)
    empty = [label for label, size in assignment.sizes().items() if size == 0]
    if empty:
        raise ConfigurationError(f"Split ratios leave {empty} empty for {n_units} units.")
    return assignment


@dataclass(eq=False)
class ExperimentSplit:
    """
    What the search engine receives: the pool it may fit and score on, the
    untouched test set (if any) and, for the three-way scheme, the fixed
    train/validation fold layout of the pool.
    """

    scheme: str
    fitting_pool: Dataset
    test: Optional[Dataset] = None
    fold_assignment: Optional[FoldAssignment] = None
    held_out_folds: Optional[Sequence[int]] = None
    split_assignment: Optional[SplitAssignment] = None


class SplitEngine(BaseEngine):
    """
    Applies the configured split scheme to the dataset.

    - ``kfold``: the whole dataset is the fitting pool; no test set.
    - ``holdout``: train/test by ratio; K-fold CV runs inside train.
    - ``three_way``: train/validation/test by ratio; validation is the single
      held-out fold and train+validation form the fitting pool for the refit.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.split_config = config.get('splitting', {})
        self.scheme = self.split_config.get('scheme', constants.SCHEME_KFOLD)
        self.seed = self.config.get('_internal_seeds', {}).get(
            'split', self.split_config.get('seed', constants.DEFAULT_SEED)
        )

    def _get_engine_directory_name(self) -> str:
        return constants.SPLITS_DIR

    @handle_engine_errors("Data Splitting")
    def execute(self, dataset: Dataset) -> ExperimentSplit:
        self.logger.info(f"Starting Split Engine execution (scheme={self.scheme}, seed={self.seed})...")

        if self.scheme == constants.SCHEME_KFOLD:
            self.logger.info(f"Scheme 'kfold': all {dataset.n_rows} rows form the fitting pool, no test set.")
            return ExperimentSplit(scheme=self.scheme, fitting_pool=dataset)

        if self.scheme == constants.SCHEME_HOLDOUT:
            ratios = {
                constants.TRAIN: 1.0 - self.split_config.get('test_size', 0.2),
                constants.TEST: self.split_config.get('test_size', 0.2),
            }
        elif self.scheme == constants.SCHEME_THREE_WAY:
            test_size = self.split_config.get('test_size', 0.2)
            val_size = self.split_config.get('val_size', 0.2)
            ratios = {
                constants.TRAIN: 1.0 - test_size - val_size,
                constants.VALIDATION: val_size,
                constants.TEST: test_size,
            }
        else:
            raise ConfigurationError(f"Unknown split scheme '{self.scheme}'. Available: {list(constants.SPLIT_SCHEMES)}")

        assignment = split_by_ratio(dataset.n_rows, ratios, self.seed, groups=dataset.groups)
        self._save_assignment(assignment)

        test = dataset.subset(assignment.rows_for(constants.TEST))
        if self.scheme == constants.SCHEME_HOLDOUT:
            pool = dataset.subset(assignment.rows_for(constants.TRAIN))
            split = ExperimentSplit(scheme=self.scheme, fitting_pool=pool, test=test, split_assignment=assignment)
        else:
            pool_rows = np.sort(np.concatenate([
                assignment.rows_for(constants.TRAIN),
                assignment.rows_for(constants.VALIDATION),
            ]))
            pool = dataset.subset(pool_rows)
            # validation rows are fold 0, train rows fold 1; only fold 0 is ever scored
            fold_ids = np.where(assignment.labels[pool_rows] == constants.VALIDATION, 0, 1)
            folds = FoldAssignment(fold_ids=fold_ids, k=2, seed=self.seed, grouped=assignment.grouped)
            split = ExperimentSplit(
                scheme=self.scheme, fitting_pool=pool, test=test,
                fold_assignment=folds, held_out_folds=[0], split_assignment=assignment,
            )

        self.logger.info(f"Splits: {assignment.sizes()} (grouped={assignment.grouped})")
        return split

    def _save_assignment(self, assignment: SplitAssignment) -> None:
        if self.config.get('outputs', {}).get('skip_dir_creation', False):
            return
        save_dataframe(assignment.to_frame(), self.output_dir / constants.SPLIT_ASSIGNMENT_FILE,
                       excel_copy=self.excel_copy, index=False)

        total = assignment.n_rows
        report = pd.DataFrame([
            {'split': label, 'rows': size, 'share': round(size / total, 4), 'requested': assignment.ratios[label]}
            for label, size in assignment.sizes().items()
        ])
        save_dataframe(report, self.output_dir / constants.SPLIT_BALANCE_FILE, excel_copy=self.excel_copy, index=False)
