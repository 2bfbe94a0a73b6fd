import json
import time
import shutil
import logging
import datetime
import contextlib
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from modules.base.base_engine import BaseEngine
from modules.data_manager.dataset import Dataset
from modules.fold_evaluator.fold_evaluator import ScoreRecord
from modules.hpo_search_engine.grid_search import SearchResult, expand_grid, sample_candidates, search
from modules.scoring.scorers import get_scorer
from modules.split_engine.split_engine import ExperimentSplit, FoldAssignment, assign_folds
from modules.training_engine.training_engine import FinalModel, TrainingEngine
from utils.cache import evaluation_key, experiment_fingerprint
from utils.cancellation import CancellationToken
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationError
from utils.file_io import NumpyEncoder, save_dataframe, save_json
from utils import constants

# --- Helper: Safe File Locking ---
@contextlib.contextmanager
def file_lock(lock_file: Path, timeout: int = 60, poll_interval: float = 0.1):
    """
    A cross-platform file locking mechanism using a directory (atomic on most OS).
    Prevents interleaved writes when two runs share a progress file.
    """
    lock_dir = lock_file.parent / (lock_file.name + ".lock")
    start_time = time.time()

    while True:
        try:
            lock_dir.mkdir(exist_ok=False)
            break
        except FileExistsError:
            if time.time() - start_time > timeout:
                logging.warning(f"Lock timeout expired for {lock_file}. Forcing release.")
                shutil.rmtree(lock_dir, ignore_errors=True)
            time.sleep(poll_interval)

    try:
        yield
    finally:
        shutil.rmtree(lock_dir, ignore_errors=True)


class GridSearchEngine(BaseEngine):
    """
    Configuration-driven cross-validated hyperparameter search.

    - Exhaustive grid or seeded randomized subset of it.
    - One fold assignment per experiment, shared by all candidates.
    - Resume: finished (candidate, fold) evaluations are appended to a JSONL
      progress file and reused when the same experiment runs again.
    - Refit and test evaluation are separate, explicitly invoked methods.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.search_config = config.get('search', {})
        self.execution = config.get('execution', {})
        seeds = config.get('_internal_seeds', {})
        master = config.get('splitting', {}).get('seed', constants.DEFAULT_SEED)
        self.cv_seed = seeds.get('cv', master + constants.SEED_OFFSET_CV)
        self.search_seed = seeds.get('search', master + constants.SEED_OFFSET_SEARCH)
        self.scorer = get_scorer(self.search_config.get('scorer', constants.DEFAULT_SCORER))
        self.progress_file: Optional[Path] = None
        self.completed: Dict[str, dict] = {}
        self.result: Optional[SearchResult] = None
        self._training_engine: Optional[TrainingEngine] = None

    def _get_engine_directory_name(self) -> str:
        return constants.GRID_SEARCH_DIR

    @property
    def persist(self) -> bool:
        return not self.config.get('outputs', {}).get('skip_dir_creation', False)

    def build_candidates(self) -> List[Dict[str, Any]]:
        candidates = expand_grid(self.search_config.get('grid', {}), name=self.search_config.get('parameter'))
        randomized = self.search_config.get('randomized', {})
        if randomized.get('enabled', False):
            n_samples = randomized.get('n_samples', 10)
            candidates = sample_candidates(candidates, n_samples, self.search_seed)
            self.logger.info(f"Randomized search: sampled {len(candidates)} candidates (seed={self.search_seed}).")
        else:
            self.logger.info(f"Exhaustive grid search over {len(candidates)} candidates.")
        return candidates

    @handle_engine_errors("Grid Search")
    def execute(self, split: ExperimentSplit, fit_predict_fn: Callable,
                cancel_token: Optional[CancellationToken] = None) -> SearchResult:
        """
        Run the search on the fitting pool of ``split``.

        Returns:
            SearchResult with candidates ranked best first.
        """
        self.logger.info("Starting Hyperparameter Search...")
        pool = split.fitting_pool
        candidates = self.build_candidates()
        return_train_score = self.search_config.get('return_train_score', False)

        fold_assignment = split.fold_assignment
        if fold_assignment is None:
            fold_assignment = self._assign_folds(pool)

        completed_records = []
        experiment = None
        if self.persist and self.search_config.get('resume', True):
            experiment = experiment_fingerprint(pool.frame, fold_assignment.fold_ids, self.scorer.name,
                                                fit_predict_fn, return_train_score)
            self.progress_file = self.output_dir / constants.PROGRESS_FILE
            self._load_progress()
            completed_records = self._reusable_records(candidates, fold_assignment.k, experiment)

        if cancel_token is None and self.execution.get('max_hours'):
            cancel_token = CancellationToken.from_hours(self.execution['max_hours'])

        on_record = None
        if self.progress_file is not None:
            on_record = lambda rec: self._save_progress(rec, experiment)

        self.result = search(
            pool, candidates, fold_assignment.k, fold_assignment.seed, fit_predict_fn, self.scorer,
            fold_assignment=fold_assignment,
            held_out_folds=split.held_out_folds,
            n_jobs=self.execution.get('n_jobs', 1),
            return_train_score=return_train_score,
            on_candidate_error=self.search_config.get('on_candidate_error', constants.ON_ERROR_MARK_FAILED),
            cancel_token=cancel_token,
            completed_records=completed_records,
            on_record=on_record,
        )

        if self.persist:
            self._finalize_results(self.result)
        return self.result

    def refit(self, fitting_pool: Dataset, candidate: Dict[str, Any], procedure: Callable) -> FinalModel:
        """Refit ``candidate`` on the whole fitting pool. Never called by ``execute``."""
        return self._final_stage().refit(fitting_pool, candidate, procedure)

    def evaluate_on_test(self, final_model: FinalModel, test_rows: Optional[Dataset]) -> float:
        """Score the refit model on the test set; a second call raises TestSetReuseError."""
        return self._final_stage().evaluate_on_test(final_model, test_rows, self.scorer)

    def _final_stage(self) -> TrainingEngine:
        if self._training_engine is None:
            self._training_engine = TrainingEngine(self.config, self.logger)
        return self._training_engine

    def _assign_folds(self, pool: Dataset) -> FoldAssignment:
        """One fold assignment over the fitting pool, shared by every candidate."""
        groups = None
        if self.search_config.get('group_folds', False):
            groups = pool.groups
            if groups is None:
                raise ConfigurationError("Grouped partitioning requested but the dataset has no group column.")
        return assign_folds(
            pool.n_rows,
            self.search_config.get('cv_folds', constants.DEFAULT_CV_FOLDS),
            self.cv_seed,
            groups=groups,
            strategy=self.search_config.get('fold_strategy', 'balanced'),
        )

    def _reusable_records(self, candidates, k, experiment) -> List[ScoreRecord]:
        reused = []
        for ci, candidate in enumerate(candidates):
            for fold in range(k):
                entry = self.completed.get(evaluation_key(candidate, fold, experiment))
                if entry is not None:
                    reused.append(ScoreRecord(
                        candidate_index=ci, candidate=dict(candidate), fold=fold,
                        score=entry['score'], train_score=entry.get('train_score'),
                        duration_sec=entry.get('duration_sec', 0.0),
                    ))
        if reused:
            self.logger.info(f"Resumed search: reusing {len(reused)} finished evaluations.")
        return reused

    def _load_progress(self):
        """Load finished evaluations keyed by their fingerprint."""
        if not self.progress_file.exists():
            return
        with open(self.progress_file, 'r') as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    self.logger.warning(f"Skipping corrupt line in {self.progress_file}")
                    continue
                if 'evaluation_key' in entry:
                    self.completed[entry['evaluation_key']] = entry

    def _save_progress(self, record: ScoreRecord, experiment: str):
        """Append one finished evaluation with locking."""
        entry = {
            'evaluation_key': evaluation_key(record.candidate, record.fold, experiment),
            'timestamp': datetime.datetime.now().isoformat(),
            'experiment': experiment,
            **record.to_dict(),
        }
        with file_lock(self.progress_file):
            with open(self.progress_file, 'a') as f:
                f.write(json.dumps(entry, cls=NumpyEncoder) + "\n")

    def _finalize_results(self, result: SearchResult) -> None:
        try:
            save_dataframe(result.fold_assignment.to_frame(), self.output_dir / constants.FOLD_ASSIGNMENT_FILE,
                           excel_copy=self.excel_copy, index=False)
            save_dataframe(result.records_frame(), self.output_dir / constants.SCORE_RECORDS_FILE,
                           excel_copy=self.excel_copy, index=False)
            save_dataframe(result.to_frame(), self.output_dir / constants.CV_RESULTS_FILE,
                           excel_copy=self.excel_copy, index=False)
        except Exception as e:
            self.logger.error(f"Failed to compile search result tables: {e}")

        successful = [r for r in result.ranked if r.succeeded]
        if not successful:
            self.logger.error("Every candidate failed; no best candidate written.")
            return

        best = successful[0]
        save_json({
            'candidate': best.candidate,
            'scorer': result.scorer.name,
            'mean_score': best.mean_score,
            'std_score': best.std_score,
            'sem_score': best.sem_score,
            'fold_scores': best.fold_scores,
            'k': result.fold_assignment.k,
            'seed': result.fold_assignment.seed,
            'failed_candidates': len(result.failed),
        }, self.output_dir / constants.BEST_CANDIDATE_FILE)
        self.logger.info(f"Best Config Found: {best.candidate} (CV {result.scorer.name}: {best.mean_score:.4f})")
