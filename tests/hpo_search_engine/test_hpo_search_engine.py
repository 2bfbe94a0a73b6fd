import json
import pytest
import numpy as np
import pandas as pd
import logging
from unittest.mock import MagicMock

from modules.data_manager.dataset import Dataset
from modules.hpo_search_engine import GridSearchEngine
from modules.model_factory import EstimatorProcedure
from modules.split_engine import SplitEngine
from utils.exceptions import TestSetReuseError
from utils import constants

# --- Fixtures ---

@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)

@pytest.fixture
def dataset():
    rng = np.random.default_rng(5)
    x = rng.uniform(0, 10, size=80)
    frame = pd.DataFrame({'x': x, 'y': np.sin(x) + rng.normal(scale=0.05, size=80)})
    return Dataset(frame, response='y', features=['x'])

@pytest.fixture
def search_config(tmp_path):
    return {
        'splitting': {'scheme': 'holdout', 'test_size': 0.25, 'seed': 42},
        '_internal_seeds': {'split': 42, 'cv': 1042, 'search': 2042},
        'search': {
            'grid': {'n_neighbors': [1, 3, 5, 40]},
            'cv_folds': 4,
            'scorer': 'rmse',
            'return_train_score': True,
        },
        'execution': {'n_jobs': 1},
        'outputs': {'base_results_dir': str(tmp_path)},
    }

@pytest.fixture
def procedure():
    return EstimatorProcedure('KNeighborsRegressor')


class CountingProcedure(EstimatorProcedure):
    def __init__(self):
        super().__init__('KNeighborsRegressor')
        self.fits = 0

    def fit(self, train_rows, hyperparameter):
        self.fits += 1
        return super().fit(train_rows, hyperparameter)

# --- Tests ---

class TestGridSearchEngine:

    def test_execute_writes_artifacts(self, search_config, dataset, mock_logger, procedure, tmp_path):
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        engine = GridSearchEngine(search_config, mock_logger)
        result = engine.execute(split, procedure)

        out = tmp_path / constants.GRID_SEARCH_DIR
        for name in (constants.FOLD_ASSIGNMENT_FILE, constants.SCORE_RECORDS_FILE,
                     constants.CV_RESULTS_FILE, constants.BEST_CANDIDATE_FILE, constants.PROGRESS_FILE):
            assert (out / name).exists(), name

        best = json.loads((out / constants.BEST_CANDIDATE_FILE).read_text())
        assert best['candidate'] == result.best.candidate
        assert best['k'] == 4
        assert best['seed'] == 1042
        assert result.best.candidate['n_neighbors'] != 40

    def test_search_runs_on_fitting_pool_only(self, search_config, dataset, mock_logger, procedure):
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        result = GridSearchEngine(search_config, mock_logger).execute(split, procedure)
        assert result.fold_assignment.n_rows == split.fitting_pool.n_rows == 60

    def test_resume_skips_finished_evaluations(self, search_config, dataset, mock_logger):
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        first = CountingProcedure()
        baseline = GridSearchEngine(search_config, mock_logger).execute(split, first)
        assert first.fits == 16

        second = CountingProcedure()
        resumed = GridSearchEngine(search_config, mock_logger).execute(split, second)
        assert second.fits == 0
        assert [r.candidate for r in resumed.ranked] == [r.candidate for r in baseline.ranked]

    def test_resume_ignores_other_fold_layout(self, search_config, dataset, mock_logger):
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        GridSearchEngine(search_config, mock_logger).execute(split, CountingProcedure())

        search_config['search']['fold_strategy'] = 'independent'
        again = CountingProcedure()
        GridSearchEngine(search_config, mock_logger).execute(split, again)
        assert again.fits == 16

    def test_resume_refits_when_scorer_changes(self, search_config, dataset, mock_logger):
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        rmse_run = GridSearchEngine(search_config, mock_logger).execute(split, CountingProcedure())

        search_config['search']['scorer'] = 'mae'
        again = CountingProcedure()
        mae_run = GridSearchEngine(search_config, mock_logger).execute(split, again)
        assert again.fits == 16
        assert mae_run.scorer.name == 'mae'
        assert [r.mean_score for r in mae_run.ranked] != [r.mean_score for r in rmse_run.ranked]

    def test_resume_refits_when_data_changes(self, search_config, dataset, mock_logger):
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        GridSearchEngine(search_config, mock_logger).execute(split, CountingProcedure())

        shifted = Dataset(dataset.frame.assign(y=dataset.frame['y'] + 1.0), response='y', features=['x'])
        shifted_split = SplitEngine(search_config, mock_logger).execute(shifted)
        again = CountingProcedure()
        GridSearchEngine(search_config, mock_logger).execute(shifted_split, again)
        assert again.fits == 16

    def test_resume_refits_when_model_changes(self, search_config, dataset, mock_logger):
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        GridSearchEngine(search_config, mock_logger).execute(split, CountingProcedure())

        scaled = CountingProcedure()
        scaled.scale_features = True
        GridSearchEngine(search_config, mock_logger).execute(split, scaled)
        assert scaled.fits == 16

    def test_resume_disabled(self, search_config, dataset, mock_logger):
        search_config['search']['resume'] = False
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        GridSearchEngine(search_config, mock_logger).execute(split, CountingProcedure())
        again = CountingProcedure()
        GridSearchEngine(search_config, mock_logger).execute(split, again)
        assert again.fits == 16

    def test_randomized_candidates(self, search_config, mock_logger):
        search_config['search']['randomized'] = {'enabled': True, 'n_samples': 2}
        a = GridSearchEngine(search_config, mock_logger).build_candidates()
        b = GridSearchEngine(search_config, mock_logger).build_candidates()
        assert len(a) == 2
        assert a == b

    def test_three_way_scores_validation_fold_only(self, search_config, dataset, mock_logger, procedure):
        search_config['splitting'] = {'scheme': 'three_way', 'test_size': 0.25, 'val_size': 0.25, 'seed': 1}
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        result = GridSearchEngine(search_config, mock_logger).execute(split, procedure)
        assert result.held_out_folds == [0]
        assert len(result.records) == 4
        assert all(len(r.fold_scores) == 1 for r in result.ranked)

    def test_refit_and_single_test_evaluation(self, search_config, dataset, mock_logger, procedure, tmp_path):
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        engine = GridSearchEngine(search_config, mock_logger)
        result = engine.execute(split, procedure)

        final = engine.refit(split.fitting_pool, result.best.candidate, procedure)
        score = engine.evaluate_on_test(final, split.test)
        assert score >= 0
        assert (tmp_path / constants.FINAL_MODEL_DIR / constants.TEST_EVALUATION_FILE).exists()

        with pytest.raises(TestSetReuseError):
            engine.evaluate_on_test(final, split.test)

    def test_skip_dir_creation(self, search_config, dataset, mock_logger, procedure, tmp_path):
        search_config['outputs']['skip_dir_creation'] = True
        split = SplitEngine(search_config, mock_logger).execute(dataset)
        GridSearchEngine(search_config, mock_logger).execute(split, procedure)
        assert not (tmp_path / constants.GRID_SEARCH_DIR).exists()
