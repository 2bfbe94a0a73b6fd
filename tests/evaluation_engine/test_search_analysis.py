import json
import math
import pytest
import numpy as np
import pandas as pd
import logging
from unittest.mock import MagicMock

from modules.data_manager.dataset import Dataset
from modules.evaluation_engine import (
    SearchAnalysisEngine,
    compare_candidates,
    fold_stability,
    one_standard_error_choice,
    overfitting_gaps,
)
from modules.hpo_search_engine import expand_grid, search
from modules.model_factory import EstimatorProcedure
from utils.exceptions import ConfigurationError
from utils import constants

# --- Fixtures ---

@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)

@pytest.fixture(scope="module")
def knn_result():
    rng = np.random.default_rng(11)
    x = rng.uniform(0, 10, size=120)
    frame = pd.DataFrame({'x': x, 'y': np.sin(x) + rng.normal(scale=0.3, size=120)})
    data = Dataset(frame, response='y', features=['x'])
    return search(data, expand_grid([1, 5, 10, 20, 60], name='n_neighbors'), 5, 0,
                  EstimatorProcedure('KNeighborsRegressor'), return_train_score=True)

# --- Tests ---

def test_fold_stability_table(knn_result):
    table = fold_stability(knn_result)
    assert len(table) == 5
    assert (table['range'] >= 0).all()
    assert (table['folds'] == 5).all()
    assert list(table['rank']) == [1, 2, 3, 4, 5]

def test_overfitting_gaps(knn_result):
    gaps = overfitting_gaps(knn_result).set_index('candidate')
    assert gaps.loc[str({'n_neighbors': 1}), 'train'] == pytest.approx(0.0)
    assert gaps.loc[str({'n_neighbors': 1}), 'gap'] > 0

def test_one_standard_error_prefers_simpler(knn_result):
    best = knn_result.best
    choice = one_standard_error_choice(knn_result, 'n_neighbors', simpler='larger')
    assert choice.candidate['n_neighbors'] >= best.candidate['n_neighbors']
    assert choice.mean_score <= best.mean_score + best.sem_score

def test_one_standard_error_validation(knn_result):
    with pytest.raises(ConfigurationError):
        one_standard_error_choice(knn_result, 'alpha')
    with pytest.raises(ConfigurationError):
        one_standard_error_choice(knn_result, 'n_neighbors', simpler='middle')

def test_compare_candidates():
    a = [1.0, 1.1, 0.9, 1.0, 1.05]
    b = [2.0, 2.2, 1.9, 2.1, 2.0]
    out = compare_candidates(a, b, alpha=0.05)
    assert out['mean_difference'] > 0
    assert out['significant']

    same = compare_candidates(a, a)
    assert same['mean_difference'] == 0.0
    assert not same['significant']

    single = compare_candidates([1.0], [2.0])
    assert math.isnan(single['p_value_ttest'])

    with pytest.raises(ValueError):
        compare_candidates([1.0, 2.0], [1.0])

def test_engine_writes_summary(knn_result, mock_logger, tmp_path):
    config = {
        'analysis': {'alpha': 0.05, 'one_se_parameter': 'n_neighbors', 'one_se_simpler': 'larger'},
        'outputs': {'base_results_dir': str(tmp_path)},
    }
    summary = SearchAnalysisEngine(config, mock_logger).execute(knn_result)

    out = tmp_path / constants.SEARCH_ANALYSIS_DIR
    assert (out / "fold_stability.parquet").exists()
    assert (out / "train_cv_gaps.parquet").exists()
    saved = json.loads((out / "analysis_summary.json").read_text())
    assert saved['best'] == knn_result.best.candidate
    assert 'best_vs_runner_up' in saved
    assert 'n_neighbors' in summary['one_standard_error_choice']
