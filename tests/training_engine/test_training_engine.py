import pytest
import pandas as pd
import numpy as np
import logging
import json
import joblib
from unittest.mock import MagicMock
from modules.data_manager.dataset import Dataset
from modules.model_factory import EstimatorProcedure
from modules.training_engine import TrainingEngine, FinalModel, refit
from utils.exceptions import ConfigurationError, FittingError, TestSetReuseError
from utils import constants

# --- Fixtures ---

@pytest.fixture
def mock_logger():
    """Provides a mock logger."""
    return MagicMock(spec=logging.Logger)

@pytest.fixture
def base_config(tmp_path):
    """Provides a base configuration pointing to a temp dir."""
    return {
        "search": {"scorer": "mae"},
        "outputs": {
            "base_results_dir": str(tmp_path),
            "save_models": True
        }
    }

@pytest.fixture
def pool_and_test():
    x = np.arange(50, dtype=float)
    frame = pd.DataFrame({'x': x, 'y': 2 * x})
    data = Dataset(frame, response='y', features=['x'])
    return data.subset(np.arange(40)), data.subset(np.arange(40, 50))


def averaging(train_rows, query_rows, hyperparameter):
    return np.full(query_rows.n_rows, train_rows.y.mean())

# --- Test Cases ---

class TestRefit:

    def test_refit_uses_whole_pool(self, pool_and_test):
        pool, _ = pool_and_test
        final = refit(pool, {'fit_intercept': True}, EstimatorProcedure('LinearRegression'))
        assert isinstance(final, FinalModel)
        assert final.model is not None
        assert final.model.n_features_in_ == 1
        assert final.candidate == {'fit_intercept': True}

    def test_refit_with_plain_callable(self, pool_and_test):
        pool, test = pool_and_test
        final = refit(pool, {}, averaging)
        assert final.model is None
        np.testing.assert_allclose(final.predict(test), pool.y.mean())

    def test_refit_failure(self, pool_and_test):
        pool, _ = pool_and_test
        with pytest.raises(FittingError):
            refit(pool, {'alpha': -1.0}, EstimatorProcedure('Ridge'))


class TestTrainingEngine:

    def test_refit_saves_model_and_metadata(self, base_config, mock_logger, pool_and_test, tmp_path):
        pool, test = pool_and_test
        engine = TrainingEngine(base_config, mock_logger)
        final = engine.refit(pool, {}, EstimatorProcedure('LinearRegression'))

        out = tmp_path / constants.FINAL_MODEL_DIR
        model = joblib.load(out / constants.FINAL_MODEL_FILE)
        np.testing.assert_allclose(model.predict(test.X), final.predict(test))
        meta = json.loads((out / "training_metadata.json").read_text())
        assert meta['fitting_rows'] == 40

    def test_save_models_disabled(self, base_config, mock_logger, pool_and_test, tmp_path):
        base_config['outputs']['save_models'] = False
        pool, _ = pool_and_test
        TrainingEngine(base_config, mock_logger).refit(pool, {}, EstimatorProcedure('LinearRegression'))
        assert not (tmp_path / constants.FINAL_MODEL_DIR / constants.FINAL_MODEL_FILE).exists()

    def test_test_set_scored_once(self, base_config, mock_logger, pool_and_test, tmp_path):
        pool, test = pool_and_test
        engine = TrainingEngine(base_config, mock_logger)
        final = engine.refit(pool, {}, EstimatorProcedure('LinearRegression'))

        score = engine.evaluate_on_test(final, test)
        assert score == pytest.approx(0.0, abs=1e-8)
        report = json.loads((tmp_path / constants.FINAL_MODEL_DIR / constants.TEST_EVALUATION_FILE).read_text())
        assert report['scorer'] == 'mae'
        assert report['test_rows'] == 10

        with pytest.raises(TestSetReuseError):
            engine.evaluate_on_test(final, test)

    def test_missing_test_set(self, base_config, mock_logger, pool_and_test):
        pool, _ = pool_and_test
        engine = TrainingEngine(base_config, mock_logger)
        final = engine.refit(pool, {}, averaging)
        with pytest.raises(ConfigurationError):
            engine.evaluate_on_test(final, None)

    def test_explicit_scorer(self, base_config, mock_logger, pool_and_test):
        pool, test = pool_and_test
        engine = TrainingEngine(base_config, mock_logger)
        final = engine.refit(pool, {}, averaging)
        score = engine.evaluate_on_test(final, test, 'rmse')
        expected = np.sqrt(np.mean((test.y - pool.y.mean()) ** 2))
        assert score == pytest.approx(expected)
