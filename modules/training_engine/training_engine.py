import joblib
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import numpy as np

from modules.base.base_engine import BaseEngine
from modules.data_manager.dataset import Dataset
from modules.scoring.scorers import Scorer, get_scorer
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationError, CVSearchException, FittingError, TestSetReuseError
from utils.file_io import save_json
from utils import constants


@dataclass
class FinalModel:
    """
    The chosen candidate refit on the whole fitting pool.

    ``model`` holds the fitted estimator when the procedure exposes
    ``fit``/``predict``; plain fit/predict callables keep the pool and are
    called with it at prediction time.
    """

    candidate: Dict[str, Any]
    procedure: Callable
    fitting_pool: Dataset
    model: Any = None
    training_time_sec: float = 0.0

    def predict(self, query_rows: Dataset) -> np.ndarray:
        if self.model is not None:
            return self.procedure.predict(self.model, query_rows)
        return self.procedure(self.fitting_pool, query_rows, self.candidate)


def refit(fitting_pool: Dataset, candidate: Dict[str, Any], procedure: Callable) -> FinalModel:
    """Refit the chosen candidate on every row of the fitting pool (all folds combined)."""
    start = time.time()
    model = None
    try:
        if hasattr(procedure, 'fit') and hasattr(procedure, 'predict'):
            model = procedure.fit(fitting_pool, candidate)
    except CVSearchException:
        raise
    except Exception as e:
        raise FittingError(f"Refit failed for candidate {candidate}: {e}", candidate=candidate) from e

    return FinalModel(candidate=dict(candidate), procedure=procedure, fitting_pool=fitting_pool,
                      model=model, training_time_sec=time.time() - start)


class TrainingEngine(BaseEngine):
    """
    Final stage of an experiment: refit the selected candidate and score it
    once on the held-out test set.

    Neither step runs on its own; the caller invokes ``refit`` and then
    ``evaluate_on_test`` explicitly. The test set can be scored only once per
    engine; a second attempt raises TestSetReuseError.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self._test_evaluated = False
        self.test_score: Optional[float] = None

    def _get_engine_directory_name(self) -> str:
        return constants.FINAL_MODEL_DIR

    def execute(self, fitting_pool: Dataset, candidate: Dict[str, Any], procedure: Callable) -> FinalModel:
        return self.refit(fitting_pool, candidate, procedure)

    @handle_engine_errors("Final Refit")
    def refit(self, fitting_pool: Dataset, candidate: Dict[str, Any], procedure: Callable) -> FinalModel:
        self.logger.info(f"Refitting candidate {candidate} on the full fitting pool ({fitting_pool.n_rows} rows)...")
        final = refit(fitting_pool, candidate, procedure)
        self.logger.info(f"Refit completed in {final.training_time_sec:.2f} seconds.")

        if final.model is not None and self._saving_enabled():
            try:
                model_path = self.output_dir / constants.FINAL_MODEL_FILE
                joblib.dump(final.model, model_path)
                save_json({
                    'procedure': repr(procedure),
                    'candidate': final.candidate,
                    'features': fitting_pool.features,
                    'response': fitting_pool.response,
                    'fitting_rows': fitting_pool.n_rows,
                    'training_time_sec': final.training_time_sec,
                    'timestamp': time.strftime("%Y-%m-%d %H:%M:%S"),
                }, self.output_dir / "training_metadata.json")
                self.logger.info(f"Model saved to {model_path}")
            except Exception as e:
                self.logger.warning(f"Failed to save model artifacts. Error: {e}")
        return final

    @handle_engine_errors("Test Evaluation")
    def evaluate_on_test(self, final_model: FinalModel, test_rows: Optional[Dataset], score_fn=None) -> float:
        """Score the refit model on the test set. Allowed once."""
        if self._test_evaluated:
            raise TestSetReuseError("The test set has already been used for a final evaluation.")
        if test_rows is None or test_rows.n_rows == 0:
            raise ConfigurationError("No test set available; use the 'holdout' or 'three_way' split scheme.")

        scorer = score_fn if isinstance(score_fn, Scorer) else get_scorer(
            score_fn or self.config.get('search', {}).get('scorer', constants.DEFAULT_SCORER)
        )
        self._test_evaluated = True

        try:
            predictions = final_model.predict(test_rows)
        except CVSearchException:
            raise
        except Exception as e:
            raise FittingError(f"Prediction on the test set failed: {e}", candidate=final_model.candidate) from e

        self.test_score = scorer(test_rows.y, predictions)
        self.logger.info(f"Test {scorer.name}: {self.test_score:.6g} ({test_rows.n_rows} rows)")

        if self._saving_enabled():
            save_json({
                'candidate': final_model.candidate,
                'scorer': scorer.name,
                'test_score': self.test_score,
                'test_rows': test_rows.n_rows,
            }, self.output_dir / constants.TEST_EVALUATION_FILE)
        return self.test_score

    def _saving_enabled(self) -> bool:
        outputs = self.config.get('outputs', {})
        return outputs.get('save_models', True) and not outputs.get('skip_dir_creation', False)
