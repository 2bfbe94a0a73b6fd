import logging
from typing import Any, Dict, Optional

from modules.base.base_engine import BaseEngine
from modules.evaluation_engine.cv_analysis import fold_stability, one_standard_error_choice, overfitting_gaps
from modules.evaluation_engine.stat_tests import compare_candidates
from utils.error_handling import handle_engine_errors
from utils.file_io import save_dataframe, save_json
from utils import constants


class SearchAnalysisEngine(BaseEngine):
    """
    Post-search diagnostics handed to the reporting layer: fold stability per
    candidate, train/CV gaps, a paired test of the best candidate against the
    runner-up and, when configured, the one-standard-error choice.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.analysis_config = config.get('analysis', {})

    def _get_engine_directory_name(self) -> str:
        return constants.SEARCH_ANALYSIS_DIR

    @handle_engine_errors("Search Analysis")
    def execute(self, result) -> Dict[str, Any]:
        self.logger.info("Starting Search Analysis...")
        summary: Dict[str, Any] = {'best': result.best.candidate}

        stability = fold_stability(result)
        gaps = overfitting_gaps(result)

        successful = [r for r in result.ranked if r.succeeded]
        if len(successful) >= 2:
            comparison = compare_candidates(
                successful[0].fold_scores, successful[1].fold_scores,
                alpha=self.analysis_config.get('alpha', 0.05),
            )
            summary['best_vs_runner_up'] = {
                'best': successful[0].candidate,
                'runner_up': successful[1].candidate,
                **comparison,
            }
            if not comparison['significant']:
                self.logger.info("Best and runner-up candidates are not significantly different across folds.")

        complexity_key: Optional[str] = self.analysis_config.get('one_se_parameter')
        if complexity_key:
            choice = one_standard_error_choice(
                result, complexity_key, simpler=self.analysis_config.get('one_se_simpler', 'smaller')
            )
            summary['one_standard_error_choice'] = choice.candidate
            self.logger.info(f"One-standard-error choice on '{complexity_key}': {choice.candidate}")

        if not self.config.get('outputs', {}).get('skip_dir_creation', False):
            save_dataframe(stability, self.output_dir / "fold_stability.parquet", excel_copy=self.excel_copy, index=False)
            if not gaps.empty:
                save_dataframe(gaps, self.output_dir / "train_cv_gaps.parquet", excel_copy=self.excel_copy, index=False)
            save_json(summary, self.output_dir / "analysis_summary.json")

        summary['fold_stability'] = stability
        summary['train_cv_gaps'] = gaps
        return summary
