from .evaluation_engine import SearchAnalysisEngine
from .cv_analysis import fold_stability, overfitting_gaps, one_standard_error_choice
from .stat_tests import compare_candidates

__all__ = [
    'SearchAnalysisEngine', 'fold_stability', 'overfitting_gaps',
    'one_standard_error_choice', 'compare_candidates',
]
