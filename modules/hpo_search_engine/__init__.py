"""
HPO Search Engine
=================

Responsibility:
- Cross-validated grid search and seeded randomized search over candidates.
- Aggregation (mean, standard deviation, standard error) and ranking.
- Resume of interrupted sweeps from a JSONL progress file.
- Explicit refit and one-time test evaluation of the chosen candidate.
"""

from .grid_search import (
    CandidateResult,
    SearchResult,
    expand_grid,
    sample_candidates,
    search,
)
from .hpo_search_engine import GridSearchEngine

__all__ = [
    'GridSearchEngine', 'CandidateResult', 'SearchResult',
    'expand_grid', 'sample_candidates', 'search',
]
