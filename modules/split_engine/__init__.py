"""
Split Engine
============

Responsibility:
- Seeded K-fold assignment of rows (or of group keys) for cross-validation.
- Seeded train/validation/test splits by ratio.
- Persistence of the assignment used by an experiment.
"""

from .split_engine import (
    SplitEngine,
    FoldAssignment,
    SplitAssignment,
    ExperimentSplit,
    assign_folds,
    split_by_ratio,
    validate_ratios,
)

__all__ = [
    'SplitEngine', 'FoldAssignment', 'SplitAssignment', 'ExperimentSplit',
    'assign_folds', 'split_by_ratio', 'validate_ratios',
]
