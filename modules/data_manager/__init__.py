"""
Data Manager Module
===================

Responsibility:
- Loading of raw data files (CSV, Parquet, Excel).
- Validation of declared response, feature and group columns.
- One-hot encoding of categorical covariates.
- Immutable Dataset handed to the split and search engines.
"""

from .dataset import Dataset
from .data_manager import DataManager

__all__ = ['DataManager', 'Dataset']
