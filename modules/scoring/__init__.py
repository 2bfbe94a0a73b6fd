"""
Scoring Module
==============

Responsibility:
- Pluggable performance measures (RMSE by default) with a uniform call contract.
- Length checks between truth and predictions before any measure is computed.
"""

from .scorers import Scorer, SCORERS, get_scorer, available_scorers, rmse

__all__ = ['Scorer', 'SCORERS', 'get_scorer', 'available_scorers', 'rmse']
