"""
Model Factory
=============

Responsibility:
- Name-based construction of scikit-learn estimators.
- EstimatorProcedure: the uniform fit/predict capability the search calls.
"""

from .model_factory import ModelFactory, EstimatorProcedure

__all__ = ['ModelFactory', 'EstimatorProcedure']
