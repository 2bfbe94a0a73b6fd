import inspect
from typing import Dict, Any, List, Optional

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor, RandomForestClassifier
from sklearn.linear_model import (
    LinearRegression,
    Ridge,
    Lasso,
    ElasticNet,
    LogisticRegression,
    PoissonRegressor,
)
from sklearn.neighbors import KNeighborsRegressor, KNeighborsClassifier
from sklearn.neural_network import MLPRegressor, MLPClassifier
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.tree import DecisionTreeRegressor, DecisionTreeClassifier

class ModelFactory:
    """
    Factory for creating scikit-learn estimators by name.
    Parameters the estimator does not accept are silently filtered out, so a
    grid can carry keys meant for the procedure wrapper.
    """

    REGRESSORS = {
        'KNeighborsRegressor': KNeighborsRegressor,
        'LinearRegression': LinearRegression,
        'Ridge': Ridge,
        'Lasso': Lasso,
        'ElasticNet': ElasticNet,
        'PoissonRegressor': PoissonRegressor,
        'DecisionTreeRegressor': DecisionTreeRegressor,
        'RandomForestRegressor': RandomForestRegressor,
        'MLPRegressor': MLPRegressor,
    }

    CLASSIFIERS = {
        'KNeighborsClassifier': KNeighborsClassifier,
        'LogisticRegression': LogisticRegression,
        'DecisionTreeClassifier': DecisionTreeClassifier,
        'RandomForestClassifier': RandomForestClassifier,
        'MLPClassifier': MLPClassifier,
    }

    @classmethod
    def create(cls, model_name: str, params: Dict[str, Any] = None) -> Any:
        """
        Create and return an instantiated model.
        """
        if params is None:
            params = {}

        model_class = cls.REGRESSORS.get(model_name) or cls.CLASSIFIERS.get(model_name)
        if model_class is None:
            raise ValueError(f"Unknown model name: {model_name}. Available: {cls.get_available_models()}")

        valid_params = cls._filter_params(model_class, params)
        return model_class(**valid_params)

    @classmethod
    def is_classifier(cls, model_name: str) -> bool:
        return model_name in cls.CLASSIFIERS

    @classmethod
    def get_available_models(cls) -> List[str]:
        """Return list of all supported model names."""
        return list(cls.REGRESSORS.keys()) + list(cls.CLASSIFIERS.keys())

    @staticmethod
    def _filter_params(model_class, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove parameters from `params` that are not accepted by `model_class` constructor.
        """
        sig = inspect.signature(model_class.__init__)

        valid_keys = [
            p.name for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        ]

        has_kwargs = any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values())
        if has_kwargs:
            return params

        return {k: v for k, v in params.items() if k in valid_keys}


class EstimatorProcedure:
    """
    Fit/predict capability backed by a ModelFactory estimator.

    Called as ``procedure(train_rows, query_rows, hyperparameter)`` it fits a
    fresh estimator on ``train_rows`` with the fixed parameters overlaid by the
    candidate and returns predictions for ``query_rows``. Rows are Dataset
    instances. ``predict_proba=True`` returns the positive-class probability
    for deviance-type scorers.
    """

    def __init__(self, model_name: str, fixed_params: Optional[Dict[str, Any]] = None,
                 scale_features: bool = False, predict_proba: bool = False):
        if model_name not in ModelFactory.get_available_models():
            raise ValueError(f"Unknown model name: {model_name}. Available: {ModelFactory.get_available_models()}")
        self.model_name = model_name
        self.fixed_params = dict(fixed_params or {})
        self.scale_features = scale_features
        self.predict_proba = predict_proba

    def build(self, hyperparameter: Dict[str, Any]):
        params = {**self.fixed_params, **(hyperparameter or {})}
        estimator = ModelFactory.create(self.model_name, params)
        if self.scale_features:
            # k-NN and MLP are distance / gradient based, covariates need a common scale
            return make_pipeline(StandardScaler(), estimator)
        return estimator

    def fit(self, train_rows, hyperparameter: Dict[str, Any]):
        model = self.build(hyperparameter)
        model.fit(train_rows.X, train_rows.y)
        return model

    def predict(self, model, query_rows) -> np.ndarray:
        X = query_rows.X if not isinstance(query_rows, pd.DataFrame) else query_rows
        if self.predict_proba:
            return model.predict_proba(X)[:, 1]
        return model.predict(X)

    def __call__(self, train_rows, query_rows, hyperparameter: Dict[str, Any]) -> np.ndarray:
        return self.predict(self.fit(train_rows, hyperparameter), query_rows)

    def __repr__(self) -> str:
        return (f"EstimatorProcedure({self.model_name!r}, fixed_params={self.fixed_params!r}, "
                f"scale_features={self.scale_features!r}, predict_proba={self.predict_proba!r})")
