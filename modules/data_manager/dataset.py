"""
Immutable tabular dataset handed to every engine of the search.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from utils.exceptions import DataValidationError


@dataclass(frozen=True, eq=False)
class Dataset:
    """
    Rows with a designated response column, covariate columns and an
    optional group key.

    The frame is never modified in place; ``subset`` returns a new Dataset
    that shares column definitions.
    """

    frame: pd.DataFrame
    response: str
    features: List[str] = field(default_factory=list)
    group: Optional[str] = None

    def __post_init__(self):
        if not self.features:
            excluded = {self.response, self.group}
            object.__setattr__(self, 'features', [c for c in self.frame.columns if c not in excluded])
        self.validate()

    def validate(self) -> None:
        declared = [self.response, *self.features] + ([self.group] if self.group else [])
        missing = [c for c in declared if c not in self.frame.columns]
        if missing:
            raise DataValidationError(f"Missing declared columns in dataset: {missing}")
        if self.response in self.features:
            raise DataValidationError(f"Response '{self.response}' cannot also be a feature.")
        if self.frame[self.response].isna().any():
            raise DataValidationError(f"Response column '{self.response}' contains missing values.")
        if self.group and self.frame[self.group].isna().any():
            raise DataValidationError(f"Group column '{self.group}' contains missing keys.")

    @property
    def n_rows(self) -> int:
        return len(self.frame)

    def __len__(self) -> int:
        return self.n_rows

    @property
    def X(self) -> pd.DataFrame:
        return self.frame[self.features]

    @property
    def y(self) -> np.ndarray:
        return self.frame[self.response].to_numpy()

    @property
    def groups(self) -> Optional[np.ndarray]:
        return self.frame[self.group].to_numpy() if self.group else None

    def subset(self, rows: Sequence[int]) -> "Dataset":
        """Positional row subset as a new Dataset."""
        return Dataset(
            frame=self.frame.iloc[np.asarray(rows, dtype=int)],
            response=self.response,
            features=list(self.features),
            group=self.group,
        )
