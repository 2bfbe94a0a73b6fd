import pandas as pd
import numpy as np
import logging
from pathlib import Path
from typing import Optional, List

from modules.data_manager.dataset import Dataset
from utils.exceptions import DataValidationError
from utils.file_io import save_dataframe
from utils.error_handling import handle_engine_errors
from utils import constants

class DataManager:
    """
    Manages loading, validation, and preparation of the raw input data.

    The result is an immutable Dataset: one response column, the covariate
    columns and an optional group key used for grouped partitioning.
    Categorical covariates are one-hot encoded so every model procedure sees
    a purely numeric design matrix.
    """

    SUPPORTED_EXTENSIONS = {'.csv', '.parquet', '.xlsx', '.xls'}

    def __init__(self, config: dict, logger: logging.Logger):
        self.config = config
        self.data_config = config.get('data', {})
        self.logger = logger
        self.data: Optional[pd.DataFrame] = None
        self._features: Optional[List[str]] = None
        self.base_dir = Path(self.config.get('outputs', {}).get('base_results_dir', 'results'))

    @handle_engine_errors("Data Management")
    def execute(self) -> Dataset:
        """
        Execute complete data loading and validation workflow.

        Returns:
            Dataset: The validated dataset.
        """
        self.logger.info("Starting Data Manager execution...")

        output_dir = self.base_dir / constants.DATA_INTEGRITY_DIR
        output_dir.mkdir(parents=True, exist_ok=True)

        self.load_data()
        self.apply_row_filters()
        self.validate_columns()
        stats_df = self.validate_nan_inf()
        self.encode_categoricals()

        dataset = self.build_dataset()

        excel_copy = self.config.get("outputs", {}).get("save_excel_copy", False)
        save_dataframe(stats_df, output_dir / "column_stats.parquet", excel_copy=excel_copy, index=False)
        self.logger.info(
            f"Dataset ready: {dataset.n_rows} rows, {len(dataset.features)} features, "
            f"response='{dataset.response}', group={dataset.group!r}"
        )
        return dataset

    def load_data(self) -> pd.DataFrame:
        """Load data from the file path specified in config."""
        file_path = Path(self.data_config.get('file_path', ''))
        if not file_path.exists():
            raise DataValidationError(f"Data file not found: {file_path}")

        ext = file_path.suffix.lower()
        if ext not in self.SUPPORTED_EXTENSIONS:
            raise DataValidationError(f"Unsupported file extension: {ext}")

        self.logger.info(f"Loading data from {file_path}")
        try:
            if ext == '.csv':
                self.data = pd.read_csv(file_path)
            elif ext == '.parquet':
                self.data = pd.read_parquet(file_path)
            else:
                self.data = pd.read_excel(file_path)
        except Exception as e:
            raise DataValidationError(f"Failed to load data: {str(e)}") from e

        if self.data.empty:
            raise DataValidationError("Loaded dataframe is empty.")

        precision = self.data_config.get('precision')
        if precision:
            numeric_cols = self.data.select_dtypes(include=[np.number]).columns
            self.data[numeric_cols] = self.data[numeric_cols].astype(precision)

        self.logger.info(f"Data loaded successfully. Shape: {self.data.shape}")
        return self.data

    def apply_row_filters(self) -> pd.DataFrame:
        """
        Optional row filter (pandas query string) and seeded down-sampling.
        Both run before any split so the dataset stays fixed for the whole experiment.
        """
        query = self.data_config.get('query')
        if query:
            before = len(self.data)
            self.data = self.data.query(query).reset_index(drop=True)
            self.logger.info(f"Row filter '{query}' kept {len(self.data)}/{before} rows.")

        sample_rows = self.data_config.get('sample_rows')
        if sample_rows and sample_rows < len(self.data):
            seed = self.config.get('_internal_seeds', {}).get('split', constants.DEFAULT_SEED)
            self.data = self.data.sample(n=sample_rows, random_state=seed).reset_index(drop=True)
            self.logger.info(f"Down-sampled dataset to {sample_rows} rows (seed={seed}).")

        if self.data.empty:
            raise DataValidationError("No rows left after filtering.")
        return self.data

    def _declared_columns(self) -> List[str]:
        cols = [self.data_config['response']] + list(self.data_config.get('features') or [])
        if self.data_config.get('group_column'):
            cols.append(self.data_config['group_column'])
        return cols

    def validate_columns(self) -> None:
        """Ensure all required columns from config exist."""
        if self.data is None or self.data.empty:
            raise DataValidationError("Dataframe is empty or None.")
        if not self.data_config.get('response'):
            raise DataValidationError("Data 'response' column must be specified.")

        missing = [col for col in self._declared_columns() if col not in self.data.columns]
        if missing:
            raise DataValidationError(f"Missing required columns in dataset: {missing}")

    def validate_nan_inf(self) -> pd.DataFrame:
        """Check for NaN and Inf values and return statistics."""
        stats = []
        for col in self.data.columns:
            nan_count = int(self.data[col].isna().sum())
            row = {'column': col, 'dtype': str(self.data[col].dtype), 'nan_count': nan_count}

            if pd.api.types.is_numeric_dtype(self.data[col]):
                inf_count = int(np.isinf(self.data[col]).sum())
                row.update({
                    'inf_count': inf_count,
                    'min': self.data[col].min(),
                    'max': self.data[col].max(),
                    'mean': self.data[col].mean()
                })
                if inf_count > 0:
                    self.logger.warning(f"Column '{col}' contains {inf_count} infinite values.")
            else:
                row.update({'inf_count': 0, 'min': np.nan, 'max': np.nan, 'mean': np.nan})

            if nan_count > 0:
                self.logger.warning(f"Column '{col}' contains {nan_count} NaNs.")
            stats.append(row)

        return pd.DataFrame(stats)

    def encode_categoricals(self) -> pd.DataFrame:
        """One-hot encode configured (or detected) categorical feature columns."""
        response = self.data_config['response']
        group = self.data_config.get('group_column')
        features = self.data_config.get('features') or [
            c for c in self.data.columns
            if c not in {response, group, *self.data_config.get('drop_columns', [])}
        ]

        categorical = self.data_config.get('categorical')
        if categorical is None:
            categorical = [c for c in features if not pd.api.types.is_numeric_dtype(self.data[c])]
        if not categorical:
            self._features = list(features)
            return self.data

        encoded = pd.get_dummies(
            self.data[categorical],
            drop_first=self.data_config.get('drop_first_level', True),
            dtype=float,
        )
        self.logger.info(f"One-hot encoded {categorical} into {encoded.shape[1]} columns.")

        self._features = [c for c in features if c not in categorical] + list(encoded.columns)
        self.data = pd.concat([self.data.drop(columns=categorical), encoded], axis=1)
        return self.data

    def build_dataset(self) -> Dataset:
        features = self._features or list(self.data_config.get('features') or [])
        return Dataset(
            frame=self.data,
            response=self.data_config['response'],
            features=features,
            group=self.data_config.get('group_column'),
        )
