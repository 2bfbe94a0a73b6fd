import json
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Any

class NumpyEncoder(json.JSONEncoder):
    """Handles serialization of NumPy types to JSON."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.bool_):
            return bool(obj)
        elif isinstance(obj, (np.ndarray,)):
            return obj.tolist()
        return json.JSONEncoder.default(self, obj)


def save_dataframe(df: pd.DataFrame, path: Path, *, excel_copy: bool = False, index: bool = False) -> Path:
    """
    Save a DataFrame to Parquet for fast I/O with an optional Excel copy for human readability.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, index=index)

    if excel_copy:
        df.to_excel(path.with_suffix(".xlsx"), index=index)

    return path


def read_dataframe(path: Path) -> pd.DataFrame:
    """
    Load a DataFrame from Parquet/Excel/CSV based on file extension.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".parquet":
        return pd.read_parquet(path)
    if suffix in {".xlsx", ".xls"}:
        return pd.read_excel(path)
    if suffix == ".csv":
        return pd.read_csv(path)

    raise ValueError(f"Unsupported file extension for reading: {suffix}")


def save_json(payload: Any, path: Path) -> Path:
    """Write a JSON document, converting NumPy scalars and arrays on the way."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(payload, f, indent=2, cls=NumpyEncoder)
    return path
