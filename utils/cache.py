"""
Lightweight hashing helpers.

Stable fingerprints identify (candidate, fold) evaluations so an interrupted
sweep can be resumed without recomputing finished work. An evaluation is only
reusable inside the same experiment: same fitting rows, same folds, same
model procedure and same scorer.
"""

import json
from functools import lru_cache
from hashlib import sha256
from typing import Any, Dict

import numpy as np
import pandas as pd

from utils.file_io import NumpyEncoder


@lru_cache(maxsize=4096)
def fingerprint(key: str) -> str:
    """
    Deterministically hash a string key (cached to avoid repeated hashing).
    """
    return sha256(key.encode("utf-8")).hexdigest()


def experiment_fingerprint(frame: pd.DataFrame, fold_ids: np.ndarray, scorer_name: str,
                           procedure: Any, return_train_score: bool = False) -> str:
    """Fingerprint of everything a (candidate, fold) score depends on besides the candidate itself."""
    data_hash = int(pd.util.hash_pandas_object(frame, index=False).sum())
    folds_hash = sha256(np.ascontiguousarray(fold_ids, dtype=np.int64).tobytes()).hexdigest()
    signature = json.dumps(
        {
            'columns': [str(c) for c in frame.columns],
            'data': data_hash,
            'folds': folds_hash,
            'scorer': scorer_name,
            'procedure': repr(procedure),
            'train_score': bool(return_train_score),
        },
        sort_keys=True,
    )
    return fingerprint(signature)


def evaluation_key(candidate: Dict[str, Any], fold: int, experiment: str) -> str:
    """Fingerprint of one (candidate, fold) evaluation within an experiment."""
    signature = json.dumps(
        {'candidate': candidate, 'fold': fold, 'experiment': experiment},
        sort_keys=True,
        cls=NumpyEncoder,
    )
    return fingerprint(signature)
