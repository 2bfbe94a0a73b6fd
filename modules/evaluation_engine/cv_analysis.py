import numpy as np
import pandas as pd

from utils.exceptions import ConfigurationError


def fold_stability(result) -> pd.DataFrame:
    """
    Summarize how much each candidate's score moves across folds.
    A large range relative to the gaps between candidates means the ranking is fragile.
    """
    rows = []
    for r in result.ranked:
        scores = np.asarray(r.fold_scores, dtype=float)
        if scores.size == 0:
            continue
        rows.append({
            "rank": r.rank,
            "candidate": str(r.candidate),
            "folds": len(scores),
            "mean": float(np.mean(scores)),
            "std": r.std_score,
            "sem": r.sem_score,
            "min": float(np.min(scores)),
            "max": float(np.max(scores)),
            "range": float(np.max(scores) - np.min(scores)),
        })
    return pd.DataFrame(rows)


def overfitting_gaps(result) -> pd.DataFrame:
    """
    In-sample (training-fold) vs held-out score per candidate.
    Only available when the search ran with return_train_score.
    """
    rows = []
    for r in result.ranked:
        if r.mean_train_score is None or not r.succeeded:
            continue
        rows.append({
            "rank": r.rank,
            "candidate": str(r.candidate),
            "train": r.mean_train_score,
            "cv": r.mean_score,
            "gap": r.mean_score - r.mean_train_score,
        })
    return pd.DataFrame(rows)


def one_standard_error_choice(result, complexity_key: str, simpler: str = "smaller"):
    """
    Simplest candidate whose mean score lies within one standard error of the best.

    ``complexity_key`` names the hyperparameter that orders candidates by
    complexity; ``simpler`` says whether smaller or larger values of it give
    the simpler model (e.g. larger penalty, larger neighbour count).
    """
    if simpler not in ("smaller", "larger"):
        raise ConfigurationError(f"simpler must be 'smaller' or 'larger', got {simpler!r}")

    best = result.best
    if complexity_key not in best.candidate:
        raise ConfigurationError(f"Candidates have no hyperparameter '{complexity_key}'.")

    sem = 0.0 if np.isnan(best.sem_score) else best.sem_score
    sign = -1.0 if result.scorer.greater_is_better else 1.0
    threshold = sign * best.mean_score + sem

    eligible = [
        r for r in result.ranked
        if r.succeeded and complexity_key in r.candidate and sign * r.mean_score <= threshold
    ]
    return (min if simpler == "smaller" else max)(
        eligible, key=lambda r: r.candidate[complexity_key]
    )
