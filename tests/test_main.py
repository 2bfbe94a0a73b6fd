import json
import logging
import pytest
import numpy as np
import pandas as pd
from pathlib import Path

import main
from utils import constants

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "config" / "schema.json"


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    root.handlers = saved_handlers
    root.setLevel(saved_level)

@pytest.fixture
def run_config(tmp_path):
    rng = np.random.default_rng(3)
    x = rng.uniform(0, 6, size=90)
    pd.DataFrame({
        'x': x,
        'shape': rng.choice(['round', 'oval'], size=90),
        'y': np.cos(x) + rng.normal(scale=0.1, size=90),
    }).to_csv(tmp_path / "data.csv", index=False)

    config = {
        "data": {"file_path": str(tmp_path / "data.csv"), "response": "y", "features": ["x", "shape"]},
        "splitting": {"scheme": "holdout", "test_size": 0.2, "seed": 7},
        "model": {"name": "KNeighborsRegressor", "scale_features": True},
        "search": {"grid": [1, 3, 9], "parameter": "n_neighbors", "cv_folds": 3},
        "logging": {"log_to_console": False, "log_to_file": False},
        "outputs": {"base_results_dir": str(tmp_path / "results")},
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    return path

def test_full_run_with_final_refit(run_config, tmp_path, restore_root_logger):
    code = main.main(["--config", str(run_config), "--schema", str(SCHEMA_PATH), "--final-refit"])
    assert code == 0

    results = tmp_path / "results"
    best = json.loads((results / constants.GRID_SEARCH_DIR / constants.BEST_CANDIDATE_FILE).read_text())
    assert best['candidate']['n_neighbors'] in (1, 3, 9)
    assert (results / constants.FINAL_MODEL_DIR / constants.TEST_EVALUATION_FILE).exists()
    assert (results / constants.CONFIG_DIR / constants.CONFIG_USED_FILE).exists()

def test_dry_run_stops_after_validation(run_config, tmp_path, restore_root_logger):
    code = main.main(["--config", str(run_config), "--schema", str(SCHEMA_PATH), "--dry-run"])
    assert code == 0
    assert not (tmp_path / "results" / constants.GRID_SEARCH_DIR).exists()

def test_invalid_config_returns_error_code(tmp_path, restore_root_logger):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"data": {}}))
    assert main.main(["--config", str(bad), "--schema", str(SCHEMA_PATH)]) == 1
