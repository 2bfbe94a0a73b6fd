import pytest
import json
import copy
from unittest.mock import patch, MagicMock

from modules.config_manager.config_manager import ConfigurationManager
from utils.exceptions import ConfigurationError
from utils import constants

VALID_CONFIG = {
    "data": {"file_path": "data/diamonds.csv", "response": "price"},
    "splitting": {"scheme": "holdout", "test_size": 0.2, "val_size": 0.2, "seed": 42},
    "model": {"name": "KNeighborsRegressor"},
    "search": {"grid": {"n_neighbors": [1, 5, 10]}, "cv_folds": 5, "scorer": "rmse"},
    "analysis": {"alpha": 0.05},
    "execution": {"n_jobs": 1},
    "resources": {"max_evaluations": 100},
    "outputs": {"base_results_dir": "results"},
}

SCHEMA = {
    "type": "object",
    "required": ["data", "splitting", "model", "search", "outputs"],
    "properties": {
        "data": {"type": "object", "required": ["file_path", "response"]},
        "splitting": {"type": "object", "properties": {"test_size": {"type": "number"}}},
    },
}

# --- Fixtures ---

@pytest.fixture
def write_files(tmp_path):
    """Writes config and schema files and returns a ConfigurationManager for them."""
    def _write(config=None, schema=None):
        config_path = tmp_path / "config.json"
        schema_path = tmp_path / "schema.json"
        config_path.write_text(json.dumps(VALID_CONFIG if config is None else config))
        schema_path.write_text(json.dumps(SCHEMA if schema is None else schema))
        return ConfigurationManager(str(config_path), str(schema_path))
    return _write

@pytest.fixture(autouse=True)
def fixed_memory():
    with patch('psutil.virtual_memory') as mock_vm:
        mock_vm.return_value = MagicMock(total=16 * 1024 ** 3)
        yield mock_vm


def modified(**sections):
    config = copy.deepcopy(VALID_CONFIG)
    for section, values in sections.items():
        config.setdefault(section, {}).update(values)
    return config

# --- Test Cases ---

class TestConfigurationManager:

    def test_load_valid_config(self, write_files):
        config = write_files().load_and_validate()
        assert config['model']['name'] == 'KNeighborsRegressor'
        assert 'max_memory_mb' not in config['resources']

    def test_memory_above_system_ram_warns(self, write_files):
        config = modified(resources={'max_memory_mb': 64 * 1024})
        with patch('logging.warning') as mock_warning:
            loaded = write_files(config).load_and_validate()
        assert loaded['resources']['max_memory_mb'] == 64 * 1024
        assert any('exceeds physical system RAM' in str(c) for c in mock_warning.call_args_list)

    def test_memory_within_system_ram_is_quiet(self, write_files):
        config = modified(resources={'max_memory_mb': 4 * 1024})
        with patch('logging.warning') as mock_warning:
            write_files(config).load_and_validate()
        assert not any('system RAM' in str(c) for c in mock_warning.call_args_list)

    def test_seed_propagation(self, write_files):
        config = write_files().load_and_validate()
        assert config['_internal_seeds'] == {
            'split': 42 + constants.SEED_OFFSET_SPLIT,
            'cv': 42 + constants.SEED_OFFSET_CV,
            'search': 42 + constants.SEED_OFFSET_SEARCH,
        }

    def test_missing_file(self, tmp_path):
        manager = ConfigurationManager(str(tmp_path / "nope.json"), str(tmp_path / "schema.json"))
        with pytest.raises(ConfigurationError, match="File not found"):
            manager.load_and_validate()

    def test_invalid_json(self, write_files, tmp_path):
        manager = write_files()
        (tmp_path / "config.json").write_text("{not json")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            manager.load_and_validate()

    def test_schema_violation(self, write_files):
        config = copy.deepcopy(VALID_CONFIG)
        del config['model']
        with pytest.raises(ConfigurationError, match="Schema validation failed"):
            write_files(config).load_and_validate()

    @pytest.mark.parametrize("sections, message", [
        ({'splitting': {'scheme': 'bootstrap'}}, "splitting.scheme"),
        ({'splitting': {'test_size': 1.5}}, "test_size"),
        ({'splitting': {'scheme': 'three_way', 'test_size': 0.5, 'val_size': 0.5}}, "Sum of test_size"),
        ({'splitting': {'seed': -1}}, "non-negative"),
        ({'model': {'name': 'GPT'}}, "model.name"),
        ({'search': {'cv_folds': 1}}, "cv_folds"),
        ({'search': {'scorer': 'auc'}}, "search.scorer"),
        ({'search': {'on_candidate_error': 'ignore'}}, "on_candidate_error"),
        ({'search': {'group_folds': True}}, "group_column"),
        ({'search': {'randomized': {'enabled': True, 'n_samples': 0}}}, "n_samples"),
        ({'analysis': {'alpha': 1.5}}, "alpha"),
        ({'execution': {'n_jobs': 0}}, "n_jobs"),
        ({'execution': {'max_hours': 0}}, "max_hours"),
    ])
    def test_logic_validation(self, write_files, sections, message):
        with pytest.raises(ConfigurationError, match=message):
            write_files(modified(**sections)).load_and_validate()

    def test_empty_grid(self, write_files):
        config = copy.deepcopy(VALID_CONFIG)
        config['search']['grid'] = {}
        with pytest.raises(ConfigurationError, match="grid"):
            write_files(config).load_and_validate()

    def test_search_too_large(self, write_files):
        config = modified(search={'grid': {'n_neighbors': list(range(1, 51))}})
        with pytest.raises(ConfigurationError, match="Search too large"):
            write_files(config).load_and_validate()

    def test_randomized_search_counts_sampled_candidates(self, write_files):
        config = modified(search={'grid': {'n_neighbors': list(range(1, 51))},
                                  'randomized': {'enabled': True, 'n_samples': 10}})
        assert write_files(config).load_and_validate()['search']['randomized']['n_samples'] == 10

    def test_three_way_counts_single_fold(self, write_files):
        config = modified(splitting={'scheme': 'three_way'},
                          search={'grid': {'n_neighbors': list(range(1, 51))}})
        write_files(config).load_and_validate()

    def test_save_artifacts(self, write_files, tmp_path):
        manager = write_files()
        manager.load_and_validate()
        manager.generate_run_id()
        manager.save_artifacts(str(tmp_path / "run"))

        config_dir = tmp_path / "run" / constants.CONFIG_DIR
        assert json.loads((config_dir / constants.CONFIG_USED_FILE).read_text())['model']['name'] == 'KNeighborsRegressor'
        assert len((config_dir / constants.CONFIG_HASH_FILE).read_text()) == 64
        metadata = json.loads((config_dir / constants.RUN_METADATA_FILE).read_text())
        assert metadata['run_id'] == manager.run_id
