import json
import os
import hashlib
import sys
import logging
import jsonschema
import psutil  # Required for memory awareness
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from modules.hpo_search_engine.grid_search import expand_grid
from modules.model_factory import ModelFactory
from modules.scoring import available_scorers
from utils.exceptions import ConfigurationError
from utils import constants

class ConfigurationManager:
    """
    Manages system configuration loading, validation, and access.
    Acts as the single source of truth and safety guard for the pipeline.
    """

    DEFAULT_MAX_EVALUATIONS = constants.DEFAULT_MAX_EVALUATIONS  # candidates x folds

    def __init__(self, config_path: str = "config/config.json",
                 schema_path: str = "config/schema.json"):
        """
        Initialize the ConfigurationManager.

        Args:
            config_path (str): Path to the user configuration JSON.
            schema_path (str): Path to the JSON schema definition.
        """
        self.config_path = config_path
        self.schema_path = schema_path
        self.config: Dict[str, Any] = {}
        self.schema: Dict[str, Any] = {}
        self.run_id: Optional[str] = None
        self.logger = logging.getLogger("config_manager")

    def load_and_validate(self) -> Dict[str, Any]:
        """
        Main entry point. Loads config, validates schema/logic/resources,
        and propagates seeds.

        Returns:
            Dict[str, Any]: The fully validated and hydrated configuration.

        Raises:
            ConfigurationError: If any validation step fails.
        """
        self.config = self._load_json(self.config_path)
        self.schema = self._load_json(self.schema_path)

        self._validate_schema()
        self._validate_logic()
        self._validate_resources()
        self._propagate_seeds()

        return self.config

    def generate_run_id(self) -> str:
        """
        Generate or retrieve a unique run identifier based on timestamp.
        """
        if not self.run_id:
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.run_id

    def save_artifacts(self, output_dir: str) -> None:
        """
        Save configuration artifacts to the run directory for full reproducibility.

        Saves:
        1. config_used.json: The exact config object in memory.
        2. config_hash.txt: SHA256 hash for versioning.
        3. run_metadata.json: Environment details (Python version, Platform, etc.).
        """
        config_dir = Path(output_dir) / constants.CONFIG_DIR
        config_dir.mkdir(parents=True, exist_ok=True)

        with open(config_dir / constants.CONFIG_USED_FILE, 'w') as f:
            json.dump(self.config, f, indent=2)

        config_str = json.dumps(self.config, sort_keys=True)
        config_hash = hashlib.sha256(config_str.encode()).hexdigest()

        with open(config_dir / constants.CONFIG_HASH_FILE, 'w') as f:
            f.write(config_hash)

        metadata = {
            'run_id': self.run_id,
            'start_time': datetime.now().isoformat(),
            'python_version': sys.version,
            'platform': sys.platform,
            'config_hash': config_hash,
            'working_directory': os.getcwd()
        }

        with open(config_dir / constants.RUN_METADATA_FILE, 'w') as f:
            json.dump(metadata, f, indent=2)

    def _load_json(self, path: str) -> Dict[str, Any]:
        """Safely load a JSON file."""
        if not os.path.exists(path):
            raise ConfigurationError(f"File not found: {path}")
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}")

    def _validate_schema(self) -> None:
        """Validate config structure against JSON schema."""
        try:
            jsonschema.validate(instance=self.config, schema=self.schema)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(f"Schema validation failed: {e.message}")

    def _validate_logic(self) -> None:
        """Comprehensive logical validation."""
        # --- Data Section ---
        data = self.config.get('data', {})
        for key in ['file_path', 'response']:
            if not data.get(key):
                raise ConfigurationError(f"Data '{key}' must be specified and non-empty.")
        if data.get('sample_rows') is not None and data['sample_rows'] < 1:
            raise ConfigurationError(f"data.sample_rows must be >= 1, got {data['sample_rows']}")

        # --- Splitting Section ---
        split = self.config.get('splitting', {})
        scheme = split.get('scheme', constants.SCHEME_KFOLD)
        if scheme not in constants.SPLIT_SCHEMES:
            raise ConfigurationError(f"splitting.scheme must be one of {list(constants.SPLIT_SCHEMES)}, got '{scheme}'")

        test_size = split.get('test_size', 0.2)
        val_size = split.get('val_size', 0.2)
        if scheme in (constants.SCHEME_HOLDOUT, constants.SCHEME_THREE_WAY):
            if not (0.0 < test_size < 1.0):
                raise ConfigurationError(f"test_size must be between 0 and 1 (exclusive), got {test_size}")
        if scheme == constants.SCHEME_THREE_WAY:
            if not (0.0 < val_size < 1.0):
                raise ConfigurationError(f"val_size must be between 0 and 1 (exclusive), got {val_size}")
            if test_size + val_size >= 1.0:
                raise ConfigurationError(f"Sum of test_size ({test_size}) and val_size ({val_size}) must be < 1.0 to leave room for training data.")

        if split.get('seed', constants.DEFAULT_SEED) < 0:
            raise ConfigurationError("Splitting seed must be non-negative.")

        # --- Model Section ---
        model = self.config.get('model', {})
        if model.get('name') not in ModelFactory.get_available_models():
            raise ConfigurationError(
                f"model.name '{model.get('name')}' is not available. Choose from {ModelFactory.get_available_models()}"
            )

        # --- Search Section ---
        search = self.config.get('search', {})
        if not search.get('grid'):
            raise ConfigurationError("search.grid cannot be empty.")
        cv_folds = search.get('cv_folds', constants.DEFAULT_CV_FOLDS)
        if scheme != constants.SCHEME_THREE_WAY and cv_folds < 2:
            raise ConfigurationError(f"cv_folds must be >= 2, got {cv_folds}.")
        randomized = search.get('randomized', {})
        if randomized.get('enabled', False) and randomized.get('n_samples', 10) < 1:
            raise ConfigurationError(f"randomized.n_samples must be >= 1, got {randomized.get('n_samples')}.")
        scorer = search.get('scorer', constants.DEFAULT_SCORER)
        if scorer not in available_scorers():
            raise ConfigurationError(f"search.scorer '{scorer}' is unknown. Choose from {available_scorers()}")
        policy = search.get('on_candidate_error', constants.ON_ERROR_MARK_FAILED)
        if policy not in (constants.ON_ERROR_MARK_FAILED, constants.ON_ERROR_RAISE):
            raise ConfigurationError(f"search.on_candidate_error must be 'mark_failed' or 'raise', got '{policy}'")
        if search.get('group_folds', False) and not data.get('group_column'):
            raise ConfigurationError("search.group_folds requires data.group_column.")

        # --- Analysis Section ---
        analysis = self.config.get('analysis', {})
        if not (0 < analysis.get('alpha', 0.05) < 1):
            raise ConfigurationError("analysis.alpha must be in (0, 1)")

        # --- Execution Section ---
        execution = self.config.get('execution', {})
        if execution.get('max_hours') is not None and execution['max_hours'] <= 0:
            raise ConfigurationError(f"execution.max_hours must be > 0, got {execution['max_hours']}")
        if 'n_jobs' in execution:
            n_jobs = execution['n_jobs']
            if n_jobs == 0 or n_jobs < -1:
                raise ConfigurationError(f"execution.n_jobs must be -1 (all cores) or a positive integer, got {n_jobs}")

    def _validate_resources(self) -> None:
        """
        Calculates the number of (candidate, fold) evaluations and ensures it fits
        within safe limits before the sweep starts.
        """
        resources = self.config.get('resources', {})
        search = self.config.get('search', {})

        try:
            n_candidates = len(expand_grid(search.get('grid', {}), name=search.get('parameter')))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid search grid: {str(e)}")

        randomized = search.get('randomized', {})
        if randomized.get('enabled', False):
            n_candidates = min(n_candidates, randomized.get('n_samples', 10))

        scheme = self.config.get('splitting', {}).get('scheme', constants.SCHEME_KFOLD)
        n_folds = 1 if scheme == constants.SCHEME_THREE_WAY else search.get('cv_folds', constants.DEFAULT_CV_FOLDS)
        total = n_candidates * n_folds

        max_evaluations = resources.get('max_evaluations', self.DEFAULT_MAX_EVALUATIONS)
        if total > max_evaluations:
            raise ConfigurationError(
                f"Search too large: {n_candidates} candidates x {n_folds} folds = {total} evaluations exceeds "
                f"safety limit ({max_evaluations}). Shrink the grid, enable randomized search or raise "
                f"'resources.max_evaluations'."
            )
        logging.info(f"Search size validated: {total} evaluations (Limit: {max_evaluations})")

        system_ram_mb = int(psutil.virtual_memory().total / (1024 * 1024))
        config_max_ram = resources.get('max_memory_mb')

        if config_max_ram is not None and config_max_ram > system_ram_mb:
            logging.warning(
                f"Configured max_memory_mb ({config_max_ram}MB) exceeds physical system RAM ({system_ram_mb}MB). "
                "This may lead to instability."
            )

    def _propagate_seeds(self) -> None:
        """
        Derive component seeds from the master seed. Each component receives
        its own seed explicitly; no process-wide random state is touched.
        """
        master_seed = self.config.get('splitting', {}).get('seed', constants.DEFAULT_SEED)

        self.config['_internal_seeds'] = {
            'split': master_seed + constants.SEED_OFFSET_SPLIT,
            'cv': master_seed + constants.SEED_OFFSET_CV,
            'search': master_seed + constants.SEED_OFFSET_SEARCH,
        }
        logging.debug(f"Seeds propagated from master ({master_seed}): {self.config['_internal_seeds']}")
