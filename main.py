#!/usr/bin/env python
"""
Cross-Validated Hyperparameter Search - Main Entry Point
Orchestrates data loading, splitting, the grid search and the optional final refit.
"""
import sys
import logging
import argparse
import traceback
from pathlib import Path

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from modules.config_manager import ConfigurationManager
from modules.logging_config import LoggingConfigurator
from modules.data_manager import DataManager
from modules.split_engine import SplitEngine
from modules.model_factory import EstimatorProcedure
from modules.hpo_search_engine import GridSearchEngine
from modules.evaluation_engine import SearchAnalysisEngine
from utils.exceptions import CVSearchException, SearchCancelledError


def parse_arguments(argv=None):
    """
    Parse command-line arguments for configurable pipeline execution.

    Returns:
        argparse.Namespace: Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Cross-validated hyperparameter search over a configured estimator",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--config",
        type=str,
        default="config/config.json",
        help="Path to the configuration JSON file"
    )

    parser.add_argument(
        "--schema",
        type=str,
        default="config/schema.json",
        help="Path to the configuration JSON schema"
    )

    parser.add_argument(
        "--run-id",
        type=str,
        default=None,
        help="Optional run identifier appended to the results directory"
    )

    parser.add_argument(
        "--final-refit",
        action="store_true",
        help="Refit the best candidate on the fitting pool and score it once on the test set"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and setup without running the search"
    )

    return parser.parse_args(argv)


def validate_environment(logger: logging.Logger):
    """
    Validate the runtime environment and dependencies.

    Raises:
        RuntimeError: If critical dependencies are missing or incompatible.
    """
    logger.info("Validating environment...")

    if sys.version_info < (3, 9):
        raise RuntimeError(f"Python 3.9+ required, found {sys.version_info.major}.{sys.version_info.minor}")

    required_packages = [
        'pandas', 'numpy', 'sklearn', 'scipy', 'joblib', 'jsonschema'
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        raise RuntimeError(f"Missing required packages: {', '.join(missing)}")

    logger.info("Environment validation passed")


def setup_run_directory(config: dict, run_id: str = None, logger: logging.Logger = None):
    """
    Create the run directory.

    Returns:
        tuple: (run_dir Path, run_id string)
    """
    base_results_dir = config.get('outputs', {}).get('base_results_dir', 'results')

    if run_id:
        run_dir = Path(f"{base_results_dir}_{run_id}").absolute()
    else:
        # Reusing the same directory lets an interrupted search resume
        run_dir = Path(base_results_dir).absolute()
        run_id = run_dir.name

    run_dir.mkdir(parents=True, exist_ok=True)
    if logger:
        logger.info(f"Run directory: {run_dir}")

    return run_dir, run_id


def build_procedure(config: dict) -> EstimatorProcedure:
    model_cfg = config.get('model', {})
    return EstimatorProcedure(
        model_cfg['name'],
        fixed_params=model_cfg.get('fixed_params'),
        scale_features=model_cfg.get('scale_features', False),
        predict_proba=model_cfg.get('predict_proba', False),
    )


def main(argv=None):
    """
    Main pipeline orchestration function.

    Returns:
        int: Exit code (0 success, 1 pipeline error, 2 search cancelled, 130 interrupted)
    """
    logger = None

    try:
        args = parse_arguments(argv)

        print("\n" + "=" * 80)
        print("    CROSS-VALIDATED HYPERPARAMETER SEARCH")
        print("=" * 80 + "\n")

        # ---------------------------------------------------------------
        # PHASE 0: INITIALIZATION & VALIDATION
        # ---------------------------------------------------------------
        config_manager = ConfigurationManager(config_path=args.config, schema_path=args.schema)
        config = config_manager.load_and_validate()

        if args.verbose:
            config.setdefault('logging', {})['level'] = 'DEBUG'

        logging_configurator = LoggingConfigurator(config)
        logging_configurator.setup()
        logger = logging_configurator.get_logger('pipeline')

        logger.info("Pipeline initialization started")
        logger.info(f"Configuration loaded from: {args.config}")

        validate_environment(logger)

        run_dir, run_id = setup_run_directory(config, run_id=args.run_id, logger=logger)
        config_manager.run_id = run_id
        config['outputs']['base_results_dir'] = str(run_dir)
        config_manager.save_artifacts(str(run_dir))

        logger.info(f"Run ID: {run_id}")
        logger.info(f"Seeds: {config['_internal_seeds']}")

        if args.dry_run:
            logger.info("Dry run mode: validation complete. Exiting without running the search.")
            print("\n[SUCCESS] Configuration validated successfully.")
            return 0

        # ---------------------------------------------------------------
        # PHASE 1: DATA INGESTION & SPLITTING
        # ---------------------------------------------------------------
        logger.info("\n" + "=" * 60)
        logger.info("PHASE 1: DATA INGESTION & SPLITTING")
        logger.info("=" * 60)

        dataset = DataManager(config, logger).execute()
        logger.info(f"Data loaded: {dataset.n_rows} rows, {len(dataset.features)} features")

        split = SplitEngine(config, logger).execute(dataset)
        logger.info(
            f"Fitting pool: {split.fitting_pool.n_rows} rows, "
            f"test set: {split.test.n_rows if split.test is not None else 0} rows"
        )

        # ---------------------------------------------------------------
        # PHASE 2: CROSS-VALIDATED SEARCH
        # ---------------------------------------------------------------
        logger.info("\n" + "=" * 60)
        logger.info("PHASE 2: CROSS-VALIDATED HYPERPARAMETER SEARCH")
        logger.info("=" * 60)

        procedure = build_procedure(config)
        search_engine = GridSearchEngine(config, logger)
        result = search_engine.execute(split, procedure)

        SearchAnalysisEngine(config, logger).execute(result)

        # ---------------------------------------------------------------
        # PHASE 3: FINAL REFIT (explicit only)
        # ---------------------------------------------------------------
        if args.final_refit:
            logger.info("\n" + "=" * 60)
            logger.info("PHASE 3: FINAL REFIT & TEST EVALUATION")
            logger.info("=" * 60)

            final_model = search_engine.refit(split.fitting_pool, result.best.candidate, procedure)
            if split.test is not None:
                search_engine.evaluate_on_test(final_model, split.test)
            else:
                logger.info("Scheme 'kfold' has no test set; skipping test evaluation.")

        logger.info("\n" + "-" * 60)
        logger.info("PIPELINE COMPLETED SUCCESSFULLY")
        logger.info(f"Best candidate: {result.best.candidate} "
                    f"(CV {result.scorer.name}: {result.best.mean_score:.6g})")
        logger.info(f"Output Directory: {run_dir}")
        logger.info("-" * 60 + "\n")

        print(f"\n[SUCCESS] Search completed. Results saved to: {run_dir}")
        return 0

    except SearchCancelledError as e:
        done = len(e.completed_records or [])
        msg = f"Search cancelled after {done} evaluations: {e}"
        print(f"\n[CANCELLED] {msg}")
        if logger:
            logger.warning(msg)
        return 2

    except CVSearchException as e:
        msg = f"Pipeline Error: {str(e)}"
        print(f"\n[ERROR] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1

    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Pipeline interrupted by user.")
        if logger:
            logger.warning("Pipeline interrupted by user (Ctrl+C)")
        return 130

    except Exception as e:
        msg = f"Unexpected Error: {str(e)}"
        print(f"\n[CRITICAL] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
