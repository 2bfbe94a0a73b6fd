# utils/constants.py

# --- Top-Level Result Directories ---
# Sequentially numbered for proper sorting

CONFIG_DIR = "01_RunConfiguration"            # Run config, metadata, seeds
DATA_INTEGRITY_DIR = "02_DataQualityChecks"   # Column stats, validated data
SPLITS_DIR = "03_FoldAssignment"              # Fold ids / split labels per row
GRID_SEARCH_DIR = "04_GridSearch"             # Score records, cv results, best candidate
SEARCH_ANALYSIS_DIR = "05_SearchAnalysis"     # Fold stability, candidate comparison
FINAL_MODEL_DIR = "06_FinalModel"             # Refit model and one-time test score

TOP_LEVEL_RESULT_DIRS = [
    CONFIG_DIR,
    DATA_INTEGRITY_DIR,
    SPLITS_DIR,
    GRID_SEARCH_DIR,
    SEARCH_ANALYSIS_DIR,
    FINAL_MODEL_DIR,
]

# --- File Names ---
CONFIG_USED_FILE = "config_used.json"
CONFIG_HASH_FILE = "config_hash.txt"
RUN_METADATA_FILE = "run_metadata.json"
PROGRESS_FILE = "search_progress.jsonl"
SCORE_RECORDS_FILE = "score_records.parquet"
CV_RESULTS_FILE = "cv_results.parquet"
BEST_CANDIDATE_FILE = "best_candidate.json"
FOLD_ASSIGNMENT_FILE = "fold_assignment.parquet"
SPLIT_ASSIGNMENT_FILE = "split_assignment.parquet"
SPLIT_BALANCE_FILE = "split_balance_report.parquet"
FINAL_MODEL_FILE = "final_model.pkl"
TEST_EVALUATION_FILE = "test_evaluation.json"

# --- Split Labels ---
TRAIN = "train"
VALIDATION = "validation"
TEST = "test"
SPLIT_LABELS = (TRAIN, VALIDATION, TEST)

# --- Split Schemes ---
SCHEME_KFOLD = "kfold"          # whole dataset is the fitting pool, no test set
SCHEME_HOLDOUT = "holdout"      # train / test, K-fold CV inside train
SCHEME_THREE_WAY = "three_way"  # train / validation / test, validation is the single held-out fold
SPLIT_SCHEMES = (SCHEME_KFOLD, SCHEME_HOLDOUT, SCHEME_THREE_WAY)

# --- Failure Policies ---
ON_ERROR_MARK_FAILED = "mark_failed"
ON_ERROR_RAISE = "raise"

# --- Candidate Status ---
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

# --- Seed Offsets (from master seed) ---
SEED_OFFSET_SPLIT = 0
SEED_OFFSET_CV = 1000
SEED_OFFSET_SEARCH = 2000

# --- Defaults ---
DEFAULT_SEED = 42
DEFAULT_CV_FOLDS = 5
DEFAULT_SCORER = "rmse"
DEFAULT_MAX_EVALUATIONS = 10000
PROGRESS_LOG_EVERY = 10
