CONFIG_FILENAME = "config.yaml"
CONFIG_FILENAME_ENV_VAR = "RELEASE_CONFIG"

# Configuration keys
STATE_DIR = "app.state_dir"
HISTORY_DIR = "app.history_dir"
ENVIRONMENTS_FILE = "app.environments_file"
LOGGING_CONFIG = "app.logging_config"

DEFAULT_STATE_DIR = "state"
DEFAULT_HISTORY_DIR = "history"
DEFAULT_ENVIRONMENTS_FILE = "environments.json"
DEFAULT_LOGGING_CONFIG = "bluegreen/logging.yaml"

# Persisted state layout, one set of files per environment
ROUTING_FILE_SUFFIX = ".routing.json"
SLOTS_FILE_SUFFIX = ".slots.json"
LOCK_FILE_SUFFIX = ".lock"

# Deployment history
ATTEMPTS_FILE = "deployment_attempts.csv"
TRANSITIONS_FILE = "deployment_transitions.csv"
ERRORS_FILE = "deployment_errors.csv"

SLOT_IDS = ("A", "B")

# Defaults applied when an environment omits them
DEFAULT_HEALTH_PATH = "/"
DEFAULT_PROBE_TIMEOUT = 60.0
DEFAULT_PROBE_INTERVAL = 2.0
DEFAULT_MAX_BAD_RESPONSES = 3
DEFAULT_DEPLOY_TIMEOUT = 30.0
DEFAULT_ROUTER_TIMEOUT = 10.0
DEFAULT_DRAIN_SECONDS = 5.0
DEFAULT_VERIFY_COMMAND = ["nginx", "-t"]
DEFAULT_RELOAD_COMMAND = ["nginx", "-s", "reload"]
STOP_TIMEOUT = 10

# CLI exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_CONCURRENT = 2
EXIT_STATE_CORRUPT = 3
