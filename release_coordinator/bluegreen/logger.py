import logging.config
import os
from datetime import datetime

import yaml

from bluegreen.util.common_util import get_root_path, resolve_path

LOG_LEVEL_ENV_VAR = "RELEASE_LOG_LEVEL"


def setup_logging(config_path="bluegreen/logging.yaml", run_name="release"):
    """Console plus one log file per run, logs/<run_name>_<timestamp>.log under the project root.

    RELEASE_LOG_LEVEL (e.g. DEBUG) overrides the console level from the yaml.
    """
    with open(resolve_path(config_path), 'r') as f:
        config = yaml.safe_load(f.read())

    logs_dir = get_root_path() / "logs"
    logs_dir.mkdir(exist_ok=True)
    log_filename = logs_dir / f"{run_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    handlers = config["handlers"]
    handlers["file"]["filename"] = str(log_filename)
    handlers["file"]["mode"] = "w"
    console_level = os.getenv(LOG_LEVEL_ENV_VAR)
    if console_level:
        handlers["console"]["level"] = console_level.upper()

    logging.config.dictConfig(config)
    return log_filename
