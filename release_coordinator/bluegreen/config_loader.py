import logging
import os

import yaml

from bluegreen import constants
from bluegreen.util.common_util import resolve_path

logger = logging.getLogger(__name__)

class AppConfig:
    """Process-wide settings from config.yaml; RELEASE_CONFIG points at another file."""
    _instance = None

    def __new__(cls, config_path=None):
        if cls._instance is None:
            config_path = config_path or os.getenv(constants.CONFIG_FILENAME_ENV_VAR, constants.CONFIG_FILENAME)
            instance = super(AppConfig, cls).__new__(cls)
            instance._load_config(resolve_path(config_path))
            cls._instance = instance
        return cls._instance

    def _load_config(self, config_path):
        logger.info(f"Loading configuration from {config_path}")
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r") as file:
            try:
                self.config = yaml.safe_load(file) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in config file {config_path}: {e}") from e
        if not isinstance(self.config, dict):
            raise ValueError(f"Config file {config_path} must hold a mapping, got {type(self.config).__name__}")

    def get(self, key_path, default=None):
        """Fetch nested keys using dot notation, e.g. get('app.state_dir')"""
        value = self.config
        for key in key_path.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(key)
            if value is None:
                return default
        return value

    def path(self, key_path, default):
        """A configured file or directory, relative entries taken from the project root."""
        return resolve_path(self.get(key_path, default))

    @classmethod
    def reset(cls):
        cls._instance = None
