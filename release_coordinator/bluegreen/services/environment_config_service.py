import json
import logging
import os
from typing import Dict

from pydantic import ValidationError

from bluegreen.models.environment import Environment

logger = logging.getLogger(__name__)

class EnvironmentConfigService:
    """Singleton class that stores all environment configs in memory."""
    _instance = None

    def __new__(cls, config_file: str = None):
        if cls._instance is None:
            cls._instance = super(EnvironmentConfigService, cls).__new__(cls)
            cls._instance.environments = {}
            if config_file:
                cls._instance._load_from_file(config_file)
        return cls._instance

    def _load_from_file(self, config_file: str):
        """Load all enabled environments from JSON file once into memory."""
        logger.info(f"Loading environment config from {config_file}")
        if not os.path.exists(config_file):
            raise FileNotFoundError(f"Environment Config file not found: {config_file}")

        with open(config_file, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON format in config file: {config_file}") from e

        if not isinstance(data, list):
            raise ValueError(f"Environment config must be a list of environments: {config_file}")

        enabled_envs = [env for env in data if env.get('enabled', False)]
        logger.info(f"enabled environments: {[env.get('name') for env in enabled_envs]}")

        names = [str(item.get("name", "")).strip().lower() for item in enabled_envs]
        duplicates = sorted(set(name for name in names if names.count(name) > 1))
        if duplicates:
            raise ValueError(f"Duplicate names found in {config_file}: {', '.join(duplicates)}")

        for env in enabled_envs:
            try:
                environment = Environment(**env)
            except ValidationError as e:
                raise ValueError(f"Invalid configuration for environment '{env.get('name')}': {e}") from e
            logger.info(f"environment: {environment.name}, slots: {environment.slots}")
            self.environments[environment.name] = environment

    def get_environment(self, env_name: str) -> Environment:
        """Get one environment by name."""
        return self.environments.get(env_name.strip().lower())

    def get_all_environments(self) -> Dict[str, Environment]:
        """Return all environments stored in memory."""
        return self.environments

    def reload(self, config_file: str):
        """Clear and reload environments."""
        self.environments.clear()
        self._load_from_file(config_file)

    @classmethod
    def reset(cls):
        cls._instance = None

    def __repr__(self):
        return f"EnvironmentConfigService(environments={list(self.environments.keys())})"
