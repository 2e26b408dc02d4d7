import copy
import json
import os
import logging


# Configure logging
logger = logging.getLogger(__name__)

# Values every install has, whatever config.json leaves out
DEFAULTS = {
    "database": "curtain_data.db",
    "upload_folder": "uploads",
    "inventory_import": {
        "sku_prefix": "INV",
    },
    "functions": {
        "base_url": "",
        "timeout": 60,
    },
}

# Environment variables that override a config key
ENV_OVERRIDES = {
    "CURTAIN_DATABASE": ["database"],
    "FUNCTIONS_BASE_URL": ["functions", "base_url"],
}


def _merge(base: dict, override: dict) -> dict:
    """Recursively lay ``override`` over ``base``; nested dicts are merged, anything else replaced."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    def __init__(self, config_path="config.json"):
        if os.path.isabs(config_path):
            self.path = config_path
        else:
            self.path = os.path.join(os.path.dirname(os.path.dirname(__file__)), config_path)
        self.load_error = None
        self.config = self._load_config()

    def _load_config(self):
        file_config = {}
        if os.path.exists(self.path):
            try:
                with open(self.path, "r") as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                self.load_error = str(e)
                logger.error(f"Invalid JSON in {self.path}; using defaults. {e}")

        config = _merge(DEFAULTS, file_config)
        for env_var, keys in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value:
                self._set(config, keys, value)
                logger.debug(f"{'.'.join(keys)} taken from {env_var}")
        return config

    @staticmethod
    def _set(config, keys, value):
        for key in keys[:-1]:
            if not isinstance(config.get(key), dict):
                config[key] = {}
            config = config[key]
        config[keys[-1]] = value

    def get(self, *keys, default=None):
        """
        Access nested values.
        Supports both:
          get("a", "b", "c")  and  get("a.b.c")
        """
        if len(keys) == 1 and isinstance(keys[0], str) and "." in keys[0]:
            keys = keys[0].split(".")

        node = self.config
        for k in keys:
            if isinstance(node, dict) and k in node:
                node = node[k]
            else:
                return default
        return node
