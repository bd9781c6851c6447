"""Configuration management for the Telegram bot.

Provides a ConfigManager class that loads the bot configuration from a YAML
file, writes a default file on first start, and turns the "bot" section into
validated BotOptions.
"""
import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict

import yaml

from tgbot.errors import ConfigError
from tgbot.options import BotOptions, options_from_mapping

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "bot": {
        # seconds; null disables the per-update deadline
        "timeout": 30,
        "limit": 100,
        "poll_timeout": 50,
        "buffer_size": None,
        "workers_num": None,
        "auto_setup_commands": True,
        "drain_on_stop": True,
        "allowed_updates": ["message", "edited_message", "callback_query"],
    },
    "features": {
        "echo": {"enabled": True},
        "ping": {"enabled": True, "hidden": False},
    },
    "logging": {
        "level": "INFO",
    },
}


def _read_yaml(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"config file {path} is not valid YAML: {e}") from e


def _write_yaml(path: str, data: Dict[str, Any]) -> None:
    # temp file + rename so a crash never leaves half a config behind
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    os.replace(tmp_path, path)


@dataclass
class ConfigManager:
    """Loads bot configuration from a YAML file.

    Attributes:
        path: Path to the YAML configuration file
    """
    path: str
    _config: Dict[str, Any] = field(init=False, default_factory=dict)

    def load(self) -> Dict[str, Any]:
        """Load configuration from file, creating defaults if needed.

        Raises:
            ConfigError: If the file exists but is not a YAML mapping
        """
        if not os.path.exists(self.path):
            logger.info("Config file %s not found, creating default config", self.path)
            _write_yaml(self.path, DEFAULT_CONFIG)
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            return self._config

        data = _read_yaml(self.path)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"config file {self.path} must contain a mapping")

        # Merge defaults with existing config, one level deep per section
        merged = copy.deepcopy(DEFAULT_CONFIG)
        for k, v in data.items():
            if isinstance(v, dict) and isinstance(merged.get(k), dict):
                merged[k].update(v)
            else:
                merged[k] = v
        self._config = merged
        return self._config

    def get(self) -> Dict[str, Any]:
        """Get the current configuration dictionary."""
        return self._config

    def feature(self, name: str) -> Dict[str, Any]:
        """Get one feature section, empty if absent."""
        return (self._config.get("features") or {}).get(name) or {}

    def log_level(self) -> str:
        return str((self._config.get("logging") or {}).get("level", "INFO")).upper()

    def bot_options(self, **overrides: Any) -> BotOptions:
        """Build BotOptions from the "bot" section.

        Args:
            overrides: Non-scalar options (handlers, pools, cancel scope)

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        return options_from_mapping(self._config.get("bot"), **overrides)
