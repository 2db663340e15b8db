"""Configuration management for the Slackware console.

This module provides YAML-based configuration loading and saving,
following the XDG Base Directory Specification.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError as PydanticValidationError

from .models import ConsoleConfig

logger = structlog.get_logger(__name__)

APP_DIR_NAME = "slackware-console"


class ConfigFileError(Exception):
    """Raised when the console's own configuration file is unusable."""


def get_config_dir() -> Path:
    """Get the configuration directory following XDG spec.

    Returns:
        Path to the configuration directory.
    """
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    return base / APP_DIR_NAME


def get_state_dir() -> Path:
    """Get the state directory (logs) following XDG spec."""
    xdg_state_home = os.environ.get("XDG_STATE_HOME")
    base = Path(xdg_state_home) if xdg_state_home else Path.home() / ".local" / "state"
    return base / APP_DIR_NAME


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    return get_config_dir() / "config.yaml"


def get_default_keybindings_path() -> Path:
    """Get the default key bindings file path."""
    return get_config_dir() / "keybindings.toml"


def get_default_log_path() -> Path:
    """Get the default log file path."""
    return get_state_dir() / "console.log"


class YamlConfigLoader:
    """YAML-based configuration loader."""

    def load(self, path: str) -> dict[str, Any]:
        """Load configuration from a YAML file.

        Args:
            path: Path to the configuration file.

        Returns:
            Configuration dictionary.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ConfigFileError: If the file is not valid YAML or not a mapping.
        """
        config_path = Path(path)

        if not config_path.exists():
            logger.debug("config_file_not_found", path=path)
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            data = yaml.safe_load(config_path.read_text())
        except yaml.YAMLError as e:
            raise ConfigFileError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigFileError(f"Expected a mapping at the top of {path}")
        return data

    def save(self, config: dict[str, Any], path: str) -> None:
        """Save configuration to a YAML file.

        Args:
            config: Configuration dictionary.
            path: Path to save the configuration.
        """
        config_path = Path(path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        content = yaml.safe_dump(config, default_flow_style=False, sort_keys=False)
        config_path.write_text(content)

        logger.info("config_saved", path=path)


class ConfigManager:
    """Manages the console configuration.

    Provides high-level methods for loading, saving, and accessing
    configuration values.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Optional path to configuration file.
                        Uses default path if not provided.
        """
        self.config_path = config_path or get_default_config_path()
        self._loader = YamlConfigLoader()
        self._config: ConsoleConfig | None = None

    def load(self) -> ConsoleConfig:
        """Load configuration from file.

        Returns:
            ConsoleConfig with loaded values, or defaults if file doesn't exist.

        Raises:
            ConfigFileError: If the file is malformed or fails validation.
        """
        try:
            data = self._loader.load(str(self.config_path))
        except FileNotFoundError:
            logger.info("using_default_config")
            self._config = ConsoleConfig()
            return self._config

        try:
            self._config = ConsoleConfig.model_validate(data)
        except PydanticValidationError as e:
            raise ConfigFileError(f"Invalid configuration in {self.config_path}: {e}") from e

        logger.debug("config_loaded", path=str(self.config_path))
        return self._config

    def save(self, config: ConsoleConfig | None = None) -> None:
        """Save configuration to file.

        Args:
            config: Configuration to save. Uses current config if not provided.
        """
        if config is not None:
            self._config = config

        if self._config is None:
            self._config = ConsoleConfig()

        self._loader.save(self._serialize_config(self._config), str(self.config_path))

    def get_config(self) -> ConsoleConfig:
        """Get the current configuration, loading from file if needed."""
        if self._config is None:
            self.load()
        return self._config or ConsoleConfig()

    def init_config(self, force: bool = False) -> bool:
        """Initialize a new configuration file with defaults.

        Args:
            force: If True, overwrite existing configuration.

        Returns:
            True if configuration was created, False if it already exists.
        """
        if self.config_path.exists() and not force:
            logger.info("config_exists", path=str(self.config_path))
            return False

        self._loader.save(self._serialize_config(ConsoleConfig(), full=True), str(self.config_path))
        self._config = ConsoleConfig()
        logger.info("config_initialized", path=str(self.config_path))
        return True

    def _serialize_config(self, config: ConsoleConfig, full: bool = False) -> dict[str, Any]:
        """Serialize ConsoleConfig to a YAML-friendly dictionary.

        Args:
            config: ConsoleConfig to serialize.
            full: Include values equal to their defaults.

        Returns:
            Dictionary representation.
        """
        return config.model_dump(mode="json", exclude_defaults=not full)
