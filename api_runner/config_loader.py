"""
================================================================================
Configuration Loader
================================================================================

YAML-based runner configuration with environment variable override support.

Features:
    - Runner settings (logging, reports directory, token endpoint)
    - Test-mode presets (smoke, full, performance) under ``modes:``
    - Environment variable override (REPORTS_DIR overrides reports.dir)
    - Dot notation path access with default values

================================================================================
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from .errors import ConfigError


# Default configuration file path
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "config.yaml"

# Built-in test-mode presets, used when the config file omits a mode
DEFAULT_MODES: Dict[str, Dict[str, Any]] = {
    "smoke": {
        "folderFilter": ["Authentication", "Profile & User Info"],
        "bail": True,
        "iterations": 1,
    },
    "full": {},
    "performance": {
        "iterations": 5,
        "delayMs": 500,
        "bail": False,
    },
}


class ConfigLoader:
    """
    Configuration loader with YAML and environment variable support.

    Configuration hierarchy (highest to lowest priority):
        1. Environment variables (REPORTS_DIR)
        2. YAML configuration file
        3. Default values

    The loader is created by the caller and handed to whatever needs it;
    there is no shared process-wide instance.

    Usage:
        >>> config = ConfigLoader(Path("config/config.yaml"))
        >>> config.get("reports.dir", "reports")
        'reports'
        >>> config.mode("smoke")["bail"]
        True
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """
        Initialize configuration loader.

        Args:
            config_path: Path to YAML configuration file.
                        Uses DEFAULT_CONFIG_PATH if not specified.
        """
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Dict[str, Any] = {}
        self._load_config()

    @property
    def path(self) -> Path:
        return self._config_path

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            logger.warning(
                f"Configuration file not found: {self._config_path}. "
                f"Using defaults and environment variables only."
            )
            self._config = {}
            return

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML in configuration file: {e}"
            ) from e

        if not isinstance(loaded, dict):
            raise ConfigError(
                f"Configuration file must contain a mapping: {self._config_path}"
            )
        self._config = loaded
        logger.debug(f"Loaded configuration from: {self._config_path}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        First checks environment variables, then YAML config, then default.

        Args:
            key: Dot-notation path (e.g., "reports.dir")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        env_key = key.upper().replace(".", "_")
        env_value = os.environ.get(env_key)
        if env_value is not None:
            return self._convert_type(env_value, default)

        value: Any = self._config
        for part in key.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                value = None

            if value is None:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get entire configuration section.

        Returns:
            Section dictionary or empty dict if not found
        """
        value = self._config.get(section, {})
        return value if isinstance(value, dict) else {}

    def mode(self, name: str) -> Dict[str, Any]:
        """
        Raw run options for a test mode.

        The configured preset is layered over the built-in one so a config
        file only needs to list what it changes.

        Raises:
            ConfigError: If the mode is neither configured nor built in
        """
        configured = self.get_section("modes").get(name)
        if configured is None and name not in DEFAULT_MODES:
            raise ConfigError(f"Unknown test mode: {name}")
        if configured is not None and not isinstance(configured, dict):
            raise ConfigError(f"Test mode '{name}' must be a mapping")

        merged = dict(DEFAULT_MODES.get(name, {}))
        merged.update(configured or {})
        return merged

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()
        logger.info(f"Configuration reloaded from: {self._config_path}")

    def _convert_type(self, value: str, reference: Any) -> Any:
        """
        Convert string value to match reference type.

        Used for environment variables which are always strings.
        """
        if reference is None:
            return value

        if isinstance(reference, bool):
            return value.lower() in ("true", "1", "yes", "on")
        if isinstance(reference, int):
            try:
                return int(value)
            except ValueError:
                return value
        if isinstance(reference, float):
            try:
                return float(value)
            except ValueError:
                return value

        return value


__all__ = [
    "ConfigLoader",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_MODES",
]
