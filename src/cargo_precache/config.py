# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Configuration loading and validation for cargo-precache."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".cargo_precache.yml"


class ConfigurationError(Exception):
    """Raised when configuration validation fails critically."""

    pass


class Config:
    """Configuration for cargo-precache.

    Loads configuration from .cargo_precache.yml with validation and defaults.
    Command-line flags take precedence over every value here.
    """

    DEFAULTS = {
        "temp_dir": "",  # holding area root for live runs; empty means $TEMP/$TMPDIR
        "profile": "debug",
        "lock_file_name": ".cargo-lock",
        "cargo_home": "",  # empty means $CARGO_HOME or ~/.cargo
        "prune_archives": True,
        "purge_quarantine": False,
    }

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses default location.
        """
        if config_path is None:
            config_path = Path.cwd() / CONFIG_FILE_NAME

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load and validate configuration from file."""
        if not self.config_path.exists():
            logger.debug(f"Configuration file not found at {self.config_path}, using defaults")
            self._config = self.DEFAULTS.copy()
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)

            if loaded_config is None:
                logger.warning("Configuration file is empty, using defaults")
                self._config = self.DEFAULTS.copy()
                return

            if not isinstance(loaded_config, dict):
                logger.warning(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(loaded_config)}, using defaults"
                )
                self._config = self.DEFAULTS.copy()
                return

            self._config = self.DEFAULTS.copy()
            self._validate_and_merge(loaded_config)

        except yaml.YAMLError as e:
            logger.warning(
                f"Error parsing configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(
                f"Error reading configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()

    def _validate_and_merge(self, loaded_config: Dict[str, Any]) -> None:
        """Validate loaded configuration and merge with defaults.

        Invalid parameters are logged as warnings and defaults are used.
        """
        for key, value in loaded_config.items():
            if key not in self.DEFAULTS:
                logger.warning(f"Unknown configuration parameter '{key}', ignoring")
                continue

            if not self._validate_parameter(key, value):
                logger.warning(
                    f"Invalid value for '{key}': {value}, using default {self.DEFAULTS[key]!r}"
                )
                continue

            self._config[key] = value

    def _validate_parameter(self, key: str, value: Any) -> bool:
        """Validate a configuration parameter.

        Returns:
            True if valid, False if invalid
        """
        expected_type = type(self.DEFAULTS[key])
        if not isinstance(value, expected_type):
            return False

        if key in ("profile", "lock_file_name"):
            # Plain directory entry names only
            if value in ("", ".", ".."):
                return False
            return "/" not in value and "\\" not in value

        return True

    def get_temp_root(self, override: Optional[str] = None) -> Path:
        """Resolve the holding-area root for a live run.

        Order: override, temp_dir, $TEMP, $TMPDIR.

        Raises:
            ConfigurationError: If none of them is set.
        """
        candidates = (override, self.temp_dir, os.environ.get("TEMP"), os.environ.get("TMPDIR"))
        for candidate in candidates:
            if candidate:
                return Path(candidate)
        raise ConfigurationError(
            "No temp directory configured: pass --temp, set temp_dir in "
            f"{CONFIG_FILE_NAME}, or set TEMP or TMPDIR"
        )

    @property
    def temp_dir(self) -> str:
        """Configured holding-area root, empty when unset."""
        value = self._config["temp_dir"]
        assert isinstance(value, str)
        return value

    @property
    def profile(self) -> str:
        """Build profile directory under the target directory."""
        value = self._config["profile"]
        assert isinstance(value, str)
        return value

    @property
    def lock_file_name(self) -> str:
        """File directly under the build root that is never deleted."""
        value = self._config["lock_file_name"]
        assert isinstance(value, str)
        return value

    @property
    def cargo_home(self) -> str:
        """Cargo home override, empty when unset."""
        value = self._config["cargo_home"]
        assert isinstance(value, str)
        return value

    @property
    def prune_archives(self) -> bool:
        """Whether unused .crate archives under registry/cache are deleted."""
        value = self._config["prune_archives"]
        assert isinstance(value, bool)
        return value

    @property
    def purge_quarantine(self) -> bool:
        """Whether the holding area is removed at the end of a live run."""
        value = self._config["purge_quarantine"]
        assert isinstance(value, bool)
        return value
