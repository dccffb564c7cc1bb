"""
Configuration loader module for the contact relay.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Type validation of every known key
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from gcontact_relay.utils import resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


# Valid configuration keys and their expected types
VALID_KEYS: dict[str, Any] = {
    # Core relay options
    "parties": list,
    "sync_label": str,
    "lock_timeout_ms": int,
    "log_retention_rows": int,
    "log_error_max_length": int,
    "sync_fields": list,
    # Buffer and lock collaborators
    "buffer_backend": str,
    "buffer_path": str,
    "spreadsheet_id": str,
    "lock_file": str,
    "lock_lease_seconds": int,
    # Logging options
    "verbose": bool,
    "log_dir": str,
    "log_retention_count": int,
    # Auth options
    "auth_timeout": int,
    # API options
    "api_page_size": int,
    "api_max_retries": int,
    "api_initial_retry_delay": (int, float),
    "api_max_retry_delay": (int, float),
    # Daemon options
    "daemon_interval": (str, int),
}

# Keys that must be >= 1 when present
POSITIVE_INT_KEYS = (
    "api_page_size",
    "api_max_retries",
    "auth_timeout",
    "lock_lease_seconds",
)

# Keys that must be >= 0 when present
NON_NEGATIVE_INT_KEYS = (
    "lock_timeout_ms",
    "log_retention_rows",
    "log_error_max_length",
    "log_retention_count",
)


class ConfigLoader:
    """
    YAML configuration file loader.

    Handles loading and basic validation of YAML configuration files
    for the gcontact-relay application.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load()

        # With custom path
        loader = ConfigLoader(config_dir=Path("/custom/path"))
        config = loader.load()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        config_file: str = DEFAULT_CONFIG_FILE,
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.gcontact-relay/ or $GCONTACT_RELAY_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    def _get_config_path(self) -> Path:
        """
        Get the full path to the configuration file.

        Returns:
            Path to the configuration file
        """
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Returns an empty dict if the file doesn't exist, allowing
        commands that don't need configuration to keep working.

        Args:
            path: Path to the configuration file

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path).expanduser()

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        # Handle empty files
        if config is None:
            logger.debug(f"Configuration file is empty: {path}")
            return {}

        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration types and value ranges.

        Unknown keys are ignored with a debug message so that newer
        configuration files keep working with older releases.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            if key not in VALID_KEYS:
                logger.debug(f"Ignoring unknown configuration key: {key}")
                continue

            expected_type = VALID_KEYS[key]
            # bool is an int subclass; never accept it for numeric keys
            is_bool_for_number = isinstance(value, bool) and expected_type is not bool
            if not isinstance(value, expected_type) or is_bool_for_number:
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        for key in ("parties", "sync_fields"):
            if key in config:
                for i, item in enumerate(config[key]):
                    if not isinstance(item, str):
                        raise ConfigError(
                            f"{key}[{i}] must be a string, got {type(item).__name__}"
                        )

        for key in POSITIVE_INT_KEYS:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        for key in NON_NEGATIVE_INT_KEYS:
            if key in config and config[key] < 0:
                raise ConfigError(f"{key} must be >= 0, got {config[key]}")

        for key in ("api_initial_retry_delay", "api_max_retry_delay"):
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Returns:
            Validated configuration dictionary

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:  # Only validate if config is not empty
            self.validate(config)
        return config
