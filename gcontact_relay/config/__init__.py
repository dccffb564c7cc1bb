"""
gcontact_relay.config - Configuration management module

Contains configuration loading, validation, and default settings.
"""

from gcontact_relay.config.loader import ConfigError, ConfigLoader
from gcontact_relay.config.relay_config import (
    ConfigurationError,
    PartyIdentity,
    RelayConfig,
    load_config,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "ConfigurationError",
    "PartyIdentity",
    "RelayConfig",
    "load_config",
]
