"""
gcontact_relay.utils - Utility module

Common utilities including logging configuration.
"""

from gcontact_relay.utils.normalization import normalize_phone, phone_key
from gcontact_relay.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = [
    "normalize_phone",
    "phone_key",
    "resolve_config_dir",
    "DEFAULT_CONFIG_DIR",
]
