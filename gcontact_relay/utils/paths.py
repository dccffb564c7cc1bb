"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the gcontact-relay configuration
directory across all modules.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".gcontact-relay"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "GCONTACT_RELAY_CONFIG_DIR"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. GCONTACT_RELAY_CONFIG_DIR environment variable
        3. Default directory (~/.gcontact-relay)

    Args:
        config_dir: Optional explicit configuration directory path.
                   Can be a Path object or string.

    Returns:
        Resolved Path to the configuration directory (expanduser and resolve applied)
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def default_buffer_path(config_dir: Path) -> Path:
    """Default location of the SQLite buffer inside a config directory."""
    return config_dir / "buffer.db"


def default_lock_path(config_dir: Path) -> Path:
    """Default location of the shared lock file inside a config directory."""
    return config_dir / "relay.lock"


def party_slug(party: str) -> str:
    """
    File-name-safe form of a party identifier.

    Party identifiers are usually email addresses; anything outside
    [A-Za-z0-9._-] is replaced so the name is safe on every platform.
    """
    return "".join(c if c.isalnum() or c in "._-" else "_" for c in party)


def token_file_name(party: str) -> str:
    """File name of a party's stored OAuth token."""
    return f"token_{party_slug(party)}.json"
