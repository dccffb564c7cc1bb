"""
Configuration file generator for the contact relay.

Provides functionality to generate a documented default configuration
file covering every option the relay reads.
"""

import logging
from pathlib import Path
from typing import Optional

from gcontact_relay.sync.record import ALL_FIELDS

logger = logging.getLogger(__name__)


def generate_default_config(parties: Optional[list[str]] = None) -> str:
    """
    Generate default YAML configuration with all options documented.

    Args:
        parties: Optional party identifiers to pre-fill. Placeholders
                 are written when omitted.

    Returns:
        String containing YAML configuration with comments
    """
    first, second = (parties or ["party-one@example.com", "party-two@example.com"])[:2]
    field_lines = "\n".join(f"#   - {name}" for name in ALL_FIELDS)

    return f"""# Google Contacts Relay Configuration
# ===================================
#
# Both parties point at the same buffer and lock. Each party runs
#   gcontact-relay sync --party <its identifier>
# on its own schedule.

# Parties
# -------

# The two identities being synchronized (usually the Google account emails).
# Required.
parties:
  - {first}
  - {second}

# Contact group whose members are published, and which receives the
# contacts created from the other party.
# Default: Synced Contacts
sync_label: "Synced Contacts"


# Buffer
# ------

# Where the shared buffer lives: "sqlite" (a file both parties can reach)
# or "sheet" (a Google Sheets spreadsheet both accounts can edit).
# Default: sqlite
buffer_backend: sqlite

# SQLite buffer file
# Default: <config dir>/buffer.db
# buffer_path: ~/.gcontact-relay/buffer.db

# Spreadsheet id for the sheet backend (the long id in the sheet URL)
# spreadsheet_id: 1AbCdEf...


# Locking
# -------

# Named lock shared by both parties. Only one run may hold it at a time.
# Default for the sqlite backend: <config dir>/relay.lock
# The sheet backend keeps a lease in the spreadsheet's Lock tab instead,
# unless a lock_file is set here.
# lock_file: ~/.gcontact-relay/relay.lock

# Lifetime of the spreadsheet lease (seconds). A run that dies without
# releasing it blocks the other party until it runs out.
# Default: 900
# lock_lease_seconds: 900

# How long a run waits for the lock before giving up (milliseconds)
# Default: 30000
lock_timeout_ms: 30000


# Run log
# -------

# Number of run log rows kept
# Default: 500
log_retention_rows: 500

# Maximum length of the errors column
# Default: 500
log_error_max_length: 500


# Fields
# ------

# People API field groups to sync. Default: all of them.
# sync_fields:
{field_lines}


# Logging Options
# ---------------

# Enable verbose output with detailed logging
# Default: false
# verbose: true

# Directory for log files
# log_dir: ~/.gcontact-relay/logs

# Number of log files to keep
# Default: 10
# log_retention_count: 10


# Daemon
# ------

# Interval between runs in daemon mode (30s, 15m, 1h, 1d)
# Default: 15m
# daemon_interval: 15m
"""


def save_config_file(
    config_path: Path, overwrite: bool = False, parties: Optional[list[str]] = None
) -> tuple[bool, Optional[str]]:
    """
    Save default configuration file to specified path.

    Creates parent directories if they don't exist and saves
    the configuration with secure permissions.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file. If False, fail if file exists.
        parties: Optional party identifiers to pre-fill

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    try:
        config_path = config_path.expanduser().resolve()

        if config_path.exists() and not overwrite:
            return (
                False,
                f"Configuration file already exists: {config_path}\n"
                "Use --force to overwrite.",
            )

        # Create parent directories with secure permissions
        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)

        config_path.write_text(generate_default_config(parties), encoding="utf-8")

        # Set secure file permissions (readable/writable by owner only)
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)
