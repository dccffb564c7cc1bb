"""
Relay configuration and party identity.

Collects every setting the reconciliation core needs into one immutable
value that is injected into all components.

Configuration file format (config.yaml):

    parties:
      - alice@example.com
      - bob@example.com
    sync_label: "Synced Contacts"
    lock_timeout_ms: 30000
    log_retention_rows: 500
    log_error_max_length: 500
    sync_fields: [names, emailAddresses, phoneNumbers]
    buffer_backend: sqlite        # or "sheet"
    buffer_path: ~/.gcontact-relay/buffer.db
    spreadsheet_id: 1AbC...       # required for the sheet backend
    lock_file: ~/.gcontact-relay/relay.lock  # sqlite default; sheet uses a lease
    lock_lease_seconds: 900

Notes:
    - parties must name exactly two distinct identities
    - sync_fields defaults to every supported field group
    - All other keys have defaults (see DEFAULT_* constants)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gcontact_relay.config.loader import ConfigLoader
from gcontact_relay.sync.record import ALL_FIELDS
from gcontact_relay.utils import resolve_config_dir
from gcontact_relay.utils.paths import default_buffer_path, default_lock_path

logger = logging.getLogger(__name__)

# Default values for optional settings
DEFAULT_SYNC_LABEL = "Synced Contacts"
DEFAULT_LOCK_TIMEOUT_MS = 30_000
DEFAULT_LOG_RETENTION_ROWS = 500
DEFAULT_LOG_ERROR_MAX_LENGTH = 500
DEFAULT_LOCK_LEASE_SECONDS = 900

# Buffer storage backends
BACKEND_SQLITE = "sqlite"
BACKEND_SHEET = "sheet"
VALID_BACKENDS = (BACKEND_SQLITE, BACKEND_SHEET)


class ConfigurationError(Exception):
    """Raised when the relay configuration is invalid or a party is unknown."""

    pass


@dataclass(frozen=True)
class PartyIdentity:
    """
    The identity a run executes as.

    Validated once against the two configured parties, then passed to
    every component instead of being looked up from the session.
    """

    identifier: str

    def __str__(self) -> str:
        return self.identifier


@dataclass(frozen=True)
class RelayConfig:
    """
    Immutable relay configuration.

    Attributes:
        sync_label: Contact group holding the records each party publishes
                    and receiving the records it creates
        parties: The two party identifiers
        lock_timeout_ms: How long a run waits for the shared lock
        log_retention_rows: Run log rows kept after each append
        log_error_max_length: Truncation length of the errors column
        sync_fields: People API field groups that are synced
        buffer_backend: "sqlite" or "sheet"
        buffer_path: SQLite buffer file (sqlite backend)
        spreadsheet_id: Google Sheets buffer (sheet backend)
        lock_file: Path of the named file lock. None means the lock is a
                   lease kept in the spreadsheet (sheet backend only)
        lock_lease_seconds: Lifetime of a spreadsheet lease; must exceed
                            the longest run

    Usage:
        config = load_config()
        me = config.party("alice@example.com")
        other = config.other_party(me)
    """

    sync_label: str
    parties: tuple[str, str]
    lock_timeout_ms: int
    log_retention_rows: int
    log_error_max_length: int
    sync_fields: tuple[str, ...]
    buffer_backend: str = BACKEND_SQLITE
    buffer_path: Path | None = None
    spreadsheet_id: str | None = None
    lock_file: Path | None = None
    lock_lease_seconds: int = DEFAULT_LOCK_LEASE_SECONDS

    def __post_init__(self) -> None:
        if not isinstance(self.sync_label, str) or not self.sync_label.strip():
            raise ConfigurationError("sync_label cannot be empty")

        if len(self.parties) != 2:
            raise ConfigurationError(
                f"Exactly two parties are required, got {len(self.parties)}"
            )
        for party in self.parties:
            if not isinstance(party, str) or not party.strip():
                raise ConfigurationError("Party identifiers must be non-empty strings")
        if self.parties[0] == self.parties[1]:
            raise ConfigurationError(
                f"Party identifiers must be distinct, got {self.parties[0]!r} twice"
            )

        for key in ("lock_timeout_ms", "log_retention_rows", "log_error_max_length"):
            value = getattr(self, key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigurationError(
                    f"{key} must be a non-negative integer, got {value!r}"
                )

        if not self.sync_fields:
            raise ConfigurationError("sync_fields cannot be empty")
        unknown = [f for f in self.sync_fields if f not in ALL_FIELDS]
        if unknown:
            raise ConfigurationError(
                f"Unknown sync_fields: {', '.join(unknown)}. "
                f"Supported: {', '.join(ALL_FIELDS)}"
            )

        if self.buffer_backend not in VALID_BACKENDS:
            raise ConfigurationError(
                f"buffer_backend must be one of {', '.join(VALID_BACKENDS)}, "
                f"got {self.buffer_backend!r}"
            )
        if self.buffer_backend == BACKEND_SHEET and not self.spreadsheet_id:
            raise ConfigurationError(
                "spreadsheet_id is required when buffer_backend is 'sheet'"
            )
        if self.buffer_backend == BACKEND_SQLITE and self.buffer_path is None:
            raise ConfigurationError(
                "buffer_path is required when buffer_backend is 'sqlite'"
            )
        # Without a file lock, runs are serialized by a lease in the spreadsheet
        if self.lock_file is None and self.buffer_backend != BACKEND_SHEET:
            raise ConfigurationError(
                "lock_file is required unless buffer_backend is 'sheet'"
            )

        lease = self.lock_lease_seconds
        if not isinstance(lease, int) or isinstance(lease, bool) or lease < 1:
            raise ConfigurationError(
                f"lock_lease_seconds must be a positive integer, got {lease!r}"
            )

    def party(self, identifier: str | PartyIdentity) -> PartyIdentity:
        """
        Validate that an identifier names one of the configured parties.

        Raises:
            ConfigurationError: If the identifier is not a configured party
        """
        value = str(identifier)
        if value not in self.parties:
            raise ConfigurationError(
                f"Unknown party {value!r}. "
                f"Must be one of: {', '.join(self.parties)}"
            )
        return PartyIdentity(value)

    def other_party(self, identifier: str | PartyIdentity) -> PartyIdentity:
        """Return the party that is not the given one."""
        me = self.party(identifier)
        other = self.parties[1] if me.identifier == self.parties[0] else self.parties[0]
        return PartyIdentity(other)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], config_dir: Path | None = None
    ) -> RelayConfig:
        """
        Create a RelayConfig from a configuration dictionary.

        Args:
            data: Parsed configuration (see module docstring)
            config_dir: Directory used to derive default file locations

        Returns:
            RelayConfig instance

        Raises:
            ConfigurationError: If required keys are missing or invalid
        """
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration must be a dictionary, got {type(data).__name__}"
            )

        parties = data.get("parties")
        if not isinstance(parties, list):
            raise ConfigurationError(
                "parties must be a list of the two party identifiers"
            )

        sync_fields = data.get("sync_fields", list(ALL_FIELDS))
        if not isinstance(sync_fields, list):
            raise ConfigurationError(
                f"sync_fields must be a list, got {type(sync_fields).__name__}"
            )

        resolved_dir = resolve_config_dir(config_dir)
        backend = data.get("buffer_backend", BACKEND_SQLITE)

        buffer_path = _optional_path(data.get("buffer_path"))
        if buffer_path is None and backend == BACKEND_SQLITE:
            buffer_path = default_buffer_path(resolved_dir)

        # The sheet backend serves parties on separate machines, where a local
        # lock file would not exclude anyone; it only uses a file when told to
        lock_file = _optional_path(data.get("lock_file"))
        if lock_file is None and backend != BACKEND_SHEET:
            lock_file = default_lock_path(resolved_dir)

        return cls(
            sync_label=data.get("sync_label", DEFAULT_SYNC_LABEL),
            parties=tuple(parties),  # type: ignore[arg-type]
            lock_timeout_ms=data.get("lock_timeout_ms", DEFAULT_LOCK_TIMEOUT_MS),
            log_retention_rows=data.get(
                "log_retention_rows", DEFAULT_LOG_RETENTION_ROWS
            ),
            log_error_max_length=data.get(
                "log_error_max_length", DEFAULT_LOG_ERROR_MAX_LENGTH
            ),
            sync_fields=_unique(sync_fields),
            buffer_backend=backend,
            buffer_path=buffer_path,
            spreadsheet_id=data.get("spreadsheet_id"),
            lock_file=lock_file,
            lock_lease_seconds=data.get(
                "lock_lease_seconds", DEFAULT_LOCK_LEASE_SECONDS
            ),
        )

    def __repr__(self) -> str:
        """Return a readable string representation."""
        return (
            f"RelayConfig(parties={self.parties!r}, "
            f"sync_label={self.sync_label!r}, "
            f"backend={self.buffer_backend!r}, "
            f"fields={len(self.sync_fields)})"
        )


def _optional_path(value: Any) -> Path | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"Expected a path string, got {type(value).__name__}")
    return Path(value).expanduser()


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    """Deduplicate while keeping the first occurrence order."""
    return tuple(dict.fromkeys(values))


def load_config(
    config_dir: Path | str | None = None, config_file: Path | str | None = None
) -> RelayConfig:
    """
    Load the relay configuration.

    Resolution order for config directory:
    1. Explicit config_dir parameter (if provided)
    2. GCONTACT_RELAY_CONFIG_DIR environment variable (if set)
    3. Default: ~/.gcontact-relay

    Args:
        config_dir: Configuration directory path
        config_file: Explicit configuration file; defaults to
                     <config_dir>/config.yaml

    Returns:
        RelayConfig instance

    Raises:
        ConfigError: If the YAML file cannot be read or has wrong types
        ConfigurationError: If the configuration is incomplete or invalid
    """
    resolved_dir = resolve_config_dir(config_dir)
    loader = ConfigLoader(config_dir=resolved_dir)

    if config_file is not None:
        data = loader.load_from_file(config_file)
    else:
        data = loader.load()

    if not data:
        raise ConfigurationError(
            f"No configuration found in {resolved_dir}. "
            "Run 'gcontact-relay init-config' and list the two parties."
        )

    loader.validate(data)
    logger.debug(f"Loaded relay config from {resolved_dir}")
    return RelayConfig.from_dict(data, config_dir=resolved_dir)
