"""
Named lock shared by both parties.

Two implementations of acquire(timeout_ms) / release():

- FileLock holds an exclusive flock on a lock file for the whole run. Both
  parties must see the same file, so it only works on one host or on a
  filesystem with working flock semantics.
- LeaseLock keeps a lease (owner, token, expiry) in the shared store itself,
  so parties on separate machines exclude each other through the same
  spreadsheet they exchange rows through.
"""

import fcntl
import logging
import os
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import IO, Optional, Protocol

logger = logging.getLogger(__name__)

# Delay between two acquisition attempts
POLL_INTERVAL = 0.05  # seconds

# Lease defaults
DEFAULT_LEASE_SECONDS = 900
DEFAULT_LEASE_POLL_INTERVAL = 2.0  # seconds
DEFAULT_LEASE_SETTLE_SECONDS = 2.0  # seconds


class FileLock:
    """
    Exclusive lock on a file, acquired with a timeout.

    Every acquire opens its own file description, so two FileLock objects
    on the same path exclude each other even inside one process.

    Usage:
        lock = FileLock(Path("~/.gcontact-relay/relay.lock"))
        if lock.acquire(timeout_ms=30000):
            try:
                ...
            finally:
                lock.release()
    """

    def __init__(self, lock_file: Path | str):
        self.lock_file = Path(lock_file).expanduser()
        self._fd: Optional[IO[str]] = None

    @property
    def is_held(self) -> bool:
        """True while this object holds the lock."""
        return self._fd is not None

    def _try_lock(self) -> Optional[IO[str]]:
        fd = open(self.lock_file, "a+")
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            fd.close()
            return None
        return fd

    def acquire(self, timeout_ms: int) -> bool:
        """
        Try to take the lock, polling until the timeout expires.

        Args:
            timeout_ms: Maximum wait in milliseconds (0 tries exactly once)

        Returns:
            True if the lock was acquired, False on timeout
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + timeout_ms / 1000.0

        while True:
            fd = self._try_lock()
            if fd is not None:
                fd.seek(0)
                fd.truncate()
                fd.write(f"{os.getpid()}\n{datetime.now().isoformat()}\n")
                fd.flush()
                self._fd = fd
                logger.debug(f"Acquired lock {self.lock_file}")
                return True

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(f"Timed out waiting for lock {self.lock_file}")
                return False
            time.sleep(min(POLL_INTERVAL, remaining))

    def release(self) -> None:
        """Release the lock. Does nothing if it is not held."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_UN)
        finally:
            fd.close()
        logger.debug(f"Released lock {self.lock_file}")


class LeaseStore(Protocol):
    """Storage for the single lease record: [owner, token, expires_at]."""

    def read_lease(self) -> list[str]: ...

    def write_lease(self, cells: list[str]) -> None: ...


def _lease_expired(expires_at: str, now: datetime) -> bool:
    try:
        expires = datetime.fromisoformat(expires_at)
    except (TypeError, ValueError):
        return True
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return expires <= now


class LeaseLock:
    """
    Lock held as an expiring lease in a store both parties share.

    acquire() writes its own lease when the slot is free or expired, waits
    for concurrent writers to land, then reads the slot back: only the
    writer whose token survived holds the lock. A run that dies without
    releasing blocks the other party until the lease expires, so
    lease_seconds must exceed the longest run.

    Usage:
        lock = LeaseLock(sheet, owner="alice@example.com")
        if lock.acquire(timeout_ms=30000):
            try:
                ...
            finally:
                lock.release()
    """

    def __init__(
        self,
        store: LeaseStore,
        owner: str,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        poll_interval: float = DEFAULT_LEASE_POLL_INTERVAL,
        settle_seconds: float = DEFAULT_LEASE_SETTLE_SECONDS,
    ):
        self.store = store
        self.owner = owner
        self.lease_seconds = lease_seconds
        self.poll_interval = poll_interval
        self.settle_seconds = settle_seconds
        self._token: Optional[str] = None

    @property
    def is_held(self) -> bool:
        """True while this object holds the lease."""
        return self._token is not None

    def _current(self) -> tuple[str, str, str]:
        cells = list(self.store.read_lease()) + ["", "", ""]
        return cells[0], cells[1], cells[2]

    def _try_lease(self, token: str) -> bool:
        now = datetime.now(timezone.utc)
        owner, held_token, expires_at = self._current()
        if held_token and not _lease_expired(expires_at, now):
            logger.debug(f"Lease held by {owner} until {expires_at}")
            return False
        if held_token:
            logger.warning(f"Taking over expired lease of {owner} ({expires_at})")

        expires = now + timedelta(seconds=self.lease_seconds)
        self.store.write_lease([self.owner, token, expires.isoformat()])

        # Last writer wins; whoever reads back their own token holds the lease
        if self.settle_seconds > 0:
            time.sleep(self.settle_seconds)
        return self._current()[1] == token

    def acquire(self, timeout_ms: int) -> bool:
        """
        Try to take the lease, polling until the timeout expires.

        Args:
            timeout_ms: Maximum wait in milliseconds (0 tries exactly once)

        Returns:
            True if the lease was acquired, False on timeout
        """
        deadline = time.monotonic() + timeout_ms / 1000.0
        token = uuid.uuid4().hex

        while True:
            if self._try_lease(token):
                self._token = token
                logger.debug(f"Acquired lease as {self.owner}")
                return True

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(f"Timed out waiting for lease as {self.owner}")
                return False
            time.sleep(min(self.poll_interval, remaining))

    def release(self) -> None:
        """Clear the lease if this object still holds it."""
        if self._token is None:
            return
        token, self._token = self._token, None
        try:
            if self._current()[1] != token:
                logger.warning(f"Lease of {self.owner} was taken over before release")
                return
            self.store.write_lease(["", "", ""])
        except Exception as e:
            # The lease still runs out at its expiry time
            logger.error(f"Failed to release lease as {self.owner}: {e}")
            return
        logger.debug(f"Released lease as {self.owner}")
