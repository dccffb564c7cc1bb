"""
Interfaces of the external collaborators used by the reconciliation core.

The core never talks to Google, SQLite or the filesystem directly; it is
handed objects satisfying these protocols:
- Directory: one party's contact directory (PeopleAPI)
- Buffer: the shared intermediary (BufferDatabase, SheetBuffer)
- RunLog: where one row per run is recorded (same implementations)
- Lock: the named mutual-exclusion lock shared by both parties (FileLock)
"""

from __future__ import annotations

from typing import Protocol

from gcontact_relay.sync.matcher import LocalIndex
from gcontact_relay.sync.record import BufferRow, ContactRecord
from gcontact_relay.sync.stats import RunLogEntry


class Directory(Protocol):
    def list_by_label(self, label: str) -> list[ContactRecord]: ...

    def list_all_indexed(self) -> LocalIndex: ...

    def create(self, record: ContactRecord) -> str: ...

    def update(
        self, resource_name: str, etag: str | None, record: ContactRecord
    ) -> object: ...

    def add_to_label(self, resource_name: str, label: str) -> None: ...

    def refresh_token(self, resource_name: str) -> str | None: ...


class Buffer(Protocol):
    def read_all(self) -> list[BufferRow]: ...

    def upsert(self, fingerprint: str, row: BufferRow) -> None: ...

    def mark_consumed(self, fingerprint: str) -> None: ...


class RunLog(Protocol):
    def append(self, entry: RunLogEntry) -> None: ...


class Lock(Protocol):
    def acquire(self, timeout_ms: int) -> bool: ...

    def release(self) -> None: ...
