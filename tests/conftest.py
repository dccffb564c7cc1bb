"""
Shared fixtures for the relay tests.

Provides an in-memory directory standing in for the People API, a lock that
can be told to refuse acquisition, and a two-party configuration.
"""

import dataclasses
from pathlib import Path

import pytest

from gcontact_relay.api.people_api import DirectoryWriteError
from gcontact_relay.config.relay_config import RelayConfig
from gcontact_relay.storage.db import BufferDatabase
from gcontact_relay.sync.matcher import LocalIndex, build_index
from gcontact_relay.sync.record import ContactRecord, FieldItem

ALICE = "alice@example.com"
BOB = "bob@example.com"
LABEL = "Synced Contacts"


def make_record(
    name: str | None = None,
    emails: tuple[str, ...] = (),
    phones: tuple[tuple[str, str], ...] = (),
    resource_name: str | None = None,
    etag: str | None = None,
) -> ContactRecord:
    """Build a record with a display name, emails and (number, type) phones."""
    names = []
    if name:
        given, _, family = name.partition(" ")
        attributes = {"displayName": name, "givenName": given}
        if family:
            attributes["familyName"] = family
        names.append(FieldItem(attributes))
    return ContactRecord(
        resource_name=resource_name,
        etag=etag,
        names=names,
        email_addresses=[FieldItem({"value": e}) for e in emails],
        phone_numbers=[FieldItem({"value": v, "type": t}) for v, t in phones],
    )


class FakeDirectory:
    """In-memory contact directory of one party."""

    def __init__(self) -> None:
        self.records: dict[str, ContactRecord] = {}
        self.labels: dict[str, list[str]] = {}
        self.created: list[str] = []
        self.updated: list[tuple[str, str | None]] = []
        self.fail_writes = False
        self.fail_labels = False
        self._counter = 0

    def _next_id(self) -> int:
        self._counter += 1
        return self._counter

    def add(self, record: ContactRecord, labels: tuple[str, ...] = (LABEL,)) -> str:
        """Seed a record as if the user had created it."""
        n = self._next_id()
        resource_name = record.resource_name or f"people/c{n}"
        self.records[resource_name] = dataclasses.replace(
            record, resource_name=resource_name, etag=f"etag-{n}"
        )
        for label in labels:
            self.labels.setdefault(label, []).append(resource_name)
        return resource_name

    def list_by_label(self, label: str) -> list[ContactRecord]:
        return [self.records[rn] for rn in self.labels.get(label, [])]

    def list_all_indexed(self) -> LocalIndex:
        return build_index(self.records.values())

    def create(self, record: ContactRecord) -> str:
        if self.fail_writes:
            raise DirectoryWriteError("create rejected", status_code=400)
        n = self._next_id()
        resource_name = f"people/c{n}"
        self.records[resource_name] = dataclasses.replace(
            record, resource_name=resource_name, etag=f"etag-{n}"
        )
        self.created.append(resource_name)
        return resource_name

    def update(
        self, resource_name: str, etag: str | None, record: ContactRecord
    ) -> dict:
        if self.fail_writes:
            raise DirectoryWriteError("update rejected", status_code=400)
        if resource_name not in self.records:
            raise DirectoryWriteError(f"{resource_name} not found", status_code=404)
        self.records[resource_name] = dataclasses.replace(
            record, resource_name=resource_name, etag=f"etag-{self._next_id()}"
        )
        self.updated.append((resource_name, etag))
        return {"resourceName": resource_name}

    def add_to_label(self, resource_name: str, label: str) -> None:
        if self.fail_labels:
            raise DirectoryWriteError("label rejected", status_code=400)
        members = self.labels.setdefault(label, [])
        if resource_name not in members:
            members.append(resource_name)

    def refresh_token(self, resource_name: str) -> str | None:
        return self.records[resource_name].etag


class FakeLock:
    """Lock double counting acquisitions; refuses when available is False."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.held = False
        self.acquire_calls: list[int] = []
        self.release_calls = 0

    def acquire(self, timeout_ms: int) -> bool:
        self.acquire_calls.append(timeout_ms)
        if not self.available or self.held:
            return False
        self.held = True
        return True

    def release(self) -> None:
        self.release_calls += 1
        self.held = False


@pytest.fixture
def relay_config(tmp_path: Path) -> RelayConfig:
    """Two-party configuration using a temporary directory."""
    return RelayConfig.from_dict(
        {
            "parties": [ALICE, BOB],
            "sync_label": LABEL,
            "lock_timeout_ms": 200,
            "log_retention_rows": 50,
        },
        config_dir=tmp_path,
    )


@pytest.fixture
def buffer() -> BufferDatabase:
    """Initialized in-memory buffer shared by both parties."""
    db = BufferDatabase(":memory:", log_retention_rows=50)
    db.initialize()
    return db


@pytest.fixture
def alice_directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def bob_directory() -> FakeDirectory:
    return FakeDirectory()
