"""
Contact record and buffer row models for the relay.

Provides the structured representation of a contact as exchanged between
the two parties:
- ContactRecord: named field groups of typed items, built from and
  converted back to Google People API format
- BufferRow: one row of the shared intermediary buffer
- JSON codec used at the buffer boundary
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Field groups holding zero or one logical value
SINGLE_VALUED_FIELDS = (
    "names",
    "nicknames",
    "organizations",
    "birthdays",
    "biographies",
    "occupations",
    "interests",
    "locales",
    "locations",
    "genders",
)

# Field groups holding zero or more independent items
MULTI_VALUED_FIELDS = (
    "emailAddresses",
    "phoneNumbers",
    "addresses",
    "urls",
    "relations",
    "events",
    "imClients",
    "miscKeywords",
    "userDefined",
)

# Every field group the relay knows how to sync
ALL_FIELDS = SINGLE_VALUED_FIELDS + MULTI_VALUED_FIELDS

# People API group name to ContactRecord attribute, where they differ
_ATTRIBUTE_NAMES = {
    "emailAddresses": "email_addresses",
    "phoneNumbers": "phone_numbers",
    "imClients": "im_clients",
    "miscKeywords": "misc_keywords",
    "userDefined": "user_defined",
}


def attribute_name(group_name: str) -> str:
    """Return the ContactRecord attribute holding a People API field group."""
    if group_name not in ALL_FIELDS:
        raise KeyError(f"Unknown field group: {group_name}")
    return _ATTRIBUTE_NAMES.get(group_name, group_name)


class RowDeserializationError(Exception):
    """Raised when a buffer payload cannot be turned back into a record."""

    pass


@dataclass
class FieldItem:
    """
    One item of a field group (an email address, a phone number, a name...).

    The attribute mapping is kept in People API shape so that nothing the
    directory returns is lost in transit.

    Attributes:
        attributes: Item attributes, e.g. {"value": "a@b.com", "type": "work"}
    """

    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def value(self) -> Any:
        """Primary value of the item, if it has one."""
        return self.attributes.get("value")

    @property
    def formatted_value(self) -> str | None:
        """Directory-rendered value (addresses, events), if present."""
        return self.attributes.get("formattedValue")

    @property
    def label(self) -> str | None:
        """User label or type of the item (home, work, mobile...)."""
        return self.attributes.get("type")

    @property
    def is_primary(self) -> bool:
        """True if the directory flagged this item as the primary one."""
        metadata = self.attributes.get("metadata") or {}
        return bool(metadata.get("primary"))

    def without_metadata(self) -> dict[str, Any]:
        """Return a copy of the attributes with directory metadata removed."""
        return {k: v for k, v in self.attributes.items() if k != "metadata"}


def _items_from(raw: Any) -> list[FieldItem]:
    """Convert a transport list of dicts into FieldItems, ignoring junk."""
    if not isinstance(raw, list):
        return []
    return [FieldItem(dict(item)) for item in raw if isinstance(item, dict)]


def _primary_item(items: Sequence[FieldItem]) -> FieldItem | None:
    """Return the item flagged primary, else the first item."""
    for item in items:
        if item.is_primary:
            return item
    return items[0] if items else None


@dataclass
class ContactRecord:
    """
    Contact representation exchanged between the two parties.

    Each People API field group is a named attribute holding a list of
    FieldItems. Single-valued groups hold at most one logical value but keep
    the list shape used in transport.

    Attributes:
        resource_name: Directory-assigned identifier (e.g. "people/c12345")
        etag: Concurrency token, passed through to updates only

    Usage:
        record = ContactRecord.from_api_response(person)
        email = record.primary_email()
        payload = record.to_payload()
        text = record.to_json()
        same = ContactRecord.from_json(text)
    """

    resource_name: str | None = None
    etag: str | None = None

    names: list[FieldItem] = field(default_factory=list)
    nicknames: list[FieldItem] = field(default_factory=list)
    organizations: list[FieldItem] = field(default_factory=list)
    birthdays: list[FieldItem] = field(default_factory=list)
    biographies: list[FieldItem] = field(default_factory=list)
    occupations: list[FieldItem] = field(default_factory=list)
    interests: list[FieldItem] = field(default_factory=list)
    locales: list[FieldItem] = field(default_factory=list)
    locations: list[FieldItem] = field(default_factory=list)
    genders: list[FieldItem] = field(default_factory=list)

    email_addresses: list[FieldItem] = field(default_factory=list)
    phone_numbers: list[FieldItem] = field(default_factory=list)
    addresses: list[FieldItem] = field(default_factory=list)
    urls: list[FieldItem] = field(default_factory=list)
    relations: list[FieldItem] = field(default_factory=list)
    events: list[FieldItem] = field(default_factory=list)
    im_clients: list[FieldItem] = field(default_factory=list)
    misc_keywords: list[FieldItem] = field(default_factory=list)
    user_defined: list[FieldItem] = field(default_factory=list)

    @classmethod
    def from_api_response(
        cls, person: dict[str, Any], sync_fields: Iterable[str] = ALL_FIELDS
    ) -> ContactRecord:
        """
        Create a ContactRecord from a Google People API person.

        Args:
            person: Person resource as returned by the People API
            sync_fields: Field groups to keep; anything else is ignored

        Returns:
            ContactRecord populated from the response

        Example API response structure::

            {
                'resourceName': 'people/c12345',
                'etag': 'abc123',
                'names': [{'displayName': 'Jane Doe', 'givenName': 'Jane'}],
                'emailAddresses': [{'value': 'jane@x.com', 'type': 'home'}],
            }
        """
        groups = {
            attribute_name(name): _items_from(person.get(name))
            for name in sync_fields
            if name in ALL_FIELDS
        }
        return cls(
            resource_name=person.get("resourceName") or None,
            etag=person.get("etag") or None,
            **groups,
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ContactRecord:
        """
        Create a ContactRecord from a buffer payload dictionary.

        Raises:
            RowDeserializationError: If the payload is not a dictionary
        """
        if not isinstance(payload, dict):
            raise RowDeserializationError(
                f"Payload must be an object, got {type(payload).__name__}"
            )
        groups = {
            attribute_name(name): _items_from(payload.get(name))
            for name in ALL_FIELDS
        }
        return cls(**groups)

    @classmethod
    def from_json(cls, text: str) -> ContactRecord:
        """
        Deserialize a record from the buffer's data column.

        Raises:
            RowDeserializationError: If the text is not a JSON object
        """
        try:
            payload = json.loads(text)
        except (TypeError, ValueError) as e:
            raise RowDeserializationError(f"Invalid payload JSON: {e}") from e
        return cls.from_payload(payload)

    def group(self, name: str) -> list[FieldItem]:
        """Return the items of a field group by its People API name."""
        items: list[FieldItem] = getattr(self, attribute_name(name))
        return items

    def groups(self) -> dict[str, list[FieldItem]]:
        """Return all field groups keyed by name."""
        return {name: self.group(name) for name in ALL_FIELDS}

    def to_payload(self, sync_fields: Iterable[str] = ALL_FIELDS) -> dict[str, Any]:
        """
        Convert to the transportable payload (also valid People API body).

        Only non-empty groups are included and item metadata is removed.
        Neither resourceName nor etag is included; both are per-party.

        Args:
            sync_fields: Field groups to include

        Returns:
            Dictionary of field group name to list of item dicts
        """
        payload: dict[str, Any] = {}
        for name in sync_fields:
            items = self.group(name)
            if items:
                payload[name] = [item.without_metadata() for item in items]
        return payload

    def to_json(self, sync_fields: Iterable[str] = ALL_FIELDS) -> str:
        """Serialize the payload for the buffer's data column."""
        return json.dumps(
            self.to_payload(sync_fields), sort_keys=True, ensure_ascii=False
        )

    def primary_email(self) -> str | None:
        """Return the primary email address, or None if there are no emails."""
        item = _primary_item([i for i in self.email_addresses if i.value])
        return str(item.value) if item else None

    def emails(self) -> list[str]:
        """Return every email address value in directory order."""
        return [str(item.value) for item in self.email_addresses if item.value]

    def primary_display_name(self) -> str | None:
        """
        Return the display name of the primary name item.

        Falls back to "givenName familyName" when the directory did not
        render a displayName (typical for payloads built by hand).
        """
        item = _primary_item(self.names)
        if item is None:
            return None

        display_name = item.attributes.get("displayName")
        if display_name:
            return str(display_name)

        parts = [
            item.attributes.get(key)
            for key in ("givenName", "middleName", "familyName")
        ]
        constructed = " ".join(str(p) for p in parts if p)
        return constructed or None

    def __repr__(self) -> str:
        """Return a readable string representation."""
        return (
            f"ContactRecord(resource_name={self.resource_name!r}, "
            f"name={self.primary_display_name()!r}, "
            f"emails={self.emails()!r})"
        )


class RowStatus(str, Enum):
    """Buffer row status as stored in the status column."""

    PENDING = ""
    CONSUMED = "imported"


# Ordered buffer columns
BUFFER_COLUMNS = ("fingerprint", "source", "data", "status", "hash")


@dataclass(frozen=True)
class BufferRow:
    """
    One row of the shared buffer.

    Attributes:
        fingerprint: Stable key of the owning party's record
        source: Identifier of the party that published the row
        data: Serialized ContactRecord payload (JSON)
        status: Pending until the other party consumes it
        hash: Digest of the normalized payload at publish time
    """

    fingerprint: str
    source: str
    data: str
    status: RowStatus = RowStatus.PENDING
    hash: str = ""

    @classmethod
    def for_record(
        cls,
        fingerprint: str,
        source: str,
        record: ContactRecord,
        digest: str,
        sync_fields: Iterable[str] = ALL_FIELDS,
    ) -> BufferRow:
        """Build a Pending row publishing a record."""
        return cls(
            fingerprint=fingerprint,
            source=source,
            data=record.to_json(sync_fields),
            status=RowStatus.PENDING,
            hash=digest,
        )

    @classmethod
    def from_list(cls, cells: Sequence[Any]) -> BufferRow:
        """
        Build a row from the five ordered buffer cells.

        Missing trailing cells (as returned by the Sheets API) are treated
        as empty strings. Unknown status values count as Pending.
        """
        padded = [str(c) if c is not None else "" for c in cells]
        padded += [""] * (len(BUFFER_COLUMNS) - len(padded))
        status = (
            RowStatus.CONSUMED
            if padded[3] == RowStatus.CONSUMED.value
            else RowStatus.PENDING
        )
        return cls(
            fingerprint=padded[0],
            source=padded[1],
            data=padded[2],
            status=status,
            hash=padded[4],
        )

    def as_list(self) -> list[str]:
        """Return the five ordered cells of this row."""
        return [self.fingerprint, self.source, self.data, self.status.value, self.hash]

    @property
    def is_pending(self) -> bool:
        """True if the other party has not consumed this row yet."""
        return self.status is RowStatus.PENDING

    def payload(self) -> ContactRecord:
        """
        Deserialize the row's payload.

        Raises:
            RowDeserializationError: If the data column is malformed
        """
        return ContactRecord.from_json(self.data)
