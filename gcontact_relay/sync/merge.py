"""
Field-level merge of an existing local record with an incoming one.

Single-valued groups: a non-empty incoming group replaces the existing one.

Multi-valued groups use a two-pass, key-then-replace reconciliation:
existing items are loaded into a map keyed by their primary value, then
incoming items are applied on top. An incoming item whose key is already
known replaces that entry in place, so label and type changes on a known
value propagate; an incoming item with a new key is appended. Plain
concatenate-then-dedup would keep the stale label.
"""

from __future__ import annotations

import copy
from typing import Any

from gcontact_relay.sync.canonical import VOLATILE_ATTRIBUTES, canonical_json
from gcontact_relay.sync.record import (
    MULTI_VALUED_FIELDS,
    SINGLE_VALUED_FIELDS,
    ContactRecord,
    FieldItem,
    attribute_name,
)
from gcontact_relay.utils import phone_key

# Attribute holding the primary value, for groups where it is not "value"
PRIMARY_ATTRIBUTES = {
    "relations": "person",
    "imClients": "username",
    "userDefined": "key",
}


def item_key(group_name: str, item: FieldItem) -> str:
    """
    Merge key of a multi-valued item.

    Primary value first, then the formatted value, then a structural key
    (the item's canonical JSON without volatile attributes).

    Args:
        group_name: People API field group name
        item: Item to key

    Returns:
        Key string, prefixed by the kind of key used
    """
    primary = item.attributes.get(PRIMARY_ATTRIBUTES.get(group_name, "value"))
    if isinstance(primary, str) and primary.strip():
        if group_name == "emailAddresses":
            return f"value:{primary.strip().lower()}"
        if group_name == "phoneNumbers":
            return f"value:{phone_key(primary)}"
        return f"value:{primary.strip()}"

    formatted = item.formatted_value
    if isinstance(formatted, str) and formatted.strip():
        return f"formatted:{formatted.strip()}"

    structural = {
        k: v for k, v in item.attributes.items() if k not in VOLATILE_ATTRIBUTES
    }
    return f"struct:{canonical_json(structural)}"


def _copy_items(items: list[FieldItem]) -> list[FieldItem]:
    return [FieldItem(copy.deepcopy(item.attributes)) for item in items]


def merge_group(
    group_name: str, existing: list[FieldItem], incoming: list[FieldItem]
) -> list[FieldItem]:
    """Two-pass merge of one multi-valued group."""
    merged: dict[str, FieldItem] = {}

    # Pass 1: existing items
    for item in _copy_items(existing):
        merged[item_key(group_name, item)] = item

    # Pass 2: incoming items replace on key collision, otherwise append
    for item in _copy_items(incoming):
        merged[item_key(group_name, item)] = item

    return list(merged.values())


def merge(existing: ContactRecord, incoming: ContactRecord) -> ContactRecord:
    """
    Combine an existing local record with an incoming record.

    Neither input is modified. The result keeps the existing record's
    resource_name and etag so it can be written back over it.

    Args:
        existing: Local record currently in the directory
        incoming: Record pulled from the other party

    Returns:
        New merged ContactRecord
    """
    groups: dict[str, Any] = {}

    for name in SINGLE_VALUED_FIELDS:
        incoming_items = incoming.group(name)
        source = incoming_items if incoming_items else existing.group(name)
        groups[attribute_name(name)] = _copy_items(source)

    for name in MULTI_VALUED_FIELDS:
        groups[attribute_name(name)] = merge_group(
            name, existing.group(name), incoming.group(name)
        )

    return ContactRecord(
        resource_name=existing.resource_name,
        etag=existing.etag,
        **groups,
    )
