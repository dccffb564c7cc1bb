"""
Canonicalization and change-detection digest for contact records.

The upstream directory decorates records on every read/write round-trip:
item metadata, formatting-derived type labels, canonical phone renderings,
derived display-name variants and localized gender renderings. None of
these are user content, so they are stripped before hashing. What remains
is serialized deterministically (sorted keys at every level, items of each
field group sorted by their own serialized form) so that neither key order
nor item order affects the digest.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from typing import Any

from gcontact_relay.sync.record import ALL_FIELDS, ContactRecord

# Attributes injected or reformatted by the directory on any field group
VOLATILE_ATTRIBUTES = frozenset(
    {
        "metadata",
        "formattedType",
        "canonicalForm",
        "formattedProtocol",
    }
)

# Output-only renderings the directory derives for particular field groups
DERIVED_ATTRIBUTES: dict[str, frozenset[str]] = {
    "names": frozenset(
        {
            "displayName",
            "displayNameLastFirst",
            "unstructuredName",
        }
    ),
    # Localized rendering of the gender value
    "genders": frozenset({"formattedValue"}),
}

# Length of the rendered digest (hex characters)
DIGEST_LENGTH = 16

NormalizedRecord = dict[str, list[dict[str, Any]]]


def _strip(value: Any, drop: frozenset[str]) -> Any:
    """Recursively drop volatile keys and empty values from an item."""
    if isinstance(value, dict):
        cleaned = {}
        for key, inner in value.items():
            if key in drop:
                continue
            inner = _strip(inner, drop)
            if inner in (None, "", [], {}):
                continue
            cleaned[key] = inner
        return cleaned
    if isinstance(value, list):
        return [_strip(v, drop) for v in value]
    return value


def normalize(
    record: ContactRecord, sync_fields: Iterable[str] = ALL_FIELDS
) -> NormalizedRecord:
    """
    Strip directory-injected fields from a record.

    Two records that differ only in volatile attributes, derived renderings
    (display names, localized genders) or empty groups normalize identically.

    Args:
        record: Record to normalize
        sync_fields: Field groups taking part in the comparison

    Returns:
        Mapping of field group name to list of cleaned item dicts.
        Empty groups and items that become empty are omitted.
    """
    normalized: NormalizedRecord = {}
    for name in sync_fields:
        drop = VOLATILE_ATTRIBUTES | DERIVED_ATTRIBUTES.get(name, frozenset())

        items = [_strip(item.attributes, drop) for item in record.group(name)]
        items = [item for item in items if item]
        if items:
            normalized[name] = items
    return normalized


def canonical_json(value: Any) -> str:
    """Serialize a value with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_form(normalized: NormalizedRecord) -> str:
    """
    Render a normalized record as an order-independent string.

    Items within every field group are ordered by their own serialized
    form, so insertion order never reaches the output.
    """
    ordered = {
        name: sorted(items, key=canonical_json) for name, items in normalized.items()
    }
    return canonical_json(ordered)


def digest(normalized: NormalizedRecord) -> str:
    """
    Compute the change-detection digest of a normalized record.

    Returns:
        Short hex string, stable across runs and processes
    """
    content = canonical_form(normalized)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def record_digest(
    record: ContactRecord, sync_fields: Iterable[str] = ALL_FIELDS
) -> str:
    """Normalize and digest a record in one step."""
    return digest(normalize(record, sync_fields))
