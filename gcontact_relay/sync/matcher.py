"""
Resolution of incoming records against the local directory.

Matching is deliberately strict. A record is only matched when the name
agrees: an email hit with a different name is a different person sharing an
address (family or team mailboxes), and an email-only or positional match
risks a false merge.

- Primary rule: the incoming record has emails. Each email is looked up in
  order; a hit is accepted only if the candidate's primary display name
  equals the incoming one (case-insensitive). First accepted hit wins.
- Fallback rule: the incoming record has no emails. Look up by name alone.
- No name: no match.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from gcontact_relay.sync.record import ContactRecord

logger = logging.getLogger(__name__)


def email_key(email: str) -> str:
    """Lookup key for an email address."""
    return email.strip().lower()


def name_key(name: str) -> str:
    """Lookup key for a display name (case-insensitive)."""
    return name.strip().lower()


@dataclass
class LocalIndex:
    """
    Lookup tables over every record of the local directory.

    Built once per run. When several local records share a key, the first
    one seen is kept so that lookups stay deterministic.

    Attributes:
        by_email: Lower-cased email address -> record holding it
        by_name: Lower-cased primary display name -> record
    """

    by_email: dict[str, ContactRecord] = field(default_factory=dict)
    by_name: dict[str, ContactRecord] = field(default_factory=dict)

    def add(self, record: ContactRecord) -> None:
        """Index a record under all its emails and its primary name."""
        for email in record.emails():
            key = email_key(email)
            if key:
                self.by_email.setdefault(key, record)

        name = record.primary_display_name()
        if name and name_key(name):
            self.by_name.setdefault(name_key(name), record)

    def replace(self, old: ContactRecord, new: ContactRecord) -> None:
        """Point every entry held by old at new, then index new's own keys."""
        for table in (self.by_email, self.by_name):
            for key, record in table.items():
                if record is old:
                    table[key] = new
        self.add(new)

    def __len__(self) -> int:
        """Number of distinct records in the index."""
        records = {id(r) for r in self.by_email.values()}
        records.update(id(r) for r in self.by_name.values())
        return len(records)


def build_index(records: Iterable[ContactRecord]) -> LocalIndex:
    """
    Build the local lookup index from directory records.

    Args:
        records: Every local record (not only labelled ones)

    Returns:
        LocalIndex over the records
    """
    index = LocalIndex()
    for record in records:
        index.add(record)
    logger.debug(
        f"Built local index: {len(index.by_email)} emails, "
        f"{len(index.by_name)} names"
    )
    return index


def find_match(incoming: ContactRecord, index: LocalIndex) -> ContactRecord | None:
    """
    Resolve an incoming record to zero or one local record.

    Args:
        incoming: Record pulled from the buffer
        index: Local directory index built for this run

    Returns:
        The matching local record, or None
    """
    incoming_name = incoming.primary_display_name()
    if not incoming_name or not name_key(incoming_name):
        logger.debug("Incoming record has no display name; not matching")
        return None

    wanted_name = name_key(incoming_name)
    emails = incoming.emails()

    if emails:
        for email in emails:
            candidate = index.by_email.get(email_key(email))
            if candidate is None:
                continue
            candidate_name = candidate.primary_display_name() or ""
            if name_key(candidate_name) == wanted_name:
                logger.debug(
                    f"Matched {incoming_name!r} by email {email} "
                    f"-> {candidate.resource_name}"
                )
                return candidate
            logger.debug(
                f"Email {email} belongs to {candidate_name!r}, "
                f"not {incoming_name!r}; ignoring"
            )
        return None

    candidate = index.by_name.get(wanted_name)
    if candidate is not None:
        logger.debug(
            f"Matched {incoming_name!r} by name -> {candidate.resource_name}"
        )
    return candidate
