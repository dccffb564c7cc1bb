"""
Buffer row key generation.

A fingerprint identifies one party's record across runs so that repeated
pushes update the same buffer row instead of appending new ones.
Format: "{party}:{kind}:{value}", with kind chosen by priority
email > name > id. The party prefix keeps both parties' keys disjoint even
for identical contacts.
"""

import logging
import uuid

from gcontact_relay.sync.record import ContactRecord

logger = logging.getLogger(__name__)

KIND_EMAIL = "email"
KIND_NAME = "name"
KIND_ID = "id"
KIND_RANDOM = "random"


def fingerprint(record: ContactRecord, party: str) -> str:
    """
    Derive the buffer key for a record owned by a party.

    Never fails. A record with no email, no name and no directory
    identifier gets a random key; such a record cannot be deduplicated
    and is published as a new row on every push.

    Args:
        record: The owning party's record
        party: Owning party identifier

    Returns:
        Non-empty fingerprint string
    """
    email = record.primary_email()
    if email and email.strip():
        return f"{party}:{KIND_EMAIL}:{email.strip().lower()}"

    name = record.primary_display_name()
    if name and name.strip():
        return f"{party}:{KIND_NAME}:{name.strip().lower()}"

    if record.resource_name:
        return f"{party}:{KIND_ID}:{record.resource_name}"

    token = uuid.uuid4().hex
    logger.warning(
        f"Record has no email, name or identifier; using random fingerprint {token}"
    )
    return f"{party}:{KIND_RANDOM}:{token}"
