"""
Phone number normalization for merge keys.

Two renderings of the same number ("+1 (555) 010-2030", "+15550102030")
must key identically so that a relabelled number replaces the stored one
instead of being appended next to it.
"""

from __future__ import annotations

import re

# Letters make a value a vanity number or free text, not a dialable string
_LETTERS = re.compile(r"[A-Za-z]")


def normalize_phone(value: str) -> str:
    """
    Normalize a phone number to digits, keeping a leading "+".

    "+1 (555) 010-2030" and "+15550102030" normalize identically.
    """
    if not value:
        return ""
    digits = re.sub(r"\D", "", value)
    return f"+{digits}" if value.strip().startswith("+") else digits


def phone_key(value: str) -> str:
    """
    Comparison key for a phone number.

    Digit-only normalization is used only for purely numeric renderings.
    Values containing letters ("1-800-FLOWERS", "ask reception") or no
    digits at all are compared as lower-cased text, so two distinct
    values never collapse onto the same key.
    """
    digits = normalize_phone(value)
    if digits.lstrip("+") and not _LETTERS.search(value):
        return digits
    return value.strip().lower()
