"""Utility helpers for the order_webhooks app."""

import hashlib
import re


def normalize_text(value):
    """Lower-case and trim a free-text value for comparison.

    Examples::

        >>> normalize_text("  Jane DOE ")
        'jane doe'
        >>> normalize_text(None)
        ''
    """
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_address(value):
    """Lower-case an address and collapse all runs of whitespace.

    Examples::

        >>> normalize_address("12  Rue  Atlas\\nCasablanca ")
        '12 rue atlas casablanca'
    """
    return re.sub(r"\s+", " ", normalize_text(value))


def phone_digits(value):
    """Strip everything but digits from a phone number.

    Examples::

        >>> phone_digits("+1 (555) 123-4567")
        '15551234567'
    """
    if value is None:
        return ""
    return re.sub(r"\D", "", str(value))


def payload_hash(raw_body):
    """SHA-256 hex digest of a raw request body."""
    return hashlib.sha256(raw_body).hexdigest()


def join_address(*parts):
    """Join non-empty address parts with ", "."""
    return ", ".join(str(part).strip() for part in parts if part and str(part).strip())


def text_key(value, max_length=255):
    """Normalized text truncated to fit an indexed column."""
    return normalize_text(value)[:max_length]


def address_key(value):
    """SHA-256 hex digest of the normalized address, or "" when empty.

    Examples::

        >>> address_key("") == ""
        True
        >>> address_key("12 Main St") == address_key("  12  main ST")
        True
    """
    normalized = normalize_address(value)
    if not normalized:
        return ""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
