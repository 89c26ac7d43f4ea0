"""
Phone number helpers.

Twilio addresses WhatsApp senders as ``whatsapp:+E.164``; the dashboard
stores ``+E.164``.
"""

import re

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
WHATSAPP_PREFIX = "whatsapp:"


def is_e164(value: str) -> bool:
    return bool(value) and bool(E164_PATTERN.match(value))


def strip_whatsapp_prefix(value: str) -> str:
    if value and value.startswith(WHATSAPP_PREFIX):
        return value[len(WHATSAPP_PREFIX):]
    return value


def normalize_phone(value: str) -> str:
    """
    Normalize a phone number to ``+E.164``.

    Drops a ``whatsapp:`` prefix and every character except digits and
    ``+``. Empty input stays empty.

    >>> normalize_phone("whatsapp:966508034010")
    '+966508034010'
    """
    if not value:
        return ""
    cleaned = re.sub(r"[^\d+]", "", strip_whatsapp_prefix(value.strip()))
    if not cleaned:
        return ""
    if not cleaned.startswith("+"):
        cleaned = "+" + cleaned
    return cleaned


def to_whatsapp_address(value: str) -> str:
    """``+966...`` -> ``whatsapp:+966...``"""
    normalized = normalize_phone(value)
    return f"{WHATSAPP_PREFIX}{normalized}" if normalized else ""


def mask_phone(value: str) -> str:
    """Hide all but the last four characters (used in logs)."""
    if not value or len(value) < 4:
        return value
    return "*" * (len(value) - 4) + value[-4:]
