"""Phone number normalization for ingress and blacklist administration."""
from __future__ import annotations

import re

from core.errors import ErrorCodes, ValidationError

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
LOCAL_PATTERN = re.compile(r"^\d{10}$")
_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone_number(raw: str, default_country_code: str = "+91") -> str:
    """
    Strip separators and prefix the default country code when the number
    has no leading "+". The result must be E.164.
    """
    if raw is None or not str(raw).strip():
        raise ValidationError("Phone number is required")
    number = _SEPARATORS.sub("", str(raw))
    if not number.startswith("+"):
        number = f"{default_country_code}{number}"
    if not E164_PATTERN.match(number):
        raise ValidationError(f"Invalid phone number: {raw}", code=ErrorCodes.INVALID_PHONE_NUMBER)
    return number


def normalize_admin_number(raw: str, default_country_code: str = "+91") -> str:
    """Blacklist entries accept 10 local digits or an E.164 number."""
    number = _SEPARATORS.sub("", str(raw or ""))
    if not number.startswith("+") and not LOCAL_PATTERN.match(number):
        raise ValidationError("Phone number must be 10 digits", code=ErrorCodes.INVALID_PHONE_NUMBER)
    return normalize_phone_number(number, default_country_code)
