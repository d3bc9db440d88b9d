"""
Phone number normalization shared by every provider.

The canonical form is the Kenyan international format without separators or
a leading ``+``: ``254`` followed by a 9-digit subscriber number starting with
7 or 1, e.g. ``254712345678``.
"""

import re

from ..exceptions import validation_failed

COUNTRY_CODE = "254"
CANONICAL_PATTERN = re.compile(r"^254[17]\d{8}$")


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone number to ``2547XXXXXXXX`` / ``2541XXXXXXXX``.

    Handles local format (``0712 345 678``), bare subscriber numbers
    (``712345678``) and international format with or without ``+``.

    Raises:
        ValidationError: If the result is not a valid Kenyan mobile number
    """
    digits = re.sub(r"\D", "", phone or "")

    if digits.startswith(COUNTRY_CODE):
        normalized = digits
    elif digits.startswith("0"):
        normalized = COUNTRY_CODE + digits[1:]
    else:
        normalized = COUNTRY_CODE + digits

    if not CANONICAL_PATTERN.match(normalized):
        raise validation_failed("phone", phone, "not a valid Kenyan mobile number")
    return normalized


def mask_phone(phone: str) -> str:
    """Mask all but the last three digits for logging."""
    if not phone:
        return ""
    return f"{phone[:3]}{'*' * max(len(phone) - 6, 0)}{phone[-3:]}"
