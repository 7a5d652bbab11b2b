"""
Phone number normalization
"""

import re
from typing import Optional

from .config import get_messaging_config

_ANGOLAN_PHONE = re.compile(r"^\+2449[2-6]\d{7}$")


def normalize_phone_number(raw: Optional[str], default_country_code: Optional[str] = None) -> Optional[str]:
    """Normalize a phone number to E.164 format.

    Accepts inputs like:
    - "+244923456789"
    - "923456789" (uses DEFAULT_COUNTRY_CODE)
    - "+244 923 456-789"

    Returns None if the number is missing/invalid.
    """

    if not raw:
        return None

    cleaned = re.sub(r"[\s\-()]+", "", str(raw).strip())

    if cleaned.startswith("+"):
        digits = "+" + re.sub(r"[^0-9]", "", cleaned)
        return digits if len(digits) >= 8 else None

    digits_only = re.sub(r"[^0-9]", "", cleaned)
    if not digits_only:
        return None

    if digits_only.startswith("00"):
        return f"+{digits_only[2:]}" if len(digits_only) >= 9 else None

    if digits_only.startswith("0"):
        digits_only = digits_only.lstrip("0") or digits_only

    default_code = default_country_code or get_messaging_config().default_country_code or "+244"
    if not default_code.startswith("+"):
        default_code = f"+{default_code}"

    # Country code typed without '+'
    if digits_only.startswith(default_code.lstrip("+")) and len(digits_only) > 9:
        return f"+{digits_only}"

    return f"{default_code}{digits_only}"


def is_valid_angolan_phone(phone: str) -> bool:
    """Angolan mobile numbers: +2449[2-6]XXXXXXX"""
    return bool(_ANGOLAN_PHONE.match(phone or ""))


def mask_phone_number(phone: Optional[str]) -> str:
    """Mask the middle digits for logs: +244923456789 -> +244923 *** 789"""
    if not phone:
        return "<none>"
    if len(phone) < 8:
        return "***"
    return f"{phone[:7]} *** {phone[-3:]}"
