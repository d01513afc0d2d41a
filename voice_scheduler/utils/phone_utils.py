"""Phone number normalization, comparison and formatting."""

import re
from typing import Optional

ANONYMOUS_SENTINELS = frozenset({"anonymous", "restricted", "blocked", "unknown", "", "+"})


def is_anonymous_caller(phone: Optional[str]) -> bool:
    """Check if a caller number is missing or one of Twilio's blocked-ID sentinels."""
    if phone is None:
        return True
    return phone.strip().lower() in ANONYMOUS_SENTINELS


def to_digits(phone: str) -> str:
    """Strip everything but digits."""
    return re.sub(r"\D", "", phone or "")


def normalize_phone_number(phone: Optional[str], default_country_code: str = "+1") -> Optional[str]:
    """
    Normalize a phone number to canonical ``+<digits>`` form.

    Returns None for anonymous callers and for anything with fewer than ten
    digits.

    Examples:
        "(818) 555-1234" -> "+18185551234"
        "18185551234"    -> "+18185551234"
        "+44 20 7946 0958" -> "+442079460958"
    """
    if is_anonymous_caller(phone):
        return None

    raw = phone.strip()
    digits = to_digits(raw)
    if len(digits) < 10:
        return None

    has_plus = raw.startswith("+")
    if not has_plus and len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if not has_plus:
        return f"{default_country_code}{digits}"
    return f"+{digits}"


def are_phone_numbers_equal(phone1: Optional[str], phone2: Optional[str]) -> bool:
    """Exact comparison of canonical forms; unparseable numbers never match."""
    canonical1 = normalize_phone_number(phone1)
    canonical2 = normalize_phone_number(phone2)
    return canonical1 is not None and canonical1 == canonical2


def format_phone_for_display(phone: str) -> str:
    """
    Format phone number for display.

    Args:
        phone: Normalized phone number

    Returns:
        Human-readable format
    """
    digits = to_digits(phone)

    if len(digits) == 11 and digits.startswith("1"):
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    elif len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"

    return phone


def mask_phone_number(phone: Optional[str]) -> str:
    """Show only the last four digits, for logs."""
    digits = to_digits(phone or "")
    if len(digits) >= 4:
        return f"***-***-{digits[-4:]}"
    return "***-***-****"
