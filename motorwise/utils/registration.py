"""Registration (number plate) normalisation helpers."""

import re
from typing import Optional


_NON_ALNUM = re.compile(r"[^A-Z0-9]", re.IGNORECASE)
_CURRENT_FORMAT = re.compile(r"^([A-Z]{2}[0-9]{2})([A-Z]{3})$")


def sanitize_registration(registration: Optional[str]) -> str:
    """Strip everything but letters and digits and upper-case the rest."""
    if not registration:
        return ""
    return _NON_ALNUM.sub("", registration).upper()


def format_registration(registration: Optional[str]) -> Optional[str]:
    """Display form: 'ab12cde' -> 'AB12 CDE'. Other formats are upper-cased as-is."""
    if not registration or not registration.strip():
        return None
    clean = sanitize_registration(registration)
    match = _CURRENT_FORMAT.match(clean)
    if match:
        return f"{match.group(1)} {match.group(2)}"
    return " ".join(registration.upper().split())


def registration_seed(registration: str) -> int:
    """Seed for the offline generators: sum of the sanitized registration's character codes."""
    return sum(ord(ch) for ch in sanitize_registration(registration))


def is_partial_registration(registration: Optional[str]) -> bool:
    """True for plates read with '?' placeholders for unreadable characters."""
    return bool(registration) and "?" in registration
