"""Lenient coercion of external service values."""

import re
from datetime import date, datetime
from typing import Any, Optional


_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y.%m.%d %H:%M:%S",
    "%Y.%m.%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d/%m/%Y",
    "%Y-%m",
)


def parse_date(value: Any) -> Optional[date]:
    """Parse the date formats the register and history services emit; None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    # Drop fractional seconds and timezone suffixes
    text = re.sub(r"(\.\d+)?(Z|[+-]\d{2}:?\d{2})?$", "", text) if "T" in text else text

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def to_int(value: Any) -> Optional[int]:
    """Coerce '45,000', '1598' or 1598.0 to an int; None when not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    digits = re.sub(r"[,\s]", "", str(value))
    if not re.fullmatch(r"-?\d+(\.\d+)?", digits):
        return None
    return int(float(digits))


def _titleize_word(word: str) -> str:
    if not word or any(ch.isdigit() for ch in word):
        return word
    if "-" in word:
        return "-".join(_titleize_word(part) for part in word.split("-"))
    if word.isupper() and len(word) <= 3:
        return word
    if word.isupper() or word.islower():
        return word.capitalize()
    return word


def titleize(value: Any) -> Optional[str]:
    """Title-case register values ('FORD' -> 'Ford', 'HEAVY OIL' -> 'Heavy Oil').

    Short upper-case tokens (BMW, GLC, CR-V) and tokens with digits are kept.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return " ".join(_titleize_word(word) for word in text.split())
