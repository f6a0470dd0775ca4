"""Recipient normalisation for the email and SMS channels."""

import re
from typing import Iterable, Optional, Union

from email_validator import EmailNotValidError, validate_email

_SEPARATORS = re.compile(r"[,;\s]+")
_NON_DIGITS = re.compile(r"\D")


def extract_emails(value: Union[str, Iterable[str], None]) -> list[str]:
    """Split, validate and de-duplicate email addresses.

    Accepts a single string (comma, semicolon or whitespace separated) or
    an iterable of strings. Invalid entries are dropped; order of first
    appearance is kept.
    """
    if value is None:
        return []
    if isinstance(value, str):
        candidates = _SEPARATORS.split(value)
    else:
        candidates = []
        for item in value:
            if isinstance(item, str):
                candidates.extend(_SEPARATORS.split(item))

    emails: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        candidate = candidate.strip().strip("<>")
        if not candidate:
            continue
        try:
            normalized = validate_email(candidate, check_deliverability=False).normalized
        except EmailNotValidError:
            continue
        key = normalized.lower()
        if key not in seen:
            seen.add(key)
            emails.append(normalized)
    return emails


def format_phone_number(value: Optional[str], default_country_code: str = "1") -> Optional[str]:
    """Normalise a phone number to E.164 (``+15551234567``).

    Bare 10-digit numbers get ``default_country_code``; ``00`` prefixes are
    treated as international. Returns None when the result cannot be a
    valid E.164 number (8 to 15 digits).
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    international = text.startswith("+")
    digits = _NON_DIGITS.sub("", text)

    if not international and digits.startswith("00"):
        digits = digits[2:]
        international = True
    if not international and len(digits) == 10:
        digits = default_country_code.lstrip("+") + digits

    if not 8 <= len(digits) <= 15 or digits.startswith("0"):
        return None
    return f"+{digits}"
