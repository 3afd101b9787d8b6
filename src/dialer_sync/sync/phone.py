"""Phone number normalization.

The dialer has no external-id search, so the phone number is the only key
that correlates a CRM contact with a dialer contact. Two spellings of the
same number must normalize identically, otherwise a duplicate dialer
contact is created.

Rules:
- Keep digits only (a leading "+" marks the number as international).
- A leading "00" is the international call prefix and is dropped.
- A number of national length (10 digits for the default +1 plan) without
  "+" is local: the default country code is prepended.
- Any other length is taken as already carrying its country code.
- Fewer than 7 or more than 15 digits is not a phone number.
"""

from __future__ import annotations

import re

NATIONAL_LENGTH = 10
MIN_DIGITS = 7
MAX_DIGITS = 15  # E.164 upper bound

_NON_DIGITS = re.compile(r"\D")


def phone_digits(raw: str | None) -> str:
    """Return only the digits of a phone string ("" for None)."""
    if not raw:
        return ""
    return _NON_DIGITS.sub("", raw)


def normalize_phone(raw: str | None, default_country_code: str = "1") -> str | None:
    """Normalize a phone number to E.164 ("+15551234567").

    Args:
        raw: Phone as typed in the CRM ("(555) 123-4567", "+1 555 123 4567", ...).
        default_country_code: Country code assumed for local numbers.

    Returns:
        E.164 string, or None when the input does not hold a usable number.
    """
    if not raw or not raw.strip():
        return None

    stripped = raw.strip()
    international = stripped.startswith("+")
    digits = phone_digits(stripped)

    if not international and digits.startswith("00"):
        digits = digits[2:]
        international = True

    if len(digits) < MIN_DIGITS:
        return None

    # Other lengths are kept as given (already prefixed, or foreign)
    if not international and len(digits) == NATIONAL_LENGTH:
        digits = phone_digits(default_country_code) + digits

    if len(digits) > MAX_DIGITS:
        return None
    return f"+{digits}"


def same_phone(a: str | None, b: str | None, default_country_code: str = "1") -> bool:
    """True when two phone strings normalize to the same number."""
    na = normalize_phone(a, default_country_code)
    return na is not None and na == normalize_phone(b, default_country_code)
