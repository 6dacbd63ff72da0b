"""Phone number normalization for messaging recipients."""

import re

_E164 = re.compile(r"^\+[1-9]\d{6,14}$")


class InvalidPhoneNumber(ValueError):
    pass


def normalize_phone(raw: str, country_code: str) -> str:
    """Return the canonical ``+<country code><number>`` form.

    Accepts numbers with or without the country code, with a ``+`` or an
    international ``00`` prefix, and with a local trunk zero. Formatting
    characters are dropped. Normalizing an already normalized number returns
    it unchanged.

    >>> normalize_phone("0912 345 678", "251")
    '+251912345678'
    >>> normalize_phone("+251912345678", "251")
    '+251912345678'
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidPhoneNumber("phone number is empty")

    cc = re.sub(r"\D", "", country_code or "")
    if not cc:
        raise InvalidPhoneNumber("country code is empty")

    text = raw.strip()
    has_plus = text.startswith("+")
    digits = re.sub(r"\D", "", text)

    if not has_plus and digits.startswith("00"):
        digits = digits[2:]
        has_plus = True

    if has_plus:
        candidate = digits
    elif digits.startswith(cc) and len(digits) > len(cc) + 6:
        candidate = digits
    else:
        candidate = cc + digits.lstrip("0")

    # Trunk zero written after the country code, e.g. +251 0912...
    if candidate.startswith(cc + "0"):
        candidate = cc + candidate[len(cc):].lstrip("0")

    normalized = "+" + candidate
    if not _E164.match(normalized):
        raise InvalidPhoneNumber(f"not a valid phone number: {raw!r}")
    return normalized


def phone_digits(normalized: str) -> str:
    """Digits only, as used in deep links and session JIDs."""
    return normalized.lstrip("+")
