"""
Amount, date and VAT-rate normalization for Belgian documents.
Amounts stay decimal strings end to end; Decimal is used for arithmetic only.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

AMOUNT_TOLERANCE = Decimal("0.01")

_CURRENCY_NOISE = re.compile(r"(EUR|€|\s|')", re.IGNORECASE)
_THOUSANDS_COMMA = re.compile(r"^\d{1,3}(,\d{3})+$")
_THOUSANDS_DOT = re.compile(r"^\d{1,3}(\.\d{3})+$")
_NUMBER = re.compile(r"^\d+(\.\d+)?$")

_DMY_DATE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")

ZERO_RATE_PHRASES = (
    "reverse charge",
    "autoliquidation",
    "intracommunautaire",
    "intracommunity",
    "intra-community",
    "verlegd",
    "btw verlegd",
    "medecontractant",
    "médecontractant",
)

_RATE_NUMBER = re.compile(r"(\d+(?:[.,]\d+)?)")


class InvalidAmountError(ValueError):
    """Amount present but not a number."""

    pass


def _canonical_digits(raw: str) -> str | None:
    """Belgian/EU grouping -> plain 1234.56 digits, or None if not a number."""
    s = _CURRENCY_NOISE.sub("", raw)
    sign = ""
    if s.startswith("-"):
        sign, s = "-", s[1:]
    elif s.endswith("-"):
        sign, s = "-", s[:-1]
    if not s:
        return None
    has_dot, has_comma = "." in s, "," in s
    if has_dot and has_comma:
        # Last separator is the decimal one
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif has_comma:
        s = s.replace(",", "") if _THOUSANDS_COMMA.match(s) else s.replace(",", ".")
    elif has_dot and _THOUSANDS_DOT.match(s):
        s = s.replace(".", "")
    if not _NUMBER.match(s):
        return None
    return sign + s


def normalize_amount(value: Any) -> str | None:
    """
    '1.234,56' -> '1234.56', '€ 12,50' -> '12.50'. None/empty -> None.
    Unparseable input is returned stripped so the audit can flag it.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, Decimal)):
        return format(Decimal(value), "f")
    if isinstance(value, float):
        # NaN and Infinity are kept as text so the audit flags them
        return format(Decimal(repr(value)), "f")
    raw = str(value).strip()
    if not raw:
        return None
    digits = _canonical_digits(raw)
    return digits if digits is not None else raw


def parse_amount(value: str | None) -> Decimal | None:
    """Decimal for a normalized amount; None when missing. Raises InvalidAmountError if not numeric."""
    if value is None or str(value).strip() == "":
        return None
    digits = _canonical_digits(str(value).strip())
    if digits is None:
        raise InvalidAmountError(f"Not an amount: {value!r}")
    try:
        return Decimal(digits)
    except InvalidOperation as e:
        raise InvalidAmountError(f"Not an amount: {value!r}") from e


def amounts_equal(a: Decimal, b: Decimal, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    return abs(a - b) <= tolerance


def format_amount(value: Decimal) -> str:
    return format(value.quantize(Decimal("0.01")), "f")


def normalize_date(value: Any) -> str | None:
    """DD/MM/YYYY, DD.MM.YYYY and DD-MM-YYYY -> YYYY-MM-DD. Unrecognized input kept as-is."""
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    raw = str(value).strip()
    if not raw:
        return None
    m = _ISO_DATE.match(raw)
    if m:
        year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
    else:
        m = _DMY_DATE.match(raw)
        if not m:
            return raw
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return raw


def normalize_vat_rate(value: Any) -> str | None:
    """'21', '21,0 %', 0.21 -> '21%'; reverse-charge phrases -> '0%'."""
    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        number = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
        if not number.is_finite():
            return None
        if 0 < number < 1:
            number *= 100
        return _format_rate(number)
    raw = str(value).strip()
    if not raw:
        return None
    lowered = raw.lower()
    if any(p in lowered for p in ZERO_RATE_PHRASES):
        return "0%"
    m = _RATE_NUMBER.search(raw)
    if not m:
        return raw
    return _format_rate(Decimal(m.group(1).replace(",", ".")))


def _format_rate(number: Decimal) -> str:
    if number == number.to_integral_value():
        return f"{int(number)}%"
    return f"{format(number.normalize(), 'f')}%"


def parse_vat_rate(value: str | None) -> Decimal | None:
    """'21%' -> Decimal('21'). None when missing or not a rate."""
    if value is None:
        return None
    m = _RATE_NUMBER.search(str(value))
    if not m:
        return None
    return Decimal(m.group(1).replace(",", "."))
