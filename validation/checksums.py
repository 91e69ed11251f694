"""
Mod-97 checksums: IBAN, Belgian structured communication (OGM) and Belgian VAT numbers.
Pure functions, no I/O.
"""

from __future__ import annotations

import re

# Country code -> IBAN length (SEPA countries seen on Belgian documents)
IBAN_LENGTHS: dict[str, int] = {
    "AT": 20,
    "BE": 16,
    "CH": 21,
    "DE": 22,
    "DK": 18,
    "ES": 24,
    "FI": 18,
    "FR": 27,
    "GB": 22,
    "IE": 22,
    "IT": 27,
    "LU": 20,
    "NL": 18,
    "PL": 28,
    "PT": 25,
    "SE": 24,
}

# Letters an OCR pass commonly produces where a digit was printed
OCR_DIGIT_CONFUSIONS: dict[str, str] = {
    "O": "0",
    "D": "0",
    "Q": "0",
    "I": "1",
    "L": "1",
    "Z": "2",
    "S": "5",
    "G": "6",
    "T": "7",
    "B": "8",
}

_IBAN_SHAPE = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{1,30}$")
_OGM_DIGITS = re.compile(r"^\d{12}$")


# ---------------------------------------------------------------------------
# IBAN
# ---------------------------------------------------------------------------


def normalize_iban(raw: str | None) -> str:
    """Strip spaces/dashes and upper-case."""
    return re.sub(r"[\s\-.]", "", raw or "").upper()


def iban_remainder(iban: str) -> int:
    """Move the first 4 chars to the end, map A=10..Z=35, return the number mod 97."""
    rearranged = iban[4:] + iban[:4]
    numeric = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(numeric) % 97


def iban_problem(raw: str | None) -> str | None:
    """None if the IBAN is valid, otherwise a short description of what is wrong."""
    iban = normalize_iban(raw)
    if not _IBAN_SHAPE.match(iban):
        return "not an IBAN (expected 2 letters, 2 check digits, then account characters)"
    expected_len = IBAN_LENGTHS.get(iban[:2])
    if expected_len is not None and len(iban) != expected_len:
        return f"{iban[:2]} IBAN must be {expected_len} characters, got {len(iban)}"
    if iban_remainder(iban) != 1:
        return "mod-97 checksum does not match"
    return None


def is_valid_iban(raw: str | None) -> bool:
    return iban_problem(raw) is None


def ocr_suspects(value: str | None, digits_from: int = 2) -> list[str]:
    """Letters found where only digits belong, e.g. ['O->0 at position 7']."""
    cleaned = normalize_iban(value)
    suspects: list[str] = []
    for pos, ch in enumerate(cleaned):
        if pos < digits_from:
            continue
        if ch in OCR_DIGIT_CONFUSIONS:
            suspects.append(f"{ch}->{OCR_DIGIT_CONFUSIONS[ch]} at position {pos + 1}")
    return suspects


# ---------------------------------------------------------------------------
# OGM / structured communication (+++123/4567/89012+++)
# ---------------------------------------------------------------------------


def ogm_check_digits(base: str | int) -> int:
    """Check digits for a 10-digit base: base mod 97, with 0 mapped to 97."""
    remainder = int(base) % 97
    return 97 if remainder == 0 else remainder


def ogm_digits(raw: str | None) -> str | None:
    """The 12 digits of a structured communication, or None if raw is free text."""
    if not raw:
        return None
    digits = re.sub(r"[+*/\s.\-]", "", raw)
    return digits if _OGM_DIGITS.match(digits) else None


def is_valid_ogm(raw: str | None) -> bool:
    digits = ogm_digits(raw)
    if digits is None:
        return False
    return ogm_check_digits(digits[:10]) == int(digits[10:])


def format_ogm(digits: str) -> str:
    """'123456789002' -> '+++123/4567/89002+++'."""
    return f"+++{digits[:3]}/{digits[3:7]}/{digits[7:]}+++"


def build_ogm(base: str | int) -> str:
    """Full structured communication for a base of at most 10 digits."""
    base_str = str(int(base)).zfill(10)
    return format_ogm(f"{base_str}{ogm_check_digits(base_str):02d}")


# ---------------------------------------------------------------------------
# Belgian VAT / enterprise number
# ---------------------------------------------------------------------------


def normalize_vat_number(raw: str | None) -> str | None:
    """'BE 0123.456.789' -> 'BE0123456789'. Bare 9/10-digit numbers get the BE prefix."""
    if not raw:
        return None
    cleaned = re.sub(r"[\s.\-/]", "", raw).upper()
    if not cleaned:
        return None
    if cleaned.isdigit() and len(cleaned) in (9, 10):
        cleaned = "BE" + cleaned
    if cleaned.startswith("BE") and len(cleaned) == 11:
        cleaned = "BE0" + cleaned[2:]
    return cleaned


def is_valid_belgian_vat(raw: str | None) -> bool:
    """Enterprise-number check: 97 - (first 8 digits mod 97) equals the last 2 digits."""
    vat = normalize_vat_number(raw)
    if not vat or not vat.startswith("BE"):
        return False
    number = vat[2:]
    if len(number) != 10 or not number.isdigit() or number[0] not in "01":
        return False
    return 97 - int(number[:8]) % 97 == int(number[8:])
