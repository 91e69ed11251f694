"""Deterministic validation primitives: amounts, checksums, arithmetic, VAT rates."""

from validation.amounts import (
    AMOUNT_TOLERANCE,
    InvalidAmountError,
    normalize_amount,
    normalize_date,
    normalize_vat_rate,
    parse_amount,
)
from validation.checksums import (
    build_ogm,
    is_valid_belgian_vat,
    is_valid_iban,
    is_valid_ogm,
    normalize_iban,
    normalize_vat_number,
    ogm_check_digits,
)

__all__ = [
    "AMOUNT_TOLERANCE",
    "InvalidAmountError",
    "normalize_amount",
    "normalize_date",
    "normalize_vat_rate",
    "parse_amount",
    "build_ogm",
    "is_valid_belgian_vat",
    "is_valid_iban",
    "is_valid_ogm",
    "normalize_iban",
    "normalize_vat_number",
    "ogm_check_digits",
]
