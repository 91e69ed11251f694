"""
Unit tests for mod-97 checksums: IBAN, structured communication, Belgian VAT numbers.
"""
from __future__ import annotations

import pytest

from validation.checksums import (
    build_ogm,
    format_ogm,
    iban_problem,
    is_valid_belgian_vat,
    is_valid_iban,
    is_valid_ogm,
    normalize_iban,
    normalize_vat_number,
    ocr_suspects,
    ogm_check_digits,
    ogm_digits,
)


def test_valid_belgian_iban() -> None:
    """Known-good IBAN passes in compact and printed form."""
    assert is_valid_iban("BE68539007547034")
    assert is_valid_iban("BE68 5390 0754 7034")
    assert is_valid_iban("be68-5390-0754-7034")


def test_invalid_belgian_iban() -> None:
    """Last digit changed -> checksum fails."""
    assert not is_valid_iban("BE68539007547035")
    assert iban_problem("BE68539007547035") == "mod-97 checksum does not match"


@pytest.mark.parametrize("check_digits", ["00", "01", "67", "69", "86", "96"])
def test_iban_check_digit_mutations_fail(check_digits: str) -> None:
    """Any other pair of check digits breaks the checksum."""
    assert not is_valid_iban(f"BE{check_digits}539007547034")


def test_iban_length_enforced_for_belgium() -> None:
    """BE IBANs are exactly 16 characters."""
    problem = iban_problem("BE6853900754703")
    assert problem is not None
    assert "16" in problem


def test_iban_shape_problem() -> None:
    assert iban_problem("not an iban") is not None
    assert iban_problem("") is not None


def test_normalize_iban() -> None:
    assert normalize_iban(" be68 5390-0754.7034 ") == "BE68539007547034"
    assert normalize_iban(None) == ""


def test_ocr_suspects_points_at_letters() -> None:
    """Letters in the numeric part are reported with their likely digit."""
    suspects = ocr_suspects("BE68539OO7547034")
    assert suspects == ["O->0 at position 8", "O->0 at position 9"]
    assert ocr_suspects("BE68539007547034") == []


def test_ogm_check_digits() -> None:
    """Base mod 97; a zero remainder maps to 97."""
    assert ogm_check_digits(123456789) == 123456789 % 97 == 39
    assert ogm_check_digits("0123456789") == 39
    assert ogm_check_digits("9700000000") == 97


def test_ogm_validation_and_formatting() -> None:
    ogm = build_ogm(123456789)
    assert ogm == "+++012/3456/78939+++"
    assert is_valid_ogm(ogm)
    assert is_valid_ogm("012/3456/78939")
    assert is_valid_ogm("***012/3456/78939***")
    assert not is_valid_ogm("+++012/3456/78940+++")
    assert format_ogm("012345678939") == "+++012/3456/78939+++"


def test_ogm_digits_rejects_free_text() -> None:
    """Free-text references are not structured communications."""
    assert ogm_digits("Invoice 2024-001") is None
    assert ogm_digits("") is None
    assert ogm_digits("+++012/3456/78939+++") == "012345678939"


def test_ogm_zero_remainder_uses_97() -> None:
    assert build_ogm("9700000000") == "+++970/0000/00097+++"
    assert is_valid_ogm("+++970/0000/00097+++")


def test_normalize_vat_number() -> None:
    assert normalize_vat_number("BE 0123.456.789") == "BE0123456789"
    assert normalize_vat_number("0123456789") == "BE0123456789"
    assert normalize_vat_number("123456789") == "BE0123456789"
    assert normalize_vat_number("NL123456789B01") == "NL123456789B01"
    assert normalize_vat_number(None) is None
    assert normalize_vat_number("  ") is None


def test_belgian_enterprise_number_checksum() -> None:
    """97 - (first 8 digits mod 97) equals the last 2 digits."""
    # 01234567 mod 97 = 48 -> check digits 49
    assert is_valid_belgian_vat("BE0123456749")
    assert not is_valid_belgian_vat("BE0123456789")
    assert not is_valid_belgian_vat("NL123456789B01")
    assert not is_valid_belgian_vat(None)
