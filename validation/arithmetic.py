"""
Arithmetic identities on extracted amounts.
Missing operands skip a check; present-but-inconsistent operands fail it.
"""

from __future__ import annotations

from decimal import Decimal

from core.models import AuditCheck, CheckType
from validation.amounts import (
    AMOUNT_TOLERANCE,
    InvalidAmountError,
    amounts_equal,
    format_amount,
    parse_amount,
)

MATH_HINT = (
    "Re-read the totals block. The net amount (excl. VAT) plus the VAT amount must equal "
    "the total (incl. VAT). Check for swapped fields, a missed thousands separator "
    "(Belgian format 1.234,56) and digits misread by OCR (8/B, 5/S, 6/G, 0/O)."
)


def _unparseable(field: str, raw: str) -> AuditCheck:
    return AuditCheck.critical(
        CheckType.MATH,
        field,
        f"{field} is not a valid amount: {raw!r}",
        hint=(
            f"The value extracted for {field} ({raw!r}) is not a number. Return the amount "
            "as a plain decimal string such as \"1234.56\", or null if it is not printed."
        ),
        actual=raw,
    )


def verify_totals(
    net_raw: str | None,
    vat_raw: str | None,
    total_raw: str | None,
    *,
    net_field: str = "subtotal",
    vat_field: str = "totalVatAmount",
    total_field: str = "totalAmount",
) -> AuditCheck:
    """net + vat == total within AMOUNT_TOLERANCE."""
    values: dict[str, Decimal | None] = {}
    for name, raw in ((net_field, net_raw), (vat_field, vat_raw), (total_field, total_raw)):
        try:
            values[name] = parse_amount(raw)
        except InvalidAmountError:
            return _unparseable(name, str(raw))
    net, vat, total = values[net_field], values[vat_field], values[total_field]
    if net is None or vat is None or total is None:
        missing = [n for n, v in values.items() if v is None]
        return AuditCheck.skip(
            CheckType.MATH,
            total_field,
            f"Totals check skipped, missing: {', '.join(missing)}",
        )
    computed = net + vat
    if amounts_equal(computed, total):
        return AuditCheck.ok(
            CheckType.MATH,
            total_field,
            f"{format_amount(net)} + {format_amount(vat)} = {format_amount(total)}",
            expected=format_amount(computed),
            actual=format_amount(total),
        )
    return AuditCheck.critical(
        CheckType.MATH,
        total_field,
        f"{net_field} + {vat_field} = {format_amount(computed)} but {total_field} is "
        f"{format_amount(total)} (difference {format_amount(abs(computed - total))})",
        hint=MATH_HINT,
        expected=format_amount(computed),
        actual=format_amount(total),
    )


def verify_vat_not_above_total(vat_raw: str | None, total_raw: str | None) -> AuditCheck:
    """For documents that only print a gross total and a VAT amount."""
    try:
        vat = parse_amount(vat_raw)
    except InvalidAmountError:
        return _unparseable("vatAmount", str(vat_raw))
    try:
        total = parse_amount(total_raw)
    except InvalidAmountError:
        return _unparseable("totalAmount", str(total_raw))
    if vat is None or total is None:
        return AuditCheck.skip(CheckType.MATH, "totalAmount", "VAT/total check skipped, missing operand")
    if abs(vat) <= abs(total):
        return AuditCheck.ok(CheckType.MATH, "totalAmount", "VAT amount does not exceed total")
    return AuditCheck.critical(
        CheckType.MATH,
        "vatAmount",
        f"VAT amount {format_amount(vat)} exceeds total {format_amount(total)}",
        hint=(
            "The VAT amount cannot be larger than the total. Re-read both values; the VAT "
            "line is usually labelled BTW, TVA or VAT."
        ),
        expected=f"<= {format_amount(total)}",
        actual=format_amount(vat),
    )


def verify_line_items_sum(
    line_totals: list[str | None],
    expected_raw: str | None,
    *,
    expected_field: str = "subtotal",
) -> AuditCheck:
    """Sum of line totals vs the printed subtotal. Warning only: lines are often partial."""
    try:
        expected = parse_amount(expected_raw)
        totals = [parse_amount(t) for t in line_totals]
    except InvalidAmountError:
        return AuditCheck.skip(CheckType.MATH, "lineItems", "Line item sum skipped, unparseable amount")
    present = [t for t in totals if t is not None]
    if expected is None or not present:
        return AuditCheck.skip(CheckType.MATH, "lineItems", "Line item sum skipped, nothing to compare")
    line_sum = sum(present, Decimal("0"))
    # Rounding accumulates per line
    tolerance = max(AMOUNT_TOLERANCE, AMOUNT_TOLERANCE * len(present))
    if amounts_equal(line_sum, expected, tolerance):
        return AuditCheck.ok(
            CheckType.MATH,
            "lineItems",
            f"Line items sum to {format_amount(line_sum)}",
            expected=format_amount(expected),
            actual=format_amount(line_sum),
        )
    return AuditCheck.warning(
        CheckType.MATH,
        "lineItems",
        f"Line items sum to {format_amount(line_sum)} but {expected_field} is {format_amount(expected)}",
        hint=(
            f"Re-read every line item total and the {expected_field}. Make sure no line was "
            "skipped or read twice and that discounts are included as negative lines."
        ),
        expected=format_amount(expected),
        actual=format_amount(line_sum),
    )


def verify_line_item(
    quantity_raw: str | None,
    unit_price_raw: str | None,
    total_raw: str | None,
    line_number: int,
) -> AuditCheck:
    """quantity x unit price == line total."""
    field = f"lineItems[{line_number}]"
    try:
        quantity = parse_amount(quantity_raw)
        unit_price = parse_amount(unit_price_raw)
        total = parse_amount(total_raw)
    except InvalidAmountError:
        return AuditCheck.skip(CheckType.MATH, field, f"Line {line_number} check skipped, unparseable amount")
    if quantity is None or unit_price is None or total is None:
        return AuditCheck.skip(CheckType.MATH, field, f"Line {line_number} check skipped, missing operand")
    computed = quantity * unit_price
    if amounts_equal(computed, total):
        return AuditCheck.ok(CheckType.MATH, field, f"Line {line_number} quantity x unit price matches")
    return AuditCheck.warning(
        CheckType.MATH,
        field,
        f"Line {line_number}: {quantity} x {format_amount(unit_price)} = {format_amount(computed)} "
        f"but line total is {format_amount(total)}",
        hint=(
            f"Re-read line {line_number}: quantity, unit price and line total. The unit price "
            "may be printed excl. VAT while the line total is incl. VAT; use the same basis."
        ),
        expected=format_amount(computed),
        actual=format_amount(total),
    )
