"""
VAT rate sanity checks.
Belgian rates are 0/6/12/21%. Other EU standard and reduced rates are tolerated on
cross-border documents. Anomalies are warnings: legitimate exceptions exist.
"""

from __future__ import annotations

from decimal import Decimal

from core.models import AuditCheck, CheckType
from validation.amounts import InvalidAmountError, parse_amount, parse_vat_rate

BELGIAN_VAT_RATES: tuple[Decimal, ...] = (Decimal("0"), Decimal("6"), Decimal("12"), Decimal("21"))

EU_VAT_RATES: tuple[Decimal, ...] = tuple(
    Decimal(r)
    for r in (
        "2.1", "3", "4", "5", "5.5", "7", "8", "9", "10", "13", "14", "15",
        "16", "17", "18", "19", "20", "22", "23", "24", "25", "27",
    )
)

# Percentage points; an implied rate is rounded money divided by rounded money
RATE_TOLERANCE = Decimal("0.5")

VAT_HINT = (
    "Re-read the VAT rate and VAT amount. Belgian rates are 0%, 6%, 12% or 21%. "
    "If the document says reverse charge, intracommunautaire or BTW verlegd, the rate is 0%."
)


def _nearest(rate: Decimal, allowed: tuple[Decimal, ...]) -> Decimal | None:
    best = min(allowed, key=lambda r: abs(r - rate))
    return best if abs(best - rate) <= RATE_TOLERANCE else None


def _format_rate(rate: Decimal) -> str:
    return f"{rate.quantize(Decimal('0.01'))}%"


def _judge_rate(rate: Decimal, field: str, cross_border: bool, label: str) -> AuditCheck:
    belgian = _nearest(rate, BELGIAN_VAT_RATES)
    if belgian is not None:
        return AuditCheck.ok(
            CheckType.VAT_RATE,
            field,
            f"{label} {_format_rate(rate)} matches Belgian rate {belgian}%",
            expected=f"{belgian}%",
            actual=_format_rate(rate),
        )
    foreign = _nearest(rate, EU_VAT_RATES)
    if foreign is not None and cross_border:
        return AuditCheck.ok(
            CheckType.VAT_RATE,
            field,
            f"{label} {_format_rate(rate)} matches EU rate {foreign}% on a cross-border document",
            expected=f"{foreign}%",
            actual=_format_rate(rate),
        )
    return AuditCheck.warning(
        CheckType.VAT_RATE,
        field,
        f"{label} {_format_rate(rate)} is not a Belgian VAT rate",
        hint=VAT_HINT,
        expected="0%, 6%, 12% or 21%",
        actual=_format_rate(rate),
    )


def verify_implied_rate(
    net_raw: str | None,
    vat_raw: str | None,
    *,
    cross_border: bool = False,
    vat_field: str = "totalVatAmount",
) -> AuditCheck:
    """vat / net x 100 must land on an allowed rate."""
    try:
        net = parse_amount(net_raw)
        vat = parse_amount(vat_raw)
    except InvalidAmountError:
        return AuditCheck.skip(CheckType.VAT_RATE, vat_field, "VAT rate check skipped, unparseable amount")
    if net is None or vat is None:
        return AuditCheck.skip(CheckType.VAT_RATE, vat_field, "VAT rate check skipped, missing net or VAT amount")
    if net == 0:
        return AuditCheck.skip(CheckType.VAT_RATE, vat_field, "VAT rate check skipped, net amount is zero")
    implied = abs(vat) / abs(net) * 100
    return _judge_rate(implied, vat_field, cross_border, "Implied VAT rate")


def verify_stated_rate(rate_raw: str | None, *, cross_border: bool = False, field: str = "vatRate") -> AuditCheck:
    """The rate printed on the document."""
    rate = parse_vat_rate(rate_raw)
    if rate is None:
        return AuditCheck.skip(CheckType.VAT_RATE, field, "Stated VAT rate missing")
    return _judge_rate(rate, field, cross_border, "Stated VAT rate")


def verify_breakdown_rates(rates: list[str | None], *, cross_border: bool = False) -> list[AuditCheck]:
    """One check per distinct rate in a VAT breakdown table."""
    distinct: list[Decimal] = []
    for raw in rates:
        rate = parse_vat_rate(raw)
        if rate is not None and rate not in distinct:
            distinct.append(rate)
    return [
        _judge_rate(rate, "vatBreakdown", cross_border, "Breakdown VAT rate") for rate in distinct
    ]
