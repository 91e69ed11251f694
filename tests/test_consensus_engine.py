"""
Unit tests for reconciling a fast and an expert extraction.
"""
from __future__ import annotations

import pytest

from core.models import ConflictSeverity
from core.schema import BillPayload, InvoicePayload
from decision.consensus_engine import ConsensusEngine, values_agree


def _invoice(**overrides) -> InvoicePayload:
    data = {
        "vendorName": "Acme Consulting BV",
        "subtotal": "1240.00",
        "totalVatAmount": "260.00",
        "totalAmount": "1500.00",
        "iban": "BE68539007547034",
        "confidence": 0.9,
    }
    data.update(overrides)
    return InvoicePayload.model_validate(data)


def test_agreeing_extractions_have_no_conflicts() -> None:
    fast = _invoice(totalAmount="1500", vendorName="ACME  consulting bv", confidence=0.8)
    merged, report = ConsensusEngine().merge(fast, _invoice())
    assert not report.has_conflicts
    assert merged.vendor_name == "Acme Consulting BV"
    assert merged.confidence == pytest.approx((0.8 + 2 * 0.9) / 3)


def test_expert_gaps_filled_from_fast() -> None:
    fast = _invoice(invoiceNumber="2024-001", iban="BE68539007547034")
    expert = _invoice(iban=None)
    merged, report = ConsensusEngine().merge(fast, expert)
    assert merged.iban == "BE68539007547034"
    assert merged.invoice_number == "2024-001"
    assert not report.has_conflicts


def test_amount_disagreement_is_critical_and_expert_wins() -> None:
    fast = _invoice(totalAmount="1550.00")
    merged, report = ConsensusEngine().merge(fast, _invoice())
    [conflict] = report.conflicts
    assert conflict.field == "totalAmount"
    assert conflict.severity is ConflictSeverity.CRITICAL
    assert conflict.fast_value == "1550.00"
    assert conflict.expert_value == "1500.00"
    assert merged.total_amount == "1500.00"
    assert merged.confidence == pytest.approx(0.9 - 0.05)


def test_address_disagreement_is_minor() -> None:
    fast = _invoice(vendorAddress="Main Street 1, Gent")
    expert = _invoice(vendorAddress="Main Street 11, Gent")
    _, report = ConsensusEngine().merge(fast, expert)
    assert [c.severity for c in report.conflicts] == [ConflictSeverity.MINOR]
    assert report.critical_conflicts == []


def test_conflict_penalty_is_capped() -> None:
    fast = _invoice(
        vendorName="A",
        vendorAddress="A",
        clientName="A",
        clientAddress="A",
        invoiceNumber="A",
        subtotal="1.00",
        totalAmount="2.00",
    )
    expert = _invoice(
        vendorName="B",
        vendorAddress="B",
        clientName="B",
        clientAddress="B",
        invoiceNumber="B",
    )
    merged, report = ConsensusEngine().merge(fast, expert)
    assert len(report.conflicts) == 7
    assert merged.confidence == pytest.approx(0.9 - 0.25)


def test_merged_confidence_never_negative() -> None:
    fast = _invoice(totalAmount="1.00", confidence=0.0)
    merged, _ = ConsensusEngine().merge(fast, _invoice(confidence=0.0))
    assert merged.confidence == 0.0


def test_different_payload_types_rejected() -> None:
    with pytest.raises(TypeError):
        ConsensusEngine().merge(BillPayload(total_amount="1.00"), _invoice())


def test_values_agree() -> None:
    assert values_agree("totalAmount", "1500", "1500.00")
    assert not values_agree("totalAmount", "1500.00", "1500.01")
    assert values_agree("vendorName", "Acme  BV ", "acme bv")
    assert not values_agree("iban", "BE68539007547034", "BE68539007547035")
