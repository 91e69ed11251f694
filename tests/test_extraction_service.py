"""
Unit tests for the extraction service: typed payloads, prompt assembly and the
zero-confidence payload returned when the model cannot deliver.
"""
from __future__ import annotations

import asyncio
import decimal
import json
from typing import Any, Sequence
from unittest.mock import MagicMock

import pytest

from core.exceptions import InferenceError
from core.interfaces import ILLMProvider
from core.models import DocumentImage, DocumentType, LLMResponse
from core.schema import BillPayload, InvoicePayload
from services.extraction_service import ExtractionService

IMAGES = [DocumentImage(b"page-1"), DocumentImage(b"page-2", page_number=2)]


class FakeLLMProvider(ILLMProvider):
    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self._text = text
        self._error = error
        self.calls: list[dict[str, Any]] = []

    async def invoke(
        self,
        system_prompt: str,
        user_content: str,
        images: Sequence[DocumentImage] | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        self.calls.append({"system": system_prompt, "user": user_content, "images": images, **kwargs})
        if self._error is not None:
            raise self._error
        return LLMResponse(text=self._text)


def _extract(provider: FakeLLMProvider, document_type: DocumentType = DocumentType.INVOICE, **kwargs):
    return asyncio.run(ExtractionService(provider).extract(IMAGES, document_type, **kwargs))


def test_invoice_fields_normalized() -> None:
    text = json.dumps(
        {
            "vendorName": "Acme Consulting BV",
            "vendorVatNumber": "BE 0123.456.789",
            "issueDate": "15/01/2024",
            "subtotal": "1.240,00",
            "totalVatAmount": "260,00",
            "totalAmount": "€ 1.500,00",
            "iban": "be68 5390 0754 7034",
            "confidence": 0.92,
            "provenance": {"totalAmount": {"pageNumber": 2, "sourceText": "Totaal 1.500,00", "fieldConfidence": 0.9}},
        }
    )
    payload = _extract(FakeLLMProvider(text))
    assert isinstance(payload, InvoicePayload)
    assert not payload.extraction_failed
    assert payload.total_amount == "1500.00"
    assert payload.vendor_vat_number == "BE0123456789"
    assert payload.issue_date == "2024-01-15"
    assert payload.iban == "BE68539007547034"
    assert payload.provenance["totalAmount"].page_number == 2


def test_credit_note_uses_invoice_shape() -> None:
    payload = _extract(
        FakeLLMProvider('{"vendorName": "Acme", "totalAmount": "-121,00", "originalInvoiceNumber": "2024-001"}'),
        DocumentType.CREDIT_NOTE,
    )
    assert isinstance(payload, InvoicePayload)
    assert payload.total_amount == "-121.00"
    assert payload.original_invoice_number == "2024-001"


def test_bill_accepts_bank_account_alias() -> None:
    payload = _extract(
        FakeLLMProvider('{"supplierName": "Elektro Peeters", "totalAmount": "121", "bankAccount": "BE68539007547034"}'),
        DocumentType.BILL,
    )
    assert isinstance(payload, BillPayload)
    assert payload.iban == "BE68539007547034"


def test_feedback_and_reference_example_reach_the_prompt() -> None:
    provider = FakeLLMProvider('{"totalAmount": "1"}')
    _extract(
        provider,
        reference_example={"vendorName": "Acme Consulting BV", "confidence": 0.95},
        feedback="## Correction needed\nfix the IBAN",
    )
    [call] = provider.calls
    assert "## Reference example" in call["user"]
    assert "Acme Consulting BV" in call["user"]
    assert "0.95" not in call["user"]
    assert call["user"].endswith("fix the IBAN")
    assert call["temperature"] == 0.0
    assert len(call["images"]) == 2


def test_inference_failure_returns_empty_payload() -> None:
    payload = _extract(FakeLLMProvider(error=InferenceError("timed out")))
    assert isinstance(payload, InvoicePayload)
    assert payload.extraction_failed
    assert payload.confidence == 0.0
    assert payload.total_amount is None
    assert payload.extraction_error.startswith("inference failed")


def test_malformed_output_returns_empty_payload() -> None:
    payload = _extract(FakeLLMProvider("Sorry, I cannot read this document."), DocumentType.RECEIPT)
    assert payload.extraction_failed
    assert payload.extraction_error.startswith("malformed output")


def test_schema_mismatch_returns_empty_payload() -> None:
    payload = _extract(FakeLLMProvider('{"totalAmount": "12", "lineItems": ["not an object"]}'))
    assert payload.extraction_failed
    assert payload.extraction_error.startswith("schema mismatch")


def test_mock_llm_provider_interface() -> None:
    """ILLMProvider can be mocked directly; invoke is awaited with the configured model."""
    mock = MagicMock(spec=ILLMProvider)
    mock.invoke.return_value = LLMResponse(text='{"merchantName": "Parking Gent", "totalAmount": "4,50"}')
    payload = asyncio.run(ExtractionService(mock, model="vision-large").extract(IMAGES, DocumentType.EXPENSE))
    assert payload.merchant_name == "Parking Gent"
    assert payload.total_amount == "4.50"
    mock.invoke.assert_awaited_once()
    assert mock.invoke.await_args.kwargs["model"] == "vision-large"


def test_no_images_returns_empty_payload() -> None:
    provider = FakeLLMProvider("{}")
    payload = asyncio.run(ExtractionService(provider).extract([], DocumentType.EXPENSE))
    assert payload.extraction_failed
    assert provider.calls == []


def test_non_finite_numbers_do_not_escape_extraction() -> None:
    """json.loads accepts NaN/Infinity; they read as missing values, not as crashes."""
    text = (
        '{"vendorName": "Acme BV", "totalAmount": "1500.00", "confidence": 0.9,'
        ' "lineItems": [{"description": "Consulting", "vatRate": NaN}, {"vatRate": Infinity}]}'
    )
    payload = _extract(FakeLLMProvider(text))
    assert not payload.extraction_failed
    assert payload.vendor_name == "Acme BV"
    assert [item.vat_rate for item in payload.line_items] == [None, None]


def test_nan_confidence_reads_as_zero() -> None:
    payload = _extract(FakeLLMProvider('{"vendorName": "Acme BV", "totalAmount": "1500.00", "confidence": NaN}'))
    assert not payload.extraction_failed
    assert payload.confidence == 0.0


def test_numeric_text_fields_are_kept_as_strings() -> None:
    invoice = _extract(
        FakeLLMProvider(
            '{"vendorName": "Acme BV", "invoiceNumber": 2024001, "vendorVatNumber": 123456789,'
            ' "totalAmount": "1500.00", "confidence": 0.9}'
        )
    )
    assert not invoice.extraction_failed
    assert invoice.invoice_number == "2024001"
    assert invoice.vendor_vat_number == "BE0123456789"
    assert invoice.vendor_name == "Acme BV"

    receipt = _extract(
        FakeLLMProvider('{"merchantName": "Delhaize", "receiptNumber": 5531, "cardLastFour": 1234, "totalAmount": 12.5}'),
        DocumentType.RECEIPT,
    )
    assert not receipt.extraction_failed
    assert receipt.receipt_number == "5531"
    assert receipt.card_last_four == "1234"
    assert receipt.total_amount == "12.5"


def test_arithmetic_error_while_parsing_returns_empty_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    def overflowing(document_type, data):
        raise decimal.InvalidOperation("[<class 'decimal.InvalidOperation'>]")

    monkeypatch.setattr("services.extraction_service.parse_payload", overflowing)
    payload = _extract(FakeLLMProvider('{"totalAmount": "1500.00"}'))
    assert payload.extraction_failed
    assert payload.confidence == 0.0
    assert payload.extraction_error.startswith("malformed output")
