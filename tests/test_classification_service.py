"""
Unit tests for the classification service: output parsing, error mapping and
Invoice/Bill direction from the tenant's position on the document.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Sequence

import pytest

from core.exceptions import ClassificationError, InferenceError
from core.interfaces import ILLMProvider
from core.models import Classification, DocumentImage, DocumentType, LLMResponse, TenantContext
from services.classification_service import ClassificationService, resolve_direction

IMAGES = [DocumentImage(b"page-1")]
TENANT = TenantContext(vat_number="BE 0123.456.789", company_name="Tenant NV", tenant_id="t-1")


class FakeLLMProvider(ILLMProvider):
    """Returns a fixed text (or raises) and records the call kwargs."""

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


def _model_answer(document_type: str, confidence: float = 0.7, **parties: Any) -> str:
    return json.dumps({"documentType": document_type, "confidence": confidence, "reasoning": "layout", **parties})


def _classify(text: str, tenant: TenantContext = TENANT) -> Classification:
    return asyncio.run(ClassificationService(FakeLLMProvider(text)).classify(IMAGES, tenant))


def test_issuer_vat_match_makes_invoice() -> None:
    """The model said Bill, but the tenant issued the document."""
    result = _classify(
        _model_answer(
            "Bill",
            issuer={"name": "Tenant NV", "vatNumber": "0123456789"},
            recipient={"name": "Client BV", "vatNumber": "BE0987654321"},
        )
    )
    assert result.document_type is DocumentType.INVOICE
    assert result.confidence == 0.9
    assert result.issuer_vat == "BE0123456789"


def test_recipient_vat_match_makes_bill() -> None:
    result = _classify(
        _model_answer("Invoice", 0.95, issuer={"name": "Acme BV", "vatNumber": "BE0999999999"}, recipient={"vatNumber": "BE0123456789"})
    )
    assert result.document_type is DocumentType.BILL
    assert result.confidence == 0.95


def test_name_match_used_without_vat() -> None:
    result = _classify(
        _model_answer("Invoice", 0.5, issuer={"name": "Acme BV"}, recipient={"name": "TENANT nv"})
    )
    assert result.document_type is DocumentType.BILL
    assert result.confidence == 0.85


def test_vat_match_beats_name_match() -> None:
    result = _classify(
        _model_answer(
            "Bill",
            issuer={"name": "Other NV", "vatNumber": "BE0123456789"},
            recipient={"name": "Tenant NV"},
        )
    )
    assert result.document_type is DocumentType.INVOICE


def test_tenant_on_both_sides_is_unknown() -> None:
    result = _classify(
        _model_answer(
            "Invoice",
            0.9,
            issuer={"vatNumber": "BE0123456789"},
            recipient={"vatNumber": "BE0123456789"},
        )
    )
    assert result.document_type is DocumentType.UNKNOWN
    assert result.confidence == 0.2
    assert "ambiguous" in result.reasoning


def test_tenant_on_neither_side_caps_confidence() -> None:
    result = _classify(
        _model_answer("Bill", 0.95, issuer={"name": "Acme BV"}, recipient={"name": "Globex NV"})
    )
    assert result.document_type is DocumentType.BILL
    assert result.confidence == 0.6


def test_non_directional_types_untouched() -> None:
    receipt = Classification(DocumentType.RECEIPT, 0.95, issuer_vat="BE0123456789")
    assert resolve_direction(receipt, TENANT) is receipt
    bill = Classification(DocumentType.BILL, 0.95)
    assert resolve_direction(bill, TenantContext()) is bill


def test_lenient_output_parsing() -> None:
    text = "Here you go:\n```json\n" + json.dumps(
        {"type": "credit_note", "confidence": 1.7, "language": " NL "}
    ) + "\n```"
    result = _classify(text)
    assert result.document_type is DocumentType.CREDIT_NOTE
    assert result.confidence == 1.0
    assert result.language == "nl"


def test_nan_confidence_reads_as_zero() -> None:
    result = _classify('{"documentType": "Receipt", "confidence": NaN}')
    assert result.document_type is DocumentType.RECEIPT
    assert result.confidence == 0.0


def test_model_called_deterministically() -> None:
    provider = FakeLLMProvider(_model_answer("Receipt", 0.9))
    service = ClassificationService(provider, model="vision-small")
    asyncio.run(service.classify(IMAGES, TENANT))
    [call] = provider.calls
    assert call["model"] == "vision-small"
    assert call["temperature"] == 0.0
    assert "Tenant NV" in call["user"]


def test_no_images_raises() -> None:
    with pytest.raises(ClassificationError):
        asyncio.run(ClassificationService(FakeLLMProvider("{}")).classify([], TENANT))


def test_inference_failure_raises_classification_error() -> None:
    provider = FakeLLMProvider(error=InferenceError("HTTP 503", status_code=503))
    with pytest.raises(ClassificationError) as exc_info:
        asyncio.run(ClassificationService(provider).classify(IMAGES, TENANT, trace_id="doc-1"))
    assert exc_info.value.trace_id == "doc-1"
    assert exc_info.value.stage == "classification"


def test_unparseable_output_raises_classification_error() -> None:
    with pytest.raises(ClassificationError):
        _classify("I think this is an invoice")
