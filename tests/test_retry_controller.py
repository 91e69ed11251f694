"""
Unit tests for the self-correction loop and the correction feedback prompt.
Extraction is scripted; the audit engine is the real one.
"""
from __future__ import annotations

import asyncio
from typing import Any, Sequence

from core.interfaces import IExtractionService
from core.models import (
    AuditCheck,
    AuditReport,
    CheckType,
    CorrectedOnRetry,
    DocumentImage,
    DocumentType,
    NoRetryNeeded,
    StillFailing,
)
from core.schema import ExtractedPayload, InvoicePayload
from decision.audit_engine import AuditEngine
from services.retry_service import FeedbackPromptBuilder, RetryController, corrected_fields
from utils.config import RetryConfig

GOOD_IBAN = "BE68539007547034"
BAD_IBAN = "BE68539007547035"
IMAGES = [DocumentImage(b"page-1")]


def _invoice(confidence: float, iban: str = BAD_IBAN) -> InvoicePayload:
    return InvoicePayload(
        vendor_name="Acme Consulting BV",
        subtotal="1240.00",
        total_vat_amount="260.00",
        total_amount="1500.00",
        iban=iban,
        confidence=confidence,
    )


class ScriptedExtractor(IExtractionService):
    """Returns the given payloads in order and records the feedback it was sent."""

    def __init__(self, payloads: list[ExtractedPayload]) -> None:
        self._payloads = list(payloads)
        self.feedback: list[str | None] = []

    @property
    def calls(self) -> int:
        return len(self.feedback)

    async def extract(
        self,
        images: Sequence[DocumentImage],
        document_type: DocumentType,
        reference_example: dict[str, Any] | None = None,
        *,
        feedback: str | None = None,
        trace_id: str = "",
    ) -> ExtractedPayload:
        self.feedback.append(feedback)
        return self._payloads.pop(0)


def _run(extractor: ScriptedExtractor, first: InvoicePayload, config: RetryConfig | None = None, **kwargs):
    engine = AuditEngine()
    report = engine.audit(first, DocumentType.INVOICE)
    controller = RetryController(extractor, engine, config)
    return asyncio.run(
        controller.attempt_correction(IMAGES, DocumentType.INVOICE, first, report, **kwargs)
    )


def test_no_retry_when_audit_passes() -> None:
    extractor = ScriptedExtractor([])
    result = _run(extractor, _invoice(0.9, GOOD_IBAN))
    assert isinstance(result, NoRetryNeeded)
    assert extractor.calls == 0


def test_non_improving_retry_stops_loop() -> None:
    """[0.5, 0.5]: the second extraction is not better, so only one retry is spent."""
    extractor = ScriptedExtractor([_invoice(0.5), _invoice(0.9, GOOD_IBAN)])
    result = _run(extractor, _invoice(0.5))
    assert result == StillFailing(2)
    assert extractor.calls == 1
    assert result.payload.confidence == 0.5


def test_corrected_on_third_attempt() -> None:
    """[0.5, 0.7, 0.9]: the last extraction fixes the IBAN."""
    extractor = ScriptedExtractor([_invoice(0.7), _invoice(0.9, GOOD_IBAN)])
    result = _run(extractor, _invoice(0.5))
    assert isinstance(result, CorrectedOnRetry)
    assert result.attempt == 3
    assert result.corrected_fields == ("iban",)
    assert result.payload.iban == GOOD_IBAN
    assert result.audit_report.is_valid
    assert extractor.calls == 2


def test_still_failing_keeps_best_payload() -> None:
    extractor = ScriptedExtractor([_invoice(0.7), _invoice(0.9)])
    result = _run(extractor, _invoice(0.5))
    assert result == StillFailing(3)
    assert result.payload.confidence == 0.9
    assert not result.audit_report.is_valid


def test_attempts_capped_at_hard_ceiling() -> None:
    extractor = ScriptedExtractor([_invoice(0.6), _invoice(0.7), _invoice(0.8)])
    result = _run(extractor, _invoice(0.5), max_attempts=10)
    assert result == StillFailing(3)
    assert extractor.calls == 2


def test_single_attempt_means_no_reextraction() -> None:
    extractor = ScriptedExtractor([])
    assert _run(extractor, _invoice(0.5), max_attempts=1) == StillFailing(1)
    assert _run(extractor, _invoice(0.5), RetryConfig(enabled=False)) == StillFailing(1)
    assert extractor.calls == 0


def test_feedback_marks_final_attempt() -> None:
    extractor = ScriptedExtractor([_invoice(0.7), _invoice(0.8)])
    _run(extractor, _invoice(0.5))
    first, last = extractor.feedback
    assert "## Correction needed" in first
    assert "FINAL" not in first
    assert "FINAL" in last


def test_feedback_omitted_without_hint_injection() -> None:
    extractor = ScriptedExtractor([_invoice(0.7), _invoice(0.8)])
    _run(extractor, _invoice(0.5), RetryConfig(inject_hints=False))
    assert extractor.feedback == [None, None]


def test_feedback_prompt_lists_failures_and_warnings() -> None:
    report = AuditReport.from_checks(
        [
            AuditCheck.critical(
                CheckType.CHECKSUM_IBAN, "iban", "IBAN is invalid", hint="Re-read the IBAN", actual=BAD_IBAN
            ),
            AuditCheck.warning(CheckType.VAT_RATE, "totalVatAmount", "Implied VAT rate 15% is odd", hint="re-read"),
        ]
    )
    text = FeedbackPromptBuilder().build(report, attempt=2, max_attempts=3)
    assert "failed 1 critical check(s)" in text
    assert "1. [ChecksumIBAN] field 'iban': IBAN is invalid" in text
    assert f"extracted: {BAD_IBAN}" in text
    assert "Fix: Re-read the IBAN" in text
    assert "Where to look:" in text
    assert "- totalVatAmount: Implied VAT rate 15% is odd" in text
    assert "0<->O" in text


def test_corrected_fields_ignores_confidence() -> None:
    assert corrected_fields(_invoice(0.5), _invoice(0.9)) == ()
    assert corrected_fields(_invoice(0.5), _invoice(0.5, GOOD_IBAN)) == ("iban",)
