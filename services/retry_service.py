"""
Self-correction loop: re-extract with the failing checks fed back to the model.
A retry is adopted only when its confidence strictly improves on the best so far;
the first non-improving retry ends the loop.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from core.interfaces import IExtractionService
from core.models import (
    AuditCheck,
    AuditReport,
    CheckType,
    CompanyLookup,
    CorrectedOnRetry,
    DocumentImage,
    DocumentType,
    NoRetryNeeded,
    RetryResult,
    StillFailing,
)
from core.schema import ExtractedPayload
from decision.audit_engine import AuditEngine
from utils.config import MAX_CORRECTIONS, RetryConfig

logger = logging.getLogger(__name__)

# Where to look on the page, per kind of failed check
CHECK_GUIDANCE: dict[CheckType, str] = {
    CheckType.MATH: (
        "Look at the totals block at the bottom of the last page. Read the amount excluding VAT, "
        "the VAT amount and the amount including VAT separately. Belgian documents write 1.234,56 "
        "for one thousand two hundred thirty-four euro fifty-six."
    ),
    CheckType.CHECKSUM_IBAN: (
        "Look at the payment details, usually in the footer or next to the payment instructions. "
        "A Belgian IBAN looks like BE68 5390 0754 7034: BE, 2 check digits, then 12 digits."
    ),
    CheckType.CHECKSUM_OGM: (
        "Look for the structured communication (gestructureerde mededeling / communication "
        "structurée), printed as +++XXX/XXXX/XXXXX+++ near the payment details or on the "
        "payment slip."
    ),
    CheckType.VAT_RATE: (
        "Look at the VAT column of the line items and the VAT summary. Belgian rates are "
        "0%, 6%, 12% and 21%."
    ),
    CheckType.COMPANY_EXISTS: (
        "Look at the letterhead and the legal footer for the VAT or enterprise number "
        "(BTW/TVA, BE followed by 10 digits)."
    ),
    CheckType.COMPANY_NAME: (
        "Look at the letterhead and the legal footer for the registered company name "
        "including its legal form (BV, NV, SRL, SA)."
    ),
}

OCR_MISTAKES = "Common OCR mistakes: 0<->O, 1<->I<->l, 5<->S, 8<->B, 6<->G, and a comma read as a dot."


class FeedbackPromptBuilder:
    """Turns an audit report into correction instructions for the next extraction."""

    def _section(self, index: int, check: AuditCheck) -> list[str]:
        lines = [f"{index}. [{check.type.value}] field '{check.field}': {check.message}"]
        if check.expected is not None or check.actual is not None:
            lines.append(f"   Expected: {check.expected or 'n/a'}; extracted: {check.actual or 'n/a'}")
        if check.hint:
            lines.append(f"   Fix: {check.hint}")
        guidance = CHECK_GUIDANCE.get(check.type)
        if guidance:
            lines.append(f"   Where to look: {guidance}")
        return lines

    def build(self, report: AuditReport, attempt: int, max_attempts: int) -> str:
        failures = report.critical_failures
        lines = [
            "## Correction needed",
            f"Your previous extraction failed {len(failures)} critical check(s). "
            "Re-read the document and return the complete JSON again with the errors fixed.",
            "",
        ]
        for i, check in enumerate(failures, start=1):
            lines += self._section(i, check)
        if report.warnings:
            lines += ["", "Also double-check:"]
            lines += [f"- {w.field}: {w.message}" for w in report.warnings]
        lines += ["", OCR_MISTAKES]
        lines.append("Only change values you can read on the document; use null rather than guessing.")
        if attempt >= max_attempts:
            lines += ["", "This is your FINAL attempt. Be very careful with every digit."]
        return "\n".join(lines)


def corrected_fields(before: ExtractedPayload, after: ExtractedPayload) -> tuple[str, ...]:
    """camelCase content fields whose value differs between two extractions."""
    old, new = before.content(), after.content()
    return tuple(k for k in new if old.get(k) != new.get(k))


class RetryController:
    """Sequential self-correction. Holds no per-document state; safe to share."""

    def __init__(
        self,
        extractor: IExtractionService,
        audit_engine: AuditEngine,
        config: RetryConfig | None = None,
        feedback_builder: FeedbackPromptBuilder | None = None,
    ) -> None:
        self._extractor = extractor
        self._audit = audit_engine
        self._config = config or RetryConfig()
        self._feedback = feedback_builder or FeedbackPromptBuilder()

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def attempt_correction(
        self,
        images: Sequence[DocumentImage],
        document_type: DocumentType,
        payload: ExtractedPayload,
        audit_report: AuditReport,
        max_attempts: int | None = None,
        *,
        company_lookup: CompanyLookup | None = None,
        reference_example: dict[str, Any] | None = None,
        trace_id: str = "",
    ) -> RetryResult:
        """
        Attempts count extractions; the one that produced payload is attempt 1.
        Re-extracts for attempts 2..min(max_attempts, MAX_CORRECTIONS).
        """
        if audit_report.is_valid:
            return NoRetryNeeded()
        requested = self._config.effective_max_retries if max_attempts is None else max_attempts
        limit = max(1, min(requested, MAX_CORRECTIONS))

        best_payload, best_report = payload, audit_report
        attempts = 1
        for attempt in range(2, limit + 1):
            attempts = attempt
            feedback = (
                self._feedback.build(best_report, attempt, limit) if self._config.inject_hints else None
            )
            candidate = await self._extractor.extract(
                images,
                document_type,
                reference_example,
                feedback=feedback,
                trace_id=trace_id,
            )
            if candidate.confidence <= best_payload.confidence:
                logger.info(
                    "Retry %s/%s did not improve confidence (%.2f <= %.2f); stopping",
                    attempt,
                    limit,
                    candidate.confidence,
                    best_payload.confidence,
                )
                break
            best_payload = candidate
            best_report = self._audit.audit(candidate, document_type, company_lookup)
            if best_report.is_valid:
                fields = corrected_fields(payload, candidate)
                logger.info("Corrected on attempt %s; changed: %s", attempt, ", ".join(fields) or "-")
                return CorrectedOnRetry(attempt, fields, best_payload, best_report)
            logger.info(
                "Retry %s/%s improved confidence to %.2f; %s critical failure(s) remain",
                attempt,
                limit,
                candidate.confidence,
                len(best_report.critical_failures),
            )
        return StillFailing(attempts, best_payload, best_report)
