"""
Data models for the document pipeline.
Uses frozen dataclasses for DTOs; Pydantic payload schemas (InvoicePayload, etc.) live in core.schema.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from core.schema import ExtractedPayload


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DocumentType(str, Enum):
    """Closed set of document kinds. Decides extraction schema and audit rules."""

    INVOICE = "Invoice"
    BILL = "Bill"
    CREDIT_NOTE = "CreditNote"
    PRO_FORMA = "ProForma"
    RECEIPT = "Receipt"
    EXPENSE = "Expense"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> DocumentType:
        """Lenient lookup: 'credit_note', 'Credit Note' and 'CREDITNOTE' all map to CREDIT_NOTE."""
        key = re.sub(r"[\s_\-]", "", str(value or "")).lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        return cls.UNKNOWN


class CheckType(str, Enum):
    MATH = "Math"
    CHECKSUM_OGM = "ChecksumOGM"
    CHECKSUM_IBAN = "ChecksumIBAN"
    VAT_RATE = "VatRate"
    COMPANY_EXISTS = "CompanyExists"
    COMPANY_NAME = "CompanyName"


class Severity(str, Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    INFO = "Info"


class AuditStatus(str, Enum):
    PASSED = "Passed"
    WARNINGS_ONLY = "WarningsOnly"
    FAILED = "Failed"


class ConflictSeverity(str, Enum):
    CRITICAL = "Critical"
    MINOR = "Minor"


class JudgmentOutcome(str, Enum):
    AUTO_APPROVE = "AutoApprove"
    NEEDS_REVIEW = "NeedsReview"
    REJECT = "Reject"


class PipelineStage(str, Enum):
    """Stage tag carried by a failed pipeline result."""

    CLASSIFICATION = "classification"
    EXTRACTION = "extraction"
    VALIDATION = "validation"
    ENRICHMENT = "enrichment"


# ---------------------------------------------------------------------------
# Inputs and collaborator DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LLMResponse:
    """Structured response from an LLM provider."""

    text: str
    model: str = ""
    finish_reason: str = ""
    usage: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DocumentImage:
    """One page of a scanned document."""

    data: bytes
    media_type: str = "image/jpeg"
    page_number: int = 1


@dataclass(frozen=True)
class TenantContext:
    """The company on whose behalf documents are processed."""

    vat_number: str | None = None
    company_name: str | None = None
    address: str | None = None
    tenant_id: str = ""


@dataclass(frozen=True)
class Classification:
    """Classification stage output."""

    document_type: DocumentType
    confidence: float
    reasoning: str = ""
    issuer_name: str | None = None
    issuer_vat: str | None = None
    recipient_name: str | None = None
    recipient_vat: str | None = None
    language: str | None = None


@dataclass(frozen=True)
class RegistryEntry:
    """Company record returned by the business registry."""

    vat_number: str
    name: str
    address: str | None = None
    active: bool = True


@dataclass(frozen=True)
class CompanyLookup:
    """Registry lookup done before auditing. entry is None when the registry had no match."""

    vat_number: str | None
    name: str | None
    entry: RegistryEntry | None = None

    @property
    def found(self) -> bool:
        return self.entry is not None


@dataclass(frozen=True)
class VendorExample:
    """A previously approved extraction, used as a formatting hint for the same vendor."""

    tenant_id: str
    document_type: DocumentType
    vendor_vat: str | None
    vendor_name: str | None
    payload: dict[str, Any]
    confidence: float
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "document_type": self.document_type.value,
            "vendor_vat": self.vendor_vat,
            "vendor_name": self.vendor_name,
            "payload": self.payload,
            "confidence": self.confidence,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> VendorExample:
        return cls(
            tenant_id=d["tenant_id"],
            document_type=DocumentType.parse(d["document_type"]),
            vendor_vat=d.get("vendor_vat"),
            vendor_name=d.get("vendor_name"),
            payload=d.get("payload") or {},
            confidence=float(d.get("confidence", 0.0)),
            created_at=d.get("created_at", ""),
        )


@dataclass(frozen=True)
class DocumentJob:
    """One unit of batch work: the pages of a document plus its tenant."""

    document_id: str
    images: tuple[DocumentImage, ...]
    tenant: TenantContext


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditCheck:
    """
    Result of one deterministic check.
    hint is phrased as an instruction to the extraction model and is fed back on retry.
    skipped marks a check that could not run for lack of data; it counts as passed.
    """

    type: CheckType
    field: str
    passed: bool
    severity: Severity
    message: str
    hint: str | None = None
    expected: str | None = None
    actual: str | None = None
    skipped: bool = False

    @classmethod
    def ok(
        cls,
        type: CheckType,
        field: str,
        message: str,
        expected: str | None = None,
        actual: str | None = None,
    ) -> AuditCheck:
        return cls(type, field, True, Severity.INFO, message, expected=expected, actual=actual)

    @classmethod
    def skip(cls, type: CheckType, field: str, message: str) -> AuditCheck:
        return cls(type, field, True, Severity.INFO, message, skipped=True)

    @classmethod
    def critical(
        cls,
        type: CheckType,
        field: str,
        message: str,
        hint: str,
        expected: str | None = None,
        actual: str | None = None,
    ) -> AuditCheck:
        return cls(type, field, False, Severity.CRITICAL, message, hint, expected, actual)

    @classmethod
    def warning(
        cls,
        type: CheckType,
        field: str,
        message: str,
        hint: str,
        expected: str | None = None,
        actual: str | None = None,
    ) -> AuditCheck:
        return cls(type, field, False, Severity.WARNING, message, hint, expected, actual)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "field": self.field,
            "passed": self.passed,
            "severity": self.severity.value,
            "message": self.message,
            "hint": self.hint,
            "expected": self.expected,
            "actual": self.actual,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class AuditReport:
    """All checks from one audit pass. Never merged across passes."""

    checks: tuple[AuditCheck, ...] = ()

    @classmethod
    def from_checks(cls, checks: list[AuditCheck] | tuple[AuditCheck, ...]) -> AuditReport:
        return cls(tuple(checks))

    @property
    def passed_count(self) -> int:
        return sum(1 for c in self.checks if c.passed)

    @property
    def failed_count(self) -> int:
        return sum(1 for c in self.checks if not c.passed)

    @property
    def critical_failures(self) -> list[AuditCheck]:
        return [c for c in self.checks if not c.passed and c.severity is Severity.CRITICAL]

    @property
    def warnings(self) -> list[AuditCheck]:
        return [c for c in self.checks if not c.passed and c.severity is Severity.WARNING]

    @property
    def is_valid(self) -> bool:
        return not self.critical_failures

    @property
    def overall_status(self) -> AuditStatus:
        if self.critical_failures:
            return AuditStatus.FAILED
        if self.warnings:
            return AuditStatus.WARNINGS_ONLY
        return AuditStatus.PASSED

    def checks_of(self, check_type: CheckType) -> list[AuditCheck]:
        return [c for c in self.checks if c.type is check_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_status": self.overall_status.value,
            "passed_count": self.passed_count,
            "failed_count": self.failed_count,
            "checks": [c.to_dict() for c in self.checks],
        }


# ---------------------------------------------------------------------------
# Retry outcome (tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoRetryNeeded:
    """First audit had no critical failure."""


@dataclass(frozen=True)
class CorrectedOnRetry:
    """An adopted retry passed the audit. attempt counts extractions; the original one is attempt 1."""

    attempt: int
    corrected_fields: tuple[str, ...] = ()
    payload: ExtractedPayload | None = field(default=None, compare=False, repr=False)
    audit_report: AuditReport | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class StillFailing:
    """Retries ended without a passing audit. payload/audit_report are the best pair seen."""

    attempts: int
    payload: ExtractedPayload | None = field(default=None, compare=False, repr=False)
    audit_report: AuditReport | None = field(default=None, compare=False, repr=False)


RetryResult = Union[NoRetryNeeded, CorrectedOnRetry, StillFailing]


def retry_attempts_of(result: RetryResult | None) -> int:
    """Extraction attempt number a retry result ended on (0 when no retry ran)."""
    if isinstance(result, CorrectedOnRetry):
        return result.attempt
    if isinstance(result, StillFailing):
        return result.attempts
    return 0


# ---------------------------------------------------------------------------
# Multi-model consensus
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Conflict:
    field: str
    fast_value: str | None
    expert_value: str | None
    severity: ConflictSeverity


@dataclass(frozen=True)
class ConsensusReport:
    conflicts: tuple[Conflict, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def critical_conflicts(self) -> list[Conflict]:
        return [c for c in self.conflicts if c.severity is ConflictSeverity.CRITICAL]


# ---------------------------------------------------------------------------
# Judgment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JudgmentContext:
    """Everything the judgment engine looks at."""

    has_essential_fields: bool
    document_type: DocumentType
    audit_report: AuditReport
    extraction_confidence: float
    missing_essential_fields: tuple[str, ...] = ()
    retry_result: RetryResult | None = None
    consensus_report: ConsensusReport | None = None


@dataclass(frozen=True)
class JudgmentDecision:
    """Terminal decision for one document."""

    outcome: JudgmentOutcome
    confidence: float
    reasoning: str
    issues: tuple[str, ...] = ()
    retry_attempts: int = 0
    corrected_fields: tuple[str, ...] = ()
    all_critical_checks_passed: bool = False
    has_model_consensus: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Export for persistence/logging."""
        return {
            "outcome": self.outcome.value,
            "confidence": round(self.confidence, 4),
            "reasoning": self.reasoning,
            "issues": list(self.issues),
            "retry_attempts": self.retry_attempts,
            "corrected_fields": list(self.corrected_fields),
            "all_critical_checks_passed": self.all_critical_checks_passed,
            "has_model_consensus": self.has_model_consensus,
        }


# ---------------------------------------------------------------------------
# Pipeline trail and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcessingStep:
    """One entry of the per-document audit trail."""

    step: int
    action: str
    tool: str
    duration_ms: int
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "action": self.action,
            "tool": self.tool,
            "duration_ms": self.duration_ms,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class PipelineSuccess:
    """Document auto-approved."""

    trace_id: str
    document_type: DocumentType
    classification: Classification
    payload: ExtractedPayload
    audit_report: AuditReport
    decision: JudgmentDecision
    retry_result: RetryResult
    steps: tuple[ProcessingStep, ...] = ()
    consensus_report: ConsensusReport | None = None
    enrichment: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineNeedsReview:
    """Document needs a human. payload may be partial; issues say what to look at."""

    trace_id: str
    document_type: DocumentType
    classification: Classification
    payload: ExtractedPayload
    audit_report: AuditReport
    issues: tuple[str, ...]
    decision: JudgmentDecision | None = None
    retry_result: RetryResult | None = None
    steps: tuple[ProcessingStep, ...] = ()
    consensus_report: ConsensusReport | None = None
    enrichment: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineFailed:
    """Processing stopped at stage. decision is set when the judgment engine rejected the document."""

    trace_id: str
    reason: str
    stage: PipelineStage
    steps: tuple[ProcessingStep, ...] = ()
    classification: Classification | None = None
    decision: JudgmentDecision | None = None


PipelineResult = Union[PipelineSuccess, PipelineNeedsReview, PipelineFailed]


@dataclass
class BatchMetrics:
    """Metrics collected during batch processing."""

    total_processed: int = 0
    auto_approved_count: int = 0
    needs_review_count: int = 0
    rejected_count: int = 0
    failed_count: int = 0
    total_time_sec: float = 0.0
    confidence_sum: float = 0.0
    retry_attempts_sum: int = 0

    @property
    def decided_count(self) -> int:
        return self.auto_approved_count + self.needs_review_count + self.rejected_count

    @property
    def auto_approve_rate(self) -> float:
        return self.auto_approved_count / self.total_processed if self.total_processed else 0.0

    @property
    def average_confidence(self) -> float:
        return self.confidence_sum / self.decided_count if self.decided_count else 0.0

    @property
    def average_retry_attempts(self) -> float:
        return self.retry_attempts_sum / self.decided_count if self.decided_count else 0.0

    def to_dict(self) -> dict[str, Any]:
        """Export for logging/serialization."""
        return {
            "total_processed": self.total_processed,
            "auto_approved_count": self.auto_approved_count,
            "needs_review_count": self.needs_review_count,
            "rejected_count": self.rejected_count,
            "failed_count": self.failed_count,
            "auto_approve_rate": round(self.auto_approve_rate, 4),
            "average_confidence": round(self.average_confidence, 4),
            "average_retry_attempts": round(self.average_retry_attempts, 4),
            "total_time_sec": round(self.total_time_sec, 4),
        }
