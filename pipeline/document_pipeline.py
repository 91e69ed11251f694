"""
Document pipeline: single public coroutine process(images, tenant) -> PipelineResult.
Does not know which LLM, registry or store is used; all collaborators injected via constructor.
Flow: classify -> (vendor example) -> extract -> (fast extract + consensus) -> registry -> audit
-> self-correction -> judgment -> enrichment -> (index example).
Every stage appends a ProcessingStep to the run's trail.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Sequence

from core.interfaces import (
    IBusinessRegistry,
    IClassificationService,
    IEnrichmentService,
    IExtractionService,
    ILLMProvider,
    IVendorExampleStore,
)
from core.models import (
    AuditReport,
    Classification,
    ConsensusReport,
    CorrectedOnRetry,
    DocumentImage,
    DocumentType,
    JudgmentContext,
    JudgmentDecision,
    JudgmentOutcome,
    PipelineFailed,
    PipelineNeedsReview,
    PipelineResult,
    PipelineStage,
    PipelineSuccess,
    ProcessingStep,
    RetryResult,
    StillFailing,
    TenantContext,
    VendorExample,
)
from core.schema import ExtractedPayload, counterparty_of
from decision.audit_engine import AuditEngine
from decision.consensus_engine import ConsensusEngine
from decision.judgment_engine import JudgmentEngine
from prompts.contracts import missing_essential_fields
from services.classification_service import ClassificationService
from services.example_store import JsonFileVendorExampleStore, now_iso
from services.extraction_service import ExtractionService
from services.registry_service import RegistryLookupService
from services.retry_service import RetryController, corrected_fields
from utils.config import AppConfig, PipelineConfig
from utils.logger import log_structured

logger = logging.getLogger(__name__)


class StepTrail:
    """Append-only trail for one run. Not shared between runs."""

    def __init__(self, trace_id: str = "") -> None:
        self._trace_id = trace_id
        self._steps: list[ProcessingStep] = []

    def add(self, action: str, tool: str, started: float, notes: str | None = None) -> None:
        duration_ms = int((time.perf_counter() - started) * 1000)
        self._steps.append(ProcessingStep(len(self._steps) + 1, action, tool, duration_ms, notes))
        log_structured(
            logger,
            logging.DEBUG,
            "Processing step",
            trace_id=self._trace_id,
            action=action,
            tool=tool,
            duration_ms=duration_ms,
        )

    @property
    def steps(self) -> tuple[ProcessingStep, ...]:
        return tuple(self._steps)


def _tool_name(obj: Any) -> str:
    return type(obj).__name__


def _unsettled_conflicts(
    consensus: ConsensusReport | None, before: ExtractedPayload, after: ExtractedPayload
) -> ConsensusReport | None:
    """Drop conflicts on fields a retry re-read; the adopted payload no longer carries those values."""
    if consensus is None or before is after:
        return consensus
    changed = set(corrected_fields(before, after))
    return ConsensusReport(tuple(c for c in consensus.conflicts if c.field not in changed))


class DocumentPipeline:
    """
    Production pipeline: process(images, tenant) -> PipelineResult.
    No per-document state on the instance, so concurrent process() calls are safe.
    """

    def __init__(
        self,
        classifier: IClassificationService,
        extractor: IExtractionService,
        audit_engine: AuditEngine,
        judgment_engine: JudgmentEngine,
        retry_controller: RetryController,
        *,
        registry: IBusinessRegistry | None = None,
        example_store: IVendorExampleStore | None = None,
        enrichment: IEnrichmentService | None = None,
        fast_extractor: IExtractionService | None = None,
        consensus_engine: ConsensusEngine | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self._classifier = classifier
        self._extractor = extractor
        self._audit = audit_engine
        self._judgment = judgment_engine
        self._retry = retry_controller
        self._registry = RegistryLookupService(registry)
        self._examples = example_store
        self._enrichment = enrichment
        self._fast_extractor = fast_extractor
        self._consensus = consensus_engine or (ConsensusEngine() if fast_extractor else None)
        self._config = config or PipelineConfig()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        llm_provider: ILLMProvider,
        *,
        registry: IBusinessRegistry | None = None,
        example_store: IVendorExampleStore | None = None,
        enrichment: IEnrichmentService | None = None,
    ) -> DocumentPipeline:
        """
        Wire the default services around one provider using the models named in config.
        Without an explicit example_store, config.example_store_dir (when set) selects the JSON store.
        """
        if example_store is None and config.example_store_dir:
            example_store = JsonFileVendorExampleStore(config.example_store_dir)
        extractor = ExtractionService(llm_provider, model=config.llm.extraction_model)
        fast_extractor = (
            ExtractionService(llm_provider, model=config.llm.fast_extraction_model)
            if config.llm.fast_extraction_model
            else None
        )
        audit_engine = AuditEngine()
        return cls(
            ClassificationService(llm_provider, model=config.llm.classification_model),
            extractor,
            audit_engine,
            JudgmentEngine(config.judgment),
            RetryController(extractor, audit_engine, config.retry),
            registry=registry,
            example_store=example_store,
            enrichment=enrichment,
            fast_extractor=fast_extractor,
            config=config.pipeline,
        )

    # ------------------------------------------------------------------
    # Stages with a local recovery
    # ------------------------------------------------------------------

    async def _find_example(
        self,
        classification: Classification,
        tenant: TenantContext,
        trail: StepTrail,
        trace_id: str,
    ) -> VendorExample | None:
        if self._examples is None or not self._config.use_reference_examples:
            return None
        started = time.perf_counter()
        try:
            example = await self._examples.find(
                tenant.tenant_id, classification.document_type, classification.issuer_vat
            )
        except Exception as e:
            logger.warning("Vendor example lookup failed trace_id=%s: %s", trace_id, e)
            trail.add("Find vendor example", _tool_name(self._examples), started, f"lookup failed: {e}")
            return None
        trail.add(
            "Find vendor example",
            _tool_name(self._examples),
            started,
            "example found" if example else "no example",
        )
        return example

    async def _second_opinion(
        self,
        images: Sequence[DocumentImage],
        document_type: DocumentType,
        payload: ExtractedPayload,
        reference: dict[str, Any] | None,
        trail: StepTrail,
        trace_id: str,
    ) -> tuple[ExtractedPayload, ConsensusReport | None]:
        if self._fast_extractor is None or self._consensus is None:
            return payload, None
        started = time.perf_counter()
        fast = await self._fast_extractor.extract(images, document_type, reference, trace_id=trace_id)
        if fast.extraction_failed:
            trail.add("Consensus extraction", _tool_name(self._fast_extractor), started, "fast model failed; skipped")
            return payload, None
        merged, report = self._consensus.merge(fast, payload)
        trail.add(
            "Consensus extraction",
            _tool_name(self._consensus),
            started,
            f"{len(report.conflicts)} conflict(s), {len(report.critical_conflicts)} critical",
        )
        return merged, report

    async def _index_example(
        self,
        document_type: DocumentType,
        payload: ExtractedPayload,
        decision: JudgmentDecision,
        tenant: TenantContext,
        trail: StepTrail,
        trace_id: str,
    ) -> None:
        if self._examples is None:
            return
        if decision.outcome is not JudgmentOutcome.AUTO_APPROVE:
            return
        if decision.confidence < self._config.example_index_min_confidence:
            return
        name, vat = counterparty_of(payload)
        if not vat:
            return
        started = time.perf_counter()
        example = VendorExample(
            tenant_id=tenant.tenant_id,
            document_type=document_type,
            vendor_vat=vat,
            vendor_name=name,
            payload=payload.content(),
            confidence=decision.confidence,
            created_at=now_iso(),
        )
        try:
            await self._examples.save(example)
        except Exception as e:
            logger.warning("Vendor example not saved trace_id=%s: %s", trace_id, e)
            trail.add("Index vendor example", _tool_name(self._examples), started, f"save failed: {e}")
            return
        trail.add("Index vendor example", _tool_name(self._examples), started, vat)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process(
        self,
        images: Sequence[DocumentImage],
        tenant: TenantContext,
        *,
        trace_id: str | None = None,
    ) -> PipelineResult:
        """
        Run the full pipeline for one document.
        Collaborator failures become PipelineFailed with the stage tag; cancellation propagates.
        """
        trace_id = trace_id or str(uuid.uuid4())
        trail = StepTrail(trace_id)
        run_started = time.perf_counter()

        def failed(
            reason: str,
            stage: PipelineStage,
            classification: Classification | None = None,
            decision: JudgmentDecision | None = None,
        ) -> PipelineFailed:
            log_structured(
                logger,
                logging.INFO,
                "Document failed",
                trace_id=trace_id,
                stage=stage.value,
                reason=reason,
            )
            return PipelineFailed(trace_id, reason, stage, trail.steps, classification, decision)

        # 1) Classification
        started = time.perf_counter()
        try:
            classification = await self._classifier.classify(images, tenant, trace_id=trace_id)
        except Exception as e:
            logger.warning("Classification failed trace_id=%s: %s", trace_id, e)
            trail.add("Classify document", _tool_name(self._classifier), started, f"error: {e}")
            return failed(f"Classification failed: {e}", PipelineStage.CLASSIFICATION)
        document_type = classification.document_type
        trail.add(
            "Classify document",
            _tool_name(self._classifier),
            started,
            f"{document_type.value} ({classification.confidence:.2f})",
        )
        if classification.confidence < self._config.min_classification_confidence:
            return failed(
                f"Classification confidence {classification.confidence:.2f} below minimum "
                f"{self._config.min_classification_confidence:.2f}",
                PipelineStage.CLASSIFICATION,
                classification,
            )
        if document_type is DocumentType.UNKNOWN and self._config.fail_fast_on_unknown:
            return failed("Document type could not be determined", PipelineStage.CLASSIFICATION, classification)

        # 2) Few-shot reference from an earlier approved document of this vendor
        example = await self._find_example(classification, tenant, trail, trace_id)
        reference = example.payload if example else None

        # 3) Extraction
        started = time.perf_counter()
        try:
            payload = await self._extractor.extract(images, document_type, reference, trace_id=trace_id)
        except Exception as e:
            logger.warning("Extraction failed trace_id=%s: %s", trace_id, e)
            trail.add("Extract fields", _tool_name(self._extractor), started, f"error: {e}")
            return failed(f"Extraction failed: {e}", PipelineStage.EXTRACTION, classification)
        if payload.extraction_failed:
            trail.add("Extract fields", _tool_name(self._extractor), started, payload.extraction_error)
            log_structured(logger, logging.INFO, "Extraction produced no data", trace_id=trace_id)
            return PipelineNeedsReview(
                trace_id=trace_id,
                document_type=document_type,
                classification=classification,
                payload=payload,
                audit_report=AuditReport(),
                issues=(f"Extraction failed: {payload.extraction_error}",),
                steps=trail.steps,
            )
        trail.add("Extract fields", _tool_name(self._extractor), started, f"confidence {payload.confidence:.2f}")

        # 4) Optional second model
        payload, consensus = await self._second_opinion(images, document_type, payload, reference, trail, trace_id)

        # 5) Registry + audit
        company_lookup = None
        if self._registry.enabled:
            started = time.perf_counter()
            name, vat = counterparty_of(payload)
            company_lookup = await self._registry.lookup(vat, name, trace_id=trace_id)
            trail.add(
                "Look up company",
                "RegistryLookupService",
                started,
                "found" if company_lookup and company_lookup.found else "not found",
            )
        started = time.perf_counter()
        report = self._audit.audit(payload, document_type, company_lookup)
        trail.add(
            "Audit payload",
            _tool_name(self._audit),
            started,
            f"{report.overall_status.value}: {report.passed_count} passed, {report.failed_count} failed",
        )

        # 6) Self-correction
        retry_result: RetryResult | None = None
        if report.is_valid or self._retry.config.effective_max_retries > 1:
            started = time.perf_counter()
            retry_result = await self._retry.attempt_correction(
                images,
                document_type,
                payload,
                report,
                company_lookup=company_lookup,
                reference_example=reference,
                trace_id=trace_id,
            )
            if isinstance(retry_result, (CorrectedOnRetry, StillFailing)):
                if retry_result.payload is not None and retry_result.audit_report is not None:
                    consensus = _unsettled_conflicts(consensus, payload, retry_result.payload)
                    payload, report = retry_result.payload, retry_result.audit_report
                trail.add("Self-correct", _tool_name(self._retry), started, type(retry_result).__name__)

        # 7) Judgment
        started = time.perf_counter()
        missing = missing_essential_fields(payload, document_type)
        context = JudgmentContext(
            has_essential_fields=not missing,
            document_type=document_type,
            audit_report=report,
            extraction_confidence=payload.confidence,
            missing_essential_fields=tuple(missing),
            retry_result=retry_result,
            consensus_report=consensus,
        )
        decision = self._judgment.evaluate(context)
        trail.add("Judge", _tool_name(self._judgment), started, f"{decision.outcome.value} ({decision.confidence:.2f})")
        if decision.outcome is JudgmentOutcome.REJECT:
            return failed(decision.reasoning, PipelineStage.VALIDATION, classification, decision)

        # 8) Enrichment
        enrichment: dict[str, Any] = {}
        if self._enrichment is not None:
            started = time.perf_counter()
            try:
                enrichment = await self._enrichment.enrich(document_type, payload, decision, tenant)
            except Exception as e:
                logger.warning("Enrichment failed trace_id=%s: %s", trace_id, e)
                trail.add("Enrich", _tool_name(self._enrichment), started, f"error: {e}")
                return failed(f"Enrichment failed: {e}", PipelineStage.ENRICHMENT, classification, decision)
            trail.add("Enrich", _tool_name(self._enrichment), started, ", ".join(sorted(enrichment)) or None)

        # 9) Index as a future reference (best effort)
        await self._index_example(document_type, payload, decision, tenant, trail, trace_id)

        log_structured(
            logger,
            logging.INFO,
            "Document processed",
            trace_id=trace_id,
            document_type=document_type.value,
            outcome=decision.outcome.value,
            confidence=round(decision.confidence, 4),
            elapsed_sec=round(time.perf_counter() - run_started, 4),
        )
        if decision.outcome is JudgmentOutcome.AUTO_APPROVE:
            return PipelineSuccess(
                trace_id=trace_id,
                document_type=document_type,
                classification=classification,
                payload=payload,
                audit_report=report,
                decision=decision,
                retry_result=retry_result,
                steps=trail.steps,
                consensus_report=consensus,
                enrichment=enrichment,
            )
        return PipelineNeedsReview(
            trace_id=trace_id,
            document_type=document_type,
            classification=classification,
            payload=payload,
            audit_report=report,
            issues=decision.issues,
            decision=decision,
            retry_result=retry_result,
            steps=trail.steps,
            consensus_report=consensus,
            enrichment=enrichment,
        )
