"""Core layer: interfaces, models, schemas, exceptions."""

from core.interfaces import (
    IBusinessRegistry,
    IClassificationService,
    IEnrichmentService,
    IExtractionService,
    ILLMProvider,
    IVendorExampleStore,
)
from core.models import (
    AuditCheck,
    AuditReport,
    BatchMetrics,
    Classification,
    DocumentImage,
    DocumentType,
    JudgmentDecision,
    LLMResponse,
    PipelineFailed,
    PipelineNeedsReview,
    PipelineSuccess,
    ProcessingStep,
    TenantContext,
)
from core.exceptions import (
    ClassificationError,
    ConfigError,
    DocumentProcessingError,
    EnrichmentError,
    ExtractionError,
    InferenceError,
    StructuredOutputError,
)

__all__ = [
    "IBusinessRegistry",
    "IClassificationService",
    "IEnrichmentService",
    "IExtractionService",
    "ILLMProvider",
    "IVendorExampleStore",
    "AuditCheck",
    "AuditReport",
    "BatchMetrics",
    "Classification",
    "DocumentImage",
    "DocumentType",
    "JudgmentDecision",
    "LLMResponse",
    "PipelineFailed",
    "PipelineNeedsReview",
    "PipelineSuccess",
    "ProcessingStep",
    "TenantContext",
    "ClassificationError",
    "ConfigError",
    "DocumentProcessingError",
    "EnrichmentError",
    "ExtractionError",
    "InferenceError",
    "StructuredOutputError",
]
