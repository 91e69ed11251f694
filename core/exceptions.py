"""Custom exceptions for the document pipeline. Audit failures are data, not exceptions."""

from __future__ import annotations


class DocumentProcessingError(Exception):
    """Base exception for pipeline failures."""

    def __init__(
        self,
        message: str,
        trace_id: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.trace_id = trace_id or ""
        self.stage = stage or ""
        super().__init__(message)


class ConfigError(DocumentProcessingError):
    """Invalid or missing configuration."""

    pass


class InferenceError(DocumentProcessingError):
    """Model endpoint unreachable, timed out or returned an HTTP error."""

    def __init__(
        self,
        message: str,
        trace_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, trace_id=trace_id)


class StructuredOutputError(DocumentProcessingError):
    """LLM output could not be parsed as valid JSON/schema."""

    pass


class ClassificationError(DocumentProcessingError):
    """Classification call failed or returned unusable output."""

    def __init__(self, message: str, trace_id: str | None = None) -> None:
        super().__init__(message, trace_id=trace_id, stage="classification")


class ExtractionError(DocumentProcessingError):
    """Extraction failed in a way that has no safe sentinel."""

    def __init__(self, message: str, trace_id: str | None = None) -> None:
        super().__init__(message, trace_id=trace_id, stage="extraction")


class RegistryLookupError(DocumentProcessingError):
    """Business registry unreachable or erroring."""

    pass


class ExampleStoreError(DocumentProcessingError):
    """Vendor example store read/write failed."""

    pass


class EnrichmentError(DocumentProcessingError):
    """Downstream enrichment failed."""

    def __init__(self, message: str, trace_id: str | None = None) -> None:
        super().__init__(message, trace_id=trace_id, stage="enrichment")
