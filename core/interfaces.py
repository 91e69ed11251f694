"""
Abstract interfaces for the document pipeline.
Every external dependency is behind an interface; no stage depends on a concrete model, registry or store.
All collaborator calls are coroutines so a document run can be suspended and cancelled as a unit.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from core.models import (
    Classification,
    DocumentImage,
    DocumentType,
    JudgmentDecision,
    LLMResponse,
    RegistryEntry,
    TenantContext,
    VendorExample,
)
from core.schema import ExtractedPayload


class ILLMProvider(ABC):
    """Abstract inference capability: system prompt + user content + optional page images -> raw text."""

    @abstractmethod
    async def invoke(
        self,
        system_prompt: str,
        user_content: str,
        images: Sequence[DocumentImage] | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Run one completion. kwargs may include model, max_tokens, temperature."""
        ...

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None


class IClassificationService(ABC):
    """Images + tenant -> document type with confidence."""

    @abstractmethod
    async def classify(
        self,
        images: Sequence[DocumentImage],
        tenant: TenantContext,
        *,
        trace_id: str = "",
    ) -> Classification:
        """Raises ClassificationError when the model call or its output is unusable."""
        ...


class IExtractionService(ABC):
    """Images + document type -> typed payload. Never raises for model failures."""

    @abstractmethod
    async def extract(
        self,
        images: Sequence[DocumentImage],
        document_type: DocumentType,
        reference_example: dict[str, Any] | None = None,
        *,
        feedback: str | None = None,
        trace_id: str = "",
    ) -> ExtractedPayload:
        """
        Extract structured fields.
        reference_example: a prior approved payload for the same vendor, formatting hint only.
        feedback: correction instructions from a failed audit.
        Returns an empty, zero-confidence payload on invocation failure or malformed output.
        """
        ...


class IBusinessRegistry(ABC):
    """Company registry lookup (e.g. KBO/BCE)."""

    @abstractmethod
    async def lookup_company(
        self,
        vat_number: str | None = None,
        name: str | None = None,
    ) -> RegistryEntry | None:
        """Return the matching company, or None when not found. Raise RegistryLookupError on outage."""
        ...


class IVendorExampleStore(ABC):
    """Append/read store of approved extractions used as few-shot hints."""

    @abstractmethod
    async def find(
        self,
        tenant_id: str,
        document_type: DocumentType,
        vendor_vat: str | None = None,
    ) -> VendorExample | None:
        ...

    @abstractmethod
    async def save(self, example: VendorExample) -> None:
        """Persist example. Callers treat failures as best-effort."""
        ...


class IEnrichmentService(ABC):
    """Downstream step run on accepted documents (contact linking, bookkeeping drafts)."""

    @abstractmethod
    async def enrich(
        self,
        document_type: DocumentType,
        payload: ExtractedPayload,
        decision: JudgmentDecision,
        tenant: TenantContext,
    ) -> dict[str, Any]:
        """Return enrichment data to attach to the result. Raise EnrichmentError on failure."""
        ...
