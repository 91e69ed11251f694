"""
Extraction service: page images + document type -> typed payload.
Uses ILLMProvider (injected). Model failures and malformed output become an empty,
zero-confidence payload so the caller can route the document to review.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from pydantic import ValidationError

from core.exceptions import StructuredOutputError
from core.interfaces import IExtractionService, ILLMProvider
from core.models import DocumentImage, DocumentType
from core.schema import ExtractedPayload, parse_payload, payload_class_for
from prompts.contracts import extraction_system_prompt, extraction_user_prompt
from utils.json_utils import SafeJsonParser

logger = logging.getLogger(__name__)


class ExtractionService(IExtractionService):
    """Extraction via injected LLM provider. Deterministic params (temperature=0)."""

    def __init__(
        self,
        llm_provider: ILLMProvider,
        model: str = "llama3.2-vision",
        max_tokens: int = 4096,
    ) -> None:
        self._llm = llm_provider
        self._model = model
        self._max_tokens = max_tokens

    @property
    def model(self) -> str:
        return self._model

    async def extract(
        self,
        images: Sequence[DocumentImage],
        document_type: DocumentType,
        reference_example: dict[str, Any] | None = None,
        *,
        feedback: str | None = None,
        trace_id: str = "",
    ) -> ExtractedPayload:
        sentinel = payload_class_for(document_type).failed
        if not images:
            return sentinel("no page images")
        logger.info(
            "Calling extraction LLM (model=%s, type=%s, retry=%s)",
            self._model,
            document_type.value,
            feedback is not None,
        )
        try:
            response = await self._llm.invoke(
                extraction_system_prompt(document_type),
                extraction_user_prompt(document_type, reference_example, feedback),
                images,
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=0.0,
            )
        except Exception as e:
            logger.warning("Extraction LLM failed trace_id=%s: %s", trace_id, e)
            return sentinel(f"inference failed: {e}")
        logger.debug("Extraction LLM response length: %s", len(response.text or ""))
        parser = SafeJsonParser(trace_id)
        try:
            data = parser.parse(response.text)
            return parse_payload(document_type, data)
        except StructuredOutputError as e:
            logger.warning("Extraction output is not JSON trace_id=%s: %s", trace_id, e)
            return sentinel(f"malformed output: {e}")
        except ValidationError as e:
            logger.warning(
                "Extraction output does not fit %s schema trace_id=%s: %s",
                document_type.value,
                trace_id,
                e.error_count(),
            )
            return sentinel(f"schema mismatch: {e.error_count()} error(s)")
        except ArithmeticError as e:
            logger.warning("Extraction output has unusable numbers trace_id=%s: %s", trace_id, e)
            return sentinel(f"malformed output: {e!r}")
