"""
Classification service: page images + tenant -> DocumentType with confidence.
Uses ILLMProvider (injected). The Invoice/Bill direction reported by the model is
re-checked against the tenant's own VAT number and name.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from difflib import SequenceMatcher
from typing import Any, Sequence

from core.exceptions import ClassificationError, StructuredOutputError
from core.interfaces import IClassificationService, ILLMProvider
from core.models import Classification, DocumentImage, DocumentType, TenantContext
from decision.audit_engine import normalize_company_name
from prompts.contracts import classification_system_prompt, classification_user_prompt
from utils.json_utils import SafeJsonParser
from validation.checksums import normalize_vat_number

logger = logging.getLogger(__name__)

NAME_SIMILARITY_THRESHOLD = 0.9
VAT_MATCH_CONFIDENCE = 0.9
NAME_MATCH_CONFIDENCE = 0.85
# Tenant found on both sides of the document
AMBIGUOUS_DIRECTION_CONFIDENCE = 0.2
# Tenant found on neither side
UNRESOLVED_DIRECTION_CONFIDENCE = 0.6

_DIRECTIONAL_TYPES = (DocumentType.INVOICE, DocumentType.BILL)


def _party(data: dict[str, Any], key: str) -> tuple[str | None, str | None]:
    block = data.get(key)
    if not isinstance(block, dict):
        return None, None
    name = block.get("name")
    vat = block.get("vatNumber") or block.get("vat_number")
    name = str(name).strip() if name else None
    vat = normalize_vat_number(str(vat)) if vat else None
    return name or None, vat or None


def _clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, number)) if math.isfinite(number) else 0.0


def _names_similar(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    na, nb = normalize_company_name(a), normalize_company_name(b)
    if not na or not nb:
        return False
    return SequenceMatcher(None, na, nb).ratio() >= NAME_SIMILARITY_THRESHOLD


def _exclusive_side(on_issuer: bool, on_recipient: bool) -> DocumentType | None:
    if on_issuer and not on_recipient:
        return DocumentType.INVOICE
    if on_recipient and not on_issuer:
        return DocumentType.BILL
    return None


def resolve_direction(classification: Classification, tenant: TenantContext) -> Classification:
    """
    Decide Invoice vs Bill from where the tenant appears on the document.
    VAT match wins over name match. Tenant on both sides -> Unknown; on neither -> keep the
    model's answer with capped confidence.
    """
    if classification.document_type not in _DIRECTIONAL_TYPES:
        return classification
    tenant_vat = normalize_vat_number(tenant.vat_number) if tenant.vat_number else None
    if not tenant_vat and not tenant.company_name:
        return classification

    vat_on_issuer = bool(tenant_vat) and classification.issuer_vat == tenant_vat
    vat_on_recipient = bool(tenant_vat) and classification.recipient_vat == tenant_vat
    resolved = _exclusive_side(vat_on_issuer, vat_on_recipient)
    if resolved is not None:
        return replace(
            classification,
            document_type=resolved,
            confidence=max(classification.confidence, VAT_MATCH_CONFIDENCE),
        )

    name_on_issuer = _names_similar(tenant.company_name, classification.issuer_name)
    name_on_recipient = _names_similar(tenant.company_name, classification.recipient_name)
    if not (vat_on_issuer or vat_on_recipient):
        resolved = _exclusive_side(name_on_issuer, name_on_recipient)
        if resolved is not None:
            return replace(
                classification,
                document_type=resolved,
                confidence=max(classification.confidence, NAME_MATCH_CONFIDENCE),
            )

    if (vat_on_issuer and vat_on_recipient) or (name_on_issuer and name_on_recipient):
        logger.info("Tenant appears as both issuer and recipient; direction ambiguous")
        return replace(
            classification,
            document_type=DocumentType.UNKNOWN,
            confidence=min(classification.confidence, AMBIGUOUS_DIRECTION_CONFIDENCE),
            reasoning=f"{classification.reasoning} [tenant on both sides: direction ambiguous]".strip(),
        )

    return replace(
        classification,
        confidence=min(classification.confidence, UNRESOLVED_DIRECTION_CONFIDENCE),
        reasoning=f"{classification.reasoning} [tenant not found on document: direction unverified]".strip(),
    )


class ClassificationService(IClassificationService):
    """Classification via injected LLM provider. No concrete LLM imports."""

    def __init__(
        self,
        llm_provider: ILLMProvider,
        model: str = "llama3.2-vision",
        max_tokens: int = 1024,
    ) -> None:
        self._llm = llm_provider
        self._model = model
        self._max_tokens = max_tokens

    def _parse(self, text: str, trace_id: str) -> Classification:
        data = SafeJsonParser(trace_id).parse(text)
        issuer_name, issuer_vat = _party(data, "issuer")
        recipient_name, recipient_vat = _party(data, "recipient")
        language = data.get("language")
        return Classification(
            document_type=DocumentType.parse(data.get("documentType") or data.get("type")),
            confidence=_clamp_confidence(data.get("confidence")),
            reasoning=str(data.get("reasoning") or "").strip(),
            issuer_name=issuer_name,
            issuer_vat=issuer_vat,
            recipient_name=recipient_name,
            recipient_vat=recipient_vat,
            language=str(language).strip().lower() if language else None,
        )

    async def classify(
        self,
        images: Sequence[DocumentImage],
        tenant: TenantContext,
        *,
        trace_id: str = "",
    ) -> Classification:
        if not images:
            raise ClassificationError("No page images to classify", trace_id=trace_id)
        logger.info("Calling classification LLM (model=%s, pages=%s)", self._model, len(images))
        try:
            response = await self._llm.invoke(
                classification_system_prompt(),
                classification_user_prompt(tenant),
                images,
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=0.0,
            )
        except Exception as e:
            logger.warning("Classification LLM failed: %s", e)
            raise ClassificationError(f"Classification failed: {e}", trace_id=trace_id) from e
        try:
            classification = self._parse(response.text, trace_id)
        except StructuredOutputError as e:
            logger.warning("Classification output unusable: %s", e)
            raise ClassificationError(f"Classification output unusable: {e}", trace_id=trace_id) from e
        resolved = resolve_direction(classification, tenant)
        if resolved.document_type is not classification.document_type:
            logger.info(
                "Direction resolved %s -> %s",
                classification.document_type.value,
                resolved.document_type.value,
            )
        return resolved
