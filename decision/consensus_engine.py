"""
Consensus engine: reconcile a fast and an expert extraction of the same document.
Field-by-field merge; the expert value wins on disagreement. Disagreements on amounts,
bank details, payment reference and VAT numbers are Critical conflicts, the rest Minor.
"""
from __future__ import annotations

import logging
import re
from typing import Any

from core.models import Conflict, ConflictSeverity, ConsensusReport
from core.schema import ExtractedPayload
from validation.amounts import parse_amount

logger = logging.getLogger(__name__)

CRITICAL_FIELDS = frozenset({
    "totalAmount",
    "subtotal",
    "totalVatAmount",
    "vatAmount",
    "amount",
    "iban",
    "paymentReference",
    "vendorVatNumber",
    "clientVatNumber",
    "supplierVatNumber",
    "merchantVatNumber",
})
AMOUNT_FIELDS = frozenset({"totalAmount", "subtotal", "totalVatAmount", "vatAmount", "amount"})

# Per-conflict penalty on the merged confidence, and its ceiling
CONFLICT_PENALTY = 0.05
MAX_CONFLICT_PENALTY = 0.25

_SKIP_FIELDS = frozenset({"confidence", "extracted_text", "provenance", "extraction_error"})


def _normalize_text(value: Any) -> str:
    return re.sub(r"\s+", " ", str(value)).strip().lower()


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, list):
        return str([v.model_dump(by_alias=True) if hasattr(v, "model_dump") else v for v in value])
    return str(value)


def values_agree(alias: str, fast: Any, expert: Any) -> bool:
    """Amounts compare numerically ('1500' == '1500.00'); text ignores case and spacing."""
    if alias in AMOUNT_FIELDS:
        try:
            a, b = parse_amount(fast), parse_amount(expert)
        except ValueError:
            pass
        else:
            if a is not None and b is not None:
                return a == b
    if isinstance(fast, list) or isinstance(expert, list):
        return fast == expert
    return _normalize_text(fast) == _normalize_text(expert)


class ConsensusEngine:
    """Stateless; one instance can serve every document."""

    def merge(
        self, fast: ExtractedPayload, expert: ExtractedPayload
    ) -> tuple[ExtractedPayload, ConsensusReport]:
        if type(fast) is not type(expert):
            raise TypeError(
                f"Cannot merge {type(fast).__name__} with {type(expert).__name__}"
            )
        conflicts: list[Conflict] = []
        update: dict[str, Any] = {}
        for name, info in type(expert).model_fields.items():
            if name in _SKIP_FIELDS:
                continue
            alias = info.alias or name
            fast_value = getattr(fast, name)
            expert_value = getattr(expert, name)
            fast_empty = fast_value is None or fast_value == []
            expert_empty = expert_value is None or expert_value == []
            if expert_empty and not fast_empty:
                update[name] = fast_value
                continue
            if fast_empty or expert_empty:
                continue
            if values_agree(alias, fast_value, expert_value):
                continue
            severity = ConflictSeverity.CRITICAL if alias in CRITICAL_FIELDS else ConflictSeverity.MINOR
            conflicts.append(Conflict(alias, _as_text(fast_value), _as_text(expert_value), severity))

        penalty = min(CONFLICT_PENALTY * len(conflicts), MAX_CONFLICT_PENALTY)
        confidence = max(0.0, (fast.confidence + 2 * expert.confidence) / 3 - penalty)
        update["confidence"] = confidence
        merged = expert.model_copy(update=update)
        report = ConsensusReport(tuple(conflicts))
        if conflicts:
            logger.info(
                "Consensus: %s conflict(s), %s critical; merged confidence %.2f",
                len(conflicts),
                len(report.critical_conflicts),
                confidence,
            )
        return merged, report
