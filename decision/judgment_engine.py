"""
Judgment engine: deterministic decision tree over audit, retry and consensus results.
Rules are evaluated top to bottom; the first match wins:

1. essential fields missing              -> Reject (0.9)
2. document type Unknown                 -> Reject (0.95)
3. critical failures after failed retry  -> Reject (0.85)
4. extraction confidence below review floor -> Reject (0.8)
5. collect soft issues
6. any soft issue                        -> NeedsReview
7. otherwise                             -> AutoApprove

The confidence reported for NeedsReview/AutoApprove is a heuristic re-estimate
(bonus for a clean audit and for model agreement, malus per warning), not a calibrated probability.
"""
from __future__ import annotations

import logging

from core.models import (
    AuditStatus,
    CorrectedOnRetry,
    DocumentType,
    JudgmentContext,
    JudgmentDecision,
    JudgmentOutcome,
    StillFailing,
    retry_attempts_of,
)
from prompts.contracts import humanize_field
from utils.config import DEFAULT_JUDGMENT, JudgmentConfig

logger = logging.getLogger(__name__)

MISSING_FIELDS_CONFIDENCE = 0.9
UNKNOWN_TYPE_CONFIDENCE = 0.95
STILL_FAILING_CONFIDENCE = 0.85
LOW_CONFIDENCE_REJECT_CONFIDENCE = 0.8

AUDIT_PASSED_BONUS = 0.05
CONSENSUS_BONUS = 0.05
WARNING_PENALTY = 0.02


def missing_field_issue(name: str) -> str:
    """'totalAmount' -> 'Missing total amount (totalAmount)'."""
    return f"Missing {humanize_field(name)} ({name})"


def derived_confidence(context: JudgmentContext) -> float:
    """extraction confidence, +0.05 for a clean audit, +0.05 without model conflicts, -0.02 per warning."""
    confidence = context.extraction_confidence
    if context.audit_report.overall_status is AuditStatus.PASSED:
        confidence = min(1.0, confidence + AUDIT_PASSED_BONUS)
    consensus = context.consensus_report
    if consensus is None or not consensus.has_conflicts:
        confidence = min(1.0, confidence + CONSENSUS_BONUS)
    confidence -= WARNING_PENALTY * len(context.audit_report.warnings)
    return max(0.0, confidence)


class JudgmentEngine:
    """Stateless apart from its immutable thresholds; safe to share across runs."""

    def __init__(self, config: JudgmentConfig = DEFAULT_JUDGMENT) -> None:
        self._config = config

    @property
    def config(self) -> JudgmentConfig:
        return self._config

    def _decision(
        self,
        context: JudgmentContext,
        outcome: JudgmentOutcome,
        confidence: float,
        reasoning: str,
        issues: list[str],
    ) -> JudgmentDecision:
        retry = context.retry_result
        consensus = context.consensus_report
        return JudgmentDecision(
            outcome=outcome,
            confidence=confidence,
            reasoning=reasoning,
            issues=tuple(issues),
            retry_attempts=retry_attempts_of(retry),
            corrected_fields=retry.corrected_fields if isinstance(retry, CorrectedOnRetry) else (),
            all_critical_checks_passed=context.audit_report.is_valid,
            has_model_consensus=consensus is not None and not consensus.has_conflicts,
        )

    def _hard_reject(self, context: JudgmentContext) -> JudgmentDecision | None:
        """Rules 1-4."""
        cfg = self._config
        if not context.has_essential_fields:
            missing = list(context.missing_essential_fields)
            return self._decision(
                context,
                JudgmentOutcome.REJECT,
                MISSING_FIELDS_CONFIDENCE,
                f"Essential fields missing: {', '.join(missing) or 'unspecified'}",
                [missing_field_issue(m) for m in missing] or ["Missing essential fields"],
            )
        if context.document_type is DocumentType.UNKNOWN:
            return self._decision(
                context,
                JudgmentOutcome.REJECT,
                UNKNOWN_TYPE_CONFIDENCE,
                "Could not determine the document type",
                ["Unknown document type"],
            )
        critical = context.audit_report.critical_failures
        if critical and isinstance(context.retry_result, StillFailing):
            return self._decision(
                context,
                JudgmentOutcome.REJECT,
                STILL_FAILING_CONFIDENCE,
                f"{len(critical)} critical check(s) still failing after "
                f"{context.retry_result.attempts} extraction attempts (retry exhausted)",
                [c.message for c in critical],
            )
        if context.extraction_confidence < cfg.needs_review_min_confidence:
            return self._decision(
                context,
                JudgmentOutcome.REJECT,
                LOW_CONFIDENCE_REJECT_CONFIDENCE,
                f"Extraction confidence {context.extraction_confidence:.2f} is below the review "
                f"floor {cfg.needs_review_min_confidence:.2f}",
                [f"Extraction confidence too low ({context.extraction_confidence:.2f})"],
            )
        return None

    def _soft_issues(self, context: JudgmentContext) -> list[str]:
        """Rule 5."""
        cfg = self._config
        issues = [f"Critical check failed: {c.message}" for c in context.audit_report.critical_failures]
        consensus = context.consensus_report
        if cfg.require_consensus_for_auto_approve and consensus is not None:
            for conflict in consensus.critical_conflicts:
                issues.append(
                    f"Models disagree on {conflict.field}: "
                    f"'{conflict.fast_value}' vs '{conflict.expert_value}'"
                )
        warnings = context.audit_report.warnings
        if len(warnings) > cfg.max_warnings_for_auto_approve and not cfg.auto_approve_with_warnings:
            issues.append(
                f"{len(warnings)} warnings exceed the auto-approve limit of "
                f"{cfg.max_warnings_for_auto_approve}: " + "; ".join(w.message for w in warnings)
            )
        if context.extraction_confidence < cfg.auto_approve_min_confidence:
            issues.append(
                f"Extraction confidence {context.extraction_confidence:.2f} is below the "
                f"auto-approve threshold {cfg.auto_approve_min_confidence:.2f}"
            )
        return issues

    def evaluate(self, context: JudgmentContext) -> JudgmentDecision:
        rejected = self._hard_reject(context)
        if rejected is not None:
            logger.info("Judgment Reject: %s", rejected.reasoning)
            return rejected

        issues = self._soft_issues(context)
        confidence = derived_confidence(context)
        if issues:
            decision = self._decision(
                context,
                JudgmentOutcome.NEEDS_REVIEW,
                confidence,
                f"{len(issues)} issue(s) need review",
                issues,
            )
            logger.info("Judgment NeedsReview: %s issue(s)", len(issues))
            return decision

        report = context.audit_report
        parts = [f"All critical checks passed ({report.passed_count} of {len(report.checks)} checks passed)"]
        if context.consensus_report is not None and not context.consensus_report.has_conflicts:
            parts.append("both models agree")
        retry = context.retry_result
        if isinstance(retry, CorrectedOnRetry):
            fields = ", ".join(retry.corrected_fields) or "no field changes"
            parts.append(f"corrected on retry {retry.attempt} ({fields})")
        if report.warnings:
            parts.append(f"{len(report.warnings)} warning(s) within limit")
        decision = self._decision(context, JudgmentOutcome.AUTO_APPROVE, confidence, "; ".join(parts), [])
        logger.info("Judgment AutoApprove confidence=%.2f", confidence)
        return decision

    def can_potentially_auto_approve(self, context: JudgmentContext) -> bool:
        """Cheap pre-filter: False when rules 1-4 would reject."""
        if not context.has_essential_fields or context.document_type is DocumentType.UNKNOWN:
            return False
        if context.audit_report.critical_failures and isinstance(context.retry_result, StillFailing):
            return False
        return context.extraction_confidence >= self._config.needs_review_min_confidence
