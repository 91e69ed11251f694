"""Decision layer: deterministic audit, two-model consensus, judgment."""

from decision.audit_engine import AuditEngine
from decision.consensus_engine import ConsensusEngine
from decision.judgment_engine import JudgmentEngine

__all__ = [
    "AuditEngine",
    "ConsensusEngine",
    "JudgmentEngine",
]
