"""
CertChain — Issuance & Referral Consistency Engine

Coordinates certificate writes across IPFS, the record store, and the
ledger; derives referral credit; and gates privileged ledger operations on
live contract ownership.
"""

from certchain.engine.guard import AuthorizationDecision, AuthorizationGuard
from certchain.engine.orchestrator import IssuanceOrchestrator
from certchain.engine.referral import FREE_MINT_REFERRAL_THRESHOLD, credit
from certchain.engine.saga import Saga, SagaStage, SagaStep, StepStatus
from certchain.engine.types import IssueResult, VersionResult

__all__ = [
    "AuthorizationDecision",
    "AuthorizationGuard",
    "FREE_MINT_REFERRAL_THRESHOLD",
    "IssuanceOrchestrator",
    "IssueResult",
    "Saga",
    "SagaStage",
    "SagaStep",
    "StepStatus",
    "VersionResult",
    "credit",
]
