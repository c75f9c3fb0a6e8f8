"""
CertChain — Issuance Saga

Every orchestrator workflow writes across three systems that fail
independently (IPFS, record store, ledger) and none of them can be rolled
back by the others. Rather than pretending the workflow is a transaction, it
is recorded as an ordered list of steps, each one committed, failed, or
skipped. Nothing is compensated: when a step fails, the error leaves the
orchestrator tagged with that stage and the saga, so an operator can see the
last committed stage and resume from the next one.
"""

from __future__ import annotations

import enum
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from certchain.errors import CertChainError
from certchain.primitives.common import new_id, utc_now

logger = structlog.get_logger()


class SagaStage(enum.StrEnum):
    VALIDATE = "validate"
    AUTHORIZE = "authorize"
    PRECHECK = "precheck"
    PUBLISH = "publish"
    RECORD = "record"
    VERSION_RECORD = "version_record"
    LEDGER_MINT = "ledger_mint"
    LEDGER_VERSION_MINT = "ledger_version_mint"
    TOKEN_LINK = "token_link"
    RESOLVE_TOKEN = "resolve_token"
    LEDGER_REVOKE = "ledger_revoke"
    LEDGER_CALL = "ledger_call"
    RECORD_DELETE = "record_delete"
    REFERRAL_UPDATE = "referral_update"


class StepStatus(enum.StrEnum):
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SagaStep:
    stage: SagaStage
    status: StepStatus = StepStatus.PENDING
    detail: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"stage": self.stage.value, "status": self.status.value}
        if self.detail:
            payload["detail"] = self.detail
        if self.error:
            payload["error"] = self.error
        return payload


class Saga:
    """Ordered, inspectable record of one workflow run."""

    def __init__(self, workflow: str, **context: Any) -> None:
        self.saga_id = new_id()
        self.workflow = workflow
        self.context = context
        self.steps: list[SagaStep] = []
        self._logger = logger.bind(saga_id=self.saga_id, workflow=workflow)

    def bind(self, **context: Any) -> None:
        """Attach identifiers learned mid-flow (e.g. the normalised owner)."""
        self.context.update(context)
        self._logger = self._logger.bind(**context)

    @asynccontextmanager
    async def step(
        self,
        stage: SagaStage,
        on_failure: str | None = None,
        **failure_context: Any,
    ) -> AsyncIterator[SagaStep]:
        """
        Run one stage. Commits on clean exit; on an exception marks the step
        failed, tags CertChainErrors with the stage and this saga, and
        re-raises. `on_failure` names an extra error event describing the
        inconsistency a failure here leaves behind.
        """
        step = SagaStep(stage=stage)
        self.steps.append(step)
        try:
            yield step
        except Exception as exc:
            step.status = StepStatus.FAILED
            step.error = str(exc)
            step.finished_at = utc_now()
            if isinstance(exc, CertChainError):
                exc.stage = stage
                exc.saga = self
            self._logger.warning(
                "saga_step_failed",
                stage=stage.value,
                error=str(exc),
                error_type=type(exc).__name__,
                last_committed=last.value if (last := self.last_committed) else None,
            )
            if on_failure:
                self._logger.error(on_failure, stage=stage.value, error=str(exc), **failure_context)
            raise
        step.status = StepStatus.COMMITTED
        step.finished_at = utc_now()
        self._logger.debug("saga_step_committed", stage=stage.value, **step.detail)

    def skip(self, stage: SagaStage, reason: str) -> None:
        self.steps.append(
            SagaStep(
                stage=stage,
                status=StepStatus.SKIPPED,
                detail={"reason": reason},
                finished_at=utc_now(),
            )
        )

    # ── Inspection ────────────────────────────────────────────

    @property
    def last_committed(self) -> SagaStage | None:
        for step in reversed(self.steps):
            if step.status is StepStatus.COMMITTED:
                return step.stage
        return None

    @property
    def failed_stage(self) -> SagaStage | None:
        for step in self.steps:
            if step.status is StepStatus.FAILED:
                return step.stage
        return None

    def status_of(self, stage: SagaStage) -> StepStatus | None:
        for step in self.steps:
            if step.stage is stage:
                return step.status
        return None

    def summary(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.steps]
