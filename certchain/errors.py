"""
CertChain -- Issuance Error Hierarchy

All exceptions raised by the issuance engine and its collaborators.

Namespace: certchain.errors

Each collaborator (publisher, ledger, store) translates its library's
exceptions into one of these at its own boundary. Every class carries an
ErrorKind, and the orchestrator tags raised errors with the saga stage that
failed. The HTTP edge maps kinds to status codes in one place
(certchain.api.errors) and never inspects library exceptions.

Outcome guide:
  ValidationError     rejected before any side effect
  UploadError         nothing written
  EstimationError     known revert, nothing broadcast
  SubmissionError     broadcast failed or mined with status 0
  ConfirmationError   UNKNOWN outcome -- poll again, never resubmit
  StoreError          write conflict or lock timeout
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from certchain.engine.saga import Saga, SagaStage


class ErrorKind(enum.StrEnum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UPLOAD = "upload"
    ESTIMATION = "estimation"
    SUBMISSION = "submission"
    CONFIRMATION = "confirmation"
    LEDGER_READ = "ledger_read"
    AUTHORIZATION = "authorization"
    STORE = "store"


class DenyReason(enum.StrEnum):
    FORBIDDEN = "forbidden"
    SERVICE_ERROR = "service_error"


class CertChainError(RuntimeError):
    """Base for all issuance engine errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        # Filled in by the orchestrator when the error escapes a saga step
        self.stage: SagaStage | None = None
        self.saga: Saga | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.message,
            "kind": self.kind.value,
        }
        if self.stage is not None:
            payload["stage"] = self.stage.value
        if self.saga is not None:
            payload["last_committed_stage"] = (
                stage.value if (stage := self.saga.last_committed) else None
            )
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CertChainError):
    """Malformed address, missing field, or a precondition that fails before any write."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field_errors: dict[str, str] | None = None) -> None:
        super().__init__(message, **({"field_errors": field_errors} if field_errors else {}))
        self.field_errors = field_errors or {}


class CertificateNotFound(ValidationError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, owner: str) -> None:
        super().__init__(f"No certificate found for {owner}")
        self.owner = owner


class UploadError(CertChainError):
    """Metadata could not be pinned."""

    kind = ErrorKind.UPLOAD


class LedgerError(CertChainError):
    """Base for on-chain failures."""

    kind = ErrorKind.SUBMISSION


class EstimationError(LedgerError):
    """Gas estimation reverted. Nothing was broadcast."""

    kind = ErrorKind.ESTIMATION

    def __init__(self, operation: str, revert_reason: str) -> None:
        super().__init__(
            f"Gas estimation failed for {operation}: {revert_reason}",
            operation=operation,
            revert_reason=revert_reason,
        )
        self.operation = operation
        self.revert_reason = revert_reason


class SubmissionError(LedgerError):
    """Broadcast failed, or the transaction was mined and reverted."""

    kind = ErrorKind.SUBMISSION

    def __init__(self, operation: str, reason: str, tx_hash: str | None = None) -> None:
        details: dict[str, Any] = {"operation": operation}
        if tx_hash:
            details["tx_hash"] = tx_hash
        super().__init__(f"Submission failed for {operation}: {reason}", **details)
        self.operation = operation
        self.tx_hash = tx_hash


class ConfirmationError(LedgerError):
    """
    The transaction was broadcast but not observed mined within the wait.

    The outcome is unknown. Callers poll again with tx_hash; they must not
    resubmit the operation.
    """

    kind = ErrorKind.CONFIRMATION

    def __init__(self, operation: str, tx_hash: str, timeout_s: float) -> None:
        super().__init__(
            f"{operation} not confirmed within {timeout_s:g}s",
            operation=operation,
            tx_hash=tx_hash,
        )
        self.operation = operation
        self.tx_hash = tx_hash
        self.timeout_s = timeout_s


class LedgerReadError(LedgerError):
    """A read-only contract call failed."""

    kind = ErrorKind.LEDGER_READ


class AuthorizationError(CertChainError):
    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str, reason: DenyReason) -> None:
        super().__init__(message, reason=reason.value)
        self.reason = reason


class StoreError(CertChainError):
    """Record store write conflict, lock timeout, or backend failure."""

    kind = ErrorKind.STORE
