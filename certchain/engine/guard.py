"""
CertChain — Admin Authorization Guard

Privileged ledger operations are allowed only for the contract's *current*
owner. Ownership can move at any time through transfer-ownership, so the
owner is re-read from the ledger on every check and never cached.

Fail-closed: if the owner cannot be read, the answer is deny.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from certchain.errors import AuthorizationError, DenyReason
from certchain.primitives.common import CertBaseModel, normalize_address

if TYPE_CHECKING:
    from certchain.clients.ledger import LedgerClient

logger = structlog.get_logger()


class AuthorizationDecision(CertBaseModel):
    allowed: bool
    caller: str
    reason: DenyReason | None = None
    owner: str | None = None


class AuthorizationGuard:
    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger
        self._logger = logger.bind(component="engine.guard")

    async def authorize(self, caller: str) -> AuthorizationDecision:
        try:
            claimed = normalize_address(caller)
        except ValueError:
            self._logger.warning("admin_check_invalid_caller", caller=caller)
            return AuthorizationDecision(allowed=False, caller=str(caller), reason=DenyReason.FORBIDDEN)

        try:
            owner = (await self._ledger.read_owner()).lower()
        except Exception as exc:
            self._logger.error("admin_check_owner_unreadable", caller=claimed, error=str(exc))
            return AuthorizationDecision(allowed=False, caller=claimed, reason=DenyReason.SERVICE_ERROR)

        if owner != claimed:
            self._logger.warning("admin_check_failed", caller=claimed, owner=owner)
            return AuthorizationDecision(
                allowed=False,
                caller=claimed,
                reason=DenyReason.FORBIDDEN,
                owner=owner,
            )

        self._logger.info("admin_check_passed", caller=claimed)
        return AuthorizationDecision(allowed=True, caller=claimed, owner=owner)

    async def require(self, caller: str) -> AuthorizationDecision:
        """authorize(), raising AuthorizationError on deny."""
        decision = await self.authorize(caller)
        if not decision.allowed:
            reason = decision.reason or DenyReason.FORBIDDEN
            message = (
                "Failed to verify admin"
                if reason is DenyReason.SERVICE_ERROR
                else "Not authorized"
            )
            raise AuthorizationError(message, reason=reason)
        return decision
