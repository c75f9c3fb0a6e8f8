"""
Tests for the AuthorizationGuard.

The guard must re-read the contract owner on every call and fail closed
when the read fails.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from certchain.engine.guard import AuthorizationGuard
from certchain.errors import AuthorizationError, DenyReason, LedgerReadError

OWNER = "0x" + "a" * 40
OTHER = "0x" + "b" * 40


def _make_ledger(owner: str = OWNER) -> MagicMock:
    ledger = MagicMock()
    ledger.read_owner = AsyncMock(return_value=owner)
    return ledger


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_owner_is_allowed(self):
        guard = AuthorizationGuard(_make_ledger())
        decision = await guard.authorize(OWNER)
        assert decision.allowed is True
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_comparison_is_case_insensitive(self):
        guard = AuthorizationGuard(_make_ledger(owner="0x" + "A" * 40))
        decision = await guard.authorize(OWNER)
        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_non_owner_is_forbidden(self):
        guard = AuthorizationGuard(_make_ledger())
        decision = await guard.authorize(OTHER)
        assert decision.allowed is False
        assert decision.reason is DenyReason.FORBIDDEN
        assert decision.owner == OWNER

    @pytest.mark.asyncio
    async def test_malformed_caller_is_forbidden_without_ledger_read(self):
        ledger = _make_ledger()
        guard = AuthorizationGuard(ledger)
        decision = await guard.authorize("not-an-address")
        assert decision.allowed is False
        assert decision.reason is DenyReason.FORBIDDEN
        ledger.read_owner.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_read_failure_fails_closed(self):
        ledger = _make_ledger()
        ledger.read_owner = AsyncMock(side_effect=LedgerReadError("rpc down"))
        guard = AuthorizationGuard(ledger)
        decision = await guard.authorize(OWNER)
        assert decision.allowed is False
        assert decision.reason is DenyReason.SERVICE_ERROR

    @pytest.mark.asyncio
    async def test_owner_is_reread_on_every_call(self):
        ledger = _make_ledger()
        ledger.read_owner = AsyncMock(side_effect=[OWNER, OTHER])
        guard = AuthorizationGuard(ledger)

        first = await guard.authorize(OWNER)
        second = await guard.authorize(OWNER)

        assert first.allowed is True
        assert second.allowed is False
        assert second.reason is DenyReason.FORBIDDEN
        assert ledger.read_owner.await_count == 2


class TestRequire:
    @pytest.mark.asyncio
    async def test_raises_forbidden(self):
        guard = AuthorizationGuard(_make_ledger())
        with pytest.raises(AuthorizationError) as excinfo:
            await guard.require(OTHER)
        assert excinfo.value.reason is DenyReason.FORBIDDEN
        assert excinfo.value.message == "Not authorized"

    @pytest.mark.asyncio
    async def test_raises_service_error(self):
        ledger = _make_ledger()
        ledger.read_owner = AsyncMock(side_effect=RuntimeError("timeout"))
        guard = AuthorizationGuard(ledger)
        with pytest.raises(AuthorizationError) as excinfo:
            await guard.require(OWNER)
        assert excinfo.value.reason is DenyReason.SERVICE_ERROR
        assert excinfo.value.message == "Failed to verify admin"

    @pytest.mark.asyncio
    async def test_returns_decision_when_allowed(self):
        guard = AuthorizationGuard(_make_ledger())
        decision = await guard.require(OWNER)
        assert decision.caller == OWNER
