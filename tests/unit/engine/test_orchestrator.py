"""
Tests for the IssuanceOrchestrator — the issuance state machine.

Runs against the in-memory record store with a fake publisher (distinct CID
per publish) and a mocked ledger client, so every workflow, its stage
ordering, and its partial-failure behaviour can be observed end to end.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs

from certchain.clients.ledger import LedgerOperation
from certchain.engine.orchestrator import IssuanceOrchestrator
from certchain.engine.saga import SagaStage
from certchain.errors import (
    AuthorizationError,
    CertificateNotFound,
    ConfirmationError,
    DenyReason,
    EstimationError,
    LedgerReadError,
    StoreError,
    SubmissionError,
    UploadError,
    ValidationError,
)
from certchain.primitives.certificate import PublishedMetadata, Receipt
from certchain.primitives.common import ZERO_ADDRESS
from certchain.store.memory import InMemoryRecordStore

ADMIN = "0x" + "a" * 40
OWNER = "0x" + "1" * 40
REFERRER = "0x" + "2" * 40
OUTSIDER = "0x" + "9" * 40
TX_HASH = "0x" + "f" * 64
MINTED_TOKEN = 7


class _FakePublisher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.payloads: list[dict[str, Any]] = []

    async def publish(self, payload: dict[str, Any], name: str | None = None) -> PublishedMetadata:
        if self.fail:
            raise UploadError("Failed to upload to Pinata (status 401)")
        self.payloads.append(payload)
        cid = f"bafy{len(self.payloads)}"
        return PublishedMetadata(cid=cid, uri=f"https://gateway.example/ipfs/{cid}")


def _receipt_for(operation: LedgerOperation, args: Any = ()) -> Receipt:
    return Receipt(
        tx_hash=TX_HASH,
        status=1,
        operation=operation.value,
        gas_used=90_000,
        token_id=MINTED_TOKEN if operation is LedgerOperation.MINT_FOR else None,
    )


def _make_ledger(owner: str = ADMIN) -> MagicMock:
    ledger = MagicMock()
    ledger.read_owner = AsyncMock(return_value=owner)
    ledger.has_certificate = AsyncMock(return_value=False)
    ledger.owner_of = AsyncMock(return_value=OWNER)
    ledger.submit = AsyncMock(side_effect=_receipt_for)
    ledger.signer_address = ADMIN
    return ledger


def _content(**overrides: Any) -> dict[str, Any]:
    content = {
        "studentName": "Jane Doe",
        "degree": "B.Sc CS",
        "institution": "EMU",
        "issueDate": "2025-05-01",
        "imageUrl": None,
    }
    content.update(overrides)
    return content


def _make_orchestrator(**kwargs: Any) -> tuple[IssuanceOrchestrator, _FakePublisher, MagicMock, InMemoryRecordStore]:
    publisher = kwargs.pop("publisher", _FakePublisher())
    ledger = kwargs.pop("ledger", _make_ledger())
    store = kwargs.pop("store", InMemoryRecordStore())
    orchestrator = IssuanceOrchestrator(publisher=publisher, ledger=ledger, store=store)
    return orchestrator, publisher, ledger, store


def _events(logs: list[dict[str, Any]]) -> list[str]:
    return [entry["event"] for entry in logs]


async def _seed_referrals(store: InMemoryRecordStore, owner: str, count: int) -> None:
    orchestrator, *_ = _make_orchestrator(store=store)
    await orchestrator.issue(owner, _content())
    for i in range(count):
        await store.append_referral(owner, f"0x{0x100 + i:040x}")


# ─── Standard Issuance ────────────────────────────────────────────


class TestIssue:
    @pytest.mark.asyncio
    async def test_issue_then_version_example(self):
        orchestrator, _, _, store = _make_orchestrator()
        owner = "0xABC123" + "0" * 34

        result = await orchestrator.issue(owner, _content())
        record = await store.find_by_owner(owner)
        assert record is not None
        assert record.owner == "0xabc123" + "0" * 34
        assert record.versions == []
        assert record.referrals == []
        assert result.created is True
        assert result.cid == "bafy1"

        updated = _content(degree="M.Sc CS")
        version = await orchestrator.issue_version(owner, updated)
        record = await store.find_by_owner(owner)
        assert version.version_id == "1"
        assert [v.model_dump(by_alias=True) for v in record.versions] == [
            {"versionId": "1", "cid": "bafy2"}
        ]
        assert record.content.degree == "M.Sc CS"
        assert record.cid == "bafy2"

    @pytest.mark.asyncio
    async def test_paid_issue_never_touches_ledger(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        result = await orchestrator.issue(OWNER, _content())
        ledger.submit.assert_not_awaited()
        assert result.receipt is None
        assert {"stage": "ledger_mint", "status": "skipped", "detail": {"reason": "paid mint is signed by the owner"}} in result.steps

    @pytest.mark.asyncio
    async def test_published_metadata_carries_normalised_owner(self):
        orchestrator, publisher, _, _ = _make_orchestrator()
        await orchestrator.issue("0x" + "A" * 40, _content())
        assert publisher.payloads[0]["owner"] == "0x" + "a" * 40
        assert publisher.payloads[0]["issueDate"] == "2025-05-01"

    @pytest.mark.asyncio
    async def test_referrer_with_certificate_is_credited(self):
        orchestrator, _, _, store = _make_orchestrator()
        await orchestrator.issue(REFERRER, _content())

        await orchestrator.issue(OWNER, _content(), referrer=REFERRER)

        referee = await store.find_by_owner(OWNER)
        referrer = await store.find_by_owner(REFERRER)
        assert referee.referrals == [REFERRER]
        assert referrer.referrals == [OWNER]

    @pytest.mark.asyncio
    async def test_referrer_without_certificate_is_ignored(self):
        orchestrator, _, _, store = _make_orchestrator()
        await orchestrator.issue(OWNER, _content(), referrer=REFERRER)
        referee = await store.find_by_owner(OWNER)
        assert referee.referrals == []
        assert await store.find_by_owner(REFERRER) is None

    @pytest.mark.asyncio
    async def test_repeated_paid_issue_overwrites_without_version(self):
        orchestrator, _, _, store = _make_orchestrator()
        await orchestrator.issue(REFERRER, _content())
        await orchestrator.issue(OWNER, _content(), referrer=REFERRER)

        second = await orchestrator.issue(OWNER, _content(degree="PhD"), referrer=REFERRER)

        record = await store.find_by_owner(OWNER)
        assert second.created is False
        assert record.cid == second.cid
        assert record.content.degree == "PhD"
        assert record.versions == []
        # Referrer credited once only
        assert (await store.find_by_owner(REFERRER)).referrals == [OWNER]

    @pytest.mark.asyncio
    async def test_self_referral_rejected_before_publish(self):
        orchestrator, publisher, _, store = _make_orchestrator()
        with pytest.raises(ValidationError) as excinfo:
            await orchestrator.issue(OWNER, _content(), referrer=OWNER)
        assert excinfo.value.stage is SagaStage.VALIDATE
        assert publisher.payloads == []
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_malformed_owner_rejected(self):
        orchestrator, publisher, _, _ = _make_orchestrator()
        with pytest.raises(ValidationError) as excinfo:
            await orchestrator.issue("0x1234", _content())
        assert "owner" in excinfo.value.field_errors
        assert publisher.payloads == []

    @pytest.mark.asyncio
    async def test_missing_content_field_rejected(self):
        orchestrator, publisher, _, _ = _make_orchestrator()
        with pytest.raises(ValidationError) as excinfo:
            await orchestrator.issue(OWNER, _content(studentName=None))
        assert any(key.startswith("content") for key in excinfo.value.field_errors)
        assert publisher.payloads == []


class TestIssueFailures:
    @pytest.mark.asyncio
    async def test_publish_failure_writes_nothing(self):
        orchestrator, _, _, store = _make_orchestrator(publisher=_FakePublisher(fail=True))
        with pytest.raises(UploadError) as excinfo:
            await orchestrator.issue(OWNER, _content())
        assert excinfo.value.stage is SagaStage.PUBLISH
        assert excinfo.value.to_dict()["last_committed_stage"] == "validate"
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_record_failure_tagged_after_publish(self):
        store = InMemoryRecordStore()
        store.upsert_content = AsyncMock(side_effect=StoreError("lock timeout"))
        orchestrator, publisher, _, _ = _make_orchestrator(store=store)

        with pytest.raises(StoreError) as excinfo:
            await orchestrator.issue(OWNER, _content())

        assert excinfo.value.stage is SagaStage.RECORD
        assert excinfo.value.saga.last_committed is SagaStage.PUBLISH
        assert len(publisher.payloads) == 1

    @pytest.mark.asyncio
    async def test_referral_update_failure_keeps_new_record(self):
        orchestrator, _, _, store = _make_orchestrator()
        await orchestrator.issue(REFERRER, _content())
        store.append_referral = AsyncMock(side_effect=StoreError("lock timeout"))

        with capture_logs() as logs:
            with pytest.raises(StoreError) as excinfo:
                await orchestrator.issue(OWNER, _content(), referrer=REFERRER)

        assert excinfo.value.stage is SagaStage.REFERRAL_UPDATE
        assert excinfo.value.saga.last_committed is SagaStage.RECORD
        assert "referral_update_failed" in _events(logs)
        assert (await store.find_by_owner(OWNER)).referrals == [REFERRER]
        assert (await store.find_by_owner(REFERRER)).referrals == []


# ─── Free Issuance ────────────────────────────────────────────────


class TestFreeIssue:
    @pytest.mark.asyncio
    async def test_eligible_owner_is_minted_and_linked(self):
        store = InMemoryRecordStore()
        await _seed_referrals(store, OWNER, 3)
        orchestrator, _, ledger, _ = _make_orchestrator(store=store)

        result = await orchestrator.issue(OWNER, _content(), free=True)

        ledger.submit.assert_awaited_once_with(
            LedgerOperation.MINT_FOR, (OWNER, result.cid, None)
        )
        assert result.receipt.token_id == MINTED_TOKEN
        assert (await store.find_by_owner(OWNER)).token_id == MINTED_TOKEN

    @pytest.mark.asyncio
    async def test_ineligible_owner_rejected_at_precheck(self):
        store = InMemoryRecordStore()
        await _seed_referrals(store, OWNER, 2)
        publisher = _FakePublisher()
        orchestrator, _, ledger, _ = _make_orchestrator(store=store, publisher=publisher)

        with pytest.raises(ValidationError) as excinfo:
            await orchestrator.issue(OWNER, _content(), free=True)

        assert excinfo.value.stage is SagaStage.PRECHECK
        assert publisher.payloads == []
        ledger.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_token_rejected_at_precheck(self):
        store = InMemoryRecordStore()
        await _seed_referrals(store, OWNER, 3)
        ledger = _make_ledger()
        ledger.has_certificate = AsyncMock(return_value=True)
        orchestrator, *_ = _make_orchestrator(store=store, ledger=ledger)

        with pytest.raises(ValidationError) as excinfo:
            await orchestrator.issue(OWNER, _content(), free=True)
        assert excinfo.value.stage is SagaStage.PRECHECK
        ledger.submit.assert_not_awaited()


# ─── Version Issuance ─────────────────────────────────────────────


class TestIssueVersion:
    @pytest.mark.asyncio
    async def test_unknown_owner_not_found(self):
        orchestrator, publisher, _, _ = _make_orchestrator()
        with pytest.raises(CertificateNotFound) as excinfo:
            await orchestrator.issue_version(OWNER, _content())
        assert excinfo.value.stage is SagaStage.VALIDATE
        assert publisher.payloads == []

    @pytest.mark.asyncio
    async def test_versions_are_contiguous_and_history_kept(self):
        orchestrator, _, _, store = _make_orchestrator()
        await orchestrator.issue(OWNER, _content())

        ids = [(await orchestrator.issue_version(OWNER, _content())).version_id for _ in range(3)]

        record = await store.find_by_owner(OWNER)
        assert ids == ["1", "2", "3"]
        assert [v.cid for v in record.versions] == ["bafy2", "bafy3", "bafy4"]

    @pytest.mark.asyncio
    async def test_concurrent_versions_never_collide(self):
        orchestrator, _, _, store = _make_orchestrator()
        await orchestrator.issue(OWNER, _content())

        results = await asyncio.gather(
            *(orchestrator.issue_version(OWNER, _content()) for _ in range(10))
        )

        record = await store.find_by_owner(OWNER)
        assert sorted(int(r.version_id) for r in results) == list(range(1, 11))
        assert sorted(int(v.version_id) for v in record.versions) == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_mint_on_chain_submits_version_mint(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        await orchestrator.issue(OWNER, _content())

        result = await orchestrator.issue_version(OWNER, _content(), mint_on_chain=True)

        ledger.submit.assert_awaited_once_with(LedgerOperation.MINT_VERSION, (OWNER, result.cid))
        assert result.receipt.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_version_mint_failure_keeps_recorded_version(self):
        orchestrator, _, ledger, store = _make_orchestrator()
        await orchestrator.issue(OWNER, _content())
        ledger.submit = AsyncMock(side_effect=SubmissionError("mint_version", "nonce too low"))

        with capture_logs() as logs:
            with pytest.raises(SubmissionError) as excinfo:
                await orchestrator.issue_version(OWNER, _content(), mint_on_chain=True)

        assert excinfo.value.stage is SagaStage.LEDGER_VERSION_MINT
        assert excinfo.value.saga.last_committed is SagaStage.VERSION_RECORD
        assert "version_without_token" in _events(logs)
        record = await store.find_by_owner(OWNER)
        assert [v.version_id for v in record.versions] == ["1"]
        assert record.cid == "bafy2"


# ─── Admin ────────────────────────────────────────────────────────


class TestAdminMintFree:
    @pytest.mark.asyncio
    async def test_new_owner_is_published_recorded_and_minted(self):
        orchestrator, publisher, ledger, store = _make_orchestrator()

        receipt = await orchestrator.admin_mint_free(ADMIN, OWNER, _content())

        assert receipt.tx_hash == TX_HASH
        assert len(publisher.payloads) == 1
        record = await store.find_by_owner(OWNER)
        assert record.cid == "bafy1"
        assert record.token_id == MINTED_TOKEN
        ledger.submit.assert_awaited_once_with(LedgerOperation.MINT_FOR, (OWNER, "bafy1", None))

    @pytest.mark.asyncio
    async def test_existing_record_reuses_cid(self):
        orchestrator, publisher, ledger, _ = _make_orchestrator()
        await orchestrator.issue(OWNER, _content())

        await orchestrator.admin_mint_free(ADMIN, OWNER, _content(degree="ignored"))

        assert len(publisher.payloads) == 1
        ledger.submit.assert_awaited_once_with(LedgerOperation.MINT_FOR, (OWNER, "bafy1", None))

    @pytest.mark.asyncio
    async def test_non_owner_denied_before_side_effects(self):
        orchestrator, publisher, ledger, store = _make_orchestrator()
        with pytest.raises(AuthorizationError) as excinfo:
            await orchestrator.admin_mint_free(OUTSIDER, OWNER, _content())
        assert excinfo.value.reason is DenyReason.FORBIDDEN
        assert excinfo.value.stage is SagaStage.AUTHORIZE
        assert publisher.payloads == []
        assert len(store) == 0
        ledger.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ownership_change_between_calls_is_observed(self):
        ledger = _make_ledger()
        ledger.read_owner = AsyncMock(side_effect=[ADMIN, OUTSIDER])
        orchestrator, *_ = _make_orchestrator(ledger=ledger)

        await orchestrator.admin_mint_free(ADMIN, OWNER, _content())
        with pytest.raises(AuthorizationError):
            await orchestrator.admin_mint_free(ADMIN, REFERRER, _content())

    @pytest.mark.asyncio
    async def test_mint_revert_leaves_record_without_token(self):
        ledger = _make_ledger()
        ledger.submit = AsyncMock(
            side_effect=EstimationError("mint_for", "already holds certificate")
        )
        orchestrator, _, _, store = _make_orchestrator(ledger=ledger)

        with pytest.raises(EstimationError) as excinfo:
            await orchestrator.admin_mint_free(ADMIN, OWNER, _content())

        assert excinfo.value.stage is SagaStage.LEDGER_MINT
        assert excinfo.value.saga.last_committed is SagaStage.RECORD
        record = await store.find_by_owner(OWNER)
        assert record is not None
        assert record.token_id is None

    @pytest.mark.asyncio
    async def test_confirmation_timeout_keeps_record_and_hash(self):
        ledger = _make_ledger()
        ledger.submit = AsyncMock(side_effect=ConfirmationError("mint_for", TX_HASH, 120.0))
        orchestrator, _, _, store = _make_orchestrator(ledger=ledger)

        with capture_logs() as logs:
            with pytest.raises(ConfirmationError) as excinfo:
                await orchestrator.admin_mint_free(ADMIN, OWNER, _content())

        assert excinfo.value.stage is SagaStage.LEDGER_MINT
        assert excinfo.value.tx_hash == TX_HASH
        assert "record_without_token" in _events(logs)
        record = await store.find_by_owner(OWNER)
        assert record.cid == "bafy1"
        assert record.token_id is None

    @pytest.mark.asyncio
    async def test_token_link_failure_after_mint(self):
        store = InMemoryRecordStore()
        store.attach_token = AsyncMock(side_effect=StoreError("lock timeout"))
        orchestrator, _, ledger, _ = _make_orchestrator(store=store)

        with capture_logs() as logs:
            with pytest.raises(StoreError) as excinfo:
                await orchestrator.admin_mint_free(ADMIN, OWNER, _content())

        assert excinfo.value.stage is SagaStage.TOKEN_LINK
        assert excinfo.value.saga.last_committed is SagaStage.LEDGER_MINT
        assert "token_unlinked" in _events(logs)
        ledger.submit.assert_awaited_once()
        assert (await store.find_by_owner(OWNER)).token_id is None

    @pytest.mark.asyncio
    async def test_referrer_credited_for_new_owner(self):
        orchestrator, _, ledger, store = _make_orchestrator()
        await orchestrator.issue(REFERRER, _content())

        await orchestrator.admin_mint_free(ADMIN, OWNER, _content(), referrer=REFERRER)

        assert (await store.find_by_owner(REFERRER)).referrals == [OWNER]
        ledger.submit.assert_awaited_once_with(
            LedgerOperation.MINT_FOR, (OWNER, "bafy2", REFERRER)
        )


class TestAdminRevoke:
    @pytest.mark.asyncio
    async def test_revoke_removes_record(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        await orchestrator.issue(OWNER, _content())

        receipt = await orchestrator.admin_revoke(ADMIN, 42)

        ledger.owner_of.assert_awaited_once_with(42)
        ledger.submit.assert_awaited_once_with(LedgerOperation.REVOKE, (42,))
        assert receipt.tx_hash == TX_HASH
        assert await orchestrator.get_by_owner(OWNER) is None

    @pytest.mark.asyncio
    async def test_unresolvable_holder_falls_back_to_linked_record(self):
        ledger = _make_ledger()
        orchestrator, _, _, store = _make_orchestrator(ledger=ledger)
        await orchestrator.admin_mint_free(ADMIN, OWNER, _content())
        ledger.owner_of = AsyncMock(side_effect=LedgerReadError("rpc down"))

        await orchestrator.admin_revoke(ADMIN, MINTED_TOKEN)

        assert await store.find_by_owner(OWNER) is None

    @pytest.mark.asyncio
    async def test_unresolvable_unlinked_token_is_not_burned(self):
        ledger = _make_ledger()
        orchestrator, _, _, store = _make_orchestrator(ledger=ledger)
        await orchestrator.issue(OWNER, _content())
        ledger.owner_of = AsyncMock(side_effect=LedgerReadError("rpc down"))

        with pytest.raises(LedgerReadError) as excinfo:
            await orchestrator.admin_revoke(ADMIN, 5)

        assert excinfo.value.stage is SagaStage.RESOLVE_TOKEN
        ledger.submit.assert_not_awaited()
        assert await store.find_by_owner(OWNER) is not None

    @pytest.mark.asyncio
    async def test_record_kept_after_burn_is_reported(self):
        orchestrator, _, ledger, store = _make_orchestrator()
        await orchestrator.issue(OWNER, _content())
        store.delete_by_token = AsyncMock(return_value=False)

        with capture_logs() as logs:
            with pytest.raises(StoreError) as excinfo:
                await orchestrator.admin_revoke(ADMIN, 42)

        assert excinfo.value.stage is SagaStage.RECORD_DELETE
        assert excinfo.value.saga.last_committed is SagaStage.LEDGER_REVOKE
        assert "token_revoked_record_kept" in _events(logs)
        ledger.submit.assert_awaited_once_with(LedgerOperation.REVOKE, (42,))

    @pytest.mark.asyncio
    async def test_holder_without_record_still_revokes(self):
        ledger = _make_ledger()
        ledger.owner_of = AsyncMock(return_value=OUTSIDER)
        orchestrator, *_ = _make_orchestrator(ledger=ledger)

        receipt = await orchestrator.admin_revoke(ADMIN, 42)

        assert receipt.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_non_owner_cannot_revoke(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        with pytest.raises(AuthorizationError):
            await orchestrator.admin_revoke(OUTSIDER, 1)
        ledger.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_negative_token_rejected(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        with pytest.raises(ValidationError):
            await orchestrator.admin_revoke(ADMIN, -1)
        ledger.read_owner.assert_not_awaited()


class TestAdminContractCalls:
    @pytest.mark.asyncio
    async def test_pause_and_unpause(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        await orchestrator.admin_pause(ADMIN)
        await orchestrator.admin_unpause(ADMIN)
        assert [c.args for c in ledger.submit.await_args_list] == [
            (LedgerOperation.PAUSE, ()),
            (LedgerOperation.UNPAUSE, ()),
        ]

    @pytest.mark.asyncio
    async def test_transfer_ownership_normalises_target(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        await orchestrator.admin_transfer_ownership(ADMIN, "0x" + "B" * 40)
        ledger.submit.assert_awaited_once_with(
            LedgerOperation.TRANSFER_OWNERSHIP, ("0x" + "b" * 40,)
        )

    @pytest.mark.asyncio
    async def test_transfer_to_zero_address_rejected(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        with pytest.raises(ValidationError) as excinfo:
            await orchestrator.admin_transfer_ownership(ADMIN, ZERO_ADDRESS)
        assert excinfo.value.stage is SagaStage.VALIDATE
        ledger.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_base_uri_strips_whitespace(self):
        orchestrator, _, ledger, _ = _make_orchestrator()
        await orchestrator.admin_set_base_uri(ADMIN, "  https://gw.example/ipfs/  ")
        ledger.submit.assert_awaited_once_with(
            LedgerOperation.SET_BASE_URI, ("https://gw.example/ipfs/",)
        )

    @pytest.mark.asyncio
    async def test_guard_read_failure_is_service_error(self):
        ledger = _make_ledger()
        ledger.read_owner = AsyncMock(side_effect=RuntimeError("rpc down"))
        orchestrator, *_ = _make_orchestrator(ledger=ledger)
        with pytest.raises(AuthorizationError) as excinfo:
            await orchestrator.admin_pause(ADMIN)
        assert excinfo.value.reason is DenyReason.SERVICE_ERROR


# ─── Reads ────────────────────────────────────────────────────────


class TestReads:
    @pytest.mark.asyncio
    async def test_referral_credit_threshold(self):
        store = InMemoryRecordStore()
        await _seed_referrals(store, REFERRER, 3)
        orchestrator, *_ = _make_orchestrator(store=store)

        credit = await orchestrator.get_referral_credit(REFERRER)
        assert credit.referral_count == 3
        assert credit.eligible is True

    @pytest.mark.asyncio
    async def test_unknown_owner_has_no_credit(self):
        orchestrator, *_ = _make_orchestrator()
        credit = await orchestrator.get_referral_credit(OWNER)
        assert credit.referral_count == 0
        assert credit.eligible is False

    @pytest.mark.asyncio
    async def test_get_by_owner_rejects_bad_address(self):
        orchestrator, *_ = _make_orchestrator()
        with pytest.raises(ValidationError):
            await orchestrator.get_by_owner("nope")

    @pytest.mark.asyncio
    async def test_list_public(self):
        orchestrator, *_ = _make_orchestrator()
        await orchestrator.issue(REFERRER, _content())
        await orchestrator.issue(OWNER, _content())
        assert [c.owner for c in await orchestrator.list_public()] == [OWNER, REFERRER]
