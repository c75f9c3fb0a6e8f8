"""
CertChain — Issuance Orchestrator

The central state machine of the engine. Composes the publisher, record
store, ledger client, authorization guard, and referral calculator into the
issuance workflows, each run as a Saga.

Workflows:
  issue            VALIDATE → [PRECHECK (free)] → PUBLISH → RECORD
                   → [LEDGER_MINT → TOKEN_LINK (free)] → REFERRAL_UPDATE
  issue_version    VALIDATE → PUBLISH → VERSION_RECORD → [LEDGER_VERSION_MINT]
  admin_mint_free  VALIDATE → AUTHORIZE → PRECHECK → (reuse cid | PUBLISH → RECORD)
                   → LEDGER_MINT → TOKEN_LINK → REFERRAL_UPDATE
  admin_revoke     VALIDATE → AUTHORIZE → RESOLVE_TOKEN → LEDGER_REVOKE → RECORD_DELETE
  admin_*          VALIDATE → AUTHORIZE → LEDGER_CALL

Ordering rules:
  - PUBLISH always precedes RECORD: a record never names a CID that was not
    pinned.
  - RECORD precedes LEDGER_MINT: any access check that finds a token also
    finds its off-chain content.

On the paid path the user signs the mint transaction themselves; issue()
only pins and records, returning the CID/URI for the caller's transaction.

Partial failures are never compensated. Each one is logged with a named
event so it can be found and repaired:
  metadata_orphaned        pinned, record write failed
  record_without_token     recorded, mint failed or outcome unknown
  referral_update_failed   minted/recorded, referrer not credited
  token_revoked_record_kept  burned on chain, record delete failed

A repeated paid issue() for an owner with a record overwrites content/cid
and does NOT append a version, whereas issue_version() appends. The
asymmetry is kept as-is pending a product decision.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from certchain.clients.ledger import LedgerOperation
from certchain.engine import referral
from certchain.engine.guard import AuthorizationGuard
from certchain.engine.saga import Saga, SagaStage
from certchain.engine.types import (
    AdminMintRequest,
    AdminRequest,
    IssueRequest,
    IssueResult,
    OwnerQuery,
    RevokeRequest,
    SetBaseURIRequest,
    TransferOwnershipRequest,
    VersionRequest,
    VersionResult,
    validate_request,
)
from certchain.errors import CertificateNotFound, LedgerReadError, StoreError, ValidationError

if TYPE_CHECKING:
    from certchain.clients.ledger import LedgerClient
    from certchain.clients.publisher import PinataPublisher
    from certchain.primitives.certificate import (
        Certificate,
        CertificateContent,
        PublishedMetadata,
        Receipt,
        ReferralCredit,
    )
    from certchain.store.base import RecordStore

logger = structlog.get_logger()

AdminT = TypeVar("AdminT", bound=AdminRequest)


class IssuanceOrchestrator:
    """
    Coordinates writes across IPFS, the record store, and the ledger.

    All collaborators are injected; the orchestrator owns none of their
    lifecycles.
    """

    def __init__(
        self,
        publisher: PinataPublisher,
        ledger: LedgerClient,
        store: RecordStore,
        guard: AuthorizationGuard | None = None,
    ) -> None:
        self._publisher = publisher
        self._ledger = ledger
        self._store = store
        self._guard = guard or AuthorizationGuard(ledger)
        self._logger = logger.bind(component="engine.orchestrator")

    # ── Reads ─────────────────────────────────────────────────

    async def get_by_owner(self, owner: str) -> Certificate | None:
        query = validate_request(OwnerQuery, owner=owner)
        return await self._store.find_by_owner(query.owner)

    async def get_referral_credit(self, owner: str) -> ReferralCredit:
        query = validate_request(OwnerQuery, owner=owner)
        return referral.credit(await self._store.find_by_owner(query.owner))

    async def list_public(self) -> list[Certificate]:
        """Every issued certificate, for the public gallery."""
        return await self._store.list_all()

    # ── Standard issuance ─────────────────────────────────────

    async def issue(
        self,
        owner: str,
        content: CertificateContent | dict[str, Any],
        referrer: str | None = None,
        free: bool = False,
    ) -> IssueResult:
        """
        Pin and record a certificate. With free=True the owner must hold a
        referral credit, and the engine also mints the token itself.
        """
        saga = Saga("issue")

        async with saga.step(SagaStage.VALIDATE):
            request = validate_request(
                IssueRequest, owner=owner, content=content, referrer=referrer, free=free
            )
            saga.bind(owner=request.owner)
            credited_referrer = await self._creditable_referrer(request.referrer)

        if request.free:
            async with saga.step(SagaStage.PRECHECK):
                credit = referral.credit(await self._store.find_by_owner(request.owner))
                if not credit.eligible:
                    raise ValidationError(
                        f"No free-mint credit: {credit.referral_count}/"
                        f"{referral.FREE_MINT_REFERRAL_THRESHOLD} referrals"
                    )
                await self._ensure_no_token(request.owner)

        published = await self._publish(saga, request.owner, request.content)
        certificate, created = await self._record(
            saga, request.owner, request.content, published, credited_referrer
        )

        receipt: Receipt | None = None
        if request.free:
            receipt = await self._mint(saga, certificate.owner, published.cid, request.referrer)
        else:
            saga.skip(SagaStage.LEDGER_MINT, reason="paid mint is signed by the owner")

        await self._credit_referrer(saga, request.owner, credited_referrer, created)

        self._logger.info(
            "certificate_issued",
            owner=request.owner,
            cid=published.cid,
            created=created,
            free=request.free,
            saga_id=saga.saga_id,
        )
        return IssueResult(
            owner=request.owner,
            cid=published.cid,
            uri=published.uri,
            created=created,
            receipt=receipt,
            saga_id=saga.saga_id,
            steps=saga.summary(),
        )

    # ── Version issuance ──────────────────────────────────────

    async def issue_version(
        self,
        owner: str,
        content: CertificateContent | dict[str, Any],
        mint_on_chain: bool = False,
    ) -> VersionResult:
        """Append a new immutable version and make it the current snapshot."""
        saga = Saga("issue_version")

        async with saga.step(SagaStage.VALIDATE):
            request = validate_request(
                VersionRequest, owner=owner, content=content, mint_on_chain=mint_on_chain
            )
            saga.bind(owner=request.owner)
            if await self._store.find_by_owner(request.owner) is None:
                raise CertificateNotFound(request.owner)

        published = await self._publish(saga, request.owner, request.content)

        async with saga.step(
            SagaStage.VERSION_RECORD,
            on_failure="metadata_orphaned",
            owner=request.owner,
            cid=published.cid,
        ) as step:
            version_id = await self._store.append_version(
                request.owner, published.cid, content=request.content, uri=published.uri
            )
            step.detail["version_id"] = version_id

        receipt: Receipt | None = None
        if request.mint_on_chain:
            async with saga.step(
                SagaStage.LEDGER_VERSION_MINT,
                on_failure="version_without_token",
                owner=request.owner,
                version_id=version_id,
            ) as step:
                receipt = await self._ledger.submit(
                    LedgerOperation.MINT_VERSION, (request.owner, published.cid)
                )
                step.detail["tx_hash"] = receipt.tx_hash
        else:
            saga.skip(SagaStage.LEDGER_VERSION_MINT, reason="version mint is signed by the owner")

        self._logger.info(
            "certificate_version_issued",
            owner=request.owner,
            version_id=version_id,
            cid=published.cid,
            saga_id=saga.saga_id,
        )
        return VersionResult(
            owner=request.owner,
            version_id=version_id,
            cid=published.cid,
            uri=published.uri,
            receipt=receipt,
            saga_id=saga.saga_id,
            steps=saga.summary(),
        )

    # ── Admin: free mint ──────────────────────────────────────

    async def admin_mint_free(
        self,
        caller: str,
        owner: str,
        content: CertificateContent | dict[str, Any],
        referrer: str | None = None,
    ) -> Receipt:
        """
        Mint a fee-waived certificate token on the owner's behalf.

        An owner that already has a record keeps its pinned CID; only a new
        owner is published and recorded first.
        """
        saga = Saga("admin_mint_free")

        async with saga.step(SagaStage.VALIDATE):
            request = validate_request(
                AdminMintRequest, caller=caller, owner=owner, content=content, referrer=referrer
            )
            saga.bind(owner=request.owner, caller=request.caller)

        await self._authorize(saga, request)

        async with saga.step(SagaStage.PRECHECK):
            await self._ensure_no_token(request.owner)
            existing = await self._store.find_by_owner(request.owner)
            credited_referrer = (
                await self._creditable_referrer(request.referrer) if existing is None else None
            )

        created = False
        if existing is not None:
            cid = existing.cid
            saga.skip(SagaStage.PUBLISH, reason="reusing existing cid")
            saga.skip(SagaStage.RECORD, reason="record exists")
        else:
            published = await self._publish(saga, request.owner, request.content)
            _, created = await self._record(
                saga, request.owner, request.content, published, credited_referrer
            )
            cid = published.cid

        receipt = await self._mint(saga, request.owner, cid, request.referrer)
        await self._credit_referrer(saga, request.owner, credited_referrer, created)

        self._logger.info(
            "free_mint_complete",
            owner=request.owner,
            cid=cid,
            tx_hash=receipt.tx_hash,
            gas_used=receipt.gas_used,
            saga_id=saga.saga_id,
        )
        return receipt

    # ── Admin: revoke ─────────────────────────────────────────

    async def admin_revoke(self, caller: str, token_id: int) -> Receipt:
        """Burn a token on chain, then delete its record."""
        saga = Saga("admin_revoke")

        async with saga.step(SagaStage.VALIDATE):
            request = validate_request(RevokeRequest, caller=caller, token_id=token_id)
            saga.bind(caller=request.caller, token_id=request.token_id)

        await self._authorize(saga, request)

        # Records minted by their owners never saw a receipt from us; link the
        # token to its record while the chain can still say who holds it.
        # Nothing is burned unless the record can be found afterwards.
        async with saga.step(SagaStage.RESOLVE_TOKEN) as step:
            linked = False
            try:
                holder = await self._ledger.owner_of(request.token_id)
            except LedgerReadError as exc:
                linked_owner = await self._store.owner_for_token(request.token_id)
                self._logger.warning(
                    "token_holder_unresolved",
                    token_id=request.token_id,
                    linked_owner=linked_owner,
                    error=str(exc),
                )
                if linked_owner is None:
                    raise
                linked = True
                step.detail["holder"] = linked_owner
            else:
                step.detail["holder"] = holder
                linked = await self._store.attach_token(holder, request.token_id)
            step.detail["linked"] = linked

        async with saga.step(SagaStage.LEDGER_REVOKE) as step:
            receipt = await self._ledger.submit(LedgerOperation.REVOKE, (request.token_id,))
            step.detail["tx_hash"] = receipt.tx_hash

        async with saga.step(
            SagaStage.RECORD_DELETE,
            on_failure="token_revoked_record_kept",
            token_id=request.token_id,
            tx_hash=receipt.tx_hash,
        ) as step:
            deleted = await self._store.delete_by_token(request.token_id)
            step.detail["deleted"] = deleted
            if linked and not deleted:
                raise StoreError(
                    f"Record linked to token {request.token_id} was not deleted",
                    token_id=request.token_id,
                )

        self._logger.info(
            "certificate_revoked",
            token_id=request.token_id,
            tx_hash=receipt.tx_hash,
            saga_id=saga.saga_id,
        )
        return receipt

    # ── Admin: contract controls ──────────────────────────────

    async def admin_pause(self, caller: str) -> Receipt:
        return await self._admin_call(
            "admin_pause", AdminRequest, {"caller": caller}, LedgerOperation.PAUSE, lambda r: ()
        )

    async def admin_unpause(self, caller: str) -> Receipt:
        return await self._admin_call(
            "admin_unpause", AdminRequest, {"caller": caller}, LedgerOperation.UNPAUSE, lambda r: ()
        )

    async def admin_transfer_ownership(self, caller: str, new_owner: str) -> Receipt:
        return await self._admin_call(
            "admin_transfer_ownership",
            TransferOwnershipRequest,
            {"caller": caller, "new_owner": new_owner},
            LedgerOperation.TRANSFER_OWNERSHIP,
            lambda r: (r.new_owner,),
        )

    async def admin_set_base_uri(self, caller: str, uri: str) -> Receipt:
        return await self._admin_call(
            "admin_set_base_uri",
            SetBaseURIRequest,
            {"caller": caller, "uri": uri},
            LedgerOperation.SET_BASE_URI,
            lambda r: (r.uri,),
        )

    async def _admin_call(
        self,
        workflow: str,
        model: type[AdminT],
        data: dict[str, Any],
        operation: LedgerOperation,
        args_of: Callable[[AdminT], tuple[Any, ...]],
    ) -> Receipt:
        saga = Saga(workflow)
        async with saga.step(SagaStage.VALIDATE):
            request = validate_request(model, **data)
            saga.bind(caller=request.caller)
        await self._authorize(saga, request)
        args = args_of(request)
        async with saga.step(SagaStage.LEDGER_CALL) as step:
            receipt = await self._ledger.submit(operation, args)
            step.detail["tx_hash"] = receipt.tx_hash
        self._logger.info(
            "admin_call_complete",
            workflow=workflow,
            operation=operation.value,
            tx_hash=receipt.tx_hash,
            saga_id=saga.saga_id,
        )
        return receipt

    # ── Shared steps ──────────────────────────────────────────

    async def _authorize(self, saga: Saga, request: AdminRequest) -> None:
        async with saga.step(SagaStage.AUTHORIZE):
            await self._guard.require(request.caller)

    async def _publish(
        self,
        saga: Saga,
        owner: str,
        content: CertificateContent,
    ) -> PublishedMetadata:
        async with saga.step(SagaStage.PUBLISH) as step:
            published = await self._publisher.publish(
                content.to_metadata(owner), name=f"certificate-{owner}"
            )
            step.detail["cid"] = published.cid
        return published

    async def _record(
        self,
        saga: Saga,
        owner: str,
        content: CertificateContent,
        published: PublishedMetadata,
        credited_referrer: str | None,
    ) -> tuple[Certificate, bool]:
        async with saga.step(
            SagaStage.RECORD,
            on_failure="metadata_orphaned",
            owner=owner,
            cid=published.cid,
        ) as step:
            certificate, created = await self._store.upsert_content(
                owner,
                content,
                published.cid,
                published.uri,
                referrals=[credited_referrer] if credited_referrer else None,
            )
            step.detail["created"] = created
        return certificate, created

    async def _mint(
        self,
        saga: Saga,
        owner: str,
        cid: str,
        referrer: str | None,
    ) -> Receipt:
        async with saga.step(
            SagaStage.LEDGER_MINT,
            on_failure="record_without_token",
            owner=owner,
            cid=cid,
        ) as step:
            receipt = await self._ledger.submit(LedgerOperation.MINT_FOR, (owner, cid, referrer))
            step.detail["tx_hash"] = receipt.tx_hash

        if receipt.token_id is None:
            saga.skip(SagaStage.TOKEN_LINK, reason="no Transfer event in receipt")
        else:
            async with saga.step(
                SagaStage.TOKEN_LINK,
                on_failure="token_unlinked",
                owner=owner,
                token_id=receipt.token_id,
            ):
                await self._store.attach_token(owner, receipt.token_id)
        return receipt

    async def _credit_referrer(
        self,
        saga: Saga,
        owner: str,
        credited_referrer: str | None,
        created: bool,
    ) -> None:
        if credited_referrer is None or not created:
            saga.skip(SagaStage.REFERRAL_UPDATE, reason="no new referral")
            return
        async with saga.step(
            SagaStage.REFERRAL_UPDATE,
            on_failure="referral_update_failed",
            referrer=credited_referrer,
            referee=owner,
        ) as step:
            step.detail["appended"] = await self._store.append_referral(credited_referrer, owner)

    async def _creditable_referrer(self, referrer: str | None) -> str | None:
        """The referrer, if it holds a certificate; referrals only count then."""
        if referrer is None:
            return None
        if await self._store.find_by_owner(referrer) is None:
            self._logger.info("referrer_without_certificate", referrer=referrer)
            return None
        return referrer

    async def _ensure_no_token(self, owner: str) -> None:
        if await self._ledger.has_certificate(owner):
            raise ValidationError("User already holds an active certificate")
