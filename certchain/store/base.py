"""
CertChain — Certificate Record Store (shared logic)

The durable, per-owner keyed store of certificate content, current CID,
version history, referral edges, and the token index.

Every read-modify-write runs inside a per-owner critical section supplied
by the backend (_owner_lock). Two concurrent append_version calls for the
same owner therefore observe each other's writes and can never mint the
same versionId; two concurrent append_referral calls can never lose an
entry. Distinct owners never contend.

Backends implement only raw persistence plus the lock; all invariants live
here so both backends enforce them identically.
"""

from __future__ import annotations

import abc
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import TypeVar

import structlog

from certchain.errors import CertificateNotFound, StoreError
from certchain.primitives.certificate import (
    Certificate,
    CertificateContent,
    CertificateVersion,
)
from certchain.primitives.common import normalize_address

logger = structlog.get_logger()

T = TypeVar("T")


class RecordStore(abc.ABC):
    """Abstract record store. Addresses are normalised at this boundary."""

    def __init__(self) -> None:
        self._logger = logger.bind(component=f"store.{self.backend_name}")

    backend_name: str = "abstract"

    # ── Backend primitives ────────────────────────────────────

    @abc.abstractmethod
    async def _load(self, owner: str) -> Certificate | None: ...

    @abc.abstractmethod
    async def _save(self, certificate: Certificate) -> None: ...

    @abc.abstractmethod
    async def _remove(self, owner: str) -> None: ...

    @abc.abstractmethod
    async def _owner_for_token(self, token_id: int) -> str | None: ...

    @abc.abstractmethod
    async def _index_token(self, token_id: int, owner: str) -> None: ...

    @abc.abstractmethod
    async def _unindex_token(self, token_id: int) -> None: ...

    @abc.abstractmethod
    async def _load_all(self) -> list[Certificate]: ...

    @abc.abstractmethod
    def _owner_lock(self, owner: str) -> AbstractAsyncContextManager[None]:
        """Exclusive per-owner critical section. Raises StoreError on timeout."""

    # ── Reads ─────────────────────────────────────────────────

    async def find_by_owner(self, owner: str) -> Certificate | None:
        return await self._load(normalize_address(owner))

    async def list_all(self) -> list[Certificate]:
        """Every record, ordered by owner."""
        return sorted(await self._load_all(), key=lambda c: c.owner)

    async def owner_for_token(self, token_id: int) -> str | None:
        """Owner whose record is linked to token_id, if any."""
        return await self._owner_for_token(int(token_id))

    # ── Writes ────────────────────────────────────────────────

    async def upsert_content(
        self,
        owner: str,
        content: CertificateContent,
        cid: str,
        uri: str,
        referrals: list[str] | None = None,
    ) -> tuple[Certificate, bool]:
        """
        Create the record, or overwrite the current content/cid/uri of an
        existing one. Versions and referrals of an existing record are
        left untouched; `referrals` only seeds a new record.

        Returns (certificate, created).
        """
        owner = normalize_address(owner)
        async with self._owner_lock(owner):
            existing = await self._load(owner)
            if existing is None:
                certificate = Certificate(
                    owner=owner,
                    metadata_uri=uri,
                    cid=cid,
                    content=content,
                    referrals=list(referrals or []),
                )
            else:
                certificate = existing.model_copy(
                    update={"content": content, "cid": cid, "metadata_uri": uri}
                )
            await self._save(certificate)

        created = existing is None
        self._logger.info("certificate_upserted", owner=owner, cid=cid, created=created)
        return certificate, created

    async def append_version(
        self,
        owner: str,
        cid: str,
        content: CertificateContent | None = None,
        uri: str | None = None,
    ) -> str:
        """
        Append {versionId: previous max + 1, cid} and, when given, make
        content/uri the current snapshot in the same write.

        Raises:
            CertificateNotFound: no record for owner.
            StoreError: after one automatic retry.
        """
        owner = normalize_address(owner)
        return await self._retry_once(
            "append_version",
            owner,
            lambda: self._append_version(owner, cid, content, uri),
        )

    async def _append_version(
        self,
        owner: str,
        cid: str,
        content: CertificateContent | None,
        uri: str | None,
    ) -> str:
        async with self._owner_lock(owner):
            certificate = await self._load(owner)
            if certificate is None:
                raise CertificateNotFound(owner)
            version_id = str(certificate.latest_version_id + 1)
            update: dict[str, object] = {
                "versions": [*certificate.versions, CertificateVersion(version_id=version_id, cid=cid)],
                "cid": cid,
            }
            if content is not None:
                update["content"] = content
            if uri is not None:
                update["metadata_uri"] = uri
            await self._save(certificate.model_copy(update=update))

        self._logger.info("version_appended", owner=owner, version_id=version_id, cid=cid)
        return version_id

    async def append_referral(self, referrer_owner: str, referee_address: str) -> bool:
        """
        Credit referee_address to referrer_owner.

        Returns False (and writes nothing) when the referrer has no record
        or the referee is already credited, so counts stay distinct.
        """
        referrer = normalize_address(referrer_owner)
        referee = normalize_address(referee_address)
        return await self._retry_once(
            "append_referral",
            referrer,
            lambda: self._append_referral(referrer, referee),
        )

    async def _append_referral(self, referrer: str, referee: str) -> bool:
        async with self._owner_lock(referrer):
            certificate = await self._load(referrer)
            if certificate is None or referee in certificate.referrals:
                return False
            await self._save(
                certificate.model_copy(update={"referrals": [*certificate.referrals, referee]})
            )

        self._logger.info(
            "referral_appended",
            referrer=referrer,
            referee=referee,
            count=len(certificate.referrals) + 1,
        )
        return True

    async def attach_token(self, owner: str, token_id: int) -> bool:
        """Record which ledger token backs owner's record. False if no record."""
        owner = normalize_address(owner)
        async with self._owner_lock(owner):
            certificate = await self._load(owner)
            if certificate is None:
                return False
            if certificate.token_id is not None and certificate.token_id != token_id:
                await self._unindex_token(certificate.token_id)
            await self._save(certificate.model_copy(update={"token_id": int(token_id)}))
            await self._index_token(int(token_id), owner)

        self._logger.info("token_attached", owner=owner, token_id=token_id)
        return True

    async def delete_by_token(self, token_id: int) -> bool:
        owner = await self._owner_for_token(int(token_id))
        if owner is None:
            self._logger.warning("delete_unknown_token", token_id=token_id)
            return False
        return await self.delete_by_owner(owner)

    async def delete_by_owner(self, owner: str) -> bool:
        owner = normalize_address(owner)
        async with self._owner_lock(owner):
            certificate = await self._load(owner)
            if certificate is None:
                return False
            await self._remove(owner)
            if certificate.token_id is not None:
                await self._unindex_token(certificate.token_id)

        self._logger.info("certificate_deleted", owner=owner, token_id=certificate.token_id)
        return True

    # ── Helpers ───────────────────────────────────────────────

    async def _retry_once(
        self,
        operation: str,
        owner: str,
        attempt: Callable[[], Awaitable[T]],
    ) -> T:
        """Per-owner appends get exactly one automatic retry on StoreError."""
        try:
            return await attempt()
        except StoreError as exc:
            self._logger.warning("store_append_retry", operation=operation, owner=owner, error=str(exc))
            return await attempt()
