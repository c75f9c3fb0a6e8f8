"""
CertChain — Redis Record Store

Production backend. Layout under the instance prefix:

  {prefix}:certificate:{owner}   JSON record (persisted layout)
  {prefix}:tokens                hash tokenId -> owner
  {prefix}:lock:owner:{owner}    per-owner write lock

The per-owner lock is a Redis lock, so the single-writer-per-owner rule
holds across every API worker sharing the same Redis.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import LockError, RedisError

from certchain.errors import StoreError
from certchain.primitives.certificate import Certificate
from certchain.store.base import RecordStore

if TYPE_CHECKING:
    from certchain.clients.redis import RedisClient
    from certchain.config import StoreConfig

_TOKEN_INDEX = "tokens"


def _record_key(owner: str) -> str:
    return f"certificate:{owner}"


class RedisRecordStore(RecordStore):
    backend_name = "redis"

    def __init__(self, redis: RedisClient, config: StoreConfig) -> None:
        super().__init__()
        self._redis = redis
        self._config = config

    @asynccontextmanager
    async def _owner_lock(self, owner: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"owner:{owner}",
            timeout=self._config.lock_timeout_s,
            blocking_timeout=self._config.lock_blocking_timeout_s,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            raise StoreError(f"Could not lock record for {owner}: {exc}", owner=owner) from exc
        if not acquired:
            raise StoreError(
                f"Timed out waiting for the write lock on {owner}",
                owner=owner,
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                # The lock expired while held; the write itself already landed
                self._logger.error("owner_lock_lost", owner=owner, error=str(exc))

    async def _load(self, owner: str) -> Certificate | None:
        try:
            raw = await self._redis.get_json(_record_key(owner))
        except RedisError as exc:
            raise StoreError(f"Failed to read record for {owner}: {exc}", owner=owner) from exc
        if raw is None:
            return None
        try:
            return Certificate.from_record(raw)
        except PydanticValidationError as exc:
            raise StoreError(f"Corrupt record for {owner}", owner=owner) from exc

    async def _load_all(self) -> list[Certificate]:
        try:
            raw_records = await self._redis.scan_json(_record_key("*"))
        except RedisError as exc:
            raise StoreError(f"Failed to list records: {exc}") from exc
        certificates: list[Certificate] = []
        for key, raw in raw_records.items():
            try:
                certificates.append(Certificate.from_record(raw))
            except PydanticValidationError:
                self._logger.error("corrupt_record_skipped", key=key)
        return certificates

    async def _save(self, certificate: Certificate) -> None:
        try:
            await self._redis.set_json(_record_key(certificate.owner), certificate.to_record())
        except RedisError as exc:
            raise StoreError(
                f"Failed to write record for {certificate.owner}: {exc}",
                owner=certificate.owner,
            ) from exc

    async def _remove(self, owner: str) -> None:
        try:
            await self._redis.delete(_record_key(owner))
        except RedisError as exc:
            raise StoreError(f"Failed to delete record for {owner}: {exc}", owner=owner) from exc

    async def _owner_for_token(self, token_id: int) -> str | None:
        try:
            owner = await self._redis.hget(_TOKEN_INDEX, str(token_id))
        except RedisError as exc:
            raise StoreError(f"Failed to resolve token {token_id}: {exc}") from exc
        return str(owner) if owner is not None else None

    async def _index_token(self, token_id: int, owner: str) -> None:
        try:
            await self._redis.hset(_TOKEN_INDEX, str(token_id), owner)
        except RedisError as exc:
            raise StoreError(f"Failed to index token {token_id}: {exc}") from exc

    async def _unindex_token(self, token_id: int) -> None:
        try:
            await self._redis.hdel(_TOKEN_INDEX, str(token_id))
        except RedisError as exc:
            raise StoreError(f"Failed to unindex token {token_id}: {exc}") from exc
