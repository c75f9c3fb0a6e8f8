"""
CertChain — In-Memory Record Store

Process-local backend for tests and local development. Records are kept as
serialised dicts so callers never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from certchain.primitives.certificate import Certificate
from certchain.store.base import RecordStore


class InMemoryRecordStore(RecordStore):
    backend_name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, dict[str, Any]] = {}
        self._tokens: dict[int, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _owner_lock(self, owner: str) -> AsyncIterator[None]:
        # A lock lives only while someone holds or waits on it
        lock = self._locks.setdefault(owner, asyncio.Lock())
        self._lock_users[owner] = self._lock_users.get(owner, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[owner] -= 1
            if not self._lock_users[owner]:
                del self._lock_users[owner]
                del self._locks[owner]

    async def _load(self, owner: str) -> Certificate | None:
        raw = self._records.get(owner)
        # Yield so concurrent writers interleave as they would over a network
        await asyncio.sleep(0)
        return Certificate.from_record(raw) if raw is not None else None

    async def _load_all(self) -> list[Certificate]:
        return [Certificate.from_record(raw) for raw in self._records.values()]

    async def _save(self, certificate: Certificate) -> None:
        await asyncio.sleep(0)
        self._records[certificate.owner] = certificate.to_record()

    async def _remove(self, owner: str) -> None:
        self._records.pop(owner, None)

    async def _owner_for_token(self, token_id: int) -> str | None:
        return self._tokens.get(token_id)

    async def _index_token(self, token_id: int, owner: str) -> None:
        self._tokens[token_id] = owner

    async def _unindex_token(self, token_id: int) -> None:
        self._tokens.pop(token_id, None)

    def __len__(self) -> int:
        return len(self._records)
