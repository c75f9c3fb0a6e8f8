"""
CertChain — Certificate Record Store

Backends: Redis (production) and in-memory (tests, local development).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from certchain.store.base import RecordStore
from certchain.store.memory import InMemoryRecordStore
from certchain.store.redis import RedisRecordStore

if TYPE_CHECKING:
    from certchain.clients.redis import RedisClient
    from certchain.config import StoreConfig


def create_record_store(config: StoreConfig, redis: RedisClient | None = None) -> RecordStore:
    """Build the configured backend."""
    if config.backend == "memory":
        return InMemoryRecordStore()
    if config.backend == "redis":
        if redis is None:
            raise ValueError("The redis store backend needs a connected RedisClient")
        return RedisRecordStore(redis, config)
    raise ValueError(f"Unknown store backend: {config.backend!r}")


__all__ = [
    "InMemoryRecordStore",
    "RecordStore",
    "RedisRecordStore",
    "create_record_store",
]
