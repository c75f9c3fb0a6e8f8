"""
CertChain — Redis Client

Async Redis for the certificate record store: JSON records, the token
index hash, and per-owner write locks.
"""

from __future__ import annotations

from typing import Any

import orjson
import structlog
from redis.asyncio import Redis
from redis.asyncio.lock import Lock

from certchain.config import RedisConfig

logger = structlog.get_logger()


class RedisClient:
    """
    Async Redis client with key prefixing for multi-instance support.
    """

    def __init__(self, config: RedisConfig) -> None:
        self._config = config
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        self._client = Redis.from_url(
            self._config.full_url,
            decode_responses=True,
        )
        # Verify connectivity
        await self._client.ping()
        logger.info("redis_connected", prefix=self._config.prefix)

    async def close(self) -> None:
        """Close the connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    def _key(self, key: str) -> str:
        """Prefix a key with the instance prefix."""
        return f"{self._config.prefix}:{key}"

    async def health_check(self) -> dict[str, Any]:
        """Check connectivity."""
        try:
            await self.client.ping()
            return {"status": "connected"}
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            return {"status": "disconnected", "error": str(e)}

    # ─── JSON Helpers ─────────────────────────────────────────────

    async def set_json(self, key: str, value: Any) -> None:
        """Store a JSON-serialisable value."""
        await self.client.set(self._key(key), orjson.dumps(value).decode())

    async def get_json(self, key: str) -> Any | None:
        """Retrieve a JSON value."""
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        return orjson.loads(raw)

    async def delete(self, key: str) -> None:
        """Delete a key."""
        await self.client.delete(self._key(key))

    async def scan_json(self, pattern: str) -> dict[str, Any]:
        """All JSON values whose (unprefixed) key matches a glob pattern."""
        prefix = f"{self._config.prefix}:"
        values: dict[str, Any] = {}
        async for key in self.client.scan_iter(match=self._key(pattern)):
            raw = await self.client.get(key)
            if raw is not None:
                values[key.removeprefix(prefix)] = orjson.loads(raw)
        return values

    # ─── Hash Operations (Token Index) ────────────────────────────

    async def hset(self, key: str, field: str, value: Any) -> None:
        """Set a hash field."""
        await self.client.hset(self._key(key), field, orjson.dumps(value).decode())

    async def hget(self, key: str, field: str) -> Any | None:
        """Get a hash field."""
        raw = await self.client.hget(self._key(key), field)
        if raw is None:
            return None
        return orjson.loads(raw)

    async def hdel(self, key: str, field: str) -> None:
        """Delete a hash field."""
        await self.client.hdel(self._key(key), field)

    # ─── Locks ────────────────────────────────────────────────────

    def lock(self, name: str, timeout: float, blocking_timeout: float) -> Lock:
        """
        A distributed mutex. `timeout` bounds how long a crashed holder keeps
        it; `blocking_timeout` bounds how long a waiter blocks before
        acquire() gives up and returns False.
        """
        return self.client.lock(
            self._key(f"lock:{name}"),
            timeout=timeout,
            blocking_timeout=blocking_timeout,
        )
