"""
Redis-backed session store.

Each session is one Redis hash keyed ``<prefix><session_id>``. Schema fields
are stored JSON-encoded, one hash field per campaign field, next to a
creation marker so that an all-empty session still exists. Every get and
merge refreshes the key's idle expiry.

A merge writes all of its fields with a single HSET, so two concurrent merges
of different fields on the same session both survive.
"""

import json
import os
from datetime import datetime
from typing import Any, Mapping, Optional

import structlog
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import StoreUnavailable
from ..state.campaign_state import CAMPAIGN_FIELDS, CampaignState
from ..state.session_store import DEFAULT_TTL_SECONDS, SessionStore

logger = structlog.get_logger()

CREATED_FIELD = "_created_at"
DEFAULT_KEY_PREFIX = "campaign:session:"


class RedisSessionStore(SessionStore):
    """
    Session store on a shared Redis instance.

    Supports:
    - Atomic per-call field merges
    - Idle expiry via EXPIRE
    - Translation of connection failures into StoreUnavailable
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        schema: tuple[str, ...] = CAMPAIGN_FIELDS,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        """
        Initialize Redis session store.

        Args:
            url: Redis connection URL (default: from REDIS_URL env var)
            key_prefix: Prefix for session hash keys
            schema: Ordered campaign field names
            ttl_seconds: Idle-expiry horizon for a session
        """
        super().__init__(schema=schema, ttl_seconds=ttl_seconds)
        self.url = url or os.getenv("REDIS_URL", "redis://localhost:6379")
        self.key_prefix = key_prefix
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client."""
        if self._client is None:
            raise RuntimeError("RedisSessionStore not connected. Call connect() first.")
        return self._client

    async def connect(self) -> "RedisSessionStore":
        """
        Connect to Redis.

        Returns:
            Self for chaining
        """
        self._client = redis.from_url(self.url, decode_responses=True)
        try:
            await self._client.ping()
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailable(f"Redis unreachable at {self.url}: {e}") from e
        logger.info("redis_store.connected", url=self.url, key_prefix=self.key_prefix)
        return self

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("redis_store.disconnected")

    async def __aenter__(self) -> "RedisSessionStore":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def key_for(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    # -------------------------------------------------------------------------
    # Store contract
    # -------------------------------------------------------------------------

    async def get(self, session_id: str) -> CampaignState:
        key = self.key_for(session_id)
        pipe = self.client.pipeline(transaction=True)
        pipe.hsetnx(key, CREATED_FIELD, datetime.utcnow().isoformat())
        pipe.expire(key, self.ttl_seconds)
        pipe.hgetall(key)
        results = await self._execute(pipe, "get", session_id)
        return self._decode(results[-1])

    async def merge(self, session_id: str, partial: Mapping[str, Any]) -> CampaignState:
        key = self.key_for(session_id)
        encoded = {
            name: json.dumps(partial[name])
            for name in self.schema
            if partial.get(name) is not None
        }

        pipe = self.client.pipeline(transaction=True)
        if encoded:
            pipe.hset(key, mapping=encoded)
        pipe.hsetnx(key, CREATED_FIELD, datetime.utcnow().isoformat())
        pipe.expire(key, self.ttl_seconds)
        pipe.hgetall(key)
        results = await self._execute(pipe, "merge", session_id)

        logger.debug(
            "redis_store.merged",
            session_id=session_id,
            fields=list(encoded),
        )
        return self._decode(results[-1])

    async def delete(self, session_id: str) -> None:
        try:
            deleted = await self.client.delete(self.key_for(session_id))
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailable(f"Redis delete failed: {e}", session_id=session_id) from e
        if deleted:
            logger.info("redis_store.session_deleted", session_id=session_id)

    async def exists(self, session_id: str) -> bool:
        try:
            return bool(await self.client.exists(self.key_for(session_id)))
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailable(f"Redis exists failed: {e}", session_id=session_id) from e

    # -------------------------------------------------------------------------
    # Utilities
    # -------------------------------------------------------------------------

    async def clear_all(self) -> int:
        """
        Delete every session under this store's prefix.

        Returns:
            Number of sessions deleted
        """
        count = 0
        async for key in self.client.scan_iter(match=f"{self.key_prefix}*"):
            count += await self.client.delete(key)
        logger.info("redis_store.cleared", deleted=count)
        return count

    async def _execute(self, pipe, operation: str, session_id: str) -> list:
        try:
            return await pipe.execute()
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(
                "redis_store.unavailable",
                operation=operation,
                session_id=session_id,
                error=str(e),
            )
            raise StoreUnavailable(f"Redis {operation} failed: {e}", session_id=session_id) from e

    def _decode(self, data: Optional[dict]) -> CampaignState:
        values = {}
        for name in self.schema:
            raw = (data or {}).get(name)
            if raw is None:
                continue
            try:
                values[name] = json.loads(raw)
            except json.JSONDecodeError:
                values[name] = raw
        return CampaignState(schema=self.schema, values=values)


# -------------------------------------------------------------------------
# Convenience factory
# -------------------------------------------------------------------------

async def create_redis_session_store(
    url: Optional[str] = None,
    key_prefix: str = DEFAULT_KEY_PREFIX,
    schema: tuple[str, ...] = CAMPAIGN_FIELDS,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
) -> RedisSessionStore:
    """
    Create and connect a Redis session store.

    Returns:
        Connected RedisSessionStore instance
    """
    store = RedisSessionStore(
        url=url,
        key_prefix=key_prefix,
        schema=schema,
        ttl_seconds=ttl_seconds,
    )
    return await store.connect()
