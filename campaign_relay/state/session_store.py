"""
Session store for campaign state.

Maps caller-supplied session identifiers to exactly one CampaignState. The
store owns the state: every read hands out a copy, and the only way to change
a record is ``merge``. Sessions expire after an idle horizon; every ``get``
and ``merge`` pushes the horizon forward.

Two backends share this contract:
- InMemorySessionStore: process-local, one asyncio.Lock
- RedisSessionStore (infrastructure.redis_store): shared, one hash per session
"""

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

import structlog

from .campaign_state import CAMPAIGN_FIELDS, CampaignState

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 60 * 60


class SessionStore(ABC):
    """Abstract keyed store of partially-filled campaign records."""

    def __init__(
        self,
        schema: tuple[str, ...] = CAMPAIGN_FIELDS,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.schema = tuple(schema)
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def get(self, session_id: str) -> CampaignState:
        """Return the session's state, creating an empty one if needed."""
        ...

    @abstractmethod
    async def merge(self, session_id: str, partial: Mapping[str, Any]) -> CampaignState:
        """
        Overwrite schema fields present in ``partial`` with a non-None value.

        Returns:
            The post-merge state
        """
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove the session. Deleting an unknown session is a no-op."""
        ...

    @abstractmethod
    async def exists(self, session_id: str) -> bool:
        """Check whether the session currently has a backing state."""
        ...

    async def is_complete(self, session_id: str) -> bool:
        state = await self.get(session_id)
        return state.is_complete()

    async def missing_fields(self, session_id: str) -> list[str]:
        state = await self.get(session_id)
        return state.missing_fields()

    async def create_session(self) -> str:
        """Create a fresh session identifier backed by an empty state."""
        session_id = str(uuid.uuid4())
        await self.get(session_id)
        logger.info("session_store.session_created", session_id=session_id)
        return session_id

    def new_state(self) -> CampaignState:
        return CampaignState(schema=self.schema)


@dataclass
class SessionEntry:
    """A single session held in memory."""
    state: CampaignState
    expires_at: float
    created_at: float = field(default_factory=time.time)
    merge_count: int = 0


class InMemorySessionStore(SessionStore):
    """
    Process-local session store.

    Critical sections never suspend, so holding the lock is brief and
    concurrent merges on one session apply one after the other.
    """

    def __init__(
        self,
        schema: tuple[str, ...] = CAMPAIGN_FIELDS,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(schema=schema, ttl_seconds=ttl_seconds)
        self._clock = clock
        self._sessions: dict[str, SessionEntry] = {}
        self._lock = asyncio.Lock()

        logger.info(
            "session_store.initialized",
            backend="memory",
            fields=len(self.schema),
            ttl_seconds=ttl_seconds,
        )

    def _touch(self, session_id: str) -> SessionEntry:
        """Return a live entry for the session, creating or reviving it. Lock must be held."""
        now = self._clock()
        entry = self._sessions.get(session_id)
        if entry is not None and entry.expires_at <= now:
            logger.info("session_store.session_expired", session_id=session_id)
            entry = None
        if entry is None:
            entry = SessionEntry(state=self.new_state(), expires_at=now + self.ttl_seconds)
            self._sessions[session_id] = entry
        else:
            entry.expires_at = now + self.ttl_seconds
        return entry

    async def get(self, session_id: str) -> CampaignState:
        async with self._lock:
            return self._touch(session_id).state.copy()

    async def merge(self, session_id: str, partial: Mapping[str, Any]) -> CampaignState:
        async with self._lock:
            entry = self._touch(session_id)
            written = entry.state.apply(partial)
            entry.merge_count += 1
            state = entry.state.copy()

        logger.debug(
            "session_store.merged",
            session_id=session_id,
            fields=list(written),
            ignored=[name for name in partial if name not in written],
        )
        return state

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info("session_store.session_deleted", session_id=session_id)

    async def exists(self, session_id: str) -> bool:
        async with self._lock:
            entry = self._sessions.get(session_id)
            return entry is not None and entry.expires_at > self._clock()

    async def purge_expired(self) -> int:
        """Drop every session past its idle horizon. Returns the number dropped."""
        async with self._lock:
            now = self._clock()
            expired = [sid for sid, entry in self._sessions.items() if entry.expires_at <= now]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("session_store.purged", count=len(expired))
        return len(expired)

    async def clear_all(self) -> None:
        """Drop every session (for tests)."""
        async with self._lock:
            self._sessions.clear()

    async def session_ids(self) -> list[str]:
        async with self._lock:
            return list(self._sessions)


def session_store_from_settings(settings=None, schema: Optional[tuple[str, ...]] = None) -> SessionStore:
    """
    Build the configured store backend (not yet connected for Redis).

    Args:
        settings: RelaySettings (default: cached settings)
        schema: Field schema override
    """
    from ..config import get_settings

    settings = settings or get_settings()
    schema = schema or CAMPAIGN_FIELDS
    if settings.store_backend == "redis":
        from ..infrastructure.redis_store import RedisSessionStore

        return RedisSessionStore(
            url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            schema=schema,
            ttl_seconds=settings.session_ttl_seconds,
        )
    return InMemorySessionStore(schema=schema, ttl_seconds=settings.session_ttl_seconds)
