"""TTL-bounded cache of tool-router sessions keyed by user and conversation."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import SESSION_TTL_SECONDS
from .models import Session
from .providers.tool_router import ToolExecutionProvider

logger = logging.getLogger(__name__)

SessionKey = tuple[str, str | None]


@dataclass
class _CacheEntry:
    session: Session
    cached_at: float


class SessionManager:
    """Creates, caches and invalidates tool-execution sessions.

    One instance is shared by every conversation in the process. Lookups for
    the same key are serialized so a cache miss creates exactly one session;
    different keys never wait on each other. An entry is only stored after the
    provider call returns, so a cancelled creation leaves nothing behind.
    """

    def __init__(
        self,
        provider: ToolExecutionProvider,
        ttl: float = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[SessionKey, _CacheEntry] = {}
        self._key_locks: dict[SessionKey, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _lock_for(self, key: SessionKey) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the event loop.
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    def _is_valid(self, entry: _CacheEntry, now: float) -> bool:
        return now - entry.cached_at < self._ttl

    async def get_session(self, user_id: str, conversation_id: str | None = None) -> Session:
        key: SessionKey = (user_id, conversation_id)
        async with self._lock_for(key):
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and self._is_valid(entry, now):
                return entry.session
            if entry is not None:
                del self._entries[key]
                logger.debug("Discarded expired session for %s", key)

            session = await self._provider.create_session(user_id)
            if session.conversation_id != conversation_id:
                session = session.model_copy(update={"conversation_id": conversation_id})
            self._entries[key] = _CacheEntry(session=session, cached_at=self._clock())
            logger.info("Created tool session %s for user %s", session.session_id, user_id)
            self.prune_expired()
            return session

    def invalidate(self, user_id: str, conversation_id: str | None = None) -> None:
        """Drop the cached session for a key, valid or not."""
        if self._entries.pop((user_id, conversation_id), None) is not None:
            logger.info("Invalidated tool session for user %s", user_id)

    def prune_expired(self) -> int:
        """Remove expired entries and idle locks; returns the number of entries removed."""
        now = self._clock()
        stale = [k for k, e in self._entries.items() if not self._is_valid(e, now)]
        for key in stale:
            del self._entries[key]
        for key in [k for k, lock in self._key_locks.items() if k not in self._entries and not lock.locked()]:
            del self._key_locks[key]
        return len(stale)
