"""Per-session serialisation for the orchestrator."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Optional, Set


class SessionMailbox:
    """One lock per session plus bookkeeping of in-flight answers and activity.

    All mutations of a session run while holding its lock, so a single
    session has a single writer while different sessions proceed
    concurrently. Entries live only while a session can still take work:
    ``forget`` retires a session and its lock is dropped once the last
    coroutine using it has left.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}
        self._retired: Set[str] = set()
        self._submitting: Set[str] = set()
        self._last_seen: Dict[str, datetime] = {}

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @asynccontextmanager
    async def exclusive(self, session_id: str) -> AsyncIterator[None]:
        lock = self.lock_for(session_id)
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if not self._users[session_id]:
                del self._users[session_id]
                if session_id in self._retired:
                    self._drop(session_id)

    def try_begin_submit(self, session_id: str) -> bool:
        """Claim the answer slot; false when another answer is still in flight."""

        if session_id in self._submitting:
            return False
        self._submitting.add(session_id)
        return True

    def end_submit(self, session_id: str) -> None:
        self._submitting.discard(session_id)

    def is_submitting(self, session_id: str) -> bool:
        return session_id in self._submitting

    def touch(self, session_id: str, ts: datetime) -> None:
        self._last_seen[session_id] = ts

    def last_seen(self, session_id: str) -> Optional[datetime]:
        return self._last_seen.get(session_id)

    def forget(self, session_id: str) -> None:
        """Drop bookkeeping for a finished or unknown session."""

        self._last_seen.pop(session_id, None)
        if self._users.get(session_id):
            self._retired.add(session_id)
        else:
            self._drop(session_id)

    def tracked(self) -> Set[str]:
        return set(self._locks) | set(self._last_seen)

    def _drop(self, session_id: str) -> None:
        self._locks.pop(session_id, None)
        self._retired.discard(session_id)


__all__ = ["SessionMailbox"]
