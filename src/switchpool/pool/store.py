"""Session cache and per-key lock table backing the session manager."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from switchpool.session.session import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Thread-safe map from session key to cached session.

    A removed session leaves an empty slot (``None``) that the next
    ``collect_idle()`` prunes. The internal lock is only ever held for
    dict operations, never across an ``await``.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session | None] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Session | None:
        with self._lock:
            return self._sessions.get(key)

    def put(self, key: str, session: Session) -> Session | None:
        """Store ``session`` under ``key``; returns the session it replaced."""
        with self._lock:
            previous = self._sessions.get(key)
            self._sessions[key] = session
        return previous

    def remove(self, key: str, session: Session | None = None) -> bool:
        """Empty the slot for ``key``.

        With ``session`` given, the slot is emptied only while it still
        holds that exact session. Returns whether a session was removed.
        """
        with self._lock:
            current = self._sessions.get(key)
            if current is None:
                return False
            if session is not None and current is not session:
                return False
            self._sessions[key] = None
            return True

    def collect_idle(self, now: float, threshold: float) -> list[tuple[str, Session]]:
        """Prune empty slots and return entries idle longer than ``threshold``."""
        candidates: list[tuple[str, Session]] = []
        with self._lock:
            for key, session in list(self._sessions.items()):
                if session is None:
                    del self._sessions[key]
                    continue
                try:
                    idle = session.idle_for(now)
                except Exception:
                    logger.exception("Skipping unreadable cache entry")
                    continue
                if idle > threshold:
                    candidates.append((key, session))
        return candidates

    def sessions(self) -> list[Session]:
        """Snapshot of the cached sessions."""
        with self._lock:
            return [s for s in self._sessions.values() if s is not None]

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for s in self._sessions.values() if s is not None)


class KeyLocks:
    """Lazily created ``asyncio.Lock`` per session key.

    The table has its own guard, separate from the store's lock. Entries
    are reference counted so ``discard()`` never drops a lock that a task
    holds or is waiting on.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}
        self._guard = threading.Lock()

    def _acquire_entry(self, key: str) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _release_entry(self, key: str) -> None:
        with self._guard:
            self._users[key] -= 1

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._acquire_entry(key)
        try:
            async with lock:
                yield
        finally:
            self._release_entry(key)

    def discard(self, key: str) -> None:
        """Forget the lock for ``key`` if no task is using it."""
        with self._guard:
            if self._users.get(key, 0) == 0:
                self._locks.pop(key, None)
                self._users.pop(key, None)
