"""Session manager: pooled, self-evicting cache of device sessions."""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Callable

from switchpool.clock import Clock
from switchpool.config import PoolSettings, SessionConfig
from switchpool.errors import ConnectFailed
from switchpool.pool.store import KeyLocks, SessionStore
from switchpool.session.session import Session
from switchpool.transport.base import Dialer
from switchpool.transport.ssh import SSHTransport

logger = logging.getLogger(__name__)


class SessionManager:
    """Hands out initialized sessions, reusing healthy cached ones.

    The manager ensures:
    - At most one open session per session key; callers asking for the
      same key serialize on a per-key lock, other keys run in parallel
    - A cached session is probed before it is handed out again and
      replaced if the probe fails
    - Sessions unused for ``idle_threshold`` seconds are closed by a
      background sweep
    - A closing session removes itself from the cache
    """

    def __init__(
        self,
        settings: PoolSettings | None = None,
        dialer: Dialer | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or PoolSettings()
        self._dialer: Dialer = dialer or SSHTransport.dial
        self._clock = clock or Clock()
        self._store = SessionStore()
        self._locks = KeyLocks()
        self._sweep_task: asyncio.Task | None = None

    def start(self) -> None:
        """Start the background sweep. Needs a running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(
                self._sweep_loop(), name="switchpool-sweep"
            )

    async def __aenter__(self) -> SessionManager:
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cleanup()

    async def get_session(self, config: SessionConfig) -> Session:
        """Return a ready session for ``config``.

        Reuses the cached session if it answers a liveness probe,
        otherwise dials a new one and caches it in place of the old.

        Raises:
            ConnectFailed: dialing or initializing the new session failed.
        """
        self.start()
        key = config.session_key
        stale: Session | None = None
        try:
            async with self._locks.hold(key):
                cached = self.get(config)
                if cached is not None:
                    if await cached.check_liveness():
                        cached.touch()
                        logger.debug("Reusing cached session %s", config.label)
                        return cached
                    logger.warning(
                        "Cached session %s failed its liveness probe, reconnecting",
                        config.label,
                    )
                    stale = cached

                session = await self._open_session(config)
                self._store.put(key, session)
                return session
        finally:
            if stale is not None:
                await stale.close()
            if self.get(config) is None:
                self._locks.discard(key)

    async def _open_session(self, config: SessionConfig) -> Session:
        try:
            transport = await self._dialer(config, self._settings)
        except ConnectFailed:
            raise
        except Exception as e:
            raise ConnectFailed(f"Dial failed: {e}", label=config.label) from e

        session = await Session.create(
            transport,
            config.vendor,
            config.session_key,
            label=config.label,
            on_close=self._deregistration_hook(),
            settings=self._settings,
            clock=self._clock,
        )
        try:
            await session.initialize(
                self._settings.banner_timeout, self._settings.init_timeout
            )
        except Exception as e:
            await session.close()
            raise ConnectFailed(f"Initialization failed: {e}", label=config.label) from e
        except BaseException:
            # Cancelled before the session reached the cache.
            await session.close()
            raise
        logger.info("Opened session %s", config.label)
        return session

    def _deregistration_hook(self) -> Callable[[Session], None]:
        # Weak so a session never keeps its manager alive.
        manager_ref = weakref.ref(self)

        def _deregister(session: Session) -> None:
            manager = manager_ref()
            if manager is not None:
                manager.remove_session(session.key, session)

        return _deregister

    def remove_session(self, key: str, session: Session | None = None) -> None:
        """Empty the cache slot for ``key``.

        With ``session`` given, only that exact session is removed, so a
        replaced session closing late cannot evict its successor.
        """
        removed = self._store.remove(key, session)
        if removed:
            self._locks.discard(key)
            if session is not None:
                logger.debug("Removed %s from the session cache", session.label)

    async def sweep(self) -> list[str]:
        """Run one eviction cycle. Returns the labels of evicted sessions.

        Candidates are picked under the store lock; each is then closed
        outside it, under its per-key lock, after re-checking that it is
        still cached and still idle.
        """
        threshold = self._settings.idle_threshold
        evicted: list[str] = []
        for key, session in self._store.collect_idle(self._clock.now(), threshold):
            async with self._locks.hold(key):
                if self._store.get(key) is not session:
                    continue
                idle = session.idle_for(self._clock.now())
                if idle <= threshold:
                    continue
                logger.info("Evicting %s after %.0fs idle", session.label, idle)
                try:
                    await session.close()
                except Exception:
                    logger.exception("Error closing idle session %s", session.label)
                self._store.remove(key, session)
                evicted.append(session.label)
            self._locks.discard(key)
        return evicted

    async def _sweep_loop(self) -> None:
        """Sweep idle sessions every ``sweep_interval`` until cancelled."""
        while True:
            await self._clock.sleep(self._settings.sweep_interval)
            try:
                evicted = await self.sweep()
            except Exception:
                logger.exception("Idle session sweep failed")
                continue
            if evicted:
                logger.info("Sweep evicted %d idle session(s)", len(evicted))

    def get(self, config: SessionConfig) -> Session | None:
        """The cached session for ``config``, without probing or dialing."""
        return self._store.get(config.session_key)

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all cached sessions."""
        now = self._clock.now()
        return [
            {
                "label": s.label,
                "vendor": s.vendor,
                "status": s.status.value,
                "idle_seconds": round(s.idle_for(now), 1),
            }
            for s in self._store.sessions()
        ]

    async def cleanup(self) -> None:
        """Stop the sweep and close every cached session. Called on shutdown."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None
        for session in self._store.sessions():
            await session.close()
        logger.info("All sessions closed")

    def __len__(self) -> int:
        return len(self._store)
