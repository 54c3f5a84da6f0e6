"""SSH transport built on paramiko.

Each ``SSHTransport`` owns a small thread executor for its blocking
channel calls, so one session's pending ``recv`` never occupies a thread
that another session needs.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import socket
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable

import paramiko

from switchpool.errors import ConnectFailed, TransportLost

if TYPE_CHECKING:
    from switchpool.config import PoolSettings, SessionConfig

logger = logging.getLogger(__name__)


def _restrict_ciphers(transport: paramiko.Transport, ciphers: list[str]) -> None:
    """Limit the cipher preference list to ``ciphers`` that paramiko supports."""
    options = transport.get_security_options()
    supported = set(options.ciphers)
    preferred = tuple(c for c in ciphers if c in supported)
    if preferred:
        options.ciphers = preferred
    else:
        logger.warning("None of the configured ciphers are supported, using defaults")


def _close_quietly(transport: paramiko.Transport | None) -> None:
    if transport is None:
        return
    try:
        transport.close()
    except Exception as e:
        logger.debug("Ignoring error while closing failed transport: %s", e)


def _close_abandoned(connecting: asyncio.Future) -> None:
    """Done callback for a connect whose caller was cancelled."""
    if connecting.cancelled() or connecting.exception() is not None:
        return
    transport = connecting.result()
    logger.debug("Closing SSH connection abandoned by a cancelled dial")
    connecting.get_loop().run_in_executor(None, _close_quietly, transport)


class SSHTransport:
    """A password-authenticated SSH connection hosting one interactive shell."""

    def __init__(self, transport: paramiko.Transport, label: str = "") -> None:
        self._transport = transport
        self._label = label
        self._channel: paramiko.Channel | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix=f"ssh-{label or 'transport'}"
        )
        self._closed = False

    @classmethod
    async def dial(cls, config: SessionConfig, settings: PoolSettings) -> SSHTransport:
        """Connect and authenticate to the device ``config`` names.

        Raises:
            ConnectFailed: TCP connect, key exchange or authentication failed.
        """
        loop = asyncio.get_running_loop()
        connecting = loop.run_in_executor(
            None, functools.partial(cls._connect, config, settings)
        )
        try:
            transport = await asyncio.shield(connecting)
        except asyncio.CancelledError:
            # The connect thread cannot be interrupted; close whatever it
            # builds once it finishes.
            connecting.add_done_callback(_close_abandoned)
            raise
        return cls(transport, label=config.label)

    @staticmethod
    def _connect(config: SessionConfig, settings: PoolSettings) -> paramiko.Transport:
        logger.debug("Connecting to %s", config.label)
        transport: paramiko.Transport | None = None
        try:
            sock = socket.create_connection(
                (config.host, config.port), timeout=settings.dial_timeout
            )
            transport = paramiko.Transport(sock)
            transport.banner_timeout = settings.dial_timeout
            _restrict_ciphers(transport, settings.ciphers)
            # Host keys are not verified; switches are addressed by IP and
            # rotate keys on reimage.
            transport.start_client(timeout=settings.dial_timeout)
            transport.auth_password(config.user, config.secret.get_secret_value())
        except paramiko.AuthenticationException as e:
            _close_quietly(transport)
            raise ConnectFailed(f"Authentication failed: {e}", label=config.label) from e
        except (socket.error, paramiko.SSHException, OSError) as e:
            _close_quietly(transport)
            raise ConnectFailed(f"Connection failed: {e}", label=config.label) from e

        logger.info("Connected to %s", config.label)
        return transport

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    async def open_shell(self, term: str, cols: int, rows: int) -> None:
        def _open() -> paramiko.Channel:
            channel = self._transport.open_session()
            channel.get_pty(term=term, width=cols, height=rows)
            channel.invoke_shell()
            return channel

        try:
            self._channel = await self._run(_open)
        except (paramiko.SSHException, OSError) as e:
            raise ConnectFailed(f"Opening shell failed: {e}", label=self._label) from e
        logger.debug("Shell opened on %s (%s %dx%d)", self._label, term, cols, rows)

    async def write(self, data: bytes) -> None:
        if self._closed or self._channel is None:
            raise TransportLost(f"SSH shell on {self._label} is not open")
        await self._run(self._channel.sendall, data)

    async def read(self, size: int) -> bytes:
        if self._closed or self._channel is None:
            return b""
        return await self._run(self._channel.recv, size)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        def _close() -> None:
            if self._channel is not None:
                self._channel.close()
            self._transport.close()

        # Run on the loop's default executor: our own workers may be
        # parked in recv/sendall until the channel closes.
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _close)
        finally:
            self._executor.shutdown(wait=False)
        logger.debug("SSH transport to %s closed", self._label)
