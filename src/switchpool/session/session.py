"""Session: an interactive device shell over an unframed byte stream.

Device consoles never mark where a reply ends. A session therefore turns
the raw duplex stream into command/response exchanges by polling its
output buffer and deciding the reply is complete either when a prompt
terminator shows up (``read_until_expected``) or when the stream has
been silent for long enough (``read_until_quiet``).
"""

from __future__ import annotations

import asyncio
import codecs
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from switchpool.clock import Clock
from switchpool.config import PoolSettings
from switchpool.errors import ConnectFailed, SessionClosed, TransportLost
from switchpool.session import vendors
from switchpool.session.buffer import OutputBuffer
from switchpool.session.vendors import PROMPT_TERMINATORS
from switchpool.transport.base import Transport

logger = logging.getLogger(__name__)

# Read loop tuning. Every round first waits POLL_INTERVAL so output can
# accumulate before the buffer is drained.
POLL_INTERVAL = 0.1
QUIET_MAX_ROUNDS = 3000
EXPECT_MAX_ROUNDS = 300
IDLE_TICKS = 3
QUIET_GRACE_FACTOR = 10
DEFAULT_READ_TIMEOUT = 2.0


class SessionStatus(enum.Enum):
    """Lifecycle states for a session."""

    CREATED = "created"
    INITIALIZING = "initializing"  # Banner drain and paging setup in progress
    READY = "ready"
    CLOSED = "closed"  # Terminal; never reused


@dataclass(eq=False)
class Session:
    """A live interactive shell on one device.

    Owns two background tasks:
    - a writer that drains the command queue into the transport,
      appending a newline to each command
    - a reader that pushes decoded transport output into ``output``
      until the stream ends

    Build with ``await Session.create(...)``. One caller at a time: the
    session does not serialize concurrent command/response exchanges.
    """

    transport: Transport
    vendor: str = ""
    key: str = field(default="", repr=False)
    label: str = ""
    settings: PoolSettings = field(default_factory=PoolSettings, repr=False)
    clock: Clock = field(default_factory=Clock, repr=False)

    # Internal state
    output: OutputBuffer = field(init=False, repr=False)
    _commands: asyncio.Queue[str] = field(init=False, repr=False)
    _writer_task: asyncio.Task | None = field(default=None, init=False, repr=False)
    _reader_task: asyncio.Task | None = field(default=None, init=False, repr=False)
    _status: SessionStatus = field(default=SessionStatus.CREATED, init=False)
    _stream_lost: bool = field(default=False, init=False, repr=False)
    _last_used: float = field(default=0.0, init=False, repr=False)
    _on_close: Callable[[Session], None] | None = field(
        default=None, init=False, repr=False
    )

    def __post_init__(self) -> None:
        self.output = OutputBuffer(max_chunks=self.settings.output_queue_size)
        self._commands = asyncio.Queue(maxsize=self.settings.command_queue_size)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._last_used = self.clock.now()

    @classmethod
    async def create(
        cls,
        transport: Transport,
        vendor: str = "",
        key: str = "",
        *,
        label: str = "",
        on_close: Callable[[Session], None] | None = None,
        settings: PoolSettings | None = None,
        clock: Clock | None = None,
    ) -> Session:
        """Open a shell on ``transport`` and start the writer and reader.

        Returns without waiting for the login banner.

        Raises:
            ConnectFailed: the pty or shell request failed. The transport
                is closed before raising.
        """
        session = cls(
            transport=transport,
            vendor=vendor,
            key=key,
            label=label,
            settings=settings or PoolSettings(),
            clock=clock or Clock(),
        )
        if on_close is not None:
            session.set_on_close(on_close)
        await session._start()
        return session

    def set_on_close(self, callback: Callable[[Session], None]) -> None:
        """Set a callback invoked once when the session closes.

        The session manager uses it to drop the session from its cache.
        """
        self._on_close = callback

    async def _start(self) -> None:
        try:
            await self.transport.open_shell(
                self.settings.term, self.settings.cols, self.settings.rows
            )
        except Exception as e:
            self._status = SessionStatus.CLOSED
            await self._close_transport()
            if isinstance(e, ConnectFailed):
                raise
            raise ConnectFailed(f"Opening shell failed: {e}", label=self.label) from e
        except BaseException:
            self._status = SessionStatus.CLOSED
            await self._close_transport()
            raise

        self._writer_task = asyncio.create_task(
            self._write_loop(), name=f"switchpool-writer-{self.label}"
        )
        self._reader_task = asyncio.create_task(
            self._read_loop(), name=f"switchpool-reader-{self.label}"
        )
        logger.info("Session %s started (vendor=%s)", self.label, self.vendor or "-")

    async def initialize(self, banner_timeout: float, init_timeout: float) -> None:
        """Drain the login banner and disable paging for the vendor."""
        self._status = SessionStatus.INITIALIZING
        banner = await self.read_until_expected(banner_timeout, *PROMPT_TERMINATORS)
        logger.debug("Drained %d chars of banner from %s", len(banner), self.label)
        await vendors.initialize(self, timeout=init_timeout)
        if self._status is SessionStatus.INITIALIZING:
            self._status = SessionStatus.READY

    async def _write_loop(self) -> None:
        """Write queued commands to the transport until cancelled."""
        try:
            while True:
                command = await self._commands.get()
                await self.transport.write((command + "\n").encode())
                logger.debug("Wrote %r to %s", command, self.label)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stream_lost = True
            logger.info("Writer for %s stopped: %s", self.label, e)

    async def _read_loop(self) -> None:
        """Continuously move transport output into the output buffer."""
        try:
            while True:
                data = await self.transport.read(self.settings.read_chunk_size)
                if not data:
                    break
                await self.output.put(self._decoder.decode(data))
            await self.output.put(self._decoder.decode(b"", final=True))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("Reader for %s stopped: %s", self.label, e)
        finally:
            if self._status is not SessionStatus.CLOSED:
                self._stream_lost = True
                logger.info("Output stream of %s ended", self.label)
            self.output.close()

    async def write_commands(self, *commands: str) -> None:
        """Queue commands for the writer, in order.

        Waits while the command queue is full.

        Raises:
            SessionClosed: the session has been closed.
            TransportLost: the stream to the device is gone.
        """
        if self._status is SessionStatus.CLOSED:
            raise SessionClosed(f"Session {self.label} is closed")
        if self._stream_lost:
            raise TransportLost(f"Stream to {self.label} was lost")
        logger.debug("Queueing %d command(s) for %s", len(commands), self.label)
        for command in commands:
            await self._commands.put(command)
        self.touch()

    async def read_until_quiet(self, timeout: float) -> str:
        """Read until the output has been silent for a while.

        Each round waits one poll interval and drains the buffer. New data
        resets the idle counter; a silent round decrements it and, unless
        it hit zero, waits ``timeout * QUIET_GRACE_FACTOR`` before polling
        again. Returns what accumulated once the counter reaches zero, the
        round cap is hit, or the stream has ended.
        """
        parts: list[str] = []
        idle = IDLE_TICKS
        for _ in range(QUIET_MAX_ROUNDS):
            await self.clock.sleep(POLL_INTERVAL)
            data = self.output.drain()
            if data:
                parts.append(data)
                idle = IDLE_TICKS
                continue
            if self.output.ended:
                break
            idle -= 1
            logger.debug("%s quiet, idle ticks left: %d", self.label, idle)
            if idle == 0:
                break
            await self.clock.sleep(timeout * QUIET_GRACE_FACTOR)
        return "".join(parts)

    async def read_until_expected(self, timeout: float, *terminators: str) -> str:
        """Read until any terminator appears in the accumulated output.

        The terminator check runs only on rounds where nothing new
        arrived. The first such round without a match earns one extra
        wait of ``timeout``; a second consecutive one gives up. The result
        does not say whether a terminator was actually seen.
        """
        output = ""
        waited = False
        for _ in range(EXPECT_MAX_ROUNDS):
            await self.clock.sleep(POLL_INTERVAL)
            data = self.output.drain()
            if data:
                output += data
                waited = False
                continue
            if any(t in output for t in terminators):
                break
            if waited or self.output.ended:
                break
            logger.debug("%s: no terminator yet, waiting %.1fs", self.label, timeout)
            await self.clock.sleep(timeout)
            waited = True
        return output

    async def execute_and_read(
        self, *commands: str, timeout: float = DEFAULT_READ_TIMEOUT
    ) -> str:
        """Send commands and return their output, cut off by silence."""
        await self.write_commands(*commands)
        return await self.read_until_quiet(timeout)

    async def execute_and_close(
        self, *commands: str, timeout: float = DEFAULT_READ_TIMEOUT
    ) -> str:
        """``execute_and_read`` then close, even if execution fails."""
        try:
            return await self.execute_and_read(*commands, timeout=timeout)
        finally:
            await self.close()

    async def check_liveness(self) -> bool:
        """Probe the shell with a bare newline and look for a prompt."""
        if self._status is SessionStatus.CLOSED or self._stream_lost:
            return False
        await self.write_commands("")
        result = await self.read_until_expected(
            self.settings.probe_timeout, *PROMPT_TERMINATORS
        )
        return any(t in result for t in PROMPT_TERMINATORS)

    async def close(self) -> None:
        """Close the transport, deregister, and stop both tasks.

        Safe to call more than once; only the first call has any effect.
        """
        if self._status is SessionStatus.CLOSED:
            return
        self._status = SessionStatus.CLOSED

        await self._close_transport()

        if self._on_close:
            try:
                self._on_close(self)
            except Exception:
                logger.exception("Error in on_close callback for session %s", self.label)

        tasks = [t for t in (self._writer_task, self._reader_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.output.close()
        logger.info("Session %s closed", self.label)

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except Exception as e:
            logger.warning("Error closing transport for %s: %s", self.label, e)

    def touch(self) -> None:
        """Record use now."""
        self._last_used = self.clock.now()

    def idle_for(self, now: float | None = None) -> float:
        """Seconds since last use."""
        return (self.clock.now() if now is None else now) - self._last_used

    @property
    def last_used(self) -> float:
        return self._last_used

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._status is not SessionStatus.CLOSED
