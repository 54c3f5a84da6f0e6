"""Transport protocol: the duplex byte stream a session runs on."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from switchpool.config import PoolSettings, SessionConfig


@runtime_checkable
class Transport(Protocol):
    """An authenticated connection able to host one interactive shell."""

    async def open_shell(self, term: str, cols: int, rows: int) -> None:
        """Request a pseudo-terminal and start the remote login shell."""
        ...

    async def write(self, data: bytes) -> None:
        """Write all of ``data`` to the shell's input stream."""
        ...

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes of shell output.

        Blocks until data is available. Returns ``b""`` once the stream
        has ended.
        """
        ...

    async def close(self) -> None:
        """Release the connection. Unblocks a pending ``read()``."""
        ...


Dialer = Callable[["SessionConfig", "PoolSettings"], Awaitable[Transport]]
"""Opens an authenticated ``Transport`` to the device a config names."""
