"""Exception types raised by switchpool."""

from __future__ import annotations


class SwitchPoolError(Exception):
    """Base exception for all switchpool errors."""


class InvalidConfig(SwitchPoolError, ValueError):
    """A session config is missing a field or has a malformed address."""


class ConnectFailed(SwitchPoolError):
    """Dialing, authentication, pty setup or initialization failed."""

    def __init__(self, message: str, label: str = "") -> None:
        self.label = label
        target = f" ({label})" if label else ""
        super().__init__(f"{message}{target}")


class TransportLost(SwitchPoolError):
    """The byte stream under an open session failed mid-session."""


class SessionClosed(TransportLost):
    """An operation was attempted on a session that is already closed."""
