"""Transports: the byte streams sessions run on."""

from switchpool.transport.base import Dialer, Transport
from switchpool.transport.ssh import SSHTransport

__all__ = [
    "Dialer",
    "Transport",
    "SSHTransport",
]
