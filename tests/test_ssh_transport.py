"""Tests for switchpool.transport.ssh (SSHTransport over a mocked paramiko)."""

from __future__ import annotations

import asyncio
import socket
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from switchpool.config import PoolSettings, create_config
from switchpool.errors import ConnectFailed, TransportLost
from switchpool.transport.base import Transport
from switchpool.transport.ssh import SSHTransport, _restrict_ciphers


@pytest.fixture
def ssh_config():
    return create_config("netops", "s3cret", "10.3.1.60", "22", vendor="huawei")


# ---------------------------------------------------------------------------
# dial
# ---------------------------------------------------------------------------


class TestDial:
    async def test_connects_and_authenticates(self, ssh_config) -> None:
        with (
            patch("switchpool.transport.ssh.socket.create_connection") as mock_connect,
            patch("switchpool.transport.ssh.paramiko.Transport") as mock_transport_cls,
        ):
            transport = await SSHTransport.dial(ssh_config, PoolSettings())

        mock_connect.assert_called_once_with(("10.3.1.60", 22), timeout=20.0)
        mock_transport_cls.assert_called_once_with(mock_connect.return_value)
        paramiko_transport = mock_transport_cls.return_value
        paramiko_transport.start_client.assert_called_once_with(timeout=20.0)
        paramiko_transport.auth_password.assert_called_once_with("netops", "s3cret")
        assert isinstance(transport, SSHTransport)
        assert isinstance(transport, Transport)

    async def test_auth_failure(self, ssh_config) -> None:
        with (
            patch("switchpool.transport.ssh.socket.create_connection"),
            patch("switchpool.transport.ssh.paramiko.Transport") as mock_transport_cls,
        ):
            paramiko_transport = mock_transport_cls.return_value
            paramiko_transport.auth_password.side_effect = paramiko.AuthenticationException(
                "bad password"
            )
            with pytest.raises(ConnectFailed, match="Authentication failed") as excinfo:
                await SSHTransport.dial(ssh_config, PoolSettings())

        assert excinfo.value.label == "netops@10.3.1.60:22"
        paramiko_transport.close.assert_called_once()

    async def test_socket_timeout(self, ssh_config) -> None:
        with patch(
            "switchpool.transport.ssh.socket.create_connection",
            side_effect=socket.timeout("timed out"),
        ):
            with pytest.raises(ConnectFailed, match="Connection failed"):
                await SSHTransport.dial(ssh_config, PoolSettings(dial_timeout=1.0))

    async def test_negotiation_failure(self, ssh_config) -> None:
        with (
            patch("switchpool.transport.ssh.socket.create_connection"),
            patch("switchpool.transport.ssh.paramiko.Transport") as mock_transport_cls,
        ):
            paramiko_transport = mock_transport_cls.return_value
            paramiko_transport.start_client.side_effect = paramiko.SSHException(
                "Incompatible ssh server (no acceptable ciphers)"
            )
            with pytest.raises(ConnectFailed, match="no acceptable ciphers"):
                await SSHTransport.dial(ssh_config, PoolSettings())
        paramiko_transport.close.assert_called_once()

    async def test_cancelled_dial_closes_late_connection(self, ssh_config) -> None:
        release = threading.Event()

        def _slow_connect(*args, **kwargs):
            release.wait(timeout=5.0)
            return MagicMock()

        with (
            patch(
                "switchpool.transport.ssh.socket.create_connection",
                side_effect=_slow_connect,
            ),
            patch("switchpool.transport.ssh.paramiko.Transport") as mock_transport_cls,
        ):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(
                    SSHTransport.dial(ssh_config, PoolSettings()), timeout=0.05
                )
            release.set()
            paramiko_transport = mock_transport_cls.return_value
            for _ in range(200):
                if paramiko_transport.close.called:
                    break
                await asyncio.sleep(0.01)

        paramiko_transport.auth_password.assert_called_once()
        paramiko_transport.close.assert_called_once()


# ---------------------------------------------------------------------------
# _restrict_ciphers
# ---------------------------------------------------------------------------


class TestRestrictCiphers:
    def test_keeps_configured_order_of_supported(self) -> None:
        options = SimpleNamespace(
            ciphers=("aes256-ctr", "chacha20-poly1305@openssh.com", "aes128-ctr")
        )
        transport = MagicMock()
        transport.get_security_options.return_value = options
        _restrict_ciphers(transport, PoolSettings().ciphers)
        assert options.ciphers == ("aes128-ctr", "aes256-ctr")

    def test_no_overlap_keeps_defaults(self) -> None:
        options = SimpleNamespace(ciphers=("chacha20-poly1305@openssh.com",))
        transport = MagicMock()
        transport.get_security_options.return_value = options
        _restrict_ciphers(transport, ["des-cbc"])
        assert options.ciphers == ("chacha20-poly1305@openssh.com",)


# ---------------------------------------------------------------------------
# Shell I/O
# ---------------------------------------------------------------------------


class TestShell:
    async def test_open_shell_requests_pty(self) -> None:
        paramiko_transport = MagicMock()
        transport = SSHTransport(paramiko_transport, label="netops@10.3.1.60:22")
        await transport.open_shell("vt100", 80, 40)
        channel = paramiko_transport.open_session.return_value
        channel.get_pty.assert_called_once_with(term="vt100", width=80, height=40)
        channel.invoke_shell.assert_called_once()
        await transport.close()

    async def test_open_shell_failure(self) -> None:
        paramiko_transport = MagicMock()
        paramiko_transport.open_session.side_effect = paramiko.SSHException(
            "administratively prohibited"
        )
        transport = SSHTransport(paramiko_transport, label="sw1")
        with pytest.raises(ConnectFailed, match="administratively prohibited"):
            await transport.open_shell("vt100", 80, 40)
        await transport.close()

    async def test_write_and_read(self) -> None:
        paramiko_transport = MagicMock()
        channel = paramiko_transport.open_session.return_value
        channel.recv.return_value = b"<HUAWEI>"
        transport = SSHTransport(paramiko_transport, label="sw1")
        await transport.open_shell("vt100", 80, 40)

        await transport.write(b"display version\n")
        channel.sendall.assert_called_once_with(b"display version\n")
        assert await transport.read(1024) == b"<HUAWEI>"
        channel.recv.assert_called_once_with(1024)
        await transport.close()

    async def test_io_before_open(self) -> None:
        transport = SSHTransport(MagicMock(), label="sw1")
        assert await transport.read(1024) == b""
        with pytest.raises(TransportLost):
            await transport.write(b"x\n")
        await transport.close()


# ---------------------------------------------------------------------------
# close
# ---------------------------------------------------------------------------


class TestClose:
    async def test_close_releases_channel_and_transport(self) -> None:
        paramiko_transport = MagicMock()
        transport = SSHTransport(paramiko_transport, label="sw1")
        await transport.open_shell("vt100", 80, 40)

        await transport.close()
        paramiko_transport.open_session.return_value.close.assert_called_once()
        paramiko_transport.close.assert_called_once()

    async def test_close_idempotent(self) -> None:
        paramiko_transport = MagicMock()
        transport = SSHTransport(paramiko_transport, label="sw1")
        await transport.close()
        await transport.close()
        paramiko_transport.close.assert_called_once()

    async def test_io_after_close(self) -> None:
        paramiko_transport = MagicMock()
        transport = SSHTransport(paramiko_transport, label="sw1")
        await transport.open_shell("vt100", 80, 40)
        await transport.close()
        assert await transport.read(1024) == b""
        with pytest.raises(TransportLost):
            await transport.write(b"display version\n")
