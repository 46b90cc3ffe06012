"""
Tests for transport selection and the asyncssh glue.

Tests cover:
- Direct TCP streams for hosts without ProxyCommand
- ProxyCommand streams for hosts with one
- Translation of a ResolvedConfig into asyncssh.connect() options
- ssh_connect() lifecycle, with asyncssh.connect mocked out
"""
from __future__ import annotations

import asyncio
import socket
import sys
from pathlib import Path
from typing import AsyncIterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sshconfig_proxy.config import ResolvedConfig, parse
from sshconfig_proxy.errors import TransportError
from sshconfig_proxy.events import EventCollector, EventEmitter
from sshconfig_proxy.platform import LocalIdentity
from sshconfig_proxy.proxy import ProxyProcess, ProxyState, launch
from sshconfig_proxy.transport import TcpStream, connect_options, open_stream, ssh_connect

posix_only = pytest.mark.skipif(
    sys.platform == "win32", reason="POSIX shell commands required",
)


def _resolve(text: str, host: str, identity: LocalIdentity) -> ResolvedConfig:
    return parse(text, identity=identity).resolve(host, identity=identity)


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def upper_server() -> AsyncIterator[int]:
    """Local TCP server that echoes one line upper-cased; yields its port."""
    async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        line = await reader.readline()
        writer.write(line.upper())
        await writer.drain()
        writer.close()
        await writer.wait_closed()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    yield port
    server.close()
    await server.wait_closed()


class TestOpenStream:
    """Tests for choosing and opening the transport."""

    @pytest.mark.asyncio
    async def test_direct_tcp(
        self, identity: LocalIdentity, upper_server: int, event_collector: EventCollector,
    ) -> None:
        """Without ProxyCommand the host is reached over TCP."""
        resolved = _resolve(f"""
Host local
    HostName 127.0.0.1
    Port {upper_server}
""", "local", identity)
        emitter = EventEmitter(collector=event_collector)

        stream = await open_stream(resolved, identity=identity, emitter=emitter)
        try:
            assert isinstance(stream, TcpStream)
            await stream.send(b"hello\n")
            assert await stream.readexactly(6) == b"HELLO\n"
            assert await stream.read() == b""
            assert stream.at_eof()
        finally:
            await stream.close()

        connect = event_collector.get_by_type("CONNECT")
        assert connect[0].data["via"] == "tcp"
        assert connect[0].data["port"] == upper_server

    @pytest.mark.asyncio
    async def test_connection_refused(
        self, identity: LocalIdentity, event_collector: EventCollector,
    ) -> None:
        port = _unused_port()
        resolved = _resolve(f"Host x\n    HostName 127.0.0.1\n    Port {port}\n", "x", identity)
        emitter = EventEmitter(collector=event_collector)

        with pytest.raises(TransportError) as exc_info:
            await open_stream(resolved, identity=identity, emitter=emitter)

        assert exc_info.value.context.host == "127.0.0.1"
        assert exc_info.value.context.port == port
        assert event_collector.get_by_type("ERROR")[0].data["error_type"] == "tcp_connect_failed"

    @pytest.mark.asyncio
    async def test_connect_timeout(self, identity: LocalIdentity) -> None:
        """ConnectTimeout bounds the TCP connect."""
        async def never_connects(*args, **kwargs):
            await asyncio.sleep(10)

        resolved = _resolve("Host slow\n    ConnectTimeout 1\n", "slow", identity)

        with patch("sshconfig_proxy.transport.asyncio.open_connection", new=never_connects):
            with pytest.raises(TransportError, match="timed out"):
                await open_stream(resolved, identity=identity, connect_timeout=0.05)

    @posix_only
    @pytest.mark.asyncio
    async def test_proxy_command(
        self, identity: LocalIdentity, event_collector: EventCollector,
    ) -> None:
        """A ProxyCommand host is reached through the command's pipes."""
        resolved = _resolve("""
Host tunnelled
    HostName internal.example.com
    ProxyCommand cat
""", "tunnelled", identity)
        emitter = EventEmitter(collector=event_collector)

        stream = await open_stream(resolved, identity=identity, emitter=emitter)
        try:
            assert isinstance(stream, ProxyProcess)
            await stream.send(b"SSH-2.0-loop\r\n")
            assert await stream.readexactly(14) == b"SSH-2.0-loop\r\n"
        finally:
            await stream.close()

        connect = event_collector.get_by_type("CONNECT")[0]
        assert connect.data["via"] == "proxy_command"
        assert connect.data["command"] == "cat"


class TestConnectOptions:
    """Tests for ResolvedConfig -> asyncssh.connect() keyword arguments."""

    def test_basic_options(self, identity: LocalIdentity) -> None:
        resolved = _resolve("""
Host server
    HostName server.example.com
    Port 2222
    User admin
""", "server", identity)

        assert connect_options(resolved) == {
            "host": "server.example.com",
            "port": 2222,
            "username": "admin",
            "config": None,
        }

    def test_identity_files(self, identity: LocalIdentity, home: Path) -> None:
        """Only identity files that exist are passed as client keys."""
        key = home / ".ssh" / "id_present"
        key.write_text("not really a key")
        resolved = _resolve("""
Host server
    IdentityFile ~/.ssh/id_present
    IdentityFile ~/.ssh/id_missing
""", "server", identity)

        assert connect_options(resolved)["client_keys"] == [str(key)]

    def test_identities_only_without_keys(self, identity: LocalIdentity) -> None:
        resolved = _resolve("""
Host server
    IdentitiesOnly yes
    IdentityFile ~/.ssh/id_missing
""", "server", identity)

        assert connect_options(resolved)["client_keys"] == []

    def test_host_key_options(self, identity: LocalIdentity, home: Path) -> None:
        config = parse("""
Host lax
    StrictHostKeyChecking no
    UserKnownHostsFile ~/.ssh/kh_ignored

Host strict
    UserKnownHostsFile ~/.ssh/kh1 ~/.ssh/kh2
""", identity=identity)

        lax = connect_options(config.resolve("lax", identity=identity))
        assert lax["known_hosts"] is None

        strict = connect_options(config.resolve("strict", identity=identity))
        assert strict["known_hosts"] == [
            str(home / ".ssh" / "kh1"), str(home / ".ssh" / "kh2"),
        ]

    def test_agent_and_timeout(self, identity: LocalIdentity) -> None:
        resolved = _resolve("""
Host server
    ForwardAgent yes
    ConnectTimeout 15
""", "server", identity)

        options = connect_options(resolved)
        assert options["agent_forwarding"] is True
        assert options["connect_timeout"] == 15

    def test_proxy_jump_becomes_tunnel(self, identity: LocalIdentity) -> None:
        resolved = _resolve("Host inner\n    ProxyJump bastion\n", "inner", identity)

        assert connect_options(resolved)["tunnel"] == "bastion"

    def test_sock_takes_precedence_over_proxy_jump(self, identity: LocalIdentity) -> None:
        resolved = _resolve("Host inner\n    ProxyJump bastion\n", "inner", identity)
        left, right = socket.socketpair()
        try:
            options = connect_options(resolved, sock=left)
        finally:
            left.close()
            right.close()

        assert options["sock"] is left
        assert "tunnel" not in options


def _mock_connection() -> MagicMock:
    conn = MagicMock()
    conn.wait_closed = AsyncMock()
    return conn


class TestSSHConnect:
    """Tests for ssh_connect() with asyncssh.connect mocked."""

    @pytest.mark.asyncio
    async def test_direct_connect(self, identity: LocalIdentity) -> None:
        resolved = _resolve("""
Host server
    HostName server.example.com
    User admin
""", "server", identity)
        conn = _mock_connection()

        with patch(
            "sshconfig_proxy.transport.asyncssh.connect", new=AsyncMock(return_value=conn),
        ) as mock_connect:
            async with ssh_connect(resolved, identity=identity, known_hosts=None) as active:
                assert active is conn

        kwargs = mock_connect.call_args.kwargs
        assert kwargs["host"] == "server.example.com"
        assert kwargs["username"] == "admin"
        assert kwargs["known_hosts"] is None
        assert "sock" not in kwargs
        conn.close.assert_called_once()
        conn.wait_closed.assert_awaited_once()

    @posix_only
    @pytest.mark.asyncio
    async def test_connect_through_proxy_command(
        self, identity: LocalIdentity, event_collector: EventCollector,
    ) -> None:
        """The ProxyCommand socket is handed to asyncssh and torn down afterwards."""
        resolved = _resolve("""
Host tunnelled
    HostName internal.example.com
    ProxyCommand cat
""", "tunnelled", identity)
        emitter = EventEmitter(collector=event_collector)
        conn = _mock_connection()

        with patch(
            "sshconfig_proxy.transport.asyncssh.connect", new=AsyncMock(return_value=conn),
        ) as mock_connect:
            async with ssh_connect(resolved, identity=identity, emitter=emitter):
                sock = mock_connect.call_args.kwargs["sock"]
                assert isinstance(sock, socket.socket)
                assert "tunnel" not in mock_connect.call_args.kwargs

        assert sock.fileno() == -1
        assert [e.event_type for e in event_collector.events] == ["SPAWN", "CONNECT", "EXIT"]

    @posix_only
    @pytest.mark.asyncio
    async def test_proxy_closed_when_connect_fails(
        self, identity: LocalIdentity, event_collector: EventCollector,
    ) -> None:
        resolved = _resolve("Host t\n    ProxyCommand cat\n", "t", identity)
        emitter = EventEmitter(collector=event_collector)
        captured: list[ProxyProcess] = []


        async def tracking_launch(command: str, **kwargs) -> ProxyProcess:
            proxy = await launch(command, **kwargs)
            captured.append(proxy)
            return proxy

        with patch("sshconfig_proxy.transport.launch", new=tracking_launch), patch(
            "sshconfig_proxy.transport.asyncssh.connect",
            new=AsyncMock(side_effect=OSError("handshake failed")),
        ):
            with pytest.raises(OSError, match="handshake failed"):
                async with ssh_connect(resolved, identity=identity, emitter=emitter):
                    pytest.fail("connection should not open")

        assert captured[0].state is ProxyState.REAPED
        assert len(event_collector.get_by_type("EXIT")) == 1
