"""
Opening the transport for a resolved host.

A host with a ProxyCommand is reached through the command's stdin/stdout;
any other host through a direct TCP connection. Both come back with the
same read/write surface, so an SSH engine can use either.

Provides:
- DuplexStream: The read/write surface shared by both transports
- TcpStream: DuplexStream over asyncio TCP streams
- open_stream: ProxyProcess or TcpStream for a ResolvedConfig
- connect_options: Keyword arguments for asyncssh.connect()
- ssh_connect: asyncssh client connection over the right transport
"""
from __future__ import annotations

import asyncio
import logging
import socket
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol

import asyncssh

from sshconfig_proxy.config import ResolvedConfig, StrictHostKeyChecking
from sshconfig_proxy.errors import ErrorContext, TransportError
from sshconfig_proxy.events import EventEmitter, EventType
from sshconfig_proxy.platform import LocalIdentity
from sshconfig_proxy.proxy import ProxyProcess, command_for, launch

log = logging.getLogger("sshconfig_proxy.transport")


class DuplexStream(Protocol):
    """Minimal byte-stream contract of both transports."""

    async def read(self, n: int = -1) -> bytes: ...

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def write_eof(self) -> None: ...

    async def close(self) -> Any: ...


class TcpStream:
    """A direct TCP connection with the same surface as ProxyProcess."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer

    @property
    def peername(self) -> Any:
        return self._writer.get_extra_info("peername")

    async def read(self, n: int = -1) -> bytes:
        return await self._reader.read(n)

    async def readexactly(self, n: int) -> bytes:
        return await self._reader.readexactly(n)

    def at_eof(self) -> bool:
        return self._reader.at_eof()

    def write(self, data: bytes) -> None:
        self._writer.write(data)

    async def drain(self) -> None:
        await self._writer.drain()

    async def send(self, data: bytes) -> None:
        self.write(data)
        await self.drain()

    def write_eof(self) -> None:
        if self._writer.can_write_eof():
            self._writer.write_eof()

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (OSError, ConnectionError) as e:
            log.debug("Error closing TCP stream: %s", e)

    async def __aenter__(self) -> "TcpStream":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def open_stream(
    resolved: ResolvedConfig,
    *,
    identity: LocalIdentity | None = None,
    emitter: EventEmitter | None = None,
    connect_timeout: float | None = None,
) -> ProxyProcess | TcpStream:
    """
    Open the byte stream an SSH client should speak over.

    Args:
        resolved: Resolved configuration of the target host
        identity: Local identity for ProxyCommand tokens
        emitter: Optional structured event sink
        connect_timeout: Overrides ConnectTimeout for direct TCP

    Raises:
        SpawnError: The ProxyCommand could not be started
        TransportError: The direct TCP connection failed
    """
    command = command_for(resolved, identity)
    if command is not None:
        proxy = await launch(command, emitter=emitter)
        if emitter is not None:
            emitter.emit(
                EventType.CONNECT,
                host=resolved.host,
                host_name=resolved.host_name,
                port=resolved.port,
                via="proxy_command",
                command=command,
            )
        return proxy

    timeout = connect_timeout if connect_timeout is not None else resolved.connect_timeout
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(resolved.host_name, resolved.port),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError) as e:
        reason = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
        if emitter is not None:
            emitter.emit(
                EventType.ERROR,
                error_type="tcp_connect_failed",
                host=resolved.host_name,
                port=resolved.port,
                message=reason,
            )
        raise TransportError(
            f"Cannot connect to {resolved.host_name}:{resolved.port}: {reason}",
            context=ErrorContext(
                host=resolved.host_name, port=resolved.port, original_error=reason,
            ),
        ) from e

    log.info("Connected to %s:%d", resolved.host_name, resolved.port)
    if emitter is not None:
        emitter.emit(
            EventType.CONNECT,
            host=resolved.host,
            host_name=resolved.host_name,
            port=resolved.port,
            via="tcp",
        )
    return TcpStream(reader, writer)


def connect_options(
    resolved: ResolvedConfig,
    *,
    sock: socket.socket | None = None,
) -> dict[str, Any]:
    """
    Translate a resolved host into asyncssh.connect() keyword arguments.

    asyncssh's own config loading is switched off since the config has
    already been resolved here.

    Args:
        resolved: Resolved configuration of the target host
        sock: Socket from ProxyProcess.open_socket(); takes precedence over
              ProxyJump
    """
    options: dict[str, Any] = {
        "host": resolved.host_name,
        "port": resolved.port,
        "username": resolved.user,
        "config": None,
    }

    if resolved.connect_timeout is not None:
        options["connect_timeout"] = resolved.connect_timeout
    if resolved.forward_agent:
        options["agent_forwarding"] = True

    # Missing IdentityFile entries are ignored, as OpenSSH does
    client_keys = [str(path) for path in resolved.identity_files if path.exists()]
    if client_keys:
        options["client_keys"] = client_keys
    elif resolved.identities_only:
        options["client_keys"] = []

    if resolved.strict_host_key_checking is StrictHostKeyChecking.NO:
        options["known_hosts"] = None
    elif resolved.user_known_hosts_files:
        options["known_hosts"] = [str(path) for path in resolved.user_known_hosts_files]

    if sock is not None:
        options["sock"] = sock
    elif resolved.proxy_jump is not None:
        options["tunnel"] = resolved.proxy_jump

    return options


@asynccontextmanager
async def ssh_connect(
    resolved: ResolvedConfig,
    *,
    identity: LocalIdentity | None = None,
    emitter: EventEmitter | None = None,
    **kwargs: Any,
) -> AsyncIterator[asyncssh.SSHClientConnection]:
    """
    Open an asyncssh client connection to a resolved host.

    Starts the ProxyCommand when there is one and stops it after the SSH
    connection has closed, on every exit path.

    Usage:
        resolved = ConfigParser().load_default().resolve("myserver")
        async with ssh_connect(resolved, known_hosts=None) as conn:
            result = await conn.run("uname -a")

    Args:
        resolved: Resolved configuration of the target host
        identity: Local identity for ProxyCommand tokens
        emitter: Optional structured event sink
        **kwargs: Extra asyncssh.connect() arguments, overriding resolved ones
    """
    command = command_for(resolved, identity)
    proxy: ProxyProcess | None = None
    try:
        if command is not None:
            proxy = await launch(command, emitter=emitter)

        options = connect_options(
            resolved, sock=proxy.open_socket() if proxy is not None else None,
        )
        options.update(kwargs)

        if emitter is not None:
            emitter.emit(
                EventType.CONNECT,
                host=resolved.host,
                host_name=resolved.host_name,
                port=resolved.port,
                via="proxy_command" if proxy is not None else "ssh",
                command=command,
            )

        conn = await asyncssh.connect(**options)
        try:
            yield conn
        finally:
            conn.close()
            await conn.wait_closed()
    finally:
        if proxy is not None:
            await proxy.close()
