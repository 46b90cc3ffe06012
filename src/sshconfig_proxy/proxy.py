"""
ProxyCommand support for SSH connections.

Provides:
- ProxyCommandSpec: The raw ProxyCommand template from a resolved config
- build_command: %-token substitution into a template
- launch: Runs the command and returns a ProxyProcess duplex stream
- ProxyProcess: Owns the child; read()/write() go to its stdout/stdin

OpenSSH's ProxyCommand runs a shell command and uses its stdin/stdout as the
SSH transport. This enables connecting through HTTP CONNECT proxies, SOCKS
proxies, or custom tunnel scripts.

Examples:
    # SOCKS proxy
    ProxyCommand nc -X 5 -x socks-proxy:1080 %h %p

    # HTTP CONNECT proxy
    ProxyCommand corkscrew http-proxy 8080 %h %p

    # Custom script
    ProxyCommand /usr/local/bin/my-tunnel %h %p

Process lifecycle:
    SPAWNED -> RUNNING -> CLOSED -> REAPED

A ProxyProcess that is garbage collected while its child still runs kills
the child; asyncio's child watcher then collects the exit status.
"""
from __future__ import annotations

import asyncio
import logging
import socket
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator

from sshconfig_proxy.errors import ErrorContext, ProxyIOError, SpawnError, UnsafeSubstitution
from sshconfig_proxy.events import EventEmitter, EventType
from sshconfig_proxy.platform import LocalIdentity
from sshconfig_proxy.tokens import expand_tokens, used_tokens
from sshconfig_proxy.validation import validate_hostname, validate_port, validate_username

if TYPE_CHECKING:
    from sshconfig_proxy.config import ResolvedConfig

log = logging.getLogger("sshconfig_proxy.proxy")

# How long a fresh command may run before an early failing exit stops
# counting as a spawn failure
STARTUP_GRACE = 0.05
# How long close() waits after SIGTERM before SIGKILL
TERMINATE_TIMEOUT = 2.0

_BRIDGE_CHUNK = 65536


@dataclass(frozen=True)
class ProxyCommandSpec:
    """A ProxyCommand template with its %-tokens still unexpanded."""
    template: str

    def __post_init__(self) -> None:
        assert isinstance(self.template, str), (
            f"template must be a string, got {type(self.template).__name__}"
        )

    @classmethod
    def from_resolved(cls, resolved: "ResolvedConfig") -> "ProxyCommandSpec | None":
        """Return the template of a resolved host, or None if it has no ProxyCommand."""
        if resolved.proxy_command is None:
            return None
        return cls(resolved.proxy_command)


def build_command(
    spec: ProxyCommandSpec | str,
    host: str,
    port: int,
    remote_user: str | None = None,
    *,
    original_host: str | None = None,
    identity: LocalIdentity | None = None,
) -> str:
    """
    Substitute connection values into a ProxyCommand template.

    Tokens:
    - %h: target hostname
    - %p: port
    - %r: remote username (local username when not given)
    - %n: original hostname as typed by the user (defaults to host)
    - %u: local username
    - %l / %L: local hostname / local hostname without domain
    - %d: local home directory
    - %%: literal %

    Any other %x is left as it is. Host and user values are checked only
    when their token appears in the template.

    Raises:
        UnsafeSubstitution: a substituted value (or the port) is unsafe to
            put in a shell command
    """
    template = spec.template if isinstance(spec, ProxyCommandSpec) else spec
    used = used_tokens(template)
    if original_host is None:
        original_host = host

    needs_identity = bool(used & set("uLld")) or ("r" in used and remote_user is None)
    if identity is None and needs_identity:
        identity = LocalIdentity.current()
    if remote_user is None and identity is not None:
        remote_user = identity.local_user

    try:
        port = validate_port(port)
        if "h" in used:
            validate_hostname(host)
        if "n" in used:
            validate_hostname(original_host)
        if "r" in used:
            validate_username(remote_user)
    except ValueError as e:
        raise UnsafeSubstitution(
            f"Cannot substitute into ProxyCommand: {e}",
            command=template,
            context=ErrorContext(host=host if isinstance(host, str) else None),
        ) from e

    tokens = {"h": host, "p": str(port), "n": original_host}
    if remote_user is not None:
        tokens["r"] = remote_user
    if identity is not None:
        tokens.update({
            "u": identity.local_user,
            "l": identity.local_hostname,
            "L": identity.short_hostname,
            "d": str(identity.home),
        })

    return expand_tokens(template, tokens)


def command_for(
    resolved: "ResolvedConfig",
    identity: LocalIdentity | None = None,
) -> str | None:
    """Build the ProxyCommand line for a resolved host, or None if it has none."""
    spec = ProxyCommandSpec.from_resolved(resolved)
    if spec is None:
        return None
    return build_command(
        spec,
        resolved.host_name,
        resolved.port,
        resolved.user,
        original_host=resolved.host,
        identity=identity,
    )


class ProxyState(str, Enum):
    """Lifecycle of a ProxyProcess."""
    SPAWNED = "spawned"
    RUNNING = "running"  # bidirectional I/O permitted
    CLOSED = "closed"  # a pipe closed or close() was called
    REAPED = "reaped"  # exit status collected


class ProxyProcess:
    """
    A running ProxyCommand used as a byte stream.

    read() returns what the command writes to stdout; write()/drain()
    feed its stdin. End of stream on read means the command closed its
    stdout. Alternatively open_socket() bridges the pipes to a socket pair
    for clients that need a real socket, such as asyncssh.

    Usage:
        async with await launch("nc proxy.example.com 22") as proxy:
            proxy.write(b"SSH-2.0-client\\r\\n")
            await proxy.drain()
            banner = await proxy.read(256)

        # or, for asyncssh
        async with await launch(command) as proxy:
            conn = await asyncssh.connect(host, sock=proxy.open_socket())
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        *,
        emitter: EventEmitter | None = None,
        terminate_timeout: float = TERMINATE_TIMEOUT,
    ) -> None:
        assert process.stdin is not None, (
            "Process stdin is None: subprocess was not created with stdin=PIPE"
        )
        assert process.stdout is not None, (
            "Process stdout is None: subprocess was not created with stdout=PIPE"
        )
        self._process = process
        self._command = command
        self._emitter = emitter
        self._terminate_timeout = terminate_timeout
        self._state = ProxyState.SPAWNED
        self._close_task: asyncio.Future[int] | None = None
        self._local_sock: socket.socket | None = None
        self._remote_sock: socket.socket | None = None
        self._bridge_task: asyncio.Task[None] | None = None

    @property
    def command(self) -> str:
        """Return the command being run."""
        return self._command

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        """Exit status once the command has exited, else None."""
        return self._process.returncode

    @property
    def state(self) -> ProxyState:
        return self._state

    def _mark_running(self) -> None:
        assert self._state is ProxyState.SPAWNED, f"Cannot start from state {self._state}"
        self._state = ProxyState.RUNNING

    def _mark_closed(self) -> None:
        if self._state in (ProxyState.SPAWNED, ProxyState.RUNNING):
            self._state = ProxyState.CLOSED

    def _error_context(self) -> ErrorContext:
        return ErrorContext(command=self._command, extra={"pid": self._process.pid})

    def _check_direct_io(self) -> None:
        if self._bridge_task is not None:
            raise RuntimeError("ProxyCommand pipes are owned by the socket bridge")
        if self._close_task is not None:
            raise ProxyIOError("ProxyCommand stream is closed", context=self._error_context())

    # -- read half ---------------------------------------------------------

    async def read(self, n: int = -1) -> bytes:
        """
        Read up to ``n`` bytes from the command's stdout.

        Returns b"" once the command has closed its stdout.
        """
        self._check_direct_io()
        assert self._process.stdout is not None
        try:
            data = await self._process.stdout.read(n)
        except OSError as e:
            self._mark_closed()
            raise ProxyIOError(
                f"Reading from ProxyCommand failed: {e}", context=self._error_context(),
            ) from e
        if not data and n != 0:
            log.debug("ProxyCommand (pid %d) closed its stdout", self.pid)
            self._mark_closed()
        return data

    async def readexactly(self, n: int) -> bytes:
        """
        Read exactly ``n`` bytes.

        Raises:
            asyncio.IncompleteReadError: stdout closed before n bytes arrived
        """
        self._check_direct_io()
        assert self._process.stdout is not None
        try:
            return await self._process.stdout.readexactly(n)
        except asyncio.IncompleteReadError:
            self._mark_closed()
            raise
        except OSError as e:
            self._mark_closed()
            raise ProxyIOError(
                f"Reading from ProxyCommand failed: {e}", context=self._error_context(),
            ) from e

    def at_eof(self) -> bool:
        """True once stdout is closed and its buffer drained."""
        assert self._process.stdout is not None
        return self._process.stdout.at_eof()

    # -- write half --------------------------------------------------------

    def write(self, data: bytes) -> None:
        """Buffer ``data`` for the command's stdin; follow with drain()."""
        self._check_direct_io()
        if self._state is not ProxyState.RUNNING:
            raise ProxyIOError("ProxyCommand stream is closed", context=self._error_context())
        assert self._process.stdin is not None
        try:
            self._process.stdin.write(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            self._mark_closed()
            raise ProxyIOError(
                "ProxyCommand closed its stdin", context=self._error_context(),
            ) from e

    async def drain(self) -> None:
        """Wait until buffered stdin data has been handed to the command."""
        assert self._process.stdin is not None
        try:
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self._mark_closed()
            raise ProxyIOError(
                "ProxyCommand closed its stdin", context=self._error_context(),
            ) from e

    async def send(self, data: bytes) -> None:
        """write() followed by drain()."""
        self.write(data)
        await self.drain()

    def write_eof(self) -> None:
        """Close the command's stdin; its stdout stays readable."""
        self._check_direct_io()
        assert self._process.stdin is not None
        if self._process.stdin.can_write_eof():
            self._process.stdin.write_eof()

    # -- socket bridge -----------------------------------------------------

    def open_socket(self) -> socket.socket:
        """
        Bridge the command's stdin/stdout to a socket pair.

        Must be called from a running event loop. After this the pipes
        belong to the bridge and read()/write() are refused.

        Returns:
            Socket connected to the ProxyCommand's stdin/stdout
        """
        if self._state is not ProxyState.RUNNING or self._close_task is not None:
            raise ProxyIOError("ProxyCommand stream is closed", context=self._error_context())
        if self._bridge_task is not None:
            raise RuntimeError("ProxyCommand socket already opened")

        # On Unix: AF_UNIX.  On Windows: socketpair() defaults to AF_INET.
        if hasattr(socket, "AF_UNIX"):
            self._local_sock, self._remote_sock = socket.socketpair(
                socket.AF_UNIX, socket.SOCK_STREAM
            )
        else:
            self._local_sock, self._remote_sock = socket.socketpair()
        self._local_sock.setblocking(False)
        self._remote_sock.setblocking(False)

        self._bridge_task = asyncio.get_running_loop().create_task(self._bridge())
        return self._remote_sock

    async def _bridge(self) -> None:
        """Forward data between the socket pair and the command's pipes."""
        assert self._local_sock is not None
        assert self._process.stdin is not None and self._process.stdout is not None
        loop = asyncio.get_running_loop()
        sock = self._local_sock
        stdin = self._process.stdin
        stdout = self._process.stdout

        async def socket_to_stdin() -> None:
            try:
                while True:
                    data = await loop.sock_recv(sock, _BRIDGE_CHUNK)
                    if not data:
                        break
                    stdin.write(data)
                    await stdin.drain()
            except (OSError, ConnectionError) as e:
                log.debug("ProxyCommand bridge stdin side ended: %s", e)
            if stdin.can_write_eof():
                stdin.write_eof()

        async def stdout_to_socket() -> None:
            try:
                while True:
                    data = await stdout.read(_BRIDGE_CHUNK)
                    if not data:
                        break
                    await loop.sock_sendall(sock, data)
            except (OSError, ConnectionError) as e:
                log.debug("ProxyCommand bridge stdout side ended: %s", e)
            self._mark_closed()
            try:
                sock.shutdown(socket.SHUT_WR)
            except OSError as e:
                log.debug("Error shutting down bridge socket: %s", e)

        await asyncio.gather(socket_to_stdin(), stdout_to_socket())

    def _cleanup_sockets(self) -> None:
        for sock in (self._local_sock, self._remote_sock):
            if sock is None:
                continue
            try:
                sock.close()
            except OSError as e:
                log.debug("Error closing bridge socket: %s", e)
        self._local_sock = None
        self._remote_sock = None

    # -- lifecycle ---------------------------------------------------------

    async def wait(self) -> int:
        """Wait for the command to exit by itself and collect its status."""
        returncode = await self._process.wait()
        if self._state is not ProxyState.REAPED:
            self._mark_closed()
            self._close_stdin()
            self._reaped(returncode, "exited")
        return returncode

    async def close(self) -> int:
        """
        Stop the command and collect its exit status.

        Closes stdin, sends SIGTERM, and SIGKILL if the command is still
        running after the terminate timeout. Safe to call more than once
        and from several tasks.

        Returns:
            The command's exit status
        """
        if self._close_task is None:
            self._close_task = asyncio.ensure_future(self._shutdown())
        return await asyncio.shield(self._close_task)

    async def _shutdown(self) -> int:
        self._mark_closed()

        if self._bridge_task is not None:
            self._bridge_task.cancel()
            try:
                await self._bridge_task
            except asyncio.CancelledError:
                pass
        self._cleanup_sockets()

        if self._state is ProxyState.REAPED:
            assert self._process.returncode is not None
            return self._process.returncode

        self._close_stdin()
        reason = "exited"
        if self._process.returncode is None:
            try:
                self._process.terminate()
                reason = "terminated"
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=self._terminate_timeout)
                except asyncio.TimeoutError:
                    log.warning(
                        "ProxyCommand (pid %d) ignored SIGTERM for %.1fs, killing it",
                        self.pid, self._terminate_timeout,
                    )
                    self._process.kill()
                    reason = "killed"
            except ProcessLookupError:
                reason = "exited"
        returncode = await self._process.wait()
        self._reaped(returncode, reason)
        return returncode

    def _close_stdin(self) -> None:
        assert self._process.stdin is not None
        try:
            self._process.stdin.close()
        except OSError as e:
            log.debug("Error closing ProxyCommand stdin: %s", e)

    def _reaped(self, returncode: int, reason: str) -> None:
        self._state = ProxyState.REAPED
        if reason == "exited" and returncode != 0:
            log.warning(
                "ProxyCommand (pid %d) exited with status %d: %s",
                self.pid, returncode, self._command,
            )
        else:
            log.info(
                "ProxyCommand (pid %d) %s with status %d", self.pid, reason, returncode,
            )
        if self._emitter is not None:
            self._emitter.emit(
                EventType.EXIT,
                command=self._command,
                pid=self.pid,
                exit_code=returncode,
                reason=reason,
            )

    def __del__(self) -> None:
        process = getattr(self, "_process", None)
        if process is None or process.returncode is not None:
            return
        log.warning("ProxyCommand (pid %d) dropped while running, killing it", process.pid)
        try:
            process.kill()
        except (ProcessLookupError, RuntimeError, OSError) as e:
            log.debug("Error killing dropped ProxyCommand: %s", e)

    async def __aenter__(self) -> "ProxyProcess":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def launch(
    command: str,
    *,
    emitter: EventEmitter | None = None,
    startup_grace: float = STARTUP_GRACE,
    terminate_timeout: float = TERMINATE_TIMEOUT,
) -> ProxyProcess:
    """
    Start a ProxyCommand through the platform shell.

    stdin and stdout are pipes; stderr is inherited so the command's
    diagnostics reach the operator.

    Args:
        command: Shell command line, tokens already substituted
        emitter: Optional structured event sink
        startup_grace: Seconds to watch for an immediate failing exit
        terminate_timeout: Seconds close() waits after SIGTERM

    Raises:
        SpawnError: The command is empty, the shell could not be started,
                    or the command failed within the startup grace period
    """
    if not command or not command.strip():
        raise SpawnError("Empty ProxyCommand", command=command)

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=None,
        )
    except OSError as e:
        if emitter is not None:
            emitter.emit(
                EventType.ERROR,
                error_type="proxy_command_spawn_failed",
                command=command,
                message=str(e),
            )
        raise SpawnError(
            f"Failed to start ProxyCommand: {e}",
            command=command,
            context=ErrorContext(original_error=str(e)),
        ) from e

    proxy = ProxyProcess(
        process, command, emitter=emitter, terminate_timeout=terminate_timeout,
    )
    log.info("Started ProxyCommand (pid %d): %s", process.pid, command)
    if emitter is not None:
        emitter.emit(EventType.SPAWN, command=command, pid=process.pid)

    # Catch immediate failures such as "command not found"
    if startup_grace > 0:
        await asyncio.sleep(startup_grace)
    if process.returncode is not None and process.returncode != 0:
        exit_code = await proxy.close()
        if emitter is not None:
            emitter.emit(
                EventType.ERROR,
                error_type="proxy_command_exited",
                command=command,
                exit_code=exit_code,
            )
        raise SpawnError(
            f"ProxyCommand exited immediately with code {exit_code}",
            command=command,
            exit_code=exit_code,
        )

    proxy._mark_running()
    return proxy


@asynccontextmanager
async def launched(command: str, **kwargs: Any) -> AsyncIterator[ProxyProcess]:
    """
    Context manager around launch() that always closes the process.

    Usage:
        async with launched("nc proxy 22") as proxy:
            ...
    """
    proxy = await launch(command, **kwargs)
    try:
        yield proxy
    finally:
        await proxy.close()
