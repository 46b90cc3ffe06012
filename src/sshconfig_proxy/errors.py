"""
Error taxonomy with structured data for JSONL logging.

Each component raises from a closed set of error kinds, so callers can
either catch a specific class or branch on ``error.kind``:

Error hierarchy:
- SSHConfigError (base)
  - ConfigError (kind: ConfigErrorKind)
    - ParseError
      - ConfigSyntaxError (malformed directive, pattern or Match line)
      - ConfigIOError (unreadable config or include file)
      - IncludeDepthExceeded (Include nesting too deep, e.g. a self-include)
    - HostNotFound (no stanza matched and the caller required one)
  - ProxyCommandError (kind: ProxyErrorKind)
    - SpawnError (the proxy command could not be started)
    - ProxyIOError (pipe I/O with the proxy command failed)
    - UnsafeSubstitution (a substituted value is unsafe for the shell)
  - TransportError (a direct TCP connection could not be opened)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar


class ConfigErrorKind(str, Enum):
    """Failure modes of config parsing and resolution."""
    SYNTAX = "syntax"
    IO = "io"
    INCLUDE_DEPTH_EXCEEDED = "include_depth_exceeded"
    HOST_NOT_FOUND = "host_not_found"


class ProxyErrorKind(str, Enum):
    """Failure modes of the ProxyCommand launcher."""
    SPAWN = "spawn"
    IO = "io"
    UNSAFE_VALUE = "unsafe_value"


@dataclass
class ErrorContext:
    """
    Structured context for errors.

    Carries the minimal information needed to diagnose a failure:
    - path/line for parse errors
    - command/exit_code for proxy errors
    - host/port for resolution and transport errors
    """
    path: str | None = None
    line: int | None = None
    host: str | None = None
    port: int | None = None
    command: str | None = None
    exit_code: int | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate invariants after initialisation."""
        if self.line is not None:
            assert isinstance(self.line, int) and self.line >= 1, (
                f"Line numbers start at 1, got {self.line}"
            )
        if self.port is not None:
            assert isinstance(self.port, int) and 0 <= self.port <= 65535, (
                f"Port must be between 0 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collision with dataclass field names: "
                    f"{collisions}. Use distinct key names in extra."
                )
                result.update(value)
            else:
                result[key] = value
        return result

    def location(self) -> str | None:
        """Return ``path:line`` (or whichever part is known)."""
        if self.path is None and self.line is None:
            return None
        if self.line is None:
            return self.path
        return f"{self.path or '<string>'}:{self.line}"


class SSHConfigError(Exception):
    """
    Base exception for all errors raised by this package.

    All errors carry structured context for logging and debugging.
    """

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), (
            f"Error message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSONL logging."""
        return {
            "error_type": self.error_type,
            "message": str(self),
            **self.context.to_dict(),
        }


# ---------------------------------------------------------------------------
# Config Errors
# ---------------------------------------------------------------------------

class ConfigError(SSHConfigError):
    """Base class for config parsing and resolution errors."""
    kind: ClassVar[ConfigErrorKind]

    def __str__(self) -> str:
        message = super().__str__()
        location = self.context.location()
        return f"{location}: {message}" if location else message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, **super().to_dict()}


class ParseError(ConfigError):
    """A config file could not be parsed; no partial config is returned."""
    kind = ConfigErrorKind.SYNTAX


class ConfigSyntaxError(ParseError):
    """Malformed directive, quoting, pattern or Match criteria."""
    kind = ConfigErrorKind.SYNTAX


class ConfigIOError(ParseError):
    """A config file or Include target exists but could not be read."""
    kind = ConfigErrorKind.IO


class IncludeDepthExceeded(ParseError):
    """
    Include directives nested deeper than the configured limit.

    This is raised for self-referential includes (direct or transitive)
    instead of recursing forever.
    """
    kind = ConfigErrorKind.INCLUDE_DEPTH_EXCEEDED

    def __init__(
        self,
        message: str,
        depth: int,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.extra["depth"] = depth
        super().__init__(message, context)
        self.depth = depth


class HostNotFound(ConfigError):
    """No Host or Match stanza matched the requested host."""
    kind = ConfigErrorKind.HOST_NOT_FOUND


# ---------------------------------------------------------------------------
# ProxyCommand Errors
# ---------------------------------------------------------------------------

class ProxyCommandError(SSHConfigError):
    """Base class for errors running a ProxyCommand."""
    kind: ClassVar[ProxyErrorKind]

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if command is not None:
            context.command = command
        if exit_code is not None:
            context.exit_code = exit_code
        super().__init__(message, context)

    @property
    def command(self) -> str | None:
        return self.context.command

    @property
    def exit_code(self) -> int | None:
        return self.context.exit_code

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, **super().to_dict()}


class SpawnError(ProxyCommandError):
    """
    The ProxyCommand could not be started.

    This is raised when:
    - The command is empty
    - The platform shell could not be executed
    - The command exited with a failure status straight after starting
    """
    kind = ProxyErrorKind.SPAWN


class ProxyIOError(ProxyCommandError):
    """
    Reading from or writing to the ProxyCommand pipes failed.

    This is raised for broken pipes, resets, and I/O on a closed stream.
    """
    kind = ProxyErrorKind.IO


class UnsafeSubstitution(ProxyCommandError, ValueError):
    """
    A value for a %-token used by the ProxyCommand is unsafe for the shell.

    Covers host and user names with shell metacharacters, whitespace or a
    leading hyphen, and invalid ports. Nothing has been spawned.
    """
    kind = ProxyErrorKind.UNSAFE_VALUE


# ---------------------------------------------------------------------------
# Transport Errors
# ---------------------------------------------------------------------------

class TransportError(SSHConfigError):
    """
    A direct TCP transport could not be opened.

    This is raised when the host is unreachable, refuses the connection,
    or ConnectTimeout expires.
    """
    pass
