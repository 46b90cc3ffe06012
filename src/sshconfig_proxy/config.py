"""
SSH config file parsing matching OpenSSH behaviour.

Provides:
- ConfigParser: Parser for ~/.ssh/config and /etc/ssh/ssh_config syntax
- ConfigFile: Immutable, ordered list of parsed stanzas
- ResolvedConfig: Flattened configuration for a specific host

Supports:
- Host pattern matching with wildcards (*, ?) and negation (!)
- Match blocks (all, host, originalhost, user, localuser)
- Include with globs, expanded in place at parse time
- First-obtained-value-wins merging, accumulating multi-value options
- Unknown directives kept as opaque strings

Usage:
    config = ConfigParser().load_default()
    resolved = config.resolve("myserver")
    resolved.host_name, resolved.port, resolved.proxy_command
"""
from __future__ import annotations

import asyncio
import glob
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, Mapping

from sshconfig_proxy.errors import (
    ConfigIOError,
    ConfigSyntaxError,
    ErrorContext,
    HostNotFound,
    IncludeDepthExceeded,
)
from sshconfig_proxy.platform import LocalIdentity, expand_path, get_system_config_path
from sshconfig_proxy.tokens import expand_tokens
from sshconfig_proxy.validation import validate_port

log = logging.getLogger("sshconfig_proxy.config")

# OpenSSH's READCONF_MAX_DEPTH
MAX_INCLUDE_DEPTH = 16
DEFAULT_PORT = 22

# Options that accumulate (multiple values allowed)
MULTI_VALUE_OPTIONS = frozenset({
    "identityfile",
    "certificatefile",
    "sendenv",
    "setenv",
    "localforward",
    "remoteforward",
    "dynamicforward",
})

# Options whose value is the rest of the line, passed to a shell verbatim
RAW_VALUE_OPTIONS = frozenset({
    "proxycommand",
    "localcommand",
    "remotecommand",
    "knownhostscommand",
})

# Deprecated names mapped to their current form
OPTION_ALIASES: dict[str, str] = {
    "pubkeyacceptedkeytypes": "pubkeyacceptedalgorithms",
}

# Match criteria that take a pattern-list argument
_MATCH_PATTERN_CRITERIA = frozenset({"host", "originalhost", "user", "localuser"})
# Recognised by OpenSSH but never evaluated here: such a Match never applies
_MATCH_UNSUPPORTED_WITH_ARG = frozenset({
    "exec", "localnetwork", "tagged", "version", "sessiontype", "command",
})
_MATCH_UNSUPPORTED_NO_ARG = frozenset({"canonical", "final"})

_KEYWORD_RE = re.compile(r"([^\s=]+)[ \t]*(?:=[ \t]*)?(.*)$")


class StrictHostKeyChecking(str, Enum):
    """Values of the StrictHostKeyChecking directive."""
    YES = "yes"
    NO = "no"
    ASK = "ask"
    ACCEPT_NEW = "accept-new"


class AddKeysToAgent(str, Enum):
    """Values of the AddKeysToAgent directive."""
    YES = "yes"
    NO = "no"
    ASK = "ask"
    CONFIRM = "confirm"


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("yes", "true"):
        return True
    if lowered in ("no", "false"):
        return False
    raise ValueError(f"expected yes or no, got {value!r}")


def _parse_strict_host_key_checking(value: str) -> StrictHostKeyChecking:
    lowered = value.lower()
    if lowered in ("yes", "true"):
        return StrictHostKeyChecking.YES
    if lowered in ("no", "false", "off"):
        return StrictHostKeyChecking.NO
    try:
        return StrictHostKeyChecking(lowered)
    except ValueError:
        raise ValueError(
            f"expected yes, no, ask or accept-new, got {value!r}"
        ) from None


def _parse_add_keys_to_agent(value: str) -> AddKeysToAgent:
    # "confirm 1h" style lifetimes are accepted, the lifetime is ignored
    lowered = value.split()[0].lower()
    if lowered in ("yes", "true"):
        return AddKeysToAgent.YES
    if lowered in ("no", "false"):
        return AddKeysToAgent.NO
    try:
        return AddKeysToAgent(lowered)
    except ValueError:
        raise ValueError(
            f"expected yes, no, ask or confirm, got {value!r}"
        ) from None


def _parse_timeout(value: str) -> int | None:
    if value.lower() == "none":
        return None
    if not (value.isascii() and value.isdigit()):
        raise ValueError(f"expected a number of seconds, got {value!r}")
    return int(value)


# Typed options are checked at parse time so errors carry path and line
_CONVERTERS: dict[str, Callable[[str], Any]] = {
    "port": validate_port,
    "connecttimeout": _parse_timeout,
    "identitiesonly": _parse_bool,
    "forwardagent": _parse_bool,
    "stricthostkeychecking": _parse_strict_host_key_checking,
    "addkeystoagent": _parse_add_keys_to_agent,
}


# ---------------------------------------------------------------------------
# Pattern matching
# ---------------------------------------------------------------------------

@lru_cache(maxsize=512)
def _pattern_regex(pattern: str) -> re.Pattern[str]:
    """Compile an ssh wildcard pattern: only * and ? are special."""
    parts = []
    for char in pattern.lower():
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


def match_pattern(value: str, pattern: str) -> bool:
    """Case-insensitive match of ``value`` against one wildcard pattern."""
    return _pattern_regex(pattern).fullmatch(value.lower()) is not None


def match_pattern_list(value: str, patterns: Iterable[str]) -> bool:
    """
    Match ``value`` against a list of patterns.

    OpenSSH behaviour:
    - Patterns are OR'd together
    - A matching negated pattern (!) excludes the value outright
    - At least one positive pattern must match
    """
    matched = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if match_pattern(value, pattern[1:]):
                return False
        elif match_pattern(value, pattern):
            matched = True
    return matched


# ---------------------------------------------------------------------------
# Parsed structure
# ---------------------------------------------------------------------------

class StanzaKind(str, Enum):
    """Where a stanza's directives came from."""
    GLOBAL = "global"  # before any Host/Match line, applies to every host
    HOST = "host"
    MATCH = "match"


@dataclass(frozen=True)
class Directive:
    """One ``Keyword value`` line."""
    key: str
    value: str
    args: tuple[str, ...]
    path: Path | None = None
    line: int | None = None


@dataclass(frozen=True)
class MatchCriterion:
    """One criterion of a Match line, e.g. ``host *.example.com``."""
    name: str
    patterns: tuple[str, ...] = ()
    negated: bool = False

    @property
    def supported(self) -> bool:
        return self.name == "all" or self.name in _MATCH_PATTERN_CRITERIA


@dataclass(frozen=True)
class _MatchState:
    """Values a stanza is matched against, as known at that point in the file."""
    original_host: str
    host: str
    user: str
    local_user: str


@dataclass(frozen=True)
class Stanza:
    """
    A Host or Match block (or the implicit global block) and its directives.

    ``guard`` holds the Host/Match blocks enclosing the Include this stanza
    was read from. The stanza applies only when every one of them matches.
    """
    kind: StanzaKind
    patterns: tuple[str, ...] = ()
    criteria: tuple[MatchCriterion, ...] = ()
    directives: tuple[Directive, ...] = ()
    path: Path | None = None
    line: int | None = None
    guard: tuple["Stanza", ...] = ()

    def _matches(self, state: _MatchState) -> bool:
        if not all(enclosing._matches(state) for enclosing in self.guard):
            return False
        if self.kind is StanzaKind.GLOBAL:
            return True
        if self.kind is StanzaKind.HOST:
            return match_pattern_list(state.original_host, self.patterns)

        for criterion in self.criteria:
            if not criterion.supported:
                log.debug(
                    "Match %s at %s:%s is not supported, block skipped",
                    criterion.name, self.path, self.line,
                )
                return False
            if criterion.name == "all":
                result = True
            else:
                subject = {
                    "host": state.host,
                    "originalhost": state.original_host,
                    "user": state.user,
                    "localuser": state.local_user,
                }[criterion.name]
                result = match_pattern_list(subject, criterion.patterns)
            if result == criterion.negated:
                return False
        return True


@dataclass(frozen=True)
class ResolvedConfig:
    """
    Resolved SSH configuration for a specific host.

    Built fresh by each lookup. ``options`` holds every directive that
    applied, keyed by lower-cased name; unknown directives are kept as
    strings, multi-value ones as tuples.
    """
    host: str
    host_name: str
    port: int = DEFAULT_PORT
    user: str | None = None

    identity_files: tuple[Path, ...] = ()
    identities_only: bool = False
    proxy_command: str | None = None
    proxy_jump: str | None = None
    user_known_hosts_files: tuple[Path, ...] = ()
    strict_host_key_checking: StrictHostKeyChecking | None = None
    add_keys_to_agent: AddKeysToAgent | None = None
    forward_agent: bool = False
    connect_timeout: int | None = None

    matched: bool = False
    options: Mapping[str, str | tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({}), hash=False,
    )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw option value by case-insensitive name."""
        key = key.lower()
        return self.options.get(OPTION_ALIASES.get(key, key), default)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    @property
    def has_proxy_command(self) -> bool:
        return self.proxy_command is not None


@dataclass(frozen=True)
class ConfigFile:
    """
    Parsed SSH config: stanzas in file order with Includes expanded.

    Immutable once parsed, so it can be shared between concurrent lookups.
    """
    stanzas: tuple[Stanza, ...] = ()
    path: Path | None = None

    def __iter__(self) -> Iterator[Stanza]:
        return iter(self.stanzas)

    def __len__(self) -> int:
        return len(self.stanzas)

    @classmethod
    def chain(cls, *files: "ConfigFile") -> "ConfigFile":
        """Concatenate configs; earlier files take precedence."""
        stanzas: list[Stanza] = []
        for config in files:
            stanzas.extend(config.stanzas)
        path = files[0].path if files else None
        return cls(stanzas=tuple(stanzas), path=path)

    def resolve(
        self,
        host: str,
        *,
        identity: LocalIdentity | None = None,
        require_match: bool = False,
    ) -> ResolvedConfig:
        """
        Look up configuration for a specific host.

        Applies stanzas in order, with the first obtained value winning
        for single-value options.

        Args:
            host: The hostname to look up (as specified by user)
            identity: Local identity for defaults; discovered if not given
            require_match: Raise HostNotFound if no Host/Match block applied

        Returns:
            ResolvedConfig with all applicable options
        """
        assert isinstance(host, str) and host, f"host must be a non-empty string, got {host!r}"
        if identity is None:
            identity = LocalIdentity.current()

        merged: dict[str, Directive | list[Directive]] = {}
        matched = False

        for stanza in self.stanzas:
            state = _MatchState(
                original_host=host,
                host=_current_hostname(merged, host),
                user=_current_user(merged, identity),
                local_user=identity.local_user,
            )
            if not stanza._matches(state):
                continue
            if stanza.kind is not StanzaKind.GLOBAL:
                matched = True
            for directive in stanza.directives:
                _set_option(merged, directive)

        if require_match and not matched:
            raise HostNotFound(
                f"No Host or Match stanza matches {host!r}",
                context=ErrorContext(
                    path=str(self.path) if self.path else None, host=host,
                ),
            )

        return _build_resolved(host, merged, identity, matched)

    def hosts(self) -> list[str]:
        """Get all explicitly defined host names (not wildcards or negations).

        Useful for tab completion and listing configured hosts.
        """
        hosts: list[str] = []
        for stanza in self.stanzas:
            if stanza.kind is not StanzaKind.HOST:
                continue
            for pattern in stanza.patterns:
                if "*" in pattern or "?" in pattern or pattern.startswith("!"):
                    continue
                if pattern not in hosts:
                    hosts.append(pattern)
        return hosts


def _set_option(merged: dict[str, Directive | list[Directive]], directive: Directive) -> None:
    """Set an option, handling multi-value options correctly."""
    if directive.key in MULTI_VALUE_OPTIONS:
        existing = merged.setdefault(directive.key, [])
        assert isinstance(existing, list)
        existing.append(directive)
    elif directive.key not in merged:
        # First match wins for single-value options
        merged[directive.key] = directive


def _single(merged: dict[str, Directive | list[Directive]], key: str) -> Directive | None:
    directive = merged.get(key)
    assert directive is None or isinstance(directive, Directive)
    return directive


def _current_hostname(merged: dict[str, Directive | list[Directive]], host: str) -> str:
    directive = _single(merged, "hostname")
    if directive is None:
        return host
    return expand_tokens(directive.value, {"h": host})


def _current_user(merged: dict[str, Directive | list[Directive]], identity: LocalIdentity) -> str:
    directive = _single(merged, "user")
    return directive.value if directive is not None else identity.local_user


def _convert(directive: Directive) -> Any:
    return _CONVERTERS[directive.key](directive.value)


def _build_resolved(
    host: str,
    merged: dict[str, Directive | list[Directive]],
    identity: LocalIdentity,
    matched: bool,
) -> ResolvedConfig:
    """Build ResolvedConfig from merged directives."""
    values: dict[str, Any] = {}

    user_directive = _single(merged, "user")
    user = user_directive.value if user_directive else identity.local_user

    port_directive = _single(merged, "port")
    port = _convert(port_directive) if port_directive else DEFAULT_PORT

    host_name = _current_hostname(merged, host)

    tokens = {
        "h": host_name,
        "n": host,
        "p": str(port),
        "r": user,
        "u": identity.local_user,
        "l": identity.local_hostname,
        "L": identity.short_hostname,
        "d": str(identity.home),
    }

    # IdentityFile (multi-value, with expansion)
    identity_files = merged.get("identityfile", [])
    assert isinstance(identity_files, list)
    values["identity_files"] = tuple(
        expand_path(expand_tokens(d.value, tokens), home=identity.home)
        for d in identity_files
    )

    # ProxyCommand stays a template; the launcher substitutes its tokens
    proxy = _single(merged, "proxycommand")
    if proxy is not None and proxy.value.lower() != "none":
        values["proxy_command"] = proxy.value

    jump = _single(merged, "proxyjump")
    if jump is not None and jump.value.lower() != "none":
        values["proxy_jump"] = jump.value

    known_hosts = _single(merged, "userknownhostsfile")
    if known_hosts is not None and known_hosts.value.lower() != "none":
        values["user_known_hosts_files"] = tuple(
            expand_path(expand_tokens(arg, tokens), home=identity.home)
            for arg in known_hosts.args
        )

    for key, attr in (
        ("stricthostkeychecking", "strict_host_key_checking"),
        ("addkeystoagent", "add_keys_to_agent"),
        ("identitiesonly", "identities_only"),
        ("forwardagent", "forward_agent"),
        ("connecttimeout", "connect_timeout"),
    ):
        directive = _single(merged, key)
        if directive is not None:
            values[attr] = _convert(directive)

    options: dict[str, str | tuple[str, ...]] = {}
    for key, value in merged.items():
        if isinstance(value, list):
            options[key] = tuple(d.value for d in value)
        else:
            options[key] = value.value

    return ResolvedConfig(
        host=host,
        host_name=host_name,
        port=port,
        user=user,
        matched=matched,
        options=MappingProxyType(options),
        **values,
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _syntax_error(message: str, path: Path | None, line: int) -> ConfigSyntaxError:
    return ConfigSyntaxError(
        message,
        context=ErrorContext(path=str(path) if path else None, line=line),
    )


def _split_args(text: str, path: Path | None, line: int) -> list[str]:
    """Split a value into arguments the way OpenSSH's argv_split does.

    Double and single quotes group words, backslash escapes a quote, a
    backslash or (outside quotes) a space, and an unquoted word starting
    with # begins a trailing comment.
    """
    args: list[str] = []
    current: list[str] = []
    in_arg = False
    quote: str | None = None
    i = 0
    while i < len(text):
        char = text[i]
        nxt = text[i + 1] if i + 1 < len(text) else ""
        if char == "\\" and (nxt in ("'", '"', "\\") or (quote is None and nxt in (" ", "\t"))):
            current.append(nxt)
            in_arg = True
            i += 2
            continue
        if quote is not None:
            if char == quote:
                quote = None
            else:
                current.append(char)
        elif char in (" ", "\t"):
            if in_arg:
                args.append("".join(current))
                current = []
                in_arg = False
        elif char == "#" and not in_arg:
            break
        elif char in ("'", '"'):
            quote = char
            in_arg = True
        else:
            current.append(char)
            in_arg = True
        i += 1

    if quote is not None:
        raise _syntax_error("Unterminated quoted string", path, line)
    if in_arg:
        args.append("".join(current))
    return args


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _parse_match(args: list[str], path: Path | None, line: int) -> tuple[MatchCriterion, ...]:
    """Parse the criteria of a Match line."""
    criteria: list[MatchCriterion] = []
    i = 0
    while i < len(args):
        word = args[i]
        negated = word.startswith("!")
        name = (word[1:] if negated else word).lower()
        i += 1

        if name in _MATCH_PATTERN_CRITERIA or name in _MATCH_UNSUPPORTED_WITH_ARG:
            if i >= len(args):
                raise _syntax_error(f"Match {name} requires an argument", path, line)
            patterns = tuple(p for p in args[i].split(",") if p)
            i += 1
            criteria.append(MatchCriterion(name, patterns, negated))
        elif name == "all" or name in _MATCH_UNSUPPORTED_NO_ARG:
            criteria.append(MatchCriterion(name, (), negated))
        else:
            raise _syntax_error(f"Unsupported Match attribute {word!r}", path, line)

    if not criteria:
        raise _syntax_error("Match requires at least one criterion", path, line)

    names = {c.name for c in criteria}
    if "all" in names and names - {"all", "canonical", "final"}:
        raise _syntax_error("Match all must appear alone", path, line)
    return tuple(criteria)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ConfigIOError(
            f"Cannot read config file {path}: {e.strerror or e}",
            context=ErrorContext(path=str(path), original_error=str(e)),
        ) from e


class _ParseState:
    """Accumulates stanzas across a file and everything it includes."""

    def __init__(self, parser: "ConfigParser") -> None:
        self._parser = parser
        self.stanzas: list[Stanza] = []
        self._starts = 0
        self._kind = StanzaKind.GLOBAL
        self._patterns: tuple[str, ...] = ()
        self._criteria: tuple[MatchCriterion, ...] = ()
        self._origin: tuple[Path | None, int | None] = (None, None)
        self._directives: list[Directive] = []
        # Enclosing blocks of the Include being read, and of the current block
        self._include_guard: tuple[Stanza, ...] = ()
        self._guard: tuple[Stanza, ...] = ()

    def _flush(self) -> None:
        if self._kind is StanzaKind.GLOBAL and not self._directives:
            return
        self.stanzas.append(Stanza(
            kind=self._kind,
            patterns=self._patterns,
            criteria=self._criteria,
            directives=tuple(self._directives),
            path=self._origin[0],
            line=self._origin[1],
            guard=self._guard,
        ))
        self._directives = []

    def _start(
        self,
        kind: StanzaKind,
        patterns: tuple[str, ...],
        criteria: tuple[MatchCriterion, ...],
        origin: tuple[Path | None, int | None],
        guard: tuple[Stanza, ...] | None = None,
    ) -> None:
        self._flush()
        self._starts += 1
        self._kind = kind
        self._patterns = patterns
        self._criteria = criteria
        self._origin = origin
        self._guard = self._include_guard if guard is None else guard

    def finish(self) -> list[Stanza]:
        self._flush()
        return self.stanzas

    def feed(self, text: str, path: Path | None, depth: int) -> None:
        """Parse one file's content."""
        for line_no, raw in enumerate(text.splitlines(), 1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue

            # SSH config allows "Option Value", "Option=Value" and "Option = Value"
            m = _KEYWORD_RE.match(line)
            if m is None:
                raise _syntax_error(f"Malformed line: {line!r}", path, line_no)
            keyword, rest = m.group(1), m.group(2).strip()
            key = keyword.lower()
            key = OPTION_ALIASES.get(key, key)

            if key in RAW_VALUE_OPTIONS:
                value = _unquote(rest)
                args = [value] if value else []
            else:
                args = _split_args(rest, path, line_no)
                value = " ".join(args)

            if not args:
                raise _syntax_error(f"Missing argument for {keyword}", path, line_no)

            if key == "host":
                self._start(StanzaKind.HOST, tuple(args), (), (path, line_no))
            elif key == "match":
                criteria = _parse_match(args, path, line_no)
                self._start(StanzaKind.MATCH, (), criteria, (path, line_no))
            elif key == "include":
                self._include(args, path, line_no, depth)
            else:
                if key in _CONVERTERS:
                    try:
                        _CONVERTERS[key](value)
                    except ValueError as e:
                        raise _syntax_error(f"Bad {keyword} value: {e}", path, line_no) from e
                self._directives.append(Directive(
                    key=key, value=value, args=tuple(args), path=path, line=line_no,
                ))

    def _include(self, args: list[str], path: Path | None, line: int, depth: int) -> None:
        """Expand an Include directive in place."""
        identity = self._parser.identity
        base = path.parent if path is not None else identity.ssh_dir

        # Resume the enclosing block after the include if it opened new ones
        saved = (self._kind, self._patterns, self._criteria, self._origin, self._guard)
        starts_before = self._starts

        # Blocks opened by the included files apply only where this one does
        outer_guard = self._include_guard
        if self._kind is not StanzaKind.GLOBAL:
            self._include_guard = self._guard + (Stanza(
                kind=self._kind,
                patterns=self._patterns,
                criteria=self._criteria,
                path=self._origin[0],
                line=self._origin[1],
            ),)

        for arg in args:
            pattern = expand_path(arg, home=identity.home)
            if not pattern.is_absolute():
                pattern = base / pattern

            targets = sorted(glob.glob(str(pattern)))
            if not targets:
                log.debug("Include %s at %s:%d matched no files", arg, path, line)
                continue

            for target in targets:
                if depth + 1 > self._parser.max_include_depth:
                    raise IncludeDepthExceeded(
                        f"Include nested deeper than {self._parser.max_include_depth} "
                        f"levels (including {target})",
                        depth=depth + 1,
                        context=ErrorContext(
                            path=str(path) if path else None, line=line,
                        ),
                    )
                log.debug("Including %s from %s:%d", target, path, line)
                target_path = Path(target)
                self.feed(_read_text(target_path), target_path, depth + 1)

        self._include_guard = outer_guard
        if self._starts != starts_before:
            self._start(*saved)


class ConfigParser:
    """
    Parser for SSH config files.

    Matches OpenSSH behaviour:
    - Keywords are case-insensitive, values may be quoted
    - Include is expanded where it appears, relative to the including file
    - Include nesting is bounded so self-includes fail instead of looping

    Usage:
        parser = ConfigParser()
        config = parser.load(Path("~/.ssh/config").expanduser())
        resolved = config.resolve("myserver")
    """

    def __init__(
        self,
        identity: LocalIdentity | None = None,
        max_include_depth: int = MAX_INCLUDE_DEPTH,
    ) -> None:
        """
        Initialise SSH config parser.

        Args:
            identity: Home directory and user for ~ and relative Includes;
                      discovered from the running process when first needed
            max_include_depth: Deepest allowed Include nesting
        """
        assert max_include_depth >= 0, (
            f"max_include_depth must not be negative, got {max_include_depth}"
        )
        self._identity = identity
        self.max_include_depth = max_include_depth

    @property
    def identity(self) -> LocalIdentity:
        if self._identity is None:
            self._identity = LocalIdentity.current()
        return self._identity

    def parse(self, source: str, path: Path | str | None = None) -> ConfigFile:
        """
        Parse SSH config text.

        Args:
            source: Config file content
            path: Where the content came from, used for relative Includes
                  and error locations

        Raises:
            ConfigSyntaxError, ConfigIOError, IncludeDepthExceeded
        """
        source_path = Path(path) if path is not None else None
        state = _ParseState(self)
        state.feed(source, source_path, 0)
        return ConfigFile(stanzas=tuple(state.finish()), path=source_path)

    def load(self, path: Path | str) -> ConfigFile:
        """Read and parse a config file."""
        config_path = Path(path)
        return self.parse(_read_text(config_path), config_path)

    async def aload(self, path: Path | str) -> ConfigFile:
        """Read and parse a config file without blocking the event loop."""
        return await asyncio.to_thread(self.load, path)

    def load_default(self, include_system: bool = True) -> ConfigFile:
        """
        Load the user config (~/.ssh/config) then the system config.

        Missing files count as empty. The user config comes first, so its
        values win.
        """
        paths = [self.identity.config_path]
        if include_system:
            paths.append(get_system_config_path())

        configs = []
        for config_path in paths:
            if not config_path.exists():
                log.debug("SSH config %s not found, skipping", config_path)
                continue
            configs.append(self.load(config_path))
        return ConfigFile.chain(*configs)


def parse(
    source: str,
    *,
    path: Path | str | None = None,
    identity: LocalIdentity | None = None,
    max_include_depth: int = MAX_INCLUDE_DEPTH,
) -> ConfigFile:
    """Parse SSH config text with a one-off ConfigParser."""
    return ConfigParser(identity, max_include_depth).parse(source, path)


def load(
    path: Path | str,
    *,
    identity: LocalIdentity | None = None,
    max_include_depth: int = MAX_INCLUDE_DEPTH,
) -> ConfigFile:
    """Read and parse a config file with a one-off ConfigParser."""
    return ConfigParser(identity, max_include_depth).load(path)


async def aload(
    path: Path | str,
    *,
    identity: LocalIdentity | None = None,
    max_include_depth: int = MAX_INCLUDE_DEPTH,
) -> ConfigFile:
    """Async variant of load()."""
    return await ConfigParser(identity, max_include_depth).aload(path)


def load_default(
    *,
    identity: LocalIdentity | None = None,
    include_system: bool = True,
) -> ConfigFile:
    """Load ~/.ssh/config followed by the system config."""
    return ConfigParser(identity).load_default(include_system=include_system)


def resolve(
    config: ConfigFile,
    host: str,
    *,
    identity: LocalIdentity | None = None,
    require_match: bool = False,
) -> ResolvedConfig:
    """Resolve ``host`` against a parsed config."""
    return config.resolve(host, identity=identity, require_match=require_match)
