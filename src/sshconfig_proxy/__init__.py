"""sshconfig-proxy: OpenSSH client config parsing and ProxyCommand transports."""

__version__ = "0.1.0"

from sshconfig_proxy.config import (
    AddKeysToAgent,
    ConfigFile,
    ConfigParser,
    Directive,
    MatchCriterion,
    ResolvedConfig,
    Stanza,
    StanzaKind,
    StrictHostKeyChecking,
    aload,
    load,
    load_default,
    match_pattern,
    match_pattern_list,
    parse,
    resolve,
)
from sshconfig_proxy.errors import (
    ConfigError,
    ConfigErrorKind,
    ConfigIOError,
    ConfigSyntaxError,
    ErrorContext,
    HostNotFound,
    IncludeDepthExceeded,
    ParseError,
    ProxyCommandError,
    ProxyErrorKind,
    ProxyIOError,
    SpawnError,
    SSHConfigError,
    TransportError,
    UnsafeSubstitution,
)
from sshconfig_proxy.events import Event, EventCollector, EventEmitter, EventType
from sshconfig_proxy.platform import LocalIdentity, expand_path, get_system_config_path
from sshconfig_proxy.proxy import (
    ProxyCommandSpec,
    ProxyProcess,
    ProxyState,
    build_command,
    command_for,
    launch,
    launched,
)
from sshconfig_proxy.tokens import expand_tokens
from sshconfig_proxy.transport import (
    DuplexStream,
    TcpStream,
    connect_options,
    open_stream,
    ssh_connect,
)

__all__ = [
    # Config
    "ConfigParser",
    "ConfigFile",
    "Stanza",
    "StanzaKind",
    "Directive",
    "MatchCriterion",
    "ResolvedConfig",
    "StrictHostKeyChecking",
    "AddKeysToAgent",
    "parse",
    "load",
    "load_default",
    "aload",
    "resolve",
    "match_pattern",
    "match_pattern_list",
    # Proxy
    "ProxyCommandSpec",
    "ProxyProcess",
    "ProxyState",
    "build_command",
    "command_for",
    "launch",
    "launched",
    "expand_tokens",
    # Transport
    "DuplexStream",
    "TcpStream",
    "open_stream",
    "connect_options",
    "ssh_connect",
    # Errors
    "SSHConfigError",
    "ConfigError",
    "ConfigErrorKind",
    "ParseError",
    "ConfigSyntaxError",
    "ConfigIOError",
    "IncludeDepthExceeded",
    "HostNotFound",
    "ProxyCommandError",
    "ProxyErrorKind",
    "SpawnError",
    "ProxyIOError",
    "UnsafeSubstitution",
    "TransportError",
    "ErrorContext",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    # Platform
    "LocalIdentity",
    "expand_path",
    "get_system_config_path",
]
