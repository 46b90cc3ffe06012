"""
Validation for values substituted into ProxyCommand lines and config.

Host names and user names end up inside a shell command line, so values
carrying shell metacharacters, control characters or a leading hyphen
(which the proxy program would read as an option) are rejected.
"""

from typing import Final

MAX_HOSTNAME_LENGTH: Final[int] = 1025
MAX_USERNAME_LENGTH: Final[int] = 256

# Characters that must never appear in a substituted value
DANGEROUS_CHARS: Final[frozenset[str]] = frozenset(
    "\x00"  # null byte
    "\n\r"  # newlines
    "`$(){}|;&<>\\'\"*?~"  # shell metacharacters and globs
    "\t "  # whitespace would split the argument
)

_CHAR_NAMES: Final[dict[str, str]] = {
    "\x00": "null byte",
    "\n": "newline",
    "\r": "carriage return",
    "\t": "tab",
    " ": "space",
}


def _check_dangerous_chars(value: str, field_name: str) -> None:
    """
    Check for dangerous characters in a value.

    Raises:
        ValueError: If dangerous characters are found
    """
    assert isinstance(field_name, str) and field_name, \
        f"Precondition: field_name must be non-empty str, got {field_name!r}"

    for char in value:
        if char in DANGEROUS_CHARS:
            char_desc = _CHAR_NAMES.get(char, repr(char))
            raise ValueError(
                f"{field_name} contains forbidden character: {char_desc}"
            )


def _check_common(value: str, field_name: str, max_length: int) -> None:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {type(value).__name__}")
    if not value:
        raise ValueError(f"{field_name} must not be empty")
    _check_dangerous_chars(value, field_name)
    if value.startswith("-"):
        raise ValueError(f"{field_name} must not start with a hyphen")
    if len(value) > max_length:
        raise ValueError(
            f"{field_name} exceeds maximum length of {max_length} characters "
            f"(got {len(value)})"
        )


def validate_hostname(hostname: str) -> str:
    """
    Validate a host name or address before it is substituted for %h.

    Unlike DNS validation this accepts IP addresses (including IPv6),
    underscores and trailing dots, since all of those are legitimate
    ssh targets.

    Args:
        hostname: The hostname to validate

    Returns:
        The hostname unchanged

    Raises:
        ValueError: If the hostname is unsafe, with a clear message
    """
    _check_common(hostname, "hostname", MAX_HOSTNAME_LENGTH)
    return hostname


def validate_username(username: str) -> str:
    """
    Validate a remote or local user name before it is substituted.

    Args:
        username: The username to validate

    Returns:
        The username unchanged

    Raises:
        ValueError: If the username is unsafe, with a clear message
    """
    _check_common(username, "username", MAX_USERNAME_LENGTH)
    return username


def validate_port(port: int | str) -> int:
    """
    Validate a port number.

    Accepts an int or a decimal string (as read from a config file).

    Returns:
        The port as an int in range 1-65535

    Raises:
        ValueError: If the port is invalid, with a clear message
    """
    # Reject bool first (bool is a subclass of int in Python)
    if isinstance(port, bool):
        raise ValueError("port must be an integer, got bool")

    if isinstance(port, str):
        text = port.strip()
        if not (text.isascii() and text.isdigit()):
            raise ValueError(f"port must be a decimal number, got {port!r}")
        port = int(text)

    if not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {type(port).__name__}")

    if port < 1:
        raise ValueError(f"port must be at least 1, got {port}")

    if port > 65535:
        raise ValueError(f"port must be at most 65535, got {port}")

    return port
