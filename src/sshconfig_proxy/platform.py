"""
Cross-platform path handling and local identity discovery.

Provides:
- Platform-appropriate SSH directory and config file paths
- LocalIdentity: home directory, local username and local hostname,
  passed explicitly to the parser and launcher so tests can substitute
  fixed values
- Path expansion (~ and %VAR% on Windows)
"""
from __future__ import annotations

import getpass
import os
import socket
import sys
from dataclasses import dataclass
from pathlib import Path


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_home_dir() -> Path:
    """
    Get the current user's home directory.

    Returns:
        %USERPROFILE% on Windows when set, otherwise Path.home()
    """
    if is_windows():
        userprofile = os.environ.get("USERPROFILE")
        if userprofile:
            return Path(userprofile)
        home = os.environ.get("HOME")
        if home:
            return Path(home)
    return Path.home()


def get_system_config_path() -> Path:
    """
    Get the system-wide SSH config file path.

    Returns:
        Path to system SSH config file (/etc/ssh/ssh_config on Unix)
    """
    if is_windows():
        # Windows OpenSSH uses ProgramData
        program_data = os.environ.get("ProgramData", "C:\\ProgramData")
        return Path(program_data) / "ssh" / "ssh_config"
    else:
        return Path("/etc/ssh/ssh_config")


@dataclass(frozen=True)
class LocalIdentity:
    """
    Who and where the local side of a connection is.

    Used for ~ expansion, the default remote user, relative Include paths
    and the %u, %l, %d tokens.
    """
    home: Path
    local_user: str
    local_hostname: str

    def __post_init__(self) -> None:
        assert isinstance(self.local_user, str) and self.local_user, (
            f"local_user must be a non-empty string, got {self.local_user!r}"
        )

    @classmethod
    def current(cls) -> "LocalIdentity":
        """Discover the identity of the running process."""
        return cls(
            home=get_home_dir(),
            local_user=getpass.getuser(),
            local_hostname=socket.gethostname(),
        )

    @property
    def ssh_dir(self) -> Path:
        """~/.ssh for this identity."""
        return self.home / ".ssh"

    @property
    def config_path(self) -> Path:
        """~/.ssh/config for this identity."""
        return self.ssh_dir / "config"

    @property
    def short_hostname(self) -> str:
        """Local hostname up to the first dot."""
        return self.local_hostname.split(".", 1)[0]


def expand_path(path: str | Path, home: Path | None = None) -> Path:
    """
    Expand a path, handling ~ and environment variables.

    On Unix: expands ~ (or ~/...) to ``home``, defaulting to $HOME
    On Windows: also expands %VAR% syntax

    Args:
        path: Path string or Path object to expand
        home: Home directory to use instead of the process default

    Returns:
        Expanded Path object
    """
    path_str = str(path)

    if is_windows():
        path_str = os.path.expandvars(path_str)

    if home is not None and (path_str == "~" or path_str.startswith(("~/", "~\\"))):
        return home / path_str[2:] if len(path_str) > 1 else home

    return Path(path_str).expanduser()
