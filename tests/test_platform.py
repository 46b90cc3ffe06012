"""
Tests for cross-platform path handling and local identity.

Tests cover:
- Platform detection and system config location
- Home directory discovery, including Windows fallbacks
- LocalIdentity derived paths and host names
- Path expansion with ~ and environment variables
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

import sshconfig_proxy.platform
from sshconfig_proxy.platform import (
    LocalIdentity,
    expand_path,
    get_home_dir,
    get_system_config_path,
    is_windows,
)


# ---------------------------------------------------------------------------
# Platform Detection Tests
# ---------------------------------------------------------------------------

class TestPlatformDetection:
    """Test platform detection functions."""

    def test_is_windows_matches_sys_platform(self) -> None:
        """is_windows() matches sys.platform check."""
        assert is_windows() == (sys.platform == "win32")

    def test_system_config_unix(self) -> None:
        with patch("sshconfig_proxy.platform.is_windows", return_value=False):
            assert get_system_config_path() == Path("/etc/ssh/ssh_config")

    def test_system_config_windows(self) -> None:
        """Windows OpenSSH keeps its system config under ProgramData."""
        with patch("sshconfig_proxy.platform.is_windows", return_value=True):
            with patch.dict(os.environ, {"ProgramData": "D:\\Data"}):
                assert get_system_config_path() == Path("D:\\Data") / "ssh" / "ssh_config"


# ---------------------------------------------------------------------------
# Home Directory Tests
# ---------------------------------------------------------------------------

class TestHomeDirectory:
    """Test home directory discovery."""

    def test_unix_uses_path_home(self) -> None:
        with patch("sshconfig_proxy.platform.is_windows", return_value=False):
            assert get_home_dir() == Path.home()

    def test_windows_with_userprofile(self) -> None:
        """On Windows, USERPROFILE wins."""
        with patch("sshconfig_proxy.platform.is_windows", return_value=True):
            with patch.dict(os.environ, {"USERPROFILE": "C:\\Users\\Test"}):
                assert get_home_dir() == Path("C:\\Users\\Test")

    def test_windows_fallback_to_home(self) -> None:
        """On Windows without USERPROFILE, falls back to HOME."""
        with patch("sshconfig_proxy.platform.is_windows", return_value=True):
            with patch.dict(os.environ, {"HOME": "/home/test"}, clear=True):
                assert get_home_dir() == Path("/home/test")


# ---------------------------------------------------------------------------
# LocalIdentity Tests
# ---------------------------------------------------------------------------

class TestLocalIdentity:
    """Test the injected local identity."""

    def test_derived_paths(self, identity: LocalIdentity, home: Path) -> None:
        assert identity.ssh_dir == home / ".ssh"
        assert identity.config_path == home / ".ssh" / "config"

    def test_short_hostname(self, identity: LocalIdentity) -> None:
        """%L is the local host name up to the first dot."""
        assert identity.short_hostname == "workstation"

        bare = LocalIdentity(home=Path("/h"), local_user="u", local_hostname="box")
        assert bare.short_hostname == "box"

    def test_current(self) -> None:
        """current() asks the OS for user, host and home."""
        with patch("sshconfig_proxy.platform.getpass.getuser", return_value="alice"), \
                patch("sshconfig_proxy.platform.socket.gethostname", return_value="desk.lan"), \
                patch("sshconfig_proxy.platform.get_home_dir", return_value=Path("/home/alice")):
            identity = LocalIdentity.current()

        assert identity == LocalIdentity(
            home=Path("/home/alice"), local_user="alice", local_hostname="desk.lan",
        )

    def test_empty_user_rejected(self) -> None:
        with pytest.raises(AssertionError):
            LocalIdentity(home=Path("/h"), local_user="", local_hostname="box")

    def test_immutable(self, identity: LocalIdentity) -> None:
        with pytest.raises(AttributeError):
            identity.local_user = "other"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Path Expansion Tests
# ---------------------------------------------------------------------------

class TestPathExpansion:
    """Test path expansion with ~ and environment variables."""

    def test_expand_path_returns_path(self) -> None:
        assert isinstance(expand_path("/some/path"), Path)

    def test_expand_path_handles_tilde(self) -> None:
        """expand_path() expands ~ to home directory."""
        result = expand_path("~/.ssh/id_rsa")
        assert "~" not in str(result)
        assert result.name == "id_rsa"

    def test_expand_path_with_explicit_home(self, home: Path) -> None:
        """An explicit home replaces the process home directory."""
        assert expand_path("~/.ssh/id_rsa", home=home) == home / ".ssh" / "id_rsa"
        assert expand_path("~", home=home) == home
        assert expand_path(Path("~/x"), home=home) == home / "x"

    def test_other_users_home_not_redirected(self, home: Path) -> None:
        """~user is left to the OS, not mapped to the given home."""
        result = expand_path("~root/file", home=home)
        assert not str(result).startswith(str(home))

    def test_expand_path_windows_calls_expandvars(self) -> None:
        """On Windows, expand_path calls os.path.expandvars."""
        with patch.object(sshconfig_proxy.platform, "is_windows", lambda: True):
            with patch("os.path.expandvars") as mock_expandvars:
                mock_expandvars.return_value = "/mocked/path"
                result = expand_path("%USERPROFILE%\\.ssh")
                mock_expandvars.assert_called_once()
                assert "mocked" in str(result)

    def test_expand_path_absolute_unchanged(self) -> None:
        assert expand_path("/absolute/path/to/file") == Path("/absolute/path/to/file")

    def test_relative_path_unchanged(self) -> None:
        assert expand_path("conf.d/a.conf") == Path("conf.d/a.conf")
