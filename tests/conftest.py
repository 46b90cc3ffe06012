"""
Pytest fixtures for sshconfig-proxy tests.

Provides:
- A fixed LocalIdentity rooted in tmp_path, so no test depends on the real
  home directory, login name or host name
- A config writer for building config trees under that home
- Event capture fixture for asserting event sequences
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable

import pytest

from sshconfig_proxy.platform import LocalIdentity

if TYPE_CHECKING:
    from sshconfig_proxy.events import EventCollector


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A home directory with an empty ~/.ssh."""
    home_dir = tmp_path / "home"
    (home_dir / ".ssh").mkdir(parents=True)
    return home_dir


@pytest.fixture
def identity(home: Path) -> LocalIdentity:
    """Fixed local identity used for defaults and token expansion."""
    return LocalIdentity(
        home=home,
        local_user="localuser",
        local_hostname="workstation.example.org",
    )


@pytest.fixture
def write_config(home: Path) -> Callable[[str, str], Path]:
    """
    Write a config file relative to ~/.ssh and return its path.

    Usage:
        def test_example(write_config):
            path = write_config("config", "Host a\\n  User b\\n")
    """
    def _write(name: str, content: str) -> Path:
        path = home / ".ssh" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def event_collector() -> "EventCollector":
    """
    Fixture for capturing and asserting event sequences.

    Usage:
        def test_example(event_collector):
            emitter = EventEmitter(collector=event_collector)
            ...
            assert event_collector.events[0].event_type == "SPAWN"
    """
    from sshconfig_proxy.events import EventCollector

    return EventCollector()


@pytest.fixture
def temp_jsonl_path(tmp_path: Path) -> Path:
    """Provide a temporary path for JSONL event log output."""
    return tmp_path / "events.jsonl"
