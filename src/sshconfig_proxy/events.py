"""
Structured records of what the launcher and transport did.

The launcher and transport report four kinds of event:
- SPAWN: ProxyCommand started (command line, pid)
- EXIT: ProxyCommand reaped (exit status, and whether it was terminated or killed)
- CONNECT: Transport opened, ``via`` is ``tcp`` or ``proxy_command``
- ERROR: A spawn or connect failure, ``error_type`` names which

Events go to an in-memory EventCollector (tests and callers that want to
inspect them), to a JSONL file with one object per line, or both. Every
event is also logged at debug level on the ``sshconfig_proxy.events`` logger.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any

log = logging.getLogger("sshconfig_proxy.events")


class EventType(str, Enum):
    SPAWN = "SPAWN"
    EXIT = "EXIT"
    CONNECT = "CONNECT"
    ERROR = "ERROR"


@dataclass
class Event:
    """One record: its type, when it happened (Unix ms) and its data."""
    event_type: str
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        valid_types = {e.value for e in EventType}
        assert self.event_type in valid_types, \
            f"Invalid event_type '{self.event_type}'. Must be one of: {valid_types}"

    def to_json(self) -> str:
        # Paths and enums in data are written as strings
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        record = json.loads(json_str)
        return cls(
            event_type=record["event_type"],
            timestamp=record["timestamp"],
            data=record.get("data", {}),
        )


class EventCollector:
    """Keeps events in memory."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def add(self, event: Event) -> None:
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        """Return collected events (copy)."""
        return list(self._events)

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        if isinstance(event_type, EventType):
            event_type = event_type.value
        return [e for e in self._events if e.event_type == event_type]


class EventEmitter:
    """
    Sends events to a collector and/or appends them to a JSONL file.

    The file is opened in append mode on construction, creating parent
    directories, so several runs can share one log. Call close() (or use
    the emitter as a context manager) to release it.
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
    ) -> None:
        self._collector = collector
        self._jsonl: IO[str] | None = None

        if jsonl_path:
            path = Path(jsonl_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._jsonl = open(path, "a", encoding="utf-8")

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        """Create an event from ``data``, dispatch it and return it."""
        if isinstance(event_type, EventType):
            event_type = event_type.value

        event = Event(event_type=event_type, data=data)
        log.debug("%s %s", event_type, data)

        if self._collector is not None:
            self._collector.add(event)

        if self._jsonl is not None:
            self._jsonl.write(event.to_json() + "\n")
            self._jsonl.flush()

        return event

    def close(self) -> None:
        if self._jsonl is not None:
            self._jsonl.close()
            self._jsonl = None

    def __enter__(self) -> "EventEmitter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def read_jsonl_events(path: Path | str) -> list[Event]:
    """Read back every event from a JSONL file written by EventEmitter."""
    with open(path, "r", encoding="utf-8") as f:
        return [Event.from_json(line) for line in f if line.strip()]
