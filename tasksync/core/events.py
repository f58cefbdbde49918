"""Structured event sinks injected into the stateful components."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

LOGGER = logging.getLogger("tasksync.events")

_EVENT_LEVELS: dict[str, int] = {
    "poll.started": logging.DEBUG,
    "poll.succeeded": logging.DEBUG,
    "poll.retry": logging.INFO,
    "poll.failed": logging.WARNING,
    "poll.suspended": logging.WARNING,
    "audit.degraded": logging.WARNING,
    "index.inconsistent": logging.WARNING,
    "mutation.failed": logging.WARNING,
    "mutation.rejected": logging.INFO,
    "move.rejected": logging.INFO,
}


class EventSink(Protocol):
    """Receives structured events from the cache, pipeline and board layer."""

    def emit(self, event: str, **fields: Any) -> None:
        """Record one event."""


class LoggingEventSink:
    """Default sink forwarding events to the standard logging tree."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def emit(self, event: str, **fields: Any) -> None:
        level = _EVENT_LEVELS.get(event, logging.INFO)
        if not self._logger.isEnabledFor(level):
            return
        rendered = " ".join(f"{key}={value!r}" for key, value in sorted(fields.items()))
        self._logger.log(level, "%s %s", event, rendered)


@dataclass(slots=True)
class RecordedEvent:
    name: str
    fields: dict[str, Any] = field(default_factory=dict)


class MemoryEventSink:
    """Keeps every event in memory; handy for diagnostics and tests."""

    def __init__(self) -> None:
        self.events: list[RecordedEvent] = []

    def emit(self, event: str, **fields: Any) -> None:
        self.events.append(RecordedEvent(name=event, fields=dict(fields)))

    def names(self) -> list[str]:
        return [event.name for event in self.events]

    def of(self, name: str) -> list[RecordedEvent]:
        return [event for event in self.events if event.name == name]
