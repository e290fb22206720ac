"""Observer capability injected into the service and the HTTP adapter."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol


class Observer(Protocol):
    def record(self, level: int, event: str, **context: Any) -> None:
        ...


class LoggingObserver:
    """Forward events to a standard library logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("roster.students")

    def record(self, level: int, event: str, **context: Any) -> None:
        if context:
            details = " ".join(f"{key}={value!r}" for key, value in sorted(context.items()))
            self._logger.log(level, "%s (%s)", event, details)
        else:
            self._logger.log(level, "%s", event)


class NullObserver:
    def record(self, level: int, event: str, **context: Any) -> None:
        return None


@dataclass
class ObservedEvent:
    level: int
    event: str
    context: Dict[str, Any] = field(default_factory=dict)


class RecordingObserver:
    """Keep every event in memory so callers can inspect them afterwards."""

    def __init__(self) -> None:
        self.events: List[ObservedEvent] = []

    def record(self, level: int, event: str, **context: Any) -> None:
        self.events.append(ObservedEvent(level=level, event=event, context=dict(context)))

    def named(self, event: str) -> List[ObservedEvent]:
        return [item for item in self.events if item.event == event]


__all__ = ["Observer", "LoggingObserver", "NullObserver", "ObservedEvent", "RecordingObserver"]
