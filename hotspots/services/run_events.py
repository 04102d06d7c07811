"""Structured events emitted during a clustering run.

Every event is kept in memory on the collector and mirrored to the module
logger, so callers (and tests) can inspect what happened without parsing
log output.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class RunEvent:
    name: str
    level: int = logging.INFO
    fields: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        details = " ".join(f"{key}={value}" for key, value in self.fields.items())
        return f"{self.name} {details}".rstrip()


class RunEventCollector:
    """Records run events and logs them as they arrive."""

    def __init__(self, log: logging.Logger | None = None):
        self.events: list[RunEvent] = []
        self._logger = log or logger

    def emit(self, name: str, level: int = logging.INFO, **fields: Any) -> RunEvent:
        event = RunEvent(name=name, level=level, fields=fields)
        self.events.append(event)
        self._logger.log(level, f"[clustering] {event.format()}")
        return event

    def names(self) -> list[str]:
        return [event.name for event in self.events]

    def find(self, name: str) -> list[RunEvent]:
        return [event for event in self.events if event.name == name]
