"""Append-only lifecycle event sinks.

Lifecycle events are the node's observability boundary: the agent's only
obligation is to emit them. Delivery and retention belong to whatever tails
the log or the journal file.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

lifecycle_logger = logging.getLogger("node_agent.lifecycle")


class LifecycleEvent(str, Enum):
    BOOTSTRAP_STARTED = "bootstrap_started"
    POINTER_RESOLVED = "pointer_resolved"
    ARTIFACT_FETCHED = "artifact_fetched"
    WORKLOAD_MATERIALIZED = "workload_materialized"
    BOOTSTRAP_COMPLETE = "bootstrap_complete"
    DRAIN_TRIGGERED = "drain_triggered"
    QUIESCED = "quiesced"


class EventSink(Protocol):
    def emit(self, name: str, **fields: Any) -> None:
        """Append one lifecycle event."""


def build_record(name: str, fields: dict[str, Any]) -> dict[str, Any]:
    return {"event": str(getattr(name, "value", name)), "emitted_at": _now_iso(), **fields}


@dataclass
class LoggingEventSink(EventSink):
    """Re-emits lifecycle events as structured log records."""

    logger: logging.Logger = field(default=lifecycle_logger)
    level: int = logging.INFO

    def emit(self, name: str, **fields: Any) -> None:
        record = build_record(name, fields)
        self.logger.log(self.level, record["event"], extra={"lifecycle": record})


class JsonLinesEventSink(EventSink):
    """Appends one JSON document per event and fsyncs before returning.

    The fsync is what lets ``drain_triggered`` survive a shutdown call that
    never returns.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, name: str, **fields: Any) -> None:
        line = json.dumps(build_record(name, fields), sort_keys=True, default=str)
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
                handle.flush()
                os.fsync(handle.fileno())


@dataclass
class InMemoryEventSink(EventSink):
    records: list[dict[str, Any]] = field(default_factory=list)

    def emit(self, name: str, **fields: Any) -> None:
        self.records.append(build_record(name, fields))

    def names(self) -> list[str]:
        return [record["event"] for record in self.records]


@dataclass
class FanOutEventSink(EventSink):
    """Emits to every sink in order; one failing sink does not mute the rest."""

    sinks: list[EventSink] = field(default_factory=list)

    def emit(self, name: str, **fields: Any) -> None:
        for sink in self.sinks:
            try:
                sink.emit(name, **fields)
            except Exception:  # noqa: BLE001
                logging.getLogger(__name__).exception(
                    "lifecycle_sink_failed",
                    extra={"event": "sink_failed", "sink": type(sink).__name__, "lifecycle_event": str(getattr(name, "value", name))},
                )


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
