"""Lifecycle event emission adapters."""

from .sinks import (
    EventSink,
    FanOutEventSink,
    InMemoryEventSink,
    JsonLinesEventSink,
    LifecycleEvent,
    LoggingEventSink,
)

__all__ = [
    "EventSink",
    "FanOutEventSink",
    "InMemoryEventSink",
    "JsonLinesEventSink",
    "LifecycleEvent",
    "LoggingEventSink",
]
