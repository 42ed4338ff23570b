"""Compose-based workload runtime adapter."""

from .runtime import (
    CommandResult,
    ComposeWorkloadRuntime,
    ShutdownOutcome,
    SubprocessRunner,
    WorkloadRuntime,
)

__all__ = [
    "CommandResult",
    "ComposeWorkloadRuntime",
    "ShutdownOutcome",
    "SubprocessRunner",
    "WorkloadRuntime",
]
