"""Preemption watch and drain service primitives."""

from .controller import DrainController, DrainPhase, DrainTimings
from .latch import DrainLatch, read_boot_id
from .watcher import PreemptionWatcher

__all__ = ["DrainController", "DrainLatch", "DrainPhase", "DrainTimings", "PreemptionWatcher", "read_boot_id"]
