"""Drain state machine: Running -> Draining -> Quiesced."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from adapters.compose.runtime import ShutdownOutcome, WorkloadRuntime
from adapters.events.sinks import EventSink, LifecycleEvent
from connectors.aws.models import TerminationNotice

from .latch import DrainLatch

logger = logging.getLogger(__name__)


class DrainPhase(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    QUIESCED = "quiesced"


@dataclass(frozen=True)
class DrainTimings:
    shutdown_timeout_seconds: float = 115.0
    quiesce_idle_seconds: float = 300.0


class DrainController:
    """Owns ``DrainPhase`` for the process. Only the watcher calls ``trigger``.

    ``Quiesced`` is terminal: after it is reached the controller sleeps so a
    supervisor cannot bring services back before the node is reclaimed.
    """

    def __init__(
        self,
        *,
        runtime: WorkloadRuntime,
        events: EventSink,
        timings: DrainTimings | None = None,
        latch: DrainLatch | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runtime = runtime
        self._events = events
        self._timings = timings or DrainTimings()
        self._latch = latch
        self._sleep = sleep
        self._shutdown_outcome: ShutdownOutcome | None = None
        self._phase = DrainPhase.RUNNING
        if latch is not None and latch.engaged():
            # A previous agent process already drained this node.
            self._phase = DrainPhase.QUIESCED
            logger.warning(
                "drain_latch_already_engaged",
                extra={"event": "drain_restore", "latch": str(latch.path), "details": latch.details()},
            )

    @property
    def phase(self) -> DrainPhase:
        return self._phase

    @property
    def shutdown_outcome(self) -> ShutdownOutcome | None:
        return self._shutdown_outcome

    def trigger(self, notice: TerminationNotice | None = None) -> bool:
        """Drain once. Returns ``False`` if draining already began."""

        if self._phase is not DrainPhase.RUNNING:
            return False

        self._phase = DrainPhase.DRAINING
        notice_payload: dict[str, Any] = notice.to_payload() if notice is not None else {}
        if self._latch is not None:
            try:
                self._latch.engage(**notice_payload)
            except Exception:  # noqa: BLE001
                logger.exception("drain_latch_engage_failed", extra={"event": "drain_latch"})
        self._emit(
            LifecycleEvent.DRAIN_TRIGGERED,
            notice=notice_payload,
            shutdown_timeout_seconds=self._timings.shutdown_timeout_seconds,
        )

        started = time.monotonic()
        outcome = self._bounded_shutdown()
        self._shutdown_outcome = outcome

        self._phase = DrainPhase.QUIESCED
        self._emit(
            LifecycleEvent.QUIESCED,
            shutdown=outcome.value,
            elapsed_seconds=round(time.monotonic() - started, 3),
            idle_seconds=self._timings.quiesce_idle_seconds,
        )
        self._sleep(self._timings.quiesce_idle_seconds)
        return True

    def _emit(self, name: LifecycleEvent, **fields: Any) -> None:
        try:
            self._events.emit(name, **fields)
        except Exception:  # noqa: BLE001
            logger.exception("drain_event_emit_failed", extra={"event": "drain_event", "lifecycle_event": name.value})

    def _bounded_shutdown(self) -> ShutdownOutcome:
        timeout = self._timings.shutdown_timeout_seconds
        result: dict[str, ShutdownOutcome] = {}

        def _down() -> None:
            try:
                result["outcome"] = self._runtime.down(timeout=timeout)
            except Exception:  # noqa: BLE001 - a failed drain degrades to an ungraceful kill
                logger.exception("workload_shutdown_failed", extra={"event": "drain_shutdown"})
                result["outcome"] = ShutdownOutcome.FAILED

        worker = threading.Thread(target=_down, name="drain-shutdown", daemon=True)
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            logger.warning(
                "workload_shutdown_timeout",
                extra={"event": "drain_shutdown", "timeout_seconds": timeout},
            )
            return ShutdownOutcome.TIMEOUT
        return result.get("outcome", ShutdownOutcome.FAILED)
