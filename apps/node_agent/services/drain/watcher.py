"""Edge-triggered preemption watcher loop."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from connectors.aws.errors import ConnectorError, NodeErrorCode, map_metadata_error
from connectors.aws.interfaces import TerminationNoticeSource
from connectors.aws.models import TerminationNotice

from .controller import DrainController

logger = logging.getLogger(__name__)


class PreemptionWatcher:
    """Polls the notice source at a fixed interval for the life of the process.

    Only the first pending reading triggers the drain controller; later
    readings, pending or not, are observed and ignored. Query errors count
    as "no notice" and never stop the loop.
    """

    def __init__(
        self,
        *,
        notice_source: TerminationNoticeSource,
        drain_controller: DrainController,
        poll_interval_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._notice_source = notice_source
        self._drain_controller = drain_controller
        self._poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._triggered = False
        self._cycles = 0
        self._query_errors = 0
        self._thread: threading.Thread | None = None

    @property
    def triggered(self) -> bool:
        return self._triggered

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def query_errors(self) -> int:
        return self._query_errors

    def poll_once(self) -> TerminationNotice:
        """Run one query-and-react cycle without sleeping."""

        self._cycles += 1
        notice = self._query()
        if notice.pending and not self._triggered:
            self._triggered = True
            logger.warning(
                "termination_notice_received",
                extra={"event": "notice", "cycle": self._cycles, **notice.to_payload()},
            )
            try:
                self._drain_controller.trigger(notice)
            except Exception:  # noqa: BLE001 - the loop outlives a failed drain
                logger.exception("drain_trigger_failed", extra={"event": "notice", "cycle": self._cycles})
        return notice

    def run(self, *, max_cycles: int | None = None) -> None:
        """Poll forever, or for ``max_cycles`` cycles."""

        logger.info(
            "preemption_watcher_started",
            extra={"event": "watcher_start", "poll_interval_seconds": self._poll_interval_seconds},
        )
        completed = 0
        while max_cycles is None or completed < max_cycles:
            self.poll_once()
            completed += 1
            self._sleep(self._poll_interval_seconds)

    def start(self) -> threading.Thread:
        if self._thread is not None:
            raise RuntimeError("preemption watcher already started")
        self._thread = threading.Thread(target=self.run, name="preemption-watcher", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _query(self) -> TerminationNotice:
        try:
            return self._notice_source.poll()
        except Exception as exc:  # noqa: BLE001 - an unreachable source reads as "no notice"
            mapped = exc if isinstance(exc, ConnectorError) else map_metadata_error(exc)
            self._query_errors += 1
            logger.debug(
                "termination_notice_query_failed",
                extra={
                    "event": "notice_query",
                    "code": NodeErrorCode.SIGNAL_QUERY_ERROR.value,
                    "cycle": self._cycles,
                    "error": str(mapped),
                },
            )
            return TerminationNotice.none()
