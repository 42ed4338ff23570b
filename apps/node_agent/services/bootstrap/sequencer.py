"""One-shot node bootstrap: resolve pointer, fetch, materialize, activate."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from adapters.compose.runtime import WorkloadRuntime
from adapters.events.sinks import EventSink, LifecycleEvent
from connectors.aws.config import RetryConfig
from connectors.aws.errors import (
    ConnectorError,
    NodeErrorCode,
    map_artifact_store_error,
    map_control_plane_error,
)
from connectors.aws.interfaces import ArtifactStore, VersionPointerStore
from connectors.aws.models import Artifact, VersionPointer
from services.drain.latch import DrainLatch

from .materialize import MaterializationResult, RootState, WorkloadMaterializer
from .record import BootstrapRecord
from .retry import call_with_retry

logger = logging.getLogger(__name__)


class BootstrapStep(str, Enum):
    RESOLVE_POINTER = "resolve_pointer"
    FETCH_ARTIFACT = "fetch_artifact"
    MATERIALIZE = "materialize"
    ACTIVATE = "activate"


class BootstrapError(ConnectorError):
    """Fatal bootstrap failure. Bootstrap halts; there is no degraded mode."""

    def __init__(
        self,
        code: NodeErrorCode,
        message: str,
        *,
        step: BootstrapStep | None,
        cause: Exception | None = None,
        attempts: int = 1,
    ):
        super().__init__(code, message, cause=cause)
        self.step = step
        self.attempts = attempts


@dataclass(frozen=True)
class BootstrapReport:
    pointer: VersionPointer
    artifact_key: str
    sha256: str
    manifest_path: Path
    prior_root_state: RootState
    attempts: dict[str, int] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "pointer_name": self.pointer.name,
            "artifact_key": self.artifact_key,
            "sha256": self.sha256,
            "manifest": str(self.manifest_path),
            "prior_root_state": self.prior_root_state.value,
            "attempts": dict(self.attempts),
        }


class BootstrapSequencer:
    """Runs the four bootstrap steps strictly in order, exactly once.

    Each step starts only after the previous one fully succeeded. Every fatal
    error emits an event named after its code before ``BootstrapError`` is
    raised to the caller.
    """

    def __init__(
        self,
        *,
        pointer_name: str,
        pointer_store: VersionPointerStore,
        artifact_store: ArtifactStore,
        materializer: WorkloadMaterializer,
        runtime: WorkloadRuntime,
        events: EventSink,
        retry: RetryConfig | None = None,
        drain_latch: DrainLatch | None = None,
        boot_record: BootstrapRecord | None = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = lambda: random.uniform(-1.0, 1.0),
    ) -> None:
        self._pointer_name = pointer_name
        self._pointer_store = pointer_store
        self._artifact_store = artifact_store
        self._materializer = materializer
        self._runtime = runtime
        self._events = events
        self._retry = retry or RetryConfig()
        self._drain_latch = drain_latch
        self._boot_record = boot_record
        self._sleep = sleep
        self._jitter = jitter
        self._lock = threading.Lock()
        self._started = False

    def run(self) -> BootstrapReport:
        with self._lock:
            if self._started:
                raise BootstrapError(
                    NodeErrorCode.BOOTSTRAP_ALREADY_RAN,
                    "bootstrap runs once per node lifetime",
                    step=None,
                )
            self._started = True

        previous = self._boot_record.completed_this_boot() if self._boot_record is not None else None
        if previous is not None:
            logger.warning(
                "bootstrap_already_completed_this_boot",
                extra={"event": "bootstrap_skipped", "artifact_key": previous.get("artifact_key")},
            )
            raise BootstrapError(
                NodeErrorCode.BOOTSTRAP_ALREADY_RAN,
                f"bootstrap already completed on this boot for {previous.get('artifact_key')}",
                step=None,
            )

        self._events.emit(LifecycleEvent.BOOTSTRAP_STARTED, pointer_name=self._pointer_name)
        attempts: dict[str, int] = {}

        pointer, attempts[BootstrapStep.RESOLVE_POINTER.value] = self._resolve_pointer()
        self._events.emit(
            LifecycleEvent.POINTER_RESOLVED,
            pointer_name=pointer.name,
            artifact_key=pointer.value,
            attempts=attempts[BootstrapStep.RESOLVE_POINTER.value],
        )

        artifact, attempts[BootstrapStep.FETCH_ARTIFACT.value] = self._fetch_artifact(pointer.value)
        self._events.emit(
            LifecycleEvent.ARTIFACT_FETCHED,
            artifact_key=artifact.key,
            sha256=artifact.sha256,
            bytes=artifact.size,
            attempts=attempts[BootstrapStep.FETCH_ARTIFACT.value],
        )

        materialized = self._materialize(artifact)
        self._events.emit(
            LifecycleEvent.WORKLOAD_MATERIALIZED,
            artifact_key=artifact.key,
            root=str(materialized.root),
            manifest=str(materialized.manifest_path),
            prior_root_state=materialized.prior_state.value,
        )

        self._activate(artifact, materialized)
        report = BootstrapReport(
            pointer=pointer,
            artifact_key=artifact.key,
            sha256=artifact.sha256,
            manifest_path=materialized.manifest_path,
            prior_root_state=materialized.prior_state,
            attempts=attempts,
        )
        self._record_completion(report)
        self._events.emit(LifecycleEvent.BOOTSTRAP_COMPLETE, **report.to_payload())
        return report

    def _record_completion(self, report: BootstrapReport) -> None:
        if self._boot_record is None:
            return
        try:
            self._boot_record.record(**report.to_payload())
        except OSError as exc:
            logger.error(
                "bootstrap_record_write_failed",
                extra={"event": "bootstrap_record", "path": str(self._boot_record.path), "error": str(exc)},
            )

    def _resolve_pointer(self) -> tuple[VersionPointer, int]:
        return self._with_retry(
            BootstrapStep.RESOLVE_POINTER,
            lambda: self._pointer_store.get(self._pointer_name),
            mapper=map_control_plane_error,
            description=f"resolve pointer {self._pointer_name}",
        )

    def _fetch_artifact(self, key: str) -> tuple[Artifact, int]:
        return self._with_retry(
            BootstrapStep.FETCH_ARTIFACT,
            lambda: self._artifact_store.get(key),
            mapper=map_artifact_store_error,
            description=f"fetch artifact {key}",
        )

    def _materialize(self, artifact: Artifact) -> MaterializationResult:
        try:
            return self._materializer.materialize(artifact)
        except ConnectorError as exc:
            raise self._fail(BootstrapStep.MATERIALIZE, exc) from exc
        except Exception as exc:  # anything else during unpack is still a materialization failure
            mapped = ConnectorError(NodeErrorCode.MATERIALIZATION_FAILED, str(exc), cause=exc)
            raise self._fail(BootstrapStep.MATERIALIZE, mapped) from exc

    def _activate(self, artifact: Artifact, materialized: MaterializationResult) -> None:
        try:
            if self._drain_latch is not None and self._drain_latch.engaged():
                raise ConnectorError(
                    NodeErrorCode.WORKLOAD_ACTIVATION_FAILED,
                    "node is draining; workload restarts are refused",
                )
            if not self._materializer.is_materialized(artifact.key):
                raise ConnectorError(
                    NodeErrorCode.WORKLOAD_ACTIVATION_FAILED,
                    f"workload root has no completion marker for {artifact.key}",
                )
            self._runtime.up(str(materialized.manifest_path))
        except ConnectorError as exc:
            if exc.code is not NodeErrorCode.WORKLOAD_ACTIVATION_FAILED:
                exc = ConnectorError(NodeErrorCode.WORKLOAD_ACTIVATION_FAILED, str(exc), cause=exc)
            raise self._fail(BootstrapStep.ACTIVATE, exc) from exc
        except Exception as exc:  # noqa: BLE001
            mapped = ConnectorError(NodeErrorCode.WORKLOAD_ACTIVATION_FAILED, str(exc), cause=exc)
            raise self._fail(BootstrapStep.ACTIVATE, mapped) from exc

    def _with_retry(self, step: BootstrapStep, operation, *, mapper, description: str):
        attempts_seen = 0

        def counted():
            nonlocal attempts_seen
            attempts_seen += 1
            return operation()

        try:
            return call_with_retry(
                counted,
                retry=self._retry,
                mapper=mapper,
                description=description,
                sleep=self._sleep,
                jitter=self._jitter,
            )
        except ConnectorError as exc:
            raise self._fail(step, exc, attempts=attempts_seen) from exc

    def _fail(self, step: BootstrapStep, error: ConnectorError, *, attempts: int = 1) -> BootstrapError:
        logger.error(
            "bootstrap_failed",
            extra={"event": "bootstrap_failed", "step": step.value, "code": error.code.value, "attempts": attempts},
        )
        self._events.emit(
            error.code.value,
            step=step.value,
            message=str(error),
            attempts=attempts,
            fatal=True,
        )
        return BootstrapError(error.code, str(error), step=step, cause=error.cause or error, attempts=attempts)
