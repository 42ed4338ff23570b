"""Node agent composition root and lifecycle orchestration."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from adapters.compose.runtime import ComposeWorkloadRuntime, WorkloadRuntime
from adapters.events.sinks import EventSink, FanOutEventSink, JsonLinesEventSink, LoggingEventSink
from connectors.aws.dependencies import AwsDependencies, build_aws_dependencies
from connectors.aws.errors import NodeErrorCode
from services.bootstrap.materialize import WorkloadMaterializer
from services.bootstrap.record import BootstrapRecord
from services.bootstrap.sequencer import BootstrapError, BootstrapReport, BootstrapSequencer
from services.drain.controller import DrainController
from services.drain.latch import DrainLatch, read_boot_id
from services.drain.watcher import PreemptionWatcher

from .config import NodeAgentConfig

logger = logging.getLogger(__name__)

StatePublisher = Callable[["AgentState"], None]


@dataclass(slots=True)
class AgentState:
    bootstrap_started: bool = False
    bootstrap_complete: bool = False
    watcher_running: bool = False
    artifact_key: str | None = None
    manifest: str | None = None
    drain_phase: str = "running"
    last_error: str | None = None
    last_error_code: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "bootstrap": {
                "started": self.bootstrap_started,
                "complete": self.bootstrap_complete,
                "artifact_key": self.artifact_key,
                "manifest": self.manifest,
            },
            "watcher_running": self.watcher_running,
            "drain_phase": self.drain_phase,
            "last_error": self.last_error,
            "last_error_code": self.last_error_code,
        }


def status_file_publisher(path: str | Path) -> StatePublisher:
    """Publish agent state as a JSON document, replaced atomically."""

    target = Path(path)

    def _publish(state: AgentState) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = target.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(state.to_payload(), sort_keys=True), encoding="utf-8")
            os.replace(tmp_path, target)
        except OSError as exc:
            logger.warning("agent_status_write_failed", extra={"event": "status", "path": str(target), "error": str(exc)})

    return _publish


def read_status_file(path: str | Path) -> dict[str, Any] | None:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("agent_status_unreadable", extra={"event": "status", "path": str(path), "error": str(exc)})
        return {}
    return payload if isinstance(payload, dict) else {}


def default_event_sink(config: NodeAgentConfig) -> EventSink:
    return FanOutEventSink([LoggingEventSink(), JsonLinesEventSink(config.paths.journal_path)])


def default_runtime(config: NodeAgentConfig, materializer: WorkloadMaterializer) -> WorkloadRuntime:
    return ComposeWorkloadRuntime(
        compose_command=config.compose_command,
        pull_before_up=config.pull_before_up,
        manifest_resolver=materializer.current_manifest,
    )


def default_connectors(config: NodeAgentConfig) -> AwsDependencies:
    return build_aws_dependencies(config.aws)


@dataclass(slots=True)
class NodeAgentCompositionRoot:
    """Builds node agent dependencies and runs bootstrap then the watcher.

    Bootstrap runs on the calling thread and must complete before the watcher
    starts. ``watch`` runs the watcher alone for a supervisor-managed process
    started after a separate bootstrap.
    """

    config_loader: Callable[[], NodeAgentConfig]
    connector_factory: Callable[[NodeAgentConfig], AwsDependencies] = default_connectors
    runtime_factory: Callable[[NodeAgentConfig, WorkloadMaterializer], WorkloadRuntime] = default_runtime
    event_sink_factory: Callable[[NodeAgentConfig], EventSink] = default_event_sink
    state_publisher: StatePublisher = lambda _: None
    sleep: Callable[[float], None] = time.sleep
    boot_id_reader: Callable[[], str | None] = read_boot_id

    _state: AgentState = field(default_factory=AgentState, init=False)
    _resolved: dict[str, Any] = field(default_factory=dict, init=False)

    @property
    def state(self) -> AgentState:
        return self._state

    def build(self) -> dict[str, Any]:
        if self._resolved:
            return self._resolved

        config = self.config_loader()
        connectors = self.connector_factory(config)
        events = self.event_sink_factory(config)
        materializer = WorkloadMaterializer(config.paths.workload_root)
        runtime = self.runtime_factory(config, materializer)
        latch = DrainLatch(config.paths.drain_latch, boot_id_reader=self.boot_id_reader)
        boot_record = BootstrapRecord(config.paths.bootstrap_record, boot_id_reader=self.boot_id_reader)
        drain_controller = DrainController(
            runtime=runtime,
            events=events,
            timings=config.drain.timings(),
            latch=latch,
            sleep=self.sleep,
        )
        self._resolved.update(
            config=config,
            connectors=connectors,
            events=events,
            materializer=materializer,
            runtime=runtime,
            latch=latch,
            boot_record=boot_record,
            drain_controller=drain_controller,
            sequencer=BootstrapSequencer(
                pointer_name=config.aws.pointer_name,
                pointer_store=connectors.pointers,
                artifact_store=connectors.artifacts,
                materializer=materializer,
                runtime=runtime,
                events=events,
                retry=config.aws.retry,
                drain_latch=latch,
                boot_record=boot_record,
                sleep=self.sleep,
            ),
            watcher=PreemptionWatcher(
                notice_source=connectors.notices,
                drain_controller=drain_controller,
                poll_interval_seconds=config.drain.poll_interval_seconds,
                sleep=self.sleep,
            ),
        )
        self._state.drain_phase = drain_controller.phase.value
        return self._resolved

    def bootstrap(self) -> BootstrapReport:
        resolved = self.build()
        self._state.bootstrap_started = True
        self._publish()
        try:
            report = resolved["sequencer"].run()
        except BootstrapError as exc:
            previous = resolved["boot_record"].completed_this_boot()
            if exc.code is NodeErrorCode.BOOTSTRAP_ALREADY_RAN and previous is not None:
                self._state.bootstrap_complete = True
                self._state.artifact_key = previous.get("artifact_key")
                self._state.manifest = previous.get("manifest")
            else:
                self._state.last_error = str(exc)
                self._state.last_error_code = exc.code.value
            self._publish()
            raise
        self._state.bootstrap_complete = True
        self._state.artifact_key = report.artifact_key
        self._state.manifest = str(report.manifest_path)
        self._publish()
        return report

    def watch(self, *, max_cycles: int | None = None) -> PreemptionWatcher:
        resolved = self.build()
        watcher: PreemptionWatcher = resolved["watcher"]
        self._state.watcher_running = True
        self._publish()
        try:
            watcher.run(max_cycles=max_cycles)
        finally:
            self._state.watcher_running = False
            self._state.drain_phase = resolved["drain_controller"].phase.value
            self._publish()
        return watcher

    def run(self, *, max_cycles: int | None = None) -> BootstrapReport | None:
        """Bootstrap, then block on the watcher thread until the process ends.

        A restart on a boot that already completed bootstrap goes straight to
        the watcher and returns ``None``.
        """

        try:
            report: BootstrapReport | None = self.bootstrap()
        except BootstrapError as exc:
            if exc.code is not NodeErrorCode.BOOTSTRAP_ALREADY_RAN or not self._state.bootstrap_complete:
                raise
            logger.info("bootstrap_skipped", extra={"event": "bootstrap_skipped", "artifact_key": self._state.artifact_key})
            report = None
        resolved = self._resolved
        watcher: PreemptionWatcher = resolved["watcher"]
        thread = watcher.start() if max_cycles is None else None
        self._state.watcher_running = True
        self._publish()
        if thread is None:
            watcher.run(max_cycles=max_cycles)
        else:
            while thread.is_alive():
                thread.join(timeout=60.0)
                self._state.drain_phase = resolved["drain_controller"].phase.value
                self._publish()
        self._state.watcher_running = False
        self._state.drain_phase = resolved["drain_controller"].phase.value
        self._publish()
        return report

    def _publish(self) -> None:
        self.state_publisher(self._state)
