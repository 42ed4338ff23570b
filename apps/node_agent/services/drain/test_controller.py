from __future__ import annotations

import threading
from pathlib import Path

from adapters.compose.runtime import ShutdownOutcome
from adapters.events.sinks import InMemoryEventSink, JsonLinesEventSink
from connectors.aws.models import TerminationNotice
from services.drain.controller import DrainController, DrainPhase, DrainTimings
from services.drain.latch import DrainLatch


class FakeRuntime:
    def __init__(self, events: InMemoryEventSink, outcome: ShutdownOutcome = ShutdownOutcome.OK) -> None:
        self.events = events
        self.outcome = outcome
        self.down_calls: list[float] = []
        self.events_seen_at_down: list[list[str]] = []

    def up(self, manifest_path: str) -> None:
        raise AssertionError("drain must never start services")

    def down(self, timeout: float) -> ShutdownOutcome:
        self.down_calls.append(timeout)
        self.events_seen_at_down.append(self.events.names())
        return self.outcome


class StalledRuntime(FakeRuntime):
    def __init__(self, events: InMemoryEventSink) -> None:
        super().__init__(events)
        self.release = threading.Event()

    def down(self, timeout: float) -> ShutdownOutcome:
        self.down_calls.append(timeout)
        self.release.wait(5.0)
        return ShutdownOutcome.OK


class ExplodingRuntime(FakeRuntime):
    def down(self, timeout: float) -> ShutdownOutcome:
        self.down_calls.append(timeout)
        raise RuntimeError("docker daemon unreachable")


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


NOTICE = TerminationNotice(pending=True, action="terminate", time="2026-10-16T12:02:00Z")


def test_trigger_records_drain_before_shutdown_and_quiesces(tmp_path: Path) -> None:
    events = InMemoryEventSink()
    runtime = FakeRuntime(events)
    sleep = RecordingSleep()
    latch = DrainLatch(tmp_path / "drain.latch")
    controller = DrainController(
        runtime=runtime,
        events=events,
        timings=DrainTimings(shutdown_timeout_seconds=30.0, quiesce_idle_seconds=300.0),
        latch=latch,
        sleep=sleep,
    )
    assert controller.phase is DrainPhase.RUNNING

    assert controller.trigger(NOTICE) is True

    assert runtime.events_seen_at_down == [["drain_triggered"]]
    assert runtime.down_calls == [30.0]
    assert events.names() == ["drain_triggered", "quiesced"]
    assert events.records[0]["notice"]["action"] == "terminate"
    assert events.records[1]["shutdown"] == "ok"
    assert controller.phase is DrainPhase.QUIESCED
    assert controller.shutdown_outcome is ShutdownOutcome.OK
    assert sleep.delays == [300.0]
    assert latch.engaged()
    assert latch.details()["action"] == "terminate"


def test_second_trigger_is_a_no_op() -> None:
    events = InMemoryEventSink()
    runtime = FakeRuntime(events)
    controller = DrainController(runtime=runtime, events=events, sleep=RecordingSleep())

    assert controller.trigger(NOTICE) is True
    assert controller.trigger(NOTICE) is False

    assert len(runtime.down_calls) == 1
    assert events.names() == ["drain_triggered", "quiesced"]


def test_shutdown_that_exceeds_its_budget_still_quiesces() -> None:
    events = InMemoryEventSink()
    runtime = StalledRuntime(events)
    controller = DrainController(
        runtime=runtime,
        events=events,
        timings=DrainTimings(shutdown_timeout_seconds=0.05, quiesce_idle_seconds=1.0),
        sleep=RecordingSleep(),
    )

    try:
        controller.trigger(NOTICE)
    finally:
        runtime.release.set()

    assert controller.phase is DrainPhase.QUIESCED
    assert controller.shutdown_outcome is ShutdownOutcome.TIMEOUT
    assert events.records[-1]["shutdown"] == "timeout"


def test_shutdown_error_degrades_to_failed_outcome() -> None:
    events = InMemoryEventSink()
    controller = DrainController(runtime=ExplodingRuntime(events), events=events, sleep=RecordingSleep())

    assert controller.trigger() is True

    assert controller.phase is DrainPhase.QUIESCED
    assert controller.shutdown_outcome is ShutdownOutcome.FAILED
    assert events.records[0]["notice"] == {}
    assert events.names() == ["drain_triggered", "quiesced"]


def test_engaged_latch_restores_quiesced_phase(tmp_path: Path) -> None:
    DrainLatch(tmp_path / "drain.latch").engage(action="stop")
    events = InMemoryEventSink()
    runtime = FakeRuntime(events)

    controller = DrainController(runtime=runtime, events=events, latch=DrainLatch(tmp_path / "drain.latch"))

    assert controller.phase is DrainPhase.QUIESCED
    assert controller.trigger(NOTICE) is False
    assert runtime.down_calls == []
    assert events.names() == []


def test_failing_event_sink_does_not_stop_the_drain(tmp_path: Path) -> None:
    blocker = tmp_path / "state"
    blocker.write_text("not a directory", encoding="utf-8")
    runtime = FakeRuntime(InMemoryEventSink())
    sleep = RecordingSleep()
    controller = DrainController(
        runtime=runtime,
        events=JsonLinesEventSink(blocker / "events.jsonl"),
        timings=DrainTimings(shutdown_timeout_seconds=30.0, quiesce_idle_seconds=300.0),
        sleep=sleep,
    )

    assert controller.trigger(NOTICE) is True

    assert runtime.down_calls == [30.0]
    assert controller.phase is DrainPhase.QUIESCED
    assert controller.shutdown_outcome is ShutdownOutcome.OK
    assert sleep.delays == [300.0]


def test_latch_from_an_earlier_boot_is_stale(tmp_path: Path) -> None:
    DrainLatch(tmp_path / "drain.latch", boot_id_reader=lambda: "boot-1").engage(action="stop")
    events = InMemoryEventSink()
    runtime = FakeRuntime(events)

    controller = DrainController(
        runtime=runtime,
        events=events,
        latch=DrainLatch(tmp_path / "drain.latch", boot_id_reader=lambda: "boot-2"),
        sleep=RecordingSleep(),
    )

    assert controller.phase is DrainPhase.RUNNING
    assert controller.trigger(NOTICE) is True
    assert runtime.down_calls != []
    assert DrainLatch(tmp_path / "drain.latch", boot_id_reader=lambda: "boot-2").engaged()
