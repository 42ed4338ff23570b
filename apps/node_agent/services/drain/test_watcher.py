from __future__ import annotations

from pathlib import Path

from adapters.compose.runtime import ShutdownOutcome
from adapters.events.sinks import InMemoryEventSink, JsonLinesEventSink
from connectors.aws.errors import ConnectorError, NodeErrorCode
from connectors.aws.models import TerminationNotice
from services.drain.controller import DrainController, DrainPhase
from services.drain.watcher import PreemptionWatcher


class ScriptedNoticeSource:
    """Replays readings; ``True``/``False`` map to notices, exceptions are raised."""

    def __init__(self, readings: list[object]) -> None:
        self.readings = list(readings)
        self.polls = 0

    def poll(self) -> TerminationNotice:
        self.polls += 1
        reading = self.readings.pop(0) if self.readings else False
        if isinstance(reading, Exception):
            raise reading
        if reading:
            return TerminationNotice(pending=True, action="terminate", time="2026-10-16T12:02:00Z")
        return TerminationNotice.none()


class RecordingController:
    def __init__(self) -> None:
        self.triggers: list[TerminationNotice | None] = []

    def trigger(self, notice: TerminationNotice | None = None) -> bool:
        self.triggers.append(notice)
        return True


class FakeRuntime:
    def __init__(self) -> None:
        self.down_calls: list[float] = []

    def up(self, manifest_path: str) -> None:
        raise AssertionError("watcher must never start services")

    def down(self, timeout: float) -> ShutdownOutcome:
        self.down_calls.append(timeout)
        return ShutdownOutcome.OK


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_only_the_first_pending_reading_triggers_drain() -> None:
    source = ScriptedNoticeSource([False, False, True, True, True, False, True])
    controller = RecordingController()
    sleep = RecordingSleep()
    watcher = PreemptionWatcher(notice_source=source, drain_controller=controller, poll_interval_seconds=5.0, sleep=sleep)

    triggered_at: list[int] = []
    for _ in range(7):
        before = len(controller.triggers)
        watcher.poll_once()
        if len(controller.triggers) > before:
            triggered_at.append(watcher.cycles)

    assert triggered_at == [3]
    assert controller.triggers[0].action == "terminate"
    assert watcher.triggered is True
    assert source.polls == 7


def test_query_errors_count_as_no_notice_and_polling_continues() -> None:
    source = ScriptedNoticeSource(
        [
            ConnectorError(NodeErrorCode.SIGNAL_QUERY_ERROR, "connection refused"),
            OSError("no route to host"),
            False,
            True,
        ]
    )
    controller = RecordingController()
    sleep = RecordingSleep()
    watcher = PreemptionWatcher(notice_source=source, drain_controller=controller, poll_interval_seconds=5.0, sleep=sleep)

    watcher.run(max_cycles=4)

    assert watcher.query_errors == 2
    assert watcher.cycles == 4
    assert len(controller.triggers) == 1
    assert sleep.delays == [5.0, 5.0, 5.0, 5.0]


def test_notice_at_fourth_poll_drives_controller_to_quiesced() -> None:
    events = InMemoryEventSink()
    runtime = FakeRuntime()
    idle = RecordingSleep()
    controller = DrainController(runtime=runtime, events=events, sleep=idle)
    poll_sleep = RecordingSleep()
    watcher = PreemptionWatcher(
        notice_source=ScriptedNoticeSource([False, False, False, True, True, True]),
        drain_controller=controller,
        poll_interval_seconds=5.0,
        sleep=poll_sleep,
    )

    watcher.run(max_cycles=6)

    assert controller.phase is DrainPhase.QUIESCED
    assert len(runtime.down_calls) == 1
    assert events.names() == ["drain_triggered", "quiesced"]
    assert len(idle.delays) == 1
    assert len(poll_sleep.delays) == 6


class ExplodingController:
    def __init__(self) -> None:
        self.calls = 0

    def trigger(self, notice: TerminationNotice | None = None) -> bool:
        self.calls += 1
        raise RuntimeError("drain blew up")


def test_drain_failure_does_not_stop_polling() -> None:
    source = ScriptedNoticeSource([False, True, False, True])
    controller = ExplodingController()
    sleep = RecordingSleep()
    watcher = PreemptionWatcher(notice_source=source, drain_controller=controller, poll_interval_seconds=5.0, sleep=sleep)

    watcher.run(max_cycles=4)

    assert controller.calls == 1
    assert source.polls == 4
    assert len(sleep.delays) == 4


def test_unwritable_event_journal_still_drains_and_keeps_polling(tmp_path: Path) -> None:
    blocker = tmp_path / "state"
    blocker.write_text("not a directory", encoding="utf-8")
    runtime = FakeRuntime()
    controller = DrainController(
        runtime=runtime,
        events=JsonLinesEventSink(blocker / "events.jsonl"),
        sleep=RecordingSleep(),
    )
    source = ScriptedNoticeSource([False, True, False, False])
    watcher = PreemptionWatcher(
        notice_source=source,
        drain_controller=controller,
        poll_interval_seconds=5.0,
        sleep=RecordingSleep(),
    )

    watcher.run(max_cycles=4)

    assert len(runtime.down_calls) == 1
    assert controller.phase is DrainPhase.QUIESCED
    assert source.polls == 4
