from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from worklog_mcp.api import ApiUnavailableError, FakeApiClient, WorkLedger
from worklog_mcp.reconciliation import ReconciliationCoordinator, StopOptions
from worklog_mcp.timer import (
    RefreshTicker,
    Session,
    SourceRef,
    SourceType,
    SuspendedEntry,
    TimerEngine,
    TimerState,
)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def set(self, hour: int, minute: int, second: int = 0) -> None:
        self.now = self.now.replace(hour=hour, minute=minute, second=second)


class MemoryPersistence:
    def __init__(self) -> None:
        self.session: Session | None = None
        self.stack: list[SuspendedEntry] = []
        self.session_writes = 0
        self.stack_writes = 0

    def save_session(self, session):
        self.session = session.model_copy(deep=True) if session else None
        self.session_writes += 1

    def save_stack(self, entries):
        self.stack = [entry.model_copy(deep=True) for entry in entries]
        self.stack_writes += 1

    def load_session(self):
        return self.session

    def load_stack(self):
        return list(self.stack)


STORY_A = SourceRef(source_type=SourceType.STORY, source_id=1, project_id=10)
STORY_B = SourceRef(source_type=SourceType.STORY, source_id=2, project_id=10)


def _clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 3, 9, 0, 0, tzinfo=timezone.utc))


def test_elapsed_is_monotonic_while_running() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    assert engine.start(STORY_A, "Story A")

    readings = []
    for _ in range(5):
        clock.advance(7)
        readings.append(engine.elapsed())

    assert readings == sorted(readings)
    assert readings[-1] == 35
    assert engine.session.base_seconds == 0


def test_pause_freezes_elapsed() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    engine.start(STORY_A, "Story A")
    clock.advance(65)
    assert engine.pause()

    values = set()
    for _ in range(3):
        clock.advance(120)
        values.add(engine.elapsed())

    assert values == {65}
    assert engine.state is TimerState.PAUSED
    assert engine.session.segment_start is None


def test_resume_continues_from_base() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    engine.start(STORY_A, "Story A")
    clock.advance(65)
    engine.pause()
    clock.advance(235)
    assert engine.resume()
    clock.advance(10)

    assert engine.elapsed() == 75
    assert engine.session.base_seconds == 65


def test_invalid_commands_are_ignored(caplog) -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)

    with caplog.at_level(logging.DEBUG, logger="worklog_mcp.timer.engine"):
        assert engine.pause() is False
        assert engine.resume() is False
        assert engine.interrupt(STORY_B, "Story B") is False
        assert engine.resume_from_stack("missing") is False
        assert asyncio.run(engine.stop()) is None

    assert engine.state is TimerState.IDLE
    assert "Ignoring timer command" in caplog.text

    engine.start(STORY_A, "Story A")
    assert engine.start(STORY_B, "Story B") is False
    assert engine.resume() is False
    assert engine.session.title == "Story A"


def test_interrupt_parks_current_elapsed() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    engine.start(STORY_A, "Story A")
    clock.advance(40)

    assert engine.interrupt(STORY_B, "Story B")

    entries = engine.suspended()
    assert len(entries) == 1
    assert entries[0].title == "Story A"
    assert entries[0].snapshot_seconds == 40
    assert engine.session.title == "Story B"
    assert engine.elapsed() == 0


def test_interrupt_from_paused_uses_frozen_elapsed() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    engine.start(STORY_A, "Story A")
    clock.advance(30)
    engine.pause()
    clock.advance(600)

    engine.interrupt(STORY_B, "Story B")

    assert engine.suspended()[0].snapshot_seconds == 30


def test_resume_from_stack_swaps_active_session() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    engine.start(STORY_A, "Story A")
    clock.advance(40)
    engine.interrupt(STORY_B, "Story B")
    entry_a = engine.suspended()[0]
    clock.advance(12)

    assert engine.resume_from_stack(entry_a.id)

    entries = engine.suspended()
    assert [entry.title for entry in entries] == ["Story B"]
    assert entries[0].snapshot_seconds == 12
    session = engine.session
    assert session.title == "Story A"
    assert session.base_seconds == 40
    assert session.segment_start == clock.now
    assert session.original_start is None
    clock.advance(5)
    assert engine.elapsed() == 45


def test_resume_any_parked_entry_by_id() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    story_c = SourceRef(source_type=SourceType.STORY, source_id=3, project_id=10)
    engine.start(STORY_A, "Story A")
    clock.advance(10)
    engine.interrupt(STORY_B, "Story B")
    clock.advance(20)
    engine.interrupt(story_c, "Story C")

    titles = [entry.title for entry in engine.suspended()]
    assert titles == ["Story B", "Story A"]

    oldest = engine.suspended()[-1]
    engine.resume_from_stack(oldest.id)

    assert engine.session.title == "Story A"
    assert [entry.title for entry in engine.suspended()] == ["Story C", "Story B"]


def test_suspended_ids_are_unique_within_one_millisecond() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    engine.start(STORY_A, "Story A")
    engine.interrupt(STORY_B, "Story B")
    engine.interrupt(STORY_A, "Story A again")

    ids = [entry.id for entry in engine.suspended()]
    assert len(set(ids)) == 2


def test_persistence_written_on_every_mutation() -> None:
    clock = _clock()
    persistence = MemoryPersistence()
    engine = TimerEngine(clock=clock, persistence=persistence)

    engine.start(STORY_A, "Story A")
    assert persistence.session.state is TimerState.RUNNING
    clock.advance(40)
    engine.interrupt(STORY_B, "Story B")
    assert persistence.stack[0].snapshot_seconds == 40
    assert persistence.session.title == "Story B"
    engine.pause()
    assert persistence.session.state is TimerState.PAUSED
    assert persistence.session.base_seconds == 0


def test_restore_running_session_keeps_accruing() -> None:
    clock = _clock()
    persistence = MemoryPersistence()
    persistence.session = Session(
        source=STORY_A,
        title="Story A",
        state=TimerState.RUNNING,
        segment_start=clock.now,
        base_seconds=0,
        original_start=clock.now,
    )
    clock.advance(3600)

    engine = TimerEngine(clock=clock, persistence=persistence)
    report = engine.restore()

    assert report.state is TimerState.RUNNING
    assert report.elapsed_seconds == 3600
    assert engine.elapsed() == 3600


def test_restore_paused_session_is_verbatim() -> None:
    clock = _clock()
    persistence = MemoryPersistence()
    persistence.session = Session(
        source=STORY_A, title="Story A", state=TimerState.PAUSED, base_seconds=125
    )
    clock.advance(86400)

    engine = TimerEngine(clock=clock, persistence=persistence)
    engine.restore()

    assert engine.state is TimerState.PAUSED
    assert engine.elapsed() == 125


def test_restore_drops_entry_whose_session_write_was_lost() -> None:
    clock = _clock()
    persistence = MemoryPersistence()
    engine = TimerEngine(clock=clock, persistence=persistence)
    engine.start(STORY_A, "Story A")
    clock.advance(40)
    before_interrupt = persistence.session

    engine.interrupt(STORY_B, "Story B")
    # Only the stack slot made it to disk before the crash.
    persistence.session = before_interrupt
    clock.advance(20)

    rebooted = TimerEngine(clock=clock, persistence=persistence)
    report = rebooted.restore()

    assert report.suspended == 0
    assert rebooted.session.title == "Story A"
    assert rebooted.elapsed() == 60
    assert persistence.stack == []


def test_restore_keeps_parked_entry_of_the_same_source() -> None:
    clock = _clock()
    persistence = MemoryPersistence()
    engine = TimerEngine(clock=clock, persistence=persistence)
    engine.start(STORY_A, "Story A")
    clock.advance(40)
    engine.pause()
    engine.interrupt(STORY_A, "Story A")
    clock.advance(40)
    engine.pause()

    rebooted = TimerEngine(clock=clock, persistence=persistence)
    report = rebooted.restore()

    assert report.suspended == 1
    assert rebooted.suspended()[0].snapshot_seconds == 40
    assert rebooted.elapsed() == 40


def test_restore_ignores_entries_without_session_id() -> None:
    clock = _clock()
    persistence = MemoryPersistence()
    persistence.session = Session(
        source=STORY_A, title="Story A", state=TimerState.PAUSED, base_seconds=40
    )
    persistence.stack = [
        SuspendedEntry(
            id="1", source=STORY_A, title="Story A", snapshot_seconds=40, suspended_at=clock.now
        )
    ]

    engine = TimerEngine(clock=clock, persistence=persistence)

    assert engine.restore().suspended == 1


def test_restore_prefers_in_memory_state() -> None:
    clock = _clock()
    persistence = MemoryPersistence()
    persistence.session = Session(
        source=STORY_B, title="Persisted", state=TimerState.PAUSED, base_seconds=5
    )
    engine = TimerEngine(clock=clock, persistence=persistence)
    engine.start(STORY_A, "In memory")

    report = engine.restore()

    assert report.kept_in_memory is True
    assert engine.session.title == "In memory"


def test_stop_without_coordinator_returns_to_idle() -> None:
    clock = _clock()
    persistence = MemoryPersistence()
    engine = TimerEngine(clock=clock, persistence=persistence)
    engine.start(STORY_A, "Story A")

    assert asyncio.run(engine.stop()) is None
    assert engine.state is TimerState.IDLE
    assert persistence.session is None


def test_stop_scenario_edits_window() -> None:
    clock = _clock()
    client = FakeApiClient()
    client.route("POST", "/efficiency/work-logs", {"id": 501, "hours_spent": 0.5})
    engine = TimerEngine(
        clock=clock,
        coordinator=ReconciliationCoordinator(WorkLedger(client)),
    )

    engine.start(STORY_A, "Story A")
    clock.set(9, 1, 5)
    engine.pause()
    assert engine.elapsed() == 65
    clock.set(9, 5, 0)
    engine.resume()
    clock.set(9, 5, 10)
    assert engine.elapsed() == 75

    outcome = asyncio.run(engine.stop(StopOptions(started_at="09:00", ended_at="09:30")))

    assert outcome.status == "committed"
    assert outcome.elapsed_seconds == 75
    payload = client.calls_to("POST", "/efficiency/work-logs")[0]["payload"]
    assert payload["hours_spent"] == 0.5
    assert payload["started_at"] == "2025-03-03T09:00:00+00:00"
    assert payload["ended_at"] == "2025-03-03T09:30:00+00:00"
    assert payload["work_date"] == "2025-03-03"
    assert engine.state is TimerState.IDLE


def test_stop_clears_session_when_ledger_fails() -> None:
    clock = _clock()
    client = FakeApiClient()
    client.route("POST", "/efficiency/work-logs", ApiUnavailableError("backend down"))
    persistence = MemoryPersistence()
    engine = TimerEngine(
        clock=clock,
        persistence=persistence,
        coordinator=ReconciliationCoordinator(WorkLedger(client)),
    )
    engine.start(STORY_A, "Story A")
    clock.advance(600)

    outcome = asyncio.run(engine.stop())

    assert outcome.status == "failed"
    assert outcome.draft.hours_spent == 0.17

    assert engine.state is TimerState.IDLE
    assert engine.reconciling is False
    assert persistence.session is None


def test_stop_leaves_stack_untouched() -> None:
    clock = _clock()
    client = FakeApiClient()
    client.route("POST", "/efficiency/work-logs", {"id": 1})
    engine = TimerEngine(clock=clock, coordinator=ReconciliationCoordinator(WorkLedger(client)))
    engine.start(STORY_A, "Story A")
    clock.advance(40)
    engine.interrupt(STORY_B, "Story B")
    clock.advance(60)

    asyncio.run(engine.stop())

    assert engine.state is TimerState.IDLE
    assert [entry.title for entry in engine.suspended()] == ["Story A"]


def test_preview_stop_defaults_to_original_start() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    assert engine.preview_stop() is None

    engine.start(STORY_A, "Story A")
    clock.advance(90)
    window = engine.preview_stop()

    assert window.started_at == datetime(2025, 3, 3, 9, 0, 0, tzinfo=timezone.utc)
    assert window.ended_at == clock.now
    assert window.elapsed_seconds == 90
    assert engine.state is TimerState.RUNNING


def test_preview_stop_after_stack_resume_uses_elapsed() -> None:
    clock = _clock()
    engine = TimerEngine(clock=clock)
    engine.start(STORY_A, "Story A")
    clock.advance(40)
    engine.interrupt(STORY_B, "Story B")
    clock.advance(100)
    engine.resume_from_stack(engine.suspended()[0].id)
    clock.advance(20)

    window = engine.preview_stop()

    assert window.elapsed_seconds == 60
    assert window.started_at == clock.now - timedelta(seconds=60)


def test_stop_with_malformed_window_keeps_session() -> None:
    clock = _clock()
    client = FakeApiClient()
    persistence = MemoryPersistence()
    engine = TimerEngine(
        clock=clock,
        persistence=persistence,
        coordinator=ReconciliationCoordinator(WorkLedger(client)),
    )
    engine.start(STORY_A, "Story A")
    clock.advance(30)

    with pytest.raises(ValueError):
        asyncio.run(engine.stop(StopOptions(ended_at="half past nine")))

    assert engine.state is TimerState.RUNNING
    assert engine.elapsed() == 30
    assert persistence.session is not None
    assert client.calls == []


def test_display_refresh_follows_running_state() -> None:
    clock = _clock()
    rendered: list[int] = []

    async def scenario() -> list[bool]:
        engine = TimerEngine(clock=clock)
        ticker = RefreshTicker(engine.elapsed, rendered.append, interval=0.01)
        engine.attach_ticker(ticker)
        seen = [ticker.active]
        engine.start(STORY_A, "Story A")
        seen.append(ticker.active)
        engine.pause()
        seen.append(ticker.active)
        engine.resume()
        seen.append(ticker.active)
        engine.interrupt(STORY_B, "Story B")
        seen.append(ticker.active)
        await asyncio.sleep(0.05)
        await engine.stop()
        seen.append(ticker.active)
        return seen

    assert asyncio.run(scenario()) == [False, True, False, True, True, False]
    assert rendered
