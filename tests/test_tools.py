from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from worklog_mcp.api import FakeApiClient, SourceCatalog, WorkLedger, gateway_for
from worklog_mcp.api.client import ApiUnavailableError
from worklog_mcp.config import WorklogSettings
from worklog_mcp.reconciliation import ReconciliationCoordinator
from worklog_mcp.storage import ChromaStore, PersistenceStore
from worklog_mcp.timer import SourceType, TimerEngine
from worklog_mcp.tools import register_tools

TASK_SOURCES = "/efficiency/task-sources"
WORK_LOGS = "/efficiency/work-logs"


class StubServer:
    def __init__(self) -> None:
        self.tools: dict[str, Any] = {}

    def tool(self, *, name: str, description: str):
        def decorator(fn):
            self.tools[name] = fn
            return fn

        return decorator


class StubLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, message: str, *, extra: dict[str, Any] | None = None) -> None:
        self.records.append(("info", message, extra or {}))

    def warning(self, message: str, *, extra: dict[str, Any] | None = None) -> None:
        self.records.append(("warning", message, extra or {}))

    def debug(self, message: str, *, extra: dict[str, Any] | None = None) -> None:
        self.records.append(("debug", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = StubLogger()
        self.request_id = "req-1"


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


SOURCES = [
    {"source_type": "project_story", "source_id": 7, "project_id": 3, "title": "Checkout redesign"},
    {
        "source_type": "follow_up",
        "source_id": 55,
        "project_id": 3,
        "title": "Call vendor",
        "story_id": 7,
    },
]


def _setup(chroma_store: ChromaStore, client: FakeApiClient | None = None):
    if client is None:
        client = FakeApiClient()
        client.route("GET", TASK_SOURCES, SOURCES)
    clock = Clock()
    catalog = SourceCatalog(client)
    ledger = WorkLedger(client)
    coordinator = ReconciliationCoordinator(
        ledger,
        catalog=catalog,
        gateways={kind: gateway_for(kind, client) for kind in SourceType if kind.is_follow_up},
    )
    engine = TimerEngine(
        persistence=PersistenceStore(chroma_store),
        coordinator=coordinator,
        clock=clock,
    )
    server = StubServer()
    handles = register_tools(
        server,
        settings=WorklogSettings(),
        engine=engine,
        catalog=catalog,
        ledger=ledger,
        chroma_store=chroma_store,
        display={"elapsed": "00:00:00"},
    )
    return handles, server, engine, client, clock


def test_all_tools_registered(chroma_store: ChromaStore) -> None:
    _, server, *_ = _setup(chroma_store)

    assert set(server.tools) == {
        "list_task_sources",
        "start_task",
        "interrupt_task",
        "pause_timer",
        "resume_timer",
        "resume_suspended",
        "timer_status",
        "preview_stop",
        "stop_task",
        "list_work_logs",
        "work_log_summary",
        "amend_work_log",
        "delete_work_log",
    }


def test_list_task_sources_filters_by_type(chroma_store: ChromaStore) -> None:
    handles, *_ = _setup(chroma_store)

    result = asyncio.run(handles.list_task_sources(3, source_type="story_follow_up"))

    assert result["count"] == 1
    assert result["sources"][0]["parent_story_id"] == 7


def test_start_task_resolves_title_from_catalog(chroma_store: ChromaStore) -> None:
    handles, _, engine, _, _ = _setup(chroma_store)
    context = StubContext()

    result = asyncio.run(handles.start_task("follow_up", 55, project_id=3, context=context))

    assert result["applied"] is True
    assert result["state"] == "running"
    assert result["title"] == "Call vendor"
    assert engine.session.source.parent_story_id == 7
    assert context.logger.records[-1][1] == "Timer command applied"
    assert [event.event_type for event in chroma_store.search_events()] == ["start"]


def test_start_task_unknown_source_requires_project(chroma_store: ChromaStore) -> None:
    handles, _, engine, _, _ = _setup(chroma_store)

    with pytest.raises(ValueError):
        asyncio.run(handles.start_task("project_story", 999))

    result = asyncio.run(handles.start_task("project_story", 999, project_id=4))
    assert result["title"] == "Untitled task"
    assert engine.session.source.project_id == 4


def test_start_task_falls_back_when_catalog_unreachable(chroma_store: ChromaStore) -> None:
    client = FakeApiClient()
    client.route("GET", TASK_SOURCES, ApiUnavailableError("GET /efficiency/task-sources unreachable"))
    handles, *_ = _setup(chroma_store, client)
    context = StubContext()

    result = asyncio.run(
        handles.start_task("storyline", 12, project_id=3, title="Roadmap", context=context)
    )

    assert result["applied"] is True
    assert result["title"] == "Roadmap"
    assert context.logger.records[0][0] == "warning"


def test_invalid_commands_report_not_applied(chroma_store: ChromaStore) -> None:
    handles, *_ = _setup(chroma_store)

    paused = asyncio.run(handles.pause_timer())
    resumed = asyncio.run(handles.resume_suspended("nope"))
    stopped = asyncio.run(handles.stop_task())
    preview = asyncio.run(handles.preview_stop())

    assert paused["applied"] is False
    assert paused["state"] == "idle"
    assert resumed["applied"] is False
    assert stopped["applied"] is False
    assert preview["applied"] is False
    assert chroma_store.search_events() == []


def test_interrupt_and_resume_suspended(chroma_store: ChromaStore) -> None:
    handles, _, engine, _, clock = _setup(chroma_store)
    asyncio.run(handles.start_task("project_story", 7))
    clock.advance(40)

    interrupted = asyncio.run(handles.interrupt_task("follow_up", 55))
    assert interrupted["title"] == "Call vendor"
    assert interrupted["suspended"][0]["snapshot"] == "00:00:40"

    clock.advance(12)
    entry_id = interrupted["suspended"][0]["id"]
    resumed = asyncio.run(handles.resume_suspended(entry_id))

    assert resumed["title"] == "Checkout redesign"
    assert resumed["elapsed_seconds"] == 40
    assert resumed["suspended"][0]["title"] == "Call vendor"
    assert resumed["suspended"][0]["snapshot_seconds"] == 12

    asyncio.run(handles.pause_timer())
    clock.advance(100)
    status = asyncio.run(handles.timer_status())
    assert status["state"] == "paused"
    assert status["elapsed"] == "00:00:40"
    assert asyncio.run(handles.resume_timer())["state"] == "running"


def test_stop_task_completes_follow_up(chroma_store: ChromaStore) -> None:
    handles, _, engine, client, clock = _setup(chroma_store)
    client.route("POST", WORK_LOGS, {"id": 300, "hours_spent": 0.5})
    client.route("GET", "/stories/7/follow-up-records", [{"id": 55}])
    client.route("PUT", "/stories/7/follow-up-records/55", {"id": 55})
    client.route("POST", "/stories/7/follow-up-records", {"id": 56})
    asyncio.run(handles.start_task("follow_up", 55))
    clock.advance(1800)

    preview = asyncio.run(handles.preview_stop())
    assert preview["hours_spent"] == 0.5

    result = asyncio.run(
        handles.stop_task(
            mark_completed=True,
            result_note="Confirmed",
            successor_content="Check delivery",
            successor_date="2025-03-10",
        )
    )

    assert result["applied"] is True
    assert result["state"] == "idle"
    assert result["reconciliation"]["status"] == "committed"
    assert client.calls_to("POST", "/stories/7/follow-up-records")[0]["payload"]["action_date"] == "2025-03-10"
    assert handles.last_reconciliation["status"] == "committed"
    assert chroma_store.list_reconciliations()[0].hours_spent == 0.5
    assert engine.session is None


def test_stop_task_rejects_bad_bounds_before_stopping(chroma_store: ChromaStore) -> None:
    handles, _, engine, _, clock = _setup(chroma_store)
    asyncio.run(handles.start_task("project_story", 7))
    clock.advance(60)

    with pytest.raises(ValueError):
        asyncio.run(handles.stop_task(started_at="quarter past"))
    with pytest.raises(ValueError):
        asyncio.run(handles.stop_task(completion_date="03/03/2025"))

    assert engine.state.value == "running"


def test_stop_task_ledger_failure_is_journaled(chroma_store: ChromaStore) -> None:
    client = FakeApiClient()
    client.route("GET", TASK_SOURCES, SOURCES)
    client.route("POST", WORK_LOGS, ApiUnavailableError("POST /efficiency/work-logs unreachable"))
    handles, _, engine, _, clock = _setup(chroma_store, client)
    context = StubContext()
    asyncio.run(handles.start_task("project_story", 7))
    clock.advance(900)

    result = asyncio.run(handles.stop_task(description="Pairing", context=context))

    assert result["reconciliation"]["status"] == "failed"
    assert engine.state.value == "idle"
    lost = chroma_store.list_reconciliations(failed_only=True)
    assert lost[0].draft["description"] == "Pairing"
    assert lost[0].draft["hours_spent"] == 0.25
    assert context.logger.records[-1][0] == "warning"


def test_work_log_tools(chroma_store: ChromaStore) -> None:
    handles, _, _, client, _ = _setup(chroma_store)
    client.route("GET", WORK_LOGS, [{"id": 41, "work_date": "2025-03-01", "hours_spent": 2}])
    client.route("PUT", f"{WORK_LOGS}/41", {"id": 41, "work_date": "2025-03-01", "hours_spent": 0.75})
    client.route("DELETE", f"{WORK_LOGS}/41", None)
    client.route(
        "GET",
        "/efficiency/work-logs/summary",
        {"start_date": "2025-03-01", "end_date": "2025-03-07", "total_hours": 2},
    )

    listed = asyncio.run(handles.list_work_logs(start_date="2025-03-01", source_type="follow_up"))
    amended = asyncio.run(handles.amend_work_log(41, "13:00", "13:45"))
    summary = asyncio.run(handles.work_log_summary(start_date="2025-03-01", end_date="2025-03-07"))
    deleted = asyncio.run(handles.delete_work_log(41))

    assert listed["items"][0]["id"] == 41
    assert client.calls_to("GET", WORK_LOGS)[0]["params"]["source_type"] == "follow_up"
    put_payload = client.calls_to("PUT", f"{WORK_LOGS}/41")[0]["payload"]
    assert put_payload["hours_spent"] == 0.75
    assert put_payload["started_at"] == "2025-03-01T13:00:00+00:00"
    assert amended["hours_spent"] == 0.75
    assert summary["total_hours"] == 2
    assert deleted == {"log_id": 41, "deleted": True}
    event_types = [event.event_type for event in chroma_store.search_events()]
    assert event_types == ["amend_work_log", "delete_work_log"]


def test_amend_unknown_work_log(chroma_store: ChromaStore) -> None:
    handles, _, _, client, _ = _setup(chroma_store)
    client.route("GET", WORK_LOGS, [])

    with pytest.raises(ValueError):
        asyncio.run(handles.amend_work_log(404, "09:00", "10:00"))


def test_status_includes_display(chroma_store: ChromaStore) -> None:
    handles, *_ = _setup(chroma_store)

    status = handles.status()

    assert status["display"] == {"elapsed": "00:00:00"}
    assert json.loads(json.dumps(status))["state"] == "idle"
