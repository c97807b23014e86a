"""Tool registration for Worklog MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from fastmcp import Context, FastMCP

from ..api import ApiError, SourceCatalog, WorkLedger
from ..config import WorklogSettings
from ..reconciliation import StopOptions, SuccessorRequest
from ..storage import ChromaStore
from ..timer import SourceRef, SourceType, TimerEngine, format_duration
from ..timer.duration import duration_hours, resolve_bound

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    list_task_sources: Any
    start_task: Any
    interrupt_task: Any
    pause_timer: Any
    resume_timer: Any
    resume_suspended: Any
    timer_status: Any
    preview_stop: Any
    stop_task: Any
    list_work_logs: Any
    work_log_summary: Any
    amend_work_log: Any
    delete_work_log: Any
    status: Any
    last_reconciliation: dict[str, Any] = field(default_factory=dict)


def _parse_date(value: str | None, *, name: str) -> date | None:
    if value is None or not str(value).strip():
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as exc:
        raise ValueError(f"Invalid {name} '{value}'; expected YYYY-MM-DD") from exc


def register_tools(
    server: FastMCP,
    *,
    settings: WorklogSettings,
    engine: TimerEngine,
    catalog: SourceCatalog | None,
    ledger: WorkLedger | None,
    chroma_store: ChromaStore | None,
    display: dict[str, Any] | None = None,
) -> ToolHandles:
    """Register Worklog's MCP tools on the server."""

    display_state = display if display is not None else {}
    last_reconciliation: dict[str, Any] = {}

    def _journal(event_type: str, body: dict[str, Any], metadata: dict[str, Any] | None = None) -> None:
        if chroma_store is None:
            return
        try:
            chroma_store.record_event(
                stream="timer",
                event_type=event_type,
                body=body,
                metadata=metadata,
            )
        except Exception as exc:  # pragma: no cover - depends on Chroma runtime
            logger.warning("Failed to journal event", extra={"event_type": event_type, "error": str(exc)})

    def _status() -> dict[str, Any]:
        engine.sync_ticker()
        session = engine.session
        elapsed = engine.elapsed()
        return {
            "state": engine.state.value,
            "reconciling": engine.reconciling,
            "title": session.title if session else None,
            "source": session.source.model_dump(mode="json") if session else None,
            "elapsed_seconds": elapsed,
            "elapsed": format_duration(elapsed),
            "display": dict(display_state),
            "suspended": [
                {
                    "id": entry.id,
                    "title": entry.title,
                    "source": entry.source.model_dump(mode="json"),
                    "snapshot_seconds": entry.snapshot_seconds,
                    "snapshot": format_duration(entry.snapshot_seconds),
                    "suspended_at": entry.suspended_at.isoformat() if entry.suspended_at else None,
                }
                for entry in engine.suspended()
            ],
        }

    def _command_result(command: str, applied: bool, context: Context | None) -> dict[str, Any]:
        status = _status()
        if applied:
            _journal(command, status, {"state": status["state"], "title": status["title"]})
            _emit_log(context, "info", "Timer command applied", extra={"command": command, "state": status["state"]})
        else:
            _emit_log(context, "debug", "Timer command ignored", extra={"command": command, "state": status["state"]})
        return {"applied": applied, "command": command, **status}

    async def _resolve_source(
        source_type: str,
        source_id: int,
        *,
        project_id: int | None,
        title: str | None,
        parent_story_id: int | None,
        context: Context | None,
    ) -> tuple[SourceRef, str]:
        kind = SourceType.parse(source_type)
        match = None
        if catalog is not None:
            try:
                match = await catalog.find(kind, source_id, project_id=project_id)
            except ApiError as exc:
                _emit_log(
                    context,
                    "warning",
                    "Task source lookup failed; using supplied details",
                    extra={"source_type": kind.value, "source_id": source_id, "error": str(exc)},
                )
        if match is not None:
            ref = match.to_ref()
            if ref.parent_story_id is None and parent_story_id is not None and kind.is_follow_up:
                ref = ref.model_copy(update={"parent_story_id": parent_story_id})
            return ref, (title or "").strip() or match.title.strip() or settings.default_title

        if project_id is None:
            raise ValueError(
                f"Task source {kind.value}:{source_id} is not listed; pass project_id to track it anyway"
            )
        ref = SourceRef(
            source_type=kind,
            source_id=source_id,
            project_id=project_id,
            parent_story_id=parent_story_id if kind.is_follow_up else None,
        )
        return ref, (title or "").strip() or settings.default_title

    async def _list_task_sources(
        project_id: int | None = None,
        *,
        source_type: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List the stories, storylines and follow-ups time can be billed against."""

        if catalog is None:
            raise RuntimeError("Task source catalog is unavailable")
        sources = await catalog.list_sources(project_id)
        if source_type:
            kind = SourceType.parse(source_type)
            sources = [source for source in sources if source.source_type is kind]
        _emit_log(context, "info", "Listed task sources", extra={"project_id": project_id, "count": len(sources)})
        return {
            "count": len(sources),
            "sources": [source.model_dump(mode="json") for source in sources],
        }

    async def _start_task(
        source_type: str,
        source_id: int,
        *,
        project_id: int | None = None,
        title: str | None = None,
        parent_story_id: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        ref, resolved_title = await _resolve_source(
            source_type,
            source_id,
            project_id=project_id,
            title=title,
            parent_story_id=parent_story_id,
            context=context,
        )
        return _command_result("start", engine.start(ref, resolved_title), context)

    async def _interrupt_task(
        source_type: str,
        source_id: int,
        *,
        project_id: int | None = None,
        title: str | None = None,
        parent_story_id: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        ref, resolved_title = await _resolve_source(
            source_type,
            source_id,
            project_id=project_id,
            title=title,
            parent_story_id=parent_story_id,
            context=context,
        )
        return _command_result("interrupt", engine.interrupt(ref, resolved_title), context)

    async def _pause_timer(context: Context | None = None) -> dict[str, Any]:
        return _command_result("pause", engine.pause(), context)

    async def _resume_timer(context: Context | None = None) -> dict[str, Any]:
        return _command_result("resume", engine.resume(), context)

    async def _resume_suspended(entry_id: str, *, context: Context | None = None) -> dict[str, Any]:
        return _command_result("resume_from_stack", engine.resume_from_stack(entry_id), context)

    async def _timer_status() -> dict[str, Any]:
        return _status()

    async def _preview_stop() -> dict[str, Any]:
        window = engine.preview_stop()
        if window is None:
            return {"applied": False, **_status()}
        return {
            "applied": True,
            "title": engine.session.title if engine.session else None,
            "elapsed_seconds": window.elapsed_seconds,
            "elapsed": format_duration(window.elapsed_seconds),
            "started_at": window.started_at.isoformat(),
            "ended_at": window.ended_at.isoformat(),
            "hours_spent": duration_hours(window.started_at, window.ended_at),
        }

    async def _stop_task(
        *,
        started_at: str | None = None,
        ended_at: str | None = None,
        description: str | None = None,
        mark_completed: bool = False,
        completion_date: str | None = None,
        result_note: str = "",
        successor_content: str | None = None,
        successor_date: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Stop the active session, record its work log and optionally close its follow-up."""

        window = engine.preview_stop()
        if window is None:
            return {"applied": False, "command": "stop", **_status()}

        # Reject malformed edits before the session is consumed.
        for bound in (started_at, ended_at):
            if bound:
                resolve_bound(bound, window.started_at)
        successor = None
        if successor_content and successor_content.strip():
            successor = SuccessorRequest(
                content=successor_content,
                next_action_date=_parse_date(successor_date, name="successor_date"),
            )
        options = StopOptions(
            started_at=started_at or None,
            ended_at=ended_at or None,
            description=description,
            mark_completed=mark_completed,
            completion_date=_parse_date(completion_date, name="completion_date"),
            result_note=result_note,
            successor=successor,
        )

        outcome = await engine.stop(options)
        if outcome is None:
            return {"applied": False, "command": "stop", **_status()}

        result = outcome.as_dict()
        last_reconciliation.clear()
        last_reconciliation.update(result)
        if chroma_store is not None:
            try:
                chroma_store.record_reconciliation(result)
            except Exception as exc:  # pragma: no cover - depends on Chroma runtime
                logger.warning("Failed to journal reconciliation", extra={"error": str(exc)})

        level = "warning" if outcome.status in {"failed", "partial"} else "info"
        _emit_log(
            context,
            level,
            "Session reconciled",
            extra={"status": outcome.status, "title": outcome.session.title, "hours_spent": outcome.hours_spent},
        )
        return {"applied": True, "command": "stop", "reconciliation": result, **_status()}

    async def _list_work_logs(
        *,
        start_date: str | None = None,
        end_date: str | None = None,
        project_id: int | None = None,
        source_type: str | None = None,
        source_id: int | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        if ledger is None:
            raise RuntimeError("Work-log ledger is unavailable")
        result = await ledger.list_logs(
            start_date=_parse_date(start_date, name="start_date"),
            end_date=_parse_date(end_date, name="end_date"),
            project_id=project_id,
            source_type=SourceType.parse(source_type) if source_type else None,
            source_id=source_id,
            page=page,
            limit=limit,
        )
        return {
            "items": [item.model_dump(mode="json") for item in result.items],
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "total_pages": result.total_pages,
        }

    async def _work_log_summary(
        *,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> dict[str, Any]:
        if ledger is None:
            raise RuntimeError("Work-log ledger is unavailable")
        summary = await ledger.summary(
            start_date=_parse_date(start_date, name="start_date"),
            end_date=_parse_date(end_date, name="end_date"),
        )
        return summary.model_dump(mode="json")

    async def _amend_work_log(
        log_id: int,
        start_time: str,
        end_time: str,
        *,
        work_date: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Re-time a work log from HH:MM bounds on its work date and recompute its hours."""

        if ledger is None:
            raise RuntimeError("Work-log ledger is unavailable")
        day = _parse_date(work_date, name="work_date")
        if day is None:
            record = await ledger.get(log_id)
            if record is None or record.work_date is None:
                raise ValueError(f"Work log {log_id} not found")
            day = record.work_date
        updated = await ledger.amend_window(
            log_id,
            work_date=day,
            start_time=start_time,
            end_time=end_time,
            tzinfo=engine.now().tzinfo,
        )
        payload = updated.model_dump(mode="json")
        _journal("amend_work_log", payload, {"log_id": log_id, "hours_spent": updated.hours_spent})
        _emit_log(context, "info", "Amended work log", extra={"log_id": log_id, "hours_spent": updated.hours_spent})
        return payload

    async def _delete_work_log(log_id: int, *, context: Context | None = None) -> dict[str, Any]:
        if ledger is None:
            raise RuntimeError("Work-log ledger is unavailable")
        await ledger.delete(log_id)
        _journal("delete_work_log", {"log_id": log_id}, {"log_id": log_id})
        _emit_log(context, "info", "Deleted work log", extra={"log_id": log_id})
        return {"log_id": log_id, "deleted": True}

    tool_sources = server.tool(
        name="list_task_sources",
        description="List task sources (stories, storylines and follow-ups), optionally for one project.",
    )(_list_task_sources)
    tool_start = server.tool(
        name="start_task",
        description="Start timing a task source. Ignored unless the timer is idle.",
    )(_start_task)
    tool_interrupt = server.tool(
        name="interrupt_task",
        description="Park the active session on the suspension stack and start another task source.",
    )(_interrupt_task)
    tool_pause = server.tool(
        name="pause_timer",
        description="Pause the running session.",
    )(_pause_timer)
    tool_resume = server.tool(
        name="resume_timer",
        description="Resume the paused session.",
    )(_resume_timer)
    tool_resume_suspended = server.tool(
        name="resume_suspended",
        description="Reactivate a suspended session by id, parking the active session if any.",
    )(_resume_suspended)
    tool_status = server.tool(
        name="timer_status",
        description="Report timer state, elapsed time and suspended sessions.",
    )(_timer_status)
    tool_preview = server.tool(
        name="preview_stop",
        description="Show the default work-log window for the active session without stopping it.",
    )(_preview_stop)
    tool_stop = server.tool(
        name="stop_task",
        description=(
            "Stop the active session and record a work log. Bounds accept ISO datetimes or HH:MM. "
            "Follow-up sessions can be marked complete and given a successor."
        ),
    )(_stop_task)
    tool_list_logs = server.tool(
        name="list_work_logs",
        description="List work logs by date range, project or source.",
    )(_list_work_logs)
    tool_summary = server.tool(
        name="work_log_summary",
        description="Summarize logged hours by project and by day.",
    )(_work_log_summary)
    tool_amend = server.tool(
        name="amend_work_log",
        description="Change a work log's start and end (HH:MM) and recompute its hours.",
    )(_amend_work_log)
    tool_delete = server.tool(
        name="delete_work_log",
        description="Delete a work log.",
    )(_delete_work_log)

    return ToolHandles(
        list_task_sources=tool_sources,
        start_task=tool_start,
        interrupt_task=tool_interrupt,
        pause_timer=tool_pause,
        resume_timer=tool_resume,
        resume_suspended=tool_resume_suspended,
        timer_status=tool_status,
        preview_stop=tool_preview,
        stop_task=tool_stop,
        list_work_logs=tool_list_logs,
        work_log_summary=tool_summary,
        amend_work_log=tool_amend,
        delete_work_log=tool_delete,
        status=_status,
        last_reconciliation=last_reconciliation,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
