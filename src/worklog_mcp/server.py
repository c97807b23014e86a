"""FastMCP server bootstrap for Worklog."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .api import ApiClient, SourceCatalog, WorkLedger, gateway_for
from .config import WorklogSettings, get_settings
from .reconciliation import ReconciliationCoordinator
from .storage import ChromaStore, ChromaUnavailableError, PersistenceStore
from .timer import RefreshTicker, SourceType, TimerEngine, format_duration
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Worklog server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[WorklogSettings] = None,
    *,
    api_client: ApiClient | None = None,
    chroma_store: ChromaStore | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server, restoring any persisted timer state."""

    settings = settings or get_settings()

    chroma_metadata = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "worklog_state",
        "error": None,
    }
    if chroma_store is None:
        try:
            chroma_store = ChromaStore(settings.chroma_persist_path)
            chroma_store.ping()
        except ChromaUnavailableError as exc:
            chroma_metadata["error"] = str(exc)
            chroma_store = None
    else:
        chroma_store.ping()
    if chroma_store is not None:
        chroma_metadata["available"] = True
        chroma_metadata["path"] = str(chroma_store.path)
        chroma_metadata["collection"] = chroma_store.collection_name
    else:
        logger.warning(
            "Chroma unavailable; timer state will not survive a restart",
            extra={"error": chroma_metadata["error"]},
        )

    api_client = api_client or ApiClient(
        settings.api_base_url,
        token=settings.api_token,
        timeout=settings.api_timeout_seconds,
    )
    catalog = SourceCatalog(api_client)
    ledger = WorkLedger(api_client)
    gateways = {
        source_type: gateway
        for source_type in SourceType
        if (gateway := gateway_for(source_type, api_client)) is not None
    }
    coordinator = ReconciliationCoordinator(
        ledger,
        catalog=catalog,
        gateways=gateways,
        successor_offset_days=settings.successor_offset_days,
    )

    persistence = PersistenceStore(chroma_store) if chroma_store is not None else None
    engine = TimerEngine(persistence=persistence, coordinator=coordinator, clock=clock)

    display: dict[str, Any] = {"elapsed_seconds": 0, "elapsed": format_duration(0)}

    def _render(seconds: int) -> None:
        display["elapsed_seconds"] = seconds
        display["elapsed"] = format_duration(seconds)
        display["rendered_at"] = datetime.now(timezone.utc).isoformat()

    engine.attach_ticker(
        RefreshTicker(engine.elapsed, _render, interval=settings.refresh_interval_seconds)
    )

    boot_report = engine.restore()
    _render(boot_report.elapsed_seconds)
    if chroma_store is not None:
        try:
            chroma_store.record_event(
                stream="timer",
                event_type="boot_restore",
                body=boot_report.as_dict(),
                metadata={"state": boot_report.state.value, "suspended": boot_report.suspended},
            )
        except Exception as exc:  # pragma: no cover - depends on Chroma runtime
            logger.warning("Failed to journal boot restore", extra={"error": str(exc)})

    server = FastMCP(
        name="Worklog MCP",
        version=__version__,
        instructions=(
            "Worklog tracks time against project stories and follow-ups. Start a task, "
            "interrupt it for urgent work, resume suspended sessions, and stop to record "
            "a work log (optionally completing the follow-up)."
        ),
    )

    handles = register_tools(
        server,
        settings=settings,
        engine=engine,
        catalog=catalog,
        ledger=ledger,
        chroma_store=chroma_store,
        display=display,
    )

    def status_snapshot(request_id: str | None = None) -> dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "timer": handles.status(),
            "boot": boot_report.as_dict(),
            "last_reconciliation": dict(handles.last_reconciliation) or None,
            "api": {
                "base_url": settings.api_base_url,
                "authenticated": bool(settings.api_token),
                "timeout_seconds": settings.api_timeout_seconds,
            },
            "storage": {"chroma": chroma_metadata},
            "request_id": request_id,
        }

    @server.resource(
        "resource://worklog/status",
        name="worklog_status",
        title="Worklog MCP Status",
        description="Current timer state, suspended sessions and last reconciliation.",
        mime_type="application/json",
        tags={"status", "timer"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        return json.dumps(status_snapshot(getattr(context, "request_id", None)))

    setattr(server, "engine", engine)
    setattr(server, "api_client", api_client)
    setattr(server, "chroma_store", chroma_store)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "boot_report", boot_report)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_snapshot", status_snapshot)
    return server


def main() -> None:
    """Entry point for running the Worklog MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Worklog MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "api_base_url": settings.api_base_url,
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
