"""Worklog MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from datetime import datetime

from worklog_mcp.config import WorklogSettings
from worklog_mcp.storage import ChromaStore, ChromaUnavailableError, PersistenceStore
from worklog_mcp.timer import format_duration


def load_store(settings: WorklogSettings) -> ChromaStore:
    try:
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
        return store
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def cmd_state(args: argparse.Namespace) -> None:
    settings = WorklogSettings()
    store = load_store(settings)
    persistence = PersistenceStore(store)
    session = persistence.load_session()
    entries = persistence.load_stack()
    now = datetime.now().astimezone()

    payload = {
        "state": session.state.value if session else "idle",
        "session": None,
        "suspended": [
            {
                "id": entry.id,
                "title": entry.title,
                "source": entry.source.model_dump(mode="json"),
                "snapshot": format_duration(entry.snapshot_seconds),
            }
            for entry in entries
        ],
    }
    if session is not None:
        elapsed = session.elapsed(now)
        payload["session"] = {
            **session.model_dump(mode="json"),
            "elapsed_seconds": elapsed,
            "elapsed": format_duration(elapsed),
        }
    print(json.dumps(payload, indent=2))


def cmd_events(args: argparse.Namespace) -> None:
    settings = WorklogSettings()
    store = load_store(settings)
    filters = {"event_type": args.event_type} if args.event_type else None
    events = store.search_events(filters=filters)
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]

    payload = [
        {
            "event_id": event.id,
            "stream": event.stream,
            "event_type": event.event_type,
            "timestamp": event.timestamp.isoformat(),
            "metadata": {
                key: value
                for key, value in event.metadata.items()
                if key not in {"kind", "stream", "event_type", "timestamp"}
            },
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def cmd_failed(args: argparse.Namespace) -> None:
    settings = WorklogSettings()
    store = load_store(settings)
    records = store.list_reconciliations(failed_only=True)
    if args.limit is not None and args.limit > 0:
        records = records[-args.limit :]

    payload = [
        {
            "event_id": record.event_id,
            "recorded_at": record.recorded_at.isoformat(),
            "title": record.title,
            "source": record.source,
            "hours_spent": record.hours_spent,
            "draft": record.draft,
            "messages": record.messages,
        }
        for record in records
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Worklog MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_state = sub.add_parser("state", help="Show the persisted session and suspension stack")
    p_state.set_defaults(func=cmd_state)

    p_events = sub.add_parser("events", help="List journal events")
    p_events.add_argument("--event-type")
    p_events.add_argument("--limit", type=int, default=None, help="Show only the latest N events")
    p_events.set_defaults(func=cmd_events)

    p_failed = sub.add_parser(
        "failed",
        help="List stops whose work log was not saved, with the draft to re-enter",
    )
    p_failed.add_argument("--limit", type=int, default=None)
    p_failed.set_defaults(func=cmd_failed)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
