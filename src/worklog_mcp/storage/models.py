"""Data models for persistent tracking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class ReconciliationRecord:
    event_id: str
    recorded_at: datetime
    status: str
    title: str | None
    source: dict[str, Any]
    hours_spent: float | None
    draft: dict[str, Any] | None
    messages: list[str]

    @classmethod
    def from_outcome(
        cls, event_id: str, recorded_at: datetime, outcome: dict[str, Any]
    ) -> ReconciliationRecord:
        return cls(
            event_id=event_id,
            recorded_at=recorded_at,
            status=str(outcome.get("status", "unknown")),
            title=outcome.get("title"),
            source=dict(outcome.get("source") or {}),
            hours_spent=outcome.get("hours_spent"),
            draft=outcome.get("draft"),
            messages=list(outcome.get("messages") or []),
        )


__all__ = ["ReconciliationRecord"]
