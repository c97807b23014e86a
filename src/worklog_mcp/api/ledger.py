"""Work-log ledger client."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..timer.duration import duration_hours, window_on_day
from ..timer.models import SourceRef, SourceType
from .client import ApiClient, Page, parse_reply

WORK_LOGS_PATH = "/efficiency/work-logs"
SUMMARY_PATH = "/efficiency/work-logs/summary"


def _date_only(value: Any) -> Any:
    if isinstance(value, str) and len(value) > 10:
        return value[:10]
    return value


class WorkLogDraft(BaseModel):
    """A work-log entry ready for submission."""

    source: SourceRef
    description: str = ""
    hours_spent: float = Field(..., gt=0)
    work_date: date
    started_at: datetime
    ended_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "project_id": self.source.project_id,
            "source_type": self.source.source_type.value,
            "source_id": self.source.source_id,
            "description": self.description,
            "hours_spent": self.hours_spent,
            "work_date": self.work_date.isoformat(),
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
        }


class WorkLogRecord(BaseModel):
    """A persisted ledger entry."""

    id: int
    project_id: int | None = None
    source_type: str | None = None
    source_id: int | None = None
    source_title: str | None = None
    description: str | None = None
    hours_spent: float = 0.0
    work_date: date | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @field_validator("work_date", mode="before")
    @classmethod
    def _normalize_work_date(cls, value: Any) -> Any:
        return _date_only(value)


class ProjectHours(BaseModel):
    project_id: int
    project_name: str | None = None
    hours: float = 0.0


class DayHours(BaseModel):
    work_date: date
    hours: float = 0.0

    @field_validator("work_date", mode="before")
    @classmethod
    def _normalize_work_date(cls, value: Any) -> Any:
        return _date_only(value)


class WorkLogSummary(BaseModel):
    start_date: date
    end_date: date
    total_hours: float = 0.0
    by_project: list[ProjectHours] = Field(default_factory=list)
    by_day: list[DayHours] = Field(default_factory=list)


class WorkLedger:
    """Create, amend, list and summarize work-log entries."""

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def create(self, draft: WorkLogDraft) -> WorkLogRecord:
        result = await self._client.post(WORK_LOGS_PATH, draft.to_payload())
        return parse_reply(WorkLogRecord, result.data, path=WORK_LOGS_PATH)

    async def update(
        self,
        log_id: int,
        *,
        started_at: datetime | None = None,
        ended_at: datetime | None = None,
        hours_spent: float | None = None,
    ) -> WorkLogRecord:
        payload: dict[str, Any] = {}
        if started_at is not None:
            payload["started_at"] = started_at.isoformat()
        if ended_at is not None:
            payload["ended_at"] = ended_at.isoformat()
        if hours_spent is not None:
            if hours_spent <= 0:
                raise ValueError("hours_spent must be greater than 0")
            payload["hours_spent"] = hours_spent
        if not payload:
            raise ValueError("Nothing to update")
        result = await self._client.put(f"{WORK_LOGS_PATH}/{log_id}", payload)
        return parse_reply(WorkLogRecord, result.data, path=WORK_LOGS_PATH)

    async def amend_window(
        self,
        log_id: int,
        *,
        work_date: date,
        start_time: str,
        end_time: str,
        tzinfo=None,
    ) -> WorkLogRecord:
        """Re-time an entry from clock times on its work date, recomputing hours."""

        started_at, ended_at = window_on_day(work_date, start_time, end_time, tzinfo=tzinfo)
        hours = duration_hours(started_at, ended_at)
        if hours <= 0:
            raise ValueError("Start and end time must differ")
        return await self.update(log_id, started_at=started_at, ended_at=ended_at, hours_spent=hours)

    async def delete(self, log_id: int) -> None:
        await self._client.delete(f"{WORK_LOGS_PATH}/{log_id}")

    async def list_logs(
        self,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        project_id: int | None = None,
        source_type: SourceType | None = None,
        source_id: int | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> Page:
        result = await self._client.get(
            WORK_LOGS_PATH,
            params={
                "page": page,
                "limit": limit,
                "project_id": project_id,
                "source_type": source_type.value if source_type else None,
                "source_id": source_id,
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
            },
        )
        items = [parse_reply(WorkLogRecord, item, path=WORK_LOGS_PATH) for item in result.data or []]
        pagination = result.payload.get("pagination") if isinstance(result.payload, dict) else None
        pagination = pagination or {}
        return Page(
            items=items,
            page=int(pagination.get("page", page or 1)),
            limit=int(pagination.get("limit", limit or 20)),
            total=int(pagination.get("total", len(items))),
            total_pages=int(pagination.get("totalPages", 1)),
        )

    async def get(self, log_id: int, *, work_date: date | None = None) -> WorkLogRecord | None:
        """Find an entry by id, optionally narrowing the search to one day."""

        page = await self.list_logs(start_date=work_date, end_date=work_date, limit=1000)
        for record in page.items:
            if record.id == log_id:
                return record
        return None

    async def summary(
        self,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> WorkLogSummary:
        result = await self._client.get(
            SUMMARY_PATH,
            params={
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
            },
        )
        return parse_reply(WorkLogSummary, result.data, path=SUMMARY_PATH)


__all__ = [
    "DayHours",
    "ProjectHours",
    "SUMMARY_PATH",
    "WORK_LOGS_PATH",
    "WorkLedger",
    "WorkLogDraft",
    "WorkLogRecord",
    "WorkLogSummary",
]
