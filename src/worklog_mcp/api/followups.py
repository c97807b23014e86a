"""Follow-up completion and succession against the two follow-up families."""

from __future__ import annotations

import abc
from datetime import date
from typing import Any, Protocol

from pydantic import BaseModel, field_validator

from ..timer.models import SourceRef, SourceType
from .client import ApiClient, ApiError, parse_reply

RECORD_PAGE_LIMIT = 50


class FollowUpRecord(BaseModel):
    """A follow-up item as listed under its owning story."""

    id: int
    content: str | None = None
    result: str | None = None
    event_date: date | None = None
    action_date: date | None = None
    completed_at: date | None = None

    @field_validator("event_date", "action_date", "completed_at", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value or value.startswith("0000-00-00"):
                return None
            return value[:10]
        return value


class FollowUpSuccessor(BaseModel):
    """A follow-up item to create after completing the current one."""

    content: str
    next_action_date: date

    @field_validator("content")
    @classmethod
    def _normalize_content(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Successor content must not be empty")
        return normalized


class FollowUpNotFoundError(ApiError):
    """Raised when the follow-up record is not listed under its owning story."""


class FollowUpGateway(Protocol):
    """Completion and succession for one follow-up family."""

    async def complete(
        self,
        source: SourceRef,
        story_id: int,
        *,
        completed_at: date,
        result_note: str,
    ) -> dict[str, Any]:
        ...

    async def create_successor(
        self,
        source: SourceRef,
        story_id: int,
        successor: FollowUpSuccessor,
        *,
        event_date: date,
    ) -> dict[str, Any]:
        ...


class _RecordsGateway(abc.ABC):
    """Shared list-locate-update flow; subclasses supply paths and payload keys."""

    successor_date_key = "action_date"

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    @abc.abstractmethod
    def records_path(self, source: SourceRef, story_id: int) -> str:
        """Collection path of the follow-up records under ``story_id``."""

    async def list_records(self, source: SourceRef, story_id: int) -> list[FollowUpRecord]:
        path = self.records_path(source, story_id)
        result = await self._client.get(path, params={"limit": RECORD_PAGE_LIMIT, "offset": 0})
        data = result.data
        if isinstance(data, dict):
            data = data.get("records") or data.get("data") or []
        return [parse_reply(FollowUpRecord, item, path=path) for item in data or []]

    async def complete(
        self,
        source: SourceRef,
        story_id: int,
        *,
        completed_at: date,
        result_note: str,
    ) -> dict[str, Any]:
        records = await self.list_records(source, story_id)
        target = next((record for record in records if record.id == source.source_id), None)
        if target is None:
            raise FollowUpNotFoundError(
                f"Follow-up record {source.source_id} not found under story {story_id}"
            )
        result = await self._client.put(
            f"{self.records_path(source, story_id)}/{target.id}",
            {"result": result_note, "completed_at": completed_at.isoformat()},
        )
        return result.data if isinstance(result.data, dict) else {"id": target.id}

    async def create_successor(
        self,
        source: SourceRef,
        story_id: int,
        successor: FollowUpSuccessor,
        *,
        event_date: date,
    ) -> dict[str, Any]:
        result = await self._client.post(
            self.records_path(source, story_id),
            {
                "content": successor.content,
                self.successor_date_key: successor.next_action_date.isoformat(),
                "event_date": event_date.isoformat(),
            },
        )
        return result.data if isinstance(result.data, dict) else {}


class StoryFollowUpGateway(_RecordsGateway):
    """Follow-ups attached to a project story."""

    successor_date_key = "action_date"

    def records_path(self, source: SourceRef, story_id: int) -> str:
        return f"/stories/{story_id}/follow-up-records"


class ProgramFollowUpGateway(_RecordsGateway):
    """Follow-ups attached to a program-level storyline."""

    successor_date_key = "next_follow_up_date"

    def records_path(self, source: SourceRef, story_id: int) -> str:
        return f"/projects/{source.project_id}/storylines/{story_id}/follow-up-records"


def gateway_for(source_type: SourceType, client: ApiClient) -> FollowUpGateway | None:
    """Select the gateway for a follow-up source type; other types have none."""

    if source_type is SourceType.STORY_FOLLOW_UP:
        return StoryFollowUpGateway(client)
    if source_type is SourceType.PROGRAM_FOLLOW_UP:
        return ProgramFollowUpGateway(client)
    return None


__all__ = [
    "FollowUpGateway",
    "FollowUpNotFoundError",
    "FollowUpRecord",
    "FollowUpSuccessor",
    "ProgramFollowUpGateway",
    "StoryFollowUpGateway",
    "gateway_for",
]
