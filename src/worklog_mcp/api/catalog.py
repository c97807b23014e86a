"""Read-only feed of task sources a session can bill against."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ..timer.models import SourceRef, SourceType
from .client import ApiClient, parse_reply

TASK_SOURCES_PATH = "/efficiency/task-sources"


class TaskSource(BaseModel):
    """An addressable unit of work as listed by the backend."""

    source_type: SourceType
    source_id: int
    project_id: int
    title: str = ""
    detail: str = ""
    parent_story_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("parent_story_id", "story_id"),
    )
    next_action_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("next_action_date", "next_follow_up_date"),
    )
    subproject_id: int | None = None
    subproject_name: str | None = None

    @field_validator("next_action_date", mode="before")
    @classmethod
    def _date_only(cls, value: Any):
        if isinstance(value, str) and len(value) > 10:
            return value[:10]
        return value

    @field_validator("title", "detail", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any):
        return "" if value is None else value

    def to_ref(self) -> SourceRef:
        parent = self.parent_story_id if self.source_type.is_follow_up else None
        return SourceRef(
            source_type=self.source_type,
            source_id=self.source_id,
            project_id=self.project_id,
            parent_story_id=parent,
        )


class SourceCatalog:
    """Query ``GET task-sources`` and match entries by type and id."""

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def list_sources(self, project_id: int | None = None) -> list[TaskSource]:
        result = await self._client.get(TASK_SOURCES_PATH, params={"project_id": project_id})
        return [parse_reply(TaskSource, item, path=TASK_SOURCES_PATH) for item in result.data or []]

    async def find(
        self,
        source_type: SourceType,
        source_id: int,
        *,
        project_id: int | None = None,
    ) -> TaskSource | None:
        for source in await self.list_sources(project_id):
            if source.source_type is source_type and source.source_id == source_id:
                return source
        return None


__all__ = ["SourceCatalog", "TaskSource", "TASK_SOURCES_PATH"]
