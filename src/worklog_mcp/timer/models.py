"""Session, source and stack models for the work timer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class SourceType(str, Enum):
    """Kinds of task source a session can bill time against.

    Values are the identifiers used by the ledger backend.
    """

    STORY = "project_story"
    PROGRAM_STORY = "storyline"
    STORY_FOLLOW_UP = "follow_up"
    PROGRAM_FOLLOW_UP = "storyline_follow_up"

    @property
    def is_follow_up(self) -> bool:
        return self in {SourceType.STORY_FOLLOW_UP, SourceType.PROGRAM_FOLLOW_UP}

    @classmethod
    def parse(cls, value: str | SourceType) -> SourceType:
        """Accept either the wire value or the member name (``story_follow_up``)."""

        if isinstance(value, SourceType):
            return value
        normalized = value.strip()
        try:
            return cls(normalized)
        except ValueError:
            pass
        try:
            return cls[normalized.upper()]
        except KeyError as exc:
            choices = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown source type '{value}'. Use one of: {choices}") from exc


def _require_aware(value: Any) -> Any:
    if isinstance(value, datetime) and value.utcoffset() is None:
        raise ValueError("Timestamps must carry a timezone offset")
    return value


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class SourceRef(BaseModel):
    """Identifies what a session's time is billed to."""

    source_type: SourceType = Field(..., description="Kind of task source.")
    source_id: int = Field(..., description="Identifier of the story, storyline or follow-up record.")
    project_id: int = Field(..., description="Project that owns the source.")
    parent_story_id: int | None = Field(
        default=None,
        description="Owning story (or storyline) of a follow-up record.",
    )


class Session(BaseModel):
    """The single active unit of tracked work.

    ``segment_start`` is set only while running; ``base_seconds`` holds everything
    accumulated by earlier segments. ``session_id`` is fresh for every activation and is
    copied onto the stack entry when the session is parked.
    """

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source: SourceRef
    title: str
    state: TimerState = TimerState.RUNNING
    segment_start: datetime | None = None
    base_seconds: int = Field(default=0, ge=0)
    original_start: datetime | None = None

    @field_validator("title")
    @classmethod
    def _normalize_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Session title must not be empty")
        return normalized

    @field_validator("segment_start", "original_start")
    @classmethod
    def _aware_timestamps(cls, value: datetime | None) -> datetime | None:
        return _require_aware(value)

    @model_validator(mode="after")
    def _check_state(self) -> Session:
        if self.state is TimerState.IDLE:
            raise ValueError("An idle timer has no active session")
        if self.state is TimerState.RUNNING and self.segment_start is None:
            raise ValueError("A running session requires segment_start")
        if self.state is TimerState.PAUSED and self.segment_start is not None:
            raise ValueError("A paused session must not carry segment_start")
        return self

    def elapsed(self, now: datetime) -> int:
        """Elapsed seconds as of ``now``; never mutates the session."""

        if self.state is not TimerState.RUNNING or self.segment_start is None:
            return self.base_seconds
        delta = int((now - self.segment_start).total_seconds())
        return self.base_seconds + max(delta, 0)


class SuspendedEntry(BaseModel):
    """A session parked on the suspension stack with a frozen elapsed snapshot."""

    id: str
    source: SourceRef
    title: str
    snapshot_seconds: int = Field(default=0, ge=0)
    suspended_at: datetime | None = None
    session_id: str | None = None

    @field_validator("suspended_at")
    @classmethod
    def _aware_timestamp(cls, value: datetime | None) -> datetime | None:
        return _require_aware(value)


@dataclass(slots=True)
class StopWindow:
    """Reconciliation window proposed to the operator on stop."""

    started_at: datetime
    ended_at: datetime
    elapsed_seconds: int


def default_stop_window(session: Session, elapsed_seconds: int, now: datetime) -> StopWindow:
    """Propose ``original_start`` (or ``now - elapsed``) through ``now``."""

    started_at = session.original_start or now - timedelta(seconds=elapsed_seconds)
    return StopWindow(started_at=started_at, ended_at=now, elapsed_seconds=elapsed_seconds)


def format_duration(seconds: int) -> str:
    """Render seconds as ``HH:MM:SS``."""

    seconds = max(int(seconds), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


__all__ = [
    "Session",
    "SourceRef",
    "SourceType",
    "StopWindow",
    "SuspendedEntry",
    "TimerState",
    "default_stop_window",
    "format_duration",
]
