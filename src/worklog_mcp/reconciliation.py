"""Turn a stopped session into a work-log entry and optional follow-up updates.

Reconciliation runs three independent steps against the backend:

1. submit the work log for the (possibly operator-edited) window,
2. mark the follow-up item complete, when the session billed a follow-up and the
   operator asked for it,
3. create a successor follow-up, when requested alongside completion.

Each step reports its own ``StepResult``. A failure never rolls back earlier steps,
and the caller clears the active session whatever the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal, Mapping

from pydantic import ValidationError

from .api.catalog import SourceCatalog
from .api.client import ApiError
from .api.followups import FollowUpGateway, FollowUpSuccessor
from .api.ledger import WorkLedger, WorkLogDraft, WorkLogRecord
from .timer.duration import add_days, duration_hours, resolve_bound
from .timer.models import Session, SourceType, StopWindow, default_stop_window

logger = logging.getLogger(__name__)

StepStatus = Literal["ok", "failed", "skipped"]


@dataclass(slots=True)
class StepResult:
    status: StepStatus
    message: str | None = None
    data: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def as_dict(self) -> dict[str, Any]:
        return {"status": self.status, "message": self.message, "data": self.data}


@dataclass(slots=True)
class SuccessorRequest:
    content: str
    next_action_date: date | None = None


@dataclass(slots=True)
class StopOptions:
    """Operator choices collected when stopping a session."""

    started_at: datetime | str | None = None
    ended_at: datetime | str | None = None
    description: str | None = None
    mark_completed: bool = False
    completion_date: date | None = None
    result_note: str = ""
    successor: SuccessorRequest | None = None


@dataclass(slots=True)
class ReconciliationOutcome:
    """What happened to a stopped session."""

    session: Session
    elapsed_seconds: int
    window: StopWindow
    hours_spent: float
    draft: WorkLogDraft | None
    work_log: StepResult
    completion: StepResult = field(default_factory=lambda: StepResult("skipped"))
    successor: StepResult = field(default_factory=lambda: StepResult("skipped"))

    @property
    def status(self) -> str:
        if self.work_log.failed:
            return "failed"
        if not self.work_log.ok:
            return "skipped"
        if self.completion.failed or self.successor.failed:
            return "partial"
        return "committed"

    @property
    def messages(self) -> list[str]:
        notices: list[str] = []
        if self.work_log.failed:
            notices.append(f"Work log was not saved: {self.work_log.message}")
        elif self.work_log.status == "skipped":
            notices.append(self.work_log.message or "Nothing to record")
        if self.completion.failed:
            notices.append(
                f"Work log saved, but marking the follow-up complete failed: {self.completion.message}"
            )
        if self.successor.failed:
            notices.append(f"Creating the next follow-up failed: {self.successor.message}")
        return notices

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "title": self.session.title,
            "source": self.session.source.model_dump(mode="json"),
            "elapsed_seconds": self.elapsed_seconds,
            "started_at": self.window.started_at.isoformat(),
            "ended_at": self.window.ended_at.isoformat(),
            "hours_spent": self.hours_spent,
            "draft": self.draft.model_dump(mode="json") if self.draft else None,
            "work_log": self.work_log.as_dict(),
            "completion": self.completion.as_dict(),
            "successor": self.successor.as_dict(),
            "messages": self.messages,
        }


class ReconciliationCoordinator:
    """Reconcile stopped sessions against the ledger and follow-up APIs."""

    def __init__(
        self,
        ledger: WorkLedger,
        *,
        catalog: SourceCatalog | None = None,
        gateways: Mapping[SourceType, FollowUpGateway] | None = None,
        successor_offset_days: int = 1,
    ) -> None:
        self._ledger = ledger
        self._catalog = catalog
        self._gateways = dict(gateways or {})
        self._successor_offset_days = successor_offset_days

    @staticmethod
    def default_window(session: Session, elapsed_seconds: int, now: datetime) -> StopWindow:
        return default_stop_window(session, elapsed_seconds, now)

    def resolve_window(
        self,
        session: Session,
        elapsed_seconds: int,
        now: datetime,
        options: StopOptions,
    ) -> StopWindow:
        window = self.default_window(session, elapsed_seconds, now)
        reference = window.started_at
        started_at = resolve_bound(options.started_at, reference) if options.started_at else window.started_at
        ended_at = resolve_bound(options.ended_at, reference) if options.ended_at else window.ended_at
        return StopWindow(started_at=started_at, ended_at=ended_at, elapsed_seconds=elapsed_seconds)

    async def reconcile(
        self,
        session: Session,
        elapsed_seconds: int,
        options: StopOptions | None = None,
        *,
        now: datetime,
    ) -> ReconciliationOutcome:
        options = options or StopOptions()
        window = self.resolve_window(session, elapsed_seconds, now, options)
        hours = duration_hours(window.started_at, window.ended_at)
        description = options.description if options.description is not None else session.title

        outcome = ReconciliationOutcome(
            session=session,
            elapsed_seconds=elapsed_seconds,
            window=window,
            hours_spent=hours,
            draft=None,
            work_log=StepResult("skipped", "Window is empty; nothing recorded"),
        )
        if hours <= 0:
            logger.info(
                "Skipping empty work log",
                extra={"title": session.title, "source_id": session.source.source_id},
            )
            return outcome

        draft = WorkLogDraft(
            source=session.source,
            description=description,
            hours_spent=hours,
            work_date=window.started_at.date(),
            started_at=window.started_at,
            ended_at=window.ended_at,
        )
        outcome.draft = draft

        try:
            record = await self._ledger.create(draft)
        except ApiError as exc:
            logger.warning(
                "Work log submission failed",
                extra={"title": session.title, "hours_spent": hours, "error": str(exc)},
            )
            outcome.work_log = StepResult("failed", str(exc))
            return outcome
        outcome.work_log = StepResult("ok", data=_record_data(record))
        logger.info(
            "Work log recorded",
            extra={"log_id": record.id, "title": session.title, "hours_spent": hours},
        )

        if options.mark_completed and session.source.source_type.is_follow_up:
            await self._finish_follow_up(session, options, outcome, today=now.date())
        return outcome

    async def _finish_follow_up(
        self,
        session: Session,
        options: StopOptions,
        outcome: ReconciliationOutcome,
        *,
        today: date,
    ) -> None:
        source = session.source
        gateway = self._gateways.get(source.source_type)
        if gateway is None:
            outcome.completion = StepResult(
                "failed", f"No follow-up gateway for {source.source_type.value}"
            )
            return

        story_id = await self._owning_story(session)
        if story_id is None:
            message = "Could not resolve the follow-up's owning story; complete it from the follow-up list"
            outcome.completion = StepResult("failed", message)
            if options.successor is not None:
                outcome.successor = StepResult("failed", message)
            return

        try:
            data = await gateway.complete(
                source,
                story_id,
                completed_at=options.completion_date or today,
                result_note=options.result_note,
            )
            outcome.completion = StepResult("ok", data=data)
        except ApiError as exc:
            logger.warning(
                "Follow-up completion rejected",
                extra={"record_id": source.source_id, "story_id": story_id, "error": str(exc)},
            )
            outcome.completion = StepResult("failed", str(exc))

        if options.successor is None:
            return
        try:
            successor = FollowUpSuccessor(
                content=options.successor.content,
                next_action_date=options.successor.next_action_date
                or add_days(today, self._successor_offset_days),
            )
        except ValidationError as exc:
            outcome.successor = StepResult("failed", exc.errors()[0]["msg"])
            return
        try:
            data = await gateway.create_successor(source, story_id, successor, event_date=today)
            outcome.successor = StepResult("ok", data=data)
        except ApiError as exc:
            logger.warning(
                "Successor follow-up creation failed",
                extra={"story_id": story_id, "error": str(exc)},
            )
            outcome.successor = StepResult("failed", str(exc))

    async def _owning_story(self, session: Session) -> int | None:
        source = session.source
        if source.parent_story_id is not None:
            return source.parent_story_id
        if self._catalog is None:
            return None
        try:
            match = await self._catalog.find(
                source.source_type, source.source_id, project_id=source.project_id
            )
        except ApiError as exc:
            logger.warning("Task source lookup failed", extra={"error": str(exc)})
            return None
        return match.parent_story_id if match else None


def _record_data(record: WorkLogRecord) -> dict[str, Any]:
    return record.model_dump(mode="json", exclude_none=True)


__all__ = [
    "ReconciliationCoordinator",
    "ReconciliationOutcome",
    "StepResult",
    "StopOptions",
    "SuccessorRequest",
]
