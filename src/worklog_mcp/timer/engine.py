"""Single-session work timer with interrupt/resume and crash-safe restore."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Protocol, Sequence

from .models import Session, SourceRef, StopWindow, SuspendedEntry, TimerState, default_stop_window
from .stack import SuspensionStack
from .ticker import RefreshTicker

if TYPE_CHECKING:
    from ..reconciliation import ReconciliationCoordinator, ReconciliationOutcome, StopOptions

logger = logging.getLogger(__name__)


class StatePersistence(Protocol):
    """Durable mirror of the active session and the suspension stack."""

    def save_session(self, session: Session | None) -> None:
        ...

    def save_stack(self, entries: Sequence[SuspendedEntry]) -> None:
        ...

    def load_session(self) -> Session | None:
        ...

    def load_stack(self) -> list[SuspendedEntry]:
        ...


@dataclass(slots=True)
class RestoreReport:
    """What the engine recovered at boot."""

    state: TimerState
    elapsed_seconds: int
    suspended: int
    title: str | None = None
    kept_in_memory: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "elapsed_seconds": self.elapsed_seconds,
            "suspended": self.suspended,
            "title": self.title,
            "kept_in_memory": self.kept_in_memory,
        }


def _local_now() -> datetime:
    return datetime.now().astimezone()


class TimerEngine:
    """Own the active session and the suspension stack.

    Elapsed time is always derived from ``base_seconds`` and ``segment_start`` against
    the clock, so state persisted while running keeps accruing across a restart.
    Commands issued in the wrong state are ignored and return ``False``.
    """

    def __init__(
        self,
        *,
        stack: SuspensionStack | None = None,
        persistence: StatePersistence | None = None,
        coordinator: ReconciliationCoordinator | None = None,
        clock: Callable[[], datetime] | None = None,
        ticker: RefreshTicker | None = None,
    ) -> None:
        self._stack = stack or SuspensionStack()
        self._persistence = persistence
        self._coordinator = coordinator
        self._clock = clock or _local_now
        self._ticker = ticker
        self._session: Session | None = None
        self._reconciling = False

    @property
    def state(self) -> TimerState:
        return self._session.state if self._session is not None else TimerState.IDLE

    @property
    def session(self) -> Session | None:
        return self._session.model_copy(deep=True) if self._session is not None else None

    @property
    def stack(self) -> SuspensionStack:
        return self._stack

    @property
    def reconciling(self) -> bool:
        return self._reconciling

    def now(self) -> datetime:
        return self._clock()

    def attach_ticker(self, ticker: RefreshTicker) -> None:
        self._ticker = ticker
        self._sync_ticker()

    def sync_ticker(self) -> None:
        """Start or stop the display refresh to match the current state.

        Boot runs without an event loop, so a session restored as running only starts
        ticking once this is called from inside one.
        """

        self._sync_ticker()

    def elapsed(self, now: datetime | None = None) -> int:
        """Elapsed seconds of the active session; 0 when idle."""

        if self._session is None:
            return 0
        return self._session.elapsed(now or self._clock())

    def suspended(self) -> list[SuspendedEntry]:
        return self._stack.entries()

    def start(self, source: SourceRef, title: str) -> bool:
        """Begin a new session; only valid while idle."""

        if self._reconciling or self._session is not None:
            self._ignored("start")
            return False
        self._activate(source, title, base_seconds=0, fresh=True)
        self._after_session_change("start")
        return True

    def pause(self) -> bool:
        session = self._session
        if self._reconciling or session is None or session.state is not TimerState.RUNNING:
            self._ignored("pause")
            return False
        now = self._clock()
        session.base_seconds = session.elapsed(now)
        session.segment_start = None
        session.state = TimerState.PAUSED
        self._after_session_change("pause")
        return True

    def resume(self) -> bool:
        session = self._session
        if self._reconciling or session is None or session.state is not TimerState.PAUSED:
            self._ignored("resume")
            return False
        session.segment_start = self._clock()
        session.state = TimerState.RUNNING
        self._after_session_change("resume")
        return True

    def interrupt(self, source: SourceRef, title: str) -> bool:
        """Park the active session on the stack and start ``source`` in its place."""

        if self._reconciling or self._session is None:
            self._ignored("interrupt")
            return False
        self._suspend_active()
        self._activate(source, title, base_seconds=0, fresh=True)
        self._after_stack_change()
        self._after_session_change("interrupt")
        return True

    def resume_from_stack(self, entry_id: str) -> bool:
        """Reactivate a parked entry, parking the active session first if any."""

        if self._reconciling or entry_id not in self._stack:
            self._ignored("resume_from_stack")
            return False
        if self._session is not None:
            self._suspend_active()
        entry = self._stack.pop(entry_id)
        if entry is None:
            raise RuntimeError(f"Suspended entry {entry_id} vanished while resuming")
        self._activate(entry.source, entry.title, base_seconds=entry.snapshot_seconds, fresh=False)
        self._after_stack_change()
        self._after_session_change("resume_from_stack")
        return True

    def preview_stop(self) -> StopWindow | None:
        """Default reconciliation window for the active session, without stopping it."""

        if self._session is None:
            return None
        now = self._clock()
        return default_stop_window(self._session, self._session.elapsed(now), now)

    async def stop(self, options: StopOptions | None = None) -> ReconciliationOutcome | None:
        """Reconcile the active session and return to idle.

        The session is cleared whether or not reconciliation succeeds. Returns ``None``
        when there was nothing to stop or no coordinator is configured.
        """

        if self._reconciling or self._session is None:
            self._ignored("stop")
            return None

        now = self._clock()
        final_elapsed = self._session.elapsed(now)
        session = self._session.model_copy(deep=True)
        if self._coordinator is not None and options is not None:
            # Malformed window edits raise here, leaving the session active.
            self._coordinator.resolve_window(session, final_elapsed, now, options)
        self._reconciling = True
        self._sync_ticker(running=False)
        try:
            if self._coordinator is None:
                logger.warning(
                    "No reconciliation configured; discarding session",
                    extra={"title": session.title, "elapsed_seconds": final_elapsed},
                )
                return None
            return await self._coordinator.reconcile(session, final_elapsed, options, now=now)
        finally:
            self._reconciling = False
            self._session = None
            self._after_session_change("stop")

    def restore(self) -> RestoreReport:
        """Load persisted state; in-memory state, when present, takes precedence."""

        if self._session is not None or len(self._stack):
            return RestoreReport(
                state=self.state,
                elapsed_seconds=self.elapsed(),
                suspended=len(self._stack),
                title=self._session.title if self._session else None,
                kept_in_memory=True,
            )

        if self._persistence is not None:
            self._stack.load(self._persistence.load_stack())
            self._session = self._persistence.load_session()
            self._drop_half_parked()
        self._sync_ticker()

        report = RestoreReport(
            state=self.state,
            elapsed_seconds=self.elapsed(),
            suspended=len(self._stack),
            title=self._session.title if self._session else None,
        )
        logger.info("Timer state restored", extra=report.as_dict())
        return report

    def _drop_half_parked(self) -> None:
        # The stack slot is written before the session slot, so a crash in between
        # leaves the same session both active and parked.
        session = self._session
        latest = next(iter(self._stack), None)
        if session is None or latest is None or latest.session_id is None:
            return
        if latest.session_id != session.session_id:
            return
        self._stack.pop(latest.id)
        logger.warning(
            "Dropping suspended entry duplicated by the restored session",
            extra={"entry_id": latest.id, "title": latest.title},
        )
        self._after_stack_change()

    def _activate(self, source: SourceRef, title: str, *, base_seconds: int, fresh: bool) -> None:
        now = self._clock()
        self._session = Session(
            source=source,
            title=title,
            state=TimerState.RUNNING,
            segment_start=now,
            base_seconds=base_seconds,
            original_start=now if fresh else None,
        )

    def _suspend_active(self) -> None:
        session = self._session
        if session is None:
            raise RuntimeError("No active session to suspend")
        now = self._clock()
        entry = SuspendedEntry(
            id=self._stack.next_id(now),
            source=session.source,
            title=session.title,
            snapshot_seconds=session.elapsed(now),
            suspended_at=now,
            session_id=session.session_id,
        )
        self._stack.push(entry)
        self._session = None

    def _ignored(self, command: str) -> None:
        logger.debug(
            "Ignoring timer command in current state",
            extra={"command": command, "state": self.state.value, "reconciling": self._reconciling},
        )

    def _after_session_change(self, command: str) -> None:
        if self._persistence is not None:
            self._persistence.save_session(self._session)
        self._sync_ticker()
        logger.debug(
            "Timer transition",
            extra={"command": command, "state": self.state.value, "elapsed_seconds": self.elapsed()},
        )

    def _after_stack_change(self) -> None:
        if self._persistence is not None:
            self._persistence.save_stack(self._stack.entries())

    def _sync_ticker(self, running: bool | None = None) -> None:
        if self._ticker is None:
            return
        if running is None:
            running = self.state is TimerState.RUNNING and not self._reconciling
        self._ticker.sync(running)


__all__ = ["RestoreReport", "StatePersistence", "TimerEngine"]
