"""Timer state machine, suspension stack and duration arithmetic."""

from .engine import RestoreReport, StatePersistence, TimerEngine
from .models import (
    Session,
    SourceRef,
    SourceType,
    StopWindow,
    SuspendedEntry,
    TimerState,
    default_stop_window,
    format_duration,
)
from .stack import SuspensionStack
from .ticker import RefreshTicker

__all__ = [
    "RefreshTicker",
    "RestoreReport",
    "Session",
    "SourceRef",
    "SourceType",
    "StatePersistence",
    "StopWindow",
    "SuspendedEntry",
    "SuspensionStack",
    "TimerEngine",
    "TimerState",
    "default_stop_window",
    "format_duration",
]
