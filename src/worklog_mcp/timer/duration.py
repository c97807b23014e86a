"""Billable duration arithmetic shared by reconciliation and work-log amendment."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal

SECONDS_PER_DAY = 24 * 3600
MINIMUM_QUANTUM_HOURS = 0.01

_CLOCK_TIME = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def window_seconds(started_at: datetime, ended_at: datetime) -> float:
    """Seconds between the bounds, wrapping past midnight when ``ended_at`` precedes ``started_at``."""

    seconds = (ended_at - started_at).total_seconds()
    if seconds < 0:
        seconds += SECONDS_PER_DAY
    return seconds


def duration_hours(started_at: datetime, ended_at: datetime) -> float:
    """Hours billed for a window, rounded half-up to two decimals.

    A positive window that rounds to zero is billed the 0.01h minimum quantum; an
    empty window stays at 0.0.
    """

    seconds = window_seconds(started_at, ended_at)
    hours = Decimal(str(seconds / 3600)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if hours == 0 and seconds > 0:
        return MINIMUM_QUANTUM_HOURS
    return float(hours)


def parse_clock_time(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""

    match = _CLOCK_TIME.match(value.strip())
    if not match:
        raise ValueError(f"Invalid clock time '{value}'; expected HH:MM")
    hour, minute, second = (int(part) if part else 0 for part in match.groups())
    if hour > 23 or minute > 59 or second > 59:
        raise ValueError(f"Invalid clock time '{value}'")
    return time(hour, minute, second)


def resolve_bound(value: str | datetime, reference: datetime) -> datetime:
    """Resolve an operator-supplied window bound.

    Accepts a datetime, an ISO-8601 string, or a clock time anchored to ``reference``'s
    calendar day. Naive values take ``reference``'s timezone.
    """

    if isinstance(value, datetime):
        resolved = value
    else:
        text = value.strip()
        if _CLOCK_TIME.match(text):
            clock = parse_clock_time(text)
            resolved = datetime.combine(reference.date(), clock)
        else:
            try:
                resolved = datetime.fromisoformat(text)
            except ValueError as exc:
                raise ValueError(f"Invalid time '{value}'; use HH:MM or ISO-8601") from exc
    if resolved.tzinfo is None and reference.tzinfo is not None:
        resolved = resolved.replace(tzinfo=reference.tzinfo)
    return resolved


def window_on_day(day: date, start: str, end: str, *, tzinfo=None) -> tuple[datetime, datetime]:
    """Build a window from two clock times on ``day``."""

    started_at = datetime.combine(day, parse_clock_time(start), tzinfo=tzinfo)
    ended_at = datetime.combine(day, parse_clock_time(end), tzinfo=tzinfo)
    return started_at, ended_at


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)


__all__ = [
    "MINIMUM_QUANTUM_HOURS",
    "add_days",
    "duration_hours",
    "parse_clock_time",
    "resolve_bound",
    "window_on_day",
    "window_seconds",
]
