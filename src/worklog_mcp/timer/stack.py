"""Suspension stack for preempted sessions."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Iterator

from .models import SuspendedEntry


class SuspensionStack:
    """Parked sessions keyed by id, kept in insertion order.

    Entries are pushed in preemption order and listed most-recent-first, but any
    entry may be popped by id, so this is an id-keyed store rather than a strict stack.
    """

    def __init__(self, entries: Iterable[SuspendedEntry] | None = None) -> None:
        self._entries: dict[str, SuspendedEntry] = {}
        self._last_token = 0
        if entries:
            self.load(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SuspendedEntry]:
        return iter(self.entries())

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def entries(self) -> list[SuspendedEntry]:
        """Return entries most-recent-first."""

        return list(reversed(self._entries.values()))

    def get(self, entry_id: str) -> SuspendedEntry | None:
        return self._entries.get(entry_id)

    def next_id(self, now: datetime) -> str:
        """Return a fresh, strictly increasing millisecond token."""

        token = max(int(now.timestamp() * 1000), self._last_token + 1)
        self._last_token = token
        return str(token)

    def push(self, entry: SuspendedEntry) -> None:
        if entry.id in self._entries:
            raise ValueError(f"Suspended entry '{entry.id}' already exists")
        self._entries[entry.id] = entry
        self._observe_token(entry.id)

    def pop(self, entry_id: str) -> SuspendedEntry | None:
        return self._entries.pop(entry_id, None)

    def load(self, entries: Iterable[SuspendedEntry]) -> None:
        """Replace contents with ``entries`` given most-recent-first."""

        self._entries.clear()
        for entry in reversed(list(entries)):
            self._entries[entry.id] = entry
            self._observe_token(entry.id)

    def clear(self) -> None:
        self._entries.clear()

    def _observe_token(self, entry_id: str) -> None:
        if entry_id.isdigit():
            self._last_token = max(self._last_token, int(entry_id))


__all__ = ["SuspensionStack"]
