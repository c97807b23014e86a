"""Durable slots for the active session and the suspension stack."""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from pydantic import TypeAdapter, ValidationError

from ..timer.models import Session, SuspendedEntry
from .chroma import ChromaStore

logger = logging.getLogger(__name__)

ACTIVE_SESSION_SLOT = "active_session"
SUSPENDED_STACK_SLOT = "suspended_stack"

_STACK_ADAPTER = TypeAdapter(list[SuspendedEntry])


class PersistenceStore:
    """Mirror timer state into Chroma slots.

    Every save rewrites its slot in full. Write failures are logged and swallowed so
    the in-memory timer keeps working; an unreadable slot is cleared and treated as
    empty.
    """

    def __init__(self, store: ChromaStore) -> None:
        self._store = store

    def save_session(self, session: Session | None) -> None:
        try:
            if session is None:
                self._store.clear_slot(ACTIVE_SESSION_SLOT)
            else:
                self._store.write_slot(ACTIVE_SESSION_SLOT, session.model_dump_json())
        except Exception as exc:
            logger.warning(
                "Failed to persist active session", extra={"error": str(exc)}
            )

    def save_stack(self, entries: Sequence[SuspendedEntry]) -> None:
        try:
            payload = _STACK_ADAPTER.dump_json(list(entries)).decode("utf-8")
            self._store.write_slot(SUSPENDED_STACK_SLOT, payload)
        except Exception as exc:
            logger.warning(
                "Failed to persist suspension stack", extra={"error": str(exc)}
            )

    def load_session(self) -> Session | None:
        raw = self._read(ACTIVE_SESSION_SLOT)
        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError as exc:
            self._discard(ACTIVE_SESSION_SLOT, exc)
            return None

    def load_stack(self) -> list[SuspendedEntry]:
        raw = self._read(SUSPENDED_STACK_SLOT)
        if raw is None:
            return []
        try:
            return _STACK_ADAPTER.validate_json(raw)
        except ValidationError as exc:
            self._discard(SUSPENDED_STACK_SLOT, exc)
            return []

    def snapshot(self) -> dict[str, Any]:
        """Raw slot contents, decoded where possible, for diagnostics."""

        result: dict[str, Any] = {}
        for slot in (ACTIVE_SESSION_SLOT, SUSPENDED_STACK_SLOT):
            raw = self._read(slot)
            if raw is None:
                result[slot] = None
                continue
            try:
                result[slot] = json.loads(raw)
            except json.JSONDecodeError:
                result[slot] = raw
        return result

    def _read(self, slot: str) -> str | None:
        try:
            return self._store.read_slot(slot)
        except Exception as exc:  # pragma: no cover - depends on Chroma runtime
            logger.warning("Failed to read state slot", extra={"slot": slot, "error": str(exc)})
            return None

    def _discard(self, slot: str, exc: Exception) -> None:
        logger.warning(
            "Discarding unreadable state slot", extra={"slot": slot, "error": str(exc)}
        )
        try:
            self._store.clear_slot(slot)
        except Exception as clear_exc:  # pragma: no cover - depends on Chroma runtime
            logger.warning(
                "Failed to clear state slot", extra={"slot": slot, "error": str(clear_exc)}
            )


__all__ = ["ACTIVE_SESSION_SLOT", "PersistenceStore", "SUSPENDED_STACK_SLOT"]
