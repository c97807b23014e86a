"""Chroma-based persistence layer."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import ReconciliationRecord

# State documents are looked up by id, never by similarity; a constant vector keeps
# Chroma from loading an embedding model.
_NULL_EMBEDDING = [0.0]
SLOT_PREFIX = "slot::"


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by Worklog."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
        embeddings: Iterable[list[float]] | None = None,
    ) -> None:
        ...

    def upsert(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
        embeddings: Iterable[list[float]] | None = None,
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...

    def delete(self, *, ids: Iterable[str]) -> None:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by Worklog."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a journal event stored in Chroma."""

    id: str
    stream: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


class ChromaStore:
    """Durable state slots and an append-only event journal on ChromaDB."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "worklog_state",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install worklog-mcp with its dependencies"
            ) from exc

        try:
            return chromadb.PersistentClient(path=str(self._path))
        except Exception as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(f"Cannot open Chroma at {self._path}: {exc}") from exc

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def write_slot(self, name: str, payload: Any) -> None:
        """Replace the named slot with ``payload`` (last writer wins)."""

        collection = self._ensure_collection()
        document = payload if isinstance(payload, str) else json.dumps(payload)
        collection.upsert(
            documents=[document],
            metadatas=[
                {"kind": "slot", "slot": name, "timestamp": self._clock().isoformat()}
            ],
            ids=[f"{SLOT_PREFIX}{name}"],
            embeddings=[_NULL_EMBEDDING],
        )

    def read_slot(self, name: str) -> str | None:
        collection = self._ensure_collection()
        result = collection.get(ids=[f"{SLOT_PREFIX}{name}"])
        documents = result.get("documents") or []
        return documents[0] if documents else None

    def clear_slot(self, name: str) -> None:
        collection = self._ensure_collection()
        collection.delete(ids=[f"{SLOT_PREFIX}{name}"])

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            if metadata.get("kind") != "event":
                continue
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ChromaEvent(
                    id=event_id,
                    stream=metadata.get("stream", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def record_event(
        self,
        *,
        stream: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        counter = self._counters[stream] = self._counters[stream] + 1
        event_id = f"{stream}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata: dict[str, Any] = {
            "kind": "event",
            "stream": stream,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            # Chroma metadata values must be scalars.
            record_metadata.update(
                {key: value for key, value in metadata.items() if isinstance(value, (str, int, float, bool))}
            )

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
            embeddings=[_NULL_EMBEDDING],
        )

        return ChromaEvent(
            id=event_id,
            stream=stream,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_stream_events(self, stream: str, *, limit: int | None = None) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"stream": stream}, limit=limit)
        return self._convert_result(result)

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        where = {"kind": "event"}
        if filters:
            where = {"$and": [{"kind": "event"}, *({key: value} for key, value in filters.items())]}
        result = collection.get(where=where)
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[-limit:] if limit else events

    def record_reconciliation(self, outcome: dict[str, Any]) -> ChromaEvent:
        """Journal a reconciliation outcome, keeping the draft for failed submissions."""

        source = outcome.get("source") or {}
        return self.record_event(
            stream="reconciliation",
            event_type="reconciliation",
            body=outcome,
            metadata={
                "status": outcome.get("status"),
                "work_log_status": (outcome.get("work_log") or {}).get("status"),
                "source_type": source.get("source_type"),
                "source_id": source.get("source_id"),
                "project_id": source.get("project_id"),
                "hours_spent": outcome.get("hours_spent"),
            },
        )

    def list_reconciliations(self, *, failed_only: bool = False) -> list[ReconciliationRecord]:
        filters = {"event_type": "reconciliation"}
        if failed_only:
            filters["work_log_status"] = "failed"
        records: list[ReconciliationRecord] = []
        for event in self.search_events(filters=filters):
            doc = json.loads(event.document)
            records.append(ReconciliationRecord.from_outcome(event.id, event.timestamp, doc))
        return records


__all__ = ["ChromaEvent", "ChromaStore", "ChromaUnavailableError", "SLOT_PREFIX"]
