from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from worklog_mcp.storage import ChromaStore


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: dict[str, _Record] = {}

    def add(self, *, documents, metadatas, ids, embeddings=None) -> None:
        for document, metadata, record_id in zip(documents, metadatas, ids):
            if record_id in self.records:
                raise ValueError(f"duplicate id {record_id}")
            self.records[record_id] = _Record(document=document, metadata=dict(metadata), id=record_id)

    def upsert(self, *, documents, metadatas, ids, embeddings=None) -> None:
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records[record_id] = _Record(document=document, metadata=dict(metadata), id=record_id)

    def get(self, *, ids=None, where=None, limit=None):
        filtered = list(self.records.values())
        if ids is not None:
            filtered = [record for record in filtered if record.id in set(ids)]
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }

    def delete(self, *, ids) -> None:
        for record_id in ids:
            self.records.pop(record_id, None)


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


@pytest.fixture
def stub_client() -> StubClient:
    return StubClient()


@pytest.fixture
def chroma_store(tmp_path: Path, stub_client: StubClient) -> ChromaStore:
    return ChromaStore(
        tmp_path,
        client_factory=lambda: stub_client,
        clock=lambda: datetime.fromisoformat("2025-03-03T09:00:00+00:00"),
    )
