"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import hashlib
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessage

from kb_ingest.ingestion.models import DocMetadata
from kb_ingest.llm.embedding import EmbeddingClient
from kb_ingest.store.base import PointStoreBase
from kb_ingest.store.models import (
    MetadataFilter,
    OrderBy,
    PayloadPatch,
    Point,
    ScrollResult,
    apply_patch,
    get_path,
)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake point store ────────────────────────────────────────────────────


class FakePointStore(PointStoreBase):
    """In-memory store that records every mutating call in ``calls``."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, Point]] = {}
        self.calls: list[tuple[str, str]] = []

    def seed(self, collection: str, points: list[Point]) -> None:
        coll = self.collections.setdefault(collection, {})
        for point in points:
            coll[point.id] = point.model_copy(deep=True)

    def payloads(self, collection: str) -> list[dict[str, Any]]:
        return [p.payload for p in self.collections.get(collection, {}).values()]

    def _matching(self, collection: str, filters: list[MetadataFilter] | None) -> list[Point]:
        points = list(self.collections.get(collection, {}).values())
        return [p for p in points if all(f.matches(p.payload) for f in filters or [])]

    async def collection_exists(self, collection: str) -> bool:
        return collection in self.collections

    async def count_points(self, collection: str, filters: list[MetadataFilter] | None = None) -> int:
        return len(self._matching(collection, filters))

    async def scroll(
        self,
        collection: str,
        *,
        limit: int = 100,
        offset: int | None = None,
        filters: list[MetadataFilter] | None = None,
        order_by: OrderBy | None = None,
        with_vectors: bool = False,
    ) -> ScrollResult:
        points = self._matching(collection, filters)
        if order_by is not None:
            points.sort(key=lambda p: get_path(p.payload, order_by.key), reverse=order_by.direction == "desc")
        start = offset or 0
        page = points[start : start + limit]
        more = start + limit < len(points)
        return ScrollResult(points=page, next_offset=start + limit if more else None)

    async def get_points(self, collection: str, ids: list[str], *, with_vectors: bool = False) -> list[Point]:
        coll = self.collections.get(collection, {})
        return [coll[i] for i in ids if i in coll]

    async def upsert_points(self, collection: str, points: list[Point]) -> None:
        self.calls.append(("upsert", collection))
        self.seed(collection, points)

    async def update_payloads(self, collection: str, patches: list[PayloadPatch]) -> None:
        self.calls.append(("update", collection))
        coll = self.collections.get(collection, {})
        for patch in patches:
            if patch.id in coll:
                point = coll[patch.id]
                coll[patch.id] = point.model_copy(update={"payload": apply_patch(point.payload, patch.payload)})

    async def delete_points(self, collection: str, ids: list[str]) -> None:
        self.calls.append(("delete", collection))
        coll = self.collections.get(collection, {})
        for point_id in ids:
            coll.pop(point_id, None)

    async def delete_points_by_filter(self, collection: str, filters: list[MetadataFilter]) -> None:
        self.calls.append(("delete_by_filter", collection))
        for point in self._matching(collection, filters):
            del self.collections[collection][point.id]


# ── Fake embeddings ─────────────────────────────────────────────────────


class FakeEmbeddings(Embeddings):
    """Deterministic 8-dimensional vectors derived from the text hash."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255 for b in digest[:8]]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._vector(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed_documents(texts)


def fake_chat_model(*responses: AIMessage | Exception) -> MagicMock:
    """Chat model mock whose ``ainvoke`` yields *responses* in order.

    ``bind`` returns the same mock so bound and unbound calls share state.
    """
    model = MagicMock()
    model.ainvoke = AsyncMock(side_effect=list(responses))
    model.bind.return_value = model
    return model


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def store() -> FakePointStore:
    return FakePointStore()


@pytest.fixture()
def fake_embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture()
def embedder(fake_embeddings: FakeEmbeddings) -> EmbeddingClient:
    return EmbeddingClient(fake_embeddings, batch_size=10, timeout=5.0)


@pytest.fixture()
def doc() -> DocMetadata:
    return DocMetadata(
        source_type="confluence",
        source_id="page-1",
        url="https://wiki.example.com/pages/1",
        space_key="ENG",
        title="Deploy guide",
        last_modified_at="2024-05-01T10:00:00Z",
        last_modified_by="alice",
    )


@pytest.fixture()
def make_chat_model():
    return fake_chat_model
