"""Unit tests for the store layer: models, path helpers and the Chroma backend."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from kb_ingest.store.chroma_store import ChromaPointStore, _build_chroma_where
from kb_ingest.store.models import (
    MetadataFilter,
    OrderBy,
    PayloadPatch,
    Point,
    apply_patch,
    flatten_payload,
    get_path,
)

PAYLOAD: dict[str, Any] = {
    "doc": {"source_id": "page-1", "title": "Guide", "space_key": None},
    "chunk": {"text": "hello", "index": 2, "heading_path": ["A"]},
    "editor": {"position": 2, "quality_score": 80.5},
    "tags": ["python"],
}


# ── Models and helpers ─────────────────────────────────────────────────


class TestMetadataFilter:
    def test_equals_factory(self) -> None:
        f = MetadataFilter.equals("doc.source_id", "page-1")
        assert (f.field, f.operator, f.value) == ("doc.source_id", "eq", "page-1")

    def test_not_equals_factory(self) -> None:
        assert MetadataFilter.not_equals("x", 1).operator == "ne"

    def test_one_of_factory(self) -> None:
        f = MetadataFilter.one_of("chunk.type", ["faq", "code"])
        assert f.operator == "in"
        assert f.value == ["faq", "code"]

    @pytest.mark.parametrize(
        ("flt", "expected"),
        [
            (MetadataFilter.equals("doc.source_id", "page-1"), True),
            (MetadataFilter.not_equals("doc.source_id", "page-1"), False),
            (MetadataFilter.one_of("doc.title", ["Guide", "Other"]), True),
            (MetadataFilter(field="doc.title", operator="nin", value=["Guide"]), False),
            (MetadataFilter(field="editor.position", operator="gte", value=2), True),
            (MetadataFilter(field="editor.position", operator="lt", value=2), False),
            (MetadataFilter(field="missing.key", operator="gt", value=0), False),
        ],
    )
    def test_matches(self, flt: MetadataFilter, expected: bool) -> None:
        assert flt.matches(PAYLOAD) is expected

    def test_unknown_operator(self) -> None:
        with pytest.raises(ValueError, match="Unsupported filter operator"):
            MetadataFilter(field="editor.position", operator="regex", value=".*").matches(PAYLOAD)


class TestPathHelpers:
    def test_get_path(self) -> None:
        assert get_path(PAYLOAD, "editor.position") == 2
        assert get_path(PAYLOAD, "editor.nope") is None
        assert get_path(PAYLOAD, "tags.0") is None

    def test_apply_patch_sets_dotted_keys_without_mutating(self) -> None:
        patched = apply_patch(PAYLOAD, {"editor.position": 7, "acl.visibility": "public", "tags": ["go"]})
        assert patched["editor"] == {"position": 7, "quality_score": 80.5}
        assert patched["acl"] == {"visibility": "public"}
        assert patched["tags"] == ["go"]
        assert PAYLOAD["editor"]["position"] == 2

    def test_flatten_payload_keeps_scalars_only(self) -> None:
        flat = flatten_payload(PAYLOAD)
        assert flat == {
            "doc.source_id": "page-1",
            "doc.title": "Guide",
            "chunk.text": "hello",
            "chunk.index": 2,
            "editor.position": 2,
            "editor.quality_score": 80.5,
        }


# ── Chroma backend ─────────────────────────────────────────────────────


def _stored(point_id: str, position: int) -> dict[str, Any]:
    payload = {"doc": {"source_id": "page-1"}, "chunk": {"text": f"t{position}"}, "editor": {"position": position}}
    return {"id": point_id, "metadata": {"editor.position": position, "_payload": json.dumps(payload)}}


class TestChromaPointStore:
    @pytest.fixture()
    def collection(self) -> MagicMock:
        coll = MagicMock()
        for method in ("get", "upsert", "update", "delete", "count"):
            setattr(coll, method, AsyncMock())
        return coll

    @pytest.fixture()
    def client(self, collection: MagicMock) -> MagicMock:
        client = MagicMock()
        client.get_or_create_collection = AsyncMock(return_value=collection)
        client.list_collections = AsyncMock(return_value=[SimpleNamespace(name="kb_a"), "kb_b"])
        return client

    @pytest.fixture()
    def chroma(self, client: MagicMock) -> ChromaPointStore:
        return ChromaPointStore(client=client)

    def test_build_where(self) -> None:
        assert _build_chroma_where([MetadataFilter.equals("doc.source_id", "a")]) == {"doc.source_id": {"$eq": "a"}}
        where = _build_chroma_where(
            [MetadataFilter.equals("doc.source_id", "a"), MetadataFilter(field="chunk.index", operator="gte", value=1)]
        )
        assert where == {"$and": [{"doc.source_id": {"$eq": "a"}}, {"chunk.index": {"$gte": 1}}]}
        assert _build_chroma_where([]) is None

    def test_build_where_unsupported(self) -> None:
        with pytest.raises(ValueError, match="Unsupported filter operator"):
            _build_chroma_where([MetadataFilter(field="x", operator="regex", value=".*")])

    async def test_collection_exists(self, chroma) -> None:
        assert await chroma.collection_exists("kb_a")
        assert await chroma.collection_exists("kb_b")
        assert not await chroma.collection_exists("kb_c")

    async def test_upsert_stores_payload_and_flat_keys(self, chroma, collection: MagicMock) -> None:
        await chroma.upsert_points("kb_a", [Point(id="p1", vector=[0.1, 0.2], payload=PAYLOAD)])
        kwargs = collection.upsert.await_args.kwargs
        assert kwargs["ids"] == ["p1"]
        assert kwargs["embeddings"] == [[0.1, 0.2]]
        assert kwargs["documents"] == ["hello"]
        metadata = kwargs["metadatas"][0]
        assert metadata["doc.source_id"] == "page-1"
        assert json.loads(metadata["_payload"]) == PAYLOAD

    async def test_upsert_requires_vectors(self, chroma) -> None:
        with pytest.raises(ValueError):
            await chroma.upsert_points("kb_a", [Point(id="p1", payload=PAYLOAD)])

    async def test_unordered_scroll_pages(self, chroma, collection: MagicMock) -> None:
        rows = [_stored("a", 0), _stored("b", 1), _stored("c", 2)]
        collection.get.return_value = {"ids": [r["id"] for r in rows], "metadatas": [r["metadata"] for r in rows]}
        page = await chroma.scroll("kb_a", limit=2)
        assert [p.id for p in page.points] == ["a", "b"]
        assert page.next_offset == 2
        assert collection.get.await_args.kwargs["limit"] == 3
        assert page.points[0].payload["chunk"]["text"] == "t0"

    async def test_ordered_scroll_sorts_client_side(self, chroma, collection: MagicMock) -> None:
        rows = [_stored("c", 2), _stored("a", 0), _stored("b", 1)]
        collection.get.return_value = {"ids": [r["id"] for r in rows], "metadatas": [r["metadata"] for r in rows]}
        first = await chroma.scroll("kb_a", limit=2, order_by=OrderBy(key="editor.position"))
        assert [p.id for p in first.points] == ["a", "b"]
        assert first.next_offset == 2
        second = await chroma.scroll("kb_a", limit=2, offset=2, order_by=OrderBy(key="editor.position"))
        assert [p.id for p in second.points] == ["c"]
        assert second.next_offset is None

    async def test_count_points(self, chroma, collection: MagicMock) -> None:
        collection.count.return_value = 5
        assert await chroma.count_points("kb_a") == 5
        collection.get.return_value = {"ids": ["a", "b"]}
        assert await chroma.count_points("kb_a", [MetadataFilter.equals("doc.source_id", "x")]) == 2

    async def test_update_payloads_merges_and_clears_stale_keys(self, chroma, collection: MagicMock) -> None:
        row = _stored("a", 0)
        collection.get.return_value = {"ids": ["a"], "metadatas": [row["metadata"]], "embeddings": [[0.25, 0.5]]}
        await chroma.update_payloads(
            "kb_a",
            [
                PayloadPatch(id="a", payload={"editor.position": 4}),
                PayloadPatch(id="a", payload={"chunk": {}}),
                PayloadPatch(id="missing", payload={"editor.position": 1}),
            ],
        )
        kwargs = collection.update.await_args.kwargs
        assert kwargs["ids"] == ["a"]
        metadata = kwargs["metadatas"][0]
        assert metadata["editor.position"] == 4
        assert metadata["chunk.text"] is None
        assert json.loads(metadata["_payload"])["editor"]["position"] == 4

    async def test_update_payloads_keeps_stored_vector(self, chroma, collection: MagicMock) -> None:
        row = _stored("a", 0)
        collection.get.return_value = {"ids": ["a"], "metadatas": [row["metadata"]], "embeddings": [[0.25, 0.5]]}
        await chroma.update_payloads("kb_a", [PayloadPatch(id="a", payload={"editor.position": 7})])

        assert "embeddings" in collection.get.await_args.kwargs["include"]
        kwargs = collection.update.await_args.kwargs
        assert kwargs["embeddings"] == [[0.25, 0.5]]
        assert kwargs["documents"] == ["t0"]

    async def test_collections_created_without_embedding_function(self, chroma, client: MagicMock) -> None:
        await chroma.count_points("kb_a")
        assert client.get_or_create_collection.await_args.kwargs["embedding_function"] is None

    async def test_delete_by_filter_requires_filters(self, chroma) -> None:
        with pytest.raises(ValueError):
            await chroma.delete_points_by_filter("kb_a", [])

    async def test_delete_by_filter(self, chroma, collection: MagicMock) -> None:
        await chroma.delete_points_by_filter("kb_a", [MetadataFilter.equals("doc.source_id", "page-1")])
        collection.delete.assert_awaited_once_with(where={"doc.source_id": {"$eq": "page-1"}})

    async def test_scroll_all_drains_pages(self, chroma, collection: MagicMock) -> None:
        rows = [_stored(str(i), i) for i in range(5)]
        pages = [
            {"ids": [r["id"] for r in rows[0:3]], "metadatas": [r["metadata"] for r in rows[0:3]]},
            {"ids": [r["id"] for r in rows[2:5]], "metadatas": [r["metadata"] for r in rows[2:5]]},
            {"ids": [r["id"] for r in rows[4:5]], "metadatas": [r["metadata"] for r in rows[4:5]]},
        ]
        collection.get.side_effect = pages
        points = await chroma.scroll_all("kb_a", page_size=2)
        assert [p.id for p in points] == ["0", "1", "2", "3", "4"]
