"""Unit tests for editor-side chunk operations."""

from __future__ import annotations

import copy

import pytest

from kb_ingest.collection.lifecycle import ChunkLifecycleManager
from kb_ingest.errors import NotFoundError, ValidationError
from kb_ingest.ingestion.assembler import assemble_chunks
from kb_ingest.ingestion.models import ChunkCandidate, DocMetadata
from kb_ingest.ingestion.normalizer import compute_content_hash
from kb_ingest.llm.embedding import EmbeddingClient
from kb_ingest.store.models import MetadataFilter, Point

COLLECTION_ID = "test"
COLLECTION = "kb_test"


@pytest.fixture()
def manager(store, embedder: EmbeddingClient) -> ChunkLifecycleManager:
    return ChunkLifecycleManager(store, embedder, collection_prefix="kb_")


def _seed(store, doc: DocMetadata, texts: list[str], tags: list[str] | None = None) -> list[str]:
    candidates = [ChunkCandidate(text=t, heading_path=["Guide"]) for t in texts]
    payloads = assemble_chunks(candidates, doc, tags=[list(tags or []) for _ in texts])
    store.seed(COLLECTION, [Point(id=p.chunk.id, vector=[0.0], payload=p.to_payload()) for p in payloads])
    return [p.chunk.id for p in payloads]


def _by_position(store) -> list[dict]:
    return sorted(store.payloads(COLLECTION), key=lambda p: p["editor"]["position"])


class TestCreateChunk:
    async def test_missing_collection(self, manager: ChunkLifecycleManager) -> None:
        with pytest.raises(NotFoundError, match="Collection not found: test"):
            await manager.create_chunk(COLLECTION_ID, "text")

    async def test_appends_editor_chunk(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        _seed(store, doc, ["one", "two"])
        created = await manager.create_chunk(COLLECTION_ID, "  Written by hand  ", tags=["Manual"], user_id="bob")

        assert created.position == 2
        assert created.chunk.text == "Written by hand"
        assert created.doc.source_id == "editor_test"
        assert created.doc.source_type == "manual"
        assert created.doc.url == f"manual://editor/test/{created.chunk.id}"
        assert created.tags == ["manual"]
        assert created.editor.last_edited_by == "bob"
        assert store.collections[COLLECTION][created.chunk.id].vector

    async def test_explicit_position_and_doc(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        _seed(store, doc, ["one"])
        created = await manager.create_chunk(COLLECTION_ID, "text", position=7, doc=doc)
        assert created.position == 7
        assert created.chunk.index == 7
        assert created.doc.source_id == "page-1"

    async def test_blank_text_rejected(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        _seed(store, doc, ["one"])
        with pytest.raises(ValidationError):
            await manager.create_chunk(COLLECTION_ID, "   ")


class TestUpdateChunk:
    async def test_text_change_reembeds_and_upserts(
        self, manager: ChunkLifecycleManager, store, fake_embeddings, doc: DocMetadata
    ) -> None:
        [chunk_id] = _seed(store, doc, ["old text"], tags=["python"])
        updated = await manager.update_chunk(COLLECTION_ID, chunk_id, text="new text", user_id="bob")

        assert fake_embeddings.calls == [["new text"]]
        assert store.calls == [("upsert", COLLECTION)]
        assert updated.chunk.text == "new text"
        assert updated.chunk.content_hash == compute_content_hash("new text")
        assert updated.chunk.id == chunk_id
        assert updated.tags == ["python"]
        assert updated.editor.edit_count == 1
        assert store.collections[COLLECTION][chunk_id].payload["chunk"]["text"] == "new text"

    async def test_metadata_change_is_patch_only(
        self, manager: ChunkLifecycleManager, store, fake_embeddings, doc: DocMetadata
    ) -> None:
        [chunk_id] = _seed(store, doc, ["same text"])
        updated = await manager.update_chunk(
            COLLECTION_ID,
            chunk_id,
            text="same text",
            chunk_type="faq",
            heading_path=["A", "B"],
            tags=["New Tag"],
        )

        assert fake_embeddings.calls == []
        assert store.calls == [("update", COLLECTION)]
        stored = store.collections[COLLECTION][chunk_id].payload
        assert stored["chunk"]["type"] == "faq"
        assert stored["chunk"]["section"] == "A / B"
        assert stored["tags"] == ["new-tag"]
        assert stored["editor"]["edit_count"] == 1
        assert updated.chunk.heading_path == ["A", "B"]

    async def test_edit_count_accumulates(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        [chunk_id] = _seed(store, doc, ["text"])
        await manager.update_chunk(COLLECTION_ID, chunk_id, tags=["a"])
        updated = await manager.update_chunk(COLLECTION_ID, chunk_id, text="other text")
        assert updated.editor.edit_count == 2

    async def test_missing_chunk(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        _seed(store, doc, ["text"])
        with pytest.raises(NotFoundError, match="Chunk not found: nope"):
            await manager.update_chunk(COLLECTION_ID, "nope", text="x")


class TestDeleteChunk:
    async def test_delete(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        ids = _seed(store, doc, ["one", "two"])
        await manager.delete_chunk(COLLECTION_ID, ids[0])
        assert list(store.collections[COLLECTION]) == [ids[1]]

    async def test_delete_missing(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        _seed(store, doc, ["one"])
        with pytest.raises(NotFoundError):
            await manager.delete_chunk(COLLECTION_ID, "nope")
        assert store.calls == []


class TestSplitChunk:
    async def test_split_by_blocks(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        ids = _seed(store, doc, ["zero", "first half second half"], tags=["python"])
        pieces = await manager.split_chunk(COLLECTION_ID, ids[1], new_text_blocks=["first half", " ", "second half"])

        assert [p.chunk.text for p in pieces] == ["first half", "second half"]
        assert [p.position for p in pieces] == [1, 2]
        assert all(p.tags == ["python"] for p in pieces)
        assert all(p.chunk.heading_path == ["Guide"] for p in pieces)
        assert all(p.doc.source_id == "page-1" for p in pieces)
        assert len({p.chunk.id for p in pieces} | {ids[1]}) == 3
        assert ids[1] not in store.collections[COLLECTION]
        assert store.calls == [("delete", COLLECTION), ("upsert", COLLECTION)]

    async def test_split_by_offsets(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        [chunk_id] = _seed(store, doc, ["first part. second part. third"])
        pieces = await manager.split_chunk(COLLECTION_ID, chunk_id, split_points=[24, 11])
        assert [p.chunk.text for p in pieces] == ["first part.", "second part.", "third"]
        assert [p.position for p in pieces] == [0, 1, 2]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"new_text_blocks": ["only one", "  "]},
            {"split_points": [0]},
            {"split_points": [1000]},
        ],
    )
    async def test_split_needs_two_pieces(
        self, manager: ChunkLifecycleManager, store, doc: DocMetadata, kwargs: dict
    ) -> None:
        [chunk_id] = _seed(store, doc, ["some text"])
        with pytest.raises(ValidationError, match="Split must result in at least 2 non-empty chunks"):
            await manager.split_chunk(COLLECTION_ID, chunk_id, **kwargs)
        assert store.calls == []

    async def test_split_requires_blocks_or_points(self, manager: ChunkLifecycleManager) -> None:
        with pytest.raises(ValidationError):
            await manager.split_chunk(COLLECTION_ID, "any")


class TestMergeChunks:
    async def test_merge_scenario(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        ids = _seed(store, doc, [f"t{i}" for i in range(6)])
        merged = await manager.merge_chunks(COLLECTION_ID, [ids[5], ids[2]], separator="\n\n")

        assert merged.position == 2
        assert merged.chunk.text == "t2\n\nt5"
        assert ids[2] not in store.collections[COLLECTION]
        assert ids[5] not in store.collections[COLLECTION]
        assert merged.chunk.id in store.collections[COLLECTION]
        assert len(store.collections[COLLECTION]) == 5

    async def test_tags_unioned_in_order(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        first = _seed(store, doc, ["a"], tags=["python", "docker"])
        second = _seed(store, doc, ["b"], tags=["docker", "redis"])
        # Second seed restarts positions at 0; move it after the first.
        store.collections[COLLECTION][second[0]].payload["editor"]["position"] = 1
        merged = await manager.merge_chunks(COLLECTION_ID, [*first, *second])
        assert merged.tags == ["python", "docker", "redis"]

    async def test_needs_two_distinct_ids(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        ids = _seed(store, doc, ["a"])
        with pytest.raises(ValidationError):
            await manager.merge_chunks(COLLECTION_ID, [ids[0], ids[0]])

    async def test_missing_chunk(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        ids = _seed(store, doc, ["a"])
        with pytest.raises(NotFoundError):
            await manager.merge_chunks(COLLECTION_ID, [ids[0], "nope"])
        assert store.calls == []


class TestReorderAndQuality:
    async def test_reorder_patches_positions(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        ids = _seed(store, doc, ["a", "b", "c"])
        moved = await manager.reorder_chunks(COLLECTION_ID, [(ids[0], 2), (ids[2], 0)], user_id="bob")

        assert moved == 2
        assert [p["chunk"]["text"] for p in _by_position(store)] == ["c", "b", "a"]
        assert store.collections[COLLECTION][ids[0]].payload["editor"]["last_edited_by"] == "bob"
        assert store.calls == [("update", COLLECTION)]

    async def test_reorder_verifies_every_id(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        ids = _seed(store, doc, ["a"])
        with pytest.raises(NotFoundError):
            await manager.reorder_chunks(COLLECTION_ID, [(ids[0], 1), ("nope", 0)])
        assert store.calls == []

    async def test_quality_score(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        [chunk_id] = _seed(store, doc, ["a"])
        updated = await manager.update_quality_score(COLLECTION_ID, chunk_id, 72.5, ["too short"])
        assert updated.editor.quality_score == 72.5
        assert store.collections[COLLECTION][chunk_id].payload["editor"]["quality_issues"] == ["too short"]

    @pytest.mark.parametrize("score", [-1, 100.5])
    async def test_quality_score_bounds(self, manager: ChunkLifecycleManager, score: float) -> None:
        with pytest.raises(ValidationError):
            await manager.update_quality_score(COLLECTION_ID, "any", score)


class TestListing:
    async def test_list_chunks_ordered_and_filtered(
        self, manager: ChunkLifecycleManager, store, doc: DocMetadata
    ) -> None:
        ids = _seed(store, doc, ["a", "b", "c"])
        store.collections[COLLECTION][ids[0]].payload["editor"]["position"] = 9
        _seed(store, doc.model_copy(update={"source_id": "page-2"}), ["z"])

        page = await manager.list_chunks(COLLECTION_ID, source_id="page-1", limit=2)
        assert page.total == 3
        assert [c.chunk.text for c in page.chunks] == ["b", "c"]
        assert page.next_offset == 2

    async def test_list_chunks_falls_back_to_unordered(
        self, manager: ChunkLifecycleManager, store, doc: DocMetadata
    ) -> None:
        _seed(store, doc, ["a", "b"])
        original_scroll = store.scroll

        async def _scroll(collection, **kwargs):
            if kwargs.get("order_by") is not None:
                raise RuntimeError("no ordering index")
            return await original_scroll(collection, **kwargs)

        store.scroll = _scroll
        page = await manager.list_chunks(COLLECTION_ID)
        assert {c.chunk.text for c in page.chunks} == {"a", "b"}

    async def test_list_documents(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        ids = _seed(store, doc, ["a", "b"])
        newer = doc.model_copy(
            update={"source_id": "page-2", "title": "Newer", "last_modified_at": "2024-09-01T00:00:00Z"}
        )
        _seed(store, newer, ["c"])
        store.collections[COLLECTION][ids[0]].payload["editor"]["quality_score"] = 60
        store.collections[COLLECTION][ids[1]].payload["editor"]["quality_score"] = 80

        summaries = await manager.list_documents(COLLECTION_ID)
        assert [s.source_id for s in summaries] == ["page-2", "page-1"]
        assert summaries[1].chunk_count == 2
        assert summaries[1].avg_quality_score == 70
        assert summaries[0].avg_quality_score is None
        assert summaries[0].title == "Newer"

    async def test_list_documents_with_http_date(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        _seed(store, doc, ["a"])
        web = doc.model_copy(update={"source_type": "web", "source_id": "https://example.com/a"})
        [web_id] = _seed(store, web, ["b"])
        store.collections[COLLECTION][web_id].payload["doc"]["last_modified_at"] = "Mon, 01 Jul 2024 10:00:00 GMT"

        summaries = await manager.list_documents(COLLECTION_ID)
        assert [s.source_id for s in summaries] == ["https://example.com/a", "page-1"]
        assert summaries[0].last_modified_at == "2024-07-01T10:00:00+00:00"

    async def test_collapse_duplicates(self, manager: ChunkLifecycleManager, store, doc: DocMetadata) -> None:
        [kept_id] = _seed(store, doc, ["Same text"])
        stale = copy.deepcopy(store.collections[COLLECTION][kept_id].payload)
        stale["chunk"]["id"] = "stale"
        stale["doc"]["last_modified_at"] = "2023-01-01T00:00:00Z"
        store.seed(COLLECTION, [Point(id="stale", vector=[0.0], payload=stale)])

        removed = await manager.collapse_duplicates(COLLECTION_ID)
        assert removed == 1
        assert list(store.collections[COLLECTION]) == [kept_id]
        assert await store.count_points(COLLECTION, [MetadataFilter.equals("chunk.id", "stale")]) == 0
