"""Editor-side operations on persisted chunks.

Every operation addresses a collection by its short id; the store name is
``collection_prefix + collection_id``.  Operations that change chunk text
re-embed and do a full upsert; everything else is a payload patch.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from kb_ingest.config import settings
from kb_ingest.errors import NotFoundError, ValidationError
from kb_ingest.ingestion.assembler import build_chunk_metadata, deduplicate_by_content_hash, parse_timestamp
from kb_ingest.ingestion.models import (
    ChunkPayload,
    ChunkType,
    DocMetadata,
    EditorMetadata,
    create_default_acl,
    create_default_editor_metadata,
    utc_now_iso,
)
from kb_ingest.ingestion.normalizer import normalize_tags
from kb_ingest.store.models import MetadataFilter, OrderBy, PayloadPatch, Point, apply_patch

if TYPE_CHECKING:
    from kb_ingest.llm.embedding import EmbeddingClient
    from kb_ingest.store.base import PointStoreBase

logger = logging.getLogger(__name__)

POSITION_KEY = "editor.position"


class ChunkPage(BaseModel):
    total: int
    chunks: list[ChunkPayload] = Field(default_factory=list)
    next_offset: int | None = None


class DocumentSummary(BaseModel):
    source_id: str
    source_type: str
    title: str | None = None
    url: str | None = None
    chunk_count: int = 0
    avg_quality_score: float | None = None
    last_modified_at: str | None = None


def _payload_of(point: Point) -> ChunkPayload:
    return ChunkPayload.model_validate(point.payload)


class ChunkLifecycleManager:
    """Create, edit, split, merge and reorder chunks in a collection.

    Parameters
    ----------
    store:
        Point store holding the collections.
    embedder:
        Used whenever chunk text changes.
    collection_prefix:
        Prepended to every collection id.
    """

    def __init__(
        self,
        store: PointStoreBase,
        embedder: EmbeddingClient,
        *,
        collection_prefix: str = settings.collection_prefix,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._prefix = collection_prefix

    def collection_name(self, collection_id: str) -> str:
        return f"{self._prefix}{collection_id}"

    async def _resolve(self, collection_id: str) -> str:
        name = self.collection_name(collection_id)
        if not await self._store.collection_exists(name):
            raise NotFoundError("Collection", collection_id)
        return name

    async def _get_chunk(self, collection: str, chunk_id: str) -> ChunkPayload:
        points = await self._store.get_points(collection, [chunk_id])
        if not points:
            raise NotFoundError("Chunk", chunk_id)
        return _payload_of(points[0])

    async def _embed_one(self, text: str, chunk_id: str) -> list[float]:
        vectors = await self._embedder.embed([text], correlation_id=f"chunk_{chunk_id}")
        return vectors[0]

    @staticmethod
    def _touched(editor: EditorMetadata | None, fallback_position: int, user_id: str | None) -> EditorMetadata:
        editor = editor or create_default_editor_metadata(fallback_position)
        return editor.model_copy(
            update={
                "last_edited_at": utc_now_iso(),
                "last_edited_by": user_id,
                "edit_count": editor.edit_count + 1,
            }
        )

    # ── create / update / delete ───────────────────────────────────────

    async def create_chunk(
        self,
        collection_id: str,
        text: str,
        *,
        chunk_type: ChunkType = "knowledge",
        heading_path: list[str] | None = None,
        tags: list[str] | None = None,
        position: int | None = None,
        doc: DocMetadata | None = None,
        user_id: str | None = None,
    ) -> ChunkPayload:
        text = text.strip() if text else ""
        if not text:
            raise ValidationError("Chunk text cannot be empty", field="text")
        if position is not None and position < 0:
            raise ValidationError("Position must be non-negative", field="position")

        collection = await self._resolve(collection_id)
        chunk_id = str(uuid.uuid4())
        if position is None:
            position = await self._store.count_points(collection)

        now = utc_now_iso()
        if doc is None:
            doc = DocMetadata(
                source_type="manual",
                source_id=f"editor_{collection_id}",
                url=f"manual://editor/{collection_id}/{chunk_id}",
                last_modified_at=now,
                last_modified_by=user_id,
            )

        payload = ChunkPayload(
            doc=doc,
            chunk=build_chunk_metadata(chunk_id, position, text, heading_path=heading_path, chunk_type=chunk_type),
            tags=normalize_tags(tags or []),
            acl=create_default_acl(),
            editor=EditorMetadata(position=position, last_edited_at=now, last_edited_by=user_id),
        )
        vector = await self._embed_one(text, chunk_id)
        await self._store.upsert_points(collection, [Point(id=chunk_id, vector=vector, payload=payload.to_payload())])
        logger.info("Created chunk %s in %s at position %d", chunk_id, collection, position)
        return payload

    async def update_chunk(
        self,
        collection_id: str,
        chunk_id: str,
        *,
        text: str | None = None,
        chunk_type: ChunkType | None = None,
        heading_path: list[str] | None = None,
        tags: list[str] | None = None,
        user_id: str | None = None,
    ) -> ChunkPayload:
        collection = await self._resolve(collection_id)
        existing = await self._get_chunk(collection, chunk_id)
        editor = self._touched(existing.editor, existing.chunk.index, user_id)

        if text is not None and text.strip() != existing.chunk.text:
            text = text.strip()
            if not text:
                raise ValidationError("Chunk text cannot be empty", field="text")
            chunk = build_chunk_metadata(
                chunk_id,
                existing.chunk.index,
                text,
                heading_path=heading_path if heading_path is not None else existing.chunk.heading_path,
                chunk_type=chunk_type or existing.chunk.type,
            )
            payload = existing.model_copy(
                update={
                    "chunk": chunk,
                    "tags": normalize_tags(tags) if tags is not None else existing.tags,
                    "editor": editor,
                }
            )
            vector = await self._embed_one(text, chunk_id)
            await self._store.upsert_points(
                collection, [Point(id=chunk_id, vector=vector, payload=payload.to_payload())]
            )
            logger.info("Updated text of chunk %s in %s", chunk_id, collection)
            return payload

        patch: dict[str, object] = {"editor": editor.model_dump(mode="json")}
        if chunk_type is not None:
            patch["chunk.type"] = chunk_type
        if heading_path is not None:
            patch["chunk.heading_path"] = list(heading_path)
            patch["chunk.section"] = " / ".join(heading_path) if heading_path else None
        if tags is not None:
            patch["tags"] = normalize_tags(tags)
        await self._store.update_payloads(collection, [PayloadPatch(id=chunk_id, payload=patch)])
        return ChunkPayload.model_validate(apply_patch(existing.to_payload(), patch))

    async def delete_chunk(self, collection_id: str, chunk_id: str) -> None:
        collection = await self._resolve(collection_id)
        await self._get_chunk(collection, chunk_id)
        await self._store.delete_points(collection, [chunk_id])
        logger.info("Deleted chunk %s from %s", chunk_id, collection)

    # ── structural edits ───────────────────────────────────────────────

    async def split_chunk(
        self,
        collection_id: str,
        chunk_id: str,
        *,
        new_text_blocks: list[str] | None = None,
        split_points: list[int] | None = None,
        user_id: str | None = None,
    ) -> list[ChunkPayload]:
        """Replace one chunk by two or more consecutive chunks.

        Parameters
        ----------
        new_text_blocks:
            Explicit texts of the new chunks.
        split_points:
            Character offsets into the original text; used when
            *new_text_blocks* is not given.
        """
        if new_text_blocks is None and split_points is None:
            raise ValidationError("Either new_text_blocks or split_points is required")

        collection = await self._resolve(collection_id)
        original = await self._get_chunk(collection, chunk_id)

        if new_text_blocks is not None:
            pieces = [block.strip() for block in new_text_blocks]
        else:
            text = original.chunk.text
            offsets = sorted(min(max(p, 0), len(text)) for p in split_points)
            bounds = [0, *offsets, len(text)]
            pieces = [text[start:end].strip() for start, end in zip(bounds, bounds[1:])]
        pieces = [piece for piece in pieces if piece]
        if len(pieces) < 2:
            raise ValidationError("Split must result in at least 2 non-empty chunks")

        vectors = await self._embedder.embed(pieces, correlation_id=f"split_{chunk_id}")
        base = original.position
        now = utc_now_iso()
        payloads: list[ChunkPayload] = []
        for i, piece in enumerate(pieces):
            new_id = str(uuid.uuid4())
            payloads.append(
                ChunkPayload(
                    doc=original.doc,
                    chunk=build_chunk_metadata(
                        new_id,
                        base + i,
                        piece,
                        heading_path=original.chunk.heading_path,
                        chunk_type=original.chunk.type,
                    ),
                    tags=list(original.tags),
                    acl=original.acl,
                    editor=EditorMetadata(position=base + i, last_edited_at=now, last_edited_by=user_id),
                )
            )

        await self._store.delete_points(collection, [chunk_id])
        await self._store.upsert_points(
            collection,
            [Point(id=p.chunk.id, vector=v, payload=p.to_payload()) for p, v in zip(payloads, vectors)],
        )
        logger.info("Split chunk %s in %s into %d chunks", chunk_id, collection, len(payloads))
        return payloads

    async def merge_chunks(
        self,
        collection_id: str,
        chunk_ids: list[str],
        *,
        separator: str = "\n\n",
        user_id: str | None = None,
    ) -> ChunkPayload:
        ids = list(dict.fromkeys(chunk_ids))
        if len(ids) < 2:
            raise ValidationError("Merge requires at least 2 chunks", field="chunk_ids")

        collection = await self._resolve(collection_id)
        found = {p.id: _payload_of(p) for p in await self._store.get_points(collection, ids)}
        for cid in ids:
            if cid not in found:
                raise NotFoundError("Chunk", cid)

        parts = sorted(found.values(), key=lambda p: p.position)
        first = parts[0]
        text = separator.join(p.chunk.text for p in parts)
        tags = normalize_tags([tag for p in parts for tag in p.tags])

        new_id = str(uuid.uuid4())
        vector = await self._embed_one(text, new_id)
        merged = ChunkPayload(
            doc=first.doc,
            chunk=build_chunk_metadata(
                new_id,
                first.position,
                text,
                heading_path=first.chunk.heading_path,
                chunk_type=first.chunk.type,
            ),
            tags=tags,
            acl=first.acl,
            editor=EditorMetadata(position=first.position, last_edited_at=utc_now_iso(), last_edited_by=user_id),
        )

        await self._store.delete_points(collection, ids)
        await self._store.upsert_points(collection, [Point(id=new_id, vector=vector, payload=merged.to_payload())])
        logger.info("Merged %d chunks in %s into %s", len(ids), collection, new_id)
        return merged

    async def reorder_chunks(
        self,
        collection_id: str,
        positions: list[tuple[str, int]],
        *,
        user_id: str | None = None,
    ) -> int:
        """Assign new ``editor.position`` values; returns the number of chunks moved."""
        if not positions:
            return 0
        if any(position < 0 for _, position in positions):
            raise ValidationError("Position must be non-negative", field="positions")

        collection = await self._resolve(collection_id)
        ids = [cid for cid, _ in positions]
        existing = {p.id for p in await self._store.get_points(collection, ids)}
        for cid in ids:
            if cid not in existing:
                raise NotFoundError("Chunk", cid)

        now = utc_now_iso()
        await self._store.update_payloads(
            collection,
            [
                PayloadPatch(
                    id=cid,
                    payload={
                        POSITION_KEY: position,
                        "editor.last_edited_at": now,
                        "editor.last_edited_by": user_id,
                    },
                )
                for cid, position in positions
            ],
        )
        logger.info("Reordered %d chunks in %s", len(positions), collection)
        return len(positions)

    async def update_quality_score(
        self,
        collection_id: str,
        chunk_id: str,
        score: float,
        issues: list[str] | None = None,
    ) -> ChunkPayload:
        if not 0 <= score <= 100:
            raise ValidationError("Quality score must be between 0 and 100", field="score")
        collection = await self._resolve(collection_id)
        existing = await self._get_chunk(collection, chunk_id)
        patch = {"editor.quality_score": score, "editor.quality_issues": list(issues or [])}
        if existing.editor is None:
            patch[POSITION_KEY] = existing.chunk.index
        await self._store.update_payloads(collection, [PayloadPatch(id=chunk_id, payload=patch)])
        return ChunkPayload.model_validate(apply_patch(existing.to_payload(), patch))

    # ── listing / maintenance ──────────────────────────────────────────

    async def list_chunks(
        self,
        collection_id: str,
        *,
        source_type: str | None = None,
        source_id: str | None = None,
        chunk_type: ChunkType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> ChunkPage:
        collection = await self._resolve(collection_id)
        filters: list[MetadataFilter] = []
        if source_type is not None:
            filters.append(MetadataFilter.equals("doc.source_type", source_type))
        if source_id is not None:
            filters.append(MetadataFilter.equals("doc.source_id", source_id))
        if chunk_type is not None:
            filters.append(MetadataFilter.equals("chunk.type", chunk_type))

        total = await self._store.count_points(collection, filters or None)
        try:
            page = await self._store.scroll(
                collection, limit=limit, offset=offset, filters=filters or None, order_by=OrderBy(key=POSITION_KEY)
            )
        except Exception:
            logger.warning("Ordered scroll failed for %s; falling back to unordered", collection, exc_info=True)
            page = await self._store.scroll(collection, limit=limit, offset=offset, filters=filters or None)

        return ChunkPage(
            total=total,
            chunks=[_payload_of(p) for p in page.points],
            next_offset=page.next_offset,
        )

    async def list_documents(self, collection_id: str) -> list[DocumentSummary]:
        """One summary per ``doc.source_id``, newest first."""
        collection = await self._resolve(collection_id)
        grouped: dict[str, list[ChunkPayload]] = {}
        for point in await self._store.scroll_all(collection):
            payload = _payload_of(point)
            grouped.setdefault(payload.doc.source_id, []).append(payload)

        summaries: list[DocumentSummary] = []
        for source_id, payloads in grouped.items():
            doc = payloads[0].doc
            scores = [
                p.editor.quality_score for p in payloads if p.editor and p.editor.quality_score is not None
            ]
            latest = max((p.doc.last_modified_at for p in payloads), key=parse_timestamp)
            summaries.append(
                DocumentSummary(
                    source_id=source_id,
                    source_type=doc.source_type,
                    title=doc.title,
                    url=doc.url,
                    chunk_count=len(payloads),
                    avg_quality_score=sum(scores) / len(scores) if scores else None,
                    last_modified_at=latest,
                )
            )
        summaries.sort(key=lambda s: parse_timestamp(s.last_modified_at), reverse=True)
        return summaries

    async def collapse_duplicates(self, collection_id: str) -> int:
        """Delete chunks repeating another chunk's ``(source_id, content_hash)``."""
        collection = await self._resolve(collection_id)
        payloads = [_payload_of(p) for p in await self._store.scroll_all(collection)]
        kept = {p.chunk.id for p in deduplicate_by_content_hash(payloads)}
        losers = [p.chunk.id for p in payloads if p.chunk.id not in kept]
        if losers:
            await self._store.delete_points(collection, losers)
            logger.info("Removed %d duplicate chunks from %s", len(losers), collection)
        return len(losers)
