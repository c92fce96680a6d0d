"""Replace-on-publish: commit a finished chunk set for one source.

Ordering is the whole safety argument:

1. embeddings are generated for every chunk first; if that fails nothing
   in the store has been touched;
2. only then are all existing points of the source deleted;
3. and finally the new points are inserted.

A crash between 2 and 3 leaves the source with no chunks until the
publish is retried; re-running a publish is always safe because it
replaces the source wholesale.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from kb_ingest.errors import ValidationError
from kb_ingest.ingestion.assembler import assemble_chunks
from kb_ingest.ingestion.normalizer import normalize_tags
from kb_ingest.ingestion.tags import keyword_tags
from kb_ingest.store.models import MetadataFilter, Point

if TYPE_CHECKING:
    from kb_ingest.ingestion.models import ChunkCandidate, ChunkPayload, DocMetadata
    from kb_ingest.ingestion.tags import TagExtractor
    from kb_ingest.llm.embedding import EmbeddingClient
    from kb_ingest.store.base import PointStoreBase

logger = logging.getLogger(__name__)

SOURCE_ID_FIELD = "doc.source_id"


class PublishResult(BaseModel):
    source_id: str
    published_count: int = 0
    chunk_ids: list[str] = Field(default_factory=list)


class PublishCoordinator:
    """Embed, then atomically replace all chunks of a source.

    Parameters
    ----------
    store:
        Target point store.
    embedder:
        Embedding client used for the whole chunk set in one call.
    collection:
        Collection name inside *store*.
    tag_extractor:
        Optional LLM tagger; keyword tags are used when it is absent or
        returns nothing for a chunk.
    """

    def __init__(
        self,
        store: PointStoreBase,
        embedder: EmbeddingClient,
        collection: str,
        *,
        tag_extractor: TagExtractor | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.collection = collection
        self._tag_extractor = tag_extractor

    async def publish(self, source_id: str, candidates: list[ChunkCandidate], doc: DocMetadata) -> PublishResult:
        if doc.source_id != source_id:
            raise ValidationError(
                f"Document metadata belongs to {doc.source_id!r}, not {source_id!r}", field="source_id"
            )

        live = [c for c in candidates if c.text.strip()]
        if not live:
            logger.info("Nothing to publish for source %s; store left untouched", source_id)
            return PublishResult(source_id=source_id)

        payloads = assemble_chunks(live, doc)
        texts = [p.chunk.text for p in payloads]

        # Any failure here propagates before the store is mutated.
        vectors = await self._embedder.embed(texts, correlation_id=f"publish_{source_id}")
        await self._apply_tags(payloads, doc)

        points = [
            Point(id=payload.chunk.id, vector=vector, payload=payload.to_payload())
            for payload, vector in zip(payloads, vectors)
        ]
        # Once the delete is issued the replace must finish even if the caller goes away.
        await asyncio.shield(self._replace(source_id, points))

        logger.info("Published %d chunks for source %s into %s", len(points), source_id, self.collection)
        return PublishResult(source_id=source_id, published_count=len(points), chunk_ids=[p.id for p in points])

    async def _replace(self, source_id: str, points: list[Point]) -> None:
        await self._store.delete_points_by_filter(self.collection, [MetadataFilter.equals(SOURCE_ID_FIELD, source_id)])
        await self._store.upsert_points(self.collection, points)

    async def _apply_tags(self, payloads: list[ChunkPayload], doc: DocMetadata) -> None:
        llm_tags: list[list[str]] = [[] for _ in payloads]
        if self._tag_extractor is not None:
            llm_tags = await self._tag_extractor.extract_tags_batch(
                [p.chunk.text for p in payloads],
                title=doc.title,
                heading_paths=[p.chunk.heading_path for p in payloads],
            )
        for payload, tags in zip(payloads, llm_tags):
            payload.tags = normalize_tags(tags or keyword_tags(payload.chunk.text))
