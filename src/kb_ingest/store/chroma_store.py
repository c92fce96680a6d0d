"""Chroma implementation of the point-store abstraction.

Chroma metadata is flat and scalar-only, so each point is stored as:

* ``documents``: the chunk text (``chunk.text``),
* ``metadatas``: the dotted-key scalar leaves of the payload (used for
  ``where`` filters) plus the full payload as JSON under ``_payload``.

Ordering is applied client-side; the scroll cursor is an integer offset.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import chromadb

from kb_ingest.config import settings
from kb_ingest.store.base import PointStoreBase
from kb_ingest.store.models import (
    MetadataFilter,
    OrderBy,
    PayloadPatch,
    Point,
    ScrollResult,
    apply_patch,
    flatten_payload,
    get_path,
)

logger = logging.getLogger(__name__)

PAYLOAD_KEY = "_payload"
TEXT_PATH = "chunk.text"

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(filters: list[MetadataFilter] | None) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _to_metadata(payload: dict[str, Any]) -> dict[str, Any]:
    metadata: dict[str, Any] = dict(flatten_payload(payload))
    metadata[PAYLOAD_KEY] = json.dumps(payload, ensure_ascii=False)
    return metadata


def _from_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    if not metadata or PAYLOAD_KEY not in metadata:
        return {}
    return json.loads(metadata[PAYLOAD_KEY])


def _sort_key(point: Point, key: str) -> tuple[int, Any]:
    value = get_path(point.payload, key)
    # Missing values sort last.
    return (1, 0) if value is None else (0, value)


class ChromaPointStore(PointStoreBase):
    """Chroma-backed point store.

    Parameters
    ----------
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    client:
        Pre-built ``AsyncClientAPI``; when omitted one is created lazily.
    """

    def __init__(
        self,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        client: Any = None,
    ) -> None:
        self._host = host
        self._port = port
        self._client = client
        self._collections: dict[str, Any] = {}

    async def _get_client(self) -> Any:
        if self._client is None:
            self._client = await chromadb.AsyncHttpClient(host=self._host, port=self._port)
        return self._client

    async def _collection(self, name: str) -> Any:
        if name not in self._collections:
            client = await self._get_client()
            self._collections[name] = await client.get_or_create_collection(
                name, metadata={"hnsw:space": "cosine"}, embedding_function=None
            )
        return self._collections[name]

    def _to_points(self, result: dict[str, Any], with_vectors: bool) -> list[Point]:
        ids = result.get("ids") or []
        metadatas = result.get("metadatas") or [None] * len(ids)
        embeddings = result.get("embeddings") if with_vectors else None
        points: list[Point] = []
        for i, point_id in enumerate(ids):
            vector = None
            if embeddings is not None and embeddings[i] is not None:
                vector = [float(x) for x in embeddings[i]]
            points.append(Point(id=point_id, vector=vector, payload=_from_metadata(metadatas[i])))
        return points

    # -- PointStoreBase overrides ---------------------------------------------

    async def collection_exists(self, collection: str) -> bool:
        client = await self._get_client()
        # Older clients list names, newer ones list Collection objects.
        names = {getattr(c, "name", c) for c in await client.list_collections()}
        return collection in names

    async def count_points(self, collection: str, filters: list[MetadataFilter] | None = None) -> int:
        coll = await self._collection(collection)
        where = _build_chroma_where(filters)
        if where is None:
            return await coll.count()
        result = await coll.get(where=where, include=[])
        return len(result["ids"])

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
        coll = await self._collection(collection)
        where = _build_chroma_where(filters)
        include = ["metadatas", "embeddings"] if with_vectors else ["metadatas"]
        start = offset or 0

        if order_by is None:
            result = await coll.get(where=where, limit=limit + 1, offset=start, include=include)
            points = self._to_points(result, with_vectors)
            more = len(points) > limit
            return ScrollResult(points=points[:limit], next_offset=start + limit if more else None)

        result = await coll.get(where=where, include=include)
        points = sorted(
            self._to_points(result, with_vectors),
            key=lambda p: _sort_key(p, order_by.key),
            reverse=order_by.direction == "desc",
        )
        page = points[start : start + limit]
        more = start + limit < len(points)
        return ScrollResult(points=page, next_offset=start + limit if more else None)

    async def get_points(self, collection: str, ids: list[str], *, with_vectors: bool = False) -> list[Point]:
        if not ids:
            return []
        coll = await self._collection(collection)
        include = ["metadatas", "embeddings"] if with_vectors else ["metadatas"]
        result = await coll.get(ids=ids, include=include)
        return self._to_points(result, with_vectors)

    async def upsert_points(self, collection: str, points: list[Point]) -> None:
        if not points:
            return
        if any(p.vector is None for p in points):
            raise ValueError("Every upserted point needs a vector")
        coll = await self._collection(collection)
        await coll.upsert(
            ids=[p.id for p in points],
            embeddings=[p.vector for p in points],
            metadatas=[_to_metadata(p.payload) for p in points],
            documents=[str(get_path(p.payload, TEXT_PATH) or "") for p in points],
        )
        logger.debug("Upserted %d points into %s", len(points), collection)

    async def update_payloads(self, collection: str, patches: list[PayloadPatch]) -> None:
        if not patches:
            return
        stored = await self.get_points(collection, list({p.id for p in patches}), with_vectors=True)
        original = {p.id: p.payload for p in stored}
        vectors = {p.id: p.vector for p in stored}
        updated: dict[str, dict[str, Any]] = {}
        for patch in patches:
            if patch.id not in original:
                logger.warning("Skipping payload update for missing point %s", patch.id)
                continue
            updated[patch.id] = apply_patch(updated.get(patch.id, original[patch.id]), patch.payload)

        if not updated:
            return
        metadatas: list[dict[str, Any]] = []
        for point_id, payload in updated.items():
            metadata = _to_metadata(payload)
            # Setting a key to None removes it from Chroma metadata.
            for stale in flatten_payload(original[point_id]).keys() - metadata.keys():
                metadata[stale] = None
            metadatas.append(metadata)

        # Chroma re-embeds any documents sent without embeddings.
        coll = await self._collection(collection)
        await coll.update(
            ids=list(updated),
            embeddings=[vectors[point_id] for point_id in updated],
            metadatas=metadatas,
            documents=[str(get_path(payload, TEXT_PATH) or "") for payload in updated.values()],
        )

    async def delete_points(self, collection: str, ids: list[str]) -> None:
        if not ids:
            return
        coll = await self._collection(collection)
        await coll.delete(ids=ids)

    async def delete_points_by_filter(self, collection: str, filters: list[MetadataFilter]) -> None:
        where = _build_chroma_where(filters)
        if where is None:
            raise ValueError("delete_points_by_filter requires at least one filter")
        coll = await self._collection(collection)
        await coll.delete(where=where)
