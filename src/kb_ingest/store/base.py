"""Abstract base class for point-store backends.

Adding a new backend (Qdrant, pgvector …) only requires subclassing
:class:`PointStoreBase` and implementing the abstract methods.  Publishing
and chunk editing are backend-agnostic.

Every method is a coroutine: store calls are the points where an
operation suspends.  Each call is expected to be atomic on its own;
ordering between calls is the caller's responsibility.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from kb_ingest.store.models import MetadataFilter, OrderBy, PayloadPatch, Point, ScrollResult


class PointStoreBase(ABC):
    """Backend-agnostic point store keyed by collection name."""

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def collection_exists(self, collection: str) -> bool:
        ...

    @abstractmethod
    async def count_points(self, collection: str, filters: list[MetadataFilter] | None = None) -> int:
        ...

    @abstractmethod
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
        """Return one page of points.

        Parameters
        ----------
        collection:
            Collection name.
        limit:
            Page size.
        offset:
            Cursor returned as ``next_offset`` by the previous page.
        filters:
            Payload filters, AND-ed together.
        order_by:
            Optional payload key to sort by.
        with_vectors:
            Whether to include stored vectors.
        """
        ...

    @abstractmethod
    async def get_points(self, collection: str, ids: list[str], *, with_vectors: bool = False) -> list[Point]:
        """Return the points that exist among *ids*; missing ids are skipped."""
        ...

    @abstractmethod
    async def upsert_points(self, collection: str, points: list[Point]) -> None:
        ...

    @abstractmethod
    async def update_payloads(self, collection: str, patches: list[PayloadPatch]) -> None:
        """Apply partial payload updates without touching vectors."""
        ...

    @abstractmethod
    async def delete_points(self, collection: str, ids: list[str]) -> None:
        ...

    @abstractmethod
    async def delete_points_by_filter(self, collection: str, filters: list[MetadataFilter]) -> None:
        ...

    # -- optional overrides ---------------------------------------------------

    async def scroll_all(
        self,
        collection: str,
        *,
        filters: list[MetadataFilter] | None = None,
        page_size: int = 256,
    ) -> list[Point]:
        """Drain :meth:`scroll` into one list."""
        points: list[Point] = []
        offset: int | None = None
        while True:
            page = await self.scroll(collection, limit=page_size, offset=offset, filters=filters)
            points.extend(page.points)
            if page.next_offset is None:
                return points
            offset = page.next_offset
