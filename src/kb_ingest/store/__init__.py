"""
Store: the point-store interface consumed by publishing and editing.

Public surface
--------------
- :class:`PointStoreBase`: abstract backend (subclass for Qdrant, pgvector, ...).
- :class:`ChromaPointStore`: default Chroma backend.
- :class:`MetadataFilter`, :class:`Point`, :class:`PayloadPatch`,
  :class:`ScrollResult`, :class:`OrderBy`: data models.
"""

from kb_ingest.store.base import PointStoreBase
from kb_ingest.store.models import MetadataFilter, OrderBy, PayloadPatch, Point, ScrollResult

__all__ = [
    "ChromaPointStore",
    "MetadataFilter",
    "OrderBy",
    "PayloadPatch",
    "Point",
    "PointStoreBase",
    "ScrollResult",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaPointStore to avoid pulling in chromadb at import time."""
    if name == "ChromaPointStore":
        from kb_ingest.store.chroma_store import ChromaPointStore

        return ChromaPointStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
