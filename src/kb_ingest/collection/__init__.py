"""
Collection: publishing, editing and cleaning chunks in a point store.

Public surface
--------------
- :class:`PublishCoordinator`: replace-on-publish for one source.
- :class:`ChunkLifecycleManager`: editor operations on persisted chunks.
- :class:`CollectionCleaner`: streamed two-pass cleanup.
"""

from kb_ingest.collection.cleaner import CollectionCleaner, classify_junk
from kb_ingest.collection.lifecycle import ChunkLifecycleManager, ChunkPage, DocumentSummary
from kb_ingest.collection.publisher import PublishCoordinator, PublishResult

__all__ = [
    "ChunkLifecycleManager",
    "ChunkPage",
    "CollectionCleaner",
    "DocumentSummary",
    "PublishCoordinator",
    "PublishResult",
    "classify_junk",
]
