"""
kb-ingest: turns ingested documents into classified, content-addressed
chunks and keeps them published in a vector store.

Sub-packages
------------
- :mod:`kb_ingest.ingestion`: parsing, chunking and chunk assembly (pure CPU work).
- :mod:`kb_ingest.llm`: embedding and completion provider clients.
- :mod:`kb_ingest.store`: point-store abstraction and the Chroma backend.
- :mod:`kb_ingest.collection`: publishing and post-publish chunk editing.
"""
