"""
LLM providers: embeddings, semantic chunking and prompt templates.

Public surface
--------------
- :class:`EmbeddingClient`: validated, batched ``embed(texts)``.
- :class:`ChunkingClient`: schema-validated semantic chunking.
- :func:`get_chat_model`, :func:`get_embeddings`: provider factories.
- :func:`map_provider_error`: SDK exception to pipeline error mapping.
"""

from kb_ingest.llm.chunking import ChunkingClient, ChunkResponse, SemanticChunk
from kb_ingest.llm.clients import get_chat_model, get_embeddings
from kb_ingest.llm.embedding import EmbeddingClient
from kb_ingest.llm.errors import map_provider_error

__all__ = [
    "ChunkResponse",
    "ChunkingClient",
    "EmbeddingClient",
    "SemanticChunk",
    "get_chat_model",
    "get_embeddings",
    "map_provider_error",
]
