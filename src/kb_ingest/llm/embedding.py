"""Batched embedding generation with input validation and error mapping."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from kb_ingest.config import settings
from kb_ingest.errors import ApiError, ValidationError
from kb_ingest.llm.errors import map_provider_error

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Thin async wrapper around a LangChain :class:`Embeddings` backend.

    Parameters
    ----------
    embeddings:
        The backend, e.g. from :func:`kb_ingest.llm.clients.get_embeddings`.
    batch_size:
        Texts per provider request.
    timeout:
        Overall seconds allowed per batch, on top of the backend's own
        per-request timeout.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        *,
        batch_size: int = settings.embedding_batch_size,
        timeout: float = settings.embedding_timeout,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._embeddings = embeddings
        self.batch_size = batch_size
        self.timeout = timeout

    async def embed(self, texts: list[str], correlation_id: str | None = None) -> list[list[float]]:
        """Return one vector per text, in input order.

        An empty list yields an empty list; an empty or whitespace-only
        item is rejected before any provider call.
        """
        if not texts:
            return []
        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise ValidationError(f"Text at index {i} cannot be empty or whitespace-only", field="texts")

        started = time.perf_counter()
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self.batch_size):
            batch = texts[offset : offset + self.batch_size]
            try:
                result = await asyncio.wait_for(self._embeddings.aembed_documents(batch), timeout=self.timeout)
            except Exception as exc:
                mapped = map_provider_error(exc, "Embedding")
                logger.error(
                    "Embedding batch %d failed (correlation_id=%s): %s",
                    offset // self.batch_size,
                    correlation_id,
                    mapped.message,
                )
                raise mapped from exc
            if len(result) != len(batch):
                raise ApiError(f"Embedding provider returned {len(result)} vectors for {len(batch)} texts")
            vectors.extend(result)

        logger.info(
            "Embedded %d texts in %.0f ms (correlation_id=%s)",
            len(texts),
            (time.perf_counter() - started) * 1000,
            correlation_id,
        )
        return vectors
