"""Windowed LLM chunking for flat or unstructured input.

Content that exceeds the per-request limit is cut into overlapping
windows; each window is chunked independently and the concatenated result
is de-duplicated, since a sentence straddling a window boundary is
expected to come back twice.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kb_ingest.config import settings
from kb_ingest.ingestion.classifier import classify_text
from kb_ingest.ingestion.models import ChunkCandidate
from kb_ingest.llm.chunking import SemanticChunk

if TYPE_CHECKING:
    from kb_ingest.llm.chunking import ChunkingClient

logger = logging.getLogger(__name__)

MAX_WINDOW_OVERLAP = 500
# Near-duplicate check: only for texts longer than this, trimming this many
# characters from each end of the shorter text.
NEAR_DUP_MIN_LENGTH = 50
NEAR_DUP_EDGE_TRIM = 10


def window_bounds(length: int, window_size: int) -> list[tuple[int, int]]:
    """Return ``(start, end)`` offsets covering *length* characters.

    Consecutive windows overlap by ``min(500, window_size // 2)`` and every
    window starts at least one character after the previous one.
    """
    if window_size <= 0:
        raise ValueError("window_size must be positive")
    overlap = min(MAX_WINDOW_OVERLAP, window_size // 2)
    bounds: list[tuple[int, int]] = []
    start = 0
    while start < length:
        end = min(start + window_size, length)
        bounds.append((start, end))
        if end >= length:
            break
        start = max(end - overlap, start + 1)
    return bounds


def _is_duplicate(text: str, accepted: list[str]) -> bool:
    for existing in accepted:
        if text == existing or text in existing or existing in text:
            return True
        shorter, longer = (text, existing) if len(text) <= len(existing) else (existing, text)
        if len(shorter) > NEAR_DUP_MIN_LENGTH and shorter[NEAR_DUP_EDGE_TRIM:-NEAR_DUP_EDGE_TRIM] in longer:
            return True
    return False


def deduplicate_and_renumber(chunks: list[SemanticChunk]) -> list[SemanticChunk]:
    """Drop empty and overlapping chunks, then renumber ``temp_1..N``."""
    accepted: list[str] = []
    for chunk in chunks:
        text = chunk.text.strip()
        if not text or _is_duplicate(text, accepted):
            continue
        accepted.append(text)
    return [SemanticChunk(id=f"temp_{i}", text=text, is_dirty=False) for i, text in enumerate(accepted, start=1)]


class WindowedSemanticChunker:
    """Delegate chunk boundaries to a :class:`ChunkingClient`, windowing large input.

    Parameters
    ----------
    client:
        Performs one chunking request per window.
    max_content_length:
        Window size in characters; content at or under it is sent whole.
    """

    def __init__(self, client: ChunkingClient, max_content_length: int = settings.max_content_length) -> None:
        self._client = client
        self.max_content_length = max_content_length

    async def chunk(self, content: str) -> list[SemanticChunk]:
        if len(content) <= self.max_content_length:
            return await self._client.chunk_content(content)

        windows = window_bounds(len(content), self.max_content_length)
        logger.info("Content of %d chars split into %d windows", len(content), len(windows))

        collected: list[SemanticChunk] = []
        for start, end in windows:
            window = content[start:end]
            if not window.strip():
                continue
            collected.extend(await self._client.chunk_content(window))

        result = deduplicate_and_renumber(collected)
        logger.info("Windowed chunking kept %d of %d chunks after dedup", len(result), len(collected))
        return result

    async def chunk_candidates(self, content: str, heading_path: list[str] | None = None) -> list[ChunkCandidate]:
        """Same as :meth:`chunk` but shaped for the publish path."""
        return [
            ChunkCandidate(text=chunk.text.strip(), heading_path=list(heading_path or []), type=classify_text(chunk.text))
            for chunk in await self.chunk(content)
            if chunk.text.strip()
        ]
