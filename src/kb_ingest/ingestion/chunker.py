"""Plain character-based chunking, used when no structure is available."""

from __future__ import annotations

from langchain_text_splitters import RecursiveCharacterTextSplitter

from kb_ingest.config import settings
from kb_ingest.errors import ValidationError
from kb_ingest.ingestion.classifier import classify_text
from kb_ingest.ingestion.models import ChunkCandidate


def split_text(
    text: str,
    chunk_size: int = settings.char_chunk_size,
    chunk_overlap: int = settings.char_chunk_overlap,
) -> list[str]:
    """Split *text* into overlapping pieces of at most *chunk_size* characters.

    Parameters
    ----------
    text:
        Raw text; leading/trailing whitespace is ignored.
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of overlapping characters between consecutive chunks.

    Returns
    -------
    list[str]
        Stripped, non-empty chunks.  Text that already fits is returned as
        a single chunk, unchanged apart from trimming.
    """
    if chunk_size <= 0:
        raise ValidationError("chunk_size must be positive", field="chunk_size")
    if not 0 <= chunk_overlap < chunk_size:
        raise ValidationError("chunk_overlap must be non-negative and smaller than chunk_size", field="chunk_overlap")

    text = text.strip()
    if not text:
        return []
    if len(text) <= chunk_size:
        return [text]

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=["\n\n", "\n", ". ", " ", ""],
        strip_whitespace=True,
    )
    return [chunk for chunk in splitter.split_text(text) if chunk.strip()]


def character_chunks(
    text: str,
    chunk_size: int = settings.char_chunk_size,
    chunk_overlap: int = settings.char_chunk_overlap,
    *,
    heading_path: list[str] | None = None,
) -> list[ChunkCandidate]:
    """Wrap :func:`split_text` output as classified chunk candidates."""
    return [
        ChunkCandidate(text=chunk, heading_path=list(heading_path or []), type=classify_text(chunk))
        for chunk in split_text(text, chunk_size, chunk_overlap)
    ]
