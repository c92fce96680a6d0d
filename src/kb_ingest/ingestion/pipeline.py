"""Document-to-candidates orchestration across the three chunking paths."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from kb_ingest.config import settings
from kb_ingest.ingestion.chunker import character_chunks
from kb_ingest.ingestion.parsers import flatten_sections, parse_document
from kb_ingest.ingestion.structured import TABLE_CELL_SEPARATOR, StructuredChunker

if TYPE_CHECKING:
    from kb_ingest.ingestion.models import ChunkCandidate, DocumentStructure
    from kb_ingest.ingestion.semantic import WindowedSemanticChunker

logger = logging.getLogger(__name__)

ChunkingStrategy = Literal["structured", "semantic", "character"]


def render_text(structure: DocumentStructure, *, include_headings: bool = True) -> str:
    """Flatten a parsed document back into readable plain text.

    Headings are kept as their own lines so flat chunkers still see the
    document's outline.
    """
    blocks: list[str] = []
    for section, _path in flatten_sections(structure.sections):
        body = section.content.strip()
        if include_headings:
            blocks.append(f"{section.heading}\n{body}" if body else section.heading)
        elif body:
            blocks.append(body)
    for table in structure.tables:
        lines = [TABLE_CELL_SEPARATOR.join(table.headers)] if table.headers else []
        lines.extend(TABLE_CELL_SEPARATOR.join(row) for row in table.rows if any(c.strip() for c in row))
        if lines:
            blocks.append("\n".join(lines))
    blocks.extend(block.code for block in structure.code_blocks if block.code.strip())
    return "\n\n".join(blocks)


async def chunk_document(
    raw: str,
    *,
    dialect: str | None,
    title: str | None = None,
    strategy: ChunkingStrategy = "structured",
    structured_chunker: StructuredChunker | None = None,
    semantic_chunker: WindowedSemanticChunker | None = None,
    chunk_size: int = settings.char_chunk_size,
    chunk_overlap: int = settings.char_chunk_overlap,
) -> list[ChunkCandidate]:
    """Parse *raw* and chunk it with the selected *strategy*.

    Parameters
    ----------
    raw:
        Source markup as fetched.
    dialect:
        Markup dialect passed to :func:`parse_document`.
    title:
        Known document title, used when the markup has none.
    strategy:
        ``"structured"`` (heading/table/code aware), ``"semantic"`` (LLM
        boundaries, requires *semantic_chunker*) or ``"character"``.
    """
    structure = parse_document(raw, dialect, title)
    # Flat input only carries a synthetic heading.
    include_headings = dialect in ("storage", "markdown")

    if strategy == "structured":
        candidates = (structured_chunker or StructuredChunker()).chunk(structure)
    elif strategy == "semantic":
        if semantic_chunker is None:
            raise ValueError("semantic strategy requires a semantic_chunker")
        text = render_text(structure, include_headings=include_headings)
        candidates = await semantic_chunker.chunk_candidates(text) if text.strip() else []
    elif strategy == "character":
        candidates = character_chunks(render_text(structure, include_headings=include_headings), chunk_size, chunk_overlap)
    else:
        raise ValueError(f"Unknown chunking strategy: {strategy!r}")

    logger.info("Chunked %r (%s, %s) into %d candidates", structure.title, dialect, strategy, len(candidates))
    return candidates
