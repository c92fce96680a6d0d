"""Structure-driven chunking of a parsed :class:`DocumentStructure`.

Strategy
--------
1. One candidate per section (depth-first), keeping the heading path.
2. Oversized sections are split on natural boundaries; later pieces get a
   ``(part N)`` marker appended to their heading path.
3. Every non-empty table row becomes its own ``table_row`` candidate.
4. Code blocks are kept whole, or split line-wise when too large.
"""

from __future__ import annotations

import logging

from kb_ingest.config import settings
from kb_ingest.ingestion.classifier import classify_text
from kb_ingest.ingestion.models import ChunkCandidate, CodeBlock, DocumentStructure, Section, Table
from kb_ingest.ingestion.parsers import flatten_sections
from kb_ingest.ingestion.splitting import split_lines_by_tokens, split_on_boundaries
from kb_ingest.ingestion.tokens import TokenCounter, count_tokens

logger = logging.getLogger(__name__)

TABLE_CELL_SEPARATOR = " / "
TABLE_HEADER_SEPARATOR = " | "


def part_path(heading_path: list[str], index: int) -> list[str]:
    """Heading path for the *index*-th (0-based) piece of a split."""
    return heading_path if index == 0 else [*heading_path, f"(part {index + 1})"]


class StructuredChunker:
    """Emit token-bounded :class:`ChunkCandidate` objects from a parsed document.

    Parameters
    ----------
    target_tokens:
        Preferred piece size when an oversized section is split.
    max_tokens:
        Hard limit; anything larger is split.
    min_tokens:
        Split pieces (other than the first) smaller than this are dropped.
    count_tokens:
        Token counting function; defaults to tiktoken.
    """

    def __init__(
        self,
        target_tokens: int = settings.chunk_target_tokens,
        max_tokens: int = settings.chunk_max_tokens,
        min_tokens: int = settings.chunk_min_tokens,
        *,
        count_tokens: TokenCounter = count_tokens,
    ) -> None:
        if not 0 < target_tokens <= max_tokens:
            raise ValueError("target_tokens must be positive and not exceed max_tokens")
        self.target_tokens = target_tokens
        self.max_tokens = max_tokens
        self.min_tokens = min_tokens
        self._count = count_tokens

    def chunk(self, structure: DocumentStructure) -> list[ChunkCandidate]:
        candidates = [
            *self.chunk_sections(structure.sections),
            *self.chunk_tables(structure.tables),
            *self.chunk_code_blocks(structure.code_blocks),
        ]
        logger.debug(
            "Chunked %d sections, %d tables, %d code blocks into %d candidates",
            len(structure.sections),
            len(structure.tables),
            len(structure.code_blocks),
            len(candidates),
        )
        return candidates

    # -- sections -------------------------------------------------------------

    def chunk_sections(self, sections: list[Section]) -> list[ChunkCandidate]:
        candidates: list[ChunkCandidate] = []
        for section, heading_path in flatten_sections(sections):
            content = section.content.strip()
            if not content:
                continue

            if self._count(content) <= self.max_tokens:
                candidates.append(
                    ChunkCandidate(
                        text=content,
                        heading_path=heading_path,
                        type=classify_text(content),
                        start=section.start,
                        end=section.end,
                    )
                )
                continue

            pieces = split_on_boundaries(content, self.target_tokens, self.max_tokens, counter=self._count)
            for i, piece in enumerate(pieces):
                if i > 0 and self._count(piece) < self.min_tokens:
                    logger.debug("Dropping %d-char tail piece of section %r", len(piece), section.heading)
                    continue
                candidates.append(
                    ChunkCandidate(text=piece, heading_path=part_path(heading_path, i), type=classify_text(piece))
                )
        return candidates

    # -- tables ---------------------------------------------------------------

    def chunk_tables(self, tables: list[Table]) -> list[ChunkCandidate]:
        candidates: list[ChunkCandidate] = []
        for table in tables:
            heading_path = ["Table", table.caption] if table.caption else ["Table"]
            if table.headers:
                heading_path = [*heading_path, TABLE_HEADER_SEPARATOR.join(table.headers)]

            for row in table.rows:
                if not any(cell.strip() for cell in row):
                    continue
                # Short rows are padded to the header width with empty cells.
                cells = [cell.strip() for cell in row] + [""] * (len(table.headers) - len(row))
                candidates.append(
                    ChunkCandidate(text=TABLE_CELL_SEPARATOR.join(cells), heading_path=heading_path, type="table_row")
                )
        return candidates

    # -- code -----------------------------------------------------------------

    def chunk_code_blocks(self, code_blocks: list[CodeBlock]) -> list[ChunkCandidate]:
        candidates: list[ChunkCandidate] = []
        for block in code_blocks:
            if not block.code.strip():
                continue
            heading_path = ["Code", block.language] if block.language else ["Code"]

            if self._count(block.code) <= self.max_tokens:
                candidates.append(ChunkCandidate(text=block.code, heading_path=heading_path, type="code"))
                continue

            for i, piece in enumerate(split_lines_by_tokens(block.code, self.max_tokens, counter=self._count)):
                if piece.strip():
                    candidates.append(ChunkCandidate(text=piece, heading_path=part_path(heading_path, i), type="code"))
        return candidates
