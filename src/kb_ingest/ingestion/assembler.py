"""Turn chunk candidates into addressable, persisted chunk payloads."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone

from kb_ingest.ingestion.models import (
    ChunkCandidate,
    ChunkMetadata,
    ChunkPayload,
    DocMetadata,
    create_default_acl,
    create_default_editor_metadata,
)
from kb_ingest.ingestion.normalizer import compute_content_hash, detect_language, normalize_tags, strip_hash_prefix

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = " / "


def generate_chunk_id(source_id: str, content_hash: str) -> str:
    """Deterministic UUID-formatted id for ``(source_id, content_hash)``."""
    digest = hashlib.md5(f"{source_id}:{strip_hash_prefix(content_hash)}".encode("utf-8")).hexdigest()
    return f"{digest[:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:32]}"


def format_section(heading_path: list[str]) -> str | None:
    return SECTION_SEPARATOR.join(heading_path) if heading_path else None


def build_chunk_metadata(
    chunk_id: str,
    index: int,
    text: str,
    *,
    heading_path: list[str] | None = None,
    chunk_type: str = "knowledge",
) -> ChunkMetadata:
    """Fill in the derived fields (section, hash, language) for one chunk."""
    heading_path = list(heading_path or [])
    return ChunkMetadata(
        id=chunk_id,
        index=index,
        type=chunk_type,
        heading_path=heading_path,
        section=format_section(heading_path),
        text=text,
        content_hash=compute_content_hash(text),
        lang=detect_language(text),
    )


def assemble_chunks(
    candidates: list[ChunkCandidate],
    doc: DocMetadata,
    tags: list[list[str]] | None = None,
) -> list[ChunkPayload]:
    """Build one :class:`ChunkPayload` per distinct candidate.

    Candidates whose normalised text repeats an earlier one are dropped so
    that every id is unique within the source; the survivors get a dense
    ``index``/``position`` starting at 0.

    Parameters
    ----------
    candidates:
        Output of a chunker, in document order.
    doc:
        Source document metadata shared by all chunks.
    tags:
        Optional per-candidate tag lists, parallel to *candidates*.
    """
    if tags is not None and len(tags) != len(candidates):
        raise ValueError("tags must be parallel to candidates")

    payloads: list[ChunkPayload] = []
    seen_hashes: set[str] = set()
    for i, candidate in enumerate(candidates):
        text = candidate.text.strip()
        if not text:
            continue
        content_hash = compute_content_hash(text)
        if content_hash in seen_hashes:
            logger.debug("Skipping duplicate chunk %s in source %s", content_hash, doc.source_id)
            continue
        seen_hashes.add(content_hash)

        index = len(payloads)
        chunk = build_chunk_metadata(
            generate_chunk_id(doc.source_id, content_hash),
            index,
            text,
            heading_path=candidate.heading_path,
            chunk_type=candidate.type,
        )
        payloads.append(
            ChunkPayload(
                doc=doc,
                chunk=chunk,
                tags=normalize_tags(tags[i]) if tags is not None else [],
                acl=create_default_acl(),
                editor=create_default_editor_metadata(index, doc.last_modified_by),
            )
        )
    return payloads


def parse_timestamp(value: str | None) -> datetime:
    """Parse an ISO-8601 timestamp; missing values sort before everything."""
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def deduplicate_by_content_hash(payloads: list[ChunkPayload]) -> list[ChunkPayload]:
    """Collapse chunks sharing ``(source_id, content_hash)``.

    The survivor is the one with the latest ``doc.last_modified_at``; ties
    keep the first seen.  Output keeps the survivors' original order.
    """
    best: dict[tuple[str, str], int] = {}
    for i, payload in enumerate(payloads):
        key = (payload.doc.source_id, payload.chunk.content_hash)
        current = best.get(key)
        if current is None or (
            parse_timestamp(payload.doc.last_modified_at) > parse_timestamp(payloads[current].doc.last_modified_at)
        ):
            best[key] = i

    kept = sorted(best.values())
    dropped = len(payloads) - len(kept)
    if dropped:
        logger.info("Collapsed %d duplicate chunks by content hash", dropped)
    return [payloads[i] for i in kept]
