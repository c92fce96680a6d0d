"""Two-pass collection cleanup streamed as events.

Pass 1 deletes chunks that are junk by construction (empty, markup-only,
encoded blobs).  Pass 2 asks a chat model to tidy the text of every
surviving chunk.  Progress is reported through an async generator so the
consumer controls the pace.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from bs4 import BeautifulSoup

from kb_ingest.config import settings
from kb_ingest.errors import NotFoundError
from kb_ingest.ingestion.models import utc_now_iso
from kb_ingest.ingestion.normalizer import compute_content_hash, detect_language
from kb_ingest.llm.clients import get_chat_model
from kb_ingest.llm.prompts import CLEANING_SYSTEM_PROMPT, build_cleaning_prompt
from kb_ingest.store.models import PayloadPatch, get_path

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from kb_ingest.store.base import PointStoreBase

logger = logging.getLogger(__name__)

HTML_ONLY_MAX_CHARS = 20
TOO_SHORT_MAX_CHARS = 50
JSON_KEY_MIN_MATCHES = 5
JSON_COVERAGE_RATIO = 0.15
PREVIEW_CHARS = 120

_TAG_RE = re.compile(r"<[^>]+>")
_BASE64_RE = re.compile(r"[A-Za-z0-9+/=]{100,}")
_JSON_KV_RE = re.compile(r'"\w+":\s*(?:true|false|null|"|\d|\[|\{)')


def classify_junk(text: str | None) -> str | None:
    """Return the reason *text* is junk, or ``None`` when it is worth keeping."""
    if text is None:
        return "empty_payload"
    trimmed = text.strip()
    if not trimmed:
        return "whitespace_only"
    if _TAG_RE.search(trimmed):
        visible = BeautifulSoup(trimmed, "html.parser").get_text(" ", strip=True)
        if len(visible) < HTML_ONLY_MAX_CHARS:
            return "html_only"
    if len(trimmed) < TOO_SHORT_MAX_CHARS:
        return "too_short"
    if _BASE64_RE.search(trimmed):
        return "base64_blob"
    matches = _JSON_KV_RE.findall(trimmed)
    if len(matches) >= JSON_KEY_MIN_MATCHES and sum(len(m) for m in matches) > len(trimmed) * JSON_COVERAGE_RATIO:
        return "json_blob"
    return None


def _event(event_type: str, **data: Any) -> dict[str, Any]:
    return {"type": event_type, "data": data, "timestamp": utc_now_iso()}


class CollectionCleaner:
    """Delete junk chunks, then LLM-clean the rest.

    Parameters
    ----------
    store:
        Point store holding the collection.
    chat_model:
        Model used for pass 2; defaults to ``settings.cleaning_model``.
    collection_prefix:
        Prepended to the collection id.
    page_size:
        Points fetched per scroll during pass 1.
    """

    def __init__(
        self,
        store: PointStoreBase,
        chat_model: BaseChatModel | None = None,
        *,
        collection_prefix: str = settings.collection_prefix,
        system_prompt: str = CLEANING_SYSTEM_PROMPT,
        timeout: float = settings.chunking_timeout,
        page_size: int = 100,
    ) -> None:
        self._store = store
        self._chat_model = chat_model if chat_model is not None else get_chat_model(settings.cleaning_model)
        self._prefix = collection_prefix
        self.system_prompt = system_prompt
        self.timeout = timeout
        self.page_size = page_size

    async def stream(self, collection_id: str) -> AsyncIterator[dict[str, Any]]:
        collection = f"{self._prefix}{collection_id}"
        if not await self._store.collection_exists(collection):
            raise NotFoundError("Collection", collection_id)

        # ── pass 1: junk detection ─────────────────────────────────────
        total = await self._store.count_points(collection)
        scanned = 0
        dirty: list[str] = []
        breakdown: Counter[str] = Counter()
        offset: int | None = None
        while True:
            page = await self._store.scroll(collection, limit=self.page_size, offset=offset)
            for point in page.points:
                scanned += 1
                text = get_path(point.payload, "chunk.text")
                reason = classify_junk(text)
                if reason is None:
                    continue
                dirty.append(point.id)
                breakdown[reason] += 1
                yield _event(
                    "dirty_chunk_found", chunk_id=point.id, reason=reason, preview=(text or "")[:PREVIEW_CHARS]
                )
            yield _event("clean_progress", scanned=scanned, total=total)
            if page.next_offset is None:
                break
            offset = page.next_offset

        logger.info("Cleaner pass 1 on %s: %d of %d chunks are junk", collection, len(dirty), scanned)
        if dirty:
            await self._store.delete_points(collection, dirty)
            for chunk_id in dirty:
                yield _event("dirty_chunk_deleted", chunk_id=chunk_id)

        # ── pass 2: LLM cleanup ────────────────────────────────────────
        remaining = await self._store.scroll_all(collection)
        cleaned = 0
        for point in remaining:
            original = get_path(point.payload, "chunk.text") or ""
            try:
                new_text = await self._clean_text(original)
                if not new_text or new_text == original.strip():
                    continue
                patch = {
                    "chunk.text": new_text,
                    "chunk.content_hash": compute_content_hash(new_text),
                    "chunk.lang": detect_language(new_text),
                }
                await self._store.update_payloads(collection, [PayloadPatch(id=point.id, payload=patch)])
            except Exception:
                logger.warning("Cleaning chunk %s failed; leaving it as is", point.id, exc_info=True)
                continue
            cleaned += 1
            yield _event(
                "chunk_cleaned",
                chunk_id=point.id,
                before=original[:PREVIEW_CHARS],
                after=new_text[:PREVIEW_CHARS],
            )

        logger.info("Cleaner pass 2 on %s: %d chunks rewritten", collection, cleaned)
        yield _event(
            "clean_complete",
            total_scanned=scanned,
            total_deleted=len(dirty),
            total_cleaned=cleaned,
            remaining=len(remaining),
            breakdown=dict(breakdown),
        )

    async def run(self, collection_id: str) -> dict[str, Any]:
        """Drain :meth:`stream` and return the ``clean_complete`` summary."""
        summary: dict[str, Any] = {}
        async for event in self.stream(collection_id):
            if event["type"] == "clean_complete":
                summary = event["data"]
        return summary

    async def _clean_text(self, text: str) -> str:
        messages = build_cleaning_prompt(text, self.system_prompt)
        response = await asyncio.wait_for(self._chat_model.ainvoke(messages), timeout=self.timeout)
        content = response.content
        return content.strip() if isinstance(content, str) else ""
