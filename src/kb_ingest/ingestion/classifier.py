"""Heuristic chunk-type classification."""

from __future__ import annotations

import re

from kb_ingest.ingestion.models import ChunkType

NAVIGATION_KEYWORDS: tuple[str, ...] = (
    "контакты",
    "контактные данные",
    "slack",
    "репозиторий",
    "как проходить",
    "быстрая навигация",
    "ссылки:",
    "полезные ссылки",
    "где найти",
    "канал в slack",
    "github",
    "confluence",
    "contact",
    "repository",
    "quick navigation",
    "useful links",
)

_FAQ = re.compile(r"^(q:|вопрос:|question:|a:|ответ:|answer:)", re.IGNORECASE)
_TABLE_ROW = re.compile(r"^[^/]+\s*/\s*[^/]+\s*/\s*[^/]+")
_INDENTED_CODE = re.compile(r"^\s{4,}")
_GLOSSARY = re.compile(r"^[А-яЁёA-Za-z][А-яЁёA-Za-z ]{0,60}?\s+[-–—]\s+")


def classify_text(text: str) -> ChunkType:
    """Tag *text* with the most likely chunk kind.

    Rules are checked in order; the first hit wins and ``"knowledge"`` is
    the default.
    """
    lower = text.lower()
    if any(keyword in lower for keyword in NAVIGATION_KEYWORDS):
        return "navigation"
    if text.startswith("```") or _INDENTED_CODE.match(text):
        return "code"
    if _FAQ.match(text.lstrip()):
        return "faq"
    if "\n" not in text.strip() and _TABLE_ROW.match(text):
        return "table_row"
    if _GLOSSARY.match(text):
        return "glossary"
    return "knowledge"
