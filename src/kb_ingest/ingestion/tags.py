"""Topic tag extraction: LLM-based, with a keyword-pattern fallback."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from kb_ingest.config import settings
from kb_ingest.ingestion.models import MAX_TAGS
from kb_ingest.ingestion.normalizer import normalize_tags
from kb_ingest.llm.clients import get_chat_model
from kb_ingest.llm.prompts import TAG_SYSTEM_PROMPT, build_tag_prompt

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)

TAG_PATTERNS: dict[str, re.Pattern[str]] = {
    "rag": re.compile(r"\bRAG\b|\bretrieval.?augmented\b", re.IGNORECASE),
    "agents": re.compile(r"\bagents?\b|\bagentic\b", re.IGNORECASE),
    "langchain": re.compile(r"\blangchain\b|\blanggraph\b", re.IGNORECASE),
    "n8n": re.compile(r"\bn8n\b", re.IGNORECASE),
    "claude": re.compile(r"\bclaude\b|\bclaude.?code\b", re.IGNORECASE),
    "openai": re.compile(r"\bopenai\b|\bgpt-?[0-9]\b", re.IGNORECASE),
    "confluence": re.compile(r"\bconfluence\b", re.IGNORECASE),
    "qdrant": re.compile(r"\bqdrant\b", re.IGNORECASE),
    "vector-search": re.compile(r"\bvector\b.*\bsearch\b", re.IGNORECASE),
    "embeddings": re.compile(r"\bembeddings?\b", re.IGNORECASE),
    "llm": re.compile(r"\bLLMs?\b|\blarge.?language.?model", re.IGNORECASE),
    "api": re.compile(r"\bAPI\b", re.IGNORECASE),
    "authentication": re.compile(r"\bauth\b|\bauthentication\b", re.IGNORECASE),
    "typescript": re.compile(r"\btypescript\b|\bts\b", re.IGNORECASE),
    "python": re.compile(r"\bpython\b", re.IGNORECASE),
    "nodejs": re.compile(r"\bnode\.?js\b", re.IGNORECASE),
    "nestjs": re.compile(r"\bnest\.?js\b", re.IGNORECASE),
    "redis": re.compile(r"\bredis\b", re.IGNORECASE),
    "docker": re.compile(r"\bdocker\b", re.IGNORECASE),
}


def keyword_tags(text: str) -> list[str]:
    """Tags whose pattern occurs in *text*, in table order, capped at 12."""
    return normalize_tags([tag for tag, pattern in TAG_PATTERNS.items() if pattern.search(text)], MAX_TAGS)


class TagResponse(BaseModel):
    tags: list[str] = Field(min_length=1, max_length=MAX_TAGS * 2)


class TagExtractor:
    """Ask a small chat model for 3-12 topic tags per chunk.

    Failures never propagate: a chunk whose tags cannot be extracted just
    gets an empty list, so tagging can never break a publish.
    """

    def __init__(
        self,
        chat_model: BaseChatModel | None = None,
        *,
        system_prompt: str = TAG_SYSTEM_PROMPT,
        timeout: float = settings.tagging_timeout,
    ) -> None:
        self._chat_model = (
            chat_model
            if chat_model is not None
            else get_chat_model(settings.tagging_model, temperature=settings.tagging_temperature, timeout=timeout)
        )
        self.system_prompt = system_prompt
        self.timeout = timeout

    async def extract_tags(
        self,
        text: str,
        *,
        title: str | None = None,
        heading_path: list[str] | None = None,
    ) -> list[str]:
        if not text or not text.strip():
            return []

        messages = build_tag_prompt(text, title=title, heading_path=heading_path, system_prompt=self.system_prompt)
        try:
            runnable = self._chat_model.bind(response_format={"type": "json_object"})
            response = await asyncio.wait_for(runnable.ainvoke(messages), timeout=self.timeout)
            parsed = TagResponse.model_validate(json.loads(response.content))
        except Exception:
            logger.warning("Tag extraction failed; continuing without tags", exc_info=True)
            return []

        return normalize_tags(parsed.tags, MAX_TAGS)

    async def extract_tags_batch(
        self,
        texts: list[str],
        *,
        title: str | None = None,
        heading_paths: list[list[str]] | None = None,
    ) -> list[list[str]]:
        """Tags for each of *texts*, in order."""
        paths = heading_paths if heading_paths is not None else [[] for _ in texts]
        return list(
            await asyncio.gather(
                *(self.extract_tags(text, title=title, heading_path=path) for text, path in zip(texts, paths))
            )
        )
