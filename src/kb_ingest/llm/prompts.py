"""Prompt templates for every LLM call made by the pipeline.

System prompts are plain module constants; clients receive them as
constructor arguments so tests and deployments can swap them without
touching module state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

TAG_PROMPT_TEXT_LIMIT = 2000

# ── 1. Semantic chunking ──────────────────────────────────────────────

CHUNKING_SYSTEM_PROMPT = """\
You are a document chunking specialist. Your task is to split the provided
content into semantically meaningful chunks for a knowledge retrieval system.

Guidelines:
1. Each chunk should represent a complete, self-contained piece of information
2. Preserve logical boundaries (sections, paragraphs, topic shifts)
3. Keep related information together (don't split mid-explanation)
4. Target chunk size: 200-1000 characters, but prioritize semantic coherence over size
5. Each chunk should be independently understandable

Rules:
- IDs must be sequential: temp_1, temp_2, temp_3, etc.
- is_dirty must always be false (initial state)
- If content cannot be chunked meaningfully, return a single chunk with all content
"""


def build_chunking_prompt(content: str, system_prompt: str = CHUNKING_SYSTEM_PROMPT) -> list[BaseMessage]:
    return [
        SystemMessage(content=system_prompt),
        HumanMessage(content=content),
    ]


# ── 2. Tag extraction ─────────────────────────────────────────────────

TAG_SYSTEM_PROMPT = """\
You are a topic tag extraction expert. Your task is to extract 3-12 relevant
topic tags from text chunks.

Guidelines:
- Extract technical terms, concepts, tools, technologies mentioned
- Include domain-specific terminology (e.g., "rag", "llm", "agents", "langchain")
- Use lowercase, concise tags (1-3 words max)
- Focus on searchable keywords that help retrieval
- Avoid generic words like "system", "process", "overview"
- Prefer specific over general (e.g., "gpt-4o" over "ai")

Output format:
- Return 3-12 tags as a JSON object: {"tags": [...]}
- Tags should be lowercase, use hyphens for multi-word (e.g., "machine-learning")
"""


def build_tag_prompt(
    text: str,
    *,
    title: str | None = None,
    heading_path: list[str] | None = None,
    system_prompt: str = TAG_SYSTEM_PROMPT,
) -> list[BaseMessage]:
    """Build the tag-extraction prompt; *text* is truncated to keep it cheap."""
    lines = ["Extract relevant topic tags from the following text:", ""]
    if title:
        lines.append(f"Document title: {title}")
    if heading_path:
        lines.append(f"Section: {' > '.join(heading_path)}")
    if title or heading_path:
        lines.append("")

    if len(text) > TAG_PROMPT_TEXT_LIMIT:
        text = text[:TAG_PROMPT_TEXT_LIMIT] + "..."
    lines.append(f"Text:\n{text}")

    return [
        SystemMessage(content=system_prompt),
        HumanMessage(content="\n".join(lines)),
    ]


# ── 3. Chunk cleanup ──────────────────────────────────────────────────

CLEANING_SYSTEM_PROMPT = """\
You clean up knowledge-base chunks that were extracted from web pages and wikis.

Remove leftover markup, navigation crumbs, cookie banners, repeated
boilerplate and broken formatting.  Keep every piece of real information and
keep the original language.  Do not summarise, translate or add anything.

Return only the cleaned text.  If nothing needs to change, return the text
exactly as given.
"""


def build_cleaning_prompt(text: str, system_prompt: str = CLEANING_SYSTEM_PROMPT) -> list[BaseMessage]:
    return [
        SystemMessage(content=system_prompt),
        HumanMessage(content=text),
    ]
