"""LLM-driven chunking with a strict, schema-validated response."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError

from kb_ingest.config import settings
from kb_ingest.errors import ParseError, ValidationError
from kb_ingest.llm.clients import get_chat_model
from kb_ingest.llm.errors import map_provider_error
from kb_ingest.llm.prompts import CHUNKING_SYSTEM_PROMPT, build_chunking_prompt

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)


class SemanticChunk(BaseModel):
    id: str = Field(pattern=r"^temp_\d+$")
    text: str = Field(min_length=1)
    is_dirty: bool = False


class ChunkResponse(BaseModel):
    chunks: list[SemanticChunk] = Field(min_length=1)


CHUNK_RESPONSE_FORMAT: dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "chunk_response",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "chunks": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string", "description": "Sequential id: temp_1, temp_2, ..."},
                            "text": {"type": "string"},
                            "is_dirty": {"type": "boolean"},
                        },
                        "required": ["id", "text", "is_dirty"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["chunks"],
            "additionalProperties": False,
        },
    },
}


def _message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    # Content blocks: keep only the text parts.
    return "".join(block.get("text", "") if isinstance(block, dict) else str(block) for block in content)


def parse_chunk_response(message: BaseMessage) -> list[SemanticChunk]:
    """Validate a chunking completion.

    Refusals, truncation, empty bodies and malformed JSON are all reported
    as :class:`ParseError`; nothing is repaired or substituted.
    """
    refusal = message.additional_kwargs.get("refusal")
    if refusal:
        raise ParseError(f"Model refused to chunk: {refusal}", raw_response=refusal)

    if message.response_metadata.get("finish_reason") == "length":
        raise ParseError("Response truncated due to length", raw_response=_message_text(message))

    raw = _message_text(message)
    if not raw.strip():
        raise ParseError("Empty response from model", raw_response=raw)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseError("Model returned invalid JSON", raw_response=raw, original_error=exc) from exc

    try:
        return ChunkResponse.model_validate(data).chunks
    except SchemaValidationError as exc:
        raise ParseError(
            "Model response does not match the chunk schema", raw_response=raw, original_error=exc
        ) from exc


class ChunkingClient:
    """Ask a chat model to split content into semantic chunks.

    Parameters
    ----------
    chat_model:
        LangChain chat model; defaults to :func:`get_chat_model`.
    system_prompt:
        Chunking instructions sent as the system message.
    max_content_length:
        Largest content (in characters) accepted per request.
    timeout:
        Overall seconds allowed per request.
    """

    def __init__(
        self,
        chat_model: BaseChatModel | None = None,
        *,
        system_prompt: str = CHUNKING_SYSTEM_PROMPT,
        max_content_length: int = settings.max_content_length,
        timeout: float = settings.chunking_timeout,
    ) -> None:
        self._chat_model = chat_model if chat_model is not None else get_chat_model(settings.chunking_model)
        self.system_prompt = system_prompt
        self.max_content_length = max_content_length
        self.timeout = timeout

    async def chunk_content(self, content: str) -> list[SemanticChunk]:
        if not content or not content.strip():
            raise ValidationError("Content cannot be empty or whitespace-only", field="content")
        if len(content) > self.max_content_length:
            raise ValidationError(
                f"Content exceeds maximum length of {self.max_content_length} characters", field="content"
            )

        runnable = self._chat_model.bind(response_format=CHUNK_RESPONSE_FORMAT)
        messages = build_chunking_prompt(content, self.system_prompt)
        try:
            message = await asyncio.wait_for(runnable.ainvoke(messages), timeout=self.timeout)
        except Exception as exc:
            mapped = map_provider_error(exc, "Chunking")
            logger.error("Chunking request failed: %s", mapped.message)
            raise mapped from exc

        chunks = parse_chunk_response(message)
        logger.info("Model split %d chars into %d chunks", len(content), len(chunks))
        return chunks
