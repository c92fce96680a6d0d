"""Provider initialisation: single place to swap chat and embedding backends.

Chat models are always ``ChatOpenAI``; pointing ``LLM_BASE_URL`` at any
OpenAI-compatible server (vLLM, a proxy) works unchanged.  Embeddings use
OpenAI by default or a local sentence-transformer when
``EMBEDDING_PROVIDER=huggingface``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from kb_ingest.config import settings

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


def _openai_kwargs() -> dict:
    kwargs: dict = {"api_key": settings.openai_api_key or "EMPTY"}
    if settings.llm_base_url:
        logger.info("Using OpenAI-compatible endpoint: %s", settings.llm_base_url)
        kwargs["base_url"] = settings.llm_base_url
    return kwargs


def get_chat_model(
    model: str | None = None,
    *,
    temperature: float = 0.0,
    timeout: float | None = None,
    max_retries: int | None = None,
) -> ChatOpenAI:
    """Return a configured chat model.

    Parameters
    ----------
    model:
        Model name; defaults to ``settings.chunking_model``.
    temperature:
        Sampling temperature.
    timeout:
        Per-request timeout in seconds.
    max_retries:
        Retry budget handled inside the OpenAI client.
    """
    return ChatOpenAI(
        model=model or settings.chunking_model,
        temperature=temperature,
        timeout=timeout if timeout is not None else settings.chunking_timeout,
        max_retries=max_retries if max_retries is not None else settings.chunking_max_retries,
        **_openai_kwargs(),
    )


def get_embeddings(provider: str | None = None, model: str | None = None) -> Embeddings:
    """Return the configured embedding backend."""
    provider = (provider or settings.embedding_provider).lower()
    model = model or settings.embedding_model

    if provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(model_name=model)
    if provider != "openai":
        raise ValueError(f"Unsupported embedding provider: {provider!r}")

    return OpenAIEmbeddings(
        model=model,
        timeout=settings.embedding_timeout,
        max_retries=settings.embedding_max_retries,
        chunk_size=settings.embedding_batch_size,
        **_openai_kwargs(),
    )
