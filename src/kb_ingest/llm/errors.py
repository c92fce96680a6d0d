"""Translation of provider SDK exceptions into the pipeline error taxonomy."""

from __future__ import annotations

import asyncio
import logging

import openai

from kb_ingest.errors import (
    ApiError,
    ChunkPipelineError,
    ParseError,
    ProviderTimeoutError,
    RateLimitError,
)

logger = logging.getLogger(__name__)


def _retry_after(exc: openai.APIStatusError) -> float | None:
    headers = exc.response.headers if exc.response is not None else {}
    for header, scale in (("retry-after-ms", 1000.0), ("retry-after", 1.0)):
        value = headers.get(header)
        if value is None:
            continue
        try:
            return float(value) / scale
        except ValueError:
            logger.debug("Ignoring non-numeric %s header: %r", header, value)
    return None


def map_provider_error(exc: BaseException, operation: str) -> ChunkPipelineError:
    """Map *exc* raised during *operation* to a :class:`ChunkPipelineError`.

    Already-mapped errors are returned unchanged.
    """
    if isinstance(exc, ChunkPipelineError):
        return exc
    if isinstance(exc, (openai.APITimeoutError, asyncio.TimeoutError, TimeoutError)):
        return ProviderTimeoutError(f"{operation} request timed out", original_error=exc)
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(
            f"{operation} rate limit exceeded", retry_after=_retry_after(exc), original_error=exc
        )
    if isinstance(exc, openai.AuthenticationError):
        return ApiError("Invalid OpenAI API key", status_code=exc.status_code, original_error=exc)
    if isinstance(exc, openai.LengthFinishReasonError):
        return ParseError("Response truncated due to length", original_error=exc)
    if isinstance(exc, openai.InternalServerError):
        return ApiError(
            f"{operation} failed: provider error", status_code=exc.status_code, is_retryable=True, original_error=exc
        )
    if isinstance(exc, openai.APIStatusError):
        return ApiError(
            f"{operation} failed: {exc.message}",
            status_code=exc.status_code,
            is_retryable=exc.status_code >= 500,
            original_error=exc,
        )
    if isinstance(exc, openai.APIConnectionError):
        return ApiError(f"{operation} failed: connection error", is_retryable=True, original_error=exc)
    return ApiError(f"{operation} failed: {exc}", original_error=exc)
