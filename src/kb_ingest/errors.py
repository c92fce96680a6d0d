"""Error taxonomy shared by the chunking pipeline and its provider clients.

Every error carries an ``is_retryable`` flag so callers can decide whether
to re-run the whole operation.  Retrying is never done by re-running
individual pipeline stages; provider clients own their own retry budget.
"""

from __future__ import annotations

from typing import Any


class ChunkPipelineError(Exception):
    """Base class for all pipeline errors.

    Parameters
    ----------
    message:
        Human-readable error message.
    is_retryable:
        Whether repeating the same call may succeed.
    original_error:
        The underlying exception, when this error wraps one.
    details:
        Extra context for logs and diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        is_retryable: bool = False,
        original_error: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.is_retryable = is_retryable
        self.original_error = original_error
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(ChunkPipelineError):
    """Empty, oversized or otherwise unusable input.  Never retried."""

    def __init__(self, message: str, *, field: str | None = None, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, is_retryable=False, details=details)


class RateLimitError(ChunkPipelineError):
    """Provider rate limit hit; ``retry_after`` is in seconds when known."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        self.retry_after = retry_after
        details = {"retry_after": retry_after} if retry_after is not None else None
        super().__init__(message, is_retryable=True, original_error=original_error, details=details)


class ProviderTimeoutError(ChunkPipelineError):
    """A provider call exceeded its timeout."""

    def __init__(self, message: str = "Request timed out", *, original_error: BaseException | None = None) -> None:
        super().__init__(message, is_retryable=True, original_error=original_error)


class ParseError(ChunkPipelineError):
    """Structured completion output was refused, empty or malformed.

    The raw provider response is kept on ``raw_response`` for diagnosis.
    """

    def __init__(
        self,
        message: str,
        *,
        raw_response: str | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        self.raw_response = raw_response
        super().__init__(message, is_retryable=False, original_error=original_error)


class ApiError(ChunkPipelineError):
    """Provider-side failure.  Retryable only for 5xx-class responses."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        is_retryable: bool = False,
        original_error: BaseException | None = None,
    ) -> None:
        self.status_code = status_code
        details = {"status_code": status_code} if status_code is not None else None
        super().__init__(message, is_retryable=is_retryable, original_error=original_error, details=details)


class NotFoundError(ChunkPipelineError):
    """A chunk or collection referenced by an edit does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}", details={"id": identifier})
