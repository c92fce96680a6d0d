"""Token counting.

:func:`count_tokens` uses tiktoken's ``gpt-4o`` encoding (``o200k_base``,
shared by ``gpt-4o-mini``), matching the chunking models.  :func:`estimate_tokens`
is a cheap character-ratio heuristic for callers that only need a
ballpark figure or must avoid loading the encoding.
"""

from __future__ import annotations

import math
import re
from functools import lru_cache
from typing import TYPE_CHECKING, Callable

import tiktoken

if TYPE_CHECKING:
    from tiktoken import Encoding

TokenCounter = Callable[[str], int]

_CYRILLIC = re.compile(r"[\u0400-\u04FF]")


@lru_cache(maxsize=1)
def _get_encoding() -> Encoding:
    return tiktoken.encoding_for_model("gpt-4o")


def count_tokens(text: str) -> int:
    """Exact token count for OpenAI ``gpt-4o`` family models."""
    if not text:
        return 0
    return len(_get_encoding().encode(text))


def estimate_tokens(text: str) -> int:
    """Estimate tokens at ~4 chars/token, or ~2.5 when Cyrillic is present."""
    if not text:
        return 0
    chars_per_token = 2.5 if _CYRILLIC.search(text) else 4
    return math.ceil(len(text) / chars_per_token)
