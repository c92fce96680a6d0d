"""Token-bounded splitting on natural text boundaries."""

from __future__ import annotations

import re

from kb_ingest.ingestion.tokens import TokenCounter, count_tokens

# Rough characters-per-token used to place the boundary search window.
CHARS_PER_TOKEN = 3.5
WINDOW_LEAD_CHARS = 200

# Boundary kinds, most preferred first.
BOUNDARY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\n\n"),
    re.compile(r"\n"),
    re.compile(r"[.!?]\s+"),
    re.compile(r"\s+"),
)


def split_on_boundaries(
    text: str,
    target_tokens: int = 400,
    max_tokens: int = 700,
    *,
    counter: TokenCounter = count_tokens,
) -> list[str]:
    """Split *text* into pieces of at most *max_tokens*.

    Each cut is searched for in a window that starts a little before
    *target_tokens* and ends at *max_tokens* (both converted to characters).
    Inside that window a paragraph break is preferred, then a line break,
    then a sentence end, then any whitespace.  A boundary is only accepted
    if the piece before it still fits in *max_tokens*; when none does, a
    hard cut is placed by binary search.

    Parameters
    ----------
    text:
        The text to split.
    target_tokens:
        Soft size; remainders at or under this size are not split further.
    max_tokens:
        Hard upper bound per piece.
    counter:
        Token counting function.

    Returns
    -------
    list[str]
        Trimmed, non-empty pieces in order.
    """
    if counter(text) <= target_tokens:
        stripped = text.strip()
        return [stripped] if stripped else []

    pieces: list[str] = []
    remaining = text.strip()
    while remaining:
        if counter(remaining) <= target_tokens:
            pieces.append(remaining)
            break

        cut = find_boundary(remaining, target_tokens, max_tokens, counter=counter)
        if cut is None:
            cut = find_hard_cut(remaining, max_tokens, counter=counter)

        piece = remaining[:cut].strip()
        if piece:
            pieces.append(piece)
        remaining = remaining[cut:].strip()

    return pieces


def find_boundary(
    text: str,
    target_tokens: int,
    max_tokens: int,
    *,
    counter: TokenCounter = count_tokens,
) -> int | None:
    """Return the character offset just past the best boundary, or ``None``."""
    window_start = max(0, min(int(target_tokens * CHARS_PER_TOKEN) - WINDOW_LEAD_CHARS, len(text)))
    window_end = min(int(max_tokens * CHARS_PER_TOKEN), len(text))
    if window_end <= window_start:
        return None

    window = text[window_start:window_end]
    for pattern in BOUNDARY_PATTERNS:
        # Latest boundary of the kind whose prefix still fits.
        for match in reversed(list(pattern.finditer(window))):
            cut = window_start + match.end()
            if counter(text[:cut]) <= max_tokens:
                return cut
    return None


def find_hard_cut(text: str, max_tokens: int, *, counter: TokenCounter = count_tokens) -> int:
    """Largest prefix length within *max_tokens*; always at least 1."""
    lo, hi = 0, len(text)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if counter(text[:mid]) <= max_tokens:
            lo = mid
        else:
            hi = mid - 1
    return max(1, lo)


def split_lines_by_tokens(text: str, max_tokens: int, *, counter: TokenCounter = count_tokens) -> list[str]:
    """Greedily pack whole lines into groups of at most *max_tokens*.

    A single line longer than the budget becomes its own group.
    """
    groups: list[str] = []
    current: list[str] = []
    current_tokens = 0
    for line in text.split("\n"):
        line_tokens = counter(line)
        if current and current_tokens + line_tokens > max_tokens:
            groups.append("\n".join(current))
            current, current_tokens = [line], line_tokens
        else:
            current.append(line)
            current_tokens += line_tokens
    if current:
        groups.append("\n".join(current))
    return groups
