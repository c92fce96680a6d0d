"""Text normalisation, content hashing and language detection."""

from __future__ import annotations

import hashlib
import re
from typing import Literal

Language = Literal["ru", "en", "mixed"]

HASH_PREFIX = "sha256:"

_MULTI_SPACE = re.compile(r" {2,}")
_MULTI_NEWLINE = re.compile(r"\n{3,}")
_LEADING_EMOJI = re.compile(r"^[\U0001F300-\U0001F9FF\u2600-\u26FF\u2700-\u27BF]+\s*")
_CYRILLIC = re.compile(r"[\u0400-\u04FF]")
_LATIN = re.compile(r"[A-Za-z]")


def normalize_for_hash(text: str) -> str:
    """Return the canonical form of *text* used for hashing.

    Trims, collapses runs of spaces and of blank lines, drops a leading
    emoji run and lower-cases the result.
    """
    normalized = text.strip()
    normalized = _MULTI_SPACE.sub(" ", normalized)
    normalized = _MULTI_NEWLINE.sub("\n\n", normalized)
    normalized = _LEADING_EMOJI.sub("", normalized)
    return normalized.lower()


def compute_content_hash(text: str) -> str:
    """Return ``"sha256:<hex>"`` of the normalised *text*."""
    digest = hashlib.sha256(normalize_for_hash(text).encode("utf-8")).hexdigest()
    return f"{HASH_PREFIX}{digest}"


def strip_hash_prefix(content_hash: str) -> str:
    return content_hash[len(HASH_PREFIX):] if content_hash.startswith(HASH_PREFIX) else content_hash


def detect_language(text: str) -> Language:
    """Classify the dominant script of *text*.

    Returns ``"ru"`` when Cyrillic makes up more than 10% of the letters,
    ``"en"`` for predominantly Latin text (and for text with no letters),
    otherwise ``"mixed"``.
    """
    if not text:
        return "en"

    cyrillic = len(_CYRILLIC.findall(text))
    latin = len(_LATIN.findall(text))
    letters = cyrillic + latin
    if letters == 0:
        return "en"

    cyrillic_ratio = cyrillic / letters
    if cyrillic_ratio > 0.1:
        return "ru"
    if cyrillic_ratio == 0 and latin / len(text) > 0.3:
        return "en"
    return "mixed"


def normalize_tag(tag: str) -> str:
    """Lower-case kebab form: ``"Vector Search!"`` -> ``"vector-search"``."""
    tag = tag.lower().strip()
    tag = re.sub(r"\s+", "-", tag)
    tag = re.sub(r"[^a-z0-9-]", "", tag)
    tag = re.sub(r"-+", "-", tag)
    return tag.strip("-")


def normalize_tags(tags: list[str], limit: int = 12) -> list[str]:
    """Normalise, drop empties and duplicates (keeping order), cap at *limit*."""
    seen: list[str] = []
    for tag in tags:
        norm = normalize_tag(tag)
        if norm and norm not in seen:
            seen.append(norm)
    return seen[:limit]
