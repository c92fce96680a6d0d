"""Domain models for parsed documents, chunk candidates and stored payloads.

The ``*Metadata`` / :class:`ChunkPayload` models mirror exactly what is
persisted with every point in the vector store; the remaining models are
transient and only live for the duration of one chunking run.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

ChunkType = Literal["knowledge", "navigation", "table_row", "code", "faq", "glossary"]
SourceType = Literal["confluence", "web", "manual", "file"]
Dialect = Literal["storage", "markdown", "plain"]

MAX_TAGS = 12


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Parsed structure ───────────────────────────────────────────────────


class Section(BaseModel):
    """One heading and the prose directly beneath it.

    Attributes
    ----------
    level:
        Heading level, 1-6.
    heading:
        Heading text.
    content:
        Text between this heading and the next heading of any level;
        nested sub-section text is **not** included.
    children:
        Nested sections, in document order.
    start, end:
        Character span of the section in the parser's text view.
    """

    level: int = Field(ge=1, le=6)
    heading: str
    content: str = ""
    children: list[Section] = Field(default_factory=list)
    start: int = 0
    end: int = 0


class Table(BaseModel):
    headers: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)
    caption: str | None = None


class CodeBlock(BaseModel):
    language: str | None = None
    code: str


class DocumentStructure(BaseModel):
    """Everything the parser recovered from one document."""

    title: str | None = None
    sections: list[Section] = Field(default_factory=list)
    tables: list[Table] = Field(default_factory=list)
    code_blocks: list[CodeBlock] = Field(default_factory=list)


class ChunkCandidate(BaseModel):
    """Un-assembled chunk produced by one of the chunkers."""

    text: str
    heading_path: list[str] = Field(default_factory=list)
    type: ChunkType = "knowledge"
    start: int | None = None
    end: int | None = None


# ── Persisted payload ──────────────────────────────────────────────────


class DocMetadata(BaseModel):
    """Provenance of the source document a chunk was derived from."""

    source_type: SourceType
    source_id: str
    url: str
    space_key: str | None = None
    title: str | None = None
    revision: int | str = 1
    last_modified_at: str | None = None
    last_modified_by: str | None = None

    @field_validator("last_modified_at", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> str | None:
        """Accept ISO 8601, RFC 1123 (HTTP ``Last-Modified``) or datetimes; store ISO 8601."""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            parsed = value
        else:
            text = str(value).strip()
            try:
                datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                try:
                    parsed = parsedate_to_datetime(text)
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"Unrecognised timestamp: {value!r}") from exc
            else:
                return text
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.isoformat()


class ChunkMetadata(BaseModel):
    id: str
    index: int = Field(ge=0)
    type: ChunkType = "knowledge"
    heading_path: list[str] = Field(default_factory=list)
    section: str | None = None
    text: str
    content_hash: str
    lang: Literal["ru", "en", "mixed"] = "en"


class AclMetadata(BaseModel):
    visibility: Literal["internal", "public"] = "internal"
    allowed_groups: list[str] = Field(default_factory=list)
    allowed_users: list[str] = Field(default_factory=list)


class EditorMetadata(BaseModel):
    """Editing state kept alongside each chunk.

    ``position`` is the ordering key used by the collection editor and is
    kept in step with ``chunk.index`` on creation.
    """

    position: int = Field(ge=0)
    quality_score: float | None = Field(default=None, ge=0, le=100)
    quality_issues: list[str] = Field(default_factory=list)
    last_edited_at: str | None = None
    last_edited_by: str | None = None
    edit_count: int = 0


class ChunkPayload(BaseModel):
    """Full payload stored with every point."""

    doc: DocMetadata
    chunk: ChunkMetadata
    tags: list[str] = Field(default_factory=list)
    acl: AclMetadata = Field(default_factory=AclMetadata)
    editor: EditorMetadata | None = None

    @field_validator("tags")
    @classmethod
    def _cap_tags(cls, tags: list[str]) -> list[str]:
        return list(dict.fromkeys(tags))[:MAX_TAGS]

    @property
    def position(self) -> int:
        return self.editor.position if self.editor is not None else self.chunk.index

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def create_default_acl() -> AclMetadata:
    return AclMetadata()


def create_default_editor_metadata(position: int, user_id: str | None = None) -> EditorMetadata:
    return EditorMetadata(position=position, last_edited_by=user_id, edit_count=0)
