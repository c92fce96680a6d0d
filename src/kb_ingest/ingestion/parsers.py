"""Structure recovery from source markup.

Three dialects are understood:

* ``"storage"``: Confluence storage format (XHTML with ``ac:`` / ``ri:``
  macros), parsed with BeautifulSoup.
* ``"markdown"``: ATX headings, fenced code blocks and pipe tables.
* ``"plain"``: flat text or loose HTML; yields a single section.

:func:`parse_document` never raises.  Anything it cannot handle degrades to
one flat level-1 section so downstream chunking always has material.
"""

from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag

from kb_ingest.ingestion.models import CodeBlock, DocumentStructure, Section, Table

logger = logging.getLogger(__name__)

DEFAULT_SECTION_HEADING = "Content"

_HEADING_TAG = re.compile(r"^h([1-6])$")
_MD_HEADING = re.compile(r"^(#{1,6})\s+(.+)$")
_MD_TABLE_SEPARATOR = re.compile(r"^[\s|:\-]+$")
_TAG_RE = re.compile(r"<[^>]+>")
_CDATA_WRAPPER = re.compile(r"^\s*(?:<!)?\[CDATA\[(.*?)\]\]>?\s*$", re.DOTALL)

# Text under these elements is never section prose.
_NON_PROSE = {"table", "pre", "ac:parameter", "script", "style", "title"}
_LINE_BLOCKS = {"li", "tr", "dt", "dd"}
_SKIPPED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)


def parse_document(raw: str, dialect: str | None, title: str | None = None) -> DocumentStructure:
    """Recover title, section tree, tables and code blocks from *raw*.

    Parameters
    ----------
    raw:
        Source markup.
    dialect:
        ``"storage"``, ``"markdown"`` or ``"plain"``.  ``None`` or an
        unknown value falls back to a single flat section.
    title:
        Document title known from elsewhere (API metadata, file name).
        Used when the markup does not carry one.

    Returns
    -------
    DocumentStructure
        Always contains at least one section unless *raw* is blank.
    """
    parsers = {
        "storage": _parse_storage,
        "markdown": _parse_markdown,
        "plain": _parse_plain,
    }
    parser = parsers.get(dialect or "")
    if parser is None:
        logger.warning("No parser for dialect %r; using flat fallback", dialect)
        return _flat_fallback(raw, title)

    try:
        return parser(raw, title)
    except Exception:
        logger.warning("Failed to parse %s document; using flat fallback", dialect, exc_info=True)
        return _flat_fallback(raw, title)


# ── Shared helpers ─────────────────────────────────────────────────────


def build_section_tree(flat: list[Section]) -> list[Section]:
    """Nest *flat* sections by heading level using a stack.

    Pops while the stack top is at the same or a deeper level, then
    attaches the section to the new top (or to the root).
    """
    roots: list[Section] = []
    stack: list[Section] = []
    for section in flat:
        while stack and stack[-1].level >= section.level:
            stack.pop()
        if stack:
            stack[-1].children.append(section)
        else:
            roots.append(section)
        stack.append(section)
    return roots


def flatten_sections(sections: list[Section]) -> list[tuple[Section, list[str]]]:
    """Depth-first walk yielding ``(section, heading_path)`` pairs."""
    out: list[tuple[Section, list[str]]] = []

    def _walk(nodes: list[Section], path: list[str]) -> None:
        for node in nodes:
            node_path = [*path, node.heading]
            out.append((node, node_path))
            _walk(node.children, node_path)

    _walk(sections, [])
    return out


def _tidy(text: str) -> str:
    lines = [re.sub(r"[ \t\xa0]+", " ", line).strip() for line in text.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def _single_section(text: str, heading: str | None) -> Section:
    return Section(
        level=1,
        heading=heading or DEFAULT_SECTION_HEADING,
        content=text,
        start=0,
        end=len(text),
    )


def _flat_fallback(raw: str, title: str | None) -> DocumentStructure:
    text = _tidy(_TAG_RE.sub(" ", raw or ""))
    sections = [_single_section(text, title)] if text else []
    return DocumentStructure(title=title, sections=sections)


# ── Confluence storage format ──────────────────────────────────────────


def _strip_storage_decorations(soup: BeautifulSoup) -> None:
    """Replace macro noise with plain-text equivalents, in place."""
    for tag in soup.find_all(["ac:image", "ri:attachment"]):
        tag.decompose()

    for tag in soup.find_all("ri:user"):
        username = tag.get("ri:username") or tag.get("ri:userkey") or tag.get("ri:account-id")
        tag.replace_with(f"@{username}" if username else "")

    for tag in soup.find_all("ri:page"):
        tag.decompose()

    for tag in soup.find_all("ac:emoticon"):
        name = tag.get("ac:name")
        tag.replace_with(f":{name}:" if name else "")

    for macro in soup.find_all("ac:structured-macro", attrs={"ac:name": "status"}):
        param = macro.find("ac:parameter", attrs={"ac:name": "title"})
        if param is not None and param.get_text(strip=True):
            macro.replace_with(f"[STATUS: {param.get_text(strip=True)}]")
        else:
            macro.decompose()


def _is_code_macro(tag: Tag) -> bool:
    return tag.name == "ac:structured-macro" and tag.get("ac:name") == "code"


def _in_non_prose(element: NavigableString) -> bool:
    return any(parent.name in _NON_PROSE or _is_code_macro(parent) for parent in element.parents)


def _block_parent(element: NavigableString) -> Tag | None:
    for parent in element.parents:
        if parent.name in {"p", "div", "li", "blockquote", "tr", "dt", "dd", "body", "[document]"}:
            return parent
    return None


def _collect_prose(start: Tag | BeautifulSoup, *, after: bool) -> str:
    """Gather prose following *start* up to the next heading.

    With ``after=False`` the walk covers the whole document and stops at
    the first heading (used for text preceding any heading).
    """
    parts: list[str] = []
    current_block: Tag | None = None
    elements = start.next_elements if after else start.descendants

    for element in elements:
        if isinstance(element, Tag):
            if _HEADING_TAG.match(element.name):
                break
            continue
        if isinstance(element, _SKIPPED_STRINGS) or not isinstance(element, NavigableString):
            continue
        if after and any(parent is start for parent in element.parents):
            continue
        if _in_non_prose(element):
            continue
        text = str(element)
        if not text.strip():
            continue

        block = _block_parent(element)
        if parts and block is not current_block:
            parts.append("\n" if block is not None and block.name in _LINE_BLOCKS else "\n\n")
        current_block = block
        parts.append(text)

    return _tidy("".join(parts))


def _extract_storage_tables(soup: BeautifulSoup) -> list[Table]:
    tables: list[Table] = []
    for table in soup.find_all("table"):
        caption_tag = table.find("caption")
        caption = caption_tag.get_text(" ", strip=True) if caption_tag else None

        thead = table.find("thead")
        headers = [th.get_text(" ", strip=True) for th in thead.find_all("th")] if thead else []

        rows: list[list[str]] = []
        for tr in table.find_all("tr"):
            if thead is not None and tr.find_parent("thead") is thead:
                continue
            rows.append([cell.get_text(" ", strip=True) for cell in tr.find_all(["td", "th"], recursive=False)])

        if thead is None and rows:
            headers, rows = rows[0], rows[1:]

        tables.append(Table(headers=headers, rows=rows, caption=caption or None))
    return tables


def _macro_body(body: Tag) -> str:
    text = "".join(str(child) for child in body.contents if isinstance(child, NavigableString)) or body.get_text()
    # Some html.parser versions surface CDATA as a bogus comment.
    match = _CDATA_WRAPPER.match(text)
    return match.group(1) if match else text


def _extract_storage_code(soup: BeautifulSoup) -> list[CodeBlock]:
    blocks: list[CodeBlock] = []

    for macro in soup.find_all("ac:structured-macro", attrs={"ac:name": "code"}):
        lang_param = macro.find("ac:parameter", attrs={"ac:name": "language"})
        body = macro.find("ac:plain-text-body")
        code = _macro_body(body).strip("\n") if body is not None else ""
        if code.strip():
            language = lang_param.get_text(strip=True) if lang_param is not None else None
            blocks.append(CodeBlock(language=language or None, code=code))

    for pre in soup.find_all("pre"):
        code = pre.get_text().strip("\n")
        if not code.strip():
            continue
        language = None
        for candidate in (pre, pre.find("code")):
            if candidate is None:
                continue
            for cls in candidate.get("class") or []:
                if cls.startswith("language-"):
                    language = cls[len("language-"):]
        blocks.append(CodeBlock(language=language, code=code))

    return blocks


def _parse_storage(raw: str, title: str | None) -> DocumentStructure:
    soup = BeautifulSoup(raw, "html.parser")
    _strip_storage_decorations(soup)

    title_tag = soup.find("h1") or soup.find("title")
    doc_title = title_tag.get_text(" ", strip=True) if title_tag else None

    flat: list[Section] = []
    cursor = 0
    preamble = _collect_prose(soup, after=False)
    for heading in soup.find_all(_HEADING_TAG):
        level = int(heading.name[1])
        content = _collect_prose(heading, after=True)
        flat.append(
            Section(
                level=level,
                heading=heading.get_text(" ", strip=True) or DEFAULT_SECTION_HEADING,
                content=content,
                start=cursor,
                end=cursor + len(content),
            )
        )
        cursor += len(content)

    sections = build_section_tree(flat)
    if preamble:
        sections.insert(0, _single_section(preamble, doc_title or title))

    return DocumentStructure(
        title=doc_title or title,
        sections=sections,
        tables=_extract_storage_tables(soup),
        code_blocks=_extract_storage_code(soup),
    )


# ── Markdown ───────────────────────────────────────────────────────────


def _split_pipe_row(line: str) -> list[str]:
    return [cell.strip() for cell in line.strip().strip("|").split("|")]


def _parse_pipe_table(lines: list[str]) -> Table:
    headers = _split_pipe_row(lines[0])
    rows: list[list[str]] = []
    for line in lines[1:]:
        if "-" in line and _MD_TABLE_SEPARATOR.match(line):
            continue
        cells = _split_pipe_row(line)
        rows.append((cells + [""] * len(headers))[: len(headers)])
    return Table(headers=headers, rows=rows)


def _parse_markdown(raw: str, title: str | None) -> DocumentStructure:
    code_blocks: list[CodeBlock] = []
    tables: list[Table] = []
    flat: list[Section] = []

    preamble: list[str] = []
    current: Section | None = None
    content: list[str] = []
    table_lines: list[str] = []
    code_lines: list[str] = []
    code_lang: str | None = None
    in_code = False
    offset = 0

    def _close_section(end: int) -> None:
        if current is not None:
            current.content = _tidy("\n".join(content))
            current.end = end

    def _flush_table() -> None:
        if table_lines:
            tables.append(_parse_pipe_table(table_lines))
            table_lines.clear()

    for line in raw.split("\n"):
        line_start = offset
        offset += len(line) + 1
        stripped = line.strip()

        if stripped.startswith("```"):
            if in_code:
                if any(code_line.strip() for code_line in code_lines):
                    code_blocks.append(CodeBlock(language=code_lang, code="\n".join(code_lines)))
                code_lines, code_lang, in_code = [], None, False
            else:
                _flush_table()
                code_lang = stripped[3:].strip() or None
                in_code = True
            continue
        if in_code:
            code_lines.append(line)
            continue

        if stripped.startswith("|"):
            table_lines.append(stripped)
            continue
        _flush_table()

        match = _MD_HEADING.match(stripped)
        if match:
            _close_section(line_start)
            current = Section(level=len(match.group(1)), heading=match.group(2).strip(), start=line_start)
            flat.append(current)
            content = []
            continue

        (content if current is not None else preamble).append(line)

    _flush_table()
    if in_code and code_lines:
        code_blocks.append(CodeBlock(language=code_lang, code="\n".join(code_lines)))
    _close_section(len(raw))

    doc_title = next((s.heading for s in flat if s.level == 1), None) or title
    sections = build_section_tree(flat)
    preamble_text = _tidy("\n".join(preamble))
    if preamble_text:
        sections.insert(0, _single_section(preamble_text, title))

    return DocumentStructure(title=doc_title, sections=sections, tables=tables, code_blocks=code_blocks)


# ── Plain text / loose HTML ────────────────────────────────────────────


def _parse_plain(raw: str, title: str | None) -> DocumentStructure:
    if _TAG_RE.search(raw):
        text = _tidy(BeautifulSoup(raw, "html.parser").get_text("\n"))
    else:
        text = _tidy(raw)
    sections = [_single_section(text, title)] if text else []
    return DocumentStructure(title=title, sections=sections)
