"""Text helpers, including the heading-aware note chunker."""

from __future__ import annotations

import re
from typing import Iterator, List

from deepnotes.models import NoteChunk

DEFAULT_HEADING = "Introduction"
MAX_CHUNK_CHARS = 800
MIN_CHUNK_CHARS = 30

HEADING_PATTERN = re.compile(r"^(#{1,3})\s+(\S.*)")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
PARAGRAPH_SEPARATOR = "\n\n"


def chunk_text(text: str, *, max_chars: int = 800, overlap: int = 0) -> Iterator[str]:
    """Split text into fixed-size character windows.

    Windows overlap by ``overlap`` characters; with the default of zero a text
    of length ``n`` yields ``ceil(n / max_chars)`` windows.
    """
    if not text:
        return iter(())

    step = max(max_chars - overlap, 1)
    return (text[start : start + max_chars] for start in range(0, len(text), step))


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces and trim."""
    return " ".join(text.split())


def split_paragraphs(block: str) -> List[str]:
    """Split a block on blank lines, dropping empty paragraphs."""
    return [para.strip() for para in PARAGRAPH_BREAK.split(block) if para.strip()]


def split_evenly(text: str, *, max_chars: int = MAX_CHUNK_CHARS) -> List[str]:
    """Cut ``text`` into the fewest windows of at most ``max_chars``, sized evenly.

    Window lengths differ by at most one, so the tail is never a sliver.
    """
    if len(text) <= max_chars:
        return [text] if text else []
    count = -(-len(text) // max_chars)
    size = -(-len(text) // count)
    return list(chunk_text(text, max_chars=size))


def split_section(
    block: str,
    *,
    max_chars: int = MAX_CHUNK_CHARS,
    split_long_paragraphs: bool = False,
) -> Iterator[str]:
    """Yield chunk texts for one heading section.

    Sections that fit are yielded whole. Longer ones are packed greedily
    paragraph by paragraph; a single paragraph above ``max_chars`` stays in
    one piece unless ``split_long_paragraphs`` is set.
    """
    section = block.strip()
    if len(section) <= max_chars:
        yield section
        return

    paragraphs = split_paragraphs(section)
    if split_long_paragraphs:
        paragraphs = [
            piece for para in paragraphs for piece in split_evenly(para, max_chars=max_chars)
        ]

    buffer = ""
    for para in paragraphs:
        if buffer and len(buffer) + len(PARAGRAPH_SEPARATOR) + len(para) > max_chars:
            yield buffer
            buffer = para
        else:
            buffer = f"{buffer}{PARAGRAPH_SEPARATOR}{para}" if buffer else para

    if buffer:
        yield buffer


def chunk_note(
    content: str,
    document_path: str,
    *,
    max_chars: int = MAX_CHUNK_CHARS,
    min_chars: int = MIN_CHUNK_CHARS,
    split_long_paragraphs: bool = False,
) -> List[NoteChunk]:
    """Split a Markdown note into heading-scoped chunks.

    Headings of level 1 to 3 open a new section; text before the first one
    belongs to ``DEFAULT_HEADING``. Chunks shorter than ``min_chars`` once
    whitespace is collapsed are dropped and do not consume an index.
    """
    chunks: List[NoteChunk] = []

    def push(text: str, heading: str) -> None:
        trimmed = text.strip()
        if len(normalize_whitespace(trimmed)) < min_chars:
            return
        chunks.append(
            NoteChunk(
                text=trimmed,
                document_path=document_path,
                chunk_index=len(chunks),
                heading=heading,
            )
        )

    def flush(block: str, heading: str) -> None:
        if not block.strip():
            return
        for text in split_section(
            block, max_chars=max_chars, split_long_paragraphs=split_long_paragraphs
        ):
            push(text, heading)

    heading = DEFAULT_HEADING
    lines: List[str] = []
    for line in content.split("\n"):
        match = HEADING_PATTERN.match(line)
        if match:
            flush("\n".join(lines), heading)
            heading = match.group(2).strip()
            lines = []
        else:
            lines.append(line)

    flush("\n".join(lines), heading)
    return chunks
