"""Utility helpers for working with vault files."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Iterator

MARKDOWN_SUFFIX = ".md"


def iter_markdown_paths(root: Path) -> Iterator[Path]:
    """Yield Markdown files under ``root`` in sorted order, skipping hidden entries."""
    for item in sorted(root.rglob(f"*{MARKDOWN_SUFFIX}")):
        relative_parts = item.relative_to(root).parts
        if any(part.startswith(".") for part in relative_parts):
            continue
        if item.is_file():
            yield item


def to_vault_path(root: Path, path: Path) -> str:
    """Return the vault-relative, ``/``-separated form of ``path``."""
    return path.relative_to(root).as_posix()


def note_title(document_path: str) -> str:
    """Derive a display title from the trailing path segment without its extension."""
    return PurePosixPath(document_path.replace("\\", "/")).stem


def mtime_millis(path: Path) -> int:
    """Modification time of ``path`` in integer milliseconds."""
    return path.stat().st_mtime_ns // 1_000_000
