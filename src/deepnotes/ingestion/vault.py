"""Markdown vault document source."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Optional

from deepnotes.models import NoteDocument
from deepnotes.utils.files import (
    MARKDOWN_SUFFIX,
    iter_markdown_paths,
    mtime_millis,
    to_vault_path,
)

LOGGER = logging.getLogger(__name__)


class VaultSource:
    """Enumerates and reads the notes of a vault directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        root = self.root.resolve()
        if resolved != root and root not in resolved.parents:
            raise ValueError(f"Path escapes the vault: {path}")
        return resolved

    def iter_documents(self) -> Iterator[NoteDocument]:
        """Yield every note with its mtime; content is read lazily."""
        if not self.root.is_dir():
            LOGGER.warning("Vault directory not found: %s", self.root)
            return
        for path in iter_markdown_paths(self.root):
            try:
                mtime = mtime_millis(path)
            except OSError as exc:
                LOGGER.warning("Cannot stat %s: %s", path, exc)
                continue
            yield NoteDocument(path=to_vault_path(self.root, path), mtime=mtime)

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except ValueError:
            return False

    def get(self, path: str, *, with_content: bool = False) -> Optional[NoteDocument]:
        """Return the note at ``path`` or None when it is missing or not Markdown."""
        if not path.endswith(MARKDOWN_SUFFIX) or not self.exists(path):
            return None
        full_path = self._resolve(path)
        document = NoteDocument(path=path, mtime=mtime_millis(full_path))
        if with_content:
            document.content = self.read(path)
        return document

    def read(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8")
