"""Core deepnotes data models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass(slots=True)
class NoteDocument:
    """A Markdown note in the vault.

    ``path`` is vault-relative with ``/`` separators and ``mtime`` is the
    modification time in integer milliseconds. ``content`` is optional so that
    notes can be enumerated without reading them.
    """

    path: str
    mtime: int
    content: Optional[str] = None


@dataclass(slots=True)
class NoteChunk:
    """Heading-scoped slice of a note, the unit of embedding."""

    text: str
    document_path: str
    chunk_index: int
    heading: str


@dataclass(slots=True)
class VectorRecord:
    """Persisted chunk plus its embedding and freshness marker."""

    vector: np.ndarray
    document_path: str
    chunk_index: int
    heading: str
    text: str
    mtime: int
    id: Optional[int] = None
