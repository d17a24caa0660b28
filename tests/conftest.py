"""Shared fixtures: a deterministic embedder, an open store and a temp vault."""

from __future__ import annotations

import os
import zlib
from pathlib import Path
from typing import List

import numpy as np
import pytest

from deepnotes.index.storage import SQLiteVectorStore


class FakeEmbedder:
    """Hash-seeded embeddings: identical text always maps to the same vector."""

    def __init__(self, dimension: int = 8) -> None:
        self.dimension = dimension
        self.calls: List[str] = []

    def embed_query(self, text: str) -> np.ndarray:
        self.calls.append(text)
        rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
        return (rng.random(self.dimension) + 0.01).astype("float32")

    def __call__(self, text: str) -> np.ndarray:
        return self.embed_query(text)


def write_note(root: Path, relative: str, content: str, mtime_ms: int | None = None) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mtime_ms is not None:
        os.utime(path, ns=(mtime_ms * 1_000_000, mtime_ms * 1_000_000))
    return path


def section(heading: str, body: str) -> str:
    return f"## {heading}\n\n{body}\n\n"


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store(tmp_path):
    store = SQLiteVectorStore(tmp_path / "index.db").open()
    yield store
    store.close()


@pytest.fixture
def vault(tmp_path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root
