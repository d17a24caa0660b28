"""Semantic search interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from deepnotes.embedding.base import EmbeddingProvider, Vector
from deepnotes.index.storage import SQLiteVectorStore
from deepnotes.models import NoteDocument
from deepnotes.utils.files import note_title


@dataclass(slots=True)
class SearchResult:
    text: str
    file_path: str
    note_title: str
    heading: str
    score: float
    chunk_index: int = 0


class Searcher:
    """High-level, read-only API over the vector store."""

    def __init__(self, store: SQLiteVectorStore, embedder: EmbeddingProvider | None = None) -> None:
        self.store = store
        self.embedder = embedder

    def search(
        self,
        query_vector: Vector,
        *,
        top_k: int = 5,
        exclude_document_path: str | None = None,
    ) -> List[SearchResult]:
        rows = self.store.query(query_vector, top_k, exclude_document_path)
        return [
            SearchResult(
                text=row["text"],
                file_path=row["document_path"],
                note_title=note_title(row["document_path"]),
                heading=row["heading"],
                score=float(row["score"]),
                chunk_index=row["chunk_index"],
            )
            for row in rows[:top_k]
        ]

    def _embedder(self) -> EmbeddingProvider:
        if self.embedder is None:
            raise ValueError("Text search requires an embedding provider")
        return self.embedder

    def search_text(
        self,
        query: str,
        *,
        top_k: int = 5,
        exclude_document_path: str | None = None,
    ) -> List[SearchResult]:
        embedding = self._embedder().embed_query(query)
        return self.search(embedding, top_k=top_k, exclude_document_path=exclude_document_path)

    def related(self, document: NoteDocument, *, top_k: int = 5) -> List[SearchResult]:
        """Chunks from other notes most similar to the whole of ``document``."""
        if document.content is None:
            raise ValueError(f"Content of {document.path} is required")
        embedding = self._embedder().embed_query(document.content)
        return self.search(embedding, top_k=top_k, exclude_document_path=document.path)
