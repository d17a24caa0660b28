"""Application context owning the index lifecycle.

The context is the only place that constructs the store, the embedding
provider, the indexer and the searcher; the CLI and the web app receive one
and call through it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

import numpy as np

from deepnotes.config import AppConfig
from deepnotes.embedding.base import EmbeddingProvider, load_provider
from deepnotes.index.indexer import Indexer, IndexStats, Notify
from deepnotes.index.search import Searcher, SearchResult
from deepnotes.index.storage import SQLiteVectorStore
from deepnotes.ingestion.vault import VaultSource
from deepnotes.ingestion.watcher import VaultWatcher
from deepnotes.models import NoteDocument

LOGGER = logging.getLogger(__name__)

ProviderFactory = Callable[[AppConfig], EmbeddingProvider]

RELATED_MARGIN = 5


class VaultContext:
    """Wires a vault, its index and an embedding provider together.

    The provider is loaded lazily on the first embedding call, so commands
    that only touch the store (stats, clear, remove) never load a model.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        provider_factory: ProviderFactory = load_provider,
        notify: Notify | None = None,
    ) -> None:
        self.config = config
        self.source = VaultSource(config.vault_path)
        self.store = SQLiteVectorStore(config.resolve_db_path())
        self._provider_factory = provider_factory
        self._provider: EmbeddingProvider | None = None
        self.indexer = Indexer(
            self.embed,
            self.store,
            self.source,
            progress_every=config.progress_every,
            notify=notify,
            split_long_paragraphs=config.split_long_paragraphs,
        )
        self._watcher: VaultWatcher | None = None

    @property
    def provider(self) -> EmbeddingProvider:
        if self._provider is None:
            self._provider = self._provider_factory(self.config)
        return self._provider

    def embed(self, text: str) -> np.ndarray:
        return self.provider.embed_query(text)

    @property
    def searcher(self) -> Searcher:
        return Searcher(self.store, self.provider)

    def open(self) -> "VaultContext":
        self.store.open()
        LOGGER.debug("Opened index %s for vault %s", self.store.db_path, self.source.root)
        return self

    def close(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        close_provider = getattr(self._provider, "close", None)
        if callable(close_provider):
            close_provider()
        self.store.close()

    def __enter__(self) -> "VaultContext":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _top_k(self, top_k: int | None) -> int:
        return self.config.top_k if top_k is None else top_k

    def search(
        self,
        vector: Any,
        top_k: int | None = None,
        exclude_document_path: str | None = None,
    ) -> List[SearchResult]:
        return Searcher(self.store).search(
            vector,
            top_k=self._top_k(top_k),
            exclude_document_path=exclude_document_path,
        )

    def search_text(
        self,
        query: str,
        top_k: int | None = None,
        exclude_document_path: str | None = None,
    ) -> List[SearchResult]:
        return self.searcher.search_text(
            query,
            top_k=self._top_k(top_k),
            exclude_document_path=exclude_document_path,
        )

    def related(self, path: str, top_k: int | None = None) -> List[SearchResult]:
        """Index ``path`` if stale, then find chunks from other notes similar to it.

        Records of notes deleted from the vault since the last prune are
        skipped, and further candidates are fetched until ``top_k`` live
        results are found or the index runs out.
        """
        document = self.source.get(path, with_content=True)
        if document is None:
            raise FileNotFoundError(f"Note not found in vault: {path}")
        self.indexer.index_one(document)

        limit = self._top_k(top_k)
        if limit <= 0:
            return []
        vector = self.embed(document.content or "")
        fetch = limit + RELATED_MARGIN
        while True:
            candidates = self.search(vector, fetch, exclude_document_path=document.path)
            live = [result for result in candidates if self.source.exists(result.file_path)]
            if len(live) >= limit or len(candidates) < fetch:
                return live[:limit]
            fetch *= 2

    def stats(self) -> dict:
        return self.store.stats()

    def index_all(self) -> Optional[IndexStats]:
        return self.indexer.index_all()

    def index_one(self, document: NoteDocument) -> bool:
        return self.indexer.index_one(document)

    def index_path(self, path: str) -> bool:
        document = self.source.get(path)
        if document is None:
            raise FileNotFoundError(f"Note not found in vault: {path}")
        return self.indexer.index_one(document)

    def clear(self) -> None:
        self.store.clear()

    def remove_document(self, path: str) -> int:
        return self.store.remove_document(path)

    def prune(self) -> int:
        """Drop records of notes that no longer exist in the vault."""
        return self.store.prune(doc.path for doc in self.source.iter_documents())

    def start_watching(self, interval: float | None = None) -> VaultWatcher:
        if self._watcher is None:
            self._watcher = VaultWatcher(self.source, interval or self.config.watch_interval)
            self.indexer.watch(self._watcher)
        self._watcher.start()
        return self._watcher
