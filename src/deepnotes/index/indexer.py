"""Freshness-aware vault indexing pipeline."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from deepnotes.embedding.base import EmbedFn
from deepnotes.index.storage import SQLiteVectorStore
from deepnotes.ingestion.vault import VaultSource
from deepnotes.ingestion.watcher import DocumentChangeNotifier, DocumentEvent
from deepnotes.models import NoteDocument
from deepnotes.utils.text import chunk_note

LOGGER = logging.getLogger(__name__)

PROGRESS_EVERY = 10

Notify = Callable[[str], None]


class IndexerState(enum.Enum):
    IDLE = "idle"
    INDEXING = "indexing"


@dataclass(slots=True)
class IndexStats:
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    processed_files: list[str] = field(default_factory=list)

    def increment(self, status: str, path: str) -> None:
        if status == "indexed":
            self.indexed += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)

    @property
    def total(self) -> int:
        return self.indexed + self.skipped + self.failed


class Indexer:
    """Coordinates chunking, embedding and persistence of vault notes.

    Full passes are mutually exclusive: a second ``index_all`` while one is
    running is rejected with a notice instead of being queued.
    """

    def __init__(
        self,
        embed: EmbedFn,
        store: SQLiteVectorStore,
        source: VaultSource | None = None,
        *,
        progress_every: int = PROGRESS_EVERY,
        notify: Notify | None = None,
        split_long_paragraphs: bool = False,
    ) -> None:
        if progress_every <= 0:
            raise ValueError(f"progress_every must be positive, got {progress_every}")
        self.embed = embed
        self.store = store
        self.source = source
        self.progress_every = progress_every
        self.notify: Notify = notify or LOGGER.info
        self.split_long_paragraphs = split_long_paragraphs
        self._state = IndexerState.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self) -> IndexerState:
        return self._state

    @property
    def is_indexing(self) -> bool:
        return self._state is IndexerState.INDEXING

    def _begin(self) -> bool:
        with self._state_lock:
            if self._state is IndexerState.INDEXING:
                return False
            self._state = IndexerState.INDEXING
            return True

    def _finish(self) -> None:
        with self._state_lock:
            self._state = IndexerState.IDLE

    def index_all(self, documents: Iterable[NoteDocument] | None = None) -> Optional[IndexStats]:
        """Index every stale note. Returns None when a pass is already running."""
        if not self._begin():
            self.notify("Vault indexing is already in progress.")
            return None

        try:
            if documents is None:
                if self.source is None:
                    raise ValueError("No documents given and no vault source configured")
                documents = self.source.iter_documents()
            docs = list(documents)
            stats = IndexStats()
            self.notify(f"Indexing vault: {len(docs)} notes found...")

            for document in docs:
                if self.store.is_fresh(document.path, document.mtime):
                    stats.increment("skipped", document.path)
                    continue

                try:
                    self._index_document(document)
                    stats.increment("indexed", document.path)
                except Exception as exc:
                    LOGGER.error("Skipping %s due to error: %s", document.path, exc)
                    stats.increment("failed", document.path)

                done = stats.indexed + stats.failed
                if done % self.progress_every == 0:
                    self.notify(f"Indexing... {done}/{len(docs) - stats.skipped} notes")

            if stats.failed:
                self.notify(
                    f"Index complete with errors! {stats.indexed} success, "
                    f"{stats.failed} failed. Check the log for details."
                )
            else:
                self.notify(
                    f"Vault indexed! {stats.indexed} notes indexed, {stats.skipped} unchanged."
                )
            return stats
        finally:
            self._finish()

    def index_one(self, document: NoteDocument) -> bool:
        """Index a single note unless it is fresh. Errors propagate to the caller.

        Returns True when the note was (re)indexed.
        """
        if self.store.is_fresh(document.path, document.mtime):
            LOGGER.debug("%s is up to date", document.path)
            return False
        try:
            self._index_document(document)
        except Exception:
            LOGGER.exception("Failed to index %s", document.path)
            raise
        return True

    def _index_document(self, document: NoteDocument) -> int:
        content = document.content
        if content is None:
            if self.source is None:
                raise ValueError(f"No content for {document.path} and no vault source configured")
            content = self.source.read(document.path)

        chunks = chunk_note(
            content,
            document.path,
            split_long_paragraphs=self.split_long_paragraphs,
        )
        LOGGER.info("Indexing %s (%d chunks)", document.path, len(chunks))
        return self.store.upsert_document(document.path, chunks, document.mtime, self.embed)

    def handle_change(self, event: DocumentEvent) -> None:
        """React to a note change: re-index on modify, drop records on delete."""
        if event.kind == "deleted":
            removed = self.store.remove_document(event.path)
            LOGGER.info("Removed %d records of deleted note %s", removed, event.path)
            return

        if self.source is None:
            raise ValueError("Change events require a vault source")
        document = self.source.get(event.path)
        if document is None:
            LOGGER.debug("Ignoring change to %s", event.path)
            return
        self.index_one(document)

    def watch(self, notifier: DocumentChangeNotifier) -> None:
        notifier.subscribe(self.handle_change)
