"""Polling change notifier for vault notes.

Runs a daemon thread that periodically compares note mtimes against the
previous snapshot and delivers a ``DocumentEvent`` to each subscriber for
every note that was modified, added or deleted.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Literal, Protocol

from deepnotes.ingestion.vault import VaultSource

LOGGER = logging.getLogger(__name__)

EventKind = Literal["modified", "deleted"]


@dataclass(frozen=True, slots=True)
class DocumentEvent:
    path: str
    kind: EventKind


DocumentCallback = Callable[[DocumentEvent], None]


class DocumentChangeNotifier(Protocol):
    """Anything that can deliver document change events to subscribers."""

    def subscribe(self, callback: DocumentCallback) -> None: ...


class VaultWatcher:
    """Detects note changes by polling the vault.

    The first poll only records a baseline; notes already present when the
    watcher starts are handled by a full indexing pass, not by events.
    """

    def __init__(self, source: VaultSource, interval: float = 5.0) -> None:
        if interval <= 0:
            raise ValueError(f"Watch interval must be positive, got {interval}")

        self._source = source
        self._interval = interval
        self._callbacks: List[DocumentCallback] = []
        self._snapshot: Dict[str, int] | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def subscribe(self, callback: DocumentCallback) -> None:
        self._callbacks.append(callback)

    def _scan(self) -> Dict[str, int]:
        return {doc.path: doc.mtime for doc in self._source.iter_documents()}

    def poll_once(self) -> List[DocumentEvent]:
        """Scan the vault once and dispatch events for changes since the last scan."""
        current = self._scan()
        previous = self._snapshot
        self._snapshot = current
        if previous is None:
            return []

        events = [
            DocumentEvent(path, "modified")
            for path, mtime in current.items()
            if previous.get(path) != mtime
        ]
        events.extend(DocumentEvent(path, "deleted") for path in previous if path not in current)

        for event in events:
            self._dispatch(event)
        return events

    def _dispatch(self, event: DocumentEvent) -> None:
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Change handler failed for %s (%s)", event.path, event.kind)

    def start(self) -> None:
        """Start the background polling thread."""
        if self._thread is not None and self._thread.is_alive():
            LOGGER.warning("Watcher already running")
            return

        self.poll_once()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            name="deepnotes-watch",
            daemon=True,
        )
        self._thread.start()
        LOGGER.info("Watching %s (interval: %.1fs)", self._source.root, self._interval)

    def stop(self) -> None:
        """Stop the polling thread, waiting at most one interval."""
        if self._thread is None or not self._thread.is_alive():
            return

        self._stop_event.set()
        self._thread.join(timeout=self._interval + 1)
        if self._thread.is_alive():
            LOGGER.warning("Watch thread did not stop cleanly")
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _watch_loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            try:
                self.poll_once()
            except Exception:
                LOGGER.exception("Error while polling the vault")
