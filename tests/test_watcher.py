"""Tests for the polling vault watcher."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from conftest import write_note
from deepnotes.ingestion.vault import VaultSource
from deepnotes.ingestion.watcher import DocumentEvent, VaultWatcher


@pytest.fixture
def watcher(vault: Path) -> VaultWatcher:
    return VaultWatcher(VaultSource(vault), interval=0.05)


class TestPollOnce:
    def test_first_poll_is_baseline(self, watcher: VaultWatcher, vault: Path) -> None:
        write_note(vault, "a.md", "alpha")
        received = []
        watcher.subscribe(received.append)

        assert watcher.poll_once() == []
        assert received == []

    def test_new_and_modified_notes(self, watcher: VaultWatcher, vault: Path) -> None:
        write_note(vault, "a.md", "alpha", mtime_ms=1_000)
        write_note(vault, "b.md", "beta", mtime_ms=1_000)
        received = []
        watcher.subscribe(received.append)
        watcher.poll_once()

        write_note(vault, "a.md", "alpha v2", mtime_ms=2_000)
        write_note(vault, "c.md", "gamma", mtime_ms=2_000)
        events = watcher.poll_once()

        assert events == [DocumentEvent("a.md", "modified"), DocumentEvent("c.md", "modified")]
        assert received == events

    def test_deleted_note(self, watcher: VaultWatcher, vault: Path) -> None:
        path = write_note(vault, "a.md", "alpha")
        watcher.poll_once()

        path.unlink()

        assert watcher.poll_once() == [DocumentEvent("a.md", "deleted")]

    def test_no_changes(self, watcher: VaultWatcher, vault: Path) -> None:
        write_note(vault, "a.md", "alpha")
        watcher.poll_once()

        assert watcher.poll_once() == []

    def test_failing_callback_does_not_block_others(
        self, watcher: VaultWatcher, vault: Path, caplog
    ) -> None:
        received = []

        def broken(event: DocumentEvent) -> None:
            raise RuntimeError("boom")

        watcher.subscribe(broken)
        watcher.subscribe(received.append)
        watcher.poll_once()
        write_note(vault, "a.md", "alpha")

        with caplog.at_level(logging.ERROR):
            watcher.poll_once()

        assert received == [DocumentEvent("a.md", "modified")]
        assert "Change handler failed for a.md" in caplog.text


class TestLifecycle:
    @pytest.mark.parametrize("interval", [0, -1.0])
    def test_invalid_interval(self, vault: Path, interval: float) -> None:
        with pytest.raises(ValueError, match="interval must be positive"):
            VaultWatcher(VaultSource(vault), interval=interval)

    def test_start_and_stop(self, watcher: VaultWatcher, vault: Path) -> None:
        write_note(vault, "a.md", "alpha", mtime_ms=1_000)
        seen = threading.Event()
        watcher.subscribe(lambda event: seen.set())

        watcher.start()
        try:
            assert watcher.running
            write_note(vault, "a.md", "alpha v2", mtime_ms=2_000)
            assert seen.wait(timeout=5)
        finally:
            watcher.stop()

        assert not watcher.running

    def test_stop_without_start(self, watcher: VaultWatcher) -> None:
        watcher.stop()

        assert not watcher.running
