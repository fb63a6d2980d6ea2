"""
Pending work queue using marker files.

One empty file per note id under the pending directory signals that the
note awaits (re-)enrichment. The external agent polls the list and removes
markers as it finishes; the store never interprets the contents.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from .types import is_valid_note_id

logger = logging.getLogger(__name__)


class PendingQueue:
    """Durable set of note ids awaiting processing."""

    def __init__(self, pending_dir: Path):
        """
        Args:
            pending_dir: Directory holding one marker file per pending note
        """
        self._dir = Path(pending_dir)
        self._lock = threading.Lock()
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._dir

    def _marker(self, id: str) -> Path:
        if not is_valid_note_id(id):
            raise ValueError(f"Invalid note id: {id!r}")
        return self._dir / id

    def enqueue(self, id: str) -> None:
        """Add a note id. Re-adding an existing id rewrites the marker."""
        marker = self._marker(id)
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            marker.write_bytes(b"")
        logger.info("Queued note %s for processing", id)

    def dequeue(self, id: str) -> bool:
        """Remove a note id. Returns False if it was not queued."""
        marker = self._marker(id)
        with self._lock:
            try:
                marker.unlink()
            except FileNotFoundError:
                return False
        logger.debug("Removed pending marker for %s", id)
        return True

    def list(self) -> list[str]:
        """Queued note ids, sorted (ids are time-derived, so oldest first)."""
        if not self._dir.exists():
            return []
        return sorted(
            p.name for p in self._dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )

    def count(self) -> int:
        return len(self.list())

    def __contains__(self, id: object) -> bool:
        return is_valid_note_id(id) and (self._dir / id).is_file()

    def clear(self) -> int:
        """Remove all markers. Returns the number removed."""
        removed = 0
        for id in self.list():
            if self.dequeue(id):
                removed += 1
        return removed
