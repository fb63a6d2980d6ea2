"""
Connection graph between notes.

An undirected edge set persisted as JSON. An edge A-B and an edge B-A are the
same edge; the first one added wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from .errors import StoreWriteFailed
from .notifier import CONNECTIONS_UPDATED, NullNotifier
from .types import ConnectionEdge

logger = logging.getLogger(__name__)

GRAPH_VERSION = 1


class ConnectionGraph:
    """JSON-file-backed undirected, deduplicated edge set."""

    def __init__(self, graph_path: Path, *, notifier=None):
        self._path = Path(graph_path)
        self._notifier = notifier or NullNotifier()
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[ConnectionEdge]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            logger.warning("Unreadable connection graph %s: %s", self._path, e)
            return []

        edges = []
        for raw in data.get("edges", []) if isinstance(data, dict) else []:
            try:
                edges.append(ConnectionEdge.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed edge: %r", raw)
        return edges

    def _save(self, edges: list[ConnectionEdge]) -> None:
        payload = {"version": GRAPH_VERSION, "edges": [e.to_dict() for e in edges]}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".connections-")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self._path)
        except OSError as e:
            raise StoreWriteFailed(f"Failed to write connection graph: {e}") from e
        self._notifier.publish(CONNECTIONS_UPDATED)

    def list(self) -> list[ConnectionEdge]:
        with self._lock:
            return self._load()

    def edges_for(self, id: str) -> list[ConnectionEdge]:
        return [e for e in self.list() if e.mentions(id)]

    def find(self, a: str, b: str) -> Optional[ConnectionEdge]:
        pair = frozenset((a, b))
        for edge in self.list():
            if edge.pair == pair:
                return edge
        return None

    def add_edge(self, edge: ConnectionEdge) -> bool:
        """
        Add an edge unless one already connects the same unordered pair.

        Returns True if the edge was stored.
        """
        with self._lock:
            edges = self._load()
            if any(e.pair == edge.pair for e in edges):
                return False
            edges.append(edge)
            self._save(edges)
        logger.info("Connected %s -> %s (%s)", edge.source, edge.target, edge.relationship)
        return True

    def remove_note_edges(self, id: str) -> int:
        """Drop every edge mentioning id. Returns the number removed."""
        with self._lock:
            edges = self._load()
            kept = [e for e in edges if not e.mentions(id)]
            removed = len(edges) - len(kept)
            if removed:
                self._save(kept)
        if removed:
            logger.info("Removed %d edge(s) for %s", removed, id)
        return removed
