"""Tests for the connection graph."""

import json

from snippets.connections import ConnectionGraph
from snippets.notifier import CONNECTIONS_UPDATED
from snippets.types import ConnectionEdge


class TestConnectionGraph:
    def test_empty(self, graph):
        """A new graph has no edges."""
        assert graph.list() == []

    def test_add_and_persist(self, graph, agent_dir):
        """Edges are written to disk and reload."""
        assert graph.add_edge(ConnectionEdge("a", "b", "generated", 1.0, "Generated by action: x"))

        data = json.loads((agent_dir / "connections.json").read_text())
        assert data["version"] == 1
        assert data["edges"] == [{
            "source": "a",
            "target": "b",
            "relationship": "generated",
            "strength": 1.0,
            "reason": "Generated by action: x",
        }]

    def test_undirected_dedupe(self, graph):
        """The same pair in either direction is stored once."""
        assert graph.add_edge(ConnectionEdge("a", "b", reason="first"))
        assert not graph.add_edge(ConnectionEdge("b", "a", reason="second"))
        assert not graph.add_edge(ConnectionEdge("a", "b", reason="third"))

        edges = graph.list()
        assert len(edges) == 1
        assert edges[0].reason == "first"

    def test_find_either_direction(self, graph):
        """Lookup ignores edge direction."""
        graph.add_edge(ConnectionEdge("a", "b"))
        assert graph.find("b", "a") is not None
        assert graph.find("a", "c") is None

    def test_remove_note_edges(self, graph):
        """Should drop every edge touching a note."""
        graph.add_edge(ConnectionEdge("a", "b"))
        graph.add_edge(ConnectionEdge("c", "a"))
        graph.add_edge(ConnectionEdge("b", "c"))

        assert graph.remove_note_edges("a") == 2
        assert [(e.source, e.target) for e in graph.list()] == [("b", "c")]
        assert graph.remove_note_edges("a") == 0

    def test_edges_for(self, graph):
        """Only edges touching the note are returned."""
        graph.add_edge(ConnectionEdge("a", "b"))
        graph.add_edge(ConnectionEdge("b", "c"))
        assert len(graph.edges_for("b")) == 2
        assert len(graph.edges_for("a")) == 1

    def test_publishes_on_change(self, graph, events):
        """Changes publish connections-updated."""
        graph.add_edge(ConnectionEdge("a", "b"))
        graph.add_edge(ConnectionEdge("b", "a"))  # duplicate, no write
        assert events == [CONNECTIONS_UPDATED]

    def test_unreadable_file_is_empty(self, tmp_path):
        """A corrupt file reads as an empty graph."""
        path = tmp_path / "connections.json"
        path.write_text("{not json")
        assert ConnectionGraph(path).list() == []

    def test_skips_malformed_edges(self, tmp_path):
        """Malformed entries are skipped on load."""
        path = tmp_path / "connections.json"
        path.write_text(json.dumps({"version": 1, "edges": [{"source": "a"}, {"source": "a", "target": "b"}]}))
        edges = ConnectionGraph(path).list()
        assert [(e.source, e.target) for e in edges] == [("a", "b")]
