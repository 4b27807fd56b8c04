import unittest
from datetime import datetime

from contextgraph.context.chunker import (
    build_chunks,
    chunk_text,
    namespace_for,
    serialize_graph,
    split_windows,
)
from contextgraph.errors import ConfigurationError
from contextgraph.graph.node import EntityNode, Provenance, stub_node


def _sample_graph(plan_note=None):
    plan_data = {"tier": "pro"}
    if plan_note:
        plan_data["note"] = plan_note
    plan = EntityNode("plans", "p1", plan_data, depth=1)
    return EntityNode(
        "users",
        "u1",
        {"name": "Ada", "active": True, "tags": ["a", "b"], "address": {"city": "Oslo"}, "note": None},
        relationships={"plans": [plan], "orders": [stub_node("orders", "o1", 1, reason="depth", source="document")]},
        provenance=Provenance(timestamp=datetime(2024, 1, 5, 10, 0)),
    )


class TestSplitWindows(unittest.TestCase):
    def test_short_text_is_one_chunk(self):
        self.assertEqual(split_windows("hello world", 100, 20), [(0, 11)])
        self.assertEqual(split_windows("", 100, 20), [])

    def test_windows_break_on_whitespace_and_overlap(self):
        text = " ".join(["abcd"] * 49 + ["abcde"])
        self.assertEqual(len(text), 250)

        windows = split_windows(text, 100, 20)
        self.assertEqual(windows, [(0, 99), (79, 179), (159, 250)])
        for (_, end), (start, _) in zip(windows, windows[1:]):
            self.assertTrue(text[end].isspace())
            self.assertEqual(end - start, 20)

        chunks = chunk_text(text, 100, 20)
        self.assertEqual(len(chunks), 3)
        for prev, nxt in zip(chunks, chunks[1:]):
            self.assertEqual(prev[-20:], nxt[:20])

    def test_chunks_reassemble_text(self):
        words = ["alpha", "beta", "gamma", "delta", "epsilon", "zeta"]
        text = " ".join(words[i % len(words)] for i in range(300))
        chunks = chunk_text(text, 120, 30)
        rebuilt = chunks[0] + "".join(c[30:] for c in chunks[1:])
        self.assertEqual(rebuilt, text)
        self.assertTrue(all(len(c) <= 120 for c in chunks))

    def test_long_word_is_cut_hard(self):
        self.assertEqual(split_windows("x" * 250, 100, 20), [(0, 100), (80, 180), (160, 250)])

    def test_invalid_options(self):
        with self.assertRaises(ConfigurationError):
            split_windows("abc", 10, 10)
        with self.assertRaises(ConfigurationError):
            split_windows("abc", 0, 0)
        with self.assertRaises(ConfigurationError):
            split_windows("abc", 10, -1)


class TestSerializeGraph(unittest.TestCase):
    def test_layout(self):
        text = serialize_graph(_sample_graph()).text
        lines = text.splitlines()
        self.assertEqual(lines[0], "Entity: users (ID: u1)")
        self.assertEqual(lines[1], "Timestamp: 2024-01-05T10:00:00")
        self.assertIn("  name: Ada", lines)
        self.assertIn("  active: true", lines)
        self.assertIn("  tags: [2 items] a, b", lines)
        self.assertIn("  address:", lines)
        self.assertIn("    city: Oslo", lines)
        self.assertIn("  note: null", lines)
        self.assertIn("  plans:", lines)
        self.assertIn("    Entity: plans (ID: p1)", lines)
        self.assertIn("      tier: pro", lines)
        self.assertIn("    Entity: orders (ID: o1) [not expanded: depth]", lines)

    def test_spans_cover_text(self):
        serialized = serialize_graph(_sample_graph())
        self.assertEqual(serialized.spans[0].start, 0)
        self.assertEqual(serialized.spans[-1].end, len(serialized.text))
        for a, b in zip(serialized.spans, serialized.spans[1:]):
            self.assertEqual(a.end, b.start)


class TestBuildChunks(unittest.TestCase):
    def test_single_chunk_metadata(self):
        chunks = build_chunks(_sample_graph())
        self.assertEqual(len(chunks), 1)
        c = chunks[0]
        self.assertEqual(c.namespace, "users:u1")
        self.assertEqual(c.chunk_id, "users:u1:chunk:0")
        self.assertEqual((c.entity_type, c.entity_id), ("users", "u1"))
        self.assertEqual(c.related_entity_types, ("plans", "orders"))
        self.assertEqual((c.chunk_index, c.total_chunks), (0, 1))
        self.assertEqual(c.timestamp, datetime(2024, 1, 5, 10, 0))
        self.assertEqual(c.source_node, "users:u1")

    def test_indices_and_totals(self):
        root = _sample_graph(plan_note="included seats " * 12)
        chunks = build_chunks(root, chunk_size=60, overlap=10)
        self.assertGreater(len(chunks), 1)
        self.assertEqual([c.chunk_index for c in chunks], list(range(len(chunks))))
        self.assertEqual({c.total_chunks for c in chunks}, {len(chunks)})
        self.assertEqual({c.namespace for c in chunks}, {namespace_for("users", "u1")})
        self.assertIn("plans:p1", {c.source_node for c in chunks})

    def test_invalid_options(self):
        with self.assertRaises(ConfigurationError):
            build_chunks(_sample_graph(), chunk_size=50, overlap=50)


if __name__ == "__main__":
    unittest.main()
