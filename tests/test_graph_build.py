import unittest
from datetime import datetime, timezone

from contextgraph.errors import BackendUnavailable, ConfigurationError, NotFound, RelationshipFetchFailed
from contextgraph.graph.build import BranchResult, GraphBuilder, collect_branches
from contextgraph.graph.node import EntityNode, parse_timestamp
from contextgraph.schema.catalog import SchemaCatalog
from contextgraph.schema.types import EntitySchema
from contextgraph.sources import DocumentSource

from fixtures import shop_collections, shop_documents, shop_sqlite, staff_sqlite


class FlakyOrders(DocumentSource):
    """Document source whose `orders` lookups fail."""

    def fetch_by_field(self, entity_type, field, value, limit):
        if entity_type == "orders":
            raise BackendUnavailable("orders backend is down")
        return super().fetch_by_field(entity_type, field, value, limit)


def _paths(node, prefix=()):
    path = prefix + (node.key,)
    yield path
    for children in node.relationships.values():
        for child in children:
            yield from _paths(child, path)


class TestGraphBuilder(unittest.TestCase):
    def setUp(self):
        self.source = shop_documents()
        self.schemas = SchemaCatalog(self.source).as_dict()

    def builder(self, **kw):
        return GraphBuilder(self.source, self.schemas, **kw)

    def test_root_with_related_entities(self):
        root = self.builder(max_depth=3).build("users", "u1")
        self.assertEqual(root.depth, 0)
        self.assertEqual(root.data["name"], "Ada")
        self.assertEqual([n.entity_id for n in root.relationships["plans"]], ["p1"])
        self.assertEqual(sorted(n.entity_id for n in root.relationships["orders"]), ["o1", "o2"])
        for children in root.relationships.values():
            for child in children:
                self.assertEqual(child.depth, 1)

    def test_timestamp_from_time_series_field(self):
        root = self.builder().build("users", "u1")
        self.assertEqual(root.provenance.timestamp, datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(root.provenance.source, "document")

    def test_max_depth_zero_has_no_relationships(self):
        root = self.builder(max_depth=0).build("users", "u1")
        self.assertEqual(root.relationships, {})
        self.assertEqual(root.data["id"], "u1")

    def test_depth_bound_stops_expansion(self):
        root = self.builder(max_depth=1).build("users", "u1")
        plans = root.relationships["plans"]
        self.assertEqual([n.key for n in plans], ["plans:p1"])
        self.assertEqual(plans[0].relationships, {})
        self.assertEqual(plans[0].provenance.truncated, "depth")

    def test_no_key_repeats_on_any_path(self):
        root = self.builder(max_depth=5).build("users", "u1")
        for path in _paths(root):
            self.assertEqual(len(path), len(set(path)), path)

    def test_back_references_are_not_expanded_again(self):
        root = self.builder(max_depth=5).build("users", "u1")
        plan = root.relationships["plans"][0]
        # The only user on p1 is the root itself.
        self.assertNotIn("users", plan.relationships)

    def test_same_entity_in_sibling_branches(self):
        collections = shop_collections()
        collections["plans"].append({"id": "p3", "tier": "team"})
        collections["users"].append({"id": "u3", "name": "Cy", "plan_id": "p1"})
        source = DocumentSource(collections)
        builder = GraphBuilder(source, SchemaCatalog(source).as_dict(), max_depth=3)
        root = builder.build("plans", "p1")
        users = root.relationships["users"]
        self.assertEqual(sorted(u.entity_id for u in users), ["u1", "u3"])
        # Each user is expanded independently: the root plan never reappears below it.
        for u in users:
            self.assertNotIn("plans", u.relationships)

    def test_fanout_limit(self):
        root = self.builder(fanout_limit=1).build("users", "u1")
        self.assertEqual(len(root.relationships["orders"]), 1)

    def test_failed_branch_is_dropped(self):
        source = FlakyOrders(shop_collections())
        root = GraphBuilder(source, self.schemas).build("users", "u1")
        self.assertNotIn("orders", root.relationships)
        self.assertEqual([n.entity_id for n in root.relationships["plans"]], ["p1"])

    def test_missing_root(self):
        with self.assertRaises(NotFound):
            self.builder().build("users", "nobody")
        with self.assertRaises(NotFound):
            self.builder().build("ghosts", "g1")

    def test_dangling_reference_skips_child(self):
        collections = shop_collections()
        collections["users"][0]["plan_id"] = "p9"
        source = DocumentSource(collections)
        root = GraphBuilder(source, SchemaCatalog(source).as_dict()).build("users", "u1")
        self.assertNotIn("plans", root.relationships)
        self.assertIn("orders", root.relationships)

    def test_fallback_id_field(self):
        source = DocumentSource({"customers": [{"customer_id": "c-1", "name": "Dee"}]})
        schemas = [EntitySchema(name="customers", fields=(), primary_key=None)]
        root = GraphBuilder(source, schemas).build("customers", "c-1")
        self.assertEqual(root.data["name"], "Dee")

        custom = GraphBuilder(source, schemas, fallback_id_fields=("id",))
        with self.assertRaises(NotFound):
            custom.build("customers", "c-1")

    def test_alternate_id_root_is_not_repeated(self):
        source = DocumentSource(
            {
                "users": [{"id": "u1", "legacy": "L-77"}],
                "orders": [{"id": "o1", "user_id": "u1"}],
            }
        )
        builder = GraphBuilder(source, SchemaCatalog(source).as_dict(), fallback_id_fields=("legacy",))
        root = builder.build("users", "L-77")
        self.assertEqual(root.data["id"], "u1")
        order = root.relationships["orders"][0]
        self.assertEqual(order.entity_id, "o1")
        # The order points back at u1, which is the root under its primary key.
        self.assertNotIn("users", order.relationships)
        for path in _paths(root):
            self.assertNotIn("users:u1", path)

    def test_invalid_bounds(self):
        with self.assertRaises(ConfigurationError):
            self.builder(max_depth=-1)
        with self.assertRaises(ConfigurationError):
            self.builder(fanout_limit=0)


class TestRelationalGraph(unittest.TestCase):
    def test_sqlite_graph(self):
        source = shop_sqlite()
        try:
            builder = GraphBuilder(source, SchemaCatalog(source).as_dict(), max_depth=2)
            root = builder.build("users", 1)
            self.assertEqual(root.provenance.source, "relational")
            self.assertEqual(root.relationships["plans"][0].data["tier"], "pro")
            self.assertEqual(sorted(n.entity_id for n in root.relationships["orders"]), ["10", "11"])
        finally:
            source.conn.close()

    def test_self_reference_keeps_both_directions(self):
        source = staff_sqlite()
        try:
            builder = GraphBuilder(source, SchemaCatalog(source).as_dict(), max_depth=3)
            root = builder.build("employees", 2)
        finally:
            source.conn.close()
        self.assertEqual([n.entity_id for n in root.relationships["employees.manager_id"]], ["1"])
        self.assertEqual([n.entity_id for n in root.relationships["employees.manager_id[]"]], ["3"])
        for path in _paths(root):
            self.assertEqual(len(path), len(set(path)), path)


class TestBranches(unittest.TestCase):
    def test_collect_branches(self):
        child = EntityNode("plans", "p1", {"tier": "pro"}, depth=1)
        results = [
            BranchResult("plans", (child,)),
            BranchResult("orders", error=None),
            BranchResult("teams", error=RelationshipFetchFailed("users", "teams", BackendUnavailable("down"))),
        ]
        self.assertEqual(collect_branches(results), {"plans": [child]})

    def test_parse_timestamp(self):
        self.assertEqual(parse_timestamp(0), datetime(1970, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(parse_timestamp(1_700_000_000_000), datetime.fromtimestamp(1_700_000_000, tz=timezone.utc))
        self.assertIsNone(parse_timestamp("not a date"))
        self.assertIsNone(parse_timestamp(True))


if __name__ == "__main__":
    unittest.main()
