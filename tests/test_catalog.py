import unittest

from contextgraph.config import MasterEntityConfig
from contextgraph.schema.catalog import SchemaCatalog
from contextgraph.schema.types import FieldType, Relationship, RelationshipType
from contextgraph.sources import DocumentSource

from fixtures import shop_collections, shop_documents, shop_sqlite, staff_sqlite


def _rels(schema):
    return {r.name: r for r in schema.relationships}


class TestDocumentCatalog(unittest.TestCase):
    def setUp(self):
        self.catalog = SchemaCatalog(shop_documents())
        self.catalog.introspect()

    def test_primary_keys_and_types(self):
        users = self.catalog.get("users")
        self.assertEqual(users.primary_key, "id")
        self.assertEqual(users.source_kind, "document")
        self.assertEqual(users.get_field("name").type, FieldType.STRING)
        self.assertEqual(users.get_field("created_at").type, FieldType.DATE)

    def test_foreign_key_inferred_from_name_and_shape(self):
        users = self.catalog.get("users")
        rel = _rels(users)["plans"]
        self.assertEqual(rel.type, RelationshipType.MANY_TO_ONE)
        self.assertEqual(rel.local_key, "plan_id")
        self.assertEqual(rel.foreign_key, "id")

        f = users.get_field("plan_id")
        self.assertEqual(f.type, FieldType.REFERENCE)
        self.assertTrue(f.is_foreign_key)
        self.assertEqual(f.referenced_entity, "plans")

    def test_plain_fields_are_not_references(self):
        users = self.catalog.get("users")
        self.assertFalse(users.get_field("name").is_foreign_key)
        orders = self.catalog.get("orders")
        self.assertNotIn("total", {r.local_key for r in orders.relationships})

    def test_inverse_edges(self):
        plans = self.catalog.get("plans")
        rel = _rels(plans)["users"]
        self.assertEqual(rel.type, RelationshipType.ONE_TO_MANY)
        self.assertEqual(rel.local_key, "id")
        self.assertEqual(rel.foreign_key, "plan_id")

        users_rels = _rels(self.catalog.get("users"))
        self.assertEqual(users_rels["orders"].foreign_key, "user_id")

    def test_time_series_detected(self):
        users = self.catalog.get("users")
        self.assertTrue(users.time_series.enabled)
        self.assertEqual(users.time_series.field, "created_at")
        self.assertFalse(self.catalog.get("plans").time_series.enabled)

    def test_introspection_is_repeatable(self):
        first = self.catalog.introspect()
        second = self.catalog.introspect()
        self.assertEqual(first, second)


class TestDocumentInferenceEdges(unittest.TestCase):
    def test_array_of_ids_is_one_to_many(self):
        collections = shop_collections()
        collections["teams"] = [{"id": "t1", "member_ids": ["u1", "u2"]}]
        teams = SchemaCatalog(DocumentSource(collections)).get("teams")
        rel = _rels(teams)["users"]
        self.assertEqual(rel.type, RelationshipType.ONE_TO_MANY)
        self.assertEqual(rel.local_key, "member_ids")
        self.assertEqual(teams.get_field("member_ids").type, FieldType.ARRAY)

    def test_ambiguous_shape_is_dropped(self):
        source = DocumentSource(
            {
                "accounts": [{"id": "a1"}, {"id": "a2"}],
                "archives": [{"id": "a7"}, {"id": "a8"}],
                "notes": [{"id": "n1", "ref_id": "a1"}],
            }
        )
        notes = SchemaCatalog(source).get("notes")
        self.assertEqual(notes.relationships, ())
        self.assertFalse(notes.get_field("ref_id").is_foreign_key)

    def test_shape_ambiguity_narrowed_by_name(self):
        source = DocumentSource(
            {
                "accounts": [{"id": "a1"}, {"id": "a2"}],
                "archives": [{"id": "a7"}, {"id": "a8"}],
                "notes": [{"id": "n1", "account_id": "a1"}],
            }
        )
        notes = SchemaCatalog(source).get("notes")
        self.assertEqual([r.target_entity for r in notes.relationships], ["accounts"])

    def test_empty_types_are_excluded(self):
        collections = shop_collections()
        collections["archive"] = []
        catalog = SchemaCatalog(DocumentSource(collections))
        self.assertIsNone(catalog.get("archive"))
        self.assertEqual(sorted(catalog.as_dict()), ["orders", "plans", "users"])

    def test_duplicate_targets_get_distinct_names(self):
        source = DocumentSource(
            {
                "users": [{"id": "u1"}, {"id": "u2"}],
                "transfers": [{"id": "x1", "sender_id": "u1", "receiver_id": "u2"}],
            }
        )
        transfers = SchemaCatalog(source).get("transfers")
        names = sorted(r.name for r in transfers.relationships)
        self.assertEqual(names, ["users.receiver_id", "users.sender_id"])


class RecordingSource(DocumentSource):
    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        self.samples = {}

    def sample_instances(self, entity_type, limit, filters=None):
        rows = super().sample_instances(entity_type, limit, filters)
        self.samples[entity_type] = (filters, len(rows))
        return rows


class UnfilteredSource(RecordingSource):
    supports_sample_filter = False


class TestMasterEntities(unittest.TestCase):
    def test_relationships_override_replaces_inference(self):
        master = MasterEntityConfig(
            name="users",
            relationships=(Relationship(RelationshipType.ONE_TO_MANY, "orders", "id", "user_id", name="purchases"),),
        )
        users = SchemaCatalog(shop_documents(), master_entities=[master]).get("users")
        self.assertEqual([r.name for r in users.relationships], ["purchases"])

    def test_empty_override_removes_relationships(self):
        master = MasterEntityConfig(name="users", relationships=())
        users = SchemaCatalog(shop_documents(), master_entities=[master]).get("users")
        self.assertEqual(users.relationships, ())

    def test_primary_key_and_sample_filter(self):
        master = MasterEntityConfig(name="plans", primary_key="tier", sample_filter={"tier": "pro"})
        source = RecordingSource(shop_collections())
        catalog = SchemaCatalog(source, master_entities=[master])
        self.assertEqual(catalog.get("plans").primary_key, "tier")
        self.assertEqual(source.samples["plans"], ({"tier": "pro"}, 1))
        self.assertEqual(source.samples["users"], (None, 2))

    def test_sample_filter_needs_source_support(self):
        master = MasterEntityConfig(name="plans", sample_filter={"tier": "pro"})
        source = UnfilteredSource(shop_collections())
        SchemaCatalog(source, master_entities=[master]).introspect()
        self.assertEqual(source.samples["plans"], (None, 2))


class TestRelationalCatalog(unittest.TestCase):
    def setUp(self):
        self.source = shop_sqlite()
        self.catalog = SchemaCatalog(self.source)

    def tearDown(self):
        self.source.conn.close()

    def test_declared_keys(self):
        users = self.catalog.get("users")
        self.assertEqual(users.source_kind, "relational")
        self.assertEqual(users.primary_key, "id")
        self.assertEqual(users.get_field("id").type, FieldType.NUMBER)
        self.assertFalse(users.get_field("name").nullable)
        self.assertTrue(users.get_field("plan_id").is_foreign_key)

        rel = _rels(users)["plans"]
        self.assertEqual((rel.type, rel.local_key, rel.foreign_key), (RelationshipType.MANY_TO_ONE, "plan_id", "id"))

    def test_reference_without_column_targets_primary_key(self):
        orders = self.catalog.get("orders")
        rel = _rels(orders)["users"]
        self.assertEqual(rel.foreign_key, "id")

    def test_inverse_and_empty_tables(self):
        users = self.catalog.get("users")
        self.assertEqual(_rels(users)["orders"].type, RelationshipType.ONE_TO_MANY)
        self.assertIsNone(self.catalog.get("audit"))

    def test_time_series_from_declared_type(self):
        users = self.catalog.get("users")
        self.assertEqual(users.time_series.field, "created_at")

    def test_self_reference_names_both_directions(self):
        source = staff_sqlite()
        try:
            employees = SchemaCatalog(source).get("employees")
        finally:
            source.conn.close()
        names = [(r.name, r.type) for r in employees.relationships]
        self.assertEqual(
            names,
            [
                ("employees.manager_id", RelationshipType.MANY_TO_ONE),
                ("employees.manager_id[]", RelationshipType.ONE_TO_MANY),
            ],
        )


if __name__ == "__main__":
    unittest.main()
