"""
Unit tests for the persistence schema generator.
"""

import pytest

from simfinity.core.defs import EntityDef, FieldDef, RelationDef
from simfinity.core.errors import ConfigurationError
from simfinity.core.persistence import PersistenceSchemaBuilder
from simfinity.core.registry import TypeRegistry


class TestPersistenceSchemaBuilder:
    """Tests for validators and unique indexes."""

    def test_customer_properties(self, registry):
        schema = PersistenceSchemaBuilder(registry).build(registry.get("Customer"))
        properties = schema.validator["$jsonSchema"]["properties"]

        assert schema.collection == "customers"
        assert schema.validator["$jsonSchema"]["title"] == "Customer"
        assert properties["_id"] == {"bsonType": "objectId"}
        assert properties["name"] == {"bsonType": "string"}
        assert properties["email"] == {"bsonType": ["string", "null"]}
        assert "orders" not in properties
        assert properties["address"]["properties"]["city"] == {"bsonType": ["string", "null"]}

    def test_order_properties(self, registry):
        schema = PersistenceSchemaBuilder(registry).build(registry.get("Order"))
        properties = schema.validator["$jsonSchema"]["properties"]

        assert "customer" not in properties
        assert properties["customer_id"] == {"bsonType": ["objectId", "null"]}
        assert properties["state"] == {"enum": ["DRAFT", "PLACED", "SHIPPED", "CANCELLED", None]}
        assert properties["tags"] == {"bsonType": "array", "items": {"bsonType": "string"}}
        assert properties["placed_at"] == {"bsonType": ["date", "null"]}
        items = properties["items"]
        assert items["bsonType"] == "array"
        assert items["items"]["properties"]["product"] == {"bsonType": "string"}
        assert items["items"]["properties"]["quantity"] == {"bsonType": ["int", "long", "null"]}

    def test_unique_indexes(self, registry):
        schema = PersistenceSchemaBuilder(registry).build(registry.get("Customer"))

        assert schema.unique_indexes == ["name"]

    def test_unique_inside_embedded_uses_dotted_path(self):
        registry = TypeRegistry()
        registry.add_no_endpoint_type(EntityDef("Badge", [FieldDef("code", "String", unique=True)]))
        registry.connect(EntityDef("Member", [
            FieldDef("badge", "Badge", relation=RelationDef(embedded=True)),
        ]))

        schema = PersistenceSchemaBuilder(registry).build(registry.get("Member"))

        assert schema.unique_indexes == ["badge.code"]

    def test_build_all_skips_embedded_only_types(self, registry):
        collections = {s.collection for s in PersistenceSchemaBuilder(registry).build_all()}

        assert collections == {"customers", "orders"}

    def test_embedded_self_reference_rejected(self):
        registry = TypeRegistry()
        registry.connect(EntityDef("Node", [
            FieldDef("child", "Node", relation=RelationDef(embedded=True)),
        ]))

        with pytest.raises(ConfigurationError, match="same type and embedded"):
            PersistenceSchemaBuilder(registry).build(registry.get("Node"))

    def test_indirect_embedded_cycle_rejected(self):
        registry = TypeRegistry()
        registry.connect(EntityDef("A", [FieldDef("b", "B", relation=RelationDef(embedded=True))]))
        registry.add_no_endpoint_type(EntityDef("B", [FieldDef("a", "A", relation=RelationDef(embedded=True))]))

        with pytest.raises(ConfigurationError):
            PersistenceSchemaBuilder(registry).build(registry.get("A"))
