"""
Unit tests for the input-type synthesizer.

Tests cover:
- Add/update shape rules per field kind
- Machine-owned and read-only fields
- Fixed-point resolution over embedded dependencies
- Embedded cycles and self references
- Argument checking against shapes
"""

import pytest

from simfinity.core.defs import EntityDef, FieldDef, RelationDef
from simfinity.core.errors import ConfigurationError, ValidationError
from simfinity.core.input_types import ID_INPUT, InputField, InputKind, check_input
from simfinity.core.registry import TypeRegistry


def embedded(target, many=False):
    return FieldDef(target.lower(), target, many=many, relation=RelationDef(embedded=True))


class TestShapeRules:
    """Tests for per-field shape rules."""

    def test_identifier_only_in_update_shape(self, registry):
        customer = registry.get("Customer")

        assert "id" not in customer.add_shape
        assert customer.update_shape["id"].nullable is False

    def test_every_id_scalar_required_in_update(self):
        registry = TypeRegistry()
        registry.connect(EntityDef("Shipment", [
            FieldDef("id", "ID"),
            FieldDef("carrier_ref", "ID"),
            FieldDef("label", "String"),
        ]))
        shipment = registry.finalize().get("Shipment")

        assert shipment.add_shape["carrier_ref"].nullable is True
        assert shipment.update_shape["carrier_ref"].nullable is False
        assert shipment.update_shape["label"].nullable is True

    def test_non_null_scalar_nullable_in_update(self, registry):
        customer = registry.get("Customer")

        assert customer.add_shape["name"].nullable is False
        assert customer.update_shape["name"].nullable is True

    def test_referenced_object_becomes_id_input(self, registry):
        order = registry.get("Order")

        assert order.add_shape["customer"].kind == InputKind.ID
        assert order.add_shape["customer"].type is ID_INPUT
        assert order.update_shape["customer"].nullable is True

    def test_embedded_list_uses_target_shapes(self, registry):
        order = registry.get("Order")
        line_item = registry.get("LineItem")

        assert order.add_shape["items"].kind == InputKind.OBJECT_LIST
        assert order.add_shape["items"].type is line_item.add_shape
        assert order.update_shape["items"].type is line_item.update_shape

    def test_embedded_object_uses_target_shapes(self, registry):
        order = registry.get("Order")
        address = registry.get("Address")

        assert order.add_shape["shipping"].kind == InputKind.OBJECT
        assert order.add_shape["shipping"].type is address.add_shape

    def test_referenced_list_becomes_delta(self, registry):
        customer = registry.get("Customer")
        order = registry.get("Order")

        add_delta = customer.add_shape["orders"]
        assert add_delta.kind == InputKind.DELTA
        assert add_delta.type.name == "OneToManyACustomerOrders"
        assert add_delta.type["added"].type is order.add_shape
        assert add_delta.type["updated"].type is order.update_shape
        assert add_delta.type["deleted"].kind == InputKind.SCALAR_LIST
        assert customer.update_shape["orders"].type.name == "OneToManyUCustomerOrders"

    def test_delta_names_qualified_by_entity(self):
        registry = TypeRegistry()
        registry.connect(EntityDef("Note", [FieldDef("id", "ID"), FieldDef("text", "String")]))
        for owner in ["Project", "Ticket"]:
            registry.connect(EntityDef(owner, [
                FieldDef("id", "ID"),
                FieldDef("notes", "Note", many=True, relation=RelationDef(connection_field=f"{owner.lower()}_id")),
            ]))
        registry.finalize()

        assert registry.get("Project").add_shape["notes"].type.name == "OneToManyAProjectNotes"
        assert registry.get("Ticket").add_shape["notes"].type.name == "OneToManyATicketNotes"

    def test_scalar_list_passes_through(self, registry):
        assert registry.get("Order").add_shape["tags"].kind == InputKind.SCALAR_LIST

    def test_state_is_machine_owned(self, registry):
        order = registry.get("Order")

        assert "state" not in order.add_shape
        assert "state" not in order.update_shape
        assert order.machine_owned_fields == {"state"}

    def test_read_only_excluded(self, registry):
        order = registry.get("Order")

        assert "created_by" not in order.add_shape
        assert "created_by" not in order.update_shape

    def test_shape_names(self, registry):
        order = registry.get("Order")

        assert order.add_shape.name == "OrderInput"
        assert order.update_shape.name == "OrderInputForUpdate"

    def test_shapes_are_sealed(self, registry):
        shape = registry.get("Customer").add_shape

        assert shape.sealed
        with pytest.raises(ConfigurationError, match="sealed"):
            shape.add_field(InputField("extra", InputKind.SCALAR, "String"))

    def test_to_sdl(self, registry):
        sdl = registry.get("Customer").add_shape.to_sdl()

        assert sdl.startswith("input CustomerInput {")
        assert "  name: String!" in sdl
        assert "  orders: OneToManyACustomerOrders" in sdl
        assert sdl.endswith("}")

    def test_every_plain_field_kept(self, registry):
        """No non-relation field is dropped except id, read-only and state."""
        order = registry.get("Order")
        expected = {"number", "notes", "placed_at", "tags"}

        assert expected <= set(order.add_shape.fields)


class TestFixedPoint:
    """Tests for resolution order and failure modes."""

    def test_resolves_deep_embedding_in_any_order(self):
        """A embeds B embeds C embeds D, registered outermost first."""
        registry = TypeRegistry()
        registry.connect(EntityDef("A", [FieldDef("name", "String"), embedded("B")]))
        registry.add_no_endpoint_type(EntityDef("B", [FieldDef("name", "String"), embedded("C", many=True)]))
        registry.add_no_endpoint_type(EntityDef("C", [FieldDef("name", "String"), embedded("D")]))
        registry.add_no_endpoint_type(EntityDef("D", [FieldDef("name", "String")]))

        registry.finalize()

        a, b = registry.get("A"), registry.get("B")
        assert a.add_shape["b"].type is b.add_shape
        assert b.add_shape["c"].type is registry.get("C").add_shape
        assert "name" in registry.get("D").add_shape

    def test_embedded_cycle_fails(self):
        registry = TypeRegistry()
        registry.connect(EntityDef("A", [embedded("B")]))
        registry.add_no_endpoint_type(EntityDef("B", [embedded("A")]))

        with pytest.raises(ConfigurationError, match="cycle") as exc_info:
            registry.finalize()
        assert "A (waits for B)" in str(exc_info.value)
        assert "B (waits for A)" in str(exc_info.value)

    def test_embedded_self_reference_fails(self):
        registry = TypeRegistry()
        registry.connect(EntityDef("Node", [FieldDef("child", "Node", relation=RelationDef(embedded=True))]))

        with pytest.raises(ConfigurationError, match="own type"):
            registry.finalize()

    def test_referenced_cycle_does_not_block(self, registry):
        """Customer <-> Order reference each other and still resolve."""
        assert registry.get("Customer").add_shape is not None
        assert registry.get("Order").add_shape is not None

    def test_self_referencing_list_deferred(self):
        registry = TypeRegistry()
        registry.connect(EntityDef("Category", [
            FieldDef("id", "ID"),
            FieldDef("name", "String"),
            FieldDef("children", "Category", many=True, relation=RelationDef(connection_field="parent_id")),
        ]))

        registry.finalize()

        category = registry.get("Category")
        delta = category.add_shape["children"].type
        assert delta["added"].type is category.add_shape
        assert delta["updated"].type is category.update_shape

    def test_unknown_relation_target(self):
        registry = TypeRegistry()
        registry.connect(EntityDef("Order", [
            FieldDef("customer", "Customer", relation=RelationDef(connection_field="customer_id")),
        ]))

        with pytest.raises(ConfigurationError, match="unknown entity 'Customer'"):
            registry.finalize()


class TestCheckInput:
    """Tests for argument checking against shapes."""

    def test_valid_arguments(self, registry):
        check_input(registry.get("Order").add_shape, {
            "number": "A1",
            "customer": {"id": "64b7f0000000000000000001"},
            "items": [{"product": "pen", "quantity": 2}],
        })

    def test_unknown_argument(self, registry):
        with pytest.raises(ValidationError, match="unknown argument"):
            check_input(registry.get("Order").add_shape, {"state": "SHIPPED"})

    def test_missing_required(self, registry):
        with pytest.raises(ValidationError, match="name"):
            check_input(registry.get("Customer").add_shape, {"email": "ann@example.com"})

    def test_nested_list_item_checked(self, registry):
        with pytest.raises(ValidationError, match=r"items\[1\]"):
            check_input(registry.get("Order").add_shape, {
                "items": [{"product": "pen"}, {"quantity": 1}],
            })

    def test_delta_items_checked(self, registry):
        with pytest.raises(ValidationError, match="unknown argument"):
            check_input(registry.get("Customer").add_shape, {
                "name": "Ann",
                "orders": {"added": [{"bogus": 1}]},
            })

    def test_update_requires_id(self, registry):
        with pytest.raises(ValidationError, match="id"):
            check_input(registry.get("Order").update_shape, {"notes": "x"})
