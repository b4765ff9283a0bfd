"""
Unit tests for schema definitions.

Tests cover:
- Field kind classification
- Relation configuration errors
- Visitor dispatch
- Validators and state names
"""

from enum import Enum

import pytest

from simfinity.core.defs import (
    EntityDef,
    EnumDef,
    FieldDef,
    FieldKind,
    FieldVisitor,
    FunctionValidator,
    Operation,
    RelationDef,
    StateAction,
    StateMachine,
    state_name,
)
from simfinity.core.errors import ConfigurationError, ValidationError
from simfinity.core.registry import TypeRegistry


class TestFieldKind:
    """Tests for FieldDef.kind."""

    @pytest.mark.parametrize("field_def,expected", [
        (FieldDef("name", "String"), FieldKind.SCALAR),
        (FieldDef("level", EnumDef("Level", ["LOW", "HIGH"])), FieldKind.ENUM),
        (FieldDef("tags", "String", many=True), FieldKind.SCALAR_LIST),
        (FieldDef("address", "Address", relation=RelationDef(embedded=True)), FieldKind.EMBEDDED_OBJECT),
        (FieldDef("items", "LineItem", many=True, relation=RelationDef(embedded=True)), FieldKind.EMBEDDED_LIST),
        (FieldDef("customer", "Customer", relation=RelationDef(connection_field="customer_id")),
         FieldKind.REFERENCED_OBJECT),
        (FieldDef("orders", "Order", many=True, relation=RelationDef(connection_field="customer_id")),
         FieldKind.REFERENCED_LIST),
    ])
    def test_classification(self, field_def, expected):
        assert field_def.kind == expected

    def test_object_without_relation_raises(self):
        """Object-valued fields must declare a relation."""
        with pytest.raises(ConfigurationError, match="does not define a relation"):
            FieldDef("customer", "Customer").kind

    def test_referenced_relation_needs_connection_field(self):
        with pytest.raises(ConfigurationError, match="connection_field"):
            FieldDef("customer", "Customer", relation=RelationDef()).kind

    def test_enum_reports_string_scalar_type(self):
        f = FieldDef("level", EnumDef("Level", ["LOW"]))
        assert f.scalar_type == "String"
        assert f.target is None

    def test_target_of_object_field(self):
        f = FieldDef("customer", "Customer", relation=RelationDef(connection_field="customer_id"))
        assert f.target == "Customer"
        assert f.scalar_type is None


class TestEntityDef:
    """Tests for EntityDef."""

    def test_duplicate_fields_rejected(self):
        with pytest.raises(ConfigurationError, match="duplicate"):
            EntityDef("Customer", [FieldDef("name", "String"), FieldDef("name", "String")])

    def test_id_field_requires_id_type(self):
        entity = EntityDef("Tag", [FieldDef("id", "String")])
        assert entity.id_field is None
        assert EntityDef("Tag", [FieldDef("id", "ID")]).id_field is not None

    def test_validators_for_operation(self):
        validator = FunctionValidator(lambda *args: None)
        entity = EntityDef("Tag", [FieldDef("name", "String")], validations={Operation.CREATE: [validator]})
        assert entity.validators_for(Operation.CREATE) == [validator]
        assert entity.validators_for(Operation.UPDATE) == []


class TestFieldVisitor:
    """Tests for kind-based dispatch."""

    def test_dispatches_to_handler(self):
        class Names(FieldVisitor):
            def visit_scalar(self, f, prefix):
                return prefix + f.name

        assert Names().visit(FieldDef("name", "String"), "x.") == "x.name"

    def test_missing_handler_raises(self):
        class Empty(FieldVisitor):
            pass

        with pytest.raises(NotImplementedError, match="scalar_list"):
            Empty().visit(FieldDef("tags", "String", many=True))


class TestValidators:
    """Tests for FunctionValidator."""

    @pytest.mark.asyncio
    async def test_sync_function(self):
        seen = []
        validator = FunctionValidator(lambda *args: seen.append(args))
        await validator.validate("Customer", "name", "Ann", None)
        assert seen == [("Customer", "name", "Ann", None)]

    @pytest.mark.asyncio
    async def test_async_function_raising(self):
        async def reject(type_name, field_name, value, session):
            raise ValidationError(f"{field_name} rejected")

        with pytest.raises(ValidationError, match="name rejected"):
            await FunctionValidator(reject).validate("Customer", "name", "Ann", None)


class TestStateMachine:
    """Tests for state naming and registration."""

    def test_enum_states_stored_by_name(self):
        class Status(Enum):
            OPEN = 1
            CLOSED = 2

        action = StateAction(Status.OPEN, Status.CLOSED)
        machine = StateMachine(initial_state=Status.OPEN, actions={"close": action})

        assert machine.initial_name == "OPEN"
        assert action.from_name == "OPEN"
        assert action.to_name == "CLOSED"
        assert state_name("DRAFT") == "DRAFT"

    def test_connect_requires_state_field(self):
        ticket = EntityDef("Ticket", [FieldDef("id", "ID"), FieldDef("title", "String")])
        machine = StateMachine("OPEN", {"close": StateAction("OPEN", "CLOSED")})

        with pytest.raises(ConfigurationError, match="Ticket declares a state machine but has no 'state' field"):
            TypeRegistry().connect(ticket, state_machine=machine)

    def test_connect_accepts_state_field(self):
        ticket = EntityDef("Ticket", [FieldDef("id", "ID"), FieldDef("state", "String")])
        machine = StateMachine("OPEN", {"close": StateAction("OPEN", "CLOSED")})

        descriptor = TypeRegistry().connect(ticket, state_machine=machine)

        assert descriptor.state_machine is machine
