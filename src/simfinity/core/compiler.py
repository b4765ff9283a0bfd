"""
Schema compiler - converts a declarative schema document into definitions.

Validates the document structure, collects every error, and produces
EntityDef/StateMachine objects ready for registration.

Usage:
    from simfinity.core.compiler import load_schema

    schema = load_schema("schema.yaml")
    registry = schema.register(TypeRegistry(), controllers={"Order": OrderController()})
    registry.finalize()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .defs import Controller, EntityDef, EnumDef, FieldDef, RelationDef, StateAction, StateMachine
from .errors import ConfigurationError
from .registry import TypeRegistry
from .scalars import SCALAR_TYPES


FIELD_KEYS = {"type", "many", "nullable", "read_only", "unique", "relation", "description"}
RELATION_KEYS = {"embedded", "connection_field", "display_field"}


@dataclass
class CompilationError:
    """Single compilation error."""
    entity: Optional[str]
    field: Optional[str]
    message: str

    def __str__(self) -> str:
        parts = []
        if self.entity:
            parts.append(self.entity)
        if self.field:
            parts.append(self.field)
        location = ".".join(parts) if parts else "global"
        return f"[{location}] {self.message}"


@dataclass
class EntitySpec:
    """Compiled entity plus its registration options."""
    entity: EntityDef
    endpoint: bool = True
    collection: Optional[str] = None
    single_endpoint: Optional[str] = None
    list_endpoint: Optional[str] = None
    state_machine: Optional[StateMachine] = None


@dataclass
class CompiledSchema:
    """Definitions produced from a schema document."""
    enums: dict[str, EnumDef] = field(default_factory=dict)
    entities: dict[str, EntitySpec] = field(default_factory=dict)

    def register(
        self,
        registry: TypeRegistry,
        controllers: Optional[dict[str, Controller]] = None,
    ) -> TypeRegistry:
        """Register every compiled entity (not finalized)."""
        controllers = controllers or {}
        for name, spec in self.entities.items():
            if not spec.endpoint:
                registry.add_no_endpoint_type(spec.entity)
                continue
            registry.connect(
                spec.entity,
                collection=spec.collection,
                single_endpoint=spec.single_endpoint,
                list_endpoint=spec.list_endpoint,
                controller=controllers.get(name),
                state_machine=spec.state_machine,
            )
        return registry


@dataclass
class CompilationResult:
    """Result of compilation."""
    success: bool
    schema: Optional[CompiledSchema] = None
    errors: list[CompilationError] = field(default_factory=list)

    def error_messages(self) -> list[str]:
        """Get all error messages as strings."""
        return [str(e) for e in self.errors]


class SchemaCompiler:
    """
    Compiles a schema document into entity definitions.

    Performs validation:
    - Field types are scalars, declared enums or declared entities
    - Object-valued fields declare a relation
    - Referenced relations name their connection field
    - State machine actions move between known states
    """

    def __init__(self):
        self.errors: list[CompilationError] = []

    def compile(self, document: dict) -> CompilationResult:
        """
        Compile a schema document.

        Args:
            document: Parsed schema (``enums`` and ``entities`` mappings)

        Returns:
            CompilationResult with either schema or errors
        """
        self.errors = []

        enums = self._compile_enums(document.get("enums") or {})
        raw_entities = document.get("entities") or {}
        if not raw_entities:
            self._add_error("No entities defined")

        entity_names = set(raw_entities)
        entities: dict[str, EntitySpec] = {}
        for name, raw in raw_entities.items():
            spec = self._compile_entity(name, raw or {}, enums, entity_names)
            if spec is not None:
                entities[name] = spec

        if self.errors:
            return CompilationResult(success=False, errors=self.errors)

        return CompilationResult(
            success=True,
            schema=CompiledSchema(enums=enums, entities=entities),
        )

    def _add_error(
        self,
        message: str,
        entity: Optional[str] = None,
        field: Optional[str] = None,
    ):
        """Add a compilation error."""
        self.errors.append(CompilationError(entity=entity, field=field, message=message))

    def _compile_enums(self, raw_enums: dict) -> dict[str, EnumDef]:
        enums = {}
        for name, values in raw_enums.items():
            if name in SCALAR_TYPES:
                self._add_error(f"Enum '{name}' shadows a scalar type")
                continue
            if not isinstance(values, list) or not values:
                self._add_error(f"Enum '{name}' must list its values")
                continue
            enums[name] = EnumDef(name=name, values=[str(v) for v in values])
        return enums

    def _compile_entity(
        self,
        name: str,
        raw: dict,
        enums: dict[str, EnumDef],
        entity_names: set[str],
    ) -> Optional[EntitySpec]:
        raw_fields = raw.get("fields") or {}
        if not raw_fields:
            self._add_error("No fields defined", entity=name)
            return None

        fields = []
        for field_name, raw_field in raw_fields.items():
            compiled = self._compile_field(name, field_name, raw_field or {}, enums, entity_names)
            if compiled is not None:
                fields.append(compiled)

        endpoint = raw.get("endpoint", True)
        endpoint_names = endpoint if isinstance(endpoint, dict) else {}

        entity = EntityDef(name=name, fields=fields, description=raw.get("description"))
        state_machine = None
        if raw.get("state_machine"):
            state_machine = self._compile_state_machine(name, raw["state_machine"], entity)

        return EntitySpec(
            entity=entity,
            endpoint=bool(endpoint),
            collection=raw.get("collection"),
            single_endpoint=endpoint_names.get("single"),
            list_endpoint=endpoint_names.get("list"),
            state_machine=state_machine,
        )

    def _compile_field(
        self,
        entity_name: str,
        field_name: str,
        raw: dict,
        enums: dict[str, EnumDef],
        entity_names: set[str],
    ) -> Optional[FieldDef]:
        unknown = set(raw) - FIELD_KEYS
        if unknown:
            self._add_error(f"Unknown field keys {sorted(unknown)}", entity=entity_name, field=field_name)

        type_name = raw.get("type")
        if type_name in SCALAR_TYPES:
            field_type: Any = type_name
        elif type_name in enums:
            field_type = enums[type_name]
        elif type_name in entity_names:
            field_type = type_name
        else:
            self._add_error(f"Unknown type '{type_name}'", entity=entity_name, field=field_name)
            return None

        relation = None
        raw_relation = raw.get("relation")
        if type_name in entity_names:
            if not raw_relation:
                self._add_error("Object field does not define a relation", entity=entity_name, field=field_name)
                return None
            relation = self._compile_relation(entity_name, field_name, raw_relation)
            if relation is None:
                return None
        elif raw_relation:
            self._add_error("Only object fields may declare a relation", entity=entity_name, field=field_name)

        return FieldDef(
            name=field_name,
            type=field_type,
            many=bool(raw.get("many", False)),
            nullable=bool(raw.get("nullable", True)),
            read_only=bool(raw.get("read_only", False)),
            unique=bool(raw.get("unique", False)),
            relation=relation,
            description=raw.get("description"),
        )

    def _compile_relation(self, entity_name: str, field_name: str, raw: dict) -> Optional[RelationDef]:
        unknown = set(raw) - RELATION_KEYS
        if unknown:
            self._add_error(f"Unknown relation keys {sorted(unknown)}", entity=entity_name, field=field_name)
            return None

        embedded = bool(raw.get("embedded", False))
        connection_field = raw.get("connection_field") or ""
        if not embedded and not connection_field:
            self._add_error(
                "Referenced relation missing 'connection_field'",
                entity=entity_name,
                field=field_name,
            )
            return None

        return RelationDef(
            embedded=embedded,
            connection_field=connection_field,
            display_field=raw.get("display_field"),
        )

    def _compile_state_machine(self, entity_name: str, raw: dict, entity: EntityDef) -> Optional[StateMachine]:
        state_field = entity.get_field(StateMachine.STATE_FIELD)
        if state_field is None:
            self._add_error("State machine requires a 'state' field", entity=entity_name)
            return None

        known_states = set(state_field.type.values) if isinstance(state_field.type, EnumDef) else None

        def check_state(state: Any, where: str) -> None:
            if known_states is not None and state not in known_states:
                self._add_error(f"Unknown state '{state}' in {where}", entity=entity_name, field="state")

        initial = raw.get("initial")
        if not initial:
            self._add_error("State machine missing 'initial'", entity=entity_name)
            return None
        check_state(initial, "initial")

        actions = {}
        for action_name, raw_action in (raw.get("actions") or {}).items():
            raw_action = raw_action or {}
            if "from" not in raw_action or "to" not in raw_action:
                self._add_error(f"Action '{action_name}' needs 'from' and 'to'", entity=entity_name)
                continue
            check_state(raw_action["from"], f"action '{action_name}'")
            check_state(raw_action["to"], f"action '{action_name}'")
            actions[action_name] = StateAction(
                from_state=raw_action["from"],
                to_state=raw_action["to"],
                description=raw_action.get("description"),
            )

        return StateMachine(initial_state=initial, actions=actions)


def compile_schema(document: dict) -> CompiledSchema:
    """
    Convenience function to compile a schema document.

    Raises:
        ConfigurationError: If compilation fails

    Returns:
        CompiledSchema
    """
    compiler = SchemaCompiler()
    result = compiler.compile(document)

    if not result.success:
        errors = "\n".join(result.error_messages())
        raise ConfigurationError(f"Schema compilation failed:\n{errors}")

    return result.schema


def load_schema(path: Path | str) -> CompiledSchema:
    """Load and compile a schema from a YAML file."""
    path = Path(path)
    document = yaml.safe_load(path.read_text()) or {}
    return compile_schema(document)
