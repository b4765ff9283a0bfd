"""
Persistence schema generator - entity metadata to collection definitions.

Each connected entity yields a ``$jsonSchema`` validator and the list of
unique indexes. Referenced objects are stored as their connection field,
referenced lists live on the other side, embedded relations are inlined.

Usage:
    schema = PersistenceSchemaBuilder(registry).build(registry.get("Order"))
    await store.ensure_collection(schema)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .defs import EntityDef, FieldDef, FieldVisitor
from .errors import ConfigurationError
from .scalars import BOOLEAN, DATE, DATETIME, FLOAT, ID, INT, JSON, STRING, TIME

if TYPE_CHECKING:
    from .registry import EntityDescriptor, TypeRegistry


BSON_TYPES: dict[str, Any] = {
    ID: "objectId",
    STRING: "string",
    INT: ["int", "long"],
    FLOAT: ["double", "int", "long"],
    BOOLEAN: "bool",
    DATETIME: "date",
    DATE: "date",
    TIME: "date",
    JSON: None,  # any
}

UNIQUE_CAPABLE = frozenset({STRING, INT, FLOAT})


@dataclass
class CollectionSchema:
    """Storage definition of one collection."""
    collection: str
    validator: dict[str, Any]
    unique_indexes: list[str] = field(default_factory=list)


def _bson(type_name: str, nullable: bool) -> dict[str, Any]:
    bson_type = BSON_TYPES[type_name]
    if bson_type is None:
        return {}
    if nullable:
        types = bson_type if isinstance(bson_type, list) else [bson_type]
        return {"bsonType": [*types, "null"]}
    return {"bsonType": bson_type}


class PersistenceSchemaBuilder(FieldVisitor):
    """Builds CollectionSchema objects from registered entities."""

    def __init__(self, registry: "TypeRegistry"):
        self.registry = registry

    def build(self, descriptor: "EntityDescriptor") -> CollectionSchema:
        uniques: list[str] = []
        properties = self._properties(descriptor.entity, prefix="", uniques=uniques, stack=(descriptor.name,))
        validator = {
            "$jsonSchema": {
                "bsonType": "object",
                "title": descriptor.name,
                "properties": properties,
            }
        }
        return CollectionSchema(collection=descriptor.collection, validator=validator, unique_indexes=uniques)

    def build_all(self) -> list[CollectionSchema]:
        """Schemas of every entity that owns a collection."""
        return [
            self.build(descriptor)
            for descriptor in self.registry.descriptors.values()
            if descriptor.endpoint
        ]

    def _properties(self, entity: EntityDef, prefix: str, uniques: list[str], stack: tuple[str, ...]) -> dict:
        properties: dict[str, Any] = {}
        for f in entity.fields:
            properties.update(self.visit(f, prefix, uniques, stack))
        return properties

    def visit_scalar(self, f: FieldDef, prefix: str, uniques: list[str], stack: tuple[str, ...]):
        if f.is_identifier and f.type == ID:
            return {"_id": {"bsonType": "objectId"}}
        if f.unique and f.type in UNIQUE_CAPABLE:
            uniques.append(prefix + f.name)
        return {f.name: _bson(f.type, f.nullable)}

    def visit_enum(self, f: FieldDef, prefix: str, uniques: list[str], stack: tuple[str, ...]):
        if f.unique:
            uniques.append(prefix + f.name)
        values: list[Any] = list(f.type.values)
        if f.nullable:
            values.append(None)
        return {f.name: {"enum": values}}

    def visit_scalar_list(self, f: FieldDef, prefix: str, uniques: list[str], stack: tuple[str, ...]):
        items = _bson(f.scalar_type, nullable=False)
        return {f.name: {"bsonType": "array", "items": items}}

    def visit_referenced_object(self, f: FieldDef, prefix: str, uniques: list[str], stack: tuple[str, ...]):
        return {f.relation.connection_field: _bson(ID, nullable=True)}

    def visit_referenced_list(self, f: FieldDef, prefix: str, uniques: list[str], stack: tuple[str, ...]):
        return {}

    def _embedded(self, f: FieldDef, prefix: str, uniques: list[str], stack: tuple[str, ...]) -> dict:
        if f.target in stack:
            raise ConfigurationError(
                f"{stack[-1]}.{f.name}: a type cannot have a field of its same type and embedded"
            )
        target = self.registry.require(f.target, referrer=f"{stack[-1]}.{f.name}")
        return {
            "bsonType": "object",
            "properties": self._properties(
                target.entity, f"{prefix}{f.name}.", uniques, (*stack, target.name)
            ),
        }

    def visit_embedded_object(self, f: FieldDef, prefix: str, uniques: list[str], stack: tuple[str, ...]):
        return {f.name: self._embedded(f, prefix, uniques, stack)}

    def visit_embedded_list(self, f: FieldDef, prefix: str, uniques: list[str], stack: tuple[str, ...]):
        return {f.name: {"bsonType": "array", "items": self._embedded(f, prefix, uniques, stack)}}
