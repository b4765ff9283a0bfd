"""
Materializer - turns an input argument tree into a storable document.

Walks the entity's fields in declaration order, running the field
validators of the operation, then applies the link-to-parent callback and
the entity validators.

Usage:
    materializer = Materializer(registry, Operation.CREATE, session)
    result = await materializer.materialize(entity, args)
    result.model_args          # document body
    result.collection_fields   # referenced-list deltas, applied after persisting
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

from simfinity.core.defs import EntityDef, FieldDef, FieldVisitor, Operation, state_name
from simfinity.core.errors import ValidationError
from simfinity.core.scalars import ID, coerce_date, is_date_type, to_reference
from simfinity.core.utils import is_empty

if TYPE_CHECKING:
    from simfinity.core.registry import TypeRegistry

logger = logging.getLogger(__name__)


LinkToParent = Callable[[dict], None]


@dataclass
class CollectionDelta:
    """Pending changes to a referenced one-to-many relation."""
    field: FieldDef
    added: list[dict] = field(default_factory=list)
    updated: list[dict] = field(default_factory=list)
    deleted: list[Any] = field(default_factory=list)


@dataclass
class Materialized:
    model_args: dict[str, Any] = field(default_factory=dict)
    collection_fields: list[CollectionDelta] = field(default_factory=list)
    # stored keys whose input was an explicit null
    unset: list[str] = field(default_factory=list)


def stored_key(f: FieldDef) -> str:
    """Document key a field is persisted under."""
    if f.relation is not None and not f.relation.embedded and not f.many:
        return f.relation.connection_field
    return f.name


def _coerce_scalar(f: FieldDef, value: Any) -> Any:
    if isinstance(value, Enum):
        return state_name(value)
    if f.type == ID:
        return to_reference(value)
    if is_date_type(f.type):
        return coerce_date(f.type, value)
    return value


class Materializer(FieldVisitor):
    """One materialization run: an operation kind bound to a session."""

    def __init__(self, registry: "TypeRegistry", operation: Operation, session: Any = None):
        self.registry = registry
        self.operation = operation
        self.session = session

    async def materialize(
        self,
        entity: EntityDef,
        args: dict,
        link_to_parent: Optional[LinkToParent] = None,
    ) -> Materialized:
        result = Materialized()

        for f in entity.fields:
            value = args.get(f.name)
            for validator in f.validators_for(self.operation):
                await validator.validate(entity.name, f.name, value, self.session)

            if f.is_identifier:
                continue
            if is_empty(value):
                if value is None and f.name in args and f.nullable:
                    result.unset.append(stored_key(f))
                continue

            await self.visit(f, value, result)

        if link_to_parent is not None:
            link_to_parent(result.model_args)

        for validator in entity.validators_for(self.operation):
            await validator.validate(entity.name, args, result.model_args, self.session)

        logger.debug(
            f"Materialized {entity.name} ({self.operation.value}): "
            f"{len(result.model_args)} keys, {len(result.collection_fields)} deltas"
        )
        return result

    async def visit_scalar(self, f: FieldDef, value: Any, result: Materialized):
        result.model_args[f.name] = _coerce_scalar(f, value)

    async def visit_enum(self, f: FieldDef, value: Any, result: Materialized):
        result.model_args[f.name] = _coerce_scalar(f, value)

    async def visit_scalar_list(self, f: FieldDef, value: Any, result: Materialized):
        if not isinstance(value, list):
            raise ValidationError(f"{f.name} expects a list")
        result.model_args[f.name] = [_coerce_scalar(f, item) for item in value]

    async def visit_referenced_object(self, f: FieldDef, value: Any, result: Materialized):
        result.model_args[f.relation.connection_field] = to_reference(value)

    async def visit_embedded_object(self, f: FieldDef, value: Any, result: Materialized):
        if not isinstance(value, dict):
            raise ValidationError(f"{f.name} expects an object")
        target = self.registry.get(f.target)
        embedded = await self.materialize(target.entity, value)
        result.model_args[f.name] = embedded.model_args

    async def visit_embedded_list(self, f: FieldDef, value: Any, result: Materialized):
        if not isinstance(value, list):
            raise ValidationError(f"{f.name} expects a list")
        target = self.registry.get(f.target)
        items = []
        for item in value:
            if not isinstance(item, dict):
                raise ValidationError(f"{f.name} expects a list of objects")
            embedded = await self.materialize(target.entity, item)
            items.append(embedded.model_args)
        result.model_args[f.name] = items

    async def visit_referenced_list(self, f: FieldDef, value: Any, result: Materialized):
        result.collection_fields.append(CollectionDelta(
            field=f,
            added=list(value.get("added") or []),
            updated=list(value.get("updated") or []),
            deleted=list(value.get("deleted") or []),
        ))
