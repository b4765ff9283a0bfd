"""
Core dataclass definitions for the Simfinity system.

These define the schema structure for entities, fields, relations,
state machines and lifecycle hooks.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Awaitable, Callable, Optional, Union

from .errors import ConfigurationError
from .scalars import ID, is_scalar_type

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Operation kind used to key validators."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class FieldKind(str, Enum):
    """Closed set of field shapes every component branches on."""
    SCALAR = "scalar"
    ENUM = "enum"
    SCALAR_LIST = "scalar_list"
    EMBEDDED_OBJECT = "embedded_object"
    REFERENCED_OBJECT = "referenced_object"
    EMBEDDED_LIST = "embedded_list"
    REFERENCED_LIST = "referenced_list"


OBJECT_KINDS = frozenset({
    FieldKind.EMBEDDED_OBJECT,
    FieldKind.REFERENCED_OBJECT,
    FieldKind.EMBEDDED_LIST,
    FieldKind.REFERENCED_LIST,
})


# =============================================================================
# Validators and hooks
# =============================================================================


class Validator:
    """
    Field or entity validator.

    Field validators receive ``(type_name, field_name, value, session)``,
    entity validators ``(type_name, args, model_args, session)``.
    Raise ValidationError to reject the operation.
    """

    async def validate(self, *args: Any) -> None:
        raise NotImplementedError


class FunctionValidator(Validator):
    """Adapts a plain (sync or async) callable into a Validator."""

    def __init__(self, func: Callable[..., Any]):
        self.func = func

    async def validate(self, *args: Any) -> None:
        result = self.func(*args)
        if inspect.isawaitable(result):
            await result


class Controller:
    """
    Lifecycle hooks for an entity.

    Subclass and override the hooks you need; the defaults do nothing.
    """

    async def on_saving(self, document: dict, args: dict, session: Any) -> None:
        pass

    async def on_saved(self, document: dict, args: dict, session: Any) -> None:
        pass

    async def on_updating(self, object_id: Any, changes: dict, args: dict, session: Any) -> None:
        pass

    async def on_updated(self, document: Optional[dict], args: dict, session: Any) -> None:
        pass

    async def on_delete(self, document: dict, session: Any) -> None:
        pass


ValidatorMap = dict[Operation, list[Validator]]


# =============================================================================
# Schema definitions
# =============================================================================


@dataclass
class EnumDef:
    """Definition of an enumeration type."""
    name: str
    values: list[str]


@dataclass
class RelationDef:
    """
    Relation policy of an object-valued field.

    Embedded relations live inline in the owner's document. Referenced ones
    are linked by ``connection_field``: on the owner for single objects, on
    the related entity for lists.
    """
    embedded: bool = False
    connection_field: str = ""
    display_field: Optional[str] = None


@dataclass
class FieldDef:
    """Definition of an entity field."""
    name: str
    type: Union[str, EnumDef]  # scalar name, EnumDef or target entity name
    many: bool = False
    nullable: bool = True
    read_only: bool = False
    unique: bool = False
    relation: Optional[RelationDef] = None
    validations: ValidatorMap = field(default_factory=dict)
    description: Optional[str] = None

    @property
    def is_identifier(self) -> bool:
        return self.name == "id"

    @property
    def target(self) -> Optional[str]:
        """Target entity name for object-valued fields."""
        if isinstance(self.type, EnumDef) or is_scalar_type(self.type):
            return None
        return self.type

    @property
    def scalar_type(self) -> Optional[str]:
        """Scalar type name, enums report 'String'."""
        if isinstance(self.type, EnumDef):
            return "String"
        if is_scalar_type(self.type):
            return self.type
        return None

    @cached_property
    def kind(self) -> FieldKind:
        """Classify the field into its FieldKind."""
        if isinstance(self.type, EnumDef):
            return FieldKind.SCALAR_LIST if self.many else FieldKind.ENUM
        if is_scalar_type(self.type):
            return FieldKind.SCALAR_LIST if self.many else FieldKind.SCALAR

        if self.relation is None:
            logger.error(f"Configuration issue: Field {self.name} does not define a relation")
            raise ConfigurationError(f"Field {self.name} does not define a relation")

        if self.relation.embedded:
            return FieldKind.EMBEDDED_LIST if self.many else FieldKind.EMBEDDED_OBJECT

        if not self.relation.connection_field:
            raise ConfigurationError(
                f"Field {self.name} is a referenced relation without a connection_field"
            )
        return FieldKind.REFERENCED_LIST if self.many else FieldKind.REFERENCED_OBJECT

    def validators_for(self, operation: Operation) -> list[Validator]:
        return self.validations.get(operation, [])


@dataclass
class EntityDef:
    """Complete definition of an entity."""
    name: str
    fields: list[FieldDef]
    validations: ValidatorMap = field(default_factory=dict)
    description: Optional[str] = None

    def __post_init__(self):
        names = [f.name for f in self.fields]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ConfigurationError(f"Entity {self.name} declares duplicate fields: {sorted(duplicates)}")

    def get_field(self, name: str) -> Optional[FieldDef]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def id_field(self) -> Optional[FieldDef]:
        f = self.get_field("id")
        return f if f is not None and f.type == ID else None

    def validators_for(self, operation: Operation) -> list[Validator]:
        return self.validations.get(operation, [])


# =============================================================================
# State machines
# =============================================================================


StateLike = Union[str, Enum]
SideEffect = Callable[[dict, Any], Awaitable[None]]


def state_name(state: StateLike) -> str:
    """States are stored by name."""
    return state.name if isinstance(state, Enum) else state


@dataclass
class StateAction:
    """A named, guarded transition."""
    from_state: StateLike
    to_state: StateLike
    description: Optional[str] = None
    action: Optional[SideEffect] = None  # side effect: (args, session)

    @property
    def from_name(self) -> str:
        return state_name(self.from_state)

    @property
    def to_name(self) -> str:
        return state_name(self.to_state)


@dataclass
class StateMachine:
    """Per-entity set of transitions over the ``state`` field."""
    initial_state: StateLike
    actions: dict[str, StateAction] = field(default_factory=dict)

    STATE_FIELD = "state"

    @property
    def initial_name(self) -> str:
        return state_name(self.initial_state)


# =============================================================================
# Field-kind dispatch
# =============================================================================


class FieldVisitor:
    """
    Dispatch on FieldKind with one handler per variant.

    Subclasses implement ``visit_<kind>`` methods; unimplemented kinds raise.
    """

    def visit(self, field_def: FieldDef, *args: Any, **kwargs: Any) -> Any:
        handler = getattr(self, f"visit_{field_def.kind.value}", None)
        if handler is None:
            raise NotImplementedError(
                f"{type(self).__name__} does not handle {field_def.kind.value} fields"
            )
        return handler(field_def, *args, **kwargs)
