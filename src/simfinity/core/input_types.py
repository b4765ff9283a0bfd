"""
Input-type synthesizer - derives add/update argument shapes per entity.

Two phases:

1. Provisional shapes are built over the waiting set in repeated passes.
   Only embedded relations are dependencies: an entity waits until every
   entity it embeds has its own shapes. A pass that resolves nothing means an
   embedded cycle and fails with a ConfigurationError.
2. Deferred fields (referenced lists, self references included) are attached
   as add/update/delete deltas once every shape exists, then all shapes are
   sealed.

Usage:
    registry.finalize()   # runs InputTypeSynthesizer(registry).synthesize()
    registry.get("Order").add_shape.to_sdl()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional, Union

from .defs import EnumDef, FieldDef, FieldVisitor, StateMachine
from .errors import ConfigurationError, ValidationError
from .scalars import ID, STRING
from .utils import to_pascal_case

if TYPE_CHECKING:
    from .registry import EntityDescriptor, TypeRegistry

logger = logging.getLogger(__name__)


class InputKind(str, Enum):
    SCALAR = "scalar"
    ENUM = "enum"
    SCALAR_LIST = "scalar_list"
    ID = "id"              # bare identifier reference ({id})
    OBJECT = "object"      # embedded shape
    OBJECT_LIST = "object_list"
    DELTA = "delta"        # {added, updated, deleted}


LIST_KINDS = frozenset({InputKind.SCALAR_LIST, InputKind.OBJECT_LIST})


@dataclass
class InputField:
    """Single field of an input shape."""
    name: str
    kind: InputKind
    type: Union[str, EnumDef, "InputShape"]
    nullable: bool = True
    description: Optional[str] = None

    @property
    def type_name(self) -> str:
        if isinstance(self.type, (EnumDef, InputShape)):
            return self.type.name
        return self.type

    def to_sdl(self) -> str:
        rendered = self.type_name
        if self.kind in LIST_KINDS:
            rendered = f"[{rendered}]"
        if not self.nullable:
            rendered += "!"
        return f"{self.name}: {rendered}"


class InputShape:
    """
    Named, ordered set of input fields.

    Shapes stay open while the synthesizer attaches deferred fields and are
    sealed afterwards.
    """

    def __init__(self, name: str, fields: Optional[list[InputField]] = None):
        self.name = name
        self._fields: dict[str, InputField] = {}
        self._sealed = False
        for f in fields or []:
            self.add_field(f)

    @property
    def fields(self) -> Mapping[str, InputField]:
        return MappingProxyType(self._fields)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def add_field(self, input_field: InputField) -> None:
        if self._sealed:
            raise ConfigurationError(f"Input shape {self.name} is sealed")
        self._fields[input_field.name] = input_field

    def seal(self) -> "InputShape":
        self._sealed = True
        return self

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def __getitem__(self, name: str) -> InputField:
        return self._fields[name]

    def __repr__(self) -> str:
        return f"InputShape({self.name!r}, fields={list(self._fields)})"

    def to_sdl(self) -> str:
        """Render as a schema-definition input block."""
        lines = [f"input {self.name} {{"]
        lines.extend(f"  {f.to_sdl()}" for f in self._fields.values())
        lines.append("}")
        return "\n".join(lines)


ID_INPUT = InputShape(
    "IdInput",
    [InputField(name="id", kind=InputKind.SCALAR, type=STRING, nullable=False)],
).seal()


def delta_shape(
    prefix: str,
    entity_name: str,
    field_name: str,
    add_shape: InputShape,
    update_shape: InputShape,
) -> InputShape:
    """Build the {added, updated, deleted} shape of a referenced collection."""
    return InputShape(
        f"OneToMany{prefix}{entity_name}{to_pascal_case(field_name)}",
        [
            InputField(name="added", kind=InputKind.OBJECT_LIST, type=add_shape),
            InputField(name="updated", kind=InputKind.OBJECT_LIST, type=update_shape),
            InputField(name="deleted", kind=InputKind.SCALAR_LIST, type=ID),
        ],
    ).seal()


# =============================================================================
# Synthesis
# =============================================================================


class MissingDependency(Exception):
    """Internal signal: an embedded target has no shapes yet."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(target)


@dataclass
class ProvisionalShapes:
    add: InputShape
    update: InputShape
    deferred: list[FieldDef] = field(default_factory=list)


class ShapeFieldBuilder(FieldVisitor):
    """Maps one entity field to its (add, update) input fields."""

    def __init__(self, registry: "TypeRegistry", descriptor: "EntityDescriptor"):
        self.registry = registry
        self.descriptor = descriptor
        self.deferred: list[FieldDef] = []

    def _scalar(self, f: FieldDef, kind: InputKind):
        add = None
        if not f.is_identifier:
            add = InputField(f.name, kind, f.type, nullable=f.nullable, description=f.description)
        required = f.is_identifier or f.type == ID
        update = InputField(f.name, kind, f.type, nullable=not required, description=f.description)
        return add, update

    def visit_scalar(self, f: FieldDef):
        return self._scalar(f, InputKind.SCALAR)

    def visit_enum(self, f: FieldDef):
        return self._scalar(f, InputKind.ENUM)

    def visit_scalar_list(self, f: FieldDef):
        add = InputField(f.name, InputKind.SCALAR_LIST, f.type, nullable=f.nullable, description=f.description)
        update = InputField(f.name, InputKind.SCALAR_LIST, f.type, description=f.description)
        return add, update

    def visit_referenced_object(self, f: FieldDef):
        add = InputField(f.name, InputKind.ID, ID_INPUT, nullable=f.nullable, description=f.description)
        update = InputField(f.name, InputKind.ID, ID_INPUT, description=f.description)
        return add, update

    def _embedded_target(self, f: FieldDef) -> "EntityDescriptor":
        if f.target == self.descriptor.name:
            raise ConfigurationError(
                f"{self.descriptor.name}.{f.name}: a type cannot embed a field of its own type"
            )
        target = self.registry.require(f.target, referrer=f"{self.descriptor.name}.{f.name}")
        if target.add_shape is None or target.update_shape is None:
            raise MissingDependency(target.name)
        return target

    def visit_embedded_object(self, f: FieldDef):
        target = self._embedded_target(f)
        return (
            InputField(f.name, InputKind.OBJECT, target.add_shape, description=f.description),
            InputField(f.name, InputKind.OBJECT, target.update_shape, description=f.description),
        )

    def visit_embedded_list(self, f: FieldDef):
        target = self._embedded_target(f)
        return (
            InputField(f.name, InputKind.OBJECT_LIST, target.add_shape, description=f.description),
            InputField(f.name, InputKind.OBJECT_LIST, target.update_shape, description=f.description),
        )

    def visit_referenced_list(self, f: FieldDef):
        # Resolved in the attach phase, so referenced cycles never block
        self.registry.require(f.target, referrer=f"{self.descriptor.name}.{f.name}")
        self.deferred.append(f)
        return None, None


class InputTypeSynthesizer:
    """
    Builds input shapes for every registered entity without shapes.

    Usage:
        InputTypeSynthesizer(registry).synthesize()
    """

    def __init__(self, registry: "TypeRegistry"):
        self.registry = registry

    def synthesize(self) -> None:
        waiting = {
            name: descriptor
            for name, descriptor in self.registry.descriptors.items()
            if descriptor.add_shape is None
        }
        if not waiting:
            return

        provisional = self._resolve(waiting)

        for name, shapes in provisional.items():
            self._attach_deferred(self.registry.get(name), shapes)

        for name, shapes in provisional.items():
            descriptor = self.registry.get(name)
            descriptor.attach_shapes(shapes.add.seal(), shapes.update.seal())

        logger.info(f"Synthesized input shapes for {len(provisional)} entities")

    def _resolve(self, waiting: dict[str, "EntityDescriptor"]) -> dict[str, ProvisionalShapes]:
        """Phase 1: fixed point over embedded dependencies."""
        resolved: dict[str, ProvisionalShapes] = {}
        blockers: dict[str, str] = {}
        # Every productive pass resolves at least one entity
        max_passes = len(waiting)

        for pass_number in range(1, max_passes + 1):
            blockers = {}
            progressed = False
            for name, descriptor in list(waiting.items()):
                try:
                    shapes = self._build_provisional(descriptor)
                except MissingDependency as missing:
                    blockers[name] = missing.target
                    continue
                # Visible to later entities in this same pass
                descriptor.add_shape = shapes.add
                descriptor.update_shape = shapes.update
                resolved[name] = shapes
                del waiting[name]
                progressed = True

            logger.debug(f"Input shape pass {pass_number}: {len(resolved)} resolved, {len(waiting)} waiting")
            if not waiting:
                return resolved
            if not progressed:
                break

        unresolved = ", ".join(
            f"{name} (waits for {target})" for name, target in sorted(blockers.items())
        )
        raise ConfigurationError(
            f"Cannot build input shapes, embedded relations form a cycle: {unresolved}"
        )

    def _build_provisional(self, descriptor: "EntityDescriptor") -> ProvisionalShapes:
        add = InputShape(f"{descriptor.name}Input")
        update = InputShape(f"{descriptor.name}InputForUpdate")
        builder = ShapeFieldBuilder(self.registry, descriptor)
        machine: Optional[StateMachine] = descriptor.state_machine

        for f in descriptor.entity.fields:
            if f.read_only:
                continue
            if machine is not None and f.name == StateMachine.STATE_FIELD:
                descriptor.machine_owned_fields.add(f.name)
                continue

            add_field, update_field = builder.visit(f)
            if add_field is not None:
                add.add_field(add_field)
            if update_field is not None:
                update.add_field(update_field)

        return ProvisionalShapes(add=add, update=update, deferred=builder.deferred)

    def _attach_deferred(self, descriptor: "EntityDescriptor", shapes: ProvisionalShapes) -> None:
        """Phase 2: attach referenced collections as delta shapes."""
        for f in shapes.deferred:
            target = self.registry.get(f.target)
            for prefix, shape in (("A", shapes.add), ("U", shapes.update)):
                shape.add_field(InputField(
                    f.name,
                    InputKind.DELTA,
                    delta_shape(prefix, descriptor.name, f.name, target.add_shape, target.update_shape),
                    description=f.description,
                ))


# =============================================================================
# Argument checking
# =============================================================================


def check_input(shape: InputShape, args: Any, path: str = "") -> None:
    """
    Check an argument tree against an input shape.

    Rejects unknown keys, missing non-null fields and values of the wrong
    structure. Scalar values are coerced later by the materializer.

    Raises:
        ValidationError: naming the offending argument path
    """
    where = path or shape.name
    if not isinstance(args, dict):
        raise ValidationError(f"{where}: expected an object for {shape.name}")

    unknown = [key for key in args if key not in shape]
    if unknown:
        raise ValidationError(f"{where}: unknown argument(s) {', '.join(sorted(unknown))}")

    for name, input_field in shape.fields.items():
        field_path = f"{path}.{name}" if path else name
        value = args.get(name)
        if value is None:
            if not input_field.nullable:
                raise ValidationError(f"{field_path}: {input_field.to_sdl()} is required")
            continue
        _check_value(input_field, value, field_path)


def _check_value(input_field: InputField, value: Any, path: str) -> None:
    kind = input_field.kind
    if kind in LIST_KINDS:
        if not isinstance(value, list):
            raise ValidationError(f"{path}: expected a list")
        if kind == InputKind.OBJECT_LIST:
            for index, item in enumerate(value):
                check_input(input_field.type, item, f"{path}[{index}]")
        return

    if kind in (InputKind.OBJECT, InputKind.ID, InputKind.DELTA):
        check_input(input_field.type, value, path)
    elif kind == InputKind.ENUM and value not in input_field.type.values:
        raise ValidationError(f"{path}: '{value}' is not a valid {input_field.type.name}")
