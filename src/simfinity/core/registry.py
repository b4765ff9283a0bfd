"""
Type registry - collects entity descriptors and custom mutations.

The registry is an explicit object handed to the compiler and executors,
so independent schemas can coexist (one registry each).

Usage:
    from simfinity.core.registry import TypeRegistry

    registry = TypeRegistry()
    registry.add_no_endpoint_type(LineItem)
    registry.connect(Customer)
    registry.connect(Order, controller=OrderController(), state_machine=order_flow)
    registry.finalize()  # builds input shapes

    registry.get("Order").add_shape
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional

from .defs import Controller, EntityDef, OBJECT_KINDS, StateMachine
from .errors import ConfigurationError
from .input_types import InputShape, InputTypeSynthesizer

logger = logging.getLogger(__name__)


MutationCallback = Callable[[Any, Any], Awaitable[Any]]


@dataclass
class EntityDescriptor:
    """Everything the runtime needs to know about one registered entity."""
    entity: EntityDef
    collection: str
    single_endpoint: Optional[str] = None
    list_endpoint: Optional[str] = None
    controller: Controller = field(default_factory=Controller)
    state_machine: Optional[StateMachine] = None
    endpoint: bool = True

    # Filled in once by the input-type synthesizer
    add_shape: Optional[InputShape] = None
    update_shape: Optional[InputShape] = None
    machine_owned_fields: set[str] = field(default_factory=set)

    @property
    def name(self) -> str:
        return self.entity.name

    def attach_shapes(self, add_shape: InputShape, update_shape: InputShape) -> None:
        """Attach the final (sealed) input shapes."""
        if not (add_shape.sealed and update_shape.sealed):
            raise ConfigurationError(f"Input shapes of {self.name} must be sealed before attaching")
        self.add_shape = add_shape
        self.update_shape = update_shape


@dataclass
class CustomMutation:
    """A named mutation backed by an arbitrary callback."""
    name: str
    callback: MutationCallback  # (input, session) -> result
    description: Optional[str] = None
    input_shape: Optional[InputShape] = None
    output: Optional[str] = None  # entity name of the result, if any


class TypeRegistry:
    """
    Process-scoped map of entity name -> EntityDescriptor.

    Populated at startup, finalized once, read-only afterwards.
    """

    def __init__(self):
        self._descriptors: dict[str, EntityDescriptor] = {}
        self._mutations: dict[str, CustomMutation] = {}
        self._finalized = False

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def connect(
        self,
        entity: EntityDef,
        *,
        collection: Optional[str] = None,
        single_endpoint: Optional[str] = None,
        list_endpoint: Optional[str] = None,
        controller: Optional[Controller] = None,
        state_machine: Optional[StateMachine] = None,
    ) -> EntityDescriptor:
        """
        Register an entity with its own collection and endpoints.

        Endpoint names default to the camel-cased entity name and its plural.

        Raises:
            ConfigurationError: A state machine on an entity without a 'state' field
        """
        if state_machine is not None and entity.get_field(StateMachine.STATE_FIELD) is None:
            raise ConfigurationError(
                f"{entity.name} declares a state machine but has no '{StateMachine.STATE_FIELD}' field"
            )
        single =single_endpoint or entity.name[0].lower() + entity.name[1:]
        descriptor = EntityDescriptor(
            entity=entity,
            collection=collection or entity.name,
            single_endpoint=single,
            list_endpoint=list_endpoint or f"{single}s",
            controller=controller or Controller(),
            state_machine=state_machine,
            endpoint=True,
        )
        return self._add(descriptor)

    def add_no_endpoint_type(self, entity: EntityDef) -> EntityDescriptor:
        """Register an entity that only lives embedded in other documents."""
        descriptor = EntityDescriptor(
            entity=entity,
            collection=entity.name,
            endpoint=False,
        )
        return self._add(descriptor)

    def register_mutation(
        self,
        name: str,
        callback: MutationCallback,
        *,
        description: Optional[str] = None,
        input_shape: Optional[InputShape] = None,
        output: Optional[str] = None,
    ) -> CustomMutation:
        """Register a custom mutation run inside the transactional envelope."""
        if name in self._mutations:
            raise ConfigurationError(f"Mutation '{name}' already registered")
        mutation = CustomMutation(
            name=name,
            callback=callback,
            description=description,
            input_shape=input_shape,
            output=output,
        )
        self._mutations[name] = mutation
        return mutation

    def _add(self, descriptor: EntityDescriptor) -> EntityDescriptor:
        if descriptor.name in self._descriptors:
            raise ConfigurationError(f"Entity '{descriptor.name}' already registered")

        # Classify eagerly so relation defects surface at registration
        for f in descriptor.entity.fields:
            _ = f.kind

        self._descriptors[descriptor.name] = descriptor
        self._finalized = False
        logger.info(f"Registered entity {descriptor.name} (endpoint={descriptor.endpoint})")
        return descriptor

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    @property
    def descriptors(self) -> Mapping[str, EntityDescriptor]:
        return MappingProxyType(self._descriptors)

    @property
    def mutations(self) -> Mapping[str, CustomMutation]:
        return MappingProxyType(self._mutations)

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors

    def get(self, name: str) -> EntityDescriptor:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise ConfigurationError(f"Unknown entity: {name}")
        return descriptor

    def require(self, name: Optional[str], referrer: str) -> EntityDescriptor:
        """Look up a relation target, naming the referring field on failure."""
        descriptor = self._descriptors.get(name) if name else None
        if descriptor is None:
            raise ConfigurationError(f"{referrer} references unknown entity '{name}'")
        return descriptor

    def get_mutation(self, name: str) -> CustomMutation:
        mutation = self._mutations.get(name)
        if mutation is None:
            raise ConfigurationError(f"Unknown mutation: {name}")
        return mutation

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def finalize(self) -> "TypeRegistry":
        """Validate relation targets and build all pending input shapes."""
        if self._finalized:
            return self

        for descriptor in self._descriptors.values():
            for f in descriptor.entity.fields:
                if f.kind in OBJECT_KINDS:
                    self.require(f.target, referrer=f"{descriptor.name}.{f.name}")

        InputTypeSynthesizer(self).synthesize()
        self._finalized = True
        return self
