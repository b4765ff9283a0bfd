"""
Mutation executor for Simfinity.

Handles add, update, delete, state transitions and custom mutations.
Every public operation runs inside TransactionRunner, so a failure
anywhere in the tree (hooks, validators, collection deltas) rolls back the
whole operation.

Usage:
    executor = MutationExecutor(registry, store)
    order = await executor.save("Order", {"customer": {"id": cid}, "items": [...]})
    await executor.update("Order", {"id": order["_id"], "notes": None})
    await executor.change_state("Order", "ship", {"id": order["_id"]})
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Optional

from bson import ObjectId

from simfinity.core.defs import FieldKind, Operation, StateMachine
from simfinity.core.errors import (
    ConfigurationError,
    IllegalTransitionError,
    NotFoundError,
    UnsupportedOperationError,
    ValidationError,
)
from simfinity.core.registry import EntityDescriptor, TypeRegistry
from simfinity.core.scalars import to_reference
from simfinity.core.utils import is_empty
from .materializer import CollectionDelta, LinkToParent, Materializer
from .store import DocumentStore, StoreSession
from .transaction_executor import RetryPolicy, TransactionRunner

logger = logging.getLogger(__name__)


def _link(connection_field: str, parent_id: ObjectId, model_args: dict) -> None:
    model_args[connection_field] = parent_id


class MutationExecutor:
    """
    Executes entity mutations against a DocumentStore.

    Pass ``session`` to any public method to run it inside an enclosing
    transaction instead of opening a new one.
    """

    def __init__(
        self,
        registry: TypeRegistry,
        store: DocumentStore,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize mutation executor.

        Args:
            registry: Finalized type registry
            store: Document store
            retry_policy: Retry policy for transient transaction failures
        """
        self.registry = registry
        self.store = store
        self.runner = TransactionRunner(store, retry_policy)

    def _descriptor(self, type_name: str) -> EntityDescriptor:
        descriptor = self.registry.get(type_name)
        if not descriptor.endpoint:
            raise ConfigurationError(f"{type_name} has no collection of its own")
        return descriptor

    # =========================================================================
    # Public operations
    # =========================================================================

    async def save(self, type_name: str, args: dict, session: Optional[StoreSession] = None) -> dict:
        descriptor = self._descriptor(type_name)
        return await self.runner.run(lambda s: self._save(descriptor, args, s), session)

    async def save_object(self, type_name: str, args: dict, session: Optional[StoreSession] = None) -> dict:
        """
        Create an entity from a custom mutation callback.

        Callbacks receive the running session; passing it here keeps the new
        document inside the callback's transaction.
        """
        return await self.save(type_name, args, session)

    async def update(self, type_name: str, args: dict, session: Optional[StoreSession] = None) -> dict:
        descriptor = self._descriptor(type_name)
        return await self.runner.run(lambda s: self._update(descriptor, args, s), session)

    async def delete(self, type_name: str, object_id: Any, session: Optional[StoreSession] = None) -> dict:
        descriptor = self._descriptor(type_name)
        return await self.runner.run(lambda s: self._delete(descriptor, object_id, s), session)

    async def change_state(
        self,
        type_name: str,
        action_name: str,
        args: dict,
        session: Optional[StoreSession] = None,
    ) -> dict:
        descriptor = self._descriptor(type_name)
        machine = descriptor.state_machine
        if machine is None or action_name not in machine.actions:
            raise ConfigurationError(f"{type_name} has no state action '{action_name}'")
        return await self.runner.run(
            lambda s: self._change_state(descriptor, machine, action_name, args, s),
            session,
        )

    async def execute_custom(self, name: str, args: Any, session: Optional[StoreSession] = None) -> Any:
        """Run a registered custom mutation in the transactional envelope."""
        mutation = self.registry.get_mutation(name)
        return await self.runner.run(lambda s: mutation.callback(args, s), session)

    # =========================================================================
    # Operation bodies
    # =========================================================================

    async def _save(
        self,
        descriptor: EntityDescriptor,
        args: dict,
        session: StoreSession,
        link_to_parent: Optional[LinkToParent] = None,
    ) -> dict:
        materializer = Materializer(self.registry, Operation.CREATE, session)
        materialized = await materializer.materialize(descriptor.entity, args, link_to_parent)
        document = materialized.model_args

        if descriptor.state_machine is not None:
            document[StateMachine.STATE_FIELD] = descriptor.state_machine.initial_name

        await descriptor.controller.on_saving(document, args, session)
        stored = await self.store.create(descriptor.collection, document, session)
        await self._apply_deltas(descriptor, stored["_id"], materialized.collection_fields, session)
        await descriptor.controller.on_saved(stored, args, session)

        logger.debug(f"Saved {descriptor.name} {stored['_id']}")
        return stored

    async def _update(
        self,
        descriptor: EntityDescriptor,
        args: dict,
        session: StoreSession,
        link_to_parent: Optional[LinkToParent] = None,
    ) -> dict:
        if is_empty(args.get("id")):
            raise ValidationError(f"Updating {descriptor.name} requires an id")
        object_id = to_reference(args["id"])

        materializer = Materializer(self.registry, Operation.UPDATE, session)
        materialized = await materializer.materialize(descriptor.entity, args, link_to_parent)
        await self._apply_deltas(descriptor, object_id, materialized.collection_fields, session)

        current = await self.store.find_by_id(descriptor.collection, object_id, session)
        if current is None:
            raise NotFoundError(f"{descriptor.name} {args['id']} is not valid")

        changes = self._merge_embedded(descriptor, materialized.model_args, current)
        update: dict[str, Any] = {}
        if changes:
            update["$set"] = changes
        if materialized.unset:
            update["$unset"] = {key: "" for key in materialized.unset}

        await descriptor.controller.on_updating(object_id, changes, args, session)
        if update:
            updated = await self.store.find_by_id_and_update(descriptor.collection, object_id, update, session)
        else:
            updated = current
        await descriptor.controller.on_updated(updated, args, session)

        logger.debug(f"Updated {descriptor.name} {object_id}: set={list(changes)} unset={materialized.unset}")
        return updated

    async def _delete(self, descriptor: EntityDescriptor, object_id: Any, session: StoreSession) -> dict:
        if isinstance(object_id, dict):
            object_id = object_id.get("id")
        if is_empty(object_id):
            raise ValidationError(f"Deleting {descriptor.name} requires an id")
        reference = to_reference(object_id)

        materializer = Materializer(self.registry, Operation.DELETE, session)
        await materializer.materialize(descriptor.entity, {"id": reference})

        current = await self.store.find_by_id(descriptor.collection, reference, session)
        if current is None:
            raise NotFoundError(f"{descriptor.name} {object_id} is not valid")

        await descriptor.controller.on_delete(current, session)
        deleted = await self.store.find_by_id_and_delete(descriptor.collection, reference, session)

        logger.debug(f"Deleted {descriptor.name} {reference}")
        return deleted

    async def _change_state(
        self,
        descriptor: EntityDescriptor,
        machine: StateMachine,
        action_name: str,
        args: dict,
        session: StoreSession,
    ) -> dict:
        action = machine.actions[action_name]
        object_id = args.get("id")
        if is_empty(object_id):
            raise ValidationError(f"Action {action_name} on {descriptor.name} requires an id")

        current = await self.store.find_by_id(descriptor.collection, to_reference(object_id), session)
        if current is None:
            raise NotFoundError(f"{descriptor.name} {object_id} is not valid")

        stored_state = current.get(StateMachine.STATE_FIELD)
        if stored_state != action.from_name:
            raise IllegalTransitionError(f"Action is not allowed from state {stored_state}")

        if action.action is not None:
            await action.action(args, session)

        logger.info(f"{descriptor.name} {object_id}: {action_name} {action.from_name} -> {action.to_name}")
        return await self._update(
            descriptor,
            {**args, StateMachine.STATE_FIELD: action.to_name},
            session,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _apply_deltas(
        self,
        descriptor: EntityDescriptor,
        parent_id: ObjectId,
        deltas: list[CollectionDelta],
        session: StoreSession,
    ) -> None:
        """Save/update children of referenced collections, linked to the parent."""
        for delta in deltas:
            if delta.deleted:
                raise UnsupportedOperationError(
                    f"Deleting items of {descriptor.name}.{delta.field.name} through a collection delta "
                    f"is not supported"
                )

            target = self._descriptor(delta.field.target)
            link = partial(_link, delta.field.relation.connection_field, parent_id)
            for item in delta.added:
                await self._save(target, item, session, link_to_parent=link)
            for item in delta.updated:
                await self._update(target, item, session, link_to_parent=link)

    def _merge_embedded(self, descriptor: EntityDescriptor, changes: dict, current: dict) -> dict:
        """Embedded objects shallow-merge over the stored value; arrays replace."""
        merged = dict(changes)
        for f in descriptor.entity.fields:
            if f.kind != FieldKind.EMBEDDED_OBJECT or f.name not in merged:
                continue
            previous = current.get(f.name)
            if isinstance(previous, dict):
                merged[f.name] = {**previous, **merged[f.name]}
        return merged
