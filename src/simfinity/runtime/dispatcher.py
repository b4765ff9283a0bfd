"""
Dispatcher - named read/write entry points over the executors.

Every connected entity gets:
    {single}            get by id
    {list}              filtered list (writes context["count"] when asked)
    add{Entity}         create
    update{Entity}      update
    delete{Entity}      delete
    {action}_{Entity}   one per state-machine action

Custom mutations are exposed under their registered names.

Usage:
    dispatcher = Dispatcher(registry, store)
    dispatcher.use(auth_middleware)

    context = {}
    orders = await dispatcher.call("orders", {"pagination": {"page": 1, "size": 20, "count": True}}, context)
    context["count"]
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from simfinity.core.errors import ConfigurationError, InternalError, SimfinityError, ValidationError
from simfinity.core.input_types import check_input
from simfinity.core.registry import TypeRegistry
from simfinity.core.scalars import to_reference
from simfinity.core.utils import is_empty, to_pascal_case
from .context import CallParams, Endpoint, EndpointKind
from .mutation_executor import MutationExecutor
from .query_compiler import COUNT_FIELD, DEFAULT_LIMIT, QueryCompiler
from .store import DocumentStore
from .transaction_executor import RetryPolicy

logger = logging.getLogger(__name__)


Next = Callable[[], Awaitable[None]]
Middleware = Callable[[CallParams, Next], Awaitable[None]]


class Dispatcher:
    """
    Binds registry entities and custom mutations to named endpoints.

    Inclusion lists restrict what is exposed: ``query_types`` for read
    endpoints, ``mutation_types`` for write endpoints, ``custom_mutations``
    for custom mutations. ``None`` exposes everything.
    """

    def __init__(
        self,
        registry: TypeRegistry,
        store: DocumentStore,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        default_limit: int = DEFAULT_LIMIT,
        query_types: Optional[Iterable[str]] = None,
        mutation_types: Optional[Iterable[str]] = None,
        custom_mutations: Optional[Iterable[str]] = None,
    ):
        self.registry = registry.finalize()
        self.store = store
        self.executor = MutationExecutor(registry, store, retry_policy)
        self.compiler = QueryCompiler(registry, default_limit)
        self._middleware: list[Middleware] = []
        self.endpoints: dict[str, Endpoint] = {}

        self._build_endpoints(
            set(query_types) if query_types is not None else None,
            set(mutation_types) if mutation_types is not None else None,
            set(custom_mutations) if custom_mutations is not None else None,
        )

    # -------------------------------------------------------------------------
    # Endpoint table
    # -------------------------------------------------------------------------

    def _add_endpoint(self, endpoint: Endpoint) -> None:
        if endpoint.name in self.endpoints:
            raise ConfigurationError(f"Endpoint name '{endpoint.name}' is used twice")
        self.endpoints[endpoint.name] = endpoint

    def _build_endpoints(
        self,
        query_types: Optional[set[str]],
        mutation_types: Optional[set[str]],
        custom_mutations: Optional[set[str]],
    ) -> None:
        for name, descriptor in self.registry.descriptors.items():
            if not descriptor.endpoint:
                continue

            if query_types is None or name in query_types:
                self._add_endpoint(Endpoint(descriptor.single_endpoint, EndpointKind.GET, name))
                self._add_endpoint(Endpoint(descriptor.list_endpoint, EndpointKind.FIND, name))

            if mutation_types is None or name in mutation_types:
                pascal = to_pascal_case(descriptor.single_endpoint)
                self._add_endpoint(Endpoint(f"add{pascal}", EndpointKind.SAVE, name))
                self._add_endpoint(Endpoint(f"update{pascal}", EndpointKind.UPDATE, name))
                self._add_endpoint(Endpoint(f"delete{pascal}", EndpointKind.DELETE, name))
                if descriptor.state_machine is not None:
                    for action in descriptor.state_machine.actions:
                        self._add_endpoint(Endpoint(f"{action}_{pascal}", EndpointKind.STATE, name, action))

        for name in self.registry.mutations:
            if custom_mutations is None or name in custom_mutations:
                self._add_endpoint(Endpoint(name, EndpointKind.CUSTOM))

        logger.info(f"Dispatcher exposes {len(self.endpoints)} endpoints")

    # -------------------------------------------------------------------------
    # Middleware
    # -------------------------------------------------------------------------

    def use(self, middleware: Middleware) -> "Dispatcher":
        """Append a middleware ``async (params, call_next)``."""
        self._middleware.append(middleware)
        return self

    async def _run_middleware(self, params: CallParams) -> None:
        async def run(index: int) -> None:
            if index >= len(self._middleware):
                return

            async def call_next() -> None:
                await run(index + 1)

            await self._middleware[index](params, call_next)

        await run(0)

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    async def call(self, name: str, args: Optional[dict] = None, context: Optional[dict] = None) -> Any:
        """
        Run the endpoint ``name``.

        Raises:
            SimfinityError: Unchanged for known errors, InternalError otherwise
        """
        endpoint = self.endpoints.get(name)
        if endpoint is None:
            raise ValidationError(f"Unknown endpoint: {name}")

        params = CallParams(
            endpoint=endpoint,
            args=dict(args or {}),
            context=context if context is not None else {},
        )
        try:
            await self._run_middleware(params)
            return await self._execute(params)
        except SimfinityError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in {name}: {e}", exc_info=True)
            raise InternalError(str(e), cause=e) from e

    async def _execute(self, params: CallParams) -> Any:
        endpoint = params.endpoint
        args = params.args

        if endpoint.kind == EndpointKind.CUSTOM:
            mutation = self.registry.get_mutation(endpoint.name)
            if mutation.input_shape is not None:
                check_input(mutation.input_shape, args)
            return await self.executor.execute_custom(endpoint.name, args)

        descriptor = self.registry.get(endpoint.entity)

        if endpoint.kind == EndpointKind.GET:
            if is_empty(args.get("id")):
                raise ValidationError(f"{endpoint.name} requires an id")
            return await self.store.find_by_id(descriptor.collection, to_reference(args["id"]))

        if endpoint.kind == EndpointKind.FIND:
            return await self._find(descriptor.name, descriptor.collection, args, params.context)

        if endpoint.kind == EndpointKind.SAVE:
            check_input(descriptor.add_shape, args)
            return await self.executor.save(descriptor.name, args)

        if endpoint.kind == EndpointKind.UPDATE:
            check_input(descriptor.update_shape, args)
            return await self.executor.update(descriptor.name, args)

        if endpoint.kind == EndpointKind.DELETE:
            return await self.executor.delete(descriptor.name, args.get("id"))

        if endpoint.kind == EndpointKind.STATE:
            check_input(descriptor.update_shape, args)
            return await self.executor.change_state(descriptor.name, endpoint.action, args)

        raise ConfigurationError(f"Unhandled endpoint kind: {endpoint.kind}")

    async def _find(self, entity_name: str, collection: str, args: dict, context: dict) -> list[dict]:
        list_args = self.compiler.parse_arguments(entity_name, args)

        if list_args.pagination is not None and list_args.pagination.count:
            counted = await self.store.aggregate(
                collection, self.compiler.compile(list_args, entity_name, count=True)
            )
            context["count"] = counted[0][COUNT_FIELD] if counted else 0

        pipeline = self.compiler.compile(list_args, entity_name)
        if not pipeline:
            return await self.store.find(collection, {})
        return await self.store.aggregate(collection, pipeline)
