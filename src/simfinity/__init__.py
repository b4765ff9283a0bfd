"""
Simfinity - metadata-driven persistence for document stores.

Describe entities, relations and state machines once and get:
- A $jsonSchema validator and unique indexes per collection
- Add/update input shapes
- Transactional mutations with state-machine guards
- List queries compiled to aggregation pipelines

Usage:
    from simfinity import Dispatcher, MemoryStore, TypeRegistry, load_schema

    registry = load_schema("schema.yaml").register(TypeRegistry())
    dispatcher = Dispatcher(registry, MemoryStore())
    customer = await dispatcher.call("addCustomer", {"name": "Ann"})
"""

from __future__ import annotations

from .config import SimfinityConfig, configure_logging, load_config
from .core import (
    CompiledSchema,
    ConfigurationError,
    Controller,
    EntityDef,
    EnumDef,
    FieldDef,
    FunctionValidator,
    IllegalTransitionError,
    InternalError,
    NotFoundError,
    Operation,
    PersistenceSchemaBuilder,
    RelationDef,
    SchemaCompiler,
    SimfinityError,
    StateAction,
    StateMachine,
    TransientTransactionError,
    TypeRegistry,
    UnsupportedOperationError,
    ValidationError,
    Validator,
    compile_schema,
    format_error,
    load_schema,
)
from .runtime import (
    CallParams,
    Dispatcher,
    DocumentStore,
    MemoryStore,
    MongoStore,
    MutationExecutor,
    QueryCompiler,
    RetryPolicy,
    TransactionRunner,
)

__version__ = "0.1.0"

__all__ = [
    # Definitions
    "Controller",
    "EntityDef",
    "EnumDef",
    "FieldDef",
    "FunctionValidator",
    "Operation",
    "RelationDef",
    "StateAction",
    "StateMachine",
    "Validator",
    "TypeRegistry",
    # Schema
    "CompiledSchema",
    "SchemaCompiler",
    "compile_schema",
    "load_schema",
    "PersistenceSchemaBuilder",
    # Runtime
    "CallParams",
    "Dispatcher",
    "DocumentStore",
    "MemoryStore",
    "MongoStore",
    "MutationExecutor",
    "QueryCompiler",
    "RetryPolicy",
    "TransactionRunner",
    # Config
    "SimfinityConfig",
    "configure_logging",
    "load_config",
    # Errors
    "SimfinityError",
    "ValidationError",
    "NotFoundError",
    "IllegalTransitionError",
    "ConfigurationError",
    "TransientTransactionError",
    "UnsupportedOperationError",
    "InternalError",
    "format_error",
]
