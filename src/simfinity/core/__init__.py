"""
Core module - definitions, registry, input shapes and schema compilation.
"""

from __future__ import annotations

from .compiler import (
    CompilationError,
    CompilationResult,
    CompiledSchema,
    EntitySpec,
    SchemaCompiler,
    compile_schema,
    load_schema,
)
from .defs import (
    Controller,
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
    Validator,
)
from .errors import (
    ConfigurationError,
    IllegalTransitionError,
    InternalError,
    NotFoundError,
    SimfinityError,
    TransientTransactionError,
    UnsupportedOperationError,
    ValidationError,
    format_error,
    is_transient_error,
)
from .input_types import ID_INPUT, InputField, InputKind, InputShape, InputTypeSynthesizer, check_input
from .persistence import CollectionSchema, PersistenceSchemaBuilder
from .query_types import (
    FilterExpression,
    FilterTerm,
    ListArguments,
    Operator,
    Pagination,
    PathFilterTerm,
    SortExpression,
    SortOrder,
    SortTerm,
)
from .registry import CustomMutation, EntityDescriptor, TypeRegistry

__all__ = [
    # Definitions
    "Controller",
    "EntityDef",
    "EnumDef",
    "FieldDef",
    "FieldKind",
    "FieldVisitor",
    "FunctionValidator",
    "Operation",
    "RelationDef",
    "StateAction",
    "StateMachine",
    "Validator",
    # Registry
    "CustomMutation",
    "EntityDescriptor",
    "TypeRegistry",
    # Input shapes
    "ID_INPUT",
    "InputField",
    "InputKind",
    "InputShape",
    "InputTypeSynthesizer",
    "check_input",
    # Persistence
    "CollectionSchema",
    "PersistenceSchemaBuilder",
    # Query types
    "FilterExpression",
    "FilterTerm",
    "ListArguments",
    "Operator",
    "Pagination",
    "PathFilterTerm",
    "SortExpression",
    "SortOrder",
    "SortTerm",
    # Schema compiler
    "CompilationError",
    "CompilationResult",
    "CompiledSchema",
    "EntitySpec",
    "SchemaCompiler",
    "compile_schema",
    "load_schema",
    # Errors
    "ConfigurationError",
    "IllegalTransitionError",
    "InternalError",
    "NotFoundError",
    "SimfinityError",
    "TransientTransactionError",
    "UnsupportedOperationError",
    "ValidationError",
    "format_error",
    "is_transient_error",
]
