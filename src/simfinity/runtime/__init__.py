"""
Runtime module - stores, executors, query compilation and dispatch.
"""

from __future__ import annotations

from .context import CallParams, Endpoint, EndpointKind
from .dispatcher import Dispatcher, Middleware
from .materializer import CollectionDelta, Materialized, Materializer
from .memory_store import MemorySession, MemoryStore
from .mongo_store import MongoSession, MongoStore
from .mutation_executor import MutationExecutor
from .query_compiler import QueryCompiler
from .store import DocumentStore, StoreSession
from .transaction_executor import ExponentialBackoff, RetryPolicy, TransactionRunner

__all__ = [
    "CallParams",
    "Endpoint",
    "EndpointKind",
    "Dispatcher",
    "Middleware",
    "CollectionDelta",
    "Materialized",
    "Materializer",
    "DocumentStore",
    "StoreSession",
    "MemorySession",
    "MemoryStore",
    "MongoSession",
    "MongoStore",
    "MutationExecutor",
    "QueryCompiler",
    "ExponentialBackoff",
    "RetryPolicy",
    "TransactionRunner",
]
