"""Root conftest - shared fixtures."""

import pytest

from simfinity.runtime.dispatcher import Dispatcher
from simfinity.runtime.memory_store import MemoryStore
from simfinity.runtime.mutation_executor import MutationExecutor
from simfinity.runtime.query_compiler import QueryCompiler
from simfinity.runtime.transaction_executor import RetryPolicy

from tests.factories import build_registry, no_sleep


@pytest.fixture
def registry():
    """Finalized Customer/Order/LineItem/Address registry."""
    return build_registry()


@pytest.fixture
def store():
    """Fresh in-memory store."""
    return MemoryStore()


@pytest.fixture
def retry_policy():
    """Retry policy without real sleeping."""
    return RetryPolicy(max_attempts=3, sleep=no_sleep)


@pytest.fixture
def executor(registry, store, retry_policy):
    return MutationExecutor(registry, store, retry_policy)


@pytest.fixture
def compiler(registry):
    return QueryCompiler(registry)


@pytest.fixture
def dispatcher(registry, store, retry_policy):
    return Dispatcher(registry, store, retry_policy=retry_policy)
