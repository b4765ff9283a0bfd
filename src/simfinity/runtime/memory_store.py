"""
In-memory document store for testing.

This module provides a DocumentStore kept entirely in process memory for:
- Unit and integration tests
- Local development without a MongoDB server

Invariants:
    - All data is lost on process exit
    - A transaction works on a private copy; commit publishes only the
      documents it touched, abort discards the copy
    - Aggregation supports the stages the query compiler emits:
      $lookup, $unwind, $match, $sort, $limit, $skip, $count
    - ``$jsonSchema`` validators are recorded but not enforced; unique
      indexes are enforced

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the DocumentStore contract
    - Add features to help with testing scenarios

Example:
    >>> store = MemoryStore()
    >>> doc = await store.create("Customer", {"name": "Ann"})
    >>> await store.find_by_id("Customer", doc["_id"])
"""

from __future__ import annotations

import copy
import logging
import re
from collections import defaultdict
from typing import Any, Iterable, Optional

from bson import ObjectId

from simfinity.core.errors import TransientTransactionError, ValidationError
from simfinity.core.persistence import CollectionSchema

from .store import DocumentStore, StoreSession

logger = logging.getLogger(__name__)


Collections = dict[str, dict[ObjectId, dict]]

_MISSING = object()


class MemorySession(StoreSession):
    """Session of a MemoryStore holding an optional transaction copy."""

    def __init__(self, store: "MemoryStore"):
        self.store = store
        self.in_transaction = False
        self.ended = False
        self._working: Optional[Collections] = None
        self._dirty: set[tuple[str, ObjectId]] = set()

    async def start_transaction(self) -> None:
        if self.in_transaction:
            raise RuntimeError("Transaction already in progress")
        self._working = copy.deepcopy(self.store._collections)
        self._dirty = set()
        self.in_transaction = True

    async def commit_transaction(self) -> None:
        if not self.in_transaction:
            raise RuntimeError("No transaction in progress")
        self.store._maybe_fail("commit")
        for collection, object_id in self._dirty:
            document = self._working.get(collection, {}).get(object_id)
            if document is None:
                self.store._collections[collection].pop(object_id, None)
            else:
                self.store._collections[collection][object_id] = document
        self.store.commits += 1
        self._reset()

    async def abort_transaction(self) -> None:
        if not self.in_transaction:
            raise RuntimeError("No transaction in progress")
        self.store.aborts += 1
        self._reset()

    async def end_session(self) -> None:
        if self.in_transaction:
            await self.abort_transaction()
        self.ended = True

    def _reset(self) -> None:
        self._working = None
        self._dirty = set()
        self.in_transaction = False


class MemoryStore(DocumentStore):
    """In-memory implementation of DocumentStore.

    Attributes:
        commits: Number of committed transactions
        aborts: Number of aborted transactions
        schemas: CollectionSchema per collection passed to ensure_collection
    """

    def __init__(self) -> None:
        self._collections: Collections = defaultdict(dict)
        self.schemas: dict[str, CollectionSchema] = {}
        self.commits = 0
        self.aborts = 0
        self._failures: dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def inject_transient_failures(self, count: int, operation: str = "create") -> None:
        """Make the next ``count`` calls of ``operation`` raise a transient error."""
        self._failures[operation] = count

    def _maybe_fail(self, operation: str) -> None:
        remaining = self._failures.get(operation, 0)
        if remaining > 0:
            self._failures[operation] = remaining - 1
            logger.debug(f"Injected transient failure on {operation}")
            raise TransientTransactionError(f"Write conflict during {operation}")

    def documents(self, collection: str) -> list[dict]:
        """Committed documents of a collection (copies)."""
        return [copy.deepcopy(d) for d in self._collections.get(collection, {}).values()]

    # -------------------------------------------------------------------------
    # DocumentStore
    # -------------------------------------------------------------------------

    async def start_session(self) -> MemorySession:
        return MemorySession(self)

    def _view(self, session: Optional[StoreSession]) -> Collections:
        if isinstance(session, MemorySession) and session.in_transaction:
            return session._working
        return self._collections

    def _write(self, session: Optional[StoreSession], collection: str, object_id: ObjectId, document: Optional[dict]):
        view = self._view(session)
        bucket = view.setdefault(collection, {})
        if document is None:
            bucket.pop(object_id, None)
        else:
            bucket[object_id] = document
        if isinstance(session, MemorySession) and session.in_transaction:
            session._dirty.add((collection, object_id))

    def _check_unique(self, view: Collections, collection: str, document: dict) -> None:
        schema = self.schemas.get(collection)
        if schema is None:
            return
        for path in schema.unique_indexes:
            values = [v for v in _resolve(document, path) if v is not None]
            if not values:
                continue
            for other in view.get(collection, {}).values():
                if other["_id"] == document["_id"]:
                    continue
                if any(v in values for v in _resolve(other, path)):
                    raise ValidationError(f"Duplicate value for unique field {collection}.{path}")

    async def create(self, collection: str, document: dict, session: Optional[StoreSession] = None) -> dict:
        self._maybe_fail("create")
        stored = copy.deepcopy(document)
        stored.setdefault("_id", ObjectId())
        view = self._view(session)
        if stored["_id"] in view.get(collection, {}):
            raise ValidationError(f"Duplicate _id {stored['_id']} in {collection}")
        self._check_unique(view, collection, stored)
        self._write(session, collection, stored["_id"], stored)
        logger.debug(f"Created {collection} {stored['_id']}")
        return copy.deepcopy(stored)

    async def find_by_id(
        self, collection: str, object_id: ObjectId, session: Optional[StoreSession] = None
    ) -> Optional[dict]:
        document = self._view(session).get(collection, {}).get(object_id)
        return copy.deepcopy(document) if document is not None else None

    async def find_by_id_and_update(
        self,
        collection: str,
        object_id: ObjectId,
        update: dict[str, Any],
        session: Optional[StoreSession] = None,
    ) -> Optional[dict]:
        self._maybe_fail("update")
        view = self._view(session)
        current = view.get(collection, {}).get(object_id)
        if current is None:
            return None

        updated = copy.deepcopy(current)
        for path, value in update.get("$set", {}).items():
            _set_path(updated, path, copy.deepcopy(value))
        for path in update.get("$unset", {}):
            _unset_path(updated, path)

        self._check_unique(view, collection, updated)
        self._write(session, collection, object_id, updated)
        logger.debug(f"Updated {collection} {object_id}")
        return copy.deepcopy(updated)

    async def find_by_id_and_delete(
        self, collection: str, object_id: ObjectId, session: Optional[StoreSession] = None
    ) -> Optional[dict]:
        self._maybe_fail("delete")
        current = self._view(session).get(collection, {}).get(object_id)
        if current is None:
            return None
        self._write(session, collection, object_id, None)
        logger.debug(f"Deleted {collection} {object_id}")
        return copy.deepcopy(current)

    async def find(
        self, collection: str, query: Optional[dict] = None, session: Optional[StoreSession] = None
    ) -> list[dict]:
        documents = self._view(session).get(collection, {}).values()
        return [copy.deepcopy(d) for d in documents if _matches(d, query or {})]

    async def aggregate(
        self, collection: str, pipeline: list[dict], session: Optional[StoreSession] = None
    ) -> list[dict]:
        view = self._view(session)
        documents = [copy.deepcopy(d) for d in view.get(collection, {}).values()]

        for stage in pipeline:
            (operator, spec), = stage.items()
            if operator == "$lookup":
                documents = _lookup(documents, spec, view)
            elif operator == "$unwind":
                documents = list(_unwind(documents, spec))
            elif operator == "$match":
                documents = [d for d in documents if _matches(d, spec)]
            elif operator == "$sort":
                documents = _sort(documents, spec)
            elif operator == "$limit":
                documents = documents[:spec]
            elif operator == "$skip":
                documents = documents[spec:]
            elif operator == "$count":
                documents = [{spec: len(documents)}] if documents else []
            else:
                raise ValueError(f"Unsupported aggregation stage: {operator}")

        return documents

    async def ensure_collection(self, schema: CollectionSchema) -> None:
        self.schemas[schema.collection] = schema
        self._collections.setdefault(schema.collection, {})


# =============================================================================
# Document helpers
# =============================================================================


def _resolve(document: Any, path: str) -> list[Any]:
    """All values addressed by a dotted path, descending through arrays."""
    values = [document]
    for segment in path.split("."):
        found = []
        for value in values:
            if isinstance(value, list):
                candidates = value
            else:
                candidates = [value]
            for candidate in candidates:
                if isinstance(candidate, dict) and segment in candidate:
                    found.append(candidate[segment])
        values = found
    return values


def _flatten(values: Iterable[Any]) -> list[Any]:
    flat = []
    for value in values:
        if isinstance(value, list):
            flat.extend(value)
        else:
            flat.append(value)
    return flat


def _set_path(document: dict, path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    target = document
    for segment in parents:
        target = target.setdefault(segment, {})
    target[leaf] = value


def _unset_path(document: dict, path: str) -> None:
    *parents, leaf = path.split(".")
    target = document
    for segment in parents:
        target = target.get(segment)
        if not isinstance(target, dict):
            return
    target.pop(leaf, None)


def _compare(left: Any, right: Any, operator: str) -> bool:
    try:
        if operator == "$lt":
            return left < right
        if operator == "$lte":
            return left <= right
        if operator == "$gt":
            return left > right
        if operator == "$gte":
            return left >= right
    except TypeError:
        return False
    raise ValueError(f"Unsupported comparison operator: {operator}")


def _condition_holds(values: list[Any], condition: Any) -> bool:
    candidates = _flatten(values)
    if not isinstance(condition, dict) or not any(k.startswith("$") for k in condition):
        return condition in candidates or (condition is None and not candidates)

    for operator, operand in condition.items():
        if operator == "$eq":
            ok = operand in candidates
        elif operator == "$ne":
            ok = operand not in candidates
        elif operator == "$in":
            ok = any(c in operand for c in candidates) or (None in operand and not candidates)
        elif operator == "$nin":
            ok = not any(c in operand for c in candidates)
        elif operator == "$regex":
            pattern = re.compile(operand)
            ok = any(isinstance(c, str) and pattern.search(c) for c in candidates)
        elif operator in ("$lt", "$lte", "$gt", "$gte"):
            ok = any(_compare(c, operand, operator) for c in candidates if c is not None)
        else:
            raise ValueError(f"Unsupported match operator: {operator}")
        if not ok:
            return False
    return True


def _matches(document: dict, query: dict) -> bool:
    for key, condition in query.items():
        if key == "$and":
            if not all(_matches(document, sub) for sub in condition):
                return False
            continue
        if key == "$or":
            if not any(_matches(document, sub) for sub in condition):
                return False
            continue
        if not _condition_holds(_resolve(document, key), condition):
            return False
    return True


def _lookup(documents: list[dict], spec: dict, view: Collections) -> list[dict]:
    foreign = list(view.get(spec["from"], {}).values())
    for document in documents:
        local_values = _flatten(_resolve(document, spec["localField"]))
        document[spec["as"]] = [
            copy.deepcopy(other)
            for other in foreign
            if any(v in local_values for v in _flatten(_resolve(other, spec["foreignField"])))
        ]
    return documents


def _unwind(documents: list[dict], spec: Any):
    if isinstance(spec, str):
        spec = {"path": spec}
    field = spec["path"].lstrip("$")
    preserve = spec.get("preserveNullAndEmptyArrays", False)

    for document in documents:
        value = document.get(field, _MISSING)
        if value is _MISSING or value is None or value == []:
            if preserve:
                if value == []:
                    document = {k: v for k, v in document.items() if k != field}
                yield document
            continue
        if not isinstance(value, list):
            yield document
            continue
        for item in value:
            unwound = dict(document)
            unwound[field] = item
            yield unwound


def _sort_key(value: Any) -> tuple:
    return (0, 0) if value is None else (1, value)


def _sort(documents: list[dict], spec: dict) -> list[dict]:
    # Stable sorts applied from the least significant key
    for key, direction in reversed(list(spec.items())):
        documents = sorted(
            documents,
            key=lambda d: _sort_key(next(iter(_resolve(d, key)), None)),
            reverse=direction == -1,
        )
    return documents
