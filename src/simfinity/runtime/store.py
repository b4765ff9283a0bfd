"""
Base contract for document stores.

The executors only talk to a DocumentStore: sessions with transactions,
single-document reads and writes by identifier, finds and aggregation
pipelines. Every call is awaited; a ``session`` argument binds the call to
that session's transaction.

Invariants:
    - Documents are dicts keyed by ``_id`` (an ObjectId)
    - ``find_by_id_and_update`` returns the document after the update
    - Transient conflicts surface as exceptions carrying the
      ``TransientTransactionError`` label

Implementations:
    - MemoryStore: in-process, for tests and local development
    - MongoStore: MongoDB through pymongo's async client
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from bson import ObjectId

from simfinity.core.persistence import CollectionSchema


class StoreSession(ABC):
    """A client session able to run one transaction at a time."""

    @abstractmethod
    async def start_transaction(self) -> None:
        ...

    @abstractmethod
    async def commit_transaction(self) -> None:
        ...

    @abstractmethod
    async def abort_transaction(self) -> None:
        ...

    @abstractmethod
    async def end_session(self) -> None:
        ...


class DocumentStore(ABC):
    """Abstract document store used by the mutation executor and dispatcher."""

    @abstractmethod
    async def start_session(self) -> StoreSession:
        """Open a new session."""

    @abstractmethod
    async def create(self, collection: str, document: dict, session: Optional[StoreSession] = None) -> dict:
        """Insert a document, assigning ``_id`` when absent. Returns the stored document."""

    @abstractmethod
    async def find_by_id(
        self, collection: str, object_id: ObjectId, session: Optional[StoreSession] = None
    ) -> Optional[dict]:
        ...

    @abstractmethod
    async def find_by_id_and_update(
        self,
        collection: str,
        object_id: ObjectId,
        update: dict[str, Any],
        session: Optional[StoreSession] = None,
    ) -> Optional[dict]:
        """Apply ``{"$set": ..., "$unset": ...}`` and return the new document."""

    @abstractmethod
    async def find_by_id_and_delete(
        self, collection: str, object_id: ObjectId, session: Optional[StoreSession] = None
    ) -> Optional[dict]:
        """Remove a document and return it, or None when absent."""

    @abstractmethod
    async def find(
        self, collection: str, query: Optional[dict] = None, session: Optional[StoreSession] = None
    ) -> list[dict]:
        ...

    @abstractmethod
    async def aggregate(
        self, collection: str, pipeline: list[dict], session: Optional[StoreSession] = None
    ) -> list[dict]:
        ...

    @abstractmethod
    async def ensure_collection(self, schema: CollectionSchema) -> None:
        """Create the collection with its validator and unique indexes."""

    async def close(self) -> None:
        """Release connections. Override if the store holds any."""
