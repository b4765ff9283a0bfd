"""
MongoDB document store.

Backs the DocumentStore contract with pymongo's asyncio client. Transactions
need a replica set (a single-node one is enough for development).

Usage:
    store = MongoStore.from_config(config.store)
    for schema in PersistenceSchemaBuilder(registry).build_all():
        await store.ensure_collection(schema)
    ...
    await store.close()
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Optional

from bson import ObjectId
from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import CollectionInvalid, DuplicateKeyError

from simfinity.core.errors import ValidationError
from simfinity.core.persistence import CollectionSchema

from .store import DocumentStore, StoreSession

logger = logging.getLogger(__name__)


async def _resolve(result: Any) -> Any:
    # pymongo's async session API returns coroutines for some calls only
    if inspect.isawaitable(result):
        return await result
    return result


class MongoSession(StoreSession):
    """Wraps a pymongo client session."""

    def __init__(self, raw: Any):
        self.raw = raw

    async def start_transaction(self) -> None:
        await _resolve(self.raw.start_transaction())

    async def commit_transaction(self) -> None:
        await _resolve(self.raw.commit_transaction())

    async def abort_transaction(self) -> None:
        await _resolve(self.raw.abort_transaction())

    async def end_session(self) -> None:
        await _resolve(self.raw.end_session())


def _raw(session: Optional[StoreSession]) -> Any:
    return session.raw if isinstance(session, MongoSession) else None


class MongoStore(DocumentStore):
    """DocumentStore over a MongoDB database."""

    def __init__(self, client: AsyncMongoClient, database: str):
        self.client = client
        self.db = client[database]

    @classmethod
    def from_config(cls, config: Any) -> "MongoStore":
        """Build from a StoreConfig (url, database)."""
        logger.info(f"Connecting to MongoDB database {config.database}")
        return cls(AsyncMongoClient(config.url), config.database)

    async def start_session(self) -> MongoSession:
        return MongoSession(await _resolve(self.client.start_session()))

    async def create(self, collection: str, document: dict, session: Optional[StoreSession] = None) -> dict:
        stored = dict(document)
        try:
            result = await self.db[collection].insert_one(stored, session=_raw(session))
        except DuplicateKeyError as e:
            raise ValidationError(f"Duplicate value in {collection}: {e.details}", cause=e)
        stored["_id"] = result.inserted_id
        logger.debug(f"Created {collection} {result.inserted_id}")
        return stored

    async def find_by_id(
        self, collection: str, object_id: ObjectId, session: Optional[StoreSession] = None
    ) -> Optional[dict]:
        return await self.db[collection].find_one({"_id": object_id}, session=_raw(session))

    async def find_by_id_and_update(
        self,
        collection: str,
        object_id: ObjectId,
        update: dict[str, Any],
        session: Optional[StoreSession] = None,
    ) -> Optional[dict]:
        try:
            return await self.db[collection].find_one_and_update(
                {"_id": object_id},
                update,
                return_document=ReturnDocument.AFTER,
                session=_raw(session),
            )
        except DuplicateKeyError as e:
            raise ValidationError(f"Duplicate value in {collection}: {e.details}", cause=e)

    async def find_by_id_and_delete(
        self, collection: str, object_id: ObjectId, session: Optional[StoreSession] = None
    ) -> Optional[dict]:
        return await self.db[collection].find_one_and_delete({"_id": object_id}, session=_raw(session))

    async def find(
        self, collection: str, query: Optional[dict] = None, session: Optional[StoreSession] = None
    ) -> list[dict]:
        cursor = self.db[collection].find(query or {}, session=_raw(session))
        return await cursor.to_list(None)

    async def aggregate(
        self, collection: str, pipeline: list[dict], session: Optional[StoreSession] = None
    ) -> list[dict]:
        cursor = await _resolve(self.db[collection].aggregate(pipeline, session=_raw(session)))
        return await cursor.to_list(None)

    async def ensure_collection(self, schema: CollectionSchema) -> None:
        try:
            await self.db.create_collection(schema.collection, validator=schema.validator)
            logger.info(f"Created collection {schema.collection}")
        except CollectionInvalid:
            await self.db.command("collMod", schema.collection, validator=schema.validator)
            logger.debug(f"Updated validator of {schema.collection}")

        for path in schema.unique_indexes:
            await self.db[schema.collection].create_index(path, unique=True)

    async def close(self) -> None:
        await _resolve(self.client.close())
