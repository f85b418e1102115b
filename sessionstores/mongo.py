"""
MongoDB implementation of SessionDatabase.
"""

from collections import OrderedDict
from datetime import timedelta
from typing import Any

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from structlog.types import FilteringBoundLogger

from sessionstores.base import LifeTime, SessionDatabase, VisitCallback
from sessionstores.exceptions import (
    ConfigurationError,
    DatabaseNameMissingError,
    SessionKeyNotFoundError,
    ValueDecodeError,
)
from sessionstores.transcoder import Transcoder


class MongoSessionDatabase(SessionDatabase):
    """
    MongoDB implementation of SessionDatabase.

    Layout:
    - one collection per session, named after the session ID
    - one document per entry: {"key": <key>, "value": <base64 payload>}
    - the bootstrap document has key == sid and holds the encoded expiry

    Each session collection carries a unique index on "key". The store
    remembers the most recently indexed sessions (up to index_cache_size)
    so acquire does not re-send create_index on every request.
    """

    def __init__(
        self,
        uri: str | None = "mongodb://localhost:27017",
        database: str = "sessions",
        transcoder: Transcoder | None = None,
        logger: FilteringBoundLogger | None = None,
        client: AsyncIOMotorClient | None = None,
        index_cache_size: int = 10_000,
    ):
        if not database:
            raise DatabaseNameMissingError()
        if client is None and not uri:
            raise ConfigurationError("mongo uri is required")
        if index_cache_size < 0:
            raise ConfigurationError("index_cache_size must not be negative")

        super().__init__(transcoder=transcoder, logger=logger)
        self.uri = uri
        self.database = database
        self.client: AsyncIOMotorClient | None = client
        self.db: AsyncIOMotorDatabase | None = None
        self.index_cache_size = index_cache_size
        self._indexed: OrderedDict[str, None] = OrderedDict()

    @classmethod
    def from_client(
        cls,
        client: AsyncIOMotorClient,
        database: str,
        **kwargs: Any,
    ) -> "MongoSessionDatabase":
        """Use an already-configured client instead of connecting by URI."""
        return cls(uri=None, database=database, client=client, **kwargs)

    async def _ensure_connection(self) -> AsyncIOMotorDatabase:
        """Ensure database connection is established."""
        if self.client is None:
            self.client = AsyncIOMotorClient(self.uri)
            self.logger.info("mongodb_connected", database=self.database)
        if self.db is None:
            self.db = self.client[self.database]
        return self.db

    async def _collection(self, sid: str) -> AsyncIOMotorCollection:
        db = await self._ensure_connection()
        return db[sid]

    async def _ensure_index(self, sid: str, collection: AsyncIOMotorCollection) -> None:
        if sid in self._indexed:
            self._indexed.move_to_end(sid)
            return

        await collection.create_index("key", unique=True)
        if self.index_cache_size == 0:
            return
        self._indexed[sid] = None
        while len(self._indexed) > self.index_cache_size:
            self._indexed.popitem(last=False)

    async def close(self) -> None:
        """Close MongoDB connection."""
        if self.client is not None:
            self.client.close()
            self.client = None
            self.db = None
            self._indexed.clear()
            self.logger.info("mongodb_disconnected")

    async def acquire(self, sid: str, expires: timedelta) -> LifeTime:
        try:
            collection = await self._collection(sid)
            await self._ensure_index(sid, collection)

            # Insert-if-absent and read in one round trip
            previous = await collection.find_one_and_update(
                {"key": sid},
                {"$setOnInsert": {"key": sid, "value": self._bootstrap_value(expires)}},
                upsert=True,
                return_document=ReturnDocument.BEFORE,
            )
        except PyMongoError as e:
            self.logger.error("mongo_acquire_failed", error=str(e), sid=sid)
            raise

        if previous is None:
            return LifeTime.default()
        return self._lifetime_from(sid, previous.get("value", ""))

    async def set(
        self,
        sid: str,
        lifetime: LifeTime,
        key: str,
        value: Any,
        immutable: bool = False,
    ) -> None:
        encoded = self._encode(value)

        try:
            collection = await self._collection(sid)
            await collection.update_one(
                {"key": key},
                {"$set": {"key": key, "value": encoded}},
                upsert=True,
            )
        except PyMongoError as e:
            self.logger.error("mongo_set_failed", error=str(e), sid=sid, key=key)
            raise

    async def decode(self, sid: str, key: str, into: type | None = None) -> Any:
        try:
            collection = await self._collection(sid)
            doc = await collection.find_one({"key": key})
        except PyMongoError as e:
            self.logger.error("mongo_decode_failed", error=str(e), sid=sid, key=key)
            raise

        if doc is None:
            raise SessionKeyNotFoundError(sid, key)

        value = doc.get("value")
        if not isinstance(value, str):
            raise ValueDecodeError(f"entry {key!r} has no string value")
        return self._decode(value, into)

    async def visit(self, sid: str, callback: VisitCallback) -> None:
        try:
            collection = await self._collection(sid)
            async for doc in collection.find({"key": {"$ne": sid}}):
                key = doc.get("key")
                try:
                    value = self._decode(doc.get("value", ""))
                except ValueDecodeError as e:
                    self.logger.warning(
                        "session_visit_skipped", error=str(e), sid=sid, key=key
                    )
                    continue
                await self._call(callback, key, value)
        except PyMongoError as e:
            self.logger.error("mongo_visit_failed", error=str(e), sid=sid)
            raise

    async def len(self, sid: str) -> int:
        try:
            collection = await self._collection(sid)
            return await collection.count_documents({"key": {"$ne": sid}})
        except PyMongoError as e:
            self.logger.error("mongo_len_failed", error=str(e), sid=sid)
            raise

    async def delete(self, sid: str, key: str) -> bool:
        try:
            collection = await self._collection(sid)
            await collection.delete_one({"key": key})
        except PyMongoError as e:
            self.logger.error("mongo_delete_failed", error=str(e), sid=sid, key=key)
            return False
        return True

    async def clear(self, sid: str) -> None:
        try:
            collection = await self._collection(sid)
            await collection.delete_many({"key": {"$ne": sid}})
        except PyMongoError as e:
            self.logger.error("mongo_clear_failed", error=str(e), sid=sid)
            raise

    async def release(self, sid: str) -> None:
        try:
            collection = await self._collection(sid)
            await collection.drop()
        except PyMongoError as e:
            self.logger.error("mongo_release_failed", error=str(e), sid=sid)
            raise
        self._indexed.pop(sid, None)


__all__ = ["MongoSessionDatabase"]
