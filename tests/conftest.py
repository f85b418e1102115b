"""
Shared fixtures: an in-process stand-in for the motor client used by
MongoSessionDatabase, plus store fixtures for the contract tests.
"""

import copy

import pytest
from pymongo.errors import InvalidName

from sessionstores.base import InMemorySessionDatabase
from sessionstores.mongo import MongoSessionDatabase


def _matches(doc: dict, query: dict) -> bool:
    for field, cond in query.items():
        if isinstance(cond, dict) and "$ne" in cond:
            if doc.get(field) == cond["$ne"]:
                return False
        elif doc.get(field) != cond:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for doc in self._docs:
            yield doc


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        self.indexes: list[tuple] = []
        self.dropped = False

    def _find(self, query: dict) -> dict | None:
        for doc in self.docs:
            if _matches(doc, query):
                return doc
        return None

    async def create_index(self, keys, unique: bool = False):
        self.indexes.append((keys, unique))
        return keys

    async def find_one_and_update(self, query, update, upsert=False, return_document=None):
        doc = self._find(query)
        if doc is not None:
            return copy.deepcopy(doc)
        if upsert:
            self.docs.append(dict(update.get("$setOnInsert", {})))
        return None

    async def update_one(self, query, update, upsert=False):
        doc = self._find(query)
        if doc is not None:
            doc.update(update["$set"])
        elif upsert:
            self.docs.append(dict(update["$set"]))

    async def find_one(self, query):
        doc = self._find(query)
        return copy.deepcopy(doc) if doc is not None else None

    def find(self, query):
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query)])

    async def count_documents(self, query):
        return sum(1 for d in self.docs if _matches(d, query))

    async def delete_one(self, query):
        doc = self._find(query)
        if doc is not None:
            self.docs.remove(doc)

    async def delete_many(self, query):
        self.docs = [d for d in self.docs if not _matches(d, query)]

    async def drop(self):
        self.docs = []
        self.indexes = []
        self.dropped = True


class FakeDatabase:
    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        # Same checks pymongo applies to collection names
        if not name or "$" in name or name.startswith(".") or name.endswith("."):
            raise InvalidName(f"invalid collection name: {name!r}")
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


class FakeMongoClient:
    def __init__(self):
        self.databases: dict[str, FakeDatabase] = {}
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase()
        return self.databases[name]

    def close(self):
        self.closed = True


@pytest.fixture
def mongo_client():
    return FakeMongoClient()


@pytest.fixture
def mongo_db(mongo_client):
    return MongoSessionDatabase.from_client(mongo_client, "sessions")


@pytest.fixture(params=["memory", "mongo"])
def store(request):
    if request.param == "memory":
        return InMemorySessionDatabase()
    return MongoSessionDatabase.from_client(FakeMongoClient(), "sessions")
