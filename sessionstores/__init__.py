"""
sessionstores - persistent backing stores for HTTP session managers

Usage:
    from datetime import timedelta
    from sessionstores import MongoSessionDatabase

    db = MongoSessionDatabase(uri="mongodb://localhost:27017", database="sessions")

    lifetime = await db.acquire(sid, timedelta(hours=1))
    await db.set(sid, lifetime, "name", "iris")
    name = await db.get(sid, "name")
"""

from sessionstores.base import InMemorySessionDatabase, LifeTime, SessionDatabase
from sessionstores.dgraph import DgraphSessionDatabase
from sessionstores.exceptions import (
    ConfigurationError,
    DatabaseNameMissingError,
    SessionKeyNotFoundError,
    SessionNotImplementedError,
    SessionStoreError,
    ValueDecodeError,
    ValueEncodeError,
)
from sessionstores.factory import create_session_database
from sessionstores.mongo import MongoSessionDatabase
from sessionstores.transcoder import JSONTranscoder, Transcoder

__all__ = [
    "ConfigurationError",
    "DatabaseNameMissingError",
    "DgraphSessionDatabase",
    "InMemorySessionDatabase",
    "JSONTranscoder",
    "LifeTime",
    "MongoSessionDatabase",
    "SessionDatabase",
    "SessionKeyNotFoundError",
    "SessionNotImplementedError",
    "SessionStoreError",
    "Transcoder",
    "ValueDecodeError",
    "ValueEncodeError",
    "create_session_database",
]
