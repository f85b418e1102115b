"""
Centralized factory for creating session databases based on settings.

Default = in-memory store.
"""

from sessionstores.base import InMemorySessionDatabase, SessionDatabase
from sessionstores.config.settings import SessionStoreSettings
from sessionstores.config.settings import settings as default_settings
from sessionstores.dgraph import DgraphSessionDatabase
from sessionstores.mongo import MongoSessionDatabase


def create_session_database(
    settings: SessionStoreSettings | None = None,
) -> SessionDatabase:
    """
    Create a SessionDatabase based on settings.

    Persistent stores connect lazily, so creating one does not touch the
    network.
    """
    settings = settings or default_settings
    store_type = settings.default_store

    if store_type == "memory":
        return InMemorySessionDatabase()
    if store_type == "mongo":
        return MongoSessionDatabase(
            uri=settings.mongo_uri,
            database=settings.mongo_db_name,
            index_cache_size=settings.mongo_index_cache_size,
        )
    if store_type == "dgraph":
        return DgraphSessionDatabase(target=settings.dgraph_target)

    raise ValueError(f"Unknown session store type: {store_type}")


__all__ = ["create_session_database"]
