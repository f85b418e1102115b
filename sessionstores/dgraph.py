"""
Dgraph implementation of SessionDatabase.

Every entry is a node of type SessionEntry:

    sid:    session ID (hash index, @upsert)
    skey:   entry key (hash index, @upsert)
    svalue: base64 payload

The bootstrap node of a session has skey == sid. All DQL below is
parameterized with query variables; session IDs, keys and values are never
spliced into query or mutation text.
"""

import asyncio
from datetime import timedelta
from typing import Any

import grpc
import orjson
import pydgraph
from pydgraph.errors import AbortedError
from structlog.types import FilteringBoundLogger

from sessionstores.base import LifeTime, SessionDatabase, VisitCallback
from sessionstores.exceptions import (
    ConfigurationError,
    SessionKeyNotFoundError,
    ValueDecodeError,
)
from sessionstores.transcoder import Transcoder

SESSION_ENTRY_TYPE = "SessionEntry"

SCHEMA = """
sid: string @index(hash) @upsert .
skey: string @index(hash) @upsert .
svalue: string .
type SessionEntry {
    sid
    skey
    svalue
}
"""

SCHEMA_QUERY = "schema(type: SessionEntry) {}"

# Conflict detection on concurrent upserts needs @upsert on both keys
UPSERT_PREDICATES = {"sid", "skey"}
PREDICATE_QUERY = "schema(pred: [sid, skey]) { upsert }"

ENTRY_QUERY = """
query entry($sid: string, $key: string) {
    q(func: eq(skey, $key)) @filter(eq(sid, $sid)) {
        svalue
    }
}
"""

# Binds the matched node to v for upsert mutations
ENTRY_UPSERT_QUERY = """
query entry($sid: string, $key: string) {
    q(func: eq(skey, $key)) @filter(eq(sid, $sid)) {
        v as uid
        svalue
    }
}
"""

ENTRIES_QUERY = """
query entries($sid: string) {
    q(func: eq(sid, $sid)) @filter(NOT eq(skey, $sid)) {
        skey
        svalue
    }
}
"""

COUNT_QUERY = """
query entries($sid: string) {
    q(func: eq(sid, $sid)) @filter(NOT eq(skey, $sid)) {
        total: count(uid)
    }
}
"""

CLEAR_QUERY = """
query entries($sid: string) {
    v as var(func: eq(sid, $sid)) @filter(NOT eq(skey, $sid))
}
"""

RELEASE_QUERY = """
query session($sid: string) {
    v as var(func: eq(sid, $sid))
}
"""

DELETE_MATCHED = "uid(v) * * ."

# Dgraph RPC failures surface as grpc errors, aborted commits as AbortedError
DGRAPH_ERRORS = (grpc.RpcError, AbortedError)


class DgraphSessionDatabase(SessionDatabase):
    """
    Dgraph implementation of SessionDatabase.

    pydgraph is synchronous; each call runs in a worker thread.
    """

    def __init__(
        self,
        target: str | None = "127.0.0.1:9080",
        transcoder: Transcoder | None = None,
        logger: FilteringBoundLogger | None = None,
        stub: pydgraph.DgraphClientStub | None = None,
    ):
        if stub is None and not target:
            raise ConfigurationError("gRPC url is required")

        super().__init__(transcoder=transcoder, logger=logger)
        self.target = target
        # No credentials means an insecure channel
        self.stub = stub if stub is not None else pydgraph.DgraphClientStub(target)
        self.client = pydgraph.DgraphClient(self.stub)
        self._schema_ready = False

    @classmethod
    def from_stub(
        cls, stub: pydgraph.DgraphClientStub, **kwargs: Any
    ) -> "DgraphSessionDatabase":
        """Use an already-created (e.g. TLS) client stub."""
        return cls(target=None, stub=stub, **kwargs)

    # --- Lifecycle Methods ---

    async def _schema_is_current(self) -> bool:
        types = await self._query(SCHEMA_QUERY)
        if not types.get("types"):
            return False

        # Older deployments declared sid/skey without @upsert
        predicates = await self._query(PREDICATE_QUERY)
        upserted = {
            p.get("predicate")
            for p in predicates.get("schema") or []
            if p.get("upsert")
        }
        return UPSERT_PREDICATES <= upserted

    async def ensure_schema(self) -> None:
        """
        Declare the SessionEntry schema unless the server already has it.

        Altering is idempotent, so a schema missing the type or the @upsert
        directives is simply declared again.
        """
        if self._schema_ready:
            return

        try:
            if not await self._schema_is_current():
                await asyncio.to_thread(
                    self.client.alter, pydgraph.Operation(schema=SCHEMA)
                )
                self.logger.info("dgraph_schema_applied", type=SESSION_ENTRY_TYPE)
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_schema_failed", error=str(e))
            raise

        self._schema_ready = True

    async def close(self) -> None:
        """Terminate the gRPC connection."""
        await asyncio.to_thread(self.stub.close)
        self._schema_ready = False
        self.logger.info("dgraph_disconnected")

    # --- Transport ---

    def _query_sync(self, query: str, variables: dict[str, str] | None) -> dict:
        txn = self.client.txn(read_only=True)
        try:
            response = txn.query(query, variables=variables)
        finally:
            txn.discard()
        return orjson.loads(response.json) if response.json else {}

    def _upsert_sync(
        self, query: str, variables: dict[str, str], mutation_kwargs: dict
    ) -> dict:
        txn = self.client.txn()
        try:
            mutation = txn.create_mutation(**mutation_kwargs)
            request = txn.create_request(
                query=query,
                variables=variables,
                mutations=[mutation],
                commit_now=True,
            )
            response = txn.do_request(request)
        finally:
            txn.discard()
        return orjson.loads(response.json) if response.json else {}

    async def _query(self, query: str, variables: dict[str, str] | None = None) -> dict:
        return await asyncio.to_thread(self._query_sync, query, variables)

    async def _upsert(self, query: str, variables: dict[str, str], **mutation) -> dict:
        await self.ensure_schema()
        return await asyncio.to_thread(self._upsert_sync, query, variables, mutation)

    def _entry(self, sid: str, key: str, value: str, uid: str) -> dict:
        return {
            "uid": uid,
            "sid": sid,
            "skey": key,
            "svalue": value,
            "dgraph.type": SESSION_ENTRY_TYPE,
        }

    # --- Entry Operations ---

    async def acquire(self, sid: str, expires: timedelta) -> LifeTime:
        # The conditional mutation only fires when the bootstrap node is
        # missing; the query result of the same request reports what existed.
        try:
            result = await self._upsert(
                ENTRY_UPSERT_QUERY,
                {"$sid": sid, "$key": sid},
                set_obj=self._entry(sid, sid, self._bootstrap_value(expires), "_:entry"),
                cond="@if(eq(len(v), 0))",
            )
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_acquire_failed", error=str(e), sid=sid)
            raise

        existing = result.get("q") or []
        if not existing:
            return LifeTime.default()
        return self._lifetime_from(sid, existing[0].get("svalue", ""))

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
            await self._upsert(
                ENTRY_UPSERT_QUERY,
                {"$sid": sid, "$key": key},
                set_obj=self._entry(sid, key, encoded, "uid(v)"),
            )
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_set_failed", error=str(e), sid=sid, key=key)
            raise

    async def decode(self, sid: str, key: str, into: type | None = None) -> Any:
        await self.ensure_schema()

        try:
            result = await self._query(ENTRY_QUERY, {"$sid": sid, "$key": key})
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_decode_failed", error=str(e), sid=sid, key=key)
            raise

        entries = result.get("q") or []
        if not entries:
            raise SessionKeyNotFoundError(sid, key)

        value = entries[0].get("svalue")
        if not isinstance(value, str):
            raise ValueDecodeError(f"entry {key!r} has no string value")
        return self._decode(value, into)

    async def visit(self, sid: str, callback: VisitCallback) -> None:
        await self.ensure_schema()

        try:
            result = await self._query(ENTRIES_QUERY, {"$sid": sid})
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_visit_failed", error=str(e), sid=sid)
            raise

        for entry in result.get("q") or []:
            key = entry.get("skey")
            try:
                value = self._decode(entry.get("svalue", ""))
            except ValueDecodeError as e:
                self.logger.warning("session_visit_skipped", error=str(e), sid=sid, key=key)
                continue
            await self._call(callback, key, value)

    async def len(self, sid: str) -> int:
        await self.ensure_schema()

        try:
            result = await self._query(COUNT_QUERY, {"$sid": sid})
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_len_failed", error=str(e), sid=sid)
            raise

        counts = result.get("q") or []
        if not counts:
            return 0
        return int(counts[0].get("total", 0))

    async def delete(self, sid: str, key: str) -> bool:
        try:
            await self._upsert(
                ENTRY_UPSERT_QUERY,
                {"$sid": sid, "$key": key},
                del_nquads=DELETE_MATCHED,
            )
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_delete_failed", error=str(e), sid=sid, key=key)
            return False
        return True

    async def clear(self, sid: str) -> None:
        try:
            await self._upsert(CLEAR_QUERY, {"$sid": sid}, del_nquads=DELETE_MATCHED)
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_clear_failed", error=str(e), sid=sid)
            raise

    async def release(self, sid: str) -> None:
        try:
            await self._upsert(RELEASE_QUERY, {"$sid": sid}, del_nquads=DELETE_MATCHED)
        except DGRAPH_ERRORS as e:
            self.logger.error("dgraph_release_failed", error=str(e), sid=sid)
            raise


__all__ = ["DgraphSessionDatabase", "SCHEMA", "SESSION_ENTRY_TYPE"]
