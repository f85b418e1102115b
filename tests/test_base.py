import pytest
from datetime import datetime, timedelta, timezone

from sessionstores.base import InMemorySessionDatabase, LifeTime
from sessionstores.exceptions import (
    SessionKeyNotFoundError,
    SessionNotImplementedError,
    ValueDecodeError,
)


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestLifeTime:
    def test_default(self):
        lifetime = LifeTime.default()
        assert lifetime.is_default
        assert lifetime.expires_at is None
        assert not lifetime.has_expired(NOW)
        assert lifetime.duration_left(NOW) == timedelta(0)

    def test_not_expired(self):
        lifetime = LifeTime(expires_at=NOW + timedelta(minutes=5))
        assert not lifetime.is_default
        assert not lifetime.has_expired(NOW)
        assert lifetime.duration_left(NOW) == timedelta(minutes=5)

    def test_expired(self):
        lifetime = LifeTime(expires_at=NOW - timedelta(seconds=1))
        assert lifetime.has_expired(NOW)
        assert lifetime.duration_left(NOW) == timedelta(0)


@pytest.fixture
def db():
    return InMemorySessionDatabase()


class TestInMemorySessionDatabase:
    @pytest.mark.asyncio
    async def test_values_are_stored_encoded(self, db):
        await db.set("s", LifeTime.default(), "name", "iris")
        assert db.sessions["s"]["name"] == "ImlyaXMi"  # base64 of '"iris"'

    @pytest.mark.asyncio
    async def test_immutable_flag_is_not_enforced(self, db):
        await db.set("s", LifeTime.default(), "name", "a", immutable=True)
        await db.set("s", LifeTime.default(), "name", "b", immutable=True)
        assert await db.get("s", "name") == "b"

    @pytest.mark.asyncio
    async def test_get_swallows_decode_error(self, db):
        db.sessions["s"] = {"broken": "not base64!"}
        assert await db.get("s", "broken") is None

    @pytest.mark.asyncio
    async def test_decode_reports_decode_error(self, db):
        db.sessions["s"] = {"broken": "not base64!"}
        with pytest.raises(ValueDecodeError):
            await db.decode("s", "broken")

    @pytest.mark.asyncio
    async def test_decode_missing_key_is_distinct(self, db):
        with pytest.raises(SessionKeyNotFoundError) as exc_info:
            await db.decode("s", "missing")
        assert exc_info.value.sid == "s"
        assert exc_info.value.key == "missing"

    @pytest.mark.asyncio
    async def test_visit_skips_undecodable(self, db):
        await db.set("s", LifeTime.default(), "good", 1)
        db.sessions["s"]["broken"] = "@@@"
        seen = {}
        await db.visit("s", lambda k, v: seen.__setitem__(k, v))
        assert seen == {"good": 1}

    @pytest.mark.asyncio
    async def test_update_expiration(self, db):
        await db.acquire("s", timedelta(minutes=1))
        await db.on_update_expiration("s", timedelta(hours=2))
        lifetime = await db.acquire("s", timedelta(minutes=1))
        assert lifetime.duration_left() > timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_update_expiration_unknown_session(self, db):
        with pytest.raises(SessionKeyNotFoundError):
            await db.on_update_expiration("nope", timedelta(hours=2))

    @pytest.mark.asyncio
    async def test_clear_and_release_unknown_session(self, db):
        await db.clear("nope")
        await db.release("nope")
        assert await db.len("nope") == 0


class TestUpdateExpirationNotImplemented:
    @pytest.mark.asyncio
    async def test_persistent_store_raises(self, mongo_db):
        with pytest.raises(SessionNotImplementedError, match="MongoSessionDatabase"):
            await mongo_db.on_update_expiration("s", timedelta(hours=1))
