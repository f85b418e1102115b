"""
Session database interface and in-memory implementation.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from structlog.types import FilteringBoundLogger

from sessionstores.exceptions import (
    SessionKeyNotFoundError,
    SessionNotImplementedError,
    ValueDecodeError,
)
from sessionstores.transcoder import (
    Transcoder,
    decode_value,
    default_transcoder,
    encode_value,
)
from sessionstores.utils.logging import get_logger

VisitCallback = Callable[[str, Any], Awaitable[None] | None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LifeTime:
    """
    Expiration of a session.

    A LifeTime without ``expires_at`` is the "use default" sentinel: the
    session manager applies the expiry from its own configuration.
    """

    expires_at: datetime | None = None

    @classmethod
    def default(cls) -> "LifeTime":
        return cls()

    @property
    def is_default(self) -> bool:
        return self.expires_at is None

    def has_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def duration_left(self, now: datetime | None = None) -> timedelta:
        if self.expires_at is None:
            return timedelta(0)
        left = self.expires_at - (now or utcnow())
        return left if left > timedelta(0) else timedelta(0)


class SessionDatabase(ABC):
    """
    Backing store for a session manager.

    Each session owns a bootstrap record (key == sid) holding its expiry.
    The bootstrap record is not a user entry: ``len``, ``visit`` and
    ``clear`` ignore it, ``release`` removes it.
    """

    def __init__(
        self,
        transcoder: Transcoder | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self.transcoder = transcoder or default_transcoder
        self.logger = logger or get_logger(type(self).__module__)

    # --- Lifecycle Methods ---

    async def close(self) -> None:
        """Close storage and release resources (optional)."""
        pass

    @abstractmethod
    async def acquire(self, sid: str, expires: timedelta) -> LifeTime:
        """
        Return the session's lifetime, creating the bootstrap record on first
        touch.

        Returns LifeTime.default() when the record was just created.
        """
        ...

    async def on_update_expiration(self, sid: str, new_expires: timedelta) -> None:
        """Update the session's expiry in place."""
        raise SessionNotImplementedError(
            f"{type(self).__name__} does not support updating expiration"
        )

    # --- Entry Operations ---

    @abstractmethod
    async def set(
        self,
        sid: str,
        lifetime: LifeTime,
        key: str,
        value: Any,
        immutable: bool = False,
    ) -> None:
        """Upsert a value. ``immutable`` is enforced by the session manager."""
        ...

    async def get(self, sid: str, key: str) -> Any | None:
        """Get a value, None when missing or undecodable."""
        try:
            return await self.decode(sid, key)
        except SessionKeyNotFoundError:
            return None
        except ValueDecodeError as e:
            self.logger.warning("session_value_undecodable", error=str(e), sid=sid, key=key)
            return None

    @abstractmethod
    async def decode(self, sid: str, key: str, into: type | None = None) -> Any:
        """
        Decode the value of ``key``.

        Raises:
            SessionKeyNotFoundError: no entry for the key
            ValueDecodeError: the stored payload cannot be decoded
        """
        ...

    @abstractmethod
    async def visit(self, sid: str, callback: VisitCallback) -> None:
        """Call ``callback(key, value)`` for every entry, in store order."""
        ...

    @abstractmethod
    async def len(self, sid: str) -> int:
        """Number of entries, bootstrap record excluded."""
        ...

    @abstractmethod
    async def delete(self, sid: str, key: str) -> bool:
        """Remove one entry. True when the backend reported no error."""
        ...

    @abstractmethod
    async def clear(self, sid: str) -> None:
        """Remove every entry but keep the session's bootstrap record."""
        ...

    @abstractmethod
    async def release(self, sid: str) -> None:
        """Destroy the session, bootstrap record included."""
        ...

    # --- Helpers ---

    def _encode(self, value: Any) -> str:
        return encode_value(self.transcoder, value)

    def _decode(self, text: str, into: type | None = None) -> Any:
        return decode_value(self.transcoder, text, into)

    def _bootstrap_value(self, expires: timedelta) -> str:
        return self._encode(utcnow() + expires)

    def _lifetime_from(self, sid: str, text: str) -> LifeTime:
        try:
            return LifeTime(expires_at=self._decode(text, datetime))
        except ValueDecodeError as e:
            self.logger.warning("session_lifetime_undecodable", error=str(e), sid=sid)
            return LifeTime.default()

    async def _call(self, callback: VisitCallback, key: str, value: Any) -> None:
        result = callback(key, value)
        if inspect.isawaitable(result):
            await result


class InMemorySessionDatabase(SessionDatabase):
    """
    In-memory implementation (for testing and development)
    """

    def __init__(
        self,
        transcoder: Transcoder | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        super().__init__(transcoder=transcoder, logger=logger)
        self.sessions: dict[str, dict[str, str]] = {}  # sid -> key -> base64 value

    async def acquire(self, sid: str, expires: timedelta) -> LifeTime:
        entries = self.sessions.setdefault(sid, {})
        if sid not in entries:
            entries[sid] = self._bootstrap_value(expires)
            return LifeTime.default()
        return self._lifetime_from(sid, entries[sid])

    async def on_update_expiration(self, sid: str, new_expires: timedelta) -> None:
        entries = self.sessions.get(sid)
        if entries is None or sid not in entries:
            raise SessionKeyNotFoundError(sid, sid)
        entries[sid] = self._bootstrap_value(new_expires)

    async def set(
        self,
        sid: str,
        lifetime: LifeTime,
        key: str,
        value: Any,
        immutable: bool = False,
    ) -> None:
        self.sessions.setdefault(sid, {})[key] = self._encode(value)

    async def decode(self, sid: str, key: str, into: type | None = None) -> Any:
        text = self.sessions.get(sid, {}).get(key)
        if text is None:
            raise SessionKeyNotFoundError(sid, key)
        return self._decode(text, into)

    async def visit(self, sid: str, callback: VisitCallback) -> None:
        for key, text in list(self.sessions.get(sid, {}).items()):
            if key == sid:
                continue
            try:
                value = self._decode(text)
            except ValueDecodeError as e:
                self.logger.warning("session_visit_skipped", error=str(e), sid=sid, key=key)
                continue
            await self._call(callback, key, value)

    async def len(self, sid: str) -> int:
        return sum(1 for key in self.sessions.get(sid, {}) if key != sid)

    async def delete(self, sid: str, key: str) -> bool:
        self.sessions.get(sid, {}).pop(key, None)
        return True

    async def clear(self, sid: str) -> None:
        entries = self.sessions.get(sid)
        if entries is None:
            return
        for key in [k for k in entries if k != sid]:
            del entries[key]

    async def release(self, sid: str) -> None:
        self.sessions.pop(sid, None)


__all__ = [
    "LifeTime",
    "SessionDatabase",
    "InMemorySessionDatabase",
    "VisitCallback",
    "utcnow",
]
