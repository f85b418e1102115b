"""
Session store exceptions.
"""


class SessionStoreError(Exception):
    """Base exception for all session store errors."""

    pass


class ConfigurationError(SessionStoreError):
    """Raised when a store is constructed with an invalid configuration."""

    pass


class DatabaseNameMissingError(ConfigurationError):
    """Raised when a MongoDB store is created without a database name."""

    def __init__(self) -> None:
        super().__init__("database name is required")


class SessionNotImplementedError(SessionStoreError):
    """
    Raised by operations a store does not support.

    The session manager does not log this one, callers should catch it.
    """

    pass


class SessionKeyNotFoundError(SessionStoreError, KeyError):
    """Raised when a key has no entry in the session."""

    def __init__(self, sid: str, key: str) -> None:
        super().__init__(f"key {key!r} not found in session {sid!r}")
        self.sid = sid
        self.key = key

    def __str__(self) -> str:
        return self.args[0]


class ValueEncodeError(SessionStoreError):
    """Raised when a value cannot be serialized for storage."""

    pass


class ValueDecodeError(SessionStoreError):
    """Raised when a stored payload cannot be decoded."""

    pass


__all__ = [
    "SessionStoreError",
    "ConfigurationError",
    "DatabaseNameMissingError",
    "SessionNotImplementedError",
    "SessionKeyNotFoundError",
    "ValueEncodeError",
    "ValueDecodeError",
]
