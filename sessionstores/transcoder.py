"""
Value transcoding for session entries.

Entry values are serialized by a Transcoder and stored as standard base64
text, so both backends only ever persist plain strings.
"""

import base64
import binascii
from functools import lru_cache
from typing import Any, Protocol, runtime_checkable

import orjson
from pydantic import BaseModel, TypeAdapter, ValidationError

from sessionstores.exceptions import ValueDecodeError, ValueEncodeError


@runtime_checkable
class Transcoder(Protocol):
    """Serializes session values to bytes and back."""

    def marshal(self, value: Any) -> bytes: ...

    def unmarshal(self, data: bytes, into: type | None = None) -> Any: ...


def _default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


@lru_cache(maxsize=256)
def _adapter(into: Any) -> TypeAdapter:
    return TypeAdapter(into)


class JSONTranscoder:
    """
    Default transcoder.

    Encodes with orjson (dataclasses, datetimes and pydantic models included).
    Decoding without a target type returns plain JSON values; with a target
    type the payload is validated through pydantic.
    """

    def marshal(self, value: Any) -> bytes:
        return orjson.dumps(value, default=_default)

    def unmarshal(self, data: bytes, into: type | None = None) -> Any:
        if into is None:
            return orjson.loads(data)
        return _adapter(into).validate_json(data)


default_transcoder = JSONTranscoder()


def encode_value(transcoder: Transcoder, value: Any) -> str:
    """Serialize a value and return it as base64 text."""
    try:
        raw = transcoder.marshal(value)
    except (TypeError, ValueError) as e:
        raise ValueEncodeError(f"cannot serialize {type(value).__name__}: {e}") from e
    return base64.b64encode(raw).decode("ascii")


def decode_value(transcoder: Transcoder, text: str, into: type | None = None) -> Any:
    """Inverse of encode_value."""
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise ValueDecodeError(f"invalid base64 payload: {e}") from e

    try:
        return transcoder.unmarshal(raw, into)
    except (orjson.JSONDecodeError, ValidationError, TypeError, ValueError) as e:
        raise ValueDecodeError(f"cannot deserialize payload: {e}") from e


__all__ = [
    "Transcoder",
    "JSONTranscoder",
    "default_transcoder",
    "encode_value",
    "decode_value",
]
