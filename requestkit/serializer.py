"""JSON serialization for request bodies and response payloads.

The serializer is pluggable per request (HttpRequest.with_serializer()). The
default implementation uses pydantic-core so that pydantic models,
dataclasses, datetimes and UUIDs serialize without extra configuration.
"""

from __future__ import annotations

import json
from typing import Any, BinaryIO, Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_json

from requestkit.errors import EncodingError

T = TypeVar("T")


class Serializer(Protocol):
    """Structured value <-> JSON bytes."""

    def dump(self, value: Any, sink: BinaryIO) -> None: ...

    def load(self, data: bytes, type_: type[T] | None = None) -> Any: ...


class JsonSerializer:
    """Default serializer backed by pydantic-core.

    Args:
        by_alias: Use field aliases when dumping pydantic models.
        exclude_none: Drop None-valued fields of pydantic models and dataclasses.
    """

    def __init__(self, by_alias: bool = True, exclude_none: bool = False) -> None:
        self._by_alias = by_alias
        self._exclude_none = exclude_none

    def dumps(self, value: Any) -> bytes:
        try:
            return to_json(value, by_alias=self._by_alias, exclude_none=self._exclude_none)
        except PydanticSerializationError as e:
            raise EncodingError(f"Cannot serialize {type(value).__name__} as JSON: {e}") from e

    def dump(self, value: Any, sink: BinaryIO) -> None:
        sink.write(self.dumps(value))

    def load(self, data: bytes, type_: type[T] | None = None) -> Any:
        """Decode JSON bytes, validating into ``type_`` when one is given."""
        if type_ is None:
            try:
                return json.loads(data)
            except ValueError as e:
                raise EncodingError(f"Invalid JSON: {e}") from e
        try:
            return TypeAdapter(type_).validate_json(data)
        except ValidationError as e:
            raise EncodingError(f"JSON does not match {type_!r}: {e}") from e

    def __repr__(self) -> str:
        return f"JsonSerializer(by_alias={self._by_alias}, exclude_none={self._exclude_none})"


DEFAULT_SERIALIZER = JsonSerializer()
