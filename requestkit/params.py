"""Parameter values and HTTP methods.

A parameter value is one of three shapes:

- ``str``: a scalar text value
- ``tuple[str, ...]``: an immutable ordered list of text values
- ``BinaryAttachment``: a byte stream plus declared content type and filename

Encoders dispatch on these shapes with ``isinstance``; nothing else is stored
in ``HttpRequest.params``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Union

from requestkit.errors import InvalidArgumentError


class HttpMethod(str, Enum):
    """Standard HTTP methods. Any other method name may be passed as text."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


@dataclass(frozen=True)
class BinaryAttachment:
    """A file-like payload destined for a multipart/form-data part.

    The stream is single-use: it is consumed and closed by the one
    write_body() call that encodes it.
    """

    stream: BinaryIO
    content_type: str
    filename: str


ParamValue = Union[str, tuple[str, ...], BinaryAttachment]


@dataclass(frozen=True)
class Param:
    """A name/value pair for setting several parameters at once."""

    name: str
    value: str | Iterable[str]


def normalize_value(value: object) -> ParamValue:
    """Coerce caller input to a ParamValue.

    Text passes through, other scalars are converted with ``str()``, and any
    other iterable becomes a tuple of text.
    """
    if value is None:
        raise InvalidArgumentError("parameter value must not be None")
    if isinstance(value, (str, BinaryAttachment)):
        return value
    if isinstance(value, (bytes, bytearray)):
        raise InvalidArgumentError(
            "bytes parameter values are not supported; use with_binary_param() for binary data"
        )
    if isinstance(value, Iterable):
        items = tuple(value)
        if any(item is None for item in items):
            raise InvalidArgumentError("list parameter values must not contain None")
        return tuple(str(item) for item in items)
    return str(value)
