"""HttpRequest - Immutable, composable description of an outbound request.

Every transformation returns a new HttpRequest that shares unchanged fields
with the original; nothing is ever mutated. Derived requests can therefore be
built concurrently from a shared base without coordination:

    base = HttpRequest().with_url("https://api.example.com").basic_auth("u", "p")
    users = base.path("users").with_param("limit", "10")
    upload = base.path("files").with_binary_param("file", stream, "image/png", "a.png")

Serialization is decided when the request is dispatched, from the request's
current state (see requestkit.encoding).
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, BinaryIO

from requestkit import encoding
from requestkit.errors import ConfigurationError, InvalidArgumentError, RequestKitError
from requestkit.params import BinaryAttachment, HttpMethod, Param, ParamValue, normalize_value
from requestkit.serializer import DEFAULT_SERIALIZER, Serializer

if TYPE_CHECKING:
    from requestkit.transport import HttpResponse, Transport

logger = logging.getLogger(__name__)


def _empty_mapping() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class HttpRequest:
    """Immutable definition of a request.

    Attributes:
        method: HTTP method name, "GET" by default.
        url: URL so far; can be extended with path().
        params: Ordered name -> value mapping. Values are str, tuple[str, ...]
            or BinaryAttachment.
        content_type: Explicit content type; overrides negotiation when set.
        body: Raw bytes, a binary stream, or a value to be serialized as JSON.
        headers: Ordered name -> value mapping, sent as-is.
        timeout: Timeout in milliseconds, 0 for the transport default.
        retries: Retry count, 0 for no retries.
        serializer: JSON serializer for the body and for response decoding.
        transport: Transport used by fetch().
    """

    method: str = HttpMethod.GET.value
    url: str | None = None
    params: Mapping[str, ParamValue] = field(default_factory=_empty_mapping)
    content_type: str | None = None
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=_empty_mapping)
    timeout: int = 0
    retries: int = 0
    # Neither has a useful string form
    serializer: Serializer = field(default=DEFAULT_SERIALIZER, repr=False, compare=False)
    transport: Transport | None = field(default=None, repr=False, compare=False)

    # params and headers are read-only proxies, which are not hashable
    __hash__ = None  # type: ignore[assignment]

    # -------------------------------------------------------------------------
    # Method
    # -------------------------------------------------------------------------

    def with_method(self, method: str | HttpMethod) -> HttpRequest:
        _require(method, "method")
        name = method.value if isinstance(method, HttpMethod) else str(method)
        return replace(self, method=name)

    def GET(self) -> HttpRequest:
        return self.with_method(HttpMethod.GET)

    def POST(self) -> HttpRequest:
        return self.with_method(HttpMethod.POST)

    def PUT(self) -> HttpRequest:
        return self.with_method(HttpMethod.PUT)

    def DELETE(self) -> HttpRequest:
        return self.with_method(HttpMethod.DELETE)

    # -------------------------------------------------------------------------
    # URL
    # -------------------------------------------------------------------------

    def with_url(self, url: str) -> HttpRequest:
        """Replace the url wholesale."""
        _require(url, "url")
        return replace(self, url=str(url))

    def path(self, segment: object) -> HttpRequest:
        """Append a path segment to the url, or use it as the url if none is set.

        Exactly one '/' separates the existing url and the segment. The
        segment is converted with str(), so ids can be passed directly.
        """
        _require(segment, "path")
        return self.with_url(encoding.concat_path(self.url, segment))

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    def with_param(self, name: str, value: str | Iterable[str]) -> HttpRequest:
        """Set or replace a parameter.

        A list (or any non-text iterable) is stored as an immutable tuple.
        Replacing an existing name keeps its position.
        """
        _require_name(name)
        normalized = normalize_value(value)
        if isinstance(normalized, BinaryAttachment):
            raise InvalidArgumentError("use with_binary_param() for binary attachments")
        return self._with_param_value(name, normalized)

    def with_params(self, *params: Param) -> HttpRequest:
        """Set or replace several parameters, applied in order."""
        here = self
        for param in params:
            _require(param, "param")
            here = here.with_param(param.name, param.value)
        return here

    def with_binary_param(
        self,
        name: str,
        stream: BinaryIO,
        content_type: str,
        filename: str,
    ) -> HttpRequest:
        """Set a binary attachment parameter AND switch the method to POST.

        The method change is part of the contract: attachments are only ever
        sent as multipart/form-data, which requires a POST. Calling GET() or
        PUT() afterwards is allowed but the request then has no body encoding
        that can carry the attachment.
        """
        _require_name(name)
        _require(stream, "stream")
        _require(content_type, "content_type")
        _require(filename, "filename")
        attachment = BinaryAttachment(stream=stream, content_type=content_type, filename=filename)
        return self.POST()._with_param_value(name, attachment)

    def _with_param_value(self, name: str, value: ParamValue) -> HttpRequest:
        return replace(self, params=MappingProxyType({**self.params, name: value}))

    # -------------------------------------------------------------------------
    # Body, headers and transport settings
    # -------------------------------------------------------------------------

    def with_body(self, body: Any) -> HttpRequest:
        """Provide a body: bytes and streams are sent verbatim, anything else as JSON.

        Passing None removes the body.
        """
        return replace(self, body=body)

    def with_content_type(self, content_type: str | None) -> HttpRequest:
        """Override the negotiated content type. None restores negotiation."""
        return replace(self, content_type=content_type)

    def with_header(self, name: str, value: str) -> HttpRequest:
        """Set or replace a header. The value is not encoded in any way."""
        _require_name(name)
        _require(value, "header value")
        return replace(self, headers=MappingProxyType({**self.headers, name: str(value)}))

    def basic_auth(self, username: str, password: str) -> HttpRequest:
        """Set the Authorization header for HTTP basic auth."""
        _require(username, "username")
        _require(password, "password")
        # There is no standard charset for basic auth; UTF-8 is the common choice
        token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        return self.with_header("Authorization", f"Basic {token}")

    def with_timeout(self, timeout: int) -> HttpRequest:
        """Set a timeout in milliseconds, or 0 for the transport default."""
        return replace(self, timeout=_non_negative(timeout, "timeout"))

    def with_retries(self, retries: int) -> HttpRequest:
        """Set a retry count, or 0 for no retries."""
        return replace(self, retries=_non_negative(retries, "retries"))

    def with_serializer(self, serializer: Serializer) -> HttpRequest:
        _require(serializer, "serializer")
        return replace(self, serializer=serializer)

    def with_transport(self, transport: Transport) -> HttpRequest:
        _require(transport, "transport")
        return replace(self, transport=transport)

    # -------------------------------------------------------------------------
    # Dispatch-time queries
    # -------------------------------------------------------------------------

    @property
    def is_post(self) -> bool:
        return self.method == HttpMethod.POST.value

    @property
    def effective_content_type(self) -> str | None:
        """Content type to submit with this request, or None if there is no body."""
        return encoding.effective_content_type(
            self.method,
            self.content_type,
            self.body is not None,
            encoding.has_binary_attachments(self.params),
        )

    @property
    def query(self) -> str:
        """Current query string, or "" if there are no parameters.

        Raises EncodingError if any parameter is a list or an attachment.
        """
        return encoding.query_string(self.params)

    @property
    def resolved_url(self) -> str:
        """The url to send, with the query string unless params go in the body."""
        return encoding.resolve_url(self.url, self.effective_content_type, self.params)

    def write_body(self, sink: BinaryIO) -> None:
        """Write any body content to sink, if appropriate for this request."""
        encoding.write_body(
            self.effective_content_type, self.params, self.body, self.serializer, sink
        )

    def release_streams(self) -> None:
        """Close attachment and body streams without sending them."""
        encoding.release_streams(self.params, self.body)

    def fetch(self) -> HttpResponse:
        """Send the request through its transport.

        Streams are released if the request cannot be dispatched.
        """
        try:
            if self.url is None:
                raise ConfigurationError("Request has no url; call with_url() or path() first")
            if self.transport is None:
                raise ConfigurationError("Request has no transport; call with_transport() first")
            url = self.resolved_url
        except RequestKitError:
            self.release_streams()
            raise

        logger.debug("Fetching %s", self)
        logger.debug("%s %s", self.method, url)

        return self.transport.fetch(self)


def _require(value: Any, what: str) -> None:
    if value is None:
        raise InvalidArgumentError(f"{what} is required")


def _require_name(name: Any) -> None:
    if not isinstance(name, str) or not name:
        raise InvalidArgumentError(f"name must be a non-empty string, got {name!r}")


def _non_negative(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"{what} must be an int, got {type(value).__name__}")
    if value < 0:
        raise InvalidArgumentError(f"{what} must be >= 0, got {value}")
    return value
