"""Content negotiation, query encoding, URL resolution and body encoding.

Everything here is a plain function over request state. HttpRequest calls
these at dispatch time; they never mutate their inputs.

Dispatch rules (first match wins):

    effective content type   explicit override > JSON body > POST multipart/urlencoded > None
    parameter placement      urlencoded or multipart content type -> body, otherwise query string
    body serialization       multipart > urlencoded > raw bytes > stream > JSON > nothing
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping
from typing import Any, BinaryIO
from urllib.parse import quote

from requestkit.errors import ConfigurationError, EncodingError, TransportError
from requestkit.multipart import MULTIPART_CONTENT_TYPE, MultipartWriter
from requestkit.params import BinaryAttachment, HttpMethod, ParamValue
from requestkit.serializer import Serializer

logger = logging.getLogger(__name__)

APPLICATION_JSON = "application/json"
APPLICATION_X_WWW_FORM_URLENCODED = "application/x-www-form-urlencoded; charset=utf-8"

# Media type without parameters, for prefix matching against overrides
_FORM_URLENCODED_BASE = APPLICATION_X_WWW_FORM_URLENCODED.split(";")[0]

# Upper bound on how much of a written body is kept for debug logging
CAPTURE_LIMIT = 64 * 1024


# ---------------------------------------------------------------------------
# Content negotiation
# ---------------------------------------------------------------------------


def effective_content_type(
    method: str,
    content_type: str | None,
    has_body: bool,
    has_binary_attachment: bool,
) -> str | None:
    """Resolve the content type that governs body serialization.

    Args:
        method: HTTP method name.
        content_type: Explicit override, returned verbatim when set.
        has_body: Whether a body object is present.
        has_binary_attachment: Whether any parameter is a BinaryAttachment.

    Returns:
        The content type, or None when the request carries no body (e.g., GET).
    """
    if content_type is not None:
        return content_type

    if has_body:
        return APPLICATION_JSON

    if method == HttpMethod.POST.value:
        if has_binary_attachment:
            return MULTIPART_CONTENT_TYPE
        return APPLICATION_X_WWW_FORM_URLENCODED

    return None


def is_form_urlencoded(content_type: str | None) -> bool:
    """True if parameters belong in the body rather than the query string."""
    return content_type is not None and content_type.startswith(_FORM_URLENCODED_BASE)


def is_json(content_type: str | None) -> bool:
    """True for application/json (with or without parameters) and +json types."""
    if content_type is None:
        return False
    base = content_type.split(";")[0].strip().lower()
    return base == APPLICATION_JSON or base.endswith("+json")


def params_in_body(content_type: str | None) -> bool:
    """True if parameters are serialized into the body rather than the query string."""
    return content_type == MULTIPART_CONTENT_TYPE or is_form_urlencoded(content_type)


def has_binary_attachments(params: Mapping[str, ParamValue]) -> bool:
    return any(isinstance(value, BinaryAttachment) for value in params.values())


# ---------------------------------------------------------------------------
# Query strings and URLs
# ---------------------------------------------------------------------------


def url_encode(text: str) -> str:
    """Percent-encode text for a query component (RFC 3986, space -> %20)."""
    return quote(text, safe="")


def query_string(params: Mapping[str, ParamValue]) -> str:
    """Render parameters as ``key=value`` pairs joined by ``&``, in order.

    Only scalar text values have a single textual form. List and attachment
    values must go through multipart encoding instead.

    Raises:
        EncodingError: If any value is not scalar text, or text is not encodable as UTF-8.
    """
    if not params:
        return ""

    pairs = []
    for name, value in params.items():
        if not isinstance(value, str):
            raise EncodingError(
                f"Parameter '{name}' is a {_describe(value)} and cannot be encoded "
                f"in a query string; use multipart encoding"
            )
        try:
            pairs.append(f"{url_encode(name)}={url_encode(value)}")
        except UnicodeEncodeError as e:
            raise EncodingError(f"Parameter {name!r} is not encodable as UTF-8: {e}") from e

    return "&".join(pairs)


def concat_path(url: str | None, segment: object) -> str:
    """Append a path segment with exactly one '/' at the join.

    If url is None, the segment (converted with ``str()``) becomes the url.
    """
    path = str(segment)
    if url is None:
        return path

    if url.endswith("/"):
        return url + path[1:] if path.startswith("/") else url + path
    return url + path if path.startswith("/") else f"{url}/{path}"


def resolve_url(
    url: str | None,
    content_type: str | None,
    params: Mapping[str, ParamValue],
) -> str:
    """Build the URL to send, with the query string unless params go in the body.

    Raises:
        ConfigurationError: If no url has been set.
        EncodingError: If a parameter has no query-string form.
    """
    if url is None:
        raise ConfigurationError("Request has no url; call with_url() or path() first")

    if params_in_body(content_type):
        return url

    query = query_string(params)
    return f"{url}?{query}" if query else url


# ---------------------------------------------------------------------------
# Body encoding
# ---------------------------------------------------------------------------


class CapturingSink:
    """Forwards writes to a sink while keeping a bounded copy.

    Used for debug logging of request bodies. The wrapped sink receives
    exactly the same bytes it would have received without capture.
    """

    def __init__(self, sink: BinaryIO, limit: int = CAPTURE_LIMIT) -> None:
        self._sink = sink
        self._limit = limit
        self._captured = bytearray()
        self._total = 0

    def write(self, data: bytes) -> int:
        written = self._sink.write(data)
        self._total += len(data)
        room = self._limit - len(self._captured)
        if room > 0:
            self._captured += data[:room]
        return written if written is not None else len(data)

    def flush(self) -> None:
        self._sink.flush()

    @property
    def captured(self) -> bytes:
        return bytes(self._captured)

    @property
    def truncated(self) -> bool:
        return self._total > len(self._captured)

    def text(self) -> str:
        """Captured bytes as text. Not necessarily UTF-8, but the best guess available."""
        text = self._captured.decode("utf-8", errors="replace")
        if self.truncated:
            text += f"... [{self._total - len(self._captured)} more bytes]"
        return text


def write_body(
    content_type: str | None,
    params: Mapping[str, ParamValue],
    body: Any,
    serializer: Serializer,
    sink: BinaryIO,
) -> None:
    """Serialize the request body into sink.

    Any stream supplied as the body or as an attachment is consumed at most
    once and closed before returning, whether or not encoding succeeds.

    Raises:
        EncodingError: If a value cannot be represented in the chosen encoding.
        TransportError: If reading a stream or writing the sink fails.
    """
    capture = CapturingSink(sink) if logger.isEnabledFor(logging.DEBUG) else None
    out: Any = capture if capture is not None else sink

    try:
        if content_type == MULTIPART_CONTENT_TYPE:
            MultipartWriter(out).write(params)
        elif is_form_urlencoded(content_type):
            out.write(query_string(params).encode("utf-8"))
        elif isinstance(body, (bytes, bytearray, memoryview)):
            out.write(bytes(body))
        elif _is_stream(body):
            shutil.copyfileobj(body, out)
        elif is_json(content_type) and body is not None:
            serializer.dump(body, out)
    except OSError as e:
        raise TransportError(f"Failed writing request body: {e}") from e
    finally:
        release_streams(params, body)

    if capture is not None and capture.captured:
        logger.debug("Wrote body: %s", capture.text())


def _is_stream(value: Any) -> bool:
    return callable(getattr(value, "read", None))


def release_streams(params: Mapping[str, ParamValue], body: Any) -> None:
    """Close every attachment stream and a stream body. Closing twice is harmless."""
    streams = [value.stream for value in params.values() if isinstance(value, BinaryAttachment)]
    if _is_stream(body):
        streams.append(body)
    for stream in streams:
        close = getattr(stream, "close", None)
        if callable(close):
            close()


def _describe(value: Any) -> str:
    if isinstance(value, BinaryAttachment):
        return "binary attachment"
    if isinstance(value, tuple):
        return "list"
    return type(value).__name__
