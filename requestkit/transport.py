"""Transport - Sends HttpRequest descriptors and wraps the responses.

The descriptor decides what goes on the wire (resolved_url,
effective_content_type, write_body); the transport only moves bytes.
HttpxTransport is the default implementation, backed by an httpx.Client.
"""

from __future__ import annotations

import io
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from requestkit.errors import HttpStatusError, RequestKitError, TransportError
from requestkit.serializer import Serializer

if TYPE_CHECKING:
    from requestkit.request import HttpRequest

logger = logging.getLogger(__name__)

# Failures where resending the same bytes is safe and may succeed
_RETRYABLE_ERRORS = (httpx.ConnectError, httpx.TimeoutException)


class Transport(Protocol):
    def fetch(self, request: HttpRequest) -> HttpResponse: ...


class HttpResponse:
    """Response wrapper that decodes JSON with the request's serializer."""

    def __init__(self, response: httpx.Response, serializer: Serializer) -> None:
        self._response = response
        self._serializer = serializer

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def content(self) -> bytes:
        return self._response.content

    @property
    def text(self) -> str:
        return self._response.text

    @property
    def content_type(self) -> str | None:
        return self._response.headers.get("content-type")

    @property
    def succeeded(self) -> bool:
        return self._response.status_code < 400

    @property
    def elapsed_ms(self) -> float:
        return self._response.elapsed.total_seconds() * 1000

    def json(self, type_: type[Any] | None = None) -> Any:
        """Decode the body as JSON, validated into ``type_`` if given."""
        return self._serializer.load(self._response.content, type_)

    def raise_for_status(self) -> HttpResponse:
        """Raise HttpStatusError for 4xx/5xx responses; return self otherwise."""
        if not self.succeeded:
            request = self._response.request
            raise HttpStatusError(
                f"{self.status_code} {self._response.reason_phrase} "
                f"for {request.method} {request.url}",
                self.status_code,
                self._response.text,
            )
        return self

    def __repr__(self) -> str:
        return f"<HttpResponse [{self.status_code}]>"


class HttpxTransport:
    """Sends requests with an httpx.Client.

    Usage:
        with HttpxTransport() as transport:
            response = HttpRequest().with_transport(transport).with_url(url).fetch()

    Args:
        client: Client to send with. If omitted, one is created and owned
            (closed by close()).
        default_timeout: Timeout in seconds for requests whose timeout is 0.
            Only used when the transport creates its own client.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        default_timeout: float = 30.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=default_timeout)

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch(self, request: HttpRequest) -> HttpResponse:
        """Send the request, retrying connection and timeout failures.

        The body is rendered once, so retries resend identical bytes even
        when the body came from a single-use stream. Streams are released
        if the url cannot be resolved.

        Raises:
            ConfigurationError: If the request has no url.
            EncodingError: If the parameters cannot be encoded.
            TransportError: If the request fails after all attempts.
        """
        content_type = request.effective_content_type
        try:
            url = request.resolved_url
        except RequestKitError:
            request.release_streams()
            raise

        headers = dict(request.headers)
        if content_type is not None and "content-type" not in {k.lower() for k in headers}:
            headers["Content-Type"] = content_type

        # write_body releases the streams it consumes, on success or failure
        content: bytes | None = None
        if content_type is not None:
            buffer = io.BytesIO()
            request.write_body(buffer)
            content = buffer.getvalue()

        timeout: Any = request.timeout / 1000 if request.timeout else httpx.USE_CLIENT_DEFAULT
        attempts = request.retries + 1

        for attempt in range(1, attempts + 1):
            try:
                start_time = time.perf_counter()
                response = self._client.request(
                    method=request.method,
                    url=url,
                    headers=headers,
                    content=content,
                    timeout=timeout,
                )
                logger.debug(
                    "%s %s -> %d (%.1f ms)",
                    request.method,
                    url,
                    response.status_code,
                    (time.perf_counter() - start_time) * 1000,
                )
                return HttpResponse(response, request.serializer)
            except _RETRYABLE_ERRORS as e:
                if attempt < attempts:
                    logger.warning(
                        "%s %s failed: %s (attempt %d/%d), retrying",
                        request.method,
                        url,
                        e,
                        attempt,
                        attempts,
                    )
                    continue
                raise TransportError(f"{request.method} {url} failed: {e}") from e
            except httpx.RequestError as e:
                raise TransportError(f"{request.method} {url} failed: {e}") from e

        # range() is never empty since attempts >= 1
        raise AssertionError("unreachable")
