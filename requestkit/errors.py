"""Error taxonomy for requestkit.

Transformation and encoding errors indicate a usage defect and are raised
immediately; nothing in this package retries them. Only the transport may
retry, and only I/O failures.
"""

from __future__ import annotations


class RequestKitError(Exception):
    """Base class for requestkit errors."""


class InvalidArgumentError(RequestKitError, ValueError):
    """Raised when a transformation receives a missing or invalid argument."""


class ConfigurationError(RequestKitError):
    """Raised when a request is dispatched without required state (e.g., no URL)."""


class EncodingError(RequestKitError):
    """Raised when a value has no representation in the chosen encoding."""


class TransportError(RequestKitError):
    """Raised when I/O fails while writing the body or talking to the server."""


class HttpStatusError(TransportError):
    """Raised by HttpResponse.raise_for_status() for 4xx/5xx responses."""

    def __init__(self, message: str, status_code: int, body: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
