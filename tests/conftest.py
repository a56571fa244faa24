"""Pytest configuration and fixtures for requestkit tests.

This file provides:
- TrackingStream: a BytesIO that records reads and close() calls
- make_attachment: builds BinaryAttachment values around TrackingStream
- recording_handler, mock_client: an httpx.Client over MockTransport that records requests
"""

from __future__ import annotations

import io
from typing import Generator

import httpx
import pytest

from requestkit.params import BinaryAttachment


class TrackingStream(io.BytesIO):
    """BytesIO that remembers whether it was read or closed.

    Used to check that single-use streams are consumed at most once and
    always released.
    """

    def __init__(self, data: bytes = b"") -> None:
        super().__init__(data)
        self.read_calls = 0
        self.was_closed = False

    def read(self, size: int | None = -1) -> bytes:
        self.read_calls += 1
        return super().read(size)

    def close(self) -> None:
        self.was_closed = True
        super().close()


class FailingStream(TrackingStream):
    """Stream whose reads raise OSError."""

    def read(self, size: int | None = -1) -> bytes:
        self.read_calls += 1
        raise OSError("disk went away")


def make_attachment(
    data: bytes = b"\x89PNG",
    content_type: str = "image/png",
    filename: str = "a.png",
) -> BinaryAttachment:
    """Create a BinaryAttachment backed by a TrackingStream."""
    return BinaryAttachment(stream=TrackingStream(data), content_type=content_type, filename=filename)


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replies from a queue."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response | Exception] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(200, json={"ok": True})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def recording_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def mock_client(recording_handler: RecordingHandler) -> Generator[httpx.Client, None, None]:
    """httpx.Client routed through the recording handler."""
    client = httpx.Client(transport=httpx.MockTransport(recording_handler))
    yield client
    client.close()
