"""Tests for requestkit.encoding.

Tests cover:
- effective_content_type: resolution order and totality
- query_string: ordering, percent-encoding, rejection of non-text values
- concat_path / resolve_url: slash handling and query placement
- write_body: dispatch table, stream release, debug capture
"""

import io
import logging
from urllib.parse import parse_qsl

import pytest
from hypothesis import given
from hypothesis import strategies as st

from requestkit.encoding import (
    APPLICATION_JSON,
    APPLICATION_X_WWW_FORM_URLENCODED,
    CapturingSink,
    concat_path,
    effective_content_type,
    is_form_urlencoded,
    is_json,
    query_string,
    release_streams,
    resolve_url,
    write_body,
)
from requestkit.errors import ConfigurationError, EncodingError, TransportError
from requestkit.multipart import BOUNDARY, MULTIPART_CONTENT_TYPE
from requestkit.serializer import JsonSerializer
from tests.conftest import FailingStream, TrackingStream, make_attachment

SERIALIZER = JsonSerializer()


def _write(content_type, params=None, body=None) -> bytes:
    sink = io.BytesIO()
    write_body(content_type, params or {}, body, SERIALIZER, sink)
    return sink.getvalue()


# =============================================================================
# Content negotiation
# =============================================================================


class TestEffectiveContentType:
    """Resolution order: override > body > POST > None."""

    def test_get_without_body_has_no_content_type(self) -> None:
        assert effective_content_type("GET", None, False, False) is None

    def test_post_without_attachments_is_urlencoded(self) -> None:
        assert effective_content_type("POST", None, False, False) == APPLICATION_X_WWW_FORM_URLENCODED

    def test_post_with_attachment_is_multipart(self) -> None:
        assert effective_content_type("POST", None, False, True) == MULTIPART_CONTENT_TYPE

    @pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE", "PATCH"])
    def test_body_means_json_for_any_method(self, method: str) -> None:
        assert effective_content_type(method, None, True, False) == APPLICATION_JSON

    def test_body_wins_over_attachments(self) -> None:
        assert effective_content_type("POST", None, True, True) == APPLICATION_JSON

    def test_override_returned_verbatim(self) -> None:
        assert effective_content_type("GET", "text/csv; charset=latin-1", True, True) == "text/csv; charset=latin-1"

    def test_put_without_body_has_no_content_type(self) -> None:
        """Only POST gets form encoding inferred."""
        assert effective_content_type("PUT", None, False, False) is None

    def test_multipart_content_type_carries_boundary(self) -> None:
        assert MULTIPART_CONTENT_TYPE == f"multipart/form-data; boundary={BOUNDARY}"


class TestContentTypePredicates:
    @pytest.mark.parametrize(
        "content_type",
        [
            APPLICATION_X_WWW_FORM_URLENCODED,
            "application/x-www-form-urlencoded",
            "application/x-www-form-urlencoded;charset=latin-1",
        ],
    )
    def test_form_urlencoded_prefix_match(self, content_type: str) -> None:
        assert is_form_urlencoded(content_type)

    @pytest.mark.parametrize("content_type", [None, "application/json", "text/plain"])
    def test_not_form_urlencoded(self, content_type) -> None:
        assert not is_form_urlencoded(content_type)

    @pytest.mark.parametrize(
        "content_type",
        ["application/json", "application/json; charset=utf-8", "application/vnd.api+json"],
    )
    def test_json_types(self, content_type: str) -> None:
        assert is_json(content_type)

    @pytest.mark.parametrize("content_type", [None, "text/plain", "application/jsonl"])
    def test_not_json(self, content_type) -> None:
        assert not is_json(content_type)


# =============================================================================
# Query strings
# =============================================================================


class TestQueryString:
    def test_empty_params(self) -> None:
        assert query_string({}) == ""

    def test_single_pair(self) -> None:
        assert query_string({"q": "hello world"}) == "q=hello%20world"

    def test_insertion_order_preserved(self) -> None:
        assert query_string({"b": "2", "a": "1", "c": "3"}) == "b=2&a=1&c=3"

    def test_reserved_characters_escaped(self) -> None:
        result = query_string({"k&=": "a+b/c?d#e"})
        assert result == "k%26%3D=a%2Bb%2Fc%3Fd%23e"

    def test_unreserved_characters_untouched(self) -> None:
        assert query_string({"a-b_c.d~e": "XYZ019"}) == "a-b_c.d~e=XYZ019"

    def test_unicode_encoded_as_utf8(self) -> None:
        assert query_string({"name": "héllo"}) == "name=h%C3%A9llo"

    def test_empty_value(self) -> None:
        assert query_string({"flag": ""}) == "flag="

    def test_list_value_rejected(self) -> None:
        with pytest.raises(EncodingError, match="list"):
            query_string({"ids": ("1", "2")})

    def test_attachment_rejected(self) -> None:
        with pytest.raises(EncodingError, match="binary attachment"):
            query_string({"file": make_attachment()})

    @pytest.mark.parametrize("params", [{"q": "\ud800"}, {"\udfff": "a"}])
    def test_lone_surrogate_rejected(self, params: dict[str, str]) -> None:
        """Text that has no UTF-8 form raises EncodingError, not UnicodeEncodeError."""
        with pytest.raises(EncodingError, match="not encodable as UTF-8"):
            query_string(params)

    @given(
        st.dictionaries(
            keys=st.text(alphabet=st.characters(exclude_categories=("Cs",)), min_size=1),
            values=st.text(alphabet=st.characters(exclude_categories=("Cs",))),
        )
    )
    def test_round_trips_through_standard_decoding(self, params: dict[str, str]) -> None:
        """Decoding the query string yields the original pairs, in order."""
        decoded = parse_qsl(query_string(params), keep_blank_values=True)
        assert decoded == list(params.items())


# =============================================================================
# URLs
# =============================================================================


class TestConcatPath:
    @pytest.mark.parametrize(
        "url,segment",
        [
            ("http://x/a/", "/b"),
            ("http://x/a", "b"),
            ("http://x/a/", "b"),
            ("http://x/a", "/b"),
        ],
    )
    def test_exactly_one_slash_at_join(self, url: str, segment: str) -> None:
        assert concat_path(url, segment) == "http://x/a/b"

    def test_no_url_uses_segment_verbatim(self) -> None:
        assert concat_path(None, "/b") == "/b"

    def test_segment_converted_with_str(self) -> None:
        assert concat_path("http://x/items", 42) == "http://x/items/42"

    def test_only_one_leading_slash_removed(self) -> None:
        """Doubled slashes inside the segment are the caller's business."""
        assert concat_path("http://x/", "//b") == "http://x//b"


class TestResolveUrl:
    def test_missing_url_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve_url(None, None, {})

    def test_no_params_returns_url(self) -> None:
        assert resolve_url("http://x/a", None, {}) == "http://x/a"

    def test_params_appended_as_query(self) -> None:
        assert resolve_url("http://x/a", None, {"q": "a b"}) == "http://x/a?q=a%20b"

    def test_params_in_body_for_urlencoded(self) -> None:
        url = resolve_url("http://x/a", APPLICATION_X_WWW_FORM_URLENCODED, {"q": "a"})
        assert url == "http://x/a"

    def test_params_in_body_for_multipart(self) -> None:
        url = resolve_url("http://x/a", MULTIPART_CONTENT_TYPE, {"q": "a", "file": make_attachment()})
        assert url == "http://x/a"

    def test_overridden_urlencoded_type_keeps_params_in_body(self) -> None:
        url = resolve_url("http://x/a", "application/x-www-form-urlencoded", {"q": "a"})
        assert url == "http://x/a"

    def test_json_request_still_uses_query(self) -> None:
        assert resolve_url("http://x/a", APPLICATION_JSON, {"q": "a"}) == "http://x/a?q=a"


# =============================================================================
# Body encoding
# =============================================================================


class TestWriteBodyDispatch:
    def test_nothing_written_without_content_type(self) -> None:
        assert _write(None, {"q": "a"}) == b""

    def test_urlencoded_params(self) -> None:
        assert _write(APPLICATION_X_WWW_FORM_URLENCODED, {"q": "hello world"}) == b"q=hello%20world"

    def test_urlencoded_override_without_charset(self) -> None:
        body = _write("application/x-www-form-urlencoded", {"a": "1", "b": "2"})
        assert body == b"a=1&b=2"

    def test_urlencoded_rejects_lists(self) -> None:
        with pytest.raises(EncodingError):
            _write(APPLICATION_X_WWW_FORM_URLENCODED, {"ids": ("1", "2")})

    def test_multipart_params(self) -> None:
        body = _write(MULTIPART_CONTENT_TYPE, {"q": "a"})
        assert body.startswith(f"--{BOUNDARY}\r\n".encode())
        assert body.endswith(f"--{BOUNDARY}--\r\n".encode())

    def test_raw_bytes_verbatim(self) -> None:
        assert _write("application/octet-stream", body=b"\x00\x01") == b"\x00\x01"

    def test_raw_bytes_beat_json(self) -> None:
        """A bytes body under the inferred JSON type is not re-serialized."""
        assert _write(APPLICATION_JSON, body=b'{"raw": 1}') == b'{"raw": 1}'

    def test_bytearray_verbatim(self) -> None:
        assert _write("application/octet-stream", body=bytearray(b"abc")) == b"abc"

    def test_stream_copied_and_closed(self) -> None:
        stream = TrackingStream(b"streamed data")
        assert _write("text/plain", body=stream) == b"streamed data"
        assert stream.was_closed

    def test_json_body_serialized(self) -> None:
        assert _write(APPLICATION_JSON, body={"a": 1}) == SERIALIZER.dumps({"a": 1})

    def test_json_with_charset_parameter(self) -> None:
        assert _write("application/json; charset=utf-8", body=[1, 2]) == b"[1,2]"

    def test_text_body_under_non_json_type_writes_nothing(self) -> None:
        assert _write("text/plain", body="hello") == b""

    def test_unserializable_json_body(self) -> None:
        with pytest.raises(EncodingError):
            _write(APPLICATION_JSON, body={"a": object()})


class TestWriteBodyStreamRelease:
    def test_attachments_closed_after_multipart(self) -> None:
        attachment = make_attachment()
        _write(MULTIPART_CONTENT_TYPE, {"file": attachment})
        assert attachment.stream.was_closed

    def test_attachments_closed_when_encoding_fails(self) -> None:
        attachment = make_attachment()
        with pytest.raises(EncodingError):
            _write(APPLICATION_X_WWW_FORM_URLENCODED, {"file": attachment})
        assert attachment.stream.was_closed

    def test_attachments_closed_when_text_unencodable(self) -> None:
        attachment = make_attachment()
        with pytest.raises(EncodingError, match="not encodable as UTF-8"):
            _write(MULTIPART_CONTENT_TYPE, {"file": attachment, "q": "\ud800"})
        assert attachment.stream.was_closed

    def test_urlencoded_unencodable_text(self) -> None:
        with pytest.raises(EncodingError, match="not encodable as UTF-8"):
            _write(APPLICATION_X_WWW_FORM_URLENCODED, {"q": "\ud800"})

    def test_release_streams_closes_attachments_and_body(self) -> None:
        attachment = make_attachment()
        body = TrackingStream(b"x")
        release_streams({"file": attachment, "q": "a"}, body)
        assert attachment.stream.was_closed
        assert body.was_closed

    def test_unused_body_stream_still_closed(self) -> None:
        stream = TrackingStream(b"never sent")
        _write(APPLICATION_X_WWW_FORM_URLENCODED, {"q": "a"}, body=stream)
        assert stream.read_calls == 0
        assert stream.was_closed

    def test_read_failure_wrapped_and_stream_closed(self) -> None:
        stream = FailingStream()
        with pytest.raises(TransportError, match="disk went away"):
            _write("application/octet-stream", body=stream)
        assert stream.was_closed


class TestWriteBodyCapture:
    def test_body_logged_at_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.DEBUG, logger="requestkit")
        body = _write(APPLICATION_X_WWW_FORM_URLENCODED, {"q": "hello world"})
        assert body == b"q=hello%20world"
        assert "Wrote body: q=hello%20world" in caplog.text

    def test_stream_body_logged_without_double_read(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.DEBUG, logger="requestkit")
        stream = TrackingStream(b"once only")
        assert _write("text/plain", body=stream) == b"once only"
        assert "Wrote body: once only" in caplog.text

    def test_nothing_logged_above_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="requestkit")
        _write(APPLICATION_X_WWW_FORM_URLENCODED, {"q": "a"})
        assert "Wrote body" not in caplog.text

    def test_empty_body_not_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.DEBUG, logger="requestkit")
        _write(None)
        assert "Wrote body" not in caplog.text


class TestCapturingSink:
    def test_forwards_all_bytes(self) -> None:
        sink = io.BytesIO()
        capture = CapturingSink(sink, limit=4)
        capture.write(b"abc")
        capture.write(b"defgh")
        assert sink.getvalue() == b"abcdefgh"

    def test_copy_is_bounded(self) -> None:
        capture = CapturingSink(io.BytesIO(), limit=4)
        capture.write(b"abcdefgh")
        assert capture.captured == b"abcd"
        assert capture.truncated
        assert capture.text() == "abcd... [4 more bytes]"

    def test_undecodable_bytes_replaced(self) -> None:
        capture = CapturingSink(io.BytesIO())
        capture.write(b"\xff\xfeok")
        assert capture.text().endswith("ok")
        assert not capture.truncated
