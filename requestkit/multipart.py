"""multipart/form-data framing.

Part headers are rendered by urllib3's RequestField; payloads are written
straight to the sink so attachment streams are never buffered whole.

The boundary is chosen once per process so the content type can be
negotiated before any body is written.
"""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from typing import BinaryIO

from urllib3.fields import RequestField
from urllib3.filepost import choose_boundary

from requestkit.errors import EncodingError
from requestkit.params import BinaryAttachment, ParamValue

BOUNDARY = choose_boundary()
MULTIPART_CONTENT_TYPE = f"multipart/form-data; boundary={BOUNDARY}"


class MultipartWriter:
    """Writes an ordered parameter mapping as multipart/form-data.

    Each scalar becomes one part, each list element becomes its own part with
    the same name, and each attachment becomes a file part. Order follows the
    mapping.

    Usage:
        MultipartWriter(sink).write(request.params)
    """

    def __init__(self, sink: BinaryIO, boundary: str = BOUNDARY) -> None:
        self._sink = sink
        self._boundary = boundary

    def write(self, params: Mapping[str, ParamValue]) -> None:
        """Write every parameter as a part, then the closing delimiter.

        Raises:
            EncodingError: If a value has an unsupported type, or a name,
                filename or text value is not encodable as UTF-8.
        """
        for name, value in params.items():
            try:
                self._write_param(name, value)
            except UnicodeEncodeError as e:
                raise EncodingError(f"Parameter {name!r} is not encodable as UTF-8: {e}") from e
        self._sink.write(f"--{self._boundary}--\r\n".encode("latin-1"))

    def _write_param(self, name: str, value: ParamValue) -> None:
        if isinstance(value, BinaryAttachment):
            self._write_attachment(name, value)
        elif isinstance(value, tuple):
            for item in value:
                self._write_text(name, item)
        elif isinstance(value, str):
            self._write_text(name, value)
        else:
            raise EncodingError(
                f"Parameter '{name}' has unsupported type {type(value).__name__}"
            )

    def _write_text(self, name: str, value: str) -> None:
        data = value.encode("utf-8")
        field = RequestField(name=name, data=data)
        field.make_multipart()
        self._write_part_headers(field)
        self._sink.write(data)
        self._sink.write(b"\r\n")

    def _write_attachment(self, name: str, attachment: BinaryAttachment) -> None:
        field = RequestField(name=name, data=b"", filename=attachment.filename)
        field.make_multipart(content_type=attachment.content_type)
        self._write_part_headers(field)
        shutil.copyfileobj(attachment.stream, self._sink)
        self._sink.write(b"\r\n")

    def _write_part_headers(self, field: RequestField) -> None:
        self._sink.write(f"--{self._boundary}\r\n".encode("latin-1"))
        self._sink.write(field.render_headers().encode("utf-8"))
