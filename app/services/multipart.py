"""
NameCard Backend - Multipart Form Decoder
==========================================

What:  Decodes a raw multipart/form-data body into text fields and files.
Why:   Upload and scan handlers receive the raw body (possibly base64-encoded
       by an API gateway) and need the `image` / `images` parts as bytes.
How:   python-multipart's streaming `MultipartParser` drives callbacks that
       collect each part's headers and data:

    on_part_begin       → new part
    on_header_field/value/end → one header of the current part
    on_headers_finished → Content-Disposition decides field vs file
    on_part_data        → body bytes of the current part
    on_part_end         → part stored on the form
    on_end              → closing delimiter seen

Parts carrying a `filename` attribute are files; all others are text fields.
Parser errors surface as MultipartParseError (400).
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from python_multipart.exceptions import FormParserError
from python_multipart.multipart import MultipartParser, parse_options_header

from app.exceptions import MultipartParseError


@dataclass
class MultipartFile:
    field_name: str
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class MultipartForm:
    fields: Dict[str, str] = field(default_factory=dict)
    files: List[MultipartFile] = field(default_factory=list)

    def get_file(self, name: str) -> Optional[MultipartFile]:
        for upload in self.files:
            if upload.field_name == name:
                return upload
        return None

    def get_files(self, name: str) -> List[MultipartFile]:
        return [upload for upload in self.files if upload.field_name == name]

    def first_file(self) -> Optional[MultipartFile]:
        return self.files[0] if self.files else None

    def get_field(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.fields.get(name, default)


def _options(value: str) -> Dict[str, str]:
    _, raw = parse_options_header(value)
    return {
        key.decode("latin-1").lower(): val.decode("latin-1")
        for key, val in raw.items()
    }


def extract_boundary(content_type: Optional[str]) -> str:
    """
    Read the boundary parameter from a Content-Type header.

    Raises:
        MultipartParseError: not multipart, or no boundary parameter
    """
    if not content_type:
        raise MultipartParseError("Missing Content-Type header for multipart body")

    media_type, _ = parse_options_header(content_type)
    media_type = media_type.decode("latin-1").strip().lower()
    if not media_type.startswith("multipart/"):
        raise MultipartParseError(
            f"Expected multipart/form-data, got '{media_type}'",
            context={"content_type": media_type},
        )

    boundary = _options(content_type).get("boundary", "")
    if not boundary:
        raise MultipartParseError("Multipart boundary not found in Content-Type header")
    return boundary


class _FormCollector:
    """Callback target for MultipartParser; builds a MultipartForm."""

    def __init__(self):
        self.form = MultipartForm()
        self.finished = False
        self.part_index = -1
        self._headers: Dict[str, str] = {}
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._data = bytearray()
        self._name = ""
        self._filename: Optional[str] = None

    def callbacks(self) -> Dict[str, object]:
        return {
            "on_part_begin": self.on_part_begin,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_end": self.on_end,
        }

    def on_part_begin(self) -> None:
        self.part_index += 1
        self._headers = {}
        self._data = bytearray()
        self._name = ""
        self._filename = None

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        name = self._header_field.decode("latin-1").strip().lower()
        self._headers[name] = self._header_value.decode("latin-1").strip()
        self._header_field = bytearray()
        self._header_value = bytearray()

    def on_headers_finished(self) -> None:
        disposition = self._headers.get("content-disposition")
        if not disposition:
            raise MultipartParseError(
                "Multipart part is missing Content-Disposition",
                context={"part_index": self.part_index},
            )
        params = _options(disposition)
        self._name = params.get("name", "")
        if not self._name:
            raise MultipartParseError(
                "Multipart part has no field name",
                context={"part_index": self.part_index},
            )
        if "filename" in params:
            # Header bytes arrive as UTF-8; the parser hands them back as latin-1
            self._filename = params["filename"].encode("latin-1").decode("utf-8", errors="replace")

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._data += data[start:end]

    def on_part_end(self) -> None:
        content = bytes(self._data)
        if self._filename is not None:
            self.form.files.append(
                MultipartFile(
                    field_name=self._name,
                    filename=self._filename or "upload",
                    content_type=self._headers.get("content-type", "application/octet-stream"),
                    content=content,
                )
            )
        else:
            self.form.fields[self._name] = content.decode("utf-8", errors="replace")

    def on_end(self) -> None:
        self.finished = True


def parse_multipart(
    body: Union[bytes, str],
    content_type: Optional[str],
    is_base64: bool = False,
) -> MultipartForm:
    """
    Parse a multipart/form-data body.

    Args:
        body: Raw request body (bytes, or str when delivered base64-encoded)
        content_type: Request Content-Type header (must carry `boundary=`)
        is_base64: Decode the body from base64 before parsing

    Returns:
        MultipartForm with text fields and file parts in body order

    Raises:
        MultipartParseError: missing boundary, empty body, bad base64,
            missing closing delimiter, or malformed part headers
    """
    boundary = extract_boundary(content_type)

    if is_base64:
        try:
            buffer = base64.b64decode(body, validate=False)
        except (binascii.Error, ValueError):
            raise MultipartParseError("Request body is not valid base64")
    elif isinstance(body, str):
        buffer = body.encode("latin-1")
    else:
        buffer = bytes(body)

    if not buffer:
        raise MultipartParseError("Multipart body is empty")

    # The parser expects the first delimiter at the start; drop any preamble
    start = buffer.find(b"--" + boundary.encode("latin-1"))
    if start == -1:
        raise MultipartParseError("Multipart boundary not found in body")

    collector = _FormCollector()
    parser = MultipartParser(boundary, callbacks=collector.callbacks())
    try:
        parser.write(buffer[start:])
        parser.finalize()
    except FormParserError as e:
        raise MultipartParseError(
            "Multipart part header block is malformed",
            context={"parser_error": str(e), "part_index": max(collector.part_index, 0)},
        )

    if not collector.finished:
        raise MultipartParseError("Multipart body is missing its closing boundary")
    return collector.form
