"""HTTP/1.1 wire protocol for the kubechat endpoint.

Only the small subset of HTTP the endpoint needs is understood: a request
line with a known method and path, the ``X-Api-Key`` and ``Content-Length``
headers, and an optional body of exactly ``Content-Length`` bytes. There is
no chunked encoding, no keep-alive and no pipelining.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Dict, List, Optional, Tuple

API_KEY_HEADER = "x-api-key"
CONTENT_LENGTH_HEADER = "content-length"

DEFAULT_MAX_REQUEST_BYTES = 100_000

_SELECTED_HEADERS = (API_KEY_HEADER, CONTENT_LENGTH_HEADER)
_LINE_BREAK = re.compile(r"\r?\n")
_DIGITS = re.compile(r"[0-9]+")


class Method(str, Enum):
    """Request methods accepted by the endpoint."""

    GET = "GET"
    POST = "POST"

    @classmethod
    def from_token(cls, token: str) -> Optional["Method"]:
        """Return the method for a request-line token, or None if unknown."""
        try:
            return cls(token)
        except ValueError:
            return None


class Path(str, Enum):
    """Request paths known to the endpoint."""

    CHAT = "/chat"
    ROOT = "/"
    FAVICON = "/favicon.ico"
    UNKNOWN = "<unknown>"

    @classmethod
    def from_token(cls, token: str) -> Optional["Path"]:
        """Return the path for a request-line token, or None if unknown."""
        return _KNOWN_PATHS.get(token)


_KNOWN_PATHS = {path.value: path for path in (Path.CHAT, Path.ROOT, Path.FAVICON)}


class ProtocolError(Exception):
    """Base exception for request framing errors."""

    pass


class RequestTooLargeError(ProtocolError):
    """Raised when a request exceeds the configured size cap."""

    pass


class IncompleteRequestError(ProtocolError):
    """Raised when the peer stops sending before the request is complete."""

    pass


@dataclass
class HttpRequest:
    """A decoded request.

    ``headers`` only carries the headers the endpoint cares about, keyed by
    their lower-cased names. ``body`` is set iff a positive Content-Length
    was sent.
    """

    method: Method
    path: Path
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    @property
    def api_key(self) -> Optional[str]:
        return self.headers.get(API_KEY_HEADER)

    @property
    def content_length(self) -> int:
        return parse_content_length(self.headers.get(CONTENT_LENGTH_HEADER))


@dataclass
class HttpResponse:
    """A response with a status and a plain body."""

    status: HTTPStatus
    body: str = ""

    def to_bytes(self) -> bytes:
        """Serialize to the wire format, closing the connection afterwards."""
        payload = self.body.encode("utf-8")
        head = f"HTTP/1.1 {self.status.value} {self.status.phrase}\r\nContent-Length: {len(payload)}\r\n\r\n"
        return head.encode("ascii") + payload


def parse_content_length(value: Optional[str]) -> int:
    """Parse a Content-Length value; anything but a plain integer counts as 0."""
    if value is None or not _DIGITS.fullmatch(value):
        return 0
    return int(value)


def find_header_end(buffer: bytes) -> Optional[Tuple[int, int]]:
    """Locate the blank line terminating the header section.

    Returns:
        Tuple of (offset of the terminator, terminator length), or None
    """
    candidates = []
    for terminator in (b"\r\n\r\n", b"\n\n"):
        index = buffer.find(terminator)
        if index != -1:
            candidates.append((index, len(terminator)))
    return min(candidates) if candidates else None


def _split_head(head: bytes) -> List[str]:
    return _LINE_BREAK.split(head.decode("utf-8", errors="replace"))


def scan_headers(lines: List[str]) -> Dict[str, str]:
    """Extract the selected headers from header lines.

    Scanning stops at the first empty line. Names are matched
    case-insensitively; other headers are ignored.
    """
    headers: Dict[str, str] = {}
    for line in lines:
        if not line:
            break
        name, sep, value = line.partition(":")
        if not sep:
            continue
        name = name.strip().lower()
        if name in _SELECTED_HEADERS:
            headers[name] = value.strip()
    return headers


def decode_request(raw: bytes) -> Optional[HttpRequest]:
    """Decode a complete raw request.

    Args:
        raw: Request bytes as received from the client

    Returns:
        The decoded request, or None if the request line is malformed or
        names an unknown method or path
    """
    header_end = find_header_end(raw)
    if header_end is None:
        head, rest = raw, b""
    else:
        offset, length = header_end
        head, rest = raw[:offset], raw[offset + length:]

    lines = _split_head(head)
    parts = lines[0].split()
    if len(parts) < 2:
        return None

    method = Method.from_token(parts[0])
    path = Path.from_token(parts[1])
    if method is None or path is None:
        return None

    headers = scan_headers(lines[1:])
    body = rest if parse_content_length(headers.get(CONTENT_LENGTH_HEADER)) > 0 else None

    return HttpRequest(method=method, path=path, headers=headers, body=body)


class ReaderState(Enum):
    """Progress of a RequestReader."""

    START_LINE = "start_line"
    HEADERS = "headers"
    BODY = "body"
    COMPLETE = "complete"


class RequestReader:
    """Incremental request framer.

    Bytes are fed as they arrive from the socket. The reader walks through
    the request line, the header section and the body, and knows when the
    request is complete. It never holds more than ``max_request_bytes``.

    Example:
        reader = RequestReader(max_request_bytes=4096)
        while not reader.feed(await stream.read(4096)):
            ...
        request = decode_request(reader.request_bytes())
    """

    def __init__(self, max_request_bytes: int = DEFAULT_MAX_REQUEST_BYTES):
        self.max_request_bytes = max_request_bytes
        self.state = ReaderState.START_LINE
        self._buffer = bytearray()
        self._body_start = 0
        self._content_length = 0

    @property
    def complete(self) -> bool:
        return self.state is ReaderState.COMPLETE

    @property
    def bytes_received(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> bool:
        """Consume a chunk of bytes.

        Args:
            data: Next chunk read from the connection

        Returns:
            True once the full request has been received

        Raises:
            RequestTooLargeError: If the request exceeds the size cap
        """
        if self.complete:
            return True

        self._buffer.extend(data)
        self._advance()

        if not self.complete and len(self._buffer) > self.max_request_bytes:
            raise RequestTooLargeError(
                f"Request exceeds {self.max_request_bytes} bytes"
            )
        return self.complete

    def _advance(self) -> None:
        if self.state is ReaderState.START_LINE:
            if b"\n" not in self._buffer:
                return
            self.state = ReaderState.HEADERS

        if self.state is ReaderState.HEADERS:
            header_end = find_header_end(bytes(self._buffer))
            if header_end is None:
                return
            offset, length = header_end
            headers = scan_headers(_split_head(bytes(self._buffer[:offset]))[1:])
            self._body_start = offset + length
            self._content_length = parse_content_length(headers.get(CONTENT_LENGTH_HEADER))
            if self._body_start + self._content_length > self.max_request_bytes:
                raise RequestTooLargeError(
                    f"Declared body of {self._content_length} bytes exceeds the {self.max_request_bytes} byte limit"
                )
            self.state = ReaderState.BODY

        if self.state is ReaderState.BODY:
            if len(self._buffer) - self._body_start >= self._content_length:
                self.state = ReaderState.COMPLETE

    def request_bytes(self) -> bytes:
        """Return the framed request, without any trailing bytes.

        Raises:
            IncompleteRequestError: If the request is not complete yet
        """
        if not self.complete:
            raise IncompleteRequestError(
                f"Connection closed while reading {self.state.value} "
                f"({len(self._buffer)} bytes received)"
            )
        return bytes(self._buffer[: self._body_start + self._content_length])
