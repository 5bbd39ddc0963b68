"""
=============================================================================
HTTP RESPONSE BUILDING
=============================================================================

HTTPResponse holds what goes back to the browser; ResponseBuilder is the
fluent way to make one.

=============================================================================
IN-MEMORY VS STREAMED BODIES
=============================================================================

Generated pages (the SPA entry point with its reload script, directory
listings, the 404 page) are small and built in memory: `body` holds the
bytes and to_bytes() returns head + body in one piece.

Served files are streamed instead. The builder is given an open file and
its size. to_bytes() then returns only the head (with Content-Length
already set from the size), and the server hands the file to the socket
afterwards:

    HTTPResponse(stream=<file>, stream_length=52314)
        │
        ├── to_bytes()          → b"HTTP/1.1 200 OK\\r\\n...\\r\\n\\r\\n"
        └── Connection.send_file(stream)    → 52314 bytes via sendfile()

Whoever sends the response must call close() when done (or when the
client disappears) so the file handle is released.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Union, BinaryIO

from .status_codes import HTTPStatus
from .mime_types import get_content_type


@dataclass
class HTTPResponse:
    """
    Represents an HTTP response to be sent to the client.

    Attributes:
        status: HTTP status code.
        headers: Response headers (names as they will be sent).
        body: In-memory body bytes.
        version: HTTP version for the status line.
        stream: Open binary file to send after the head, if any.
        stream_length: Number of bytes the stream will produce.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"
    stream: Optional[BinaryIO] = field(default=None, repr=False)
    stream_length: int = 0

    @property
    def status_line(self) -> str:
        """The status line, e.g. "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    @property
    def is_streamed(self) -> bool:
        """True when the body comes from a file rather than `body`."""
        return self.stream is not None

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a response header. Returns self for chaining."""
        self.headers[name] = value
        return self

    def close(self) -> None:
        """Release the streamed file, if there is one. Safe to call twice."""
        if self.stream is not None:
            try:
                self.stream.close()
            finally:
                self.stream = None

    def to_bytes(self, server_name: str = "archaeopteryx") -> bytes:
        """
        Serialize the response head (and in-memory body) for sending.

        Content-Length, Date and Server are added when missing. For a
        streamed response only the head is returned.

            HTTP/1.1 200 OK\\r\\n
            Content-Type: text/html; charset=utf-8\\r\\n
            Content-Length: 27\\r\\n
            Date: Sat, 17 Oct 2026 12:00:00 GMT\\r\\n
            Server: archaeopteryx\\r\\n
            \\r\\n
            <body bytes, unless streamed>
        """
        response_headers = dict(self.headers)

        # 1xx responses (the websocket 101) carry no length
        if "Content-Length" not in response_headers and self.status >= 200:
            length = self.stream_length if self.is_streamed else len(self.body)
            response_headers["Content-Length"] = str(length)

        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if "Server" not in response_headers:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        head = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        if self.is_streamed:
            return head
        return head + self.body


class ResponseBuilder:
    """
    Fluent builder for HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .html(page)
            .cors()
            .build())

    Every method except build() returns the builder.
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""
        self._stream: Optional[BinaryIO] = None
        self._stream_length = 0

    # ─────────────────────────────────────────────────────────────────────
    # STATUS AND HEADERS
    # ─────────────────────────────────────────────────────────────────────

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        """Set the HTTP status code."""
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        """Add a single response header."""
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        """Add several headers at once."""
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        """Set the Content-Type header."""
        return self.header("Content-Type", content_type)

    def cors(self, origin: str = "*") -> "ResponseBuilder":
        """
        Allow cross-origin reads of this response.

        Only Access-Control-Allow-Origin is sent: the server answers
        simple GETs, so there is no preflight to negotiate.
        """
        return self.header("Access-Control-Allow-Origin", origin)

    def close_connection(self) -> "ResponseBuilder":
        """Tell the client the connection closes after this response."""
        return self.header("Connection", "close")

    # ─────────────────────────────────────────────────────────────────────
    # BODIES
    # ─────────────────────────────────────────────────────────────────────

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        """Set a raw body (strings are UTF-8 encoded)."""
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str) -> "ResponseBuilder":
        """Set a plain-text body."""
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = "text/plain; charset=utf-8"
        return self

    def html(self, html: Union[str, bytes]) -> "ResponseBuilder":
        """Set an HTML body."""
        self._body = html.encode("utf-8") if isinstance(html, str) else html
        self._headers["Content-Type"] = "text/html; charset=utf-8"
        return self

    def file(self, stream: BinaryIO, length: int, filename: str) -> "ResponseBuilder":
        """
        Stream an open file as the body.

        Content-Type comes from the file name's extension.

        Args:
            stream: Open binary file positioned at the start.
            length: Number of bytes to send.
            filename: Name used for the Content-Type lookup.
        """
        self._stream = stream
        self._stream_length = length
        self._headers["Content-Type"] = get_content_type(filename)
        return self

    def build(self) -> HTTPResponse:
        """Build the HTTPResponse."""
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
            stream=self._stream,
            stream_length=self._stream_length,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231), always in GMT.

    Example: Thu, 01 Jan 2026 12:00:00 GMT
    """
    return (
        f"{_DAYS[dt.weekday()]}, "
        f"{dt.day:02d} {_MONTHS[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def error_response(status: HTTPStatus, message: Optional[str] = None) -> HTTPResponse:
    """
    Plain-text error response used by the transport layer.

    These are written before (or instead of) routing: parse errors,
    timeouts, an overloaded worker pool. They always close the connection.
    """
    return (ResponseBuilder()
        .status(status)
        .text(message or status.phrase)
        .close_connection()
        .build())


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    """400 Bad Request with a plain-text body."""
    return ResponseBuilder().status(HTTPStatus.BAD_REQUEST).text(message).build()
