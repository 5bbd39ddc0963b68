"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes of one HTTP/1.x request into an HTTPRequest.

    b"GET /docs/read%20me.md?x=1 HTTP/1.1\\r\\nHost: localhost:8080\\r\\n\\r\\n"
                    │
                    ▼
    HTTPRequest(
        method="GET",
        target="/docs/read%20me.md?x=1",     ← exactly as sent (logged, 404 page)
        raw_path="/docs/read%20me.md",       ← still percent-encoded (resolver)
        path="/docs/read me.md",             ← decoded
        query_params={"x": ["1"]},
        headers={"host": "localhost:8080"},
    )

The request also carries the Connection it arrived on. Normal responses
go back through the server; the live-reload branch takes the connection
over and speaks websocket frames on it directly.

=============================================================================
WHAT IS REJECTED
=============================================================================

    request line not "METHOD TARGET VERSION"      400
    target not "/..." (or absolute http://...)    400
    a ".." path segment, even percent-encoded     400
    bad or unmet Content-Length                   400
    method outside ALLOWED_METHODS                405
    more than max_request_size bytes              413
    anything but HTTP/1.0 or HTTP/1.1             505

".." never reaches the filesystem: a dev server usually listens on every
interface. Files outside the root are only reachable through the
allow_absolute setting.

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote, urlsplit


ALLOWED_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"})

SUPPORTED_VERSIONS = ("HTTP/1.1", "HTTP/1.0")

# RFC 9110 token characters
_TOKEN = re.compile(r"[!#$%&'*+.^_`|~0-9A-Za-z-]+")
_VERSION = re.compile(r"HTTP/\d\.\d")


class HTTPParseError(Exception):
    """A request that cannot be served, with the status to answer."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    One parsed request.

    Attributes:
        method: "GET", "HEAD", ...
        path: Decoded path, no query string.
        raw_path: Percent-encoded path, no query string.
        target: The request-target as it appeared on the wire.
        version: "HTTP/1.1" or "HTTP/1.0".
        headers: Lowercased names; repeated headers joined with ", ".
        query_params: parse_qs() of the query string.
        client_address: The peer's (ip, port).
        local_address: Our (ip, port) for this connection.
        connection: The Connection it arrived on, if any.
    """

    method: str
    path: str
    raw_path: str = ""
    target: str = ""
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""

    client_address: Tuple[str, int] = ("", 0)
    local_address: Optional[Tuple[str, int]] = None
    connection: Optional[Any] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        # Hand-built requests (tests, interceptors) may only give a path
        self.raw_path = self.raw_path or quote(self.path)
        self.target = self.target or self.raw_path

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def user_agent(self) -> str:
        return self.get_header("user-agent")

    @property
    def is_keep_alive(self) -> bool:
        """HTTP/1.1 unless "Connection: close"; HTTP/1.0 only with "keep-alive"."""
        options = {t.strip() for t in self.get_header("connection").lower().split(",")}
        if self.version == "HTTP/1.0":
            return "keep-alive" in options
        return "close" not in options

    @property
    def is_websocket_upgrade(self) -> bool:
        # Only Upgrade decides; proxies rewrite Connection: Upgrade
        return self.get_header("upgrade").strip().lower() == "websocket"

    @property
    def websocket_key(self) -> str:
        return self.get_header("sec-websocket-key").strip()


class RequestParser:
    """
    Parser for complete requests as returned by Connection.read_request().

    Usage:
        parser = RequestParser(max_request_size=1024 * 1024)
        request = parser.parse(raw, conn.address)
    """

    def __init__(self, max_request_size: int = 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Raises:
            HTTPParseError: With the status code to answer.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        head, separator, body = data.partition(b"\r\n\r\n")
        if not separator:
            raise HTTPParseError("Incomplete request: no blank line after the headers")

        # Header octets are ISO-8859-1 on the wire; the path is decoded separately
        request_line, *header_lines = head.decode("latin-1").split("\r\n")
        method, target, version = parse_request_line(request_line)
        raw_path, path, query = split_target(target)
        headers = parse_headers(header_lines)

        return HTTPRequest(
            method=method,
            path=path,
            raw_path=raw_path,
            target=target,
            version=version,
            headers=headers,
            query_params=query,
            body=_body(body, headers),
            client_address=client_address,
        )


def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_size: int = 1024 * 1024,
) -> HTTPRequest:
    """Parse one request without keeping a parser around."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)


# =============================================================================
# PIECES
# =============================================================================

def parse_request_line(line: str) -> Tuple[str, str, str]:
    """
    "GET /a.css HTTP/1.1" → ("GET", "/a.css", "HTTP/1.1")

    Raises:
        HTTPParseError: 400 malformed, 405 method, 505 version.
    """
    parts = line.split(" ")
    if len(parts) != 3 or not _TOKEN.fullmatch(parts[0]) or not _VERSION.fullmatch(parts[2]):
        raise HTTPParseError(f"Invalid request line: {line!r}")

    method, target, version = parts
    if method not in ALLOWED_METHODS:
        raise HTTPParseError(f"Method not allowed: {method}", status_code=405)
    if version not in SUPPORTED_VERSIONS:
        raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)
    return method, target, version


def split_target(target: str) -> Tuple[str, str, Dict[str, List[str]]]:
    """
    Request-target → (raw_path, decoded path, query params).

    "/a..b.txt" is a fine file name; "/a/../b" is rejected.

    Raises:
        HTTPParseError: 400 for other target forms or a ".." segment.
    """
    parts = urlsplit(target)
    if not target.startswith("/") and parts.scheme not in ("http", "https"):
        raise HTTPParseError(f"Invalid request target: {target!r}")

    raw_path = parts.path or "/"
    path = unquote(raw_path)
    if ".." in re.split(r"[/\\]", path):
        raise HTTPParseError("Invalid path: contains a '..' segment")

    return raw_path, path, parse_qs(parts.query, keep_blank_values=True)


def parse_headers(lines: List[str]) -> Dict[str, str]:
    """
    Header lines → {lowercased name: value}.

    Repeated names are joined with ", ". A line starting with whitespace
    continues the previous header (obsolete folding). Lines without a
    colon are ignored.
    """
    headers: Dict[str, str] = {}
    last: Optional[str] = None

    for line in lines:
        if line[:1] in (" ", "\t"):
            if last is not None:
                headers[last] = f"{headers[last]} {line.strip()}"
            continue

        name, colon, value = line.partition(":")
        name = name.strip().lower()
        if not colon or not name:
            continue

        value = value.strip()
        headers[name] = f"{headers[name]}, {value}" if name in headers else value
        last = name

    return headers


def _body(data: bytes, headers: Dict[str, str]) -> bytes:
    raw_length = headers.get("content-length", "0")
    if not raw_length.isdigit():
        raise HTTPParseError(f"Invalid Content-Length: {raw_length!r}")

    length = int(raw_length)
    if len(data) < length:
        raise HTTPParseError(f"Incomplete body: expected {length} bytes, got {len(data)}")
    return data[:length]
