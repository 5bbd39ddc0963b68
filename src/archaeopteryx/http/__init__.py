"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

Everything that knows what HTTP (and the websocket upgrade) looks like on
the wire, and nothing that knows about files or routing.

    request.py       raw bytes → HTTPRequest
    response.py      HTTPResponse / ResponseBuilder → raw bytes
    status_codes.py  HTTPStatus enum with reason phrases
    mime_types.py    file extension → Content-Type
    websocket.py     upgrade handshake and frame codec

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    format_http_date,
    error_response,
    bad_request,
)
from .status_codes import HTTPStatus
from .mime_types import get_mime_type, get_content_type, DEFAULT_MIME_TYPE
from .websocket import WebSocket, WebSocketError, accept_key

__all__ = [
    # Request
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",
    # Response
    "HTTPResponse",
    "ResponseBuilder",
    "format_http_date",
    "error_response",
    "bad_request",
    # Status
    "HTTPStatus",
    # MIME
    "get_mime_type",
    "get_content_type",
    "DEFAULT_MIME_TYPE",
    # Websocket
    "WebSocket",
    "WebSocketError",
    "accept_key",
]
