"""
=============================================================================
HTTP STATUS CODES
=============================================================================

Only the statuses this server puts on the wire:

    101  live-reload websocket accepted
    200  entry page, file, listing
    400  malformed request or handshake
    404  nothing at the path (or a hidden dotfile directory)
    405  method outside ALLOWED_METHODS
    408  the first request never finished arriving
    413  request over max_request_size
    503  every worker busy for longer than the request timeout
    505  not HTTP/1.0 or HTTP/1.1

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    Status code with its reason phrase.

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus(404).phrase
        'Not Found'
    """

    def __new__(cls, code: int, phrase: str):
        member = int.__new__(cls, code)
        member._value_ = code
        member.phrase = phrase
        return member

    SWITCHING_PROTOCOLS = 101, "Switching Protocols"
    OK = 200, "OK"

    BAD_REQUEST = 400, "Bad Request"
    NOT_FOUND = 404, "Not Found"
    METHOD_NOT_ALLOWED = 405, "Method Not Allowed"
    REQUEST_TIMEOUT = 408, "Request Timeout"
    PAYLOAD_TOO_LARGE = 413, "Payload Too Large"

    SERVICE_UNAVAILABLE = 503, "Service Unavailable"
    HTTP_VERSION_NOT_SUPPORTED = 505, "HTTP Version Not Supported"
