"""
=============================================================================
WEBSOCKET - Handshake and Framing (RFC 6455)
=============================================================================

Just enough of the websocket protocol for live reload: the server
accepts the upgrade, then pushes "reload" text frames until the browser
goes away. Whatever the browser sends is read only to notice close and
ping frames.

=============================================================================
THE HANDSHAKE
=============================================================================

    Browser                                   Server
    ───────                                   ──────
    GET / HTTP/1.1
    Upgrade: websocket
    Connection: Upgrade
    Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==
    Sec-WebSocket-Version: 13
                                    ───────►
                                              HTTP/1.1 101 Switching Protocols
                                              Upgrade: websocket
                                              Connection: Upgrade
                                              Sec-WebSocket-Accept: s3pPLMBiTxaQ9kYGzzhZRbK+xOo=
                                    ◄───────

    Sec-WebSocket-Accept = base64( sha1( key + "258EAFA5-E914-47DA-95CA-C5AB0DC85B11" ) )

=============================================================================
FRAME LAYOUT
=============================================================================

     0               1               2               3
    ┌─┬───┬───────┬─┬─────────────┬───────────────────────────────┐
    │F│RSV│opcode │M│ payload len │  extended length (0/2/8 bytes) │
    │I│   │  (4)  │A│     (7)     │                                │
    │N│   │       │S│             │                                │
    ├─┴───┴───────┴─┴─────────────┼───────────────────────────────┤
    │ masking key (4 bytes, client → server only)                 │
    ├─────────────────────────────────────────────────────────────┤
    │ payload                                                     │
    └─────────────────────────────────────────────────────────────┘

    payload len 0-125   → that is the length
    payload len 126     → next 2 bytes are the length
    payload len 127     → next 8 bytes are the length

Frames from the server are never masked; frames from a browser always are.

=============================================================================
"""

import base64
import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import Optional

from .request import HTTPRequest
from .response import ResponseBuilder
from .status_codes import HTTPStatus


logger = logging.getLogger(__name__)


WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

# Opcodes
OP_CONTINUATION = 0x0
OP_TEXT = 0x1
OP_BINARY = 0x2
OP_CLOSE = 0x8
OP_PING = 0x9
OP_PONG = 0xA

# Reload clients only send close and ping frames (at most 125 bytes)
MAX_PAYLOAD = 64 * 1024

CLOSE_TOO_BIG = 1009


class WebSocketError(Exception):
    """Raised when a websocket cannot be opened or a frame cannot be sent."""


class FrameTooLarge(WebSocketError):
    """A client frame declared a payload over the limit."""


def accept_key(client_key: str) -> str:
    """Compute Sec-WebSocket-Accept for a client's Sec-WebSocket-Key."""
    digest = hashlib.sha1((client_key + WS_GUID).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


@dataclass
class Frame:
    """One decoded websocket frame."""

    opcode: int
    payload: bytes = b""
    fin: bool = True

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


def encode_frame(opcode: int, payload: bytes = b"", mask: Optional[bytes] = None) -> bytes:
    """
    Encode a single, final frame.

    Args:
        opcode: Frame opcode (OP_TEXT, OP_CLOSE, ...).
        payload: Payload bytes.
        mask: 4-byte masking key. Only clients mask, so the server
              leaves this None.
    """
    header = bytearray([0x80 | opcode])
    mask_bit = 0x80 if mask else 0x00
    length = len(payload)

    if length <= 125:
        header.append(mask_bit | length)
    elif length < 65536:
        header.append(mask_bit | 126)
        header.extend(struct.pack("!H", length))
    else:
        header.append(mask_bit | 127)
        header.extend(struct.pack("!Q", length))

    if mask:
        header.extend(mask)
        payload = bytes(b ^ mask[i % 4] for i, b in enumerate(payload))

    return bytes(header) + payload


def encode_text_frame(message: str) -> bytes:
    """Encode a server → client text frame."""
    return encode_frame(OP_TEXT, message.encode("utf-8"))


def decode_frame(buffer: bytes, max_payload: Optional[int] = None) -> Optional[tuple[Frame, int]]:
    """
    Decode the first frame in `buffer`.

    Returns:
        (frame, bytes consumed), or None if the buffer does not hold a
        complete frame yet.

    Raises:
        FrameTooLarge: The declared length is over `max_payload`. Raised
                       as soon as the length is known.
    """
    if len(buffer) < 2:
        return None

    first, second = buffer[0], buffer[1]
    fin = bool(first & 0x80)
    opcode = first & 0x0F
    masked = bool(second & 0x80)
    length = second & 0x7F
    offset = 2

    if length == 126:
        if len(buffer) < offset + 2:
            return None
        (length,) = struct.unpack("!H", buffer[offset:offset + 2])
        offset += 2
    elif length == 127:
        if len(buffer) < offset + 8:
            return None
        (length,) = struct.unpack("!Q", buffer[offset:offset + 8])
        offset += 8

    if max_payload is not None and length > max_payload:
        raise FrameTooLarge(f"Frame payload of {length} bytes (limit {max_payload})")

    mask = b""
    if masked:
        if len(buffer) < offset + 4:
            return None
        mask = buffer[offset:offset + 4]
        offset += 4

    if len(buffer) < offset + length:
        return None

    payload = buffer[offset:offset + length]
    if masked:
        payload = bytes(b ^ mask[i % 4] for i, b in enumerate(payload))

    return Frame(opcode=opcode, payload=payload, fin=fin), offset + length


class WebSocket:
    """
    A server-side websocket on top of an accepted Connection.

    Created by WebSocket.accept() once the handshake has been written.
    From then on the Connection belongs to this object.

    Usage:
        ws = WebSocket.accept(request)
        while ws.poll():
            ws.send_text("reload")
        ws.close()
    """

    def __init__(self, connection):
        self.connection = connection
        self.alive = True
        self._buffer = b""

    @classmethod
    def accept(cls, request: HTTPRequest) -> "WebSocket":
        """
        Complete the upgrade handshake for `request`.

        Raises:
            WebSocketError: If the request has no key or no connection,
                            or the 101 response cannot be written.
        """
        if request.connection is None:
            raise WebSocketError("Request has no connection to upgrade")

        key = request.websocket_key
        if not key:
            raise WebSocketError("Missing Sec-WebSocket-Key header")

        response = (ResponseBuilder()
            .status(HTTPStatus.SWITCHING_PROTOCOLS)
            .header("Upgrade", "websocket")
            .header("Connection", "Upgrade")
            .header("Sec-WebSocket-Accept", accept_key(key))
            .build())

        if not request.connection.send_response(response.to_bytes()):
            raise WebSocketError("Failed to send websocket handshake")

        logger.debug(f"[{request.connection.id}] Upgraded to websocket")
        return cls(request.connection)

    def send_text(self, message: str) -> None:
        """
        Send a text frame.

        Raises:
            WebSocketError: If the socket is closed or the write fails.
        """
        if not self.alive:
            raise WebSocketError("Websocket is closed")

        if not self.connection.send_response(encode_text_frame(message)):
            self.alive = False
            raise WebSocketError("Failed to send websocket frame")

    def poll(self) -> bool:
        """
        Process whatever the client has sent so far, without blocking.

        Answers pings, notices close frames and EOF. A frame declaring more
        than MAX_PAYLOAD bytes closes the socket with 1009.

        Returns:
            True while the websocket is still open.
        """
        if not self.alive:
            return False

        data = self.connection.read_available()
        if data is None:
            return True
        if data == b"":
            self.alive = False
            return False

        self._buffer += data
        while True:
            try:
                decoded = decode_frame(self._buffer, MAX_PAYLOAD)
            except FrameTooLarge as e:
                logger.debug(f"[{self.connection.id}] {e}, closing")
                self._buffer = b""
                self.close(CLOSE_TOO_BIG)
                return False
            if decoded is None:
                break
            frame, consumed = decoded
            self._buffer = self._buffer[consumed:]

            if frame.opcode == OP_CLOSE:
                self.close()
                return False
            if frame.opcode == OP_PING:
                self.connection.send_response(encode_frame(OP_PONG, frame.payload))
            # text, binary and pong frames carry nothing for us

        return True

    def close(self, code: int = 1000) -> None:
        """Send a close frame (best effort) and mark the socket dead."""
        if not self.alive:
            return
        self.alive = False
        self.connection.send_response(encode_frame(OP_CLOSE, struct.pack("!H", code)))
