"""
=============================================================================
CONNECTION - One Accepted Client Socket
=============================================================================

    read_request()     bytes of the next complete request, or None at EOF
    send_response()    sendall() a response head (and in-memory body)
    send_file()        socket.sendfile() an open file
    read_available()   non-blocking read, once the socket is a websocket
    close()            FIN, short drain, close

=============================================================================
STATES
=============================================================================

    WAITING ──► ACTIVE ──► WAITING ──► ...        keep-alive
                  │
                  ├──► UPGRADED                   live-reload websocket
                  ▼
                CLOSED

A browser usually opens several keep-alive connections for one page
(HTML, CSS, JS, images in parallel). While WAITING for a second request
the socket uses the shorter keep_alive_timeout.

=============================================================================
TLS
=============================================================================

With --secure the accept loop hands over an ssl.SSLSocket that has not
shaken hands yet. handshake() does it from the worker thread, so a slow
client never stalls accept().

=============================================================================
"""

import itertools
import logging
import re
import select
import socket
import ssl
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Optional


logger = logging.getLogger(__name__)


HEADER_END = b"\r\n\r\n"

_CONTENT_LENGTH = re.compile(rb"^content-length:[ \t]*(\d+)[ \t]*\r?$", re.IGNORECASE | re.MULTILINE)

_ids = itertools.count(1)


class ConnectionState(Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    UPGRADED = "upgraded"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    A client socket plus the bytes read from it but not consumed yet.

    Attributes:
        socket: Plain or TLS socket from accept().
        address: The client's (ip, port).
        id: Short tag for log lines ("c17").
        requests_handled: Requests read so far.
    """

    socket: socket.socket
    address: tuple[str, int]

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024

    id: str = field(default_factory=lambda: f"c{next(_ids)}")
    state: ConnectionState = ConnectionState.WAITING
    requests_handled: int = 0
    last_activity: float = field(default_factory=time.monotonic)

    _pending: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def is_secure(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    @property
    def local_address(self) -> Optional[tuple[str, int]]:
        """The interface and port the client actually reached."""
        try:
            return self.socket.getsockname()[:2]
        except OSError:
            return None

    def handshake(self) -> None:
        """
        TLS handshake; a no-op for plain sockets.

        Raises:
            ssl.SSLError: Plain HTTP sent to the HTTPS port, or the client
                          rejected the certificate.
        """
        if self.is_secure:
            self.socket.do_handshake()
            logger.debug(f"[{self.id}] {self.socket.version()} established")

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Bytes of the next complete request (head plus Content-Length body).

        Anything received past the end of the request stays buffered for
        the next call (pipelining).

        Returns:
            None when the client closed the connection, or an idle
            keep-alive connection timed out.

        Raises:
            TimeoutError: The first request did not arrive within `timeout`.
            ValueError: More than max_request_size bytes.
        """
        waiting = self.requests_handled > 0
        if waiting:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            head_end = self._fill_until_head()
            if head_end < 0:
                return None

            # The head is read with the short timeout, the rest with the normal one
            self.state = ConnectionState.ACTIVE
            if waiting:
                self.socket.settimeout(self.timeout)

            body_length = _content_length(bytes(self._pending[:head_end]))
            end = head_end + len(HEADER_END) + body_length
            self._check_size(end)
            while len(self._pending) < end:
                if not self._fill():
                    break
        except socket.timeout:
            if waiting:
                logger.debug(f"[{self.id}] Idle keep-alive connection timed out")
                return None
            raise TimeoutError("Request read timeout")
        finally:
            if self.state is not ConnectionState.CLOSED:
                self.socket.settimeout(self.timeout)

        request = bytes(self._pending[:end])
        del self._pending[:end]
        self.requests_handled += 1
        return request

    def _fill_until_head(self) -> int:
        """Read until the blank line after the headers; -1 on EOF."""
        searched = 0
        while True:
            found = self._pending.find(HEADER_END, searched)
            if found >= 0:
                return found
            searched = max(len(self._pending) - len(HEADER_END) + 1, 0)
            if not self._fill():
                return -1
            self._check_size(len(self._pending))

    def _fill(self) -> bool:
        """One recv() into the buffer. False at EOF or on a reset."""
        try:
            chunk = self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return False
        if not chunk:
            return False
        self._pending += chunk
        self.last_activity = time.monotonic()
        return True

    def _check_size(self, size: int) -> None:
        if size > self.max_request_size:
            raise ValueError(f"Request too large: {size} bytes (limit {self.max_request_size})")

    def read_available(self) -> Optional[bytes]:
        """
        Whatever the client has sent, without blocking.

        Returns:
            The bytes, b"" once the client has gone, or None when nothing
            arrived.
        """
        if self._pending:
            data = bytes(self._pending)
            self._pending.clear()
            return data

        # Decrypted TLS bytes are invisible to select()
        if not (self.is_secure and self.socket.pending()):
            try:
                readable, _, _ = select.select([self.socket], [], [], 0)
            except (OSError, ValueError):
                return b""
            if not readable:
                return None

        try:
            data = self.socket.recv(self.buffer_size)
        except (ssl.SSLWantReadError, BlockingIOError, socket.timeout):
            return None
        except OSError:
            return b""
        self.last_activity = time.monotonic()
        return data

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """sendall(); False if the client has gone."""
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False
        self.last_activity = time.monotonic()
        return True

    def send_file(self, stream: BinaryIO, length: Optional[int] = None) -> bool:
        """
        Write an open binary file to the client.

        socket.sendfile() uses os.sendfile() on plain sockets and falls
        back to read/send for TLS. The caller closes the stream.

        Returns:
            False if the client went away part way through.
        """
        try:
            self.socket.sendfile(stream, count=length)
        except OSError as e:
            logger.debug(f"[{self.id}] File transfer interrupted: {e}")
            return False
        self.last_activity = time.monotonic()
        return True

    # =========================================================================
    # STATE / CLOSING
    # =========================================================================

    def set_keep_alive(self) -> None:
        self.state = ConnectionState.WAITING

    def mark_upgraded(self) -> None:
        self.state = ConnectionState.UPGRADED

    def close(self) -> None:
        """Send FIN, give the client half a second to finish, then close."""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_WR)
            self.socket.settimeout(0.5)
            while self.socket.recv(self.buffer_size):
                pass
        except (OSError, ValueError):
            pass
        finally:
            self.socket.close()

        logger.debug(f"[{self.id}] Closed after {self.requests_handled} requests")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _content_length(head: bytes) -> int:
    """Content-Length from a raw request head; 0 if absent."""
    match = _CONTENT_LENGTH.search(head)
    return int(match.group(1)) if match else 0
