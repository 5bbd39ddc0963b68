"""
=============================================================================
SOCKET SERVER - Listening Socket and Accept Loop
=============================================================================

Binds the listening socket and turns every accepted client into a
Connection for a callback (ArchaeopteryxServer queues it on the pool).
Nothing here reads from a client.

    ┌───────────────┐            ┌────────────┐  callback  ┌────────────┐
    │ listen socket │──accept()─►│ Connection │───────────►│ ThreadPool │
    └───────────────┘            └────────────┘            └────────────┘
            │
      selector also waits on a wake-up socket; shutdown() writes one
      byte to it so the loop stops at once

=============================================================================
ADDRESSES
=============================================================================

    host "0.0.0.0"          every IPv4 interface (phones on the LAN)
    host "127.0.0.1"        this machine only
    host "::" / "::1"       IPv6 (the reload script brackets the address)

=============================================================================
SIGNALS
=============================================================================

SIGINT and SIGTERM call shutdown(). Only the main thread may install
signal handlers, so a server started on another thread (tests, embedding)
is stopped by calling shutdown() directly.

=============================================================================
"""

import logging
import selectors
import signal
import socket
import ssl
import threading
from typing import Callable, Dict, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Accept loop.

    Usage:
        server = SocketServer(config, ssl_context=None)
        server.start(handle_connection)   # blocks until shutdown()
    """

    def __init__(self, config: ServerConfig, ssl_context: Optional[ssl.SSLContext] = None):
        self.config = config
        self.ssl_context = ssl_context

        self._listener: Optional[socket.socket] = None
        self._bound: Optional[Tuple[str, int]] = None
        self._stop = threading.Event()
        self._ready = threading.Event()
        self._wake_r: Optional[socket.socket] = None
        self._wake_w: Optional[socket.socket] = None
        self._saved_handlers: Dict[int, object] = {}

    @property
    def is_running(self) -> bool:
        return self._ready.is_set() and not self._stop.is_set()

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port), or the configured one before start()."""
        return self._bound or (self.config.host, self.config.port)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(
        self,
        connection_handler: Callable[[Connection], None],
        on_ready: Optional[Callable[[], None]] = None,
    ):
        """
        Bind, listen, and hand out connections until shutdown().

        Args:
            connection_handler: Called on this thread with each Connection.
            on_ready: Called once listening (address is known by then).

        Raises:
            OSError: The address could not be bound.
        """
        self._listener = self._listen()
        self._listener.setblocking(False)
        self._bound = self._listener.getsockname()[:2]
        self._wake_r, self._wake_w = socket.socketpair()
        self._stop.clear()
        self._install_signal_handlers()
        self._ready.set()
        logger.debug(f"Listening on {self._bound[0]}:{self._bound[1]}")

        try:
            if on_ready is not None:
                on_ready()
            self._serve(connection_handler)
        finally:
            self._close()

    def shutdown(self):
        """Stop the accept loop. Safe from signal handlers, other threads, or twice."""
        if self._stop.is_set():
            return
        self._stop.set()
        logger.info("Stopped accepting connections")
        wake = self._wake_w
        if wake is not None:
            try:
                wake.send(b"\0")
            except OSError:
                pass

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until listening. False on timeout."""
        return self._ready.wait(timeout)

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown() was called. False on timeout."""
        return self._stop.wait(timeout)

    # =========================================================================
    # SOCKETS
    # =========================================================================

    def _listen(self) -> socket.socket:
        host, port = self.config.host, self.config.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        try:
            # create_server sets SO_REUSEADDR, so a restart does not hit TIME_WAIT
            return socket.create_server(
                (host, port),
                family=family,
                backlog=self.config.backlog,
            )
        except OSError as e:
            logger.error(f"Failed to bind to {host}:{port}: {e}")
            raise

    def _serve(self, connection_handler: Callable[[Connection], None]):
        with selectors.DefaultSelector() as selector:
            selector.register(self._listener, selectors.EVENT_READ)
            selector.register(self._wake_r, selectors.EVENT_READ)

            while not self._stop.is_set():
                for key, _ in selector.select():
                    if key.fileobj is self._wake_r:
                        self._wake_r.recv(64)
                        continue
                    conn = self._accept()
                    if conn is not None:
                        connection_handler(conn)

    def _accept(self) -> Optional[Connection]:
        try:
            client, address = self._listener.accept()
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as e:
            if not self._stop.is_set():
                logger.error(f"Accept failed: {e}")
            return None

        # Small pages and websocket frames go out without Nagle delay
        client.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        address = address[:2]

        if self.ssl_context is not None:
            try:
                client = self.ssl_context.wrap_socket(
                    client,
                    server_side=True,
                    do_handshake_on_connect=False,
                )
            except (ssl.SSLError, OSError) as e:
                logger.warning(f"TLS setup failed for {address[0]}: {e}")
                client.close()
                return None

        logger.debug(f"Accepted {address[0]}:{address[1]}")
        return Connection(
            socket=client,
            address=address,
            buffer_size=self.config.buffer_size,
            timeout=self.config.timeout,
            keep_alive_timeout=self.config.keep_alive_timeout,
            max_request_size=self.config.max_request_size,
        )

    def _close(self):
        self._restore_signal_handlers()
        self._ready.clear()
        for sock in (self._listener, self._wake_r, self._wake_w):
            if sock is not None:
                sock.close()
        self._listener = self._wake_r = self._wake_w = None
        logger.debug("Listening socket closed")

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def _install_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return

        def on_signal(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
            self.shutdown()

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._saved_handlers[signum] = signal.signal(signum, on_signal)

    def _restore_signal_handlers(self):
        for signum, handler in self._saved_handlers.items():
            signal.signal(signum, handler)
        self._saved_handlers.clear()
