"""
=============================================================================
ARCHAEOPTERYX SERVER - Main Server Orchestrator
=============================================================================

Wires the transport, the interceptor pipelines and the router together.

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    1. ACCEPT        SocketServer.accept() → Connection (TLS-wrapped if secure)
    2. QUEUE         ThreadPool.submit(_process_connection)
    3. HANDSHAKE     TLS handshake, in the worker
    4. READ/PARSE    Connection.read_request() → RequestParser → HTTPRequest
    5. BEFORE        before pipeline (request → request)
    6. DISPATCH      Router.dispatch() → HTTPResponse, or None (websocket)
    7. SEND          head, then the file via sendfile() for streamed responses
    8. AFTER         after pipeline on the original request, result dropped
    9. KEEP-ALIVE    back to 4, or close

=============================================================================
FAILURES
=============================================================================

    HTTPParseError       → answered with its status (400/405/413/505), closed
    read timeout         → 408, closed
    InterceptorError     → logged, connection closed without a response
    other handler error  → logged, connection closed without a response
    ProtocolViolation    → listener stopped, run() re-raises it

=============================================================================
SHUTDOWN
=============================================================================

    1. SocketServer stops accepting (Ctrl+C, SIGTERM, or shutdown())
    2. ReloadBroadcaster stops the watcher and ends every websocket loop
    3. ThreadPool drains and stops its workers

=============================================================================
"""

import logging
import socket
import ssl
import threading
from typing import Any, List, Optional, Tuple

from .config import ServerConfig
from .core import Connection, SocketServer, ThreadPool
from .errors import ConfigurationError, ProtocolViolation, report_error
from .handlers import ReloadBroadcaster, Router
from .http import (
    HTTPParseError,
    HTTPRequest,
    HTTPResponse,
    HTTPStatus,
    RequestParser,
    error_response,
)
from .interceptors import InterceptorPipeline, as_pipeline


logger = logging.getLogger(__name__)


class ArchaeopteryxServer:
    """
    Development static file server with live reload.

    =========================================================================
    USAGE
    =========================================================================

        config = ServerConfig(root="site", port=3000, cors=True)
        server = ArchaeopteryxServer(config)
        server.run()          # blocks until Ctrl+C

    Interceptors can also be passed directly, overriding config.before and
    config.after:

        server = ArchaeopteryxServer(config, before=[strip_query])

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        before: Any = None,
        after: Any = None,
    ):
        """
        Build every component. Nothing is bound until run().

        Raises:
            ConfigurationError: Invalid settings, missing TLS files, or an
                                interceptor reference that cannot be loaded.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        # ─────────────────────────────────────────────────────────────────
        # TRANSPORT
        # ─────────────────────────────────────────────────────────────────

        self._ssl_context = self._create_ssl_context() if self.config.secure else None
        self._socket_server = SocketServer(self.config, ssl_context=self._ssl_context)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )
        self._parser = RequestParser(max_request_size=self.config.max_request_size)

        # ─────────────────────────────────────────────────────────────────
        # APPLICATION
        # ─────────────────────────────────────────────────────────────────

        self._broadcaster: Optional[ReloadBroadcaster] = None
        if self.config.live_reload:
            self._broadcaster = ReloadBroadcaster(
                self.config.root_path,
                silent=self.config.silent,
                debug=self.config.debug,
            )
        self._router = Router(self.config, self._broadcaster)
        self._before = as_pipeline(self.config.before if before is None else before)
        self._after = as_pipeline(self.config.after if after is None else after)

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE
        # ─────────────────────────────────────────────────────────────────

        self._running = False
        self._fatal: Optional[ProtocolViolation] = None
        self._fatal_lock = threading.Lock()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def address(self) -> Tuple[str, int]:
        """The (host, port) actually bound, once running."""
        return self._socket_server.address

    @property
    def router(self) -> Router:
        return self._router

    @property
    def broadcaster(self) -> Optional[ReloadBroadcaster]:
        return self._broadcaster

    @property
    def before(self) -> InterceptorPipeline:
        return self._before

    @property
    def after(self) -> InterceptorPipeline:
        return self._after

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self, configure_logging: bool = True):
        """
        Serve until shutdown (blocking).

        Raises:
            OSError: The address could not be bound.
            ProtocolViolation: Something other than a request reached the
                               router; the listener was stopped because of it.
        """
        if configure_logging:
            self._setup_logging()

        self._running = True
        self._thread_pool.start()

        on_ready = None if self.config.silent or not configure_logging else self._print_banner

        try:
            self._socket_server.start(self._handle_connection, on_ready=on_ready)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

        if self._fatal is not None:
            raise self._fatal

    def start_background(self) -> threading.Thread:
        """
        Run the server on a daemon thread and wait until it listens.

        Used by the tests and by anyone embedding the server.
        """
        thread = threading.Thread(
            target=self.run,
            kwargs={"configure_logging": False},
            name="archaeopteryx",
            daemon=True,
        )
        thread.start()
        if not self._socket_server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server did not start listening within 5 seconds")
        return thread

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_ready(timeout)

    def shutdown(self):
        """Stop accepting connections. run() returns once cleanup is done."""
        self._socket_server.shutdown()

    def _shutdown(self):
        logger.debug("Shutting down server...")
        self._running = False
        if self._broadcaster is not None:
            self._broadcaster.close()
        self._thread_pool.shutdown(timeout=5.0)
        logger.info("Server stopped")

    def _setup_logging(self):
        """Configure logging from silent/debug."""
        level = getattr(logging, self.config.log_level, logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("archaeopteryx").setLevel(level)

    def _create_ssl_context(self) -> ssl.SSLContext:
        cert, key = self.config.check_credentials()
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        try:
            context.load_cert_chain(certfile=str(cert), keyfile=str(key))
        except (ssl.SSLError, OSError) as e:
            raise ConfigurationError(f"Could not load TLS credentials: {e}") from e
        return context

    # =========================================================================
    # STARTUP BANNER
    # =========================================================================

    def _print_banner(self):
        print(self.banner())

    def banner(self) -> str:
        """Startup text: served root, addresses and flags."""
        scheme = self.config.scheme
        host, port = self.address

        lines = [
            "",
            "  archaeopteryx",
            "",
            f"  Now serving {self.config.root_path}:",
            "",
        ]

        if host in ("0.0.0.0", ""):
            lines.append(f"      Local:      {scheme}://localhost:{port}")
            network = network_addresses()
            if network:
                for addr in network:
                    lines.append(f"      Network:    {scheme}://{addr}:{port}")
            else:
                lines.append("      Network:    Could not resolve network address")
        else:
            lines.append(f"      Local:      {scheme}://{host}:{port}")

        flags = [
            name for name, on in (
                ("live reload", self.config.live_reload),
                ("cors", self.config.cors),
                ("https", self.config.secure),
                ("directory listing", self.config.directory_listing),
                ("absolute paths", self.config.allow_absolute),
                ("debug", self.config.debug),
            ) if on
        ]
        lines.append("")
        lines.append(f"  Enabled: {', '.join(flags) or 'nothing'}")
        lines.append("  Press Ctrl+C to stop")
        lines.append("")
        return "\n".join(lines)

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Queue a connection on the thread pool (accept loop thread)."""
        submitted = self._thread_pool.submit(
            self._process_connection,
            conn,
            max_wait=self.config.timeout,
            on_expired=self._reject_connection,
        )

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool backlog full, rejecting connection")
            self._reject_connection(conn)

    def _reject_connection(self, conn: Connection):
        self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
        conn.close()

    def _process_connection(self, conn: Connection):
        """Keep-alive loop for one connection (worker thread)."""
        with conn:
            try:
                conn.handshake()
            except (ssl.SSLError, OSError) as e:
                logger.debug(f"[{conn.id}] TLS handshake failed: {e}")
                return

            while self._running:
                try:
                    raw_request = conn.read_request()
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break
                except ValueError as e:
                    self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, str(e))
                    break
                except OSError as e:
                    logger.debug(f"[{conn.id}] Read failed: {e}")
                    break

                if raw_request is None:
                    break

                try:
                    request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    self._send_error(conn, HTTPStatus(e.status_code), str(e))
                    break

                request.connection = conn
                request.local_address = conn.local_address

                if not self._handle_request(conn, request):
                    break

                conn.set_keep_alive()

    def _handle_request(self, conn: Connection, request: HTTPRequest) -> bool:
        """
        Run one request through before → router → send → after.

        Returns:
            True if the connection can serve another request.
        """
        try:
            response = self._router.dispatch(self._before(request))
        except ProtocolViolation as e:
            self._stop_on_violation(e)
            return False
        except Exception as e:
            report_error(
                logger, e,
                silent=self.config.silent,
                debug=self.config.debug,
                context=f"{request.method} {request.target}",
            )
            return False

        if response is None:
            # The websocket branch used the connection up
            self._after.run_detached(request, self.config.silent, self.config.debug)
            return False

        keep_alive = self._set_connection_headers(request, response)
        try:
            sent = self._send(conn, request, response)
        finally:
            response.close()

        self._after.run_detached(request, self.config.silent, self.config.debug)
        return sent and keep_alive

    def _set_connection_headers(self, request: HTTPRequest, response: HTTPResponse) -> bool:
        """Add Connection/Keep-Alive headers. Returns whether to keep alive."""
        keep_alive = (
            self.config.keep_alive
            and request.is_keep_alive
            and response.headers.get("Connection", "").lower() != "close"
        )
        if keep_alive:
            response.headers.setdefault("Connection", "keep-alive")
            response.headers.setdefault(
                "Keep-Alive",
                f"timeout={int(self.config.keep_alive_timeout)}",
            )
        else:
            response.headers["Connection"] = "close"
        return keep_alive

    def _send(self, conn: Connection, request: HTTPRequest, response: HTTPResponse) -> bool:
        """Write a response, streaming the file body if there is one."""
        if request.method == "HEAD":
            length = response.stream_length if response.is_streamed else len(response.body)
            response.headers.setdefault("Content-Length", str(length))
            response.body = b""
            response.close()

        if not conn.send_response(response.to_bytes(self.config.server_name)):
            return False
        if response.is_streamed:
            return conn.send_file(response.stream, response.stream_length)
        return True

    def _stop_on_violation(self, violation: ProtocolViolation):
        with self._fatal_lock:
            if self._fatal is None:
                self._fatal = violation
        logger.critical(f"{violation}. Stopping the server.")
        self._socket_server.shutdown()

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str):
        """Plain-text error for failures before routing."""
        response = error_response(status, message)
        if self.config.cors:
            response.set_header("Access-Control-Allow-Origin", "*")
        conn.send_response(response.to_bytes(self.config.server_name))


# =============================================================================
# NETWORK ADDRESSES
# =============================================================================

def network_addresses() -> List[str]:
    """
    Non-loopback IPv4 addresses of this machine, for the banner.

    Tries the host name first, then the address the OS would route
    outbound traffic from (a UDP connect sends no packets).
    """
    found: List[str] = []
    try:
        _, _, addrs = socket.gethostbyname_ex(socket.gethostname())
        found.extend(a for a in addrs if not a.startswith("127."))
    except OSError:
        pass

    if not found:
        probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            probe.connect(("10.255.255.255", 1))
            addr = probe.getsockname()[0]
            if not addr.startswith("127.") and addr != "0.0.0.0":
                found.append(addr)
        except OSError:
            pass
        finally:
            probe.close()

    return list(dict.fromkeys(found))
