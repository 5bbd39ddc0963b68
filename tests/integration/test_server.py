"""
End-to-end tests against a listening ArchaeopteryxServer.
"""

import base64
import os
import socket
import threading
import time
from pathlib import Path

from archaeopteryx import ArchaeopteryxServer, ServerConfig
from archaeopteryx.errors import ProtocolViolation
from archaeopteryx.handlers.reload import WatchEvent, WatchKind
from archaeopteryx.http.websocket import accept_key

from conftest import ENTRY_PAGE, LiveServer, split_response


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def recv_until(sock: socket.socket, marker: bytes) -> bytes:
    data = b""
    while marker not in data:
        chunk = sock.recv(4096)
        if not chunk:
            break
        data += chunk
    return data


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def open_websocket(server: LiveServer) -> socket.socket:
    """Connect and finish the upgrade handshake; returns the raw socket."""
    key = base64.b64encode(os.urandom(16)).decode()
    sock = socket.create_connection(("127.0.0.1", server.port), timeout=10.0)
    sock.sendall(
        (
            "GET / HTTP/1.1\r\n"
            "Host: localhost\r\n"
            "Upgrade: websocket\r\n"
            "Connection: Upgrade\r\n"
            f"Sec-WebSocket-Key: {key}\r\n"
            "Sec-WebSocket-Version: 13\r\n"
            "\r\n"
        ).encode()
    )
    head = recv_until(sock, b"\r\n\r\n")
    assert head.startswith(b"HTTP/1.1 101")
    assert f"Sec-WebSocket-Accept: {accept_key(key)}".encode() in head
    return sock


class TestStaticFiles:
    """Tests for files, listings and 404s over the wire."""

    def test_file(self, live_server: LiveServer):
        """A file comes back with its type and length."""
        status, headers, body = split_response(live_server.get("/app.js"))

        assert status == 200
        assert headers["content-type"] == "text/javascript; charset=utf-8"
        assert headers["content-length"] == str(len(body))
        assert body == b"console.log('hi')"

    def test_encoded_name(self, live_server: LiveServer):
        """Spaces arrive percent-encoded."""
        status, _, body = split_response(live_server.get("/docs/read%20me.md"))

        assert status == 200
        assert body == b"# notes"

    def test_head(self, live_server: LiveServer):
        """HEAD sends the length but no body."""
        raw = live_server.request(b"HEAD /app.js HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n")
        status, headers, body = split_response(raw)

        assert status == 200
        assert headers["content-length"] == str(len("console.log('hi')"))
        assert body == b""

    def test_listing(self, live_server: LiveServer):
        """Directories are listed with links."""
        status, headers, body = split_response(live_server.get("/docs"))

        assert status == 200
        assert headers["content-type"].startswith("text/html")
        assert b'href="/docs/read%20me.md"' in body

    def test_not_found(self, live_server: LiveServer):
        """Missing paths are a 404 naming the path."""
        status, _, body = split_response(live_server.get("/nope.css"))

        assert status == 404
        assert b"/nope.css" in body

    def test_parent_segments_rejected(self, live_server: LiveServer):
        """.. never reaches the filesystem."""
        status, _, _ = split_response(live_server.get("/../etc/passwd"))

        assert status == 400

    def test_listing_off(self, config: ServerConfig):
        """--files-only turns directories into 404s."""
        config.directory_listing = False
        server = LiveServer(ArchaeopteryxServer(config)).start()
        try:
            status, _, _ = split_response(server.get("/docs"))
        finally:
            server.stop()

        assert status == 404

    def test_server_header(self, live_server: LiveServer):
        """Every response names the server."""
        _, headers, _ = split_response(live_server.get("/app.js"))

        assert headers["server"] == "archaeopteryx"


class TestEntryPoint:
    """Tests for GET / over the wire."""

    def test_reload_script_points_back(self, live_server: LiveServer):
        """The script connects to the address the page came from."""
        status, _, body = split_response(live_server.get("/"))

        assert status == 200
        assert body.startswith(ENTRY_PAGE.encode())
        assert f"ws://127.0.0.1:{live_server.port}".encode() in body

    def test_without_reload(self, config: ServerConfig):
        """With live reload off the page is untouched."""
        config.live_reload = False
        server = LiveServer(ArchaeopteryxServer(config)).start()
        try:
            _, _, body = split_response(server.get("/"))
        finally:
            server.stop()

        assert body == ENTRY_PAGE.encode()


class TestCors:
    """Tests for --cors over the wire."""

    def test_header_present(self, config: ServerConfig):
        """Files, listings and 404s all carry the header."""
        config.cors = True
        server = LiveServer(ArchaeopteryxServer(config)).start()
        try:
            responses = [split_response(server.get(path)) for path in ("/", "/app.js", "/docs", "/x")]
        finally:
            server.stop()

        for _, headers, _ in responses:
            assert headers["access-control-allow-origin"] == "*"

    def test_header_absent(self, live_server: LiveServer):
        """No header by default."""
        _, headers, _ = split_response(live_server.get("/app.js"))

        assert "access-control-allow-origin" not in headers


class TestInterceptors:
    """Tests for before/after interceptors on a live server."""

    def test_before_rewrites(self, config: ServerConfig):
        """Before interceptors see and change the request."""
        def to_app(request):
            request.path = "/app.js"
            request.raw_path = "/app.js"
            return request

        server = LiveServer(ArchaeopteryxServer(config, before=[to_app])).start()
        try:
            status, _, body = split_response(server.get("/anything"))
        finally:
            server.stop()

        assert status == 200
        assert body == b"console.log('hi')"

    def test_after_sees_request(self, config: ServerConfig):
        """After interceptors run once the response is written."""
        seen = []
        done = threading.Event()

        def record(request):
            seen.append(request.path)
            done.set()

        server = LiveServer(ArchaeopteryxServer(config, after=[record])).start()
        try:
            status, _, _ = split_response(server.get("/app.js"))
            assert done.wait(5.0)
        finally:
            server.stop()

        assert status == 200
        assert seen == ["/app.js"]

    def test_failing_after_does_not_break_response(self, config: ServerConfig):
        """An after interceptor that raises changes nothing for the client."""
        def boom(request):
            raise RuntimeError("after failed")

        server = LiveServer(ArchaeopteryxServer(config, after=[boom])).start()
        try:
            first = split_response(server.get("/app.js"))
            second = split_response(server.get("/app.js"))
        finally:
            server.stop()

        assert first[0] == second[0] == 200

    def test_failing_before_abandons_request(self, config: ServerConfig):
        """A before interceptor that raises closes the connection unanswered."""
        def boom(request):
            raise RuntimeError("before failed")

        server = LiveServer(ArchaeopteryxServer(config, before=[boom])).start()
        try:
            raw = server.get("/app.js")
            # The listener keeps going
            assert server.server.wait_until_ready(0)
        finally:
            server.stop()

        assert raw == b""

    def test_non_request_stops_server(self, config: ServerConfig):
        """A before interceptor returning a non-request is fatal."""
        server = ArchaeopteryxServer(config, before=[lambda request: "not a request"])
        errors = []

        def run():
            try:
                server.run(configure_logging=False)
            except ProtocolViolation as e:
                errors.append(e)

        thread = threading.Thread(target=run, daemon=True)
        thread.start()
        assert server.wait_until_ready(5.0)

        raw = LiveServer(server).get("/")
        thread.join(timeout=10.0)

        assert raw == b""
        assert not thread.is_alive()
        assert len(errors) == 1
        assert errors[0].received == "not a request"


class TestLiveReload:
    """Tests for the websocket endpoint."""

    def test_published_change_reaches_browser(self, live_server: LiveServer):
        """A modification is pushed as a "reload" text frame."""
        broadcaster = live_server.server.broadcaster
        sock = open_websocket(live_server)
        try:
            assert wait_for(lambda: broadcaster.subscriber_count == 1)

            broadcaster.publish(WatchEvent(WatchKind.MODIFY, ("/app.js",)))

            assert recv_exactly(sock, 8) == b"\x81\x06reload"
        finally:
            sock.close()

    def test_every_tab_reloads(self, live_server: LiveServer):
        """Each open socket gets its own frame."""
        broadcaster = live_server.server.broadcaster
        tabs = [open_websocket(live_server) for _ in range(3)]
        try:
            assert wait_for(lambda: broadcaster.subscriber_count == 3)

            broadcaster.publish(WatchEvent(WatchKind.MODIFY))

            for tab in tabs:
                assert recv_exactly(tab, 8) == b"\x81\x06reload"
        finally:
            for tab in tabs:
                tab.close()

    def test_closed_tab_unsubscribes(self, live_server: LiveServer):
        """Closing the browser side ends its loop."""
        broadcaster = live_server.server.broadcaster
        sock = open_websocket(live_server)
        assert wait_for(lambda: broadcaster.subscriber_count == 1)

        sock.close()

        assert wait_for(lambda: broadcaster.subscriber_count == 0)

    def test_file_edit_reloads(self, live_server: LiveServer, site_root: Path):
        """Writing to a served file triggers a reload."""
        broadcaster = live_server.server.broadcaster
        sock = open_websocket(live_server)
        try:
            assert wait_for(lambda: broadcaster.subscriber_count == 1)

            with open(site_root / "app.js", "a") as f:
                f.write("\nconsole.log('changed')")

            sock.settimeout(10.0)
            assert recv_exactly(sock, 8) == b"\x81\x06reload"
        finally:
            sock.close()

    def test_upgrade_refused_without_reload(self, config: ServerConfig):
        """With live reload off the upgrade is answered like a GET."""
        config.live_reload = False
        server = LiveServer(ArchaeopteryxServer(config)).start()
        try:
            raw = server.get("/", extra_headers="Upgrade: websocket\r\nSec-WebSocket-Key: abc\r\n")
        finally:
            server.stop()

        assert split_response(raw)[0] == 200
        assert server.server.broadcaster is None
