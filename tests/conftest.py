"""
pytest configuration and fixtures.
"""

import socket
from pathlib import Path
from typing import Generator, Optional
import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from archaeopteryx import ArchaeopteryxServer, ServerConfig
from archaeopteryx.http import HTTPRequest


ENTRY_PAGE = "<!DOCTYPE html><html><body><h1>home</h1></body></html>"


@pytest.fixture
def site_root(tmp_path: Path) -> Path:
    """
    A small site:

        site/
        ├── index.html
        ├── app.js
        ├── .env
        ├── docs/
        │   └── read me.md
        └── img/
            └── logo.svg
    """
    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_text(ENTRY_PAGE)
    (root / "app.js").write_text("console.log('hi')")
    (root / ".env").write_text("SECRET=1")
    (root / "docs").mkdir()
    (root / "docs" / "read me.md").write_text("# notes")
    (root / "img").mkdir()
    (root / "img" / "logo.svg").write_text("<svg></svg>")
    return root


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def config(site_root: Path, free_port: int) -> ServerConfig:
    """Test configuration serving site_root on 127.0.0.1."""
    return ServerConfig(
        root=str(site_root),
        host="127.0.0.1",
        port=free_port,
        min_workers=2,
        max_workers=8,
        timeout=5.0,
        keep_alive=False,
    )


def make_request(
    path: str,
    method: str = "GET",
    headers: Optional[dict] = None,
    local_address=("127.0.0.1", 8080),
) -> HTTPRequest:
    """Build a request by hand, the way the parser would."""
    return HTTPRequest(
        method=method,
        path=path,
        headers=headers or {},
        client_address=("127.0.0.1", 50000),
        local_address=local_address,
    )


class LiveServer:
    """Runs an ArchaeopteryxServer on a background thread."""

    def __init__(self, server: ArchaeopteryxServer):
        self.server = server
        self._thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self) -> "LiveServer":
        self._thread = self.server.start_background()
        return self

    def stop(self):
        self.server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=10.0)

    def request(self, raw: bytes, timeout: float = 5.0) -> bytes:
        """Send raw bytes, read until the server closes the connection."""
        with socket.create_connection(("127.0.0.1", self.port), timeout=timeout) as s:
            s.sendall(raw)
            chunks = []
            while True:
                chunk = s.recv(65536)
                if not chunk:
                    break
                chunks.append(chunk)
        return b"".join(chunks)

    def get(self, path: str, extra_headers: str = "") -> bytes:
        return self.request(
            f"GET {path} HTTP/1.1\r\nHost: localhost\r\n{extra_headers}Connection: close\r\n\r\n".encode()
        )


@pytest.fixture
def live_server(config: ServerConfig) -> Generator[LiveServer, None, None]:
    """A running server for site_root."""
    server = LiveServer(ArchaeopteryxServer(config)).start()
    yield server
    server.stop()


def split_response(raw: bytes):
    """Split raw response bytes into (status code, headers dict, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body
