"""
=============================================================================
ARCHAEOPTERYX - Static File Server for Development
=============================================================================

Serves a directory over HTTP/HTTPS with:

    - SPA entry point for /  (index.html plus a live-reload script)
    - directory listings
    - live reload over a websocket whenever a watched file changes
    - before/after interceptors around every request

    from archaeopteryx import ArchaeopteryxServer, ServerConfig

    ArchaeopteryxServer(ServerConfig(root="public", port=3000)).run()

=============================================================================
PACKAGE LAYOUT
=============================================================================

    archaeopteryx/
    ├── __main__.py      CLI
    ├── config.py        ServerConfig
    ├── errors.py        exception hierarchy, report_error()
    ├── server.py        ArchaeopteryxServer
    ├── scaffold.py      starter project for a missing root
    ├── core/            socket server, connection, thread pool
    ├── http/            request parser, responses, MIME, websocket
    ├── handlers/        router, resolver, listing, live reload, 404
    └── interceptors/    pipeline, registry, access log

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .errors import (
    ArchaeopteryxError,
    ConfigurationError,
    ProtocolViolation,
    InterceptorError,
    WatchStreamError,
)
from .server import ArchaeopteryxServer
from .interceptors import InterceptorPipeline, register_interceptor

__all__ = [
    "__version__",
    "ServerConfig",
    "ArchaeopteryxServer",
    "ArchaeopteryxError",
    "ConfigurationError",
    "ProtocolViolation",
    "InterceptorError",
    "WatchStreamError",
    "InterceptorPipeline",
    "register_interceptor",
]
