"""
=============================================================================
ROUTER - Per-Request Decision Tree
=============================================================================

There are no registered routes. Every request walks the same tree:

    request
      │
      ├── not an HTTPRequest ─────────────────► ProtocolViolation (fatal)
      │
      ├── Upgrade: websocket (live reload on) ► ReloadBroadcaster
      │                                          (connection taken over)
      ├── GET / ──── entry point readable? ──yes► entry page + reload script
      │                      │no
      │                      ▼
      └── PathResolver.resolve(path)
            ├── NotFound ─────────────────────► 404
            ├── directory, listing on ────────► listing
            ├── directory, listing off ───────► 404
            └── file ─────────────────────────► streamed file

Errors:

    FileNotFoundError / NotADirectoryError   → 404 (the file went away
                                               between stat and open)
    anything else                            → propagates; the server logs
                                               it and closes the connection

With cors on, every response from here carries
Access-Control-Allow-Origin: *.

=============================================================================
"""

import logging
import os
from typing import Callable, Optional

from ..config import ServerConfig
from ..errors import ProtocolViolation, report_error
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder
from ..http.status_codes import HTTPStatus
from .listing import list_directory, render_listing
from .not_found import render_not_found
from .reload import ReloadBroadcaster, append_reload_script
from .resolver import Found, PathResolver


logger = logging.getLogger(__name__)


NotFoundRenderer = Callable[[str], str]


class Router:
    """
    Turns one request into one response.

    Usage:
        router = Router(config, broadcaster)
        response = router.dispatch(request)
        if response is None:
            ...   # the websocket branch used the connection up
    """

    def __init__(
        self,
        config: ServerConfig,
        broadcaster: Optional[ReloadBroadcaster] = None,
        not_found_renderer: NotFoundRenderer = render_not_found,
    ):
        self.config = config
        self.root = config.root_path
        self.broadcaster = broadcaster
        self.render_not_found = not_found_renderer
        self.resolver = PathResolver(self.root, allow_absolute=config.allow_absolute)

    def dispatch(self, request: HTTPRequest) -> Optional[HTTPResponse]:
        """
        Route a request.

        Returns:
            The response to write, or None when the connection was taken
            over by a websocket.

        Raises:
            ProtocolViolation: `request` is not an HTTPRequest.
        """
        if not isinstance(request, HTTPRequest):
            raise ProtocolViolation(request)

        logger.info(f"{request.method} {request.target}")

        try:
            response = self._route(request)
        except (FileNotFoundError, NotADirectoryError) as e:
            response = self._not_found_after(e, request)

        if response is not None and self.config.cors:
            response.set_header("Access-Control-Allow-Origin", "*")
        return response

    # =========================================================================
    # DECISION TREE
    # =========================================================================

    def _route(self, request: HTTPRequest) -> Optional[HTTPResponse]:
        if (
            self.config.live_reload
            and self.broadcaster is not None
            and request.is_websocket_upgrade
        ):
            return self.broadcaster.handle_upgrade(request)

        if request.method == "GET" and request.path == "/":
            response = self._serve_entry_point(request)
            if response is not None:
                return response

        result = self.resolver.resolve(request.raw_path)
        if not isinstance(result, Found):
            return self._not_found(request)

        if result.is_directory:
            if not self.config.directory_listing:
                return self._not_found(request)
            return self._serve_listing(result, request)

        return self._serve_file(result)

    def _serve_entry_point(self, request: HTTPRequest) -> Optional[HTTPResponse]:
        """The SPA entry page, or None if it cannot be read."""
        path = self.root / self.config.entry_point
        try:
            page = path.read_bytes()
        except OSError as e:
            logger.debug(f"No entry point ({e}), listing {request.path} instead")
            return None

        if self.config.live_reload:
            host, port = request.local_address or (self.config.host, self.config.port)
            page = append_reload_script(page, host, port, secure=self.config.secure)

        return ResponseBuilder().html(page).build()

    def _serve_listing(self, found: Found, request: HTTPRequest) -> HTTPResponse:
        entries = list_directory(found.path, request.path)
        return ResponseBuilder().html(render_listing(entries, request.path)).build()

    def _serve_file(self, found: Found) -> HTTPResponse:
        stream = open(found.path, "rb")
        try:
            length = os.fstat(stream.fileno()).st_size
        except OSError:
            stream.close()
            raise
        return ResponseBuilder().file(stream, length, found.path.name).build()

    # =========================================================================
    # NOT FOUND
    # =========================================================================

    def _not_found(self, request: HTTPRequest) -> HTTPResponse:
        return (ResponseBuilder()
            .status(HTTPStatus.NOT_FOUND)
            .html(self.render_not_found(request.target))
            .build())

    def _not_found_after(self, error: OSError, request: HTTPRequest) -> HTTPResponse:
        """404 for a path that vanished mid-request."""
        try:
            response = self._not_found(request)
        except Exception:
            report_error(logger, error, silent=self.config.silent, debug=True, context=request.target)
            raise
        report_error(
            logger, error,
            silent=self.config.silent,
            debug=self.config.debug,
            context=request.target,
        )
        return response
