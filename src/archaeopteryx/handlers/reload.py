"""
=============================================================================
LIVE RELOAD - Filesystem Watch → Websocket Broadcast
=============================================================================

    ┌──────────────┐  on_any_event  ┌──────────────────┐  put()  ┌─────────┐
    │  watchdog    │ ─────────────► │ ReloadBroadcaster│ ──────► │ queue A │──► tab A
    │  Observer    │                │    .publish()    │ ──────► │ queue B │──► tab B
    │ (own thread) │                └──────────────────┘ ──────► │ queue C │──► tab C
    └──────────────┘                                             └─────────┘

One Observer watches the whole root recursively. It is started by the
first websocket upgrade, under a lock, and reused by every later one.
Each browser tab gets its own Subscription queue, so every tab sees every
event (fan-out), and a slow or dead tab never holds up the others.

=============================================================================
WHICH EVENTS RELOAD
=============================================================================

    watchdog event           WatchKind    sends "reload"
    ──────────────           ─────────    ──────────────
    FileModifiedEvent        MODIFY       yes
    File/DirMovedEvent       MODIFY       yes
    FileCreatedEvent         CREATE       no
    DirCreatedEvent          CREATE       no
    File/DirDeletedEvent     REMOVE       no
    DirModifiedEvent         OTHER        no
    opened / closed          OTHER        no

Editors that save by writing a temp file and renaming it over the
original show up as a move, so moves count as modifications.
Creating a file also touches its directory's mtime (DirModifiedEvent);
that is kept apart from MODIFY so adding a file does not reload.

=============================================================================
PER-SOCKET LOOP
=============================================================================

    while websocket open:
        read what the browser sent (close, ping) without blocking
        wait up to poll_interval for the next event
        MODIFY → send "reload"

A failed send or a dead Observer ends that one loop. It is logged
(unless silent) and never reaches the listener or other tabs.

=============================================================================
"""

import logging
import os
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Set, Tuple, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import WatchStreamError, report_error
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, bad_request
from ..http.websocket import WebSocket, WebSocketError


logger = logging.getLogger(__name__)


RELOAD_MESSAGE = "reload"


class WatchKind(Enum):
    """Kinds of filesystem change."""
    MODIFY = "modify"
    CREATE = "create"
    REMOVE = "remove"
    OTHER = "other"


class WatchState(Enum):
    """Broadcaster lifecycle."""
    UNINITIALIZED = "uninitialized"
    WATCHING = "watching"
    CLOSED = "closed"


@dataclass(frozen=True)
class WatchEvent:
    """A filesystem change and the paths it touched."""
    kind: WatchKind
    paths: Tuple[str, ...] = ()


def translate_event(event: FileSystemEvent) -> WatchEvent:
    """Map a watchdog event onto a WatchEvent."""
    paths = [os.fsdecode(event.src_path)]
    dest = getattr(event, "dest_path", "")
    if dest:
        paths.append(os.fsdecode(dest))

    event_type = event.event_type
    if event_type == "modified":
        kind = WatchKind.OTHER if event.is_directory else WatchKind.MODIFY
    elif event_type == "moved":
        kind = WatchKind.MODIFY
    elif event_type == "created":
        kind = WatchKind.CREATE
    elif event_type == "deleted":
        kind = WatchKind.REMOVE
    else:
        kind = WatchKind.OTHER

    return WatchEvent(kind=kind, paths=tuple(paths))


class _EventHandler(FileSystemEventHandler):
    """Feeds watchdog events into the broadcaster."""

    def __init__(self, broadcaster: "ReloadBroadcaster"):
        super().__init__()
        self.broadcaster = broadcaster

    def on_any_event(self, event: FileSystemEvent) -> None:
        self.broadcaster.publish(translate_event(event))


# Put on a Subscription's queue to end its loop
_CLOSED = object()


class Subscription:
    """One consumer's view of the event stream."""

    def __init__(self):
        self._queue: "queue.Queue[object]" = queue.Queue()
        self.closed = False

    def put(self, event: WatchEvent) -> None:
        if not self.closed:
            self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[WatchEvent]:
        """
        Next event, or None once the subscription is closed.

        Raises:
            queue.Empty: Nothing arrived within `timeout`.
        """
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            return None
        return item

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put(_CLOSED)


class ReloadBroadcaster:
    """
    Shared filesystem watcher with per-websocket fan-out.

    Usage:
        broadcaster = ReloadBroadcaster("/srv/site")
        response = broadcaster.handle_upgrade(request)   # blocks until the tab closes
        ...
        broadcaster.close()                              # at server shutdown
    """

    def __init__(
        self,
        root: Union[str, Path],
        observer_factory: Callable[[], object] = Observer,
        poll_interval: float = 0.25,
        silent: bool = False,
        debug: bool = False,
    ):
        self.root = Path(root)
        self.poll_interval = poll_interval
        self.silent = silent
        self.debug = debug

        self._observer_factory = observer_factory
        self._observer = None
        self._lock = threading.Lock()
        self._subscriptions: Set[Subscription] = set()
        self._closed = False

    @property
    def state(self) -> WatchState:
        if self._closed:
            return WatchState.CLOSED
        if self._observer is None:
            return WatchState.UNINITIALIZED
        return WatchState.WATCHING

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    # =========================================================================
    # WATCHER
    # =========================================================================

    def ensure_watching(self):
        """
        Start the Observer unless it is already running.

        Safe to call from many threads at once: exactly one Observer is
        ever created.

        Raises:
            WatchStreamError: After close(), or if the root cannot be watched.
        """
        with self._lock:
            if self._closed:
                raise WatchStreamError("Broadcaster is closed")
            if self._observer is not None:
                return self._observer

            observer = self._observer_factory()
            try:
                observer.schedule(_EventHandler(self), str(self.root), recursive=True)
                observer.start()
            except OSError as e:
                raise WatchStreamError(f"Cannot watch {self.root}: {e}") from e

            self._observer = observer
            logger.debug(f"Watching {self.root} for changes")
            return observer

    def _watch_alive(self) -> bool:
        observer = self._observer
        return observer is not None and observer.is_alive()

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    def subscribe(self) -> Subscription:
        subscription = Subscription()
        with self._lock:
            self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.discard(subscription)
        subscription.close()

    def publish(self, event: WatchEvent) -> None:
        """Hand an event to every current subscriber."""
        if event.kind is WatchKind.MODIFY:
            logger.debug(f"Change detected: {', '.join(event.paths)}")
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.put(event)

    # =========================================================================
    # PER-SOCKET LOOP
    # =========================================================================

    def forward(self, ws: WebSocket, subscription: Subscription) -> None:
        """
        Push "reload" to `ws` for every MODIFY event until it closes.

        Raises:
            WebSocketError: A frame could not be sent.
            WatchStreamError: The Observer stopped.
        """
        while ws.poll():
            try:
                event = subscription.get(timeout=self.poll_interval)
            except queue.Empty:
                # After close() the Observer is gone; the sentinel is on its way
                if not self._closed and not self._watch_alive():
                    raise WatchStreamError("Filesystem watcher stopped")
                continue

            if event is None:
                ws.close(1001)
                return

            if event.kind is WatchKind.MODIFY:
                ws.send_text(RELOAD_MESSAGE)

    def handle_upgrade(self, request: HTTPRequest) -> Optional[HTTPResponse]:
        """
        Take over a websocket upgrade request.

        Blocks the calling worker for as long as the browser keeps the
        socket open.

        Returns:
            A 400 response when the handshake is unusable, otherwise None
            (the connection has been used up by the websocket).
        """
        if not request.websocket_key:
            return bad_request("Missing Sec-WebSocket-Key header")

        ws = None
        subscription = None
        try:
            self.ensure_watching()
            # Subscribed before the 101 goes out so no change is missed
            subscription = self.subscribe()
            ws = WebSocket.accept(request)
            request.connection.mark_upgraded()
            logger.debug(f"Live reload connected: {request.client_address[0]}")
            self.forward(ws, subscription)
        except (WebSocketError, WatchStreamError) as e:
            report_error(logger, e, silent=self.silent, debug=self.debug, context="Live reload")
        finally:
            if subscription is not None:
                self.unsubscribe(subscription)
            if ws is not None:
                ws.close()
            logger.debug(f"Live reload disconnected: {request.client_address[0]}")

        return None

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def close(self) -> None:
        """Stop the Observer and end every socket loop."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            observer, self._observer = self._observer, None
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()

        for subscription in subscriptions:
            subscription.close()

        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)
            logger.debug("Stopped watching for changes")


# =============================================================================
# CLIENT SCRIPT
# =============================================================================

def reload_script(hostname: str, port: int, secure: bool = False) -> str:
    """
    The <script> appended to the entry page.

    It connects back to the address the page was served from and reloads
    on a "reload" message.
    """
    scheme = "wss" if secure else "ws"
    if ":" in hostname:
        hostname = f"[{hostname}]"
    return (
        "<script>"
        f"const socket = new WebSocket('{scheme}://{hostname}:{port}');"
        "socket.onopen = () => console.log('Socket connection open. Listening for events.');"
        f"socket.onmessage = (msg) => {{ if (msg.data === '{RELOAD_MESSAGE}') location.reload(true); }};"
        "</script>"
    )


def append_reload_script(page: bytes, hostname: str, port: int, secure: bool = False) -> bytes:
    """Append the reload script to an HTML page."""
    return page + reload_script(hostname, port, secure).encode("utf-8")
