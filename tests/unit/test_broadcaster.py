"""
Unit tests for the live-reload broadcaster.
"""

import threading
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from archaeopteryx.errors import WatchStreamError
from archaeopteryx.handlers.reload import (
    ReloadBroadcaster,
    WatchEvent,
    WatchKind,
    WatchState,
    reload_script,
    append_reload_script,
    translate_event,
)

from conftest import make_request


class FakeObserver:
    """Stands in for watchdog's Observer."""

    created = 0

    def __init__(self):
        FakeObserver.created += 1
        self.handler = None
        self.path = None
        self.alive = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.handler = handler
        self.path = path
        self.recursive = recursive

    def start(self):
        self.alive = True

    def is_alive(self):
        return self.alive

    def stop(self):
        self.stopped = True
        self.alive = False

    def join(self, timeout=None):
        pass


class FakeWebSocket:
    """Records frames; open until close() or until `polls` runs out."""

    def __init__(self, polls=None, fail_send=False):
        self.sent = []
        self.closed_with = None
        self.polls = polls
        self.fail_send = fail_send

    def poll(self):
        if self.closed_with is not None:
            return False
        if self.polls is not None:
            self.polls -= 1
            return self.polls >= 0
        return True

    def send_text(self, message):
        from archaeopteryx.http.websocket import WebSocketError
        if self.fail_send:
            raise WebSocketError("Failed to send websocket frame")
        self.sent.append(message)

    def close(self, code=1000):
        if self.closed_with is None:
            self.closed_with = code


@pytest.fixture
def broadcaster(tmp_path: Path) -> ReloadBroadcaster:
    return ReloadBroadcaster(tmp_path, observer_factory=FakeObserver, poll_interval=0.01)


class TestTranslateEvent:
    """Tests for watchdog event → WatchEvent."""

    def test_file_modified(self):
        """File modifications reload."""
        assert translate_event(FileModifiedEvent("/s/a.css")) == WatchEvent(WatchKind.MODIFY, ("/s/a.css",))

    def test_move_counts_as_modify(self):
        """Moves (atomic saves) reload and carry both paths."""
        event = translate_event(FileMovedEvent("/s/.a.css.swp", "/s/a.css"))

        assert event.kind is WatchKind.MODIFY
        assert event.paths == ("/s/.a.css.swp", "/s/a.css")

    def test_create_and_remove(self):
        """Creates and deletes have their own kinds."""
        assert translate_event(FileCreatedEvent("/s/n.js")).kind is WatchKind.CREATE
        assert translate_event(DirCreatedEvent("/s/d")).kind is WatchKind.CREATE
        assert translate_event(FileDeletedEvent("/s/n.js")).kind is WatchKind.REMOVE

    def test_directory_modified_is_other(self):
        """Directory mtime changes do not count as modifications."""
        assert translate_event(DirModifiedEvent("/s")).kind is WatchKind.OTHER

    def test_closed_is_other(self):
        """Open/close notifications carry no change."""
        assert translate_event(FileClosedEvent("/s/a.css")).kind is WatchKind.OTHER


class TestWatcher:
    """Tests for the shared Observer."""

    def test_lazy(self, broadcaster: ReloadBroadcaster):
        """Nothing is watched before the first upgrade."""
        assert broadcaster.state is WatchState.UNINITIALIZED

    def test_started_once(self, broadcaster: ReloadBroadcaster, tmp_path: Path):
        """Repeated calls reuse one recursive Observer on the root."""
        first = broadcaster.ensure_watching()
        second = broadcaster.ensure_watching()

        assert first is second
        assert first.path == str(tmp_path)
        assert first.recursive is True
        assert broadcaster.state is WatchState.WATCHING

    def test_started_once_under_concurrency(self, tmp_path: Path):
        """Concurrent first upgrades still create exactly one Observer."""
        FakeObserver.created = 0
        broadcaster = ReloadBroadcaster(tmp_path, observer_factory=FakeObserver)
        barrier = threading.Barrier(16)

        def upgrade():
            barrier.wait()
            broadcaster.ensure_watching()

        threads = [threading.Thread(target=upgrade) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert FakeObserver.created == 1

    def test_events_reach_publish(self, broadcaster: ReloadBroadcaster):
        """The scheduled handler feeds publish()."""
        observer = broadcaster.ensure_watching()
        subscription = broadcaster.subscribe()

        observer.handler.dispatch(FileModifiedEvent("/x/a.css"))

        assert subscription.get(timeout=1).kind is WatchKind.MODIFY

    def test_close_stops_observer(self, broadcaster: ReloadBroadcaster):
        """close() stops the Observer and refuses new watchers."""
        observer = broadcaster.ensure_watching()

        broadcaster.close()

        assert observer.stopped
        assert broadcaster.state is WatchState.CLOSED
        with pytest.raises(WatchStreamError):
            broadcaster.ensure_watching()


class TestFanOut:
    """Tests for per-socket delivery."""

    def test_every_subscriber_gets_every_event(self, broadcaster: ReloadBroadcaster):
        """Events fan out to all subscribers."""
        a = broadcaster.subscribe()
        b = broadcaster.subscribe()
        event = WatchEvent(WatchKind.MODIFY, ("/x",))

        broadcaster.publish(event)

        assert a.get(timeout=1) == event
        assert b.get(timeout=1) == event

    def test_unsubscribed_gets_nothing(self, broadcaster: ReloadBroadcaster):
        """Unsubscribing removes the consumer."""
        subscription = broadcaster.subscribe()
        broadcaster.unsubscribe(subscription)

        broadcaster.publish(WatchEvent(WatchKind.MODIFY))

        assert broadcaster.subscriber_count == 0
        assert subscription.get(timeout=1) is None

    def test_only_modify_sends_reload(self, broadcaster: ReloadBroadcaster):
        """create/remove/other send nothing; each modify sends "reload"."""
        broadcaster.ensure_watching()
        subscription = broadcaster.subscribe()
        ws = FakeWebSocket()

        for kind in (WatchKind.MODIFY, WatchKind.CREATE, WatchKind.REMOVE, WatchKind.OTHER, WatchKind.MODIFY):
            broadcaster.publish(WatchEvent(kind))
        subscription.close()

        broadcaster.forward(ws, subscription)

        assert ws.sent == ["reload", "reload"]
        assert ws.closed_with == 1001

    def test_create_alone_sends_nothing(self, broadcaster: ReloadBroadcaster):
        """Creating a file does not reload."""
        broadcaster.ensure_watching()
        subscription = broadcaster.subscribe()
        ws = FakeWebSocket()

        broadcaster.publish(WatchEvent(WatchKind.CREATE, ("/new.js",)))
        broadcaster.publish(WatchEvent(WatchKind.OTHER, ("/",)))
        subscription.close()
        broadcaster.forward(ws, subscription)

        assert ws.sent == []

    def test_closed_socket_ends_loop(self, broadcaster: ReloadBroadcaster):
        """The loop ends as soon as the socket reports closed."""
        broadcaster.ensure_watching()
        subscription = broadcaster.subscribe()

        broadcaster.forward(FakeWebSocket(polls=3), subscription)

    def test_send_failure_raises(self, broadcaster: ReloadBroadcaster):
        """A failed send ends the loop with WebSocketError."""
        from archaeopteryx.http.websocket import WebSocketError

        broadcaster.ensure_watching()
        subscription = broadcaster.subscribe()
        broadcaster.publish(WatchEvent(WatchKind.MODIFY))

        with pytest.raises(WebSocketError):
            broadcaster.forward(FakeWebSocket(fail_send=True), subscription)

    def test_dead_watcher_raises(self, broadcaster: ReloadBroadcaster):
        """A dead Observer ends the loop with WatchStreamError."""
        observer = broadcaster.ensure_watching()
        observer.alive = False

        with pytest.raises(WatchStreamError):
            broadcaster.forward(FakeWebSocket(), broadcaster.subscribe())

    def test_close_ends_open_loops(self, broadcaster: ReloadBroadcaster):
        """close() wakes every waiting loop."""
        broadcaster.ensure_watching()
        subscription = broadcaster.subscribe()
        ws = FakeWebSocket()
        thread = threading.Thread(target=broadcaster.forward, args=(ws, subscription))
        thread.start()

        broadcaster.close()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert ws.closed_with == 1001


class TestHandleUpgrade:
    """Tests for the upgrade entry point."""

    def test_missing_key_is_400(self, broadcaster: ReloadBroadcaster):
        """A handshake without Sec-WebSocket-Key is refused."""
        request = make_request("/", headers={"upgrade": "websocket"})

        response = broadcaster.handle_upgrade(request)

        assert response.status == 400
        assert broadcaster.state is WatchState.UNINITIALIZED

    def test_no_connection_is_logged(self, broadcaster: ReloadBroadcaster, caplog):
        """A request without a connection fails quietly for the listener."""
        request = make_request("/", headers={"upgrade": "websocket", "sec-websocket-key": "abc"})

        assert broadcaster.handle_upgrade(request) is None
        assert broadcaster.subscriber_count == 0
        assert "Live reload" in caplog.text


class TestReloadScript:
    """Tests for the injected client script."""

    def test_ws_script(self):
        """Plain HTTP uses ws:// to the given host and port."""
        script = reload_script("127.0.0.1", 8080)

        assert script.startswith("<script>")
        assert "new WebSocket('ws://127.0.0.1:8080')" in script
        assert "msg.data === 'reload'" in script
        assert "location.reload" in script

    def test_wss_script(self):
        """HTTPS pages connect with wss://."""
        assert "wss://example.local:443" in reload_script("example.local", 443, secure=True)

    def test_ipv6_bracketed(self):
        """IPv6 hosts are bracketed."""
        assert "ws://[::1]:8080" in reload_script("::1", 8080)

    def test_appended(self):
        """The script goes after the page."""
        page = append_reload_script(b"<html></html>", "localhost", 1)

        assert page.startswith(b"<html></html><script>")
