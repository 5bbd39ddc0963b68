"""
=============================================================================
HANDLERS - What the Server Does With a Request
=============================================================================

    router.py      decision tree: websocket, entry point, file, directory
    resolver.py    request path → Found / NotFound
    listing.py     directory → sorted two-column HTML page
    reload.py      filesystem watcher → "reload" on every open websocket
    not_found.py   404 page

=============================================================================
"""

from .resolver import PathResolver, Found, NotFound, EntryKind
from .listing import DirEntry, sort_entries, render_listing, list_directory
from .not_found import render_not_found
from .reload import (
    ReloadBroadcaster,
    WatchEvent,
    WatchKind,
    WatchState,
    reload_script,
    append_reload_script,
)
from .router import Router

__all__ = [
    "PathResolver",
    "Found",
    "NotFound",
    "EntryKind",
    "DirEntry",
    "sort_entries",
    "render_listing",
    "list_directory",
    "render_not_found",
    "ReloadBroadcaster",
    "WatchEvent",
    "WatchKind",
    "WatchState",
    "reload_script",
    "append_reload_script",
    "Router",
]
