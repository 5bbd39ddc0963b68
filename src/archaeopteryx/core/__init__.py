"""
=============================================================================
CORE - Transport Components
=============================================================================

    socket_server.py  listening socket, accept loop, optional TLS wrap
    connection.py     one client socket: read requests, write responses
    thread_pool.py    worker threads that run each connection

Nothing in here knows about files, routes or live reload.

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "ThreadPool",
]
