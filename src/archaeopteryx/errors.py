"""
=============================================================================
ERRORS - Exception Hierarchy and Error Reporting
=============================================================================

Every failure the server knows how to name lives here. Callers catch the
specific class they can recover from and let everything else reach the
top-level handler in server.py.

    ArchaeopteryxError
    ├── ConfigurationError   bad port, missing TLS files, bad config file
    ├── ProtocolViolation    a non-request reached the router (fatal)
    ├── InterceptorError     an interceptor raised (request abandoned)
    └── WatchStreamError     the filesystem watcher died (per-socket)

=============================================================================
WHERE EACH ONE IS HANDLED
=============================================================================

    ConfigurationError  → __main__.main()      exit status 1
    ProtocolViolation   → ArchaeopteryxServer  stops listener, run() re-raises
    InterceptorError    → ArchaeopteryxServer  logged, connection closed
    WatchStreamError    → ReloadBroadcaster    logged, socket loop ends

Missing files are NOT exceptions at this level: the PathResolver returns a
NotFound result and the router answers 404.

=============================================================================
"""

import logging
from typing import Optional


class ArchaeopteryxError(Exception):
    """Base class for every error raised by archaeopteryx itself."""


class ConfigurationError(ArchaeopteryxError):
    """
    Raised when the resolved configuration cannot be used.

    Always fatal at startup. The CLI prints the message and exits with
    status 1 before the listener is ever bound.
    """


class ProtocolViolation(ArchaeopteryxError):
    """
    Raised when something that is not an HTTPRequest reaches the router.

    This means the transport (or a before-interceptor) is broken, so the
    server stops accepting connections instead of failing one request.
    """

    def __init__(self, received: object):
        super().__init__(
            f"Expected an HTTPRequest, got {type(received).__name__}: {received!r}"
        )
        self.received = received


class InterceptorError(ArchaeopteryxError):
    """
    Raised when an interceptor fails.

    Wraps the original exception (available as __cause__) and records
    which interceptor raised it, so the log line is useful.
    """

    def __init__(self, name: str, cause: BaseException):
        super().__init__(f"Interceptor {name!r} failed: {cause}")
        self.name = name


class WatchStreamError(ArchaeopteryxError):
    """Raised when the shared filesystem watcher stops delivering events."""


# =============================================================================
# ERROR REPORTING
# =============================================================================
#
# One place decides how a recovered error looks on the console:
#
#   silent        → nothing
#   debug         → full traceback
#   otherwise     → "ERROR: <message>"
#
# =============================================================================

def report_error(
    logger: logging.Logger,
    error: BaseException,
    silent: bool = False,
    debug: bool = False,
    context: Optional[str] = None,
) -> None:
    """
    Log a recovered error according to the silent/debug flags.

    Args:
        logger: Logger of the module that recovered the error.
        error: The exception being reported.
        silent: Suppress all output.
        debug: Include the full traceback.
        context: Optional prefix describing what was being done.
    """
    if silent:
        return

    message = f"{context}: {error}" if context else str(error)

    if debug:
        logger.error(message, exc_info=(type(error), error, error.__traceback__))
    else:
        logger.error(f"ERROR: {message}")
