"""
=============================================================================
ARCHAEOPTERYX CLI ENTRY POINT
=============================================================================

    archaeopteryx                     serve the current directory on :8080
    archaeopteryx site -p 3000        serve ./site on :3000
    archaeopteryx -c -n               CORS on, live reload off
    archaeopteryx -t                  HTTPS with ./archaeopteryx.crt/.key
    archaeopteryx -b access-log       log every request
    python -m archaeopteryx ...       same thing

=============================================================================
WHERE SETTINGS COME FROM (lowest to highest priority)
=============================================================================

    1. ServerConfig defaults
    2. ARCHAEOPTERYX_HOST / ARCHAEOPTERYX_PORT / ARCHAEOPTERYX_ROOT
    3. command line flags
    4. <root>/archaeopteryx.json

=============================================================================
EXIT STATUS
=============================================================================

    0   clean shutdown (Ctrl+C), or declined to create a missing root
    1   ConfigurationError, ProtocolViolation, or the port could not be bound
    2   invalid command line (argparse)

=============================================================================
"""

import argparse
import sys
from typing import Any, Dict, List, Optional

from . import __version__
from .config import CONFIG_FILE_NAME, ServerConfig
from .errors import ConfigurationError, ProtocolViolation
from .scaffold import confirm, make_boilerplate
from .server import ArchaeopteryxServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="archaeopteryx",
        description="Static file server for development, with live reload",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  archaeopteryx                        # Serve . on port 8080
  archaeopteryx public -p 3000         # Serve ./public on port 3000
  archaeopteryx -c -n                  # CORS on, live reload off
  archaeopteryx -t --cert-file my.crt  # HTTPS with a custom certificate
  archaeopteryx -b access-log          # Log every request

Settings in <root>/{CONFIG_FILE_NAME} override the command line.
        """,
    )

    # Flags default to None so that only the ones actually given override
    # the environment.

    parser.add_argument(
        "root",
        nargs="?",
        default=None,
        help="Directory to serve (default: ., or $ARCHAEOPTERYX_ROOT)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: 8080)",
    )
    parser.add_argument(
        "-H", "--host", "--hostname",
        dest="host",
        default=None,
        help="Interface to bind (default: 0.0.0.0)",
    )
    parser.add_argument(
        "-t", "--secure",
        action="store_true",
        default=None,
        help="Serve HTTPS (needs a trusted certificate)",
    )
    parser.add_argument(
        "--cert-file",
        dest="cert_file",
        default=None,
        help="TLS certificate, relative to root (default: archaeopteryx.crt)",
    )
    parser.add_argument(
        "--key-file",
        dest="key_file",
        default=None,
        help="TLS private key, relative to root (default: archaeopteryx.key)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # SERVING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "-e", "--entry",
        dest="entry_point",
        default=None,
        help="Entry page served for / (default: index.html)",
    )
    parser.add_argument(
        "-n", "--disable-reload", "--no-reload",
        dest="live_reload",
        action="store_const",
        const=False,
        default=None,
        help="Turn live reload off",
    )
    parser.add_argument(
        "-c", "--cors",
        action="store_true",
        default=None,
        help="Send Access-Control-Allow-Origin: *",
    )
    parser.add_argument(
        "-f", "--dont-list", "--files-only",
        dest="directory_listing",
        action="store_const",
        const=False,
        default=None,
        help="Answer 404 for directories instead of listing them",
    )
    parser.add_argument(
        "-a", "--allow-absolute",
        dest="allow_absolute",
        action="store_true",
        default=None,
        help="Retry missing paths as absolute filesystem paths (not recommended)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # INTERCEPTORS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "-b", "--before",
        action="append",
        default=None,
        metavar="INTERCEPTOR",
        help="Run before routing: a registered name or module:attr (repeatable)",
    )
    parser.add_argument(
        "-A", "--after",
        action="append",
        default=None,
        metavar="INTERCEPTOR",
        help="Run after the response: a registered name or module:attr (repeatable)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # OUTPUT
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "-s", "--silent",
        action="store_true",
        default=None,
        help="Print nothing",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        default=None,
        help="Print full tracebacks and debug logs",
    )

    # ─────────────────────────────────────────────────────────────────────
    # PERFORMANCE / META
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Maximum worker threads; each open live-reload tab uses one (default: 64)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"archaeopteryx {__version__}",
    )

    return parser


def config_from_args(args: argparse.Namespace, environ: Optional[Dict[str, str]] = None) -> ServerConfig:
    """
    Environment + command line, without the config file.

    Raises:
        ConfigurationError: Bad ARCHAEOPTERYX_PORT.
    """
    config = ServerConfig.from_env(environ)

    overrides: Dict[str, Any] = {
        name: value
        for name, value in vars(args).items()
        if value is not None and name != "workers"
    }
    if args.workers is not None:
        overrides["max_workers"] = args.workers
        overrides["min_workers"] = min(config.min_workers, args.workers)

    return config.with_overrides(overrides)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)

        root = config.root_path
        if not root.exists():
            if not confirm(f"The directory {config.root} does not exist. Do you wish to create it?"):
                return 0
            make_boilerplate(root)
        elif not root.is_dir():
            raise ConfigurationError(f"Root is not a directory: {root}")

        config = config.merge_config_file()
        server = ArchaeopteryxServer(config)
        server.run()

    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except ProtocolViolation as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"ERROR: Could not start server: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
