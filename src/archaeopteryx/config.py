"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

One ServerConfig value is built at startup and handed to every component.
Nothing reads settings from module globals.

=============================================================================
WHERE SETTINGS COME FROM (lowest to highest priority)
=============================================================================

    1. dataclass defaults            port=8080, entry_point="index.html", ...
    2. environment                   ARCHAEOPTERYX_HOST / _PORT / _ROOT
    3. command line                  --port 3000 --cors ...
    4. <root>/archaeopteryx.json     {"port": 3000, "disableReload": true}

The JSON file accepts the same option names as the command line's long
form in camelCase (disableReload, dontList, allowAbsolute, certFile,
keyFile, entryPoint, ...) as well as the dataclass field names.

=============================================================================
FAIL-FAST
=============================================================================

validate() and check_credentials() run before the socket is bound. Any
problem raises ConfigurationError, and the CLI turns that into exit
status 1.

=============================================================================
"""

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError


CONFIG_FILE_NAME = "archaeopteryx.json"


@dataclass
class ServerConfig:
    """
    Configuration for the archaeopteryx server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    SITE        root, entry_point, directory_listing, allow_absolute
    FEATURES    live_reload, cors, before, after
    NETWORK     host, port, secure, cert_file, key_file
    OUTPUT      silent, debug
    TRANSPORT   backlog, buffer_size, timeout, keep_alive, ...

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # SITE
    # ─────────────────────────────────────────────────────────────────────

    root: str = "."
    """Directory whose files are served and watched."""

    entry_point: str = "index.html"
    """SPA entry file served for GET /, relative to root."""

    directory_listing: bool = True
    """Render an HTML index for directories. Off: directories answer 404."""

    allow_absolute: bool = False
    """
    Retry paths missing under root as absolute filesystem paths.
    GET /home/me/notes.txt then serves /home/me/notes.txt.
    """

    # ─────────────────────────────────────────────────────────────────────
    # FEATURES
    # ─────────────────────────────────────────────────────────────────────

    live_reload: bool = True
    """Inject the reload script and accept websocket upgrades."""

    cors: bool = False
    """Send Access-Control-Allow-Origin: * on every response."""

    before: List[Any] = field(default_factory=list)
    """Interceptors (callables or references) run before routing."""

    after: List[Any] = field(default_factory=list)
    """Interceptors (callables or references) run after the response."""

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Interface to bind. The default lets phones on the LAN connect."""

    port: int = 8080
    """Port to listen on (1-65535)."""

    secure: bool = False
    """Serve HTTPS (and wss:// for live reload)."""

    cert_file: str = "archaeopteryx.crt"
    """TLS certificate, relative to root unless absolute."""

    key_file: str = "archaeopteryx.key"
    """TLS private key, relative to root unless absolute."""

    # ─────────────────────────────────────────────────────────────────────
    # OUTPUT
    # ─────────────────────────────────────────────────────────────────────

    silent: bool = False
    """Print nothing: no banner, no request lines, no errors."""

    debug: bool = False
    """Print full tracebacks for recovered errors, and debug logs."""

    # ─────────────────────────────────────────────────────────────────────
    # TRANSPORT
    # ─────────────────────────────────────────────────────────────────────

    backlog: int = 128
    """Queued connections the OS holds before refusing new ones."""

    buffer_size: int = 8192
    """Bytes per recv() call."""

    timeout: Optional[float] = 30.0
    """Seconds to wait for a request on a fresh connection."""

    keep_alive: bool = True
    """Reuse connections for several requests."""

    keep_alive_timeout: float = 5.0
    """Seconds an idle keep-alive connection is held open."""

    max_request_size: int = 1024 * 1024
    """Largest request accepted, in bytes. A file server gets small requests."""

    min_workers: int = 4
    """Worker threads started up front."""

    max_workers: int = 64
    """Worker ceiling. Each open live-reload tab holds one worker."""

    server_name: str = "archaeopteryx"
    """Value of the Server response header."""

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def root_path(self) -> Path:
        """The root as an absolute path."""
        return Path(self.root).expanduser().resolve()

    @property
    def scheme(self) -> str:
        """"https" or "http"."""
        return "https" if self.secure else "http"

    @property
    def log_level(self) -> str:
        """Logging level implied by silent/debug."""
        if self.silent:
            return "CRITICAL"
        if self.debug:
            return "DEBUG"
        return "INFO"

    def credential_paths(self) -> Tuple[Path, Path]:
        """(cert, key) paths, relative ones resolved against root."""
        return (
            self._under_root(self.cert_file),
            self._under_root(self.key_file),
        )

    def _under_root(self, name: str) -> Path:
        path = Path(name).expanduser()
        return path if path.is_absolute() else self.root_path / path

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "ServerConfig":
        """
        Create configuration from environment variables.

            ARCHAEOPTERYX_HOST   interface to bind
            ARCHAEOPTERYX_PORT   port
            ARCHAEOPTERYX_ROOT   served directory

        Keyword overrides win over the environment.

        Raises:
            ConfigurationError: If ARCHAEOPTERYX_PORT is not an integer.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        if "ARCHAEOPTERYX_HOST" in environ:
            values["host"] = environ["ARCHAEOPTERYX_HOST"]
        if "ARCHAEOPTERYX_ROOT" in environ:
            values["root"] = environ["ARCHAEOPTERYX_ROOT"]
        if "ARCHAEOPTERYX_PORT" in environ:
            try:
                values["port"] = int(environ["ARCHAEOPTERYX_PORT"])
            except ValueError:
                raise ConfigurationError(
                    f"Invalid port: {environ['ARCHAEOPTERYX_PORT']!r}. Must be 1-65535."
                )

        values.update(overrides)
        return cls(**values)

    def with_overrides(self, options: Mapping[str, Any]) -> "ServerConfig":
        """
        Return a copy with `options` applied.

        Keys may be field names or option names (see OPTION_NAMES).

        Raises:
            ConfigurationError: On an unknown key.
        """
        changes: Dict[str, Any] = {}
        for key, value in options.items():
            name, inverted = _field_for_option(key)
            if inverted:
                value = not value
            if name in ("before", "after"):
                value = _as_list(value)
            changes[name] = value
        return replace(self, **changes)

    def merge_config_file(self, path: Optional[Path] = None) -> "ServerConfig":
        """
        Merge <root>/archaeopteryx.json (or `path`) over this config.

        A missing file is not an error; the config comes back unchanged.

        Raises:
            ConfigurationError: If the file is not a JSON object or has
                                unknown keys.
        """
        path = path or (self.root_path / CONFIG_FILE_NAME)
        if not path.is_file():
            return self

        try:
            with open(path, "r", encoding="utf-8") as f:
                options = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read {path}: {e}")

        if not isinstance(options, dict):
            raise ConfigurationError(f"{path} must contain a JSON object")

        try:
            return self.with_overrides(options)
        except ConfigurationError as e:
            raise ConfigurationError(f"{path}: {e}")

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: On the first invalid value found.
        """
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid port: {self.port!r}. Must be 1-65535.")

        if not self.entry_point:
            raise ConfigurationError("entry_point must not be empty")

        if self.min_workers < 1:
            raise ConfigurationError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ConfigurationError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ConfigurationError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be > 0")

    def check_credentials(self) -> Tuple[Path, Path]:
        """
        Make sure the TLS certificate and key exist when secure is set.

        Returns:
            The resolved (cert, key) paths.

        Raises:
            ConfigurationError: Naming every missing file.
        """
        cert, key = self.credential_paths()
        if not self.secure:
            return cert, key

        missing = [str(p) for p in (cert, key) if not p.is_file()]
        if missing:
            raise ConfigurationError(
                "TLS is enabled but these files are missing: " + ", ".join(missing)
            )
        return cert, key


# =============================================================================
# OPTION NAMES
# =============================================================================
#
# option name → (field name, inverted)
#
# "inverted" options are negative flags on the command line that map to a
# positive field: disableReload=true means live_reload=False.
#
# =============================================================================

OPTION_NAMES: Dict[str, Tuple[str, bool]] = {
    "hostname": ("host", False),
    "disableReload": ("live_reload", True),
    "noReload": ("live_reload", True),
    "dontList": ("directory_listing", True),
    "filesOnly": ("directory_listing", True),
    "allowAbsolute": ("allow_absolute", False),
    "certFile": ("cert_file", False),
    "keyFile": ("key_file", False),
    "entryPoint": ("entry_point", False),
    "entry": ("entry_point", False),
}

_FIELD_NAMES = {f.name for f in fields(ServerConfig)}


def _field_for_option(key: str) -> Tuple[str, bool]:
    if key in OPTION_NAMES:
        return OPTION_NAMES[key]
    if key in _FIELD_NAMES:
        return key, False
    raise ConfigurationError(f"Unknown option: {key!r}")


def _as_list(value: Any) -> List[Any]:
    """Interceptor settings may be None, one item, or a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
