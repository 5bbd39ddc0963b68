"""
=============================================================================
MIME TYPE LOOKUP
=============================================================================

Maps a served file's extension to the Content-Type the browser needs.

A dev server mostly hands out the front-end toolchain's output: markup,
stylesheets, scripts, source maps, images, fonts and wasm. Anything not in
the table is sent as application/octet-stream, which makes the browser
download the file instead of guessing.

    "app.js"          → text/javascript; charset=utf-8
    "logo.svg"        → image/svg+xml; charset=utf-8
    "bundle.js.map"   → application/json; charset=utf-8
    "archive.bin"     → application/octet-stream

Lookups are case-insensitive on the extension (".PNG" == ".png").

=============================================================================
"""

from pathlib import PurePath
from typing import Dict, Optional, Union


DEFAULT_MIME_TYPE = "application/octet-stream"

# type → extensions; the second column says whether it gets a charset
_KNOWN = (
    # ─────────────────────────────────────────────────────────────────────
    # TEXT
    # ─────────────────────────────────────────────────────────────────────
    ("text/html", True, ".html .htm"),
    ("text/css", True, ".css"),
    ("text/plain", True, ".txt .log"),
    ("text/markdown", True, ".md .markdown"),
    ("text/csv", True, ".csv"),
    ("text/javascript", True, ".js .mjs .cjs .jsx"),
    ("text/typescript", True, ".ts .tsx"),
    ("application/json", True, ".json .map"),
    ("application/manifest+json", True, ".webmanifest"),
    ("application/xml", True, ".xml"),
    ("image/svg+xml", True, ".svg"),

    # ─────────────────────────────────────────────────────────────────────
    # BINARY
    # ─────────────────────────────────────────────────────────────────────
    ("application/wasm", False, ".wasm"),
    ("application/pdf", False, ".pdf"),
    ("image/png", False, ".png"),
    ("image/jpeg", False, ".jpg .jpeg"),
    ("image/gif", False, ".gif"),
    ("image/x-icon", False, ".ico"),
    ("image/webp", False, ".webp"),
    ("image/avif", False, ".avif"),
    ("image/bmp", False, ".bmp"),
    ("font/woff", False, ".woff"),
    ("font/woff2", False, ".woff2"),
    ("font/ttf", False, ".ttf"),
    ("font/otf", False, ".otf"),
    ("audio/mpeg", False, ".mp3"),
    ("audio/wav", False, ".wav"),
    ("audio/ogg", False, ".ogg .oga"),
    ("video/mp4", False, ".mp4"),
    ("video/webm", False, ".webm"),
    ("application/zip", False, ".zip"),
    ("application/gzip", False, ".gz"),
    ("application/x-tar", False, ".tar"),
)

MIME_TYPES: Dict[str, str] = {
    extension: mime_type
    for mime_type, _, extensions in _KNOWN
    for extension in extensions.split()
}

_WITH_CHARSET = frozenset(mime_type for mime_type, textual, _ in _KNOWN if textual)


def get_mime_type(path: Union[str, PurePath], default: Optional[str] = None) -> str:
    """
    Bare MIME type for a file name.

        >>> get_mime_type("/srv/site/Photo.JPG")
        'image/jpeg'
        >>> get_mime_type("Makefile")
        'application/octet-stream'
    """
    return MIME_TYPES.get(PurePath(path).suffix.lower(), default or DEFAULT_MIME_TYPE)


def get_content_type(path: Union[str, PurePath], charset: str = "utf-8") -> str:
    """Content-Type header value: text types carry a charset, binary ones do not."""
    mime_type = get_mime_type(path)
    if mime_type in _WITH_CHARSET:
        return f"{mime_type}; charset={charset}"
    return mime_type
