"""
=============================================================================
PATH RESOLVER - Request URL → Filesystem Entry
=============================================================================

    resolve("/css/site%20main.css")
        │
        ├── 1. unquote, append to root  → /srv/site/css/site main.css
        │       exists? → Found(path, FILE)
        │
        ├── 2. allow_absolute set?       → /css/site main.css
        │       exists? → Found(path, FILE)
        │
        └── 3. NotFound

Nothing here raises for a missing path. Stat errors of any kind
(permission denied, a file used as a directory) count as not found, so
the router only ever has two cases to handle.

The URL is appended to the root, not joined with it: "/etc/passwd" under
root "/srv/site" is "/srv/site/etc/passwd". Reaching outside the root is
the job of step 2 alone.

=============================================================================
"""

import logging
import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote


logger = logging.getLogger(__name__)


class EntryKind(Enum):
    """What a resolved path points at."""
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class Found:
    """A path that exists, and what it is."""
    path: Path
    kind: EntryKind

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.kind is EntryKind.FILE


@dataclass(frozen=True)
class NotFound:
    """Neither candidate exists (or could be stat'ed)."""
    url: str


Resolution = Union[Found, NotFound]


class PathResolver:
    """
    Maps request paths onto the served root.

    Usage:
        resolver = PathResolver("/srv/site", allow_absolute=False)
        result = resolver.resolve(request.raw_path)
        if isinstance(result, Found):
            ...
    """

    def __init__(self, root: Union[str, Path], allow_absolute: bool = False):
        self.root = Path(root)
        self.allow_absolute = allow_absolute

    def candidate(self, url: str) -> Path:
        """The path under root that `url` names (it may not exist)."""
        return Path(os.fspath(self.root) + unquote(url))

    def resolve(self, url: str) -> Resolution:
        """
        Resolve a (percent-encoded) request path.

        Args:
            url: The request path without query string, e.g. "/a%20b.txt".

        Returns:
            Found for the first candidate that exists, else NotFound.
        """
        found = self._stat(self.candidate(url))
        if found is not None:
            return found

        if self.allow_absolute:
            found = self._stat(Path(unquote(url)))
            if found is not None:
                logger.debug(f"Resolved {url} as an absolute path")
                return found

        return NotFound(url)

    @staticmethod
    def _stat(path: Path) -> Optional[Found]:
        try:
            mode = path.stat().st_mode
        except (OSError, ValueError):
            # ValueError: embedded NUL byte in the decoded URL
            return None

        if stat.S_ISDIR(mode):
            return Found(path, EntryKind.DIRECTORY)
        return Found(path, EntryKind.FILE)
