"""
=============================================================================
DIRECTORY LISTING
=============================================================================

Renders a directory as an HTML page with two columns:

    ┌──────────────────────────────────────────────┐
    │  /assets                                      │
    │                                               │
    │  .cache/            .env                      │
    │  fonts/             logo          svg         │
    │  img/               site          css         │
    │                     site          js          │
    └──────────────────────────────────────────────┘
       folder-contents    file-contents

=============================================================================
ORDERING
=============================================================================

Both columns use the same sort key:

    (not hidden, locale key of extension, locale key of base name)

so hidden entries lead, the rest are grouped by extension, and each
group is ordered by base name.

    name          hidden   ext          base
    ────          ──────   ───          ────
    .b.txt        yes      "txt"        ".b"
    Makefile      no       "Makefile"   ""
    b.css         no       "css"        "b"
    d.css         no       "css"        "d"
    a.txt         no       "txt"        "a"

    sorted → .b.txt, Makefile, b.css, d.css, a.txt

The base name is everything before the last dot and the extension is
everything after it. For sorting, a name without a dot has an empty base
name and the whole name as its extension; its badge stays empty. Because
the key is a plain tuple, the result does not depend on the order the
filesystem returned the entries in.

Locale comparison goes through locale.strxfrm, which is case-sensitive
and follows LC_COLLATE (plain code point order under the "C" locale).

=============================================================================
"""

import html
import locale
import logging
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Tuple, Union
from urllib.parse import quote

from .resolver import EntryKind


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirEntry:
    """One entry of a listed directory."""

    name: str
    kind: EntryKind
    url: str

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    @property
    def is_hidden(self) -> bool:
        return self.name.startswith(".")

    @property
    def base_name(self) -> str:
        base, dot, _ = self.name.rpartition(".")
        return base if dot else self.name

    @property
    def extension(self) -> str:
        """Text after the last dot, "" when the name has no dot."""
        _, dot, ext = self.name.rpartition(".")
        return ext if dot else ""


def sort_key(entry: DirEntry) -> Tuple[bool, str, str]:
    """Hidden first, then extension, then base name."""
    # "Makefile" sorts as base "", extension "Makefile"
    base, _, ext = entry.name.rpartition(".")
    return (
        not entry.is_hidden,
        locale.strxfrm(ext),
        locale.strxfrm(base),
    )


def sort_entries(entries: Iterable[DirEntry]) -> Tuple[List[DirEntry], List[DirEntry]]:
    """
    Split entries into sorted (directories, files) columns.

    Anything that is not a directory goes in the files column.
    """
    ordered = sorted(entries, key=sort_key)
    directories = [e for e in ordered if e.is_directory]
    files = [e for e in ordered if not e.is_directory]
    return directories, files


def entry_url(dir_url: str, name: str) -> str:
    """URL of `name` inside the directory served at `dir_url`."""
    return posixpath.join(dir_url or "/", name)


def list_directory(path: Union[str, Path], dir_url: str) -> List[DirEntry]:
    """
    Read a directory from disk.

    Symlinks are listed as what they point at. A broken symlink is listed
    as a file (requesting it then answers 404).

    Raises:
        OSError: If the directory cannot be read.
    """
    entries = []
    with os.scandir(path) as it:
        for item in it:
            try:
                is_dir = item.is_dir()
            except OSError:
                is_dir = False
            entries.append(DirEntry(
                name=item.name,
                kind=EntryKind.DIRECTORY if is_dir else EntryKind.FILE,
                url=entry_url(dir_url, item.name),
            ))
    logger.debug(f"Listed {len(entries)} entries for {dir_url}")
    return entries


# =============================================================================
# RENDERING
# =============================================================================

def _render_entry(entry: DirEntry) -> str:
    name = html.escape(entry.name) + ("/" if entry.is_directory else "")
    href = html.escape(quote(entry.url), quote=True)
    return (
        f'<a class="entry" href="{href}">'
        f'<span class="entry-name">{name}</span>'
        f'<span class="entry-extension">{html.escape(entry.extension)}</span>'
        f"</a>"
    )


def render_listing(entries: Iterable[DirEntry], dir_url: str) -> str:
    """
    Render the listing page for a directory.

    Args:
        entries: The directory's entries, in any order.
        dir_url: URL path of the directory, used for the title and heading.

    Returns:
        A complete HTML document.
    """
    directories, files = sort_entries(entries)
    title = html.escape(dir_url)

    folder_column = "\n".join(_render_entry(e) for e in directories)
    file_column = "\n".join(_render_entry(e) for e in files)

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta name="viewport" content="width=device-width, initial-scale=1" />
<meta charset="utf-8" />
<title>archaeopteryx - {title}</title>
<style>{LISTING_STYLE}</style>
</head>
<body>
<div id="archaeopteryx">
<h1>{title}</h1>
<div class="contents">
<div class="folder-contents">
{folder_column}
</div>
<div class="file-contents">
{file_column}
</div>
</div>
</div>
</body>
</html>
"""


LISTING_STYLE = """
:root {
  --text: #424242;
  --background: #fff;
  --background-highlight: whitesmoke;
  --text-highlight: #a8a6b3;
  --title: #4a5560;
}
@media (prefers-color-scheme: dark) {
  :root {
    --background: #2b333b;
    --background-highlight: #3f4b57;
    --text: #c1c3c4;
    --text-highlight: #fff;
    --title: #4a5560;
  }
}
html, body {
  height: 100%;
  width: 100%;
  margin: 0;
  box-sizing: border-box;
  background: var(--background);
  font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
  -webkit-font-smoothing: antialiased;
}
#archaeopteryx {
  display: flex;
  flex-direction: column;
  align-items: start;
  max-width: 1280px;
  margin: 0 auto;
  padding: 1rem 4rem;
}
#archaeopteryx > h1 {
  font-size: 36px;
  margin-bottom: 0;
  color: var(--title);
}
a {
  position: relative;
  text-decoration: none;
  color: var(--text);
  font-size: 14px;
  font-family: "SFMono-Regular", Consolas, "Liberation Mono", Menlo, Courier, monospace;
}
.contents {
  display: flex;
  flex-direction: row;
  gap: 2rem;
  margin-top: 1.5rem;
}
.folder-contents, .file-contents {
  display: flex;
  flex-direction: column;
  gap: 0.4rem;
}
.entry {
  display: flex;
  flex-direction: row;
  justify-content: space-between;
  align-items: center;
  min-width: 10rem;
  padding: 0.7rem;
  background: var(--background);
  transition: all 0.2s ease-in-out 0s;
}
.entry:hover {
  background: var(--background-highlight);
  color: var(--text-highlight);
}
.entry::before {
  content: "";
  position: absolute;
  top: 0;
  left: -8px;
  display: block;
  width: 4px;
  height: 0%;
  background: #f27a3a;
  transition: 0.3s cubic-bezier(0.17, 0.67, 0.16, 0.99);
}
.entry:hover::before {
  height: 100%;
}
.entry-name {
  word-wrap: anywhere;
}
.entry-extension {
  margin-left: 10px;
  padding: 0.2rem;
  border-radius: 0.1rem;
  opacity: 0.3;
  color: var(--background);
  background: var(--text);
}
.entry-extension:empty {
  display: none;
}
"""
