"""
Starter project for a root directory that does not exist yet.

    archaeopteryx my-site
    The directory my-site does not exist. Do you wish to create it? [y/N] y

    my-site/
    ├── index.html   links index.css and app.js, shows logo.svg
    ├── index.css
    ├── logo.svg
    └── app.js       empty
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Union


logger = logging.getLogger(__name__)


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>archaeopteryx</title>
  <link rel="stylesheet" href="/index.css" />
</head>
<body>
  <main>
    <img src="/logo.svg" alt="archaeopteryx" width="96" height="96" />
    <h1>archaeopteryx</h1>
    <p>Edit <code>index.html</code> and save. This page reloads by itself.</p>
  </main>
  <script src="/app.js"></script>
</body>
</html>
"""

INDEX_CSS = """html, body {
  height: 100%;
  margin: 0;
  font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
  color: #424242;
  background: #fff;
}

main {
  height: 100%;
  display: flex;
  flex-direction: column;
  align-items: center;
  justify-content: center;
}

h1 {
  color: #4a5560;
}

code {
  color: #f27a3a;
}

@media (prefers-color-scheme: dark) {
  html, body {
    color: #c1c3c4;
    background: #2b333b;
  }
}
"""

LOGO_SVG = """<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64">
  <circle cx="32" cy="32" r="30" fill="#f27a3a" />
  <path d="M18 40 L32 18 L46 40 Z" fill="#fff" />
</svg>
"""

BOILERPLATE: Dict[str, str] = {
    "index.html": INDEX_HTML,
    "index.css": INDEX_CSS,
    "logo.svg": LOGO_SVG,
    "app.js": "",
}


def make_boilerplate(root: Union[str, Path]) -> List[Path]:
    """
    Create `root` with the starter files. Existing files are left alone.

    Returns:
        The files that were written.
    """
    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)

    written = []
    for name, content in BOILERPLATE.items():
        path = root / name
        if path.exists():
            continue
        path.write_text(content, encoding="utf-8")
        written.append(path)

    logger.debug(f"Created {len(written)} starter files in {root}")
    return written


def confirm(question: str, ask: Callable[[str], str] = input) -> bool:
    """y/N prompt. Anything but y/yes (or no terminal at all) means no."""
    try:
        answer = ask(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")
