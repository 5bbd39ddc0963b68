"""
404 page.

render_not_found() is the only thing the router calls when a path does not
resolve. It gets the request target exactly as the browser sent it so the
page can show what was asked for.
"""

import html


def render_not_found(path: str) -> str:
    """Render the 404 page for `path` (escaped before use)."""
    shown = html.escape(path)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta name="viewport" content="width=device-width, initial-scale=1" />
<meta charset="utf-8" />
<title>archaeopteryx - 404</title>
<style>
  body {{
    margin: 0;
    min-height: 100vh;
    display: flex;
    align-items: center;
    justify-content: center;
    font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
    color: #424242;
    background: #fff;
  }}
  @media (prefers-color-scheme: dark) {{
    body {{ color: #c1c3c4; background: #2b333b; }}
  }}
  h1 {{ font-size: 64px; margin: 0; color: #f27a3a; }}
  code {{ font-family: "SFMono-Regular", Consolas, Menlo, monospace; }}
</style>
</head>
<body>
<div id="archaeopteryx">
<h1>404</h1>
<p>Could not find <code>{shown}</code></p>
</div>
</body>
</html>
"""
