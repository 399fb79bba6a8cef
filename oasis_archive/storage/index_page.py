"""
Landing page linking the mirrored seed profiles.
"""

from html import escape
from pathlib import Path
from typing import List, Tuple

from .writer import OutputWriter


PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
</head>
<body>
<h1>{title}</h1>
<ul>
{items}
</ul>
</body>
</html>
"""


def render_index_page(entries: List[Tuple[str, str]], title: str = "Archive") -> str:
    """Render ``(identity, public_url)`` pairs as an HTML list."""
    items = "\n".join(
        f'<li><a href="{escape(url, quote=True)}">{escape(identity)}</a></li>'
        for identity, url in entries
    )
    return PAGE_TEMPLATE.format(title=escape(title), items=items)


async def write_index_page(writer: OutputWriter, entries: List[Tuple[str, str]],
                           title: str = "Archive") -> Path:
    return await writer.write("index.html", render_index_page(entries, title).encode('utf-8'))
