# Browser Print - rendered-view fallback when no thermal path works
# Writes a paper-sized HTML page that prints itself, then opens it

import html
import logging
import tempfile
import webbrowser
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


PAGE_CSS = {
    '58mm': "@page { size: 58mm auto; margin: 0; } .print-content { width: 58mm; font-size: 10px; }",
    '76mm': "@page { size: 76mm auto; margin: 0; } .print-content { width: 76mm; font-size: 11px; }",
    '80mm': "@page { size: 80mm auto; margin: 0; } .print-content { width: 80mm; font-size: 11px; }",
    'a5': "@page { size: A5; margin: 10mm; } .print-content { width: 100%; font-size: 12px; }",
    'a4': "@page { size: A4; margin: 15mm; } .print-content { width: 100%; font-size: 12px; }",
}

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>
      {css}
      body {{ margin: 0; padding: 0; font-family: 'Courier New', monospace; }}
      pre {{ margin: 0; white-space: pre-wrap; font-family: inherit; }}
      @media print {{ body {{ -webkit-print-color-adjust: exact; }} }}
    </style>
  </head>
  <body onload="setTimeout(function () {{ window.print(); }}, 250)">
    <div class="print-content">{content}</div>
  </body>
</html>
"""


@dataclass
class RenderedView:
    """A printable rendering of a ticket, supplied by the UI layer."""
    html: str
    title: str = 'Print'

    @classmethod
    def from_text(cls, text: str, title: str = 'Print') -> 'RenderedView':
        return cls(html=f"<pre>{html.escape(text)}</pre>", title=title)


def render_page(view: RenderedView, paper_format: str = '80mm') -> str:
    css = PAGE_CSS.get(paper_format, PAGE_CSS['80mm'])
    return PAGE_TEMPLATE.format(title=html.escape(view.title), css=css, content=view.html)


def print_with_browser(view: RenderedView, paper_format: str = '80mm',
                       opener: Optional[Callable[[str], bool]] = None) -> str:
    """Open the view in the browser's print flow. Returns the page path.

    Fire-and-continue: the print dialog outcome is not observed.
    """
    page = render_page(view, paper_format)
    with tempfile.NamedTemporaryFile('w', suffix='.html', prefix='printcore-',
                                     delete=False, encoding='utf-8') as f:
        f.write(page)
        path = f.name
    (opener or webbrowser.open)(f"file://{path}")
    logger.info("Browser print opened for %s (%s)", view.title, paper_format)
    return path
