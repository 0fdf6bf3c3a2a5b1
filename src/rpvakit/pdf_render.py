"""PDF rendering of converted HTML pages via PyMuPDF.

``PyMuPDFRenderer`` lays a rendered HTML page out on A4 pages with
PyMuPDF's ``Story`` API and writes ``<pdf_dir>/<html-base-name>.pdf``.
The blocking layout work runs in a worker thread so the conversion
pipeline's event loop keeps serving the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib

import fitz  # type: ignore[import-untyped]

logger = logging.getLogger("rpvakit")

# 10 mm left/right, 15 mm top/bottom, in points.
_DEFAULT_MARGINS = (28.35, 42.5, 28.35, 42.5)


class PyMuPDFRenderer:
    """Render HTML files to PDF.

    Parameters
    ----------
    page_size:
        Paper name understood by ``fitz.paper_rect`` (default ``"a4"``).
    margins:
        ``(left, top, right, bottom)`` margins in points.
    """

    def __init__(
        self,
        page_size: str = "a4",
        margins: tuple[float, float, float, float] = _DEFAULT_MARGINS,
    ) -> None:
        self._page_size = page_size
        self._margins = margins

    async def render(self, html_path: str, pdf_dir: str) -> str:
        """Async wrapper around :meth:`render_sync`.

        Offloads the layout to a thread via ``asyncio.to_thread()``.
        """
        return await asyncio.to_thread(self.render_sync, html_path, pdf_dir)

    def render_sync(self, html_path: str, pdf_dir: str) -> str:
        """Lay out *html_path* and write the PDF. Returns the PDF path."""
        os.makedirs(pdf_dir, exist_ok=True)
        pdf_path = os.path.join(pdf_dir, f"{pathlib.Path(html_path).stem}.pdf")
        html_text = pathlib.Path(html_path).read_text(encoding="utf-8")

        mediabox = fitz.paper_rect(self._page_size)
        left, top, right, bottom = self._margins
        where = mediabox + (left, top, -right, -bottom)

        story = fitz.Story(html=html_text)
        writer = fitz.DocumentWriter(pdf_path)
        pages = 0
        try:
            more = True
            while more:
                device = writer.begin_page(mediabox)
                more, _ = story.place(where)
                story.draw(device)
                writer.end_page()
                pages += 1
        finally:
            writer.close()

        logger.debug(
            "rpvakit | pdf=%s | pages=%d", os.path.basename(pdf_path), pages
        )
        return pdf_path
