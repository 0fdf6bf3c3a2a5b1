"""Collaborator protocols for the rpvakit pipeline.

``PdfRenderer`` is the structural interface the pipeline expects from a
PDF backend.  It is ``@runtime_checkable`` so callers can optionally
verify conformance with ``isinstance`` checks.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PdfRenderer(Protocol):
    """Interface for HTML-to-PDF renderers."""

    async def render(self, html_path: str, pdf_dir: str) -> str:
        """Render *html_path* into *pdf_dir*. Returns the written PDF path."""
        ...
