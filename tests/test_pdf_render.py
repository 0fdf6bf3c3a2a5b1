"""Tests for rpvakit.pdf_render -- HTML to PDF through PyMuPDF."""

from __future__ import annotations

import os

import fitz  # PyMuPDF
import pytest

from rpvakit.html_render import render_email_html
from rpvakit.models import EmailRecord
from rpvakit.pdf_render import PyMuPDFRenderer
from rpvakit.protocols import PdfRenderer


@pytest.fixture
def html_file(tmp_path, default_config) -> str:
    record = EmailRecord(
        subject="Notification RPVA",
        sender="greffe@justice.fr",
        body="Bonjour\n\nCordialement",
        attachments=["conclusions.pdf"],
    )
    path = tmp_path / "out" / "notification.html"
    path.parent.mkdir()
    path.write_text(render_email_html(record, default_config), encoding="utf-8")
    return str(path)


class TestPyMuPDFRenderer:
    """Tests against real PyMuPDF output."""

    def test_satisfies_protocol(self):
        assert isinstance(PyMuPDFRenderer(), PdfRenderer)

    def test_render_sync_writes_pdf(self, html_file, tmp_path):
        pdf_dir = str(tmp_path / "pdf")
        pdf_path = PyMuPDFRenderer().render_sync(html_file, pdf_dir)

        assert pdf_path == os.path.join(pdf_dir, "notification.pdf")
        with fitz.open(pdf_path) as doc:
            assert doc.page_count >= 1
            text = "".join(page.get_text() for page in doc)
        assert "Notification RPVA" in text

    def test_long_body_spans_pages(self, tmp_path, default_config):
        record = EmailRecord(
            subject="Long",
            sender="x@y.fr",
            body="\n".join(f"Ligne {i}" for i in range(400)),
        )
        html_path = tmp_path / "long.html"
        html_path.write_text(render_email_html(record, default_config), encoding="utf-8")

        pdf_path = PyMuPDFRenderer().render_sync(str(html_path), str(tmp_path / "pdf"))
        with fitz.open(pdf_path) as doc:
            assert doc.page_count > 1

    @pytest.mark.asyncio
    async def test_async_render(self, html_file, tmp_path):
        pdf_path = await PyMuPDFRenderer().render(html_file, str(tmp_path / "pdf"))
        assert os.path.isfile(pdf_path)

    def test_missing_html_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PyMuPDFRenderer().render_sync(str(tmp_path / "absent.html"), str(tmp_path / "pdf"))
