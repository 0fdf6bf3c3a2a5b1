"""Shared test fixtures for rpvakit tests."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest

from rpvakit.config import ConverterConfig


@pytest.fixture(autouse=True)
def _restore_rpvakit_logger():
    """Undo console handlers installed by CLI runs."""
    logger = logging.getLogger("rpvakit")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture
def default_config() -> ConverterConfig:
    """Return a default ConverterConfig."""
    return ConverterConfig()


@pytest.fixture
def tmp_xml_file(tmp_path: Path):
    """Factory fixture to write XML string to a temp .xml file and return the path."""

    def _write(xml_content: str, filename: str = "test.xml") -> str:
        file_path = tmp_path / filename
        file_path.write_text(xml_content, encoding="utf-8")
        return str(file_path)

    return _write


class FakePdfRenderer:
    """In-memory PdfRenderer recording calls and peak concurrency."""

    def __init__(self, delay: float = 0.0, fail: bool = False) -> None:
        self.delay = delay
        self.fail = fail
        self.calls: list[str] = []
        self.active = 0
        self.peak = 0

    async def render(self, html_path: str, pdf_dir: str) -> str:
        self.calls.append(html_path)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            if self.fail:
                raise RuntimeError("renderer crashed")
            return str(Path(pdf_dir) / (Path(html_path).stem + ".pdf"))
        finally:
            self.active -= 1


@pytest.fixture
def fake_renderer() -> FakePdfRenderer:
    return FakePdfRenderer()


@pytest.fixture
def sample_rpva_xml() -> str:
    """Typical RPVA export: envelope, body and attachments as siblings."""
    return """<?xml version="1.0" encoding="UTF-8"?>
<envelope>
    <Subject>Notification RPVA</Subject>
    <From>greffe@justice.fr</From>
    <To>avocat@barreau.fr</To>
    <Date>2024-03-15T10:30:00</Date>
</envelope>
<body>Bonjour&#xD;&#xD;Cordialement</body>
<attachment name="conclusions.pdf" />
<attachment name="pieces.zip" />
"""


@pytest.fixture
def sample_xml_minimal_envelope() -> str:
    """Envelope without Subject/From/To/Date children."""
    return """<envelope><Reference>RG 24/00001</Reference></envelope>"""


@pytest.fixture
def sample_xml_no_envelope() -> str:
    """Well-formed XML with no envelope element anywhere."""
    return """<?xml version="1.0"?>
<message>
    <Subject>Orphan</Subject>
    <body>No envelope here</body>
</message>"""


@pytest.fixture
def sample_xml_participants() -> str:
    """Envelope whose residual text is a semicolon-delimited address list."""
    return """<envelope>
    <Subject>Diffusion</Subject>
    <From>greffe@justice.fr</From>
    maitre.dupont@avocat.fr; maitre.martin@avocat.fr; greffe.tj@justice.fr
</envelope>"""
