"""Tests for rpvakit.pipeline -- per-file conversion and bounded batches."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from pathlib import Path

import pytest

from conftest import FakePdfRenderer
from rpvakit.config import ConverterConfig
from rpvakit.errors import ErrorCode, FatalConversionError
from rpvakit.pipeline import ConversionPipeline

VALID_XML = """<envelope>
    <Subject>{subject}</Subject>
    <From>greffe@justice.fr</From>
</envelope>
<body>Bonjour&#xD;Cordialement</body>
<attachment name="acte.pdf" />
"""


def _write_inputs(directory: Path, names: list[str], content: str | None = None) -> list[str]:
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for name in names:
        path = directory / name
        path.write_text(content or VALID_XML.format(subject=name), encoding="utf-8")
        paths.append(str(path))
    return paths


@pytest.fixture
def config(tmp_path) -> ConverterConfig:
    return ConverterConfig(pdf_output_dir=str(tmp_path / "pdf"))


@pytest.fixture
def pipeline(config, fake_renderer) -> ConversionPipeline:
    return ConversionPipeline(config, pdf_renderer=fake_renderer)


class TestDiscovery:
    """Tests for input discovery and output directory setup."""

    def test_filters_and_sorts(self, pipeline, tmp_path):
        data = tmp_path / "Data"
        _write_inputs(data, ["b.xml", "A.XEML", "c.xml", "notes.txt"])
        (data / "sub.xml").mkdir()
        found = [os.path.basename(p) for p in pipeline.discover_inputs(str(data))]
        assert found == ["A.XEML", "b.xml", "c.xml"]

    def test_can_handle_is_case_insensitive(self, pipeline):
        assert pipeline.can_handle("MAIL.XML") is True
        assert pipeline.can_handle("mail.pdf") is False

    def test_missing_input_dir_is_fatal(self, pipeline, tmp_path):
        with pytest.raises(FatalConversionError) as excinfo:
            pipeline.discover_inputs(str(tmp_path / "absent"))
        assert excinfo.value.code == ErrorCode.E_INPUT_DIR_MISSING

    def test_input_path_is_file_is_fatal(self, pipeline, tmp_path):
        path = tmp_path / "file.xml"
        path.write_text("<envelope/>", encoding="utf-8")
        with pytest.raises(FatalConversionError) as excinfo:
            pipeline.discover_inputs(str(path))
        assert excinfo.value.code == ErrorCode.E_INPUT_DIR_UNREADABLE

    def test_output_dir_created(self, pipeline, tmp_path):
        target = tmp_path / "a" / "b"
        pipeline.ensure_output_dir(str(target))
        assert target.is_dir()

    def test_output_dir_blocked_by_file(self, pipeline, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(FatalConversionError) as excinfo:
            pipeline.ensure_output_dir(str(blocker))
        assert excinfo.value.code == ErrorCode.E_OUTPUT_DIR_CREATE


class TestConvertFile:
    """Tests for single-unit conversion."""

    @pytest.mark.asyncio
    async def test_success_writes_html_and_sidecar(self, pipeline, fake_renderer, tmp_path):
        (source,) = _write_inputs(tmp_path / "Data", ["mail.xml"])
        out = tmp_path / "Output"
        out.mkdir()

        outcome = await pipeline.convert_file(source, str(out))

        assert outcome.success is True
        assert outcome.output_path == str(out / "mail.html")
        assert outcome.pdf_path == str(tmp_path / "pdf" / "mail.pdf")
        assert fake_renderer.calls == [str(out / "mail.html")]
        page = (out / "mail.html").read_text(encoding="utf-8")
        assert "mail.xml" in page
        assert "acte.pdf" in page

        sidecar = json.loads((out / "mail.json").read_text(encoding="utf-8"))
        assert sidecar["source_file"] == "mail.xml"
        assert sidecar["html_file"] == "mail.html"
        assert sidecar["pdf_file"] == "mail.pdf"
        assert sidecar["record"]["from"] == "greffe@justice.fr"
        assert sidecar["record"]["body"] == "Bonjour\nCordialement"

    @pytest.mark.asyncio
    async def test_no_envelope_is_per_file_failure(self, pipeline, tmp_path):
        (source,) = _write_inputs(tmp_path / "Data", ["bad.xml"], "<message>rien</message>")
        outcome = await pipeline.convert_file(source, str(tmp_path))
        assert outcome.success is False
        assert outcome.errors == [ErrorCode.E_NO_ENVELOPE]
        assert not (tmp_path / "bad.html").exists()

    @pytest.mark.asyncio
    async def test_missing_file(self, pipeline, tmp_path):
        outcome = await pipeline.convert_file(str(tmp_path / "gone.xml"), str(tmp_path))
        assert outcome.success is False
        assert outcome.errors == [ErrorCode.E_READ_FAILED]

    @pytest.mark.asyncio
    async def test_entity_declaration_rejected(self, pipeline, tmp_path):
        xml = '<!DOCTYPE e [<!ENTITY x "y">]><envelope><Subject>&x;</Subject></envelope>'
        (source,) = _write_inputs(tmp_path / "Data", ["xxe.xml"], xml)
        outcome = await pipeline.convert_file(source, str(tmp_path))
        assert outcome.errors == [ErrorCode.E_SECURITY_ENTITY_DECLARATION]

    @pytest.mark.asyncio
    async def test_latin1_input(self, pipeline, tmp_path):
        source = tmp_path / "latin.xml"
        source.write_bytes("<envelope><Subject>Décision</Subject></envelope>".encode("latin-1"))
        outcome = await pipeline.convert_file(str(source), str(tmp_path))
        assert outcome.success is True
        assert "Décision" in (tmp_path / "latin.html").read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_pdf_failure_is_non_fatal(self, config, tmp_path):
        pipeline = ConversionPipeline(config, pdf_renderer=FakePdfRenderer(fail=True))
        (source,) = _write_inputs(tmp_path / "Data", ["mail.xml"])
        outcome = await pipeline.convert_file(source, str(tmp_path))
        assert outcome.success is True
        assert outcome.pdf_path is None
        assert ErrorCode.W_PDF_FAILED.value in outcome.warnings
        assert (tmp_path / "mail.html").is_file()

    @pytest.mark.asyncio
    async def test_pdf_timeout_is_non_fatal(self, tmp_path):
        config = ConverterConfig(pdf_output_dir=str(tmp_path / "pdf"), render_timeout_seconds=0.05)
        pipeline = ConversionPipeline(config, pdf_renderer=FakePdfRenderer(delay=5))
        (source,) = _write_inputs(tmp_path / "Data", ["slow.xml"])

        start = time.monotonic()
        outcome = await pipeline.convert_file(source, str(tmp_path))

        assert time.monotonic() - start < 2
        assert outcome.success is True
        assert outcome.pdf_path is None
        assert outcome.warnings == [ErrorCode.W_PDF_TIMEOUT.value]

    @pytest.mark.asyncio
    async def test_pdf_disabled(self, tmp_path, fake_renderer):
        config = ConverterConfig(generate_pdf=False)
        pipeline = ConversionPipeline(config, pdf_renderer=fake_renderer)
        (source,) = _write_inputs(tmp_path / "Data", ["mail.xml"])
        outcome = await pipeline.convert_file(source, str(tmp_path))
        assert outcome.success is True
        assert fake_renderer.calls == []

    @pytest.mark.asyncio
    async def test_sidecar_disabled(self, tmp_path, fake_renderer):
        config = ConverterConfig(pdf_output_dir=str(tmp_path / "pdf"), write_sidecar=False)
        pipeline = ConversionPipeline(config, pdf_renderer=fake_renderer)
        (source,) = _write_inputs(tmp_path / "Data", ["mail.xml"])
        await pipeline.convert_file(source, str(tmp_path))
        assert not (tmp_path / "mail.json").exists()


class TestConvertDirectory:
    """Tests for batch runs over a directory."""

    @pytest.mark.asyncio
    async def test_mixed_results(self, pipeline, tmp_path, caplog):
        data = tmp_path / "Data"
        _write_inputs(data, ["a.xml", "c.xml"])
        _write_inputs(data, ["b.xml"], "<message/>")
        _write_inputs(data, ["readme.txt"], "ignored")
        out = tmp_path / "Output"

        with caplog.at_level(logging.INFO, logger="rpvakit"):
            result = await pipeline.convert_directory(str(data), str(out))

        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.success is False
        assert result.generated_files == [str(out / "a.html"), str(out / "c.html")]
        assert [os.path.basename(o.source_path) for o in result.outcomes] == [
            "a.xml",
            "b.xml",
            "c.xml",
        ]
        assert "Conversion terminée: 2 succès, 1 échecs" in caplog.text

    @pytest.mark.asyncio
    async def test_output_dir_created_eagerly(self, pipeline, tmp_path):
        data = tmp_path / "Data"
        data.mkdir()
        out = tmp_path / "new" / "Output"
        result = await pipeline.convert_directory(str(data), str(out))
        assert out.is_dir()
        assert result.success is True
        assert result.generated_files == []

    @pytest.mark.asyncio
    async def test_index_written(self, pipeline, tmp_path):
        data = tmp_path / "Data"
        _write_inputs(data, ["a.xml"])
        out = tmp_path / "Output"
        result = await pipeline.convert_directory(str(data), str(out))
        assert result.index_path == str(out / "index.html")
        assert "a.html" in (out / "index.html").read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_index_written_off_the_event_loop(self, pipeline, tmp_path, monkeypatch):
        data = tmp_path / "Data"
        _write_inputs(data, ["a.xml"])
        loop_thread = threading.get_ident()
        seen: list[int] = []
        original = ConversionPipeline.write_index_page

        def _record(self, output_dir, recent_files):
            seen.append(threading.get_ident())
            return original(self, output_dir, recent_files)

        monkeypatch.setattr(ConversionPipeline, "write_index_page", _record)
        await pipeline.convert_directory(str(data), str(tmp_path / "Output"))

        assert len(seen) == 1
        assert seen[0] != loop_thread

    @pytest.mark.asyncio
    async def test_index_has_no_pdf_links_when_pdf_disabled(self, tmp_path, fake_renderer):
        config = ConverterConfig(pdf_output_dir=str(tmp_path / "pdf"), generate_pdf=False)
        pipeline = ConversionPipeline(config, pdf_renderer=fake_renderer)
        data = tmp_path / "Data"
        _write_inputs(data, ["m.xml"])
        out = tmp_path / "Output"

        await pipeline.convert_directory(str(data), str(out))

        page = (out / "index.html").read_text(encoding="utf-8")
        assert 'data-file="m.html"' in page
        assert 'class="open-pdf"' not in page
        assert "data-pdf=" not in page
        assert not (tmp_path / "pdf" / "m.pdf").exists()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_conversion_failure(self, pipeline, tmp_path, monkeypatch):
        data = tmp_path / "Data"
        _write_inputs(data, ["a.xml"])

        def _boom(*args, **kwargs):
            raise KeyError("subject")

        monkeypatch.setattr("rpvakit.pipeline.render_email_html", _boom)
        result = await pipeline.convert_directory(str(data), str(tmp_path / "Output"))

        (outcome,) = result.outcomes
        assert outcome.success is False
        assert outcome.errors == [ErrorCode.E_CONVERSION_FAILED.value]
        assert outcome.error_details[0].stage == "convert"
        assert result.failure_count == 1

    @pytest.mark.asyncio
    async def test_missing_input_dir_is_fatal(self, pipeline, tmp_path):
        with pytest.raises(FatalConversionError) as excinfo:
            await pipeline.convert_directory(str(tmp_path / "absent"), str(tmp_path / "Output"))
        assert excinfo.value.code == ErrorCode.E_INPUT_DIR_MISSING

    @pytest.mark.asyncio
    async def test_clear_input_after_success(self, pipeline, tmp_path):
        data = tmp_path / "Data"
        _write_inputs(data, ["a.xml", "b.xeml"])
        (data / "keep.txt").write_text("keep", encoding="utf-8")

        result = await pipeline.convert_directory(str(data), str(tmp_path / "Output"), clear_input=True)

        assert result.success is True
        assert sorted(os.listdir(data)) == ["keep.txt"]

    @pytest.mark.asyncio
    async def test_no_clear_after_failure(self, pipeline, tmp_path):
        data = tmp_path / "Data"
        _write_inputs(data, ["a.xml"])
        _write_inputs(data, ["b.xml"], "<message/>")

        await pipeline.convert_directory(str(data), str(tmp_path / "Output"), clear_input=True)

        assert sorted(os.listdir(data)) == ["a.xml", "b.xml"]

    @pytest.mark.asyncio
    async def test_delete_sources_removes_successes_only(self, pipeline, tmp_path):
        data = tmp_path / "Data"
        _write_inputs(data, ["a.xml"])
        _write_inputs(data, ["b.xml"], "<message/>")

        await pipeline.convert_directory(str(data), str(tmp_path / "Output"), delete_sources=True)

        assert os.listdir(data) == ["b.xml"]


class TestBatchConcurrency:
    """Tests for the fixed-size batch scheduling."""

    @pytest.mark.asyncio
    async def test_twelve_files_run_in_three_rounds(self, config, tmp_path):
        delay = 0.3
        renderer = FakePdfRenderer(delay=delay)
        pipeline = ConversionPipeline(config, pdf_renderer=renderer)
        data = tmp_path / "Data"
        _write_inputs(data, [f"mail{i:02d}.xml" for i in range(12)])

        start = time.monotonic()
        result = await pipeline.convert_directory(str(data), str(tmp_path / "Output"))
        elapsed = time.monotonic() - start

        assert result.success_count == 12
        assert renderer.peak == 5
        assert len(renderer.calls) == 12
        # ceil(12 / 5) rounds: slower than one fully parallel round, far
        # faster than twelve sequential units.
        assert elapsed >= 3 * delay * 0.9
        assert elapsed < 12 * delay * 0.8

    @pytest.mark.asyncio
    async def test_next_batch_waits_for_previous(self, tmp_path):
        events: list[tuple[str, str]] = []

        class RecordingRenderer:
            async def render(self, html_path: str, pdf_dir: str) -> str:
                name = Path(html_path).stem
                events.append(("start", name))
                # Later files finish first inside a batch.
                await asyncio.sleep(0.05 * (10 - int(name[-1])))
                events.append(("end", name))
                return os.path.join(pdf_dir, name + ".pdf")

        config = ConverterConfig(pdf_output_dir=str(tmp_path / "pdf"), batch_size=3)
        pipeline = ConversionPipeline(config, pdf_renderer=RecordingRenderer())
        data = tmp_path / "Data"
        _write_inputs(data, [f"m{i}.xml" for i in range(6)])

        result = await pipeline.convert_directory(str(data), str(tmp_path / "Output"))

        first_batch = {"m0", "m1", "m2"}
        last_end_first = max(i for i, (kind, n) in enumerate(events) if kind == "end" and n in first_batch)
        first_start_second = min(
            i for i, (kind, n) in enumerate(events) if kind == "start" and n not in first_batch
        )
        assert last_end_first < first_start_second
        assert [os.path.basename(p) for p in result.generated_files] == [
            f"m{i}.html" for i in range(6)
        ]

    @pytest.mark.asyncio
    async def test_batch_size_floor_of_one(self, tmp_path, fake_renderer):
        config = ConverterConfig(pdf_output_dir=str(tmp_path / "pdf"), batch_size=0)
        pipeline = ConversionPipeline(config, pdf_renderer=fake_renderer)
        data = tmp_path / "Data"
        _write_inputs(data, ["a.xml", "b.xml"])
        result = await pipeline.convert_directory(str(data), str(tmp_path / "Output"))
        assert result.success_count == 2
        assert fake_renderer.peak == 1


class TestClearInputDirectory:
    """Tests for the directory-clear operation."""

    @pytest.mark.asyncio
    async def test_missing_dir_is_success(self, pipeline, tmp_path):
        result = await pipeline.clear_input_directory(str(tmp_path / "absent"))
        assert result.success is True
        assert result.deleted == []

    @pytest.mark.asyncio
    async def test_no_matches_leaves_other_files(self, pipeline, tmp_path):
        (tmp_path / "notes.txt").write_text("x", encoding="utf-8")
        (tmp_path / "report.pdf").write_text("x", encoding="utf-8")
        result = await pipeline.clear_input_directory(str(tmp_path))
        assert result.success is True
        assert result.deleted == []
        assert sorted(os.listdir(tmp_path)) == ["notes.txt", "report.pdf"]

    @pytest.mark.asyncio
    async def test_deletes_allow_listed_only(self, pipeline, tmp_path):
        _write_inputs(tmp_path, ["a.xml", "B.XEML"])
        (tmp_path / "keep.txt").write_text("x", encoding="utf-8")
        result = await pipeline.clear_input_directory(str(tmp_path))
        assert result.success is True
        assert sorted(os.path.basename(p) for p in result.deleted) == ["B.XEML", "a.xml"]
        assert os.listdir(tmp_path) == ["keep.txt"]

    @pytest.mark.asyncio
    async def test_partial_failure_reported(self, pipeline, tmp_path, monkeypatch):
        _write_inputs(tmp_path, ["a.xml", "b.xml"])
        real_remove = os.remove

        def flaky_remove(path):
            if path.endswith("b.xml"):
                raise PermissionError("locked")
            real_remove(path)

        monkeypatch.setattr(os, "remove", flaky_remove)
        result = await pipeline.clear_input_directory(str(tmp_path))

        assert result.success is False
        assert [os.path.basename(p) for p in result.deleted] == ["a.xml"]
        assert [os.path.basename(p) for p in result.failed] == ["b.xml"]


class TestConvertSingle:
    """Tests for single-file mode."""

    @pytest.mark.asyncio
    async def test_delete_source_on_success(self, pipeline, tmp_path):
        (source,) = _write_inputs(tmp_path / "Data", ["mail.xml"])
        outcome = await pipeline.convert_single(source, str(tmp_path / "Output"), delete_source=True)
        assert outcome.success is True
        assert not os.path.exists(source)

    @pytest.mark.asyncio
    async def test_source_kept_on_failure(self, pipeline, tmp_path):
        (source,) = _write_inputs(tmp_path / "Data", ["bad.xml"], "<message/>")
        outcome = await pipeline.convert_single(source, str(tmp_path / "Output"), delete_source=True)
        assert outcome.success is False
        assert os.path.exists(source)
