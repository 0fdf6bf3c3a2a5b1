"""ConversionPipeline -- orchestrator and public API for rpvakit.

Routes RPVA XML exports through the conversion pipeline:

1. Pre-flight scan via :class:`InputScanner`.
2. Read the file off the event loop.
3. Extract via :func:`extract_email_record`.
4. Render via :func:`render_email_html` and write ``<base>.html``.
5. Render the PDF through the configured :class:`PdfRenderer` (best
   effort, bounded by ``render_timeout_seconds``).
6. Persist the sidecar record ``<base>.json``.

Directory runs process files in fixed-size batches: the files of one
batch convert concurrently, and the next batch starts only once every
unit of the current one has settled.  Per-file failures are folded into
the :class:`ConversionBatchResult`; only run-level failures raise
:class:`FatalConversionError`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time

from rpvakit.config import ConverterConfig
from rpvakit.errors import ConversionError, ErrorCode, FatalConversionError
from rpvakit.extractor import extract_email_record
from rpvakit.html_render import render_email_html
from rpvakit.index_page import write_index_page
from rpvakit.log import SUCCESS
from rpvakit.models import (
    ClearResult,
    ConversionBatchResult,
    EmailRecord,
    ExtractionFailure,
    FileOutcome,
    StoredRecord,
)
from rpvakit.pdf_render import PyMuPDFRenderer
from rpvakit.protocols import PdfRenderer
from rpvakit.security import InputScanner

logger = logging.getLogger("rpvakit")

SIDECAR_EXTENSION = ".json"


class ConversionPipeline:
    """Top-level orchestrator for XML-to-HTML/PDF conversion.

    Parameters
    ----------
    config:
        Pipeline configuration.  Uses defaults when *None*.
    pdf_renderer:
        Backend for PDF rendering.  Defaults to :class:`PyMuPDFRenderer`.
    """

    def __init__(
        self,
        config: ConverterConfig | None = None,
        pdf_renderer: PdfRenderer | None = None,
    ) -> None:
        self._config = config or ConverterConfig()
        self._pdf_renderer = pdf_renderer or PyMuPDFRenderer()
        self._scanner = InputScanner(self._config)

    @property
    def config(self) -> ConverterConfig:
        return self._config

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def can_handle(self, file_path: str) -> bool:
        """Return True if *file_path* has an allow-listed extension (case-insensitive)."""
        return self._config.is_supported(file_path)

    def discover_inputs(self, input_dir: str) -> list[str]:
        """List allow-listed files in *input_dir*, sorted by name.

        Raises
        ------
        FatalConversionError
            When the directory is missing or cannot be listed.
        """
        try:
            names = sorted(os.listdir(input_dir))
        except FileNotFoundError as exc:
            raise FatalConversionError(
                ConversionError(
                    code=ErrorCode.E_INPUT_DIR_MISSING,
                    message=f"Input directory does not exist: {input_dir}",
                    stage="discover",
                    file_path=input_dir,
                )
            ) from exc
        except OSError as exc:
            raise FatalConversionError(
                ConversionError(
                    code=ErrorCode.E_INPUT_DIR_UNREADABLE,
                    message=f"Cannot read input directory {input_dir}: {exc}",
                    stage="discover",
                    file_path=input_dir,
                )
            ) from exc

        paths = [os.path.join(input_dir, name) for name in names if self.can_handle(name)]
        return [path for path in paths if os.path.isfile(path)]

    def ensure_output_dir(self, output_dir: str) -> None:
        """Create *output_dir* eagerly, or raise :class:`FatalConversionError`."""
        try:
            os.makedirs(output_dir, exist_ok=True)
        except OSError as exc:
            raise FatalConversionError(
                ConversionError(
                    code=ErrorCode.E_OUTPUT_DIR_CREATE,
                    message=f"Cannot create output directory {output_dir}: {exc}",
                    stage="setup",
                    file_path=output_dir,
                )
            ) from exc

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    async def convert_file(self, source_path: str, output_dir: str) -> FileOutcome:
        """Convert one XML export into ``<output_dir>/<base>.html``.

        Never raises for per-file problems: failures come back as a
        :class:`FileOutcome` with ``success=False``.
        """
        start = time.monotonic()
        config = self._config
        filename = os.path.basename(source_path)
        warnings: list[str] = []

        # ==============================================================
        # Step 1: Pre-flight scan
        # ==============================================================
        scan_errors = self._scanner.scan(source_path)
        if scan_errors:
            return self._failed(source_path, scan_errors, warnings, start)

        # ==============================================================
        # Step 2: Read
        # ==============================================================
        try:
            raw = await asyncio.to_thread(_read_bytes, source_path)
        except OSError as exc:
            err = ConversionError(
                code=ErrorCode.E_READ_FAILED,
                message=f"Cannot read {source_path}: {exc}",
                stage="read",
                file_path=source_path,
            )
            return self._failed(source_path, [err], warnings, start)

        content_errors = self._scanner.scan_content(source_path, raw)
        if content_errors:
            return self._failed(source_path, content_errors, warnings, start)

        # ==============================================================
        # Step 3: Extract
        # ==============================================================
        extracted = extract_email_record(_decode(raw), config, warnings)
        if isinstance(extracted, ExtractionFailure):
            err = ConversionError(
                code=extracted.code,
                message=f"{extracted.message}: {source_path}",
                stage="extract",
                file_path=source_path,
            )
            return self._failed(source_path, [err], warnings, start)
        record: EmailRecord = extracted

        # ==============================================================
        # Step 4: Render and write HTML
        # ==============================================================
        stem = os.path.splitext(filename)[0]
        output_path = os.path.join(output_dir, stem + config.output_file_extension)
        page = render_email_html(record, config, warnings)
        try:
            await asyncio.to_thread(_write_text, output_path, page)
        except OSError as exc:
            err = ConversionError(
                code=ErrorCode.E_WRITE_FAILED,
                message=f"Cannot write {output_path}: {exc}",
                stage="write",
                file_path=source_path,
            )
            return self._failed(source_path, [err], warnings, start)

        # ==============================================================
        # Step 5: PDF (best effort)
        # ==============================================================
        pdf_path = await self._render_pdf(output_path, warnings)

        # ==============================================================
        # Step 6: Sidecar record
        # ==============================================================
        if config.write_sidecar:
            stored = StoredRecord(
                source_file=filename,
                html_file=os.path.basename(output_path),
                pdf_file=os.path.basename(pdf_path) if pdf_path else None,
                parser_version=config.parser_version,
                record=record,
            )
            sidecar_path = os.path.join(output_dir, stem + SIDECAR_EXTENSION)
            try:
                await asyncio.to_thread(
                    _write_text,
                    sidecar_path,
                    stored.model_dump_json(by_alias=True, indent=2),
                )
            except OSError as exc:
                logger.warning(
                    "rpvakit | file=%s | code=%s | detail=%s",
                    filename,
                    ErrorCode.W_SIDECAR_FAILED.value,
                    exc,
                )
                warnings.append(ErrorCode.W_SIDECAR_FAILED.value)

        elapsed = time.monotonic() - start
        logger.log(
            SUCCESS,
            "Converti: %s -> %s | attachments=%d | time=%.2fs",
            filename,
            os.path.basename(output_path),
            len(record.attachments),
            elapsed,
        )
        return FileOutcome(
            source_path=source_path,
            success=True,
            output_path=output_path,
            pdf_path=pdf_path,
            warnings=warnings,
            processing_time_seconds=elapsed,
        )

    async def convert_single(
        self,
        source_path: str,
        output_dir: str,
        delete_source: bool = False,
    ) -> FileOutcome:
        """Convert exactly one file, optionally deleting it on success."""
        self.ensure_output_dir(output_dir)
        outcome = await self._convert_settled(source_path, output_dir)
        if outcome.success and delete_source:
            if not await self.delete_source(source_path):
                outcome.warnings.append(ErrorCode.W_DELETE_FAILED.value)
        return outcome

    # ------------------------------------------------------------------
    # Directory batches
    # ------------------------------------------------------------------

    async def convert_directory(
        self,
        input_dir: str,
        output_dir: str,
        clear_input: bool = False,
        delete_sources: bool = False,
    ) -> ConversionBatchResult:
        """Convert every allow-listed file of *input_dir* in bounded batches.

        Parameters
        ----------
        input_dir:
            Directory holding the XML exports.
        output_dir:
            Destination for HTML pages and sidecar records; created
            before any conversion starts.
        clear_input:
            Remove all allow-listed files from *input_dir* once the whole
            run succeeded and produced at least one page.
        delete_sources:
            Remove each source file right after it converted successfully.

        Raises
        ------
        FatalConversionError
            When the output directory cannot be created or the input
            directory cannot be listed.
        """
        start = time.monotonic()
        config = self._config

        self.ensure_output_dir(output_dir)
        files = self.discover_inputs(input_dir)

        result = ConversionBatchResult(input_dir=input_dir, output_dir=output_dir)
        if not files:
            logger.warning("Aucun fichier XML trouvé dans %s", input_dir)
        else:
            logger.info("Traitement de %d fichier(s) XML depuis %s...", len(files), input_dir)

        batch_size = max(1, config.batch_size)
        for offset in range(0, len(files), batch_size):
            batch = files[offset : offset + batch_size]
            outcomes = await asyncio.gather(
                *(self._convert_settled(path, output_dir) for path in batch)
            )
            for outcome in outcomes:
                result.add(outcome)

        logger.info(
            "Conversion terminée: %d succès, %d échecs",
            result.success_count,
            result.failure_count,
        )

        if delete_sources:
            for outcome in result.outcomes:
                if outcome.success and not await self.delete_source(outcome.source_path):
                    outcome.warnings.append(ErrorCode.W_DELETE_FAILED.value)

        if config.generate_index:
            result.index_path = await asyncio.to_thread(
                self.write_index_page, output_dir, result.generated_files
            )

        if clear_input and result.success and result.generated_files:
            clear_result = await self.clear_input_directory(input_dir)
            if not clear_result.success:
                logger.warning("Échec partiel du vidage du dossier %s", input_dir)

        result.processing_time_seconds = time.monotonic() - start
        return result

    async def clear_input_directory(self, input_dir: str) -> ClearResult:
        """Delete every allow-listed file in *input_dir*.

        A missing directory counts as already clear.  Files outside the
        allow-list are never touched; individual deletion failures are
        reported without stopping the others.
        """
        try:
            names = await asyncio.to_thread(os.listdir, input_dir)
        except FileNotFoundError:
            logger.warning("Le dossier %s n'existe pas", input_dir)
            return ClearResult(directory=input_dir, success=True)
        except OSError as exc:
            logger.error(
                "rpvakit | dir=%s | code=%s | detail=%s",
                input_dir,
                ErrorCode.E_INPUT_DIR_UNREADABLE.value,
                exc,
            )
            return ClearResult(directory=input_dir, success=False)

        targets = [
            os.path.join(input_dir, name)
            for name in sorted(names)
            if self.can_handle(name) and os.path.isfile(os.path.join(input_dir, name))
        ]
        if not targets:
            logger.info("Aucun fichier XML à supprimer dans %s", input_dir)
            return ClearResult(directory=input_dir, success=True)

        logger.info("Suppression de %d fichier(s) XML de %s...", len(targets), input_dir)
        removed = await asyncio.gather(*(self.delete_source(path) for path in targets))

        deleted = [path for path, ok in zip(targets, removed) if ok]
        failed = [path for path, ok in zip(targets, removed) if not ok]
        if failed:
            logger.warning(
                "Dossier partiellement vidé (%d/%d fichiers supprimés)",
                len(deleted),
                len(targets),
            )
        else:
            logger.log(SUCCESS, "Dossier vidé avec succès (%d fichiers supprimés)", len(deleted))
        return ClearResult(
            directory=input_dir,
            success=not failed,
            deleted=deleted,
            failed=failed,
        )

    async def delete_source(self, source_path: str) -> bool:
        """Remove one source file. Returns False (and logs) on failure."""
        try:
            await asyncio.to_thread(os.remove, source_path)
        except OSError as exc:
            logger.warning(
                "rpvakit | file=%s | code=%s | detail=%s",
                source_path,
                ErrorCode.W_DELETE_FAILED.value,
                exc,
            )
            return False
        logger.log(SUCCESS, "Supprimé: %s", os.path.basename(source_path))
        return True

    def write_index_page(self, output_dir: str, recent_files: list[str]) -> str | None:
        """Regenerate the navigation index; failures only log a warning."""
        try:
            return write_index_page(output_dir, recent_files, self._config)
        except OSError as exc:
            logger.warning("rpvakit | dir=%s | index not written | detail=%s", output_dir, exc)
            return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _convert_settled(self, source_path: str, output_dir: str) -> FileOutcome:
        """Run :meth:`convert_file`, turning unexpected errors into a failed outcome."""
        try:
            return await self.convert_file(source_path, output_dir)
        except Exception as exc:
            logger.exception("rpvakit | file=%s | unexpected conversion error", source_path)
            err = ConversionError(
                code=ErrorCode.E_CONVERSION_FAILED,
                message=f"Unexpected error converting {source_path}: {exc}",
                stage="convert",
                file_path=source_path,
            )
            return FileOutcome(source_path=source_path, success=False, error_details=[err])

    async def _render_pdf(self, html_path: str, warnings: list[str]) -> str | None:
        config = self._config
        if not config.generate_pdf:
            return None

        name = os.path.basename(html_path)
        try:
            render = self._pdf_renderer.render(html_path, config.pdf_output_dir)
            if config.render_timeout_seconds is not None:
                return await asyncio.wait_for(render, config.render_timeout_seconds)
            return await render
        except asyncio.TimeoutError:
            logger.warning(
                "rpvakit | file=%s | code=%s | detail=PDF not generated after %.0fs",
                name,
                ErrorCode.W_PDF_TIMEOUT.value,
                config.render_timeout_seconds,
            )
            warnings.append(ErrorCode.W_PDF_TIMEOUT.value)
        except Exception as exc:
            logger.warning(
                "rpvakit | file=%s | code=%s | detail=PDF not generated: %s",
                name,
                ErrorCode.W_PDF_FAILED.value,
                exc,
            )
            warnings.append(ErrorCode.W_PDF_FAILED.value)
        return None

    @staticmethod
    def _failed(
        source_path: str,
        errors: list[ConversionError],
        warnings: list[str],
        start: float,
    ) -> FileOutcome:
        logger.error(
            "rpvakit | file=%s | code=%s | detail=%s",
            source_path,
            errors[0].code,
            errors[0].message,
        )
        return FileOutcome(
            source_path=source_path,
            success=False,
            warnings=warnings,
            error_details=errors,
            processing_time_seconds=time.monotonic() - start,
        )


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(text)


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")
