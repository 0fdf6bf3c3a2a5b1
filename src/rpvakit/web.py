"""FastAPI application for browsing, searching and converting emails.

``create_app()`` wires thin handlers around the pipeline, the index
builder and the sidecar search.  Converted pages are served as static
files under ``/output``.
"""

from __future__ import annotations

import argparse
import logging
import os

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles

from rpvakit.config import ConverterConfig
from rpvakit.errors import ErrorCode, FatalConversionError
from rpvakit.index_page import build_index_html, list_converted_files
from rpvakit.log import configure_logging
from rpvakit.models import ConversionBatchResult, SearchHit
from rpvakit.pipeline import ConversionPipeline
from rpvakit.protocols import PdfRenderer
from rpvakit.search import search_emails

logger = logging.getLogger("rpvakit")


def create_app(
    config: ConverterConfig | None = None,
    input_dir: str = "./Data",
    output_dir: str = "./Output",
    pdf_renderer: PdfRenderer | None = None,
) -> FastAPI:
    """Build the web application over *input_dir* and *output_dir*."""
    config = config or ConverterConfig()
    pipeline = ConversionPipeline(config, pdf_renderer=pdf_renderer)

    app = FastAPI(title=config.app_title)

    @app.get("/", response_class=HTMLResponse)
    def index() -> HTMLResponse:
        entries = list_converted_files(output_dir, config)
        page = build_index_html(
            entries,
            [],
            config,
            href_prefix="output/",
            pdf_href_prefix="pdf/",
        )
        return HTMLResponse(page)

    @app.get("/api/status")
    def status() -> dict:
        try:
            pending = pipeline.discover_inputs(input_dir) if os.path.isdir(input_dir) else []
        except FatalConversionError as exc:
            raise _http_error(exc) from exc
        converted = list_converted_files(output_dir, config)
        return {
            "input_dir": input_dir,
            "output_dir": output_dir,
            "pending_count": len(pending),
            "converted_count": len(converted),
        }

    @app.get("/api/search", response_model=list[SearchHit])
    def search(q: str = "") -> list[SearchHit]:
        return search_emails(output_dir, q)

    @app.post("/api/convert", response_model=ConversionBatchResult)
    async def convert() -> ConversionBatchResult:
        try:
            return await pipeline.convert_directory(input_dir, output_dir, clear_input=True)
        except FatalConversionError as exc:
            raise _http_error(exc) from exc

    os.makedirs(output_dir, exist_ok=True)
    app.mount("/output", StaticFiles(directory=output_dir, check_dir=False), name="output")
    app.mount("/pdf", StaticFiles(directory=config.pdf_output_dir, check_dir=False), name="pdf")
    return app


def _http_error(exc: FatalConversionError) -> HTTPException:
    status_code = 404 if exc.code == ErrorCode.E_INPUT_DIR_MISSING.value else 500
    return HTTPException(status_code=status_code, detail=exc.error.message)


def serve(argv: list[str] | None = None) -> None:
    """Run the web UI with uvicorn (``pip install rpvakit[server]``)."""
    import uvicorn

    parser = argparse.ArgumentParser(prog="rpvakit-serve", description="RPVA Preview web UI")
    parser.add_argument("-i", "--input-dir", default="./Data")
    parser.add_argument("-o", "--output", default="./Output")
    parser.add_argument("--config", default=None, help="YAML or JSON configuration file")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=3000)
    args = parser.parse_args(argv)

    configure_logging()
    config = ConverterConfig.from_file(args.config) if args.config else ConverterConfig()
    app = create_app(config, input_dir=args.input_dir, output_dir=args.output)
    logger.info("Serveur démarré sur http://%s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)
