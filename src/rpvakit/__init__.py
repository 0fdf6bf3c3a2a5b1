"""rpvakit -- RPVA XML email export converter.

Public API re-exports for convenient access.
"""

from rpvakit.config import ConverterConfig
from rpvakit.errors import ConversionError, ErrorCode, FatalConversionError
from rpvakit.extractor import extract_email_record, normalize_body_text
from rpvakit.html_render import render_email_html
from rpvakit.index_page import build_index_html
from rpvakit.models import (
    ClearResult,
    ConversionBatchResult,
    EmailRecord,
    ExtractionFailure,
    FileOutcome,
    SearchHit,
    StoredRecord,
)
from rpvakit.pdf_render import PyMuPDFRenderer
from rpvakit.pipeline import ConversionPipeline
from rpvakit.protocols import PdfRenderer
from rpvakit.search import search_emails
from rpvakit.security import InputScanner

__all__ = [
    "ConversionPipeline",
    "ConverterConfig",
    "ErrorCode",
    "ConversionError",
    "FatalConversionError",
    "EmailRecord",
    "ExtractionFailure",
    "StoredRecord",
    "FileOutcome",
    "ConversionBatchResult",
    "ClearResult",
    "SearchHit",
    "InputScanner",
    "PdfRenderer",
    "PyMuPDFRenderer",
    "extract_email_record",
    "normalize_body_text",
    "render_email_html",
    "build_index_html",
    "search_emails",
]
