"""Error codes and structured error model for the rpvakit package.

``ErrorCode`` contains every error/warning code the converter can emit.
``ConversionError`` is the Pydantic model attached to per-file outcomes;
``FatalConversionError`` is the only exception the pipeline lets escape,
and only for failures that abort a whole run.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes for RPVA XML conversion.

    Values equal their names so they are stable strings suitable for
    logs and API payloads.  ``E_`` prefix = fatal, ``W_`` prefix = warning.
    """

    # Run-level (abort the batch)
    E_INPUT_DIR_MISSING = "E_INPUT_DIR_MISSING"
    E_INPUT_DIR_UNREADABLE = "E_INPUT_DIR_UNREADABLE"
    E_OUTPUT_DIR_CREATE = "E_OUTPUT_DIR_CREATE"
    E_USAGE = "E_USAGE"

    # Security
    E_SECURITY_BAD_EXTENSION = "E_SECURITY_BAD_EXTENSION"
    E_SECURITY_TOO_LARGE = "E_SECURITY_TOO_LARGE"
    E_SECURITY_ENTITY_DECLARATION = "E_SECURITY_ENTITY_DECLARATION"

    # Per-file
    E_READ_FAILED = "E_READ_FAILED"
    E_PARSE_EMPTY = "E_PARSE_EMPTY"
    E_NO_ENVELOPE = "E_NO_ENVELOPE"
    E_WRITE_FAILED = "E_WRITE_FAILED"
    E_CONVERSION_FAILED = "E_CONVERSION_FAILED"

    # Warnings (non-fatal)
    W_PDF_FAILED = "W_PDF_FAILED"
    W_PDF_TIMEOUT = "W_PDF_TIMEOUT"
    W_MALFORMED_RECOVERED = "W_MALFORMED_RECOVERED"
    W_ASSET_FALLBACK = "W_ASSET_FALLBACK"
    W_DELETE_FAILED = "W_DELETE_FAILED"
    W_SIDECAR_FAILED = "W_SIDECAR_FAILED"


class ConversionError(BaseModel):
    """Structured error with code, message, and location context.

    The ``code`` field is typed as ``str`` so it accepts ``ErrorCode``
    members and their plain string values alike.
    """

    code: str
    message: str
    stage: str | None = None
    recoverable: bool = False
    file_path: str | None = None

    @property
    def is_fatal(self) -> bool:
        return self.code.startswith("E_")


class FatalConversionError(Exception):
    """Raised when a whole conversion run must abort.

    Wraps the ``ConversionError`` describing the cause so callers can
    report the code and message uniformly.
    """

    def __init__(self, error: ConversionError) -> None:
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> str:
        return self.error.code
