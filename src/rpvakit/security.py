"""Pre-flight scanner for RPVA XML exports.

eBarreau exports are plain XML with no DTD.  Anything else is refused before
the recovering parser sees it: files outside the .xml/.xeml allow-list,
missing or empty exports, exports above ``max_file_size_mb``, and any
document that declares entities or carries an inline DTD.
"""

from __future__ import annotations

import os

from rpvakit.config import ConverterConfig
from rpvakit.errors import ConversionError, ErrorCode


class InputScanner:
    """Decide whether one RPVA export may be handed to the extractor.

    ``scan()`` looks at the path and size only; ``scan_content()`` looks at
    the bytes once they are read.  A non-empty result marks the export as
    a failed conversion.
    """

    def __init__(self, config: ConverterConfig) -> None:
        self.config = config

    def scan(self, file_path: str) -> list[ConversionError]:
        config = self.config
        if not config.is_supported(file_path):
            return _reject(
                file_path,
                ErrorCode.E_SECURITY_BAD_EXTENSION,
                f"Not an RPVA export: {file_path} (accepted: {', '.join(config.supported_extensions)})",
            )
        if not os.path.isfile(file_path):
            return _reject(file_path, ErrorCode.E_READ_FAILED, f"RPVA export not found: {file_path}")

        size = os.path.getsize(file_path)
        # An empty export has no envelope to extract.
        if size == 0:
            return _reject(file_path, ErrorCode.E_PARSE_EMPTY, f"RPVA export is empty: {file_path}")
        limit = config.max_file_size_mb * 1024 * 1024
        if size > limit:
            return _reject(
                file_path,
                ErrorCode.E_SECURITY_TOO_LARGE,
                f"RPVA export is {size} bytes, above the {config.max_file_size_mb} MB limit",
            )
        return []

    def scan_content(self, file_path: str, raw: bytes) -> list[ConversionError]:
        """Refuse exports whose bytes declare entities or an inline DTD."""
        upper = raw.upper()
        if b"<!ENTITY" in upper:
            return _reject(
                file_path,
                ErrorCode.E_SECURITY_ENTITY_DECLARATION,
                "RPVA export declares an entity (<!ENTITY); refusing to parse",
            )
        start = upper.find(b"<!DOCTYPE")
        if start != -1:
            # Internal subset: "[" opens before the DOCTYPE closes.
            bracket = raw.find(b"[", start)
            close = raw.find(b">", start)
            if bracket != -1 and (close == -1 or bracket < close):
                return _reject(
                    file_path,
                    ErrorCode.E_SECURITY_ENTITY_DECLARATION,
                    "RPVA export carries an inline DTD (<!DOCTYPE [...]); refusing to parse",
                )
        return []


def _reject(file_path: str, code: ErrorCode, message: str) -> list[ConversionError]:
    return [ConversionError(code=code, message=message, stage="security", file_path=file_path)]
