"""Pydantic models for the rpvakit package.

Contains ``EmailRecord`` (extractor output), ``ExtractionFailure`` (the
"no envelope" outcome), and the per-file / per-batch result models used by
the pipeline, the directory-clear operation and the search endpoint.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from rpvakit.errors import ConversionError, ErrorCode


class EmailRecord(BaseModel):
    """Best-effort structured email recovered from one XML export.

    ``subject`` and ``sender`` are never empty: the extractor substitutes the
    configured sentinels.  ``to`` and ``date`` stay empty when absent.
    ``date`` is the raw text; formatting happens at render time.
    ``participants`` is filled only when the body was rebuilt from a
    semicolon-delimited address list.
    """

    model_config = ConfigDict(populate_by_name=True)

    subject: str
    sender: str = Field(alias="from")
    to: str = ""
    date: str = ""
    body: str = ""
    participants: list[str] = []
    attachments: list[str] = []


class ExtractionFailure(BaseModel):
    """Distinguished extractor outcome: no ``envelope`` element was found."""

    code: str = ErrorCode.E_NO_ENVELOPE.value
    message: str = "No envelope element found in XML"


class StoredRecord(BaseModel):
    """Sidecar document persisted next to each rendered HTML page."""

    source_file: str
    html_file: str
    pdf_file: str | None = None
    parser_version: str
    record: EmailRecord


class FileOutcome(BaseModel):
    """Outcome of converting a single input file."""

    source_path: str
    success: bool
    output_path: str | None = None
    pdf_path: str | None = None
    warnings: list[str] = []
    error_details: list[ConversionError] = []
    processing_time_seconds: float = 0.0

    @property
    def errors(self) -> list[str]:
        return [e.code for e in self.error_details if e.is_fatal]


class ConversionBatchResult(BaseModel):
    """Aggregate of per-file outcomes for one batch run."""

    input_dir: str | None = None
    output_dir: str
    success_count: int = 0
    failure_count: int = 0
    generated_files: list[str] = []
    outcomes: list[FileOutcome] = []
    index_path: str | None = None
    processing_time_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """A batch is fully successful only when no file failed."""
        return self.failure_count == 0

    def add(self, outcome: FileOutcome) -> None:
        """Fold one settled file outcome into the aggregate."""
        self.outcomes.append(outcome)
        if outcome.success:
            self.success_count += 1
            if outcome.output_path:
                self.generated_files.append(outcome.output_path)
        else:
            self.failure_count += 1


class ClearResult(BaseModel):
    """Result of clearing allow-listed inputs from a directory."""

    directory: str
    success: bool
    deleted: list[str] = []
    failed: list[str] = []


class SearchHit(BaseModel):
    """One converted email matching a search term."""

    file: str
    file_name: str
    record: EmailRecord
    matched_fields: list[str]
