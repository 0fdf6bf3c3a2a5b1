"""Full-text search over converted emails.

Reads the ``<base>.json`` sidecar records the pipeline writes next to
each HTML page and matches a term case-insensitively against the
header fields, the body, the attachment names and the file name.
"""

from __future__ import annotations

import logging
import os

from pydantic import ValidationError

from rpvakit.models import SearchHit, StoredRecord

logger = logging.getLogger("rpvakit")

SEARCHABLE_FIELDS = ("subject", "from", "to", "date", "body", "attachments", "file")


def load_stored_records(output_dir: str) -> list[tuple[str, StoredRecord]]:
    """Load every readable sidecar in *output_dir*, sorted by file name.

    Unreadable or invalid sidecars are skipped with a warning.
    """
    try:
        names = sorted(os.listdir(output_dir))
    except OSError as exc:
        logger.warning("rpvakit | cannot scan %s | detail=%s", output_dir, exc)
        return []

    records: list[tuple[str, StoredRecord]] = []
    for name in names:
        if not name.endswith(".json"):
            continue
        path = os.path.join(output_dir, name)
        try:
            with open(path, encoding="utf-8") as fh:
                stored = StoredRecord.model_validate_json(fh.read())
        except (OSError, ValidationError) as exc:
            logger.warning("rpvakit | file=%s | sidecar skipped | detail=%s", name, exc)
            continue
        records.append((path, stored))
    return records


def matching_fields(stored: StoredRecord, term: str) -> list[str]:
    """Return the names of the fields of *stored* containing *term*."""
    needle = term.casefold()
    record = stored.record
    haystacks = {
        "subject": record.subject,
        "from": record.sender,
        "to": record.to,
        "date": record.date,
        "body": "\n".join([record.body, *record.participants]),
        "attachments": "\n".join(record.attachments),
        "file": stored.html_file,
    }
    return [name for name in SEARCHABLE_FIELDS if needle in haystacks[name].casefold()]


def search_emails(output_dir: str, term: str) -> list[SearchHit]:
    """Search the converted corpus in *output_dir* for *term*.

    A blank term matches nothing.
    """
    term = term.strip()
    if not term:
        return []

    hits: list[SearchHit] = []
    for _path, stored in load_stored_records(output_dir):
        fields = matching_fields(stored, term)
        if fields:
            hits.append(
                SearchHit(
                    file=stored.html_file,
                    file_name=os.path.splitext(stored.html_file)[0],
                    record=stored.record,
                    matched_fields=fields,
                )
            )
    logger.debug("rpvakit | search=%r | hits=%d", term, len(hits))
    return hits
