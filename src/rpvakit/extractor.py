"""Metadata extractor for RPVA XML email exports.

Provides ``extract_email_record()`` which turns the raw text of one XML
export into an :class:`EmailRecord`, or an :class:`ExtractionFailure` when
no ``envelope`` element can be located.  Every field lookup is total: a
missing element yields an empty string, never an exception.

Parsing is attempted strictly first (stdlib ElementTree under a synthetic
wrapper root, so exports whose ``envelope``/``body``/``attachment``
elements are siblings still parse).  Malformed documents fall back to
lxml's recovering parser.
"""

from __future__ import annotations

import functools
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Iterator
from typing import Any

from lxml import etree

from rpvakit.config import ConverterConfig
from rpvakit.errors import ErrorCode
from rpvakit.models import EmailRecord, ExtractionFailure

logger = logging.getLogger("rpvakit")

_WRAPPER_TAG = "rpvakit-document"

_XML_DECLARATION_RE = re.compile(r"^\s*<\?xml\s[^>]*\?>", re.IGNORECASE)
_DOCTYPE_RE = re.compile(r"<!DOCTYPE[^>\[]*(?:\[.*?\])?\s*>", re.IGNORECASE | re.DOTALL)

# Parsed "&#xD;" arrives as "\r"; double-escaped exports keep the literal text.
_CARRIAGE_RETURN_RE = re.compile(r"(?:&#[xX]0*[dD];|&#0*13;|\r)\n?")
_HORIZONTAL_WS_RE = re.compile(r"[ \t]+")
_CONTROL_WS_RE = re.compile(r"[\r\n\t]+")
_ANY_WS_RE = re.compile(r"\s+")
_DIGITS_RE = re.compile(r"[0-9]+")
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^\w\s.-]")

HEADER_FIELDS = ("Subject", "From", "To", "Date")


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------


def extract_email_record(
    xml_text: str,
    config: ConverterConfig,
    warnings: list[str] | None = None,
) -> EmailRecord | ExtractionFailure:
    """Extract a best-effort email record from one XML document.

    Parameters
    ----------
    xml_text:
        Raw text of the XML export.
    config:
        Sentinels, heuristic thresholds and tag lists.
    warnings:
        Optional list that receives non-fatal warning codes (for example
        ``W_MALFORMED_RECOVERED``).

    Returns
    -------
    EmailRecord | ExtractionFailure
        A fully-populated record, or the failure sentinel when no envelope
        element exists.
    """
    try:
        root, recovered = parse_xml_document(xml_text)
    except (ValueError, RecursionError) as exc:
        logger.error(
            "rpvakit | code=%s | detail=XML could not be parsed: %s",
            ErrorCode.E_NO_ENVELOPE.value,
            exc,
        )
        return ExtractionFailure(message=f"XML could not be parsed: {exc}")

    if recovered and warnings is not None:
        warnings.append(ErrorCode.W_MALFORMED_RECOVERED.value)

    envelope = _find_first(root, "envelope") if root is not None else None
    if envelope is None:
        logger.warning(
            "rpvakit | code=%s | detail=no envelope element found",
            ErrorCode.E_NO_ENVELOPE.value,
        )
        return ExtractionFailure()

    fields = {name: _child_text(envelope, name) for name in HEADER_FIELDS}

    body_element = _find_first(root, "body")
    body_text = _text_content(body_element)

    body, participants = reconstruct_body(envelope, body_text, fields, config)
    attachments = extract_attachment_names(root, body_text, config)

    return EmailRecord(
        subject=fields["Subject"] or config.default_subject,
        sender=fields["From"] or config.default_sender,
        to=fields["To"],
        date=fields["Date"],
        body=body,
        participants=participants,
        attachments=attachments,
    )


def parse_xml_document(xml_text: str) -> tuple[Any | None, bool]:
    """Parse *xml_text* under a synthetic wrapper root.

    Returns ``(root, recovered)``.  ``recovered`` is True when the strict
    parser rejected the document and lxml's recovering parser was used;
    ``root`` is None only when even recovery produced nothing.
    """
    content = xml_text.lstrip("\ufeff")
    content = _XML_DECLARATION_RE.sub("", content, count=1)
    content = _DOCTYPE_RE.sub("", content)
    wrapped = f"<{_WRAPPER_TAG}>{content}</{_WRAPPER_TAG}>"

    try:
        return ET.fromstring(wrapped), False  # noqa: S314
    except ET.ParseError as exc:
        logger.debug("rpvakit | strict parse failed, recovering | detail=%s", exc)

    parser = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(wrapped.encode("utf-8"), parser)
    except etree.XMLSyntaxError:
        root = None
    return root, True


def normalize_body_text(text: str) -> str:
    """Normalize message text.

    Carriage-return escapes become newlines, runs of spaces and tabs
    collapse to one space, newlines are kept, and the result is trimmed.
    Applying it twice gives the same result as applying it once.
    """
    text = _CARRIAGE_RETURN_RE.sub("\n", text)
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    return text.strip()


def reconstruct_body(
    envelope: Any,
    body_text: str,
    fields: dict[str, str],
    config: ConverterConfig,
) -> tuple[str, list[str]]:
    """Rebuild the message body, returning ``(body, participants)``.

    Fallback chain: the document's ``body`` element, then the configured
    alternate tags under the envelope, then the envelope's residual text
    once the header values are removed.
    """
    if body_text:
        cleaned = normalize_body_text(body_text)
        if cleaned:
            return cleaned, []

    for tag in config.alternate_body_tags:
        content = normalize_body_text(_child_text(envelope, tag))
        if content:
            return content, []

    residual = _text_content(envelope)
    for value in fields.values():
        if value:
            residual = residual.replace(value, "", 1)
    residual = _CONTROL_WS_RE.sub(" ", residual.strip())
    residual = _ANY_WS_RE.sub(" ", residual).strip()

    if "@" in residual and ";" in residual:
        addresses = _EMAIL_RE.findall(residual)
        if len(addresses) >= config.participant_list_min_addresses:
            lines = [config.participant_list_label]
            lines.extend(f"- {address}" for address in addresses)
            return "\n".join(lines), addresses

    # A lone count or flag value is not message content.
    if _DIGITS_RE.fullmatch(residual):
        return "", []

    if len(residual) > config.min_residual_body_length:
        return residual, []
    return "", []


def extract_attachment_names(
    root: Any,
    body_text: str,
    config: ConverterConfig,
) -> list[str]:
    """Collect attachment names in document order, without duplicates.

    ``attachment`` elements win; only when the document has none is the
    raw body text scanned for file-name-shaped tokens.
    """
    names: list[str] = []
    saw_element = False

    for element in _iter_named(root, "attachment"):
        saw_element = True
        name = element.get("name")
        if name and name not in names:
            names.append(name)

    if not saw_element and body_text:
        for name in find_attachment_names_in_text(body_text, config):
            if name not in names:
                names.append(name)

    return names


def find_attachment_names_in_text(text: str, config: ConverterConfig) -> list[str]:
    """Return file-name-shaped tokens ending in a known extension."""
    pattern = _attachment_pattern(tuple(config.attachment_extensions))
    names: list[str] = []
    for match in pattern.finditer(text):
        cleaned = _UNSAFE_FILENAME_CHARS_RE.sub("", match.group(0).strip())
        if cleaned and cleaned not in names:
            names.append(cleaned)
    return names


# ----------------------------------------------------------------------
# Tree helpers (work on both ElementTree and lxml elements)
# ----------------------------------------------------------------------


@functools.lru_cache(maxsize=8)
def _attachment_pattern(extensions: tuple[str, ...]) -> re.Pattern[str]:
    # Longest first so "docx" is not cut short at "doc".
    ordered = sorted({ext.lower().lstrip(".") for ext in extensions}, key=len, reverse=True)
    alternation = "|".join(re.escape(ext) for ext in ordered)
    return re.compile(rf"\S+\.(?:{alternation})(?!\w)", re.IGNORECASE)


def _local_name(tag: Any) -> str:
    """Return the tag without namespace URI or prefix.

    Comments and processing instructions (non-string tags in lxml) map
    to the empty string.
    """
    if not isinstance(tag, str):
        return ""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    if ":" in tag:
        return tag.split(":", 1)[1]
    return tag


def _iter_named(root: Any, name: str) -> Iterator[Any]:
    for element in root.iter():
        if _local_name(element.tag) == name:
            yield element


def _find_first(root: Any, name: str) -> Any | None:
    return next(_iter_named(root, name), None)


def _text_content(element: Any | None) -> str:
    """Concatenate all descendant text, like the DOM ``textContent``."""
    if element is None:
        return ""
    parts: list[str] = []
    _collect_text(element, parts)
    return "".join(parts)


def _collect_text(element: Any, parts: list[str]) -> None:
    if isinstance(element.tag, str) and element.text:
        parts.append(element.text)
    for child in element:
        _collect_text(child, parts)
        if child.tail:
            parts.append(child.tail)


def _child_text(envelope: Any, name: str) -> str:
    """Trimmed text of the first descendant named *name*, or ``""``."""
    for element in envelope.iter():
        if element is envelope:
            continue
        if _local_name(element.tag) == name:
            return _text_content(element).strip()
    return ""
