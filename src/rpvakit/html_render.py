"""HTML page rendering for extracted email records.

Provides ``render_email_html()`` which lays out one :class:`EmailRecord`
as a standalone HTML page: header block, message body, attachment list
and footer.  All record text is HTML-escaped.  The stylesheet is read
from disk on a best-effort basis and replaced by a minimal inline
equivalent when unavailable.
"""

from __future__ import annotations

import html
import logging
import pathlib
import re
from datetime import datetime
from email.utils import parsedate_to_datetime

from rpvakit.config import ConverterConfig
from rpvakit.errors import ErrorCode
from rpvakit.models import EmailRecord

logger = logging.getLogger("rpvakit")

_DEFAULT_CSS_PATH = pathlib.Path(__file__).parent / "assets" / "email-viewer.css"

_FALLBACK_CSS = """
body { font-family: Arial, sans-serif; margin: 2rem; }
.container { max-width: 1024px; margin: 0 auto; }
.email-container { background: white; padding: 1rem; border: 1px solid #ddd; }
.email-header { border-bottom: 1px solid #ccc; padding: 1rem; }
.email-body { padding: 1rem; }
.footer { text-align: center; padding: 1rem; color: #666; }
"""

_FONT_AWESOME_URL = (
    "https://cdnjs.cloudflare.com/ajax/libs/font-awesome/6.4.0/css/all.min.css"
)

_ICON_CLASSES = {
    ".pdf": "fas fa-file-pdf",
    ".doc": "fas fa-file-word",
    ".docx": "fas fa-file-word",
    ".jpg": "fas fa-file-image",
    ".jpeg": "fas fa-file-image",
    ".png": "fas fa-file-image",
    ".gif": "fas fa-file-image",
    ".xml": "fas fa-file-code",
    ".xeml": "fas fa-file-code",
    ".txt": "fas fa-file-alt",
    ".zip": "fas fa-file-archive",
    ".rar": "fas fa-file-archive",
    ".xlsx": "fas fa-file-excel",
    ".xls": "fas fa-file-excel",
    ".ppt": "fas fa-file-powerpoint",
    ".pptx": "fas fa-file-powerpoint",
}

_ATTACHMENT_INTRO_RE = re.compile(r"Avec les pièces jointes\s*:\s*", re.IGNORECASE)
_BLANK_LINE_RE = re.compile(r"^\s*\n", re.MULTILINE)

NO_CONTENT_MESSAGE = "Contenu du message non disponible dans ce fichier XML"


def render_email_html(
    record: EmailRecord,
    config: ConverterConfig,
    warnings: list[str] | None = None,
) -> str:
    """Render *record* as a complete HTML document.

    Parameters
    ----------
    record:
        The extracted email.
    config:
        Titles, footer text and stylesheet location.
    warnings:
        Optional list that receives ``W_ASSET_FALLBACK`` when the
        stylesheet could not be loaded.

    Returns
    -------
    str
        The serialized page.
    """
    css = load_stylesheet(config, warnings)
    esc = html.escape

    parts: list[str] = [
        "<!DOCTYPE html>",
        '<html lang="fr">',
        "<head>",
        '  <meta charset="UTF-8">',
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0">',
        f"  <title>{esc(page_title(record.subject, config))}</title>",
        f'  <link rel="stylesheet" href="{_FONT_AWESOME_URL}" crossorigin="anonymous" referrerpolicy="no-referrer">',
        f"  <style>{css}</style>",
        "</head>",
        "<body>",
        '<div class="container">',
        '<div class="email-container">',
    ]

    # --- Header ---
    parts.append('<div class="email-header">')
    parts.append(f'<div class="email-header-h2"><h2>{esc(record.subject)}</h2></div>')
    header_fields = [
        ("De", record.sender),
        ("À", record.to),
        ("Date", format_date(record.date)),
    ]
    for label, value in header_fields:
        if not value:
            continue
        parts.append(
            '<div class="header-detail">'
            f'<span class="header-label">{esc(label)}:</span>'
            f'<span class="header-value">{esc(value)}</span>'
            "</div>"
        )
    parts.append("</div>")

    # --- Body ---
    parts.append('<div class="message-section">')
    parts.append('<h3 class="section-title">Corps du message</h3>')
    parts.append(f'<div class="email-body">{_render_body(record, config)}</div>')
    parts.append("</div>")

    # --- Attachments ---
    if record.attachments:
        parts.append('<div class="attachments">')
        parts.append(
            f'<h3 class="section-title">Pièces jointes ({len(record.attachments)})</h3>'
        )
        for name in record.attachments:
            parts.append(
                '<div class="attachment">'
                f'<i class="attachment-icon {file_icon_class(name)}"></i>'
                f'<span class="attachment-name">{esc(name)}</span>'
                "</div>"
            )
        parts.append("</div>")

    parts.append("</div>")  # email-container

    # --- Footer ---
    parts.append(
        '<div class="footer"><div class="footer-content">'
        f'<span class="footer-text">{esc(config.footer_text)}</span>'
        "</div></div>"
    )
    parts.append("</div>")  # container
    parts.append("</body>")
    parts.append("</html>")

    return "\n".join(parts) + "\n"


def page_title(subject: str, config: ConverterConfig) -> str:
    """Browser title: the subject, truncated, followed by the app title."""
    limit = config.title_max_length
    if len(subject) > limit:
        return f"{subject[:limit]}... - {config.app_title}"
    return f"{subject} - {config.app_title}"


def format_date(raw: str) -> str:
    """Format an ISO-8601 or RFC 2822 date as ``dd/mm/YYYY HH:MM:SS``.

    Unparseable input is returned unchanged.
    """
    if not raw:
        return ""
    parsed = _parse_date(raw.strip())
    if parsed is None:
        return raw
    return parsed.strftime("%d/%m/%Y %H:%M:%S")


def _parse_date(text: str) -> datetime | None:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None


def file_icon_class(file_name: str) -> str:
    """Font Awesome class for an attachment, by extension."""
    suffix = pathlib.PurePath(file_name).suffix.lower()
    return _ICON_CLASSES.get(suffix, "fas fa-file")


def strip_attachment_mentions(text: str, attachments: list[str]) -> str:
    """Drop the attachment preamble and lines holding only a file name."""
    if not attachments:
        return text
    text = _ATTACHMENT_INTRO_RE.sub("", text)
    for name in attachments:
        line_re = re.compile(rf"^\s*{re.escape(name)}\s*$", re.IGNORECASE | re.MULTILINE)
        text = line_re.sub("", text)
    text = _BLANK_LINE_RE.sub("", text)
    return text.strip()


def load_stylesheet(
    config: ConverterConfig,
    warnings: list[str] | None = None,
) -> str:
    """Read the viewer stylesheet, falling back to a minimal inline one."""
    css_path = (
        pathlib.Path(config.email_viewer_css_path)
        if config.email_viewer_css_path
        else _DEFAULT_CSS_PATH
    )
    try:
        return css_path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning(
            "rpvakit | code=%s | detail=stylesheet %s unavailable: %s",
            ErrorCode.W_ASSET_FALLBACK.value,
            css_path,
            exc,
        )
        if warnings is not None:
            warnings.append(ErrorCode.W_ASSET_FALLBACK.value)
        return _FALLBACK_CSS


def _render_body(record: EmailRecord, config: ConverterConfig) -> str:
    if record.participants:
        items = "".join(
            f'<li><i class="fas fa-envelope"></i> {html.escape(address)}</li>'
            for address in record.participants
        )
        return (
            '<div class="participants-list">'
            f"<h4>{html.escape(config.participant_list_label)}</h4>"
            f"<ul>{items}</ul>"
            "</div>"
        )

    text = strip_attachment_mentions(record.body, record.attachments)
    if not text.strip():
        return (
            '<div class="no-content-message">'
            '<i class="fas fa-info-circle"></i>'
            f"<span>{NO_CONTENT_MESSAGE}</span>"
            "</div>"
        )
    return html.escape(text).replace("\n", "<br>\n")
