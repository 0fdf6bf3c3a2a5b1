"""Navigation index over the converted corpus.

``build_index_html()`` is a pure function of the known output files: it
groups recently converted pages first, orders each group newest first,
and emits a single page linking every converted email (and its PDF when
one was rendered).  A small inline script filters the list as the user
types and previews a clicked page in the side frame.
``list_converted_files()`` and ``write_index_page()`` are the thin I/O
wrappers around it.
"""

from __future__ import annotations

import html
import logging
import os
from dataclasses import dataclass
from datetime import datetime

from rpvakit.config import ConverterConfig

logger = logging.getLogger("rpvakit")

_DISPLAY_NAME_LIMIT = 50

# Title filter and iframe preview. Must not call the web API: the written
# index is also opened straight from disk.
_NAV_SCRIPT = """\
<script>
(function () {
  var items = document.querySelectorAll(".email-item");
  var frame = document.getElementById("contentFrame");
  document.getElementById("searchInput").addEventListener("input", function () {
    var term = this.value.toLowerCase();
    items.forEach(function (item) {
      var title = item.querySelector(".email-title").textContent.toLowerCase();
      item.style.display = title.indexOf(term) === -1 ? "none" : "";
    });
  });
  items.forEach(function (item) {
    item.addEventListener("click", function (event) {
      if (event.target.classList.contains("open-pdf")) {
        return;
      }
      event.preventDefault();
      items.forEach(function (other) { other.classList.remove("active"); });
      item.classList.add("active");
      frame.src = item.dataset.file;
      frame.style.display = "block";
    });
  });
})();
</script>"""


@dataclass(frozen=True)
class IndexEntry:
    """One converted HTML page known to the index."""

    path: str
    modified: datetime | None = None
    pdf_path: str | None = None

    @property
    def stem(self) -> str:
        return os.path.splitext(os.path.basename(self.path))[0]


def list_converted_files(output_dir: str, config: ConverterConfig) -> list[IndexEntry]:
    """Return every converted page in *output_dir* (the index itself excluded)."""
    try:
        names = sorted(os.listdir(output_dir))
    except OSError as exc:
        logger.warning("rpvakit | cannot scan %s | detail=%s", output_dir, exc)
        return []

    entries: list[IndexEntry] = []
    for name in names:
        if not name.endswith(config.output_file_extension):
            continue
        if name == config.index_file_name:
            continue
        path = os.path.join(output_dir, name)
        try:
            modified = datetime.fromtimestamp(os.path.getmtime(path))
        except OSError:
            modified = None
        pdf_path = os.path.join(config.pdf_output_dir, os.path.splitext(name)[0] + ".pdf")
        entries.append(
            IndexEntry(
                path=path,
                modified=modified,
                pdf_path=pdf_path if os.path.isfile(pdf_path) else None,
            )
        )
    return entries


def build_index_html(
    entries: list[IndexEntry],
    recent_files: list[str],
    config: ConverterConfig,
    href_prefix: str = "",
    pdf_href_prefix: str = "../pdf/",
    generated_at: datetime | None = None,
) -> str:
    """Render the navigation page for *entries*.

    Parameters
    ----------
    entries:
        All converted pages.
    recent_files:
        Output paths produced by the latest batch; shown in their own
        section and counted as new.
    config:
        Application title and output extension.
    href_prefix:
        Prefix for links to HTML pages (``"output/"`` when served).
    pdf_href_prefix:
        Prefix for links to the matching PDF files.
    generated_at:
        Timestamp printed as the last conversion date.
    """
    esc = html.escape
    recent = {os.path.abspath(path) for path in recent_files}
    new_entries = _newest_first([e for e in entries if os.path.abspath(e.path) in recent])
    old_entries = _newest_first([e for e in entries if os.path.abspath(e.path) not in recent])

    if new_entries:
        count_text = f"{len(new_entries)} nouveaux / {len(entries)} emails"
    else:
        count_text = f"{len(entries)} emails"
    stamp = (generated_at or datetime.now()).strftime("%d/%m/%Y")

    parts: list[str] = [
        "<!DOCTYPE html>",
        '<html lang="fr">',
        "<head>",
        '  <meta charset="UTF-8">',
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0">',
        f"  <title>{esc(config.app_title)} - Navigation des emails</title>",
        "</head>",
        "<body>",
        '<div class="app-container">',
        '<div class="header-bar">',
        f"<h1>{esc(config.app_title)}</h1>",
        f'<span class="email-count">{esc(count_text)}</span>',
        "</div>",
        '<aside class="sidebar">',
        '<input type="text" id="searchInput" placeholder="Rechercher...">',
        '<div class="email-list" id="emailList">',
    ]

    index = 0
    for title, group, is_recent in (
        ("Nouveaux emails", new_entries, True),
        ("Emails précédents", old_entries, False),
    ):
        if not group:
            continue
        parts.append(
            f'<div class="email-section-header"><h3>{title} ({len(group)})</h3></div>'
        )
        for entry in group:
            parts.append(
                _render_item(entry, index, is_recent, href_prefix, pdf_href_prefix)
            )
            index += 1

    parts.extend(
        [
            "</div>",
            "</aside>",
            '<main class="content-area">',
            '<div class="stats">',
            f"<span>{len(entries)} emails convertis</span>",
            f"<span>Dernière conversion : {stamp}</span>",
        ]
    )
    if new_entries:
        parts.append(f"<span>{len(new_entries)} nouveaux fichiers</span>")
    parts.extend(
        [
            "</div>",
            '<iframe id="contentFrame" src="" style="display: none;"></iframe>',
            "</main>",
            "</div>",
            _NAV_SCRIPT,
            "</body>",
            "</html>",
        ]
    )
    return "\n".join(parts) + "\n"


def write_index_page(
    output_dir: str,
    recent_files: list[str],
    config: ConverterConfig,
) -> str:
    """Write the index into *output_dir*. Returns its path."""
    entries = list_converted_files(output_dir, config)
    pdf_prefix = os.path.relpath(config.pdf_output_dir, output_dir).replace(os.sep, "/")
    page = build_index_html(
        entries,
        recent_files,
        config,
        pdf_href_prefix=f"{pdf_prefix}/",
    )
    index_path = os.path.join(output_dir, config.index_file_name)
    with open(index_path, "w", encoding="utf-8") as fh:
        fh.write(page)
    logger.info("rpvakit | index=%s | entries=%d", index_path, len(entries))
    return index_path


def _newest_first(entries: list[IndexEntry]) -> list[IndexEntry]:
    # Name order (descending) first; the stable mtime sort keeps it for ties.
    by_name = sorted(entries, key=lambda e: os.path.basename(e.path), reverse=True)
    return sorted(
        by_name,
        key=lambda e: e.modified.timestamp() if e.modified else float("-inf"),
        reverse=True,
    )


def _render_item(
    entry: IndexEntry,
    index: int,
    is_recent: bool,
    href_prefix: str,
    pdf_href_prefix: str,
) -> str:
    esc = html.escape
    stem = entry.stem
    display = stem if len(stem) <= _DISPLAY_NAME_LIMIT else f"{stem[:_DISPLAY_NAME_LIMIT]}..."
    href = f"{href_prefix}{os.path.basename(entry.path)}"
    date_text = entry.modified.strftime("%d/%m/%Y") if entry.modified else ""
    css_class = "email-item recent" if is_recent else "email-item"

    attrs = f'class="{css_class}" data-file="{esc(href)}" data-index="{index}"'
    pdf_link = ""
    if entry.pdf_path:
        pdf_href = f"{pdf_href_prefix}{os.path.basename(entry.pdf_path)}"
        attrs += f' data-pdf="{esc(pdf_href)}"'
        pdf_link = f'<a class="open-pdf" href="{esc(pdf_href)}" target="_blank">PDF</a>'
    return (
        f"<div {attrs}>"
        f'<a class="email-title" href="{esc(href)}">{esc(display)}</a>'
        f'<span class="file-date">{esc(date_text)}</span>'
        f"{pdf_link}"
        "</div>"
    )
