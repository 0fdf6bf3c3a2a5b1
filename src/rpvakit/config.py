"""Configuration model for the rpvakit conversion pipeline.

Provides ``ConverterConfig`` with all tunable parameters and sensible
defaults.  Supports loading overrides from YAML or JSON files via the
``from_file()`` classmethod.  A single instance is built at process start
and handed to the extractor, the renderers and the pipeline.
"""

from __future__ import annotations

import json
import pathlib

from pydantic import BaseModel


class ConverterConfig(BaseModel):
    """All tunable parameters with sensible defaults."""

    # --- Identity ---
    parser_version: str = "rpvakit:1.0.0"

    # --- Input discovery ---
    supported_extensions: list[str] = [".xml", ".xeml"]
    max_file_size_mb: int = 50

    # --- Output naming ---
    output_file_extension: str = ".html"
    pdf_output_dir: str = "./pdf"
    index_file_name: str = "index.html"

    # --- Pipeline ---
    batch_size: int = 5
    generate_pdf: bool = True
    write_sidecar: bool = True
    generate_index: bool = True
    render_timeout_seconds: float | None = 60.0

    # --- Extraction sentinels ---
    default_subject: str = "Sans objet"
    default_sender: str = "Expéditeur inconnu"

    # --- Body reconstruction heuristics ---
    alternate_body_tags: list[str] = [
        "Message",
        "Content",
        "Text",
        "MessageBody",
        "mail-body",
    ]
    min_residual_body_length: int = 5
    participant_list_min_addresses: int = 2
    participant_list_label: str = "Adresses email concernées :"

    # --- Attachment discovery in free text ---
    attachment_extensions: list[str] = [
        "pdf",
        "doc",
        "docx",
        "xls",
        "xlsx",
        "ppt",
        "pptx",
        "jpg",
        "jpeg",
        "png",
        "gif",
        "zip",
        "rar",
        "txt",
        "xml",
        "xeml",
    ]

    # --- Presentation ---
    app_title: str = "RPVA Preview"
    footer_text: str = "RPVA Preview - Visualisation d'emails eBarreau"
    title_max_length: int = 50
    email_viewer_css_path: str | None = None

    @classmethod
    def from_file(cls, path: str) -> ConverterConfig:
        """Load configuration from a YAML or JSON file.

        File format is detected by extension: ``.yaml`` / ``.yml`` for YAML,
        ``.json`` for JSON.  Keys present in the file override the
        corresponding defaults; keys not present retain their defaults.
        """
        file_path = pathlib.Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        suffix = file_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            try:
                import yaml  # type: ignore[import-untyped]
            except ImportError as exc:
                raise ImportError(
                    "pyyaml is required to load YAML config files. "
                    "Install it with: pip install pyyaml"
                ) from exc
            with open(file_path, encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        elif suffix == ".json":
            with open(file_path, encoding="utf-8") as fh:
                data = json.load(fh)
        else:
            raise ValueError(
                f"Unsupported config file extension '{suffix}'. "
                "Use .yaml, .yml, or .json."
            )

        if data is None:
            data = {}

        return cls(**data)

    def is_supported(self, file_name: str) -> bool:
        """Return True if *file_name* carries an allow-listed extension."""
        suffix = pathlib.PurePath(file_name).suffix.lower()
        return suffix in {ext.lower() for ext in self.supported_extensions}
