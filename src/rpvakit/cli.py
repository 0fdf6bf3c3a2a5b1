"""Command-line entry point for rpvakit.

Converts one RPVA XML export (``--source-file``) or every allow-listed
export of a directory (``--input-dir``) into HTML pages and PDFs.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rpvakit.config import ConverterConfig
from rpvakit.errors import FatalConversionError
from rpvakit.log import SUCCESS, configure_logging
from rpvakit.pipeline import ConversionPipeline

logger = logging.getLogger("rpvakit")

SUCCESS_MARKER = "CONVERSION_SUCCESS"

_EPILOG = """\
exemples:
  rpvakit -o ./Output -s ./Data/email.xml
  rpvakit -o ./Output -i ./Data
  rpvakit --output ./Output --input-dir ./Data --clear-data-folder
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rpvakit",
        description="Convertisseur d'emails RPVA XML vers HTML et PDF",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-o", "--output", required=True, help="Répertoire de sortie (requis)")

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("-s", "--source-file", help="Fichier XML spécifique à convertir")
    source.add_argument("-i", "--input-dir", help="Répertoire contenant les fichiers XML")

    parser.add_argument(
        "--delete-source",
        action="store_true",
        help="Supprimer les fichiers source après conversion réussie",
    )
    parser.add_argument(
        "--clear-data-folder",
        action="store_true",
        help="Vider le dossier d'entrée après une conversion entièrement réussie",
    )
    parser.add_argument("--config", default=None, help="Fichier de configuration YAML ou JSON")
    parser.add_argument("--no-pdf", action="store_true", help="Ne pas générer les PDF")
    parser.add_argument("-v", "--verbose", action="store_true", help="Journalisation détaillée")
    return parser


async def _run(args: argparse.Namespace, pipeline: ConversionPipeline) -> bool:
    if args.source_file:
        outcome = await pipeline.convert_single(
            args.source_file, args.output, delete_source=args.delete_source
        )
        return outcome.success

    result = await pipeline.convert_directory(
        args.input_dir,
        args.output,
        clear_input=args.clear_data_folder,
        delete_sources=args.delete_source,
    )
    print(f"{result.success_count} succès, {result.failure_count} échecs")
    return result.success


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the conversion and return the process exit code.

    Usage errors exit with status 2 through argparse before any work is
    done; 1 means a fatal error or at least one failed file.
    """
    args = _build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = ConverterConfig.from_file(args.config) if args.config else ConverterConfig()
    except (OSError, ValueError) as exc:
        logger.error("Configuration invalide: %s", exc)
        return 1
    if args.no_pdf:
        config = config.model_copy(update={"generate_pdf": False})

    pipeline = ConversionPipeline(config)
    try:
        ok = asyncio.run(_run(args, pipeline))
    except FatalConversionError as exc:
        logger.error("Erreur fatale: %s | code=%s", exc.error.message, exc.code)
        return 1

    if not ok:
        logger.error("Échec de la conversion")
        return 1

    logger.log(SUCCESS, "Traitement terminé avec succès!")
    print(SUCCESS_MARKER)
    return 0


if __name__ == "__main__":
    sys.exit(main())
