# =============================================================================
# Text Extraction — Plain Text and PDF (Docling)
# =============================================================================
#
# Turns a corpus file into plain text for chunking or for the raw snapshot.
#
#   .txt / .md  → read as UTF-8 (undecodable bytes replaced)
#   .pdf        → Docling conversion, exported as markdown so tables keep
#                 their row/column structure
#
# Docling is an optional dependency (`pip install docqa[pdf]`). It is only
# imported when a PDF is actually converted, so text-only deployments never
# load its ML models.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from docqa.services.errors import CorpusError

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = frozenset({".txt", ".md"})
PDF_EXTENSIONS = frozenset({".pdf"})


@dataclass
class ExtractedText:
    """Plain text of one file, plus the page count for paginated formats."""

    text: str
    num_pages: int | None = None


# ---------------------------------------------------------------------------
# Docling Converter — Lazy Singleton
# ---------------------------------------------------------------------------
# Initialization loads layout/OCR models (a few seconds); one converter is
# reused for every PDF in the process.
# ---------------------------------------------------------------------------

_converter: Any = None


def _get_converter() -> Any:
    """Lazily initialize and cache the Docling DocumentConverter."""
    global _converter
    if _converter is None:
        from docling.datamodel.base_models import InputFormat
        from docling.datamodel.pipeline_options import PdfPipelineOptions
        from docling.document_converter import DocumentConverter, PdfFormatOption

        logger.info(
            "Initializing Docling DocumentConverter "
            "(first use, may take a few seconds)..."
        )
        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_table_structure = True
        pipeline_options.do_ocr = True

        _converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            }
        )
    return _converter


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_text(path: str | Path) -> ExtractedText:
    """
    Extract plain text from a corpus file.

    Raises:
        CorpusError: If the file cannot be read or converted, or its
            extension is not supported.
    """
    file_path = Path(path)
    extension = file_path.suffix.lower()

    if extension in TEXT_EXTENSIONS:
        try:
            return ExtractedText(
                text=file_path.read_text(encoding="utf-8", errors="replace")
            )
        except OSError as exc:
            raise CorpusError(f"Cannot read {file_path.name}: {exc}") from exc

    if extension in PDF_EXTENSIONS:
        return _extract_pdf(file_path)

    raise CorpusError(f"Unsupported file type for {file_path.name}")


def _extract_pdf(path: Path) -> ExtractedText:
    if not path.exists():
        raise CorpusError(f"PDF not found: {path}")

    logger.info("Converting PDF: %s", path.name)
    try:
        result = _get_converter().convert(str(path))
    except ImportError as exc:
        raise CorpusError(
            "PDF support requires Docling (install the 'pdf' extra)"
        ) from exc
    except Exception as exc:
        raise CorpusError(f"Docling failed to parse '{path.name}': {exc}") from exc

    document = result.document
    text = document.export_to_markdown()
    num_pages = len(document.pages) if document.pages else None

    logger.info(
        "Converted '%s': %d chars, %s pages", path.name, len(text), num_pages,
    )
    return ExtractedText(text=text, num_pages=num_pages)
