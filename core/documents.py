"""
Patient Document Text Extraction
================================

Uploaded patient records become plain text that the clinical assistant can
use as question-answering context:

1. PDF: text of every page via ``pypdf``, with runs of blank lines collapsed
2. DOCX: paragraph text via ``python-docx``
3. ``text/*``: decoded as UTF-8

Any other type yields an empty string rather than an error, so callers can
upload arbitrary attachments and keep only what has text. A PDF or DOCX
that cannot be parsed raises ``DocumentExtractionError``.
"""

import io
import logging
import re

import docx
from pypdf import PdfReader

from exceptions import DocumentExtractionError


logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_BLANK_LINES = re.compile(r"\n\s*\n")


def clean_pdf_text(text: str) -> str:
    """Collapse the blank-line runs PDF extraction tends to produce."""
    return _BLANK_LINES.sub("\n\n", text).strip()


def _extract_pdf(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return clean_pdf_text("\n".join(pages))


def _extract_docx(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


def extract_document_text(data: bytes, mime_type: str, filename: str = "document") -> str:
    """
    Extract plain text from an uploaded document.

    Args:
        data: Raw file bytes
        mime_type: Declared content type; parameters such as charset are ignored
        filename: Used in log lines and error details

    Returns:
        The trimmed text, or "" for unsupported types

    Raises:
        DocumentExtractionError: If a PDF or DOCX cannot be parsed
    """
    normalized = (mime_type or "").split(";")[0].strip().lower()
    logger.info(f"Extracting text from {filename} ({normalized or 'unknown type'})")

    if normalized == PDF_MIME_TYPE:
        extractor = _extract_pdf
    elif normalized == DOCX_MIME_TYPE:
        extractor = _extract_docx
    elif normalized.startswith("text/"):
        return data.decode("utf-8", errors="replace").strip()
    else:
        logger.info(f"Skipping text extraction for unsupported type: {normalized}")
        return ""

    try:
        text = extractor(data)
    except Exception as e:
        logger.error(f"Text extraction from {filename} failed: {e}")
        raise DocumentExtractionError(filename, normalized, str(e)) from e

    text = text.strip()
    logger.debug(f"Extracted {len(text)} characters from {filename}")
    return text
