import io
from types import SimpleNamespace

import docx
import pytest
from pypdf import PdfWriter

from core import documents
from core.documents import DOCX_MIME_TYPE, PDF_MIME_TYPE, clean_pdf_text, extract_document_text
from exceptions import DocumentExtractionError


def _docx_bytes(*paragraphs):
    document = docx.Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _blank_pdf_bytes():
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


class TestExtractDocumentText:

    def test_plain_text(self):
        text = extract_document_text("  Allergic to penicillin\n".encode("utf-8"), "text/plain; charset=utf-8")

        assert text == "Allergic to penicillin"

    def test_any_text_subtype(self):
        assert extract_document_text(b"a,b\n1,2", "text/csv") == "a,b\n1,2"

    def test_unsupported_type_is_empty(self):
        assert extract_document_text(b"\x89PNG\r\n", "image/png") == ""
        assert extract_document_text(b"data", "") == ""

    def test_docx_paragraphs(self):
        data = _docx_bytes("Discharge summary", "Type 2 diabetes, on metformin")

        text = extract_document_text(data, DOCX_MIME_TYPE, "summary.docx")

        assert text == "Discharge summary\nType 2 diabetes, on metformin"

    def test_pdf_without_text(self):
        assert extract_document_text(_blank_pdf_bytes(), PDF_MIME_TYPE, "scan.pdf") == ""

    def test_pdf_pages_joined_and_cleaned(self, monkeypatch):
        pages = [
            SimpleNamespace(extract_text=lambda: "Lab report\n\n  \n\nHbA1c 7.2%"),
            SimpleNamespace(extract_text=lambda: None),
            SimpleNamespace(extract_text=lambda: "Repeat in 3 months"),
        ]
        monkeypatch.setattr(documents, "PdfReader", lambda _stream: SimpleNamespace(pages=pages))

        text = extract_document_text(b"%PDF", PDF_MIME_TYPE)

        assert text == "Lab report\n\nHbA1c 7.2%\n\nRepeat in 3 months"

    @pytest.mark.parametrize("mime_type", [PDF_MIME_TYPE, DOCX_MIME_TYPE])
    def test_corrupt_document_raises(self, mime_type):
        with pytest.raises(DocumentExtractionError) as exc_info:
            extract_document_text(b"definitely not a document", mime_type, "broken")

        assert exc_info.value.details["filename"] == "broken"
        assert exc_info.value.details["mime_type"] == mime_type


class TestCleanPdfText:

    def test_blank_line_runs_collapsed(self):
        assert clean_pdf_text("\n\nA\n \n\t\nB\n") == "A\n\nB"
