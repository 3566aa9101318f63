"""Plain-text extraction from uploaded documents."""

import asyncio
import io

import structlog
from docx import Document
from pypdf import PdfReader

logger = structlog.get_logger()

PDF_MIME_TYPE = "application/pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIME_TYPE = "text/plain"

SUPPORTED_MIME_TYPES = [PDF_MIME_TYPE, DOCX_MIME_TYPE, TEXT_MIME_TYPE]

FILE_TYPE_DESCRIPTIONS = {
    PDF_MIME_TYPE: "PDF - Portable Document Format",
    DOCX_MIME_TYPE: "DOCX - Microsoft Word Document",
    TEXT_MIME_TYPE: "TXT - Plain Text File",
}


class DocumentExtractionError(Exception):
    """Raised when a document cannot be read as text."""

    pass


def _extract_pdf(content: bytes) -> str:
    reader = PdfReader(io.BytesIO(content))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(text for text in pages if text)


def _extract_docx(content: bytes) -> str:
    document = Document(io.BytesIO(content))
    lines = [paragraph.text for paragraph in document.paragraphs]

    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append(" | ".join(cells))

    return "\n".join(lines)


def _extract_plain_text(content: bytes) -> str:
    return content.decode("utf-8")


_EXTRACTORS = {
    PDF_MIME_TYPE: _extract_pdf,
    DOCX_MIME_TYPE: _extract_docx,
    TEXT_MIME_TYPE: _extract_plain_text,
}


class DocumentProcessor:
    """Turns PDF, DOCX and plain-text uploads into text.

    Parsing is CPU-bound, so it runs in a worker thread to keep the event
    loop responsive.
    """

    def get_supported_mime_types(self) -> list[str]:
        return list(SUPPORTED_MIME_TYPES)

    async def extract_text(self, content: bytes, mime_type: str) -> str:
        """Extract the text of a document.

        Raises:
            DocumentExtractionError: If the type is unsupported or parsing fails.
        """
        extractor = _EXTRACTORS.get(mime_type)
        if extractor is None:
            raise DocumentExtractionError(f"Unsupported file type: {mime_type}")

        try:
            text = await asyncio.to_thread(extractor, content)
        except Exception as e:
            logger.error(
                "Error extracting text from document",
                mime_type=mime_type,
                size=len(content),
                error=str(e),
            )
            raise DocumentExtractionError("Failed to extract text from document") from e

        logger.info("Document text extracted", mime_type=mime_type, chars=len(text))
        return text
