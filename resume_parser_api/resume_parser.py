"""Extraction orchestrator: document bytes in, structured JSON out."""

import copy
from typing import Any

import structlog

from resume_parser_api.ai_parser import AIConfigurationError, AIParser, AIParserError
from resume_parser_api.document_processor import DocumentExtractionError, DocumentProcessor
from resume_parser_api.reconciler import JSONValue
from resume_parser_api.structure import DEFAULT_STRUCTURE

logger = structlog.get_logger()

SHORT_TEXT_THRESHOLD = 50


class ResumeParsingError(Exception):
    """Raised for unexpected failures while parsing a résumé."""

    pass


class EmptyDocumentError(ResumeParsingError):
    """Raised when a document yields no text."""

    pass


class ResumeParserService:
    """Runs text extraction and the model gateway for one upload at a time."""

    def __init__(
        self,
        ai_parser: AIParser,
        document_processor: DocumentProcessor | None = None,
        apply_default_structure: bool = False,
    ):
        self._ai_parser = ai_parser
        self._document_processor = document_processor or DocumentProcessor()
        self._apply_default_structure = apply_default_structure

    async def parse_resume(
        self,
        content: bytes,
        mime_type: str,
        template: JSONValue | None = None,
    ) -> JSONValue:
        """Extract text from a document and turn it into structured data.

        Args:
            content: Raw uploaded bytes.
            mime_type: Declared MIME type of the upload.
            template: Optional schema-by-example for the output.

        Returns:
            Parsed résumé, shaped like ``template`` when one is given.

        Raises:
            AIConfigurationError: If the provider has no usable credential.
            EmptyDocumentError: If the document contains no text.
            DocumentExtractionError: If the document cannot be read.
            AIParserError: If the model call or its answer fails.
            ResumeParsingError: For any other failure.
        """
        if not self._ai_parser.is_configured():
            raise AIConfigurationError(
                "AI parser is not properly configured. Please check your API key."
            )

        if template is None and self._apply_default_structure:
            template = self.get_default_structure()

        try:
            logger.info("Extracting text from document", mime_type=mime_type, size=len(content))
            text = await self._document_processor.extract_text(content, mime_type)

            if not text or not text.strip():
                raise EmptyDocumentError(
                    "No text content found in the document. The file might be corrupted or empty."
                )

            logger.info(
                "Text extraction successful",
                text_length=len(text),
                has_template=template is not None,
            )
            if len(text) < SHORT_TEXT_THRESHOLD:
                logger.warning("Extracted text is very short", text_length=len(text))

            result = await self._ai_parser.parse_resume(text, template)
        except (AIParserError, DocumentExtractionError, EmptyDocumentError):
            raise
        except Exception as e:
            logger.exception("Unexpected error in resume parsing", mime_type=mime_type)
            raise ResumeParsingError(f"Resume parsing failed: {e}") from e

        logger.info(
            "Resume parsing completed",
            provider=self._ai_parser.get_provider_name(),
            has_template=template is not None,
        )
        return result

    def get_supported_file_types(self) -> list[str]:
        return self._document_processor.get_supported_mime_types()

    async def test_ai_connection(self) -> bool:
        """Round-trip check against the configured provider."""
        if not self._ai_parser.is_configured():
            return False
        return await self._ai_parser.test_connection()

    def get_default_structure(self) -> dict[str, JSONValue]:
        return copy.deepcopy(DEFAULT_STRUCTURE)

    def get_ai_provider_info(self) -> dict[str, Any]:
        return {
            "name": self._ai_parser.get_provider_name(),
            "model": self._ai_parser.model,
            "configured": self._ai_parser.is_configured(),
        }
