"""Plain-text extraction for indexable documents.

Handles:
- Markdown and plain text files (read as UTF-8)
- PDF files (page text via pypdf)
"""
from pathlib import Path
from pypdf import PdfReader
from pypdf.errors import PyPdfError
import structlog

from deepreasoning_node.errors import ExtractionError

logger = structlog.get_logger()


class TextExtractor:
    """Extracts raw text from a document, dispatching on file extension."""

    PDF_EXTENSIONS = frozenset({".pdf"})

    def extract(self, file_path: Path) -> str:
        """Extract the text content of a file.

        Args:
            file_path: Path to a .md, .txt or .pdf file

        Returns:
            Extracted text, possibly empty

        Raises:
            ExtractionError: If the file cannot be read or parsed
        """
        if file_path.suffix.lower() in self.PDF_EXTENSIONS:
            return self._extract_pdf(file_path)
        return self._extract_text(file_path)

    def _extract_text(self, file_path: Path) -> str:
        try:
            return file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.error("text_read_error", path=str(file_path), error=str(e))
            raise ExtractionError(f"Failed to read {file_path}: {e}") from e

    def _extract_pdf(self, file_path: Path) -> str:
        try:
            reader = PdfReader(str(file_path))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (OSError, PyPdfError, ValueError) as e:
            logger.error("pdf_parse_error", path=str(file_path), error=str(e))
            raise ExtractionError(f"Failed to parse PDF {file_path}: {e}") from e

        logger.debug("pdf_extracted", path=str(file_path), page_count=len(pages))
        return "\n".join(pages)
