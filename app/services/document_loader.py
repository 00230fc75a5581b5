"""
Document Loader Service
Extracts plain text and a page count from uploaded .pdf and .txt files.
"""
import io
from typing import Dict, List, Optional
import structlog

from app.errors import ExtractionError
from app.models.schemas import LoadedDocument

logger = structlog.get_logger()


class DocumentLoader:
    """Extracts text using unstructured.io for PDFs and plain decoding for text."""

    async def extract(self, content: bytes, file_type: str) -> LoadedDocument:
        """
        Extract text from an uploaded file.

        Args:
            content: Raw file bytes
            file_type: "pdf" or "txt"

        Returns:
            LoadedDocument with the text and page count

        Raises:
            ExtractionError: If the file cannot be read
        """
        logger.info("Extracting text", file_type=file_type, size_bytes=len(content))

        if file_type == "txt":
            document = self._extract_text_file(content)
        elif file_type == "pdf":
            document = self._extract_pdf(content)
        else:
            raise ExtractionError(f"Unsupported file type for extraction: {file_type}")

        logger.info(
            "Text extracted",
            char_count=len(document.text),
            page_count=document.page_count,
        )
        return document

    def _extract_text_file(self, content: bytes) -> LoadedDocument:
        text = content.decode("utf-8-sig", errors="replace")
        return LoadedDocument(text=text, page_count=1)

    def _extract_pdf(self, content: bytes) -> LoadedDocument:
        try:
            elements = self._partition_pdf(content)
        except Exception as e:
            logger.error("Failed to parse PDF", error=str(e))
            raise ExtractionError(f"Could not extract text from PDF: {e}") from e

        pages: Dict[int, List[str]] = {}
        for el in elements:
            text = str(getattr(el, "text", "") or "").strip()
            page_number = self._page_number(el)
            pages.setdefault(page_number, [])
            if text:
                pages[page_number].append(text)

        page_texts = ["\n".join(pages[number]) for number in sorted(pages)]
        return LoadedDocument(
            text="\n\n".join(t for t in page_texts if t),
            page_count=len(pages),
        )

    def _partition_pdf(self, content: bytes) -> list:
        # Text-only strategy: no OCR or layout models needed
        from unstructured.partition.pdf import partition_pdf

        return partition_pdf(file=io.BytesIO(content), strategy="fast")

    def _page_number(self, element) -> int:
        metadata = getattr(element, "metadata", None)
        page_number: Optional[int] = getattr(metadata, "page_number", None) if metadata else None
        return page_number or 1
