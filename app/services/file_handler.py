"""
File Handler Service
Detects the type of uploaded files.
"""
import os
from typing import Optional
import structlog

from app.errors import ValidationError

logger = structlog.get_logger()

UNSUPPORTED_FILE_MESSAGE = "Only .pdf and .txt files are supported"


class FileHandler:
    """Handles upload type detection."""

    # Supported file types and their MIME types
    SUPPORTED_TYPES = {
        "application/pdf": "pdf",
        "text/plain": "txt",
    }
    SUPPORTED_EXTENSIONS = {
        ".pdf": "pdf",
        ".txt": "txt",
    }

    def detect_file_type(
        self,
        file_name: Optional[str],
        content_type: Optional[str],
        content: bytes = b"",
    ) -> str:
        """
        Resolve an upload to "pdf" or "txt".

        The extension wins; then the declared content type; then the bytes
        are sniffed with python-magic.

        Raises:
            ValidationError: If the file is neither a PDF nor plain text
        """
        ext = os.path.splitext(file_name or "")[1].lower()
        if ext in self.SUPPORTED_EXTENSIONS:
            return self.SUPPORTED_EXTENSIONS[ext]

        declared = (content_type or "").split(";")[0].strip().lower()

        # A real but unsupported extension is rejected outright
        if ext and declared not in self.SUPPORTED_TYPES:
            raise ValidationError(UNSUPPORTED_FILE_MESSAGE)

        if declared in self.SUPPORTED_TYPES:
            return self.SUPPORTED_TYPES[declared]

        if content:
            import magic

            sniffed = magic.from_buffer(content[:2048], mime=True)
            logger.info("Detected file type", file_name=file_name, mime_type=sniffed)
            if sniffed in self.SUPPORTED_TYPES:
                return self.SUPPORTED_TYPES[sniffed]

        raise ValidationError(UNSUPPORTED_FILE_MESSAGE)

    def sanitize_filename(self, filename: str) -> str:
        """Create a safe display name for an upload."""
        # Remove any path components, including Windows-style ones
        filename = os.path.basename(filename.replace("\\", "/"))
        # Replace problematic characters
        for char in ["..", "\x00"]:
            filename = filename.replace(char, "_")
        return filename.strip() or "upload"
