"""
Chunking Service
Splits extracted document text into fixed-size, overlapping character windows
and embeds them in read order.
"""
from typing import List, Optional
import structlog

from app.config import Settings, get_settings
from app.errors import ConfigurationError
from app.models.schemas import ChunkData
from app.services.embedding_service import EmbeddingService

logger = structlog.get_logger()


def validate_chunk_params(chunk_size: int, chunk_overlap: int) -> None:
    """Raise ConfigurationError unless 0 <= chunk_overlap < chunk_size."""
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise ConfigurationError(f"chunk_overlap must not be negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise ConfigurationError(
            f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
        )


def split_text(text: str, chunk_size: int, chunk_overlap: int) -> List[str]:
    """
    Split text into windows of at most chunk_size characters.

    Each window after the first starts chunk_overlap characters before the
    end of the previous one, so adjacent chunks share that many characters
    verbatim. If stepping back would not move the cursor forward the next
    window starts at the previous end instead.

    Args:
        text: Raw document text (trimmed before splitting)
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters repeated at the start of the next chunk

    Returns:
        Chunks in read order; empty for empty or whitespace-only input
    """
    validate_chunk_params(chunk_size, chunk_overlap)

    trimmed = text.strip()
    length = len(trimmed)
    chunks: List[str] = []

    start = 0
    while start < length:
        end = min(start + chunk_size, length)
        chunks.append(trimmed[start:end])

        if end == length:
            break

        next_start = end - chunk_overlap
        start = next_start if next_start > start else end

    return chunks


class ChunkingService:
    """Turns document text into embedded ChunkData records."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.embedding_service = embedding_service

    def chunk_text(
        self,
        text: str,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> List[str]:
        """Split text using the configured sizes unless overridden."""
        size = chunk_size if chunk_size is not None else self.settings.chunk_size
        overlap = chunk_overlap if chunk_overlap is not None else self.settings.chunk_overlap
        return split_text(text, size, overlap)

    async def chunk_and_embed(
        self,
        session_id: str,
        document_id: str,
        text: str,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        file_name: Optional[str] = None,
    ) -> List[ChunkData]:
        """
        Chunk a document and embed every chunk.

        Args:
            session_id: Session the document belongs to
            document_id: Document the chunks belong to
            text: Extracted document text
            chunk_size: Optional override of the configured chunk size
            chunk_overlap: Optional override of the configured overlap
            file_name: Original file name recorded on each chunk

        Returns:
            ChunkData list, index = position in read order

        Raises:
            EmbeddingUnavailable: If the embedding call fails
        """
        pieces = self.chunk_text(text, chunk_size, chunk_overlap)
        if not pieces:
            logger.info("No text to chunk", session_id=session_id, document_id=document_id)
            return []

        logger.info(
            "Chunking complete",
            document_id=document_id,
            chunk_count=len(pieces),
        )

        vectors = await self.embedding_service.embed_texts(pieces)

        return [
            ChunkData(
                session_id=session_id,
                document_id=document_id,
                index=idx,
                text=piece,
                embedding=vector,
                file_name=file_name,
            )
            for idx, (piece, vector) in enumerate(zip(pieces, vectors))
        ]
