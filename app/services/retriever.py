"""
Retriever
Embeds a question and searches the session's chunks.
"""
from typing import List, Optional
import structlog

from app.config import Settings, get_settings
from app.models.schemas import QueryResult
from app.services.embedding_service import EmbeddingService
from app.services.vector_store import VectorStore

logger = structlog.get_logger()


class Retriever:
    """Runs one retrieval: embed the question, query the store, return the ranking."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_store: VectorStore,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.embedding_service = embedding_service
        self.vector_store = vector_store

    async def retrieve(
        self,
        session_id: str,
        query: str,
        top_k: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> List[QueryResult]:
        """
        Find the chunks most similar to a question.

        Args:
            session_id: Session to search
            query: User's question
            top_k: Maximum results (default from settings)
            similarity_threshold: Minimum score (default from settings)

        Returns:
            Ranked results, possibly empty

        Raises:
            EmbeddingUnavailable: If the question cannot be embedded
        """
        top_k = top_k if top_k is not None else self.settings.default_top_k
        if similarity_threshold is None:
            similarity_threshold = self.settings.default_similarity_threshold

        query_embedding = await self.embedding_service.embed_query(query)

        results = await self.vector_store.query(
            session_id,
            query_embedding,
            top_k=top_k,
            similarity_threshold=similarity_threshold,
        )

        logger.info(
            "Retrieval complete",
            session_id=session_id,
            top_k=top_k,
            similarity_threshold=similarity_threshold,
            results=len(results),
        )
        return results
