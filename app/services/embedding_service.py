"""
Embedding Service
Generates vector embeddings using OpenAI's embedding models.
"""
import threading
from typing import List, Optional
import structlog
from openai import AsyncOpenAI, APIConnectionError, APITimeoutError, OpenAIError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import Settings, get_settings
from app.errors import ConfigurationError, EmbeddingUnavailable

logger = structlog.get_logger()


class EmbeddingService:
    """Generates embeddings using OpenAI's embedding models."""

    # Maximum tokens per request (model limit)
    MAX_TOKENS_PER_REQUEST = 8191
    # Batch size for embedding requests
    BATCH_SIZE = 100

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[AsyncOpenAI] = None
        self._client_lock = threading.Lock()

    @property
    def client(self) -> AsyncOpenAI:
        """OpenAI client, built on first use."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    if not self.settings.openai_api_key:
                        raise ConfigurationError("OPENAI_API_KEY is not configured")
                    # tenacity owns retries for embeddings
                    self._client = AsyncOpenAI(
                        api_key=self.settings.openai_api_key,
                        max_retries=0,
                    )
        return self._client

    @retry(
        retry=retry_if_exception_type((APIConnectionError, APITimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _create_embeddings(self, batch: List[str]) -> List[List[float]]:
        response = await self.client.embeddings.create(
            model=self.settings.embedding_model,
            input=batch,
            dimensions=self.settings.embedding_dimensions,
        )
        return [item.embedding for item in response.data]

    def _truncate(self, text: str) -> str:
        # Rough estimate: 4 chars per token
        max_chars = self.MAX_TOKENS_PER_REQUEST * 4
        if len(text) > max_chars:
            logger.warning("Text truncated for embedding", original_length=len(text))
            return text[:max_chars]
        return text

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            One embedding vector per text, in input order

        Raises:
            EmbeddingUnavailable: If the client is unconfigured, the call fails,
                or the response does not match the request
        """
        if not texts:
            return []

        logger.info("Generating embeddings", count=len(texts))

        all_embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.BATCH_SIZE):
            batch = [self._truncate(t) for t in texts[i:i + self.BATCH_SIZE]]

            try:
                batch_embeddings = await self._create_embeddings(batch)
            except ConfigurationError as e:
                raise EmbeddingUnavailable(e.message) from e
            except OpenAIError as e:
                logger.error("Batch embedding failed", error=str(e))
                raise EmbeddingUnavailable(f"Embedding request failed: {e}") from e

            if len(batch_embeddings) != len(batch):
                raise EmbeddingUnavailable(
                    f"Embedding service returned {len(batch_embeddings)} vectors for {len(batch)} inputs"
                )
            all_embeddings.extend(batch_embeddings)

            logger.debug(
                "Batch embedded",
                batch_num=i // self.BATCH_SIZE + 1,
                batch_size=len(batch)
            )

        dimensions = {len(vector) for vector in all_embeddings}
        if len(dimensions) != 1 or 0 in dimensions:
            raise EmbeddingUnavailable(
                f"Embedding service returned inconsistent dimensions: {sorted(dimensions)}"
            )

        logger.info(
            "Embeddings complete",
            total=len(all_embeddings),
            dimensions=dimensions.pop()
        )

        return all_embeddings

    async def embed_query(self, query: str) -> List[float]:
        """
        Generate embedding for a search query.

        Args:
            query: User's question

        Returns:
            Query embedding vector
        """
        vectors = await self.embed_texts([query])
        return vectors[0]
