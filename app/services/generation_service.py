"""
Generation Service
Produces grounded answers with an OpenAI chat model.
"""
import threading
from typing import Optional
import structlog
from openai import AsyncOpenAI, OpenAIError

from app.config import Settings, get_settings
from app.errors import ConfigurationError, GenerationError
from app.services.context_builder import PromptSections

logger = structlog.get_logger()


class GenerationService:
    """
    Calls the chat model at temperature 0.

    Retries are bounded by GENERATION_MAX_RETRIES (0 by default) so a
    rate-limited upstream fails the request instead of stalling it.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client: Optional[AsyncOpenAI] = None
        self._client_lock = threading.Lock()

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    if not self.settings.openai_api_key:
                        raise ConfigurationError("OPENAI_API_KEY is not configured")
                    self._client = AsyncOpenAI(
                        api_key=self.settings.openai_api_key,
                        max_retries=self.settings.generation_max_retries,
                    )
        return self._client

    async def generate(self, sections: PromptSections) -> str:
        """
        Generate an answer for an assembled prompt.

        Args:
            sections: System and user prompt text

        Returns:
            The model's answer

        Raises:
            GenerationError: If the client is unconfigured, the call fails,
                or the model returns no text
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.settings.chat_model,
                temperature=0,
                messages=[
                    {"role": "system", "content": sections.system},
                    {"role": "user", "content": sections.user},
                ],
            )
        except ConfigurationError as e:
            raise GenerationError(e.message) from e
        except OpenAIError as e:
            logger.error("Answer generation failed", error=str(e))
            raise GenerationError(f"Answer generation failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        answer = (content or "").strip()
        if not answer:
            raise GenerationError("Model returned an empty answer")

        logger.info("Answer generated", model=self.settings.chat_model, answer_chars=len(answer))
        return answer
