"""
Context Builder
Turns retrieved chunks and chat history into a bounded, grounded prompt,
and holds the guardrails applied before and instead of generation.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence
import structlog

from app.config import Settings, get_settings
from app.errors import ValidationError
from app.models.schemas import HistoryMessage, QueryResult

logger = structlog.get_logger()

REFUSAL_MESSAGE = "This question is outside the scope of uploaded documents."

CONTEXT_SEPARATOR = "\n---\n"
CONTEXT_TRUNCATION_MARKER = "\n... [Remaining context truncated for length]"
HISTORY_TRUNCATION_MARKER = "... [Oldest messages truncated]\n"
NO_HISTORY = "No previous context."

SYSTEM_PROMPT_TEMPLATE = f"""You are a document-based assistant.
Answer ONLY using the context below.
If the answer is not in the context, say:
"{REFUSAL_MESSAGE}"

Context:
{{retrieved_chunks}}

Previous Conversation History:
{{conversation_history}}"""

USER_PROMPT_TEMPLATE = """Current Question:
{user_question}"""


@dataclass(frozen=True)
class PromptSections:
    """Rendered prompt handed to the generator."""
    system: str
    user: str
    context: str
    transcript: str


class ContextBuilder:
    """Applies query guardrails and assembles prompts."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def validate_query(self, query: str) -> str:
        """
        Reject empty or oversized questions before any retrieval work.

        Returns:
            The trimmed question

        Raises:
            ValidationError: If the question is empty or too long
        """
        trimmed = query.strip()
        if not trimmed:
            raise ValidationError("Query must be a non-empty string")

        max_length = self.settings.max_query_length
        if len(trimmed) > max_length:
            raise ValidationError(
                f"Question is too long. Please keep it under {max_length} characters."
            )
        return trimmed

    def build_context(self, results: Sequence[QueryResult]) -> str:
        """Join chunk texts in rank order, capped at max_context_chars."""
        raw = CONTEXT_SEPARATOR.join(result.chunk.text for result in results)
        max_chars = self.settings.max_context_chars
        if len(raw) > max_chars:
            return raw[:max_chars] + CONTEXT_TRUNCATION_MARKER
        return raw

    def build_transcript(self, history: Optional[Sequence[HistoryMessage]]) -> str:
        """
        Render the recent conversation as User:/Assistant: lines.

        Only the last max_history_messages are considered. Assistant turns
        that carry a non-success status are dropped. The result keeps its
        tail when it exceeds max_history_chars.
        """
        if not history:
            return NO_HISTORY

        recent = list(history)[-self.settings.max_history_messages:]
        kept: List[HistoryMessage] = [
            message
            for message in recent
            if not (
                message.role == "assistant"
                and message.status is not None
                and message.status != "success"
            )
        ]
        if not kept:
            return NO_HISTORY

        transcript = "\n\n".join(
            f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}"
            for message in kept
        )

        max_chars = self.settings.max_history_chars
        if len(transcript) > max_chars:
            transcript = HISTORY_TRUNCATION_MARKER + transcript[-max_chars:]
        return transcript

    def build_prompt(
        self,
        query: str,
        results: Sequence[QueryResult],
        history: Optional[Sequence[HistoryMessage]] = None,
    ) -> PromptSections:
        """Bind context, transcript and question into the grounding template."""
        context = self.build_context(results)
        transcript = self.build_transcript(history)

        logger.info(
            "Prompt assembled",
            context_chars=len(context),
            transcript_chars=len(transcript),
            chunks=len(results),
        )

        return PromptSections(
            system=SYSTEM_PROMPT_TEMPLATE.format(
                retrieved_chunks=context,
                conversation_history=transcript,
            ),
            user=USER_PROMPT_TEMPLATE.format(user_question=query),
            context=context,
            transcript=transcript,
        )
