"""
Error Taxonomy
Exceptions raised by the RAG services and mapped to HTTP responses in app.main.
"""


class RAGServiceError(Exception):
    """Base class for service errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(RAGServiceError):
    """Raised when a required setting or credential is missing or invalid."""
    pass


class ValidationError(RAGServiceError):
    """Raised when request input is malformed, missing, or rejected by a guardrail."""

    status_code = 400


class ExtractionError(RAGServiceError):
    """Raised when text cannot be extracted from an uploaded document."""
    pass


class EmbeddingUnavailable(RAGServiceError):
    """Raised when the embedding capability is unconfigured or the call fails."""
    pass


class GenerationError(RAGServiceError):
    """Raised when answer generation fails."""

    status_code = 502
