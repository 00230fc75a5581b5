"""
Data models for the RAG pipeline.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional


class CamelModel(BaseModel):
    """Serializes to camelCase JSON, accepts camelCase or snake_case input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─────────────────────────────────────────────────────────────
# Internal models
# ─────────────────────────────────────────────────────────────

class ChunkData(CamelModel):
    """One embedded slice of a document's text, owned by the vector store."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    document_id: str
    index: int = Field(ge=0)
    text: str
    embedding: List[float] = Field(default_factory=list, exclude=True)
    file_name: Optional[str] = None


class QueryResult(CamelModel):
    """A retrieved chunk with its similarity score (higher is closer)."""
    chunk: ChunkData
    score: float


class DocumentSummary(CamelModel):
    document_id: str
    file_name: Optional[str] = None
    chunk_count: int


class LoadedDocument(BaseModel):
    """Plain text extracted from an upload."""
    text: str
    page_count: int


class HistoryMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str
    status: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# Request/Response Models
# ─────────────────────────────────────────────────────────────

class UploadResponse(CamelModel):
    session_id: str
    file_name: str
    file_size_bytes: int
    file_type: Literal["pdf", "txt"]
    char_count: int
    word_count: int
    page_count: int
    chunk_count: int


class QueryRequest(CamelModel):
    query: str
    history: Optional[List[HistoryMessage]] = None
    top_k: Optional[int] = None
    similarity_threshold: Optional[float] = None


class DebugInfo(CamelModel):
    total_stored_chunks: int
    retrieved_chunks: int
    top_score: Optional[float] = None


class QueryResponse(CamelModel):
    answer: str
    results: List[QueryResult]
    debug: DebugInfo


class ResetResponse(CamelModel):
    status: str = "reset"
    session_id: str


class SessionDocumentsResponse(CamelModel):
    session_id: str
    documents: List[DocumentSummary]
    total_chunks: int
