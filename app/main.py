"""
FastAPI Application
Session-scoped document Q&A: upload, query, reset.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, Tuple
import time
import uuid

from fastapi import APIRouter, Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from app.config import Settings, get_settings
from app.errors import (
    ConfigurationError,
    EmbeddingUnavailable,
    ExtractionError,
    RAGServiceError,
    ValidationError,
)
from app.logging_config import configure_logging
from app.models.schemas import (
    DebugInfo,
    LoadedDocument,
    QueryRequest,
    QueryResponse,
    ResetResponse,
    SessionDocumentsResponse,
    UploadResponse,
)
from app.services.chunking_service import ChunkingService, validate_chunk_params
from app.services.context_builder import REFUSAL_MESSAGE, ContextBuilder
from app.services.document_loader import DocumentLoader
from app.services.embedding_service import EmbeddingService
from app.services.file_handler import FileHandler
from app.services.generation_service import GenerationService
from app.services.retriever import Retriever
from app.services.vector_store import VectorStore, create_vector_store

logger = structlog.get_logger()


# ─────────────────────────────────────────────────────────────
# Service wiring
# ─────────────────────────────────────────────────────────────

@dataclass
class Services:
    """Everything a request handler needs, owned by the app instance."""
    settings: Settings
    vector_store: VectorStore
    embedding_service: EmbeddingService
    generation_service: GenerationService
    chunking_service: ChunkingService
    retriever: Retriever
    context_builder: ContextBuilder
    document_loader: DocumentLoader
    file_handler: FileHandler


def create_services(
    settings: Settings,
    vector_store: Optional[VectorStore] = None,
) -> Services:
    """Build the service graph. External clients stay unbuilt until first use."""
    vector_store = vector_store or create_vector_store(settings)
    embedding_service = EmbeddingService(settings)
    return Services(
        settings=settings,
        vector_store=vector_store,
        embedding_service=embedding_service,
        generation_service=GenerationService(settings),
        chunking_service=ChunkingService(embedding_service, settings),
        retriever=Retriever(embedding_service, vector_store, settings),
        context_builder=ContextBuilder(settings),
        document_loader=DocumentLoader(),
        file_handler=FileHandler(),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_session_id(x_session_id: Optional[str] = Header(default=None)) -> str:
    """Resolve the caller's session from the x-session-id header."""
    if x_session_id is None or not x_session_id.strip():
        raise ValidationError("Missing x-session-id header")
    return x_session_id.strip()


# ─────────────────────────────────────────────────────────────
# Error handlers
# ─────────────────────────────────────────────────────────────

async def handle_service_error(request: Request, exc: RAGServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=exc.message,
        )
    else:
        logger.warning("Request rejected", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    message = "Invalid request: " + "; ".join(problems)
    logger.warning("Request rejected", path=request.url.path, error=message)
    return JSONResponse(status_code=400, content={"error": message})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ─────────────────────────────────────────────────────────────
# App factory
# ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    services: Services = app.state.services
    logger.info(
        "Service starting",
        vector_store=type(services.vector_store).__name__,
        environment=services.settings.environment,
    )
    yield
    logger.info("Service stopped")


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Session RAG Service",
        description="Upload documents per session and ask grounded questions",
        version="1.0.0",
        lifespan=lifespan,
        dependencies=[Depends(require_session_id)],
    )
    app.state.services = services or create_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RAGServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router)
    return app


# ─────────────────────────────────────────────────────────────
# Ingestion pipeline
# ─────────────────────────────────────────────────────────────

def new_document_id() -> str:
    return f"doc_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


async def run_pipeline(
    services: Services,
    session_id: str,
    document_id: str,
    file_name: str,
    content: bytes,
    file_type: str,
    chunk_size: int,
    chunk_overlap: int,
) -> Tuple[LoadedDocument, int]:
    """
    Extract, chunk, embed and store one upload.

    Extraction and embedding failures are logged and leave the document with
    no chunks; the upload itself still succeeds.

    Returns:
        The extracted document and the number of chunks stored
    """
    try:
        logger.info("Stage: Extracting text", document_id=document_id, file_type=file_type)
        document = await services.document_loader.extract(content, file_type)
    except ExtractionError as e:
        logger.error("Stage: Extraction failed", document_id=document_id, error=e.message)
        return LoadedDocument(text="", page_count=0), 0

    try:
        logger.info("Stage: Chunking and embedding", document_id=document_id)
        chunks = await services.chunking_service.chunk_and_embed(
            session_id=session_id,
            document_id=document_id,
            text=document.text,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            file_name=file_name,
        )
    except EmbeddingUnavailable as e:
        logger.error("Stage: Embedding failed", document_id=document_id, error=e.message)
        return document, 0

    logger.info("Stage: Storing vectors", document_id=document_id, count=len(chunks))
    await services.vector_store.add_documents(
        session_id,
        document_id,
        chunks,
        file_name=file_name,
    )
    return document, len(chunks)


# ─────────────────────────────────────────────────────────────
# Routes
# ─────────────────────────────────────────────────────────────

router = APIRouter()


@router.post("/upload", response_model=UploadResponse)
async def upload_file(
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
    file: Optional[UploadFile] = File(default=None),
    chunk_size: Optional[int] = Form(default=None, alias="chunkSize"),
    chunk_overlap: Optional[int] = Form(default=None, alias="chunkOverlap"),
):
    """Upload a .pdf or .txt file and index it for the session."""
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")

    file_name = services.file_handler.sanitize_filename(file.filename)
    content = await file.read()
    file_type = services.file_handler.detect_file_type(
        file_name, file.content_type, content
    )

    size = chunk_size if chunk_size is not None else services.settings.chunk_size
    overlap = chunk_overlap if chunk_overlap is not None else services.settings.chunk_overlap
    try:
        validate_chunk_params(size, overlap)
    except ConfigurationError as e:
        raise ValidationError(e.message) from e

    document_id = new_document_id()
    logger.info(
        "Upload received",
        session_id=session_id,
        document_id=document_id,
        file_name=file_name,
        size_bytes=len(content),
    )

    document, chunk_count = await run_pipeline(
        services,
        session_id=session_id,
        document_id=document_id,
        file_name=file_name,
        content=content,
        file_type=file_type,
        chunk_size=size,
        chunk_overlap=overlap,
    )

    logger.info("Upload complete", document_id=document_id, chunk_count=chunk_count)

    return UploadResponse(
        session_id=session_id,
        file_name=file_name,
        file_size_bytes=len(content),
        file_type=file_type,
        char_count=len(document.text),
        word_count=len(document.text.split()),
        page_count=document.page_count,
        chunk_count=chunk_count,
    )


@router.post("/query", response_model=QueryResponse)
async def query_documents(
    request: QueryRequest,
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
):
    """Answer a question from the session's documents."""
    question = services.context_builder.validate_query(request.query)

    results = await services.retriever.retrieve(
        session_id,
        question,
        top_k=request.top_k,
        similarity_threshold=request.similarity_threshold,
    )
    total_stored = await services.vector_store.get_chunk_count(session_id)

    if not results:
        logger.info("No relevant context, refusing", session_id=session_id)
        answer = REFUSAL_MESSAGE
    else:
        sections = services.context_builder.build_prompt(question, results, request.history)
        answer = await services.generation_service.generate(sections)

    debug = DebugInfo(
        total_stored_chunks=total_stored,
        retrieved_chunks=len(results),
        top_score=results[0].score if results else None,
    )
    logger.info(
        "Query answered",
        session_id=session_id,
        stored_chunks=debug.total_stored_chunks,
        retrieved_chunks=debug.retrieved_chunks,
        top_score=debug.top_score,
    )
    return QueryResponse(answer=answer, results=results, debug=debug)


@router.post("/session/reset", response_model=ResetResponse)
async def reset_session(
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
):
    """Drop every document stored for the session."""
    await services.vector_store.clear_session(session_id)
    return ResetResponse(session_id=session_id)


@router.get("/session/documents", response_model=SessionDocumentsResponse)
async def list_session_documents(
    session_id: str = Depends(require_session_id),
    services: Services = Depends(get_services),
):
    """List the documents indexed for the session."""
    documents = await services.vector_store.list_documents(session_id)
    return SessionDocumentsResponse(
        session_id=session_id,
        documents=documents,
        total_chunks=sum(d.chunk_count for d in documents),
    )


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=4000, reload=True)
