"""
Vector Store Service
Session-scoped chunk storage with cosine similarity search.

Two backends implement the same VectorStore protocol: an in-process
store that scans every chunk of the session, and a Pinecone store that keeps
one namespace per session. create_vector_store picks one at startup.
"""
import hashlib
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np
import structlog

from app.config import Settings, get_settings
from app.errors import ConfigurationError
from app.models.schemas import ChunkData, DocumentSummary, QueryResult

logger = structlog.get_logger()

DEFAULT_TOP_K = 5
DEFAULT_SIMILARITY_THRESHOLD = 0.4


class VectorStore(Protocol):
    async def add_documents(
        self,
        session_id: str,
        document_id: str,
        chunks: Sequence[ChunkData],
        file_name: Optional[str] = None,
    ) -> None:
        ...

    async def clear_session(self, session_id: str) -> None:
        ...

    async def query(
        self,
        session_id: str,
        query_embedding: Sequence[float],
        top_k: int = DEFAULT_TOP_K,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> List[QueryResult]:
        ...

    async def get_chunk_count(self, session_id: str) -> int:
        ...

    async def list_documents(self, session_id: str) -> List[DocumentSummary]:
        ...


# ─────────────────────────────────────────────────────────────
# Similarity
# ─────────────────────────────────────────────────────────────

def _as_vector(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def normalize(values: Sequence[float]) -> np.ndarray:
    """L2-normalize a vector; zero vectors are returned unchanged."""
    vector = _as_vector(values)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector is empty or has zero magnitude, or when
    the lengths differ.
    """
    va = _as_vector(a)
    vb = _as_vector(b)
    if va.size == 0 or vb.size == 0 or va.size != vb.size:
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def rank_results(
    scored: List[Tuple[float, int, ChunkData]],
    top_k: int,
    similarity_threshold: float,
) -> List[QueryResult]:
    """Filter (score, sequence, chunk) triples by threshold, sort, cut to top_k."""
    if top_k <= 0:
        return []
    passing = [item for item in scored if item[0] >= similarity_threshold]
    passing.sort(key=lambda item: (-item[0], item[1]))
    return [QueryResult(chunk=chunk, score=score) for score, _, chunk in passing[:top_k]]


def sequence_clock() -> int:
    """Microseconds since the epoch; exact as a float64 Pinecone metadata value."""
    return time.time_ns() // 1000


# ─────────────────────────────────────────────────────────────
# In-memory backend
# ─────────────────────────────────────────────────────────────

@dataclass
class _StoredChunk:
    sequence: int
    chunk: ChunkData
    vector: np.ndarray


@dataclass
class _SessionDocument:
    file_name: Optional[str]
    chunks: List[_StoredChunk] = field(default_factory=list)


@dataclass
class _SessionIndex:
    lock: threading.Lock = field(default_factory=threading.Lock)
    documents: Dict[str, _SessionDocument] = field(default_factory=dict)
    next_sequence: int = 0
    retired: bool = False


class InMemoryVectorStore:
    """
    Volatile per-session store with exhaustive cosine search.

    Vectors are normalized once on insert and the query vector is normalized
    the same way, so scoring is a dot product. The registry lock only guards
    the session map; all document reads and writes happen under the owning
    session's lock, so sessions never block each other.
    """

    def __init__(self):
        self._sessions: Dict[str, _SessionIndex] = {}
        self._registry_lock = threading.Lock()

    def _get_or_create_session(self, session_id: str) -> _SessionIndex:
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = _SessionIndex()
                self._sessions[session_id] = session
            return session

    def _get_session(self, session_id: str) -> Optional[_SessionIndex]:
        with self._registry_lock:
            return self._sessions.get(session_id)

    async def add_documents(
        self,
        session_id: str,
        document_id: str,
        chunks: Sequence[ChunkData],
        file_name: Optional[str] = None,
    ) -> None:
        """
        Append chunks to a document, creating the session and document if needed.

        Args:
            session_id: Owning session
            document_id: Document the chunks are appended to
            chunks: Embedded chunks in read order
            file_name: Original file name, recorded on the document
        """
        if not chunks:
            return

        vectors = [normalize(chunk.embedding) for chunk in chunks]

        while True:
            session = self._get_or_create_session(session_id)
            with session.lock:
                # A concurrent clear detached this index; retry on a fresh one
                if session.retired:
                    continue

                document = session.documents.get(document_id)
                if document is None:
                    document = _SessionDocument(file_name=file_name)
                    session.documents[document_id] = document
                elif file_name:
                    document.file_name = file_name

                for chunk, vector in zip(chunks, vectors):
                    if file_name and chunk.file_name is None:
                        chunk = chunk.model_copy(update={"file_name": file_name})
                    document.chunks.append(
                        _StoredChunk(sequence=session.next_sequence, chunk=chunk, vector=vector)
                    )
                    session.next_sequence += 1
                break

        logger.info(
            "Chunks stored",
            session_id=session_id,
            document_id=document_id,
            count=len(chunks),
        )

    async def clear_session(self, session_id: str) -> None:
        """Remove every document of a session. Unknown sessions are ignored."""
        with self._registry_lock:
            session = self._sessions.pop(session_id, None)

        if session is None:
            return

        with session.lock:
            session.retired = True
            session.documents.clear()

        logger.info("Session cleared", session_id=session_id)

    async def query(
        self,
        session_id: str,
        query_embedding: Sequence[float],
        top_k: int = DEFAULT_TOP_K,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> List[QueryResult]:
        """
        Return up to top_k chunks scoring at least similarity_threshold.

        Results are sorted by descending score; equal scores keep insertion
        order. An unknown or empty session yields an empty list.
        """
        session = self._get_session(session_id)
        if session is None:
            return []

        with session.lock:
            snapshot = [
                stored
                for document in session.documents.values()
                for stored in document.chunks
            ]

        if not snapshot:
            return []

        query_vector = normalize(query_embedding)
        scored: List[Tuple[float, int, ChunkData]] = []
        for stored in snapshot:
            if query_vector.size == 0 or stored.vector.shape != query_vector.shape:
                score = 0.0
            else:
                score = float(np.dot(query_vector, stored.vector))
            scored.append((score, stored.sequence, stored.chunk))

        results = rank_results(scored, top_k, similarity_threshold)

        logger.info(
            "Query complete",
            session_id=session_id,
            stored_chunks=len(snapshot),
            retrieved_chunks=len(results),
            top_score=results[0].score if results else None,
        )
        return results

    async def get_chunk_count(self, session_id: str) -> int:
        session = self._get_session(session_id)
        if session is None:
            return 0
        with session.lock:
            return sum(len(document.chunks) for document in session.documents.values())

    async def list_documents(self, session_id: str) -> List[DocumentSummary]:
        session = self._get_session(session_id)
        if session is None:
            return []
        with session.lock:
            return [
                DocumentSummary(
                    document_id=document_id,
                    file_name=document.file_name,
                    chunk_count=len(document.chunks),
                )
                for document_id, document in session.documents.items()
            ]


# ─────────────────────────────────────────────────────────────
# Pinecone backend
# ─────────────────────────────────────────────────────────────

_NAMESPACE_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def session_namespace(session_id: str) -> str:
    """
    Deterministic, backend-safe namespace for a session.

    Unsafe characters become underscores; a digest of the raw id keeps two
    ids that sanitize to the same text apart.
    """
    safe = _NAMESPACE_UNSAFE.sub("_", session_id)[:64]
    digest = hashlib.sha256(session_id.encode("utf-8")).hexdigest()[:12]
    return f"session_{safe}_{digest}"


class PineconeVectorStore:
    """Pinecone-backed store with one namespace per session."""

    UPSERT_BATCH_SIZE = 100

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._index = None
        self._index_lock = threading.Lock()
        # Last sequence handed out; keeps writes from this process strictly increasing
        self._last_sequence = 0
        self._sequence_lock = threading.Lock()

    @property
    def index(self):
        """Pinecone index handle, built on first use."""
        if self._index is None:
            with self._index_lock:
                if self._index is None:
                    if not self.settings.pinecone_api_key:
                        raise ConfigurationError("PINECONE_API_KEY is not configured")
                    from pinecone import Pinecone

                    pc = Pinecone(api_key=self.settings.pinecone_api_key)
                    self._index = pc.Index(self.settings.pinecone_index)
                    logger.info("Vector store initialized", index=self.settings.pinecone_index)
        return self._index

    def _reserve_sequences(self, count: int) -> int:
        """
        Reserve count consecutive sequence numbers and return the first.

        Sequences are wall-clock microseconds, so chunks written after a
        restart or by another worker still sort after older ones.
        """
        with self._sequence_lock:
            start = max(sequence_clock(), self._last_sequence + 1)
            self._last_sequence = start + count - 1
        return start

    async def add_documents(
        self,
        session_id: str,
        document_id: str,
        chunks: Sequence[ChunkData],
        file_name: Optional[str] = None,
    ) -> None:
        if not chunks:
            return

        namespace = session_namespace(session_id)
        start = self._reserve_sequences(len(chunks))
        vectors = []
        for position, chunk in enumerate(chunks):
            vectors.append({
                "id": f"{document_id}_{chunk.index}",
                "values": list(chunk.embedding),
                "metadata": {
                    "session_id": session_id,
                    "document_id": document_id,
                    "index": chunk.index,
                    "file_name": file_name or chunk.file_name or "",
                    "text": chunk.text,
                    "sequence": start + position,
                },
            })

        for i in range(0, len(vectors), self.UPSERT_BATCH_SIZE):
            batch = vectors[i:i + self.UPSERT_BATCH_SIZE]
            self.index.upsert(vectors=batch, namespace=namespace)

        logger.info(
            "Vectors upserted",
            namespace=namespace,
            document_id=document_id,
            count=len(vectors),
        )

    async def clear_session(self, session_id: str) -> None:
        from pinecone.exceptions import NotFoundException

        namespace = session_namespace(session_id)
        try:
            self.index.delete(delete_all=True, namespace=namespace)
        except NotFoundException:
            logger.debug("Namespace already absent", namespace=namespace)
            return
        logger.info("Session namespace deleted", namespace=namespace)

    async def query(
        self,
        session_id: str,
        query_embedding: Sequence[float],
        top_k: int = DEFAULT_TOP_K,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> List[QueryResult]:
        if top_k <= 0:
            return []

        namespace = session_namespace(session_id)
        response = self.index.query(
            namespace=namespace,
            vector=list(query_embedding),
            top_k=top_k,
            include_metadata=True,
        )

        scored: List[Tuple[float, int, ChunkData]] = []
        for match in response.matches:
            metadata = match.metadata or {}
            chunk = ChunkData(
                session_id=metadata.get("session_id", session_id),
                document_id=metadata.get("document_id", ""),
                index=int(metadata.get("index", 0)),
                text=metadata.get("text", ""),
                file_name=metadata.get("file_name") or None,
            )
            scored.append((float(match.score), int(metadata.get("sequence", 0)), chunk))

        results = rank_results(scored, top_k, similarity_threshold)
        logger.info(
            "Query complete",
            namespace=namespace,
            matches=len(scored),
            retrieved_chunks=len(results),
        )
        return results

    async def get_chunk_count(self, session_id: str) -> int:
        stats = self.index.describe_index_stats()
        namespace_stats = stats.namespaces.get(session_namespace(session_id))
        if not namespace_stats:
            return 0
        return int(namespace_stats.vector_count)

    async def list_documents(self, session_id: str) -> List[DocumentSummary]:
        namespace = session_namespace(session_id)
        counts: Dict[str, int] = {}
        for ids in self.index.list(namespace=namespace):
            for vector_id in ids:
                document_id = vector_id.rsplit("_", 1)[0]
                counts[document_id] = counts.get(document_id, 0) + 1

        documents: List[DocumentSummary] = []
        for document_id in sorted(counts):
            fetched = self.index.fetch(ids=[f"{document_id}_0"], namespace=namespace)
            first = fetched.vectors.get(f"{document_id}_0")
            file_name = (first.metadata or {}).get("file_name") if first else None
            documents.append(DocumentSummary(
                document_id=document_id,
                file_name=file_name or None,
                chunk_count=counts[document_id],
            ))
        return documents


# ─────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────

def create_vector_store(settings: Optional[Settings] = None) -> VectorStore:
    """
    Build the vector store selected by VECTOR_STORE_TYPE.

    Raises:
        ConfigurationError: If the store type is unknown
    """
    settings = settings or get_settings()
    store_type = settings.vector_store_type.lower()

    if store_type == "memory":
        logger.info("Creating in-memory vector store")
        return InMemoryVectorStore()

    if store_type == "pinecone":
        logger.info("Creating Pinecone vector store", index=settings.pinecone_index)
        return PineconeVectorStore(settings)

    raise ConfigurationError(
        f"Invalid VECTOR_STORE_TYPE: {settings.vector_store_type}. "
        "Must be 'memory' or 'pinecone'."
    )
