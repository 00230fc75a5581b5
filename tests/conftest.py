"""
Shared Test Fixtures for RAG Service Tests

This file contains:
- FastAPI TestClient setup
- Mock fixtures for the OpenAI clients
- A deterministic bag-of-words embedding used in place of the real model
- Test data generators
"""
import hashlib
import math
import re
from typing import AsyncGenerator, Generator, List
from unittest.mock import AsyncMock, Mock, patch
import os
import sys

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# Add app to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import Settings
from app.main import create_app
from app.models.schemas import ChunkData


FAKE_DIMENSIONS = 256


def fake_embedding(text: str, dimensions: int = FAKE_DIMENSIONS) -> List[float]:
    """Hash each lowercase word into a bucket; similar wording gives similar vectors."""
    vector = [0.0] * dimensions
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % dimensions
        vector[bucket] += 1.0
    return vector


def unit_vector(*components: float) -> List[float]:
    norm = math.sqrt(sum(c * c for c in components))
    return [c / norm for c in components]


def make_chunk(
    text: str,
    embedding: List[float],
    index: int = 0,
    session_id: str = "session-a",
    document_id: str = "doc-1",
    file_name: str = None,
) -> ChunkData:
    return ChunkData(
        session_id=session_id,
        document_id=document_id,
        index=index,
        text=text,
        embedding=embedding,
        file_name=file_name,
    )


def _embeddings_response(**kwargs):
    inputs = kwargs["input"]
    if isinstance(inputs, str):
        inputs = [inputs]
    return Mock(data=[Mock(embedding=fake_embedding(text)) for text in inputs])


# ═══════════════════════════════════════════════════════════════
# SETTINGS & APP FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def settings() -> Settings:
    """Settings with a dummy API key and the in-memory store."""
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        vector_store_type="memory",
        environment="test",
        log_level="WARNING",
    )


@pytest.fixture
def unconfigured_settings() -> Settings:
    """Settings without any OpenAI credential."""
    return Settings(
        _env_file=None,
        openai_api_key=None,
        vector_store_type="memory",
        environment="test",
        log_level="WARNING",
    )


@pytest.fixture
def app(settings, mock_openai):
    return create_app(settings)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Synchronous FastAPI test client."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Asynchronous FastAPI test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ═══════════════════════════════════════════════════════════════
# MOCK FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def mock_openai():
    """Mock OpenAI clients for embedding and generation."""
    with patch("app.services.embedding_service.AsyncOpenAI") as embed_mock, \
         patch("app.services.generation_service.AsyncOpenAI") as chat_mock:

        embed_mock.return_value.embeddings.create = AsyncMock(side_effect=_embeddings_response)

        chat_mock.return_value.chat.completions.create = AsyncMock(
            return_value=Mock(choices=[Mock(message=Mock(content="Grounded test answer"))])
        )

        yield {"embedding": embed_mock, "chat": chat_mock}


@pytest.fixture
def embeddings_create(mock_openai) -> AsyncMock:
    return mock_openai["embedding"].return_value.embeddings.create


@pytest.fixture
def chat_create(mock_openai) -> AsyncMock:
    return mock_openai["chat"].return_value.chat.completions.create


# ═══════════════════════════════════════════════════════════════
# TEST DATA FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def sample_session_id() -> str:
    """Test session ID."""
    return "test-session-12345"


@pytest.fixture
def session_headers(sample_session_id) -> dict:
    return {"x-session-id": sample_session_id}


@pytest.fixture
def sample_text() -> str:
    """Short document about cell biology."""
    return (
        "The mitochondria produce energy for the cell. "
        "Ribosomes assemble proteins from amino acids. "
        "The nucleus stores the genetic material of the cell."
    )


@pytest.fixture
def unique_text_2500() -> str:
    """Exactly 2500 characters of non-repeating tokens, no outer whitespace."""
    text = "".join(f"w{i:04d} " for i in range(500))[:2500]
    assert len(text) == 2500 and text == text.strip()
    return text


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal valid PDF bytes for testing."""
    return b"""%PDF-1.4
1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj
2 0 obj << /Type /Pages /Kids [3 0 R] /Count 1 >> endobj
3 0 obj << /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >> endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer << /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""
