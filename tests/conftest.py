"""Pytest configuration and shared fixtures."""

import pytest
import os
import re
import sys
from typing import List
from unittest.mock import AsyncMock, MagicMock, Mock

# Add src directory to Python path for imports
SRC_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from verifiable_rag.config import Config
from verifiable_rag.services.answer_service import AnswerProvider
from verifiable_rag.services.chunking_service import ChunkingService
from verifiable_rag.services.embedding_service import EmbeddingProvider, LocalHashEmbeddingProvider
from verifiable_rag.services.pack_manager import PackManager
from verifiable_rag.services.query_engine import QueryEngine
from verifiable_rag.services.text_processor import TextProcessor
from verifiable_rag.services.verifier import Verifier
from verifiable_rag.storage.content_store import InMemoryContentStore
from verifiable_rag.storage.models import UploadFile, UploadRequest
from verifiable_rag.storage.persistence import InMemoryPersistence
from verifiable_rag.utils.errors import EmbeddingError, ValidationError


# ============================================================================
# Environment Setup
# ============================================================================

@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Set required environment variables for all tests."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-api-key-12345")
    monkeypatch.setenv("OPENAI_EMBED_MODEL", "text-embedding-3-small")
    monkeypatch.setenv("OPENAI_EMBED_DIMS", "1536")
    monkeypatch.setenv("DATABASE_URL", "memory://")
    monkeypatch.setenv("CONTENT_STORE_BACKEND", "memory")


# ============================================================================
# Test Doubles
# ============================================================================

VOCABULARY = ["apple", "banana", "cherry", "rocket", "ocean", "guitar", "secret"]


class KeywordEmbeddingProvider(EmbeddingProvider):
    """
    Bag-of-words vectors over a fixed vocabulary.

    Texts sharing keywords score high against each other, which makes
    ranking assertions readable. Texts containing a word in ``fail_on``
    raise EmbeddingError.
    """

    def __init__(self, vocabulary: List[str] = None, fail_on: List[str] = None):
        self.vocabulary = vocabulary or VOCABULARY
        self.fail_on = [w.lower() for w in (fail_on or [])]
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")
        self.calls.append(text)
        words = re.findall(r"[a-z]+", text.lower())
        for word in self.fail_on:
            if word in words:
                raise EmbeddingError(f"Embedding refused for text containing '{word}'")
        return [float(words.count(term)) for term in self.vocabulary]

    def dimension(self) -> int:
        return len(self.vocabulary)

    def name(self) -> str:
        return "keyword-test"


class FakeAnswerProvider(AnswerProvider):
    """Records prompts and returns a fixed answer."""

    def __init__(self, answer: str = "According to [1], the answer is in the context."):
        self.answer = answer
        self.calls = []

    async def complete(self, system_instructions: str, user_prompt: str) -> str:
        self.calls.append((system_instructions, user_prompt))
        return self.answer


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config():
    """Create a test configuration object backed by in-memory providers."""
    return Config(
        openai_api_key="test-api-key-12345",
        openai_embed_model="text-embedding-3-small",
        openai_embed_dims=64,
        embeddings_provider="local",
        llm_provider="openai",
        content_store_backend="memory",
        database_url="memory://",
        chunk_strategy="words",
        chunk_max_tokens=20,
        chunk_overlap_tokens=0,
        chunk_min_length=1,
        ingest_batch_size=10,
        query_default_k=5,
        query_candidate_cap=5000,
        log_level="INFO",
    )


# ============================================================================
# OpenAI Mock Fixtures
# ============================================================================

@pytest.fixture
def mock_openai_client():
    """Mock AsyncOpenAI client for embedding calls."""
    mock_client = MagicMock()

    def create_response(input, **kwargs):
        mock_response = Mock()
        mock_response.data = [
            Mock(embedding=[0.1] * 1536, index=i) for i in range(len(input))
        ]
        return mock_response

    mock_client.embeddings.create = AsyncMock(side_effect=create_response)
    return mock_client


# ============================================================================
# Provider Fixtures
# ============================================================================

@pytest.fixture
def content_store():
    return InMemoryContentStore()


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def keyword_embeddings():
    return KeywordEmbeddingProvider()


@pytest.fixture
def local_embeddings():
    return LocalHashEmbeddingProvider(dimensions=64)


@pytest.fixture
def fake_answers():
    return FakeAnswerProvider()


@pytest.fixture
def chunking_service():
    """Small windows so short test documents produce several chunks."""
    return ChunkingService(max_tokens=20, overlap=0, min_chunk_length=1)


@pytest.fixture
def text_processor():
    return TextProcessor()


# ============================================================================
# Core Service Fixtures
# ============================================================================

@pytest.fixture
def pack_manager(content_store, persistence, keyword_embeddings, text_processor, chunking_service):
    return PackManager(
        content_store=content_store,
        persistence=persistence,
        embeddings=keyword_embeddings,
        text_processor=text_processor,
        chunker=chunking_service,
        batch_size=10,
    )


@pytest.fixture
def query_engine(persistence, keyword_embeddings, fake_answers, content_store):
    return QueryEngine(
        persistence=persistence,
        embeddings=keyword_embeddings,
        answers=fake_answers,
        content_store=content_store,
        default_k=5,
        candidate_cap=5000,
    )


@pytest.fixture
def verifier(content_store):
    return Verifier(content_store)


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def sample_files():
    """Three small text files on distinct topics."""
    return [
        UploadFile(
            path="fruit/apples.txt",
            mime="text/plain",
            data=b"The apple orchard grows apple trees. Every apple is picked by hand.",
        ),
        UploadFile(
            path="space/rockets.md",
            mime="text/markdown",
            data=b"A rocket needs fuel. The rocket launch happened at dawn over the ocean.",
        ),
        UploadFile(
            path="music/guitar.txt",
            mime="text/plain",
            data=b"The guitar has six strings. A guitar sounds warm.",
        ),
    ]


@pytest.fixture
def sample_request(sample_files):
    return UploadRequest(
        title="Test Pack",
        summary="Fruit, rockets and guitars",
        tags=["Demo", "test", "demo"],
        files=sample_files,
    )
