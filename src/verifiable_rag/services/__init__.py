"""Services module for the verifiable RAG service."""

from verifiable_rag.services.chunking_service import ChunkingService
from verifiable_rag.services.text_processor import TextProcessor, ExtractedText
from verifiable_rag.services.embedding_service import (
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
    LocalHashEmbeddingProvider,
    create_embedding_provider,
)
from verifiable_rag.services.answer_service import (
    AnswerProvider,
    OpenAIAnswerProvider,
    create_answer_provider,
)
from verifiable_rag.services.pack_manager import PackManager
from verifiable_rag.services.query_engine import QueryEngine
from verifiable_rag.services.verifier import Verifier

__all__ = [
    "ChunkingService",
    "TextProcessor",
    "ExtractedText",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "LocalHashEmbeddingProvider",
    "create_embedding_provider",
    "AnswerProvider",
    "OpenAIAnswerProvider",
    "create_answer_provider",
    "PackManager",
    "QueryEngine",
    "Verifier",
]
