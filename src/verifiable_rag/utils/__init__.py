"""Utilities module for the verifiable RAG service."""

from verifiable_rag.utils.errors import (
    ErrorKind,
    VerifiableRAGError,
    ValidationError,
    NotFoundError,
    ForbiddenError,
    AuthenticationError,
    ConfigurationError,
    UpstreamError,
    EmbeddingError,
    StorageError,
    AnswerGenerationError,
    ExtractionError,
)
from verifiable_rag.utils.logging import setup_logging, StructuredLogger
from verifiable_rag.utils.hashing import sha256_hex, sha256_text, new_id
from verifiable_rag.utils.vectors import cosine_scores, cosine_similarity, rank_by_similarity
from verifiable_rag.utils.helpers import normalize_tags, parse_boolean, stopwatch

__all__ = [
    "ErrorKind",
    "VerifiableRAGError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "AuthenticationError",
    "ConfigurationError",
    "UpstreamError",
    "EmbeddingError",
    "StorageError",
    "AnswerGenerationError",
    "ExtractionError",
    "setup_logging",
    "StructuredLogger",
    "sha256_hex",
    "sha256_text",
    "new_id",
    "cosine_scores",
    "cosine_similarity",
    "rank_by_similarity",
    "normalize_tags",
    "parse_boolean",
    "stopwatch",
]
