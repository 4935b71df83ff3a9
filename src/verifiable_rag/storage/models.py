"""Data models for the verifiable RAG pipeline."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def to_dict(record: Any) -> Dict[str, Any]:
    """Convert a dataclass record into JSON-safe primitives."""
    return _jsonable(asdict(record))


class Visibility(str, Enum):
    """Who may query a pack."""

    PRIVATE = "private"
    PUBLIC = "public"
    UNLISTED = "unlisted"


# ============================================================================
# Persistent records
# ============================================================================

@dataclass
class User:
    """Identity record, used only for requester resolution."""
    user_id: str
    email: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Pack:
    """A named, access-controlled collection of documents."""
    pack_id: str
    owner_user_id: str
    title: str
    visibility: Visibility = Visibility.PRIVATE
    summary: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    manifest_content_id: Optional[str] = None


@dataclass
class Document:
    """One uploaded file. Immutable after creation."""
    doc_id: str
    pack_id: str
    path: str
    mime: str
    bytes: int
    sha256: str
    content_id: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Chunk:
    """
    A retrievable slice of a document's extracted text.

    ``start_byte``/``end_byte`` are None when provenance is tracked at
    chunk level rather than byte level. At least one of ``text`` or
    ``content_id`` references the chunk's text.
    """
    chunk_id: str
    pack_id: str
    doc_id: str
    chunk_index: int
    embedding: List[float]
    content_id: Optional[str] = None
    text: Optional[str] = None
    start_byte: Optional[int] = None
    end_byte: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class SearchCandidate:
    """Chunk joined with its parent document's provenance fields."""
    chunk: Chunk
    doc_content_id: str
    doc_sha256: str
    doc_path: str


# ============================================================================
# Content store records
# ============================================================================

@dataclass
class StoredBlob:
    """Result of a content store put."""
    content_id: str
    sha256: str
    size: int


@dataclass
class BlobMetadata:
    content_id: str
    size: int
    content_type: Optional[str] = None
    created_at: Optional[datetime] = None


# ============================================================================
# Ingestion requests and outcomes
# ============================================================================

@dataclass
class UploadFile:
    """A file submitted for ingestion."""
    path: str
    mime: str
    data: bytes


@dataclass
class UploadRequest:
    title: str
    files: List[UploadFile]
    summary: Optional[str] = None
    tags: Optional[List[str]] = None
    ocr: bool = False


@dataclass
class FileOutcome:
    """Per-file ingestion outcome; ``error`` is set when the file failed."""
    path: str
    mime: str
    bytes: int
    sha256: str
    content_id: str
    indexed: bool
    chunks: int
    error: Optional[str] = None


@dataclass
class IngestionResult:
    pack_id: str
    files: List[FileOutcome]


@dataclass
class Manifest:
    """Portable snapshot of a pack's per-file outcomes."""
    pack_id: str
    title: str
    created_at: datetime
    files: List[FileOutcome]
    summary: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_json(self) -> bytes:
        return json.dumps(to_dict(self), indent=2).encode("utf-8")


@dataclass
class PackDetails:
    pack: Pack
    documents: List[Document]


# ============================================================================
# Query and verification
# ============================================================================

@dataclass
class QueryRequest:
    question: str
    pack_id: Optional[str] = None
    max_results: Optional[int] = None


@dataclass
class Citation:
    """Query-time evidence linking an answer to stored, hashable content."""
    content_id: str
    sha256: str
    snippet: str
    doc_path: str
    score: float
    start_byte: Optional[int] = None
    end_byte: Optional[int] = None


@dataclass
class QueryResult:
    answer: str
    citations: List[Citation]
    elapsed_ms: int


@dataclass
class VerificationRequest:
    content_id: str
    expected_sha256: Optional[str] = None


@dataclass
class VerificationResult:
    """
    Outcome of re-hashing a stored blob.

    ``matched`` is None when no expected hash was supplied. ``error`` is
    only set by batch verification when the fetch itself failed.
    """
    content_id: str
    computed_sha256: str
    ok: bool
    expected_sha256: Optional[str] = None
    matched: Optional[bool] = None
    error: Optional[str] = None
