"""Storage module for the verifiable RAG service."""

from verifiable_rag.storage.models import (
    Visibility,
    User,
    Pack,
    Document,
    Chunk,
    SearchCandidate,
    StoredBlob,
    BlobMetadata,
    UploadFile,
    UploadRequest,
    FileOutcome,
    IngestionResult,
    Manifest,
    PackDetails,
    QueryRequest,
    Citation,
    QueryResult,
    VerificationRequest,
    VerificationResult,
    to_dict,
)
from verifiable_rag.storage.content_store import (
    ContentStore,
    InMemoryContentStore,
    FilesystemContentStore,
    create_content_store,
)
from verifiable_rag.storage.persistence import (
    Persistence,
    InMemoryPersistence,
    create_persistence,
)

__all__ = [
    "Visibility",
    "User",
    "Pack",
    "Document",
    "Chunk",
    "SearchCandidate",
    "StoredBlob",
    "BlobMetadata",
    "UploadFile",
    "UploadRequest",
    "FileOutcome",
    "IngestionResult",
    "Manifest",
    "PackDetails",
    "QueryRequest",
    "Citation",
    "QueryResult",
    "VerificationRequest",
    "VerificationResult",
    "to_dict",
    "ContentStore",
    "InMemoryContentStore",
    "FilesystemContentStore",
    "create_content_store",
    "Persistence",
    "InMemoryPersistence",
    "create_persistence",
]
