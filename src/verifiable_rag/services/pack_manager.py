"""
Pack manager: ingestion pipeline and pack administration.

Ingestion runs files one after another. Within a file, the chunks are
processed in fixed-size batches: every chunk in a batch uploads its
text and computes its embedding concurrently, and a batch must fully
finish before the next one starts.
"""

import asyncio
import logging
import time
from typing import List, Optional, Sequence, Tuple, Union

from verifiable_rag.config import DEFAULT_ALLOWED_MIME_TYPES
from verifiable_rag.services.chunking_service import ChunkingService
from verifiable_rag.services.embedding_service import EmbeddingProvider
from verifiable_rag.services.text_processor import TextProcessor
from verifiable_rag.storage.content_store import ContentStore
from verifiable_rag.storage.models import (
    Chunk,
    Document,
    FileOutcome,
    IngestionResult,
    Manifest,
    Pack,
    PackDetails,
    UploadFile,
    UploadRequest,
    Visibility,
    utcnow,
)
from verifiable_rag.storage.persistence import Persistence
from verifiable_rag.utils.errors import (
    EmbeddingError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from verifiable_rag.utils.hashing import new_id, sha256_hex
from verifiable_rag.utils.helpers import normalize_tags
from verifiable_rag.utils.logging import StructuredLogger


logger = logging.getLogger("verifiable-rag.ingestion")

MAX_TITLE_LENGTH = 200
DEADLINE_EXCEEDED = "deadline exceeded"


class _Deadline:
    """Wall-clock budget for one ingestion call; None means unbounded."""

    def __init__(self, seconds: Optional[float]):
        self.expires_at = time.monotonic() + seconds if seconds is not None else None

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at


class PackManager:
    """Creates packs from uploaded files and manages their lifecycle."""

    def __init__(
        self,
        content_store: ContentStore,
        persistence: Persistence,
        embeddings: EmbeddingProvider,
        text_processor: TextProcessor,
        chunker: ChunkingService,
        max_file_bytes: int = 26214400,
        max_files_per_pack: int = 1000,
        allowed_mime_types: Optional[Sequence[str]] = None,
        batch_size: int = 10
    ):
        """
        Initialize pack manager.

        Args:
            content_store: Blob storage for files, chunk texts and manifests
            persistence: Metadata storage
            embeddings: Embedding provider for chunk vectors
            text_processor: Extractor dispatcher
            chunker: Chunking policy
            max_file_bytes: Per-file size limit
            max_files_per_pack: File count limit
            allowed_mime_types: MIME allow-list (None = text, PDF and common images)
            batch_size: Chunks processed concurrently per batch
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        self.content_store = content_store
        self.persistence = persistence
        self.embeddings = embeddings
        self.text_processor = text_processor
        self.chunker = chunker
        self.max_file_bytes = max_file_bytes
        self.max_files_per_pack = max_files_per_pack
        self.allowed_mime_types = list(
            allowed_mime_types if allowed_mime_types is not None else DEFAULT_ALLOWED_MIME_TYPES
        )
        self.batch_size = batch_size
        self.events = StructuredLogger(logger)

    # ========================================================================
    # Ingestion
    # ========================================================================

    def validate_request(self, request: UploadRequest) -> None:
        """
        Reject malformed requests before any side effect.

        Raises:
            ValidationError: On the first violated limit
        """
        if not request.title or not request.title.strip():
            raise ValidationError("Title is required")

        if len(request.title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title must be {MAX_TITLE_LENGTH} characters or less")

        if not request.files:
            raise ValidationError("At least one file is required")

        if len(request.files) > self.max_files_per_pack:
            raise ValidationError(f"Too many files (max: {self.max_files_per_pack})")

        for file in request.files:
            if len(file.data) > self.max_file_bytes:
                raise ValidationError(
                    f"File {file.path} exceeds size limit ({self.max_file_bytes} bytes)",
                    {"path": file.path, "bytes": len(file.data)},
                )
            if file.mime not in self.allowed_mime_types:
                raise ValidationError(
                    f"File type not allowed: {file.mime}",
                    {"path": file.path, "mime": file.mime},
                )

    async def create_pack(
        self,
        owner_id: str,
        request: UploadRequest,
        deadline_seconds: Optional[float] = None
    ) -> IngestionResult:
        """
        Create a pack and ingest its files.

        The pack row is written before any file work. Per-file and
        per-chunk failures are recorded in the outcomes, never raised.

        Args:
            owner_id: Owner identity (authorization is the caller's job)
            request: Title, optional summary/tags, OCR flag and files
            deadline_seconds: Optional budget; once spent, remaining files
                and batches are skipped

        Returns:
            IngestionResult with one outcome per input file, in input order

        Raises:
            ValidationError: If the request is malformed (nothing is written)
            StorageError: If the pack row itself cannot be written
        """
        self.validate_request(request)

        deadline = _Deadline(deadline_seconds)
        tags = normalize_tags(request.tags)
        pack = Pack(
            pack_id=new_id(),
            owner_user_id=owner_id,
            title=request.title,
            summary=request.summary,
            tags=tags,
            visibility=Visibility.PRIVATE,
        )
        await self.persistence.create_pack(pack)
        self.events.info(
            "pack_created",
            {"pack_id": pack.pack_id, "owner": owner_id, "files": len(request.files)},
        )

        outcomes: List[FileOutcome] = []
        for file in request.files:
            if deadline.expired:
                outcomes.append(self._skipped_outcome(file))
                continue
            outcomes.append(await self._ingest_file(pack.pack_id, file, request.ocr, deadline))

        await self._write_manifest(pack, outcomes)

        failed = sum(1 for o in outcomes if o.error)
        self.events.info(
            "pack_ingested",
            {
                "pack_id": pack.pack_id,
                "files": len(outcomes),
                "failed_files": failed,
                "chunks": sum(o.chunks for o in outcomes),
            },
        )
        return IngestionResult(pack_id=pack.pack_id, files=outcomes)

    def _skipped_outcome(self, file: UploadFile) -> FileOutcome:
        logger.warning(f"Skipping {file.path}: {DEADLINE_EXCEEDED}")
        return FileOutcome(
            path=file.path,
            mime=file.mime,
            bytes=len(file.data),
            sha256="",
            content_id="",
            indexed=False,
            chunks=0,
            error=DEADLINE_EXCEEDED,
        )

    async def _ingest_file(
        self,
        pack_id: str,
        file: UploadFile,
        ocr: bool,
        deadline: _Deadline
    ) -> FileOutcome:
        outcome = FileOutcome(
            path=file.path,
            mime=file.mime,
            bytes=len(file.data),
            sha256="",
            content_id="",
            indexed=False,
            chunks=0,
        )

        try:
            # Hashing and upload are independent; both finish before the document row
            file_hash, blob = await asyncio.gather(
                asyncio.to_thread(sha256_hex, file.data),
                self.content_store.put(file.data, content_type=file.mime, path_hint=file.path),
            )
            outcome.sha256 = file_hash
            outcome.content_id = blob.content_id

            document = Document(
                doc_id=new_id(),
                pack_id=pack_id,
                path=file.path,
                mime=file.mime,
                bytes=len(file.data),
                sha256=file_hash,
                content_id=blob.content_id,
            )
            await self.persistence.create_document(document)
            logger.info(f"Uploaded {file.path} as {blob.content_id}")

            if not self.text_processor.is_supported(file.mime):
                logger.info(f"Skipped indexing {file.path} (unsupported type {file.mime})")
                return outcome

            extracted = await self.text_processor.extract_text(file.data, file.mime, ocr=ocr)
            if not extracted.text.strip():
                logger.info(f"No text extracted from {file.path}")
                return outcome

            chunks = self.chunker.chunk_text(extracted.text)
            if not chunks:
                return outcome

            processed, completed = await self._index_chunks(document, chunks, deadline)
            outcome.chunks = processed
            outcome.indexed = processed > 0

            if not completed:
                outcome.error = DEADLINE_EXCEEDED
            elif processed == 0:
                outcome.error = f"All {len(chunks)} chunks failed to index"

            logger.info(f"Indexed {processed}/{len(chunks)} chunks for {file.path}")

        except Exception as e:
            logger.error(f"Failed to process file {file.path}: {e}", exc_info=True)
            outcome.indexed = False
            outcome.chunks = 0
            outcome.error = str(e) or type(e).__name__

        return outcome

    async def _index_chunks(
        self,
        document: Document,
        chunks: List[str],
        deadline: _Deadline
    ):
        """
        Process chunks in sequential batches of concurrent work.

        Uploads and embeddings run concurrently within a batch; the
        resulting rows are written afterwards in chunker order so the
        persisted chunk indices stay contiguous when a chunk fails.

        Returns:
            (chunks persisted, whether every batch was started)
        """
        next_index = 0

        for batch_start in range(0, len(chunks), self.batch_size):
            if deadline.expired:
                logger.warning(
                    f"Deadline reached for {document.path}; "
                    f"skipping chunks {batch_start}..{len(chunks) - 1}"
                )
                return next_index, False

            batch = chunks[batch_start:batch_start + self.batch_size]
            prepared = await asyncio.gather(*[
                self._prepare_chunk(document, batch_start + offset, text, len(chunks))
                for offset, text in enumerate(batch)
            ])

            for text, result in zip(batch, prepared):
                if result is None:
                    continue
                content_id, embedding = result
                try:
                    await self.persistence.create_chunk(Chunk(
                        chunk_id=new_id(),
                        pack_id=document.pack_id,
                        doc_id=document.doc_id,
                        chunk_index=next_index,
                        embedding=embedding,
                        content_id=content_id,
                        text=text,
                    ))
                except Exception as e:
                    logger.warning(f"Failed to record chunk {next_index} of {document.path}: {e}")
                    continue
                next_index += 1

        return next_index, True

    async def _prepare_chunk(
        self,
        document: Document,
        position: int,
        text: str,
        total: int
    ) -> Optional[Tuple[str, List[float]]]:
        """Upload a chunk blob and embed its text; None when either step fails."""
        try:
            upload, embedding = await asyncio.gather(
                self.content_store.put(
                    text.encode("utf-8"),
                    content_type="text/plain",
                    path_hint=f"{document.pack_id}/{document.doc_id}/chunk_{position}",
                ),
                self.embeddings.embed(text),
                return_exceptions=True,
            )
            for result in (upload, embedding):
                if isinstance(result, BaseException):
                    raise result

            if len(embedding) != self.embeddings.dimension():
                raise EmbeddingError(
                    f"Embedding has {len(embedding)} dimensions, "
                    f"expected {self.embeddings.dimension()}"
                )

            logger.debug(f"Chunk {position + 1}/{total} of {document.path} -> {upload.content_id}")
            return upload.content_id, embedding

        except Exception as e:
            logger.warning(f"Failed to process chunk {position} of {document.path}: {e}")
            return None

    async def _write_manifest(self, pack: Pack, outcomes: List[FileOutcome]) -> None:
        manifest = Manifest(
            pack_id=pack.pack_id,
            title=pack.title,
            summary=pack.summary,
            tags=pack.tags,
            created_at=utcnow(),
            files=outcomes,
        )
        try:
            blob = await self.content_store.put(
                manifest.to_json(),
                content_type="application/json",
                path_hint=f"{pack.pack_id}/manifest.json",
            )
            await self.persistence.update_pack_manifest(pack.pack_id, blob.content_id)
            pack.manifest_content_id = blob.content_id
            logger.info(f"Manifest uploaded for {pack.pack_id}: {blob.content_id}")
        except Exception as e:
            logger.error(f"Failed to upload manifest for {pack.pack_id}: {e}")

    # ========================================================================
    # Administration
    # ========================================================================

    async def _owned_pack(self, pack_id: str, requester_id: str) -> Pack:
        pack = await self.persistence.get_pack(pack_id)
        if pack is None:
            raise NotFoundError("Pack not found", {"pack_id": pack_id})
        if pack.owner_user_id != requester_id:
            raise ForbiddenError("Not authorized", {"pack_id": pack_id})
        return pack

    async def get_pack(self, pack_id: str, requester_id: Optional[str] = None) -> PackDetails:
        """
        Fetch a pack with its documents.

        Private packs are visible only to their owner; public and
        unlisted packs are visible to anyone holding the id.

        Raises:
            NotFoundError: If the pack does not exist
            ForbiddenError: If the pack is private and not the requester's
        """
        pack = await self.persistence.get_pack(pack_id)
        if pack is None:
            raise NotFoundError("Pack not found", {"pack_id": pack_id})
        if pack.visibility == Visibility.PRIVATE and pack.owner_user_id != requester_id:
            raise ForbiddenError("Not authorized", {"pack_id": pack_id})

        documents = await self.persistence.list_documents(pack_id)
        return PackDetails(pack=pack, documents=documents)

    async def list_packs(self, owner_id: str) -> List[Pack]:
        return await self.persistence.list_packs(owner_id)

    async def list_public_packs(self, query: Optional[str] = None) -> List[Pack]:
        return await self.persistence.list_public_packs(query)

    async def update_visibility(
        self,
        pack_id: str,
        requester_id: str,
        visibility: Union[Visibility, str]
    ) -> Pack:
        """
        Change a pack's visibility. Owner only.

        Raises:
            ValidationError: If ``visibility`` is not a known value
            NotFoundError: If the pack does not exist
            ForbiddenError: If the requester is not the owner
        """
        try:
            target = Visibility(visibility)
        except ValueError:
            raise ValidationError(
                f"Invalid visibility: {visibility}. Must be one of: private, public, unlisted"
            )

        await self._owned_pack(pack_id, requester_id)
        updated = await self.persistence.update_pack_visibility(pack_id, target)
        if updated is None:
            raise NotFoundError("Pack not found", {"pack_id": pack_id})

        self.events.info("pack_visibility_changed", {"pack_id": pack_id, "visibility": target.value})
        return updated

    async def delete_pack(self, pack_id: str, requester_id: str) -> None:
        """Delete a pack with its documents and chunks. Owner only."""
        await self._owned_pack(pack_id, requester_id)
        await self.persistence.delete_pack(pack_id)
        self.events.info("pack_deleted", {"pack_id": pack_id})

    async def delete_document(self, pack_id: str, doc_id: str, requester_id: str) -> None:
        """Delete one document and its chunks. Owner only."""
        await self._owned_pack(pack_id, requester_id)

        document = await self.persistence.get_document(doc_id)
        if document is None or document.pack_id != pack_id:
            raise NotFoundError("Document not found", {"pack_id": pack_id, "doc_id": doc_id})

        await self.persistence.delete_document(doc_id)
        self.events.info("document_deleted", {"pack_id": pack_id, "doc_id": doc_id})
