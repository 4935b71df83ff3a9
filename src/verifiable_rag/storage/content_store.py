"""
Content store backends.

A content store keeps raw bytes and hands back an opaque id plus the
SHA-256 of what it stored. Both backends here address blobs by their
hash, so equal bytes share one id.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from verifiable_rag.storage.models import BlobMetadata, StoredBlob, utcnow
from verifiable_rag.utils.errors import NotFoundError, StorageError
from verifiable_rag.utils.hashing import new_id, sha256_hex

logger = logging.getLogger("verifiable-rag.storage")


class ContentStore(ABC):
    """Contract for blob storage."""

    @abstractmethod
    async def put(
        self,
        data: bytes,
        content_type: Optional[str] = None,
        path_hint: Optional[str] = None,
    ) -> StoredBlob:
        """
        Store bytes.

        Args:
            data: Raw bytes
            content_type: Optional MIME type recorded with the blob
            path_hint: Optional original path, informational only

        Returns:
            StoredBlob with id, hash and size

        Raises:
            StorageError: If the write fails
        """

    @abstractmethod
    async def get(self, content_id: str) -> bytes:
        """
        Fetch stored bytes.

        Raises:
            NotFoundError: If no blob has this id
            StorageError: If the read fails
        """

    @abstractmethod
    async def exists(self, content_id: str) -> bool:
        ...

    @abstractmethod
    async def metadata(self, content_id: str) -> BlobMetadata:
        ...

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "backend": type(self).__name__}


class InMemoryContentStore(ContentStore):
    """Process-local store for tests and development."""

    def __init__(self):
        self._blobs: Dict[str, Tuple[bytes, BlobMetadata]] = {}

    async def put(
        self,
        data: bytes,
        content_type: Optional[str] = None,
        path_hint: Optional[str] = None,
    ) -> StoredBlob:
        digest = sha256_hex(data)
        if digest not in self._blobs:
            self._blobs[digest] = (
                bytes(data),
                BlobMetadata(
                    content_id=digest,
                    size=len(data),
                    content_type=content_type,
                    created_at=utcnow(),
                ),
            )
        return StoredBlob(content_id=digest, sha256=digest, size=len(data))

    async def get(self, content_id: str) -> bytes:
        try:
            return self._blobs[content_id][0]
        except KeyError:
            raise NotFoundError(f"Content not found: {content_id}", {"content_id": content_id})

    async def exists(self, content_id: str) -> bool:
        return content_id in self._blobs

    async def metadata(self, content_id: str) -> BlobMetadata:
        try:
            return self._blobs[content_id][1]
        except KeyError:
            raise NotFoundError(f"Content not found: {content_id}", {"content_id": content_id})


class FilesystemContentStore(ContentStore):
    """
    Directory-backed store.

    Layout: ``<root>/<id[:2]>/<id>`` for bytes with a ``.json`` sidecar
    holding metadata. Disk IO runs in worker threads.
    """

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)

    def _blob_path(self, content_id: str) -> Path:
        # Ids are hex digests; anything else cannot name a blob here
        if len(content_id) < 3 or not all(c in "0123456789abcdef" for c in content_id):
            raise NotFoundError(f"Content not found: {content_id}", {"content_id": content_id})
        return self.root / content_id[:2] / content_id

    def _write(self, digest: str, data: bytes, content_type: Optional[str]) -> None:
        path = self._blob_path(digest)
        if path.exists():
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{digest}.{new_id()}.tmp")
        tmp.write_bytes(data)
        tmp.replace(path)
        meta = {
            "content_id": digest,
            "size": len(data),
            "content_type": content_type,
            "created_at": utcnow().isoformat(),
        }
        path.with_suffix(".json").write_text(json.dumps(meta))

    async def put(
        self,
        data: bytes,
        content_type: Optional[str] = None,
        path_hint: Optional[str] = None,
    ) -> StoredBlob:
        digest = sha256_hex(data)
        try:
            await asyncio.to_thread(self._write, digest, data, content_type)
        except OSError as e:
            raise StorageError(
                f"Failed to store blob: {e}",
                {"path_hint": path_hint or ""},
                cause=e,
            )
        logger.debug(f"Stored {len(data)} bytes as {digest[:12]} ({path_hint or 'no path'})")
        return StoredBlob(content_id=digest, sha256=digest, size=len(data))

    async def get(self, content_id: str) -> bytes:
        path = self._blob_path(content_id)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError(f"Content not found: {content_id}", {"content_id": content_id})
        except OSError as e:
            raise StorageError(f"Failed to read blob {content_id}: {e}", cause=e)

    async def exists(self, content_id: str) -> bool:
        try:
            path = self._blob_path(content_id)
        except NotFoundError:
            return False
        return await asyncio.to_thread(path.exists)

    async def metadata(self, content_id: str) -> BlobMetadata:
        path = self._blob_path(content_id)
        try:
            raw = await asyncio.to_thread(path.with_suffix(".json").read_text)
        except FileNotFoundError:
            raise NotFoundError(f"Content not found: {content_id}", {"content_id": content_id})
        except OSError as e:
            raise StorageError(f"Failed to read metadata for {content_id}: {e}", cause=e)

        meta = json.loads(raw)
        created_at = meta.get("created_at")
        return BlobMetadata(
            content_id=content_id,
            size=meta["size"],
            content_type=meta.get("content_type"),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )

    async def health_check(self) -> Dict[str, Any]:
        try:
            await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            return {"status": "unhealthy", "backend": "filesystem", "error": str(e)}
        return {"status": "healthy", "backend": "filesystem", "root": str(self.root)}


def create_content_store(config) -> ContentStore:
    """Build the content store selected by ``CONTENT_STORE_BACKEND``."""
    if config.content_store_backend == "memory":
        return InMemoryContentStore()
    return FilesystemContentStore(config.content_store_dir)
