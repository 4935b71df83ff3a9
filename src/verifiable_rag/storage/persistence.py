"""
Persistence contract and in-memory backend.

Persistence owns pack, document and chunk metadata plus embedding
vectors. Raw bytes live only in the content store.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from verifiable_rag.storage.models import (
    Chunk,
    Document,
    Pack,
    SearchCandidate,
    User,
    Visibility,
    utcnow,
)
from verifiable_rag.utils.hashing import new_id

logger = logging.getLogger("verifiable-rag.storage")

PUBLIC_PACK_LIMIT = 100


def pack_matches(pack: Pack, query: Optional[str]) -> bool:
    """Case-insensitive substring match on title or any tag."""
    if not query:
        return True
    needle = query.strip().lower()
    if needle in pack.title.lower():
        return True
    return any(needle in tag for tag in pack.tags)


class Persistence(ABC):
    """Contract for durable metadata storage."""

    # Packs

    @abstractmethod
    async def create_pack(self, pack: Pack) -> Pack:
        ...

    @abstractmethod
    async def get_pack(self, pack_id: str) -> Optional[Pack]:
        ...

    @abstractmethod
    async def list_packs(self, owner_user_id: str) -> List[Pack]:
        """Packs owned by a user, newest first."""

    @abstractmethod
    async def list_public_packs(
        self,
        query: Optional[str] = None,
        limit: int = PUBLIC_PACK_LIMIT,
    ) -> List[Pack]:
        """Public packs matching ``query`` on title or tags, newest first."""

    @abstractmethod
    async def update_pack_visibility(
        self,
        pack_id: str,
        visibility: Visibility,
    ) -> Optional[Pack]:
        ...

    @abstractmethod
    async def update_pack_manifest(
        self,
        pack_id: str,
        manifest_content_id: str,
    ) -> Optional[Pack]:
        ...

    @abstractmethod
    async def delete_pack(self, pack_id: str) -> bool:
        """Delete a pack with its documents and chunks."""

    # Documents

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        ...

    @abstractmethod
    async def get_document(self, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def list_documents(self, pack_id: str) -> List[Document]:
        ...

    @abstractmethod
    async def delete_document(self, doc_id: str) -> bool:
        """Delete a document with its chunks."""

    # Chunks

    @abstractmethod
    async def create_chunk(self, chunk: Chunk) -> Chunk:
        ...

    @abstractmethod
    async def list_chunks(self, pack_id: str) -> List[Chunk]:
        ...

    @abstractmethod
    async def list_search_candidates(
        self,
        pack_ids: Sequence[str],
        cap: int,
    ) -> List[SearchCandidate]:
        """
        Chunks of the given packs joined with their parent document.

        Rows come back ordered by document creation time, document id,
        then chunk index, and at most ``cap`` of them are returned.
        """

    # Users

    @abstractmethod
    async def create_user(self, email: str, user_id: Optional[str] = None) -> User:
        """Create a user, or return the existing one for this email."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    # Lifecycle

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "backend": type(self).__name__}


class InMemoryPersistence(Persistence):
    """
    Dict-backed persistence for tests and single-process development.

    Every method completes without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self):
        self.packs: Dict[str, Pack] = {}
        self.documents: Dict[str, Document] = {}
        self.chunks: Dict[str, Chunk] = {}
        self.users: Dict[str, User] = {}

    async def create_pack(self, pack: Pack) -> Pack:
        self.packs[pack.pack_id] = pack
        return pack

    async def get_pack(self, pack_id: str) -> Optional[Pack]:
        return self.packs.get(pack_id)

    async def list_packs(self, owner_user_id: str) -> List[Pack]:
        owned = [p for p in self.packs.values() if p.owner_user_id == owner_user_id]
        return sorted(owned, key=lambda p: p.created_at, reverse=True)

    async def list_public_packs(
        self,
        query: Optional[str] = None,
        limit: int = PUBLIC_PACK_LIMIT,
    ) -> List[Pack]:
        public = [
            p for p in self.packs.values()
            if p.visibility == Visibility.PUBLIC and pack_matches(p, query)
        ]
        public.sort(key=lambda p: p.created_at, reverse=True)
        return public[:limit]

    async def update_pack_visibility(
        self,
        pack_id: str,
        visibility: Visibility,
    ) -> Optional[Pack]:
        pack = self.packs.get(pack_id)
        if pack is None:
            return None
        pack.visibility = visibility
        pack.updated_at = utcnow()
        return pack

    async def update_pack_manifest(
        self,
        pack_id: str,
        manifest_content_id: str,
    ) -> Optional[Pack]:
        pack = self.packs.get(pack_id)
        if pack is None:
            return None
        pack.manifest_content_id = manifest_content_id
        pack.updated_at = utcnow()
        return pack

    async def delete_pack(self, pack_id: str) -> bool:
        if self.packs.pop(pack_id, None) is None:
            return False
        self.documents = {k: d for k, d in self.documents.items() if d.pack_id != pack_id}
        self.chunks = {k: c for k, c in self.chunks.items() if c.pack_id != pack_id}
        return True

    async def create_document(self, document: Document) -> Document:
        self.documents[document.doc_id] = document
        return document

    async def get_document(self, doc_id: str) -> Optional[Document]:
        return self.documents.get(doc_id)

    async def list_documents(self, pack_id: str) -> List[Document]:
        docs = [d for d in self.documents.values() if d.pack_id == pack_id]
        return sorted(docs, key=lambda d: (d.created_at, d.doc_id))

    async def delete_document(self, doc_id: str) -> bool:
        if self.documents.pop(doc_id, None) is None:
            return False
        self.chunks = {k: c for k, c in self.chunks.items() if c.doc_id != doc_id}
        return True

    async def create_chunk(self, chunk: Chunk) -> Chunk:
        self.chunks[chunk.chunk_id] = chunk
        return chunk

    async def list_chunks(self, pack_id: str) -> List[Chunk]:
        chunks = [c for c in self.chunks.values() if c.pack_id == pack_id]
        order = {d.doc_id: (d.created_at, d.doc_id) for d in self.documents.values()}
        return sorted(chunks, key=lambda c: (order[c.doc_id], c.chunk_index))

    async def list_search_candidates(
        self,
        pack_ids: Sequence[str],
        cap: int,
    ) -> List[SearchCandidate]:
        scope = set(pack_ids)
        rows = []
        for chunk in self.chunks.values():
            if chunk.pack_id not in scope:
                continue
            doc = self.documents.get(chunk.doc_id)
            if doc is None:
                continue
            rows.append((doc, chunk))

        rows.sort(key=lambda row: (row[0].created_at, row[0].doc_id, row[1].chunk_index))

        if len(rows) > cap:
            logger.warning(f"Candidate scan truncated to {cap} of {len(rows)} chunks")

        return [
            SearchCandidate(
                chunk=chunk,
                doc_content_id=doc.content_id,
                doc_sha256=doc.sha256,
                doc_path=doc.path,
            )
            for doc, chunk in rows[:cap]
        ]

    async def create_user(self, email: str, user_id: Optional[str] = None) -> User:
        existing = await self.get_user_by_email(email)
        if existing is not None:
            return existing
        user = User(user_id=user_id or new_id(), email=email.strip().lower())
        self.users[user.user_id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        needle = email.strip().lower()
        for user in self.users.values():
            if user.email == needle:
                return user
        return None


def create_persistence(config) -> Persistence:
    """
    Build the persistence backend selected by ``DATABASE_URL``.

    ``postgresql://`` and ``postgres://`` URLs select PostgreSQL; the
    caller must still ``await persistence.connect()``.
    """
    url = config.database_url
    if url.startswith(("postgresql://", "postgres://")):
        from verifiable_rag.storage.postgres_client import PostgresClient
        from verifiable_rag.storage.postgres_persistence import PostgresPersistence

        client = PostgresClient(
            dsn=url,
            min_pool_size=config.postgres_pool_min,
            max_pool_size=config.postgres_pool_max,
        )
        return PostgresPersistence(client)

    return InMemoryPersistence()
