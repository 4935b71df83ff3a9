"""PostgreSQL implementation of the persistence contract."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from verifiable_rag.storage.models import (
    Chunk,
    Document,
    Pack,
    SearchCandidate,
    User,
    Visibility,
)
from verifiable_rag.storage.persistence import PUBLIC_PACK_LIMIT, Persistence
from verifiable_rag.storage.postgres_client import PostgresClient
from verifiable_rag.utils.errors import StorageError
from verifiable_rag.utils.hashing import new_id

logger = logging.getLogger("verifiable-rag.storage")

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

PACK_COLUMNS = """
    pack_id, owner_user_id, title, summary, tags, visibility,
    created_at, updated_at, manifest_content_id
"""

DOCUMENT_COLUMNS = "doc_id, pack_id, path, mime, bytes, sha256, content_id, created_at"

CHUNK_COLUMNS = """
    c.chunk_id, c.pack_id, c.doc_id, c.chunk_index, c.content_id, c.text,
    c.start_byte, c.end_byte, c.embedding, c.created_at
"""


def row_to_pack(row: Dict[str, Any]) -> Pack:
    return Pack(
        pack_id=row["pack_id"],
        owner_user_id=row["owner_user_id"],
        title=row["title"],
        summary=row["summary"],
        tags=list(row["tags"] or []),
        visibility=Visibility(row["visibility"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        manifest_content_id=row["manifest_content_id"],
    )


def row_to_document(row: Dict[str, Any]) -> Document:
    return Document(
        doc_id=row["doc_id"],
        pack_id=row["pack_id"],
        path=row["path"],
        mime=row["mime"],
        bytes=row["bytes"],
        sha256=row["sha256"],
        content_id=row["content_id"],
        created_at=row["created_at"],
    )


def row_to_chunk(row: Dict[str, Any]) -> Chunk:
    return Chunk(
        chunk_id=row["chunk_id"],
        pack_id=row["pack_id"],
        doc_id=row["doc_id"],
        chunk_index=row["chunk_index"],
        embedding=list(row["embedding"]),
        content_id=row["content_id"],
        text=row["text"],
        start_byte=row["start_byte"],
        end_byte=row["end_byte"],
        created_at=row["created_at"],
    )


class PostgresPersistence(Persistence):
    """Persistence backed by asyncpg; every write is a single statement."""

    def __init__(self, pg_client: PostgresClient, apply_schema: bool = True):
        """
        Initialize Postgres persistence.

        Args:
            pg_client: Postgres client instance (connected in ``connect``)
            apply_schema: Run schema.sql on connect (statements are idempotent)
        """
        self.pg = pg_client
        self.apply_schema = apply_schema

    async def connect(self) -> None:
        if not self.pg.is_connected:
            await self.pg.connect()
        if self.apply_schema:
            await self.pg.execute_script(SCHEMA_PATH.read_text())
            logger.info("Database schema applied")

    async def close(self) -> None:
        await self.pg.close()

    async def health_check(self) -> Dict[str, Any]:
        health = await self.pg.health_check()
        health["backend"] = "postgres"
        return health

    async def _fetch_one(self, query: str, *args) -> Optional[Dict[str, Any]]:
        try:
            return await self.pg.fetch_one(query, *args)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Database query failed: {e}", cause=e)

    async def _fetch_all(self, query: str, *args) -> List[Dict[str, Any]]:
        try:
            return await self.pg.fetch_all(query, *args)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Database query failed: {e}", cause=e)

    async def _execute(self, query: str, *args) -> str:
        try:
            return await self.pg.execute(query, *args)
        except asyncpg.PostgresError as e:
            raise StorageError(f"Database write failed: {e}", cause=e)

    # ========================================================================
    # Packs
    # ========================================================================

    async def create_pack(self, pack: Pack) -> Pack:
        query = f"""
        INSERT INTO packs (pack_id, owner_user_id, title, summary, tags, visibility, created_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        RETURNING {PACK_COLUMNS}
        """
        row = await self._fetch_one(
            query,
            pack.pack_id,
            pack.owner_user_id,
            pack.title,
            pack.summary,
            pack.tags,
            pack.visibility.value,
            pack.created_at,
        )
        return row_to_pack(row)

    async def get_pack(self, pack_id: str) -> Optional[Pack]:
        row = await self._fetch_one(
            f"SELECT {PACK_COLUMNS} FROM packs WHERE pack_id = $1", pack_id
        )
        return row_to_pack(row) if row else None

    async def list_packs(self, owner_user_id: str) -> List[Pack]:
        rows = await self._fetch_all(
            f"""
            SELECT {PACK_COLUMNS} FROM packs
            WHERE owner_user_id = $1
            ORDER BY created_at DESC
            """,
            owner_user_id,
        )
        return [row_to_pack(row) for row in rows]

    async def list_public_packs(
        self,
        query: Optional[str] = None,
        limit: int = PUBLIC_PACK_LIMIT,
    ) -> List[Pack]:
        if query and query.strip():
            pattern = f"%{query.strip().lower()}%"
            rows = await self._fetch_all(
                f"""
                SELECT {PACK_COLUMNS} FROM packs
                WHERE visibility = 'public'
                  AND (lower(title) LIKE $1
                       OR EXISTS (SELECT 1 FROM unnest(tags) AS t WHERE t LIKE $1))
                ORDER BY created_at DESC
                LIMIT $2
                """,
                pattern,
                limit,
            )
        else:
            rows = await self._fetch_all(
                f"""
                SELECT {PACK_COLUMNS} FROM packs
                WHERE visibility = 'public'
                ORDER BY created_at DESC
                LIMIT $1
                """,
                limit,
            )
        return [row_to_pack(row) for row in rows]

    async def update_pack_visibility(
        self,
        pack_id: str,
        visibility: Visibility,
    ) -> Optional[Pack]:
        row = await self._fetch_one(
            f"""
            UPDATE packs SET visibility = $2, updated_at = now()
            WHERE pack_id = $1
            RETURNING {PACK_COLUMNS}
            """,
            pack_id,
            visibility.value,
        )
        return row_to_pack(row) if row else None

    async def update_pack_manifest(
        self,
        pack_id: str,
        manifest_content_id: str,
    ) -> Optional[Pack]:
        row = await self._fetch_one(
            f"""
            UPDATE packs SET manifest_content_id = $2, updated_at = now()
            WHERE pack_id = $1
            RETURNING {PACK_COLUMNS}
            """,
            pack_id,
            manifest_content_id,
        )
        return row_to_pack(row) if row else None

    async def delete_pack(self, pack_id: str) -> bool:
        # documents and chunks go through ON DELETE CASCADE
        status = await self._execute("DELETE FROM packs WHERE pack_id = $1", pack_id)
        return status != "DELETE 0"

    # ========================================================================
    # Documents
    # ========================================================================

    async def create_document(self, document: Document) -> Document:
        row = await self._fetch_one(
            f"""
            INSERT INTO documents ({DOCUMENT_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING {DOCUMENT_COLUMNS}
            """,
            document.doc_id,
            document.pack_id,
            document.path,
            document.mime,
            document.bytes,
            document.sha256,
            document.content_id,
            document.created_at,
        )
        return row_to_document(row)

    async def get_document(self, doc_id: str) -> Optional[Document]:
        row = await self._fetch_one(
            f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE doc_id = $1", doc_id
        )
        return row_to_document(row) if row else None

    async def list_documents(self, pack_id: str) -> List[Document]:
        rows = await self._fetch_all(
            f"""
            SELECT {DOCUMENT_COLUMNS} FROM documents
            WHERE pack_id = $1
            ORDER BY created_at, doc_id
            """,
            pack_id,
        )
        return [row_to_document(row) for row in rows]

    async def delete_document(self, doc_id: str) -> bool:
        status = await self._execute("DELETE FROM documents WHERE doc_id = $1", doc_id)
        return status != "DELETE 0"

    # ========================================================================
    # Chunks
    # ========================================================================

    async def create_chunk(self, chunk: Chunk) -> Chunk:
        await self._execute(
            """
            INSERT INTO chunks (
                chunk_id, pack_id, doc_id, chunk_index, content_id, text,
                start_byte, end_byte, embedding, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            chunk.chunk_id,
            chunk.pack_id,
            chunk.doc_id,
            chunk.chunk_index,
            chunk.content_id,
            chunk.text,
            chunk.start_byte,
            chunk.end_byte,
            list(chunk.embedding),
            chunk.created_at,
        )
        return chunk

    async def list_chunks(self, pack_id: str) -> List[Chunk]:
        rows = await self._fetch_all(
            f"""
            SELECT {CHUNK_COLUMNS}
            FROM chunks c
            JOIN documents d ON d.doc_id = c.doc_id
            WHERE c.pack_id = $1
            ORDER BY d.created_at, d.doc_id, c.chunk_index
            """,
            pack_id,
        )
        return [row_to_chunk(row) for row in rows]

    async def list_search_candidates(
        self,
        pack_ids: Sequence[str],
        cap: int,
    ) -> List[SearchCandidate]:
        if not pack_ids:
            return []

        rows = await self._fetch_all(
            f"""
            SELECT {CHUNK_COLUMNS},
                   d.content_id AS doc_content_id,
                   d.sha256 AS doc_sha256,
                   d.path AS doc_path
            FROM chunks c
            JOIN documents d ON d.doc_id = c.doc_id
            WHERE c.pack_id = ANY($1::text[])
            ORDER BY d.created_at, d.doc_id, c.chunk_index
            LIMIT $2
            """,
            list(pack_ids),
            cap,
        )

        if len(rows) == cap:
            logger.warning(f"Candidate scan reached cap of {cap} chunks")

        return [
            SearchCandidate(
                chunk=row_to_chunk(row),
                doc_content_id=row["doc_content_id"],
                doc_sha256=row["doc_sha256"],
                doc_path=row["doc_path"],
            )
            for row in rows
        ]

    # ========================================================================
    # Users
    # ========================================================================

    async def create_user(self, email: str, user_id: Optional[str] = None) -> User:
        normalized = email.strip().lower()
        row = await self._fetch_one(
            """
            INSERT INTO users (user_id, email)
            VALUES ($1, $2)
            ON CONFLICT (email) DO NOTHING
            RETURNING user_id, email, created_at
            """,
            user_id or new_id(),
            normalized,
        )
        if row is None:
            return await self.get_user_by_email(normalized)
        return User(**row)

    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self._fetch_one(
            "SELECT user_id, email, created_at FROM users WHERE user_id = $1", user_id
        )
        return User(**row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        row = await self._fetch_one(
            "SELECT user_id, email, created_at FROM users WHERE email = $1",
            email.strip().lower(),
        )
        return User(**row) if row else None
