"""
Query engine: retrieval-augmented answers with verifiable citations.

Retrieval is an exhaustive cosine scan over every candidate chunk in
scope. Citations carry the parent document's content id and SHA-256 so
a client can re-verify them against the content store.
"""

import logging
from typing import List, Optional, Sequence

from verifiable_rag.services.answer_service import AnswerProvider
from verifiable_rag.services.embedding_service import EmbeddingProvider
from verifiable_rag.storage.content_store import ContentStore
from verifiable_rag.storage.models import (
    Citation,
    QueryRequest,
    QueryResult,
    SearchCandidate,
    Visibility,
)
from verifiable_rag.storage.persistence import Persistence
from verifiable_rag.utils.errors import ForbiddenError, NotFoundError, ValidationError
from verifiable_rag.utils.helpers import stopwatch
from verifiable_rag.utils.logging import StructuredLogger
from verifiable_rag.utils.vectors import rank_by_similarity


logger = logging.getLogger("verifiable-rag.query")

MAX_QUESTION_LENGTH = 500
SNIPPET_LENGTH = 220

NO_PACKS_ANSWER = "You have no packs yet. Please upload some documents first."
NO_RESULTS_ANSWER = "No relevant information found in the selected packs."
NO_ANSWER = "No answer generated."

SYSTEM_PROMPT = """You are a helpful assistant that answers questions based on provided context.

IMPORTANT RULES:
1. ONLY use information from the provided context to answer
2. If the context doesn't contain relevant information, say so
3. Be concise but comprehensive
4. Reference specific context items when making claims (e.g., "According to [1]...")
5. If multiple context items support a claim, mention them all

Do NOT:
- Make up information not in the context
- Use your general knowledge unless the context is insufficient
- Provide citations for general knowledge"""


def make_snippet(text: str, length: int = SNIPPET_LENGTH) -> str:
    """First ``length`` characters, with "..." appended when truncated."""
    if len(text) > length:
        return text[:length] + "..."
    return text


def build_user_prompt(question: str, contexts: Sequence[str]) -> str:
    """Numbered context list (1-based) followed by the question."""
    context_text = "\n\n".join(f"[{i}] {text}" for i, text in enumerate(contexts, start=1))
    return f"Context:\n{context_text}\n\nQuestion: {question}\n\nAnswer:"


class QueryEngine:
    """Answers questions over a requester's packs or a public pack."""

    def __init__(
        self,
        persistence: Persistence,
        embeddings: EmbeddingProvider,
        answers: AnswerProvider,
        content_store: Optional[ContentStore] = None,
        default_k: int = 5,
        candidate_cap: int = 5000
    ):
        """
        Initialize query engine.

        Args:
            persistence: Source of packs and search candidates
            embeddings: Embeds the question (must match ingestion's provider)
            answers: Composes the final answer
            content_store: Used to load chunk text not stored inline
            default_k: Result count when a request gives none
            candidate_cap: Maximum chunks scanned per query
        """
        self.persistence = persistence
        self.embeddings = embeddings
        self.answers = answers
        self.content_store = content_store
        self.default_k = default_k
        self.candidate_cap = candidate_cap
        self.events = StructuredLogger(logger)

    def validate_query(self, request: QueryRequest) -> None:
        if not request.question or not request.question.strip():
            raise ValidationError("Question is required")

        if len(request.question) > MAX_QUESTION_LENGTH:
            raise ValidationError(f"Question is too long (max {MAX_QUESTION_LENGTH} characters)")

        if request.max_results is not None and request.max_results < 1:
            raise ValidationError(f"max_results must be at least 1, got {request.max_results}")

    async def query_private(self, user_id: str, request: QueryRequest) -> QueryResult:
        """
        Query one accessible pack, or every pack the user owns.

        Raises:
            ValidationError: Malformed question or result count
            NotFoundError: ``pack_id`` does not exist
            ForbiddenError: Pack is neither owned by the user nor public
            UpstreamError: Embedding or answer provider failure
        """
        self.validate_query(request)

        with stopwatch() as watch:
            if request.pack_id:
                pack = await self.persistence.get_pack(request.pack_id)
                if pack is None:
                    raise NotFoundError("Pack not found", {"pack_id": request.pack_id})
                if pack.owner_user_id != user_id and pack.visibility != Visibility.PUBLIC:
                    raise ForbiddenError("Access denied", {"pack_id": request.pack_id})
                pack_ids = [pack.pack_id]
            else:
                packs = await self.persistence.list_packs(user_id)
                pack_ids = [p.pack_id for p in packs]
                if not pack_ids:
                    return QueryResult(answer=NO_PACKS_ANSWER, citations=[], elapsed_ms=0)

            answer, citations = await self._execute(request.question, pack_ids, request.max_results)

        return self._finish(answer, citations, pack_ids, watch.elapsed_ms)

    async def query_public(self, request: QueryRequest) -> QueryResult:
        """
        Query a public pack without identity.

        Raises:
            ValidationError: Missing ``pack_id`` or malformed question
            NotFoundError: Pack does not exist
            ForbiddenError: Pack is not public
        """
        self.validate_query(request)

        if not request.pack_id:
            raise ValidationError("pack_id is required for public queries")

        with stopwatch() as watch:
            pack = await self.persistence.get_pack(request.pack_id)
            if pack is None:
                raise NotFoundError("Pack not found", {"pack_id": request.pack_id})
            if pack.visibility != Visibility.PUBLIC:
                raise ForbiddenError("Pack is not public", {"pack_id": request.pack_id})

            answer, citations = await self._execute(
                request.question, [pack.pack_id], request.max_results
            )

        return self._finish(answer, citations, [pack.pack_id], watch.elapsed_ms)

    def _finish(
        self,
        answer: str,
        citations: List[Citation],
        pack_ids: List[str],
        elapsed_ms: int
    ) -> QueryResult:
        self.events.info(
            "query_answered",
            {"packs": len(pack_ids), "citations": len(citations), "elapsed_ms": elapsed_ms},
        )
        return QueryResult(answer=answer, citations=citations, elapsed_ms=elapsed_ms)

    async def _execute(
        self,
        question: str,
        pack_ids: List[str],
        max_results: Optional[int]
    ):
        k = max_results or self.default_k

        question_embedding = await self.embeddings.embed(question)

        candidates = await self.persistence.list_search_candidates(pack_ids, self.candidate_cap)
        logger.info(f"Scoring {len(candidates)} candidates across {len(pack_ids)} pack(s)")

        ranked = rank_by_similarity(
            question_embedding,
            candidates,
            lambda candidate: candidate.chunk.embedding,
            k,
        )

        if not ranked:
            return NO_RESULTS_ANSWER, []

        texts = [await self._chunk_text(candidate) for candidate, _ in ranked]

        answer = await self.answers.complete(SYSTEM_PROMPT, build_user_prompt(question, texts))

        citations = [
            Citation(
                content_id=candidate.doc_content_id,
                sha256=candidate.doc_sha256,
                snippet=make_snippet(text),
                doc_path=candidate.doc_path,
                score=score,
                start_byte=candidate.chunk.start_byte,
                end_byte=candidate.chunk.end_byte,
            )
            for (candidate, score), text in zip(ranked, texts)
        ]

        return answer or NO_ANSWER, citations

    async def _chunk_text(self, candidate: SearchCandidate) -> str:
        chunk = candidate.chunk
        if chunk.text is not None:
            return chunk.text
        if chunk.content_id and self.content_store is not None:
            data = await self.content_store.get(chunk.content_id)
            return data.decode("utf-8", errors="replace")
        logger.warning(f"Chunk {chunk.chunk_id} has no retrievable text")
        return ""
