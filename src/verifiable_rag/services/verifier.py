"""Blob integrity verification against the content store."""

import asyncio
import logging
from typing import List

from verifiable_rag.storage.content_store import ContentStore
from verifiable_rag.storage.models import VerificationRequest, VerificationResult
from verifiable_rag.utils.hashing import sha256_hex


logger = logging.getLogger("verifiable-rag.verifier")


class Verifier:
    """Re-fetches stored bytes and recomputes their SHA-256."""

    def __init__(self, content_store: ContentStore):
        self.content_store = content_store

    async def verify(self, request: VerificationRequest) -> VerificationResult:
        """
        Verify one blob.

        A hash mismatch is a normal result (``ok`` False), not an error.

        Args:
            request: Content id and optional expected hash

        Returns:
            VerificationResult; ``matched`` is None when no hash was expected

        Raises:
            NotFoundError: If the content id is unknown
            StorageError: If the fetch fails
        """
        data = await self.content_store.get(request.content_id)
        computed = await asyncio.to_thread(sha256_hex, data)

        matched = None
        if request.expected_sha256:
            matched = computed == request.expected_sha256

        if matched is None:
            logger.info(f"Hash computed for {request.content_id}")
        elif matched:
            logger.info(f"Hash matched for {request.content_id}")
        else:
            logger.warning(
                f"Hash mismatch for {request.content_id}: "
                f"expected {request.expected_sha256}, computed {computed}"
            )

        return VerificationResult(
            content_id=request.content_id,
            computed_sha256=computed,
            ok=True if matched is None else matched,
            expected_sha256=request.expected_sha256,
            matched=matched,
        )

    async def verify_batch(self, requests: List[VerificationRequest]) -> List[VerificationResult]:
        """
        Verify each request independently, in order.

        A failed fetch becomes a result with ``ok`` False and ``error`` set;
        it never aborts the remaining requests.
        """
        results = []
        for request in requests:
            try:
                results.append(await self.verify(request))
            except Exception as e:
                logger.error(f"Verification failed for {request.content_id}: {e}")
                results.append(VerificationResult(
                    content_id=request.content_id,
                    computed_sha256="",
                    ok=False,
                    expected_sha256=request.expected_sha256,
                    matched=False if request.expected_sha256 else None,
                    error=str(e) or type(e).__name__,
                ))
        return results
