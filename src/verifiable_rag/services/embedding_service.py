"""Embedding providers: OpenAI with retry logic, and a local hash-based provider."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import List

import openai
import tiktoken
from openai import AsyncOpenAI

from verifiable_rag.utils.errors import ConfigurationError, EmbeddingError, ValidationError
from verifiable_rag.utils.hashing import sha256_text


logger = logging.getLogger("verifiable-rag.embedding")

MAX_INPUT_TOKENS = 8191


class EmbeddingProvider(ABC):
    """Text to fixed-length vector."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """
        Embed one text.

        Raises:
            ValidationError: If the text is empty
            EmbeddingError: If the provider fails
        """

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts; output order matches input order."""
        return [await self.embed(text) for text in texts]

    @abstractmethod
    def dimension(self) -> int:
        ...

    @abstractmethod
    def name(self) -> str:
        ...


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings with exponential backoff on transient failures."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        timeout: int = 30,
        max_retries: int = 3,
        batch_size: int = 100,
        initial_backoff: float = 1.0
    ):
        """
        Initialize embedding provider.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            dimensions: Embedding dimensions
            timeout: Request timeout (seconds)
            max_retries: Max attempts for transient failures
            batch_size: Max texts per request (≤2048 per OpenAI limit)
            initial_backoff: First retry delay in seconds, doubled per retry
        """
        if not api_key:
            raise ConfigurationError("OpenAI API key is required")

        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.max_retries = max_retries
        self.batch_size = min(batch_size, 2048)  # OpenAI limit
        self.initial_backoff = initial_backoff

    @property
    def encoding(self):
        return tiktoken.get_encoding("cl100k_base")

    def dimension(self) -> int:
        return self.dimensions

    def name(self) -> str:
        return f"openai:{self.model}"

    def _truncate(self, text: str) -> str:
        # Every token spans at least one UTF-8 byte
        if len(text.encode("utf-8")) <= MAX_INPUT_TOKENS:
            return text
        tokens = self.encoding.encode(text)
        if len(tokens) <= MAX_INPUT_TOKENS:
            return text
        logger.warning(f"Truncating embedding input from {len(tokens)} to {MAX_INPUT_TOKENS} tokens")
        return self.encoding.decode(tokens[:MAX_INPUT_TOKENS])

    async def embed(self, text: str) -> List[float]:
        """
        Generate single embedding with retry logic.

        Args:
            text: Text to embed (truncated to 8191 tokens)

        Returns:
            Embedding vector (dimensions as configured)

        Raises:
            ValidationError: Empty text or rejected input
            ConfigurationError: Invalid API key
            EmbeddingError: Generation failed after retries
        """
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        try:
            start_time = time.time()

            response = await self._call_with_retry(
                self.client.embeddings.create,
                input=[self._truncate(text)],
                model=self.model,
                dimensions=self.dimensions
            )

            embedding = list(response.data[0].embedding)
            latency_ms = int((time.time() - start_time) * 1000)

            logger.debug(
                f"Generated embedding: model={self.model}, "
                f"dims={self.dimensions}, latency={latency_ms}ms"
            )

            return embedding

        except (ValidationError, ConfigurationError, EmbeddingError):
            raise
        except Exception as e:
            logger.error(f"Embedding generation failed: {e}")
            raise EmbeddingError(f"Failed to generate embedding: {e}", cause=e)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Splits into requests of ``batch_size`` texts; results are ordered
        by the ``index`` the API reports, so output order matches input.

        Raises:
            ValidationError: If any text is empty
            EmbeddingError: Generation failed after retries
        """
        if not texts:
            return []

        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise ValidationError(f"Text at index {i} is empty")

        all_embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = [self._truncate(t) for t in texts[i:i + self.batch_size]]
            batch_num = i // self.batch_size + 1

            try:
                response = await self._call_with_retry(
                    self.client.embeddings.create,
                    input=batch,
                    model=self.model,
                    dimensions=self.dimensions
                )
            except (ValidationError, ConfigurationError, EmbeddingError):
                raise
            except Exception as e:
                logger.error(f"Embedding batch {batch_num} failed: {e}")
                raise EmbeddingError(
                    f"Failed to generate embeddings for batch {batch_num}: {e}", cause=e
                )

            ordered = sorted(response.data, key=lambda item: item.index)
            all_embeddings.extend(list(item.embedding) for item in ordered)

        return all_embeddings

    async def _call_with_retry(self, func, *args, **kwargs):
        """
        Await ``func`` with exponential backoff retry logic.

        Raises:
            ConfigurationError: For auth errors (no retry)
            ValidationError: For invalid input (no retry)
            EmbeddingError: After max retries exceeded, or on other API errors
        """
        attempts = 0
        backoff = self.initial_backoff

        while attempts < self.max_retries:
            try:
                return await func(*args, **kwargs)

            except openai.AuthenticationError as e:
                raise ConfigurationError(
                    "Invalid OpenAI API key. Check OPENAI_API_KEY environment variable."
                ) from e

            except openai.BadRequestError as e:
                raise ValidationError(f"Invalid input: {e}") from e

            except openai.RateLimitError as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(
                        f"OpenAI rate limit reached after {attempts} attempts. Try again later.",
                        cause=e,
                    )
                logger.warning(
                    f"Rate limit hit (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )

            except (openai.APITimeoutError, openai.APIConnectionError) as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(f"Request timeout after {attempts} attempts", cause=e)
                logger.warning(
                    f"Timeout (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )

            except openai.InternalServerError as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(
                        f"OpenAI service error after {attempts} attempts", cause=e
                    )
                logger.warning(
                    f"OpenAI service error (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )

            except openai.APIError as e:
                raise EmbeddingError(f"OpenAI API error: {e}", cause=e)

            await asyncio.sleep(backoff)
            backoff *= 2

        raise EmbeddingError(f"Failed after {self.max_retries} attempts")


class LocalHashEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic SHA-256 vectors for development and tests.

    Not semantically meaningful: only identical texts land near each other.
    The first 32 components come from the digest bytes scaled to [-1, 1];
    the rest are zero.
    """

    def __init__(self, dimensions: int = 256):
        if dimensions < 1:
            raise ConfigurationError(f"Embedding dimensions must be positive, got {dimensions}")
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        digest = bytes.fromhex(sha256_text(text))
        vector = [(b - 128) / 128 for b in digest[:self.dimensions]]
        vector.extend([0.0] * (self.dimensions - len(vector)))
        return vector

    def dimension(self) -> int:
        return self.dimensions

    def name(self) -> str:
        return "local-hash"


def create_embedding_provider(config) -> EmbeddingProvider:
    """Build the provider selected by ``EMBEDDINGS_PROVIDER``."""
    if config.embeddings_provider == "local":
        logger.warning("Using local hash embeddings; retrieval quality will not be meaningful")
        return LocalHashEmbeddingProvider(dimensions=config.openai_embed_dims)

    if config.embeddings_provider == "openai":
        return OpenAIEmbeddingProvider(
            api_key=config.openai_api_key,
            model=config.openai_embed_model,
            dimensions=config.openai_embed_dims,
            timeout=config.openai_timeout,
            max_retries=config.openai_max_retries,
        )

    raise ConfigurationError(f"Unknown embeddings provider: {config.embeddings_provider}")
