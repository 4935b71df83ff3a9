"""Word-window and sentence-window chunking for extracted document text."""

import logging
import re
from typing import List


logger = logging.getLogger("verifiable-rag.chunking")

WHITESPACE_RE = re.compile(r"\s+")
# Sentence terminators stay attached to the sentence they end
SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")


class ChunkingService:
    """Deterministic text chunker. Holds configuration only."""

    def __init__(
        self,
        max_tokens: int = 3000,
        overlap: int = 0,
        min_chunk_length: int = 50,
        strategy: str = "words",
        sentence_max_chars: int = 5000,
        sentence_overlap_chars: int = 500
    ):
        """
        Initialize chunking service.

        Args:
            max_tokens: Words per window for the word-window policy
            overlap: Words shared by consecutive windows (0 = contiguous)
            min_chunk_length: Minimum chunk length in characters
            strategy: "words" or "sentences"
            sentence_max_chars: Character budget per sentence-window chunk
            sentence_overlap_chars: Trailing characters carried into the next chunk
        """
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be positive, got {max_tokens}")
        if overlap < 0 or overlap >= max_tokens:
            raise ValueError(
                f"overlap must be in [0, max_tokens), got {overlap} with max_tokens={max_tokens}"
            )
        if strategy not in ("words", "sentences"):
            raise ValueError(f"Unknown chunking strategy: {strategy}")

        self.max_tokens = max_tokens
        self.overlap = overlap
        self.min_chunk_length = min_chunk_length
        self.strategy = strategy
        self.sentence_max_chars = sentence_max_chars
        self.sentence_overlap_chars = sentence_overlap_chars

    @classmethod
    def from_config(cls, config) -> "ChunkingService":
        return cls(
            max_tokens=config.chunk_max_tokens,
            overlap=config.chunk_overlap_tokens,
            min_chunk_length=config.chunk_min_length,
            strategy=config.chunk_strategy,
            sentence_max_chars=config.sentence_max_chars,
            sentence_overlap_chars=config.sentence_overlap_chars,
        )

    def chunk_text(self, text: str) -> List[str]:
        """
        Chunk text with the configured policy.

        Args:
            text: Extracted document text

        Returns:
            Ordered list of non-empty chunk strings
        """
        if self.strategy == "sentences":
            chunks = self.chunk_by_sentences(text)
        else:
            chunks = self.chunk_by_words(text)

        logger.debug(
            f"Text chunked: strategy={self.strategy}, chars={len(text)}, "
            f"num_chunks={len(chunks)}"
        )
        return chunks

    def chunk_by_words(self, text: str) -> List[str]:
        """
        Slide a window of ``max_tokens`` words across the text.

        Whitespace runs collapse to single spaces. Windows advance by
        ``max_tokens - overlap`` words and windows shorter than
        ``min_chunk_length`` characters are dropped. If every window is
        dropped, the whole normalized text is returned as one chunk.
        """
        cleaned = WHITESPACE_RE.sub(" ", text).strip()

        if len(cleaned) < self.min_chunk_length:
            return [cleaned] if cleaned else []

        words = cleaned.split(" ")
        if len(words) <= self.max_tokens:
            return [cleaned]

        step = self.max_tokens - self.overlap
        chunks = []
        for start in range(0, len(words), step):
            chunk = " ".join(words[start:start + self.max_tokens])
            if len(chunk) >= self.min_chunk_length:
                chunks.append(chunk)

        return chunks if chunks else [cleaned]

    def chunk_by_sentences(self, text: str) -> List[str]:
        """
        Greedily pack sentences into chunks of at most ``sentence_max_chars``.

        When a chunk is flushed, the trailing sentences that fit within
        ``sentence_overlap_chars`` seed the next chunk. A single sentence
        longer than the budget becomes its own chunk.
        """
        sentences = [s.strip() for s in SENTENCE_BOUNDARY_RE.split(text)]
        sentences = [s for s in sentences if s]
        if not sentences:
            return []

        chunks: List[str] = []
        current: List[str] = []
        current_length = 0

        for sentence in sentences:
            if current and current_length + len(sentence) > self.sentence_max_chars:
                chunks.append(" ".join(current))

                carried: List[str] = []
                carried_length = 0
                for previous in reversed(current):
                    if carried_length + len(previous) > self.sentence_overlap_chars:
                        break
                    carried.insert(0, previous)
                    carried_length += len(previous)

                current = carried
                current_length = carried_length

            current.append(sentence)
            current_length += len(sentence)

        if current:
            chunks.append(" ".join(current))

        return chunks
