"""
Text extraction for uploaded files.

Extractors are plain synchronous objects; TextProcessor runs them in a
worker thread so PDF parsing and OCR never block the event loop.
"""

import asyncio
import io
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytesseract
import tiktoken
from PIL import Image
from pypdf import PdfReader

from verifiable_rag.utils.errors import ExtractionError


logger = logging.getLogger("verifiable-rag.extraction")


@dataclass
class ExtractedText:
    """Extractor output: text plus extractor-specific metadata."""
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class TextExtractor(ABC):
    """Format-specific extractor."""

    @abstractmethod
    def supports(self, mime_type: str) -> bool:
        ...

    @abstractmethod
    def extract(self, data: bytes, mime_type: str, ocr: bool = False) -> ExtractedText:
        """
        Extract text from raw bytes.

        Raises:
            ExtractionError: If the bytes cannot be parsed
        """


class PlainTextExtractor(TextExtractor):
    """UTF-8 decoding for the text family."""

    SUPPORTED_MIME_TYPES = (
        "text/plain",
        "text/markdown",
        "text/html",
        "text/csv",
        "text/xml",
        "application/json",
        "application/javascript",
        "application/typescript",
    )

    def supports(self, mime_type: str) -> bool:
        return mime_type in self.SUPPORTED_MIME_TYPES or mime_type.startswith("text/")

    def extract(self, data: bytes, mime_type: str, ocr: bool = False) -> ExtractedText:
        # Undecodable bytes become U+FFFD rather than failing the file
        text = data.decode("utf-8", errors="replace")
        return ExtractedText(text=text, metadata={"encoding": "utf-8", "bytes": len(data)})


class PDFExtractor(TextExtractor):
    """PDF text via pypdf."""

    def supports(self, mime_type: str) -> bool:
        return mime_type == "application/pdf"

    def extract(self, data: bytes, mime_type: str, ocr: bool = False) -> ExtractedText:
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as e:
            raise ExtractionError(f"PDF extraction failed: {e}", cause=e)

        return ExtractedText(
            text="\n\n".join(pages),
            metadata={"pages": len(pages)},
        )


class OCRExtractor(TextExtractor):
    """Image OCR via Tesseract. Runs only when the request asks for OCR."""

    SUPPORTED_MIME_TYPES = (
        "image/png",
        "image/jpeg",
        "image/jpg",
        "image/webp",
        "image/tiff",
        "image/bmp",
    )

    def __init__(self, language: str = "eng"):
        self.language = language

    def supports(self, mime_type: str) -> bool:
        return mime_type in self.SUPPORTED_MIME_TYPES

    def extract(self, data: bytes, mime_type: str, ocr: bool = False) -> ExtractedText:
        if not ocr:
            return ExtractedText(text="", metadata={"skipped": True, "reason": "OCR not enabled"})

        try:
            with Image.open(io.BytesIO(data)) as image:
                text = pytesseract.image_to_string(image, lang=self.language)
        except Exception as e:
            raise ExtractionError(f"OCR extraction failed: {e}", cause=e)

        return ExtractedText(text=text, metadata={"language": self.language})


class TextProcessor:
    """Dispatches bytes to the first extractor that supports the MIME type."""

    def __init__(self, extractors: Optional[List[TextExtractor]] = None):
        self.extractors = extractors if extractors is not None else [
            PDFExtractor(),
            PlainTextExtractor(),
            OCRExtractor(),
        ]

    @property
    def encoding(self):
        return tiktoken.get_encoding("cl100k_base")

    def _find_extractor(self, mime_type: str) -> Optional[TextExtractor]:
        for extractor in self.extractors:
            if extractor.supports(mime_type):
                return extractor
        return None

    def is_supported(self, mime_type: str) -> bool:
        return self._find_extractor(mime_type) is not None

    async def extract_text(self, data: bytes, mime_type: str, ocr: bool = False) -> ExtractedText:
        """
        Extract text from file bytes.

        Args:
            data: Raw file bytes
            mime_type: Declared MIME type
            ocr: Whether image OCR may run

        Returns:
            ExtractedText; empty text with ``unsupported`` metadata when no
            extractor handles the MIME type

        Raises:
            ExtractionError: If the matching extractor fails
        """
        extractor = self._find_extractor(mime_type)
        if extractor is None:
            return ExtractedText(text="", metadata={"unsupported": True, "mime_type": mime_type})

        return await asyncio.to_thread(extractor.extract, data, mime_type, ocr)

    def get_text_stats(self, text: str) -> Dict[str, Any]:
        """
        Basic statistics about a text.

        Returns:
            Dict with characters, words, sentences, paragraphs,
            avg_word_length, avg_sentence_length and tokens
        """
        words = text.split()
        sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
        paragraphs = [p for p in re.split(r"\n\n+", text) if p.strip()]

        return {
            "characters": len(text),
            "words": len(words),
            "sentences": len(sentences),
            "paragraphs": len(paragraphs),
            "avg_word_length": (
                sum(len(w) for w in words) / len(words) if words else 0
            ),
            "avg_sentence_length": (
                sum(len(s.split()) for s in sentences) / len(sentences) if sentences else 0
            ),
            "tokens": len(self.encoding.encode(text)),
        }
