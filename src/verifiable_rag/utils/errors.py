"""Typed error taxonomy for the verifiable RAG pipeline."""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Error categories shared by every layer."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    UPSTREAM = "upstream"
    PARTIAL_FAILURE = "partial_failure"
    CONFIGURATION = "configuration"


_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.PARTIAL_FAILURE: 207,
    ErrorKind.CONFIGURATION: 500,
}


class VerifiableRAGError(Exception):
    """Base exception for all pipeline errors.

    Carries a (kind, message, context) triple instead of an ad hoc
    status field. The HTTP layer reads ``status_code``; nothing in the
    core does.
    """

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        kind: Optional[ErrorKind] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if kind is not None:
            self.kind = kind

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses and structured logs."""
        data: Dict[str, Any] = {"error": self.message, "kind": self.kind.value}
        if self.context:
            data["context"] = {k: str(v) for k, v in self.context.items()}
        return data


class ValidationError(VerifiableRAGError):
    """Raised when a request is malformed or out of bounds."""

    kind = ErrorKind.VALIDATION


class NotFoundError(VerifiableRAGError):
    """Raised when a referenced pack, document or blob is absent."""

    kind = ErrorKind.NOT_FOUND


class ForbiddenError(VerifiableRAGError):
    """Raised when the requester may not access a pack."""

    kind = ErrorKind.FORBIDDEN


class AuthenticationError(ForbiddenError):
    """Raised when a request carries no requester identity."""

    @property
    def status_code(self) -> int:
        return 401


class ConfigurationError(VerifiableRAGError):
    """Raised when configuration is invalid."""

    kind = ErrorKind.CONFIGURATION


class UpstreamError(VerifiableRAGError):
    """Raised when an external capability fails."""

    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        context = dict(context or {})
        if cause is not None:
            context.setdefault("cause", repr(cause))
        super().__init__(message, context)
        if cause is not None:
            self.__cause__ = cause


class EmbeddingError(UpstreamError):
    """Raised when embedding generation fails."""
    pass


class StorageError(UpstreamError):
    """Raised when a content store or persistence operation fails."""
    pass


class AnswerGenerationError(UpstreamError):
    """Raised when the answer provider fails."""
    pass


class ExtractionError(UpstreamError):
    """Raised when text extraction fails."""
    pass
