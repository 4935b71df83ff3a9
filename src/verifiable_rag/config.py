"""Configuration management for the verifiable RAG service."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "text/plain",
    "text/markdown",
    "text/html",
    "text/csv",
    "application/json",
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/webp",
]


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_embed_model: str = "text-embedding-3-small"
    openai_embed_dims: int = 1536
    openai_timeout: int = 30
    openai_max_retries: int = 3

    # Providers
    embeddings_provider: str = "openai"
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 1000

    # Content store
    content_store_backend: str = "filesystem"
    content_store_dir: str = "./blobs"

    # Persistence
    database_url: str = "memory://"
    postgres_pool_min: int = 2
    postgres_pool_max: int = 10

    # Upload limits
    max_file_bytes: int = 26214400
    max_files_per_pack: int = 1000
    allowed_mime_types: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES))
    ocr_enabled_default: bool = False

    # Chunking
    chunk_strategy: str = "words"
    chunk_max_tokens: int = 3000
    chunk_overlap_tokens: int = 0
    chunk_min_length: int = 50
    sentence_max_chars: int = 5000
    sentence_overlap_chars: int = 500

    # Ingestion / retrieval
    ingest_batch_size: int = 10
    query_default_k: int = 5
    query_candidate_cap: int = 5000

    # Server
    server_port: int = 4000
    log_level: str = "INFO"


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config object with all settings

    Raises:
        ValueError: If a required variable is missing or a number is malformed
    """
    embeddings_provider = os.getenv("EMBEDDINGS_PROVIDER", "openai").lower()
    llm_provider = os.getenv("LLM_PROVIDER", "openai").lower()
    openai_api_key = os.getenv("OPENAI_API_KEY") or None

    if not openai_api_key and "openai" in (embeddings_provider, llm_provider):
        raise ValueError(
            "OPENAI_API_KEY environment variable is required. "
            "Please set it in your .env file or environment."
        )

    allowed = os.getenv("ALLOWED_MIME_TYPES")

    return Config(
        # OpenAI
        openai_api_key=openai_api_key,
        openai_embed_model=os.getenv("OPENAI_EMBED_MODEL", "text-embedding-3-small"),
        openai_embed_dims=int(os.getenv("OPENAI_EMBED_DIMS", "1536")),
        openai_timeout=int(os.getenv("OPENAI_TIMEOUT", "30")),
        openai_max_retries=int(os.getenv("OPENAI_MAX_RETRIES", "3")),

        # Providers
        embeddings_provider=embeddings_provider,
        llm_provider=llm_provider,
        llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
        llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.2")),
        llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "1000")),

        # Content store
        content_store_backend=os.getenv("CONTENT_STORE_BACKEND", "filesystem").lower(),
        content_store_dir=os.getenv("CONTENT_STORE_DIR", "./blobs"),

        # Persistence
        database_url=os.getenv("DATABASE_URL", "memory://"),
        postgres_pool_min=int(os.getenv("POSTGRES_POOL_MIN", "2")),
        postgres_pool_max=int(os.getenv("POSTGRES_POOL_MAX", "10")),

        # Upload limits
        max_file_bytes=int(os.getenv("MAX_FILE_BYTES", "26214400")),
        max_files_per_pack=int(os.getenv("MAX_FILES_PER_PACK", "1000")),
        allowed_mime_types=_split_csv(allowed) if allowed else list(DEFAULT_ALLOWED_MIME_TYPES),
        ocr_enabled_default=os.getenv("OCR_ENABLED_DEFAULT", "false").lower() == "true",

        # Chunking
        chunk_strategy=os.getenv("CHUNK_STRATEGY", "words").lower(),
        chunk_max_tokens=int(os.getenv("CHUNK_MAX_TOKENS", "3000")),
        chunk_overlap_tokens=int(os.getenv("CHUNK_OVERLAP_TOKENS", "0")),
        chunk_min_length=int(os.getenv("CHUNK_MIN_LENGTH", "50")),
        sentence_max_chars=int(os.getenv("SENTENCE_MAX_CHARS", "5000")),
        sentence_overlap_chars=int(os.getenv("SENTENCE_OVERLAP_CHARS", "500")),

        # Ingestion / retrieval
        ingest_batch_size=int(os.getenv("INGEST_BATCH_SIZE", "10")),
        query_default_k=int(os.getenv("QUERY_DEFAULT_K", "5")),
        query_candidate_cap=int(os.getenv("QUERY_CANDIDATE_CAP", "5000")),

        # Server
        server_port=int(os.getenv("SERVER_PORT", "4000")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def validate_config(config: Config) -> None:
    """
    Validate configuration values.

    Args:
        config: Configuration to validate

    Raises:
        ValueError: If any configuration value is invalid
    """
    if config.embeddings_provider not in ("openai", "local"):
        raise ValueError(
            f"Invalid EMBEDDINGS_PROVIDER: {config.embeddings_provider}. "
            "Must be one of: openai, local"
        )

    if config.llm_provider != "openai":
        raise ValueError(
            f"Invalid LLM_PROVIDER: {config.llm_provider}. "
            "Only openai is currently supported"
        )

    if config.content_store_backend not in ("filesystem", "memory"):
        raise ValueError(
            f"Invalid CONTENT_STORE_BACKEND: {config.content_store_backend}. "
            "Must be one of: filesystem, memory"
        )

    if config.openai_embed_dims < 1:
        raise ValueError(f"OPENAI_EMBED_DIMS must be positive, got {config.openai_embed_dims}")

    if config.chunk_strategy not in ("words", "sentences"):
        raise ValueError(
            f"Invalid CHUNK_STRATEGY: {config.chunk_strategy}. "
            "Must be one of: words, sentences"
        )

    if config.chunk_overlap_tokens < 0 or config.chunk_overlap_tokens >= config.chunk_max_tokens:
        raise ValueError(
            f"CHUNK_OVERLAP_TOKENS ({config.chunk_overlap_tokens}) must be between 0 and "
            f"CHUNK_MAX_TOKENS ({config.chunk_max_tokens}) exclusive"
        )

    if config.sentence_overlap_chars >= config.sentence_max_chars:
        raise ValueError(
            f"SENTENCE_OVERLAP_CHARS ({config.sentence_overlap_chars}) must be less than "
            f"SENTENCE_MAX_CHARS ({config.sentence_max_chars})"
        )

    if config.ingest_batch_size < 1:
        raise ValueError(f"INGEST_BATCH_SIZE must be at least 1, got {config.ingest_batch_size}")

    if config.query_default_k < 1:
        raise ValueError(f"QUERY_DEFAULT_K must be at least 1, got {config.query_default_k}")

    if config.query_candidate_cap < 1:
        raise ValueError(
            f"QUERY_CANDIDATE_CAP must be at least 1, got {config.query_candidate_cap}"
        )

    if not config.allowed_mime_types:
        raise ValueError("ALLOWED_MIME_TYPES must list at least one MIME type")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: {config.log_level}. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )
