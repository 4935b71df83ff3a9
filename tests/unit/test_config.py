"""Unit tests for configuration management."""

import pytest

from verifiable_rag.config import Config, DEFAULT_ALLOWED_MIME_TYPES, load_config, validate_config


# ============================================================================
# Loading Tests
# ============================================================================

def test_load_config_defaults():
    """Test loading configuration with defaults."""
    config = load_config()

    assert config.openai_api_key == "test-api-key-12345"
    assert config.openai_embed_model == "text-embedding-3-small"
    assert config.openai_embed_dims == 1536
    assert config.embeddings_provider == "openai"
    assert config.llm_provider == "openai"
    assert config.chunk_strategy == "words"
    assert config.chunk_max_tokens == 3000
    assert config.chunk_overlap_tokens == 0
    assert config.chunk_min_length == 50
    assert config.ingest_batch_size == 10
    assert config.query_default_k == 5
    assert config.query_candidate_cap == 5000
    assert config.max_file_bytes == 26214400
    assert config.max_files_per_pack == 1000
    assert config.allowed_mime_types == DEFAULT_ALLOWED_MIME_TYPES
    assert config.ocr_enabled_default is False
    assert config.server_port == 4000


def test_load_config_custom_values(monkeypatch):
    """Test loading configuration with custom values."""
    monkeypatch.setenv("EMBEDDINGS_PROVIDER", "LOCAL")
    monkeypatch.setenv("CHUNK_STRATEGY", "sentences")
    monkeypatch.setenv("CHUNK_MAX_TOKENS", "400")
    monkeypatch.setenv("CHUNK_OVERLAP_TOKENS", "40")
    monkeypatch.setenv("INGEST_BATCH_SIZE", "4")
    monkeypatch.setenv("QUERY_DEFAULT_K", "8")
    monkeypatch.setenv("OCR_ENABLED_DEFAULT", "true")
    monkeypatch.setenv("ALLOWED_MIME_TYPES", "text/plain, application/pdf ,")
    monkeypatch.setenv("SERVER_PORT", "8080")

    config = load_config()

    assert config.embeddings_provider == "local"
    assert config.chunk_strategy == "sentences"
    assert config.chunk_max_tokens == 400
    assert config.chunk_overlap_tokens == 40
    assert config.ingest_batch_size == 4
    assert config.query_default_k == 8
    assert config.ocr_enabled_default is True
    assert config.allowed_mime_types == ["text/plain", "application/pdf"]
    assert config.server_port == 8080


def test_load_config_missing_api_key(monkeypatch):
    """Test configuration fails without an API key when OpenAI is selected."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        load_config()


def test_load_config_api_key_optional_for_local(monkeypatch):
    """Test a key is not needed when no provider uses OpenAI."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("EMBEDDINGS_PROVIDER", "local")
    monkeypatch.setenv("LLM_PROVIDER", "none")

    config = load_config()

    assert config.openai_api_key is None


def test_load_config_malformed_number(monkeypatch):
    """Test a non-numeric value is rejected."""
    monkeypatch.setenv("CHUNK_MAX_TOKENS", "lots")

    with pytest.raises(ValueError):
        load_config()


# ============================================================================
# Validation Tests
# ============================================================================

def test_validate_config_success():
    """Test validation passes for defaults."""
    validate_config(load_config())


def test_validate_config_invalid_embeddings_provider():
    config = Config(openai_api_key="k", embeddings_provider="cohere")

    with pytest.raises(ValueError, match="Invalid EMBEDDINGS_PROVIDER"):
        validate_config(config)


def test_validate_config_invalid_llm_provider():
    config = Config(openai_api_key="k", llm_provider="anthropic")

    with pytest.raises(ValueError, match="Invalid LLM_PROVIDER"):
        validate_config(config)


def test_validate_config_invalid_content_store():
    config = Config(openai_api_key="k", content_store_backend="s3")

    with pytest.raises(ValueError, match="Invalid CONTENT_STORE_BACKEND"):
        validate_config(config)


def test_validate_config_invalid_chunk_strategy():
    config = Config(openai_api_key="k", chunk_strategy="paragraphs")

    with pytest.raises(ValueError, match="Invalid CHUNK_STRATEGY"):
        validate_config(config)


def test_validate_config_overlap_too_large():
    """Test overlap must be smaller than the window."""
    config = Config(openai_api_key="k", chunk_max_tokens=100, chunk_overlap_tokens=100)

    with pytest.raises(ValueError, match="CHUNK_OVERLAP_TOKENS"):
        validate_config(config)


def test_validate_config_sentence_overlap_too_large():
    config = Config(openai_api_key="k", sentence_max_chars=500, sentence_overlap_chars=500)

    with pytest.raises(ValueError, match="SENTENCE_OVERLAP_CHARS"):
        validate_config(config)


@pytest.mark.parametrize("field,value,message", [
    ("ingest_batch_size", 0, "INGEST_BATCH_SIZE"),
    ("query_default_k", 0, "QUERY_DEFAULT_K"),
    ("query_candidate_cap", 0, "QUERY_CANDIDATE_CAP"),
    ("openai_embed_dims", 0, "OPENAI_EMBED_DIMS"),
])
def test_validate_config_rejects_non_positive(field, value, message):
    config = Config(openai_api_key="k")
    setattr(config, field, value)

    with pytest.raises(ValueError, match=message):
        validate_config(config)


def test_validate_config_empty_mime_list():
    config = Config(openai_api_key="k", allowed_mime_types=[])

    with pytest.raises(ValueError, match="ALLOWED_MIME_TYPES"):
        validate_config(config)


def test_validate_config_invalid_log_level():
    """Test validation fails for an invalid log level."""
    config = Config(openai_api_key="k", log_level="LOUD")

    with pytest.raises(ValueError, match="Invalid LOG_LEVEL"):
        validate_config(config)
