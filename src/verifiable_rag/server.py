"""
Verifiable RAG Server - HTTP glue over the ingestion, query and verification core.

Identity comes from the ``X-User-Id`` header, which an authenticating
proxy in front of this service is expected to set.

Usage:
    python -m verifiable_rag.server

Configuration via .env file (see .env.example)
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

import uvicorn
from dotenv import load_dotenv
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from verifiable_rag import __version__
from verifiable_rag.config import Config, load_config, validate_config
from verifiable_rag.services.answer_service import AnswerProvider, create_answer_provider
from verifiable_rag.services.chunking_service import ChunkingService
from verifiable_rag.services.embedding_service import EmbeddingProvider, create_embedding_provider
from verifiable_rag.services.pack_manager import PackManager
from verifiable_rag.services.query_engine import QueryEngine
from verifiable_rag.services.text_processor import TextProcessor
from verifiable_rag.services.verifier import Verifier
from verifiable_rag.storage.content_store import ContentStore, create_content_store
from verifiable_rag.storage.models import (
    QueryRequest,
    UploadFile,
    UploadRequest,
    VerificationRequest,
    to_dict,
)
from verifiable_rag.storage.persistence import Persistence, create_persistence
from verifiable_rag.utils.errors import AuthenticationError, ValidationError, VerifiableRAGError
from verifiable_rag.utils.helpers import normalize_tags, parse_boolean
from verifiable_rag.utils.logging import setup_logging


logger = logging.getLogger("verifiable-rag.server")

MAX_VERIFY_BATCH = 100


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""
    config: Config
    content_store: ContentStore
    persistence: Persistence
    embeddings: EmbeddingProvider
    answers: AnswerProvider
    pack_manager: PackManager
    query_engine: QueryEngine
    verifier: Verifier


def build_services(
    config: Config,
    content_store: Optional[ContentStore] = None,
    persistence: Optional[Persistence] = None,
    embeddings: Optional[EmbeddingProvider] = None,
    answers: Optional[AnswerProvider] = None
) -> Services:
    """
    Wire providers and core services from configuration.

    Any provider passed in replaces the one configuration would select.
    """
    content_store = content_store or create_content_store(config)
    persistence = persistence or create_persistence(config)
    embeddings = embeddings or create_embedding_provider(config)
    answers = answers or create_answer_provider(config)

    pack_manager = PackManager(
        content_store=content_store,
        persistence=persistence,
        embeddings=embeddings,
        text_processor=TextProcessor(),
        chunker=ChunkingService.from_config(config),
        max_file_bytes=config.max_file_bytes,
        max_files_per_pack=config.max_files_per_pack,
        allowed_mime_types=config.allowed_mime_types,
        batch_size=config.ingest_batch_size,
    )
    query_engine = QueryEngine(
        persistence=persistence,
        embeddings=embeddings,
        answers=answers,
        content_store=content_store,
        default_k=config.query_default_k,
        candidate_cap=config.query_candidate_cap,
    )

    return Services(
        config=config,
        content_store=content_store,
        persistence=persistence,
        embeddings=embeddings,
        answers=answers,
        pack_manager=pack_manager,
        query_engine=query_engine,
        verifier=Verifier(content_store),
    )


# ============================================================================
# Request helpers
# ============================================================================

def services_of(request: Request) -> Services:
    return request.app.state.services


def require_user(request: Request) -> str:
    user_id = request.headers.get("x-user-id", "").strip()
    if not user_id:
        raise AuthenticationError("Authentication required")
    return user_id


async def read_json(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def parse_query_request(body: Dict[str, Any]) -> QueryRequest:
    question = body.get("question")
    if not isinstance(question, str):
        raise ValidationError("Question is required")

    max_results = body.get("max_results")
    if max_results is not None and (isinstance(max_results, bool) or not isinstance(max_results, int)):
        raise ValidationError("max_results must be an integer")

    pack_id = body.get("pack_id")
    if pack_id is not None and not isinstance(pack_id, str):
        raise ValidationError("pack_id must be a string")

    return QueryRequest(question=question, pack_id=pack_id or None, max_results=max_results)


async def handle_error(request: Request, exc: VerifiableRAGError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        {"error": exc.message, "kind": exc.kind.value},
        status_code=exc.status_code,
    )


# ============================================================================
# Routes
# ============================================================================

async def health(request: Request) -> JSONResponse:
    """Health check endpoint."""
    services = services_of(request)
    persistence_health = await services.persistence.health_check()
    store_health = await services.content_store.health_check()

    healthy = all(h.get("status") == "healthy" for h in (persistence_health, store_health))
    return JSONResponse(
        {
            "status": "ok" if healthy else "degraded",
            "service": "verifiable-rag",
            "version": __version__,
            "persistence": persistence_health,
            "content_store": store_health,
            "embeddings": services.embeddings.name(),
        },
        status_code=200 if healthy else 503,
    )


async def create_pack(request: Request) -> JSONResponse:
    services = services_of(request)
    user_id = require_user(request)
    config = services.config

    form = await request.form(
        max_files=config.max_files_per_pack + 1,
        max_fields=1000,
    )
    try:
        uploads = []
        for item in form.getlist("files"):
            if isinstance(item, str):
                continue
            mime = (item.content_type or "application/octet-stream").split(";")[0].strip().lower()
            uploads.append(UploadFile(
                path=item.filename or "unnamed",
                mime=mime,
                data=await item.read(),
            ))

        upload_request = UploadRequest(
            title=str(form.get("title") or ""),
            summary=str(form.get("summary")) if form.get("summary") else None,
            tags=normalize_tags(str(form.get("tags") or "")),
            ocr=parse_boolean(form.get("ocr"), default=config.ocr_enabled_default),
            files=uploads,
        )
    finally:
        await form.close()

    result = await services.pack_manager.create_pack(user_id, upload_request)
    return JSONResponse(to_dict(result), status_code=201)


async def list_packs(request: Request) -> JSONResponse:
    user_id = require_user(request)
    packs = await services_of(request).pack_manager.list_packs(user_id)
    return JSONResponse({"packs": [to_dict(p) for p in packs]})


async def list_public_packs(request: Request) -> JSONResponse:
    query = request.query_params.get("q")
    packs = await services_of(request).pack_manager.list_public_packs(query)
    return JSONResponse({"packs": [to_dict(p) for p in packs]})


async def get_pack(request: Request) -> JSONResponse:
    requester = request.headers.get("x-user-id", "").strip() or None
    details = await services_of(request).pack_manager.get_pack(
        request.path_params["pack_id"], requester
    )
    return JSONResponse(to_dict(details))


async def update_visibility(request: Request) -> JSONResponse:
    user_id = require_user(request)
    body = await read_json(request)
    visibility = body.get("visibility")
    if not isinstance(visibility, str):
        raise ValidationError("visibility is required")

    pack = await services_of(request).pack_manager.update_visibility(
        request.path_params["pack_id"], user_id, visibility
    )
    return JSONResponse(to_dict(pack))


async def delete_pack(request: Request) -> Response:
    user_id = require_user(request)
    await services_of(request).pack_manager.delete_pack(request.path_params["pack_id"], user_id)
    return Response(status_code=204)


async def delete_document(request: Request) -> Response:
    user_id = require_user(request)
    await services_of(request).pack_manager.delete_document(
        request.path_params["pack_id"], request.path_params["doc_id"], user_id
    )
    return Response(status_code=204)


async def query_private(request: Request) -> JSONResponse:
    user_id = require_user(request)
    query = parse_query_request(await read_json(request))
    result = await services_of(request).query_engine.query_private(user_id, query)
    return JSONResponse(to_dict(result))


async def query_public(request: Request) -> JSONResponse:
    query = parse_query_request(await read_json(request))
    result = await services_of(request).query_engine.query_public(query)
    return JSONResponse(to_dict(result))


async def verify_blob(request: Request) -> JSONResponse:
    content_id = request.path_params["content_id"]
    expected = request.query_params.get("expected_sha256") or None
    result = await services_of(request).verifier.verify(
        VerificationRequest(content_id=content_id, expected_sha256=expected)
    )
    return JSONResponse(to_dict(result))


async def verify_batch(request: Request) -> JSONResponse:
    body = await read_json(request)
    items = body.get("requests")
    if not isinstance(items, list) or not items:
        raise ValidationError("requests must be a non-empty list")
    if len(items) > MAX_VERIFY_BATCH:
        raise ValidationError(f"Too many verification requests (max: {MAX_VERIFY_BATCH})")

    requests = []
    for i, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("content_id"), str):
            raise ValidationError(f"Request at index {i} needs a content_id")
        requests.append(VerificationRequest(
            content_id=item["content_id"],
            expected_sha256=item.get("expected_sha256") or None,
        ))

    results = await services_of(request).verifier.verify_batch(requests)
    return JSONResponse({"results": [to_dict(r) for r in results]})


# ============================================================================
# Application
# ============================================================================

def create_app(config: Optional[Config] = None, services: Optional[Services] = None) -> Starlette:
    """
    Create the Starlette application.

    Args:
        config: Configuration; loaded from the environment when omitted
        services: Pre-built services (tests inject in-memory providers)
    """

    @asynccontextmanager
    async def lifespan(app):
        """Application lifespan - startup/shutdown."""
        if app.state.services is None:
            cfg = config or load_config()
            validate_config(cfg)
            app.state.services = build_services(cfg)

        active: Services = app.state.services
        logger.info(f"Starting verifiable-rag v{__version__}")
        logger.info(
            f"  Embeddings: {active.embeddings.name()} ({active.embeddings.dimension()} dims)"
        )
        logger.info(
            f"  Chunking: strategy={active.config.chunk_strategy}, "
            f"max={active.config.chunk_max_tokens}, overlap={active.config.chunk_overlap_tokens}"
        )

        await active.persistence.connect()
        try:
            yield
        finally:
            await active.persistence.close()
            logger.info(f"verifiable-rag v{__version__} stopped")

    app = Starlette(
        debug=os.getenv("LOG_LEVEL") == "DEBUG",
        routes=[
            Route("/health", health),
            Route("/packs", create_pack, methods=["POST"]),
            Route("/packs", list_packs, methods=["GET"]),
            Route("/packs/public", list_public_packs, methods=["GET"]),
            Route("/packs/{pack_id}", get_pack, methods=["GET"]),
            Route("/packs/{pack_id}", delete_pack, methods=["DELETE"]),
            Route("/packs/{pack_id}/visibility", update_visibility, methods=["PATCH"]),
            Route("/packs/{pack_id}/docs/{doc_id}", delete_document, methods=["DELETE"]),
            Route("/query", query_private, methods=["POST"]),
            Route("/public/query", query_public, methods=["POST"]),
            Route("/verify/batch", verify_batch, methods=["POST"]),
            Route("/verify/{content_id:path}", verify_blob, methods=["GET"]),
        ],
        exception_handlers={VerifiableRAGError: handle_error},
        lifespan=lifespan,
    )
    app.state.services = services
    return app


def main() -> None:
    load_dotenv()

    config = load_config()
    validate_config(config)
    setup_logging(config.log_level)

    logger.info(f"Starting verifiable-rag v{__version__} on port {config.server_port}")

    uvicorn.run(
        create_app(config),
        host="0.0.0.0",
        port=config.server_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
