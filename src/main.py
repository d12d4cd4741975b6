"""StoryShelf FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml`` and configures
structured logging.

Also exposes :func:`build_components` so the CLI can run the same
pipeline outside the web server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import APP_VERSION
from src.api.routes import router as api_router
from src.config.loader import build_pipeline_config, load_config
from src.config.settings import Settings
from src.pipeline.book_processor import BookProcessor
from src.pipeline.job_dispatcher import JobDispatcher
from src.pipeline.status_tracker import StatusTracker
from src.providers.cache.memory_cache import MemoryCacheProvider
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.providers.storage.sqlite_book_store import SQLiteBookStore
from src.providers.storage.supabase_storage_provider import SupabaseStorageProvider
from src.providers.vector_store.chromadb_provider import ChromaChunkSearchProvider
from src.services.answer_composer import AnswerComposer
from src.services.book_chat_service import BookChatService
from src.services.ingestion.chunker import PageChunker
from src.services.ingestion.document_loader import DocumentLoader
from src.services.ingestion.embedding_service import EmbeddingService
from src.services.ingestion.persona_extractor import PersonaExtractor
from src.services.ingestion.text_extractor import TextExtractor
from src.services.query_optimizer import QueryOptimizer
from src.services.retrieval_service import RetrievalEngine
from src.services.trigger_client import ProcessingTriggerClient
from src.utils.logging import configure_logging, get_logger
from src.utils.retry import RetryClient

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)

# Cached query rewrites; keyed by message, history, book, and character.
_QUERY_CACHE_SIZE = 512
_QUERY_CACHE_TTL = 900


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings,
    config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct every provider and service for one process.

    Returns a flat dict of named components to be stored on ``app.state``
    (or used directly by the CLI).  The caller owns ``http_client`` and
    must close it, and must ``initialize()`` the book store before use.
    """
    config = config if config is not None else load_config(settings=app_settings)
    pipeline_config = build_pipeline_config(config)

    # -- Shared HTTP transport + retry policy --
    http_client = httpx.AsyncClient(follow_redirects=True)
    retry_client = RetryClient(
        http_client,
        pipeline_config.retry_policy,
        default_timeout_s=app_settings.trigger_timeout_seconds,
    )

    # -- Providers --
    book_store = SQLiteBookStore(db_path=app_settings.database_path)
    llm_provider = OpenAILLMProvider(settings=app_settings, retry_client=retry_client)
    embedding_provider = OpenAIEmbeddingProvider(
        settings=app_settings, retry_client=retry_client
    )
    search_provider = ChromaChunkSearchProvider(
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
    )
    object_storage = SupabaseStorageProvider(
        retry_client=retry_client,
        base_url=app_settings.supabase_url,
        service_key=app_settings.supabase_service_role_key,
        bucket=app_settings.storage_bucket,
    )
    idempotency_cache = MemoryCacheProvider(
        max_size=pipeline_config.idempotency_max_keys,
        ttl=pipeline_config.idempotency_ttl_seconds,
    )
    query_cache = MemoryCacheProvider(max_size=_QUERY_CACHE_SIZE, ttl=_QUERY_CACHE_TTL)

    # -- Ingestion pipeline --
    document_loader = DocumentLoader(
        object_storage,
        signed_url_ttl_seconds=app_settings.signed_url_ttl_seconds,
        download_timeout_seconds=app_settings.download_timeout_seconds,
    )
    status_tracker = StatusTracker(book_store)
    processor = BookProcessor(
        book_store=book_store,
        status_tracker=status_tracker,
        document_loader=document_loader,
        text_extractor=TextExtractor(),
        chunker=PageChunker(
            max_tokens=pipeline_config.max_tokens_per_chunk,
            overlap_tokens=pipeline_config.overlap_tokens,
        ),
        embedding_service=EmbeddingService(
            embedding_provider,
            concurrency=pipeline_config.embedding_concurrency,
            batch_size=pipeline_config.embedding_batch_size,
        ),
        search_provider=search_provider,
        persona_extractor=PersonaExtractor(
            llm_provider, max_personas=pipeline_config.max_personas
        ),
        persona_sample_chunks=pipeline_config.persona_sample_chunks,
    )
    job_dispatcher = JobDispatcher(
        processor=processor,
        book_store=book_store,
        search_provider=search_provider,
        status_tracker=status_tracker,
        idempotency_cache=idempotency_cache,
    )

    # -- Query-time services --
    chat_service = BookChatService(
        book_store=book_store,
        embedding_provider=embedding_provider,
        query_optimizer=QueryOptimizer(llm_provider, cache=query_cache),
        retrieval_engine=RetrievalEngine(search_provider),
        answer_composer=AnswerComposer(
            llm_provider, context_chars=pipeline_config.context_chars_per_match
        ),
        qa_match_count=pipeline_config.qa_match_count,
        chat_match_count=pipeline_config.chat_match_count,
    )

    # -- Outbound trigger (CLI and other services) --
    trigger_client = ProcessingTriggerClient(
        retry_client,
        base_url=app_settings.supabase_url,
        api_key=app_settings.supabase_service_role_key,
        function_name=app_settings.processing_function_name,
        timeout_s=app_settings.trigger_timeout_seconds,
    )

    _logger.info(
        "components_built",
        llm=llm_provider.get_provider_name(),
        chat_model=app_settings.openai_chat_model,
        embedding_model=app_settings.openai_embedding_model,
        vector_store=search_provider.get_provider_name(),
        storage_configured=app_settings.storage_configured,
    )

    return {
        "settings": app_settings,
        "config": config,
        "pipeline_config": pipeline_config,
        "http_client": http_client,
        "retry_client": retry_client,
        "book_store": book_store,
        "llm_provider": llm_provider,
        "embedding_provider": embedding_provider,
        "search_provider": search_provider,
        "object_storage": object_storage,
        "document_loader": document_loader,
        "status_tracker": status_tracker,
        "processor": processor,
        "job_dispatcher": job_dispatcher,
        "chat_service": chat_service,
        "trigger_client": trigger_client,
    }


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise all providers and services on startup, clean up on shutdown."""
    components = getattr(application.state, "components", None)
    if components is None:
        components = build_components(application.state.settings)

    for key, value in components.items():
        setattr(application.state, key, value)

    await components["book_store"].initialize()

    _logger.info(
        "app_startup",
        version=APP_VERSION,
        environment=application.state.settings.app_env,
    )

    yield

    # -- Shutdown: cancel running jobs, then close the shared httpx client --
    await components["job_dispatcher"].shutdown()
    http_client: httpx.AsyncClient | None = components.get("http_client")
    if http_client is not None:
        await http_client.aclose()
    _logger.info("app_shutdown")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    ``components`` replaces :func:`build_components` at startup; tests use
    it to inject fakes.
    """
    application = FastAPI(
        title="StoryShelf API",
        version=APP_VERSION,
        description=(
            "Process uploaded books into searchable chunks, extract characters "
            "from fiction, and answer questions or chat in character using "
            "excerpts retrieved from the book itself."
        ),
        lifespan=_lifespan,
    )
    application.state.settings = app_settings or settings
    application.state.components = components

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
