"""
Service Container and Route Dependencies

All long-lived clients are constructed once by ``build_container`` during
application startup, stored on ``app.state.container`` and handed to routes
through FastAPI dependencies. Nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from ..config import Settings
from ..content.api_client import ContentApiClient
from ..db.idempotency import SqlIdempotencyLedger
from ..db.models import EMBEDDING_DIMENSIONS
from ..db.session import create_engine, create_session_factory, init_db
from ..db.vector_store import PgVectorStore
from ..embeddings.chunker import Chunker
from ..embeddings.embedder import Embedder
from ..embeddings.index import FaissVectorStore
from ..embeddings.models import VectorStore
from ..events.bus import EventBus
from ..events.dispatcher import IndexingDispatcher
from ..events.idempotency import IdempotencyGuard, MemoryIdempotencyLedger
from ..search.pipeline import SearchPipeline

logger = logging.getLogger("post_search.container")


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing at startup."""


@dataclass
class ServiceContainer:
    settings: Settings
    embedder: Embedder
    vector_store: VectorStore
    content_client: ContentApiClient
    idempotency_guard: IdempotencyGuard
    event_bus: EventBus
    dispatcher: IndexingDispatcher
    search_pipeline: SearchPipeline
    engine: Optional[AsyncEngine] = None

    async def startup(self) -> None:
        """Prepare storage: create tables and/or load the local index."""
        if self.engine is not None and self.settings.db_create_tables:
            await init_db(self.engine)
        if isinstance(self.vector_store, FaissVectorStore):
            self.vector_store.load()

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()


def _validate_secrets(settings: Settings) -> None:
    missing = [
        name
        for name, value in (
            ("WEBHOOK_SECRET", settings.webhook_secret),
            ("OPENAI_API_KEY", settings.openai_api_key),
        )
        if not value.get_secret_value()
    ]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


def _validate_vector_backend(settings: Settings) -> None:
    # The pgvector column width is fixed by the schema.
    if (
        settings.vector_backend == "pgvector"
        and settings.embedding_dimensions != EMBEDDING_DIMENSIONS
    ):
        raise ConfigurationError(
            f"EMBEDDING_DIMENSIONS={settings.embedding_dimensions} does not match the "
            f"pgvector column width {EMBEDDING_DIMENSIONS}; use the faiss backend "
            "for other embedding sizes"
        )


def build_container(settings: Settings) -> ServiceContainer:
    """
    Construct every client from settings.

    Fails fast when required secrets are absent or the embedding size does
    not fit the pgvector schema.
    """
    _validate_secrets(settings)
    _validate_vector_backend(settings)

    needs_db = (
        settings.vector_backend == "pgvector"
        or settings.idempotency_backend == "sql"
    )
    engine = create_engine(settings.database_url) if needs_db else None
    session_factory = create_session_factory(engine) if engine is not None else None

    embedder = Embedder(
        api_key=settings.openai_api_key.get_secret_value(),
        model=settings.embedding_model,
        base_url=settings.embedding_api_url,
        timeout=settings.embedding_timeout_seconds,
        batch_size=settings.embedding_batch_size,
        dimensions=settings.embedding_dimensions,
    )

    vector_store: VectorStore
    if settings.vector_backend == "pgvector":
        vector_store = PgVectorStore(session_factory)
    else:
        vector_store = FaissVectorStore(
            index_path=settings.faiss_index_path,
            meta_path=settings.faiss_meta_path,
            dimensions=settings.embedding_dimensions,
        )

    if settings.idempotency_backend == "sql":
        ledger = SqlIdempotencyLedger(session_factory)
    else:
        ledger = MemoryIdempotencyLedger()

    content_client = ContentApiClient(
        base_url=str(settings.content_api_url),
        timeout=settings.content_api_timeout_seconds,
    )

    chunker = Chunker(
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
    )

    logger.info(
        "Services configured (vector_backend=%s, idempotency_backend=%s, model=%s)",
        settings.vector_backend,
        settings.idempotency_backend,
        settings.embedding_model,
    )

    return ServiceContainer(
        settings=settings,
        embedder=embedder,
        vector_store=vector_store,
        content_client=content_client,
        idempotency_guard=IdempotencyGuard(
            ledger,
            default_ttl=timedelta(seconds=settings.idempotency_ttl_seconds),
        ),
        event_bus=EventBus(
            max_attempts=settings.event_max_attempts,
            retry_delay_seconds=settings.event_retry_delay_seconds,
            maxsize=settings.event_queue_maxsize,
            dead_letter_limit=settings.event_dead_letter_limit,
        ),
        dispatcher=IndexingDispatcher(chunker, embedder, vector_store),
        search_pipeline=SearchPipeline(
            embedder,
            vector_store,
            content_client,
            top_k=settings.search_top_k,
        ),
        engine=engine,
    )


# ---------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------

def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_search_pipeline(request: Request) -> SearchPipeline:
    return get_container(request).search_pipeline
