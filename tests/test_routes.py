import json
import time
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from post_search_server.api.dependencies import (
    ConfigurationError,
    ServiceContainer,
    build_container,
)
from post_search_server.auth.signature import build_signature_header
from post_search_server.core.errors import EmbeddingProviderError, VectorStoreUnavailable
from post_search_server.events.bus import EventBus, start_worker, stop_worker
from post_search_server.events.dispatcher import IndexingDispatcher
from post_search_server.events.idempotency import IdempotencyGuard, MemoryIdempotencyLedger
from post_search_server.embeddings.models import VectorRecord
from post_search_server.main import create_app
from post_search_server.search.pipeline import SearchPipeline

from conftest import TEST_WEBHOOK_SECRET, markdown

SIGNATURE_HEADER = "x-hashnode-signature"


def webhook_body(
    event_id="evt-1", document_id="post-1", event_type="post_created", content="Hello world"
):
    data = {"documentId": document_id, "eventType": event_type}
    if content is not None:
        data["content"] = content
    return {"metadata": {"uuid": event_id}, "data": data}


def signed_headers(body, secret=TEST_WEBHOOK_SECRET, timestamp=None):
    timestamp = int(time.time() * 1000) if timestamp is None else timestamp
    return {
        SIGNATURE_HEADER: build_signature_header(timestamp, body, secret),
        "content-type": "application/json",
    }


@pytest.fixture
def container(settings, mock_embedder, vector_store, mock_content_client, small_chunker):
    return ServiceContainer(
        settings=settings,
        embedder=mock_embedder,
        vector_store=vector_store,
        content_client=mock_content_client,
        idempotency_guard=IdempotencyGuard(MemoryIdempotencyLedger()),
        event_bus=EventBus(retry_delay_seconds=0),
        dispatcher=IndexingDispatcher(small_chunker, mock_embedder, vector_store),
        search_pipeline=SearchPipeline(mock_embedder, vector_store, mock_content_client),
    )


@pytest.fixture
async def async_client(container):
    app = create_app(container=container)
    # Lifespan does not run under ASGITransport.
    app.state.container = container
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def post_webhook(client, body, headers):
    return await client.post("/webhook", content=json.dumps(body), headers=headers)


# ---------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_webhook_accepts_and_indexes(async_client, container, vector_store):
    body = webhook_body(content=markdown("a", "b"))

    resp = await post_webhook(async_client, body, signed_headers(body))

    assert resp.status_code == 202
    assert resp.json() == {"status": "accepted", "event_id": "evt-1"}
    assert container.event_bus.qsize() == 1

    worker = start_worker(container.event_bus, container.dispatcher)
    await container.event_bus.join()
    await stop_worker(worker)

    assert sorted(vector_store.records) == ["post-1#chunk1", "post-1#chunk2"]


@pytest.mark.asyncio
async def test_webhook_duplicate_is_acknowledged_once(async_client, container):
    body = webhook_body()

    first = await post_webhook(async_client, body, signed_headers(body))
    second = await post_webhook(async_client, body, signed_headers(body))

    assert first.status_code == 202
    assert second.status_code == 200
    assert second.json() == {"status": "duplicate", "event_id": "evt-1"}
    assert container.event_bus.qsize() == 1


@pytest.mark.asyncio
async def test_webhook_bad_signature(async_client, container):
    body = webhook_body()

    resp = await post_webhook(async_client, body, signed_headers(body, secret="wrong"))

    assert resp.status_code == 401
    assert resp.json()["detail"]["reason"] == "signature_mismatch"
    assert container.event_bus.qsize() == 0


@pytest.mark.asyncio
async def test_webhook_missing_signature(async_client):
    body = webhook_body()

    resp = await post_webhook(async_client, body, {"content-type": "application/json"})

    assert resp.status_code == 401
    assert resp.json()["detail"]["reason"] == "malformed_header"


@pytest.mark.asyncio
async def test_webhook_stale_signature(async_client):
    body = webhook_body()
    old = int(time.time() * 1000) - 120_000

    resp = await post_webhook(async_client, body, signed_headers(body, timestamp=old))

    assert resp.status_code == 401
    assert resp.json()["detail"]["reason"] == "stale_signature"


@pytest.mark.asyncio
async def test_webhook_rejected_event_is_not_recorded(async_client, container):
    body = webhook_body()

    await post_webhook(async_client, body, signed_headers(body, secret="wrong"))
    resp = await post_webhook(async_client, body, signed_headers(body))

    assert resp.status_code == 202


@pytest.mark.asyncio
async def test_webhook_invalid_json(async_client):
    resp = await async_client.post(
        "/webhook",
        content=b"{not json",
        headers={SIGNATURE_HEADER: "t=1,v1=abc"},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_invalid_shape(async_client):
    body = {"data": {"documentId": "post-1"}}

    resp = await post_webhook(async_client, body, signed_headers(body))

    assert resp.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("event_type", ["post_created", "post_updated"])
async def test_webhook_without_content_is_rejected(async_client, container, event_type):
    body = webhook_body(event_type=event_type, content=None)

    resp = await post_webhook(async_client, body, signed_headers(body))

    assert resp.status_code == 400
    assert container.event_bus.qsize() == 0
    assert (await container.idempotency_guard.admit("evt-1")).admitted is True


@pytest.mark.asyncio
async def test_webhook_delete_needs_no_content(async_client, container):
    body = webhook_body(event_type="post_deleted", content=None)

    resp = await post_webhook(async_client, body, signed_headers(body))

    assert resp.status_code == 202


@pytest.mark.asyncio
async def test_webhook_full_bus_releases_event(async_client, container):
    container.event_bus = EventBus(maxsize=1)
    first = webhook_body(event_id="evt-1")
    second = webhook_body(event_id="evt-2")

    assert (await post_webhook(async_client, first, signed_headers(first))).status_code == 202
    resp = await post_webhook(async_client, second, signed_headers(second))
    assert resp.status_code == 503

    admission = await container.idempotency_guard.admit("evt-2")
    assert admission.admitted is True


# ---------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------

async def seed(store):
    await store.upsert(
        [
            VectorRecord(id="post-a#chunk1", values=[1.0, 0.0, 0.0], metadata={"chunkCount": 1}),
            VectorRecord(id="post-b#chunk2", values=[0.6, 0.8, 0.0]),
        ]
    )


@pytest.mark.asyncio
async def test_search_missing_text(async_client):
    resp = await async_client.get("/search")

    assert resp.status_code == 400
    assert resp.json() == {"message": "Bad request, missing query string parameter 'text'"}


@pytest.mark.asyncio
async def test_search_returns_matches(async_client, vector_store):
    await seed(vector_store)

    resp = await async_client.get("/search", params={"text": "deploying"})

    assert resp.status_code == 200
    matches = resp.json()["matches"]
    assert [m["post"]["id"] for m in matches] == ["post-a", "post-b"]
    assert matches[0]["similarity_score"] >= matches[1]["similarity_score"]
    assert matches[0]["post"]["author"] == {"username": "writer", "name": "A Writer"}


@pytest.mark.asyncio
async def test_search_accepts_post(async_client, vector_store):
    await seed(vector_store)

    resp = await async_client.post("/search", params={"text": "deploying"})

    assert resp.status_code == 200
    assert len(resp.json()["matches"]) == 2


@pytest.mark.asyncio
async def test_search_empty_index(async_client):
    resp = await async_client.get("/search", params={"text": "anything"})

    assert resp.status_code == 200
    assert resp.json() == {"matches": []}


@pytest.mark.asyncio
async def test_search_embedding_error(async_client, mock_embedder):
    mock_embedder.embed.side_effect = EmbeddingProviderError("rate limited")

    resp = await async_client.get("/search", params={"text": "q"})

    assert resp.status_code == 500
    assert resp.json() == {"message": "Error creating embeddings", "error": "rate limited"}


@pytest.mark.asyncio
async def test_search_index_error(async_client, container, mock_embedder, mock_content_client):
    container.search_pipeline = SearchPipeline(mock_embedder, _BrokenStore(), mock_content_client)

    resp = await async_client.get("/search", params={"text": "q"})

    assert resp.status_code == 500
    assert resp.json()["message"] == "Error querying index"


@pytest.mark.asyncio
async def test_search_enrichment_error(async_client, vector_store, mock_content_client):
    await seed(vector_store)
    mock_content_client.get_post_summary.side_effect = RuntimeError("down")

    resp = await async_client.get("/search", params={"text": "q"})

    assert resp.status_code == 500
    assert resp.json() == {"message": "Error fetching posts"}


class _BrokenStore:
    async def query(self, vector, top_k):
        raise VectorStoreUnavailable("connection refused")


# ---------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------

def test_health_with_lifespan(container):
    app = create_app(container=container)

    with TestClient(app) as client:
        resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "vector_backend": "faiss"}


def test_lifespan_runs_idempotency_sweep(container, settings):
    container.settings = settings.model_copy(
        update={"idempotency_purge_interval_seconds": 0.01}
    )
    container.idempotency_guard = AsyncMock(spec=IdempotencyGuard)
    container.idempotency_guard.purge_expired.return_value = 0
    app = create_app(container=container)

    with TestClient(app):
        deadline = time.monotonic() + 2
        while (
            container.idempotency_guard.purge_expired.await_count == 0
            and time.monotonic() < deadline
        ):
            time.sleep(0.01)

    assert container.idempotency_guard.purge_expired.await_count >= 1


# ---------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------

def test_pgvector_rejects_other_embedding_sizes(settings):
    mismatched = settings.model_copy(
        update={"vector_backend": "pgvector", "embedding_dimensions": 768}
    )

    with pytest.raises(ConfigurationError, match="pgvector"):
        build_container(mismatched)


def test_faiss_accepts_other_embedding_sizes(settings):
    container = build_container(settings.model_copy(update={"embedding_dimensions": 768}))

    assert container.engine is None
    assert container.event_bus.dead_letters.maxlen == settings.event_dead_letter_limit
