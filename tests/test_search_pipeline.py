import asyncio
from unittest.mock import AsyncMock

import pytest

from post_search_server.core.errors import (
    DocumentFetchError,
    EmbeddingProviderError,
    EnrichmentUnavailable,
    MissingQueryText,
)
from post_search_server.embeddings.models import SearchHit, VectorRecord, VectorStore
from post_search_server.search.pipeline import SearchPipeline


async def seed(store):
    await store.upsert(
        [
            VectorRecord(id="post-a#chunk1", values=[1.0, 0.0, 0.0], metadata={"chunkCount": 2}),
            VectorRecord(id="post-a#chunk2", values=[0.9, 0.1, 0.0]),
            VectorRecord(id="post-b#chunk1", values=[0.5, 0.5, 0.0], metadata={"chunkCount": 1}),
            VectorRecord(id="post-c#chunk1", values=[0.0, 1.0, 0.0], metadata={"chunkCount": 1}),
        ]
    )


@pytest.fixture
def pipeline(mock_embedder, vector_store, mock_content_client):
    return SearchPipeline(mock_embedder, vector_store, mock_content_client, top_k=3)


@pytest.mark.asyncio
async def test_search_returns_enriched_matches_best_first(
    pipeline, vector_store, mock_content_client
):
    await seed(vector_store)

    matches = await pipeline.search("how do I deploy")

    assert [m.post["id"] for m in matches] == ["post-a", "post-a", "post-b"]
    scores = [m.similarity_score for m in matches]
    assert scores == sorted(scores, reverse=True)
    assert matches[0].post["title"] == "Title of post-a"
    called = [c.args[0] for c in mock_content_client.get_post_summary.await_args_list]
    assert called == ["post-a", "post-a", "post-b"]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", [None, "", "   "])
async def test_missing_text(pipeline, mock_embedder, text):
    with pytest.raises(MissingQueryText):
        await pipeline.search(text)
    mock_embedder.embed.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_hits_returns_empty(pipeline, mock_content_client):
    assert await pipeline.search("anything") == []
    mock_content_client.get_post_summary.assert_not_awaited()


@pytest.mark.asyncio
async def test_partial_enrichment_keeps_successes(pipeline, vector_store, mock_content_client):
    await seed(vector_store)

    async def summary(post_id):
        if post_id == "post-a":
            raise DocumentFetchError("not found")
        return {"id": post_id}

    mock_content_client.get_post_summary.side_effect = summary

    matches = await pipeline.search("query")

    assert len(matches) == 1
    assert matches[0].post == {"id": "post-b"}


@pytest.mark.asyncio
async def test_all_enrichments_failing_raises(pipeline, vector_store, mock_content_client):
    await seed(vector_store)
    mock_content_client.get_post_summary.side_effect = DocumentFetchError("down")

    with pytest.raises(EnrichmentUnavailable):
        await pipeline.search("query")


@pytest.mark.asyncio
async def test_enrichment_runs_concurrently(pipeline, vector_store, mock_content_client):
    await seed(vector_store)
    in_flight = 0
    peak = 0

    async def summary(post_id):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return {"id": post_id}

    mock_content_client.get_post_summary.side_effect = summary

    await pipeline.search("query")
    assert peak == 3


@pytest.mark.asyncio
async def test_store_order_is_normalized(mock_embedder, mock_content_client):
    store = AsyncMock(spec=VectorStore)
    store.query.return_value = [
        SearchHit(id="low#chunk1", score=0.1),
        SearchHit(id="high#chunk3", score=0.9),
        SearchHit(id="mid#chunk2", score=0.5),
        SearchHit(id="extra#chunk1", score=0.05),
    ]
    pipeline = SearchPipeline(mock_embedder, store, mock_content_client, top_k=3)

    matches = await pipeline.search("query")

    assert [m.post["id"] for m in matches] == ["high", "mid", "low"]
    store.query.assert_awaited_once_with([1.0, 0.0, 0.0], 3)


@pytest.mark.asyncio
async def test_embedding_failure_propagates(pipeline, mock_embedder):
    mock_embedder.embed.side_effect = EmbeddingProviderError("down")

    with pytest.raises(EmbeddingProviderError):
        await pipeline.search("query")
