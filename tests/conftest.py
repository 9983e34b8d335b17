import math
from typing import Dict, List, Mapping, Sequence
from unittest.mock import AsyncMock

import pytest

from post_search_server.config import Settings
from post_search_server.content.api_client import ContentApiClient
from post_search_server.embeddings.chunker import Chunker
from post_search_server.embeddings.embedder import Embedder
from post_search_server.embeddings.models import SearchHit, VectorRecord

TEST_WEBHOOK_SECRET = "test-webhook-secret"


class InMemoryVectorStore:
    """Dict-backed VectorStore with cosine scoring."""

    def __init__(self):
        self.records: Dict[str, VectorRecord] = {}
        self.deleted: List[List[str]] = []

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        for record in records:
            self.records[record.id] = record

    async def fetch(self, ids: Sequence[str]) -> Mapping[str, VectorRecord]:
        return {i: self.records[i] for i in ids if i in self.records}

    async def delete_many(self, ids: Sequence[str]) -> None:
        self.deleted.append(list(ids))
        for i in ids:
            self.records.pop(i, None)

    async def query(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        def cosine(a, b):
            dot = sum(x * y for x, y in zip(a, b))
            norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
            return dot / norm if norm else 0.0

        hits = [SearchHit(id=r.id, score=cosine(vector, r.values)) for r in self.records.values()]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]


def paragraph(letter: str) -> str:
    # 35 characters: six five-letter words
    return " ".join([letter * 5] * 6)


def markdown(*letters: str) -> str:
    return "\n\n".join(paragraph(c) for c in letters)


@pytest.fixture
def vector_store():
    return InMemoryVectorStore()


@pytest.fixture
def mock_embedder():
    mock = AsyncMock(spec=Embedder)
    # Deterministic 3-dim vectors derived from the text
    mock.embed_batch.side_effect = lambda texts: [
        [float(len(t)), float(ord(t[0])), 1.0] for t in texts
    ]
    mock.embed.return_value = [1.0, 0.0, 0.0]
    return mock


@pytest.fixture
def mock_content_client():
    mock = AsyncMock(spec=ContentApiClient)

    async def summary(post_id):
        return {
            "id": post_id,
            "author": {"username": "writer", "name": "A Writer"},
            "title": f"Title of {post_id}",
            "brief": "Brief",
        }

    mock.get_post_summary.side_effect = summary
    return mock


@pytest.fixture
def small_chunker():
    return Chunker(chunk_size=50, chunk_overlap=0)


@pytest.fixture
def settings():
    return Settings(
        webhook_secret=TEST_WEBHOOK_SECRET,
        openai_api_key="test-openai-key",
        vector_backend="faiss",
        idempotency_backend="memory",
        event_retry_delay_seconds=0,
        chunk_size=50,
        chunk_overlap=0,
    )
