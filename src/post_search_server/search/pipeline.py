"""
Semantic Search Pipeline

Answers a natural-language query against the post index.

Responsibilities
----------------
- Validate the query text
- Embed the query
- Find the nearest chunks in the vector store
- Enrich every hit with a post summary, concurrently and independently
- Keep successful enrichments in store order; fail only if all fail
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ..content.api_client import ContentApiClient
from ..core.errors import EnrichmentUnavailable, MissingQueryText
from ..embeddings.embedder import Embedder
from ..embeddings.models import SearchHit, VectorStore

logger = logging.getLogger("post_search.search")


class SearchMatch(BaseModel):
    """A post summary paired with the similarity score of its hit."""

    post: Dict[str, Any]
    similarity_score: float

    model_config = ConfigDict(extra="forbid")


class SearchPipeline:
    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        content_client: ContentApiClient,
        top_k: int = 3,
    ) -> None:
        self._embedder = embedder
        self._vector_store = vector_store
        self._content_client = content_client
        self.top_k = top_k

    async def search(self, text: Optional[str]) -> List[SearchMatch]:
        """
        Run a semantic search.

        Parameters
        ----------
        text : Optional[str]
            Query text.

        Returns
        -------
        List[SearchMatch]
            Enriched matches, highest similarity first. Empty when the index
            has no hits.

        Raises
        ------
        MissingQueryText
            If ``text`` is None or blank.
        EmbeddingProviderError
            If the query cannot be embedded.
        VectorStoreUnavailable
            If the index cannot be queried.
        EnrichmentUnavailable
            If there were hits and none could be enriched.
        """
        if text is None or not text.strip():
            raise MissingQueryText("Missing query string parameter 'text'")

        vector = await self._embedder.embed(text)

        hits = await self._vector_store.query(vector, self.top_k)
        hits = sorted(hits, key=lambda h: h.score, reverse=True)[: self.top_k]
        logger.debug("Found %d hits: %s", len(hits), [h.id for h in hits])

        if not hits:
            return []

        return await self._enrich(hits)

    async def _enrich(self, hits: List[SearchHit]) -> List[SearchMatch]:
        # Settle-all: one failed fetch never cancels the others.
        results = await asyncio.gather(
            *(self._content_client.get_post_summary(h.document_id) for h in hits),
            return_exceptions=True,
        )

        matches: List[SearchMatch] = []
        for hit, result in zip(hits, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "Enrichment failed for %s: %s: %s",
                    hit.id,
                    type(result).__name__,
                    result,
                )
                continue
            matches.append(SearchMatch(post=result, similarity_score=hit.score))

        if not matches:
            logger.error("Unable to fetch any of %d posts", len(hits))
            raise EnrichmentUnavailable("Error fetching posts")

        return matches
