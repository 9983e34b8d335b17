"""
Indexing Dispatcher

Routes post lifecycle events through chunking, embedding and the vector
store.

Protocol per event type
-----------------------
post_created
    chunk → embed → upsert ``<id>#chunk1..N`` with ``chunkCount = N``.

post_updated
    read N from ``<id>#chunk1`` → delete ``chunk1..N`` → same as created.
    Deleting first is required because the new revision may have fewer
    chunks than the old one. A post that was never indexed is indexed as new.

post_deleted
    read N from ``<id>#chunk1`` → delete ``chunk1..N``. A post that was never
    indexed is a no-op.

No step is rolled back on failure. Errors propagate to the delivery layer,
whose re-delivery of the same event converges the index: re-deleting absent
ids and re-upserting identical ids are both no-ops.

Events for different posts share no state. Events for the same post are not
serialized here; two interleaved updates can leave either revision indexed.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from pydantic import ValidationError

from .models import EventDetail, EventType
from ..core.errors import UnknownChunkCount, UnsupportedEventType
from ..embeddings.chunker import Chunker
from ..embeddings.embedder import Embedder
from ..embeddings.models import (
    CHUNK_COUNT_KEY,
    VectorRecord,
    VectorStore,
    chunk_ids,
    vector_id,
)

logger = logging.getLogger("post_search.dispatcher")


class IndexingDispatcher:
    """
    Keeps the vector index in step with post lifecycle events.
    """

    def __init__(
        self,
        chunker: Chunker,
        embedder: Embedder,
        vector_store: VectorStore,
    ) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._vector_store = vector_store

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def dispatch(self, detail_type: str, detail: Mapping[str, Any]) -> None:
        """
        Handle one bus event.

        Raises
        ------
        UnsupportedEventType
            If ``detail_type`` is not a post lifecycle event or the detail
            does not match it.
        """
        try:
            event_type = EventType(detail_type)
        except ValueError as exc:
            raise UnsupportedEventType(f"Unsupported event type: {detail_type!r}") from exc

        try:
            parsed = EventDetail.model_validate(detail)
        except ValidationError as exc:
            raise UnsupportedEventType(
                f"Invalid detail for {event_type.value}: {exc.error_count()} error(s)"
            ) from exc

        logger.debug("Dispatching %s for document %s", event_type.value, parsed.document_id)

        if event_type is EventType.POST_CREATED:
            await self.on_post_created(parsed.document_id, parsed.content)
        elif event_type is EventType.POST_UPDATED:
            await self.on_post_updated(parsed.document_id, parsed.content)
        else:
            await self.on_post_deleted(parsed.document_id)

    # ------------------------------------------------------------------
    # Transition handlers
    # ------------------------------------------------------------------

    async def on_post_created(self, document_id: str, markdown: str) -> int:
        """
        Index a post. Returns the number of chunks written.
        """
        chunks = self._chunker.chunk(document_id, markdown)
        if not chunks:
            logger.warning("No content chunks for document %s, nothing indexed", document_id)
            return 0

        vectors = await self._embedder.embed_batch([c.text for c in chunks])

        records: List[VectorRecord] = [
            VectorRecord(
                id=chunk.vector_id,
                values=values,
                metadata={CHUNK_COUNT_KEY: chunk.total_chunk_count},
            )
            for chunk, values in zip(chunks, vectors)
        ]

        await self._vector_store.upsert(records)

        logger.info("Indexed document %s (%d chunks)", document_id, len(records))
        return len(records)

    async def on_post_updated(self, document_id: str, markdown: str) -> int:
        """
        Re-index a post: remove every existing chunk, then index anew.
        """
        try:
            previous = await self.resolve_chunk_count(document_id)
        except UnknownChunkCount:
            logger.info(
                "Update for never-indexed document %s, indexing as new", document_id
            )
        else:
            await self._vector_store.delete_many(chunk_ids(document_id, previous))
            logger.info("Removed %d stale chunks of document %s", previous, document_id)

        return await self.on_post_created(document_id, markdown)

    async def on_post_deleted(self, document_id: str) -> int:
        """
        Remove a post from the index. Returns the number of chunks removed.
        """
        try:
            count = await self.resolve_chunk_count(document_id)
        except UnknownChunkCount:
            logger.info("Delete for never-indexed document %s, nothing to do", document_id)
            return 0

        await self._vector_store.delete_many(chunk_ids(document_id, count))
        logger.info("Deleted document %s (%d chunks)", document_id, count)
        return count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def resolve_chunk_count(self, document_id: str) -> int:
        """
        Read the chunk count stored on ``<document_id>#chunk1``.

        Raises
        ------
        UnknownChunkCount
            If chunk1 is absent or has no usable count.
        """
        first_id = vector_id(document_id, 1)
        found = await self._vector_store.fetch([first_id])

        record: Optional[VectorRecord] = found.get(first_id)
        if record is None:
            raise UnknownChunkCount(document_id)

        count = record.chunk_count
        if count is None:
            logger.error(
                "Chunk %s carries no valid %s metadata: %r",
                first_id,
                CHUNK_COUNT_KEY,
                record.metadata,
            )
            raise UnknownChunkCount(document_id)

        return count
