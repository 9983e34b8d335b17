"""
Embedding Data Models

This module defines the records that flow between the chunker, the embedding
client and the vector store, together with the deterministic vector id scheme.

A vector id is ``"<documentId>#chunk<index>"`` with a 1-based index. It is the
only link from a stored vector back to its post and chunk position.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, Field, ConfigDict


CHUNK_COUNT_KEY = "chunkCount"

_CHUNK_SUFFIX = re.compile(r"#chunk\d+$")


# ---------------------------------------------------------------------
# Vector id scheme
# ---------------------------------------------------------------------

def vector_id(document_id: str, chunk_index: int) -> str:
    """Return the vector id of chunk ``chunk_index`` (1-based) of a document."""
    if chunk_index < 1:
        raise ValueError(f"chunk_index must be >= 1; got {chunk_index}")
    return f"{document_id}#chunk{chunk_index}"


def chunk_ids(document_id: str, chunk_count: int) -> List[str]:
    """Return ``[<id>#chunk1, ..., <id>#chunk<chunk_count>]``."""
    return [vector_id(document_id, i) for i in range(1, chunk_count + 1)]


def document_id_from_vector_id(vid: str) -> str:
    """Strip the ``#chunk<N>`` suffix from a vector id."""
    return _CHUNK_SUFFIX.sub("", vid)


# ---------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------

class DocumentChunk(BaseModel):
    """
    One text segment of a post, ready to be embedded.
    """

    document_id: str = Field(..., min_length=1)
    chunk_index: int = Field(..., ge=1)
    text: str
    total_chunk_count: int = Field(..., ge=1)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def vector_id(self) -> str:
        return vector_id(self.document_id, self.chunk_index)


class VectorRecord(BaseModel):
    """
    A stored embedding.

    ``metadata[CHUNK_COUNT_KEY]`` on ``chunk1`` tells deletion how many
    records the document owns.
    """

    id: str = Field(..., min_length=1)
    values: List[float] = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @property
    def chunk_count(self) -> Optional[int]:
        count = self.metadata.get(CHUNK_COUNT_KEY)
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            return None
        return count


class SearchHit(BaseModel):
    """A nearest-neighbour match returned by the vector store."""

    id: str
    score: float

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def document_id(self) -> str:
        return document_id_from_vector_id(self.id)


# ---------------------------------------------------------------------
# Capability interface
# ---------------------------------------------------------------------

class VectorStore(Protocol):
    """
    CRUD over a vector index addressed only by vector id.

    Implementations raise ``VectorStoreUnavailable`` on transport failure.
    """

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        ...

    async def fetch(self, ids: Sequence[str]) -> Mapping[str, VectorRecord]:
        ...

    async def delete_many(self, ids: Sequence[str]) -> None:
        ...

    async def query(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        ...
