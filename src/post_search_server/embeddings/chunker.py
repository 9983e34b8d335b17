"""
Markdown Chunker

Splits a post's markdown body into ordered, overlapping segments for
embedding. Splitting walks markdown structure from coarse to fine (headings,
code fences, horizontal rules, paragraphs, lines, words) and only cuts inside
a word when nothing else fits in ``chunk_size``.

The output is deterministic: the same text and parameters always give the
same ordered segments, which the vector ids depend on.
"""

from __future__ import annotations

import logging
from typing import List

from langchain_text_splitters import Language, RecursiveCharacterTextSplitter

from .models import DocumentChunk

logger = logging.getLogger("post_search.chunker")


class Chunker:
    """
    Recursive markdown splitter with a fixed size and overlap.

    Stateless after construction and safe to share.
    """

    def __init__(self, chunk_size: int = 500, chunk_overlap: int = 0) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive; got {chunk_size}")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size); got {chunk_overlap}"
            )

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter.from_language(
            Language.MARKDOWN,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
        )

    def split(self, markdown: str) -> List[str]:
        """
        Return the ordered text segments of ``markdown``.

        Empty or whitespace-only input gives an empty list.
        """
        if not markdown or not markdown.strip():
            return []
        return [s for s in self._splitter.split_text(markdown) if s.strip()]

    def chunk(self, document_id: str, markdown: str) -> List[DocumentChunk]:
        """Split ``markdown`` and tag each segment with its 1-based position."""
        segments = self.split(markdown)
        total = len(segments)

        logger.debug(
            "Split document %s into %d chunks (size=%d, overlap=%d)",
            document_id,
            total,
            self.chunk_size,
            self.chunk_overlap,
        )

        return [
            DocumentChunk(
                document_id=document_id,
                chunk_index=i,
                text=text,
                total_chunk_count=total,
            )
            for i, text in enumerate(segments, start=1)
        ]
