"""
Vector Store

PostgreSQL + pgvector implementation of the ``VectorStore`` interface.

Every call runs in its own session and transaction, so each operation is
independently atomic and nothing is shared across calls. Upsert is atomic per
id; there is no cross-id atomicity.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import VectorRecordRow
from ..core.errors import VectorStoreUnavailable
from ..embeddings.models import SearchHit, VectorRecord

logger = logging.getLogger("post_search.vector_store")


class PgVectorStore:
    """
    PostgreSQL-backed vector store using pgvector cosine distance.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Parameters
        ----------
        session_factory : async_sessionmaker[AsyncSession]
            Factory producing a fresh session per operation.
        """
        self._session_factory = session_factory

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        """
        Insert or overwrite records by id.
        """
        if not records:
            return

        stmt = pg_insert(VectorRecordRow).values(
            [
                {
                    "id": r.id,
                    "embedding": r.values,
                    "record_metadata": r.metadata,
                }
                for r in records
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[VectorRecordRow.id],
            set_={
                "embedding": stmt.excluded.embedding,
                "record_metadata": stmt.excluded.record_metadata,
                "updated_at": func.now(),
            },
        )

        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("failed to upsert %d vectors: %s", len(records), exc)
            raise VectorStoreUnavailable(
                f"Vector upsert failed: {type(exc).__name__}"
            ) from exc

    async def fetch(self, ids: Sequence[str]) -> Mapping[str, VectorRecord]:
        """
        Return the records found for ``ids``; missing ids are omitted.
        """
        if not ids:
            return {}

        stmt = select(
            VectorRecordRow.id,
            VectorRecordRow.embedding,
            VectorRecordRow.record_metadata,
        ).where(VectorRecordRow.id.in_(list(ids)))

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("failed to fetch vectors: %s", exc)
            raise VectorStoreUnavailable(
                f"Vector fetch failed: {type(exc).__name__}"
            ) from exc

        found: Dict[str, VectorRecord] = {}
        for row in rows:
            found[row.id] = VectorRecord(
                id=row.id,
                values=[float(x) for x in row.embedding],
                metadata=dict(row.record_metadata or {}),
            )
        return found

    async def delete_many(self, ids: Sequence[str]) -> None:
        """
        Delete the given ids. Absent ids are ignored.
        """
        if not ids:
            return

        stmt = delete(VectorRecordRow).where(VectorRecordRow.id.in_(list(ids)))

        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("failed to delete %d vectors: %s", len(ids), exc)
            raise VectorStoreUnavailable(
                f"Vector delete failed: {type(exc).__name__}"
            ) from exc

    async def query(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        """
        Return the ``top_k`` nearest records by cosine similarity, best first.
        """
        cosine_distance = VectorRecordRow.embedding.cosine_distance(list(vector))

        stmt = (
            select(
                VectorRecordRow.id,
                (1 - cosine_distance).label("score"),
            )
            .order_by(cosine_distance)
            .limit(top_k)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("failed to query index: %s", exc)
            raise VectorStoreUnavailable(
                f"Vector query failed: {type(exc).__name__}"
            ) from exc

        return [SearchHit(id=row.id, score=float(row.score)) for row in rows]
