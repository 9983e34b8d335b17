"""
Idempotency Ledger (PostgreSQL)

Persists ``event id → expiration`` records for the idempotency guard.

Admission is a single conditional upsert: the row is inserted, or an existing
row is overwritten only when it has already expired. PostgreSQL serializes
conflicting inserts on the primary key, so of several concurrent callers with
the same id exactly one gets a row back from ``RETURNING``.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import IdempotencyRecord


class SqlIdempotencyLedger:
    """
    Idempotency ledger backed by the ``idempotency_record`` table.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def try_insert(self, key: str, now: datetime, expiration: datetime) -> bool:
        """
        Atomically claim ``key`` until ``expiration``.

        Returns True when no live record existed (the caller is admitted).
        """
        stmt = pg_insert(IdempotencyRecord).values(
            id=key,
            expiration=expiration,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[IdempotencyRecord.id],
            set_={"expiration": stmt.excluded.expiration},
            where=IdempotencyRecord.expiration <= now,
        ).returning(IdempotencyRecord.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            claimed = result.scalar_one_or_none()
            await session.commit()

        return claimed is not None

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(IdempotencyRecord).where(IdempotencyRecord.id == key)
            )
            await session.commit()

    async def purge_expired(self, now: datetime) -> int:
        """
        Physically remove expired rows. Returns the number removed.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                delete(IdempotencyRecord).where(IdempotencyRecord.expiration <= now)
            )
            await session.commit()
        return result.rowcount or 0
