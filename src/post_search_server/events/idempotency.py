"""
Idempotency Guard

Ensures each inbound webhook event is admitted for processing at most once
while its ledger record is live, despite sender retries.

The guard computes expirations and delegates the atomic conditional write to
a ledger:

- ``SqlIdempotencyLedger`` (``db.idempotency``) for deployments
- ``MemoryIdempotencyLedger`` below for single-process runs and tests

Admission only compares expirations at read time. Expired records are
removed by ``purge_periodically``, which the application runs in the
background so the ledger stays bounded.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Callable, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger("post_search.idempotency")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdmitResult(BaseModel):
    """Outcome of an admission attempt."""

    event_id: str
    admitted: bool

    model_config = ConfigDict(frozen=True, extra="forbid")


class IdempotencyLedger(Protocol):
    async def try_insert(self, key: str, now: datetime, expiration: datetime) -> bool:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def purge_expired(self, now: datetime) -> int:
        ...


# ---------------------------------------------------------------------
# In-memory ledger
# ---------------------------------------------------------------------

class MemoryIdempotencyLedger:
    """
    Process-local ledger. The check and the write happen under one lock, so
    concurrent callers with the same key cannot both succeed.
    """

    def __init__(self) -> None:
        self._records: Dict[str, datetime] = {}
        self._lock = RLock()

    async def try_insert(self, key: str, now: datetime, expiration: datetime) -> bool:
        with self._lock:
            current = self._records.get(key)
            if current is not None and current > now:
                return False
            self._records[key] = expiration
            return True

    async def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    async def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [k for k, exp in self._records.items() if exp <= now]
            for key in expired:
                del self._records[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# ---------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------

class IdempotencyGuard:
    """
    Admits each event id once per TTL window.
    """

    def __init__(
        self,
        ledger: IdempotencyLedger,
        default_ttl: timedelta = timedelta(hours=3),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Parameters
        ----------
        ledger : IdempotencyLedger
            Backing store providing an atomic conditional insert.

        default_ttl : timedelta
            Retention window used when ``admit`` is called without a TTL.

        clock : Callable[[], datetime]
            Source of timezone-aware "now"; injectable for tests.
        """
        if default_ttl <= timedelta(0):
            raise ValueError("default_ttl must be positive")

        self._ledger = ledger
        self._default_ttl = default_ttl
        self._clock = clock

    async def admit(
        self,
        event_id: str,
        ttl: Optional[timedelta] = None,
    ) -> AdmitResult:
        """
        Claim ``event_id`` for ``ttl``.

        Returns ``admitted=True`` for exactly one caller while a live record
        exists; every other caller gets ``admitted=False``.
        """
        if not event_id:
            raise ValueError("event_id is required")

        ttl = ttl or self._default_ttl
        now = self._clock()
        admitted = await self._ledger.try_insert(event_id, now, now + ttl)

        if not admitted:
            logger.info("Duplicate event %s rejected by idempotency guard", event_id)

        return AdmitResult(event_id=event_id, admitted=admitted)

    async def release(self, event_id: str) -> None:
        """
        Forget ``event_id`` so a later delivery is admitted again.

        Used when work after admission failed before the event was handed on.
        """
        await self._ledger.delete(event_id)
        logger.info("Released idempotency record for event %s", event_id)

    async def purge_expired(self) -> int:
        return await self._ledger.purge_expired(self._clock())


# ---------------------------------------------------------------------
# Background sweep
# ---------------------------------------------------------------------

async def purge_periodically(guard: IdempotencyGuard, interval_seconds: float) -> None:
    """
    Call ``guard.purge_expired()`` every ``interval_seconds`` until cancelled.

    A failed sweep is logged and retried on the next tick.
    """
    logger.info("Idempotency sweep started (every %ss).", interval_seconds)

    while True:
        try:
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            logger.info("Idempotency sweep cancelled.")
            break

        try:
            removed = await guard.purge_expired()
        except Exception:
            logger.exception("Idempotency sweep failed")
            continue

        if removed:
            logger.info("Purged %d expired idempotency records", removed)


def start_purger(guard: IdempotencyGuard, interval_seconds: float) -> "asyncio.Task[None]":
    """Launch the idempotency sweep as a background task on the running loop."""
    return asyncio.create_task(
        purge_periodically(guard, interval_seconds), name="idempotency-sweep"
    )
