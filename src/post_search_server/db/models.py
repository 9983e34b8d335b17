"""
SQLAlchemy Models

Defines the database schema for:
- Vector records (pgvector), keyed by deterministic chunk id
- The idempotency ledger for inbound webhook events
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Index, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector


# text-embedding-3-small. Startup rejects any other embedding_dimensions
# when the pgvector backend is selected.
EMBEDDING_DIMENSIONS = 1536


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Vector Record Model
# ---------------------------------------------------------------------

class VectorRecordRow(Base):
    """
    One embedded chunk.

    ``id`` is ``"<documentId>#chunk<N>"``. There is no document_id column:
    the set of ids for a post is discovered through chunk1's
    ``record_metadata["chunkCount"]``.
    """
    __tablename__ = "vector_record"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    embedding = Column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    record_metadata: Mapped[Dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


# ---------------------------------------------------------------------
# Idempotency Record Model
# ---------------------------------------------------------------------

class IdempotencyRecord(Base):
    """
    Marks an inbound event id as seen until ``expiration``.

    A row whose expiration has passed is logically absent, whether or not it
    has been physically removed yet.
    """
    __tablename__ = "idempotency_record"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    expiration: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_idempotency_expiration", "expiration"),
    )
