"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
PostgreSQL-backed stores (pgvector index, idempotency ledger).
"""

from .session import create_engine, create_session_factory, init_db
from .models import Base, VectorRecordRow, IdempotencyRecord
from .vector_store import PgVectorStore
from .idempotency import SqlIdempotencyLedger

__all__ = [
    "create_engine",
    "create_session_factory",
    "init_db",
    "Base",
    "VectorRecordRow",
    "IdempotencyRecord",
    "PgVectorStore",
    "SqlIdempotencyLedger",
]
