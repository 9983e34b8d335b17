"""
FAISS Vector Store

A local, file-persisted implementation of the ``VectorStore`` interface, used
for development and single-node deployments where PostgreSQL is not
available.

Key Properties
--------------
- String vector ids mapped onto FAISS int64 ids via IndexIDMap2
- Cosine similarity (inner product over L2-normalized vectors)
- Upsert replaces an existing id in place
- Optional persistence (index + JSON metadata) after every mutation
- Concurrency-safe (thread locking)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Sequence

import faiss
import numpy as np

from .models import SearchHit, VectorRecord
from ..core.errors import VectorStoreUnavailable

logger = logging.getLogger("post_search.faiss")


class FaissVectorStore:
    """
    Persistent FAISS index keyed by deterministic vector ids.

    All public methods are coroutines to satisfy the ``VectorStore``
    interface; the work itself is in-process and guarded by an RLock.
    """

    def __init__(
        self,
        index_path: Optional[str] = None,
        meta_path: Optional[str] = None,
        dimensions: Optional[int] = None,
    ) -> None:
        """
        Parameters
        ----------
        index_path : Optional[str]
            Where to persist the FAISS index. No persistence when None.

        meta_path : Optional[str]
            Where to persist the id map and record metadata.

        dimensions : Optional[int]
            Vector length. Inferred from the first upsert when None.
        """
        self._index_path = index_path
        self._meta_path = meta_path
        self._dimensions = dimensions

        self._index: Optional[faiss.IndexIDMap2] = None
        self._int_ids: Dict[str, int] = {}
        self._records: Dict[int, Dict[str, Any]] = {}
        self._next_id: int = 0

        self._lock = RLock()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _init_index(self, dim: int) -> None:
        base = faiss.IndexFlatIP(dim)
        self._index = faiss.IndexIDMap2(base)
        self._dimensions = dim

    def _validate(self, records: Sequence[VectorRecord]) -> int:
        dim = self._dimensions or len(records[0].values)
        for record in records:
            if len(record.values) != dim:
                raise VectorStoreUnavailable(
                    f"Vector {record.id!r} has {len(record.values)} dimensions; "
                    f"index expects {dim}."
                )
        return dim

    def _remove(self, int_ids: List[int]) -> None:
        if not int_ids or self._index is None:
            return
        self._index.remove_ids(np.asarray(int_ids, dtype="int64"))
        for int_id in int_ids:
            record = self._records.pop(int_id, None)
            if record is not None:
                self._int_ids.pop(record["id"], None)

    @property
    def persistent(self) -> bool:
        return bool(self._index_path and self._meta_path)

    # ------------------------------------------------------------------
    # VectorStore API
    # ------------------------------------------------------------------

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return

        with self._lock:
            dim = self._validate(records)
            if self._index is None:
                self._init_index(dim)

            # Last write wins for duplicate ids within one call.
            latest = {record.id: record for record in records}

            try:
                self._remove(
                    [self._int_ids[vid] for vid in latest if vid in self._int_ids]
                )

                ids = np.arange(
                    self._next_id,
                    self._next_id + len(latest),
                    dtype="int64",
                )
                self._next_id += len(latest)

                vectors = np.asarray(
                    [r.values for r in latest.values()], dtype="float32"
                )
                faiss.normalize_L2(vectors)
                self._index.add_with_ids(vectors, ids)
            except Exception as exc:
                raise VectorStoreUnavailable(
                    f"Failed to upsert vectors into FAISS: {type(exc).__name__}"
                ) from exc

            for int_id, record in zip(ids, latest.values()):
                self._int_ids[record.id] = int(int_id)
                self._records[int(int_id)] = {
                    "id": record.id,
                    "metadata": dict(record.metadata),
                }

            self._persist()

    async def fetch(self, ids: Sequence[str]) -> Mapping[str, VectorRecord]:
        with self._lock:
            found: Dict[str, VectorRecord] = {}
            if self._index is None:
                return found

            for vid in ids:
                int_id = self._int_ids.get(vid)
                if int_id is None:
                    continue
                try:
                    values = self._index.reconstruct(int_id)
                except Exception as exc:
                    raise VectorStoreUnavailable(
                        f"Failed to read vector {vid!r}: {type(exc).__name__}"
                    ) from exc

                found[vid] = VectorRecord(
                    id=vid,
                    values=[float(x) for x in values],
                    metadata=dict(self._records[int_id]["metadata"]),
                )
            return found

    async def delete_many(self, ids: Sequence[str]) -> None:
        with self._lock:
            int_ids = [self._int_ids[vid] for vid in ids if vid in self._int_ids]
            if not int_ids:
                return
            try:
                self._remove(int_ids)
            except Exception as exc:
                raise VectorStoreUnavailable(
                    f"Failed to remove ids from FAISS: {type(exc).__name__}"
                ) from exc
            self._persist()

    async def query(self, vector: Sequence[float], top_k: int) -> List[SearchHit]:
        with self._lock:
            if self._index is None or not self._records:
                return []

            q = np.asarray([vector], dtype="float32")
            if q.shape[1] != self._dimensions:
                raise VectorStoreUnavailable(
                    f"Query has {q.shape[1]} dimensions; index expects {self._dimensions}."
                )
            faiss.normalize_L2(q)

            k = min(top_k, len(self._records))
            try:
                scores, idxs = self._index.search(q, k)
            except Exception as exc:
                raise VectorStoreUnavailable(
                    f"FAISS search failed: {type(exc).__name__}"
                ) from exc

            hits: List[SearchHit] = []
            for score, idx in zip(scores[0], idxs[0]):
                record = self._records.get(int(idx))
                if record is None:
                    continue
                hits.append(SearchHit(id=record["id"], score=float(score)))

            hits.sort(key=lambda h: h.score, reverse=True)
            return hits

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if self.persistent:
            self.save()

    def save(self) -> None:
        """
        Persist both the FAISS index and the id/metadata map to disk.
        """
        with self._lock:
            if self._index is None or not self.persistent:
                return

            index_path = Path(self._index_path)
            meta_path = Path(self._meta_path)

            try:
                index_path.parent.mkdir(parents=True, exist_ok=True)
                faiss.write_index(self._index, str(index_path))

                meta = {
                    "next_id": self._next_id,
                    "dimensions": self._dimensions,
                    "records": {str(k): v for k, v in self._records.items()},
                }
                meta_path.parent.mkdir(parents=True, exist_ok=True)
                with meta_path.open("w", encoding="utf-8") as f:
                    json.dump(meta, f)
            except Exception as exc:
                raise VectorStoreUnavailable(
                    f"Failed to persist FAISS index: {type(exc).__name__}"
                ) from exc

    def load(self) -> None:
        """
        Load the index and metadata from disk if present.
        """
        with self._lock:
            if not self.persistent:
                return

            index_path = Path(self._index_path)
            meta_path = Path(self._meta_path)

            if not index_path.exists() or not meta_path.exists():
                return

            try:
                self._index = faiss.read_index(str(index_path))
                with meta_path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except Exception as exc:
                raise VectorStoreUnavailable(
                    f"Failed to load FAISS index: {type(exc).__name__}"
                ) from exc

            self._next_id = int(data.get("next_id", 0))
            self._dimensions = data.get("dimensions") or self._index.d
            self._records = {int(k): v for k, v in data.get("records", {}).items()}
            self._int_ids = {v["id"]: k for k, v in self._records.items()}

            logger.info(
                "Loaded FAISS index from %s (%d vectors)",
                index_path,
                len(self._records),
            )
