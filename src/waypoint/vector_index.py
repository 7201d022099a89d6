"""
Waypoint VectorIndex -- append-only (id, vector, payload) store with a linear
cosine-similarity scan.

The whole index is one JSON document (``vectors/index.json``). Search is an
O(N) numpy scan over a snapshot of the entries, which is fine up to tens of
thousands of items; past that an approximate-nearest-neighbour index would be
needed, and that is deliberately not part of this class.

Persistence failures raise StorageIOError but do not roll back the in-memory
index: the index stays usable even if the last write to disk failed.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from waypoint.documents import DocumentStore, ensure_json
from waypoint.embeddings import EmbeddingGenerator
from waypoint.errors import NotFoundError, StoreClosedError, ValidationError
from waypoint.types import MemoryRecord, parse_dt, utcnow, utcnow_iso

logger = logging.getLogger("waypoint.vector_index")

INDEX_DOCUMENT = "vectors/index.json"


@dataclass
class VectorEntry:
    id: str
    vector: List[float]
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def timestamp(self) -> Optional[str]:
        return self.payload.get("timestamp")

    def to_record(self) -> MemoryRecord:
        data = dict(self.payload)
        data["id"] = self.id
        data["embedding"] = self.vector
        return MemoryRecord.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "vector": self.vector, "payload": self.payload}


@dataclass
class VectorHit:
    id: str
    similarity: float
    payload: Dict[str, Any]

    @property
    def content(self) -> str:
        return self.payload.get("content", "")


class VectorIndex:
    """Append-only vector store with cosine search and retention pruning."""

    def __init__(self, documents: DocumentStore, embedder: EmbeddingGenerator):
        self._documents = documents
        self._embedder = embedder
        self.dimension = embedder.dimension
        self._lock = threading.RLock()
        self._entries: List[VectorEntry] = []
        self._by_id: Dict[str, VectorEntry] = {}
        self._last_updated = utcnow_iso()
        self._closed = False
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        data = self._documents.read(INDEX_DOCUMENT)
        if not data:
            logger.info("Creating new vector index (dimension=%d)", self.dimension)
            return
        stored_dim = data.get("dimension", self.dimension)
        if stored_dim != self.dimension:
            raise ValidationError(
                f"Vector index on disk has dimension {stored_dim}, configured dimension is {self.dimension}"
            )
        for raw in data.get("vectors") or []:
            entry = VectorEntry(id=raw["id"], vector=list(raw.get("vector") or []), payload=dict(raw.get("payload") or {}))
            if len(entry.vector) != self.dimension:
                logger.warning("Skipping vector %s with dimension %d", entry.id, len(entry.vector))
                continue
            self._entries.append(entry)
            self._by_id[entry.id] = entry
        self._last_updated = data.get("last_updated") or self._last_updated
        logger.debug("Vector index loaded: %d vectors", len(self._entries))

    def _save(self) -> None:
        with self._lock:
            self._last_updated = utcnow_iso()
            doc = {
                "dimension": self.dimension,
                "count": len(self._entries),
                "last_updated": self._last_updated,
                "vectors": [e.to_dict() for e in self._entries],
            }
            self._documents.write(INDEX_DOCUMENT, doc)

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Vector index is closed")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(self, record: MemoryRecord) -> MemoryRecord:
        """Add a record, computing its embedding if absent. Returns the stored record."""
        self._check_open()
        if not record.embedding:
            record = record.with_embedding(self._embedder.embed(record.content))
        if len(record.embedding) != self.dimension:
            raise ValidationError(
                f"Embedding for {record.id} has dimension {len(record.embedding)}, expected {self.dimension}"
            )
        entry = VectorEntry(id=record.id, vector=list(record.embedding), payload=record.to_dict())
        ensure_json(entry.to_dict(), f"Record {record.id}")
        with self._lock:
            if record.id in self._by_id:
                raise ValidationError(f"Record {record.id} is already indexed")
            self._entries.append(entry)
            self._by_id[record.id] = entry
        logger.debug("Stored vector %s", record.id)
        self._save()
        return record

    def remove(self, record_id: str) -> bool:
        self._check_open()
        with self._lock:
            entry = self._by_id.pop(record_id, None)
            if entry is None:
                return False
            self._entries = [e for e in self._entries if e.id != record_id]
        self._save()
        return True

    def update_metadata(self, record_id: str, patch: Dict[str, Any]) -> MemoryRecord:
        self._check_open()
        with self._lock:
            entry = self._by_id.get(record_id)
            if entry is None:
                raise NotFoundError(f"Record {record_id} not found")
            merged = dict(entry.payload.get("metadata") or {})
            merged.update(patch)
            ensure_json(merged, f"Metadata for {record_id}")
            entry.payload = {**entry.payload, "metadata": merged}
            record = entry.to_record()
        self._save()
        return record

    def prune(self, retention_days: float) -> List[str]:
        """Remove entries older than ``retention_days``. Returns removed ids.

        The filter runs over a snapshot without holding the lock, so searches
        keep going; only the final swap is serialized with inserts.
        """
        self._check_open()
        cutoff = utcnow() - timedelta(days=retention_days)
        with self._lock:
            snapshot = list(self._entries)

        expired = set()
        for entry in snapshot:
            ts = parse_dt(entry.timestamp)
            if ts is not None and ts < cutoff:
                expired.add(entry.id)

        if not expired:
            return []

        with self._lock:
            self._entries = [e for e in self._entries if e.id not in expired]
            for rid in expired:
                self._by_id.pop(rid, None)
        logger.info("Vector index pruned %d entries older than %s days", len(expired), retention_days)
        self._save()
        return sorted(expired)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(self, query_vector: Sequence[float], limit: int = 10, threshold: float = 0.1) -> List[VectorHit]:
        """Top ``limit`` entries with cosine similarity >= ``threshold``."""
        if len(query_vector) != self.dimension:
            raise ValidationError(f"Query vector has dimension {len(query_vector)}, expected {self.dimension}")
        if limit is not None and limit <= 0:
            return []
        with self._lock:
            snapshot = list(self._entries)
        if not snapshot:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        matrix = np.asarray([e.vector for e in snapshot], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        dots = matrix @ query
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = np.where(norms > 0, dots / (norms * query_norm), 0.0)

        candidates = np.nonzero(sims >= threshold)[0]
        # Stable sort keeps insertion order among equal similarities
        ordered = candidates[np.argsort(-sims[candidates], kind="stable")]
        if limit is not None:
            ordered = ordered[:limit]
        return [VectorHit(id=snapshot[i].id, similarity=float(sims[i]), payload=dict(snapshot[i].payload)) for i in ordered]

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        with self._lock:
            entry = self._by_id.get(record_id)
            return entry.to_record() if entry else None

    def records(self) -> List[MemoryRecord]:
        with self._lock:
            snapshot = list(self._entries)
        return [e.to_record() for e in snapshot]

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._by_id

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {"count": len(self._entries), "dimension": self.dimension, "last_updated": self._last_updated}

    def close(self) -> None:
        if self._closed:
            return
        try:
            self._save()
        finally:
            self._closed = True
        logger.info("Vector index closed")
