"""Tests for waypoint.vector_index: append-only store, cosine search, pruning."""
from datetime import datetime, timedelta

import pytest

from waypoint.documents import DocumentStore
from waypoint.embeddings import EmbeddingGenerator
from waypoint.errors import NotFoundError, StorageIOError, StoreClosedError, ValidationError
from waypoint.types import MemoryRecord, utcnow
from waypoint.vector_index import INDEX_DOCUMENT, VectorIndex


@pytest.fixture
def embedder():
    return EmbeddingGenerator(dimension=32)


@pytest.fixture
def index(documents, embedder):
    idx = VectorIndex(documents, embedder)
    yield idx
    if not idx._closed:
        idx.close()


def _record(rid, content, category="insights", **kw):
    return MemoryRecord(id=rid, content=content, category=category, **kw)


class TestStore:
    def test_store_computes_embedding(self, index):
        stored = index.store(_record("m1", "restart nginx"))
        assert len(stored.embedding) == 32
        assert len(index) == 1
        assert "m1" in index

    def test_store_persists_whole_document(self, index, documents):
        index.store(_record("m1", "restart nginx"))
        doc = documents.read(INDEX_DOCUMENT)
        assert doc["dimension"] == 32
        assert doc["count"] == 1
        assert doc["vectors"][0]["id"] == "m1"
        assert doc["vectors"][0]["payload"]["content"] == "restart nginx"

    def test_duplicate_id_rejected(self, index):
        index.store(_record("m1", "one"))
        with pytest.raises(ValidationError):
            index.store(_record("m1", "two"))

    def test_wrong_dimension_rejected(self, index):
        with pytest.raises(ValidationError):
            index.store(_record("m1", "text", embedding=(1.0, 0.0)))

    def test_reload_from_disk(self, index, documents, embedder):
        index.store(_record("m1", "backup the database nightly"))
        reloaded = VectorIndex(documents, embedder)
        assert reloaded.get("m1").content == "backup the database nightly"
        assert reloaded.get("m1").embedding == index.get("m1").embedding

    def test_reload_with_other_dimension_fails(self, index, documents):
        index.store(_record("m1", "text"))
        with pytest.raises(ValidationError):
            VectorIndex(documents, EmbeddingGenerator(dimension=16))

    def test_write_failure_keeps_memory_state(self, index, monkeypatch):
        def boom(name, data):
            raise StorageIOError("disk full")

        monkeypatch.setattr(index._documents, "write", boom)
        with pytest.raises(StorageIOError):
            index.store(_record("m1", "still indexed"))
        assert "m1" in index

    def test_unserializable_payload_rejected_before_append(self, index, documents):
        with pytest.raises(ValidationError):
            index.store(_record("m1", "dated", metadata={"when": datetime(2024, 1, 1)}))
        assert "m1" not in index
        assert len(index) == 0

        index.store(_record("m2", "plain"))
        assert documents.read(INDEX_DOCUMENT)["count"] == 1


class TestSearch:
    def test_exact_match_first(self, index, embedder):
        index.store(_record("a", "database server error"))
        index.store(_record("b", "quarterly marketing budget"))
        hits = index.search(embedder.embed("database server error"), limit=5, threshold=0.0)
        assert hits[0].id == "a"
        assert hits[0].similarity == pytest.approx(1.0)

    def test_threshold_filters(self, index, embedder):
        index.store(_record("a", "database server error"))
        index.store(_record("b", "quarterly marketing budget"))
        hits = index.search(embedder.embed("database server error"), threshold=0.99)
        assert [h.id for h in hits] == ["a"]

    def test_limit(self, index, embedder):
        for i in range(5):
            index.store(_record(f"m{i}", f"deploy service {i}"))
        assert len(index.search(embedder.embed("deploy service"), limit=2, threshold=0.0)) == 2

    def test_zero_query_returns_empty(self, index, embedder):
        index.store(_record("a", "anything"))
        assert index.search(embedder.zero_vector()) == []

    def test_empty_index(self, index, embedder):
        assert index.search(embedder.embed("anything")) == []

    def test_query_dimension_mismatch(self, index):
        with pytest.raises(ValidationError):
            index.search([1.0, 0.0])

    def test_ties_keep_insertion_order(self, index, embedder):
        index.store(_record("first", "rotate certificates"))
        index.store(_record("second", "rotate certificates"))
        hits = index.search(embedder.embed("rotate certificates"), threshold=0.5)
        assert [h.id for h in hits] == ["first", "second"]


class TestMaintenance:
    def test_remove(self, index):
        index.store(_record("m1", "one"))
        assert index.remove("m1") is True
        assert index.remove("m1") is False
        assert index.get("m1") is None

    def test_update_metadata_merges(self, index):
        index.store(_record("m1", "one", metadata={"a": 1}))
        updated = index.update_metadata("m1", {"b": 2})
        assert updated.metadata == {"a": 1, "b": 2}
        assert index.get("m1").metadata == {"a": 1, "b": 2}

    def test_update_metadata_unknown(self, index):
        with pytest.raises(NotFoundError):
            index.update_metadata("missing", {"x": 1})

    def test_unserializable_metadata_patch_rejected(self, index):
        index.store(_record("m1", "one", metadata={"a": 1}))
        with pytest.raises(ValidationError):
            index.update_metadata("m1", {"when": datetime(2024, 1, 1)})
        assert index.get("m1").metadata == {"a": 1}
        index.update_metadata("m1", {"b": 2})

    def test_prune_removes_old_entries(self, index):
        old = (utcnow() - timedelta(days=100)).isoformat()
        index.store(_record("old", "stale note", timestamp=old))
        index.store(_record("new", "fresh note"))
        removed = index.prune(90)
        assert removed == ["old"]
        assert "old" not in index
        assert "new" in index

    def test_prune_nothing(self, index):
        index.store(_record("new", "fresh note"))
        assert index.prune(1) == []

    def test_stats(self, index):
        index.store(_record("m1", "one"))
        stats = index.stats()
        assert stats["count"] == 1
        assert stats["dimension"] == 32

    def test_closed_index_rejects_writes(self, index):
        index.close()
        with pytest.raises(StoreClosedError):
            index.store(_record("m1", "late"))
