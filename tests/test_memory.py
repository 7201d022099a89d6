"""Tests for waypoint.memory: store, hybrid search, knowledge merge, maintenance."""
import threading
from datetime import date, datetime, timedelta

import pytest

from waypoint.errors import NotFoundError, StorageIOError, StoreClosedError, ValidationError
from waypoint.graph import GRAPH_DOCUMENT
from waypoint.memory import KNOWLEDGE_UPDATE, MemoryManager
from waypoint.types import MemoryRecord, utcnow
from waypoint.vector_index import INDEX_DOCUMENT


# ============================================================================
# Store
# ============================================================================


class TestStore:
    def test_store_returns_id(self, memory):
        mid = memory.store("Restart nginx after config change", "infrastructure", tags=["nginx"])
        assert mid.startswith("mem-")
        rec = memory.get(mid)
        assert rec.content == "Restart nginx after config change"
        assert rec.category == "infrastructure"
        assert rec.tags == frozenset({"nginx"})
        assert len(rec.embedding) == memory.config.embedding_dim

    def test_written_through_index_and_graph(self, memory):
        mid = memory.store("Quarterly roadmap review", "projects")
        assert mid in memory.vectors
        assert mid in memory.graph

    def test_empty_content_rejected(self, memory):
        for content in ("", "   ", None):
            with pytest.raises(ValidationError):
                memory.store(content, "projects")
        assert len(memory.vectors) == 0

    def test_unknown_category(self, memory):
        with pytest.raises(ValidationError):
            memory.store("something", "gossip")

    def test_protected_fields(self, memory):
        with pytest.raises(ValidationError):
            memory.store("hijack", "currentSession")
        with pytest.raises(ValidationError):
            memory.update_knowledge("lastUpdated", {"x": 1})

    def test_unknown_priority(self, memory):
        with pytest.raises(ValidationError):
            memory.store("something", "projects", priority="urgent")

    def test_single_tag_string(self, memory):
        mid = memory.store("Tagged note", "insights", tags="ops")
        assert memory.get(mid).tags == frozenset({"ops"})

    def test_persisted_across_instances(self, memory, config):
        mid = memory.store("Rotate TLS certificates yearly", "workflows")
        memory.close()
        reopened = MemoryManager(config)
        try:
            assert reopened.get(mid).content == "Rotate TLS certificates yearly"
            assert mid in reopened.graph
            assert mid in reopened.knowledge()["workflows"]
        finally:
            reopened.close()

    def test_closed_manager_rejects_writes(self, memory):
        memory.close()
        with pytest.raises(StoreClosedError):
            memory.store("late", "projects")

    def test_unserializable_metadata_changes_nothing(self, memory):
        with pytest.raises(ValidationError):
            memory.store("first note", "projects", metadata={"when": datetime(2024, 1, 1, 12, 0)})
        assert len(memory.vectors) == 0
        assert memory.graph.node_count() == 0

        mid = memory.store("second note about deploys", "projects")
        assert memory.get(mid).content == "second note about deploys"
        memory.close()
        assert memory.documents.read(INDEX_DOCUMENT)["count"] == 1

    def test_concurrent_stores_all_reach_disk(self, memory):
        errors = []

        def worker(i):
            try:
                memory.store(f"parallel note number {i}", "insights")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(40)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(memory.vectors) == 40
        index_doc = memory.documents.read(INDEX_DOCUMENT)
        assert index_doc["count"] == 40
        assert len(index_doc["vectors"]) == 40
        graph_doc = memory.documents.read(GRAPH_DOCUMENT)
        assert memory.graph.node_count() == 40
        assert len(graph_doc["nodes"]) == 40

    def test_graph_write_failure_reports_indexed_id(self, memory, monkeypatch):
        def boom(record):
            raise StorageIOError("disk full")

        monkeypatch.setattr(memory.graph, "add_node", boom)
        with pytest.raises(StorageIOError) as exc:
            memory.store("half-written note", "projects")
        record_id = exc.value.record_id
        assert record_id in memory.vectors
        assert memory.get(record_id).content == "half-written note"

        monkeypatch.undo()
        assert memory.delete(record_id) is True
        assert len(memory.vectors) == 0


# ============================================================================
# Knowledge documents
# ============================================================================


class TestKnowledge:
    def test_defaults(self, memory):
        kb = memory.knowledge()
        assert kb["projects"] == {"active": {}, "completed": {}, "archived": {}}
        assert kb["interactions"] == []
        assert set(kb["workflows"]) == {"n8n", "automation", "integrations", "schedules"}
        assert kb["currentSession"] == ""
        assert kb["lastUpdated"]

    def test_plain_text_becomes_summary_entry(self, memory):
        mid = memory.store("Ship the billing export", "projects", priority="high")
        entry = memory.knowledge()["projects"][mid]
        assert entry["content"] == "Ship the billing export"
        assert entry["priority"] == "high"

    def test_list_category_appends(self, memory):
        memory.store("User asked about invoices", "interactions")
        memory.store("User asked about exports", "interactions")
        contents = [e["content"] for e in memory.knowledge()["interactions"]]
        assert contents == ["User asked about invoices", "User asked about exports"]

    def test_json_object_content_merges(self, memory):
        memory.store('{"servers": {"web-01": {"ip": "10.0.0.1"}}}', "infrastructure")
        kb = memory.knowledge()["infrastructure"]
        assert kb["servers"] == {"web-01": {"ip": "10.0.0.1"}}
        assert "databases" in kb

    def test_snapshot_is_a_copy(self, memory):
        memory.knowledge()["projects"]["active"]["x"] = 1
        assert memory.knowledge()["projects"]["active"] == {}

    def test_update_object_category(self, memory):
        mid = memory.update_knowledge("workflows", {"n8n": ["nightly-sync"]})
        assert memory.knowledge()["workflows"]["n8n"] == ["nightly-sync"]
        rec = memory.get(mid)
        assert rec.metadata["type"] == KNOWLEDGE_UPDATE
        assert rec.metadata["update_type"] == "merge"

    def test_update_list_category(self, memory):
        mid = memory.update_knowledge("interactions", {"question": "how do I deploy?"})
        assert memory.knowledge()["interactions"] == [{"question": "how do I deploy?"}]
        assert memory.get(mid).metadata["update_type"] == "append"

    def test_update_object_category_rejects_non_object(self, memory):
        with pytest.raises(ValidationError):
            memory.update_knowledge("projects", ["not", "an", "object"])

    def test_unserializable_update_changes_nothing(self, memory):
        with pytest.raises(ValidationError):
            memory.update_knowledge("interactions", {"at": date(2024, 1, 1)})
        assert memory.knowledge()["interactions"] == []
        assert len(memory.vectors) == 0

        memory.store("plain interaction", "interactions")
        assert [e["content"] for e in memory.knowledge()["interactions"]] == ["plain interaction"]

    def test_current_session(self, memory):
        memory.set_current_session("session-1")
        assert memory.knowledge()["currentSession"] == "session-1"
        memory.set_current_session(None)
        assert memory.knowledge()["currentSession"] == ""

    def test_wrong_shaped_document_replaced(self, memory, config):
        memory.close()
        memory.documents.write("knowledge/projects.json", ["unexpected"])
        reopened = MemoryManager(config)
        try:
            assert reopened.knowledge()["projects"] == {"active": {}, "completed": {}, "archived": {}}
        finally:
            reopened.close()


# ============================================================================
# Search
# ============================================================================


class TestSearch:
    def test_exact_match_ranks_first(self, memory):
        target = memory.store("database error on primary replica", "infrastructure")
        memory.store("quarterly marketing budget", "projects")
        results = memory.search("database error on primary replica", limit=5)
        assert results[0].id == target
        assert results[0].source == "vector"
        assert results[0].relevance == pytest.approx(1.0)

    def test_high_threshold_returns_empty(self, memory):
        memory.store("Backup completed for web server", "infrastructure")
        memory.store("Planning the winter release", "projects")
        assert memory.search("database error", limit=5, threshold=0.9) == []

    def test_empty_query(self, memory):
        memory.store("anything", "insights")
        assert memory.search("") == []
        assert memory.search("   ") == []

    def test_zero_limit(self, memory):
        memory.store("anything", "insights")
        assert memory.search("anything", limit=0) == []

    def test_duplicate_content_collapsed(self, memory):
        memory.store("restart nginx", "infrastructure")
        results = memory.search("restart nginx", limit=10)
        assert [r.content for r in results].count("restart nginx") == 1
        assert results[0].source == "vector"
        assert results[0].metadata["search_type"] == "vector"

    def test_keyword_hits_from_knowledge(self, memory):
        memory.update_knowledge(
            "projects",
            {"active": {"api": "v2 rollout, rollout, rollout"}, "completed": {"billing": "done"}},
        )
        results = memory.search("rollout", limit=10)
        keyword = {r.id: r for r in results if r.source == "keyword"}
        assert "keyword-projects-active" in keyword
        hit = keyword["keyword-projects-active"]
        assert hit.relevance == pytest.approx(0.3)
        assert hit.metadata["search_type"] == "keyword"
        assert "keyword-projects-completed" not in keyword

    def test_category_filter(self, memory):
        memory.store("billing service migration", "projects")
        infra = memory.store("billing service host", "infrastructure")
        results = memory.search("billing service", categories=["infrastructure"])
        assert results
        assert {r.category for r in results} == {"infrastructure"}
        assert infra in [r.id for r in results]

    def test_results_annotated_with_neighbours(self, memory):
        first = memory.store("Migrate billing service to kubernetes cluster", "projects")
        second = memory.store("Migrate billing service to new cluster", "projects")
        results = memory.search("Migrate billing service to kubernetes cluster", limit=1)
        assert results[0].id == first
        assert results[0].metadata["relationships"] == 2
        assert set(results[0].metadata["related_nodes"]) == {second}
        assert results[0].neighbor_count == 2

    def test_limit_respected(self, memory):
        for i in range(6):
            memory.store(f"deploy service number {i}", "workflows")
        assert len(memory.search("deploy service", limit=3)) == 3

    def test_sorted_by_relevance(self, memory):
        for text in ("nginx proxy config", "nginx", "something unrelated entirely"):
            memory.store(text, "infrastructure")
        results = memory.search("nginx proxy config", limit=10, threshold=0.0)
        scores = [r.relevance for r in results]
        assert scores == sorted(scores, reverse=True)


# ============================================================================
# Record maintenance
# ============================================================================


class TestRecords:
    def test_delete_everywhere(self, memory):
        mid = memory.store("Temporary note", "projects")
        assert memory.delete(mid) is True
        assert memory.get(mid) is None
        assert mid not in memory.graph
        assert mid not in memory.knowledge()["projects"]
        assert memory.delete(mid) is False

    def test_update_metadata(self, memory):
        mid = memory.store("Note with metadata", "insights", metadata={"source": "cli"})
        updated = memory.update_metadata(mid, {"reviewed": True})
        assert updated.metadata == {"source": "cli", "reviewed": True}
        assert memory.graph.get_node(mid).properties["reviewed"] is True

    def test_update_metadata_unknown(self, memory):
        with pytest.raises(NotFoundError):
            memory.update_metadata("mem-missing", {"a": 1})

    def test_recent_by_session(self, memory):
        memory.store("first", "insights", session_id="s1")
        memory.store("second", "insights", session_id="s2")
        memory.store("third", "insights", session_id="s1")
        assert [r.content for r in memory.recent(session_id="s1")] == ["third", "first"]
        assert len(memory.recent(limit=2)) == 2

    def test_related(self, memory):
        first = memory.store("alpha project notes", "projects")
        second = memory.store("bravo project plan", "projects")
        assert [n["id"] for n in memory.related(first)] == [second]
        with pytest.raises(NotFoundError):
            memory.related("mem-missing")


class TestStatsAndCleanup:
    def test_stats(self, memory):
        memory.store("one", "projects")
        memory.store("two", "projects")
        stats = memory.stats()
        assert stats["total_items"] == 2
        assert stats["vector_count"] == 2
        assert stats["node_count"] == 2
        assert stats["relationship_count"] == 1
        assert stats["categories"]["projects"] == 5
        assert stats["storage_size"] > 0

    def test_stats_never_raises(self, memory, monkeypatch):
        def broken():
            raise RuntimeError("graph unavailable")

        monkeypatch.setattr(memory.graph, "stats", broken)
        stats = memory.stats()
        assert stats["total_items"] == 0
        assert stats["last_updated"] is None

    def test_cleanup_prunes_old_records(self, memory):
        old = (utcnow() - timedelta(days=120)).isoformat()
        memory.vectors.store(MemoryRecord(id="mem-old", content="stale", category="insights", timestamp=old))
        memory.graph.add_node(memory.vectors.get("mem-old"))
        fresh = memory.store("fresh insight", "insights")
        result = memory.cleanup()
        assert result["pruned"] == ["mem-old"]
        assert result["retention_days"] == 90
        assert memory.get("mem-old") is None
        assert "mem-old" not in memory.graph
        assert memory.get(fresh) is not None

    def test_orphans_kept_unless_requested(self, memory):
        lonely = memory.store("only record in its category", "workflows")
        assert memory.cleanup()["orphans_removed"] == []
        assert lonely in memory.graph
        assert memory.cleanup(prune_orphans=True)["orphans_removed"] == [lonely]

    def test_invalid_retention(self, memory):
        with pytest.raises(ValidationError):
            memory.cleanup(retention_days=0)


class TestLoadContext:
    def test_context_by_query(self, memory):
        memory.store("Kubernetes cluster upgrade planned", "infrastructure")
        memory.store("Kubernetes cluster upgrade checklist", "infrastructure")
        memory.store("kubernetes chat", "interactions")
        ctx = memory.load_context("Kubernetes cluster upgrade planned")
        assert ctx["memories"]
        assert {m["category"] for m in ctx["memories"]} <= {"infrastructure", "projects", "insights"}
        assert ctx["graph"]["relationships"]
        assert ctx["knowledge"]["interactions"] == 1
        assert ctx["insights"]

    def test_context_from_session(self, memory):
        memory.store("Draft the postgres failover runbook", "projects", session_id="s1")
        ctx = memory.load_context(session_id="s1")
        assert ctx["query"] == "Draft the postgres failover runbook"
        assert ctx["memories"][0]["content"] == "Draft the postgres failover runbook"

    def test_empty_context(self, memory):
        ctx = memory.load_context()
        assert ctx["memories"] == []
        assert ctx["graph"] == {"nodes": [], "relationships": []}
        assert ctx["insights"] == ["No significant clusters found in the knowledge graph"]
