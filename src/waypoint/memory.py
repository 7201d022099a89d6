"""
Waypoint MemoryManager -- the memory façade.

Owns one VectorIndex, one RelationshipGraph and the categorized knowledge
documents (``knowledge/<category>.json``). Every stored record is written
through all three:

    store() → VectorIndex.store → RelationshipGraph.add_node → knowledge merge

Search is hybrid: vector ranking over the index plus a keyword-containment
scan of the categorized knowledge, deduplicated by content, filtered by the
same threshold, and annotated with the graph neighbourhood of each hit.
"""

import copy
import json
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from waypoint.config import WaypointConfig
from waypoint.documents import DocumentStore, ensure_json
from waypoint.embeddings import EmbeddingGenerator
from waypoint.errors import NotFoundError, StorageIOError, StoreClosedError, ValidationError
from waypoint.graph import DEFAULT_CLUSTER_EDGE_TYPES, RelationshipGraph, cluster_insights
from waypoint.types import (
    CATEGORIES,
    Category,
    Cluster,
    MemoryRecord,
    SearchResult,
    coerce_category,
    coerce_priority,
    new_id,
    utcnow_iso,
)
from waypoint.vector_index import VectorIndex

logger = logging.getLogger("waypoint.memory")

KNOWLEDGE_DIR = "knowledge"

KNOWLEDGE_UPDATE = "knowledge_base_update"

# Starting structure of each category document.
DEFAULT_KNOWLEDGE: Dict[str, Any] = {
    Category.INFRASTRUCTURE.value: {
        "servers": {},
        "services": {},
        "databases": {},
        "monitoring": {"uptime": 0, "alerts": [], "metrics": []},
    },
    Category.PROJECTS.value: {"active": {}, "completed": {}, "archived": {}},
    Category.INTERACTIONS.value: [],
    Category.WORKFLOWS.value: {"n8n": [], "automation": [], "integrations": [], "schedules": []},
    Category.INSIGHTS.value: {
        "analytics": {
            "commandUsage": {},
            "sessionDuration": {"average": 0, "longest": 0, "shortest": 0},
            "marathonModeUsage": {"activations": 0, "averageDuration": 0, "successRate": 0},
            "toolIntegrations": {},
        },
        "patterns": [],
        "recommendations": [],
        "learnings": [],
    },
}

# Categories consulted when loading context for a session
CONTEXT_CATEGORIES = (Category.INFRASTRUCTURE.value, Category.PROJECTS.value, Category.INSIGHTS.value)

KEYWORD_SCORE_PER_MATCH = 0.1

_SOURCE_RANK = {"vector": 0, "keyword": 1}


def _knowledge_document(category: str) -> str:
    return f"{KNOWLEDGE_DIR}/{category}.json"


def _keyword_relevance(text: str, needle: str) -> float:
    return min(text.count(needle) * KEYWORD_SCORE_PER_MATCH, 1.0)


def _is_summary(entry: Any) -> bool:
    return isinstance(entry, dict) and "id" in entry and "content" in entry


def _parse_object(content: str) -> Optional[Dict[str, Any]]:
    """JSON-object content, or None for plain text."""
    stripped = content.strip()
    if not stripped.startswith("{"):
        return None
    try:
        data = json.loads(stripped)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class MemoryManager:
    """Store, search and maintain memories under one data root."""

    def __init__(
        self,
        config: Optional[WaypointConfig] = None,
        documents: Optional[DocumentStore] = None,
        embedder: Optional[EmbeddingGenerator] = None,
    ):
        self.config = config or WaypointConfig.from_env()
        self.documents = documents or DocumentStore(self.config.data_dir, encrypt=self.config.encrypt)
        self.embedder = embedder or EmbeddingGenerator(self.config.embedding_dim)
        self.vectors = VectorIndex(self.documents, self.embedder)
        self.graph = RelationshipGraph(self.documents)
        self._lock = threading.RLock()
        self._current_session = ""
        self._last_updated = utcnow_iso()
        self._closed = False
        self._knowledge = self._load_knowledge()
        logger.info("Memory manager ready at %s (%d records)", self.config.data_dir, len(self.vectors))

    # ------------------------------------------------------------------
    # Knowledge documents
    # ------------------------------------------------------------------

    def _load_knowledge(self) -> Dict[str, Any]:
        knowledge = {}
        for category in sorted(CATEGORIES):
            data = self.documents.read(_knowledge_document(category))
            if data is None or type(data) is not type(DEFAULT_KNOWLEDGE[category]):
                if data is not None:
                    logger.warning("Knowledge document for %s has unexpected shape, using defaults", category)
                data = copy.deepcopy(DEFAULT_KNOWLEDGE[category])
            knowledge[category] = data
        return knowledge

    def _save_category(self, category: str) -> None:
        self.documents.write(_knowledge_document(category), self._knowledge[category])
        self._last_updated = utcnow_iso()

    def _merge_record(self, record: MemoryRecord) -> None:
        data = _parse_object(record.content)
        with self._lock:
            current = self._knowledge[record.category]
            if data is None:
                entry = {
                    "id": record.id,
                    "content": record.content,
                    "priority": record.priority,
                    "tags": sorted(record.tags),
                    "timestamp": record.timestamp,
                }
                if isinstance(current, list):
                    current.append(entry)
                else:
                    current[record.id] = entry
            elif isinstance(current, list):
                current.append(data)
            else:
                current.update(data)
            self._save_category(record.category)

    def _drop_summaries(self, record_ids: Iterable[str]) -> int:
        ids = set(record_ids)
        if not ids:
            return 0
        removed = 0
        with self._lock:
            for category, current in self._knowledge.items():
                before = len(current)
                if isinstance(current, list):
                    current[:] = [e for e in current if not (_is_summary(e) and e["id"] in ids)]
                else:
                    for key in [k for k, v in current.items() if k in ids and _is_summary(v)]:
                        del current[key]
                if len(current) != before:
                    removed += before - len(current)
                    self._save_category(category)
        return removed

    def knowledge(self) -> Dict[str, Any]:
        """Deep copy of the categorized knowledge, including system fields."""
        with self._lock:
            snapshot = copy.deepcopy(self._knowledge)
            snapshot["currentSession"] = self._current_session
            snapshot["lastUpdated"] = self._last_updated
        return snapshot

    def set_current_session(self, session_id: Optional[str]) -> None:
        with self._lock:
            self._current_session = session_id or ""

    def update_knowledge(self, category: str, data: Any) -> str:
        """Merge ``data`` into a category and index it as a memory. Returns the memory id.

        Array categories append ``data``; object categories merge it key-wise.
        """
        self._check_open()
        category = coerce_category(category)
        ensure_json(data, f"Knowledge update for {category}")
        with self._lock:
            current = self._knowledge[category]
            if isinstance(current, list):
                current.append(copy.deepcopy(data))
                update_type = "append"
            else:
                if not isinstance(data, dict):
                    raise ValidationError(f"Category '{category}' merges objects only")
                current.update(copy.deepcopy(data))
                update_type = "merge"
            self._save_category(category)
        logger.info("Knowledge base %s updated (%s)", category, update_type)
        return self._store(
            content=json.dumps(data, ensure_ascii=False),
            category=category,
            metadata={"type": KNOWLEDGE_UPDATE, "category": category, "update_type": update_type},
            merge=False,
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Memory manager is closed")

    def store(
        self,
        content: str,
        category: str,
        priority: str = "medium",
        tags: Iterable[str] = (),
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Store one memory. Returns its new id.

        The record is indexed first, then added to the graph and merged into
        its category document. If one of those later writes fails, the
        StorageIOError carries ``record_id`` of the already-indexed record so
        the caller can finish or delete it instead of storing a duplicate.
        """
        return self._store(content, category, priority, tags, session_id, metadata)

    def _store(
        self,
        content: str,
        category: str,
        priority: str = "medium",
        tags: Iterable[str] = (),
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        merge: bool = True,
    ) -> str:
        self._check_open()
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Memory content must be a non-empty string")
        if isinstance(tags, str):
            tags = [tags]
        tag_set = frozenset(str(t).strip() for t in tags or () if str(t).strip())
        record = MemoryRecord(
            id=new_id("mem"),
            content=content,
            category=coerce_category(category),
            priority=coerce_priority(priority),
            tags=tag_set,
            session_id=session_id,
            metadata=dict(metadata or {}),
        )
        record = self.vectors.store(record)
        try:
            self.graph.add_node(record)
            if merge:
                self._merge_record(record)
        except StorageIOError as e:
            e.record_id = record.id
            raise
        logger.info("Stored memory %s (%s, %d chars)", record.id, record.category, len(record.content))
        return record.id

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        return self.vectors.get(record_id)

    def delete(self, record_id: str) -> bool:
        """Hard-remove a record from the index, the graph and its knowledge summary."""
        self._check_open()
        removed = self.vectors.remove(record_id)
        self.graph.remove_node(record_id)
        self._drop_summaries([record_id])
        if removed:
            logger.info("Deleted memory %s", record_id)
        return removed

    def update_metadata(self, record_id: str, patch: Dict[str, Any]) -> MemoryRecord:
        self._check_open()
        if not isinstance(patch, dict):
            raise ValidationError("Metadata patch must be a mapping")
        record = self.vectors.update_metadata(record_id, patch)
        self.graph.update_node_properties(record_id, patch)
        return record

    def recent(self, limit: int = 20, session_id: Optional[str] = None) -> List[MemoryRecord]:
        """Newest records first, optionally restricted to one session."""
        records = self.vectors.records()
        if session_id:
            records = [r for r in records if r.session_id == session_id]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[: max(limit, 0)]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        limit: int = 10,
        threshold: Optional[float] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> List[SearchResult]:
        """Hybrid vector + keyword search. Empty query → []."""
        if not query or not query.strip():
            return []
        if threshold is None:
            threshold = self.config.similarity_threshold
        if limit <= 0:
            return []
        wanted = None if categories is None else {coerce_category(c) for c in categories}

        vector_hits = self._vector_search(query, limit, threshold, wanted)
        keyword_hits = self._keyword_search(query, limit, threshold, wanted)

        seen = set()
        combined: List[SearchResult] = []
        for hit in vector_hits + keyword_hits:
            if hit.content in seen:
                continue
            seen.add(hit.content)
            combined.append(hit)
        combined.sort(key=lambda r: (-r.relevance, _SOURCE_RANK[r.source]))
        results = combined[:limit]

        for result in results:
            edges = self.graph.relationships(result.id)
            result.metadata["relationships"] = len(edges)
            result.metadata["related_nodes"] = [e.other(result.id) for e in edges]

        logger.debug("Search %r returned %d results", query[:40], len(results))
        return results

    def _vector_search(self, query: str, limit: int, threshold: float, wanted) -> List[SearchResult]:
        # Over-fetch when filtering so the category filter does not starve the result
        fetch = limit if wanted is None else max(limit * 3, limit + len(self.vectors) // 2)
        hits = self.vectors.search(self.embedder.embed(query), limit=fetch, threshold=threshold)
        results = []
        for hit in hits:
            record = MemoryRecord.from_dict({**hit.payload, "id": hit.id})
            if wanted is not None and record.category not in wanted:
                continue
            results.append(
                SearchResult(
                    id=record.id,
                    content=record.content,
                    category=record.category,
                    relevance=hit.similarity,
                    source="vector",
                    timestamp=record.timestamp,
                    metadata={**record.metadata, "search_type": "vector"},
                    record=record,
                )
            )
        return results[:limit]

    def _keyword_search(self, query: str, limit: int, threshold: float, wanted) -> List[SearchResult]:
        needle = query.lower().strip()
        now = utcnow_iso()
        results = []
        with self._lock:
            for category, current in self._knowledge.items():
                if wanted is not None and category not in wanted:
                    continue
                entries: List[Tuple[str, Any]] = (
                    [(str(i), e) for i, e in enumerate(current)] if isinstance(current, list) else list(current.items())
                )
                for key, entry in entries:
                    if entry in ({}, [], "", None):
                        continue
                    if _is_summary(entry):
                        hit_id, content, ts = entry["id"], entry["content"], entry.get("timestamp") or now
                    else:
                        hit_id = f"keyword-{category}-{key}"
                        content = json.dumps(entry if isinstance(current, list) else {key: entry}, ensure_ascii=False)
                        ts = now
                    relevance = _keyword_relevance(content.lower(), needle)
                    if relevance <= 0 or relevance < threshold:
                        continue
                    results.append(
                        SearchResult(
                            id=hit_id,
                            content=content,
                            category=category,
                            relevance=relevance,
                            source="keyword",
                            timestamp=ts,
                            metadata={"search_type": "keyword", "category": category},
                            record=self.vectors.get(hit_id) if _is_summary(entry) else None,
                        )
                    )
        results.sort(key=lambda r: -r.relevance)
        return results[:limit]

    def load_context(self, query: Optional[str] = None, session_id: Optional[str] = None, limit: int = 20) -> Dict[str, Any]:
        """Relevant memories plus their graph neighbourhood for a (new) session.

        Without a query, the context is derived from the session's own recent
        memories.
        """
        if not query:
            recent = self.recent(limit=5, session_id=session_id) if session_id else []
            query = " ".join(r.content for r in recent)
        memories = self.search(query, limit=limit, categories=CONTEXT_CATEGORIES) if query else []

        nodes: Dict[str, Dict[str, Any]] = {}
        relationships: Dict[str, Dict[str, Any]] = {}
        for result in memories:
            for edge in self.graph.relationships(result.id):
                relationships[edge.id] = edge.to_dict()
                for node_id in (edge.source, edge.target):
                    node = self.graph.get_node(node_id)
                    if node is not None:
                        nodes[node_id] = node.to_dict()

        return {
            "query": query or "",
            "session_id": session_id,
            "memories": [m.to_dict() for m in memories],
            "graph": {"nodes": list(nodes.values()), "relationships": list(relationships.values())},
            "insights": cluster_insights(self.graph.clusters()),
            "knowledge": self._category_counts(),
        }

    # ------------------------------------------------------------------
    # Graph passthroughs
    # ------------------------------------------------------------------

    def clusters(self, edge_types: Optional[Iterable[str]] = DEFAULT_CLUSTER_EDGE_TYPES) -> List[Cluster]:
        return self.graph.clusters(edge_types)

    def insights(self) -> List[str]:
        return cluster_insights(self.graph.clusters())

    def related(self, record_id: str, max_depth: int = 2) -> List[Dict[str, Any]]:
        if record_id not in self.graph:
            raise NotFoundError(f"Memory {record_id} not found")
        return [n.to_dict() for n in self.graph.neighbors(record_id, max_depth=max_depth)]

    # ------------------------------------------------------------------
    # Stats & maintenance
    # ------------------------------------------------------------------

    def _category_counts(self) -> Dict[str, int]:
        with self._lock:
            return {category: len(data) for category, data in self._knowledge.items()}

    def stats(self) -> Dict[str, Any]:
        """Counts and footprint. Never raises; zeros when anything goes wrong."""
        try:
            with self._lock:
                storage = sum(len(json.dumps(d, ensure_ascii=False)) for d in self._knowledge.values())
            graph = self.graph.stats()
            return {
                "total_items": len(self.vectors),
                "vector_count": len(self.vectors),
                "categories": self._category_counts(),
                "storage_size": storage,
                "node_count": graph["node_count"],
                "relationship_count": graph["relationship_count"],
                "last_updated": self._last_updated,
            }
        except Exception as e:
            logger.error("Failed to collect memory stats: %s", e)
            return {
                "total_items": 0,
                "vector_count": 0,
                "categories": {},
                "storage_size": 0,
                "node_count": 0,
                "relationship_count": 0,
                "last_updated": None,
            }

    def cleanup(self, retention_days: Optional[int] = None, prune_orphans: bool = False) -> Dict[str, Any]:
        """Prune records past retention. Orphan graph nodes are only removed on request."""
        self._check_open()
        days = retention_days if retention_days is not None else self.config.retention_days
        if days < 1:
            raise ValidationError("retention_days must be at least 1")
        pruned = self.vectors.prune(days)
        self.graph.remove_nodes(pruned)
        self._drop_summaries(pruned)
        orphans = self.graph.cleanup() if prune_orphans else []
        logger.info("Memory cleanup: %d pruned, %d orphans removed", len(pruned), len(orphans))
        return {"pruned": pruned, "orphans_removed": orphans, "retention_days": days}

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.vectors.close()
        finally:
            self.graph.close()
        logger.info("Memory manager closed")


