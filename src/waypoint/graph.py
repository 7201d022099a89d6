"""
Waypoint RelationshipGraph -- nodes shadow stored memories, edges are inferred
on insert.

Every inserted node is compared against every existing node (O(N) per
insert; fine at tens of thousands of nodes, a known scaling limit):

- same category            → SAME_CATEGORY edge, weight 0.5
- word Jaccard >= 0.3      → SIMILAR_CONTENT edge, weight = Jaccard

Edge ids are ``source-type-target``. An edge between a pair is stored once;
re-inserting a node upserts the existing edge in whichever direction it was
first written, so relationship inference is idempotent.

The graph is persisted as one document (``knowledge-graph/graph.json``).
"""

import logging
import threading
from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from waypoint.documents import DocumentStore, ensure_json
from waypoint.embeddings import word_jaccard
from waypoint.errors import NotFoundError, StoreClosedError, ValidationError
from waypoint.types import Cluster, EdgeType, GraphEdge, GraphNode, MemoryRecord, utcnow_iso

logger = logging.getLogger("waypoint.graph")

GRAPH_DOCUMENT = "knowledge-graph/graph.json"

SAME_CATEGORY_WEIGHT = 0.5
SIMILARITY_FLOOR = 0.3
LABEL_PREVIEW_CHARS = 50

# Cluster analysis follows content-derived edges unless told otherwise;
# category edges alone would fold every category into one blob.
DEFAULT_CLUSTER_EDGE_TYPES: Tuple[str, ...] = (EdgeType.SIMILAR_CONTENT.value,)


def make_label(record: MemoryRecord) -> str:
    preview = record.content[:LABEL_PREVIEW_CHARS]
    ellipsis = "..." if len(record.content) > LABEL_PREVIEW_CHARS else ""
    return f"{record.category}: {preview}{ellipsis}"


class RelationshipGraph:
    """In-memory graph of memories with automatic relationship inference."""

    def __init__(self, documents: DocumentStore, similarity_floor: float = SIMILARITY_FLOOR):
        self._documents = documents
        self.similarity_floor = similarity_floor
        self._lock = threading.RLock()
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[str, GraphEdge] = {}
        self._adjacency: Dict[str, Set[str]] = {}  # node id → edge ids
        self._last_updated = utcnow_iso()
        self._closed = False
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        data = self._documents.read(GRAPH_DOCUMENT)
        if not data:
            logger.info("Creating new knowledge graph")
            return
        for raw in (data.get("nodes") or {}).values():
            node = GraphNode.from_dict(raw)
            self._nodes[node.id] = node
            self._adjacency.setdefault(node.id, set())
        for raw in (data.get("relationships") or {}).values():
            edge = GraphEdge.from_dict(raw)
            if edge.source not in self._nodes or edge.target not in self._nodes:
                logger.debug("Dropping dangling edge %s", edge.id)
                continue
            self._index_edge(edge)
        meta = data.get("metadata") or {}
        self._last_updated = meta.get("last_updated") or self._last_updated
        logger.debug("Knowledge graph loaded: %d nodes, %d edges", len(self._nodes), len(self._edges))

    def _save(self) -> None:
        with self._lock:
            self._last_updated = utcnow_iso()
            doc = {
                "nodes": {nid: n.to_dict() for nid, n in self._nodes.items()},
                "relationships": {eid: e.to_dict() for eid, e in self._edges.items()},
                "metadata": {
                    "node_count": len(self._nodes),
                    "relationship_count": len(self._edges),
                    "last_updated": self._last_updated,
                },
            }
            self._documents.write(GRAPH_DOCUMENT, doc)

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Knowledge graph is closed")

    # ------------------------------------------------------------------
    # Edge bookkeeping
    # ------------------------------------------------------------------

    def _index_edge(self, edge: GraphEdge) -> None:
        self._edges[edge.id] = edge
        self._adjacency.setdefault(edge.source, set()).add(edge.id)
        self._adjacency.setdefault(edge.target, set()).add(edge.id)

    def _drop_edge(self, edge_id: str) -> None:
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            return
        self._adjacency.get(edge.source, set()).discard(edge_id)
        self._adjacency.get(edge.target, set()).discard(edge_id)

    def _upsert_edge(
        self,
        source: str,
        target: str,
        edge_type: str,
        weight: float,
        properties: Optional[Dict[str, Any]] = None,
    ) -> GraphEdge:
        """Insert or refresh the edge between a pair (either direction)."""
        if source == target:
            raise ValidationError("A node cannot be related to itself")
        if not 0.0 <= weight <= 1.0:
            raise ValidationError(f"Edge weight {weight} outside [0, 1]")
        reverse_id = GraphEdge.make_id(target, edge_type, source)
        if reverse_id in self._edges:
            source, target = target, source
        edge = GraphEdge(
            source=source,
            target=target,
            type=edge_type,
            weight=round(weight, 4),
            properties=dict(properties or {}),
        )
        self._index_edge(edge)
        return edge

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_node(self, record: MemoryRecord) -> GraphNode:
        """Insert (or refresh) the node for ``record`` and infer its edges."""
        self._check_open()
        node = GraphNode(
            id=record.id,
            label=make_label(record),
            properties={
                "category": record.category,
                "content": record.content,
                "priority": record.priority,
                "tags": sorted(record.tags),
                "session_id": record.session_id,
                **record.metadata,
            },
            timestamp=record.timestamp,
        )
        ensure_json(node.to_dict(), f"Graph node {node.id}")
        created = 0
        with self._lock:
            self._nodes[node.id] = node
            self._adjacency.setdefault(node.id, set())
            for other in list(self._nodes.values()):
                if other.id == node.id:
                    continue
                if other.properties.get("category") == record.category:
                    self._upsert_edge(node.id, other.id, EdgeType.SAME_CATEGORY.value, SAME_CATEGORY_WEIGHT)
                    created += 1
                similarity = word_jaccard(record.content, other.properties.get("content", ""))
                if similarity >= self.similarity_floor:
                    self._upsert_edge(
                        node.id,
                        other.id,
                        EdgeType.SIMILAR_CONTENT.value,
                        similarity,
                        {"similarity": round(similarity, 4)},
                    )
                    created += 1
        logger.debug("Added graph node %s (%d relationships)", node.id, created)
        self._save()
        return node

    def add_edge(
        self,
        source: str,
        target: str,
        edge_type: str = EdgeType.RELATED.value,
        weight: float = 1.0,
        properties: Optional[Dict[str, Any]] = None,
    ) -> GraphEdge:
        """Create an explicit edge between two existing nodes (idempotent)."""
        self._check_open()
        with self._lock:
            missing = [nid for nid in (source, target) if nid not in self._nodes]
            if missing:
                raise NotFoundError(f"Graph node(s) not found: {', '.join(missing)}")
            ensure_json(properties or {}, f"Edge properties for {source}->{target}")
            edge = self._upsert_edge(source, target, edge_type, weight, properties)
        self._save()
        return edge

    def update_node_properties(self, node_id: str, patch: Dict[str, Any]) -> None:
        self._check_open()
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return
            ensure_json(patch, f"Properties for {node_id}")
            node.properties = {**node.properties, **patch}
        self._save()

    def remove_node(self, node_id: str) -> bool:
        """Hard-remove a node and every edge touching it."""
        self._check_open()
        removed = self._remove_nodes([node_id])
        if removed:
            self._save()
        return bool(removed)

    def remove_nodes(self, node_ids: Iterable[str]) -> int:
        self._check_open()
        removed = self._remove_nodes(node_ids)
        if removed:
            self._save()
        return removed

    def _remove_nodes(self, node_ids: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for node_id in node_ids:
                if self._nodes.pop(node_id, None) is None:
                    continue
                for edge_id in list(self._adjacency.get(node_id, ())):
                    self._drop_edge(edge_id)
                self._adjacency.pop(node_id, None)
                removed += 1
        return removed

    def cleanup(self) -> List[str]:
        """Remove orphan nodes (no edges). Explicit only; never called automatically."""
        self._check_open()
        with self._lock:
            orphans = [nid for nid in self._nodes if not self._adjacency.get(nid)]
            self._remove_nodes(orphans)
        if orphans:
            self._save()
        logger.info("Knowledge graph cleanup removed %d orphan nodes", len(orphans))
        return orphans

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self._nodes.get(node_id)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def node_count(self) -> int:
        return len(self._nodes)

    def edge_count(self) -> int:
        return len(self._edges)

    def edges(self) -> List[GraphEdge]:
        with self._lock:
            return list(self._edges.values())

    def relationships(self, node_id: str) -> List[GraphEdge]:
        """Edges touching ``node_id``, strongest first."""
        with self._lock:
            edges = [self._edges[eid] for eid in self._adjacency.get(node_id, ())]
        return sorted(edges, key=lambda e: (-e.weight, e.id))

    def neighbors(self, node_id: str, max_depth: int = 2) -> List[GraphNode]:
        """Breadth-first neighbourhood up to ``max_depth`` hops (start excluded)."""
        if max_depth < 1:
            return []
        with self._lock:
            if node_id not in self._nodes:
                return []
            visited = {node_id}
            found: List[GraphNode] = []
            queue = deque([(node_id, 0)])
            while queue:
                current, depth = queue.popleft()
                if depth >= max_depth:
                    continue
                for edge_id in sorted(self._adjacency.get(current, ())):
                    neighbor = self._edges[edge_id].other(current)
                    if neighbor in visited:
                        continue
                    visited.add(neighbor)
                    node = self._nodes.get(neighbor)
                    if node is not None:
                        found.append(node)
                        queue.append((neighbor, depth + 1))
            return found

    def traverse(self, start_id: str, max_hops: int = 2, min_weight: float = 0.0) -> List[Dict[str, Any]]:
        """Neighbourhood with hop distance and connecting edge, nearest/strongest first."""
        with self._lock:
            if start_id not in self._nodes:
                raise NotFoundError(f"Graph node {start_id} not found")
            visited: Dict[str, Dict[str, Any]] = {}
            frontier = {start_id}
            for hop in range(1, max_hops + 1):
                if not frontier:
                    break
                next_frontier: Set[str] = set()
                for current in sorted(frontier):
                    for edge in self.relationships(current):
                        if edge.weight < min_weight:
                            continue
                        neighbor = edge.other(current)
                        if neighbor == start_id or neighbor in visited:
                            continue
                        node = self._nodes[neighbor]
                        visited[neighbor] = {
                            "node_id": neighbor,
                            "label": node.label,
                            "content": node.properties.get("content", ""),
                            "hop": hop,
                            "weight": edge.weight,
                            "edge_type": edge.type,
                        }
                        next_frontier.add(neighbor)
                frontier = next_frontier
        return sorted(visited.values(), key=lambda x: (x["hop"], -x["weight"]))

    def search_nodes(self, query: str, limit: int = 10) -> List[GraphNode]:
        """Substring match over label (3), content (2), and category (1)."""
        q = (query or "").lower().strip()
        if not q:
            return []
        scored = []
        with self._lock:
            for node in self._nodes.values():
                score = 0
                if q in node.label.lower():
                    score += 3
                if q in str(node.properties.get("content", "")).lower():
                    score += 2
                if q in str(node.properties.get("category", "")).lower():
                    score += 1
                if score:
                    scored.append((score, node))
        scored.sort(key=lambda pair: -pair[0])
        return [node for _, node in scored[:limit]]

    def clusters(self, edge_types: Optional[Iterable[str]] = DEFAULT_CLUSTER_EDGE_TYPES) -> List[Cluster]:
        """Connected components with more than one node.

        ``edge_types=None`` follows every edge. Coherence is the share of node
        pairs inside the cluster that are directly connected.
        """
        allowed = None if edge_types is None else {getattr(t, "value", t) for t in edge_types}
        with self._lock:
            adjacency: Dict[str, List[str]] = {nid: [] for nid in self._nodes}
            pairs: Set[frozenset] = set()
            for edge in self._edges.values():
                if allowed is not None and edge.type not in allowed:
                    continue
                pair = frozenset((edge.source, edge.target))
                if pair in pairs:
                    continue
                pairs.add(pair)
                adjacency[edge.source].append(edge.target)
                adjacency[edge.target].append(edge.source)
            order = list(self._nodes)

        visited: Set[str] = set()
        clusters: List[Cluster] = []
        for start in order:
            if start in visited:
                continue
            members: List[str] = []
            queue = deque([start])
            visited.add(start)
            while queue:
                current = queue.popleft()
                members.append(current)
                for neighbor in adjacency[current]:
                    if neighbor not in visited:
                        visited.add(neighbor)
                        queue.append(neighbor)
            if len(members) < 2:
                continue

            member_set = set(members)
            central, best = members[0], -1
            for nid in members:
                degree = sum(1 for n in adjacency[nid] if n in member_set)
                if degree > best:
                    central, best = nid, degree
            connected = sum(1 for p in pairs if p <= member_set)
            possible = len(members) * (len(members) - 1) / 2
            clusters.append(
                Cluster(
                    id=f"cluster_{len(clusters) + 1}",
                    nodes=members,
                    central_node=central,
                    coherence=connected / possible if possible else 0.0,
                )
            )
        return clusters

    def stats(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        with self._lock:
            for edge in self._edges.values():
                by_type[edge.type] = by_type.get(edge.type, 0) + 1
        return {
            "node_count": len(self._nodes),
            "relationship_count": len(self._edges),
            "relationships_by_type": by_type,
            "last_updated": self._last_updated,
        }

    def close(self) -> None:
        if self._closed:
            return
        try:
            self._save()
        finally:
            self._closed = True
        logger.info("Knowledge graph closed")


def cluster_insights(clusters: List[Cluster]) -> List[str]:
    """Human-readable diagnostics for a cluster analysis."""
    if not clusters:
        return ["No significant clusters found in the knowledge graph"]
    largest = max(clusters, key=lambda c: len(c.nodes))
    most_coherent = max(clusters, key=lambda c: c.coherence)
    average = sum(len(c.nodes) for c in clusters) / len(clusters)
    return [
        f"Largest knowledge cluster contains {len(largest.nodes)} related items",
        f"Most coherent cluster has {most_coherent.coherence * 100:.1f}% interconnection",
        f"Average cluster size is {average:.1f} items",
    ]
