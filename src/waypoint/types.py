"""Waypoint data model: records, graph elements, sessions, checkpoints."""

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from waypoint.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


def parse_dt(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string to an aware UTC datetime."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class Category(str, Enum):
    INFRASTRUCTURE = "infrastructure"
    PROJECTS = "projects"
    INTERACTIONS = "interactions"
    WORKFLOWS = "workflows"
    INSIGHTS = "insights"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EdgeType(str, Enum):
    SAME_CATEGORY = "SAME_CATEGORY"
    SIMILAR_CONTENT = "SIMILAR_CONTENT"
    RELATED = "RELATED"


class CheckpointType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    CRITICAL = "critical"
    MARATHON_START = "marathon_start"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    TRANSFERRED = "transferred"
    COMPLETED = "completed"
    ERROR = "error"


class MarathonStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    READY_FOR_CONTINUATION = "ready_for_continuation"
    COMPLETED = "completed"
    ERROR = "error"


CATEGORIES = frozenset(c.value for c in Category)
PRIORITIES = frozenset(p.value for p in Priority)

# Knowledge-base keys the caller may never write directly
PROTECTED_FIELDS = frozenset({"currentSession", "lastUpdated"})


def coerce_category(value: Any) -> str:
    value = getattr(value, "value", value)
    if value in PROTECTED_FIELDS:
        raise ValidationError(f"'{value}' is a protected field and cannot be written")
    if value not in CATEGORIES:
        raise ValidationError(f"Unknown category '{value}'. Expected one of: {', '.join(sorted(CATEGORIES))}")
    return value


def coerce_priority(value: Any) -> str:
    value = getattr(value, "value", value) or Priority.MEDIUM.value
    if value not in PRIORITIES:
        raise ValidationError(f"Unknown priority '{value}'. Expected one of: {', '.join(sorted(PRIORITIES))}")
    return value


# ---------------------------------------------------------------------------
# MemoryRecord
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MemoryRecord:
    """A stored, immutable text item with its derived vector.

    Only ``metadata`` may change after creation (merged, never replaced).
    """

    id: str
    content: str
    category: str
    priority: str = Priority.MEDIUM.value
    tags: FrozenSet[str] = frozenset()
    session_id: Optional[str] = None
    timestamp: str = field(default_factory=utcnow_iso)
    embedding: Tuple[float, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def created_at(self) -> datetime:
        return parse_dt(self.timestamp)

    def with_embedding(self, embedding: Iterable[float]) -> "MemoryRecord":
        return MemoryRecord(
            id=self.id,
            content=self.content,
            category=self.category,
            priority=self.priority,
            tags=self.tags,
            session_id=self.session_id,
            timestamp=self.timestamp,
            embedding=tuple(float(x) for x in embedding),
            metadata=dict(self.metadata),
        )

    def with_metadata(self, patch: Dict[str, Any]) -> "MemoryRecord":
        merged = dict(self.metadata)
        merged.update(patch)
        return MemoryRecord(
            id=self.id,
            content=self.content,
            category=self.category,
            priority=self.priority,
            tags=self.tags,
            session_id=self.session_id,
            timestamp=self.timestamp,
            embedding=self.embedding,
            metadata=merged,
        )

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "content": self.content,
            "category": self.category,
            "priority": self.priority,
            "tags": sorted(self.tags),
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }
        if include_embedding:
            data["embedding"] = list(self.embedding)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryRecord":
        return cls(
            id=data["id"],
            content=data.get("content", ""),
            category=data.get("category", Category.INSIGHTS.value),
            priority=data.get("priority", Priority.MEDIUM.value),
            tags=frozenset(data.get("tags") or ()),
            session_id=data.get("session_id"),
            timestamp=data.get("timestamp") or utcnow_iso(),
            embedding=tuple(data.get("embedding") or ()),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class SearchResult:
    """One hit from MemoryManager.search()."""

    id: str
    content: str
    category: str
    relevance: float
    source: str  # "vector" | "keyword"
    timestamp: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    record: Optional[MemoryRecord] = None

    @property
    def neighbor_count(self) -> int:
        return self.metadata.get("relationships", 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category,
            "relevance": round(self.relevance, 4),
            "source": self.source,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


@dataclass
class GraphNode:
    id: str
    label: str
    properties: Dict[str, Any]
    timestamp: str
    type: str = "memory_item"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphNode":
        return cls(
            id=data["id"],
            label=data.get("label", ""),
            properties=dict(data.get("properties") or {}),
            timestamp=data.get("timestamp") or utcnow_iso(),
            type=data.get("type", "memory_item"),
        )


@dataclass
class GraphEdge:
    source: str
    target: str
    type: str
    weight: float
    properties: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utcnow_iso)

    @staticmethod
    def make_id(source: str, edge_type: str, target: str) -> str:
        return f"{source}-{edge_type}-{target}"

    @property
    def id(self) -> str:
        return self.make_id(self.source, self.type, self.target)

    def other(self, node_id: str) -> str:
        return self.target if self.source == node_id else self.source

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphEdge":
        return cls(
            source=data["source"],
            target=data["target"],
            type=data["type"],
            weight=float(data.get("weight", 1.0)),
            properties=dict(data.get("properties") or {}),
            timestamp=data.get("timestamp") or utcnow_iso(),
        )


@dataclass
class Cluster:
    id: str
    nodes: List[str]
    central_node: str
    coherence: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Sessions, checkpoints, marathon state
# ---------------------------------------------------------------------------


@dataclass
class CommandExecution:
    command: str
    task_description: str = ""
    success: bool = True
    error: Optional[str] = None
    duration: Optional[float] = None
    timestamp: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommandExecution":
        return cls(
            command=data.get("command", ""),
            task_description=data.get("task_description", ""),
            success=bool(data.get("success", True)),
            error=data.get("error"),
            duration=data.get("duration"),
            timestamp=data.get("timestamp") or utcnow_iso(),
        )


@dataclass
class Session:
    """One user-facing unit of work."""

    id: str = field(default_factory=lambda: new_id("session"))
    start_time: str = field(default_factory=utcnow_iso)
    end_time: Optional[str] = None
    commands: List[CommandExecution] = field(default_factory=list)
    marathon_mode: bool = False
    context_size: int = 0
    status: str = SessionStatus.ACTIVE.value

    def record(self, command: CommandExecution) -> None:
        self.commands.append(command)
        self.refresh_context_size()

    def refresh_context_size(self) -> int:
        self.context_size = len(json.dumps(self.to_dict(include_size=False)))
        return self.context_size

    def to_dict(self, include_size: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "commands": [c.to_dict() for c in self.commands],
            "marathon_mode": self.marathon_mode,
            "status": self.status,
        }
        if include_size:
            data["context_size"] = self.context_size
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data["id"],
            start_time=data.get("start_time") or utcnow_iso(),
            end_time=data.get("end_time"),
            commands=[CommandExecution.from_dict(c) for c in data.get("commands") or []],
            marathon_mode=bool(data.get("marathon_mode", False)),
            context_size=int(data.get("context_size", 0)),
            status=data.get("status", SessionStatus.ACTIVE.value),
        )


@dataclass(frozen=True)
class Checkpoint:
    """Immutable snapshot of session + memory state."""

    id: str
    session_id: str
    type: str
    timestamp: str
    description: str
    data: Dict[str, Any]
    context_snapshot: str
    memory_state: Tuple[Dict[str, Any], ...] = ()
    next_actions: Tuple[str, ...] = ()

    @property
    def critical(self) -> bool:
        return self.type == CheckpointType.CRITICAL.value

    @property
    def automatic(self) -> bool:
        return self.type in (CheckpointType.AUTO.value, CheckpointType.MARATHON_START.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "type": self.type,
            "timestamp": self.timestamp,
            "description": self.description,
            "data": self.data,
            "context_snapshot": self.context_snapshot,
            "memory_state": list(self.memory_state),
            "next_actions": list(self.next_actions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            id=data["id"],
            session_id=data.get("session_id", ""),
            type=data.get("type", CheckpointType.MANUAL.value),
            timestamp=data.get("timestamp") or utcnow_iso(),
            description=data.get("description", ""),
            data=dict(data.get("data") or {}),
            context_snapshot=data.get("context_snapshot", ""),
            memory_state=tuple(data.get("memory_state") or ()),
            next_actions=tuple(data.get("next_actions") or ()),
        )


@dataclass
class Progress:
    completed: float = 0
    total: float = 10
    percentage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MarathonState:
    """The continuity record for one long-running task."""

    session_id: str
    task_description: str
    previous_session_id: Optional[str] = None
    started_at: str = field(default_factory=utcnow_iso)
    checkpoints: List[Checkpoint] = field(default_factory=list)
    status: str = MarathonStatus.ACTIVE.value
    progress: Progress = field(default_factory=Progress)
    milestone: int = 0  # highest 25% boundary already checkpointed

    def copy(self) -> "MarathonState":
        return MarathonState(
            session_id=self.session_id,
            task_description=self.task_description,
            previous_session_id=self.previous_session_id,
            started_at=self.started_at,
            checkpoints=list(self.checkpoints),
            status=self.status,
            progress=Progress(**self.progress.to_dict()),
            milestone=self.milestone,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "previous_session_id": self.previous_session_id,
            "task_description": self.task_description,
            "started_at": self.started_at,
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "status": self.status,
            "progress": self.progress.to_dict(),
            "milestone": self.milestone,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarathonState":
        progress = data.get("progress") or {}
        return cls(
            session_id=data["session_id"],
            previous_session_id=data.get("previous_session_id"),
            task_description=data.get("task_description", ""),
            started_at=data.get("started_at") or utcnow_iso(),
            checkpoints=[Checkpoint.from_dict(c) for c in data.get("checkpoints") or []],
            status=data.get("status", MarathonStatus.ACTIVE.value),
            progress=Progress(
                completed=progress.get("completed", 0),
                total=progress.get("total", 10),
                percentage=progress.get("percentage", 0.0),
            ),
            milestone=int(data.get("milestone", 0)),
        )


@dataclass
class CommandRequest:
    """Structured request handed over by the (external) command parser."""

    action: str
    clean_text: str = ""
    flags: Dict[str, Any] = field(default_factory=dict)
