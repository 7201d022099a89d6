"""
Waypoint Bridge -- High-level API for the Waypoint memory engine.

Provides the public interface used by the host tool handlers and the CLI.
All functions are thin wrappers around one lazily-built Engine (a
MemoryManager plus a MarathonManager sharing a data root).

Public API:
    Memory:     store, search, search_structured, load_context, update_knowledge
    Marathon:   start_session, checkpoint, save_and_switch, continue_session,
                update_progress, end_session, restore, list_checkpoints
    Health:     status, stats, cleanup
    Commands:   execute
    Testing:    reset_engine
"""

import atexit
import json
import logging
import threading
import time
from typing import Any, Dict, Iterable, List, Optional

from waypoint.config import WaypointConfig
from waypoint.documents import DocumentStore
from waypoint.errors import ValidationError, WaypointError
from waypoint.marathon import MarathonManager
from waypoint.memory import MemoryManager
from waypoint.types import Category, CommandRequest

logger = logging.getLogger("waypoint.bridge")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class Engine:
    """A MemoryManager and a MarathonManager over one data root."""

    def __init__(self, config: Optional[WaypointConfig] = None):
        self.config = config or WaypointConfig.from_env()
        self.documents = DocumentStore(self.config.data_dir, encrypt=self.config.encrypt)
        self.memory = MemoryManager(self.config, documents=self.documents)
        self.marathon = MarathonManager(self.config, documents=self.documents, memory=self.memory)
        state = self.marathon.state
        if state is not None:
            self.memory.set_current_session(state.session_id)

    @property
    def session_id(self) -> Optional[str]:
        state = self.marathon.state
        return state.session_id if state else None

    def close(self) -> None:
        try:
            self.marathon.close()
        finally:
            self.memory.close()


_engine_instance: Optional[Engine] = None
_engine_lock = threading.Lock()


def _get_engine() -> Engine:
    """Get or create the Engine singleton (thread-safe)."""
    global _engine_instance
    if _engine_instance is not None:
        return _engine_instance
    with _engine_lock:
        if _engine_instance is not None:
            return _engine_instance
        _engine_instance = Engine()
        atexit.register(_close_engine)
    return _engine_instance


def _close_engine():
    """Close the engine on process exit."""
    global _engine_instance
    if _engine_instance is not None:
        try:
            _engine_instance.close()
        except WaypointError as e:
            logger.debug("Engine close failed during shutdown: %s", e)


def reset_engine():
    """Reset the singleton (useful for testing)."""
    global _engine_instance
    with _engine_lock:
        if _engine_instance is not None:
            try:
                _engine_instance.close()
            except WaypointError as e:
                logger.debug("Engine close failed during reset: %s", e)
        _engine_instance = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _split_list(value: Any) -> Optional[List[str]]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def _preview(text: str, limit: int = 200) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def format_search_results(query: str, results: List[Dict[str, Any]]) -> str:
    output = f"# Search Results ({len(results)})\n\n**Query:** {query}\n\n"
    if not results:
        return output + "*No matching memories found.*\n"
    for i, r in enumerate(results, 1):
        output += f"## {i}. [{r['category']}] `{r['id']}` ({r['source']}, {r['relevance']:.2f})\n"
        output += f"{_preview(r['content'])}\n"
        related = (r.get("metadata") or {}).get("relationships", 0)
        if related:
            output += f"*Related memories: {related}*\n"
        output += f"*Stored: {r['timestamp'][:16]}*\n\n"
    return output


# ---------------------------------------------------------------------------
# Public API -- Memory
# ---------------------------------------------------------------------------


def store(
    content: str,
    category: str = Category.INSIGHTS.value,
    priority: str = "medium",
    tags: Optional[Iterable[str]] = None,
    session_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Store a memory. Defaults the session to the active marathon session."""
    engine = _get_engine()
    memory_id = engine.memory.store(
        content,
        category,
        priority=priority,
        tags=tags or (),
        session_id=session_id or engine.session_id,
        metadata=metadata,
    )
    return {"success": True, "id": memory_id, "category": category}


def search_structured(
    query: str,
    limit: int = 10,
    threshold: Optional[float] = None,
    categories: Optional[Iterable[str]] = None,
) -> List[Dict[str, Any]]:
    """Search and return result dicts (for programmatic callers)."""
    results = _get_engine().memory.search(query, limit=limit, threshold=threshold, categories=categories)
    return [r.to_dict() for r in results]


def search(
    query: str,
    limit: int = 10,
    threshold: Optional[float] = None,
    categories: Optional[Iterable[str]] = None,
) -> str:
    """Search memories. Returns formatted markdown."""
    results = search_structured(query, limit=limit, threshold=threshold, categories=categories)
    logger.info("Search '%s' returned %d results", query[:30], len(results))
    return format_search_results(query, results)


def load_context(query: Optional[str] = None, session_id: Optional[str] = None) -> Dict[str, Any]:
    engine = _get_engine()
    return engine.memory.load_context(query, session_id=session_id or engine.session_id)


def update_knowledge(category: str, data: Any) -> Dict[str, Any]:
    memory_id = _get_engine().memory.update_knowledge(category, data)
    return {"success": True, "id": memory_id, "category": category}


# ---------------------------------------------------------------------------
# Public API -- Marathon
# ---------------------------------------------------------------------------


def start_session(task_description: str) -> Dict[str, Any]:
    engine = _get_engine()
    state = engine.marathon.start(task_description=task_description)
    engine.memory.set_current_session(state.session_id)
    return {"success": True, "session_id": state.session_id, "state": state.to_dict()}


def checkpoint(description: str = "", data: Optional[Dict[str, Any]] = None, critical: bool = False) -> Dict[str, Any]:
    cp = _get_engine().marathon.checkpoint(description, data=data, critical=critical)
    return {"success": True, "checkpoint": cp.to_dict()}


def save_and_switch(new_task_description: Optional[str] = None) -> Dict[str, Any]:
    transfer = _get_engine().marathon.save_and_switch(new_task_description)
    return {"success": True, **transfer.to_dict()}


def continue_session() -> Dict[str, Any]:
    engine = _get_engine()
    state = engine.marathon.continue_from_previous()
    engine.memory.set_current_session(state.session_id)
    return {
        "success": True,
        "session_id": state.session_id,
        "previous_session_id": state.previous_session_id,
        "state": state.to_dict(),
    }


def update_progress(completed: float, total: Optional[float] = None) -> Dict[str, Any]:
    progress = _get_engine().marathon.update_progress(completed, total)
    return {"success": True, "progress": progress.to_dict()}


def end_session(reason: str = "completed") -> Dict[str, Any]:
    engine = _get_engine()
    summary = engine.marathon.end(reason)
    engine.memory.set_current_session(None)
    return {"success": True, **summary}


def restore(checkpoint_id: str) -> Dict[str, Any]:
    restoration = _get_engine().marathon.restore(checkpoint_id)
    return {"success": True, **restoration.to_dict()}


def list_checkpoints(session_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return [c.to_dict() for c in _get_engine().marathon.list_checkpoints(session_id)]


# ---------------------------------------------------------------------------
# Public API -- Health
# ---------------------------------------------------------------------------


def status() -> Dict[str, Any]:
    """Machine-readable marathon + memory status."""
    engine = _get_engine()
    return {
        "marathon": engine.marathon.status(),
        "memory": engine.memory.stats(),
        "data_dir": str(engine.config.data_dir),
    }


def stats() -> Dict[str, Any]:
    engine = _get_engine()
    result = engine.memory.stats()
    result["insights"] = engine.memory.insights()
    return result


def cleanup(retention_days: Optional[int] = None, prune_orphans: bool = False) -> Dict[str, Any]:
    result = _get_engine().memory.cleanup(retention_days, prune_orphans=prune_orphans)
    return {"success": True, **result}


# ---------------------------------------------------------------------------
# Command dispatch
# ---------------------------------------------------------------------------


def _parse_data(request: CommandRequest) -> Any:
    data = request.flags.get("data")
    if data is not None:
        return data
    text = request.clean_text.strip()
    if not text:
        raise ValidationError("update needs data")
    try:
        return json.loads(text)
    except ValueError as e:
        raise ValidationError(f"update data must be JSON: {e}") from e


def _number(value: Any, name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a number") from e


def _run(request: CommandRequest) -> Any:
    action = request.action
    flags = request.flags
    text = request.clean_text.strip()

    if action == "load":
        return load_context(text or None, session_id=flags.get("session_id"))
    if action == "search":
        limit = _number(flags.get("limit"), "limit")
        return search_structured(
            text,
            limit=10 if limit is None else int(limit),
            threshold=_number(flags.get("threshold"), "threshold"),
            categories=_split_list(flags.get("categories") or flags.get("category")),
        )
    if action in ("store", "save"):
        return store(
            text,
            category=flags.get("category", Category.INSIGHTS.value),
            priority=flags.get("priority", "medium"),
            tags=_split_list(flags.get("tags")),
            session_id=flags.get("session_id"),
            metadata=flags.get("metadata"),
        )
    if action == "update":
        return update_knowledge(flags.get("category", ""), _parse_data(request))
    if action == "checkpoint":
        return checkpoint(text, data=flags.get("data"), critical=bool(flags.get("critical", False)))
    if action == "start":
        return start_session(text or flags.get("task", ""))
    if action == "transfer":
        return save_and_switch(text or flags.get("task"))
    if action == "continue":
        return continue_session()
    if action == "progress":
        completed = _number(flags.get("completed", text or None), "completed")
        if completed is None:
            raise ValidationError("progress needs a completed count")
        return update_progress(completed, _number(flags.get("total"), "total"))
    if action == "end":
        return end_session(text or flags.get("reason", "completed"))
    if action == "status":
        return status()
    if action == "stats":
        return stats()
    if action == "restore":
        checkpoint_id = text or flags.get("checkpoint_id", "")
        if not checkpoint_id:
            raise ValidationError("restore needs a checkpoint id")
        return restore(checkpoint_id)
    if action == "cleanup":
        days = _number(flags.get("retention_days"), "retention_days")
        return cleanup(int(days) if days is not None else None, prune_orphans=bool(flags.get("prune_orphans")))
    raise ValidationError(f"Unknown action '{action}'")


def execute(request: CommandRequest) -> Dict[str, Any]:
    """Dispatch one parsed command. Engine errors come back as ``success: False``."""
    started = time.monotonic()
    try:
        result = _run(request)
        success, error = True, None
    except WaypointError as e:
        logger.warning("Command %s failed: %s", request.action, e)
        result, success, error = None, False, str(e)

    engine = _get_engine()
    engine.marathon.record_command(
        f"{request.action} {request.clean_text}".strip(),
        task_description=request.clean_text,
        success=success,
        error=error,
        duration=time.monotonic() - started,
    )
    if success:
        return {"action": request.action, "success": True, "result": result}
    return {"action": request.action, "success": False, "error": error}
