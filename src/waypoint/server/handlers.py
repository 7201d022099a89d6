"""
Waypoint Handlers -- Maps tool names to async handler functions.

Each handler delegates to waypoint.bridge for actual operations and returns
MCP-compatible response dicts.
"""

import json
import logging
from typing import Any, Dict, Optional

from waypoint.errors import WaypointError

logger = logging.getLogger("waypoint.server.handlers")


def _clamp_int(value, default: int, min_val: int = 1, max_val: int = 10000) -> int:
    """Clamp a numeric argument to safe bounds."""
    try:
        v = int(value)
        return max(min_val, min(v, max_val))
    except (TypeError, ValueError):
        return default


def _float_or_none(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ============================================================================
# Response Helpers
# ============================================================================


def mcp_response(text: str) -> dict:
    """Build a successful MCP response."""
    return {"content": [{"type": "text", "text": str(text)}]}


def mcp_error(text: str) -> dict:
    """Build an error MCP response."""
    return {"content": [{"type": "text", "text": f"Error: {text}"}], "isError": True}


def _failure(tool: str, what: str, e: Exception) -> dict:
    if isinstance(e, WaypointError):
        logger.warning("%s rejected: %s", tool, e)
        return mcp_error(str(e))
    logger.error("%s failed: %s", tool, e)
    return mcp_error(f"{what}: {e}")


# ============================================================================
# Handler: waypoint_store
# ============================================================================


async def handle_waypoint_store(arguments: dict) -> dict:
    """Store a memory in a knowledge category."""
    content = arguments.get("content", "").strip()
    if not content:
        return mcp_error("content is required")

    tags = arguments.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]

    try:
        from waypoint.bridge import store

        result = store(
            content=content,
            category=arguments.get("category", "insights"),
            priority=arguments.get("priority", "medium"),
            tags=tags,
            session_id=arguments.get("session_id"),
            metadata=arguments.get("metadata"),
        )
        return mcp_response(f"Stored memory `{result['id']}` in {result['category']}")
    except Exception as e:
        return _failure("waypoint_store", "Failed to store memory", e)


# ============================================================================
# Handler: waypoint_search
# ============================================================================


async def handle_waypoint_search(arguments: dict) -> dict:
    """Hybrid vector + keyword search."""
    query_text = arguments.get("query", "").strip()
    if not query_text:
        return mcp_error("query is required")

    limit = _clamp_int(arguments.get("limit", 10), default=10, max_val=100)
    threshold = _float_or_none(arguments.get("threshold"))
    if threshold is not None and not 0.0 <= threshold <= 1.0:
        return mcp_error("threshold must be between 0 and 1")

    try:
        from waypoint.bridge import search

        return mcp_response(search(query_text, limit=limit, threshold=threshold, categories=arguments.get("categories")))
    except Exception as e:
        return _failure("waypoint_search", "Search failed", e)


# ============================================================================
# Handlers: marathon lifecycle
# ============================================================================


async def handle_waypoint_start_session(arguments: dict) -> dict:
    """Start a marathon session."""
    task = arguments.get("task_description", "").strip()
    if not task:
        return mcp_error("task_description is required")

    try:
        from waypoint.bridge import start_session

        result = start_session(task)
        state = result["state"]
        return mcp_response(
            f"Marathon session `{result['session_id']}` started\n"
            f"Task: {state['task_description']}\n"
            f"Estimated steps: {state['progress']['total']}\n"
            f"Auto-save is on."
        )
    except Exception as e:
        return _failure("waypoint_start_session", "Failed to start session", e)


async def handle_waypoint_save_and_switch(arguments: dict) -> dict:
    """Critical checkpoint + hand over to a new session."""
    new_task = (arguments.get("new_task_description") or "").strip() or None
    try:
        from waypoint.bridge import save_and_switch

        result = save_and_switch(new_task)
        return mcp_response(result["instructions"])
    except Exception as e:
        return _failure("waypoint_save_and_switch", "Save and switch failed", e)


async def handle_waypoint_continue(arguments: dict) -> dict:
    """Continue a switched marathon under a new session id."""
    try:
        from waypoint.bridge import continue_session

        result = continue_session()
        state = result["state"]
        return mcp_response(
            f"Continuing marathon as `{result['session_id']}` (previous: `{result['previous_session_id']}`)\n"
            f"Task: {state['task_description']}\n"
            f"Progress: {state['progress']['percentage']:.0f}%"
        )
    except Exception as e:
        return _failure("waypoint_continue", "Continue failed", e)


async def handle_waypoint_checkpoint(arguments: dict) -> dict:
    """Write a manual (or critical) checkpoint."""
    description = arguments.get("description", "").strip()
    if not description:
        return mcp_error("description is required")
    data = arguments.get("data") or {}
    if not isinstance(data, dict):
        return mcp_error("data must be an object")

    try:
        from waypoint.bridge import checkpoint

        result = checkpoint(description, data=data, critical=bool(arguments.get("critical", False)))
        cp = result["checkpoint"]
        return mcp_response(f"Checkpoint `{cp['id']}` ({cp['type']}) saved: {cp['description']}")
    except Exception as e:
        return _failure("waypoint_checkpoint", "Checkpoint failed", e)


async def handle_waypoint_progress(arguments: dict) -> dict:
    """Report progress on the marathon task."""
    completed = _float_or_none(arguments.get("completed"))
    if completed is None:
        return mcp_error("completed is required")

    try:
        from waypoint.bridge import update_progress

        result = update_progress(completed, _float_or_none(arguments.get("total")))
        p = result["progress"]
        return mcp_response(f"Progress: {p['completed']}/{p['total']} ({p['percentage']:.0f}%)")
    except Exception as e:
        return _failure("waypoint_progress", "Progress update failed", e)


async def handle_waypoint_end_session(arguments: dict) -> dict:
    """End the marathon."""
    reason = (arguments.get("reason") or "completed").strip()
    try:
        from waypoint.bridge import end_session

        result = end_session(reason)
        minutes = result["duration"] / 60
        return mcp_response(
            f"Marathon `{result['session_id']}` ended ({result['reason']}) after {minutes:.1f} min, "
            f"{result['checkpoint_count']} checkpoints"
        )
    except Exception as e:
        return _failure("waypoint_end_session", "End session failed", e)


async def handle_waypoint_restore(arguments: dict) -> dict:
    """Rebuild session context from a checkpoint."""
    checkpoint_id = arguments.get("checkpoint_id", "").strip()
    if not checkpoint_id:
        return mcp_error("checkpoint_id is required")

    try:
        from waypoint.bridge import restore

        result = restore(checkpoint_id)
        return mcp_response(f"{result['summary']}\n\nNew session: `{result['new_session_id']}`")
    except Exception as e:
        return _failure("waypoint_restore", "Restore failed", e)


# ============================================================================
# Handlers: status & stats
# ============================================================================


async def handle_waypoint_status(arguments: dict) -> dict:
    """Marathon state and memory counts."""
    try:
        from waypoint.bridge import status

        result = status()
        m = result["marathon"]
        lines = ["# Waypoint Status", ""]
        if m.get("status") == "inactive":
            lines.append("Marathon: inactive")
            if m.get("last_session_id"):
                lines.append(f"Last session: `{m['last_session_id']}`")
        else:
            lines.append(f"Marathon: {m['status']} (`{m['session_id']}`)")
            lines.append(f"Task: {m['task_description']}")
            lines.append(f"Progress: {m['progress']['percentage']:.0f}%")
            lines.append(f"Checkpoints: {m['checkpoint_count']}")
            if m.get("continuation_command"):
                lines.append(f"Continue with: {m['continuation_command']}")
        mem = result["memory"]
        lines.append(f"Memories: {mem['total_items']} ({mem['relationship_count']} relationships)")
        return mcp_response("\n".join(lines))
    except Exception as e:
        return _failure("waypoint_status", "Status failed", e)


async def handle_waypoint_stats(arguments: dict) -> dict:
    """Memory statistics as JSON."""
    try:
        from waypoint.bridge import stats

        return mcp_response(json.dumps(stats(), indent=2))
    except Exception as e:
        return _failure("waypoint_stats", "Stats failed", e)


# ============================================================================
# Handler Registry
# ============================================================================

HANDLERS: Dict[str, Any] = {
    "waypoint_store": handle_waypoint_store,
    "waypoint_search": handle_waypoint_search,
    "waypoint_start_session": handle_waypoint_start_session,
    "waypoint_save_and_switch": handle_waypoint_save_and_switch,
    "waypoint_continue": handle_waypoint_continue,
    "waypoint_checkpoint": handle_waypoint_checkpoint,
    "waypoint_status": handle_waypoint_status,
    "waypoint_progress": handle_waypoint_progress,
    "waypoint_end_session": handle_waypoint_end_session,
    "waypoint_stats": handle_waypoint_stats,
    "waypoint_restore": handle_waypoint_restore,
}
