"""Waypoint tool schemas -- 11 tools for memory and marathon sessions.

Registration with a host protocol server is left to the host; these are the
input schemas the handlers in ``waypoint.server.handlers`` accept.
"""

_CATEGORIES = ["infrastructure", "projects", "interactions", "workflows", "insights"]

TOOL_SCHEMAS = [
    {
        "name": "waypoint_store",
        "description": "Store a memory in one of the knowledge categories. It is embedded, linked into the relationship graph and merged into the category document.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "Memory content (plain text or a JSON object)"},
                "category": {"type": "string", "enum": _CATEGORIES, "default": "insights"},
                "priority": {"type": "string", "enum": ["low", "medium", "high", "critical"], "default": "medium"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "metadata": {"type": "object", "description": "Additional metadata (JSON values only)"},
                "session_id": {"type": "string", "description": "Defaults to the active marathon session"},
            },
            "required": ["content"],
        },
    },
    {
        "name": "waypoint_search",
        "description": "Search memories. Combines fingerprint (vector) ranking with a keyword scan of the knowledge categories. Results are ranking hints, not semantic understanding.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "limit": {"type": "integer", "default": 10},
                "threshold": {"type": "number", "minimum": 0, "maximum": 1, "description": "Minimum relevance (default 0.1)"},
                "categories": {"type": "array", "items": {"type": "string", "enum": _CATEGORIES}},
            },
            "required": ["query"],
        },
    },
    {
        "name": "waypoint_start_session",
        "description": "Start a marathon session for a long-running task. Writes a start checkpoint and enables periodic auto-save.",
        "inputSchema": {
            "type": "object",
            "properties": {"task_description": {"type": "string"}},
            "required": ["task_description"],
        },
    },
    {
        "name": "waypoint_save_and_switch",
        "description": "Save a critical checkpoint and hand the task over to a new session. Returns the command to continue with.",
        "inputSchema": {
            "type": "object",
            "properties": {"new_task_description": {"type": "string", "description": "Replaces the task description"}},
        },
    },
    {
        "name": "waypoint_continue",
        "description": "Continue a marathon that was saved with waypoint_save_and_switch, under a new session id.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "waypoint_checkpoint",
        "description": "Write a manual checkpoint of the current marathon session.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "description": {"type": "string"},
                "data": {"type": "object"},
                "critical": {"type": "boolean", "default": False},
            },
            "required": ["description"],
        },
    },
    {
        "name": "waypoint_status",
        "description": "Current marathon state and memory counts.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "waypoint_progress",
        "description": "Report task progress. Crossing 25/50/75/100% writes a milestone checkpoint.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "completed": {"type": "number", "minimum": 0},
                "total": {"type": "number", "exclusiveMinimum": 0, "description": "Defaults to an estimate from the task description"},
            },
            "required": ["completed"],
        },
    },
    {
        "name": "waypoint_end_session",
        "description": "End the marathon with a final checkpoint.",
        "inputSchema": {
            "type": "object",
            "properties": {"reason": {"type": "string", "default": "completed"}},
        },
    },
    {
        "name": "waypoint_stats",
        "description": "Memory statistics: per-category counts, storage footprint, graph size and cluster insights.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "waypoint_restore",
        "description": "Rebuild session context (memories and next actions) from a checkpoint id.",
        "inputSchema": {
            "type": "object",
            "properties": {"checkpoint_id": {"type": "string"}},
            "required": ["checkpoint_id"],
        },
    },
]
