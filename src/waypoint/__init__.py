"""Waypoint: local semantic memory and session continuity.

Direct Python API::

    from waypoint import store, search, start_session
    store("Postgres primary runs on db-01", category="infrastructure")
    print(search("database server"))

Or own the components explicitly::

    from waypoint import WaypointConfig, MemoryManager, MarathonManager
    config = WaypointConfig(data_dir="/tmp/waypoint")
    memory = MemoryManager(config)
    marathon = MarathonManager(config, memory=memory)
"""

__version__ = "0.3.0"

from waypoint.config import WaypointConfig
from waypoint.embeddings import EmbeddingGenerator, cosine_similarity
from waypoint.errors import NotFoundError, StorageIOError, StoreClosedError, ValidationError, WaypointError
from waypoint.graph import RelationshipGraph
from waypoint.marathon import MarathonManager
from waypoint.memory import MemoryManager
from waypoint.vector_index import VectorIndex
from waypoint.bridge import (
    Engine,
    store,
    search,
    search_structured,
    load_context,
    update_knowledge,
    start_session,
    checkpoint,
    save_and_switch,
    continue_session,
    update_progress,
    end_session,
    restore,
    status,
    stats,
    cleanup,
    execute,
)

__all__ = [
    # Components
    "WaypointConfig",
    "EmbeddingGenerator",
    "VectorIndex",
    "RelationshipGraph",
    "MemoryManager",
    "MarathonManager",
    "Engine",
    "cosine_similarity",
    # Errors
    "WaypointError",
    "ValidationError",
    "StorageIOError",
    "StoreClosedError",
    "NotFoundError",
    # Memory
    "store",
    "search",
    "search_structured",
    "load_context",
    "update_knowledge",
    # Marathon
    "start_session",
    "checkpoint",
    "save_and_switch",
    "continue_session",
    "update_progress",
    "end_session",
    "restore",
    # Health
    "status",
    "stats",
    "cleanup",
    "execute",
    # Meta
    "__version__",
]
