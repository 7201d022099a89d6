"""
Waypoint configuration.

The engine consumes plain values; ``WaypointConfig.from_env()`` is the only
place environment variables are read, and it is called lazily so tests can
point ``WAYPOINT_HOME`` at a temporary directory.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from waypoint.errors import ValidationError

DEFAULT_EMBEDDING_DIM = 300
DEFAULT_AUTOSAVE_INTERVAL_S = 300  # 5 minutes
DEFAULT_MAX_SESSION_MINUTES = 60
DEFAULT_RETENTION_DAYS = 90
DEFAULT_SIMILARITY_THRESHOLD = 0.1
DEFAULT_MAX_CONTEXT_SIZE = 200_000  # characters of serialized session state
DEFAULT_CHECKPOINT_MEMORY_LIMIT = 20


def _default_home() -> Path:
    return Path(os.environ.get("WAYPOINT_HOME", str(Path.home() / ".waypoint")))


def _env_flag(name: str, default: bool) -> bool:
    val = os.environ.get(name, "").strip().lower()
    if not val:
        return default
    return val not in ("0", "false", "no")


@dataclass(frozen=True)
class WaypointConfig:
    """Engine settings with sensible defaults."""

    data_dir: Path = field(default_factory=_default_home)
    embedding_dim: int = DEFAULT_EMBEDDING_DIM
    autosave_interval: float = DEFAULT_AUTOSAVE_INTERVAL_S  # seconds
    max_session_minutes: float = DEFAULT_MAX_SESSION_MINUTES
    max_context_size: int = DEFAULT_MAX_CONTEXT_SIZE
    retention_days: int = DEFAULT_RETENTION_DAYS
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    checkpoint_memory_limit: int = DEFAULT_CHECKPOINT_MEMORY_LIMIT
    encrypt: bool = False

    def __post_init__(self):
        object.__setattr__(self, "data_dir", Path(self.data_dir).expanduser())
        self.validate()

    @classmethod
    def from_env(cls, data_dir: Optional[Path] = None, **overrides) -> "WaypointConfig":
        """Build a config from WAYPOINT_* environment variables."""
        try:
            values = dict(
                data_dir=Path(data_dir) if data_dir else _default_home(),
                embedding_dim=int(os.environ.get("WAYPOINT_EMBEDDING_DIM", DEFAULT_EMBEDDING_DIM)),
                autosave_interval=float(os.environ.get("WAYPOINT_AUTOSAVE_INTERVAL", DEFAULT_AUTOSAVE_INTERVAL_S)),
                max_session_minutes=float(
                    os.environ.get("WAYPOINT_MAX_SESSION_MINUTES", DEFAULT_MAX_SESSION_MINUTES)
                ),
                retention_days=int(os.environ.get("WAYPOINT_RETENTION_DAYS", DEFAULT_RETENTION_DAYS)),
                similarity_threshold=float(
                    os.environ.get("WAYPOINT_SIMILARITY_THRESHOLD", DEFAULT_SIMILARITY_THRESHOLD)
                ),
                encrypt=_env_flag("WAYPOINT_ENCRYPT", False),
            )
        except ValueError as e:
            raise ValidationError(f"Invalid WAYPOINT_* setting: {e}") from e
        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **overrides) -> "WaypointConfig":
        return replace(self, **overrides)

    @property
    def max_session_seconds(self) -> float:
        return self.max_session_minutes * 60

    def validate(self) -> None:
        errors = []
        if self.embedding_dim < 1:
            errors.append("embedding_dim must be positive")
        if self.autosave_interval <= 0:
            errors.append("autosave_interval must be positive")
        if self.max_session_minutes <= 0:
            errors.append("max_session_minutes must be positive")
        if self.retention_days < 1:
            errors.append("retention_days must be at least 1")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            errors.append("similarity_threshold must be within [0, 1]")
        if self.checkpoint_memory_limit < 0:
            errors.append("checkpoint_memory_limit must not be negative")
        if errors:
            raise ValidationError("; ".join(errors))
