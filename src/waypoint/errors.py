"""
Waypoint error taxonomy.

Three families, kept distinct so callers can tell "doesn't exist" from
"couldn't check":

- ValidationError -- bad input shape, protected-field writes, illegal state
  transitions. Rejected synchronously, never retried by the engine.
- StorageIOError  -- a durable read/write failed. In-memory state is left as
  it was; retrying is the caller's decision (``retryable`` is always True).
- NotFoundError   -- an unknown checkpoint, record, or node id.
"""


class WaypointError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(WaypointError, ValueError):
    """Input or state-transition rejected before anything was changed."""


class StorageIOError(WaypointError, OSError):
    """Persistence failure. The caller may retry.

    ``record_id`` is set when a memory was already indexed before a later
    write failed; retrying the store would index it a second time.
    """

    retryable = True

    def __init__(self, message: str, path=None, record_id=None):
        super().__init__(message)
        self.path = path
        self.record_id = record_id


class StoreClosedError(StorageIOError):
    """Raised when writing to a component after ``close()``."""

    retryable = False


class NotFoundError(WaypointError, LookupError):
    """The requested id is not known to the engine."""

    def __str__(self) -> str:
        # LookupError would repr() the message
        return str(self.args[0]) if self.args else ""
