"""
Waypoint events -- fire-and-forget observer for marathon lifecycle events.

Listeners run on a single worker thread, in publish order. A listener that
raises is logged and skipped; it never affects the publisher or the other
listeners.

Event names: started, checkpoint, switch, continue, completed,
recommend_switch, error.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from waypoint.types import utcnow_iso

logger = logging.getLogger("waypoint.events")

STARTED = "started"
CHECKPOINT = "checkpoint"
SWITCH = "switch"
CONTINUE = "continue"
COMPLETED = "completed"
RECOMMEND_SWITCH = "recommend_switch"
ERROR = "error"

EVENT_NAMES = frozenset({STARTED, CHECKPOINT, SWITCH, CONTINUE, COMPLETED, RECOMMEND_SWITCH, ERROR})
ANY = "*"

Listener = Callable[[Dict[str, Any]], None]


def make_event(
    event_type: str,
    session_id: Optional[str],
    data: Optional[Dict[str, Any]] = None,
    active: bool = False,
    checkpoint_count: int = 0,
) -> Dict[str, Any]:
    return {
        "type": event_type,
        "timestamp": utcnow_iso(),
        "session_id": session_id,
        "data": dict(data or {}),
        "metadata": {"active": active, "checkpoint_count": checkpoint_count},
    }


class EventBus:
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="waypoint-events")
            return self._executor

    def subscribe(self, event_type: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``event_type`` ("*" for all). Returns an unsubscribe callable."""
        if event_type != ANY and event_type not in EVENT_NAMES:
            logger.warning("Subscribing to unknown event type %r", event_type)
        with self._lock:
            self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(event_type, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def publish(self, event: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event["type"], ())) + list(self._listeners.get(ANY, ()))
        if not listeners:
            return
        self._get_executor().submit(self._dispatch, event, listeners)

    @staticmethod
    def _dispatch(event: Dict[str, Any], listeners: List[Listener]) -> None:
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning("Event listener for %s failed: %s", event.get("type"), e)

    def flush(self, timeout: Optional[float] = 5.0) -> None:
        """Block until every event published so far has been delivered."""
        with self._lock:
            executor = self._executor
        if executor is not None:
            executor.submit(lambda: None).result(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
            self._listeners.clear()
        if executor is not None:
            executor.shutdown(wait=True)
