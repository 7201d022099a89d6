"""
Waypoint Marathon -- checkpoint/resume state machine for long-running tasks.

States::

    start ──► active ──save_and_switch──► ready_for_continuation
                ▲                                │
                └────────continue_from_previous──┘
    active | ready_for_continuation ──end──► completed
    any non-terminal ──fail──► error

Every transition writes a checkpoint document and the state document; the new
state is only applied once both writes succeeded, so a storage failure leaves
the manager exactly where it was. While active, a daemon timer writes an
``auto`` checkpoint every ``autosave_interval`` seconds and publishes
``recommend_switch`` when the session has run too long or grown too large.
The recommendation is advisory: nothing switches on its own.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from waypoint import events as ev
from waypoint.config import WaypointConfig
from waypoint.documents import DocumentStore
from waypoint.errors import NotFoundError, StorageIOError, ValidationError
from waypoint.types import (
    Checkpoint,
    CheckpointType,
    CommandExecution,
    MarathonState,
    MarathonStatus,
    MemoryRecord,
    Progress,
    Session,
    SessionStatus,
    new_id,
    parse_dt,
    utcnow,
    utcnow_iso,
)

logger = logging.getLogger("waypoint.marathon")

STATE_DOCUMENT = "marathon/state.json"
CHECKPOINT_DIR = "checkpoints"

RECENT_COMMANDS_IN_SNAPSHOT = 10
RECENT_COMMANDS_IN_TRANSFER = 5
COMMAND_PREVIEW_CHARS = 100
MILESTONE_STEP = 25

COMPLEXITY_KEYWORDS = ("deploy", "integrate", "configure", "setup", "develop", "analyze")

_TERMINAL = (MarathonStatus.COMPLETED.value, MarathonStatus.ERROR.value)


class MemorySource(Protocol):
    """Anything that can hand over the most recent memories of a session."""

    def recent(self, limit: int = 20, session_id: Optional[str] = None) -> List[MemoryRecord]:
        ...


@dataclass(frozen=True)
class Transfer:
    checkpoint_id: str
    instructions: str
    continuation_command: str
    state: MarathonState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checkpoint_id": self.checkpoint_id,
            "instructions": self.instructions,
            "continuation_command": self.continuation_command,
            "state": self.state.to_dict(),
        }


@dataclass(frozen=True)
class Restoration:
    new_session_id: str
    checkpoint: Checkpoint
    memories: List[MemoryRecord] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "new_session_id": self.new_session_id,
            "checkpoint_id": self.checkpoint.id,
            "previous_session_id": self.checkpoint.session_id,
            "memories": [m.to_dict() for m in self.memories],
            "next_actions": list(self.checkpoint.next_actions),
            "summary": self.summary,
        }


def estimate_task_complexity(description: str) -> int:
    """Rough number of steps a task will take, in [10, 100]."""
    text = (description or "").lower()
    score = 10 + min(len(text) // 10, 20)
    score += 5 * sum(1 for keyword in COMPLEXITY_KEYWORDS if keyword in text)
    return max(10, min(score, 100))


def derive_next_actions(session: Optional[Session], state: MarathonState) -> List[str]:
    actions: List[str] = []
    last = session.commands[-1] if session and session.commands else None
    if last is not None:
        if not last.success:
            actions.append("Retry last command with error handling")
        text = last.command.lower()
        if "deploy" in text:
            actions.extend(["Verify deployment status", "Check service health"])
        if "config" in text:
            actions.extend(["Test configuration", "Apply changes"])
    if state.progress.percentage < 100:
        actions.append(f"Continue: {state.task_description} ({state.progress.percentage:.0f}% complete)")
    return actions


def continuation_command(state: MarathonState) -> str:
    return f"Continue {state.task_description} from previous session ({state.session_id})"


# ---------------------------------------------------------------------------
# Auto-save timer
# ---------------------------------------------------------------------------


class AutoSaveTimer:
    """Daemon thread calling ``callback(self)`` every ``interval`` seconds until cancelled."""

    def __init__(self, interval: float, callback: Callable[["AutoSaveTimer"], None]):
        self.interval = interval
        self._callback = callback
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name="waypoint-autosave", daemon=True)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self.cancelled

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is threading.current_thread() or not self._thread.is_alive():
            return
        self._thread.join(timeout)

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            self._callback(self)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class MarathonManager:
    """Owns the single MarathonState of a data root."""

    def __init__(
        self,
        config: Optional[WaypointConfig] = None,
        documents: Optional[DocumentStore] = None,
        memory: Optional[MemorySource] = None,
        events: Optional[ev.EventBus] = None,
    ):
        self.config = config or WaypointConfig.from_env()
        self.documents = documents or DocumentStore(self.config.data_dir, encrypt=self.config.encrypt)
        self.memory = memory
        self._owns_events = events is None
        self.events = events or ev.EventBus()
        self._lock = threading.RLock()
        self._state: Optional[MarathonState] = None
        self._session: Optional[Session] = None
        self._last_session_id: Optional[str] = None
        self._timer: Optional[AutoSaveTimer] = None
        self._load()
        if self._state is not None and self._state.status == MarathonStatus.ACTIVE.value:
            logger.info("Resuming auto-save for active marathon %s", self._state.session_id)
            self._start_timer()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        data = self.documents.read(STATE_DOCUMENT)
        if not data:
            return
        try:
            state = MarathonState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable marathon state: %s", e)
            return
        if state.status == MarathonStatus.COMPLETED.value:
            self._last_session_id = state.session_id
            return
        self._state = state
        raw_session = data.get("session")
        self._session = Session.from_dict(raw_session) if raw_session else Session(id=state.session_id, marathon_mode=True)
        logger.info("Loaded marathon %s (%s)", state.session_id, state.status)

    def _write_state(self, state: MarathonState, session: Optional[Session]) -> None:
        doc = state.to_dict()
        if session is not None:
            doc["session"] = session.to_dict()
        self.documents.write(STATE_DOCUMENT, doc)

    def _checkpoint_document(self, checkpoint_id: str) -> str:
        return f"{CHECKPOINT_DIR}/{checkpoint_id}.json"

    def _commit(
        self,
        candidate: MarathonState,
        session: Optional[Session],
        checkpoint: Optional[Checkpoint] = None,
    ) -> None:
        """Persist checkpoint + state, then apply. Nothing is applied on failure."""
        if checkpoint is not None:
            self.documents.write(self._checkpoint_document(checkpoint.id), checkpoint.to_dict())
        try:
            self._write_state(candidate, session)
        except StorageIOError:
            if checkpoint is not None:
                try:
                    self.documents.delete(self._checkpoint_document(checkpoint.id))
                except StorageIOError as e:
                    logger.warning("Could not remove orphan checkpoint %s: %s", checkpoint.id, e)
            raise
        self._state = candidate
        self._session = session

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, *allowed: str, action: str) -> MarathonState:
        if self._state is None:
            raise ValidationError(f"Cannot {action}: no marathon session")
        if self._state.status not in allowed:
            raise ValidationError(f"Cannot {action} while marathon is {self._state.status}")
        return self._state

    def _build_checkpoint(
        self,
        state: MarathonState,
        session: Optional[Session],
        checkpoint_type: str,
        description: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Checkpoint:
        data = dict(data or {})
        commands = session.commands[-RECENT_COMMANDS_IN_SNAPSHOT:] if session else []
        snapshot = {
            "session_id": state.session_id,
            "start_time": session.start_time if session else state.started_at,
            "command_count": len(session.commands) if session else 0,
            "recent_commands": [
                {"command": c.command[:COMMAND_PREVIEW_CHARS], "success": c.success} for c in commands
            ],
            "status": state.status,
            "task_description": state.task_description,
            "progress": state.progress.to_dict(),
            "data": data,
        }
        memory_state = ()
        if self.memory is not None and self.config.checkpoint_memory_limit:
            records = self.memory.recent(self.config.checkpoint_memory_limit, session_id=state.session_id)
            memory_state = tuple(r.to_dict() for r in records)
        return Checkpoint(
            id=new_id("checkpoint"),
            session_id=state.session_id,
            type=checkpoint_type,
            timestamp=utcnow_iso(),
            description=description,
            data=data,
            context_snapshot=json.dumps(snapshot, indent=2, ensure_ascii=False),
            memory_state=memory_state,
            next_actions=tuple(derive_next_actions(session, state)),
        )

    def _append_checkpoint(
        self,
        candidate: MarathonState,
        session: Optional[Session],
        checkpoint_type: str,
        description: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Checkpoint:
        checkpoint = self._build_checkpoint(candidate, session, checkpoint_type, description, data)
        candidate.checkpoints.append(checkpoint)
        self._commit(candidate, session, checkpoint)
        logger.debug("Checkpoint %s (%s): %s", checkpoint.id, checkpoint_type, description)
        return checkpoint

    def _publish(self, event_type: str, data: Optional[Dict[str, Any]] = None, state: Optional[MarathonState] = None) -> None:
        state = state or self._state
        self.events.publish(
            ev.make_event(
                event_type,
                state.session_id if state else self._last_session_id,
                data,
                active=bool(state and state.status == MarathonStatus.ACTIVE.value),
                checkpoint_count=len(state.checkpoints) if state else 0,
            )
        )

    def _copy_session(self) -> Optional[Session]:
        if self._session is None:
            return None
        return Session.from_dict(self._session.to_dict())

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _start_timer(self) -> None:
        timer = AutoSaveTimer(self.config.autosave_interval, self._tick)
        self._timer = timer
        timer.start()
        logger.debug("Auto-save every %ss", self.config.autosave_interval)

    def _detach_timer(self) -> Optional[AutoSaveTimer]:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        return timer

    @staticmethod
    def _join(timer: Optional[AutoSaveTimer]) -> None:
        if timer is not None:
            timer.join(timeout=5.0)

    def _tick(self, timer: AutoSaveTimer) -> None:
        with self._lock:
            if timer.cancelled or self._timer is not timer:
                return
            try:
                self.auto_save()
            except StorageIOError as e:
                logger.warning("Auto-save failed, retrying next interval: %s", e)

    @property
    def timer_running(self) -> bool:
        timer = self._timer
        return timer is not None and timer.running

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, session: Optional[Session] = None, task_description: str = "") -> MarathonState:
        """Begin a marathon for ``task_description``. Valid with no state or a finished one."""
        if not task_description or not task_description.strip():
            raise ValidationError("A marathon needs a task description")
        with self._lock:
            if self._state is not None and self._state.status not in _TERMINAL:
                raise ValidationError(f"Cannot start: marathon {self._state.session_id} is {self._state.status}")
            session = session or Session(marathon_mode=True)
            session.marathon_mode = True
            session.refresh_context_size()
            candidate = MarathonState(
                session_id=session.id,
                task_description=task_description.strip(),
                previous_session_id=self._state.session_id if self._state else self._last_session_id,
                progress=Progress(total=estimate_task_complexity(task_description)),
            )
            self._append_checkpoint(
                candidate,
                session,
                CheckpointType.MARATHON_START.value,
                f"Marathon started: {candidate.task_description}",
            )
            old_timer = self._detach_timer()
            self._start_timer()
            state = candidate.copy()
        self._join(old_timer)
        logger.info("Marathon %s started: %s", state.session_id, state.task_description)
        self._publish(ev.STARTED, {"task_description": state.task_description}, state)
        return state

    def checkpoint(self, description: str, data: Optional[Dict[str, Any]] = None, critical: bool = False) -> Checkpoint:
        with self._lock:
            state = self._require(
                MarathonStatus.ACTIVE.value, MarathonStatus.READY_FOR_CONTINUATION.value, action="checkpoint"
            )
            checkpoint = self._append_checkpoint(
                state.copy(),
                self._copy_session(),
                CheckpointType.CRITICAL.value if critical else CheckpointType.MANUAL.value,
                description or "Manual checkpoint",
                data,
            )
        self._publish(ev.CHECKPOINT, {"checkpoint_id": checkpoint.id, "type": checkpoint.type})
        return checkpoint

    def save_and_switch(self, new_task_description: Optional[str] = None) -> Transfer:
        """Critical checkpoint, then hand over to a new session. Valid only while active."""
        with self._lock:
            state = self._require(MarathonStatus.ACTIVE.value, action="save and switch")
            candidate = state.copy()
            session = self._copy_session()
            if session is not None:
                session.status = SessionStatus.TRANSFERRED.value
                session.end_time = utcnow_iso()
            candidate.status = MarathonStatus.READY_FOR_CONTINUATION.value
            previous_task = candidate.task_description
            if new_task_description and new_task_description.strip():
                candidate.task_description = new_task_description.strip()
            checkpoint = self._append_checkpoint(
                candidate,
                session,
                CheckpointType.CRITICAL.value,
                "Save and switch: ready for continuation",
                {"previous_task": previous_task, "next_task": candidate.task_description},
            )
            timer = self._detach_timer()
            state = candidate.copy()
            command = continuation_command(state)
            instructions = self._transfer_instructions(state, session, checkpoint, command)
        self._join(timer)
        logger.info("Marathon %s ready for continuation (checkpoint %s)", state.session_id, checkpoint.id)
        self._publish(ev.SWITCH, {"checkpoint_id": checkpoint.id, "continuation_command": command}, state)
        return Transfer(
            checkpoint_id=checkpoint.id,
            instructions=instructions,
            continuation_command=command,
            state=state,
        )

    @staticmethod
    def _transfer_instructions(
        state: MarathonState, session: Optional[Session], checkpoint: Checkpoint, command: str
    ) -> str:
        lines = [
            "Marathon transfer ready",
            "",
            f"Session: {state.session_id}",
            f"Task: {state.task_description}",
            f"Progress: {state.progress.percentage:.0f}% ({state.progress.completed}/{state.progress.total})",
            f"Checkpoint: {checkpoint.id}",
        ]
        commands = session.commands[-RECENT_COMMANDS_IN_TRANSFER:] if session else []
        if commands:
            lines.append("Last commands: " + ", ".join(c.command[:COMMAND_PREVIEW_CHARS] for c in commands))
        if checkpoint.next_actions:
            lines.append("")
            lines.append("Next actions:")
            lines.extend(f"- {a}" for a in checkpoint.next_actions)
        lines.extend(["", "To continue in a new session:", f"  {command}"])
        return "\n".join(lines)

    def continue_from_previous(self) -> MarathonState:
        """Resume a switched marathon under a new session id."""
        with self._lock:
            state = self._require(MarathonStatus.READY_FOR_CONTINUATION.value, action="continue")
            candidate = state.copy()
            candidate.previous_session_id = state.session_id
            candidate.session_id = new_id("marathon")
            candidate.status = MarathonStatus.ACTIVE.value
            session = Session(id=candidate.session_id, marathon_mode=True)
            session.refresh_context_size()
            self._append_checkpoint(
                candidate,
                session,
                CheckpointType.CRITICAL.value,
                f"Continued from previous session ({state.session_id})",
                {"previous_session_id": state.session_id},
            )
            self._start_timer()
            state = candidate.copy()
        logger.info("Marathon continued as %s (from %s)", state.session_id, state.previous_session_id)
        self._publish(ev.CONTINUE, {"previous_session_id": state.previous_session_id}, state)
        return state

    def update_progress(self, completed: float, total: Optional[float] = None) -> Progress:
        """Record progress; one milestone checkpoint per newly crossed 25% boundary."""
        if completed is None or completed < 0:
            raise ValidationError("completed must be a non-negative number")
        if total is not None and total <= 0:
            raise ValidationError("total must be positive")
        milestone_cp = None
        with self._lock:
            state = self._require(
                MarathonStatus.ACTIVE.value,
                MarathonStatus.PAUSED.value,
                MarathonStatus.READY_FOR_CONTINUATION.value,
                action="update progress",
            )
            candidate = state.copy()
            total = total if total is not None else candidate.progress.total
            percentage = min(completed / total * 100, 100.0)
            candidate.progress = Progress(completed=completed, total=total, percentage=round(percentage, 2))
            reached = int(percentage // MILESTONE_STEP)
            session = self._copy_session()
            if reached > candidate.milestone:
                candidate.milestone = reached
                milestone_cp = self._append_checkpoint(
                    candidate,
                    session,
                    CheckpointType.AUTO.value,
                    f"Milestone: {reached * MILESTONE_STEP}% complete",
                    {"milestone": reached * MILESTONE_STEP, "progress": candidate.progress.to_dict()},
                )
            else:
                self._commit(candidate, session)
            progress = Progress(**candidate.progress.to_dict())
        if milestone_cp is not None:
            self._publish(ev.CHECKPOINT, {"checkpoint_id": milestone_cp.id, "type": milestone_cp.type})
        return progress

    def end(self, reason: str = "completed") -> Dict[str, Any]:
        """Final critical checkpoint, then clear the marathon."""
        with self._lock:
            state = self._require(
                MarathonStatus.ACTIVE.value, MarathonStatus.READY_FOR_CONTINUATION.value, action="end"
            )
            started = parse_dt(state.started_at)
            duration = (utcnow() - started).total_seconds() if started else 0.0
            candidate = state.copy()
            session = self._copy_session()
            if session is not None:
                session.status = SessionStatus.COMPLETED.value
                session.end_time = utcnow_iso()
            candidate.status = MarathonStatus.COMPLETED.value
            checkpoint = self._append_checkpoint(
                candidate,
                session,
                CheckpointType.CRITICAL.value,
                f"Marathon ended: {reason}",
                {"reason": reason, "duration": duration},
            )
            timer = self._detach_timer()
            final = candidate.copy()
            self._last_session_id = final.session_id
            self._state = None
            self._session = None
        self._join(timer)
        logger.info("Marathon %s ended (%s) after %.0fs", final.session_id, reason, duration)
        self._publish(ev.COMPLETED, {"reason": reason, "duration": duration}, final)
        return {
            "session_id": final.session_id,
            "reason": reason,
            "duration": duration,
            "checkpoint_id": checkpoint.id,
            "checkpoint_count": len(final.checkpoints),
            "progress": final.progress.to_dict(),
        }

    def fail(self, error: str) -> MarathonState:
        """Move to the terminal error state. The in-memory transition always happens."""
        with self._lock:
            state = self._require(
                MarathonStatus.ACTIVE.value,
                MarathonStatus.PAUSED.value,
                MarathonStatus.READY_FOR_CONTINUATION.value,
                action="fail",
            )
            candidate = state.copy()
            candidate.status = MarathonStatus.ERROR.value
            session = self._copy_session()
            if session is not None:
                session.status = SessionStatus.ERROR.value
            timer = self._detach_timer()
            try:
                self._commit(candidate, session)
            except StorageIOError as e:
                logger.error("Could not persist marathon error state: %s", e)
                self._state, self._session = candidate, session
            state = candidate.copy()
        self._join(timer)
        logger.error("Marathon %s failed: %s", state.session_id, error)
        self._publish(ev.ERROR, {"error": error}, state)
        return state

    def auto_save(self) -> Optional[Checkpoint]:
        """One auto-save tick: ``auto`` checkpoint plus the switch advisory. No-op unless active."""
        recommendation = None
        with self._lock:
            if self._state is None or self._state.status != MarathonStatus.ACTIVE.value:
                return None
            session = self._copy_session()
            checkpoint = self._append_checkpoint(
                self._state.copy(), session, CheckpointType.AUTO.value, "Auto-save checkpoint"
            )
            if session is not None:
                started = parse_dt(session.start_time)
                elapsed = (utcnow() - started).total_seconds() if started else 0.0
                if elapsed > self.config.max_session_seconds:
                    recommendation = {"reason": "duration_exceeded", "elapsed_seconds": elapsed}
                elif session.context_size > self.config.max_context_size:
                    recommendation = {"reason": "context_overflow", "context_size": session.context_size}
        self._publish(ev.CHECKPOINT, {"checkpoint_id": checkpoint.id, "type": checkpoint.type})
        if recommendation is not None:
            logger.info("Recommending session switch: %s", recommendation["reason"])
            self._publish(ev.RECOMMEND_SWITCH, recommendation)
        return checkpoint

    # ------------------------------------------------------------------
    # Session commands
    # ------------------------------------------------------------------

    def record_command(
        self,
        command: str,
        task_description: str = "",
        success: bool = True,
        error: Optional[str] = None,
        duration: Optional[float] = None,
    ) -> None:
        """Append a command to the active session (kept in memory; saved with the next write)."""
        with self._lock:
            if self._session is None:
                return
            self._session.record(
                CommandExecution(
                    command=command,
                    task_description=task_description,
                    success=success,
                    error=error,
                    duration=duration,
                )
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def state(self) -> Optional[MarathonState]:
        with self._lock:
            return self._state.copy() if self._state else None

    @property
    def session(self) -> Optional[Session]:
        with self._lock:
            return self._copy_session()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            state = self._state
            if state is None:
                return {
                    "active": False,
                    "status": "inactive",
                    "last_session_id": self._last_session_id,
                    "timer_running": False,
                }
            started = parse_dt(state.started_at)
            last = state.checkpoints[-1] if state.checkpoints else None
            return {
                "active": state.status == MarathonStatus.ACTIVE.value,
                "status": state.status,
                "session_id": state.session_id,
                "previous_session_id": state.previous_session_id,
                "task_description": state.task_description,
                "started_at": state.started_at,
                "elapsed_seconds": (utcnow() - started).total_seconds() if started else 0.0,
                "progress": state.progress.to_dict(),
                "checkpoint_count": len(state.checkpoints),
                "last_checkpoint": last.to_dict() if last else None,
                "context_size": self._session.context_size if self._session else 0,
                "command_count": len(self._session.commands) if self._session else 0,
                "continuation_command": continuation_command(state)
                if state.status == MarathonStatus.READY_FOR_CONTINUATION.value
                else None,
                "timer_running": self.timer_running,
            }

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        with self._lock:
            if self._state is not None:
                for checkpoint in self._state.checkpoints:
                    if checkpoint.id == checkpoint_id:
                        return checkpoint
        try:
            data = self.documents.read(self._checkpoint_document(checkpoint_id))
        except ValidationError:
            data = None
        if not data:
            raise NotFoundError(f"Checkpoint {checkpoint_id} not found")
        return Checkpoint.from_dict(data)

    def list_checkpoints(self, session_id: Optional[str] = None) -> List[Checkpoint]:
        """Every checkpoint on disk, oldest first."""
        checkpoints = []
        for name in self.documents.list(CHECKPOINT_DIR):
            data = self.documents.read(self._checkpoint_document(name))
            if not data:
                continue
            checkpoint = Checkpoint.from_dict(data)
            if session_id is None or checkpoint.session_id == session_id:
                checkpoints.append(checkpoint)
        checkpoints.sort(key=lambda c: c.timestamp)
        return checkpoints

    def restore(self, checkpoint_id: str) -> Restoration:
        """Rebuild context from a checkpoint for a new session. Does not touch the current state."""
        checkpoint = self.get_checkpoint(checkpoint_id)
        new_session_id = new_id("marathon")
        memories = [MemoryRecord.from_dict(m) for m in checkpoint.memory_state if m.get("id")]
        lines = [
            f"Restored from checkpoint {checkpoint.id}",
            f"Previous session: {checkpoint.session_id}",
            f"Checkpoint: {checkpoint.type} at {checkpoint.timestamp} ({checkpoint.description})",
            f"Memories restored: {len(memories)}",
        ]
        if checkpoint.next_actions:
            lines.append("Next actions:")
            lines.extend(f"- {a}" for a in checkpoint.next_actions)
        logger.info("Restored checkpoint %s into session %s", checkpoint.id, new_session_id)
        return Restoration(
            new_session_id=new_session_id,
            checkpoint=checkpoint,
            memories=memories,
            summary="\n".join(lines),
        )

    def subscribe(self, event_type: str, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        return self.events.subscribe(event_type, callback)

    def close(self) -> None:
        with self._lock:
            timer = self._detach_timer()
        self._join(timer)
        if self._owns_events:
            self.events.close()
        logger.info("Marathon manager closed")
