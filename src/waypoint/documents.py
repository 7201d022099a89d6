"""
Waypoint document storage -- whole-file JSON documents under one data root.

Every persisted structure (category documents, the vector index, the graph,
the marathon state, each checkpoint) is a human-readable JSON file. Writes are
last-writer-wins whole-file rewrites, serialized per path and made atomic with
a temp file + ``os.replace``; a reader never sees half a document.

Layout::

    <root>/knowledge/<category>.json
    <root>/vectors/index.json
    <root>/knowledge-graph/graph.json
    <root>/marathon/state.json
    <root>/checkpoints/<checkpoint-id>.json
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from waypoint import crypto
from waypoint.errors import StorageIOError, ValidationError

logger = logging.getLogger("waypoint.documents")

_SAFE_NAME_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.")


def ensure_json(data: Any, what: str) -> str:
    """Serialize ``data`` or raise ValidationError naming ``what``."""
    try:
        return json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{what} is not JSON-serializable: {e}") from e


class DocumentStore:
    """JSON documents rooted at one directory, with per-file write locks."""

    def __init__(self, root, encrypt: bool = False):
        self.root = Path(root)
        self.encrypt = encrypt
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        try:
            self.root.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            raise StorageIOError(f"Cannot create data directory {self.root}: {e}", path=self.root) from e

    # ------------------------------------------------------------------
    # Paths and locks
    # ------------------------------------------------------------------

    def path(self, name: str) -> Path:
        """Resolve a relative document name (``vectors/index.json``) under the root."""
        parts = Path(name).parts
        if not parts or any(p in ("..", "") or not set(p) <= _SAFE_NAME_CHARS for p in parts):
            raise ValidationError(f"Invalid document name: {name!r}")
        return self.root.joinpath(*parts)

    def _lock_for(self, path: Path) -> threading.Lock:
        key = str(path)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        return self.path(name).exists()

    def read(self, name: str, default: Any = None) -> Any:
        """Load a document. Missing → ``default``; corrupt → set aside, ``default``."""
        path = self.path(name)
        with self._lock_for(path):
            try:
                raw = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return default
            except OSError as e:
                raise StorageIOError(f"Failed to read {path}: {e}", path=path) from e
            try:
                return json.loads(crypto.decrypt(raw, self.root))
            except json.JSONDecodeError as e:
                self._quarantine(path, e)
                return default

    def write(self, name: str, data: Any) -> int:
        """Atomically replace a document. Returns the number of bytes written."""
        path = self.path(name)
        text = ensure_json(data, f"Document {name}")
        if self.encrypt:
            text = crypto.encrypt(text, self.root)
        payload = text.encode("utf-8")

        with self._lock_for(path):
            tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
            try:
                path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
                fd = os.open(str(tmp), os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o600)
                try:
                    os.write(fd, payload)
                    os.fsync(fd)
                finally:
                    os.close(fd)
                os.replace(tmp, path)
            except OSError as e:
                try:
                    tmp.unlink()
                except OSError:
                    pass
                logger.error("Failed to write %s: %s", path, e)
                raise StorageIOError(f"Failed to write {path}: {e}", path=path) from e
        logger.debug("Wrote %s (%d bytes)", name, len(payload))
        return len(payload)

    def delete(self, name: str) -> bool:
        path = self.path(name)
        with self._lock_for(path):
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageIOError(f"Failed to delete {path}: {e}", path=path) from e

    def list(self, directory: str) -> List[str]:
        """Names (without ``.json``) of the documents inside ``directory``."""
        folder = self.path(directory)
        if not folder.is_dir():
            return []
        return sorted(p.stem for p in folder.glob("*.json") if not p.name.startswith("."))

    def size(self, name: str) -> int:
        try:
            return self.path(name).stat().st_size
        except OSError:
            return 0

    def _quarantine(self, path: Path, error: Exception) -> Optional[Path]:
        """Move a corrupt document aside so it can be recovered by hand."""
        aside = path.with_name(f"{path.name}.corrupt-{int(time.time())}")
        try:
            os.replace(path, aside)
        except OSError as e:
            logger.warning("Corrupt document %s could not be set aside: %s", path, e)
            return None
        logger.warning("Corrupt document %s moved to %s (%s)", path, aside.name, error)
        return aside
