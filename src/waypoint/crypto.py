"""
Waypoint Crypto -- Optional encryption at rest for persisted documents.

When enabled, every JSON document written under the data root is encrypted
with Fernet (AES-128-CBC + HMAC-SHA256). The key lives at
``<data_root>/.key`` and is created automatically on first use with 0600
permissions. Losing it means losing access to encrypted documents.

Disabled by default: documents are meant to stay human-readable for manual
recovery. Enable with ``WaypointConfig(encrypt=True)`` or WAYPOINT_ENCRYPT=1.
"""

import base64
import logging
import os
import secrets
import threading
from pathlib import Path
from typing import Dict

from cryptography.fernet import Fernet, InvalidToken

from waypoint.errors import StorageIOError

logger = logging.getLogger("waypoint.crypto")

ENC_PREFIX = "ENC:"

_fernet_cache: Dict[str, Fernet] = {}
_cache_lock = threading.Lock()


def reset_crypto_state() -> None:
    """Forget cached keys (test isolation)."""
    with _cache_lock:
        _fernet_cache.clear()


def _get_or_create_key(key_path: Path) -> bytes:
    """Get the Fernet key, creating one if it doesn't exist."""
    if key_path.exists():
        raw = key_path.read_bytes().strip()
        # A 32-byte raw secret still needs encoding for Fernet
        if len(raw) == 32:
            return base64.urlsafe_b64encode(raw)
        return raw

    key_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    encoded_key = base64.urlsafe_b64encode(secrets.token_bytes(32))
    # Atomic creation with restricted permissions (no TOCTOU window)
    fd = os.open(str(key_path), os.O_CREAT | os.O_WRONLY | os.O_EXCL, 0o600)
    try:
        os.write(fd, encoded_key)
    finally:
        os.close(fd)
    logger.info("Created encryption key at %s", key_path)
    return encoded_key


def _get_fernet(data_root: Path) -> Fernet:
    key_path = Path(data_root) / ".key"
    cache_key = str(key_path)
    with _cache_lock:
        f = _fernet_cache.get(cache_key)
        if f is None:
            try:
                f = Fernet(_get_or_create_key(key_path))
            except (OSError, ValueError) as e:
                raise StorageIOError(f"Failed to initialize encryption key: {e}", path=key_path) from e
            _fernet_cache[cache_key] = f
        return f


def encrypt(plaintext: str, data_root: Path) -> str:
    """Encrypt a string. Returns ``ENC:`` + base64 ciphertext."""
    token = _get_fernet(data_root).encrypt(plaintext.encode("utf-8"))
    return ENC_PREFIX + token.decode("ascii")


def decrypt(data: str, data_root: Path) -> str:
    """Decrypt a string. Plaintext (no ``ENC:`` prefix) is returned as-is.

    This allows transparent migration: documents written before encryption
    was switched on stay readable, new writes are encrypted.
    """
    if not data.startswith(ENC_PREFIX):
        return data
    try:
        token = data[len(ENC_PREFIX):].encode("ascii")
        return _get_fernet(data_root).decrypt(token).decode("utf-8")
    except InvalidToken as e:
        raise StorageIOError("Decryption failed: bad key or corrupted document") from e


def is_encrypted(data: str) -> bool:
    return data.startswith(ENC_PREFIX)
