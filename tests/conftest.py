"""Waypoint test configuration."""
import os
import sys
import pytest
from pathlib import Path

# Ensure waypoint package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture
def tmp_waypoint_dir(tmp_path):
    """Create a temporary Waypoint data root and point WAYPOINT_HOME at it."""
    waypoint_dir = tmp_path / ".waypoint"
    waypoint_dir.mkdir()
    saved = {k: os.environ.get(k) for k in ("WAYPOINT_HOME", "WAYPOINT_ENCRYPT", "WAYPOINT_AUTOSAVE_INTERVAL")}
    os.environ["WAYPOINT_HOME"] = str(waypoint_dir)
    os.environ["WAYPOINT_ENCRYPT"] = "0"
    # Long interval: timer ticks are driven explicitly through auto_save()
    os.environ["WAYPOINT_AUTOSAVE_INTERVAL"] = "3600"
    yield waypoint_dir
    for key, value in saved.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@pytest.fixture(autouse=True)
def _reset_crypto():
    """Forget cached encryption keys between tests."""
    yield
    from waypoint.crypto import reset_crypto_state
    reset_crypto_state()


@pytest.fixture
def _reset_bridge(tmp_waypoint_dir):
    """Reset the bridge singleton so each test gets a fresh engine.

    Test modules can use this via @pytest.mark.usefixtures("_reset_bridge")
    or define a local autouse fixture that depends on it.
    """
    from waypoint.bridge import reset_engine

    reset_engine()
    yield
    reset_engine()


@pytest.fixture
def config(tmp_waypoint_dir):
    from waypoint.config import WaypointConfig
    return WaypointConfig(data_dir=tmp_waypoint_dir, autosave_interval=3600)


@pytest.fixture
def documents(config):
    from waypoint.documents import DocumentStore
    return DocumentStore(config.data_dir)


@pytest.fixture
def memory(config):
    """Fresh MemoryManager over the temporary data root."""
    from waypoint.memory import MemoryManager
    m = MemoryManager(config)
    yield m
    m.close()


@pytest.fixture
def marathon(config, memory):
    """MarathonManager sharing the memory fixture's data root."""
    from waypoint.marathon import MarathonManager
    mgr = MarathonManager(config, documents=memory.documents, memory=memory)
    yield mgr
    mgr.close()
