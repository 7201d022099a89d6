"""Tests for waypoint.bridge command dispatch and the CLI entry point."""
import json

import pytest

from waypoint import bridge
from waypoint.cli import main
from waypoint.types import CommandRequest


@pytest.fixture(autouse=True)
def _fresh_engine(_reset_bridge):
    yield


def _run(action, text="", **flags):
    return bridge.execute(CommandRequest(action=action, clean_text=text, flags=flags))


# ============================================================================
# execute()
# ============================================================================


class TestExecuteMemory:
    def test_store_then_search(self):
        stored = _run("store", "Nightly backup writes to s3://archive", category="infrastructure", tags="backup,s3")
        assert stored["success"] is True
        memory_id = stored["result"]["id"]

        found = _run("search", "Nightly backup writes to s3://archive", limit="5")
        assert found["success"] is True
        assert found["result"][0]["id"] == memory_id
        assert found["result"][0]["source"] == "vector"

    def test_save_is_an_alias(self):
        assert _run("save", "Remember the staging password rotates monthly")["result"]["category"] == "insights"

    def test_search_threshold_without_hits(self):
        _run("store", "Backup completed for web server")
        result = _run("search", "database error", limit=5, threshold=0.9)
        assert result == {"action": "search", "success": True, "result": []}

    def test_update_from_json_text(self):
        result = _run("update", '{"active": {"payments-api": "in review"}}', category="projects")
        assert result["success"] is True
        kb = bridge._get_engine().memory.knowledge()
        assert kb["projects"]["active"] == {"payments-api": "in review"}

    def test_update_with_invalid_json(self):
        result = _run("update", "{not json", category="projects")
        assert result["success"] is False
        assert "JSON" in result["error"]

    def test_update_protected_field(self):
        result = _run("update", "{}", category="lastUpdated")
        assert result["success"] is False
        assert "protected" in result["error"]

    def test_load_context(self):
        _run("store", "Kubernetes cluster upgrade planned", category="infrastructure")
        result = _run("load", "Kubernetes cluster upgrade planned")
        assert result["success"] is True
        assert result["result"]["memories"][0]["content"] == "Kubernetes cluster upgrade planned"

    def test_explicit_zero_limit(self):
        _run("store", "Nightly backup writes to s3://archive")
        assert _run("search", "Nightly backup writes to s3://archive", limit="0")["result"] == []
        assert len(_run("search", "Nightly backup writes to s3://archive")["result"]) == 1

    def test_bad_number(self):
        result = _run("search", "anything", limit="lots")
        assert result["success"] is False
        assert "limit" in result["error"]

    def test_unknown_action(self):
        result = _run("dance")
        assert result == {"action": "dance", "success": False, "error": "Unknown action 'dance'"}

    def test_stats_and_cleanup(self):
        _run("store", "A fresh note")
        assert _run("stats")["result"]["total_items"] == 1
        cleaned = _run("cleanup", retention_days="30")
        assert cleaned["result"]["retention_days"] == 30
        assert cleaned["result"]["pruned"] == []


class TestExecuteMarathon:
    def test_full_lifecycle(self):
        started = _run("start", "Deploy X")
        session_id = started["result"]["session_id"]
        assert _run("checkpoint", "midpoint")["success"] is True

        transfer = _run("transfer", "Deploy X phase 2")["result"]
        assert transfer["state"]["status"] == "ready_for_continuation"
        assert len(transfer["state"]["checkpoints"]) == 3

        continued = _run("continue")["result"]
        assert continued["previous_session_id"] == session_id

        progress = _run("progress", completed="10", total="40")["result"]["progress"]
        assert progress["percentage"] == 25.0

        ended = _run("end", "shipped")["result"]
        assert ended["reason"] == "shipped"
        assert _run("status")["result"]["marathon"]["status"] == "inactive"

    def test_commands_are_recorded_in_session(self):
        _run("start", "Configure alerts")
        _run("store", "Alert threshold raised to 90%")
        _run("dance")
        commands = bridge._get_engine().marathon.session.commands
        assert [c.command for c in commands] == [
            "start Configure alerts",
            "store Alert threshold raised to 90%",
            "dance",
        ]
        assert commands[-1].success is False

    def test_memories_default_to_active_session(self):
        session_id = _run("start", "Configure alerts")["result"]["session_id"]
        memory_id = _run("store", "Pager rotation is weekly")["result"]["id"]
        assert bridge._get_engine().memory.get(memory_id).session_id == session_id
        assert bridge._get_engine().memory.knowledge()["currentSession"] == session_id

    def test_illegal_transition_reported(self):
        result = _run("continue")
        assert result["success"] is False
        assert "Cannot continue" in result["error"]

    def test_progress_needs_value(self):
        _run("start", "Deploy X")
        assert _run("progress")["success"] is False

    def test_restore(self):
        _run("start", "Deploy X")
        cp = _run("checkpoint", "before break")["result"]["checkpoint"]["id"]
        restored = _run("restore", cp)["result"]
        assert restored["checkpoint_id"] == cp
        assert restored["new_session_id"].startswith("marathon-")
        assert _run("restore")["success"] is False


# ============================================================================
# CLI
# ============================================================================


class TestCli:
    def test_store_and_search(self, capsys):
        main(["store", "Rotate", "the", "TLS", "certificates", "-c", "workflows", "-t", "tls"])
        assert "Stored [workflows]" in capsys.readouterr().out

        main(["search", "Rotate the TLS certificates", "--json"])
        results = json.loads(capsys.readouterr().out)
        assert results[0]["content"] == "Rotate the TLS certificates"

    def test_marathon_commands(self, capsys):
        main(["start", "Deploy", "X"])
        assert "Started marathon" in capsys.readouterr().out
        main(["checkpoint", "halfway", "--critical"])
        assert "(critical)" in capsys.readouterr().out
        main(["switch"])
        assert "To continue in a new session:" in capsys.readouterr().out
        main(["status", "--json"])
        status = json.loads(capsys.readouterr().out)
        assert status["marathon"]["status"] == "ready_for_continuation"
        main(["checkpoints"])
        assert len(capsys.readouterr().out.strip().splitlines()) == 3

    def test_error_exits_nonzero(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["continue"])
        assert exc.value.code == 1
        assert capsys.readouterr().err.startswith("Error: Cannot continue")

    def test_no_command_prints_help(self, capsys):
        main([])
        assert "usage: waypoint" in capsys.readouterr().out
