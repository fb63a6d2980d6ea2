"""Tests for the snippets command line."""

import json

import pytest
from typer.testing import CliRunner

from snippets.api import Snippets
from snippets.cli import app

from tests.conftest import agent_action

runner = CliRunner()


@pytest.fixture(autouse=True)
def no_agent(monkeypatch):
    """Without a hooks token nothing leaves the machine."""
    for name in ("OPENCLAW_HOOKS_TOKEN", "OPENCLAW_GATEWAY_URL", "SNIPPETS_VERBOSE", "SNIPPETS_HOME"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "store"


def invoke(store_dir, *args, input=None):
    return runner.invoke(app, ["--store", str(store_dir), *args], input=input)


def capture(store_dir, text="Buy milk") -> str:
    result = invoke(store_dir, "capture", text)
    assert result.exit_code == 0, result.output
    listed = json.loads(invoke(store_dir, "--json", "list").stdout)
    return next(n["frontmatter"]["id"] for n in listed if n["content"] == text)


class TestNotes:
    def test_capture_without_agent(self, store_dir):
        """Capture succeeds and warns when the agent cannot be reached."""
        result = invoke(store_dir, "capture", "Buy milk")
        assert result.exit_code == 0
        assert "Warning: agent not triggered: No hooks token configured" in result.output

        [note] = json.loads(invoke(store_dir, "--json", "list").stdout)
        assert note["content"] == "Buy milk"
        assert note["frontmatter"]["status"] == "failed"
        assert note["frontmatter"]["folderPath"] == "inbox"

    def test_capture_stdin(self, store_dir):
        """A dash reads the note from stdin."""
        result = invoke(store_dir, "capture", "-", input="Buy eggs\n")
        assert result.exit_code == 0
        assert "Buy eggs" in invoke(store_dir, "list").output

    def test_capture_too_short(self, store_dir):
        result = invoke(store_dir, "capture", "ab")
        assert result.exit_code == 1
        assert "Error: content too short" in result.output

    def test_get(self, store_dir):
        id = capture(store_dir)
        result = invoke(store_dir, "get", id)
        assert result.exit_code == 0
        assert f"id: {id}" in result.output
        assert "Buy milk" in result.output

    def test_get_missing(self, store_dir):
        result = invoke(store_dir, "get", "20260101-000000-zzzz")
        assert result.exit_code == 1
        assert "Error: Note not found" in result.output

    def test_edit(self, store_dir):
        id = capture(store_dir)
        assert invoke(store_dir, "edit", id, "Buy oat milk").exit_code == 0
        note = json.loads(invoke(store_dir, "--json", "get", id).stdout)
        assert note["content"] == "Buy oat milk"
        assert note["frontmatter"]["status"] == "queued"

    def test_move_tree_and_remove_folder(self, store_dir):
        """Folder commands work end to end."""
        id = capture(store_dir)
        assert invoke(store_dir, "move", id, "projects/home").exit_code == 0

        tree = invoke(store_dir, "tree").output
        assert "projects (1)" in tree

        listed = invoke(store_dir, "list", "--folder", "projects").output
        assert id in listed

        result = json.loads(invoke(store_dir, "--json", "remove-folder", "projects").stdout)
        assert result["ok"] and result["movedNotes"] == 1

    def test_move_invalid(self, store_dir):
        id = capture(store_dir)
        result = invoke(store_dir, "move", id, "../escape")
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_remove_builtin_folder(self, store_dir):
        capture(store_dir)
        result = invoke(store_dir, "remove-folder", "inbox")
        assert result.exit_code == 1
        assert "Error: Cannot remove built-in folder: inbox" in result.output

    def test_pending_and_delete(self, store_dir):
        """Deleting a note takes it off the queue."""
        id = capture(store_dir)
        assert json.loads(invoke(store_dir, "--json", "pending").stdout) == [id]

        assert invoke(store_dir, "delete", id).exit_code == 0
        assert json.loads(invoke(store_dir, "--json", "pending").stdout) == []
        assert invoke(store_dir, "delete", id).exit_code == 1

    def test_connections_empty(self, store_dir):
        result = invoke(store_dir, "--json", "connections")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []


class TestActions:
    @pytest.fixture
    def note_id(self, store_dir):
        id = capture(store_dir)
        with Snippets(store_dir, ops_log=False) as sn:
            sn.store.patch_metadata(id, {"suggestedActions": [agent_action()]})
        return id

    def test_run_action_without_agent_fails_job(self, store_dir, note_id):
        """Without an agent the job fails with the reason."""
        result = invoke(store_dir, "run-action", note_id, "0")
        assert result.exit_code == 0
        assert "failed: Failed to queue: No hooks token configured" in result.output

        status = json.loads(invoke(store_dir, "--json", "action-status", note_id, "0").stdout)
        assert status["status"] == "failed"

    def test_cooldown(self, store_dir, note_id):
        """Cooldown is per process, so a new invocation may dispatch again."""
        invoke(store_dir, "run-action", note_id, "0")
        result = invoke(store_dir, "run-action", note_id, "0")
        assert result.exit_code == 0

    def test_complete_action(self, store_dir, note_id):
        """The completion callback can be recorded from the command line."""
        invoke(store_dir, "run-action", note_id, "0")
        status = json.loads(invoke(store_dir, "--json", "action-status", note_id, "0").stdout)

        result = invoke(
            store_dir, "--json", "complete-action", note_id, "0",
            "--job-id", status["jobId"], "--result", "✓ done",
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["job"]["status"] == "completed"

        note = json.loads(invoke(store_dir, "--json", "get", note_id).stdout)
        assert note["frontmatter"]["suggestedActions"][0]["status"] == "completed"

    def test_complete_wrong_job(self, store_dir, note_id):
        invoke(store_dir, "run-action", note_id, "0")
        result = invoke(store_dir, "complete-action", note_id, "0", "--job-id", "job-bogus")
        assert result.exit_code == 1
        assert "Error: Job ID mismatch" in result.output

    def test_complete_bad_status(self, store_dir, note_id):
        result = invoke(store_dir, "complete-action", note_id, "0", "--status", "maybe")
        assert result.exit_code == 1

    def test_run_missing_action(self, store_dir, note_id):
        result = invoke(store_dir, "run-action", note_id, "5")
        assert result.exit_code == 1
        assert "Error: Action index out of range" in result.output

    def test_action_status_not_started(self, store_dir, note_id):
        result = invoke(store_dir, "action-status", note_id, "0")
        assert result.output.strip() == "not-started"


class TestStatus:
    def test_sweep(self, store_dir):
        result = invoke(store_dir, "sweep")
        assert result.exit_code == 0
        assert "Marked 0 stalled job(s) as failed" in result.output

    def test_agent_status_offline(self, store_dir):
        """Without a token the agent is offline."""
        capture(store_dir)
        status = json.loads(invoke(store_dir, "--json", "agent-status").stdout)
        assert status["state"] == "offline"
        assert status["available"] is False
        assert status["pendingQueue"] == 1


class TestAgentDocuments:
    def test_memory_and_mission(self, store_dir):
        """Agent documents print as text or JSON."""
        store_dir.mkdir(parents=True)
        (store_dir / "MEMORY.md").write_text("- likes oat milk\n")
        assert invoke(store_dir, "memory").output == "- likes oat milk\n"
        assert json.loads(invoke(store_dir, "--json", "mission").stdout) == {"content": ""}


class TestStartup:
    def test_builtin_folders_created(self, store_dir):
        """Opening a store creates the built-in folders."""
        result = json.loads(invoke(store_dir, "--json", "tree").stdout)
        names = [c["name"] for c in result["children"]]
        assert names[:2] == ["inbox", "knowledge"]
        assert (store_dir / "notes" / "journal").is_dir()
