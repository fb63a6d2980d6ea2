"""Tests for error types and the error log."""

from snippets.errors import (
    ActionNotFound,
    CooldownActive,
    InvalidPath,
    NoteNotFound,
    NotFound,
    Rejected,
    SnippetsError,
    log_exception,
)


class TestErrorTypes:
    def test_not_found_message_unquoted(self):
        """KeyError normally repr()s its argument."""
        assert str(NoteNotFound("n1")) == "Note not found: n1"

    def test_hierarchy(self):
        """Typed errors also match the builtin exceptions callers expect."""
        assert issubclass(NoteNotFound, KeyError)
        assert issubclass(ActionNotFound, NotFound)
        assert issubclass(InvalidPath, ValueError)
        assert issubclass(CooldownActive, Rejected)
        assert issubclass(Rejected, SnippetsError)

    def test_cooldown_carries_remaining(self):
        """The cooldown error says how long to wait."""
        e = CooldownActive(42)
        assert e.remaining_seconds == 42
        assert "42s" in str(e)


class TestLogException:
    def test_writes_traceback(self, tmp_path, monkeypatch):
        """Should write the context and traceback to the error log."""
        monkeypatch.setenv("SNIPPETS_HOME", str(tmp_path))
        try:
            raise RuntimeError("disk on fire")
        except RuntimeError as e:
            path = log_exception(e, context="snippets CLI")

        assert path == tmp_path / "snippets-errors.log"
        text = path.read_text()
        assert "snippets CLI" in text
        assert "RuntimeError: disk on fire" in text

    def test_appends(self, tmp_path, monkeypatch):
        """Later errors are appended."""
        monkeypatch.setenv("SNIPPETS_HOME", str(tmp_path))
        log_exception(ValueError("one"))
        log_exception(ValueError("two"))
        text = (tmp_path / "snippets-errors.log").read_text()
        assert "one" in text and "two" in text

    def test_unwritable_location_does_not_raise(self, tmp_path, monkeypatch):
        """Failing to write the log never raises."""
        blocker = tmp_path / "file"
        blocker.write_text("")
        monkeypatch.setenv("SNIPPETS_HOME", str(blocker / "sub"))
        log_exception(ValueError("x"))
