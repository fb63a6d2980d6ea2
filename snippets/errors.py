"""
Error types and error logging for snippets.

Validation and business-rule failures are typed so callers can tell a
protected folder from a cooldown from a stale callback. The CLI logs full
stack traces to a file while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class SnippetsError(Exception):
    """Base class for snippets errors."""


class InvalidPath(SnippetsError, ValueError):
    """A folder path is absolute, contains '..', or escapes the notes root."""

    def __init__(self, path: object, reason: str = "invalid folder path"):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path!r}")


class NotFound(SnippetsError, KeyError):
    """A note, action, job or folder does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages readable
        return str(self.args[0]) if self.args else ""


class NoteNotFound(NotFound):
    def __init__(self, note_id: str):
        self.note_id = note_id
        super().__init__(f"Note not found: {note_id}")


class ActionNotFound(NotFound):
    def __init__(self, note_id: str, action_index: int):
        self.note_id = note_id
        self.action_index = action_index
        super().__init__(f"Action index out of range: {action_index} for note {note_id}")


class Rejected(SnippetsError):
    """A request refused by a business rule."""


class WrongAssignee(Rejected):
    def __init__(self, assignee: Optional[str]):
        self.assignee = assignee
        super().__init__("Only agent actions can be run")


class CooldownActive(Rejected):
    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Action already ran recently. Wait {remaining_seconds}s before retrying."
        )


class ProtectedFolder(Rejected):
    def __init__(self, folder_path: str):
        self.folder_path = folder_path
        super().__init__(f"Cannot remove built-in folder: {folder_path or '(root)'}")


class JobIdMismatch(Rejected):
    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(f"Job ID mismatch: expected {expected}, got {received}")


class NoAssociatedJob(Rejected):
    def __init__(self, note_id: str, action_index: int):
        self.note_id = note_id
        self.action_index = action_index
        super().__init__("No job is associated with this action")


class StoreWriteFailed(SnippetsError):
    """A filesystem write failed; the last committed state is unchanged."""


class DispatchFailed(SnippetsError):
    """Handing work to the external agent failed."""


class JobTimeout(SnippetsError):
    """A job received no completion callback within its bound."""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        super().__init__(message)


def _error_log_path() -> Path:
    """Resolve error log path, respecting SNIPPETS_HOME."""
    home = os.environ.get("SNIPPETS_HOME")
    if home:
        return Path(home) / "snippets-errors.log"
    return Path.home() / ".snippets" / "snippets-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
