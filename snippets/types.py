"""
Data types for snippets.

Notes are stored as Markdown with YAML frontmatter. Frontmatter keys stay
camelCase on disk because the external agent reads and writes them directly;
the dataclasses here expose snake_case attributes and convert at the edges.
"""

import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# Note lifecycle
STATUS_RAW = "raw"
STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"
NOTE_STATUSES = frozenset({
    STATUS_RAW, STATUS_QUEUED, STATUS_PROCESSING, STATUS_PROCESSED, STATUS_FAILED,
})

# Job lifecycle (running -> completed | failed)
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_STATUSES = frozenset({JOB_RUNNING, JOB_COMPLETED, JOB_FAILED})

ASSIGNEE_USER = "user"
ASSIGNEE_AGENT = "agent"

ACTION_PENDING = "pending"
ACTION_COMPLETED = "completed"
ACTION_DECLINED = "declined"

DEFAULT_FOLDER = "inbox"

# Built-in folders cannot be removed. Values are their fixed display icons.
BUILTIN_FOLDERS = {
    "inbox": "📥",
    "knowledge": "📚",
    "actions": "✅",
    "ideas": "💡",
    "journal": "📓",
    "reference": "🔖",
}

_BASE36 = string.digits + string.ascii_lowercase

# Ids become filenames: no separators, no leading dot, no control chars
_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f/\\]')
MAX_ID_LENGTH = 200


def utc_now() -> str:
    """Current UTC timestamp, ISO 8601 with milliseconds and a Z suffix."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical format as well as values without a suffix or with
    '+00:00'. Raises ValueError for anything unparseable.
    """
    ts = ts.strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def timestamp_seconds(ts: Any) -> Optional[float]:
    """Epoch seconds for a stored timestamp, or None if missing/invalid."""
    if isinstance(ts, datetime):
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.timestamp()
    if not isinstance(ts, str) or not ts:
        return None
    try:
        return parse_utc_timestamp(ts).timestamp()
    except (ValueError, OverflowError):
        return None


def generate_note_id(now: Optional[datetime] = None) -> str:
    """Time-derived note id: YYYYMMDD-HHMMSS-xxxx (local time, base-36 suffix)."""
    now = now or datetime.now()
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{now:%Y%m%d}-{now:%H%M%S}-{suffix}"


def is_valid_note_id(id: Any) -> bool:
    """Check that an id can be used as a filename inside the notes tree."""
    if not isinstance(id, str) or not id or len(id) > MAX_ID_LENGTH:
        return False
    if id.startswith(".") or id != id.strip():
        return False
    return not _ID_BLOCKED_RE.search(id)


@dataclass
class Action:
    """
    A suggested follow-up attached to a note.

    Agent-assignee actions gain job fields once dispatched. Keys the agent
    writes that are not modelled here are kept in `extra` so a round trip
    through the store never drops them.
    """
    label: str = ""
    type: str = ""
    assignee: str = ASSIGNEE_USER
    status: str = ACTION_PENDING
    priority: Optional[str] = None
    result: Optional[str] = None
    job_id: Optional[str] = None
    job_status: Optional[str] = None
    job_started_at: Optional[str] = None
    linked_note_id: Optional[str] = None
    linked_note_title: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KEYS = {
        "label": "label",
        "type": "type",
        "assignee": "assignee",
        "status": "status",
        "priority": "priority",
        "result": "result",
        "job_id": "jobId",
        "job_status": "jobStatus",
        "job_started_at": "jobStartedAt",
        "linked_note_id": "linkedNoteId",
        "linked_note_title": "linkedNoteTitle",
    }

    @property
    def display_label(self) -> str:
        return self.label or self.type or "agent action"

    @classmethod
    def from_dict(cls, data: dict) -> "Action":
        known = set(cls._KEYS.values())
        kwargs = {
            attr: data[key] for attr, key in cls._KEYS.items()
            if key in data and data[key] is not None
        }
        action = cls(**kwargs)
        action.extra = {k: v for k, v in data.items() if k not in known}
        return action

    def to_dict(self) -> dict:
        data = dict(self.extra)
        for attr, key in self._KEYS.items():
            value = getattr(self, attr)
            if value is None or (value == "" and attr in ("label", "type")):
                continue
            data[key] = value
        return data


@dataclass
class Note:
    """A note: frontmatter metadata plus a free-text body."""
    id: str
    content: str
    metadata: dict[str, Any]

    @property
    def created(self) -> str:
        return str(self.metadata.get("created", ""))

    @property
    def updated(self) -> Optional[str]:
        return self.metadata.get("updated")

    @property
    def title(self) -> Optional[str]:
        return self.metadata.get("title")

    @property
    def status(self) -> Optional[str]:
        return self.metadata.get("status")

    @property
    def folder_path(self) -> str:
        return self.metadata.get("folderPath") or ""

    @property
    def connections(self) -> list[str]:
        return list(self.metadata.get("connections") or [])

    @property
    def actions(self) -> list[Action]:
        raw = self.metadata.get("suggestedActions") or []
        return [Action.from_dict(a) for a in raw if isinstance(a, dict)]

    def to_dict(self) -> dict:
        return {"frontmatter": dict(self.metadata), "content": self.content}


@dataclass
class Job:
    """One tracked execution of an agent-assigned action."""
    id: str
    note_id: str
    action_index: int
    status: str = JOB_RUNNING
    started_at: str = field(default_factory=utc_now)
    completed_at: Optional[str] = None
    result: Optional[str] = None
    linked_note_id: Optional[str] = None
    linked_note_title: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JOB_COMPLETED, JOB_FAILED)

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        return cls(
            id=data["id"],
            note_id=data.get("noteId", ""),
            action_index=int(data.get("actionIndex", 0)),
            status=data.get("status", JOB_RUNNING),
            started_at=data.get("startedAt") or "",
            completed_at=data.get("completedAt"),
            result=data.get("result"),
            linked_note_id=data.get("linkedNoteId"),
            linked_note_title=data.get("linkedNoteTitle"),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "status": self.status,
            "startedAt": self.started_at,
            "noteId": self.note_id,
            "actionIndex": self.action_index,
        }
        for key, value in (
            ("result", self.result),
            ("completedAt", self.completed_at),
            ("linkedNoteId", self.linked_note_id),
            ("linkedNoteTitle", self.linked_note_title),
        ):
            if value is not None:
                data[key] = value
        return data


@dataclass
class ConnectionEdge:
    """An undirected relationship between two notes."""
    source: str
    target: str
    relationship: str = "related"
    strength: float = 1.0
    reason: str = ""

    @property
    def pair(self) -> frozenset:
        return frozenset((self.source, self.target))

    def mentions(self, id: str) -> bool:
        return self.source == id or self.target == id

    @classmethod
    def from_dict(cls, data: dict) -> "ConnectionEdge":
        return cls(
            source=str(data["source"]),
            target=str(data["target"]),
            relationship=data.get("relationship", "related"),
            strength=float(data.get("strength", 1.0)),
            reason=data.get("reason", ""),
        )

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "relationship": self.relationship,
            "strength": self.strength,
            "reason": self.reason,
        }


@dataclass
class StatusView:
    """What get_status reports for one action."""
    status: str
    job_id: Optional[str] = None
    result: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    recovered: bool = False

    def to_dict(self) -> dict:
        data = {"status": self.status}
        for key, value in (
            ("jobId", self.job_id),
            ("result", self.result),
            ("startedAt", self.started_at),
            ("completedAt", self.completed_at),
        ):
            if value is not None:
                data[key] = value
        if self.recovered:
            data["recovered"] = True
        return data


@dataclass
class FolderRemoval:
    """
    Outcome of removing a folder.

    `moved_notes` is honest about partial progress: when `ok` is False after
    an I/O error, that many notes were already relocated to the default folder.
    """
    ok: bool
    folder_path: str
    moved_notes: int = 0
    removed_folders: int = 0
    reason: Optional[str] = None  # invalid-path | protected | not-found | not-empty | io-error
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "ok": self.ok,
            "folderPath": self.folder_path,
            "movedNotes": self.moved_notes,
            "removedFolders": self.removed_folders,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class FolderNode:
    """A folder in the notes tree."""
    path: str
    name: str
    icon: str
    builtin: bool = False
    notes: list[str] = field(default_factory=list)
    children: list["FolderNode"] = field(default_factory=list)

    @property
    def note_count(self) -> int:
        return len(self.notes) + sum(c.note_count for c in self.children)

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "name": self.name,
            "icon": self.icon,
            "builtIn": self.builtin,
            "noteCount": self.note_count,
            "notes": list(self.notes),
            "children": [c.to_dict() for c in self.children],
        }
