"""
Core API for snippets.

The Snippets object wires the store, queue, graph and job tracker together:
- capture(): store a note and hand it to the agent for processing
- run_action() / complete_action(): two-phase agent action execution
- tree() / user_actions() / agent_status(): read views for a UI or CLI
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .agent_client import AgentClient
from .config import SnippetsConfig, get_store_path, load_or_create_config
from .connections import ConnectionGraph
from .document_store import NoteStore
from .errors import ActionNotFound, DispatchFailed, NoteNotFound
from .jobs import JobTracker
from .logging_config import configure_ops_log, remove_ops_log
from .notifier import ChangeNotifier
from .pending_queue import PendingQueue
from .scheduler import ThreadScheduler
from .types import (
    ACTION_COMPLETED,
    ACTION_DECLINED,
    ACTION_PENDING,
    ASSIGNEE_USER,
    STATUS_FAILED,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    ConnectionEdge,
    FolderNode,
    FolderRemoval,
    Job,
    Note,
    StatusView,
)

logger = logging.getLogger(__name__)

MIN_CAPTURE_LENGTH = 3
MAX_CONTENT_LENGTH = 100_000
MAX_TITLE_LENGTH = 180

AGENT_ONLINE = "online"
AGENT_DEGRADED = "degraded"
AGENT_OFFLINE = "offline"


@dataclass
class UserActionView:
    """A user-assigned action, flattened for a task list."""
    note_id: str
    action_index: int
    label: str
    status: str = ACTION_PENDING
    note_title: Optional[str] = None
    priority: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "noteId": self.note_id,
            "actionIndex": self.action_index,
            "label": self.label,
            "status": self.status,
        }
        if self.note_title:
            data["noteTitle"] = self.note_title
        if self.priority:
            data["priority"] = self.priority
        return data


@dataclass
class AgentStatus:
    """Reachability summary for the automation agent."""
    state: str
    available: bool
    pending_queue: int
    running_jobs: int
    last_trigger_at: Optional[str] = None
    last_success_at: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "available": self.available,
            "pendingQueue": self.pending_queue,
            "runningJobs": self.running_jobs,
            "lastTriggerAt": self.last_trigger_at,
            "lastSuccessAt": self.last_success_at,
            "lastError": self.last_error,
        }


def _clean_content(content: str, minimum: int) -> str:
    if not isinstance(content, str):
        raise ValueError("content must be a string")
    trimmed = content.strip()
    if len(trimmed) < minimum:
        if minimum <= 1:
            raise ValueError("content cannot be empty")
        raise ValueError(f"content too short (minimum {minimum} characters)")
    if len(trimmed) > MAX_CONTENT_LENGTH:
        raise ValueError("content too large (max 100KB)")
    return trimmed


class Snippets:
    """
    Note capture with agent enrichment and agent-executed actions.

    Example:
        sn = Snippets("~/.snippets")
        note = sn.capture("Buy milk")
        sn.run_action(note.id, 0)
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[SnippetsConfig] = None,
        notifier: Optional[ChangeNotifier] = None,
        agent=None,
        scheduler=None,
        clock: Callable[[], float] = time.time,
        ops_log: bool = True,
    ) -> None:
        """
        Open (or create) a snippets store.

        Args:
            store_path: Store directory. Defaults to SNIPPETS_HOME or ~/.snippets.
            config: Pre-loaded config (skips filesystem config discovery).
            notifier: Receives notes-updated / connections-updated events.
            agent: Dispatcher with trigger() and trigger_processing();
                an AgentClient built from config if not given.
            scheduler: Background runner; a ThreadScheduler if not given.
            clock: Epoch-seconds source for the job tracker.
            ops_log: Attach the rotating operations log.
        """
        if config is not None:
            self._config = config
        else:
            path = get_store_path(Path(store_path) if store_path is not None else None)
            self._config = load_or_create_config(path)

        self._ops_log_handler = configure_ops_log(self._config.agent_path) if ops_log else None

        self._notifier = notifier or ChangeNotifier()
        self._owns_agent = agent is None
        self._agent = agent or AgentClient(
            self._config.agent.gateway_url,
            self._config.agent.hooks_token,
            model=self._config.agent.model,
            timeout=self._config.agent.request_timeout,
        )
        self._scheduler = scheduler or ThreadScheduler()

        self._pending = PendingQueue(self._config.pending_path)
        self._connections = ConnectionGraph(self._config.connections_path, notifier=self._notifier)
        self._store = NoteStore(
            self._config.notes_path,
            icons_path=self._config.icons_path,
            pending_queue=self._pending,
            connections=self._connections,
            notifier=self._notifier,
            default_folder=self._config.default_folder,
        )
        jobs = self._config.jobs
        self._jobs = JobTracker(
            self._store,
            self._config.jobs_path,
            self._agent,
            connections=self._connections,
            scheduler=self._scheduler,
            clock=clock,
            cooldown_seconds=jobs.cooldown_seconds,
            timeout_seconds=jobs.timeout_seconds,
            stale_seconds=jobs.stale_seconds,
            sweep_interval=jobs.sweep_interval,
            callback_base_url=self._config.agent.callback_base_url,
        )

    @property
    def config(self) -> SnippetsConfig:
        return self._config

    @property
    def store(self) -> NoteStore:
        return self._store

    @property
    def jobs(self) -> JobTracker:
        return self._jobs

    @property
    def notifier(self) -> ChangeNotifier:
        return self._notifier

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def startup(self, *, maintenance: bool = True) -> None:
        """
        Prepare the store for serving: built-in folders, folder icons, the
        pending directory, and (optionally) the periodic stalled-job sweep.
        """
        self._store.ensure_folders()
        self._store.migrate_folder_icons()
        self._pending.path.mkdir(parents=True, exist_ok=True)
        if maintenance:
            self._jobs.start_maintenance()
        else:
            self._jobs.sweep_stalled()
        logger.info("Snippets store ready at %s", self._config.path)

    def close(self) -> None:
        """Stop background work and release the HTTP client and log handler."""
        self._jobs.close()
        if self._owns_agent:
            self._agent.close()
        remove_ops_log(self._ops_log_handler)
        self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require(self, id: str) -> Note:
        note = self._store.get(id)
        if note is None:
            raise NoteNotFound(id)
        return note

    def _updated(self, note: Optional[Note], id: str) -> Note:
        if note is None:
            raise NoteNotFound(id)
        return note

    def _trigger(self, id: str) -> None:
        self._agent.trigger_processing(id, self._config.agent.callback_base_url)

    # -------------------------------------------------------------------------
    # Notes
    # -------------------------------------------------------------------------

    def capture(self, content: str) -> Note:
        """
        Store a new note and ask the agent to process it.

        The note is returned even when the agent could not be reached; it is
        then marked failed with the reason in processingError.

        Raises:
            ValueError: content shorter than 3 or longer than 100000 chars
        """
        text = _clean_content(content, MIN_CAPTURE_LENGTH)
        note = self._store.create(text)
        self._pending.enqueue(note.id)
        note = self._updated(self._store.set_status(note.id, STATUS_QUEUED), note.id)
        logger.info("[queue] Note %s queued for processing", note.id)

        try:
            self._trigger(note.id)
        except DispatchFailed as e:
            logger.warning("[notes] Agent trigger failed for %s: %s", note.id, e)
            note = self._updated(self._store.set_status(note.id, STATUS_FAILED, str(e)), note.id)
        return note

    def edit(self, id: str, content: str) -> Note:
        """Replace a note's body and queue it for re-processing."""
        text = _clean_content(content, 1)
        note = self._updated(self._store.save_content(id, text), id)
        try:
            self._trigger(id)
        except DispatchFailed as e:
            logger.warning("[edit] Trigger failed for %s: %s", id, e)
        return note

    def set_title(self, id: str, title: Optional[str]) -> Note:
        """Set the display title. A blank title removes it."""
        if title is not None and not isinstance(title, str):
            raise ValueError("title must be a string")
        trimmed = (title or "").strip()
        if len(trimmed) > MAX_TITLE_LENGTH:
            raise ValueError(f"title too long (max {MAX_TITLE_LENGTH} chars)")
        return self._updated(self._store.patch_metadata(id, {"title": trimmed or None}), id)

    def retry(self, id: str) -> Note:
        """
        Re-queue a note and trigger the agent again.

        Raises:
            NoteNotFound: no such note
            DispatchFailed: the agent did not accept; the note is marked failed
        """
        self._require(id)
        self._pending.enqueue(id)
        note = self._updated(self._store.set_status(id, STATUS_QUEUED), id)
        logger.info("[queue] Note %s queued for retry", id)
        try:
            self._trigger(id)
        except DispatchFailed as e:
            self._store.set_status(id, STATUS_FAILED, str(e))
            raise
        return note

    def start_processing(self, id: str) -> Note:
        """Agent picked the note up from the pending queue."""
        return self._updated(self._store.set_status(id, STATUS_PROCESSING), id)

    def finish_processing(self, id: str) -> Note:
        """Agent finished the note; drop it from the pending queue."""
        self._pending.dequeue(id)
        return self._updated(self._store.set_status(id, STATUS_PROCESSED), id)

    def mark_seen(self, id: str) -> Note:
        return self._updated(self._store.mark_seen(id), id)

    def get(self, id: str) -> Optional[Note]:
        return self._store.get(id)

    def list(self) -> list[Note]:
        return self._store.list()

    def move(self, id: str, folder_path: str) -> Note:
        """Move a note to a folder. Raises InvalidPath or NoteNotFound."""
        return self._updated(self._store.move(id, folder_path), id)

    def remove_folder(self, folder_path: str) -> FolderRemoval:
        return self._store.remove_folder(folder_path)

    def delete(self, id: str) -> bool:
        return self._store.delete(id)

    def tree(self) -> FolderNode:
        return self._store.tree()

    def pending(self) -> list[str]:
        return self._pending.list()

    def connections(self, id: Optional[str] = None) -> list[ConnectionEdge]:
        if id is None:
            return self._connections.list()
        return self._connections.edges_for(id)

    # -------------------------------------------------------------------------
    # Agent documents
    # -------------------------------------------------------------------------

    def _read_document(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Unreadable agent document %s: %s", path, e)
            return ""

    def memory(self) -> str:
        """The agent's MEMORY.md from the store root; "" when absent."""
        return self._read_document(self._config.memory_path)

    def mission(self) -> str:
        """The agent's MISSION.md from the store root; "" when absent."""
        return self._read_document(self._config.mission_path)

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    def user_actions(self) -> list[UserActionView]:
        """Every user-assigned action across all notes, newest note first."""
        views = []
        for note in self._store.list():
            for index, action in enumerate(note.actions):
                if action.assignee != ASSIGNEE_USER:
                    continue
                views.append(UserActionView(
                    note_id=note.id,
                    action_index=index,
                    label=action.label,
                    status=action.status or ACTION_PENDING,
                    note_title=note.title,
                    priority=action.priority,
                ))
        return views

    def _set_user_action(self, id: str, index: int, status: str, result: Optional[str] = None) -> dict:
        note = self._require(id)
        actions = list(note.metadata.get("suggestedActions") or [])
        if not isinstance(index, int) or not 0 <= index < len(actions):
            raise ActionNotFound(id, index)
        action = dict(actions[index]) if isinstance(actions[index], dict) else {}
        action["status"] = status
        if result:
            action["result"] = result
        actions[index] = action
        self._updated(self._store.patch_metadata(id, {"suggestedActions": actions}), id)
        return action

    def complete_user_action(self, id: str, index: int, result: Optional[str] = None) -> dict:
        return self._set_user_action(id, index, ACTION_COMPLETED, result)

    def decline_user_action(self, id: str, index: int) -> dict:
        return self._set_user_action(id, index, ACTION_DECLINED)

    # -------------------------------------------------------------------------
    # Agent actions
    # -------------------------------------------------------------------------

    def run_action(self, id: str, index: int, *, callback_base_url: Optional[str] = None) -> Job:
        return self._jobs.run_action(id, index, callback_base_url=callback_base_url)

    def complete_action(self, id: str, index: int, status: str, **kwargs) -> Job:
        return self._jobs.complete_action(id, index, status, **kwargs)

    def action_status(self, id: str, index: int) -> StatusView:
        return self._jobs.get_status(id, index)

    def sweep(self) -> int:
        return self._jobs.sweep_stalled()

    def agent_status(self) -> AgentStatus:
        configured = bool(getattr(self._agent, "configured", True))
        connectivity = getattr(self._agent, "connectivity", None)
        last_ok = getattr(connectivity, "last_trigger_ok", None)
        if not configured:
            state = AGENT_OFFLINE
        elif last_ok is False:
            state = AGENT_DEGRADED
        else:
            state = AGENT_ONLINE
        return AgentStatus(
            state=state,
            available=configured,
            pending_queue=self._pending.count(),
            running_jobs=self._jobs.running_count(),
            last_trigger_at=getattr(connectivity, "last_trigger_at", None),
            last_success_at=getattr(connectivity, "last_success_at", None),
            last_error=getattr(connectivity, "last_error", None),
        )
