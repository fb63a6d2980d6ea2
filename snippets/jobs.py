"""
Tracking for agent-executed actions.

Running an agent action is a two-phase protocol connected only by a job id:

1. run_action() creates a job, stamps it on the note's action, hands the
   task to the agent in the background and returns immediately.
2. complete_action() is the agent's callback. It is accepted only when it
   names the action's current job, so a stale or duplicate callback from an
   earlier dispatch cannot overwrite a newer one.

A job that never reports back is failed by a per-job timer, by the periodic
staleness sweep, or (for jobs lost across a restart) when its status is next
read. The job table is mirrored to disk after every transition; the note's
action carries a copy of the job fields for display.
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from .errors import (
    ActionNotFound,
    CooldownActive,
    DispatchFailed,
    JobIdMismatch,
    JobTimeout,
    NoAssociatedJob,
    NoteNotFound,
    StoreWriteFailed,
    WrongAssignee,
)
from .scheduler import ThreadScheduler
from .types import (
    ACTION_COMPLETED,
    ASSIGNEE_AGENT,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_RUNNING,
    Action,
    ConnectionEdge,
    Job,
    Note,
    StatusView,
    timestamp_seconds,
)

if TYPE_CHECKING:
    from .protocol import (
        ConnectionGraphProtocol,
        DispatcherProtocol,
        NoteStoreProtocol,
        SchedulerProtocol,
    )

logger = logging.getLogger(__name__)

ACTION_COOLDOWN_SECONDS = 60
JOB_TIMEOUT_SECONDS = 5 * 60
STALE_JOB_SECONDS = 10 * 60
SWEEP_INTERVAL_SECONDS = 5 * 60

# Cooldown entries are pruned once the table grows past this size
COOLDOWN_PRUNE_THRESHOLD = 200
COOLDOWN_RETENTION_SECONDS = 5 * 60

DEFAULT_CALLBACK_BASE_URL = "http://localhost:3811"

DEFAULT_FAILED_RESULT = "Action failed in hook execution."
DEFAULT_COMPLETED_RESULT = "Action completed successfully. No detailed result was returned by the agent."
LOST_TRACKING_RESULT = "Lost job tracking after restart. Please rerun this action."


def _duration(seconds: float) -> str:
    if seconds >= 60:
        return f"{round(seconds / 60)} min"
    return f"{round(seconds)}s"


class JobTracker:
    """
    Owns the job table and the per-action cooldown table.

    Constructed once per process; reloads the persisted job table so jobs
    that were running before a restart can be reaped by the staleness sweep.
    """

    def __init__(
        self,
        store: NoteStoreProtocol,
        jobs_path: Path,
        dispatcher: DispatcherProtocol,
        *,
        connections: Optional[ConnectionGraphProtocol] = None,
        scheduler: Optional[SchedulerProtocol] = None,
        clock: Callable[[], float] = time.time,
        cooldown_seconds: float = ACTION_COOLDOWN_SECONDS,
        timeout_seconds: float = JOB_TIMEOUT_SECONDS,
        stale_seconds: float = STALE_JOB_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        callback_base_url: str = DEFAULT_CALLBACK_BASE_URL,
    ):
        """
        Args:
            store: NoteStore holding the notes whose actions are tracked
            jobs_path: JSON file mirroring the job table
            dispatcher: Object with trigger(name, message) raising DispatchFailed
            connections: ConnectionGraph receiving edges for generated notes
            scheduler: Runs background hand-off and timers (ThreadScheduler)
            clock: Returns epoch seconds; injectable for tests
        """
        self._store = store
        self._jobs_path = Path(jobs_path)
        self._dispatcher = dispatcher
        self._connections = connections
        self._scheduler = scheduler or ThreadScheduler()
        self._clock = clock
        self._cooldown_seconds = cooldown_seconds
        self._timeout_seconds = timeout_seconds
        self._stale_seconds = stale_seconds
        self._sweep_interval = sweep_interval
        self._callback_base_url = callback_base_url.rstrip("/")

        self._jobs: dict[str, Job] = {}
        self._recent: dict[tuple[str, int], float] = {}
        self._lock = threading.RLock()
        self._load()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        try:
            data = json.loads(self._jobs_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return  # first run
        except (OSError, ValueError) as e:
            logger.warning("Unreadable job table %s: %s", self._jobs_path, e)
            return

        for raw in data if isinstance(data, list) else []:
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            try:
                job = Job.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed job: %r", raw)
                continue
            self._jobs[job.id] = job

        running = sum(1 for j in self._jobs.values() if j.status == JOB_RUNNING)
        if running:
            logger.info("Loaded %d job(s), %d still marked running", len(self._jobs), running)

    def _save(self) -> None:
        payload = [job.to_dict() for job in self._jobs.values()]
        tmp = None
        try:
            self._jobs_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._jobs_path.parent, prefix=".agent-jobs-")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self._jobs_path)
        except OSError as e:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            raise StoreWriteFailed(f"Failed to write job table: {e}") from e

    def _discard_job_record(self, job_id: str) -> None:
        """Rewrite the job table without a job that never started."""
        try:
            self._save()
        except StoreWriteFailed as e:
            logger.error("Job table still lists unstarted job %s: %s", job_id, e)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _now_iso(self) -> str:
        return (
            datetime.fromtimestamp(self._clock(), timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

    def _load_action(self, note_id: str, action_index: int) -> tuple[Note, list[dict], Action]:
        note = self._store.get(note_id)
        if note is None:
            raise NoteNotFound(note_id)
        actions = list(note.metadata.get("suggestedActions") or [])
        if not isinstance(action_index, int) or not 0 <= action_index < len(actions):
            raise ActionNotFound(note_id, action_index)
        raw = actions[action_index] if isinstance(actions[action_index], dict) else {}
        return note, actions, Action.from_dict(raw)

    def _write_action(self, note_id: str, actions: list[dict], action_index: int, action: Action) -> Note:
        actions = list(actions)
        actions[action_index] = action.to_dict()
        note = self._store.patch_metadata(note_id, {"suggestedActions": actions})
        if note is None:
            raise NoteNotFound(note_id)
        return note

    def _sync_action(self, job: Job) -> None:
        """Copy the job's fields onto the action it belongs to."""
        try:
            _, actions, action = self._load_action(job.note_id, job.action_index)
        except (NoteNotFound, ActionNotFound):
            logger.debug("Job %s has no action to update", job.id)
            return
        if action.job_id != job.id:
            # Re-dispatched or cleared; this job no longer owns the action
            logger.debug("Job %s no longer owns %s#%d", job.id, job.note_id, job.action_index)
            return

        action.job_status = job.status
        if job.status == JOB_COMPLETED:
            action.status = ACTION_COMPLETED
        if job.result:
            action.result = job.result
        if job.linked_note_id:
            action.linked_note_id = job.linked_note_id
        if job.linked_note_title:
            action.linked_note_title = job.linked_note_title
        try:
            self._write_action(job.note_id, actions, job.action_index, action)
        except NoteNotFound:
            logger.debug("Note %s vanished before job %s was recorded on it", job.note_id, job.id)

    def _finish(self, job: Job, status: str, result: Optional[str], *, overwrite: bool) -> None:
        job.status = status
        job.completed_at = self._now_iso()
        if result and (overwrite or not job.result):
            job.result = result
        self._jobs[job.id] = job
        self._save()
        self._sync_action(job)

    def _new_job_id(self, note_id: str, action_index: int) -> str:
        millis = int(self._clock() * 1000)
        job_id = f"job-{note_id}-{action_index}-{millis}"
        while job_id in self._jobs:
            millis += 1
            job_id = f"job-{note_id}-{action_index}-{millis}"
        return job_id

    # -------------------------------------------------------------------------
    # Cooldown
    # -------------------------------------------------------------------------

    def cooldown_remaining(self, note_id: str, action_index: int) -> int:
        """Seconds until the action may be dispatched again (0 if allowed)."""
        last = self._recent.get((note_id, action_index))
        if last is None:
            return 0
        elapsed = self._clock() - last
        if elapsed >= self._cooldown_seconds:
            return 0
        return max(1, math.ceil(self._cooldown_seconds - elapsed))

    def _record_execution(self, note_id: str, action_index: int) -> None:
        now = self._clock()
        self._recent[(note_id, action_index)] = now
        if len(self._recent) > COOLDOWN_PRUNE_THRESHOLD:
            self._recent = {
                k: t for k, t in self._recent.items()
                if now - t <= COOLDOWN_RETENTION_SECONDS
            }

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _build_prompt(self, note_id: str, action_index: int, job_id: str, label: str, base_url: str) -> str:
        callback_url = f"{base_url}/api/agent-actions/{note_id}/{action_index}/complete"
        create_note_url = f"{base_url}/api/notes"
        success = json.dumps({
            "jobId": job_id,
            "status": "completed",
            "result": "<YOUR_RESULT_HERE>",
            "linkedNoteId": "<NOTE_ID_FROM_API_RESPONSE>",
            "linkedNoteTitle": "<NOTE_TITLE>",
        })
        failure = json.dumps({
            "jobId": job_id,
            "status": "failed",
            "result": "<EXPLAIN_FAILURE_HERE>",
        })
        return (
            f"Action ID: {job_id}\n\n"
            f"Execute this Snippets agent action:\n\n**{label}**\n\n"
            "IMPORTANT: when done, report status back to the Snippets backend by "
            "calling the callback URL with JSON.\n\n"
            "If your action creates a new note, you MUST create it via the API so "
            "Snippets assigns a proper ID:\n\n"
            f"curl -sS -X POST '{create_note_url}' -H 'Content-Type: application/json' "
            "-d '{\"content\":\"<FULL_MARKDOWN_CONTENT>\"}'\n\n"
            "Use the frontmatter.id of the response as linkedNoteId in your callback. "
            "Do NOT write note files to disk directly.\n\n"
            f"- On success, run:\ncurl -sS -X POST '{callback_url}' "
            f"-H 'Content-Type: application/json' -d '{success}'\n\n"
            f"- On failure, run:\ncurl -sS -X POST '{callback_url}' "
            f"-H 'Content-Type: application/json' -d '{failure}'\n\n"
            "Rules for result text:\n"
            "- Keep it concise (max 200 words) and start success with ✓\n"
            "- Do NOT include filesystem paths\n"
            "- linkedNoteId MUST be the exact id returned by POST /api/notes\n"
            "- Escape any double quotes in JSON values with backslash"
        )

    def run_action(self, note_id: str, action_index: int, *, callback_base_url: Optional[str] = None) -> Job:
        """
        Dispatch an agent action. Returns the running job without waiting.

        Raises:
            NoteNotFound, ActionNotFound: no such note or action
            WrongAssignee: the action is not assigned to the agent
            CooldownActive: the same action was dispatched too recently
            StoreWriteFailed: the job table or note could not be written
        """
        base_url = (callback_base_url or self._callback_base_url).rstrip("/")
        with self._lock:
            _, actions, action = self._load_action(note_id, action_index)
            if action.assignee != ASSIGNEE_AGENT:
                raise WrongAssignee(action.assignee)

            remaining = self.cooldown_remaining(note_id, action_index)
            if remaining:
                raise CooldownActive(remaining)

            job = Job(
                id=self._new_job_id(note_id, action_index),
                note_id=note_id,
                action_index=action_index,
                status=JOB_RUNNING,
                started_at=self._now_iso(),
            )
            self._jobs[job.id] = job
            try:
                self._save()
                action.job_id = job.id
                action.job_status = JOB_RUNNING
                action.job_started_at = job.started_at
                self._write_action(note_id, actions, action_index, action)
            except (StoreWriteFailed, NoteNotFound) as e:
                # Nothing was dispatched: forget the job so a retry is not blocked
                self._jobs.pop(job.id, None)
                self._discard_job_record(job.id)
                logger.error("Could not start job %s: %s", job.id, e)
                raise
            self._record_execution(note_id, action_index)

        label = action.display_label
        prompt = self._build_prompt(note_id, action_index, job.id, label, base_url)
        self._scheduler.submit(self._dispatch, job.id, label, prompt)
        self._scheduler.call_later(self._timeout_seconds, self.expire, job.id)
        logger.info("Started job %s for %s#%d: %s", job.id, note_id, action_index, label)
        return job

    def _dispatch(self, job_id: str, label: str, prompt: str) -> None:
        """Background hand-off. A failed hand-off fails the job."""
        try:
            self._dispatcher.trigger(f"Snippets Action: {label}", prompt)
            logger.info("Queued action execution for job %s", job_id)
            return
        except DispatchFailed as e:
            result = f"Failed to queue: {e}"
        except Exception as e:
            result = f"Error: {e}"
        logger.error("Dispatch failed for job %s: %s", job_id, result)

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JOB_RUNNING:
                return
            self._finish(job, JOB_FAILED, result, overwrite=True)

    def expire(self, job_id: str) -> bool:
        """Fail a job that is still running when its timeout fires."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JOB_RUNNING:
                return False
            timeout = JobTimeout(
                job_id,
                f"Action timed out ({_duration(self._timeout_seconds)}) waiting for callback. Please rerun.",
            )
            self._finish(job, JOB_FAILED, str(timeout), overwrite=False)
        logger.warning("Job %s timed out after %s", job_id, _duration(self._timeout_seconds))
        return True

    # -------------------------------------------------------------------------
    # Completion callback
    # -------------------------------------------------------------------------

    def complete_action(
        self,
        note_id: str,
        action_index: int,
        status: str,
        *,
        job_id: Optional[str] = None,
        result: Optional[str] = None,
        linked_note_id: Optional[str] = None,
        linked_note_title: Optional[str] = None,
    ) -> Job:
        """
        Record the agent's report for an action's current job.

        Accepted even after a timeout already failed the job, so a late
        success still lands. Replaying the same callback changes nothing
        beyond timestamps.

        Raises:
            NoteNotFound, ActionNotFound: no such note or action
            NoAssociatedJob: the action was never dispatched
            JobIdMismatch: job_id names a different dispatch
        """
        status = JOB_FAILED if status == JOB_FAILED else JOB_COMPLETED
        result_text = result.strip() if isinstance(result, str) else ""
        linked_id = linked_note_id.strip() if isinstance(linked_note_id, str) else ""
        linked_title = linked_note_title.strip() if isinstance(linked_note_title, str) else ""

        with self._lock:
            note, _, action = self._load_action(note_id, action_index)
            if not action.job_id:
                logger.warning("[callback] No associated job for %s/%d", note_id, action_index)
                raise NoAssociatedJob(note_id, action_index)
            if job_id and job_id != action.job_id:
                logger.warning("[callback] Job ID mismatch: expected %s, got %s", action.job_id, job_id)
                raise JobIdMismatch(action.job_id, job_id)

            job = self._jobs.get(action.job_id) or Job(
                id=action.job_id,
                note_id=note_id,
                action_index=action_index,
                status=status,
                started_at=action.job_started_at or self._now_iso(),
            )
            previous = job.status
            if previous != JOB_RUNNING:
                logger.info("[callback] Job %s already %s; recording %s", job.id, previous, status)

            job.status = status
            job.completed_at = self._now_iso()
            if result_text:
                job.result = result_text
            elif not job.result or previous != status:
                job.result = DEFAULT_FAILED_RESULT if status == JOB_FAILED else DEFAULT_COMPLETED_RESULT

            if linked_id:
                self._link(note, action, job, linked_id, linked_title)

            self._jobs[job.id] = job
            self._save()
            self._sync_action(job)

        logger.info("[callback] Job %s %s", job.id, job.status)
        return job

    def _link(self, note: Note, action: Action, job: Job, linked_id: str, linked_title: str) -> None:
        if linked_id == note.id or not self._store.exists(linked_id):
            # The job is still recorded; only the link is skipped
            logger.warning("[callback] Linked note does not exist: %s (from %s)", linked_id, note.id)
            return

        job.linked_note_id = linked_id
        if linked_title:
            job.linked_note_title = linked_title

        if linked_id not in note.connections:
            self._store.patch_metadata(note.id, {"connections": [*note.connections, linked_id]})

        if self._connections is not None:
            self._connections.add_edge(ConnectionEdge(
                source=note.id,
                target=linked_id,
                relationship="generated",
                strength=1.0,
                reason=f"Generated by action: {action.display_label}",
            ))
        logger.info("[callback] Linked note %s to action result for %s", linked_id, note.id)

    # -------------------------------------------------------------------------
    # Status and recovery
    # -------------------------------------------------------------------------

    def get_status(self, note_id: str, action_index: int) -> StatusView:
        """
        Current status of an action's job.

        Falls back to the fields persisted on the action when the job table
        has no record (e.g. after a restart); a persisted "running" older than
        the staleness bound is failed on the spot.
        """
        with self._lock:
            _, actions, action = self._load_action(note_id, action_index)
            if not action.job_id:
                return StatusView(status="not-started")

            job = self._jobs.get(action.job_id)
            if job is not None:
                return StatusView(
                    status=job.status,
                    job_id=job.id,
                    result=job.result,
                    started_at=job.started_at,
                    completed_at=job.completed_at,
                )

            if action.job_status == JOB_RUNNING:
                started = timestamp_seconds(action.job_started_at)
                if started is not None and self._clock() - started > self._stale_seconds:
                    action.job_status = JOB_FAILED
                    if not action.result:
                        action.result = LOST_TRACKING_RESULT
                    self._write_action(note_id, actions, action_index, action)
                    logger.warning("Recovered lost job %s as failed", action.job_id)
                    return StatusView(
                        status=JOB_FAILED,
                        job_id=action.job_id,
                        result=action.result,
                        recovered=True,
                    )

            if action.job_status:
                return StatusView(status=action.job_status, job_id=action.job_id, result=action.result)
            return StatusView(status="unknown", job_id=action.job_id)

    def sweep_stalled(self) -> int:
        """Fail running jobs older than the staleness bound. Returns the count."""
        now = self._clock()
        cleaned = 0
        with self._lock:
            for job in list(self._jobs.values()):
                if job.status != JOB_RUNNING:
                    continue
                started = timestamp_seconds(job.started_at)
                if started is None:
                    continue
                age = now - started
                if age <= self._stale_seconds:
                    continue

                job.status = JOB_FAILED
                job.completed_at = self._now_iso()
                if not job.result:
                    job.result = (
                        f"Job timeout: no completion callback after {round(age / 60)} minutes. "
                        "Server may have been restarted."
                    )
                try:
                    self._sync_action(job)
                except StoreWriteFailed as e:
                    logger.error("Could not update action for stalled job %s: %s", job.id, e)
                cleaned += 1
                logger.warning("Marked stalled job %s as failed after %dm", job.id, round(age / 60))

            if cleaned:
                self._save()
        return cleaned

    def start_maintenance(self, interval: Optional[float] = None) -> None:
        """Sweep now and then every interval seconds, in the background."""
        self._scheduler.every(interval or self._sweep_interval, self.sweep_stalled)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def jobs(self) -> list[Job]:
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.started_at, reverse=True)

    def running_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status == JOB_RUNNING)

    def close(self) -> None:
        """Cancel pending timeouts and stop the maintenance sweep."""
        self._scheduler.close()
