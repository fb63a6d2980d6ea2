"""
Shared pytest fixtures for snippets tests.

Provides a manual scheduler, a fake clock and a fake agent dispatcher so job
tracking can be tested without threads, timers or network access.
"""

from pathlib import Path
from typing import Callable, Optional

import pytest

from snippets.config import SnippetsConfig
from snippets.connections import ConnectionGraph
from snippets.document_store import NoteStore
from snippets.errors import DispatchFailed
from snippets.jobs import JobTracker
from snippets.notifier import ChangeNotifier
from snippets.pending_queue import PendingQueue
from snippets.types import ASSIGNEE_AGENT, ASSIGNEE_USER


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_767_225_600.0):  # 2026-01-01T00:00:00Z
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualScheduler:
    """
    Scheduler that records work instead of running it.

    Tests call run_submitted() to perform background hand-offs and
    fire_timers() to fire every pending one-shot timer.
    """

    def __init__(self):
        self.submitted: list[tuple[Callable, tuple]] = []
        self.timers: list[tuple[float, Callable, tuple]] = []
        self.periodic: list[tuple[float, Callable, tuple]] = []
        self.closed = False

    def submit(self, fn: Callable, *args) -> None:
        self.submitted.append((fn, args))

    def call_later(self, delay: float, fn: Callable, *args) -> None:
        self.timers.append((delay, fn, args))

    def every(self, interval: float, fn: Callable, *args, run_now: bool = True) -> None:
        self.periodic.append((interval, fn, args))
        if run_now:
            fn(*args)

    def run_submitted(self) -> int:
        work, self.submitted = self.submitted, []
        for fn, args in work:
            fn(*args)
        return len(work)

    def fire_timers(self) -> int:
        timers, self.timers = self.timers, []
        for _, fn, args in timers:
            fn(*args)
        return len(timers)

    def close(self) -> None:
        self.closed = True


class FakeDispatcher:
    """Agent dispatcher recording triggers; set fail to make them raise."""

    def __init__(self, fail: Optional[str] = None):
        self.fail = fail
        self.calls: list[tuple[str, str]] = []
        self.processing_calls: list[str] = []
        self.configured = True
        self.connectivity = None

    def trigger(self, name: str, message: str, *, model: Optional[str] = None) -> None:
        self.calls.append((name, message))
        if self.fail:
            raise DispatchFailed(self.fail)

    def trigger_processing(self, note_id: str, base_url: str) -> None:
        self.processing_calls.append(note_id)
        if self.fail:
            raise DispatchFailed(self.fail)

    def close(self) -> None:
        pass


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def events(notifier):
    """List of event names published during the test."""
    seen: list[str] = []
    notifier.subscribe(lambda event, data: seen.append(event))
    return seen


@pytest.fixture
def agent_dir(tmp_path) -> Path:
    return tmp_path / ".agent"


@pytest.fixture
def pending(agent_dir):
    return PendingQueue(agent_dir / "pending")


@pytest.fixture
def graph(agent_dir, notifier):
    return ConnectionGraph(agent_dir / "connections.json", notifier=notifier)


@pytest.fixture
def store(tmp_path, agent_dir, pending, graph, notifier):
    """NoteStore wired to a pending queue, connection graph and notifier."""
    return NoteStore(
        tmp_path / "notes",
        icons_path=agent_dir / "folder-icons.json",
        pending_queue=pending,
        connections=graph,
        notifier=notifier,
    )


@pytest.fixture
def tracker(store, agent_dir, dispatcher, graph, scheduler, clock):
    return JobTracker(
        store,
        agent_dir / "agent-jobs.json",
        dispatcher,
        connections=graph,
        scheduler=scheduler,
        clock=clock,
    )


@pytest.fixture
def make_tracker(store, agent_dir, dispatcher, graph, scheduler, clock):
    """Build another tracker over the same files (simulates a restart)."""
    def factory(**kwargs):
        return JobTracker(
            store,
            agent_dir / "agent-jobs.json",
            kwargs.pop("dispatcher", dispatcher),
            connections=graph,
            scheduler=kwargs.pop("scheduler", scheduler),
            clock=kwargs.pop("clock", clock),
            **kwargs,
        )
    return factory


def add_actions(store: NoteStore, note_id: str, *actions: dict):
    """Attach suggestedActions to a note."""
    return store.patch_metadata(note_id, {"suggestedActions": list(actions)})


def agent_action(label: str = "Draft shopping list", **extra) -> dict:
    return {"label": label, "type": "task", "assignee": ASSIGNEE_AGENT, "status": "pending", **extra}


def user_action(label: str = "Buy milk", **extra) -> dict:
    return {"label": label, "type": "task", "assignee": ASSIGNEE_USER, "status": "pending", **extra}


@pytest.fixture
def note_with_agent_action(store):
    """A note whose action 0 is agent-assigned."""
    note = store.create("Buy milk")
    add_actions(store, note.id, agent_action())
    return note


@pytest.fixture
def snippets_config(tmp_path) -> SnippetsConfig:
    return SnippetsConfig(path=tmp_path / "store")
