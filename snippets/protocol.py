"""
Protocol definitions for the pieces the job tracker and facade depend on.

Defines interface contracts for:
- NoteStoreProtocol: what the tracker needs from the note store
- DispatcherProtocol: hands a task to the automation agent
- SchedulerProtocol: background hand-off, one-shot timers, periodic work

Production uses NoteStore, AgentClient and ThreadScheduler; tests inject
in-memory fakes that satisfy the same shapes.
"""

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .types import ConnectionEdge, Note


@runtime_checkable
class NoteStoreProtocol(Protocol):
    """Note lookup and metadata writes."""

    def get(self, id: str) -> Optional[Note]: ...

    def exists(self, id: str) -> bool: ...

    def patch_metadata(self, id: str, patch: dict[str, Any]) -> Optional[Note]: ...


@runtime_checkable
class ConnectionGraphProtocol(Protocol):
    """Undirected edge set between notes."""

    def add_edge(self, edge: ConnectionEdge) -> bool: ...

    def remove_note_edges(self, id: str) -> int: ...


@runtime_checkable
class DispatcherProtocol(Protocol):
    """
    Hands a natural-language task to the agent.

    trigger() returns once the agent has accepted the task and raises
    DispatchFailed otherwise. It never waits for the task to finish.
    """

    def trigger(self, name: str, message: str, *, model: Optional[str] = None) -> None: ...


@runtime_checkable
class SchedulerProtocol(Protocol):
    """Runs work off the caller's thread."""

    def submit(self, fn: Callable, *args) -> None: ...

    def call_later(self, delay: float, fn: Callable, *args) -> None: ...

    def every(self, interval: float, fn: Callable, *args, run_now: bool = True) -> None: ...

    def close(self) -> None: ...
