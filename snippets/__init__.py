"""
Snippets

Personal note capture backed by Markdown files, with an external automation
agent that classifies notes and executes suggested actions.

Quick Start:
    from snippets import Snippets

    sn = Snippets()  # uses ~/.snippets/ (or SNIPPETS_HOME)
    note = sn.capture("Buy milk on the way home")
    sn.run_action(note.id, 0)

CLI Usage:
    snippets capture "Buy milk"
    snippets tree
    snippets action-status <id> 0 --json

Environment Variables:
    SNIPPETS_HOME           - Override default store location
    SNIPPETS_VERBOSE        - Debug logging to stderr
    OPENCLAW_GATEWAY_URL    - Agent webhook gateway
    OPENCLAW_HOOKS_TOKEN    - Bearer token for the gateway
    SNIPPETS_CALLBACK_URL   - Base URL the agent calls back to

The store is initialized automatically on first use. Configuration is persisted
in a TOML file within the store directory.
"""

from .api import AgentStatus, Snippets, UserActionView
from .document_store import NoteStore
from .errors import SnippetsError
from .jobs import JobTracker
from .types import Action, ConnectionEdge, FolderNode, FolderRemoval, Job, Note, StatusView

__version__ = "0.1.0"
__all__ = [
    "Snippets",
    "NoteStore",
    "JobTracker",
    "SnippetsError",
    "Note",
    "Action",
    "Job",
    "ConnectionEdge",
    "FolderNode",
    "FolderRemoval",
    "StatusView",
    "UserActionView",
    "AgentStatus",
]
