"""
CLI interface for snippets.

Usage:
    snippets capture "Buy milk"
    snippets list
    snippets run-action 20260101-120000-ab12 0
"""

import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from .api import Snippets
from .errors import SnippetsError
from .logging_config import configure_quiet_mode, enable_debug_mode
from .scheduler import ThreadScheduler
from .types import FolderNode, Note

# How long a one-shot command waits for the agent hand-off to finish
DISPATCH_WAIT_SECONDS = 35.0


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


app = typer.Typer(
    name="snippets",
    help="Capture notes and run agent actions on them.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        envvar="SNIPPETS_VERBOSE",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="SNIPPETS_HOME",
        help="Path to the store directory (default: ~/.snippets/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Capture notes and run agent actions on them."""
    if not verbose:
        configure_quiet_mode()


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _open() -> tuple[Snippets, ThreadScheduler]:
    """Open and prepare the store, exiting cleanly on failure."""
    scheduler = ThreadScheduler()
    try:
        sn = Snippets(_store_override, scheduler=scheduler)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    try:
        # One-shot process: sweep once instead of starting the periodic loop
        sn.startup(maintenance=False)
    except (OSError, SnippetsError) as e:
        sn.close()
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    return sn, scheduler


def _fail(e: Exception):
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(1)


def _emit(data: Any, text: str) -> None:
    if _get_json_output():
        typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        typer.echo(text)


def _headline(note: Note) -> str:
    if note.title:
        return note.title
    first = note.content.strip().splitlines()[0] if note.content.strip() else ""
    return first[:77] + "..." if len(first) > 80 else first


def _format_note_line(note: Note) -> str:
    folder = note.folder_path or "/"
    return f"{note.id}  {note.status or '-':<10}  {folder:<16}  {_headline(note)}"


def _format_note(note: Note) -> str:
    lines = [f"id: {note.id}"]
    for key in ("title", "status", "folderPath", "created", "updated", "processingError"):
        if note.metadata.get(key):
            lines.append(f"{key}: {note.metadata[key]}")
    for i, action in enumerate(note.actions):
        state = action.job_status or action.status
        lines.append(f"action[{i}]: [{action.assignee}] {action.display_label} ({state})")
    lines.append("")
    lines.append(note.content)
    return "\n".join(lines)


def _format_tree(node: FolderNode, depth: int = 0) -> list[str]:
    lines = []
    for child in node.children:
        lines.append(f"{'  ' * depth}{child.icon} {child.name} ({child.note_count})")
        lines.extend(_format_tree(child, depth + 1))
    return lines


# -----------------------------------------------------------------------------
# Notes
# -----------------------------------------------------------------------------

@app.command()
def capture(
    content: Annotated[str, typer.Argument(help="Note text, or '-' to read stdin")],
):
    """Capture a new note and queue it for agent processing."""
    if content == "-":
        content = sys.stdin.read()
    sn, _ = _open()
    try:
        note = sn.capture(content)
    except (SnippetsError, ValueError) as e:
        _fail(e)
    finally:
        sn.close()
    _emit(note.to_dict(), _format_note_line(note))
    if note.metadata.get("processingError"):
        typer.echo(f"Warning: agent not triggered: {note.metadata['processingError']}", err=True)


@app.command("list")
def list_notes(
    folder: Annotated[Optional[str], typer.Option(
        "--folder", "-f",
        help="Only notes in this folder (and below)",
    )] = None,
):
    """List notes, newest first."""
    sn, _ = _open()
    try:
        notes = sn.list()
    finally:
        sn.close()
    if folder:
        prefix = folder.strip("/")
        notes = [n for n in notes if n.folder_path == prefix or n.folder_path.startswith(prefix + "/")]
    _emit([n.to_dict() for n in notes], "\n".join(_format_note_line(n) for n in notes))


@app.command()
def get(id: Annotated[str, typer.Argument(help="Note id")]):
    """Show a note with its frontmatter."""
    sn, _ = _open()
    try:
        note = sn.get(id)
    finally:
        sn.close()
    if note is None:
        typer.echo(f"Error: Note not found: {id}", err=True)
        raise typer.Exit(1)
    _emit(note.to_dict(), _format_note(note))


@app.command()
def edit(
    id: Annotated[str, typer.Argument(help="Note id")],
    content: Annotated[str, typer.Argument(help="New body, or '-' to read stdin")],
):
    """Replace a note's body and queue it for re-processing."""
    if content == "-":
        content = sys.stdin.read()
    sn, _ = _open()
    try:
        note = sn.edit(id, content)
    except (SnippetsError, ValueError) as e:
        _fail(e)
    finally:
        sn.close()
    _emit(note.to_dict(), _format_note_line(note))


@app.command()
def move(
    id: Annotated[str, typer.Argument(help="Note id")],
    folder: Annotated[str, typer.Argument(help="Destination folder path, e.g. projects/alpha")],
):
    """Move a note to another folder."""
    sn, _ = _open()
    try:
        note = sn.move(id, folder)
    except (SnippetsError, ValueError) as e:
        _fail(e)
    finally:
        sn.close()
    _emit({"ok": True, "note": note.to_dict()}, f"Moved {id} to {note.folder_path or '/'}")


@app.command("remove-folder")
def remove_folder(folder: Annotated[str, typer.Argument(help="Folder path to remove")]):
    """Remove a folder, moving its notes to the default folder."""
    sn, _ = _open()
    try:
        result = sn.remove_folder(folder)
    finally:
        sn.close()
    if not result.ok:
        if _get_json_output():
            typer.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        typer.echo(f"Error: {result.error or result.reason}", err=True)
        raise typer.Exit(1)
    _emit(result.to_dict(), f"Removed {result.folder_path}; moved {result.moved_notes} note(s)")


@app.command()
def delete(id: Annotated[str, typer.Argument(help="Note id")]):
    """Delete a note."""
    sn, _ = _open()
    try:
        deleted = sn.delete(id)
    finally:
        sn.close()
    if not deleted:
        typer.echo(f"Error: Note not found: {id}", err=True)
        raise typer.Exit(1)
    _emit({"ok": True}, f"Deleted {id}")


@app.command()
def tree():
    """Show the folder tree with note counts."""
    sn, _ = _open()
    try:
        root = sn.tree()
    finally:
        sn.close()
    _emit(root.to_dict(), "\n".join(_format_tree(root)))


@app.command()
def pending():
    """List note ids waiting for agent processing."""
    sn, _ = _open()
    try:
        ids = sn.pending()
    finally:
        sn.close()
    _emit(ids, "\n".join(ids))


@app.command()
def connections(id: Annotated[Optional[str], typer.Argument(help="Only edges touching this note")] = None):
    """List connections between notes."""
    sn, _ = _open()
    try:
        edges = sn.connections(id)
    finally:
        sn.close()
    lines = [
        f"{e.source} <-> {e.target}  {e.relationship or ''} {e.reason or ''}".rstrip()
        for e in edges
    ]
    _emit([e.to_dict() for e in edges], "\n".join(lines))


@app.command()
def memory():
    """Show the agent's MEMORY.md."""
    sn, _ = _open()
    try:
        content = sn.memory()
    finally:
        sn.close()
    _emit({"content": content}, content.rstrip("\n"))


@app.command()
def mission():
    """Show the agent's MISSION.md."""
    sn, _ = _open()
    try:
        content = sn.mission()
    finally:
        sn.close()
    _emit({"content": content}, content.rstrip("\n"))


# -----------------------------------------------------------------------------
# Agent actions
# -----------------------------------------------------------------------------

@app.command("run-action")
def run_action(
    id: Annotated[str, typer.Argument(help="Note id")],
    index: Annotated[int, typer.Argument(help="Action index in suggestedActions")],
):
    """Dispatch an agent-assigned action."""
    sn, scheduler = _open()
    try:
        job = sn.run_action(id, index)
        if not scheduler.drain(DISPATCH_WAIT_SECONDS):
            typer.echo("Warning: agent hand-off still in progress", err=True)
        job = sn.jobs.get_job(job.id) or job
    except (SnippetsError, ValueError) as e:
        _fail(e)
    finally:
        sn.close()
    _emit(job.to_dict(), f"{job.id} {job.status}" + (f": {job.result}" if job.result else ""))


@app.command("complete-action")
def complete_action(
    id: Annotated[str, typer.Argument(help="Note id")],
    index: Annotated[int, typer.Argument(help="Action index in suggestedActions")],
    status: Annotated[str, typer.Option(
        "--status",
        help="completed or failed",
    )] = "completed",
    job_id: Annotated[Optional[str], typer.Option("--job-id", help="Job id from the dispatch")] = None,
    result: Annotated[Optional[str], typer.Option("--result", "-r", help="Result text")] = None,
    linked_note_id: Annotated[Optional[str], typer.Option("--linked-note-id", help="Note created by the action")] = None,
    linked_note_title: Annotated[Optional[str], typer.Option("--linked-note-title")] = None,
):
    """Report the outcome of an agent action (the agent's callback)."""
    if status not in ("completed", "failed"):
        typer.echo("Error: --status must be 'completed' or 'failed'", err=True)
        raise typer.Exit(1)
    sn, _ = _open()
    try:
        job = sn.complete_action(
            id, index, status,
            job_id=job_id,
            result=result,
            linked_note_id=linked_note_id,
            linked_note_title=linked_note_title,
        )
    except (SnippetsError, ValueError) as e:
        _fail(e)
    finally:
        sn.close()
    _emit({"ok": True, "job": job.to_dict()}, f"{job.id} {job.status}")


@app.command("action-status")
def action_status(
    id: Annotated[str, typer.Argument(help="Note id")],
    index: Annotated[int, typer.Argument(help="Action index in suggestedActions")],
):
    """Show the job status of an agent action."""
    sn, _ = _open()
    try:
        view = sn.action_status(id, index)
    except (SnippetsError, ValueError) as e:
        _fail(e)
    finally:
        sn.close()
    text = view.status
    if view.job_id:
        text += f" ({view.job_id})"
    if view.result:
        text += f"\n{view.result}"
    _emit(view.to_dict(), text)


@app.command()
def sweep():
    """Fail agent jobs that never reported back."""
    sn, _ = _open()
    try:
        cleaned = sn.sweep()
    finally:
        sn.close()
    _emit({"cleaned": cleaned}, f"Marked {cleaned} stalled job(s) as failed")


@app.command("agent-status")
def agent_status():
    """Show whether the agent looks reachable."""
    sn, _ = _open()
    try:
        status = sn.agent_status()
    finally:
        sn.close()
    text = (
        f"{status.state}: {status.pending_queue} pending, {status.running_jobs} running"
        + (f"\nlast error: {status.last_error}" if status.last_error else "")
    )
    _emit(status.to_dict(), text)


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="snippets CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
