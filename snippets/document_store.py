"""
Note store using Markdown files with YAML frontmatter.

Each note is one file, <notes>/<folderPath>/<id>.md. Folders are plain
directories. The store is the source of truth for:
- Note identity and placement in the folder tree
- Frontmatter metadata (status, agent enrichment, suggested actions)
- Folder display icons (side-table JSON file)

Every metadata write goes through a single commit path so the file always
lives in the folder its frontmatter names. A file that moved since the last
listing is found again by re-scanning the tree.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import InvalidPath, ProtectedFolder, StoreWriteFailed
from .notifier import NOTES_UPDATED, NullNotifier
from .paths import is_within, resolve_folder, sanitize_folder_path
from .types import (
    BUILTIN_FOLDERS,
    DEFAULT_FOLDER,
    NOTE_STATUSES,
    STATUS_PROCESSED,
    STATUS_QUEUED,
    STATUS_RAW,
    FolderNode,
    FolderRemoval,
    Note,
    generate_note_id,
    is_valid_note_id,
    timestamp_seconds,
    utc_now,
)

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"

# Icons for user-created folders; assignment is a stable hash into this list
FOLDER_ICON_PALETTE = (
    "📁", "🗂️", "📂", "🧭", "🧩", "🎯", "🌱", "🔬",
    "🛠️", "🎨", "📌", "🧠", "🗺️", "⭐", "🔥", "🌊",
)
ROOT_ICON = "🗃️"

_FRONTMATTER_RE = re.compile(r'\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z', re.S)

MAX_ID_ATTEMPTS = 100


def _plain(value: Any) -> Any:
    """Frontmatter written by other tools may hold YAML timestamps; keep strings."""
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def split_frontmatter(text: str) -> tuple[dict, str]:
    """
    Split a document into (metadata, body).

    Documents without frontmatter return an empty dict and the whole text.

    Raises:
        yaml.YAMLError: frontmatter is present but not valid YAML
    """
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, text.strip()
    data = yaml.safe_load(match.group(1)) or {}
    if not isinstance(data, dict):
        raise yaml.YAMLError("frontmatter is not a mapping")
    return _plain(data), match.group(2).strip()


def render_note(metadata: dict, content: str) -> str:
    """Serialize metadata + body as a frontmatter document."""
    try:
        header = yaml.safe_dump(
            metadata, sort_keys=False, allow_unicode=True, default_flow_style=False,
        )
    except yaml.YAMLError as e:
        raise ValueError(f"Metadata cannot be serialized: {e}") from e
    return f"---\n{header}---\n{content}\n"


def folder_icon_for(folder_path: str) -> str:
    """Deterministic icon for a folder path."""
    if folder_path in BUILTIN_FOLDERS:
        return BUILTIN_FOLDERS[folder_path]
    if not folder_path:
        return ROOT_ICON
    digest = hashlib.sha256(folder_path.encode("utf-8")).digest()
    return FOLDER_ICON_PALETTE[int.from_bytes(digest[:4], "big") % len(FOLDER_ICON_PALETTE)]


def _same_file(a: Path, b: Path) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


class NoteStore:
    """
    File-backed note store.

    Mutations are serialized with a re-entrant lock: request handlers,
    job timers and maintenance sweeps all write through the same instance.
    """

    def __init__(
        self,
        notes_dir: Path,
        *,
        icons_path: Optional[Path] = None,
        pending_queue=None,
        connections=None,
        notifier=None,
        default_folder: str = DEFAULT_FOLDER,
    ):
        """
        Args:
            notes_dir: Root of the notes folder tree
            icons_path: JSON side-table of folder icons
            pending_queue: Queue notified on content edits and deletes
            connections: Connection graph pruned on deletes
            notifier: Receives notes-updated events
            default_folder: Where new notes and evicted notes land
        """
        self._root = Path(notes_dir).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._icons_path = Path(icons_path) if icons_path else self._root.parent / ".agent" / "folder-icons.json"
        self._pending = pending_queue
        self._connections = connections
        self._notifier = notifier or NullNotifier()
        self._default_folder = sanitize_folder_path(default_folder) or DEFAULT_FOLDER
        self._lock = threading.RLock()
        self._index: dict[str, Path] = {}
        self._indexed = False
        self._issued: set[str] = set()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def default_folder(self) -> str:
        return self._default_folder

    def is_builtin(self, folder_path: str) -> bool:
        return folder_path in BUILTIN_FOLDERS or folder_path == self._default_folder

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def _iter_files(self):
        """Yield every note file under the root, skipping hidden entries."""
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if name.endswith(NOTE_SUFFIX) and not name.startswith("."):
                    yield Path(dirpath) / name

    def _rescan(self) -> None:
        index = {}
        for path in self._iter_files():
            index[path.stem] = path
        self._index = index
        self._indexed = True

    def _find(self, id: str) -> Optional[Path]:
        """Locate the file for an id, re-scanning if it moved."""
        if not is_valid_note_id(id):
            return None
        cached = self._index.get(id)
        if cached is not None and cached.is_file():
            return cached
        self._rescan()
        return self._index.get(id)

    def _relative_folder(self, path: Path) -> str:
        rel = path.parent.relative_to(self._root)
        return "" if str(rel) == "." else rel.as_posix()

    def _parse(self, path: Path) -> Optional[Note]:
        try:
            text = path.read_text(encoding="utf-8")
            metadata, content = split_frontmatter(text)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            logger.warning("Skipping unreadable note %s: %s", path, e)
            return None

        id = path.stem
        metadata.setdefault("id", id)
        # Physical location is authoritative for placement
        metadata["folderPath"] = self._relative_folder(path)
        return Note(id=id, content=content, metadata=metadata)

    def _write_file(self, path: Path, text: str) -> None:
        """Write via temp file + rename so a failed write leaves the old file."""
        tmp = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
            raise StoreWriteFailed(f"Failed to write {path.name}: {e}") from e

    def _new_id(self) -> str:
        if not self._indexed:
            self._rescan()
        for _ in range(MAX_ID_ATTEMPTS):
            id = generate_note_id()
            if id not in self._issued and id not in self._index:
                self._issued.add(id)
                return id
        raise StoreWriteFailed("Could not allocate a unique note id")

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Optional[Note]:
        """Get a note by id, wherever it currently lives. None if absent."""
        with self._lock:
            path = self._find(id)
            if path is None:
                return None
            note = self._parse(path)
            if note is None and not path.exists():
                # Moved between lookup and read
                path = self._find(id)
                note = self._parse(path) if path else None
            return note

    def exists(self, id: str) -> bool:
        with self._lock:
            return self._find(id) is not None

    def list(self) -> list[Note]:
        """All notes in the tree, newest first."""
        with self._lock:
            self._rescan()
            paths = list(self._index.values())
        notes = [n for n in (self._parse(p) for p in paths) if n is not None]
        notes.sort(key=lambda n: timestamp_seconds(n.created) or 0.0, reverse=True)
        return notes

    def folders(self) -> list[str]:
        """Every folder path under the root (excluding the root itself)."""
        found = []
        for dirpath, dirnames, _ in os.walk(self._root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for d in dirnames:
                found.append((Path(dirpath) / d).relative_to(self._root).as_posix())
        return sorted(found)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def ensure_folders(self) -> None:
        """Create the built-in folders and the default folder."""
        for folder in [*BUILTIN_FOLDERS, self._default_folder]:
            (self._root / folder).mkdir(parents=True, exist_ok=True)

    def create(self, content: str) -> Note:
        """Create a note in the default folder with status raw."""
        with self._lock:
            id = self._new_id()
            now = utc_now()
            metadata = {
                "id": id,
                "created": now,
                "updated": now,
                "status": STATUS_RAW,
                "folderPath": self._default_folder,
            }
            body = content.strip()
            path = self._root / self._default_folder / f"{id}{NOTE_SUFFIX}"
            self._write_file(path, render_note(metadata, body))
            self._index[id] = path
        logger.info("Created note %s", id)
        self._notifier.publish(NOTES_UPDATED)
        return Note(id=id, content=body, metadata=metadata)

    def _commit(self, id: str, patch: Optional[dict] = None, content: Optional[str] = None) -> Optional[Note]:
        """
        Merge patch over the note's metadata, optionally replace the body, and
        write the result to the folder named by folderPath.

        Keys set to None are removed. id and created never change.
        """
        with self._lock:
            path = self._find(id)
            note = self._parse(path) if path else None
            if note is None:
                return None

            metadata = dict(note.metadata)
            for key, value in (patch or {}).items():
                if key in ("id", "created"):
                    continue
                if value is None:
                    metadata.pop(key, None)
                else:
                    metadata[key] = value

            old_folder = note.folder_path
            folder = sanitize_folder_path(metadata.get("folderPath"))
            metadata["folderPath"] = folder
            metadata["updated"] = utc_now()
            body = note.content if content is None else content.strip()

            target = resolve_folder(self._root, folder) / path.name
            self._write_file(target, render_note(metadata, body))

            if target != path and not _same_file(target, path):
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    # Keep a single copy: drop the new file, old one stays current
                    try:
                        target.unlink()
                    except OSError:
                        logger.error("Note %s now exists in two folders", id)
                    raise StoreWriteFailed(f"Failed to remove {path}: {e}") from e
                logger.info("Moved note %s: %r -> %r", id, old_folder, folder)
            self._index[id] = target

        self._notifier.publish(NOTES_UPDATED)
        return Note(id=id, content=body, metadata=metadata)

    def patch_metadata(self, id: str, patch: dict) -> Optional[Note]:
        """
        Merge fields into a note's frontmatter. None if the note is absent.

        Changing folderPath relocates the file. Raises InvalidPath for a bad
        folderPath and StoreWriteFailed if the write fails (nothing committed).
        """
        return self._commit(id, patch)

    def save_content(self, id: str, content: str) -> Optional[Note]:
        """Replace the body and queue the note for re-processing."""
        note = self._commit(id, {"status": STATUS_QUEUED, "processingError": None}, content=content)
        if note is not None and self._pending is not None:
            self._pending.enqueue(id)
        return note

    def set_status(self, id: str, status: str, error: Optional[str] = None) -> Optional[Note]:
        if status not in NOTE_STATUSES:
            raise ValueError(f"Invalid status: {status!r}")
        patch: dict[str, Any] = {"status": status, "processingError": error}
        if status == STATUS_PROCESSED:
            patch["processedAt"] = utc_now()
        return self._commit(id, patch)

    def mark_seen(self, id: str) -> Optional[Note]:
        return self._commit(id, {"seenAt": utc_now()})

    def move(self, id: str, folder_path: str) -> Optional[Note]:
        """Move a note to another folder. Raises InvalidPath."""
        folder = sanitize_folder_path(folder_path)
        return self._commit(id, {"folderPath": folder})

    def delete(self, id: str) -> bool:
        """Delete a note with its pending marker and connection edges."""
        with self._lock:
            path = self._find(id)
            if path is None:
                return False
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                logger.error("Failed to delete note %s: %s", id, e)
                return False
            self._index.pop(id, None)

        if self._pending is not None:
            self._pending.dequeue(id)
        if self._connections is not None:
            self._connections.remove_note_edges(id)
        logger.info("Deleted note %s", id)
        self._notifier.publish(NOTES_UPDATED)
        return True

    def remove_folder(self, folder_path: str) -> FolderRemoval:
        """
        Remove a folder after relocating every note under it to the default
        folder.

        Notes move one at a time through the normal commit path; the
        directory is deleted only once nothing is left inside it. Failures
        stop progress and report how many notes were already moved.
        """
        try:
            folder = sanitize_folder_path(folder_path)
        except InvalidPath as e:
            return FolderRemoval(False, str(folder_path), reason="invalid-path", error=str(e))

        if not folder or self.is_builtin(folder) or is_within(self._default_folder, folder):
            return FolderRemoval(False, folder, reason="protected", error=str(ProtectedFolder(folder)))

        with self._lock:
            try:
                directory = resolve_folder(self._root, folder)
            except InvalidPath as e:
                return FolderRemoval(False, folder, reason="invalid-path", error=str(e))
            if not directory.is_dir():
                return FolderRemoval(False, folder, reason="not-found", error=f"Folder not found: {folder}")

            moved = 0
            for note in self.list():
                if not is_within(note.folder_path, folder):
                    continue
                try:
                    self._commit(note.id, {"folderPath": self._default_folder})
                except StoreWriteFailed as e:
                    logger.error("Stopped removing %s after %d move(s): %s", folder, moved, e)
                    return FolderRemoval(False, folder, moved_notes=moved, reason="io-error", error=str(e))
                moved += 1

            leftovers = [p for p in directory.rglob(f"*{NOTE_SUFFIX}") if not p.name.startswith(".")]
            if leftovers:
                return FolderRemoval(
                    False, folder, moved_notes=moved, reason="not-empty",
                    error=f"{len(leftovers)} file(s) under {folder} could not be relocated",
                )

            removed_paths = [folder] + [
                f"{folder}/{p.relative_to(directory).as_posix()}"
                for p in directory.rglob("*") if p.is_dir()
            ]
            try:
                shutil.rmtree(directory)
            except OSError as e:
                return FolderRemoval(False, folder, moved_notes=moved, reason="io-error", error=str(e))

            self._forget_icons(folder)

        logger.info("Removed folder %s; moved %d note(s) to %s", folder, moved, self._default_folder)
        self._notifier.publish(NOTES_UPDATED)
        return FolderRemoval(True, folder, moved_notes=moved, removed_folders=len(removed_paths))

    # -------------------------------------------------------------------------
    # Folder icons and tree
    # -------------------------------------------------------------------------

    def _load_icons(self) -> dict[str, str]:
        try:
            data = json.loads(self._icons_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Unreadable folder icon table %s: %s", self._icons_path, e)
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _save_icons(self, icons: dict[str, str]) -> None:
        self._write_file(self._icons_path, json.dumps(icons, indent=2, ensure_ascii=False, sort_keys=True))

    def _forget_icons(self, folder: str) -> None:
        icons = self._load_icons()
        kept = {k: v for k, v in icons.items() if not is_within(k, folder)}
        if len(kept) != len(icons):
            self._save_icons(kept)

    def folder_icon(self, folder_path: str) -> str:
        """Icon for a folder, assigned once and cached."""
        folder = sanitize_folder_path(folder_path)
        if not folder or folder in BUILTIN_FOLDERS:
            return folder_icon_for(folder)
        with self._lock:
            icons = self._load_icons()
            if folder not in icons:
                icons[folder] = folder_icon_for(folder)
                self._save_icons(icons)
            return icons[folder]

    def migrate_folder_icons(self) -> int:
        """Assign icons to folders lacking one. Existing entries never change."""
        with self._lock:
            icons = self._load_icons()
            assigned = 0
            for folder in self.folders():
                if folder not in icons:
                    icons[folder] = folder_icon_for(folder)
                    assigned += 1
            if assigned:
                self._save_icons(icons)
        if assigned:
            logger.info("Assigned icons to %d folder(s)", assigned)
        return assigned

    def tree(self) -> FolderNode:
        """Nested folder tree with icons and the ids of notes in each folder."""
        self.migrate_folder_icons()
        icons = self._load_icons()

        def icon(folder: str) -> str:
            if folder in BUILTIN_FOLDERS or not folder:
                return folder_icon_for(folder)
            return icons.get(folder) or folder_icon_for(folder)

        root = FolderNode(path="", name="", icon=ROOT_ICON, builtin=True)
        nodes = {"": root}

        def node_for(folder: str) -> FolderNode:
            if folder in nodes:
                return nodes[folder]
            parent_path, _, name = folder.rpartition("/")
            node = FolderNode(path=folder, name=name, icon=icon(folder), builtin=self.is_builtin(folder))
            node_for(parent_path).children.append(node)
            nodes[folder] = node
            return node

        for folder in self.folders():
            node_for(folder)
        for note in self.list():
            node_for(note.folder_path).notes.append(note.id)

        builtin_order = list(BUILTIN_FOLDERS)

        def sort_children(node: FolderNode) -> None:
            node.children.sort(key=lambda c: (
                builtin_order.index(c.path) if c.path in builtin_order else len(builtin_order),
                c.name.lower(),
            ))
            for child in node.children:
                sort_children(child)

        sort_children(root)
        return root
