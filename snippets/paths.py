"""
Folder path sanitizing.

Every folder path supplied by a user or the agent goes through
sanitize_folder_path() before it touches the filesystem.
"""

import re
from pathlib import Path, PurePosixPath
from typing import Optional

from .errors import InvalidPath

_DRIVE_RE = re.compile(r'^[a-zA-Z]:')
_CONTROL_RE = re.compile(r'[\x00-\x1f\x7f]')


def sanitize_folder_path(path: Optional[str]) -> str:
    """
    Normalize a user-supplied folder path.

    Returns a trimmed, '/'-separated relative path with no leading or
    trailing slashes and no empty or '.' segments. Blank input is the root
    (""). Backslashes count as separators.

    Raises:
        InvalidPath: absolute paths, drive prefixes, '..' segments,
            hidden (dot-prefixed) folder names or control characters.
    """
    if path is None:
        return ""
    if not isinstance(path, str):
        raise InvalidPath(path, "folder path must be a string")

    raw = path.strip()
    if not raw:
        return ""
    if _CONTROL_RE.search(raw):
        raise InvalidPath(path, "folder path contains control characters")

    raw = raw.replace("\\", "/")
    if raw.startswith("/") or _DRIVE_RE.match(raw):
        raise InvalidPath(path, "folder path must be relative")

    segments = []
    for segment in raw.split("/"):
        segment = segment.strip()
        if segment in ("", "."):
            continue
        if segment == "..":
            raise InvalidPath(path, "folder path must not contain '..'")
        if segment.startswith("."):
            raise InvalidPath(path, "folder names must not start with '.'")
        segments.append(segment)

    return str(PurePosixPath(*segments)) if segments else ""


def resolve_folder(root: Path, folder_path: str) -> Path:
    """
    Absolute directory for a sanitized folder path under root.

    Raises InvalidPath if the result would land outside root (e.g. through a
    symlinked directory).
    """
    root = root.resolve()
    target = (root / folder_path).resolve() if folder_path else root
    if target != root and root not in target.parents:
        raise InvalidPath(folder_path, "folder path escapes the notes root")
    return target


def is_within(folder_path: str, parent: str) -> bool:
    """True if folder_path equals parent or is nested under it."""
    if not parent:
        return True
    return folder_path == parent or folder_path.startswith(parent + "/")
