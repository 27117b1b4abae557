"""Path utilities for expanding, sizing and atomically replacing filesystem entries."""

import json
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Any


def expand_path(path: str) -> Path:
    """Expand and normalize a path, resolving ~ and relative paths.

    Args:
        path: Path string that may contain ~ or be relative

    Returns:
        Absolute Path object
    """
    return Path(path).expanduser().resolve()


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        The path that was ensured
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def dir_size(path: Path) -> int:
    """Calculate the total size in bytes of all files below a directory.

    Entries that vanish or cannot be read while walking are ignored, so this
    is safe to call on directories that another process may be modifying.
    """
    total = 0
    for root, _dirs, files in os.walk(path, onerror=lambda _e: None):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def format_size(num_bytes: int) -> str:
    """Format a byte count as a human-readable string (e.g. ``1.5 MB``)."""
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024

    if num_bytes >= gb:
        return f"{num_bytes / gb:.1f} GB"
    if num_bytes >= mb:
        return f"{num_bytes / mb:.1f} MB"
    if num_bytes >= kb:
        return f"{num_bytes / kb:.1f} KB"
    return f"{num_bytes} B"


TEMP_MARKERS = (".tmp-", ".old-")


def is_temp_name(name: str) -> bool:
    """Report whether a directory name belongs to an in-flight or abandoned operation."""
    return name.startswith(".") and any(marker in name for marker in TEMP_MARKERS)


def make_temp_dir(parent: Path, name: str) -> Path:
    """Create a hidden temporary directory next to its final location.

    Keeping the temporary directory on the same filesystem as ``parent / name``
    makes the final ``os.rename`` atomic.
    """
    ensure_dir(parent)
    return Path(tempfile.mkdtemp(prefix=f".{name}.tmp-", dir=parent))


def swap_dir(new: Path, target: Path) -> None:
    """Move ``new`` into place at ``target``, replacing any existing directory.

    The previous directory is first renamed aside, then ``new`` is renamed
    into place, then the old copy is removed. Readers only ever observe the
    old tree, no tree, or the new tree.
    """
    if not os.path.lexists(target):
        os.rename(new, target)
        return

    trash = _trash_name(target)
    os.rename(target, trash)
    try:
        os.rename(new, target)
    except OSError:
        os.rename(trash, target)
        raise
    _delete(trash)


def remove_dir(path: Path) -> None:
    """Delete a directory so that it disappears atomically.

    The directory is renamed to a hidden sibling first and removed from
    there, so an interrupted delete never leaves a half-removed entry under
    its real name.
    """
    trash = _trash_name(path)
    os.rename(path, trash)
    _delete(trash)


def _trash_name(path: Path) -> Path:
    return path.parent / f".{path.name}.old-{uuid.uuid4().hex[:8]}"


def _delete(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
    else:
        path.unlink(missing_ok=True)


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write a JSON document by writing a sibling file and renaming it over ``path``."""
    tmp_path = path.parent / f".{path.name}.{uuid.uuid4().hex[:8]}.tmp"
    try:
        tmp_path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)
