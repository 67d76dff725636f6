"""Filesystem operations behind the built-in file tools.

These functions are host-agnostic: confirmation and path resolution against
the project root happen in :mod:`parley.ai.tools.builtin`. ``OSError`` is
left to propagate; the tool catalog turns it into a failed tool result.
"""

from __future__ import annotations

import difflib
import fnmatch
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from ...errors import InvalidToolArgumentsError, ToolExecutionError

LOGGER = logging.getLogger(__name__)

MAX_READ_BYTES = 2_000_000
MAX_SEARCH_RESULTS = 200
_SKIPPED_DIRS = frozenset({".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv"})


def resolve_path(raw: str, root: Path) -> Path:
    """Absolute paths are kept; relative ones are taken from ``root``."""
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidToolArgumentsError("A non-empty path is required")
    candidate = Path(raw.strip()).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    return candidate.resolve()


def read_directory(path: Path) -> list[str]:
    entries = sorted(os.scandir(path), key=lambda entry: entry.name.lower())
    return [
        f"[dir] {entry.name}" if entry.is_dir() else f"[file] {entry.name}"
        for entry in entries
    ]


def read_file(path: Path) -> str:
    size = path.stat().st_size
    if size > MAX_READ_BYTES:
        raise ToolExecutionError(f"File is too large to read ({size} bytes): {path}")
    with open(path, "r", encoding="utf-8", errors="replace", newline="") as handle:
        return handle.read()


def write_file(path: Path, data: str) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as handle:
        handle.write(data)
    LOGGER.info("Wrote %d character(s) to %s", len(data), path)
    return f"File written: {path}"


def delete_path(path: Path, *, recursive: bool = False) -> str:
    if path.is_dir() and not path.is_symlink():
        if recursive:
            shutil.rmtree(path)
        else:
            path.rmdir()
    else:
        path.unlink()
    LOGGER.info("Deleted %s", path)
    return f"Deleted: {path}"


def rename_path(source: Path, target: Path, *, overwrite: bool = False) -> str:
    if not source.exists():
        raise FileNotFoundError(f"No such file or directory: {source}")
    if target.exists() and not overwrite:
        raise FileExistsError(f"Target already exists: {target}")
    target.parent.mkdir(parents=True, exist_ok=True)
    os.replace(source, target)
    return f"Renamed {source} -> {target}"


def create_directory(path: Path) -> str:
    path.mkdir(parents=True, exist_ok=True)
    return f"Directory ready: {path}"


def file_info(path: Path) -> dict[str, Any]:
    stat = path.stat()
    kind = "directory" if path.is_dir() else "file" if path.is_file() else "other"
    return {
        "path": str(path),
        "name": path.name,
        "type": kind,
        "size": stat.st_size,
        "modified": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
        "created": datetime.fromtimestamp(stat.st_ctime, timezone.utc).isoformat(),
    }


def copy_path(source: Path, target: Path, *, overwrite: bool = False) -> str:
    if target.exists() and not overwrite:
        raise FileExistsError(f"Target already exists: {target}")
    target.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, target, dirs_exist_ok=overwrite)
    else:
        shutil.copy2(source, target)
    return f"Copied {source} -> {target}"


def _walk_files(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIPPED_DIRS)
        for name in sorted(filenames):
            yield Path(dirpath) / name


def search_files(
    root: Path,
    *,
    pattern: str = "*",
    query: str | None = None,
    case_sensitive: bool = False,
    max_results: int = MAX_SEARCH_RESULTS,
) -> list[dict[str, Any]]:
    """Find files whose name matches ``pattern``; with ``query``, matching lines too."""

    limit = max(1, min(int(max_results), MAX_SEARCH_RESULTS))
    needle = query if case_sensitive or query is None else query.lower()
    results: list[dict[str, Any]] = []
    for path in _walk_files(root):
        relative = path.relative_to(root).as_posix()
        if not (fnmatch.fnmatch(path.name, pattern) or fnmatch.fnmatch(relative, pattern)):
            continue
        if needle is None:
            results.append({"path": relative})
        else:
            for number, line in _matching_lines(path, needle, case_sensitive):
                results.append({"path": relative, "line": number, "text": line})
                if len(results) >= limit:
                    break
        if len(results) >= limit:
            break
    return results


def _matching_lines(path: Path, needle: str, case_sensitive: bool) -> Iterator[tuple[int, str]]:
    try:
        if path.stat().st_size > MAX_READ_BYTES:
            return
        with open(path, "r", encoding="utf-8", errors="strict") as handle:
            for number, line in enumerate(handle, start=1):
                haystack = line if case_sensitive else line.lower()
                if needle in haystack:
                    yield number, line.rstrip("\r\n")
    except (UnicodeDecodeError, OSError):
        # Binary or unreadable files are not searchable.
        return


@dataclass(slots=True, frozen=True)
class TextEdit:
    old_text: str
    new_text: str
    replace_all: bool = False

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], position: int) -> TextEdit:
        old_text = payload.get("oldText")
        new_text = payload.get("newText")
        if not isinstance(old_text, str) or not old_text:
            raise InvalidToolArgumentsError(f"Edit {position}: 'oldText' must be a non-empty string")
        if not isinstance(new_text, str):
            raise InvalidToolArgumentsError(f"Edit {position}: 'newText' must be a string")
        return cls(old_text=old_text, new_text=new_text, replace_all=bool(payload.get("replaceAll", False)))


def apply_text_edits(text: str, edits: Sequence[TextEdit]) -> tuple[str, int]:
    """Apply substring edits in order; every ``old_text`` must be present."""
    total = 0
    for position, edit in enumerate(edits):
        count = text.count(edit.old_text)
        if count == 0:
            raise ToolExecutionError(f"Edit {position}: text not found: {edit.old_text[:80]!r}")
        if edit.replace_all:
            text = text.replace(edit.old_text, edit.new_text)
            total += count
        else:
            text = text.replace(edit.old_text, edit.new_text, 1)
            total += 1
    return text, total


def unified_diff(original: str, updated: str, filename: str) -> str:
    diff = difflib.unified_diff(
        original.splitlines(keepends=True),
        updated.splitlines(keepends=True),
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
        n=3,
    )
    return "".join(diff)
