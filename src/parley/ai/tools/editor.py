"""Editor surface consumed by the built-in tools.

Built-in tools never talk to a concrete editor. They go through
:class:`EditorHost`, which an embedding application implements. The CLI uses
:class:`HeadlessEditorHost`: the working directory is the project, nothing is
open and confirmations are delegated to a callable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol, Sequence, runtime_checkable

__all__ = [
    "CursorInfo",
    "EditorHost",
    "HeadlessEditorHost",
    "NoActiveEditorError",
    "NoWorkspaceError",
    "SelectionInfo",
]

LOGGER = logging.getLogger(__name__)


class NoWorkspaceError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("No workspace is open")


class NoActiveEditorError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("No active editor")


@dataclass(slots=True, frozen=True)
class SelectionInfo:
    """Selection in the active document: column offsets on ``line``."""

    start: int
    end: int
    text: str
    line: int


@dataclass(slots=True, frozen=True)
class CursorInfo:
    line: int
    column: int
    totalLines: int


@runtime_checkable
class EditorHost(Protocol):
    """Capabilities the built-in tools need from the surrounding editor.

    Methods that need an active document raise :class:`NoActiveEditorError`
    when there is none; :meth:`project_root` raises :class:`NoWorkspaceError`.
    """

    def project_root(self) -> Path:
        ...

    def active_document(self) -> Path | None:
        ...

    def open_documents(self) -> Sequence[Path]:
        ...

    def selection(self) -> SelectionInfo:
        ...

    def current_line(self) -> str:
        ...

    def cursor(self) -> CursorInfo:
        ...

    def open_document(self, path: Path) -> None:
        ...

    def confirm(self, prompt: str) -> bool:
        """Ask the user to approve a mutating action. Synchronous."""
        ...


@dataclass
class HeadlessEditorHost:
    """Editor host for terminal use.

    Documents "opened" through :meth:`open_document` are remembered and the
    most recent one becomes active, with the cursor at its first line.
    ``confirm_callback`` answers write confirmations; without one every
    mutating action is declined.
    """

    root: Path = field(default_factory=Path.cwd)
    confirm_callback: Callable[[str], bool] | None = None
    _opened: list[Path] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self.root = Path(self.root).expanduser().resolve()

    def project_root(self) -> Path:
        if not self.root.is_dir():
            raise NoWorkspaceError()
        return self.root

    def active_document(self) -> Path | None:
        return self._opened[-1] if self._opened else None

    def open_documents(self) -> Sequence[Path]:
        return list(self._opened)

    def selection(self) -> SelectionInfo:
        self._require_active()
        return SelectionInfo(start=0, end=0, text="", line=0)

    def current_line(self) -> str:
        lines = self._active_lines()
        return lines[0] if lines else ""

    def cursor(self) -> CursorInfo:
        lines = self._active_lines()
        return CursorInfo(line=0, column=0, totalLines=max(1, len(lines)))

    def open_document(self, path: Path) -> None:
        resolved = Path(path).resolve()
        if not resolved.is_file():
            raise FileNotFoundError(f"No such file: {resolved}")
        if resolved in self._opened:
            self._opened.remove(resolved)
        self._opened.append(resolved)
        LOGGER.info("Opened document %s", resolved)

    def confirm(self, prompt: str) -> bool:
        if self.confirm_callback is None:
            LOGGER.info("Declined without a confirmation handler: %s", prompt)
            return False
        return bool(self.confirm_callback(prompt))

    def _require_active(self) -> Path:
        active = self.active_document()
        if active is None:
            raise NoActiveEditorError()
        return active

    def _active_lines(self) -> list[str]:
        active = self._require_active()
        with open(active, "r", encoding="utf-8", errors="replace", newline="") as handle:
            text = handle.read()
        return text.splitlines() or [""]

