"""Built-in editor and filesystem tools.

Tool and parameter names are camelCase and never contain an underscore, so a
built-in name can not be mistaken for a ``<provider>_<tool>`` wire name.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Callable, Mapping

from ...errors import InvalidToolArgumentsError, ToolDeclinedError, ToolExecutionError
from ..orchestration.tools import ToolCatalog, ToolSpec
from . import filesystem
from .editor import EditorHost

__all__ = ["BUILTIN_TOOL_NAMES", "BuiltinTools", "register_builtin_tools"]

LOGGER = logging.getLogger(__name__)


def _schema(properties: Mapping[str, Any] | None = None, required: tuple[str, ...] = ()) -> dict[str, Any]:
    return {"type": "object", "properties": dict(properties or {}), "required": list(required)}


def _string(description: str) -> dict[str, str]:
    return {"type": "string", "description": description}


def _boolean(description: str) -> dict[str, str]:
    return {"type": "boolean", "description": description}


_PATH_HINT = "Absolute path, or a path relative to the project root"

SPECS: tuple[ToolSpec, ...] = (
    ToolSpec("getProjectPath", "Return the absolute path of the open project", _schema()),
    ToolSpec(
        "readDirectory",
        "List the files and folders inside a directory",
        _schema({"dirPath": _string(_PATH_HINT)}, ("dirPath",)),
    ),
    ToolSpec(
        "readFile",
        "Read the text content of a file",
        _schema({"filePath": _string(_PATH_HINT)}, ("filePath",)),
    ),
    ToolSpec(
        "writeFile",
        "Write content to a file, creating it and its parent folders if needed",
        _schema(
            {"filePath": _string(_PATH_HINT), "fileData": _string("Content to write")},
            ("filePath", "fileData"),
        ),
        is_write=True,
    ),
    ToolSpec("getCurrentFilePath", "Return the absolute path of the file in the active editor", _schema()),
    ToolSpec("getAllOpenFiles", "Return the absolute paths of all open files", _schema()),
    ToolSpec(
        "getCurrentSelection",
        "Return the selected text with its start/end columns and line",
        _schema(),
    ),
    ToolSpec("getCurrentLineContent", "Return the full text of the line under the cursor", _schema()),
    ToolSpec(
        "getCursorInfo",
        "Return the cursor position (line, column) and the total line count",
        _schema(),
    ),
    ToolSpec(
        "openFileToEdit",
        "Open a file in the editor",
        _schema({"filePath": _string(_PATH_HINT)}, ("filePath",)),
    ),
    ToolSpec(
        "deleteFile",
        "Delete a file or directory",
        _schema(
            {
                "filePath": _string(_PATH_HINT),
                "recursive": _boolean("Delete a non-empty directory and everything in it"),
            },
            ("filePath",),
        ),
        is_write=True,
    ),
    ToolSpec(
        "renameFile",
        "Rename or move a file or directory",
        _schema(
            {
                "oldPath": _string(_PATH_HINT),
                "newPath": _string(_PATH_HINT),
                "overwrite": _boolean("Replace the target if it exists"),
            },
            ("oldPath", "newPath"),
        ),
        is_write=True,
    ),
    ToolSpec(
        "createDirectory",
        "Create a directory and any missing parents",
        _schema({"dirPath": _string(_PATH_HINT)}, ("dirPath",)),
        is_write=True,
    ),
    ToolSpec(
        "getFileInfo",
        "Return type, size and timestamps of a file or directory",
        _schema({"filePath": _string(_PATH_HINT)}, ("filePath",)),
    ),
    ToolSpec(
        "copyFile",
        "Copy a file or directory",
        _schema(
            {
                "sourcePath": _string(_PATH_HINT),
                "targetPath": _string(_PATH_HINT),
                "overwrite": _boolean("Replace the target if it exists"),
            },
            ("sourcePath", "targetPath"),
        ),
        is_write=True,
    ),
    ToolSpec(
        "searchFiles",
        "Find files by glob pattern under the project, optionally listing lines containing a query",
        _schema(
            {
                "pattern": _string("Glob matched against file names and relative paths, e.g. *.py"),
                "query": _string("Text to look for inside matching files"),
                "dirPath": _string("Directory to search; defaults to the project root"),
                "caseSensitive": _boolean("Match the query case-sensitively"),
                "maxResults": {"type": "integer", "description": "Maximum number of results"},
            },
        ),
    ),
    ToolSpec(
        "replaceInFile",
        "Apply one or more substring replacements to a file; dryRun returns a diff without writing",
        _schema(
            {
                "filePath": _string(_PATH_HINT),
                "edits": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "oldText": _string("Exact text to replace"),
                            "newText": _string("Replacement text"),
                            "replaceAll": _boolean("Replace every occurrence instead of the first"),
                        },
                        "required": ["oldText", "newText"],
                    },
                },
                "dryRun": _boolean("Preview the change as a unified diff without writing"),
            },
            ("filePath", "edits"),
        ),
        is_write=True,
    ),
)

BUILTIN_TOOL_NAMES: tuple[str, ...] = tuple(spec.name for spec in SPECS)


class BuiltinTools:
    """Handlers for the built-in tools, bound to one editor host."""

    def __init__(self, host: EditorHost) -> None:
        self._host = host

    def handlers(self) -> dict[str, Callable[[Mapping[str, Any]], Any]]:
        return {
            "getProjectPath": self.get_project_path,
            "readDirectory": self.read_directory,
            "readFile": self.read_file,
            "writeFile": self.write_file,
            "getCurrentFilePath": self.get_current_file_path,
            "getAllOpenFiles": self.get_all_open_files,
            "getCurrentSelection": self.get_current_selection,
            "getCurrentLineContent": self.get_current_line_content,
            "getCursorInfo": self.get_cursor_info,
            "openFileToEdit": self.open_file_to_edit,
            "deleteFile": self.delete_file,
            "renameFile": self.rename_file,
            "createDirectory": self.create_directory,
            "getFileInfo": self.get_file_info,
            "copyFile": self.copy_file,
            "searchFiles": self.search_files,
            "replaceInFile": self.replace_in_file,
        }

    # ------------------------------------------------------------------
    # Editor state
    # ------------------------------------------------------------------
    def get_project_path(self, args: Mapping[str, Any]) -> str:
        return str(self._host.project_root())

    def get_current_file_path(self, args: Mapping[str, Any]) -> str:
        active = self._host.active_document()
        if active is None:
            raise ToolExecutionError("No file is open", tool_name="getCurrentFilePath")
        return str(active)

    def get_all_open_files(self, args: Mapping[str, Any]) -> list[str]:
        return [str(path) for path in self._host.open_documents()]

    def get_current_selection(self, args: Mapping[str, Any]) -> dict[str, Any]:
        return dataclasses.asdict(self._host.selection())

    def get_current_line_content(self, args: Mapping[str, Any]) -> str:
        return self._host.current_line()

    def get_cursor_info(self, args: Mapping[str, Any]) -> dict[str, Any]:
        return dataclasses.asdict(self._host.cursor())

    def open_file_to_edit(self, args: Mapping[str, Any]) -> str:
        path = self._path(args, "filePath")
        self._host.open_document(path)
        return f"File opened: {path}"

    # ------------------------------------------------------------------
    # Filesystem
    # ------------------------------------------------------------------
    def read_directory(self, args: Mapping[str, Any]) -> list[str]:
        return filesystem.read_directory(self._path(args, "dirPath"))

    def read_file(self, args: Mapping[str, Any]) -> str:
        return filesystem.read_file(self._path(args, "filePath"))

    def write_file(self, args: Mapping[str, Any]) -> str:
        path = self._path(args, "filePath")
        data = args.get("fileData")
        if not isinstance(data, str):
            raise InvalidToolArgumentsError("'fileData' must be a string", tool_name="writeFile")
        self._confirm(f"Write {len(data)} character(s) to {path}?", "writeFile")
        return filesystem.write_file(path, data)

    def delete_file(self, args: Mapping[str, Any]) -> str:
        path = self._path(args, "filePath")
        self._confirm(f"Delete {path}?", "deleteFile")
        return filesystem.delete_path(path, recursive=bool(args.get("recursive", False)))

    def rename_file(self, args: Mapping[str, Any]) -> str:
        source = self._path(args, "oldPath")
        target = self._path(args, "newPath")
        self._confirm(f"Rename {source} to {target}?", "renameFile")
        return filesystem.rename_path(source, target, overwrite=bool(args.get("overwrite", False)))

    def create_directory(self, args: Mapping[str, Any]) -> str:
        return filesystem.create_directory(self._path(args, "dirPath"))

    def get_file_info(self, args: Mapping[str, Any]) -> dict[str, Any]:
        return filesystem.file_info(self._path(args, "filePath"))

    def copy_file(self, args: Mapping[str, Any]) -> str:
        return filesystem.copy_path(
            self._path(args, "sourcePath"),
            self._path(args, "targetPath"),
            overwrite=bool(args.get("overwrite", False)),
        )

    def search_files(self, args: Mapping[str, Any]) -> list[dict[str, Any]]:
        root = self._path(args, "dirPath") if args.get("dirPath") else self._host.project_root()
        query = args.get("query")
        return filesystem.search_files(
            root,
            pattern=str(args.get("pattern") or "*"),
            query=str(query) if query else None,
            case_sensitive=bool(args.get("caseSensitive", False)),
            max_results=int(args.get("maxResults") or filesystem.MAX_SEARCH_RESULTS),
        )

    def replace_in_file(self, args: Mapping[str, Any]) -> dict[str, Any]:
        path = self._path(args, "filePath")
        raw_edits = args.get("edits")
        if not isinstance(raw_edits, list) or not raw_edits:
            raise InvalidToolArgumentsError("'edits' must be a non-empty list", tool_name="replaceInFile")
        edits = [
            filesystem.TextEdit.from_mapping(edit if isinstance(edit, Mapping) else {}, position)
            for position, edit in enumerate(raw_edits)
        ]
        original = filesystem.read_file(path)
        updated, count = filesystem.apply_text_edits(original, edits)
        diff = filesystem.unified_diff(original, updated, path.name)
        if args.get("dryRun", False):
            return {"path": str(path), "replacements": count, "applied": False, "diff": diff}
        self._confirm(f"Apply {count} replacement(s) to {path}?", "replaceInFile")
        filesystem.write_file(path, updated)
        return {"path": str(path), "replacements": count, "applied": True, "diff": diff}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _path(self, args: Mapping[str, Any], key: str) -> Path:
        raw = args.get(key)
        if not isinstance(raw, str) or not raw.strip():
            raise InvalidToolArgumentsError(f"'{key}' is required")
        return filesystem.resolve_path(raw, self._host.project_root())

    def _confirm(self, prompt: str, tool_name: str) -> None:
        if not self._host.confirm(prompt):
            LOGGER.info("User declined %s", tool_name)
            raise ToolDeclinedError("User declined the change", tool_name=tool_name)


def register_builtin_tools(catalog: ToolCatalog, host: EditorHost) -> BuiltinTools:
    """Register every built-in tool against ``host``."""
    tools = BuiltinTools(host)
    handlers = tools.handlers()
    for spec in SPECS:
        catalog.register_function(spec, handlers[spec.name])
    return tools
