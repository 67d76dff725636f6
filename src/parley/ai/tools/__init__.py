"""Built-in tools exposed to the model."""

from .builtin import BUILTIN_TOOL_NAMES, BuiltinTools, register_builtin_tools
from .editor import CursorInfo, EditorHost, HeadlessEditorHost, SelectionInfo

__all__ = [
    "BUILTIN_TOOL_NAMES",
    "BuiltinTools",
    "CursorInfo",
    "EditorHost",
    "HeadlessEditorHost",
    "SelectionInfo",
    "register_builtin_tools",
]
