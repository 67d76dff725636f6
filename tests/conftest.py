"""Shared pytest fixtures."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest

from parley.ai.orchestration import ChatEvent


class RecordingSink:
    """Event sink that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[ChatEvent] = []

    def __call__(self, event: ChatEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]

    @property
    def content(self) -> str:
        return "".join(event.content for event in self.events if event.kind == "content")

    @property
    def terminal(self) -> list[ChatEvent]:
        return [event for event in self.events if event.is_terminal]


def sse(*records: Any, done: bool = True) -> str:
    """Render records as a chat-completions SSE body."""
    lines = [f"data: {json.dumps(record, ensure_ascii=False)}\n\n" for record in records]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("PARLEY_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "README.md").write_text("# Demo\nhello world\n", encoding="utf-8")
    (root / "src" / "app.py").write_text("print('hello')\nvalue = 1\n", encoding="utf-8")
    return root


@pytest.fixture
def sse_body():
    return sse
