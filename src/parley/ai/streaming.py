"""Incremental parser for chat-completions Server-Sent-Events streams.

The assembler is fed raw transport chunks in arrival order. It buffers
partial lines across chunks, decodes each ``data:`` record, forwards content
deltas to a callback immediately and accumulates tool-call fragments per slot
index until the stream finishes.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .orchestration.types import ModelResponse, ToolCallIntent, fallback_call_id

__all__ = ["StreamAssembler", "DONE_SENTINEL"]

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
_DATA_PREFIX = "data:"


@dataclass(slots=True)
class _ToolCallSlot:
    """Accumulator for one tool call reassembled from stream fragments."""

    index: int
    call_id: str = ""
    name_parts: list[str] = field(default_factory=list)
    argument_parts: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.call_id or any(self.name_parts) or any(self.argument_parts))

    def to_intent(self) -> ToolCallIntent:
        call_id = self.call_id or fallback_call_id(self.index)
        return ToolCallIntent(
            id=call_id,
            name="".join(self.name_parts),
            arguments_json="".join(self.argument_parts),
            index=self.index,
        )


class StreamAssembler:
    """Reassembles one streamed model reply.

    Example:
        assembler = StreamAssembler(on_content=print)
        async for chunk in response.aiter_bytes():
            assembler.feed(chunk)
            if assembler.done:
                break
        reply = assembler.finish()
    """

    def __init__(self, on_content: Callable[[str], None] | None = None) -> None:
        self._on_content = on_content
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._content_parts: list[str] = []
        self._slots: dict[int, _ToolCallSlot] = {}
        self._finish_reason: str | None = None
        self._done = False
        self._skipped = 0

    @property
    def done(self) -> bool:
        """True once the ``[DONE]`` sentinel has been read."""
        return self._done

    @property
    def content(self) -> str:
        return "".join(self._content_parts)

    @property
    def skipped_records(self) -> int:
        """Number of malformed records dropped so far."""
        return self._skipped

    @property
    def has_tool_calls(self) -> bool:
        return any(not slot.is_empty for slot in self._slots.values())

    def feed(self, chunk: bytes | str) -> None:
        """Consume one transport chunk, processing every complete line in it."""
        if self._done or not chunk:
            return
        text = self._decoder.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        self._buffer += text
        while not self._done:
            newline = self._buffer.find("\n")
            if newline < 0:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            self._process_line(line)

    def finish(self) -> ModelResponse:
        """Flush any buffered tail and return the assembled reply."""
        if not self._done:
            self._buffer += self._decoder.decode(b"", final=True)
            tail, self._buffer = self._buffer, ""
            if tail.strip():
                self._process_line(tail)
        tool_calls = tuple(
            self._slots[index].to_intent()
            for index in sorted(self._slots)
            if not self._slots[index].is_empty
        )
        if self._skipped:
            LOGGER.debug("Stream finished with %d malformed record(s) skipped", self._skipped)
        return ModelResponse(
            text=self.content,
            tool_calls=tool_calls,
            finish_reason=self._finish_reason,
        )

    # ------------------------------------------------------------------
    # Record handling
    # ------------------------------------------------------------------
    def _process_line(self, raw_line: str) -> None:
        line = raw_line.rstrip("\r")
        if not line.strip() or not line.startswith(_DATA_PREFIX):
            # Blank separators, comments and event/id fields carry nothing we use.
            return
        data = line[len(_DATA_PREFIX) :]
        if data.startswith(" "):
            data = data[1:]
        if data.strip() == DONE_SENTINEL:
            self._done = True
            return
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            self._skipped += 1
            LOGGER.warning("Skipping malformed stream record (%s): %.200s", exc, data)
            return
        if not isinstance(payload, Mapping):
            self._skipped += 1
            LOGGER.warning("Skipping non-object stream record: %.200s", data)
            return
        if "error" in payload:
            self._skipped += 1
            LOGGER.warning("Stream record carried an error payload: %s", payload.get("error"))
            return
        for choice in payload.get("choices") or ():
            if isinstance(choice, Mapping):
                self._apply_choice(choice)

    def _apply_choice(self, choice: Mapping[str, Any]) -> None:
        finish_reason = choice.get("finish_reason")
        if finish_reason:
            self._finish_reason = str(finish_reason)
        delta = choice.get("delta")
        if not isinstance(delta, Mapping):
            return
        content = delta.get("content")
        if isinstance(content, str) and content:
            self._content_parts.append(content)
            if self._on_content is not None:
                self._on_content(content)
        fragments = delta.get("tool_calls")
        if not isinstance(fragments, list):
            return
        for position, fragment in enumerate(fragments):
            if isinstance(fragment, Mapping):
                self._apply_tool_fragment(fragment, position)

    def _apply_tool_fragment(self, fragment: Mapping[str, Any], position: int) -> None:
        raw_index = fragment.get("index")
        index = raw_index if isinstance(raw_index, int) else position
        slot = self._slots.get(index)
        if slot is None:
            slot = self._slots[index] = _ToolCallSlot(index=index)
        call_id = fragment.get("id")
        if isinstance(call_id, str) and call_id:
            slot.call_id = call_id
        function = fragment.get("function")
        if not isinstance(function, Mapping):
            return
        name = function.get("name")
        if isinstance(name, str) and name:
            slot.name_parts.append(name)
        arguments = function.get("arguments")
        if isinstance(arguments, str) and arguments:
            slot.argument_parts.append(arguments)
