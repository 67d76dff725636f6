"""Tests for the incremental SSE stream assembler."""

from __future__ import annotations

import json

import pytest

from parley.ai.streaming import StreamAssembler


def _content(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def _tool_fragment(index: int, *, call_id: str | None = None, name: str | None = None, arguments: str | None = None) -> dict:
    fragment: dict = {"index": index}
    if call_id is not None:
        fragment["id"] = call_id
    function: dict = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    if function:
        fragment["function"] = function
    return {"choices": [{"index": 0, "delta": {"tool_calls": [fragment]}}]}


def _finish(reason: str) -> dict:
    return {"choices": [{"index": 0, "delta": {}, "finish_reason": reason}]}


def _assemble(body: bytes, chunk_size: int) -> tuple[StreamAssembler, list[str]]:
    deltas: list[str] = []
    assembler = StreamAssembler(on_content=deltas.append)
    for start in range(0, len(body), chunk_size):
        assembler.feed(body[start : start + chunk_size])
    return assembler, deltas


class TestContentAssembly:
    """Plain content deltas."""

    def test_content_deltas_are_concatenated_and_forwarded(self, sse_body):
        """Each delta reaches the callback in order and the text is joined."""
        body = sse_body(_content("Hel"), _content("lo"), _content(" world"), _finish("stop")).encode()
        assembler, deltas = _assemble(body, len(body))

        reply = assembler.finish()

        assert deltas == ["Hel", "lo", " world"]
        assert reply.text == "Hello world"
        assert reply.tool_calls == ()
        assert reply.finish_reason == "stop"
        assert assembler.done is True

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 5, 7, 13, 64])
    def test_result_is_independent_of_chunk_boundaries(self, sse_body, chunk_size):
        """Splitting anywhere, including inside 'data: ' and multi-byte characters, changes nothing."""
        body = sse_body(
            _content("Grüße "),
            _content("✓ done"),
            _tool_fragment(0, call_id="call_a", name="readFile", arguments='{"filePath": '),
            _tool_fragment(0, arguments='"a.txt"}'),
            _finish("tool_calls"),
        ).encode("utf-8")
        whole, whole_deltas = _assemble(body, len(body))
        split, split_deltas = _assemble(body, chunk_size)

        expected = whole.finish()
        actual = split.finish()

        assert actual == expected
        assert "".join(split_deltas) == "".join(whole_deltas) == "Grüße ✓ done"

    def test_crlf_lines_and_comments_are_tolerated(self):
        """Carriage returns are stripped; comment and event lines are ignored."""
        body = (
            ": keep-alive\r\n"
            "event: message\r\n"
            f"data: {json.dumps(_content('ok'))}\r\n"
            "\r\n"
            "data: [DONE]\r\n"
        )
        assembler = StreamAssembler()
        assembler.feed(body)

        assert assembler.finish().text == "ok"
        assert assembler.skipped_records == 0

    def test_data_without_space_after_colon(self):
        assembler = StreamAssembler()
        assembler.feed(f"data:{json.dumps(_content('tight'))}\n\ndata:[DONE]\n\n")

        assert assembler.finish().text == "tight"
        assert assembler.done


class TestMalformedRecords:
    """Records that cannot be decoded are skipped."""

    def test_malformed_json_is_skipped_and_stream_continues(self):
        body = (
            f"data: {json.dumps(_content('a'))}\n\n"
            "data: {not json\n\n"
            f"data: {json.dumps(_content('b'))}\n\n"
            "data: [DONE]\n\n"
        )
        assembler = StreamAssembler()
        assembler.feed(body.encode())

        reply = assembler.finish()

        assert reply.text == "ab"
        assert assembler.skipped_records == 1

    def test_non_object_and_error_records_are_skipped(self):
        body = (
            "data: [1, 2, 3]\n\n"
            'data: {"error": {"message": "overloaded"}}\n\n'
            f"data: {json.dumps(_content('fine'))}\n\n"
        )
        assembler = StreamAssembler()
        assembler.feed(body)

        assert assembler.finish().text == "fine"
        assert assembler.skipped_records == 2


class TestTermination:
    """The DONE sentinel and streams that end without it."""

    def test_records_after_done_are_ignored(self, sse_body):
        body = sse_body(_content("before")) + f"data: {json.dumps(_content('after'))}\n\n"
        deltas: list[str] = []
        assembler = StreamAssembler(on_content=deltas.append)
        assembler.feed(body)

        assert assembler.finish().text == "before"
        assert deltas == ["before"]

    def test_missing_done_flushes_trailing_record(self):
        """A final record without a newline is processed by finish()."""
        assembler = StreamAssembler()
        assembler.feed(f"data: {json.dumps(_content('one'))}\n\n")
        assembler.feed(f"data: {json.dumps(_content(' two'))}")

        assert assembler.content == "one"
        reply = assembler.finish()

        assert reply.text == "one two"
        assert assembler.done is False

    def test_empty_stream_yields_empty_reply(self):
        reply = StreamAssembler().finish()

        assert reply.text == ""
        assert reply.tool_calls == ()
        assert reply.finish_reason is None


class TestToolCallSlots:
    """Tool-call fragments accumulate per slot index."""

    def test_interleaved_slots_are_assembled_in_index_order(self, sse_body):
        body = sse_body(
            _tool_fragment(1, call_id="call_b", name="getProjectPath", arguments=""),
            _tool_fragment(0, call_id="call_a", name="read", arguments='{"file'),
            _tool_fragment(0, name="File", arguments='Path": "x"}'),
            _tool_fragment(1, arguments="{}"),
            _finish("tool_calls"),
        )
        assembler = StreamAssembler()
        assembler.feed(body)

        reply = assembler.finish()

        assert [call.index for call in reply.tool_calls] == [0, 1]
        first, second = reply.tool_calls
        assert first.id == "call_a"
        assert first.name == "readFile"
        assert json.loads(first.arguments_json) == {"filePath": "x"}
        assert second.id == "call_b"
        assert second.name == "getProjectPath"
        assert second.arguments_json == "{}"
        assert assembler.has_tool_calls

    def test_missing_call_id_is_generated(self, sse_body):
        assembler = StreamAssembler()
        assembler.feed(sse_body(_tool_fragment(0, name="getCursorInfo", arguments="{}")))

        (call,) = assembler.finish().tool_calls

        assert call.id.startswith("call_0_")
        assert call.name == "getCursorInfo"

    def test_fragment_without_index_uses_its_position(self):
        record = {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [
                            {"id": "c0", "function": {"name": "a", "arguments": "{}"}},
                            {"id": "c1", "function": {"name": "b", "arguments": "{}"}},
                        ]
                    }
                }
            ]
        }
        assembler = StreamAssembler()
        assembler.feed(f"data: {json.dumps(record)}\n\n")

        reply = assembler.finish()

        assert [(call.id, call.name, call.index) for call in reply.tool_calls] == [("c0", "a", 0), ("c1", "b", 1)]

    def test_content_and_tool_calls_in_same_reply(self, sse_body):
        assembler = StreamAssembler()
        assembler.feed(
            sse_body(
                _content("Let me check."),
                _tool_fragment(0, call_id="call_1", name="getProjectPath", arguments="{}"),
            )
        )

        reply = assembler.finish()

        assert reply.text == "Let me check."
        assert reply.has_tool_calls
