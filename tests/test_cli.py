"""Tests for the terminal front-end."""

from __future__ import annotations

import asyncio
import io
import threading
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any

import pytest

from parley import cli
from parley.ai.orchestration import ChatEvent, ModelResponse
from parley.ai.tools import HeadlessEditorHost
from parley.services.provider_registry import ProviderRegistry
from parley.services.providers import parse_provider_configs
from parley.services.settings import Settings
from parley.session import ChatSession


class QuietClient:
    async def complete(self, messages, tools=None, *, config=None) -> ModelResponse:
        return ModelResponse(text="ok")

    async def stream(self, messages, tools=None, *, on_content=None, config=None) -> ModelResponse:
        return ModelResponse(text="ok")


class EmptySession:
    async def list_tools(self) -> Any:
        return SimpleNamespace(tools=[])

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        return {}


@asynccontextmanager
async def empty_opener(config):
    yield EmptySession()


@pytest.fixture
def session(tmp_path) -> ChatSession:
    servers = [{"name": "files", "type": "stdio", "stdio": {"command": "srv"}}]
    registry = ProviderRegistry(parse_provider_configs(servers), session_opener=empty_opener)
    return ChatSession(
        Settings(api_key="k", mcp_servers=servers),
        host=HeadlessEditorHost(root=tmp_path),
        client=QuietClient(),
        registry=registry,
    )


class TestArguments:
    def test_overrides_from_flags(self):
        args = cli.build_parser().parse_args(
            ["--model", "m", "--base-url", "http://h/v1", "--no-stream", "--no-tools", "--system", "Be nice", "--debug"]
        )

        assert cli._cli_overrides(args) == {
            "model": "m",
            "base_url": "http://h/v1",
            "system_prompt": "Be nice",
            "enable_stream": False,
            "enable_tools": False,
            "debug_logging": True,
        }

    def test_no_flags_no_overrides(self):
        args = cli.build_parser().parse_args([])

        assert cli._cli_overrides(args) == {}
        assert args.mcp == []

    def test_repeatable_mcp_flag(self):
        args = cli.build_parser().parse_args(["--mcp", "files", "--mcp", "web"])

        assert args.mcp == ["files", "web"]

    @pytest.mark.parametrize(("value", "expected"), [("1", True), ("yes", True), ("off", False), ("", False)])
    def test_env_flag(self, monkeypatch, value, expected):
        monkeypatch.setenv("PARLEY_DEBUG", value)

        assert cli._env_flag("PARLEY_DEBUG") is expected


class TestTerminalSink:
    def test_renders_content_progress_and_errors(self):
        out, err = io.StringIO(), io.StringIO()
        sink = cli.TerminalSink(out, err)

        sink(ChatEvent.turn_start())
        sink(ChatEvent.delta("Hel"))
        sink(ChatEvent.delta("lo"))
        sink(ChatEvent.tool_progress(["readFile", "files_find"]))
        sink(ChatEvent.delta("Done."))
        sink(ChatEvent.failure("Request cancelled"))

        assert out.getvalue() == "Hello\n[Running tools: readFile, files_find]\nDone.\n"
        assert err.getvalue() == "[error] Request cancelled\n"

    def test_turn_end_closes_line(self):
        out = io.StringIO()
        sink = cli.TerminalSink(out, io.StringIO())

        sink(ChatEvent.delta("answer"))
        sink(ChatEvent.turn_end("answer"))

        assert out.getvalue() == "answer\n"


class TestCommands:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["/quit", "/exit"])
    async def test_quit(self, session, command):
        assert await cli.handle_command(session, command) is False

    @pytest.mark.asyncio
    async def test_help_and_unknown(self, session, capsys):
        assert await cli.handle_command(session, "/help") is True
        assert await cli.handle_command(session, "/bogus") is True

        output = capsys.readouterr().out
        assert "/tools on|off" in output
        assert "Unknown command /bogus" in output

    @pytest.mark.asyncio
    async def test_tools_toggle(self, session, capsys):
        await cli.handle_command(session, "/tools off")
        assert session.config.enable_tools is False

        await cli.handle_command(session, "/tools maybe")
        assert "Usage: /tools on|off" in capsys.readouterr().out

        await cli.handle_command(session, "/tools on")
        assert session.config.enable_tools is True

    @pytest.mark.asyncio
    async def test_clear(self, session, sink, capsys):
        await session.send_message("hi", sink)

        await cli.handle_command(session, "/clear")

        assert session.history == ()
        assert "History cleared." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_connect_servers_disconnect(self, session, capsys):
        await cli.handle_command(session, "/connect files")
        await cli.handle_command(session, "/servers")

        output = capsys.readouterr().out
        assert "Connected files." in output
        assert " * files: connected" in output
        assert session.selected_providers == ("files",)

        await cli.handle_command(session, "/disconnect files")

        assert "Disconnected files." in capsys.readouterr().out
        assert session.selected_providers == ()
        assert not session.registry.is_connected("files")

    @pytest.mark.asyncio
    async def test_reconnect(self, session, capsys):
        await cli.handle_command(session, "/reconnect files")
        await cli.handle_command(session, "/reconnect ghost")

        captured = capsys.readouterr()
        assert "Reconnected files." in captured.out
        assert "ghost" in captured.err
        assert session.registry.is_connected("files")
        await session.aclose()

    @pytest.mark.asyncio
    async def test_connect_unknown_server_reports_error(self, session, capsys):
        connected = await cli.connect_and_select(session, ["ghost"])

        assert connected == []
        assert "ghost" in capsys.readouterr().err
        assert session.selected_providers == ()


class TestMain:
    def test_main_exits_cleanly_on_eof(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("PARLEY_LOG_DIR", str(tmp_path / "logs"))

        def no_input(prompt: str = "") -> str:
            raise EOFError

        monkeypatch.setattr("builtins.input", no_input)

        code = cli.main(["--settings", str(tmp_path / "settings.json"), "--no-stream"])

        assert code == 0
        assert "parley:" in capsys.readouterr().out
        assert (tmp_path / "logs" / "parley.log").exists()

    @pytest.mark.asyncio
    async def test_repl_sends_messages_until_quit(self, session, monkeypatch):
        lines = iter(["", "hello", "/quit"])
        monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))

        await cli.run_repl(session, sink=cli.TerminalSink(io.StringIO(), io.StringIO()))

        assert [m.content for m in session.history] == ["hello", "ok"]


class TestReadLine:
    @pytest.mark.asyncio
    async def test_event_loop_runs_while_waiting_for_input(self, monkeypatch):
        typed = threading.Event()

        def slow_input(prompt: str = "") -> str:
            typed.wait(5)
            return "later"

        monkeypatch.setattr("builtins.input", slow_input)
        reader = asyncio.create_task(cli.read_line("> "))

        await asyncio.sleep(0.05)
        assert not reader.done()

        typed.set()
        assert await asyncio.wait_for(reader, 5) == "later"

    @pytest.mark.asyncio
    async def test_closed_stdin_raises_eof(self, monkeypatch):
        def no_input(prompt: str = "") -> str:
            raise EOFError

        monkeypatch.setattr("builtins.input", no_input)

        with pytest.raises(EOFError):
            await cli.read_line("> ")
