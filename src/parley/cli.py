"""Terminal front-end: an interactive chat loop over :class:`ChatSession`."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, TextIO

from .ai.orchestration import ChatEvent
from .ai.tools import HeadlessEditorHost
from .errors import ProviderConnectionError
from .services.settings import Settings, SettingsStore
from .session import ChatSession
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_HELP = """Commands:
  /clear               clear the conversation
  /tools on|off        enable or disable tool use
  /servers             list configured MCP servers
  /connect NAME        connect an MCP server and offer its tools
  /disconnect NAME     disconnect an MCP server
  /reconnect NAME      restart an MCP server connection
  /quit                exit"""


def configure_logging(debug: bool = False) -> None:
    """Log to the rotating file; echo to the console only when debugging."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, console=debug)
    _LOGGER.debug("Logging to %s (level=%s)", log_path, logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Dict[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parley", description="Chat with an OpenAI-compatible model.")
    parser.add_argument("--model", help="Model name to request")
    parser.add_argument("--base-url", dest="base_url", help="API base URL, e.g. https://api.openai.com/v1")
    parser.add_argument("--no-stream", dest="no_stream", action="store_true", help="Use buffered responses")
    parser.add_argument("--no-tools", dest="no_tools", action="store_true", help="Do not offer tools to the model")
    parser.add_argument(
        "--mcp",
        dest="mcp",
        action="append",
        default=[],
        metavar="NAME",
        help="Connect the named MCP server and offer its tools (repeatable)",
    )
    parser.add_argument("--system", dest="system_prompt", help="System prompt placed before the conversation")
    parser.add_argument("--settings", dest="settings_path", type=Path, help="Path to settings.json")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging on the console")
    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "model": args.model,
        "base_url": args.base_url,
        "system_prompt": args.system_prompt,
    }
    if args.no_stream:
        overrides["enable_stream"] = False
    if args.no_tools:
        overrides["enable_tools"] = False
    if args.debug:
        overrides["debug_logging"] = True
    return {key: value for key, value in overrides.items() if value is not None}


class TerminalSink:
    """Renders engine events on a terminal."""

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None) -> None:
        self._out = out or sys.stdout
        self._err = err or sys.stderr
        self._mid_line = False

    def __call__(self, event: ChatEvent) -> None:
        if event.kind == "content":
            self._out.write(event.content)
            self._mid_line = not event.content.endswith("\n")
        elif event.kind == "tool_progress":
            self._break_line()
            self._out.write(f"[{event.content}]\n")
        elif event.kind == "turn_end":
            self._break_line()
        elif event.kind == "error":
            self._break_line()
            self._err.write(f"[error] {event.error}\n")
            self._err.flush()
        self._out.flush()

    def _break_line(self) -> None:
        if self._mid_line:
            self._out.write("\n")
            self._mid_line = False


def confirm_on_stdin(prompt: str) -> bool:
    try:
        answer = input(f"\n{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


async def read_line(prompt: str) -> str:
    """``input()`` on a daemon thread; the event loop keeps serving providers meanwhile.

    Raises:
        EOFError: When stdin is closed.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def _settle(line: str | None, error: Exception | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(line or "")

    def _read() -> None:
        try:
            line, error = input(prompt), None
        except Exception as exc:
            line, error = None, exc
        # The loop may already be closed when the user answers after shutdown.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(_settle, line, error)

    threading.Thread(target=_read, name="parley-stdin", daemon=True).start()
    return await future


async def run_repl(session: ChatSession, *, sink: TerminalSink | None = None) -> None:
    sink = sink or TerminalSink()
    print("parley: type a message, /help for commands, Ctrl-D to exit.")
    while True:
        try:
            line = await read_line("\n> ")
        except EOFError:
            print()
            return
        text = line.strip()
        if not text:
            continue
        if text.startswith("/"):
            if not await handle_command(session, text):
                return
            continue
        await _run_turn(session, text, sink)


async def _run_turn(session: ChatSession, text: str, sink: TerminalSink) -> None:
    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, session.cancel)
        installed = True
    try:
        await session.send_message(text, sink)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def handle_command(session: ChatSession, command: str) -> bool:
    """Run a slash command; returns False when the REPL should exit."""

    name, _, argument = command.partition(" ")
    argument = argument.strip()
    if name in {"/quit", "/exit"}:
        return False
    if name == "/help":
        print(_HELP)
    elif name == "/clear":
        session.clear_history()
        print("History cleared.")
    elif name == "/tools":
        if argument not in {"on", "off"}:
            print("Usage: /tools on|off")
        else:
            session.set_tools_enabled(argument == "on")
            print(f"Tools {argument}.")
    elif name == "/servers":
        providers = session.list_providers()
        if not providers:
            print("No MCP servers configured.")
        selected = set(session.selected_providers)
        for provider, connected in providers:
            state = "connected" if connected else "disconnected"
            marker = "*" if provider in selected else " "
            print(f" {marker} {provider}: {state}")
    elif name == "/connect":
        if not argument:
            print("Usage: /connect NAME")
        else:
            await connect_and_select(session, [argument])
    elif name == "/disconnect":
        if not argument:
            print("Usage: /disconnect NAME")
        else:
            closed = await session.disconnect_provider(argument)
            session.set_selected_providers(n for n in session.selected_providers if n != argument)
            print(f"Disconnected {argument}." if closed else f"{argument} was not connected.")
    elif name == "/reconnect":
        if not argument:
            print("Usage: /reconnect NAME")
        else:
            try:
                await session.reconnect_provider(argument)
            except ProviderConnectionError as exc:
                print(f"[error] {exc}", file=sys.stderr)
            else:
                print(f"Reconnected {argument}.")
    else:
        print(f"Unknown command {name}. Type /help for commands.")
    return True


async def connect_and_select(session: ChatSession, names: Sequence[str]) -> list[str]:
    connected: list[str] = []
    for name in names:
        try:
            await session.connect_provider(name)
        except ProviderConnectionError as exc:
            print(f"[error] {exc}", file=sys.stderr)
            continue
        connected.append(name)
        print(f"Connected {name}.")
    if connected:
        session.set_selected_providers([*session.selected_providers, *connected])
    return connected


async def _amain(args: argparse.Namespace, settings: Settings) -> None:
    host = HeadlessEditorHost(root=Path.cwd(), confirm_callback=confirm_on_stdin)
    session = ChatSession(settings, host=host)
    try:
        if args.mcp:
            await connect_and_select(session, args.mcp)
        await run_repl(session)
    finally:
        await session.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``parley`` console script."""

    args = build_parser().parse_args(argv)
    debug = args.debug or _env_flag("PARLEY_DEBUG")
    configure_logging(debug)
    settings_path = args.settings_path or os.environ.get("PARLEY_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings = load_settings(resolved_path, overrides=_cli_overrides(args))
    if settings.debug_logging and not debug:
        configure_logging(True)
    try:
        asyncio.run(_amain(args, settings))
    except KeyboardInterrupt:
        _LOGGER.info("Shutdown requested by user.")
        print()
        return 130
    return 0


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
