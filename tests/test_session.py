"""Tests for the chat session wiring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from parley.ai.orchestration import ModelResponse
from parley.ai.tools import HeadlessEditorHost
from parley.errors import NetworkError
from parley.services.provider_registry import ProviderRegistry
from parley.services.providers import parse_provider_configs
from parley.services.settings import Settings
from parley.session import ChatSession

SERVERS = [
    {"name": "files", "type": "stdio", "stdio": {"command": "srv", "args": ["${workspaceFolder}"]}},
    {"name": "web", "type": "sse", "sse": "http://localhost:1/sse"},
]


class FakeClient:
    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.requests: list[dict[str, Any]] = []
        self.configs: list[Any] = []
        self.closed = False

    def update_config(self, config: Any) -> None:
        self.configs.append(config)

    async def complete(self, messages, tools=None, *, config=None) -> ModelResponse:
        self.requests.append({"messages": list(messages), "tools": tools, "config": config})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(self, messages, tools=None, *, on_content=None, config=None) -> ModelResponse:
        return await self.complete(messages, tools, config=config)

    async def aclose(self) -> None:
        self.closed = True


class FakeToolSession:
    async def list_tools(self) -> Any:
        return SimpleNamespace(tools=[SimpleNamespace(name="find", description="Find files", inputSchema={})])

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        return {"content": [{"type": "text", "text": "found"}]}


@asynccontextmanager
async def fake_opener(config):
    yield FakeToolSession()


def make_session(tmp_path, client: FakeClient, **settings: Any) -> ChatSession:
    values: dict[str, Any] = {"api_key": "sk-test", "mcp_servers": SERVERS}
    values.update(settings)
    config = Settings(**values)
    registry = ProviderRegistry(parse_provider_configs(config.mcp_servers), session_opener=fake_opener)
    return ChatSession(config, host=HeadlessEditorHost(root=tmp_path), client=client, registry=registry)


class TestConversation:
    @pytest.mark.asyncio
    async def test_history_accumulates_across_turns(self, tmp_path, sink):
        client = FakeClient(ModelResponse(text="one"), ModelResponse(text="two"))
        session = make_session(tmp_path, client)

        await session.send_message("first", sink)
        await session.send_message("second", sink)

        assert [(m.role, m.content) for m in session.history] == [
            ("user", "first"),
            ("assistant", "one"),
            ("user", "second"),
            ("assistant", "two"),
        ]
        assert len(client.requests[1]["messages"]) == 3

    @pytest.mark.asyncio
    async def test_clear_history(self, tmp_path, sink):
        session = make_session(tmp_path, FakeClient(ModelResponse(text="hi")))
        await session.send_message("hello", sink)

        session.clear_history()

        assert session.history == ()

    @pytest.mark.asyncio
    async def test_tools_toggle(self, tmp_path, sink):
        client = FakeClient(ModelResponse(text="a"), ModelResponse(text="b"))
        session = make_session(tmp_path, client)

        await session.send_message("with tools", sink)
        session.set_tools_enabled(False)
        await session.send_message("without tools", sink)

        assert client.requests[0]["tools"]
        assert client.requests[1]["tools"] is None
        assert client.configs[-1].enable_tools is False


class TestProviderSelection:
    def test_selection_drops_unknown_and_duplicates(self, tmp_path):
        session = make_session(tmp_path, FakeClient())

        selected = session.set_selected_providers(["web", "ghost", "web", "files"])

        assert selected == ("web", "files")
        assert session.selected_providers == ("web", "files")

    def test_selection_from_settings(self, tmp_path):
        session = make_session(tmp_path, FakeClient(), selected_mcp_servers=["files", "nope"])

        assert session.selected_providers == ("files",)

    def test_invalid_server_config_means_no_providers(self, tmp_path):
        settings = Settings(api_key="k", mcp_servers="{not json")

        session = ChatSession(settings, host=HeadlessEditorHost(root=tmp_path), client=FakeClient())

        assert session.list_providers() == []

    @pytest.mark.asyncio
    async def test_connected_provider_tools_are_offered(self, tmp_path, sink):
        client = FakeClient(ModelResponse(text="ok"))
        session = make_session(tmp_path, client)

        await session.connect_provider("files")
        session.set_selected_providers(["files"])
        await session.send_message("find it", sink)

        names = [tool["function"]["name"] for tool in client.requests[0]["tools"]]
        assert "files_find" in names
        assert session.list_providers() == [("files", True), ("web", False)]
        assert await session.disconnect_provider("files") is True
        assert session.list_providers() == [("files", False), ("web", False)]

    @pytest.mark.asyncio
    async def test_reconnect_provider(self, tmp_path):
        session = make_session(tmp_path, FakeClient())
        await session.connect_provider("files")

        await session.reconnect_provider("files")

        assert session.registry.is_connected("files")
        await session.aclose()


class TestConfiguration:
    def test_reload_settings(self, tmp_path):
        client = FakeClient()
        session = make_session(tmp_path, client, selected_mcp_servers=["files", "web"])

        session.reload_settings(Settings(api_key="k", model="new-model", mcp_servers=SERVERS[1:]))

        assert session.config.model == "new-model"
        assert client.configs[-1].model == "new-model"
        assert session.registry.configured_names() == ["web"]
        assert session.selected_providers == ("web",)

    @pytest.mark.asyncio
    async def test_connection_check(self, tmp_path):
        client = FakeClient(ModelResponse(text="Hello!"), NetworkError("Authentication failed (401): check the API key"))
        session = make_session(tmp_path, client)

        assert await session.test_connection() is True
        assert await session.test_connection() is False
        assert client.requests[0]["messages"] == [{"role": "user", "content": "Hello"}]
        assert client.requests[0]["config"].enable_stream is False

    @pytest.mark.asyncio
    async def test_aclose(self, tmp_path):
        client = FakeClient()
        session = make_session(tmp_path, client)
        await session.connect_provider("files")

        await session.aclose()

        assert client.closed
        assert session.registry.list_connected() == []

    @pytest.mark.asyncio
    async def test_default_client_uses_transport(self, tmp_path, sink):
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "hey"}}]})

        settings = Settings(api_key="sk-test", enable_stream=False)
        session = ChatSession(settings, host=HeadlessEditorHost(root=tmp_path), transport=httpx.MockTransport(respond))

        output = await session.send_message("hi", sink)

        assert output.response == "hey"
        await session.aclose()
