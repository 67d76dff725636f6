"""Tests for MCP server configuration parsing."""

from __future__ import annotations

import json

import pytest

from parley.errors import ConfigurationError
from parley.services.providers import ProviderConfig, ProviderKind, parse_provider_configs


class TestParseProviderConfigs:
    def test_nested_shapes(self):
        raw = [
            {"name": "files", "type": "stdio", "stdio": {"command": "npx", "args": ["srv"], "env": {"A": "1"}}},
            {"name": "search", "type": "sse", "sse": "http://localhost:8080/sse"},
            {"name": "live", "type": "websocket", "websocket": "ws://localhost:9000/ws"},
        ]

        configs = parse_provider_configs(raw)

        assert [c.kind for c in configs] == [ProviderKind.STDIO, ProviderKind.SSE, ProviderKind.WEBSOCKET]
        assert configs[0] == ProviderConfig(
            name="files", kind=ProviderKind.STDIO, command="npx", args=("srv",), env={"A": "1"}
        )
        assert configs[1].url == "http://localhost:8080/sse"
        assert configs[2].url == "ws://localhost:9000/ws"

    def test_flat_shape(self):
        configs = parse_provider_configs(
            [
                {"name": "files", "kind": "stdio", "command": "python", "args": ["-m", "srv"]},
                {"name": "remote", "kind": "SSE", "url": " http://host/sse "},
            ]
        )

        assert configs[0].command == "python"
        assert configs[0].args == ("-m", "srv")
        assert configs[1].kind is ProviderKind.SSE
        assert configs[1].url == "http://host/sse"

    def test_json_string(self):
        raw = json.dumps([{"name": "files", "type": "stdio", "stdio": {"command": "npx"}}])

        (config,) = parse_provider_configs(raw)

        assert config.name == "files"
        assert config.args == ()

    @pytest.mark.parametrize("raw", [None, "", "   ", []])
    def test_empty(self, raw):
        assert parse_provider_configs(raw) == []

    @pytest.mark.parametrize(
        ("raw", "fragment"),
        [
            ("{not json", "not valid JSON"),
            ('{"name": "x"}', "JSON array"),
            (["files"], "must be an object"),
            ([{"type": "stdio", "command": "x"}], "missing a 'name'"),
            ([{"name": "my_server", "type": "stdio", "command": "x"}], "must not contain '_'"),
            ([{"name": "x", "type": "grpc"}], "unsupported type"),
            ([{"name": "x", "type": "stdio"}], "needs a stdio 'command'"),
            ([{"name": "x", "type": "stdio", "command": "c", "args": [1]}], "non-string 'args'"),
            ([{"name": "x", "type": "stdio", "command": "c", "env": ["A"]}], "non-object 'env'"),
            ([{"name": "x", "type": "sse"}], "needs a sse URL"),
            (
                [{"name": "x", "type": "sse", "url": "http://a"}, {"name": "x", "type": "sse", "url": "http://b"}],
                "Duplicate",
            ),
        ],
    )
    def test_invalid_configurations(self, raw, fragment):
        with pytest.raises(ConfigurationError) as excinfo:
            parse_provider_configs(raw)

        assert fragment in str(excinfo.value)


class TestProviderConfig:
    def test_with_workspace_replaces_every_occurrence(self):
        config = ProviderConfig(
            name="files",
            kind=ProviderKind.STDIO,
            command="srv",
            args=("${workspaceFolder}", "--out=${workspaceFolder}/out"),
            env={"ROOT": "${workspaceFolder}", "OTHER": "x"},
        )

        resolved = config.with_workspace("/work/proj")

        assert resolved.args == ("/work/proj", "--out=/work/proj/out")
        assert resolved.env == {"ROOT": "/work/proj", "OTHER": "x"}
        assert config.args[0] == "${workspaceFolder}"

    def test_with_workspace_without_folder_uses_empty_string(self):
        config = ProviderConfig(name="f", kind=ProviderKind.STDIO, command="srv", args=("${workspaceFolder}/a",))

        assert config.with_workspace(None).args == ("/a",)

    def test_remote_configs_are_untouched(self):
        config = ProviderConfig(name="s", kind=ProviderKind.SSE, url="http://h/${workspaceFolder}")

        assert config.with_workspace("/w") is config

    def test_describe(self):
        assert ProviderConfig(name="f", kind=ProviderKind.STDIO, command="npx", args=("srv", "-v")).describe() == "npx srv -v"
        assert ProviderConfig(name="s", kind=ProviderKind.SSE, url="http://h").describe() == "http://h"
