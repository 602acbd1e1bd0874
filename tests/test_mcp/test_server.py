"""Tests for the MCP server module: CLI parsing, registry wiring, dispatch."""

from unittest.mock import patch

import mcp.types as types
import pytest

from locale_sync.logger import DEFAULT_LOG_FILE
from locale_sync.mcp import server
from locale_sync.mcp.server import (
    build_parser,
    build_tool_registry,
    handle_call_tool,
    handle_list_tools,
    overrides_from_args,
    set_registry,
    set_runtime,
)


@pytest.fixture
def wired(sync_runtime):
    """Install a full registry and runtime as main() would."""
    set_registry(build_tool_registry())
    set_runtime(sync_runtime)
    yield sync_runtime
    set_runtime(None)
    set_registry(None)


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.url is None
        assert args.insecure is False
        assert args.log_file == DEFAULT_LOG_FILE
        assert overrides_from_args(args) == {"log_file": DEFAULT_LOG_FILE}

    def test_overrides_collected(self):
        args = build_parser().parse_args(
            [
                "--url", "https://cms.example.com",
                "--translator-url", "https://mt.example.com/translate",
                "--insecure",
                "--permissions-file", "view.permissions",
            ]
        )
        overrides = overrides_from_args(args)
        assert overrides["url"] == "https://cms.example.com"
        assert overrides["translator_url"] == "https://mt.example.com/translate"
        assert overrides["insecure"] is True
        assert overrides["permissions_file"] == "view.permissions"
        assert "password" not in overrides


class TestBuildToolRegistry:
    def test_all_tools(self):
        names = [t.name for t in build_tool_registry().list_tools()]
        assert names[0] == "ping"
        assert "reconcile" in names
        assert len(names) == 6

    def test_permissions_file(self, tmp_path):
        path = tmp_path / "view.permissions"
        path.write_text("SYNC_VIEW\n")
        names = [t.name for t in build_tool_registry(str(path)).list_tools()]
        assert names == ["ping", "sync_status"]


class TestAccessors:
    def test_runtime_not_initialized(self):
        set_runtime(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            server.get_runtime()

    def test_registry_not_initialized(self):
        set_registry(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            server.get_registry()


class TestHandlers:
    async def test_list_tools(self, wired):
        tools = await handle_list_tools()
        assert all(isinstance(t, types.Tool) for t in tools)

    async def test_ping(self, wired):
        result = await handle_call_tool("ping", None)
        assert not result.isError
        assert "Example Homes" in result.content[0].text

    async def test_ping_connection_failure(self, wired):
        with patch.object(
            type(wired.repository),
            "validate_connection",
            side_effect=ConnectionError("refused"),
        ):
            result = await handle_call_tool("ping", {})
        assert result.isError
        assert "Repository connection failed: refused" in result.content[0].text

    async def test_unknown_tool(self, wired):
        result = await handle_call_tool("wiki_get", {})
        assert result.isError
        assert "Error (unknown_tool)" in result.content[0].text

    async def test_reconcile_dispatch(self, wired):
        result = await handle_call_tool(
            "reconcile", {"source_document_id": 318, "target_language": "en"}
        )
        assert result.structuredContent["outcome"] == "created"
