"""MCP Server for multilingual content reconciliation using stdio transport.

This module implements the Model Context Protocol server that lets an
agent or a workflow runner trigger reconciliations and inspect sync state.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import DEFAULT_LOG_FILE, setup_logging
from .lifespan import SyncRuntime, server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

server = Server("locale-sync-server")

# Initialized in main()
_runtime: SyncRuntime | None = None
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    runtime: SyncRuntime, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- test repository connectivity."""
    try:
        site = await run_sync(runtime.repository.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Locale sync server connected to repository site '{site}'.",
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=(
                        f"Repository connection failed: {e}. Check "
                        "LOCALE_SYNC_REPOSITORY_URL, LOCALE_SYNC_USERNAME, "
                        "LOCALE_SYNC_PASSWORD."
                    ),
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test connectivity to the content repository",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_runtime() -> SyncRuntime:
    """Get the global SyncRuntime.

    Raises:
        RuntimeError: If the server lifespan has not started
    """
    if _runtime is None:
        raise RuntimeError(
            "SyncRuntime not initialized. Server lifespan not started."
        )
    return _runtime


def set_runtime(runtime: SyncRuntime | None) -> None:
    """Set (or clear with None) the global SyncRuntime."""
    global _runtime
    _runtime = runtime


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set (or clear with None) the global ToolRegistry."""
    global _registry
    _registry = registry


def build_tool_registry(
    permissions_file: str | None = None,
) -> ToolRegistry:
    """Build the registry of ping plus all sync tools.

    Args:
        permissions_file: Optional permissions file restricting the tools.
    """
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    return registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List all registered (and permitted) tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    runtime = get_runtime()
    try:
        return await get_registry().call_tool(name, arguments, runtime)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Logging goes to a file only; stdout carries the JSON-RPC stream.

    Args:
        config_overrides: Optional dict with url, username, password,
            translator_url, insecure, log_file and permissions_file.
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(mode="mcp", log_file=overrides.get("log_file"))

    permissions_file = overrides.get("permissions_file")
    registry = build_tool_registry(permissions_file)
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(ALL_SPECS) + 1} tools enabled)",
            file=sys.stderr,
        )
    set_registry(registry)

    # set_runtime() is called here rather than in the lifespan so that
    # running this file as __main__ does not update a second module copy.
    async with server_lifespan(config_overrides=config_overrides) as ctx:
        set_runtime(ctx["runtime"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="locale-sync-server",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_runtime(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser for the server entry point."""
    parser = argparse.ArgumentParser(
        description="Locale Sync Server - keep translated content in sync over MCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .locale_sync/config.yml)
  locale-sync-server

  # Override repository and translator endpoints
  locale-sync-server --url https://cms.example.com --translator-url https://mt.example.com/translate

  # Read-only deployment
  locale-sync-server --permissions-file /etc/locale-sync/view-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--url",
        help="Override repository URL (takes precedence over LOCALE_SYNC_REPOSITORY_URL and config files)",
    )
    parser.add_argument(
        "--username",
        help="Override repository username (takes precedence over LOCALE_SYNC_USERNAME)",
    )
    parser.add_argument(
        "--password",
        help="Override repository password (visible in process list -- prefer LOCALE_SYNC_PASSWORD)",
    )
    parser.add_argument(
        "--translator-url",
        help="Override translation endpoint (takes precedence over LOCALE_SYNC_TRANSLATOR_URL)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (SYNC_VIEW, SYNC_RUN), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"locale-sync-server version {__version__}",
    )
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Collect the CLI values that were actually given."""
    config_overrides = {}
    if args.url:
        config_overrides["url"] = args.url
    if args.username:
        config_overrides["username"] = args.username
    if args.password:
        config_overrides["password"] = args.password
    if args.translator_url:
        config_overrides["translator_url"] = args.translator_url
    if args.insecure:
        config_overrides["insecure"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file
    return config_overrides


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()
    config_overrides = overrides_from_args(args)

    if config_overrides:
        override_keys = [k for k in config_overrides if k != "password"]
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Already reported on stderr by the lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
