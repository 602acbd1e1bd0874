"""ToolSpec and ToolRegistry for permission-based tool filtering.

Operators can restrict which tools are exposed to agents, e.g. a
read-only deployment that only allows ``sync_status``.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, required
  permissions, and an async handler (runtime, args) -> CallToolResult.
- ToolRegistry: Filters specs by allowed permissions at construction
  time, then provides list_tools() and call_tool() dispatch with error
  translation.
- load_permissions_file: Reads a simple text file of permission names.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import mcp.types as types

from ...core.exceptions import SyncError

if TYPE_CHECKING:
    from ..lifespan import SyncRuntime

logger = logging.getLogger(__name__)

SYNC_VIEW = "SYNC_VIEW"
SYNC_RUN = "SYNC_RUN"
KNOWN_PERMISSIONS = frozenset({SYNC_VIEW, SYNC_RUN})


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        permissions: Permissions required to use this tool. Empty means
            always available.
        handler: Async handler with signature (runtime, args) -> CallToolResult.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Callable[[SyncRuntime, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Registry of ToolSpecs with optional permission-based filtering.

    If allowed_permissions is None, all specs are included. Otherwise a
    spec is included only if its permissions are empty or a subset of
    allowed_permissions.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if (
                allowed_permissions is None
                or not spec.permissions
                or spec.permissions <= allowed_permissions
            ):
                self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return the Tool definitions of all registered (permitted) specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        """Return number of registered tools."""
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        runtime: SyncRuntime,
    ) -> types.CallToolResult:
        """Dispatch a tool call to its registered handler.

        Engine errors, argument errors and unexpected exceptions become
        structured error responses.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import build_error_response, translate_sync_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(runtime, args)
        except SyncError as e:
            logger.warning("Sync error in %s: %s", name, e)
            return translate_sync_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Check the server log and retry later.",
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Load permissions from a text file.

    Format: one permission per line, ``#`` for comments, blank lines ignored.

    Example file::

        # Read-only deployment
        SYNC_VIEW

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file contains unknown permissions or is empty.
    """
    path = Path(path)
    permissions: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped not in KNOWN_PERMISSIONS:
            raise ValueError(
                f"Invalid permission '{stripped}' at line {line_num} in {path}. "
                f"Expected one of {sorted(KNOWN_PERMISSIONS)}."
            )
        permissions.add(stripped)
    if not permissions:
        raise ValueError(
            f"No permissions found in {path}. File must contain at least one permission."
        )
    return frozenset(permissions)
