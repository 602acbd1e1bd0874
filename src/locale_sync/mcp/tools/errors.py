"""Error response builders for MCP tool handlers.

Structured error responses carry a corrective action so an agent can
recover without human intervention.
"""

import mcp.types as types

from ...core.exceptions import (
    ConflictError,
    LockContentionError,
    NotFoundError,
    SyncError,
    TransportError,
    ValidationError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error,
            transport_error, conflict, busy, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take

    Examples:
        >>> build_error_response("not_found", "Document 318 (fa) not found", "Check the source id.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Translate an engine exception into a structured error response."""
    match error:
        case NotFoundError():
            return build_error_response(
                "not_found",
                str(error),
                "Check the document id and source language, then retry.",
            )
        case ValidationError():
            detail = "; ".join(error.problems) if error.problems else ""
            message = f"{error} ({detail})" if detail else str(error)
            return build_error_response(
                "validation_error",
                message,
                "Check the translate-policy fields of the source document and the translator output format.",
            )
        case TransportError() if error.status_code in (401, 403):
            return build_error_response(
                "permission_denied",
                str(error),
                "Check LOCALE_SYNC_USERNAME, LOCALE_SYNC_PASSWORD and LOCALE_SYNC_TRANSLATOR_API_KEY.",
            )
        case TransportError():
            return build_error_response(
                "transport_error",
                str(error),
                "Check repository and translator connectivity, then retry.",
            )
        case ConflictError():
            return build_error_response(
                "conflict",
                str(error),
                "Review the target document's edits, then reconcile with conflict_strategy 'source-wins' or revert them.",
            )
        case LockContentionError():
            return build_error_response(
                "busy",
                str(error),
                "Wait for the running reconciliation to finish, then check sync_status.",
            )
        case _:
            return build_error_response(
                "server_error", str(error), "Retry later."
            )
