"""Structured errors shared by the client, resolver, router and both front ends.

Every failure the core can classify is raised as a ``RoamError`` carrying a
code from ``ErrorCode``. The router passes these through untouched; only the
outer boundary (CLI exit code, MCP error flag) decides how they are shown.
"""

from enum import Enum
from typing import Any, Dict, Optional, Union

import httpx
from fastmcp.exceptions import ToolError


class ErrorCode(str, Enum):
    """Error taxonomy for Roam Local API operations."""

    # configuration
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CONFIG_TOO_NEW = "CONFIG_TOO_NEW"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # identity
    GRAPH_NOT_CONFIGURED = "GRAPH_NOT_CONFIGURED"
    GRAPH_NOT_SELECTED = "GRAPH_NOT_SELECTED"
    NICKNAME_COLLISION = "NICKNAME_COLLISION"

    # authentication
    MISSING_TOKEN = "MISSING_TOKEN"
    INVALID_TOKEN_FORMAT = "INVALID_TOKEN_FORMAT"
    WRONG_GRAPH_TYPE = "WRONG_GRAPH_TYPE"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"

    # authorization
    INSUFFICIENT_SCOPE = "INSUFFICIENT_SCOPE"
    SCOPE_EXCEEDS_PERMISSION = "SCOPE_EXCEEDS_PERMISSION"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # protocol / transport
    VERSION_MISMATCH = "VERSION_MISMATCH"
    CONNECTION_FAILED = "CONNECTION_FAILED"

    # remote
    UNKNOWN_ACTION = "UNKNOWN_ACTION"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    API_ERROR = "API_ERROR"

    # router
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"

    # token requests
    USER_REJECTED = "USER_REJECTED"
    GRAPH_BLOCKED = "GRAPH_BLOCKED"
    TIMEOUT = "TIMEOUT"
    REQUEST_IN_PROGRESS = "REQUEST_IN_PROGRESS"

    def __str__(self) -> str:
        return self.value


class RoamError(Exception):
    """A classified failure with a taxonomy code and optional context.

    Args:
        message: Human readable, actionable description
        code: ErrorCode member, or the raw code string reported by Roam
        context: Structured payload for the caller (e.g. available graphs)
    """

    def __init__(
        self,
        message: str,
        code: Union[ErrorCode, str] = ErrorCode.API_ERROR,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": str(self.code), "message": self.message}
        if self.context:
            data["context"] = self.context
        return data

    def __repr__(self) -> str:
        return f"RoamError(code={str(self.code)!r}, message={self.message!r})"


def get_error_message(error: Union[str, Dict[str, Any], None]) -> str:
    """Extract the message from a Local API ``error`` field.

    The Local API reports errors either as a bare string or as an object with
    ``message`` and ``code``.
    """
    if not error:
        return "Unknown error"
    if isinstance(error, dict):
        return str(error.get("message") or "Unknown error")
    return str(error)


def get_error_code(error: Union[str, Dict[str, Any], None]) -> Optional[str]:
    """Extract the code from a Local API ``error`` field, if any."""
    if isinstance(error, dict):
        code = error.get("code")
        return str(code) if code else None
    return None


def create_error(message: str) -> ToolError:
    """Create an MCP tool error that FastMCP reports with ``isError`` set.

    Args:
        message: Error text shown to the MCP client

    Returns:
        ToolError ready to be raised from a tool handler
    """
    return ToolError(message)


def format_error(error: RoamError) -> str:
    """Render a RoamError as a single block of text for MCP clients.

    Context for disambiguation errors is appended as JSON-like lines so that
    an assistant can retry with a valid nickname.
    """
    text = f"Error [{error.code}]: {error.message}"
    graphs = (error.context or {}).get("available_graphs")
    if graphs:
        lines = [
            f"  - {g.get('nickname')} ({g.get('name')})"
            + (f" [{g.get('accessLevel')}]" if g.get("accessLevel") else "")
            + (" [token revoked]" if g.get("lastKnownTokenStatus") == "revoked" else "")
            for g in graphs
        ]
        text += "\n\nAvailable graphs:\n" + "\n".join(lines)
    return text


def handle_api_error(error: Exception) -> ToolError:
    """Convert an error escaping a tool handler into an MCP tool error.

    Args:
        error: RoamError, raw httpx error or anything else

    Returns:
        ToolError with a user-facing message
    """
    if isinstance(error, RoamError):
        return create_error(format_error(error))
    if isinstance(error, httpx.HTTPStatusError):
        return create_error(
            f"Roam Local API returned HTTP {error.response.status_code}: {error.response.text}"
        )
    if isinstance(error, (httpx.ConnectError, httpx.TimeoutException, ConnectionError)):
        return create_error(
            "Could not reach the Roam Local API. Make sure Roam Desktop is running "
            "and the Local API is enabled in Settings > Local API."
        )
    return create_error(str(error))
