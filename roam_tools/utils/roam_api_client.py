"""HTTP client for Roam Desktop's Local API with reconnect-and-retry.

One ``RoamClient`` is bound to one resolved graph for the lifetime of a single
tool call. It owns the whole failure story for that call:

- API errors (auth, permissions, unknown action, server errors, version
  mismatch) are classified into ``RoamError`` and raised immediately.
- Connection failures (Roam closed, still starting, port changed) trigger a
  port re-discovery, a best-effort relaunch of Roam through its deep link and
  a bounded exponential backoff before giving up with ``CONNECTION_FAILED``.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from ..models import EXPECTED_API_VERSION, GRAPH_NAME_PATTERN, ResolvedGraph, RoamResponse, TokenInfoResult
from .error_utils import ErrorCode, RoamError
from .local_api import base_url, get_port, graph_deep_link, open_deep_link
from .retry import RetryPolicy, backoff_schedule, is_connection_error

logger = logging.getLogger(__name__)

TOKEN_SETTINGS_HINT = "Create a token in Roam Settings > Graph > Local API Tokens."
CONFIG_FILE_HINT = "~/.roam-tools.json"

Launcher = Callable[[str], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[Any]]


def parse_version(version: str) -> Optional[Tuple[int, int]]:
    """Major/minor of a ``major.minor.patch`` string, or None if unparseable."""
    parts = version.split(".")
    try:
        return int(parts[0]), int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return None


def version_mismatch_advice(server_version: Optional[str], expected: str = EXPECTED_API_VERSION) -> str:
    """Tell the operator which side to update.

    A server ahead of the client (higher major, or same major and higher
    minor) means this package is stale; anything else means Roam is.
    """
    server = parse_version(server_version) if server_version else None
    client = parse_version(expected)
    if server is None or client is None:
        return "Please update Roam or roam-tools so the versions match."
    if server > client:
        return "Please update roam-tools."
    return "Please update Roam."


class RoamClient:
    """Async client for one graph on the Roam Local API.

    Args:
        graph: Resolved graph to talk to
        port: Fixed port (skips port-file discovery)
        port_file: Override for the port file location
        transport: httpx transport, injectable for tests
        launcher: Coroutine that opens a deep link
        sleep: Coroutine used for backoff waits
        retry: Backoff policy for connection failures
    """

    def __init__(
        self,
        graph: ResolvedGraph,
        port: Optional[int] = None,
        port_file: Optional[Path] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        launcher: Optional[Launcher] = None,
        sleep: Optional[Sleeper] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        if not re.match(GRAPH_NAME_PATTERN, graph.name):
            raise RoamError(
                f'Invalid graph name "{graph.name}". Graph names can only contain '
                "letters, numbers, hyphens, and underscores.",
                ErrorCode.VALIDATION_ERROR,
            )
        if not graph.token:
            raise RoamError(
                f"No token configured for graph '{graph.nickname}'. {TOKEN_SETTINGS_HINT}",
                ErrorCode.MISSING_TOKEN,
            )

        self.graph = graph
        self._fixed_port = port
        self._port: Optional[int] = port
        self._port_file = port_file
        self._transport = transport
        self._launcher = launcher or open_deep_link
        self._sleep = sleep or asyncio.sleep
        self.retry = retry or RetryPolicy()
        self.timeout = httpx.Timeout(None, connect=10.0)

    async def _get_port(self) -> int:
        if self._port is None:
            self._port = await get_port(self._port_file)
        return self._port

    def _invalidate_port(self) -> None:
        self._port = self._fixed_port

    def _action_url(self, port: int) -> str:
        url = f"{base_url(port)}/api/{self.graph.name}"
        if self.graph.type == "offline":
            url += "?type=offline"
        return url

    # ========================================================================
    # Error classification
    # ========================================================================

    def _auth_error_message(self, code: Optional[str]) -> str:
        prefix = "Authentication failed. "
        if code == ErrorCode.MISSING_TOKEN:
            return prefix + f"No API token provided. Please ensure {CONFIG_FILE_HINT} has a valid token."
        if code == ErrorCode.INVALID_TOKEN_FORMAT:
            return prefix + "The token format is invalid. Tokens should start with 'roam-graph-local-token-'."
        if code == ErrorCode.WRONG_GRAPH_TYPE:
            return prefix + "This token is for a different graph type. Check that 'type' matches in your config."
        if code == ErrorCode.TOKEN_NOT_FOUND:
            return (
                prefix + "The token was not recognized. It may have been revoked. "
                + TOKEN_SETTINGS_HINT + " Then run `roam connect` again."
            )
        return prefix + f"Please check your token in {CONFIG_FILE_HINT}. {TOKEN_SETTINGS_HINT}"

    def _permission_error_message(self, code: Optional[str], message: Optional[str]) -> str:
        if code == ErrorCode.INSUFFICIENT_SCOPE:
            return (
                f"Permission denied. {message or 'This operation requires higher permissions.'}\n"
                f"Create a token with the required scope in Roam Settings > Graph > Local API Tokens."
            )
        if code == ErrorCode.SCOPE_EXCEEDS_PERMISSION:
            return (
                "The token has more permissions than your user account allows. "
                "Please check your Roam user permissions for this graph."
            )
        return message or "Access denied. Please check your permissions."

    def _raise_for_response(self, status: int, response: RoamResponse) -> None:
        if response.success and status < 400:
            return

        code = response.error_code
        message = response.error_message

        if code == ErrorCode.VERSION_MISMATCH:
            server_version = response.api_version or "unknown"
            raise RoamError(
                f"Roam API version mismatch! Roam API: {server_version}, "
                f"roam-tools expected: {EXPECTED_API_VERSION}. "
                + version_mismatch_advice(response.api_version),
                ErrorCode.VERSION_MISMATCH,
            )

        if status == 401:
            raise RoamError(self._auth_error_message(code), code or ErrorCode.UNAUTHORIZED)

        if status == 403:
            raise RoamError(
                self._permission_error_message(code, message),
                code or ErrorCode.PERMISSION_DENIED,
            )

        if status == 404:
            raise RoamError(f"Unknown API action: {message}", ErrorCode.UNKNOWN_ACTION)

        if status >= 500:
            hint = ""
            if "promise error" in message.lower():
                hint = (
                    "\n\nThis can happen if the graph was closed before the request completed, "
                    "especially for encrypted graphs, when closed before the password was entered."
                )
            raise RoamError(f"Server error: {message}{hint}", ErrorCode.INTERNAL_ERROR)

        raise RoamError(message, code or ErrorCode.API_ERROR)

    # ========================================================================
    # Requests
    # ========================================================================

    async def _send(self, action: str, args: List[Any]) -> Tuple[int, RoamResponse]:
        port = await self._get_port()
        payload = {
            "action": action,
            "args": args,
            "expectedApiVersion": EXPECTED_API_VERSION,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.graph.token}",
        }

        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            response = await client.post(self._action_url(port), headers=headers, json=payload)

        try:
            data = response.json()
            parsed = RoamResponse.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise RoamError(
                f"Unexpected response from the Roam Local API (HTTP {response.status_code}).",
                ErrorCode.INTERNAL_ERROR,
            ) from e
        return response.status_code, parsed

    async def _attempt(self, action: str, args: List[Any]) -> RoamResponse:
        status, response = await self._send(action, args)
        self._raise_for_response(status, response)
        return response

    async def _relaunch(self) -> None:
        link = graph_deep_link(self.graph.name)
        try:
            await self._launcher(link)
        except Exception as e:
            # Relaunch is best effort; the retry loop still runs
            logger.warning("Could not open %s: %s", link, e)

    async def call(self, action: str, args: Optional[List[Any]] = None) -> RoamResponse:
        """Run one Local API action against this client's graph.

        Args:
            action: Action name (e.g. "data.page.create")
            args: Positional action arguments

        Returns:
            The successful response envelope

        Raises:
            RoamError: Classified API failure, or CONNECTION_FAILED after
                every retry failed to reach Roam
        """
        args = args if args is not None else []

        try:
            return await self._attempt(action, args)
        except RoamError:
            raise
        except Exception as e:
            if not is_connection_error(e):
                raise
            logger.info(
                "roam_unreachable",
                extra={"graph.name": self.graph.name, "action": action, "error.type": type(e).__name__},
            )

        # Port may have changed if Roam restarted
        self._invalidate_port()
        await self._relaunch()

        for attempt, delay in enumerate(backoff_schedule(self.retry)):
            logger.info(
                "retry_attempt",
                extra={
                    "action": action,
                    "attempt": attempt + 1,
                    "max_attempts": self.retry.max_attempts,
                    "retry_delay_s": delay,
                },
            )
            await self._sleep(delay)
            try:
                return await self._attempt(action, args)
            except RoamError:
                raise
            except Exception as e:
                if not is_connection_error(e):
                    raise
                self._invalidate_port()

        logger.warning(
            "retry_exhausted",
            extra={"action": action, "attempts": self.retry.max_attempts, "graph.name": self.graph.name},
        )
        raise RoamError(
            "Could not connect to Roam Desktop after multiple attempts. "
            "Please restart the Roam desktop app and also this app and then retry again. "
            "If you continue having issues, please let us know at support@roamresearch.com.",
            ErrorCode.CONNECTION_FAILED,
        )

    async def get_token_info(self) -> TokenInfoResult:
        """Ask Roam what this client's token is currently allowed to do.

        Best effort: returns status "unknown" on any failure other than Roam
        explicitly saying the token does not exist. Never raises, never
        relaunches Roam and never retries.
        """
        try:
            port = await self._get_port()
            payload = {"token": self.graph.token, "graph": self.graph.name, "type": self.graph.type}
            async with httpx.AsyncClient(transport=self._transport, timeout=httpx.Timeout(10.0)) as client:
                response = await client.post(f"{base_url(port)}/api/graphs/tokens/info", json=payload)

            if response.status_code == 401:
                try:
                    error = response.json().get("error")
                except (ValueError, AttributeError):
                    error = None
                if isinstance(error, dict) and error.get("code") == ErrorCode.TOKEN_NOT_FOUND:
                    return TokenInfoResult(status="revoked")
                return TokenInfoResult(status="unknown")

            if response.status_code >= 400:
                return TokenInfoResult(status="unknown")

            data: Dict[str, Any] = response.json()
            if not data.get("success"):
                return TokenInfoResult(status="unknown")

            access_level = data.get("grantedAccessLevel") or data.get("accessLevel")
            if access_level not in ("read-only", "read-append", "full"):
                access_level = None
            return TokenInfoResult(status="active", access_level=access_level, info=data)
        except Exception as e:
            logger.debug("Token info probe failed for %s: %s", self.graph.nickname, e)
            return TokenInfoResult(status="unknown")
