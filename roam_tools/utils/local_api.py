"""Discovery helpers for Roam Desktop's Local API.

Used by the connect flow, the ``setup_new_graph`` tool and the API client:
port discovery, listing available/open graphs, token issuance and launching
Roam through its deep link.
"""

import asyncio
import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiofiles
import httpx

from ..models import AvailableGraph
from .error_utils import ErrorCode, RoamError, get_error_code, get_error_message

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3333
PORT_FILE_ENV_VAR = "ROAM_LOCAL_API_FILE"
PORT_FILENAME = ".roam-local-api.json"
LOCAL_HOST = "127.0.0.1"

TOKEN_REQUEST_DESCRIPTION = "roam-tools"
# Token requests block until the user answers the dialog in Roam (5 minute limit)
TOKEN_REQUEST_TIMEOUT = 330.0
DISCOVERY_TIMEOUT = 10.0
# Time Roam Desktop gets to start after being opened by a deep link
STARTUP_WAIT = 5.0


def get_port_file() -> Path:
    """Location of the port file Roam Desktop writes on startup."""
    override = os.environ.get(PORT_FILE_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / PORT_FILENAME


async def get_port(port_file: Optional[Path] = None) -> int:
    """Read the Local API port, falling back to the well-known default.

    Args:
        port_file: Override for the port file location

    Returns:
        Port number Roam Desktop is listening on
    """
    path = port_file or get_port_file()
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            data = json.loads(await f.read())
        port = int(data["port"])
    except FileNotFoundError:
        return DEFAULT_PORT
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.debug("Unreadable port file %s (%s); using default port", path, e)
        return DEFAULT_PORT
    if not 0 < port < 65536:
        return DEFAULT_PORT
    return port


def base_url(port: int) -> str:
    return f"http://{LOCAL_HOST}:{port}"


# ============================================================================
# Graph discovery
# ============================================================================

def _json_object(response: httpx.Response, action: str) -> Dict[str, Any]:
    """Decode a discovery reply, which must be a JSON object.

    Raises:
        RoamError: INTERNAL_ERROR for non-JSON or non-object bodies
    """
    try:
        data = response.json()
    except ValueError as e:
        raise RoamError(
            f"Failed to {action}: Roam returned a non-JSON response (HTTP {response.status_code})",
            ErrorCode.INTERNAL_ERROR,
        ) from e
    if not isinstance(data, dict):
        raise RoamError(
            f"Failed to {action}: unexpected response from Roam (HTTP {response.status_code})",
            ErrorCode.INTERNAL_ERROR,
        )
    return data


async def fetch_available_graphs(
    port: int, transport: Optional[httpx.AsyncBaseTransport] = None
) -> List[AvailableGraph]:
    """List graphs the signed-in Roam user can connect.

    Raises:
        httpx.TransportError: If Roam Desktop is not reachable
        RoamError: INTERNAL_ERROR if Roam reports a failure or the reply is malformed
    """
    async with httpx.AsyncClient(transport=transport, timeout=DISCOVERY_TIMEOUT) as client:
        response = await client.get(f"{base_url(port)}/api/graphs/available")

    data = _json_object(response, "get available graphs")
    if not data.get("success"):
        raise RoamError(
            f"Failed to get available graphs: {get_error_message(data.get('error'))}",
            ErrorCode.INTERNAL_ERROR,
        )
    try:
        return [AvailableGraph.model_validate(g) for g in data.get("result") or []]
    except (ValueError, TypeError) as e:
        raise RoamError(
            "Failed to get available graphs: unexpected graph entry from Roam",
            ErrorCode.INTERNAL_ERROR,
        ) from e


async def fetch_open_graphs(
    port: int, transport: Optional[httpx.AsyncBaseTransport] = None
) -> List[AvailableGraph]:
    """List graphs currently open in Roam Desktop.

    Only used to highlight choices, so any failure reads as "none open".
    """
    try:
        async with httpx.AsyncClient(transport=transport, timeout=DISCOVERY_TIMEOUT) as client:
            response = await client.get(f"{base_url(port)}/api/graphs/open")
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.debug("Could not list open graphs: %s", e)
        return []

    if not isinstance(data, dict) or not data.get("success"):
        return []
    graphs = []
    for entry in data.get("result") or []:
        # Older Roam builds return bare graph names here
        if isinstance(entry, str):
            graphs.append(AvailableGraph(name=entry))
        else:
            graphs.append(AvailableGraph.model_validate(entry))
    return graphs


def dedup_available_graphs(graphs: List[AvailableGraph]) -> List[AvailableGraph]:
    """Keep one entry per name, preferring hosted over offline."""
    by_name: Dict[str, AvailableGraph] = {}
    for graph in graphs:
        existing = by_name.get(graph.name)
        if existing is None or graph.type == "hosted":
            by_name[graph.name] = graph
    return list(by_name.values())


# ============================================================================
# Tokens
# ============================================================================

async def request_token(
    port: int,
    graph: str,
    graph_type: str,
    access_level: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Ask Roam Desktop to issue a token for ``graph``.

    Blocks until the user approves or denies the request in Roam.

    Returns:
        Raw token exchange payload (``success``, ``token``,
        ``grantedAccessLevel`` or ``error``)

    Raises:
        RoamError: INTERNAL_ERROR if the reply is not a JSON object
    """
    payload = {
        "graph": graph,
        "graphType": graph_type,
        "description": TOKEN_REQUEST_DESCRIPTION,
        "accessLevel": access_level,
        "ai": True,
    }
    async with httpx.AsyncClient(transport=transport, timeout=TOKEN_REQUEST_TIMEOUT) as client:
        response = await client.post(
            f"{base_url(port)}/api/graphs/tokens/request", json=payload
        )
    return _json_object(response, "request a token")


# ============================================================================
# Helpers
# ============================================================================

async def open_deep_link(url: str) -> None:
    """Hand a ``roam://`` URL to the operating system.

    Raises:
        OSError: If no opener is available
    """
    if sys.platform == "win32":
        os.startfile(url)  # type: ignore[attr-defined]
        return
    opener = "open" if sys.platform == "darwin" else "xdg-open"
    process = await asyncio.create_subprocess_exec(
        opener,
        url,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    await process.wait()


async def open_roam_app() -> None:
    """Start or focus Roam Desktop."""
    await open_deep_link("roam://open")


def graph_deep_link(graph_name: str) -> str:
    return f"roam://#/app/{graph_name}"


def slugify(value: str) -> str:
    """Kebab-case a nickname: ``"My Work Graph!"`` -> ``"my-work-graph"``."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower())
    return slug.strip("-")


# ============================================================================
# Shared setup steps (connect flow and setup_new_graph)
# ============================================================================

async def fetch_available_graphs_with_retry(
    port: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    launcher: Optional[Callable[[], Awaitable[None]]] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    wait: float = STARTUP_WAIT,
) -> List[AvailableGraph]:
    """Available graphs, opening Roam and retrying once if it is not running.

    Raises:
        RoamError: CONNECTION_FAILED if Roam is still unreachable
            or INTERNAL_ERROR if Roam answers with a failure
    """
    try:
        graphs = await fetch_available_graphs(port, transport)
    except httpx.TransportError as e:
        logger.info("roam_not_running", extra={"port": port, "error.type": type(e).__name__})
        try:
            await (launcher or open_roam_app)()
        except OSError as launch_error:
            logger.warning("Could not open Roam Desktop: %s", launch_error)
        await (sleep or asyncio.sleep)(wait)
        try:
            graphs = await fetch_available_graphs(port, transport)
        except httpx.TransportError as retry_error:
            raise RoamError(
                "Could not connect to Roam Desktop. Make sure it is running and the "
                "Local API is enabled in Settings > Local API.",
                ErrorCode.CONNECTION_FAILED,
            ) from retry_error
    return dedup_available_graphs(graphs)


_TOKEN_REQUEST_ERRORS = {
    ErrorCode.USER_REJECTED: (
        "Token request was denied in Roam. The user must approve the request "
        "in the Roam desktop app."
    ),
    ErrorCode.GRAPH_BLOCKED: (
        "This graph has blocked token requests. Unblock it in Roam Settings > "
        "Graph > Local API Tokens."
    ),
    ErrorCode.TIMEOUT: (
        "No response after 5 minutes. Please try again; the user needs to "
        "approve the request in the Roam desktop app."
    ),
    ErrorCode.REQUEST_IN_PROGRESS: (
        "Another token request is already pending for this graph. The user "
        "should respond to the existing request in Roam first."
    ),
}


def token_request_error(result: Dict[str, Any]) -> Optional[RoamError]:
    """Classify a token exchange payload; None when it carries a token."""
    if result.get("success") and result.get("token"):
        return None
    error = result.get("error")
    code = get_error_code(error)
    for known, message in _TOKEN_REQUEST_ERRORS.items():
        if code == known:
            return RoamError(message, known)
    if result.get("success"):
        return RoamError(
            "Roam reported success but returned no token.", ErrorCode.INTERNAL_ERROR
        )
    return RoamError(
        f"Token request failed: {get_error_message(error)}", ErrorCode.INTERNAL_ERROR
    )
