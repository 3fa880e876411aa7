"""Graph management tools.

These run without a resolved graph: ``list_graphs`` reads the config store,
``setup_new_graph`` talks to Roam Desktop's discovery and token endpoints and
writes the new connection.
"""

import logging
import re
from typing import Any, Dict, List

from ..models import GRAPH_NAME_PATTERN, GraphConnection
from ..utils.error_utils import ErrorCode, RoamError
from ..utils.local_api import (
    fetch_available_graphs_with_retry,
    get_port,
    request_token,
    slugify,
    token_request_error,
)
from ..utils.results import ToolResponse, text_result
from .context import ToolContext

logger = logging.getLogger(__name__)

GUIDELINES_HINT = "Call get_graph_guidelines before operating on it."


def _describe(connections: List[GraphConnection]) -> List[Dict[str, Any]]:
    return [c.summary() for c in connections]


async def list_graphs(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """List configured graphs with their nicknames.

    A config problem is reported inside the payload so an assistant can still
    read the setup instructions.
    """
    try:
        graphs = await ctx.store.load()
    except RoamError as e:
        return text_result({"error": {"code": str(e.code), "message": e.message}})

    return text_result({
        "graphs": _describe(graphs),
        "instruction": (
            "Pass the 'nickname' value as the graph parameter. Before operating on a "
            "graph, call get_graph_guidelines to understand its conventions."
        ),
        "setup": (
            "To connect additional graphs, use the setup_new_graph tool "
            "(call it without arguments to see available graphs)."
        ),
    })


async def setup_new_graph(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Connect a graph, or list the graphs Roam Desktop can connect.

    Without arguments, returns the available graphs and the configured ones.
    With ``graph`` and ``nickname``, requests a full-access token (blocking
    until the user answers the dialog in Roam) and saves the connection.

    Args:
        ctx: Call context (no client)
        args: graph (optional), nickname (required with graph)

    Returns:
        Listing, ``already_configured`` or ``connected`` payload

    Raises:
        RoamError: VALIDATION_ERROR, NICKNAME_COLLISION, CONNECTION_FAILED or
            one of the token request codes
    """
    graph = args.get("graph")
    port = await get_port(ctx.port_file)

    if not graph:
        available = await fetch_available_graphs_with_retry(
            port, ctx.transport, ctx.launcher, ctx.sleep
        )
        configured = await ctx.store.load_safe()
        return text_result({
            "available_graphs": [g.model_dump() for g in available],
            "already_configured": _describe(configured),
            "instruction": (
                "Call setup_new_graph with graph and nickname to connect one of "
                "the available graphs."
            ),
        })

    if not re.match(GRAPH_NAME_PATTERN, graph):
        raise RoamError(
            "Graph name must contain only letters, numbers, hyphens, and underscores.",
            ErrorCode.VALIDATION_ERROR,
        )

    raw_nickname = args.get("nickname")
    if not raw_nickname:
        raise RoamError("nickname is required when graph is provided.", ErrorCode.VALIDATION_ERROR)

    nickname = slugify(raw_nickname)
    if not nickname:
        raise RoamError(
            f'Nickname "{raw_nickname}" produces an empty result after converting to '
            "kebab-case. Use a nickname with at least one letter or number.",
            ErrorCode.VALIDATION_ERROR,
        )

    configured = await ctx.store.load_safe()
    matching = [c for c in configured if c.name == graph]
    # A fully revoked graph falls through and gets a fresh token
    if matching and not all(c.last_known_token_status == "revoked" for c in matching):
        return text_result({
            "status": "already_configured",
            "graphs": _describe(matching),
            "instruction": (
                "This graph is already configured. Pass the 'nickname' value as the "
                f"graph parameter. {GUIDELINES_HINT}"
            ),
        })

    for existing in configured:
        if existing.nickname.lower() == nickname and existing.name != graph:
            raise RoamError(
                f'Nickname "{nickname}" is already used by graph "{existing.name}". '
                "Please choose a different nickname.",
                ErrorCode.NICKNAME_COLLISION,
            )

    available = await fetch_available_graphs_with_retry(
        port, ctx.transport, ctx.launcher, ctx.sleep
    )
    info = next((g for g in available if g.name == graph), None)
    if info is None:
        raise RoamError(
            f'Graph "{graph}" was not found in Roam Desktop. Make sure the graph name '
            "is correct and that it is available in the app.",
            ErrorCode.VALIDATION_ERROR,
            {"available_graphs": [g.name for g in available]},
        )

    result = await request_token(port, graph, info.type, "full", ctx.transport)
    error = token_request_error(result)
    if error is not None:
        raise error

    access_level = result.get("grantedAccessLevel") or "full"
    connection = GraphConnection(
        name=graph,
        type=info.type,
        token=result["token"],
        nickname=nickname,
        access_level=access_level,
    )
    await ctx.store.save(connection)
    logger.info("graph_connected", extra={"graph.name": graph, "graph.nickname": nickname})

    return text_result({
        "status": "connected",
        "graph": {
            "name": graph,
            "nickname": nickname,
            "type": info.type,
            "accessLevel": access_level,
        },
        "instruction": (
            "Graph connected successfully. Call get_graph_guidelines next to understand "
            "the graph's conventions before making any changes."
        ),
    })
