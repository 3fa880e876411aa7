"""Dispatch a named tool call to its handler and normalize the outcome.

Every call is independent: the config store is re-read, the graph resolved
and a fresh client built. Classified failures (``RoamError``) come back as an
error envelope so both front ends can render them; anything else is a bug
and propagates.
"""

import logging
from typing import Any, Callable, Dict, Optional

from .config_store import ConfigStore
from .graph_resolver import GraphResolver
from .models import ResolvedGraph
from .registry import ToolDefinition, find_tool, validate_arguments
from .tools.context import ToolContext
from .utils.error_utils import ErrorCode, RoamError
from .utils.results import ToolResponse, error_result
from .utils.roam_api_client import RoamClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ResolvedGraph], RoamClient]


async def _mark_revoked(store: ConfigStore, graph: ResolvedGraph) -> None:
    try:
        await store.update_status(graph.nickname, last_known_token_status="revoked")
    except (RoamError, OSError) as e:
        logger.warning("Could not mark token for %s as revoked: %s", graph.nickname, e)


async def _dispatch(
    tool: ToolDefinition,
    args: Dict[str, Any],
    store: ConfigStore,
    client_factory: ClientFactory,
) -> ToolResponse:
    if not tool.needs_graph:
        return await tool.handler(ToolContext(store=store), args)

    graph_ref = args.pop("graph", None)
    graph = await GraphResolver(store).resolve(graph_ref)
    client = client_factory(graph)

    if tool.mutating:
        logger.info("tool_write", extra={"tool": tool.name, "graph.nickname": graph.nickname})

    try:
        return await tool.handler(ToolContext(store=store, client=client), args)
    except RoamError as e:
        if e.code == ErrorCode.TOKEN_NOT_FOUND:
            await _mark_revoked(store, graph)
        raise


async def route_tool_call(
    name: str,
    args: Optional[Dict[str, Any]] = None,
    *,
    store: Optional[ConfigStore] = None,
    client_factory: Optional[ClientFactory] = None,
) -> ToolResponse:
    """Run one tool call end to end.

    Args:
        name: Registered tool name (snake_case)
        args: Raw arguments from the caller; may include ``graph``
        store: Config store (a default store if omitted)
        client_factory: Builds the client for the resolved graph

    Returns:
        The tool's envelope, or an error envelope for classified failures
    """
    store = store or ConfigStore()
    client_factory = client_factory or RoamClient

    try:
        tool = find_tool(name)
        if tool is None:
            raise RoamError(f"Unknown tool: {name}", ErrorCode.TOOL_NOT_FOUND)
        arguments = validate_arguments(tool, args)
        return await _dispatch(tool, arguments, store, client_factory)
    except RoamError as e:
        logger.debug("tool_failed", extra={"tool": name, "error.code": str(e.code)})
        return error_result(e)
