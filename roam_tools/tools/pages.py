"""Page tools via the Roam Local API.

This module provides tools for:
- Reading the graph's guidelines (and syncing token status on the way)
- Creating pages from markdown
- Reading pages as markdown
- Renaming / restyling pages
- Deleting pages
"""

import logging
from typing import Any, Dict

from ..utils.error_utils import ErrorCode, RoamError
from ..utils.results import ToolResponse, text_result
from .context import ToolContext

logger = logging.getLogger(__name__)


# ============================================================================
# Guidelines
# ============================================================================

async def sync_token_status(ctx: ToolContext) -> Dict[str, Any]:
    """Probe the token and record what Roam reports in the config store.

    Best effort: an unknown probe result or a failed write leaves the store
    as it was.

    Returns:
        Fields worth echoing back to the caller (``accessLevel``), possibly empty
    """
    client = ctx.roam
    info = await client.get_token_info()
    if info.status == "unknown":
        return {}

    try:
        if info.status == "revoked":
            await ctx.store.update_status(
                client.graph.nickname, last_known_token_status="revoked"
            )
            return {}
        await ctx.store.update_status(
            client.graph.nickname,
            access_level=info.access_level,
            last_known_token_status="active",
        )
    except (RoamError, OSError) as e:
        logger.warning("Could not record token status for %s: %s", client.graph.nickname, e)

    return {"accessLevel": info.access_level} if info.access_level else {}


async def get_graph_guidelines(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Get the graph's AI guidelines and starred pages.

    Args:
        ctx: Call context with a graph-bound client
        args: No arguments

    Returns:
        Guidelines payload, plus the token's access level when known
    """
    response = await ctx.roam.call("data.ai.getGraphGuidelines", [])
    result = response.result
    if result is None:
        result = {"guidelines": None, "starredPages": []}

    extra = await sync_token_status(ctx)
    if extra and isinstance(result, dict):
        result = {**result, **extra}
    return text_result(result)


# ============================================================================
# Page CRUD
# ============================================================================

async def create_page(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Create a page, optionally filled from markdown.

    Args:
        ctx: Call context with a graph-bound client
        args: title, markdown (optional), uid (optional)

    Returns:
        The created page's uid
    """
    page: Dict[str, Any] = {"title": args["title"]}
    if "uid" in args:
        page["uid"] = args["uid"]

    payload: Dict[str, Any] = {"page": page}
    if "markdown" in args:
        payload["markdown-string"] = args["markdown"]

    response = await ctx.roam.call("data.page.fromMarkdown", [payload])
    return text_result(response.result if response.result is not None else {"uid": ""})


async def get_page(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Get a page as markdown, looked up by uid or title."""
    if "uid" in args:
        params: Dict[str, Any] = {"uid": args["uid"]}
    elif "title" in args:
        params = {"title": args["title"]}
    else:
        raise RoamError("Provide either 'uid' or 'title'.", ErrorCode.VALIDATION_ERROR)
    if "maxDepth" in args:
        params["maxDepth"] = args["maxDepth"]

    response = await ctx.roam.call("data.ai.getPage", [params])
    return text_result(response.result)


async def update_page(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    page: Dict[str, Any] = {"uid": args["uid"]}
    if "title" in args:
        page["title"] = args["title"]
    if "childrenViewType" in args:
        page["children-view-type"] = args["childrenViewType"]

    params: Dict[str, Any] = {"page": page}
    if "mergePages" in args:
        params["merge-pages"] = args["mergePages"]

    await ctx.roam.call("data.page.update", [params])
    return text_result({"success": True})


async def delete_page(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    await ctx.roam.call("data.page.delete", [{"page": {"uid": args["uid"]}}])
    return text_result({"success": True})
