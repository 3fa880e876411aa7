"""Block tools via the Roam Local API.

Blocks are addressed by uid; new and moved blocks are placed under a parent
uid at a numeric position or at ``first`` / ``last``.
"""

from typing import Any, Dict

from ..utils.error_utils import ErrorCode, RoamError
from ..utils.results import ToolResponse, text_result
from .context import ToolContext

# camelCase argument -> Local API block attribute
_BLOCK_ATTRIBUTES = {
    "string": "string",
    "open": "open",
    "heading": "heading",
    "textAlign": "text-align",
    "childrenViewType": "children-view-type",
}

_BACKLINK_PARAMS = (
    "uid",
    "title",
    "offset",
    "limit",
    "sort",
    "sortOrder",
    "search",
    "includePath",
    "maxDepth",
)


def _pick(args: Dict[str, Any], keys) -> Dict[str, Any]:
    return {key: args[key] for key in keys if key in args}


async def create_block(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Create a block (and nested children) from markdown.

    Args:
        ctx: Call context with a graph-bound client
        args: parentUid, markdown, order (optional, defaults to "last")

    Returns:
        The uids of the created blocks
    """
    payload = {
        "location": {
            "parent-uid": args["parentUid"],
            "order": args.get("order", "last"),
        },
        "markdown-string": args["markdown"],
    }
    response = await ctx.roam.call("data.block.fromMarkdown", [payload])
    return text_result(response.result if response.result is not None else {"uids": []})


async def get_block(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    params = _pick(args, ("uid", "maxDepth"))
    response = await ctx.roam.call("data.ai.getBlock", [params])
    return text_result(response.result)


async def update_block(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Update a block's text or display attributes; unset fields are left alone."""
    block: Dict[str, Any] = {"uid": args["uid"]}
    for key, attribute in _BLOCK_ATTRIBUTES.items():
        if key in args:
            block[attribute] = args[key]

    await ctx.roam.call("data.block.update", [{"block": block}])
    return text_result({"success": True})


async def delete_block(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    await ctx.roam.call("data.block.delete", [{"block": {"uid": args["uid"]}}])
    return text_result({"success": True})


async def move_block(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    payload = {
        "location": {
            "parent-uid": args["parentUid"],
            "order": args["order"],
        },
        "block": {"uid": args["uid"]},
    }
    await ctx.roam.call("data.block.move", [payload])
    return text_result({"success": True})


async def get_backlinks(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Get blocks referencing a page or block, paginated.

    Args:
        ctx: Call context with a graph-bound client
        args: uid or title, plus optional offset/limit/sort/sortOrder/search/
            includePath/maxDepth

    Returns:
        ``{"total": N, "results": [...]}``

    Raises:
        RoamError: VALIDATION_ERROR if neither uid nor title is given
    """
    if "uid" not in args and "title" not in args:
        raise RoamError("Provide either 'uid' or 'title'.", ErrorCode.VALIDATION_ERROR)

    response = await ctx.roam.call("data.ai.getBacklinks", [_pick(args, _BACKLINK_PARAMS)])
    result = response.result if response.result is not None else {"total": 0, "results": []}
    return text_result(result)
