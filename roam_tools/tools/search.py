"""Search, template and query tools via the Roam Local API."""

from typing import Any, Dict

from ..utils.error_utils import ErrorCode, RoamError
from ..utils.results import ToolResponse, text_result
from .context import ToolContext

EMPTY_PAGE = {"total": 0, "results": []}

_SEARCH_PARAMS = ("query", "scope", "offset", "limit", "includePath", "maxDepth")


async def search(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Full-text search over pages and blocks.

    Args:
        ctx: Call context with a graph-bound client
        args: query, plus optional scope/offset/limit/includePath/maxDepth

    Returns:
        ``{"total": N, "results": [...]}``
    """
    params = {key: args[key] for key in _SEARCH_PARAMS if key in args}
    response = await ctx.roam.call("data.ai.search", [params])
    return text_result(response.result if response.result is not None else EMPTY_PAGE)


async def search_templates(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    params = {"query": args["query"]} if "query" in args else {}
    response = await ctx.roam.call("data.ai.searchTemplates", [params])
    return text_result(response.result if response.result is not None else [])


async def roam_query(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Run a Roam ``{{query}}`` (not Datalog).

    Two modes: ``uid`` runs an existing query block with its saved settings;
    ``query`` runs a raw query string, and only then do sort/sortOrder/
    includePath apply.

    Raises:
        RoamError: VALIDATION_ERROR unless exactly one of uid/query is given
    """
    has_uid = "uid" in args
    has_query = "query" in args
    if has_uid == has_query:
        raise RoamError(
            "Provide exactly one of 'uid' or 'query', not both or neither.",
            ErrorCode.VALIDATION_ERROR,
        )

    if has_uid:
        params: Dict[str, Any] = {"uid": args["uid"]}
    else:
        params = {"query": args["query"]}
        for key in ("sort", "sortOrder", "includePath"):
            if key in args:
                params[key] = args[key]

    for key in ("offset", "limit", "maxDepth"):
        if key in args:
            params[key] = args[key]

    response = await ctx.roam.call("data.ai.roamQuery", [params])
    return text_result(response.result if response.result is not None else EMPTY_PAGE)
