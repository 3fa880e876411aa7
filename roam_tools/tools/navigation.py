"""UI navigation tools via the Roam Local API.

These drive the Roam Desktop window the user is looking at: what is open,
what is selected, and opening pages or blocks in the main window or the
right sidebar.
"""

import asyncio
from typing import Any, Dict

from ..utils.error_utils import ErrorCode, RoamError
from ..utils.results import ToolResponse, text_result
from .context import ToolContext


# ============================================================================
# Reading UI state
# ============================================================================

async def get_open_windows(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Get the main window view and the right sidebar windows.

    Returns:
        ``{"main": view or None, "sidebar": [windows]}``
    """
    main, sidebar = await asyncio.gather(
        ctx.roam.call("ui.mainWindow.getOpenView", []),
        ctx.roam.call("ui.rightSidebar.getWindows", []),
    )
    return text_result({
        "main": main.result,
        "sidebar": sidebar.result if sidebar.result is not None else [],
    })


async def get_selection(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Get the focused block and any multi-selected blocks."""
    focused, selected = await asyncio.gather(
        ctx.roam.call("ui.getFocusedBlock", []),
        ctx.roam.call("ui.multiselect.getSelected", []),
    )
    return text_result({
        "focused": focused.result,
        "multiSelected": selected.result if selected.result is not None else [],
    })


# ============================================================================
# Opening views
# ============================================================================

async def open_main_window(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Navigate the main window to a page or block.

    Args:
        ctx: Call context with a graph-bound client
        args: uid (page or block) or title (page)

    Raises:
        RoamError: VALIDATION_ERROR if neither uid nor title is given
    """
    if "uid" in args:
        # openBlock accepts page uids too
        await ctx.roam.call("ui.mainWindow.openBlock", [{"block": {"uid": args["uid"]}}])
    elif "title" in args:
        await ctx.roam.call("ui.mainWindow.openPage", [{"page": {"title": args["title"]}}])
    else:
        raise RoamError("Provide either 'uid' or 'title'.", ErrorCode.VALIDATION_ERROR)
    return text_result({"success": True})


async def open_sidebar(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    window = {
        "type": args.get("type", "outline"),
        "block-uid": args["uid"],
    }
    await ctx.roam.call("ui.rightSidebar.addWindow", [{"window": window}])
    return text_result({"success": True})
