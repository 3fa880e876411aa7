"""Tool handlers for Roam Local API operations."""

from .blocks import (
    create_block,
    delete_block,
    get_backlinks,
    get_block,
    move_block,
    update_block,
)
from .context import ToolContext
from .files import file_delete, file_get, file_upload
from .graphs import list_graphs, setup_new_graph
from .navigation import get_open_windows, get_selection, open_main_window, open_sidebar
from .pages import create_page, delete_page, get_graph_guidelines, get_page, update_page
from .search import roam_query, search, search_templates

__all__ = [
    "ToolContext",
    # Graph management
    "list_graphs",
    "setup_new_graph",
    # Pages
    "get_graph_guidelines",
    "create_page",
    "get_page",
    "update_page",
    "delete_page",
    # Blocks
    "create_block",
    "get_block",
    "update_block",
    "delete_block",
    "move_block",
    "get_backlinks",
    # Search
    "search",
    "search_templates",
    "roam_query",
    # Navigation
    "get_open_windows",
    "get_selection",
    "open_main_window",
    "open_sidebar",
    # Files
    "file_get",
    "file_upload",
    "file_delete",
]
