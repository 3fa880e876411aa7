"""Main entry point for the Roam MCP server.

Every tool in the registry is exposed with the registry's JSON schema and
dispatched through the router, so the MCP server and the CLI share
validation, graph resolution and error classification.
"""

import asyncio
import logging
import sys
from typing import Any, Dict, List, Union

from fastmcp import FastMCP
from fastmcp.tools.tool import Tool, ToolResult
from mcp.types import ImageContent as McpImageContent
from mcp.types import TextContent as McpTextContent

from .config_store import ConfigStore
from .logging import configure_logging
from .registry import TOOLS, ToolDefinition
from .router import route_tool_call
from .utils.error_utils import ErrorCode, RoamError, create_error, format_error, handle_api_error
from .utils.results import ImageContent, ToolResponse

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "MCP server for Roam Research graphs through Roam Desktop's Local API. "
    "Call list_graphs to see configured graphs (or setup_new_graph to connect one), "
    "and get_graph_guidelines before operating on a graph."
)


def to_mcp_content(response: ToolResponse) -> List[Union[McpTextContent, McpImageContent]]:
    content: List[Union[McpTextContent, McpImageContent]] = []
    for item in response.content:
        if isinstance(item, ImageContent):
            content.append(McpImageContent(type="image", data=item.data, mimeType=item.mime_type))
        else:
            content.append(McpTextContent(type="text", text=item.text))
    return content


class RoamTool(Tool):
    """A registry tool routed through ``route_tool_call``."""

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        try:
            response = await route_tool_call(self.name, arguments)
        except Exception as e:
            logger.exception("Unexpected error in %s", self.name)
            raise handle_api_error(e) from e

        if response.is_error:
            if response.error is not None:
                raise create_error(format_error(response.error))
            raise create_error(response.text)
        return ToolResult(content=to_mcp_content(response))

    @classmethod
    def from_definition(cls, definition: ToolDefinition) -> "RoamTool":
        return cls(
            name=definition.name,
            description=definition.description,
            parameters=definition.input_schema(),
        )


def create_server() -> FastMCP:
    """FastMCP server with every registered tool."""
    server = FastMCP("roam-mcp", instructions=INSTRUCTIONS)
    for definition in TOOLS:
        server.add_tool(RoamTool.from_definition(definition))
    return server


mcp = create_server()


async def check_config(store: ConfigStore) -> None:
    """Fail fast on a config written by a newer build.

    A missing or otherwise broken config is fine at startup: the user can
    connect a graph later through setup_new_graph.

    Raises:
        RoamError: CONFIG_TOO_NEW
    """
    try:
        await store.load()
    except RoamError as e:
        if e.code == ErrorCode.CONFIG_TOO_NEW:
            raise
        logger.info("config_not_ready", extra={"error.code": str(e.code)})


def run_server(transport: str = "stdio", host: str = "127.0.0.1", port: int = 8000) -> None:
    configure_logging(default="INFO")
    try:
        asyncio.run(check_config(ConfigStore()))
    except RoamError as e:
        print(e.message, file=sys.stderr)
        sys.exit(1)

    logger.info("Roam MCP server running", extra={"transport": transport})
    if transport == "stdio":
        mcp.run()
    else:
        mcp.run(transport="http", host=host, port=port)


def main():
    """Entry point for packaged distribution."""
    run_server()


if __name__ == "__main__":
    main()
