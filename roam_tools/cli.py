"""``roam`` command line interface.

``connect`` and ``serve`` are hand-written commands; every registered tool
also becomes a subcommand (``create_page`` -> ``roam create-page``, alias
``cp``) whose ``--flags`` mirror the tool's fields. Flag values are passed
through as strings and coerced by the router's validation, so the CLI and
the MCP server accept exactly the same inputs.
"""

import asyncio
import base64
import json
import logging
import mimetypes
import tempfile
import uuid
from pathlib import Path
from typing import Annotated, Any, Dict, Optional

import click
import typer
from rich.console import Console
from typer.core import TyperGroup

from .connect import ConnectOptions, Connector
from .logging import configure_logging
from .registry import TOOLS, ToolDefinition
from .router import route_tool_call
from .utils.error_utils import ErrorCode, RoamError, format_error
from .utils.results import ImageContent, TextContent, ToolResponse

logger = logging.getLogger(__name__)

err_console = Console(stderr=True)

# Full command name -> short alias
COMMAND_ALIASES = {
    "list-graphs": "lg",
    "setup-new-graph": "sg",
    "get-graph-guidelines": "gg",
    "get-page": "gp",
    "get-block": "gb",
    "get-backlinks": "bl",
    "search": "s",
    "search-templates": "st",
    "roam-query": "q",
    "get-open-windows": "win",
    "get-selection": "sel",
    "create-page": "cp",
    "create-block": "cb",
    "update-page": "up",
    "update-block": "ub",
    "delete-page": "dp",
    "delete-block": "db",
    "move-block": "mb",
    "open-main-window": "go",
    "open-sidebar": "side",
    "file-get": "fg",
    "file-upload": "fu",
    "file-delete": "fd",
}

# Field name -> single letter flag
FLAG_ALIASES = {
    "graph": "g",
    "nickname": "n",
    "uid": "u",
    "title": "t",
    "query": "q",
    "markdown": "m",
    "parentUid": "p",
    "maxDepth": "d",
    "limit": "l",
    "offset": "o",
    "scope": "s",
    "textAlign": "a",
    "base64": "b",
    "open": "e",
    "search": "f",
    "includePath": "i",
    "filename": "N",
    "sort": "r",
    "childrenViewType": "v",
    "mimetype": "E",
    "filePath": "F",
    "heading": "H",
    "mergePages": "M",
    "order": "O",
    "sortOrder": "R",
    "string": "S",
    "type": "T",
    "url": "U",
}


class AliasedGroup(TyperGroup):
    """Group that also resolves the short command aliases."""

    def get_command(self, ctx: click.Context, cmd_name: str) -> Optional[click.Command]:
        for name, alias in COMMAND_ALIASES.items():
            if cmd_name == alias:
                cmd_name = name
                break
        return super().get_command(ctx, cmd_name)


app = typer.Typer(
    name="roam",
    help="Roam Research CLI",
    cls=AliasedGroup,
    no_args_is_help=True,
)


# ============================================================================
# Output
# ============================================================================

def kebab(name: str) -> str:
    """``parentUid`` -> ``parent-uid``."""
    return "".join(f"-{c.lower()}" if c.isupper() else c for c in name)


def save_image(data: str, mime_type: str) -> Dict[str, Any]:
    """Write binary tool output to a temp file and describe it.

    Falls back to echoing the base64 data if the file cannot be written.
    """
    try:
        directory = Path(tempfile.gettempdir()) / "roam"
        directory.mkdir(parents=True, exist_ok=True)
        extension = mimetypes.guess_extension(mime_type) or ".bin"
        path = directory / f"{uuid.uuid4()}{extension}"
        raw = base64.b64decode(data)
        path.write_bytes(raw)
    except (OSError, ValueError) as e:
        logger.debug("Could not write image to temp dir: %s", e)
        return {"type": "image", "data": data, "mimeType": mime_type}
    return {"type": "image", "path": str(path), "mimeType": mime_type, "size": len(raw)}


def print_error(error: RoamError) -> None:
    err_console.print(format_error(error), markup=False, highlight=False)
    if error.code == ErrorCode.GRAPH_NOT_SELECTED:
        err_console.print(
            "\nUse --graph <nickname> to specify which graph to use.",
            markup=False,
            highlight=False,
        )


def render(response: ToolResponse) -> None:
    if response.is_error:
        if response.error is not None:
            print_error(response.error)
        else:
            err_console.print(response.text, markup=False, highlight=False)
        raise typer.Exit(1)

    for item in response.content:
        if isinstance(item, TextContent):
            click.echo(item.text)
        elif isinstance(item, ImageContent):
            click.echo(json.dumps(save_image(item.data, item.mime_type), indent=2))


# ============================================================================
# Generated tool commands
# ============================================================================

def build_tool_command(tool: ToolDefinition) -> click.Command:
    """A click command whose options are the tool's fields."""
    params = []
    for spec in tool.all_fields:
        decls = [f"--{kebab(spec.name)}", spec.name]
        short = FLAG_ALIASES.get(spec.name)
        if short:
            decls.insert(0, f"-{short}")
        help_text = spec.description
        if spec.required:
            help_text = f"{help_text} [required]".strip()
        params.append(click.Option(decls, default=None, help=help_text))

    def callback(**options: Any) -> None:
        args = {name: value for name, value in options.items() if value is not None}
        try:
            response = asyncio.run(route_tool_call(tool.name, args))
        except Exception as e:
            logger.debug("Unhandled error in %s", tool.name, exc_info=True)
            err_console.print(str(e), markup=False, highlight=False)
            raise typer.Exit(1)
        render(response)

    alias = COMMAND_ALIASES.get(tool.cli_name)
    description = tool.description + (f" (alias: {alias})" if alias else "")
    return click.Command(tool.cli_name, params=params, callback=callback, help=description)


# ============================================================================
# Hand-written commands
# ============================================================================

@app.callback()
def main_callback(
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR (default: WARNING)"),
    ] = None,
) -> None:
    """Roam Research CLI."""
    configure_logging(log_level)


@app.command()
def connect(
    graph: Annotated[
        Optional[str], typer.Option("--graph", "-g", help="Graph name (enables non-interactive mode)")
    ] = None,
    nickname: Annotated[
        Optional[str],
        typer.Option("--nickname", "-n", help="Short name you'll use to refer to this graph (required with --graph)"),
    ] = None,
    access_level: Annotated[
        Optional[str], typer.Option("--access-level", help="Access level: full, read-append, or read-only")
    ] = None,
    public: Annotated[bool, typer.Option("--public", help="Public graph (read-only, hosted)")] = False,
    graph_type: Annotated[
        Optional[str], typer.Option("--type", help="Graph type: hosted or offline")
    ] = None,
    remove: Annotated[
        bool, typer.Option("--remove", help="Remove a graph connection (use with --graph or --nickname)")
    ] = False,
) -> None:
    """Connect to a Roam graph and obtain a token.

    \b
    Examples:
      roam connect                                      Interactive setup
      roam connect -g my-graph -n main --access-level read-append
      roam connect -g help --public -n "Roam Help"      Connect to public graph
      roam connect --remove -g help                     Remove a connection
    """
    options = ConnectOptions(
        graph=graph,
        nickname=nickname,
        access_level=access_level,
        public=public,
        graph_type=graph_type,
        remove=remove,
    )
    try:
        asyncio.run(Connector().connect(options))
    except RoamError as e:
        print_error(e)
        raise typer.Exit(1)


@app.command()
def serve(
    transport: Annotated[
        str, typer.Option("--transport", help="MCP transport: stdio or http")
    ] = "stdio",
    host: Annotated[str, typer.Option("--host", help="Host to bind to (http only)")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind to (http only)")] = 8000,
) -> None:
    """Run the MCP server exposing every tool."""
    from .server import run_server

    run_server(transport=transport, host=host, port=port)


def build_cli() -> click.Group:
    """The full ``roam`` command group, tools included."""
    group = typer.main.get_command(app)
    for tool in TOOLS:
        group.add_command(build_tool_command(tool))
    return group


def main() -> None:
    build_cli()()


if __name__ == "__main__":
    main()
