"""Declarative tool registry.

Each tool is plain data: a name, a description, its argument fields and the
handler that implements it. The same definitions drive argument validation,
the JSON schema advertised to MCP clients and the generated CLI commands.
"""

import math
from dataclasses import dataclass, field
from typing import Annotated, Any, Awaitable, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, StrictBool, ValidationError, create_model

from . import tools
from .tools.context import ToolContext
from .utils.error_utils import ErrorCode, RoamError
from .utils.results import ToolResponse

FieldType = Literal["string", "number", "boolean", "position"]
Handler = Callable[[ToolContext, Dict[str, Any]], Awaitable[ToolResponse]]

POSITIONS = ("first", "last")


# ============================================================================
# Argument coercion
# ============================================================================

def _coerce_number(value: Any) -> Any:
    # bool is an int subclass; True is not a number here
    if isinstance(value, bool):
        raise ValueError("expected a number")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            raise ValueError(f"expected a number, got {value!r}") from None
        if not math.isfinite(number):
            raise ValueError("must be a finite number")
        return number
    raise ValueError("expected a number")


def _coerce_bool(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return value


def _coerce_position(value: Any) -> Any:
    if value in POSITIONS:
        return value
    try:
        return _coerce_number(value)
    except ValueError:
        raise ValueError("expected a number, 'first' or 'last'") from None


Number = Annotated[Union[int, float], BeforeValidator(_coerce_number)]
Boolean = Annotated[StrictBool, BeforeValidator(_coerce_bool)]
Position = Annotated[Union[Literal["first", "last"], int, float], BeforeValidator(_coerce_position)]


# ============================================================================
# Definitions
# ============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """One tool argument."""

    name: str
    type: FieldType = "string"
    description: str = ""
    required: bool = False
    choices: Tuple[str, ...] = ()

    def python_type(self) -> Any:
        if self.type == "number":
            return Number
        if self.type == "boolean":
            return Boolean
        if self.type == "position":
            return Position
        if self.choices:
            return Literal[self.choices]
        return str

    def json_schema(self) -> Dict[str, Any]:
        if self.type == "position":
            prop: Dict[str, Any] = {
                "oneOf": [{"type": "number"}, {"type": "string", "enum": list(POSITIONS)}],
            }
        else:
            prop = {"type": self.type}
            if self.choices:
                prop["enum"] = list(self.choices)
        if self.description:
            prop["description"] = self.description
        return prop


GRAPH_FIELD = FieldSpec(
    "graph",
    description=(
        "Graph nickname or name (optional - auto-selected when only one graph "
        "is configured)"
    ),
)


@dataclass(frozen=True)
class ToolDefinition:
    """A routable tool.

    ``needs_graph`` tools are dispatched with a client bound to the resolved
    graph and automatically accept an optional ``graph`` argument; the others
    run standalone.
    """

    name: str
    description: str
    fields: Tuple[FieldSpec, ...]
    operation: str
    handler: Handler
    needs_graph: bool = True
    mutating: bool = False
    _model: Dict[str, type] = field(default_factory=dict, repr=False, compare=False)

    @property
    def all_fields(self) -> Tuple[FieldSpec, ...]:
        if self.needs_graph:
            return (GRAPH_FIELD,) + self.fields
        return self.fields

    @property
    def cli_name(self) -> str:
        return self.name.replace("_", "-")

    def input_schema(self) -> Dict[str, Any]:
        """JSON schema for the tool's arguments."""
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {f.name: f.json_schema() for f in self.all_fields},
        }
        required = [f.name for f in self.all_fields if f.required]
        if required:
            schema["required"] = required
        return schema

    def arguments_model(self) -> type:
        """Pydantic model built from the field specs (cached per definition)."""
        if "model" not in self._model:
            definitions: Dict[str, Any] = {}
            for spec in self.all_fields:
                if spec.required:
                    definitions[spec.name] = (spec.python_type(), ...)
                else:
                    definitions[spec.name] = (Optional[spec.python_type()], None)
            self._model["model"] = create_model(
                f"{self.name}_arguments",
                __config__=ConfigDict(extra="ignore"),
                **definitions,
            )
        return self._model["model"]


def _format_errors(error: ValidationError) -> str:
    problems = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "arguments"
        message = err["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        problems.append(f"{location}: {message}")
    return "; ".join(problems)


def validate_arguments(tool: ToolDefinition, args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate and coerce raw arguments for ``tool``.

    Unknown keys are dropped, absent (or null) optional fields are omitted.

    Raises:
        RoamError: VALIDATION_ERROR listing every offending field
    """
    model = tool.arguments_model()
    try:
        parsed: BaseModel = model.model_validate(args or {})
    except ValidationError as e:
        raise RoamError(
            f"Invalid arguments for {tool.name}: {_format_errors(e)}",
            ErrorCode.VALIDATION_ERROR,
        ) from e
    return parsed.model_dump(exclude_none=True)


# ============================================================================
# Registry
# ============================================================================

SORT_CHOICES = ("created-date", "edited-date", "daily-note-date")
SORT_ORDER_CHOICES = ("asc", "desc")
VIEW_TYPE_CHOICES = ("document", "bullet", "numbered")

_MAX_DEPTH = FieldSpec("maxDepth", "number", "Max depth of children to include in markdown (omit for full tree)")
_OFFSET = FieldSpec("offset", "number", "Skip first N results (default: 0)")
_LIMIT = FieldSpec("limit", "number", "Max results to return (default: 20)")
_INCLUDE_PATH = FieldSpec("includePath", "boolean", "Include breadcrumb path to each result (default: true)")
_SORT = FieldSpec("sort", description="Sort order (default: created-date)", choices=SORT_CHOICES)
_SORT_ORDER = FieldSpec("sortOrder", description="Sort direction (default: desc)", choices=SORT_ORDER_CHOICES)


TOOLS: Tuple[ToolDefinition, ...] = (
    # Graph management
    ToolDefinition(
        name="list_graphs",
        description="List configured graphs and their nicknames",
        fields=(),
        operation="graphs",
        handler=tools.list_graphs,
        needs_graph=False,
    ),
    ToolDefinition(
        name="setup_new_graph",
        description=(
            "Connect a new Roam graph. Call without arguments to list the graphs "
            "available in Roam Desktop, then with graph and nickname to connect one."
        ),
        fields=(
            FieldSpec("graph", description="The canonical Roam graph name. Omit graph and nickname to list available graphs."),
            FieldSpec("nickname", description=(
                "A short, memorable label describing what this graph is for (e.g. 'work notes'). "
                "Required when graph is provided."
            )),
        ),
        operation="graphs",
        handler=tools.setup_new_graph,
        needs_graph=False,
        mutating=True,
    ),
    # Pages
    ToolDefinition(
        name="get_graph_guidelines",
        description="Get the graph's guidelines and starred pages. Call before operating on a graph.",
        fields=(),
        operation="pages",
        handler=tools.get_graph_guidelines,
    ),
    ToolDefinition(
        name="create_page",
        description="Create a new page, optionally with markdown content",
        fields=(
            FieldSpec("title", description="Page title", required=True),
            FieldSpec("markdown", description="Markdown content for the page"),
            FieldSpec("uid", description="UID for the new page (generated if omitted)"),
        ),
        operation="pages",
        handler=tools.create_page,
        mutating=True,
    ),
    ToolDefinition(
        name="get_page",
        description="Get a page's content as markdown",
        fields=(
            FieldSpec("uid", description="Page UID"),
            FieldSpec("title", description="Page title (alternative to uid)"),
            _MAX_DEPTH,
        ),
        operation="pages",
        handler=tools.get_page,
    ),
    ToolDefinition(
        name="update_page",
        description="Rename a page or change how its children are displayed",
        fields=(
            FieldSpec("uid", description="Page UID", required=True),
            FieldSpec("title", description="New page title"),
            FieldSpec("childrenViewType", description="How children are displayed", choices=VIEW_TYPE_CHOICES),
            FieldSpec("mergePages", "boolean", "Merge with an existing page when renaming onto its title (default: false)"),
        ),
        operation="pages",
        handler=tools.update_page,
        mutating=True,
    ),
    ToolDefinition(
        name="delete_page",
        description="Delete a page and all its contents",
        fields=(FieldSpec("uid", description="Page UID to delete", required=True),),
        operation="pages",
        handler=tools.delete_page,
        mutating=True,
    ),
    # Blocks
    ToolDefinition(
        name="create_block",
        description="Create a new block under a parent, using markdown content",
        fields=(
            FieldSpec("parentUid", description="UID of parent block or page", required=True),
            FieldSpec("markdown", description="Markdown content for the block", required=True),
            FieldSpec("order", "position", "Position (number, 'first', or 'last'). Defaults to 'last'"),
        ),
        operation="blocks",
        handler=tools.create_block,
        mutating=True,
    ),
    ToolDefinition(
        name="get_block",
        description="Get a block's content and children as markdown",
        fields=(FieldSpec("uid", description="Block UID", required=True), _MAX_DEPTH),
        operation="blocks",
        handler=tools.get_block,
    ),
    ToolDefinition(
        name="update_block",
        description="Update an existing block's content or properties",
        fields=(
            FieldSpec("uid", description="Block UID", required=True),
            FieldSpec("string", description="New text content"),
            FieldSpec("open", "boolean", "Expanded (true) or collapsed (false)"),
            FieldSpec("heading", "number", "Heading level (0-3)"),
            FieldSpec("textAlign", description="Text alignment", choices=("left", "center", "right", "justify")),
            FieldSpec("childrenViewType", description="How children are displayed", choices=VIEW_TYPE_CHOICES),
        ),
        operation="blocks",
        handler=tools.update_block,
        mutating=True,
    ),
    ToolDefinition(
        name="delete_block",
        description="Delete a block and all its children",
        fields=(FieldSpec("uid", description="Block UID to delete", required=True),),
        operation="blocks",
        handler=tools.delete_block,
        mutating=True,
    ),
    ToolDefinition(
        name="move_block",
        description="Move a block to a new parent or position",
        fields=(
            FieldSpec("uid", description="Block UID to move", required=True),
            FieldSpec("parentUid", description="UID of the new parent block or page", required=True),
            FieldSpec("order", "position", "Position in the new parent (number, 'first', or 'last')", required=True),
        ),
        operation="blocks",
        handler=tools.move_block,
        mutating=True,
    ),
    ToolDefinition(
        name="get_backlinks",
        description="Get blocks that reference a given page or block",
        fields=(
            FieldSpec("uid", description="UID of page or block (required if no title)"),
            FieldSpec("title", description="Page title (required if no uid)"),
            _OFFSET,
            _LIMIT,
            _SORT,
            _SORT_ORDER,
            FieldSpec("search", description="Filter results by text match"),
            _INCLUDE_PATH,
            FieldSpec("maxDepth", "number", "Max depth of children to include in markdown (default: 2)"),
        ),
        operation="blocks",
        handler=tools.get_backlinks,
    ),
    # Search
    ToolDefinition(
        name="search",
        description="Search pages and blocks by text",
        fields=(
            FieldSpec("query", description="Search query", required=True),
            FieldSpec("scope", description="What to search (default: all)", choices=("all", "pages", "blocks")),
            _OFFSET,
            _LIMIT,
            _INCLUDE_PATH,
            _MAX_DEPTH,
        ),
        operation="search",
        handler=tools.search,
    ),
    ToolDefinition(
        name="search_templates",
        description="Search the graph's templates by name",
        fields=(FieldSpec("query", description="Template name filter (omit to list all)"),),
        operation="search",
        handler=tools.search_templates,
    ),
    ToolDefinition(
        name="roam_query",
        description=(
            "Run a Roam query ({{query: ...}} syntax, not Datalog), either from an "
            "existing query block (uid) or a raw query string (query)"
        ),
        fields=(
            FieldSpec("uid", description="UID of a block containing {{query: ...}}"),
            FieldSpec("query", description='Raw Roam query string, e.g. "{and: [[TODO]] {not: [[DONE]]}}"'),
            _SORT,
            _SORT_ORDER,
            _INCLUDE_PATH,
            _OFFSET,
            _LIMIT,
            FieldSpec("maxDepth", "number", "Max depth of children to include in markdown (default: 1)"),
        ),
        operation="search",
        handler=tools.roam_query,
    ),
    # Navigation
    ToolDefinition(
        name="get_open_windows",
        description="Get the main window view and the windows open in the right sidebar",
        fields=(),
        operation="navigation",
        handler=tools.get_open_windows,
    ),
    ToolDefinition(
        name="get_selection",
        description="Get the focused block and any multi-selected blocks",
        fields=(),
        operation="navigation",
        handler=tools.get_selection,
    ),
    ToolDefinition(
        name="open_main_window",
        description="Navigate to a page or block in the main window",
        fields=(
            FieldSpec("uid", description="UID of page or block"),
            FieldSpec("title", description="Page title (alternative to uid)"),
        ),
        operation="navigation",
        handler=tools.open_main_window,
    ),
    ToolDefinition(
        name="open_sidebar",
        description="Open a page or block in the right sidebar",
        fields=(
            FieldSpec("uid", description="UID of page or block", required=True),
            FieldSpec("type", description="View type (default: outline)", choices=("block", "outline", "mentions")),
        ),
        operation="navigation",
        handler=tools.open_sidebar,
    ),
    # Files
    ToolDefinition(
        name="file_get",
        description="Download a file hosted in the graph",
        fields=(FieldSpec("url", description="File URL", required=True),),
        operation="files",
        handler=tools.file_get,
    ),
    ToolDefinition(
        name="file_upload",
        description="Upload a file to the graph from a local path or base64 data",
        fields=(
            FieldSpec("filePath", description="Local file to upload"),
            FieldSpec("base64", description="File contents as base64 (alternative to filePath)"),
            FieldSpec("filename", description="File name (defaults to the name of filePath)"),
            FieldSpec("mimetype", description="Media type (guessed from the file name if omitted)"),
        ),
        operation="files",
        handler=tools.file_upload,
        mutating=True,
    ),
    ToolDefinition(
        name="file_delete",
        description="Delete a file hosted in the graph",
        fields=(FieldSpec("url", description="File URL", required=True),),
        operation="files",
        handler=tools.file_delete,
        mutating=True,
    ),
)

_BY_NAME: Dict[str, ToolDefinition] = {tool.name: tool for tool in TOOLS}


def find_tool(name: str) -> Optional[ToolDefinition]:
    return _BY_NAME.get(name)


def list_tools() -> List[ToolDefinition]:
    return list(TOOLS)
