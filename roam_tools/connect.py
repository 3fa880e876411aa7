"""``roam connect``: obtain a token from Roam Desktop and save the connection.

Two modes:
- Non-interactive (``--graph`` given): every decision comes from flags and
  any problem is an error.
- Interactive: pick a graph from a numbered list, then an access level and a
  nickname.

``--remove`` deletes a saved connection instead.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import click
import httpx
import typer
from rich.console import Console
from rich.markup import escape

from .config_store import ConfigStore
from .graph_resolver import describe_graphs
from .models import GraphConnection
from .utils.error_utils import ErrorCode, RoamError
from .utils.local_api import (
    fetch_available_graphs_with_retry,
    fetch_open_graphs,
    get_port,
    request_token,
    slugify,
    token_request_error,
)

ACCESS_LEVELS = ("full", "read-append", "read-only")
GRAPH_TYPES = ("hosted", "offline")

Prompt = Callable[..., Any]


@dataclass
class ConnectOptions:
    graph: Optional[str] = None
    nickname: Optional[str] = None
    access_level: Optional[str] = None
    public: bool = False
    graph_type: Optional[str] = None
    remove: bool = False


@dataclass
class GraphChoice:
    """A graph offered for connection, annotated with local state."""

    name: str
    type: str
    is_open: bool = False
    existing: Optional[GraphConnection] = None
    is_public: bool = False

    @property
    def label(self) -> str:
        text = f"{self.name} ({self.type})"
        if self.is_open:
            text += " [open]"
        if self.existing is not None:
            kind = "public, connected" if self.is_public else "connected"
            revoked = ", token revoked" if self.existing.last_known_token_status == "revoked" else ""
            text += f' [{kind} as "{self.existing.nickname}"{revoked}]'
        return text


def _invalid(message: str) -> RoamError:
    return RoamError(message, ErrorCode.VALIDATION_ERROR)


def validate_options(options: ConnectOptions) -> None:
    """Reject inconsistent non-interactive flags before touching Roam.

    Raises:
        RoamError: VALIDATION_ERROR
    """
    if options.access_level and options.access_level not in ACCESS_LEVELS:
        raise _invalid(
            f'Invalid access level "{options.access_level}". '
            f"Valid options: {', '.join(ACCESS_LEVELS)}"
        )
    if options.graph_type and options.graph_type not in GRAPH_TYPES:
        raise _invalid(
            f'Invalid type "{options.graph_type}". Valid options: {", ".join(GRAPH_TYPES)}'
        )
    if options.public and options.graph_type and options.graph_type != "hosted":
        raise _invalid('Public graphs are always hosted. Remove --type or set it to "hosted".')
    if options.public and options.access_level and options.access_level != "read-only":
        raise _invalid(
            "Public graphs only support read-only access. "
            'Remove --access-level or set it to "read-only".'
        )
    if not options.nickname:
        raise _invalid(
            "--nickname is required when using --graph. Provide a short name you'll "
            'use to refer to this graph, e.g. --nickname "my work graph"'
        )
    if not slugify(options.nickname):
        raise _invalid("Nickname cannot be empty.")


def _find_configured(
    configured: List[GraphConnection], name: str, graph_type: Optional[str] = None
) -> Optional[GraphConnection]:
    for connection in configured:
        if connection.name == name and (graph_type is None or connection.type == graph_type):
            return connection
    return None


def _nickname_owner(
    configured: List[GraphConnection], nickname: str, name: str, graph_type: Optional[str]
) -> Optional[GraphConnection]:
    """The connection already using ``nickname``, other than the graph being connected."""
    for connection in configured:
        if connection.nickname.lower() != nickname.lower():
            continue
        if connection.name == name and (graph_type is None or connection.type == graph_type):
            continue
        return connection
    return None


class Connector:
    """Runs one connect or remove session.

    Args:
        store: Config store to update
        console: Where progress is printed
        prompt: ``typer.prompt``-compatible callable for interactive answers
        transport: httpx transport for Roam's discovery endpoints
        port_file: Override for the port file location
        launcher: Coroutine that starts Roam Desktop
        sleep: Coroutine used while waiting for Roam to start
    """

    def __init__(
        self,
        store: Optional[ConfigStore] = None,
        console: Optional[Console] = None,
        prompt: Optional[Prompt] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        port_file: Optional[Path] = None,
        launcher: Optional[Callable[[], Awaitable[None]]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.store = store or ConfigStore()
        self.console = console or Console()
        self.prompt = prompt or typer.prompt
        self.transport = transport
        self.port_file = port_file
        self.launcher = launcher
        self.sleep = sleep

    # ========================================================================
    # Remove
    # ========================================================================

    async def remove(self, options: ConnectOptions) -> None:
        if not options.graph and not options.nickname:
            raise _invalid("--remove requires --graph <name> or --nickname <name>.")

        configured = await self.store.load_safe()
        if options.nickname:
            slug = slugify(options.nickname)
            target = next((c for c in configured if c.nickname.lower() == slug), None)
            wanted = f'nickname "{slug}"'
        else:
            target = _find_configured(configured, options.graph)
            wanted = f'name "{options.graph}"'

        if target is None:
            raise RoamError(
                f"No configured graph found matching {wanted}.",
                ErrorCode.GRAPH_NOT_CONFIGURED,
                {"available_graphs": describe_graphs(configured)},
            )

        await self.store.remove(target.nickname)
        self.console.print(f'Removed "{target.nickname}" ({target.name}) from config.')

    # ========================================================================
    # Selection
    # ========================================================================

    def _select_from_flags(
        self,
        options: ConnectOptions,
        available: List[Any],
        open_graphs: List[Any],
        configured: List[GraphConnection],
    ) -> GraphChoice:
        if options.public:
            graph_type = options.graph_type or "hosted"
            return GraphChoice(
                name=options.graph,
                type=graph_type,
                existing=_find_configured(configured, options.graph, graph_type),
                is_public=True,
            )

        match = next(
            (
                g for g in available
                if g.name == options.graph
                and (not options.graph_type or g.type == options.graph_type)
            ),
            None,
        )
        if match is None:
            raise RoamError(
                f'Graph "{options.graph}" not found in available graphs. '
                "If this is a public graph, use --public.",
                ErrorCode.VALIDATION_ERROR,
                {"available_graphs": [f"{g.name} ({g.type})" for g in available]},
            )
        return GraphChoice(
            name=match.name,
            type=match.type,
            is_open=any(o.name == match.name and o.type == match.type for o in open_graphs),
            existing=_find_configured(configured, match.name, match.type),
        )

    def _select_interactively(
        self,
        available: List[Any],
        open_graphs: List[Any],
        configured: List[GraphConnection],
    ) -> GraphChoice:
        choices = [
            GraphChoice(
                name=g.name,
                type=g.type,
                is_open=any(o.name == g.name and o.type == g.type for o in open_graphs),
                existing=_find_configured(configured, g.name, g.type),
            )
            for g in available
        ]
        # Configured graphs Roam does not list are public graphs
        for connection in configured:
            if not any(c.name == connection.name and c.type == connection.type for c in choices):
                choices.append(
                    GraphChoice(
                        name=connection.name,
                        type=connection.type,
                        existing=connection,
                        is_public=True,
                    )
                )
        choices.sort(key=lambda c: (not c.is_open, c.name.lower()))

        self.console.print("\n[bold]Select a graph to connect:[/bold]")
        for index, choice in enumerate(choices, start=1):
            self.console.print(f"  {index}. {escape(choice.label)}")
        self.console.print("  p. Connect to a public graph...")

        valid = [str(i) for i in range(1, len(choices) + 1)] + ["p"]
        answer = self.prompt("Graph", type=click.Choice(valid), show_choices=False)
        if answer != "p":
            return choices[int(answer) - 1]

        name = ""
        while not name:
            name = str(self.prompt("Enter the graph name")).strip()
        return GraphChoice(
            name=name,
            type="hosted",
            existing=_find_configured(configured, name, "hosted"),
            is_public=True,
        )

    async def _handle_existing(self, choice: GraphChoice) -> bool:
        """Ask what to do with an already connected graph; True to request a new token."""
        existing = choice.existing
        if existing.last_known_token_status == "revoked":
            question = (
                f'The token for "{existing.nickname}" has been revoked. '
                "Replace, remove or cancel?"
            )
            actions = ["replace", "remove", "cancel"]
        else:
            question = (
                f'This graph is already connected as "{existing.nickname}". '
                "Change permissions, remove or cancel?"
            )
            actions = ["change-permissions", "remove", "cancel"]

        action = self.prompt(question, type=click.Choice(actions), default="cancel")
        if action == "cancel":
            self.console.print("Cancelled.")
            return False
        if action == "remove":
            await self.store.remove(existing.nickname)
            self.console.print(f'Removed "{existing.nickname}" from config.')
            return False
        if action == "change-permissions":
            self.console.print(
                "\nTo change this token's permissions:\n"
                "  1. Open Roam Desktop and open the graph\n"
                "  2. Go to Settings > Graph > Local API Tokens\n"
                "  3. Find the token and adjust its permissions\n"
                "\nChanges are synced the next time get_graph_guidelines runs."
            )
            return False
        return True

    def _ask_nickname(self, configured: List[GraphConnection], choice: GraphChoice) -> str:
        while True:
            nickname = slugify(str(self.prompt("Enter a short name you'll use to refer to this graph")))
            if not nickname:
                self.console.print("[red]Nickname cannot be empty[/red]")
                continue
            owner = _nickname_owner(configured, nickname, choice.name, choice.type)
            if owner is not None:
                self.console.print(f'[red]Nickname "{nickname}" is already used by "{owner.name}"[/red]')
                continue
            return nickname

    # ========================================================================
    # Connect
    # ========================================================================

    async def connect(self, options: ConnectOptions) -> Optional[GraphConnection]:
        """Run the connect flow.

        Returns:
            The saved connection, or None if the session ended without saving

        Raises:
            RoamError: Invalid flags, unreachable Roam, unknown graph, nickname
                collision or a refused token request
        """
        if options.remove:
            await self.remove(options)
            return None

        non_interactive = bool(options.graph)
        if non_interactive:
            validate_options(options)

        port = await get_port(self.port_file)
        available = await fetch_available_graphs_with_retry(
            port, self.transport, self.launcher, self.sleep
        )
        if not available and not options.public:
            raise RoamError(
                "No graphs available. Please log in to Roam and try again.",
                ErrorCode.GRAPH_NOT_CONFIGURED,
            )

        open_graphs = await fetch_open_graphs(port, self.transport)
        configured = await self.store.load_safe()

        if non_interactive:
            nickname = slugify(options.nickname)
            owner = _nickname_owner(configured, nickname, options.graph, options.graph_type)
            if owner is not None:
                raise RoamError(
                    f'Nickname "{nickname}" is already used by graph "{owner.name}". '
                    "Please choose a different nickname with --nickname.",
                    ErrorCode.NICKNAME_COLLISION,
                )
            choice = self._select_from_flags(options, available, open_graphs, configured)
        else:
            choice = self._select_interactively(available, open_graphs, configured)

        if choice.existing is not None:
            if non_interactive:
                raise _invalid(
                    f'Graph "{choice.name}" is already connected as "{choice.existing.nickname}". '
                    "To replace the token, first remove it:\n"
                    f"  roam connect --remove --nickname {choice.existing.nickname}"
                )
            if not await self._handle_existing(choice):
                return None

        if choice.is_public:
            access_level = "read-only"
            self.console.print("\nPublic graphs only support read-only access.")
        elif non_interactive:
            access_level = options.access_level or "full"
        else:
            access_level = self.prompt(
                "Select permissions", type=click.Choice(list(ACCESS_LEVELS)), default="full"
            )

        self.console.print("\nWaiting for approval in Roam Desktop...")
        self.console.print("(A dialog should appear in the Roam app - please approve it)")
        result = await request_token(port, choice.name, choice.type, access_level, self.transport)
        error = token_request_error(result)
        if error is not None:
            raise error

        if not non_interactive:
            nickname = self._ask_nickname(configured, choice)
        self.console.print(f"→ Using nickname: {nickname}")

        granted = result.get("grantedAccessLevel")
        connection = GraphConnection(
            name=choice.name,
            type=choice.type,
            token=result["token"],
            nickname=nickname,
            access_level=granted if granted in ACCESS_LEVELS else None,
        )
        await self.store.save(connection)

        self.console.print(
            f"\n[green]Connected![/green] Graph {choice.name} (nickname: {nickname}) "
            f"has been saved to {self.store.path}"
        )
        if granted:
            self.console.print(f"Granted permissions: {granted}")
            if granted != access_level:
                self.console.print(
                    f'(Note: You requested "{access_level}" but were granted "{granted}" '
                    "based on your permissions)"
                )
        return connection
