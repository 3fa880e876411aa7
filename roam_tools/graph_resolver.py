"""Resolve an optional graph reference to a configured, authenticated graph."""

from typing import Any, Dict, List, Optional

from .config_store import ConfigStore
from .models import GraphConnection, ResolvedGraph
from .utils.error_utils import ErrorCode, RoamError


def describe_graphs(connections: List[GraphConnection]) -> List[Dict[str, Any]]:
    """Token-free listing used in disambiguation error context."""
    return [
        {
            "nickname": c.nickname,
            "name": c.name,
            "accessLevel": c.access_level,
            "lastKnownTokenStatus": c.last_known_token_status,
        }
        for c in connections
    ]


def find_connection(
    connections: List[GraphConnection], ref: str
) -> Optional[GraphConnection]:
    """Look up by nickname (case-insensitive) first, then by exact graph name."""
    key = ref.lower()
    for connection in connections:
        if connection.nickname.lower() == key:
            return connection
    for connection in connections:
        if connection.name == ref:
            return connection
    return None


class GraphResolver:
    """Stateless resolver: every ``resolve`` re-reads the config store.

    Args:
        store: Config store to consult (a default store if omitted)
    """

    def __init__(self, store: Optional[ConfigStore] = None):
        self.store = store or ConfigStore()

    async def resolve(self, explicit_ref: Optional[str] = None) -> ResolvedGraph:
        """Pick the graph for one call.

        Args:
            explicit_ref: Nickname or graph name supplied by the caller

        Returns:
            The resolved graph

        Raises:
            RoamError: CONFIG_NOT_FOUND, GRAPH_NOT_CONFIGURED or GRAPH_NOT_SELECTED
        """
        connections = await self.store.load()
        available = describe_graphs(connections)

        if explicit_ref:
            match = find_connection(connections, explicit_ref)
            if match is None:
                raise RoamError(
                    f"Graph '{explicit_ref}' is not configured. "
                    "Use one of the available nicknames, or run `roam connect` to add it.",
                    ErrorCode.GRAPH_NOT_CONFIGURED,
                    {"available_graphs": available},
                )
            return ResolvedGraph.from_connection(match)

        if len(connections) == 1:
            return ResolvedGraph.from_connection(connections[0])

        if not connections:
            raise RoamError(
                "No graphs are configured. Run `roam connect` to connect a graph, "
                "then try again.",
                ErrorCode.GRAPH_NOT_CONFIGURED,
                {"available_graphs": []},
            )

        raise RoamError(
            "Multiple graphs are configured. Ask the user which graph to use and "
            "pass its nickname as the 'graph' parameter.",
            ErrorCode.GRAPH_NOT_SELECTED,
            {"available_graphs": available},
        )
