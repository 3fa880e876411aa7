"""Per-call context handed to every tool handler."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config_store import ConfigStore
from ..utils.roam_api_client import RoamClient


@dataclass
class ToolContext:
    """What a handler may touch during one call.

    Client tools get ``client`` bound to the resolved graph. Standalone tools
    (``list_graphs``, ``setup_new_graph``) get no client and talk to Roam's
    discovery endpoints directly, using the optional transport overrides.
    """

    store: ConfigStore
    client: Optional[RoamClient] = None
    transport: Optional[httpx.AsyncBaseTransport] = None
    port_file: Optional[Path] = None
    launcher: Optional[Callable[[], Awaitable[None]]] = None
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None

    @property
    def roam(self) -> RoamClient:
        if self.client is None:
            raise RuntimeError("This tool requires a graph-bound client")
        return self.client
