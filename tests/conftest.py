"""Shared test fixtures and factories."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from roam_tools.config_store import ConfigStore, reset_warnings
from roam_tools.models import ResolvedGraph
from roam_tools.utils.retry import RetryPolicy
from roam_tools.utils.roam_api_client import RoamClient

TOKEN = "roam-graph-local-token-abcdef1234567890"
OTHER_TOKEN = "roam-graph-local-token-zyxwvu0987654321"


def graph_record(
    name: str = "my-graph",
    nickname: str = "main",
    type: str = "hosted",
    token: str = TOKEN,
    **extra: Any,
) -> Dict[str, Any]:
    """A graph entry as it appears in the config file."""
    record = {"name": name, "type": type, "token": token, "nickname": nickname}
    record.update(extra)
    return record


# =============================================================================
# Environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep every test away from the real home directory."""
    monkeypatch.setenv("ROAM_TOOLS_CONFIG", str(tmp_path / "default-config.json"))
    monkeypatch.setenv("ROAM_LOCAL_API_FILE", str(tmp_path / "no-port-file.json"))
    monkeypatch.delenv("ROAM_TOOLS_LOG_LEVEL", raising=False)
    reset_warnings()
    yield
    reset_warnings()


# =============================================================================
# Config fixtures
# =============================================================================


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "roam-tools.json"


@pytest.fixture
def store(config_path: Path) -> ConfigStore:
    return ConfigStore(config_path)


@pytest.fixture
def write_config(config_path: Path) -> Callable[..., Path]:
    """Write a config document with mode 0600 and return its path."""

    def _write(graphs: List[Dict[str, Any]], version: Any = 1, **extra: Any) -> Path:
        document: Dict[str, Any] = {"graphs": graphs, **extra}
        if version is not None:
            document["version"] = version
        config_path.write_text(json.dumps(document))
        config_path.chmod(0o600)
        return config_path

    return _write


@pytest.fixture
def read_config(config_path: Path) -> Callable[[], Dict[str, Any]]:
    def _read() -> Dict[str, Any]:
        return json.loads(config_path.read_text())

    return _read


@pytest.fixture
def resolved_graph() -> ResolvedGraph:
    return ResolvedGraph(name="my-graph", type="hosted", token=TOKEN, nickname="main")


# =============================================================================
# Fake Roam Desktop
# =============================================================================


class FakeRoam:
    """Scriptable stand-in for the Local API behind ``httpx.MockTransport``.

    Each entry in ``replies`` is consumed in order. An entry is either an
    exception instance (raised as a transport failure), a
    ``(status, body)`` tuple, or a callable taking the request.
    """

    def __init__(self) -> None:
        self.replies: List[Any] = []
        self.default: Any = (200, {"success": True, "result": None})
        self.requests: List[httpx.Request] = []
        self.routes: Dict[str, Any] = {}

    def reply(self, *items: Any) -> "FakeRoam":
        self.replies.extend(items)
        return self

    def route(self, path: str, reply: Any) -> "FakeRoam":
        self.routes[path] = reply
        return self

    @property
    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.content]

    @property
    def actions(self) -> List[str]:
        return [body["action"] for body in self.bodies if "action" in body]

    def _respond(self, reply: Any, request: httpx.Request) -> httpx.Response:
        if callable(reply) and not isinstance(reply, Exception):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        status, body = reply
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path in self.routes:
            return self._respond(self.routes[request.url.path], request)
        if self.replies:
            return self._respond(self.replies.pop(0), request)
        return self._respond(self.default, request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def refused(request: Optional[httpx.Request] = None) -> httpx.ConnectError:
    return httpx.ConnectError("[Errno 111] Connection refused", request=request)


@pytest.fixture
def fake_roam() -> FakeRoam:
    return FakeRoam()


class Recorder:
    """Async callable that records its calls instead of sleeping or launching."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls: List[Any] = []
        self.error = error

    async def __call__(self, *args: Any) -> None:
        self.calls.append(args[0] if len(args) == 1 else args)
        if self.error is not None:
            raise self.error


@pytest.fixture
def sleeps() -> Recorder:
    return Recorder()


@pytest.fixture
def launches() -> Recorder:
    return Recorder()


@pytest.fixture
def make_client(fake_roam: FakeRoam, sleeps: Recorder, launches: Recorder) -> Callable[..., RoamClient]:
    """Client factory wired to the fake Local API, usable as a router client_factory."""

    def _make(graph: ResolvedGraph, **overrides: Any) -> RoamClient:
        options: Dict[str, Any] = {
            "port": 3333,
            "transport": fake_roam.transport,
            "launcher": launches,
            "sleep": sleeps,
            "retry": RetryPolicy(),
        }
        options.update(overrides)
        return RoamClient(graph, **options)

    return _make
