"""Tests for the ``roam connect`` flow."""

import io
import json

import pytest
from rich.console import Console

from conftest import OTHER_TOKEN, TOKEN, graph_record
from roam_tools.connect import ConnectOptions, Connector, GraphChoice, validate_options
from roam_tools.models import GraphConnection
from roam_tools.utils.error_utils import ErrorCode, RoamError

AVAILABLE = [{"name": "notes", "type": "hosted"}, {"name": "work", "type": "hosted"}]


class Answers:
    """Scripted stand-in for ``typer.prompt``."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.questions = []

    def __call__(self, text, **kwargs):
        self.questions.append(text)
        return self.answers.pop(0)


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def roam(fake_roam):
    """Fake Roam Desktop with two available graphs, ``work`` open."""
    fake_roam.route("/api/graphs/available", (200, {"success": True, "result": AVAILABLE}))
    fake_roam.route("/api/graphs/open", (200, {"success": True, "result": [{"name": "work", "type": "hosted"}]}))
    fake_roam.route(
        "/api/graphs/tokens/request",
        (200, {"success": True, "token": TOKEN, "grantedAccessLevel": "full"}),
    )
    return fake_roam


@pytest.fixture
def connector(store, output, fake_roam, sleeps, launches):
    def _make(*answers):
        return Connector(
            store=store,
            console=Console(file=output, width=200),
            prompt=Answers(*answers),
            transport=fake_roam.transport,
            launcher=launches,
            sleep=sleeps,
        )

    return _make


def token_requests(fake_roam):
    return [json.loads(r.content) for r in fake_roam.requests if r.url.path == "/api/graphs/tokens/request"]


class TestValidateOptions:
    @pytest.mark.parametrize(
        "options,fragment",
        [
            (ConnectOptions(graph="g", nickname="n", access_level="admin"), "Invalid access level"),
            (ConnectOptions(graph="g", nickname="n", graph_type="cloud"), "Invalid type"),
            (ConnectOptions(graph="g", nickname="n", public=True, graph_type="offline"), "always hosted"),
            (ConnectOptions(graph="g", nickname="n", public=True, access_level="full"), "read-only"),
            (ConnectOptions(graph="g"), "--nickname is required"),
            (ConnectOptions(graph="g", nickname="---"), "cannot be empty"),
        ],
    )
    def test_rejects(self, options, fragment):
        with pytest.raises(RoamError) as exc_info:
            validate_options(options)
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert fragment in exc_info.value.message

    def test_accepts_public_read_only(self):
        validate_options(ConnectOptions(graph="help", nickname="Roam Help", public=True, access_level="read-only"))


class TestGraphChoice:
    def test_label(self):
        existing = GraphConnection(name="work", token=TOKEN, nickname="job", last_known_token_status="revoked")
        choice = GraphChoice(name="work", type="hosted", is_open=True, existing=existing)
        assert choice.label == 'work (hosted) [open] [connected as "job", token revoked]'


class TestNonInteractive:
    @pytest.mark.asyncio
    async def test_connects(self, connector, roam, read_config, output):
        roam.route(
            "/api/graphs/tokens/request",
            (200, {"success": True, "token": TOKEN, "grantedAccessLevel": "read-only"}),
        )
        connection = await connector().connect(
            ConnectOptions(graph="work", nickname="Work Notes", access_level="read-append")
        )

        assert connection.nickname == "work-notes"
        assert connection.access_level == "read-only"
        assert read_config()["graphs"][0]["nickname"] == "work-notes"
        assert token_requests(roam)[0]["accessLevel"] == "read-append"
        text = output.getvalue()
        assert "Connected!" in text
        assert 'You requested "read-append" but were granted "read-only"' in text

    @pytest.mark.asyncio
    async def test_defaults_to_full_access(self, connector, roam):
        await connector().connect(ConnectOptions(graph="work", nickname="w"))
        assert token_requests(roam)[0]["accessLevel"] == "full"

    @pytest.mark.asyncio
    async def test_bad_flags_do_not_touch_roam(self, connector, roam):
        with pytest.raises(RoamError):
            await connector().connect(ConnectOptions(graph="work"))
        assert roam.requests == []

    @pytest.mark.asyncio
    async def test_already_connected(self, connector, roam, write_config):
        write_config([graph_record(name="work", nickname="job")])
        with pytest.raises(RoamError) as exc_info:
            await connector().connect(ConnectOptions(graph="work", nickname="other"))

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert "roam connect --remove --nickname job" in exc_info.value.message
        assert token_requests(roam) == []

    @pytest.mark.asyncio
    async def test_nickname_collision(self, connector, roam, write_config):
        write_config([graph_record(name="notes", nickname="work")])
        with pytest.raises(RoamError) as exc_info:
            await connector().connect(ConnectOptions(graph="work", nickname="WORK"))
        assert exc_info.value.code == ErrorCode.NICKNAME_COLLISION

    @pytest.mark.asyncio
    async def test_unknown_graph_suggests_public(self, connector, roam):
        with pytest.raises(RoamError) as exc_info:
            await connector().connect(ConnectOptions(graph="help", nickname="h"))
        assert "--public" in exc_info.value.message
        assert exc_info.value.context["available_graphs"] == ["notes (hosted)", "work (hosted)"]

    @pytest.mark.asyncio
    async def test_public_graph_is_read_only(self, connector, roam, read_config):
        roam.route("/api/graphs/tokens/request", (200, {"success": True, "token": OTHER_TOKEN}))
        connection = await connector().connect(ConnectOptions(graph="help", nickname="Roam Help", public=True))

        assert connection.nickname == "roam-help"
        assert connection.access_level is None
        request = token_requests(roam)[0]
        assert request["accessLevel"] == "read-only"
        assert request["graphType"] == "hosted"

    @pytest.mark.asyncio
    async def test_no_graphs_available(self, connector, fake_roam):
        fake_roam.route("/api/graphs/available", (200, {"success": True, "result": []}))
        with pytest.raises(RoamError) as exc_info:
            await connector().connect(ConnectOptions(graph="work", nickname="w"))
        assert exc_info.value.code == ErrorCode.GRAPH_NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_token_denied(self, connector, roam, config_path):
        roam.route(
            "/api/graphs/tokens/request",
            (200, {"success": False, "error": {"code": "USER_REJECTED", "message": "denied"}}),
        )
        with pytest.raises(RoamError) as exc_info:
            await connector().connect(ConnectOptions(graph="work", nickname="w"))
        assert exc_info.value.code == ErrorCode.USER_REJECTED
        assert not config_path.exists()


class TestRemove:
    @pytest.mark.asyncio
    async def test_by_nickname(self, connector, write_config, read_config, fake_roam, output):
        write_config([
            graph_record(name="a", nickname="first"),
            graph_record(name="b", nickname="second", token=OTHER_TOKEN),
        ])
        await connector().connect(ConnectOptions(remove=True, nickname="First"))

        assert [g["nickname"] for g in read_config()["graphs"]] == ["second"]
        assert 'Removed "first"' in output.getvalue()
        assert fake_roam.requests == []

    @pytest.mark.asyncio
    async def test_by_graph_name(self, connector, write_config, read_config):
        write_config([graph_record(name="a", nickname="first")])
        await connector().connect(ConnectOptions(remove=True, graph="a"))
        assert read_config()["graphs"] == []

    @pytest.mark.asyncio
    async def test_unknown(self, connector, write_config):
        write_config([graph_record()])
        with pytest.raises(RoamError) as exc_info:
            await connector().connect(ConnectOptions(remove=True, nickname="nope"))
        assert exc_info.value.code == ErrorCode.GRAPH_NOT_CONFIGURED
        assert exc_info.value.context["available_graphs"][0]["nickname"] == "main"

    @pytest.mark.asyncio
    async def test_needs_target(self, connector):
        with pytest.raises(RoamError) as exc_info:
            await connector().connect(ConnectOptions(remove=True))
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR


class TestInteractive:
    @pytest.mark.asyncio
    async def test_open_graphs_listed_first(self, connector, roam, output, read_config):
        connection = await connector("1", "read-append", "Work Stuff").connect(ConnectOptions())

        assert connection.name == "work"
        assert connection.nickname == "work-stuff"
        assert token_requests(roam)[0]["accessLevel"] == "read-append"
        assert "1. work (hosted) [open]" in output.getvalue()

    @pytest.mark.asyncio
    async def test_nickname_asked_again_on_collision(self, connector, roam, write_config, output):
        write_config([graph_record(name="notes", nickname="home")])
        connection = await connector("1", "full", "Home", "  ", "office").connect(ConnectOptions())

        assert connection.nickname == "office"
        text = output.getvalue()
        assert 'Nickname "home" is already used by "notes"' in text
        assert "Nickname cannot be empty" in text

    @pytest.mark.asyncio
    async def test_public_graph_entry(self, connector, roam):
        roam.route("/api/graphs/tokens/request", (200, {"success": True, "token": OTHER_TOKEN}))
        connection = await connector("p", "help", "help").connect(ConnectOptions())

        assert connection.name == "help"
        assert token_requests(roam)[0]["accessLevel"] == "read-only"

    @pytest.mark.asyncio
    async def test_cancel_existing(self, connector, roam, write_config):
        write_config([graph_record(name="work", nickname="job")])
        result = await connector("1", "cancel").connect(ConnectOptions())

        assert result is None
        assert token_requests(roam) == []

    @pytest.mark.asyncio
    async def test_replace_revoked(self, connector, roam, write_config, read_config):
        write_config([graph_record(name="work", nickname="job", token=OTHER_TOKEN, lastKnownTokenStatus="revoked")])
        connection = await connector("1", "replace", "full", "job").connect(ConnectOptions())

        assert connection.token == TOKEN
        graphs = read_config()["graphs"]
        assert len(graphs) == 1
        assert graphs[0]["token"] == TOKEN

    @pytest.mark.asyncio
    async def test_remove_existing(self, connector, roam, write_config, read_config):
        write_config([graph_record(name="work", nickname="job")])
        assert await connector("1", "remove").connect(ConnectOptions()) is None
        assert read_config()["graphs"] == []
