"""Tests for the Local API client: requests, error classification and retry."""

import json

import httpx
import pytest

from conftest import TOKEN, Recorder, refused
from roam_tools.models import ResolvedGraph
from roam_tools.utils.error_utils import ErrorCode, RoamError
from roam_tools.utils.roam_api_client import RoamClient, parse_version, version_mismatch_advice
from roam_tools.utils.retry import RetryPolicy, backoff_schedule


def ok(result=None):
    return (200, {"success": True, "result": result, "apiVersion": "1.0.0"})


def failure(status, message, code=None, **extra):
    error = {"message": message}
    if code:
        error["code"] = code
    return (status, {"success": False, "error": error, **extra})


class TestConstruction:
    def test_rejects_invalid_graph_name(self):
        graph = ResolvedGraph(name="bad name", type="hosted", token=TOKEN, nickname="x")
        with pytest.raises(RoamError) as exc_info:
            RoamClient(graph, port=3333)
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_rejects_missing_token(self):
        graph = ResolvedGraph(name="my-graph", type="hosted", token="", nickname="x")
        with pytest.raises(RoamError) as exc_info:
            RoamClient(graph, port=3333)
        assert exc_info.value.code == ErrorCode.MISSING_TOKEN

    def test_token_not_in_repr(self, resolved_graph):
        assert TOKEN not in repr(resolved_graph)


class TestRequests:
    @pytest.mark.asyncio
    async def test_successful_call(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(ok({"uid": "abc"}))
        response = await make_client(resolved_graph).call("data.page.create", [{"page": {"title": "T"}}])

        assert response.success
        assert response.result == {"uid": "abc"}

        request = fake_roam.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://127.0.0.1:3333/api/my-graph"
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert json.loads(request.content) == {
            "action": "data.page.create",
            "args": [{"page": {"title": "T"}}],
            "expectedApiVersion": "1.0.0",
        }

    @pytest.mark.asyncio
    async def test_offline_graph_query(self, make_client, fake_roam):
        graph = ResolvedGraph(name="local", type="offline", token=TOKEN, nickname="l")
        await make_client(graph).call("data.ai.getPage", [])
        assert str(fake_roam.requests[0].url) == "http://127.0.0.1:3333/api/local?type=offline"

    @pytest.mark.asyncio
    async def test_args_default_to_empty_list(self, make_client, resolved_graph, fake_roam):
        await make_client(resolved_graph).call("ui.getFocusedBlock")
        assert fake_roam.bodies[0]["args"] == []

    @pytest.mark.asyncio
    async def test_port_from_port_file(self, resolved_graph, fake_roam, tmp_path):
        port_file = tmp_path / "port.json"
        port_file.write_text(json.dumps({"port": 4567}))
        client = RoamClient(resolved_graph, port_file=port_file, transport=fake_roam.transport)

        await client.call("data.ai.getPage", [])
        assert fake_roam.requests[0].url.port == 4567

    @pytest.mark.asyncio
    async def test_default_port_without_port_file(self, resolved_graph, fake_roam, tmp_path):
        client = RoamClient(
            resolved_graph, port_file=tmp_path / "missing.json", transport=fake_roam.transport
        )
        await client.call("data.ai.getPage", [])
        assert fake_roam.requests[0].url.port == 3333


class TestErrorClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,fragment",
        [
            ("TOKEN_NOT_FOUND", "revoked"),
            ("MISSING_TOKEN", "No API token"),
            ("INVALID_TOKEN_FORMAT", "roam-graph-local-token-"),
            ("WRONG_GRAPH_TYPE", "different graph type"),
        ],
    )
    async def test_authentication_errors(self, make_client, resolved_graph, fake_roam, sleeps, code, fragment):
        fake_roam.reply(failure(401, "nope", code))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])

        assert exc_info.value.code == code
        assert fragment in exc_info.value.message
        assert sleeps.calls == []

    @pytest.mark.asyncio
    async def test_401_without_code(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(failure(401, "nope"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])
        assert exc_info.value.code == ErrorCode.UNAUTHORIZED
        assert "Local API Tokens" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_insufficient_scope(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(failure(403, "Requires edit scope", "INSUFFICIENT_SCOPE"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.block.delete", [])
        assert exc_info.value.code == ErrorCode.INSUFFICIENT_SCOPE
        assert "Requires edit scope" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_scope_exceeds_permission(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(failure(403, "too much", "SCOPE_EXCEEDS_PERMISSION"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.block.delete", [])
        assert exc_info.value.code == ErrorCode.SCOPE_EXCEEDS_PERMISSION

    @pytest.mark.asyncio
    async def test_403_without_code(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(failure(403, "Access denied for graph"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.block.delete", [])
        assert exc_info.value.code == ErrorCode.PERMISSION_DENIED
        assert exc_info.value.message == "Access denied for graph"

    @pytest.mark.asyncio
    async def test_unknown_action(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(failure(404, "data.nope"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.nope", [])
        assert exc_info.value.code == ErrorCode.UNKNOWN_ACTION
        assert "data.nope" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_server_error_with_closed_graph_hint(self, make_client, resolved_graph, fake_roam, sleeps):
        fake_roam.reply(failure(500, "Uncaught promise error"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])
        assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
        assert "graph was closed" in exc_info.value.message
        # 5xx is an answer from Roam, not a connection failure
        assert sleeps.calls == []

    @pytest.mark.asyncio
    async def test_server_error_without_hint(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(failure(503, "busy"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])
        assert exc_info.value.message == "Server error: busy"

    @pytest.mark.asyncio
    async def test_string_error_on_200(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply((200, {"success": False, "error": "Page not found"}))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])
        assert exc_info.value.code == ErrorCode.API_ERROR
        assert exc_info.value.message == "Page not found"

    @pytest.mark.asyncio
    async def test_unrecognized_code_is_passed_through(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(failure(400, "bad uid", "BLOCK_NOT_FOUND"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.block.update", [])
        assert exc_info.value.code == "BLOCK_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_non_json_body(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply((502, "<html>Bad gateway</html>"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])
        assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
        assert "502" in exc_info.value.message


class TestVersionMismatch:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "server_version,advice",
        [("1.1.0", "update roam-tools"), ("2.0.0", "update roam-tools"), ("0.9.0", "update Roam")],
    )
    async def test_advice(self, make_client, resolved_graph, fake_roam, server_version, advice):
        fake_roam.reply(failure(400, "mismatch", "VERSION_MISMATCH", apiVersion=server_version))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])

        error = exc_info.value
        assert error.code == ErrorCode.VERSION_MISMATCH
        assert server_version in error.message
        assert advice in error.message

    @pytest.mark.asyncio
    async def test_checked_before_status(self, make_client, resolved_graph, fake_roam):
        fake_roam.reply(failure(401, "mismatch", "VERSION_MISMATCH", apiVersion="1.2.0"))
        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])
        assert exc_info.value.code == ErrorCode.VERSION_MISMATCH

    def test_parse_version(self):
        assert parse_version("1.2.3") == (1, 2)
        assert parse_version("3") == (3, 0)
        assert parse_version("x.y") is None

    def test_same_minor_blames_roam(self):
        assert version_mismatch_advice("1.0.7") == "Please update Roam."


class TestReconnect:
    @pytest.mark.asyncio
    async def test_recovers_after_three_failures(self, make_client, resolved_graph, fake_roam, sleeps, launches):
        fake_roam.reply(refused(), refused(), refused(), ok("done"))

        response = await make_client(resolved_graph).call("data.ai.getPage", [])

        assert response.result == "done"
        assert sleeps.calls == [0.5, 1.0, 2.0]
        assert launches.calls == ["roam://#/app/my-graph"]
        assert len(fake_roam.requests) == 4

    @pytest.mark.asyncio
    async def test_gives_up_after_eight_retries(self, make_client, resolved_graph, fake_roam, sleeps, launches):
        fake_roam.default = refused()

        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])

        assert exc_info.value.code == ErrorCode.CONNECTION_FAILED
        assert "support@roamresearch.com" in exc_info.value.message
        assert sleeps.calls == [0.5, 1.0, 2.0, 4.0, 8.0, 15.0, 15.0, 15.0]
        assert len(launches.calls) == 1
        assert len(fake_roam.requests) == 9

    @pytest.mark.asyncio
    async def test_custom_policy_sets_waits(self, make_client, resolved_graph, fake_roam, sleeps):
        fake_roam.default = refused()
        policy = RetryPolicy(max_attempts=3, initial_delay_ms=100, max_delay_ms=250)

        with pytest.raises(RoamError):
            await make_client(resolved_graph, retry=policy).call("data.ai.getPage", [])

        assert sleeps.calls == list(backoff_schedule(policy)) == [0.1, 0.2, 0.25]
        assert len(fake_roam.requests) == 4

    @pytest.mark.asyncio
    async def test_api_error_during_retry_propagates(self, make_client, resolved_graph, fake_roam, sleeps):
        fake_roam.reply(refused(), failure(401, "gone", "TOKEN_NOT_FOUND"))

        with pytest.raises(RoamError) as exc_info:
            await make_client(resolved_graph).call("data.ai.getPage", [])

        assert exc_info.value.code == ErrorCode.TOKEN_NOT_FOUND
        assert sleeps.calls == [0.5]

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, make_client, resolved_graph, fake_roam, sleeps):
        fake_roam.reply(httpx.ConnectTimeout("timed out"), ok())
        await make_client(resolved_graph).call("data.ai.getPage", [])
        assert sleeps.calls == [0.5]

    @pytest.mark.asyncio
    async def test_launcher_failure_is_not_fatal(self, make_client, resolved_graph, fake_roam):
        launcher = Recorder(error=OSError("xdg-open not found"))
        fake_roam.reply(refused(), ok("fine"))

        response = await make_client(resolved_graph, launcher=launcher).call("data.ai.getPage", [])

        assert response.result == "fine"
        assert len(launcher.calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_not_retried(self, make_client, resolved_graph, fake_roam, sleeps, launches):
        fake_roam.reply(RuntimeError("bug"))
        with pytest.raises(RuntimeError):
            await make_client(resolved_graph).call("data.ai.getPage", [])
        assert sleeps.calls == []
        assert launches.calls == []

    @pytest.mark.asyncio
    async def test_port_rediscovered_after_failure(self, resolved_graph, fake_roam, tmp_path, sleeps, launches):
        port_file = tmp_path / "port.json"
        port_file.write_text(json.dumps({"port": 4567}))

        def roam_restarts_elsewhere(request):
            port_file.write_text(json.dumps({"port": 5678}))
            return refused(request)

        fake_roam.reply(roam_restarts_elsewhere, ok())
        client = RoamClient(
            resolved_graph,
            port_file=port_file,
            transport=fake_roam.transport,
            sleep=sleeps,
            launcher=launches,
        )

        await client.call("data.ai.getPage", [])
        assert [r.url.port for r in fake_roam.requests] == [4567, 5678]


class TestTokenInfo:
    @pytest.mark.asyncio
    async def test_active(self, make_client, resolved_graph, fake_roam):
        fake_roam.route(
            "/api/graphs/tokens/info",
            (200, {"success": True, "grantedAccessLevel": "read-only"}),
        )
        info = await make_client(resolved_graph).get_token_info()

        assert info.status == "active"
        assert info.access_level == "read-only"
        assert fake_roam.bodies[0] == {"token": TOKEN, "graph": "my-graph", "type": "hosted"}

    @pytest.mark.asyncio
    async def test_revoked(self, make_client, resolved_graph, fake_roam):
        fake_roam.route("/api/graphs/tokens/info", failure(401, "gone", "TOKEN_NOT_FOUND"))
        info = await make_client(resolved_graph).get_token_info()
        assert info.status == "revoked"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            failure(401, "bad", "INVALID_TOKEN_FORMAT"),
            failure(500, "boom"),
            (200, {"success": False}),
            (200, "not json"),
        ],
    )
    async def test_unknown(self, make_client, resolved_graph, fake_roam, reply):
        fake_roam.route("/api/graphs/tokens/info", reply)
        info = await make_client(resolved_graph).get_token_info()
        assert info.status == "unknown"

    @pytest.mark.asyncio
    async def test_unreachable_never_retries(self, make_client, resolved_graph, fake_roam, sleeps, launches):
        fake_roam.route("/api/graphs/tokens/info", refused())
        info = await make_client(resolved_graph).get_token_info()

        assert info.status == "unknown"
        assert sleeps.calls == []
        assert launches.calls == []
        assert len(fake_roam.requests) == 1
