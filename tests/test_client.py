"""Tests for the control plane client, against an httpx mock transport."""

import asyncio
import base64
import json
from datetime import datetime, timezone

import httpx
import pytest

from waypoint_agent.agent_control_plane.client import AgentOperation, ControlPlaneClient
from waypoint_agent.config import AgentSettings
from waypoint_agent.errors import ControlPlaneError

NAMESPACE = "/waypoint/2024-11-22/organizations/org-1/projects/proj-1"


class Recorder:
    """Mock transport handler that records requests and replays canned replies."""

    def __init__(self, *responses):
        self.requests: list[httpx.Request] = []
        self.responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            reply = self.responses.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return httpx.Response(200, json={})

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def call(recorder, method, *args, token="secret", **kwargs):
    async def scenario():
        async with ControlPlaneClient(
            "https://cp.example.com/",
            "org-1",
            "proj-1",
            token=token,
            transport=httpx.MockTransport(recorder),
        ) as client:
            return await getattr(client, method)(*args, **kwargs)

    return asyncio.run(scenario())


class TestAgentOperation:
    def test_base64_body_from_wire(self):
        raw = {"id": "launch", "group": "test", "actionRunId": "run-1", "body": base64.b64encode(b'{"a": 1}').decode()}

        op = AgentOperation.model_validate(raw)

        assert op.action_run_id == "run-1"
        assert op.body == b'{"a": 1}'

    def test_missing_body(self):
        op = AgentOperation.model_validate({"id": "launch", "group": "test", "body": None})

        assert op.body == b""
        assert op.action_run_id == ""

    def test_invalid_base64(self):
        with pytest.raises(ValueError):
            AgentOperation.model_validate({"id": "launch", "group": "test", "body": "!!not base64!!"})


class TestRequests:
    def test_validate_groups(self):
        recorder = Recorder(httpx.Response(200, json={"unknown_groups": ["ghost"]}))

        unknown = call(recorder, "validate_groups", ["test", "ghost"])

        assert unknown == ["ghost"]
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == f"{NAMESPACE}/agent/group/validate"
        assert request.headers["Authorization"] == "Bearer secret"
        assert recorder.last_json == {"groups": ["test", "ghost"]}

    def test_validate_groups_all_known(self):
        recorder = Recorder(httpx.Response(200, json={}))

        assert call(recorder, "validate_groups", ["test"]) == []

    def test_no_token_no_auth_header(self):
        recorder = Recorder()

        call(recorder, "validate_groups", ["test"], token=None)

        assert "Authorization" not in recorder.requests[0].headers

    def test_retrieve_nothing_queued(self):
        recorder = Recorder(httpx.Response(200, json={}))

        assert call(recorder, "retrieve_operation", ["test"]) is None
        assert recorder.requests[0].url.path == f"{NAMESPACE}/agent/operation"

    def test_retrieve_operation(self):
        body = base64.b64encode(b'{"var.type": "nerf"}').decode()
        recorder = Recorder(
            httpx.Response(
                200,
                json={"operation": {"id": "launch", "group": "test", "actionRunId": "run-1", "body": body}},
            )
        )

        op = call(recorder, "retrieve_operation", ["test"])

        assert op == AgentOperation(id="launch", group="test", action_run_id="run-1", body=b'{"var.type": "nerf"}')

    def test_retrieve_malformed_operation(self):
        recorder = Recorder(httpx.Response(200, json={"operation": {"group": "test"}}))

        with pytest.raises(ControlPlaneError, match="invalid operation"):
            call(recorder, "retrieve_operation", ["test"])

    def test_queue_operation(self):
        recorder = Recorder()

        call(recorder, "queue_operation", "test", "launch", b'{"x": 1}', "run-3")

        assert recorder.requests[0].url.path == f"{NAMESPACE}/agent/queue"
        operation = recorder.last_json["operation"]
        assert operation["id"] == "launch"
        assert operation["group"] == "test"
        assert operation["action_run_id"] == "run-3"
        assert base64.b64decode(operation["body"]) == b'{"x": 1}'

    def test_report_starting(self):
        recorder = Recorder(httpx.Response(200, json={"action_run_id": "run-1", "sequence": "4"}))

        starting = call(recorder, "report_starting", "run-1", "test")

        assert starting.action_run_id == "run-1"
        assert starting.sequence == "4"
        assert recorder.requests[0].url.path == f"{NAMESPACE}/actions/starting"
        assert recorder.last_json == {"action_run_id": "run-1", "group_name": "test"}

    def test_report_ending(self):
        recorder = Recorder(httpx.Response(204))

        call(recorder, "report_ending", "run-1", "output: done", 3)

        assert recorder.requests[0].url.path == f"{NAMESPACE}/actions/ending"
        assert recorder.last_json == {"action_run_id": "run-1", "final_status": "output: done", "status_code": 3}

    def test_send_status_log(self):
        recorder = Recorder()
        emitted = datetime(2024, 11, 22, 12, 0, tzinfo=timezone.utc)

        response = call(
            recorder,
            "send_status_log",
            "run-1",
            "deploying",
            metadata={"attempt": "2"},
            emitted_at=emitted,
            status="running",
        )

        assert response.status_code == 200
        assert recorder.requests[0].url.path == f"{NAMESPACE}/actions/run-1/status-log"
        assert recorder.last_json == {
            "status_log": {
                "log": "deploying",
                "metadata": {"attempt": "2"},
                "emitted_at": emitted.isoformat(),
                "status": "running",
            }
        }

    def test_status_log_error_is_returned(self):
        recorder = Recorder(httpx.Response(404, text="no such run"))

        response = call(recorder, "send_status_log", "run-1", "hello")

        assert response.status_code == 404


class TestErrors:
    def test_error_status(self):
        recorder = Recorder(httpx.Response(500, text="boom"))

        with pytest.raises(ControlPlaneError) as excinfo:
            call(recorder, "validate_groups", ["test"])

        assert excinfo.value.status_code == 500

    def test_transport_failure(self):
        recorder = Recorder(httpx.ConnectError("connection refused"))

        with pytest.raises(ControlPlaneError, match="failed"):
            call(recorder, "retrieve_operation", ["test"])

    def test_non_object_reply(self):
        recorder = Recorder(httpx.Response(200, json=["unexpected"]))

        with pytest.raises(ControlPlaneError, match="unexpected response"):
            call(recorder, "validate_groups", ["test"])

    def test_invalid_json_reply(self):
        recorder = Recorder(httpx.Response(200, text="<html>"))

        with pytest.raises(ControlPlaneError, match="invalid JSON"):
            call(recorder, "validate_groups", ["test"])


def test_from_settings():
    settings = AgentSettings(
        api_url="https://cp.example.com",
        organization_id="org-1",
        project_id="proj-1",
        token="secret",
    )

    client = ControlPlaneClient.from_settings(settings)

    assert client.namespace_path == NAMESPACE
    asyncio.run(client.close())
