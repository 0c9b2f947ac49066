"""Tests for the click command line."""

import pytest
from click.testing import CliRunner

from waypoint_agent import main as cli
from waypoint_agent.config import get_settings
from waypoint_agent.errors import ControlPlaneError


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    monkeypatch.setenv("WAYPOINT_AGENT_ORGANIZATION_ID", "org-1")
    monkeypatch.setenv("WAYPOINT_AGENT_PROJECT_ID", "proj-1")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def queued(monkeypatch):
    """Replace the control plane client used by `queue` with a recorder."""
    calls = []

    class RecordingClient:
        error = None

        def __init__(self, settings):
            self.settings = settings

        @classmethod
        def from_settings(cls, settings):
            return cls(settings)

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc_info):
            return None

        async def queue_operation(self, group, operation_id, body, action_run_id):
            if RecordingClient.error is not None:
                raise RecordingClient.error
            calls.append((group, operation_id, body, action_run_id))

    monkeypatch.setattr(cli, "ControlPlaneClient", RecordingClient)
    return calls, RecordingClient


def invoke(*args):
    return CliRunner().invoke(cli.main, list(args))


class TestQueue:
    def test_inline_body(self, queued):
        calls, _ = queued

        result = invoke("queue", "-g", "test", "-i", "launch", "-d", '{"var.type": "nerf"}', "--action-run", "run-1")

        assert result.exit_code == 0, result.output
        assert calls == [("test", "launch", b'{"var.type": "nerf"}', "run-1")]
        assert "Operation 'launch' queued." in result.output

    def test_no_body(self, queued):
        calls, _ = queued

        result = invoke("queue", "--group", "test", "--id", "launch")

        assert result.exit_code == 0, result.output
        assert calls == [("test", "launch", b"", "")]

    def test_body_from_file(self, queued, tmp_path):
        calls, _ = queued
        path = tmp_path / "body.json"
        path.write_text('{"var.region": "us-west-1"}')

        result = invoke("queue", "-g", "test", "-i", "launch", "-d", f"@{path}")

        assert result.exit_code == 0, result.output
        assert calls[0][2] == b'{"var.region": "us-west-1"}'

    def test_invalid_inline_json(self, queued):
        calls, _ = queued

        result = invoke("queue", "-g", "test", "-i", "launch", "-d", "{nope")

        assert result.exit_code != 0
        assert "invalid json specified on command line" in result.output
        assert calls == []

    def test_invalid_json_file(self, queued, tmp_path):
        path = tmp_path / "body.json"
        path.write_text("not json")

        result = invoke("queue", "-g", "test", "-i", "launch", "-d", f"@{path}")

        assert result.exit_code != 0
        assert "invalid json in file" in result.output

    def test_missing_json_file(self, queued, tmp_path):
        result = invoke("queue", "-g", "test", "-i", "launch", "-d", f"@{tmp_path / 'missing.json'}")

        assert result.exit_code != 0
        assert "unable to read json file" in result.output

    def test_control_plane_failure(self, queued):
        _, client_cls = queued
        client_cls.error = ControlPlaneError("connection refused")

        result = invoke("queue", "-g", "test", "-i", "launch")

        assert result.exit_code != 0
        assert "error queuing operation: connection refused" in result.output

    def test_group_is_required(self, queued):
        result = invoke("queue", "-i", "launch")

        assert result.exit_code != 0


class TestRun:
    def test_missing_config(self, tmp_path):
        result = invoke("run", "--config", str(tmp_path / "missing.yaml"))

        assert result.exit_code != 0
        assert "invalid agent configuration" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "agent.yaml"
        path.write_text("groups: [not, a, mapping]\n")

        result = invoke("run", "-c", str(path))

        assert result.exit_code != 0
        assert "invalid agent configuration" in result.output

    def test_validation_failure(self, tmp_path, monkeypatch):
        path = tmp_path / "agent.yaml"
        path.write_text("groups: {}\n")

        async def fail(settings, config_path=None, interval=None):
            raise ControlPlaneError("unreachable")

        monkeypatch.setattr(cli, "run_agent", fail)

        result = invoke("run", "-c", str(path))

        assert result.exit_code != 0
        assert "error validating agent group names: unreachable" in result.output

    def test_passes_options_to_agent(self, tmp_path, monkeypatch):
        seen = {}

        async def fake_run_agent(settings, config_path=None, interval=None):
            seen.update(settings=settings, config_path=config_path, interval=interval)

        monkeypatch.setattr(cli, "run_agent", fake_run_agent)

        result = invoke("run", "-c", str(tmp_path / "agent.yaml"), "--interval", "5")

        assert result.exit_code == 0, result.output
        assert seen["config_path"] == tmp_path / "agent.yaml"
        assert seen["interval"] == 5.0
        assert seen["settings"].organization_id == "org-1"


def test_version():
    result = invoke("--version")

    assert result.exit_code == 0
    assert "waypoint-agent" in result.output
