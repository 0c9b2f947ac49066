"""Shared fixtures for waypoint agent tests."""

from typing import Optional

import httpx
import pytest

from waypoint_agent.agent_control_plane.client import AgentOperation, StartingAction
from waypoint_agent.core.agent_config import Config, parse_config
from waypoint_agent.errors import ControlPlaneError


class FakeControlPlane:
    """In-process stand-in for ControlPlaneClient that records every call."""

    organization_id = "org-1"
    project_id = "proj-1"

    def __init__(self):
        self.unknown_groups: list[str] = []
        self.operations: list[Optional[AgentOperation]] = []
        self.retrieve_error: Optional[Exception] = None
        self.starting_error: Optional[Exception] = None
        self.ending_error: Optional[Exception] = None
        self.status_log_code = 200

        self.validated: list[list[str]] = []
        self.retrieved = 0
        self.started: list[tuple[str, str]] = []
        self.ended: list[tuple[str, str, int]] = []
        self.status_logs: list[dict] = []

    async def validate_groups(self, groups):
        self.validated.append(list(groups))
        return list(self.unknown_groups)

    async def retrieve_operation(self, groups):
        self.retrieved += 1
        if self.retrieve_error is not None:
            raise self.retrieve_error
        if self.operations:
            return self.operations.pop(0)
        return None

    async def report_starting(self, action_run_id, group):
        if self.starting_error is not None:
            raise self.starting_error
        self.started.append((action_run_id, group))
        return StartingAction(action_run_id=action_run_id, sequence="7")

    async def report_ending(self, action_run_id, final_status, status_code):
        if self.ending_error is not None:
            raise self.ending_error
        self.ended.append((action_run_id, final_status, status_code))

    async def send_status_log(self, action_run_id, message, metadata=None, emitted_at=None, status=""):
        self.status_logs.append(
            {
                "action_run_id": action_run_id,
                "message": message,
                "metadata": metadata,
                "emitted_at": emitted_at,
                "status": status,
            }
        )
        return httpx.Response(self.status_log_code, text="status log response")


@pytest.fixture
def fake_control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def control_plane_error() -> ControlPlaneError:
    return ControlPlaneError("connection refused")


@pytest.fixture
def launch_config() -> Config:
    """A config with a single group "test" whose "launch" action runs `true`."""
    return parse_config(
        """
groups:
  test:
    actions:
      launch:
        run:
          command: "true"
"""
    )
