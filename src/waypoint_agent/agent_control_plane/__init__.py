"""Agent Control Plane - the runtime side of the agent.

This is the part that:
1. Talks to the control plane (validate groups, retrieve operations, report)
2. Runs the poll/execute/report loop until stopped
"""

from waypoint_agent.agent_control_plane.client import (
    AgentOperation,
    ControlPlaneClient,
    StartingAction,
)
from waypoint_agent.agent_control_plane.loop import AgentLoop, run_agent

__all__ = [
    "AgentLoop",
    "AgentOperation",
    "ControlPlaneClient",
    "StartingAction",
    "run_agent",
]
