"""Executor - runs a configured action for a queued operation."""

import json
import logging
from typing import TYPE_CHECKING, Optional, Union

from waypoint_agent.core.agent_config import Config
from waypoint_agent.core.expressions import EvalContext, build_variable_map
from waypoint_agent.core.operations import ExecutionContext, OperationStatus
from waypoint_agent.errors import DecodeError, UnknownOperationError

if TYPE_CHECKING:
    from waypoint_agent.agent_control_plane.client import AgentOperation, ControlPlaneClient

logger = logging.getLogger(__name__)


class Executor:
    """Looks up actions by (group, id), decodes them and runs them."""

    def __init__(
        self,
        config: Config,
        client: Optional["ControlPlaneClient"] = None,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ):
        self.config = config
        self.client = client
        self.log = log or logger

    def is_available(self, group: str, action_id: str) -> bool:
        """Check whether an action exists before doing any real work."""
        return self.config.is_available(group, action_id)

    async def execute(
        self,
        group: str,
        action_id: str,
        run_id: str = "",
        body: Union[bytes, str, None] = None,
        *,
        operation: Optional["AgentOperation"] = None,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> OperationStatus:
        """Decode the action with the given input and run it.

        Args:
            group: Agent group the action belongs to
            action_id: Name of the action
            run_id: Action run identifier, exposed as waypoint.run_id
            body: JSON object whose (dotted) keys become variables
            operation: The queued operation being executed, if any
            log: Logger for the operation (defaults to the executor's)

        Raises:
            DecodeError: the input or the action body could not be decoded
            UnknownOperationError: the action is not configured
        """
        variables = _parse_input(body)
        eval_ctx = EvalContext.for_run(variables, run_id)

        op = self.config.action(group, action_id, eval_ctx)
        if op is None:
            raise UnknownOperationError(f"unknown operation: {group}/{action_id}")

        ctx = ExecutionContext(client=self.client, operation=operation)
        return await op.run(ctx, log or self.log)


def _parse_input(body: Union[bytes, str, None]) -> dict:
    if not body:
        return {}

    try:
        raw = json.loads(body)
    except ValueError as e:
        raise DecodeError(f"operation body is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise DecodeError("operation body must be a JSON object")

    return build_variable_map(raw)
