"""Agent loop - the main control loop of a Waypoint agent.

It:
1. Validates the configured groups with the control plane
2. Polls for a queued operation for those groups
3. Executes the matching action and reports start/end to the control plane
4. Waits for the poll interval, then polls again, until stopped

Nothing that happens while polling or executing stops the loop; failures are
logged or turned into the reported status.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from waypoint_agent.agent_control_plane.client import AgentOperation, ControlPlaneClient
from waypoint_agent.config import AgentSettings
from waypoint_agent.core.agent_config import Config, parse_config_file
from waypoint_agent.core.executor import Executor
from waypoint_agent.core.operations import OperationStatus
from waypoint_agent.errors import ControlPlaneError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0

UNKNOWN_OPERATION_CODE = 127
INTERNAL_ERROR_CODE = 1
EXECUTION_ERROR_CODE = -1


class AgentLoop:
    """Poll, execute and report, one operation at a time."""

    def __init__(
        self,
        config: Config,
        client: ControlPlaneClient,
        groups: Optional[list[str]] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        """Initialize the agent loop.

        Args:
            config: Parsed agent configuration
            client: Control plane client
            groups: Groups to serve (defaults to every group in the config)
            interval: Seconds to wait between polls
        """
        self.config = config
        self.client = client
        self.groups = groups if groups is not None else config.groups()
        self.interval = interval

        self.executor = Executor(config, client=client)
        self._stop = asyncio.Event()

    async def run(self) -> None:
        """Main loop - run until stopped or cancelled.

        Raises:
            ControlPlaneError: the groups could not be validated
        """
        unknown = await self.client.validate_groups(self.groups)
        if unknown:
            logger.error(f"Unknown agent groups detected: {', '.join(unknown)}")
            return

        logger.info(
            f"Waypoint agent initialized: org={self.client.organization_id} "
            f"project={self.client.project_id} groups={self.groups}"
        )

        while not self._stop.is_set():
            await self.poll_once()

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

        logger.info("Waypoint agent stopped.")

    def stop(self) -> None:
        """Stop the agent loop."""
        self._stop.set()

    async def poll_once(self) -> Optional[OperationStatus]:
        """Retrieve and run at most one operation."""
        try:
            operation = await self.client.retrieve_operation(self.groups)
        except ControlPlaneError as e:
            logger.error(f"error reading agent operation: {e}")
            return None

        if operation is None:
            return None

        return await self.run_operation(operation)

    async def run_operation(self, operation: AgentOperation) -> OperationStatus:
        """Execute one operation and report its outcome."""
        prefix = f"[{operation.group}/{operation.id} run={operation.action_run_id or '-'}]"

        ending_run_id: Optional[str] = None
        sequence = ""

        if operation.action_run_id:
            logger.info(f"{prefix} reporting action run starting")
            try:
                starting = await self.client.report_starting(
                    operation.action_run_id, operation.group
                )
            except ControlPlaneError as e:
                logger.error(f"{prefix} unable to register action as starting: {e}")
            else:
                ending_run_id = starting.action_run_id or operation.action_run_id
                sequence = starting.sequence

        result = await self._execute(operation, prefix)

        if ending_run_id is not None:
            logger.info(
                f"{prefix} reporting action run ended: status={result.status!r} "
                f"status_code={result.code} sequence={sequence}"
            )
            try:
                await self.client.report_ending(ending_run_id, result.status, result.code)
            except ControlPlaneError as e:
                logger.error(f"{prefix} unable to send ending action: {e}")

        return result

    async def _execute(
        self,
        operation: AgentOperation,
        prefix: str,
    ) -> OperationStatus:
        try:
            available = self.executor.is_available(operation.group, operation.id)
        except Exception as e:
            logger.error(f"{prefix} error resolving operation: {e}", exc_info=True)
            return OperationStatus(status=f"internal error: {e}", code=INTERNAL_ERROR_CODE)

        if not available:
            status = OperationStatus(
                status=f"unknown operation: {operation.id}",
                code=UNKNOWN_OPERATION_CODE,
            )
            logger.error(f"{prefix} requested unknown operation: {status.status}")
            return status

        try:
            result = await self.executor.execute(
                operation.group,
                operation.id,
                operation.action_run_id,
                operation.body,
                operation=operation,
                log=logger,
            )
        except Exception as e:
            logger.error(f"{prefix} error executing operation: {e}", exc_info=True)
            return OperationStatus(
                status=f"error executing operation: {e}",
                code=EXECUTION_ERROR_CODE,
            )

        logger.info(f"{prefix} finished operation: status={result.status!r} code={result.code}")
        return result


async def run_agent(
    settings: AgentSettings,
    config_path: Optional[Path] = None,
    interval: Optional[float] = None,
) -> None:
    """Entry point for running an agent until SIGINT/SIGTERM."""
    config = parse_config_file(config_path or settings.config_path)
    if settings.shell:
        config.force_shell = settings.shell

    async with ControlPlaneClient.from_settings(settings) as client:
        loop = AgentLoop(
            config,
            client,
            interval=interval if interval is not None else settings.poll_interval,
        )
        task = asyncio.current_task()

        def _shutdown() -> None:
            logger.info("Shutdown requested")
            loop.stop()
            if task is not None:
                task.cancel()

        event_loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            event_loop.add_signal_handler(sig, _shutdown)

        try:
            await loop.run()
        except asyncio.CancelledError:
            logger.info("Waypoint agent cancelled.")
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                event_loop.remove_signal_handler(sig)
