"""Executable operations decoded from agent actions.

Every variant implements the same small protocol: given an execution context
and a logger, run to completion and return an OperationStatus, or raise when
the operation could not be carried out at all.

- ShellOperation: run a command, optionally inside a container image
- HTTPOperation: issue a GET request
- StatusOperation: append a status log entry to the current action run
- CompoundOperation: run other operations in order
- NoopWrapper: test instrumentation that runs nothing
"""

import asyncio
import enum
import logging
import os
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, ClassVar, Optional, Protocol, Union

import httpx
from python_on_whales import docker

from waypoint_agent.errors import ControlPlaneError, ExecutionError

if TYPE_CHECKING:
    from waypoint_agent.agent_control_plane.client import AgentOperation, ControlPlaneClient

Logger = Union[logging.Logger, logging.LoggerAdapter]


class OperationKind(str, enum.Enum):
    """Discriminant of an operation, fixed when the action body is decoded."""

    SHELL = "run"
    HTTP = "http"
    STATUS = "status"
    COMPOUND = "operation"
    NOOP = "noop"


@dataclass(frozen=True)
class OperationStatus:
    """Outcome of an operation: a human-readable message and a numeric code."""

    status: str = ""
    code: int = 0


CLEAN_STATUS = OperationStatus(code=0)
ERROR_STATUS = OperationStatus(code=-1)


@dataclass
class ExecutionContext:
    """What an operation may use while it runs.

    The control plane client and the operation info are only required by
    StatusOperation. Cancellation is carried by the asyncio task running the
    operation.
    """

    client: Optional["ControlPlaneClient"] = None
    operation: Optional["AgentOperation"] = None
    http_client: Optional[httpx.AsyncClient] = None


class Operation(Protocol):
    """Protocol for executable operations."""

    kind: ClassVar[OperationKind]

    async def run(self, ctx: ExecutionContext, log: Logger) -> OperationStatus:
        """Run the operation to completion."""
        ...


# =============================================================================
# Shell
# =============================================================================


@dataclass
class DockerOptions:
    """Run a shell operation inside a container image."""

    image: str


@dataclass
class ShellOperation:
    """Run a command as a subprocess."""

    kind: ClassVar[OperationKind] = OperationKind.SHELL

    arguments: list[str]
    environment: dict[str, str] = field(default_factory=dict)
    docker: Optional[DockerOptions] = None

    def command_line(self) -> list[str]:
        """Return the full argument vector, including the container prefix."""
        if self.docker is None:
            return list(self.arguments)

        cmd = _docker_command() + ["run", "--rm"]
        for key, value in self.environment.items():
            cmd += ["-e", f"{key}={value}"]
        cmd.append(self.docker.image)
        return cmd + list(self.arguments)

    def process_environment(self) -> dict[str, str]:
        """Process environment overlaid with the operation's variables."""
        return {**os.environ, **self.environment}

    async def run(self, ctx: ExecutionContext, log: Logger) -> OperationStatus:
        cmd = self.command_line()

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=self.process_environment(),
            )
        except OSError as e:
            raise ExecutionError(f"unable to start '{cmd[0]}': {e}") from e

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            # The child must not outlive the agent's cancellation.
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        log.debug(
            f"output from shell operation: command={self.arguments[0]} "
            f"exit_code={proc.returncode} output={output!r}"
        )

        return OperationStatus(status=_summarize_output(output), code=proc.returncode)


def _docker_command() -> list[str]:
    """Resolve the docker CLI invocation (binary plus host/context flags)."""
    try:
        return [str(part) for part in docker.client_config.docker_cmd]
    except Exception as e:
        raise ExecutionError(f"unable to locate the docker client: {e}") from e


def _summarize_output(output: str) -> str:
    """Only the last line of output is reported back to the control plane."""
    lines = [line.strip() for line in output.strip().splitlines() if line.strip()]
    if not lines:
        return ""
    return "output: " + lines[-1]


# =============================================================================
# HTTP
# =============================================================================


@dataclass
class HTTPOperation:
    """Issue a GET request. Any HTTP response counts as success."""

    kind: ClassVar[OperationKind] = OperationKind.HTTP

    url: str

    async def run(self, ctx: ExecutionContext, log: Logger) -> OperationStatus:
        try:
            if ctx.http_client is not None:
                response = await ctx.http_client.get(self.url)
            else:
                async with httpx.AsyncClient(follow_redirects=True) as client:
                    response = await client.get(self.url)
        except httpx.RequestError as e:
            raise ExecutionError(f"request to {self.url} failed: {e}") from e

        log.debug(f"http operation finished: url={self.url} status_code={response.status_code}")
        return CLEAN_STATUS


# =============================================================================
# Status
# =============================================================================


@dataclass
class StatusOperation:
    """Send a status log entry for the current action run."""

    kind: ClassVar[OperationKind] = OperationKind.STATUS

    message: str
    status: str = ""
    values: dict[str, str] = field(default_factory=dict)

    async def run(self, ctx: ExecutionContext, log: Logger) -> OperationStatus:
        if ctx.client is None:
            raise ExecutionError(
                "the status operation requires an API client and none was provided"
            )
        if ctx.operation is None or not ctx.operation.action_run_id:
            raise ExecutionError(
                "the status operation requires a run ID and none was provided"
            )

        try:
            response = await ctx.client.send_status_log(
                ctx.operation.action_run_id,
                message=self.message,
                status=self.status,
                metadata=self.values,
                emitted_at=datetime.now(timezone.utc),
            )
        except ControlPlaneError as e:
            raise ExecutionError(f"unable to send status log: {e}") from e

        if response.is_client_error:
            log.error(f"error sending status log (client side): {response.status_code} {response.text}")
        elif response.is_server_error:
            log.error(f"error sending status log (server side): {response.status_code} {response.text}")

        return CLEAN_STATUS


# =============================================================================
# Compound
# =============================================================================


@dataclass
class CompoundOperation:
    """Run child operations in declaration order, stopping at the first error."""

    kind: ClassVar[OperationKind] = OperationKind.COMPOUND

    operations: list[Operation] = field(default_factory=list)

    async def run(self, ctx: ExecutionContext, log: Logger) -> OperationStatus:
        for op in self.operations:
            await op.run(ctx, log)

        return CLEAN_STATUS


# =============================================================================
# Test instrumentation
# =============================================================================


@dataclass
class NoopWrapper:
    """Holds a decoded operation without ever running it."""

    kind: ClassVar[OperationKind] = OperationKind.NOOP

    operation: Operation

    async def run(self, ctx: ExecutionContext, log: Logger) -> OperationStatus:
        return CLEAN_STATUS


OperationWrapper = Callable[[Operation], Operation]


def noop_operations(op: Operation) -> Operation:
    """Operation wrapper that disables execution, for inspecting decoded actions."""
    return NoopWrapper(operation=op)


def identity_wrapper(op: Operation) -> Operation:
    return op
