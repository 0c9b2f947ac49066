"""Command line entry point for the Waypoint agent.

Two commands:
- run: load the agent configuration and serve its groups until interrupted
- queue: queue an operation for the agents serving a group
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import NoReturn, Optional

import click

from waypoint_agent import __version__
from waypoint_agent.agent_control_plane.client import ControlPlaneClient
from waypoint_agent.agent_control_plane.loop import run_agent
from waypoint_agent.config import get_settings
from waypoint_agent.errors import ConfigError, ControlPlaneError


def configure_logging(debug: bool = False, level: str = "INFO") -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@click.group()
@click.version_option(version=__version__, prog_name="waypoint-agent")
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def main(ctx, debug):
    """
    waypoint-agent - run configured actions queued on the control plane.
    """
    settings = get_settings()
    configure_logging(debug=debug or settings.debug, level=settings.log_level)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@main.command()
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to configuration file for agent.",
)
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between polls of the control plane.",
)
@click.pass_context
def run(ctx, config_path: Optional[Path], interval: Optional[float]):
    """Start the Waypoint agent."""
    settings = ctx.obj["settings"]

    try:
        asyncio.run(run_agent(settings, config_path=config_path, interval=interval))
    except ConfigError as e:
        _fail(f"invalid agent configuration: {e}")
    except ControlPlaneError as e:
        _fail(f"error validating agent group names: {e}")


@main.command()
@click.option("--group", "-g", required=True, help="Agent group to run the operation on.")
@click.option("--id", "-i", "operation_id", required=True, help="Id of the operation to run.")
@click.option(
    "--body", "-d",
    default="",
    help="JSON to pass to operation. Use @filename to read json from a file.",
)
@click.option("--action-run", default="", help="Action run to associate operation with.")
@click.pass_context
def queue(ctx, group: str, operation_id: str, body: str, action_run: str):
    """Queue an operation for an agent to execute."""
    settings = ctx.obj["settings"]
    data = _read_body(body)

    async def _queue() -> None:
        async with ControlPlaneClient.from_settings(settings) as client:
            await client.queue_operation(group, operation_id, data, action_run)

    try:
        asyncio.run(_queue())
    except ControlPlaneError as e:
        _fail(f"error queuing operation: {e}")

    click.echo(f"Operation '{operation_id}' queued.", err=True)


def _fail(message: str) -> NoReturn:
    click.echo(f"✗ {message}", err=True)
    raise SystemExit(1)


def _read_body(body: str) -> bytes:
    """Validate the operation body given inline or as @path."""
    if not body:
        return b""

    if body.startswith("@"):
        path = Path(body[1:])
        try:
            data = path.read_bytes()
        except OSError as e:
            _fail(f"unable to read json file {path}: {e}")
        where = f"in file '{path}'"
    else:
        data = body.encode("utf-8")
        where = "specified on command line"

    try:
        json.loads(data)
    except ValueError:
        _fail(f"invalid json {where}")

    return data


if __name__ == "__main__":
    main()
