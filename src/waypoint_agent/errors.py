"""Error classes for the Waypoint agent.

Only configuration and decode problems are meant to reach the caller of the
executor. Everything raised while the poll loop is running is converted into
an operation status or a log line by the loop itself.
"""

from typing import Optional


class AgentError(Exception):
    """Base exception for the agent."""
    pass


class ConfigError(AgentError):
    """The agent configuration could not be loaded.

    Raised at startup for malformed documents, missing files, or groups and
    actions that do not match the expected schema. The agent must not start
    with an invalid configuration.
    """
    pass


class DecodeError(ConfigError):
    """An action body could not be turned into an operation.

    Fatal to a single invocation only: missing or mistyped attributes,
    unknown block kinds, undefined variables in an expression.
    """
    pass


class ExecutionError(AgentError):
    """An operation could not even be started.

    Examples:
    - the command binary does not exist
    - the HTTP request failed at the connection level

    A command that runs and exits non-zero is not an ExecutionError.
    """
    pass


class UnknownOperationError(AgentError):
    """The requested group/action pair is not defined in the configuration."""
    pass


class ControlPlaneError(AgentError):
    """A request to the control plane failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
