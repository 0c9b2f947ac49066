"""Core modules for the Waypoint agent.

Contains the configuration-to-execution pipeline:
- agent_config: groups and actions parsed from the configuration file
- decoder: turns an action body into an operation
- expressions: variables available to action bodies
- operations: the executable operation variants
- executor: looks up, decodes and runs an action
"""

from waypoint_agent.core.agent_config import (
    Action,
    Config,
    Group,
    parse_config,
    parse_config_file,
)
from waypoint_agent.core.decoder import decode_body
from waypoint_agent.core.executor import Executor
from waypoint_agent.core.expressions import EvalContext, build_variable_map
from waypoint_agent.core.operations import (
    CLEAN_STATUS,
    ERROR_STATUS,
    CompoundOperation,
    DockerOptions,
    ExecutionContext,
    HTTPOperation,
    NoopWrapper,
    Operation,
    OperationKind,
    OperationStatus,
    ShellOperation,
    StatusOperation,
    noop_operations,
)

__all__ = [
    # Configuration
    "Action",
    "Config",
    "Group",
    "parse_config",
    "parse_config_file",
    "decode_body",
    # Expressions
    "EvalContext",
    "build_variable_map",
    # Operations
    "CLEAN_STATUS",
    "ERROR_STATUS",
    "CompoundOperation",
    "DockerOptions",
    "ExecutionContext",
    "HTTPOperation",
    "NoopWrapper",
    "Operation",
    "OperationKind",
    "OperationStatus",
    "ShellOperation",
    "StatusOperation",
    "noop_operations",
    # Executor
    "Executor",
]
