"""Decode an action body into an operation.

An action body holds exactly one of a fixed set of block kinds. They are
checked in priority order:

    run -> http -> status -> operation (one or more, forming a compound)

Attribute values are evaluated against the expression context before their
types are checked, so ``{{ var.* }}`` and ``{{ waypoint.* }}`` work anywhere an
attribute is expected.
"""

import os
import shlex
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from waypoint_agent.core.expressions import EvalContext, format_number
from waypoint_agent.core.operations import (
    CompoundOperation,
    DockerOptions,
    HTTPOperation,
    Operation,
    OperationKind,
    OperationWrapper,
    ShellOperation,
    StatusOperation,
    identity_wrapper,
)
from waypoint_agent.errors import DecodeError

POSIX_SPECIAL_CHARS = "!\"#$&'()*,;<=>?[]\\^`{}|~"

DEFAULT_SHELL = "sh"

BLOCK_KINDS = tuple(kind.value for kind in OperationKind if kind is not OperationKind.NOOP)


# =============================================================================
# Block schemas
# =============================================================================


class _Block(BaseModel):
    model_config = ConfigDict(extra="forbid")


class DockerBlock(_Block):
    image: Any


class RunBlock(_Block):
    command: Any
    env: Any = None
    docker: Optional[DockerBlock] = None


class HTTPBlock(_Block):
    url: Any


class StatusBlock(_Block):
    message: Any
    status: Any = None
    values: Any = None


def _parse_block(model: type[_Block], kind: str, raw: Any) -> Any:
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise DecodeError(f"{kind} block must be a mapping, got {type(raw).__name__}")
    try:
        return model.model_validate(dict(raw))
    except ValidationError as e:
        raise DecodeError(f"invalid {kind} block: {e}") from e


# =============================================================================
# Decoding
# =============================================================================


class BodyDecoder:
    """Turns raw action bodies into operations for one expression context."""

    def __init__(
        self,
        eval_ctx: Optional[EvalContext] = None,
        force_shell: Optional[str] = None,
        wrapper: OperationWrapper = identity_wrapper,
    ):
        self.eval_ctx = eval_ctx or EvalContext()
        self.force_shell = force_shell
        self.wrapper = wrapper

    def decode(self, body: Any) -> Operation:
        if not isinstance(body, Mapping):
            raise DecodeError(f"action body must be a mapping, got {type(body).__name__}")

        unknown = [key for key in body if key not in BLOCK_KINDS]
        if unknown:
            raise DecodeError(
                f"unsupported block type(s): {', '.join(sorted(map(str, unknown)))}"
            )

        if OperationKind.SHELL.value in body:
            return self._decode_run(body[OperationKind.SHELL.value])
        if OperationKind.HTTP.value in body:
            return self._decode_http(body[OperationKind.HTTP.value])
        if OperationKind.STATUS.value in body:
            return self._decode_status(body[OperationKind.STATUS.value])

        children = body.get(OperationKind.COMPOUND.value)
        if isinstance(children, Mapping):
            children = [children]
        if children:
            return self._decode_compound(children)

        raise DecodeError("no operation specified")

    def _decode_compound(self, children: Any) -> Operation:
        if not isinstance(children, list):
            raise DecodeError("operation must be a mapping or a list of mappings")

        compound = CompoundOperation()
        for child in children:
            compound.operations.append(self.decode(child))

        return self.wrapper(compound)

    def _decode_run(self, raw: Any) -> Operation:
        block = _parse_block(RunBlock, "run", raw)
        command = self.eval_ctx.evaluate(block.command)

        if isinstance(command, str):
            words = self._split_command(command)
        elif isinstance(command, list):
            words = [_argument_string(item) for item in command]
        else:
            raise DecodeError(
                f"command must be a string or a list, got {type(command).__name__}"
            )

        if not words:
            raise DecodeError("command must not be empty")

        docker = None
        if block.docker is not None:
            image = self.eval_ctx.evaluate(block.docker.image)
            if not isinstance(image, str):
                raise DecodeError("docker image must be a string")
            docker = DockerOptions(image=image)

        env: dict[str, str] = {}
        if block.env is not None:
            values = self.eval_ctx.evaluate(block.env)
            if not isinstance(values, Mapping):
                raise DecodeError("env must be a map of strings")
            for key, value in values.items():
                if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                    raise DecodeError(f"env value for {key!r} must be a string")
                env[str(key)] = _argument_string(value)

        return self.wrapper(ShellOperation(arguments=words, environment=env, docker=docker))

    def _split_command(self, command: str) -> list[str]:
        if any(ch in POSIX_SPECIAL_CHARS for ch in command):
            shell = self.force_shell or os.environ.get("SHELL") or DEFAULT_SHELL
            return [shell, "-c", command]

        try:
            return shlex.split(command)
        except ValueError as e:
            raise DecodeError(f"unable to split command {command!r}: {e}") from e

    def _decode_http(self, raw: Any) -> Operation:
        block = _parse_block(HTTPBlock, "http", raw)
        url = self.eval_ctx.evaluate(block.url)
        if not isinstance(url, str):
            raise DecodeError("url must be a string")

        return self.wrapper(HTTPOperation(url=url))

    def _decode_status(self, raw: Any) -> Operation:
        block = _parse_block(StatusBlock, "status", raw)

        message = self.eval_ctx.evaluate(block.message)
        if not isinstance(message, str):
            raise DecodeError("message must be a string")

        op = StatusOperation(message=message)

        if block.status is not None:
            status = self.eval_ctx.evaluate(block.status)
            if not isinstance(status, str):
                raise DecodeError("status must be a string")
            op.status = status

        if block.values is not None:
            values = self.eval_ctx.evaluate(block.values)
            if not isinstance(values, Mapping):
                raise DecodeError("values must be a map/object")
            for key, value in values.items():
                op.values[str(key)] = _metadata_string(value)

        return self.wrapper(op)


def decode_body(
    body: Any,
    eval_ctx: Optional[EvalContext] = None,
    *,
    force_shell: Optional[str] = None,
    wrapper: OperationWrapper = identity_wrapper,
) -> Operation:
    """Decode a raw action body into an operation."""
    return BodyDecoder(eval_ctx, force_shell=force_shell, wrapper=wrapper).decode(body)


# =============================================================================
# Value rendering
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _argument_string(value: Any) -> str:
    """Render a command argument; numbers use their canonical decimal form."""
    if isinstance(value, str):
        return value
    if _is_number(value):
        if isinstance(value, int):
            return str(value)
        return format_number(value)
    raise DecodeError(f"unsupported value type in arguments: {type(value).__name__}")


def _metadata_string(value: Any) -> str:
    """Render a status value: integral numbers as integers, others as %f."""
    if isinstance(value, str):
        return value
    if _is_number(value):
        if float(value).is_integer():
            return str(int(value))
        return f"{value:f}"
    raise DecodeError("values can only be strings or numbers")
