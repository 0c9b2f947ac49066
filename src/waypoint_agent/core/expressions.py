"""Expression context used to interpolate values inside action bodies.

Attribute values in an action body may reference two namespaces:

- var.*        built from the JSON payload queued with the operation
- waypoint.*   execution metadata (currently only waypoint.run_id)

Interpolation uses Jinja2 expression syntax. A value that is exactly one
``{{ expr }}`` keeps the native type of the expression; any other string
containing ``{{`` is rendered as text.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from jinja2 import StrictUndefined, TemplateError, Undefined
from jinja2.sandbox import SandboxedEnvironment

from waypoint_agent.errors import DecodeError

logger = logging.getLogger(__name__)


class _ExpressionEnvironment(SandboxedEnvironment):
    """Jinja2 environment where ``a.b`` on a mapping means ``a["b"]``.

    The default lookup prefers attributes, so ``var.items`` would resolve to
    ``dict.items`` instead of an input named "items".
    """

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping) and attribute in obj:
            return obj[attribute]
        return super().getattr(obj, attribute)


def format_number(value: float) -> str:
    """Render a number in its canonical decimal form: 8080.0 -> "8080", 0.5 -> "0.5"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return format(value, ".10g")


def _finalize(value: Any) -> Any:
    # Input numbers are all floats; text interpolation must not show "8080.0".
    if isinstance(value, float):
        return format_number(value)
    return value


_environment = _ExpressionEnvironment(
    undefined=StrictUndefined,
    autoescape=False,
    finalize=_finalize,
)


@dataclass
class EvalContext:
    """Variables visible to expressions for a single execution."""

    variables: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_run(
        cls,
        variables: Optional[dict[str, Any]] = None,
        run_id: str = "",
    ) -> "EvalContext":
        """Build a context from input variables plus the waypoint namespace.

        A ``waypoint`` key supplied by the caller is replaced.
        """
        merged = dict(variables or {})
        merged["waypoint"] = {"run_id": run_id}
        return cls(variables=merged)

    def evaluate(self, value: Any) -> Any:
        """Evaluate every expression inside value, recursing into lists and mappings."""
        if isinstance(value, str):
            return self._evaluate_string(value)
        if isinstance(value, Mapping):
            return {key: self.evaluate(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.evaluate(item) for item in value]
        return value

    def _evaluate_string(self, value: str) -> Any:
        if "{{" not in value:
            return value

        try:
            if _is_single_expression(value):
                expr = _environment.compile_expression(value[2:-2], undefined_to_none=False)
                result = expr(**self.variables)
                if isinstance(result, Undefined):
                    # Touching a StrictUndefined raises with the variable name.
                    str(result)
                return result

            return _environment.from_string(value).render(**self.variables)
        except TemplateError as e:
            raise DecodeError(f"unable to evaluate {value!r}: {e}") from e


def _is_single_expression(value: str) -> bool:
    return (
        value.startswith("{{")
        and value.endswith("}}")
        and value.count("{{") == 1
        and value.count("}}") == 1
    )


def build_variable_map(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Turn dotted input keys into nested mappings.

    ``{"var.type": "nerf", "application.inputs.region": "us-west-1"}`` becomes
    ``{"var": {"type": "nerf"}, "application": {"inputs": {"region": "us-west-1"}}}``.

    Numbers become floats, strings and booleans are kept. Values of any other
    JSON type (null, arrays, objects) are dropped.
    """
    result: dict[str, Any] = {}

    for key, value in raw.items():
        converted = _convert_value(value)
        if converted is None:
            logger.debug(f"dropping input {key!r}: unsupported value type {type(value).__name__}")
            continue

        parts = key.split(".")
        current = result

        for part in parts[:-1]:
            existing = current.setdefault(part, {})
            if not isinstance(existing, dict):
                raise DecodeError(f"invalid input key {key}: {part!r} is already set to {existing!r}")
            current = existing

        existing = current.get(parts[-1])
        if isinstance(existing, dict):
            raise DecodeError(f"invalid input key {key}: {parts[-1]!r} already holds nested inputs")
        current[parts[-1]] = converted

    return result


def _convert_value(value: Any) -> Any:
    if isinstance(value, bool) or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    return None
