"""Agent configuration: named groups of named actions.

The configuration file is YAML:

    groups:
      deploy:
        actions:
          launch:
            run:
              command: ./launch.sh -delay {{ var.delay }}

Action bodies are kept undecoded; they are decoded against an expression
context every time the action is invoked.
"""

from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from waypoint_agent.core.decoder import decode_body
from waypoint_agent.core.expressions import EvalContext
from waypoint_agent.core.operations import Operation, OperationWrapper, identity_wrapper
from waypoint_agent.errors import ConfigError


# =============================================================================
# Config file schema
# =============================================================================


class GroupDefinition(BaseModel):
    """A group block in the configuration file."""

    model_config = ConfigDict(extra="forbid")

    actions: dict[str, dict[str, Any]] = Field(default_factory=dict)


class ConfigFile(BaseModel):
    """The configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    groups: dict[str, GroupDefinition] = Field(default_factory=dict)


# =============================================================================
# Semantic model
# =============================================================================


class Action(BaseModel):
    """A named action with its undecoded body."""

    name: str
    body: dict[str, Any]


class Group(BaseModel):
    """A named, ordered collection of actions."""

    name: str
    actions: list[Action] = Field(default_factory=list)

    def find(self, action_id: str) -> Optional[Action]:
        for action in self.actions:
            if action.name == action_id:
                return action
        return None


class Config:
    """Parsed agent configuration."""

    def __init__(self, groups: list[Group]):
        self._groups = {group.name: group for group in groups}
        self._group_names = sorted(self._groups)

        # Test instrumentation
        self.force_shell: Optional[str] = None
        self.op_wrapper: OperationWrapper = identity_wrapper

    @classmethod
    def from_file_model(cls, model: ConfigFile) -> "Config":
        groups = [
            Group(
                name=name,
                actions=[Action(name=action, body=body) for action, body in group.actions.items()],
            )
            for name, group in model.groups.items()
        ]
        return cls(groups)

    def groups(self) -> list[str]:
        """Group names, sorted."""
        return list(self._group_names)

    def group(self, name: str) -> Optional[Group]:
        return self._groups.get(name)

    def is_available(self, group: str, action_id: str) -> bool:
        """Whether the group exists and defines the action."""
        grp = self.group(group)
        if grp is None:
            return False
        return grp.find(action_id) is not None

    def action(
        self,
        group: str,
        action_id: str,
        eval_ctx: Optional[EvalContext] = None,
    ) -> Optional[Operation]:
        """Decode an action into an operation.

        Returns None when the group or the action does not exist. Raises
        DecodeError when the body cannot be decoded.
        """
        grp = self.group(group)
        if grp is None:
            return None

        action = grp.find(action_id)
        if action is None:
            return None

        return decode_body(
            action.body,
            eval_ctx or EvalContext(),
            force_shell=self.force_shell,
            wrapper=self.op_wrapper,
        )


def parse_config(source: str, name: str = "<config>") -> Config:
    """Parse configuration text."""
    try:
        data = yaml.safe_load(source) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{name}: invalid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{name}: configuration must be a mapping")

    try:
        model = ConfigFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{name}: {e}") from e

    return Config.from_file_model(model)


def parse_config_file(path: Union[str, Path]) -> Config:
    """Load and parse a configuration file."""
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"unable to read configuration file {path}: {e}") from e

    return parse_config(content, name=str(path))
