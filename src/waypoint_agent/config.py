"""Runtime settings for the Waypoint agent."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """Agent settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WAYPOINT_AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Agent
    config_path: Path = Field(
        default=Path("agent.yaml"),
        description="Path to the agent configuration file",
    )
    poll_interval: float = Field(
        default=60.0,
        description="Seconds to wait between polls of the control plane",
    )
    shell: Optional[str] = Field(
        default=None,
        description="Shell used for commands with shell syntax (defaults to $SHELL, then sh)",
    )

    # Control plane
    api_url: str = Field(
        default="https://api.cloud.hashicorp.com",
        description="Base URL of the control plane API",
    )
    organization_id: str = Field(
        default="",
        description="Organization the agent belongs to",
    )
    project_id: str = Field(
        default="",
        description="Project the agent belongs to",
    )
    token: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token for the control plane",
    )
    http_timeout: float = Field(
        default=30.0,
        description="Timeout for control plane requests (seconds)",
    )

    # Logging
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> AgentSettings:
    """Get cached settings instance."""
    return AgentSettings()
