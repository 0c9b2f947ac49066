"""Client for the Waypoint control plane.

The agent needs a handful of endpoints:
- validate the agent groups it serves
- retrieve the next queued operation for those groups
- report action runs starting and ending
- append status logs to an action run
- queue an operation (used by the ``queue`` command)

Failures are raised as ControlPlaneError; callers decide whether to log and
carry on.
"""

import base64
import binascii
import logging
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from waypoint_agent.config import AgentSettings
from waypoint_agent.errors import ControlPlaneError

logger = logging.getLogger(__name__)

API_VERSION = "2024-11-22"


# =============================================================================
# Wire models
# =============================================================================


class AgentOperation(BaseModel):
    """An operation queued for an agent group."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    group: str
    action_run_id: str = Field(default="", alias="actionRunId")
    body: bytes = b""

    @field_validator("body", mode="before")
    @classmethod
    def _decode_body(cls, value: Any) -> bytes:
        """The API carries the JSON body base64-encoded."""
        if value is None:
            return b""
        if isinstance(value, bytes):
            return value
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"body is not valid base64: {e}") from e


class StartingAction(BaseModel):
    """Reply to a starting report."""

    model_config = ConfigDict(populate_by_name=True)

    action_run_id: str = Field(default="", alias="actionRunId")
    sequence: str = ""


# =============================================================================
# Client
# =============================================================================


class ControlPlaneClient:
    """Async HTTP client scoped to one organization/project."""

    def __init__(
        self,
        api_url: str,
        organization_id: str,
        project_id: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.organization_id = organization_id
        self.project_id = project_id

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._http = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> "ControlPlaneClient":
        return cls(
            api_url=settings.api_url,
            organization_id=settings.organization_id,
            project_id=settings.project_id,
            token=settings.token.get_secret_value() if settings.token else None,
            timeout=settings.http_timeout,
        )

    @property
    def namespace_path(self) -> str:
        return (
            f"/waypoint/{API_VERSION}/organizations/{self.organization_id}"
            f"/projects/{self.project_id}"
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ControlPlaneClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Agent endpoints
    # -------------------------------------------------------------------------

    async def validate_groups(self, groups: list[str]) -> list[str]:
        """Return the subset of groups the control plane does not know."""
        data = await self._post_json("/agent/group/validate", {"groups": groups})
        return list(data.get("unknown_groups") or data.get("unknownGroups") or [])

    async def retrieve_operation(self, groups: list[str]) -> Optional[AgentOperation]:
        """Fetch one pending operation for the given groups, if there is one."""
        data = await self._post_json("/agent/operation", {"groups": groups})

        raw = data.get("operation")
        if not raw:
            return None

        try:
            return AgentOperation.model_validate(raw)
        except ValidationError as e:
            raise ControlPlaneError(f"invalid operation in response: {e}") from e

    async def queue_operation(
        self,
        group: str,
        operation_id: str,
        body: bytes = b"",
        action_run_id: str = "",
    ) -> None:
        """Queue an operation for agents serving group."""
        payload = {
            "operation": {
                "id": operation_id,
                "group": group,
                "action_run_id": action_run_id,
                "body": base64.b64encode(body).decode("ascii"),
            }
        }
        await self._post_json("/agent/queue", payload)

    # -------------------------------------------------------------------------
    # Action run endpoints
    # -------------------------------------------------------------------------

    async def report_starting(self, action_run_id: str, group: str) -> StartingAction:
        """Register an action run as started."""
        data = await self._post_json(
            "/actions/starting",
            {"action_run_id": action_run_id, "group_name": group},
        )
        try:
            return StartingAction.model_validate(data)
        except ValidationError as e:
            raise ControlPlaneError(f"invalid starting response: {e}") from e

    async def report_ending(
        self,
        action_run_id: str,
        final_status: str,
        status_code: int,
    ) -> None:
        """Register an action run as ended with its final status."""
        await self._post_json(
            "/actions/ending",
            {
                "action_run_id": action_run_id,
                "final_status": final_status,
                "status_code": status_code,
            },
        )

    async def send_status_log(
        self,
        action_run_id: str,
        message: str,
        metadata: Optional[dict[str, str]] = None,
        emitted_at: Optional[datetime] = None,
        status: str = "",
    ) -> httpx.Response:
        """Append a status log entry to an action run.

        HTTP error replies are returned, not raised; only transport failures
        raise.
        """
        status_log: dict[str, Any] = {
            "log": message,
            "metadata": metadata or {},
        }
        if emitted_at is not None:
            status_log["emitted_at"] = emitted_at.isoformat()
        if status:
            status_log["status"] = status

        return await self._request(
            "POST",
            f"/actions/{action_run_id}/status-log",
            {"status_log": status_log},
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _request(self, method: str, path: str, payload: dict) -> httpx.Response:
        url = self.namespace_path + path
        logger.debug(f"{method} {url}")
        try:
            return await self._http.request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise ControlPlaneError(f"{method} {url} failed: {e}") from e

    async def _post_json(self, path: str, payload: dict) -> dict[str, Any]:
        response = await self._request("POST", path, payload)

        if response.is_error:
            raise ControlPlaneError(
                f"POST {response.request.url.path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise ControlPlaneError(f"invalid JSON from control plane: {e}") from e

        if not isinstance(data, dict):
            raise ControlPlaneError("unexpected response from control plane")
        return data
