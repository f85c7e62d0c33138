"""Async HTTP client for the Pages REST API.

Covers the project, deploy hook and deployment endpoints used by a
deployment run. Auth uses the project's bearer token, except for firing a
deploy hook, which is an unauthenticated webhook.

Every call returns the `result` member of the JSON envelope. A request that
raises, a non-2xx status, an unparsable body or a missing `result` all
surface as TransportError carrying the status and raw body.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .config import DEFAULT_HTTP_TIMEOUT, Host, ProjectCredentials
from .errors import TransportError, transform_response_into_error

logger = logging.getLogger(__name__)

API_PREFIX = "/client/v4"


class PagesClient:
    """Async client for one Pages project on one host."""

    def __init__(
        self,
        *,
        host: Host,
        credentials: ProjectCredentials,
        http_client: httpx.AsyncClient,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        if not credentials.api_token:
            raise ValueError("api_token is required")

        self._host = host
        self._credentials = credentials
        self._client = http_client
        self._timeout = float(timeout_seconds)

    @property
    def host(self) -> Host:
        return self._host

    @property
    def credentials(self) -> ProjectCredentials:
        return self._credentials

    @property
    def project_path(self) -> str:
        return (
            f"/accounts/{self._credentials.account_id}"
            f"/pages/projects/{self._credentials.project_name}"
        )

    def dashboard_url(self, deployment_id: str) -> str:
        """Link to a deployment in the dashboard."""
        return (
            f"{self._host.dash}/{self._credentials.account_id}/pages/view/"
            f"{self._credentials.project_name}/{deployment_id}"
        )

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.api_token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        context: str,
        json: Any | None = None,
        authenticated: bool = True,
    ) -> Any:
        """Send a request and return the envelope's `result`.

        Raises:
            TransportError: On any transport, status or parsing failure.
        """
        url = f"{self._host.api}{API_PREFIX}{path}"
        headers = self._auth_headers() if authenticated else {}

        try:
            response = await self._client.request(
                method,
                url,
                headers=headers,
                json=json,
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{context} {method} {url} failed: {e}") from e

        text = response.text
        if not response.is_success:
            raise transform_response_into_error(response, text, context)

        try:
            payload = response.json()
        except ValueError as e:
            raise transform_response_into_error(response, text, context) from e

        if not isinstance(payload, dict) or payload.get("result") is None:
            raise transform_response_into_error(response, text, context)

        return payload["result"]

    # ── Projects ─────────────────────────────────────────────────

    async def get_project(self) -> dict[str, Any]:
        result = await self._request("GET", self.project_path, context="Could not fetch project.")
        if not isinstance(result, dict):
            raise TransportError("Could not fetch project: result is not an object.")
        return result

    async def update_project(self, payload: dict[str, Any]) -> dict[str, Any]:
        result = await self._request(
            "PATCH",
            self.project_path,
            json=payload,
            context="Could not update project.",
        )
        if not isinstance(result, dict):
            raise TransportError("Could not update project: result is not an object.")
        return result

    # ── Deploy hooks ─────────────────────────────────────────────

    async def create_deploy_hook(self, name: str, branch: str) -> str:
        """Create a deploy hook for a branch and return its id."""
        context = "Could not create Deploy Hook."
        result = await self._request(
            "POST",
            f"{self.project_path}/deploy_hooks",
            json={"name": name, "branch": branch},
            context=context,
        )
        hook_id = result.get("hook_id") if isinstance(result, dict) else None
        if not hook_id:
            raise TransportError(f"{context} Response has no hook_id.", body=repr(result))
        return str(hook_id)

    async def delete_deploy_hook(self, hook_id: str) -> None:
        url = f"{self._host.api}{API_PREFIX}{self.project_path}/deploy_hooks/{hook_id}"
        try:
            response = await self._client.request(
                "DELETE",
                url,
                headers=self._auth_headers(),
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Could not delete Deploy Hook {hook_id}: {e}") from e

        if not response.is_success:
            raise transform_response_into_error(
                response, response.text, f"Could not delete Deploy Hook {hook_id}."
            )

    async def trigger_deploy_hook(self, hook_id: str) -> str:
        """Fire a deploy hook and return the created deployment's id."""
        context = "Could not create Deployment."
        result = await self._request(
            "POST",
            f"/pages/webhooks/deploy_hooks/{hook_id}",
            context=context,
            authenticated=False,
        )
        deployment_id = result.get("id") if isinstance(result, dict) else None
        if not deployment_id:
            raise TransportError(f"{context} Response has no id.", body=repr(result))
        return str(deployment_id)

    # ── Deployments ──────────────────────────────────────────────

    async def get_deployment(self, deployment_id: str) -> dict[str, Any]:
        """Fetch a deployment; guarantees `url` and `latest_stage.status` are present."""
        context = "Could not parse Deployment API response."
        result = await self._request(
            "GET",
            f"{self.project_path}/deployments/{deployment_id}",
            context=context,
        )
        latest_stage = result.get("latest_stage") if isinstance(result, dict) else None
        if (
            latest_stage is None
            or not result.get("url")
            or not isinstance(latest_stage, dict)
            or not latest_stage.get("status")
        ):
            raise TransportError(
                f"{context} Response has no url or latest stage status.", body=repr(result)
            )
        return result
