"""Mock Pages REST API served through httpx.MockTransport.

Routes:
    GET    /client/v4/accounts/{a}/pages/projects/{p}
    PATCH  /client/v4/accounts/{a}/pages/projects/{p}
    POST   /client/v4/accounts/{a}/pages/projects/{p}/deploy_hooks
    DELETE /client/v4/accounts/{a}/pages/projects/{p}/deploy_hooks/{id}
    POST   /client/v4/pages/webhooks/deploy_hooks/{id}        (no auth)
    GET    /client/v4/accounts/{a}/pages/projects/{p}/deployments/{id}
    GET    https://{deployment}.{project}.pages.dev/          (edge)
"""

from __future__ import annotations

import json
import re
from typing import Any

import httpx

from pages_e2e.config import Host, ProjectCredentials

from .state import MockDeployment, MockPagesState

API_HOST = "https://api.pages.test"
DASH_HOST = "https://dash.pages.test"

_PROJECT = r"/client/v4/accounts/(?P<account>[^/]+)/pages/projects/(?P<project>[^/]+)"
_ROUTES = (
    ("GET", re.compile(rf"^{_PROJECT}$"), "_get_project"),
    ("PATCH", re.compile(rf"^{_PROJECT}$"), "_patch_project"),
    ("POST", re.compile(rf"^{_PROJECT}/deploy_hooks$"), "_create_hook"),
    ("DELETE", re.compile(rf"^{_PROJECT}/deploy_hooks/(?P<hook_id>[^/]+)$"), "_delete_hook"),
    ("GET", re.compile(rf"^{_PROJECT}/deployments/(?P<deployment_id>[^/]+)$"), "_get_deployment"),
)
_WEBHOOK = re.compile(r"^/client/v4/pages/webhooks/deploy_hooks/(?P<hook_id>[^/]+)$")


def envelope(result: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={"success": True, "errors": [], "messages": [], "result": result},
    )


def error_envelope(status_code: int, message: str) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={
            "success": False,
            "errors": [{"code": status_code, "message": message}],
            "messages": [],
            "result": None,
        },
    )


class MockPagesApi:
    """In-memory Pages API for one project."""

    def __init__(
        self,
        state: MockPagesState | None = None,
        *,
        api_host: str = API_HOST,
        dash_host: str = DASH_HOST,
    ) -> None:
        self.state = state or MockPagesState()
        self.host = Host(api=api_host, dash=dash_host)
        self._api_netloc = httpx.URL(api_host).host
        self._hook_counter = 0
        self._deployment_counter = 0

    @property
    def credentials(self) -> ProjectCredentials:
        return ProjectCredentials(
            account_id=self.state.account_id,
            api_token=self.state.api_token,
            project_name=self.state.project_name,
            git_repo="git@example.com:e2e/fixtures.git",
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def calls(self, method: str, suffix: str = "") -> list[str]:
        """Recorded request paths for a method, optionally filtered by suffix."""
        return [
            path for m, path in self.state.requests if m == method and path.endswith(suffix)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.state.requests.append((request.method, path))

        if request.url.host != self._api_netloc:
            return self._edge(request)

        webhook = _WEBHOOK.match(path)
        if webhook and request.method == "POST":
            return self._fire_hook(webhook["hook_id"])

        for method, pattern, name in _ROUTES:
            match = pattern.match(path)
            if match is None or method != request.method:
                continue
            if request.headers.get("Authorization") != f"Bearer {self.state.api_token}":
                return error_envelope(403, "Authentication error")
            if (match["account"], match["project"]) != (
                self.state.account_id,
                self.state.project_name,
            ):
                return error_envelope(404, "Project not found")
            params = {k: v for k, v in match.groupdict().items() if k not in ("account", "project")}
            return getattr(self, name)(request, **params)

        return error_envelope(404, f"No route for {request.method} {path}")

    # ── Handlers ─────────────────────────────────────────────────

    def _get_project(self, request: httpx.Request) -> httpx.Response:
        return envelope(self.state.project())

    def _patch_project(self, request: httpx.Request) -> httpx.Response:
        self.state.apply_patch(json.loads(request.content))
        return envelope(self.state.project())

    def _create_hook(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self._hook_counter += 1
        hook_id = f"hook-{self._hook_counter}"
        self.state.hooks[hook_id] = body["branch"]
        return envelope({"hook_id": hook_id, "name": body["name"], "branch": body["branch"]})

    def _delete_hook(self, request: httpx.Request, hook_id: str) -> httpx.Response:
        if self.state.hooks.pop(hook_id, None) is None:
            return error_envelope(404, "Deploy hook not found")
        self.state.deleted_hooks.append(hook_id)
        return httpx.Response(200, json={"success": True, "errors": [], "result": None})

    def _fire_hook(self, hook_id: str) -> httpx.Response:
        branch = self.state.hooks.get(hook_id)
        if branch is None:
            return error_envelope(404, "Deploy hook not found")

        self._deployment_counter += 1
        deployment_id = f"deployment-{self._deployment_counter:04d}"
        self.state.deployments[deployment_id] = MockDeployment(
            id=deployment_id,
            branch=branch,
            url=f"https://{deployment_id}.{self.state.project_name}.pages.dev",
            stages=list(self.state.stage_script),
        )
        return envelope({"id": deployment_id})

    def _get_deployment(self, request: httpx.Request, deployment_id: str) -> httpx.Response:
        if self.state.deployment_failures > 0:
            self.state.deployment_failures -= 1
            return error_envelope(500, "Internal server error")

        deployment = self.state.deployments.get(deployment_id)
        if deployment is None:
            return error_envelope(404, "Deployment not found")

        name, status = deployment.next_stage()
        return envelope(
            {
                "id": deployment.id,
                "url": deployment.url,
                "latest_stage": {"name": name, "status": status},
                "deployment_trigger": {"metadata": {"branch": deployment.branch}},
            }
        )

    def _edge(self, request: httpx.Request) -> httpx.Response:
        status_code, body = self.state.next_edge_response()
        return httpx.Response(status_code, text=body)
