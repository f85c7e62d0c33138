"""In-memory Pages project state.

Holds a single project with its build and preview configuration, deploy
hooks, and the deployments they created.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

# Preview config keys holding binding maps; everything else is a plain value
BINDING_KEYS = (
    "env_vars",
    "d1_databases",
    "durable_object_namespaces",
    "kv_namespaces",
    "r2_buckets",
    "services",
    "queue_producers",
    "analytics_engine_datasets",
)


@dataclass
class MockDeployment:
    """A deployment created by firing a deploy hook.

    Each status read returns the next stage of `stages`; the last stage
    repeats once the script is exhausted.
    """

    id: str
    branch: str
    url: str
    stages: list[tuple[str, str]]
    reads: int = 0

    def next_stage(self) -> tuple[str, str]:
        stage = self.stages[min(self.reads, len(self.stages) - 1)]
        self.reads += 1
        return stage


@dataclass
class MockPagesState:
    """State of one mock Pages project."""

    account_id: str = "acct-123"
    project_name: str = "e2e-project"
    api_token: str = "token-abc"

    build_config: dict[str, Any] = field(
        default_factory=lambda: {"build_command": "", "destination_dir": "", "root_dir": ""}
    )
    preview: dict[str, Any] = field(default_factory=dict)
    production: dict[str, Any] = field(default_factory=dict)

    # Stages every new deployment goes through
    stage_script: list[tuple[str, str]] = field(
        default_factory=lambda: [("deploy", "success")]
    )
    # Number of upcoming deployment status reads answered with a 500
    deployment_failures: int = 0
    # Responses served for deployed URLs, consumed in order; the last repeats
    edge_responses: list[tuple[int, str]] = field(default_factory=lambda: [(200, "<html></html>")])
    # Preview keys the server silently drops on patch
    dropped_preview_keys: set[str] = field(default_factory=set)

    hooks: dict[str, str] = field(default_factory=dict)
    deleted_hooks: list[str] = field(default_factory=list)
    deployments: dict[str, MockDeployment] = field(default_factory=dict)
    patches: list[dict[str, Any]] = field(default_factory=list)
    requests: list[tuple[str, str]] = field(default_factory=list)
    edge_reads: int = 0

    def project(self) -> dict[str, Any]:
        return {
            "name": self.project_name,
            "build_config": copy.deepcopy(self.build_config),
            "deployment_configs": {
                "preview": copy.deepcopy(self.preview),
                "production": copy.deepcopy(self.production),
            },
        }

    def apply_patch(self, payload: dict[str, Any]) -> None:
        """Merge a project patch; a null binding value deletes the binding."""
        self.patches.append(copy.deepcopy(payload))
        self.build_config.update(payload.get("build_config") or {})

        preview_patch = (payload.get("deployment_configs") or {}).get("preview") or {}
        for key, value in preview_patch.items():
            if key in self.dropped_preview_keys:
                continue
            if key in BINDING_KEYS and isinstance(value, dict):
                current = {k: v for k, v in (self.preview.get(key) or {}).items() if k not in value}
                for name, binding in value.items():
                    if binding is not None:
                        current[name] = binding
                self.preview[key] = current
            else:
                self.preview[key] = value

    def next_edge_response(self) -> tuple[int, str]:
        response = self.edge_responses[min(self.edge_reads, len(self.edge_responses) - 1)]
        self.edge_reads += 1
        return response
