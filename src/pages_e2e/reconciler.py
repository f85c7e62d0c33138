"""Remote project reconciliation.

This module makes a remote project's preview configuration match a
fixture's desired deployment configuration:
1. Read the current project
2. Compute a full-replacement update payload
3. Submit it as a partial update (build config and preview config only)
4. Verify the response field by field

Every binding category in the payload is a complete replacement set. Keys
present remotely but absent locally are sent as null, which deletes them;
desired keys are always (re)written.

Verification compares ordered entry lists, not sets: a reordered,
remote-added or remote-removed key fails verification.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .config import REMOTE_ENVIRONMENTS, Environment
from .errors import PreconditionError, VerificationError
from .models import BuildConfig, DeploymentConfig, FixtureConfig
from .pages_client import PagesClient

logger = logging.getLogger(__name__)


def _plain_text(value: str, environment: Environment) -> dict[str, Any]:
    return {"type": "plain_text", "value": value}


def _database(binding: Any, environment: Environment) -> dict[str, Any]:
    return {"id": binding.for_environment(environment).id}


def _namespace(binding: Any, environment: Environment) -> dict[str, Any]:
    return {"namespace_id": binding.for_environment(environment).id}


def _named(binding: Any, environment: Environment) -> dict[str, Any]:
    return {"name": binding.for_environment(environment).name}


def _service(binding: Any, environment: Environment) -> dict[str, Any]:
    value = binding.for_environment(environment)
    return {"service": value.name, "environment": value.environment}


def _dataset(binding: Any, environment: Environment) -> dict[str, Any]:
    return {"dataset": binding.for_environment(environment).name}


@dataclass(frozen=True)
class BindingCategory:
    """How one local map is written to the remote preview configuration."""

    attribute: str
    remote_key: str
    label: str
    to_remote: Callable[[Any, Environment], dict[str, Any]]


BINDING_CATEGORIES: tuple[BindingCategory, ...] = (
    BindingCategory("environment_variables", "env_vars", "Environment variables", _plain_text),
    BindingCategory("d1_databases", "d1_databases", "D1 database bindings", _database),
    BindingCategory(
        "durable_object_namespaces",
        "durable_object_namespaces",
        "Durable Object namespace bindings",
        _namespace,
    ),
    BindingCategory("kv_namespaces", "kv_namespaces", "KV namespace bindings", _namespace),
    BindingCategory("r2_buckets", "r2_buckets", "R2 bucket bindings", _named),
    BindingCategory("services", "services", "Service bindings", _service),
    BindingCategory("queue_producers", "queue_producers", "Queue Producer bindings", _named),
    BindingCategory(
        "analytics_engine_datasets",
        "analytics_engine_datasets",
        "Analytics Engine dataset bindings",
        _dataset,
    ),
)

# build_config key -> (BuildConfig attribute, label)
BUILD_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("build_command", "build_command", "Build command"),
    ("destination_dir", "build_output_directory", "Build output directory"),
    ("root_dir", "root_directory", "Root directory"),
)


def compute_category_patch(
    remote_keys: Iterable[str],
    desired: Mapping[str, Any],
) -> dict[str, Any | None]:
    """Compute the replacement payload for one binding category.

    Every remote key maps to None (delete), then every desired key is
    overlaid with its value. Keys absent from both never appear.

    Deletions come first and desired keys follow in local order, so a
    server applying the patch in order ends up with the local ordering.
    """
    patch: dict[str, Any | None] = {key: None for key in remote_keys if key not in desired}
    patch.update(desired)
    return patch


def desired_category(
    category: BindingCategory,
    config: DeploymentConfig,
    environment: Environment,
) -> dict[str, dict[str, Any]]:
    """Remote representation of one category, in local key order."""
    return {
        name: category.to_remote(value, environment)
        for name, value in getattr(config, category.attribute).items()
    }


def _preview_config(project: Mapping[str, Any]) -> Mapping[str, Any]:
    deployment_configs = project.get("deployment_configs") or {}
    return deployment_configs.get("preview") or {}


def build_update_payload(
    remote_project: Mapping[str, Any],
    fixture_config: FixtureConfig,
    desired: DeploymentConfig,
    environment: Environment,
) -> dict[str, Any]:
    """Build the PATCH payload making the preview config exactly `desired`.

    Only `build_config` and `deployment_configs.preview` are included;
    other project fields are left untouched by omission.
    """
    build = fixture_config.build_config
    remote_preview = _preview_config(remote_project)

    preview: dict[str, Any] = {
        "compatibility_date": fixture_config.deployment_config.compatibility_date,
        "compatibility_flags": list(fixture_config.deployment_config.compatibility_flags),
    }
    for category in BINDING_CATEGORIES:
        remote_keys = (remote_preview.get(category.remote_key) or {}).keys()
        preview[category.remote_key] = compute_category_patch(
            remote_keys, desired_category(category, desired, environment)
        )

    return {
        "build_config": {
            remote_key: getattr(build, attribute)
            for remote_key, attribute, _ in BUILD_FIELDS
        },
        "deployment_configs": {"preview": preview},
    }


def verify_project(
    project: Mapping[str, Any],
    fixture_config: FixtureConfig,
    desired: DeploymentConfig,
    environment: Environment,
) -> None:
    """Check that an updated project matches the intended configuration.

    Raises:
        VerificationError: Naming the first field that does not match.
    """
    build: BuildConfig = fixture_config.build_config
    remote_build = project.get("build_config") or {}
    for remote_key, attribute, label in BUILD_FIELDS:
        expected = getattr(build, attribute)
        actual = remote_build.get(remote_key)
        if actual != expected:
            raise VerificationError(label, expected, actual)

    preview = _preview_config(project)
    deployment_config = fixture_config.deployment_config

    if preview.get("compatibility_date") != deployment_config.compatibility_date:
        raise VerificationError(
            "Compatibility date",
            deployment_config.compatibility_date,
            preview.get("compatibility_date"),
        )
    if preview.get("compatibility_flags") != list(deployment_config.compatibility_flags):
        raise VerificationError(
            "Compatibility flags",
            list(deployment_config.compatibility_flags),
            preview.get("compatibility_flags"),
        )

    for category in BINDING_CATEGORIES:
        expected_entries = list(desired_category(category, desired, environment).items())
        actual_entries = list((preview.get(category.remote_key) or {}).items())
        if actual_entries != expected_entries:
            raise VerificationError(category.label, expected_entries, actual_entries)


@dataclass
class ReconcileResult:
    """Result of reconciling one remote project."""

    project_name: str
    payload: dict[str, Any]
    project: dict[str, Any]
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def deleted_keys(self) -> dict[str, list[str]]:
        """Binding keys removed from the remote project, per category."""
        preview = self.payload["deployment_configs"]["preview"]
        deleted: dict[str, list[str]] = {}
        for category in BINDING_CATEGORIES:
            keys = [key for key, value in preview[category.remote_key].items() if value is None]
            if keys:
                deleted[category.remote_key] = keys
        return deleted

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class ProjectReconciler:
    """Reconciles a remote project against a desired deployment configuration.

    Not safe to run concurrently for the same project: callers serialize
    reconciliation through the mutex gate.
    """

    def __init__(self, client: PagesClient) -> None:
        self._client = client

    async def reconcile(
        self,
        environment: Environment,
        fixture_config: FixtureConfig,
        desired: DeploymentConfig,
    ) -> ReconcileResult:
        """Read, replace and verify the remote project's configuration.

        Raises:
            PreconditionError: If the environment has no remote project.
            TransportError: If reading or updating the project fails.
            VerificationError: If the updated project does not match.
        """
        if environment not in REMOTE_ENVIRONMENTS:
            raise PreconditionError(
                f"Cannot configure a remote project for environment {environment.value}"
            )

        project_name = self._client.credentials.project_name
        logger.info("Getting initial project state...", extra={"project": project_name})
        initial_project = await self._client.get_project()

        payload = build_update_payload(initial_project, fixture_config, desired, environment)
        result = ReconcileResult(project_name=project_name, payload=payload, project={})
        logger.info(
            "Computed required changes",
            extra={"project": project_name, "deleted_keys": result.deleted_keys},
        )

        logger.info("Updating project...", extra={"project": project_name})
        result.project = await self._client.update_project(payload)

        verify_project(result.project, fixture_config, desired, environment)
        result.end_time = datetime.now(UTC)

        logger.info(
            "Project configured",
            extra={"project": project_name, "duration_seconds": result.duration_seconds},
        )
        return result
