"""Pydantic models for fixture and feature definitions.

These models provide:
1. Type-safe parsing of fixture and feature files
2. Validation at the boundary (fail fast, fail loudly)
3. Per-environment selection of resource bindings
"""

from __future__ import annotations

from typing import Annotated, Generic, TypeVar

from pydantic import BaseModel, Field, field_validator

from .config import Environment
from .errors import PreconditionError

T = TypeVar("T")


# =============================================================================
# Binding descriptors
# =============================================================================


class IdBinding(BaseModel):
    """A resource addressed by id (D1 database, KV or Durable Object namespace)."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: Annotated[str, Field(min_length=1)]


class NameBinding(BaseModel):
    """A resource addressed by name (R2 bucket, queue, analytics dataset)."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]


class ServiceBinding(BaseModel):
    """A bound Worker service and the service environment to call."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]
    environment: str = "production"


class EnvironmentBinding(BaseModel, Generic[T]):
    """One binding, with a value per remote environment."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    production: T
    staging: T

    def for_environment(self, environment: Environment) -> T:
        if environment == Environment.PRODUCTION:
            return self.production
        if environment == Environment.STAGING:
            return self.staging
        raise PreconditionError(f"Bindings have no value for environment {environment.value}")


# =============================================================================
# Deployment configuration
# =============================================================================

# Merged maps, in the order they are written to the remote project
MAP_FIELDS: tuple[str, ...] = (
    "environment_variables",
    "d1_databases",
    "durable_object_namespaces",
    "kv_namespaces",
    "r2_buckets",
    "services",
    "queue_producers",
    "analytics_engine_datasets",
)


class DeploymentConfig(BaseModel):
    """Environment variables and resource bindings of a deployment.

    Each map is keyed by binding name. Feature overlays and the fixture's
    own configuration share this shape.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    environment_variables: dict[str, str] = Field(
        default_factory=dict, alias="environmentVariables"
    )
    d1_databases: dict[str, EnvironmentBinding[IdBinding]] = Field(
        default_factory=dict, alias="d1Databases"
    )
    durable_object_namespaces: dict[str, EnvironmentBinding[IdBinding]] = Field(
        default_factory=dict, alias="durableObjectNamespaces"
    )
    kv_namespaces: dict[str, EnvironmentBinding[IdBinding]] = Field(
        default_factory=dict, alias="kvNamespaces"
    )
    r2_buckets: dict[str, EnvironmentBinding[NameBinding]] = Field(
        default_factory=dict, alias="r2Buckets"
    )
    services: dict[str, EnvironmentBinding[ServiceBinding]] = Field(
        default_factory=dict, alias="services"
    )
    queue_producers: dict[str, EnvironmentBinding[NameBinding]] = Field(
        default_factory=dict, alias="queueProducers"
    )
    analytics_engine_datasets: dict[str, EnvironmentBinding[NameBinding]] = Field(
        default_factory=dict, alias="analyticsEngineDatasets"
    )

    def unsupported_locally(self) -> list[str]:
        """Binding names that the local dev server cannot provide."""
        return [
            *self.durable_object_namespaces,
            *self.services,
            *self.queue_producers,
            *self.analytics_engine_datasets,
        ]


class FixtureDeploymentConfig(DeploymentConfig):
    """A fixture's deployment configuration, including runtime settings."""

    compatibility_date: Annotated[str, Field(alias="compatibilityDate")]
    compatibility_flags: list[str] = Field(default_factory=list, alias="compatibilityFlags")

    @field_validator("compatibility_date")
    @classmethod
    def validate_compatibility_date(cls, v: str) -> str:
        parts = v.split("-")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError("compatibilityDate must be formatted as YYYY-MM-DD")
        return v


class BuildConfig(BaseModel):
    """How the fixture is built, relative to its directory."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    build_command: str = Field("", alias="buildCommand")
    build_output_directory: str = Field("", alias="buildOutputDirectory")
    root_directory: str = Field("", alias="rootDirectory")


# =============================================================================
# Fixture and feature files
# =============================================================================


class FixtureConfig(BaseModel):
    """Contents of a fixture's `main.fixture` file."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    features: list[str] = Field(default_factory=list)
    build_config: BuildConfig = Field(default_factory=BuildConfig, alias="buildConfig")
    deployment_config: FixtureDeploymentConfig = Field(alias="deploymentConfig")


class FeatureConfig(BaseModel):
    """Contents of a feature's `main.feature` file."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    setup: str | None = None
    deployment_config: DeploymentConfig = Field(
        default_factory=DeploymentConfig, alias="deploymentConfig"
    )
