"""Configuration management with validation.

All settings are read from environment variables and validated at load
time, so a misconfigured run fails before any remote call is made.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Environment(str, Enum):
    """Target environments for a deployment run."""

    LOCAL = "local"
    STAGING = "staging"
    PRODUCTION = "production"


class Trigger(str, Enum):
    """How a deployment is started on the platform."""

    GITHUB = "github"
    GITLAB = "gitlab"
    DIRECT_UPLOAD = "direct-upload"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Polling defaults, in seconds
DEFAULT_DEPLOYMENT_CHECK_INTERVAL = 5.0
DEFAULT_DEPLOYMENT_TIMEOUT = 600.0
DEFAULT_DEPLOYMENT_CHECK_API_FAILURES_THRESHOLD = 5
DEFAULT_PROVISIONER_CHECK_INTERVAL = 5.0
DEFAULT_PROVISIONER_TIMEOUT = 300.0

DEFAULT_HTTP_TIMEOUT = 30.0

DEFAULT_GIT_USERNAME = "Pages E2E"
DEFAULT_GIT_EMAIL_ADDRESS = "pages-e2e@example.com"

DEFAULT_HOSTS: dict[Environment, tuple[str, str]] = {
    Environment.STAGING: (
        "https://api.staging.cloudflare.com",
        "https://dash.staging.cloudflare.com",
    ),
    Environment.PRODUCTION: (
        "https://api.cloudflare.com",
        "https://dash.cloudflare.com",
    ),
}

REMOTE_ENVIRONMENTS = (Environment.STAGING, Environment.PRODUCTION)


@dataclass(frozen=True)
class Host:
    """API and dashboard base URLs for one remote environment."""

    api: str
    dash: str

    def __post_init__(self) -> None:
        for name in ("api", "dash"):
            value = getattr(self, name)
            if not value.startswith(("http://", "https://")):
                raise ConfigurationError(f"Host {name} must be an http(s) URL: {value!r}")


@dataclass(frozen=True)
class ProjectCredentials:
    """Identity and credentials of a remote Pages project."""

    account_id: str
    api_token: str
    project_name: str
    git_repo: str | None = None

    def __repr__(self) -> str:
        # Never leak the token into logs
        return (
            f"ProjectCredentials(account_id={self.account_id!r}, "
            f"project_name={self.project_name!r}, git_repo={self.git_repo!r})"
        )


@dataclass(frozen=True)
class PollingConfig:
    """Intervals, timeouts and tolerances of the two polling loops."""

    deployment_check_interval: float = DEFAULT_DEPLOYMENT_CHECK_INTERVAL
    deployment_timeout: float = DEFAULT_DEPLOYMENT_TIMEOUT
    deployment_check_api_failures_threshold: int = DEFAULT_DEPLOYMENT_CHECK_API_FAILURES_THRESHOLD
    provisioner_check_interval: float = DEFAULT_PROVISIONER_CHECK_INTERVAL
    provisioner_timeout: float = DEFAULT_PROVISIONER_TIMEOUT

    def __post_init__(self) -> None:
        errors: list[str] = []

        for name in (
            "deployment_check_interval",
            "deployment_timeout",
            "provisioner_check_interval",
            "provisioner_timeout",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be positive")

        if self.deployment_check_api_failures_threshold < 0:
            errors.append("DEPLOYMENT_CHECK_API_FAILURES_THRESHOLD cannot be negative")

        if errors:
            raise ConfigurationError(
                "Polling configuration validation failed:\n  - " + "\n  - ".join(errors)
            )

    @classmethod
    def from_env(cls) -> PollingConfig:
        """Load polling configuration from environment variables.

        Environment Variables:
            DEPLOYMENT_CHECK_INTERVAL: Seconds between deployment status checks
            DEPLOYMENT_TIMEOUT: Seconds before a deployment is considered stuck
            DEPLOYMENT_CHECK_API_FAILURES_THRESHOLD: Tolerated failed status checks
            PROVISIONER_CHECK_INTERVAL: Seconds between edge availability probes
            PROVISIONER_TIMEOUT: Seconds before edge provisioning is considered stuck
        """
        return cls(
            deployment_check_interval=_get_float(
                "DEPLOYMENT_CHECK_INTERVAL", DEFAULT_DEPLOYMENT_CHECK_INTERVAL
            ),
            deployment_timeout=_get_float("DEPLOYMENT_TIMEOUT", DEFAULT_DEPLOYMENT_TIMEOUT),
            deployment_check_api_failures_threshold=_get_int(
                "DEPLOYMENT_CHECK_API_FAILURES_THRESHOLD",
                DEFAULT_DEPLOYMENT_CHECK_API_FAILURES_THRESHOLD,
            ),
            provisioner_check_interval=_get_float(
                "PROVISIONER_CHECK_INTERVAL", DEFAULT_PROVISIONER_CHECK_INTERVAL
            ),
            provisioner_timeout=_get_float("PROVISIONER_TIMEOUT", DEFAULT_PROVISIONER_TIMEOUT),
        )


@dataclass(frozen=True)
class HarnessConfig:
    """Harness configuration loaded from environment variables.

    Hosts and project credentials are keyed by environment (and trigger for
    credentials). A missing entry is not an error here; the orchestration
    raises a PreconditionError when it actually needs it.
    """

    polling: PollingConfig = field(default_factory=PollingConfig)
    hosts: dict[Environment, Host] = field(default_factory=dict)
    projects: dict[Environment, dict[Trigger, ProjectCredentials]] = field(default_factory=dict)

    git_username: str = DEFAULT_GIT_USERNAME
    git_email_address: str = DEFAULT_GIT_EMAIL_ADDRESS

    features_path: Path = field(default_factory=lambda: Path("features"))
    fixtures_path: Path = field(default_factory=lambda: Path("fixtures"))

    mutex_url: str | None = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.git_username:
            errors.append("GIT_USERNAME cannot be empty")
        if "@" not in self.git_email_address:
            errors.append(f"GIT_EMAIL_ADDRESS must be an email address: {self.git_email_address}")
        if self.http_timeout <= 0:
            errors.append("HTTP_TIMEOUT must be positive")
        if self.mutex_url is not None and not self.mutex_url.startswith(("http://", "https://")):
            errors.append(f"MUTEX_URL must be an http(s) URL: {self.mutex_url}")

        if Environment.LOCAL in self.hosts or Environment.LOCAL in self.projects:
            errors.append("The local environment has no remote host or project")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def host_for(self, environment: Environment) -> Host | None:
        return self.hosts.get(environment)

    def project_for(self, environment: Environment, trigger: Trigger) -> ProjectCredentials | None:
        return self.projects.get(environment, {}).get(trigger)

    @classmethod
    def from_env(cls) -> HarnessConfig:
        """Load configuration from environment variables.

        Environment Variables:
            STAGING_API_HOST, STAGING_DASH_HOST: Override staging hosts
            PRODUCTION_API_HOST, PRODUCTION_DASH_HOST: Override production hosts
            GIT_USERNAME, GIT_EMAIL_ADDRESS: Commit identity for fixture branches
            FEATURES_PATH: Directory of feature definitions (default: features)
            FIXTURES_PATH: Directory of fixtures (default: fixtures)
            MUTEX_URL: Remote lease service; in-process locking when unset
            HTTP_TIMEOUT: Per-request timeout in seconds (default: 30)

        Project Variables (per ENV in STAGING/PRODUCTION and TRIGGER in
        GITHUB/GITLAB/DIRECT_UPLOAD):
            {ENV}_{TRIGGER}_ACCOUNT_ID
            {ENV}_{TRIGGER}_API_TOKEN
            {ENV}_{TRIGGER}_PROJECT_NAME
            {ENV}_{TRIGGER}_GIT_REPO (optional)

        Polling variables are documented on PollingConfig.from_env().
        """
        hosts: dict[Environment, Host] = {}
        projects: dict[Environment, dict[Trigger, ProjectCredentials]] = {}

        for environment in REMOTE_ENVIRONMENTS:
            prefix = environment.name
            default_api, default_dash = DEFAULT_HOSTS[environment]
            hosts[environment] = Host(
                api=os.environ.get(f"{prefix}_API_HOST", default_api).rstrip("/"),
                dash=os.environ.get(f"{prefix}_DASH_HOST", default_dash).rstrip("/"),
            )

            for trigger in Trigger:
                credentials = _get_project_credentials(f"{prefix}_{trigger.name}")
                if credentials is not None:
                    projects.setdefault(environment, {})[trigger] = credentials

        return cls(
            polling=PollingConfig.from_env(),
            hosts=hosts,
            projects=projects,
            git_username=os.environ.get("GIT_USERNAME", DEFAULT_GIT_USERNAME),
            git_email_address=os.environ.get("GIT_EMAIL_ADDRESS", DEFAULT_GIT_EMAIL_ADDRESS),
            features_path=Path(os.environ.get("FEATURES_PATH", "features")),
            fixtures_path=Path(os.environ.get("FIXTURES_PATH", "fixtures")),
            mutex_url=os.environ.get("MUTEX_URL") or None,
            http_timeout=_get_float("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        )


def _get_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer: {value}") from e


def _get_float(key: str, default: float) -> float:
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number: {value}") from e


def _get_project_credentials(prefix: str) -> ProjectCredentials | None:
    account_id = os.environ.get(f"{prefix}_ACCOUNT_ID")
    api_token = os.environ.get(f"{prefix}_API_TOKEN")
    project_name = os.environ.get(f"{prefix}_PROJECT_NAME")

    present = [v for v in (account_id, api_token, project_name) if v]
    if not present:
        return None
    if len(present) != 3:
        raise ConfigurationError(
            f"{prefix}_ACCOUNT_ID, {prefix}_API_TOKEN and {prefix}_PROJECT_NAME "
            "must be set together"
        )

    return ProjectCredentials(
        account_id=account_id or "",
        api_token=api_token or "",
        project_name=project_name or "",
        git_repo=os.environ.get(f"{prefix}_GIT_REPO") or None,
    )
