"""Deployment orchestration for one fixture run.

Remote environments:
1. Commit the fixture to an orphan branch and push it
2. Create a deploy hook for the branch
3. Under the project's mutex: reconcile the project, fire the hook
4. Poll the deployment until it succeeds or fails
5. In production, poll the deployed URL until it is served at the edge

The local environment builds the fixture and hands it to a local dev
server launcher instead.

Every remote side effect registers its compensation with the teardown
service as soon as it happens; running teardown is the caller's job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

from .config import Environment, HarnessConfig, Host, ProjectCredentials, Trigger
from .deploy_hooks import DeployHookLifecycle
from .errors import PreconditionError
from .features import merge_deployment_configs
from .git import GitRepository
from .models import DeploymentConfig, FixtureConfig
from .mutex import MutexGate, mutex_key
from .pages_client import PagesClient
from .polling import BoundedPoller, DeploymentPoller, EdgeAvailabilityPoller
from .reconciler import ProjectReconciler
from .shell import run_command_async
from .teardown import TeardownService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentResult:
    """Where the fixture ended up being served."""

    url: str
    deployment_id: str | None = None


class LocalServerLauncher(Protocol):
    """Starts a local dev server for a built fixture and returns its URL.

    The launcher registers its own shutdown with the teardown service.
    """

    async def __call__(
        self,
        *,
        root_directory: Path,
        build_output_directory: Path,
        arguments: list[str],
        teardown: TeardownService,
    ) -> str: ...


def branch_name(fixture: str, timestamp: int) -> str:
    return f"{fixture}-{timestamp}"


def commit_message(fixture: str, timestamp: int) -> str:
    return f"{fixture} @ {timestamp}"


def local_dev_arguments(fixture_config: FixtureConfig, combined: DeploymentConfig) -> list[str]:
    """Command line arguments describing a deployment to the local dev server.

    Durable Object namespaces, services, queue producers and analytics
    datasets have no local equivalent and are left out.
    """
    deployment_config = fixture_config.deployment_config
    return [
        f"--compatibility-date={deployment_config.compatibility_date}",
        *(f"--compatibility-flag={flag}" for flag in deployment_config.compatibility_flags),
        *(f"--binding={name}={value}" for name, value in combined.environment_variables.items()),
        *(f"--d1={name}" for name in combined.d1_databases),
        *(f"--kv={name}" for name in combined.kv_namespaces),
        *(f"--r2={name}" for name in combined.r2_buckets),
    ]


class DeploymentRunner:
    """Runs fixture deployments against one harness configuration.

    The HTTP client and mutex gate are shared by all runs of a process; all
    other state is per run.
    """

    def __init__(
        self,
        config: HarnessConfig,
        *,
        http_client: httpx.AsyncClient,
        mutex_gate: MutexGate,
        local_server: LocalServerLauncher | None = None,
        git_factory: Callable[[Path], GitRepository] | None = None,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._mutex_gate = mutex_gate
        self._local_server = local_server
        self._git_factory = git_factory or self._default_git

    @property
    def config(self) -> HarnessConfig:
        return self._config

    def _default_git(self, directory: Path) -> GitRepository:
        return GitRepository(
            directory,
            username=self._config.git_username,
            email_address=self._config.git_email_address,
        )

    def _remote_target(
        self, environment: Environment, trigger: Trigger
    ) -> tuple[Host, ProjectCredentials, str]:
        """Check everything a remote run needs, before any side effect.

        Raises:
            PreconditionError: If host, credentials or git repo are missing.
        """
        host = self._config.host_for(environment)
        if host is None:
            raise PreconditionError(f"No API host configured for {environment.value}")

        if trigger == Trigger.DIRECT_UPLOAD:
            raise PreconditionError("Direct upload deployments are not supported")

        credentials = self._config.project_for(environment, trigger)
        if credentials is None:
            raise PreconditionError(
                f"No Pages project configured for {environment.value} / {trigger.value}"
            )
        if not credentials.git_repo:
            raise PreconditionError(
                f"No git repo configured for {environment.value} / {trigger.value}"
            )
        return host, credentials, credentials.git_repo

    async def create_deployment(
        self,
        *,
        timestamp: int,
        environment: Environment,
        trigger: Trigger,
        teardown: TeardownService,
        fixture: str,
        fixture_config: FixtureConfig,
        features_config: DeploymentConfig,
        directory: Path,
    ) -> DeploymentResult:
        """Deploy a fixture and wait until it is served.

        Raises:
            PreconditionError: If the run is misconfigured (before any remote call).
            TransportError: If a platform API call fails.
            VerificationError: If the project could not be configured as intended.
            DeploymentFailedError: If the deployment fails remotely.
            HarnessTimeoutError: If the deployment or edge provisioning times out.
        """
        remote_target = None
        if environment != Environment.LOCAL:
            remote_target = self._remote_target(environment, trigger)
        elif self._local_server is None:
            raise PreconditionError("No local dev server launcher configured")

        branch = branch_name(fixture, timestamp)
        git = self._git_factory(directory)
        await git.commit_orphan_branch(branch, commit_message(fixture, timestamp), timestamp)

        combined = merge_deployment_configs([fixture_config.deployment_config, features_config])

        if remote_target is None:
            return await self._run_local(fixture_config, combined, directory, teardown)

        host, credentials, git_repo = remote_target
        await git.push_branch(git_repo, branch)
        logger.info("Pushed branch", extra={"branch": branch})

        async def delete_branch() -> None:
            await git.delete_remote_branch(branch)

        teardown.register("Delete Git branch", delete_branch)

        client = PagesClient(
            host=host,
            credentials=credentials,
            http_client=self._http_client,
            timeout_seconds=self._config.http_timeout,
        )
        hooks = DeployHookLifecycle(client, teardown)
        hook_id = await hooks.create(branch)

        key = mutex_key(host.api, credentials.account_id, credentials.project_name)
        async with self._mutex_gate.hold(key):
            await ProjectReconciler(client).reconcile(environment, fixture_config, combined)
            deployment_id = await hooks.fire(hook_id)

        logger.info("Awaiting Deployment completion...", extra={"deployment_id": deployment_id})
        url = await _await_outcome(
            DeploymentPoller(
                client=client,
                deployment_id=deployment_id,
                polling=self._config.polling,
            )
        )
        logger.info("Deployment complete", extra={"deployment_id": deployment_id, "url": url})

        if environment == Environment.PRODUCTION:
            logger.info("Awaiting deployment to be live at the edge...", extra={"url": url})
            await _await_outcome(
                EdgeAvailabilityPoller(
                    url=url,
                    http_client=self._http_client,
                    polling=self._config.polling,
                )
            )
            logger.info("Deployment available", extra={"url": url})

        return DeploymentResult(url=url, deployment_id=deployment_id)

    async def _run_local(
        self,
        fixture_config: FixtureConfig,
        combined: DeploymentConfig,
        directory: Path,
        teardown: TeardownService,
    ) -> DeploymentResult:
        assert self._local_server is not None
        build = fixture_config.build_config
        root_directory = directory / build.root_directory

        logger.info("Building project...")
        if build.build_command:
            logger.info("Running build command: `%s`...", build.build_command)
            await run_command_async(build.build_command, cwd=root_directory, output_logger=logger)
        else:
            logger.info("No build command specified, continuing...")

        unsupported = combined.unsupported_locally()
        if unsupported:
            logger.warning(
                "The local dev server does not support Durable Objects, Services, "
                "Queue Producers, or Analytics Engine Datasets.",
                extra={"bindings": unsupported},
            )

        url = await self._local_server(
            root_directory=root_directory,
            build_output_directory=root_directory / build.build_output_directory,
            arguments=local_dev_arguments(fixture_config, combined),
            teardown=teardown,
        )
        logger.info("Local dev server started", extra={"url": url})
        return DeploymentResult(url=url)


async def _await_outcome(poller: BoundedPoller[str]) -> str:
    """Await a poller, cancelling it if the wait itself is interrupted."""
    try:
        return await poller.outcome()
    except asyncio.CancelledError:
        poller.cancel()
        raise
