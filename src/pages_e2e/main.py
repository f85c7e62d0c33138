"""Entry point wiring for a single fixture deployment run.

A run copies the fixture into a temporary workspace, sets up its features,
deploys it and always runs teardown before returning, whatever the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
import tempfile
import time
from collections.abc import Callable, Sequence
from datetime import UTC
from pathlib import Path

import httpx

from .config import ConfigurationError, Environment, HarnessConfig, Trigger
from .deployment import DeploymentResult, DeploymentRunner, LocalServerLauncher
from .errors import HarnessError, PreconditionError
from .features import set_up_features
from .fixtures import DefinitionLoadError, load_fixture
from .mutex import HttpMutexTransport, InProcessMutexTransport, MutexGate
from .teardown import TeardownService

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""
    import json
    from datetime import datetime

    class JsonFormatter(logging.Formatter):
        """Format logs as JSON for structured logging."""

        def format(self, record: logging.LogRecord) -> str:
            log_data = {
                "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "message": record.getMessage(),
                "logger": record.name,
            }

            for key, value in record.__dict__.items():
                if key not in _RESERVED_RECORD_ATTRIBUTES:
                    log_data[key] = value

            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_data, default=str)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Request lines from the HTTP stack drown out the polling logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


_RESERVED_RECORD_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


def build_mutex_gate(config: HarnessConfig, http_client: httpx.AsyncClient) -> MutexGate:
    """Remote leases when a mutex service is configured, in-process locks otherwise."""
    if config.mutex_url:
        return MutexGate(HttpMutexTransport(base_url=config.mutex_url, http_client=http_client))
    return MutexGate(InProcessMutexTransport())


def prepare_workspace(fixtures_dir: Path, fixture: str, teardown: TeardownService) -> Path:
    """Copy a fixture into a fresh temporary directory.

    The copy is what gets committed and built, so the fixtures tree itself
    never becomes a git repository. Its removal is registered for teardown.
    """
    source = fixtures_dir / fixture
    if not source.is_dir():
        raise PreconditionError(f"Could not find fixture directory: {source}")

    workspace = Path(tempfile.mkdtemp(prefix=f"pages-e2e-{fixture}-"))
    directory = workspace / fixture
    shutil.copytree(source, directory)
    logger.info("Prepared workspace", extra={"fixture": fixture, "directory": str(directory)})

    async def remove_workspace() -> None:
        await asyncio.to_thread(shutil.rmtree, workspace, True)

    teardown.register("Delete workspace", remove_workspace)
    return directory


async def deploy_fixture(
    config: HarnessConfig,
    *,
    fixture: str,
    environment: Environment,
    trigger: Trigger,
    features: Sequence[str] | None = None,
    directory: Path | None = None,
    timestamp: int | None = None,
    http_client: httpx.AsyncClient | None = None,
    mutex_gate: MutexGate | None = None,
    local_server: LocalServerLauncher | None = None,
) -> DeploymentResult:
    """Deploy one fixture and run its teardown.

    Args:
        config: Harness configuration.
        fixture: Fixture name under the fixtures path.
        environment: Target environment.
        trigger: How the project is connected to source control.
        features: Feature patterns; defaults to the fixture's own list.
        directory: Working copy to deploy; a temporary copy when omitted.
        timestamp: Run timestamp in seconds; now when omitted.
        http_client: Shared client; one is created for the run when omitted.
        mutex_gate: Shared gate; derived from the config when omitted.
        local_server: Launcher for the local environment.

    Raises:
        HarnessError: Whatever the deployment failed with, after teardown.
    """
    if http_client is None:
        async with httpx.AsyncClient(timeout=config.http_timeout) as client:
            return await deploy_fixture(
                config,
                fixture=fixture,
                environment=environment,
                trigger=trigger,
                features=features,
                directory=directory,
                timestamp=timestamp,
                http_client=client,
                mutex_gate=mutex_gate,
                local_server=local_server,
            )

    timestamp = int(time.time()) if timestamp is None else timestamp
    teardown = TeardownService()
    try:
        fixture_config = load_fixture(config.fixtures_path, fixture)
        if directory is None:
            directory = prepare_workspace(config.fixtures_path, fixture, teardown)

        features_config = await set_up_features(
            fixture=fixture,
            features=fixture_config.features if features is None else features,
            directory=directory,
            features_dir=config.features_path,
        )

        runner = DeploymentRunner(
            config,
            http_client=http_client,
            mutex_gate=mutex_gate or build_mutex_gate(config, http_client),
            local_server=local_server,
        )
        return await runner.create_deployment(
            timestamp=timestamp,
            environment=environment,
            trigger=trigger,
            teardown=teardown,
            fixture=fixture,
            fixture_config=fixture_config,
            features_config=features_config,
            directory=directory,
        )
    finally:
        failed = await teardown.run()
        if failed:
            logger.warning("Teardown incomplete", extra={"failed": failed})


async def main(
    *,
    fixture: str,
    environment: Environment,
    trigger: Trigger,
    features: Sequence[str] | None = None,
    directory: Path | None = None,
    local_server: LocalServerLauncher | None = None,
    report: Callable[[DeploymentResult], None] | None = None,
) -> int:
    """Run one deployment, handing the result to `report` on success.

    Returns:
        Exit code (0 for success, 1 for a failed run, 2 for a configuration error).
    """
    try:
        config = HarnessConfig.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_CONFIGURATION_ERROR

    logger.info(
        "Starting fixture deployment",
        extra={
            "fixture": fixture,
            "environment": environment.value,
            "trigger": trigger.value,
        },
    )

    try:
        result = await deploy_fixture(
            config,
            fixture=fixture,
            environment=environment,
            trigger=trigger,
            features=features,
            directory=directory,
            local_server=local_server,
        )
    except (PreconditionError, DefinitionLoadError) as e:
        logger.error("Invalid fixture run", extra={"fixture": fixture, "error": str(e)})
        return EXIT_CONFIGURATION_ERROR
    except HarnessError as e:
        logger.error(
            "Deployment failed",
            extra={"fixture": fixture, "error": str(e), "error_type": type(e).__name__},
        )
        return EXIT_FAILURE
    except Exception as e:
        logger.exception("Deployment failed unexpectedly", extra={"error": str(e)})
        return EXIT_FAILURE

    logger.info("Deployment ready", extra={"fixture": fixture, "url": result.url})
    if report is not None:
        report(result)
    return EXIT_SUCCESS
