"""Pages E2E CLI (pages-e2e).

Deploys fixtures to a Pages project and inspects their feature overlays.

Usage:
    pages-e2e deploy <fixture> [--environment staging] [--trigger github]
    pages-e2e features <fixture>
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import yaml

from .config import REMOTE_ENVIRONMENTS, ConfigurationError, Environment, HarnessConfig, Trigger
from .deployment import DeploymentResult
from .errors import PreconditionError
from .features import load_feature, merge_deployment_configs, resolve_features
from .fixtures import DefinitionLoadError, load_fixture
from .main import EXIT_CONFIGURATION_ERROR, main as run_deployment, setup_logging

# Local runs need a dev server launcher, which only the library entrypoint accepts
ENVIRONMENT_CHOICES = [environment.value for environment in REMOTE_ENVIRONMENTS]
TRIGGER_CHOICES = [trigger.value for trigger in Trigger]


@click.group()
@click.version_option(version="0.1.0", prog_name="pages-e2e")
def cli() -> None:
    """Pages E2E CLI (pages-e2e).

    End-to-end deployment harness for Pages fixtures.

    \b
    Quick Start:
        pages-e2e features my-fixture            # Show the feature overlay
        pages-e2e deploy my-fixture              # Deploy to staging via GitHub
        pages-e2e deploy my-fixture -e production
    """
    pass


# =============================================================================
# Deployment Commands
# =============================================================================


@cli.command()
@click.argument("fixture")
@click.option(
    "--feature",
    "-f",
    "features",
    multiple=True,
    help="Feature pattern (repeatable, * wildcards). Defaults to the fixture's own list.",
)
@click.option(
    "--environment",
    "-e",
    type=click.Choice(ENVIRONMENT_CHOICES),
    default=Environment.STAGING.value,
    show_default=True,
    help="Target environment",
)
@click.option(
    "--trigger",
    "-t",
    type=click.Choice(TRIGGER_CHOICES),
    default=Trigger.GITHUB.value,
    show_default=True,
    help="How the project is connected to source control",
)
@click.option(
    "--directory",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Working copy to deploy (default: temporary copy of the fixture)",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def deploy(
    fixture: str,
    features: tuple[str, ...],
    environment: str,
    trigger: str,
    directory: Path | None,
    verbose: bool,
) -> None:
    """Deploy FIXTURE and print the URL it is served at.

    Teardown (deploy hook, pushed branch, workspace) always runs before exit.
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)

    def report(result: DeploymentResult) -> None:
        click.echo(result.url)

    exit_code = asyncio.run(
        run_deployment(
            fixture=fixture,
            environment=Environment(environment),
            trigger=Trigger(trigger),
            features=list(features) or None,
            directory=directory,
            report=report,
        )
    )
    sys.exit(exit_code)


@cli.command()
@click.argument("fixture")
@click.option(
    "--feature",
    "-f",
    "features",
    multiple=True,
    help="Feature pattern (repeatable, * wildcards). Defaults to the fixture's own list.",
)
def features(fixture: str, features: tuple[str, ...]) -> None:
    """Print the merged deployment configuration of FIXTURE's features as YAML.

    Setup commands are not run.
    """
    try:
        config = HarnessConfig.from_env()
    except ConfigurationError as e:
        click.secho(str(e), fg="red", err=True)
        sys.exit(EXIT_CONFIGURATION_ERROR)

    try:
        fixture_config = load_fixture(config.fixtures_path, fixture)
        patterns = list(features) or fixture_config.features
        resolved = resolve_features(patterns, config.features_path)
        merged = merge_deployment_configs(
            load_feature(config.features_path, feature, fixture).deployment_config
            for feature in resolved
        )
    except (PreconditionError, DefinitionLoadError) as e:
        click.secho(str(e), fg="red", err=True)
        sys.exit(EXIT_CONFIGURATION_ERROR)

    click.echo(f"# features: {', '.join(resolved) or '(none)'}")
    click.echo(
        yaml.safe_dump(
            merged.model_dump(mode="json", by_alias=True, exclude_defaults=True),
            sort_keys=False,
        ),
        nl=False,
    )


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
