"""Tests for the pages-e2e CLI."""

import json
import os
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from pages_e2e.cli import cli
from pages_e2e.deployment import DeploymentResult
from pages_e2e.features import FEATURE_FILENAME
from pages_e2e.fixtures import FIXTURE_FILENAME


def _write(path: Path, definition: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(definition))


class TestDeployCommand:
    """Tests for `pages-e2e deploy`."""

    def test_prints_url(self) -> None:
        """Test that the URL is printed and the exit code propagated."""
        calls: list[dict] = []

        async def fake_main(**kwargs) -> int:
            calls.append(kwargs)
            kwargs["report"](DeploymentResult(url="https://abc.e2e.pages.dev", deployment_id="d"))
            return 0

        with (
            patch("pages_e2e.cli.setup_logging"),
            patch("pages_e2e.cli.run_deployment", new=fake_main),
        ):
            result = CliRunner().invoke(
                cli, ["deploy", "simple", "-e", "production", "-t", "gitlab", "-f", "kv-*"]
            )

        assert result.exit_code == 0
        assert result.output.strip() == "https://abc.e2e.pages.dev"
        assert calls[0]["environment"].value == "production"
        assert calls[0]["trigger"].value == "gitlab"
        assert calls[0]["features"] == ["kv-*"]

    def test_features_default_to_fixture(self) -> None:
        """Test that no --feature option defers to the fixture's own list."""
        calls: list[dict] = []

        async def fake_main(**kwargs) -> int:
            calls.append(kwargs)
            return 1

        with (
            patch("pages_e2e.cli.setup_logging"),
            patch("pages_e2e.cli.run_deployment", new=fake_main),
        ):
            result = CliRunner().invoke(cli, ["deploy", "simple"])

        assert result.exit_code == 1
        assert calls[0]["features"] is None
        assert calls[0]["environment"].value == "staging"

    def test_rejects_unknown_environment(self) -> None:
        """Test that only known environments are accepted."""
        result = CliRunner().invoke(cli, ["deploy", "simple", "-e", "qa"])

        assert result.exit_code == 2

    def test_local_not_offered(self) -> None:
        """Test that the local environment cannot be chosen from the CLI."""
        with patch("pages_e2e.cli.run_deployment") as run:
            result = CliRunner().invoke(cli, ["deploy", "simple", "-e", "local"])

        assert result.exit_code == 2
        assert "local" in result.output
        run.assert_not_called()


class TestFeaturesCommand:
    """Tests for `pages-e2e features`."""

    def test_prints_merged_overlay(self, tmp_path: Path) -> None:
        """Test printing the merged feature overlay as YAML."""
        fixtures = tmp_path / "fixtures"
        features = tmp_path / "features"
        _write(
            fixtures / "simple" / FIXTURE_FILENAME,
            {"features": ["env-*"], "deploymentConfig": {"compatibilityDate": "2023-10-01"}},
        )
        _write(
            features / "env-a" / FEATURE_FILENAME,
            {"deploymentConfig": {"environmentVariables": {"A": "1", "SHARED": "a"}}},
        )
        _write(
            features / "env-b" / FEATURE_FILENAME,
            {"setup": "exit 1", "deploymentConfig": {"environmentVariables": {"SHARED": "b"}}},
        )
        env = {"FIXTURES_PATH": str(fixtures), "FEATURES_PATH": str(features)}

        with patch.dict(os.environ, env, clear=True):
            result = CliRunner().invoke(cli, ["features", "simple"])

        assert result.exit_code == 0
        assert "# features: env-a, env-b" in result.output
        assert "environmentVariables:" in result.output
        assert "SHARED: b" in result.output

    def test_missing_fixture(self, tmp_path: Path) -> None:
        """Test that a missing fixture exits with a configuration error."""
        with patch.dict(os.environ, {"FIXTURES_PATH": str(tmp_path)}, clear=True):
            result = CliRunner().invoke(cli, ["features", "absent"])

        assert result.exit_code == 2
