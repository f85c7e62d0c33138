"""Tests for fixture definition loading."""

import json
from pathlib import Path

import pytest

from pages_e2e.errors import PreconditionError
from pages_e2e.fixtures import (
    FIXTURE_FILENAME,
    MAX_DEFINITION_FILE_SIZE_BYTES,
    DefinitionLoadError,
    load_definition,
    load_fixture,
    parse_definition,
)
from pages_e2e.models import FeatureConfig


def _write_fixture(fixtures_dir: Path, name: str, content: str) -> Path:
    directory = fixtures_dir / name
    directory.mkdir(parents=True)
    path = directory / FIXTURE_FILENAME
    path.write_text(content)
    return path


class TestParseDefinition:
    """Tests for parse_definition."""

    def test_json(self) -> None:
        """Test parsing strict JSON."""
        assert parse_definition('{"features": []}', Path("x")) == {"features": []}

    def test_json_with_comments(self) -> None:
        """Test that line and block comments and trailing commas are accepted."""
        content = (
            "// setup for D1\n"
            '{"setup": "npm run seed", /* seeds the database */ "deploymentConfig": {},}\n'
        )

        assert parse_definition(content, Path("x"))["setup"] == "npm run seed"

    def test_non_mapping(self) -> None:
        """Test that a definition must be a mapping."""
        with pytest.raises(DefinitionLoadError) as exc_info:
            parse_definition("[1, 2]", Path("main.fixture"))

        assert "mapping" in str(exc_info.value)

    def test_invalid_syntax(self) -> None:
        """Test that unparsable text raises error."""
        with pytest.raises(DefinitionLoadError):
            parse_definition('{"a": [1, 2', Path("main.fixture"))


class TestLoadFixture:
    """Tests for load_fixture."""

    def test_load(self, tmp_path: Path) -> None:
        """Test loading a valid fixture."""
        _write_fixture(
            tmp_path,
            "simple",
            json.dumps(
                {
                    "features": ["kv"],
                    "buildConfig": {"buildCommand": "make"},
                    "deploymentConfig": {"compatibilityDate": "2023-01-01"},
                }
            ),
        )

        config = load_fixture(tmp_path, "simple")

        assert config.features == ["kv"]
        assert config.build_config.build_command == "make"

    def test_missing_fixture(self, tmp_path: Path) -> None:
        """Test that a missing fixture file is a precondition failure."""
        with pytest.raises(PreconditionError) as exc_info:
            load_fixture(tmp_path, "absent")

        assert "absent" in str(exc_info.value)

    def test_validation_errors_listed(self, tmp_path: Path) -> None:
        """Test that validation errors name the offending field."""
        _write_fixture(tmp_path, "broken", json.dumps({"deploymentConfig": {}}))

        with pytest.raises(DefinitionLoadError) as exc_info:
            load_fixture(tmp_path, "broken")

        assert "compatibilityDate" in str(exc_info.value)

    def test_file_too_large(self, tmp_path: Path) -> None:
        """Test that oversized definitions are rejected before parsing."""
        path = tmp_path / "main.feature"
        path.write_text(" " * (MAX_DEFINITION_FILE_SIZE_BYTES + 1))

        with pytest.raises(DefinitionLoadError) as exc_info:
            load_definition(path, FeatureConfig)

        assert "exceeds maximum size" in str(exc_info.value)

    def test_commented_feature(self, tmp_path: Path) -> None:
        """Test loading a feature file written with comments."""
        path = tmp_path / "main.feature"
        path.write_text(
            "{\n"
            "  // KV binding used by the cache tests\n"
            '  "setup": "echo hi",\n'
            '  "deploymentConfig": {\n'
            '    "kvNamespaces": {\n'
            '      "CACHE": {"production": {"id": "kv-p"}, "staging": {"id": "kv-s"}}\n'
            "    }\n"
            "  }\n"
            "  /* trailing */\n"
            "}\n"
        )

        config = load_definition(path, FeatureConfig)

        assert config.setup == "echo hi"
        assert config.deployment_config.kv_namespaces["CACHE"].staging.id == "kv-s"
