"""Fixture and feature definition loading with validation.

Definitions are JSON documents that may carry `//` and `/* */` comments
and trailing commas, so they are parsed with json5.

All file operations enforce a size limit, and contents are validated
against the pydantic models at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import json5
from pydantic import BaseModel, ValidationError

from .errors import HarnessError, PreconditionError
from .models import FixtureConfig

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

FIXTURE_FILENAME = "main.fixture"
MAX_DEFINITION_FILE_SIZE_BYTES = 1024 * 1024  # 1MB


class DefinitionLoadError(HarnessError):
    """Raised when a fixture or feature file cannot be read or validated."""

    pass


def parse_definition(content: str, path: Path) -> dict[str, Any]:
    """Parse commented JSON definition text."""
    try:
        data = json5.loads(content)
    except ValueError as e:
        raise DefinitionLoadError(f"Invalid definition in {path}: {e}") from e

    if not isinstance(data, dict):
        raise DefinitionLoadError(f"Definition must contain a mapping: {path}")
    return data


def load_definition(path: Path, model: type[ModelT]) -> ModelT:
    """Load and validate a definition file.

    Args:
        path: File to read.
        model: Pydantic model to validate against.

    Raises:
        DefinitionLoadError: If the file cannot be read, parsed or validated.
    """
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise DefinitionLoadError(f"Failed to stat definition file {path}: {e}") from e

    if file_size > MAX_DEFINITION_FILE_SIZE_BYTES:
        raise DefinitionLoadError(
            f"Definition file exceeds maximum size of {MAX_DEFINITION_FILE_SIZE_BYTES} bytes: "
            f"{path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DefinitionLoadError(f"Failed to read definition file {path}: {e}") from e

    data = parse_definition(content, path)

    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise DefinitionLoadError(f"Validation failed for {path}:\n{error_list}") from e


def load_fixture(fixtures_dir: Path, fixture: str) -> FixtureConfig:
    """Load a fixture's configuration.

    Raises:
        PreconditionError: If the fixture has no definition file.
        DefinitionLoadError: If the definition is invalid.
    """
    path = fixtures_dir / fixture / FIXTURE_FILENAME
    if not path.exists():
        raise PreconditionError(f"Could not find fixture file for fixture '{fixture}': {path}")

    config = load_definition(path, FixtureConfig)
    logger.info("Loaded fixture '%s' from %s", fixture, path)
    return config
