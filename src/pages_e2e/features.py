"""Feature resolution and deployment configuration merging.

A fixture lists the features it needs. Each feature contributes a partial
deployment configuration and an optional setup command. Configurations are
merged in the order the features are listed, on top of the fixture's own
configuration: for every map, a later value for a key replaces an earlier
one. No cross-map validation happens here.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

from .errors import PreconditionError
from .fixtures import load_definition
from .models import MAP_FIELDS, DeploymentConfig, FeatureConfig
from .shell import run_command_async

logger = logging.getLogger(__name__)

FEATURE_FILENAME = "main.feature"


def merge_deployment_configs(configs: Iterable[DeploymentConfig]) -> DeploymentConfig:
    """Merge deployment configurations, later inputs winning per key.

    Each map is merged independently with a shallow key-wise union. Keys
    keep the position of their first occurrence.
    """
    merged: dict[str, dict] = {name: {} for name in MAP_FIELDS}
    for config in configs:
        for name in MAP_FIELDS:
            merged[name].update(getattr(config, name))
    return DeploymentConfig(**merged)


def resolve_features(patterns: Sequence[str], features_dir: Path) -> list[str]:
    """Expand `*` wildcards in feature names against the features directory.

    `"my-feature-*"` selects both `my-feature-a` and `my-feature-b`. Matches
    are listed in pattern order, each pattern's matches sorted by name.

    Raises:
        PreconditionError: If the features directory does not exist.
    """
    if not patterns:
        return []

    if not features_dir.is_dir():
        raise PreconditionError(f"Features directory does not exist: {features_dir}")

    entries = sorted(entry.name for entry in features_dir.iterdir())
    resolved: list[str] = []
    for pattern in patterns:
        regex = re.compile(".*".join(re.escape(part) for part in pattern.split("*")))
        resolved.extend(entry for entry in entries if regex.search(entry))
    return resolved


def load_feature(features_dir: Path, feature: str, fixture: str) -> FeatureConfig:
    """Load one feature's definition.

    Raises:
        PreconditionError: If the feature has no definition file.
    """
    path = features_dir / feature / FEATURE_FILENAME
    if not path.exists():
        raise PreconditionError(
            f"Could not find feature file for feature '{feature}' (defined in fixture '{fixture}')"
        )
    return load_definition(path, FeatureConfig)


async def set_up_features(
    *,
    fixture: str,
    features: Sequence[str],
    directory: Path,
    features_dir: Path,
) -> DeploymentConfig:
    """Resolve, load and set up a fixture's features.

    Each feature's setup command runs in the feature's directory with
    WORKSPACE_DIR pointing at the fixture's working copy.

    Returns:
        The merged deployment configuration overlay of all features.
    """
    resolved = resolve_features(features, features_dir)
    if not resolved:
        return DeploymentConfig()

    logger.info(
        "Fixture features detected. Adding %s...",
        ", ".join(resolved),
        extra={"fixture": fixture},
    )

    configs: list[DeploymentConfig] = []
    for feature in resolved:
        config = load_feature(features_dir, feature, fixture)
        configs.append(config.deployment_config)

        logger.info("Setting up feature %s...", feature)
        if config.setup:
            await run_command_async(
                config.setup,
                cwd=features_dir / feature,
                env={"WORKSPACE_DIR": str(directory)},
                output_logger=logger,
            )
        else:
            logger.info("No setup command found. Continuing...")

    return merge_deployment_configs(configs)
