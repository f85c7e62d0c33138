"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for pages_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from pages_e2e.config import Environment, HarnessConfig, PollingConfig, Trigger  # noqa: E402
from pages_mock import MockPagesApi, MockPagesState  # noqa: E402


@pytest.fixture
def fast_polling() -> PollingConfig:
    """Polling intervals short enough for tests."""
    return PollingConfig(
        deployment_check_interval=0.01,
        deployment_timeout=2.0,
        deployment_check_api_failures_threshold=2,
        provisioner_check_interval=0.01,
        provisioner_timeout=2.0,
    )


@pytest.fixture
def pages_api() -> MockPagesApi:
    """A fresh in-memory Pages API."""
    return MockPagesApi(MockPagesState())


@pytest.fixture
def harness_config(
    pages_api: MockPagesApi, fast_polling: PollingConfig, tmp_path: Path
) -> HarnessConfig:
    """Harness configuration pointing both remote environments at the mock API."""
    credentials = pages_api.credentials
    return HarnessConfig(
        polling=fast_polling,
        hosts={
            Environment.STAGING: pages_api.host,
            Environment.PRODUCTION: pages_api.host,
        },
        projects={
            Environment.STAGING: {Trigger.GITHUB: credentials},
            Environment.PRODUCTION: {Trigger.GITHUB: credentials},
        },
        features_path=tmp_path / "features",
        fixtures_path=tmp_path / "fixtures",
    )
