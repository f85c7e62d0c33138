"""Pages API Mock for Integration Testing.

This module provides an in-memory implementation of the Pages REST API
that enables integration testing without platform connectivity.

Key Features:
- In-memory project state with patch semantics (null deletes a binding)
- Deploy hook lifecycle (create, fire, delete)
- Scripted deployment stage sequences (build/active → deploy/success)
- Error injection for transient and permanent API failures
- Edge responses for deployed URLs (not provisioned → served)

Usage:
    from pages_mock import MockPagesApi, MockPagesState

    api = MockPagesApi(MockPagesState(account_id="acct", project_name="proj"))
    async with api.client() as http_client:
        client = PagesClient(host=api.host, credentials=api.credentials, http_client=http_client)
        ...

    assert api.state.patches[0]["deployment_configs"]["preview"]["env_vars"] == {...}
"""

from .api import API_HOST, DASH_HOST, MockPagesApi
from .state import MockDeployment, MockPagesState

__all__ = [
    "API_HOST",
    "DASH_HOST",
    "MockDeployment",
    "MockPagesApi",
    "MockPagesState",
]
