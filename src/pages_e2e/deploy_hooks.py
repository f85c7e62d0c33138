"""Deploy hook lifecycle.

A deploy hook is an ephemeral trigger bound to one branch. It is created
per run, fired exactly once to start a deployment, and deleted during
teardown whatever the run's outcome.
"""

from __future__ import annotations

import logging

from .pages_client import PagesClient
from .teardown import TeardownService

logger = logging.getLogger(__name__)


class DeployHookLifecycle:
    """Creates, fires and cleans up deploy hooks for one project."""

    def __init__(self, client: PagesClient, teardown: TeardownService) -> None:
        self._client = client
        self._teardown = teardown

    async def create(self, branch: str) -> str:
        """Create a deploy hook for `branch` and register its deletion.

        Raises:
            TransportError: If the hook cannot be created.
        """
        logger.info("Creating Deploy Hook...", extra={"branch": branch})
        hook_id = await self._client.create_deploy_hook(name=branch, branch=branch)
        logger.info("Created Deploy Hook", extra={"branch": branch, "hook_id": hook_id})

        async def delete_hook() -> None:
            logger.info("Deleting Deploy Hook...", extra={"hook_id": hook_id})
            await self._client.delete_deploy_hook(hook_id)
            logger.info("Deleted Deploy Hook", extra={"hook_id": hook_id})

        self._teardown.register("Delete Deploy Hook", delete_hook)
        return hook_id

    async def fire(self, hook_id: str) -> str:
        """Fire a deploy hook and return the id of the deployment it created.

        Raises:
            TransportError: If the hook cannot be fired.
        """
        logger.info("Creating Deployment with Deploy Hook...", extra={"hook_id": hook_id})
        deployment_id = await self._client.trigger_deploy_hook(hook_id)
        logger.info(
            "Created Deployment",
            extra={"hook_id": hook_id, "deployment_id": deployment_id},
        )
        return deployment_id
