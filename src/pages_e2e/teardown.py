"""Compensating actions for remote side effects of a run.

Side effects (pushed branches, deploy hooks) register their compensation
as soon as they happen. The caller runs all of them at the end of the run,
whatever its outcome, most recent first.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TeardownAction = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class TeardownEntry:
    name: str
    action: TeardownAction


class TeardownService:
    """Ordered registry of compensating actions."""

    def __init__(self) -> None:
        self._entries: list[TeardownEntry] = []

    def register(self, name: str, action: TeardownAction) -> None:
        logger.debug("Registered teardown action", extra={"teardown": name})
        self._entries.append(TeardownEntry(name=name, action=action))

    @property
    def pending(self) -> list[str]:
        return [entry.name for entry in self._entries]

    async def run(self) -> list[str]:
        """Run and clear all registered actions in reverse order.

        A failing action is logged and does not stop the others.

        Returns:
            Names of the actions that failed.
        """
        failed: list[str] = []
        while self._entries:
            entry = self._entries.pop()
            logger.info("Running teardown action", extra={"teardown": entry.name})
            try:
                await entry.action()
            except Exception as e:
                logger.error(
                    "Teardown action failed",
                    extra={"teardown": entry.name, "error": str(e)},
                )
                failed.append(entry.name)
        return failed
