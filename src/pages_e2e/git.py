"""Source control operations on a fixture's working copy.

Each fixture run commits its files to a fresh orphan branch so the
platform's git integration builds exactly that tree.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .shell import run_command_async

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 300


class GitRepository:
    """Git commands run in one directory, stdout forwarded to the logger."""

    def __init__(self, directory: Path, *, username: str, email_address: str) -> None:
        self._directory = directory
        self._username = username
        self._email_address = email_address

    @property
    def directory(self) -> Path:
        return self._directory

    async def _git(self, *args: str) -> None:
        await run_command_async(
            ["git", *args],
            cwd=self._directory,
            timeout=GIT_TIMEOUT_SECONDS,
            output_logger=logger,
        )

    async def commit_orphan_branch(self, branch: str, message: str, timestamp: int) -> None:
        """Init the repo and commit everything to a new orphan branch.

        Untracked and ignored leftovers are cleaned afterwards, so the
        working copy matches the commit.
        """
        logger.info(
            "Creating Git repo, checking out orphan branch, adding files, committing, "
            "and cleaning...",
            extra={"directory": str(self._directory), "branch": branch},
        )
        identity = f"{self._username} <{self._email_address}>"
        await self._git("init", ".")
        await self._git("checkout", "--orphan", branch)
        await self._git("add", ".")
        await self._git(
            "-c",
            f"user.name={self._username}",
            "-c",
            f"user.email={self._email_address}",
            "commit",
            "-m",
            message,
            f"--author={identity}",
            f"--date={timestamp} +0000",
        )
        await self._git("clean", "-xfd", ".")

    async def push_branch(self, remote_url: str, branch: str) -> None:
        logger.info("Configuring remote, and pushing...", extra={"branch": branch})
        await self._git("remote", "add", "origin", remote_url)
        await self._git("push", "-f", "origin", branch)

    async def delete_remote_branch(self, branch: str) -> None:
        logger.info("Deleting Git branch...", extra={"branch": branch})
        await self._git("push", "origin", "--delete", branch)
