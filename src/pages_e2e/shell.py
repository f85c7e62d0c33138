"""Shell command execution for git, build and feature setup commands.

Commands run through subprocess off the event loop. Their stdout is
forwarded line by line to the caller's logger at info level.
"""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from pathlib import Path

from .errors import HarnessError

logger = logging.getLogger(__name__)

# Timeout constants (seconds)
COMMAND_TIMEOUT_SECONDS = 600


class CommandError(HarnessError):
    """Raised when a shell command fails, times out or cannot be found."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{message}\n{stderr}".rstrip())


def run_command(
    cmd: list[str] | str,
    *,
    cwd: Path,
    env: dict[str, str] | None = None,
    timeout: float = COMMAND_TIMEOUT_SECONDS,
    output_logger: logging.Logger | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a command with proper error handling.

    Args:
        cmd: Command and arguments, or a shell string (run with the shell).
        cwd: Working directory.
        env: Environment variables (merged with current env).
        timeout: Command timeout in seconds.
        output_logger: Logger receiving stdout; defaults to this module's.

    Returns:
        CompletedProcess result.

    Raises:
        CommandError: If the command fails.
    """
    out = output_logger or logger
    full_env = os.environ.copy()
    if env:
        full_env.update(env)

    shell = isinstance(cmd, str)
    printable = cmd if shell else " ".join(cmd)

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            env=full_env,
            timeout=timeout,
            capture_output=True,
            text=True,
            check=False,
            shell=shell,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandError(f"Command timed out after {timeout}s: {printable}") from e
    except FileNotFoundError as e:
        raise CommandError(f"Command not found: {printable}") from e

    for line in result.stdout.splitlines():
        if line.strip():
            out.info(line)

    if result.returncode != 0:
        raise CommandError(
            f"Command failed with exit code {result.returncode}: {printable}",
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return result


async def run_command_async(
    cmd: list[str] | str,
    *,
    cwd: Path,
    env: dict[str, str] | None = None,
    timeout: float = COMMAND_TIMEOUT_SECONDS,
    output_logger: logging.Logger | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a command in a worker thread so the event loop stays responsive."""
    return await asyncio.to_thread(
        run_command,
        cmd,
        cwd=cwd,
        env=env,
        timeout=timeout,
        output_logger=output_logger,
    )
