"""
Subprocess helpers for the 1Password CLI.

Every external call goes through a ``CommandRunner`` so the CLI backend and the
session can be exercised without a real ``op`` binary.
"""

import asyncio
import contextlib
import logging
import os
import shutil
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[[Sequence[str]], Awaitable[CommandResult]]


def check_command_available(command: str) -> bool:
    """Check if a command is available in the system PATH."""
    return shutil.which(command) is not None


async def run_command(args: Sequence[str]) -> CommandResult:
    """Run a command to completion and capture its output.

    Cancelling the awaiting task kills the child process.
    """
    logger.debug("Running: %s", " ".join(args[:3]))
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=os.environ.copy(),
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise
    return CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


async def run_interactive(args: Sequence[str], capture_stdout: bool = False) -> CommandResult:
    """Run a command attached to the terminal's stdin (and stderr).

    No timeout is applied: these commands wait for the user.
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE if capture_stdout else None,
        env=os.environ.copy(),
    )
    try:
        stdout, _ = await proc.communicate()
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise
    return CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr="",
    )
