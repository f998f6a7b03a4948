"""ProcessExecutor — async subprocess runner for the external toolchain.

Two modes:

* **streamed**: the child inherits our stdout/stderr, so the user sees
  xcodebuild's output live.
* **captured**: stdout and stderr are piped and drained together by
  ``communicate()``, so a child that fills one pipe cannot stall on the other.

Neither mode retries or times out.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
from dataclasses import dataclass

from xcpilot.models import ExecutableNotFound, ProcessExitedNonZero

logger = logging.getLogger("xcpilot.process")


@dataclass(frozen=True)
class CommandOutput:
    """Captured result of a finished process."""

    stdout: str
    stderr: str
    returncode: int


def resolve_executable(command: str) -> str:
    """Resolve a bare command name against PATH.

    Paths starting with the path separator are returned unchanged.
    Raises ExecutableNotFound when the name is not on PATH.
    """
    if command.startswith(os.sep):
        return command
    path = shutil.which(command)
    if path is None:
        raise ExecutableNotFound(command)
    return path


class ProcessExecutor:
    """Runs external programs, one at a time."""

    async def run_streamed(
        self, command: str, *args: str, check: bool = True, cwd: str | None = None,
    ) -> int:
        """Run a command attached to our terminal and return its exit status.

        Raises ProcessExitedNonZero on non-zero exit unless ``check`` is False.
        """
        executable = resolve_executable(command)
        logger.debug("Running (streamed): %s", shlex.join([command, *args]))
        try:
            proc = await asyncio.create_subprocess_exec(executable, *args, cwd=cwd)
        except FileNotFoundError:
            raise ExecutableNotFound(command)
        returncode = await proc.wait()
        if check and returncode != 0:
            raise ProcessExitedNonZero(command, returncode)
        return returncode

    async def run_captured(
        self, command: str, *args: str, check: bool = True, cwd: str | None = None,
    ) -> CommandOutput:
        """Run a command and return its decoded stdout, stderr and exit status.

        Raises ProcessExitedNonZero on non-zero exit unless ``check`` is False.
        """
        executable = resolve_executable(command)
        logger.debug("Running (captured): %s", shlex.join([command, *args]))
        try:
            proc = await asyncio.create_subprocess_exec(
                executable, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except FileNotFoundError:
            raise ExecutableNotFound(command)
        stdout, stderr = await proc.communicate()
        result = CommandOutput(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            returncode=proc.returncode,
        )
        if check and result.returncode != 0:
            raise ProcessExitedNonZero(
                command, result.returncode, result.stdout, result.stderr,
            )
        return result

    def is_available(self, command: str) -> bool:
        """Check whether a command can be found on PATH."""
        try:
            resolve_executable(command)
        except ExecutableNotFound:
            return False
        return True
