"""SimctlBackend — async wrapper around xcrun simctl for simulator management."""

from __future__ import annotations

import logging

from xcpilot.device.catalog import parse_catalog
from xcpilot.models import CatalogUnavailable, DeviceCatalog, ProcessError
from xcpilot.process import CommandOutput, ProcessExecutor

logger = logging.getLogger("xcpilot.simctl")

# simctl's stderr when booting a device that is already running
ALREADY_BOOTED_MARKER = "current state: Booted"


class SimctlBackend:
    """Manages iOS simulators via xcrun simctl subprocess calls."""

    def __init__(self, executor: ProcessExecutor | None = None) -> None:
        self.executor = executor or ProcessExecutor()

    async def _run_simctl(self, *args: str) -> CommandOutput:
        """Run an xcrun simctl command and capture its output.

        Raises ExecutableNotFound if xcrun is missing and ProcessExitedNonZero
        on a non-zero exit code.
        """
        return await self.executor.run_captured("xcrun", "simctl", *args)

    def is_available(self) -> bool:
        """Check if xcrun is on PATH."""
        return self.executor.is_available("xcrun")

    async def fetch_catalog(self) -> DeviceCatalog:
        """Fetch a fresh inventory snapshot.

        Raises CatalogUnavailable if simctl cannot be run or its output
        cannot be parsed.
        """
        try:
            result = await self._run_simctl("list", "devices", "-j")
        except ProcessError as e:
            raise CatalogUnavailable(f"simctl list failed: {e}", tool="simctl") from e
        catalog = parse_catalog(result.stdout)
        logger.debug("Fetched %d simulators across %d runtimes", len(catalog), len(catalog.runtimes))
        return catalog

    async def boot(self, udid: str) -> None:
        """Boot a simulator."""
        await self._run_simctl("boot", udid)

    async def shutdown(self, udid: str) -> None:
        """Shutdown a simulator."""
        await self._run_simctl("shutdown", udid)

    async def install_app(self, udid: str, app_path: str) -> None:
        """Install an app on a simulator."""
        await self._run_simctl("install", udid, app_path)

    async def launch_app(self, udid: str, bundle_id: str) -> None:
        """Launch an app on a simulator."""
        await self._run_simctl("launch", udid, bundle_id)

    async def terminate_app(self, udid: str, bundle_id: str) -> None:
        """Terminate an app on a simulator."""
        await self._run_simctl("terminate", udid, bundle_id)

    async def stream_logs(self, udid: str, process: str | None = None) -> int:
        """Stream a simulator's unified log to the terminal until interrupted.

        Runs: xcrun simctl spawn <udid> log stream [--predicate ...]
        """
        args = ["simctl", "spawn", udid, "log", "stream"]
        if process:
            args += ["--predicate", f'processImagePath contains "{process}"']
        return await self.executor.run_streamed("xcrun", *args)

    async def open_simulator_app(self, app_name: str = "Simulator") -> None:
        """Bring the Simulator application to the foreground."""
        await self.executor.run_captured("open", "-a", app_name)
