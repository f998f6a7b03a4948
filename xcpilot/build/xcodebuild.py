"""XcodebuildBackend — assembles and runs xcodebuild invocations."""

from __future__ import annotations

import json
import logging
import shlex
from pathlib import Path

from xcpilot.build.project import ProjectContext
from xcpilot.build.settings import BUILD_DIR, extract_settings
from xcpilot.models import ExecutableNotFound, ProcessError, ProcessExitedNonZero, XcpilotError
from xcpilot.process import ProcessExecutor

logger = logging.getLogger("xcpilot.xcodebuild")

GENERIC_SIMULATOR_DESTINATION = "generic/platform=iOS Simulator"


def simulator_destination(udid: str) -> str:
    """Destination specifier for one concrete simulator."""
    return f"platform=iOS Simulator,id={udid}"


def looks_like_destination(text: str) -> bool:
    """True for a raw xcodebuild destination (``key=value``) rather than a device query."""
    return "=" in text


class XcodebuildBackend:
    """Runs xcodebuild against one project context.

    Build and test output is streamed to the terminal, piped through
    xcbeautify when it is installed and ``beautify`` is enabled.
    """

    def __init__(
        self,
        context: ProjectContext,
        executor: ProcessExecutor | None = None,
        beautify: bool = True,
    ) -> None:
        self.context = context
        self.executor = executor or ProcessExecutor()
        self.beautify = beautify

    def _common_args(self, scheme: str | None, destination: str | None = None) -> list[str]:
        args = list(self.context.target_args)
        if scheme:
            args += ["-scheme", scheme]
        if destination:
            args += ["-destination", destination]
        return args

    @property
    def _cwd(self) -> str:
        return str(self.context.directory)

    async def _run_streamed(self, args: list[str]) -> int:
        """Run xcodebuild attached to the terminal, optionally through xcbeautify."""
        if not self._use_xcbeautify():
            return await self.executor.run_streamed("xcodebuild", *args, cwd=self._cwd)

        # The shell would hide a missing xcodebuild behind exit status 127
        if not self.executor.is_available("xcodebuild"):
            raise ExecutableNotFound("xcodebuild")
        # pipefail keeps xcodebuild's exit status instead of xcbeautify's
        pipeline = f"set -o pipefail; {shlex.join(['xcodebuild', *args])} | xcbeautify"
        logger.debug("Formatting output with xcbeautify")
        try:
            return await self.executor.run_streamed("bash", "-c", pipeline, cwd=self._cwd)
        except ProcessExitedNonZero as e:
            raise ProcessExitedNonZero("xcodebuild", e.returncode, e.stdout, e.stderr) from e

    def _use_xcbeautify(self) -> bool:
        return (
            self.beautify
            and self.executor.is_available("xcbeautify")
            and self.executor.is_available("bash")
        )

    async def build(self, scheme: str | None, destination: str) -> int:
        """Run ``xcodebuild build``. Raises ProcessExitedNonZero on failure."""
        args = ["build", *self._common_args(scheme, destination)]
        logger.info("Building %s for %s", scheme or "project", destination)
        return await self._run_streamed(args)

    async def show_build_settings(self, scheme: str | None, destination: str | None) -> str:
        """Return the ``-showBuildSettings`` dump as text."""
        args = ["-showBuildSettings", *self._common_args(scheme, destination)]
        result = await self.executor.run_captured("xcodebuild", *args, cwd=self._cwd)
        return result.stdout

    async def derived_data_dir(self) -> Path:
        """Return this project's DerivedData folder.

        ``BUILD_DIR`` is ``.../DerivedData/<Project>-<hash>/Build/Products``;
        the folder is two levels above it.
        """
        dump = await self.show_build_settings(None, None)
        build_dir = extract_settings(dump, [BUILD_DIR]).get(BUILD_DIR)
        if not build_dir:
            raise XcpilotError(
                "Could not determine DerivedData path from build settings", tool="xcodebuild",
            )
        return Path(build_dir).parent.parent

    async def test(
        self,
        scheme: str | None,
        destination: str,
        only_testing: str | None = None,
        result_bundle: str | None = None,
    ) -> int:
        """Run ``xcodebuild test``; with ``result_bundle``, code coverage is enabled."""
        args = ["test", *self._common_args(scheme, destination)]
        if only_testing:
            args.append(f"-only-testing:{only_testing}")
        if result_bundle:
            args += ["-enableCodeCoverage", "YES", "-resultBundlePath", result_bundle]
        logger.info("Testing %s on %s", scheme or "project", destination)
        return await self._run_streamed(args)

    async def clean(self, scheme: str | None) -> int:
        """Run ``xcodebuild clean``."""
        args = ["clean", *self._common_args(scheme)]
        return await self.executor.run_streamed("xcodebuild", *args, cwd=self._cwd)

    async def list_schemes(self) -> list[str]:
        """Run ``xcodebuild -list -json`` and return the scheme list ([] if unreadable)."""
        try:
            result = await self.executor.run_captured(
                "xcodebuild", *self.context.target_args, "-list", "-json", cwd=self._cwd,
            )
        except ProcessError as e:
            logger.debug("xcodebuild -list failed: %s", e)
            return []
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            return []
        if not isinstance(data, dict):
            return []
        root = data.get("workspace") or data.get("project") or {}
        return list(root.get("schemes", []))

    async def coverage_report(self, result_bundle: str) -> str:
        """Return the xccov per-target coverage report for a result bundle."""
        result = await self.executor.run_captured(
            "xcrun", "xccov", "view", "--report", "--only-targets", result_bundle,
        )
        return result.stdout
