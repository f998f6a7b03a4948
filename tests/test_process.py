"""Tests for ProcessExecutor — mock asyncio.create_subprocess_exec and PATH lookup."""

from __future__ import annotations

import sys
from unittest.mock import AsyncMock, patch

import pytest

from xcpilot.models import ExecutableNotFound, ProcessExitedNonZero
from xcpilot.process import ProcessExecutor, resolve_executable


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0):
    """Create a mock async subprocess."""
    proc = AsyncMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.wait = AsyncMock(return_value=returncode)
    proc.returncode = returncode
    return proc


# ---------------------------------------------------------------------------
# resolve_executable
# ---------------------------------------------------------------------------


class TestResolveExecutable:
    def test_bare_name_uses_path(self):
        with patch("shutil.which", return_value="/usr/bin/xcrun") as mock_which:
            assert resolve_executable("xcrun") == "/usr/bin/xcrun"
            mock_which.assert_called_once_with("xcrun")

    def test_absolute_path_used_as_is(self):
        with patch("shutil.which") as mock_which:
            assert resolve_executable("/opt/tools/xcodebuild") == "/opt/tools/xcodebuild"
            mock_which.assert_not_called()

    def test_missing_raises(self):
        with patch("shutil.which", return_value=None):
            with pytest.raises(ExecutableNotFound, match="xcbeautify"):
                resolve_executable("xcbeautify")


# ---------------------------------------------------------------------------
# run_captured
# ---------------------------------------------------------------------------


class TestRunCaptured:
    async def test_success(self):
        proc = _mock_proc(stdout=b"ok\n", stderr=b"note\n")
        with patch("shutil.which", return_value="/usr/bin/xcrun"), \
                patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            result = await ProcessExecutor().run_captured("xcrun", "simctl", "list")

        assert result.stdout == "ok\n"
        assert result.stderr == "note\n"
        assert result.returncode == 0
        mock_exec.assert_called_once_with(
            "/usr/bin/xcrun", "simctl", "list",
            stdout=-1, stderr=-1, cwd=None,
        )

    async def test_nonzero_exit_raises(self):
        proc = _mock_proc(stderr=b"Invalid device: nope", returncode=148)
        with patch("shutil.which", return_value="/usr/bin/xcrun"), \
                patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(ProcessExitedNonZero, match="Invalid device") as exc_info:
                await ProcessExecutor().run_captured("xcrun", "simctl", "boot", "nope")

        assert exc_info.value.returncode == 148
        assert exc_info.value.stderr == "Invalid device: nope"
        assert exc_info.value.command == "xcrun"

    async def test_nonzero_exit_without_check(self):
        proc = _mock_proc(stdout=b"partial", returncode=1)
        with patch("shutil.which", return_value="/usr/bin/which"), \
                patch("asyncio.create_subprocess_exec", return_value=proc):
            result = await ProcessExecutor().run_captured("which", "xcbeautify", check=False)
        assert result.returncode == 1
        assert result.stdout == "partial"

    async def test_not_on_path_is_not_spawned(self):
        with patch("shutil.which", return_value=None), \
                patch("asyncio.create_subprocess_exec") as mock_exec:
            with pytest.raises(ExecutableNotFound):
                await ProcessExecutor().run_captured("xcrun", "simctl", "list")
        mock_exec.assert_not_called()

    async def test_spawn_file_not_found(self):
        """A missing absolute path surfaces as ExecutableNotFound, not an exit status."""
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError):
            with pytest.raises(ExecutableNotFound):
                await ProcessExecutor().run_captured("/nonexistent/xcodebuild", "-version")

    async def test_undecodable_output_is_replaced(self):
        proc = _mock_proc(stdout=b"caf\xe9")
        with patch("shutil.which", return_value="/usr/bin/xcrun"), \
                patch("asyncio.create_subprocess_exec", return_value=proc):
            result = await ProcessExecutor().run_captured("xcrun", "simctl", "list")
        assert result.stdout.startswith("caf")

    async def test_drains_both_pipes(self):
        """A child writing far more than a pipe buffer to both streams completes."""
        script = (
            "import sys\n"
            "for _ in range(2000):\n"
            "    sys.stderr.write('e' * 512 + '\\n')\n"
            "    sys.stdout.write('o' * 512 + '\\n')\n"
        )
        result = await ProcessExecutor().run_captured(sys.executable, "-c", script)
        assert result.returncode == 0
        assert result.stdout.count("\n") == 2000
        assert result.stderr.count("\n") == 2000


# ---------------------------------------------------------------------------
# run_streamed
# ---------------------------------------------------------------------------


class TestRunStreamed:
    async def test_success_inherits_streams(self):
        proc = _mock_proc(returncode=0)
        with patch("shutil.which", return_value="/usr/bin/xcodebuild"), \
                patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            status = await ProcessExecutor().run_streamed("xcodebuild", "build", cwd="/tmp/Demo")

        assert status == 0
        # No stdout/stderr pipes: the child writes straight to our terminal
        mock_exec.assert_called_once_with("/usr/bin/xcodebuild", "build", cwd="/tmp/Demo")

    async def test_nonzero_exit_raises(self):
        proc = _mock_proc(returncode=65)
        with patch("shutil.which", return_value="/usr/bin/xcodebuild"), \
                patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(ProcessExitedNonZero) as exc_info:
                await ProcessExecutor().run_streamed("xcodebuild", "build")
        assert exc_info.value.returncode == 65
        assert str(exc_info.value) == "xcodebuild exited with status 65"

    async def test_nonzero_exit_without_check(self):
        proc = _mock_proc(returncode=3)
        with patch("shutil.which", return_value="/usr/bin/open"), \
                patch("asyncio.create_subprocess_exec", return_value=proc):
            assert await ProcessExecutor().run_streamed("open", "x", check=False) == 3

    async def test_not_found(self):
        with patch("shutil.which", return_value=None):
            with pytest.raises(ExecutableNotFound):
                await ProcessExecutor().run_streamed("xcodebuild", "build")


class TestIsAvailable:
    def test_available(self):
        with patch("shutil.which", return_value="/opt/homebrew/bin/xcbeautify"):
            assert ProcessExecutor().is_available("xcbeautify") is True

    def test_not_available(self):
        with patch("shutil.which", return_value=None):
            assert ProcessExecutor().is_available("xcbeautify") is False
