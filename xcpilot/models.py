"""Core data models and error types."""

from __future__ import annotations

import enum
import re
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------


class DeviceState(str, enum.Enum):
    """Simulator boot state as reported by simctl."""

    SHUTDOWN = "Shutdown"
    BOOTED = "Booted"
    BOOTING = "Booting"
    SHUTTING_DOWN = "Shutting Down"


class DeviceRecord(BaseModel):
    """One simulated device known to simctl."""

    model_config = ConfigDict(frozen=True)

    name: str
    identifier: str = Field(description="Device UDID")
    runtime_key: str = Field(default="", description="e.g. com.apple.CoreSimulator.SimRuntime.iOS-17-2")
    available: bool = False
    state: DeviceState = DeviceState.SHUTDOWN

    @property
    def is_booted(self) -> bool:
        return self.state == DeviceState.BOOTED

    @property
    def os_version(self) -> str:
        """Human-readable OS version derived from the runtime key.

        e.g. 'com.apple.CoreSimulator.SimRuntime.iOS-18-6' -> 'iOS 18.6'
        """
        match = re.search(r"SimRuntime\.(.+)$", self.runtime_key)
        if not match:
            return self.runtime_key
        raw = match.group(1)  # e.g. 'iOS-18-6'
        parts = raw.split("-", 1)
        if len(parts) == 2:
            return f"{parts[0]} {parts[1].replace('-', '.')}"
        return raw


class DeviceCatalog(BaseModel):
    """Snapshot of the simulator inventory, grouped by runtime key.

    Runtime keys are scanned in descending lexical order, which approximates
    "newest platform first". Device order inside a runtime is the order simctl
    reported. The runtime mapping is read-only; a snapshot never changes.
    """

    model_config = ConfigDict(frozen=True)

    runtimes: Mapping[str, tuple[DeviceRecord, ...]] = Field(
        default_factory=dict, validate_default=True,
    )

    @field_validator("runtimes", mode="after")
    @classmethod
    def freeze_runtimes(cls, value: Mapping) -> Mapping:
        return MappingProxyType(dict(value))

    def runtime_keys(self) -> list[str]:
        return sorted(self.runtimes, reverse=True)

    def devices(self) -> Iterator[DeviceRecord]:
        """Yield every device in scan order."""
        for key in self.runtime_keys():
            yield from self.runtimes[key]

    def available_devices(self) -> Iterator[DeviceRecord]:
        return (d for d in self.devices() if d.available)

    def find(self, identifier: str) -> DeviceRecord | None:
        for device in self.devices():
            if device.identifier == identifier:
                return device
        return None

    def __len__(self) -> int:
        return sum(len(devices) for devices in self.runtimes.values())


# ---------------------------------------------------------------------------
# Build products
# ---------------------------------------------------------------------------


class BuildProduct(BaseModel):
    """Location and identity of a built application bundle."""

    build_dir: str
    product_name: str
    bundle_id: str

    @property
    def app_path(self) -> str:
        return str(Path(self.build_dir) / self.product_name)


# ---------------------------------------------------------------------------
# Deployment pipeline
# ---------------------------------------------------------------------------


class PipelineStage(str, enum.Enum):
    """Stages of the build-and-run pipeline, in execution order."""

    RESOLVE_DESTINATION = "resolve-destination"
    BUILD = "build"
    LOCATE_ARTIFACT = "locate-artifact"
    ENSURE_BOOTED = "ensure-booted"
    INSTALL = "install"
    LAUNCH = "launch"


class DeploymentRequest(BaseModel):
    """Input to the build-and-run pipeline."""

    scheme: str | None = None
    destination: str | None = Field(
        default=None, description="Device query, e.g. '15 pro' or 'booted'",
    )


class PipelineResult(BaseModel):
    """Terminal outcome of one pipeline run."""

    succeeded: bool = False
    bundle_id: str | None = None
    device_id: str | None = None
    app_path: str | None = None
    destination: str | None = None
    warnings: list[str] = Field(default_factory=list)
    # Failure details (succeeded=False)
    stage: PipelineStage | None = None
    error: str | None = None
    exit_status: int | None = None
    output: str = ""


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class XcpilotError(Exception):
    """Base error. ``tool`` names the external program involved, if any."""

    def __init__(self, message: str, tool: str = "") -> None:
        super().__init__(message)
        self.tool = tool


class ProcessError(XcpilotError):
    """An external program could not be run to completion."""


class ExecutableNotFound(ProcessError):
    """The program could not be started at all."""

    def __init__(self, command: str) -> None:
        super().__init__(f"Executable '{command}' not found", tool=command)
        self.command = command


class ProcessExitedNonZero(ProcessError):
    """The program ran and exited with a non-zero status."""

    def __init__(
        self,
        command: str,
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        detail = stderr.strip() or stdout.strip()
        message = f"{command} exited with status {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, tool=command)
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class DeviceError(XcpilotError):
    """Simulator inventory or device selection failed."""


class CatalogUnavailable(DeviceError):
    """The device inventory could not be fetched or parsed."""


class NoBootedDevice(DeviceError):
    def __init__(self) -> None:
        super().__init__("No booted simulator found", tool="simctl")


class NoDeviceMatch(DeviceError):
    def __init__(self, query: str) -> None:
        super().__init__(f"No simulator found matching '{query}'", tool="simctl")
        self.query = query


class PipelineError(XcpilotError):
    """A fatal pipeline stage failure."""

    stage: PipelineStage

    def __init__(
        self,
        message: str,
        tool: str = "",
        exit_status: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message, tool=tool)
        self.exit_status = exit_status
        self.output = output


class BuildFailed(PipelineError):
    stage = PipelineStage.BUILD


class ArtifactNotLocatable(PipelineError):
    stage = PipelineStage.LOCATE_ARTIFACT


class InstallFailed(PipelineError):
    stage = PipelineStage.INSTALL


class LaunchFailed(PipelineError):
    stage = PipelineStage.LAUNCH
