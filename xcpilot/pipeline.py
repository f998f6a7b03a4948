"""DeploymentPipeline — build, install and launch an app on a simulator.

Stages run strictly in order:

1. resolve-destination  (soft: falls back to the generic simulator destination)
2. build                (fatal: BuildFailed)
3. locate-artifact      (fatal: ArtifactNotLocatable)
4. ensure-booted        (soft: boot and foreground failures become warnings)
5. install              (fatal: InstallFailed)
6. launch               (fatal: LaunchFailed)

The first fatal failure ends the run. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from xcpilot.build.settings import PRODUCT_KEYS, extract_settings, locate_product
from xcpilot.build.xcodebuild import (
    GENERIC_SIMULATOR_DESTINATION,
    XcodebuildBackend,
    simulator_destination,
)
from xcpilot.config import PipelineConfig
from xcpilot.device.resolver import BOOTED, first_booted, resolve_device
from xcpilot.device.simctl import ALREADY_BOOTED_MARKER, SimctlBackend
from xcpilot.models import (
    ArtifactNotLocatable,
    BuildFailed,
    BuildProduct,
    DeploymentRequest,
    DeviceError,
    DeviceRecord,
    ExecutableNotFound,
    InstallFailed,
    LaunchFailed,
    PipelineError,
    PipelineResult,
    PipelineStage,
    ProcessError,
    ProcessExitedNonZero,
)

logger = logging.getLogger("xcpilot.pipeline")


@dataclass(frozen=True)
class Target:
    """Where to build for and which simulator to deploy to."""

    destination: str
    device: DeviceRecord | None = None

    @property
    def device_id(self) -> str:
        """Concrete UDID, or simctl's ``booted`` alias when none was resolved."""
        return self.device.identifier if self.device else BOOTED


GENERIC_TARGET = Target(destination=GENERIC_SIMULATOR_DESTINATION)


async def resolve_target(
    simctl: SimctlBackend,
    query: str | None,
    warnings: list[str],
) -> Target:
    """Pick a build destination and deploy target from an optional device query.

    With a query, a failed lookup appends a warning and falls back to the
    generic simulator destination. Without one, the first booted device is
    used if there is any; otherwise the fallback is silent.
    """
    try:
        catalog = await simctl.fetch_catalog()
        if query:
            device = resolve_device(query, catalog)
        else:
            device = first_booted(catalog)
    except DeviceError as e:
        if query:
            message = (
                f"Could not find a simulator matching '{query}' ({e}). "
                "Falling back to the generic simulator destination."
            )
            logger.warning(message)
            warnings.append(message)
        else:
            logger.debug("No booted simulator to target: %s", e)
        return GENERIC_TARGET

    logger.info("Targeting %s (%s, %s)", device.name, device.identifier, device.os_version)
    return Target(destination=simulator_destination(device.identifier), device=device)


def _failure_details(e: ProcessError) -> tuple[int | None, str]:
    if isinstance(e, ProcessExitedNonZero):
        return e.returncode, (e.stderr.strip() or e.stdout.strip())
    return None, ""


class DeploymentPipeline:
    """Single-shot build-and-run orchestrator.

    One instance drives one run; it holds no state between runs.
    """

    def __init__(
        self,
        simctl: SimctlBackend,
        xcodebuild: XcodebuildBackend,
        config: PipelineConfig | None = None,
    ) -> None:
        self.simctl = simctl
        self.xcodebuild = xcodebuild
        self.config = config or PipelineConfig()

    async def run(self, request: DeploymentRequest) -> PipelineResult:
        """Run every stage and return a single success or tagged failure."""
        warnings: list[str] = []
        target = GENERIC_TARGET
        product: BuildProduct | None = None

        try:
            target = await resolve_target(self.simctl, request.destination, warnings)
            scheme = self._choose_scheme(request, warnings)
            await self._build(scheme, target)
            product = await self._locate_artifact(scheme, target)
            await self._ensure_booted(target, warnings)
            await self._install(target, product)
            await self._launch(target, product)
        except PipelineError as e:
            logger.error("Pipeline failed at %s: %s", e.stage.value, e)
            return PipelineResult(
                succeeded=False,
                stage=e.stage,
                error=str(e),
                exit_status=e.exit_status,
                output=e.output,
                destination=target.destination,
                device_id=target.device_id,
                app_path=product.app_path if product else None,
                bundle_id=product.bundle_id if product else None,
                warnings=warnings,
            )

        return PipelineResult(
            succeeded=True,
            bundle_id=product.bundle_id,
            device_id=target.device_id,
            app_path=product.app_path,
            destination=target.destination,
            warnings=warnings,
        )

    # -------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------

    def _choose_scheme(self, request: DeploymentRequest, warnings: list[str]) -> str | None:
        scheme = request.scheme or self.xcodebuild.context.inferred_scheme
        if scheme is None:
            message = "Could not infer a scheme automatically. You may need to pass --scheme."
            logger.warning(message)
            warnings.append(message)
        return scheme

    async def _build(self, scheme: str | None, target: Target) -> None:
        try:
            await self.xcodebuild.build(scheme, target.destination)
        except ExecutableNotFound as e:
            raise BuildFailed(f"{e.command} not found. Is Xcode installed?", tool="xcodebuild") from e
        except ProcessExitedNonZero as e:
            raise BuildFailed(
                f"Build failed with exit status {e.returncode}",
                tool="xcodebuild",
                exit_status=e.returncode,
            ) from e

    async def _locate_artifact(self, scheme: str | None, target: Target) -> BuildProduct:
        logger.info("Locating build product")
        try:
            dump = await self.xcodebuild.show_build_settings(scheme, target.destination)
        except ProcessError as e:
            status, output = _failure_details(e)
            raise ArtifactNotLocatable(
                f"Could not read build settings: {e}",
                tool="xcodebuild",
                exit_status=status,
                output=output,
            ) from e

        settings = extract_settings(dump, PRODUCT_KEYS)
        for key in PRODUCT_KEYS:
            logger.debug("%s = %s", key, settings.get(key))
        product = locate_product(settings)
        logger.info("Built %s (%s)", product.app_path, product.bundle_id)
        return product

    async def _ensure_booted(self, target: Target, warnings: list[str]) -> None:
        if target.device is not None:
            await self._boot(target.device_id, warnings)

        try:
            await self.simctl.open_simulator_app(self.config.simulator_app)
        except ProcessError as e:
            message = f"Could not bring {self.config.simulator_app} to the foreground: {e}"
            logger.warning(message)
            warnings.append(message)

        await self._wait_until_ready(target, warnings)

    async def _boot(self, udid: str, warnings: list[str]) -> None:
        logger.info("Booting simulator %s", udid)
        try:
            await self.simctl.boot(udid)
        except ProcessExitedNonZero as e:
            if ALREADY_BOOTED_MARKER in e.stderr:
                logger.debug("Simulator %s is already booted", udid)
                return
            message = f"Boot of {udid} failed: {e}"
            logger.warning(message)
            warnings.append(message)
        except ProcessError as e:
            message = f"Boot of {udid} failed: {e}"
            logger.warning(message)
            warnings.append(message)

    async def _wait_until_ready(self, target: Target, warnings: list[str]) -> None:
        """Hold off install until the device is confirmed booted.

        A concrete device is polled until simctl reports it Booted, giving up
        after the larger of ``boot_timeout`` and ``settle_delay``. The
        ``booted`` alias cannot be polled, so it gets the fixed delay.
        """
        if target.device is None:
            await asyncio.sleep(self.config.settle_delay)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(self.config.boot_timeout, self.config.settle_delay)
        while True:
            try:
                catalog = await self.simctl.fetch_catalog()
            except DeviceError as e:
                logger.debug("Readiness poll failed: %s", e)
            else:
                device = catalog.find(target.device_id)
                if device is not None and device.is_booted:
                    logger.debug("Simulator %s reports Booted", target.device_id)
                    return
            if loop.time() >= deadline:
                message = (
                    f"Simulator {target.device_id} did not report Booted within "
                    f"{self.config.boot_timeout:g}s; installing anyway"
                )
                logger.warning(message)
                warnings.append(message)
                return
            await asyncio.sleep(self.config.poll_interval)

    async def _install(self, target: Target, product: BuildProduct) -> None:
        logger.info("Installing %s on %s", product.app_path, target.device_id)
        try:
            await self.simctl.install_app(target.device_id, product.app_path)
        except ProcessError as e:
            status, output = _failure_details(e)
            raise InstallFailed(
                f"Install failed: {e}", tool="simctl", exit_status=status, output=output,
            ) from e

    async def _launch(self, target: Target, product: BuildProduct) -> None:
        logger.info("Launching %s on %s", product.bundle_id, target.device_id)
        try:
            await self.simctl.launch_app(target.device_id, product.bundle_id)
        except ProcessError as e:
            status, output = _failure_details(e)
            raise LaunchFailed(
                f"Launch failed: {e}", tool="simctl", exit_status=status, output=output,
            ) from e
