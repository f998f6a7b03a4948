"""xcpilot — command-line entry point.

Usage:
    xcpilot run [-s SCHEME] [-d DEVICE]        Build, install and launch on a simulator
    xcpilot build [-s SCHEME] [-d DEST]        Build the project
    xcpilot test [-s SCHEME] [-d DEST] [--only TEST] [--coverage]
    xcpilot clean [--deep]                     Clean, optionally removing DerivedData
    xcpilot info                               List schemes, or describe a Swift package
    xcpilot open [--derived-data]              Open the project in Xcode, or its DerivedData folder
    xcpilot logs [-d DEVICE] [-p PROCESS]      Stream a simulator's log
    xcpilot sim list                           List available simulators
    xcpilot sim boot QUERY                     Boot the first simulator matching QUERY
    xcpilot sim shutdown QUERY                 Shut down the first simulator matching QUERY
    xcpilot config show | set KEY VALUE        Inspect or change ~/.xcpilot/config.json
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from pathlib import Path

from xcpilot.build.project import ProjectContext
from xcpilot.build.xcodebuild import (
    GENERIC_SIMULATOR_DESTINATION,
    XcodebuildBackend,
    looks_like_destination,
)
from xcpilot.config import (
    USER_CONFIG_FILE,
    PipelineConfig,
    config_as_dict,
    load_config,
    set_config_value,
)
from xcpilot.device.resolver import resolve_device
from xcpilot.device.simctl import SimctlBackend
from xcpilot.models import DeploymentRequest, PipelineResult, ProcessError, XcpilotError
from xcpilot.pipeline import DeploymentPipeline, resolve_target
from xcpilot.process import ProcessExecutor

logger = logging.getLogger("xcpilot")

DERIVED_DATA_DIR = Path.home() / "Library" / "Developer" / "Xcode" / "DerivedData"
RESULT_BUNDLE_NAME = ".xcpilot_test_results.xcresult"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_project(args: argparse.Namespace) -> ProjectContext:
    context = ProjectContext.detect(args.project_dir)
    if not context.is_valid:
        raise XcpilotError(
            f"No workspace, project, or Package.swift found in {context.directory}",
        )
    return context


def _xcodebuild(context: ProjectContext, config: PipelineConfig) -> XcodebuildBackend:
    return XcodebuildBackend(context, beautify=config.use_xcbeautify)


async def _destination_for(simctl: SimctlBackend, destination: str | None) -> str:
    """Pass raw xcodebuild destinations through; resolve anything else as a device query."""
    if destination is None:
        return GENERIC_SIMULATOR_DESTINATION
    if looks_like_destination(destination):
        return destination
    warnings: list[str] = []
    target = await resolve_target(simctl, destination, warnings)
    for warning in warnings:
        print(f"Warning: {warning}")
    return target.destination


def _print_result(result: PipelineResult) -> None:
    for warning in result.warnings:
        print(f"Warning: {warning}")
    if result.succeeded:
        print(f"Launched {result.bundle_id} on {result.device_id}")
        return
    stage = result.stage.value if result.stage else "unknown"
    print(f"Error: {stage} failed: {result.error}", file=sys.stderr)
    if result.output:
        print(result.output, file=sys.stderr)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _cmd_run(args: argparse.Namespace, config: PipelineConfig) -> int:
    context = _require_project(args)
    pipeline = DeploymentPipeline(
        simctl=SimctlBackend(),
        xcodebuild=_xcodebuild(context, config),
        config=config,
    )
    print(f"Preparing {args.scheme or context.inferred_scheme or 'project'} for execution...")
    result = await pipeline.run(
        DeploymentRequest(scheme=args.scheme, destination=args.destination),
    )
    _print_result(result)
    return 0 if result.succeeded else 1


async def _cmd_build(args: argparse.Namespace, config: PipelineConfig) -> int:
    context = _require_project(args)
    scheme = args.scheme or context.inferred_scheme
    if scheme is None:
        print("Warning: could not infer a scheme automatically. You may need to pass --scheme.")
    destination = await _destination_for(SimctlBackend(), args.destination)
    await _xcodebuild(context, config).build(scheme, destination)
    print("Build succeeded")
    return 0


async def _cmd_test(args: argparse.Namespace, config: PipelineConfig) -> int:
    context = _require_project(args)
    xcodebuild = _xcodebuild(context, config)
    scheme = args.scheme or context.inferred_scheme
    destination = await _destination_for(SimctlBackend(), args.destination)

    result_bundle = None
    if args.coverage:
        bundle = context.directory / RESULT_BUNDLE_NAME
        # xcodebuild refuses to overwrite an existing result bundle
        if bundle.exists():
            shutil.rmtree(bundle)
        result_bundle = str(bundle)

    await xcodebuild.test(scheme, destination, only_testing=args.only, result_bundle=result_bundle)
    print("Testing completed")

    if result_bundle:
        if not Path(result_bundle).exists():
            print(f"Error: coverage result bundle not found at {result_bundle}", file=sys.stderr)
            return 1
        report = await xcodebuild.coverage_report(result_bundle)
        print(f"\n{report.strip()}\n")
    return 0


async def _cmd_clean(args: argparse.Namespace, config: PipelineConfig) -> int:
    context = _require_project(args)
    scheme = context.inferred_scheme
    try:
        await _xcodebuild(context, config).clean(scheme)
    except ProcessError as e:
        print(f"Warning: xcodebuild clean failed: {e}")

    if args.deep:
        project_name = scheme or context.directory.name
        matches = sorted(DERIVED_DATA_DIR.glob(f"{project_name}-*")) if DERIVED_DATA_DIR.is_dir() else []
        if not matches:
            print(f"No DerivedData folder found for '{project_name}'")
        for path in matches:
            try:
                shutil.rmtree(path)
            except OSError as e:
                print(f"Error: failed to perform deep clean of {path}: {e}", file=sys.stderr)
                return 1
            print(f"Deleted DerivedData: {path.name}")

    print("Clean complete")
    return 0


async def _cmd_info(args: argparse.Namespace, config: PipelineConfig) -> int:
    context = _require_project(args)
    print(f"Project directory: {context.directory}")
    for label, value in (
        ("Workspace", context.workspace),
        ("Project", context.project),
        ("Package", context.package),
    ):
        if value:
            print(f"  {label}: {value}")
    if not (context.workspace or context.project):
        try:
            result = await ProcessExecutor().run_captured(
                "swift", "package", "describe", cwd=str(context.directory),
            )
        except ProcessError as e:
            print(f"Error: failed to run 'swift package describe': {e}", file=sys.stderr)
            return 1
        print(f"\n{result.stdout.strip()}\n")
        return 0

    schemes = await _xcodebuild(context, config).list_schemes()
    if not schemes:
        print("No schemes found")
        return 0
    print("Schemes:")
    for scheme in schemes:
        print(f"  {scheme}")
    return 0


async def _cmd_open(args: argparse.Namespace, config: PipelineConfig) -> int:
    context = _require_project(args)
    executor = ProcessExecutor()

    if args.derived_data:
        path = await _xcodebuild(context, config).derived_data_dir()
        await executor.run_captured("open", str(path))
        print(f"Opened DerivedData: {path}")
        return 0

    target = context.workspace or context.project or context.package
    path = str(context.directory / target)
    try:
        await executor.run_captured("open", "-a", "Xcode", path)
    except ProcessError as e:
        # Xcode may be installed under another name, e.g. Xcode-beta
        logger.debug("open -a Xcode failed: %s", e)
        await executor.run_captured("open", path)
    print(f"Opened {target}")
    return 0


async def _cmd_logs(args: argparse.Namespace, config: PipelineConfig) -> int:
    simctl = SimctlBackend()
    warnings: list[str] = []
    target = await resolve_target(simctl, args.destination, warnings)
    for warning in warnings:
        print(f"Warning: {warning}")
    print(f"Streaming logs for simulator {target.device_id}... (Press Ctrl+C to stop)")
    return await simctl.stream_logs(target.device_id, process=args.process)


async def _cmd_sim_list(args: argparse.Namespace, config: PipelineConfig) -> int:
    catalog = await SimctlBackend().fetch_catalog()
    printed = False
    for runtime_key in catalog.runtime_keys():
        devices = [d for d in catalog.runtimes[runtime_key] if d.available]
        if not devices:
            continue
        print(f"\n{devices[0].os_version}:")
        for device in devices:
            marker = "*" if device.is_booted else " "
            print(f"  {marker} {device.name}  ({device.identifier})")
        printed = True
    if not printed:
        print("No available simulators found.")
    return 0


async def _cmd_sim_boot(args: argparse.Namespace, config: PipelineConfig) -> int:
    simctl = SimctlBackend()
    device = resolve_device(args.query, await simctl.fetch_catalog())
    if device.is_booted:
        print(f"{device.name} is already booted.")
    else:
        print(f"Booting {device.name} ({device.os_version})...")
        await simctl.boot(device.identifier)
    try:
        await simctl.open_simulator_app(config.simulator_app)
    except ProcessError as e:
        print(f"Warning: could not open {config.simulator_app}: {e}")
    return 0


async def _cmd_sim_shutdown(args: argparse.Namespace, config: PipelineConfig) -> int:
    simctl = SimctlBackend()
    device = resolve_device(args.query, await simctl.fetch_catalog())
    if not device.is_booted:
        print(f"{device.name} is not running.")
        return 0
    print(f"Shutting down {device.name}...")
    await simctl.shutdown(device.identifier)
    return 0


async def _cmd_config(args: argparse.Namespace, config: PipelineConfig) -> int:
    if args.config_command == "set":
        try:
            config = set_config_value(args.key, args.value)
        except KeyError:
            known = ", ".join(config_as_dict(config))
            print(f"Error: unknown config key '{args.key}' (known: {known})", file=sys.stderr)
            return 1
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    print(f"Config file: {USER_CONFIG_FILE}")
    for key, value in config_as_dict(config).items():
        print(f"  {key} = {value}")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xcpilot",
        description="A friendly wrapper around xcodebuild and simctl",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--project-dir", "-C", default=".",
        help="Directory containing the workspace or project (default: current directory)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Build and run the app on a simulator")
    run_parser.add_argument("--scheme", "-s", default=None, help="Scheme to run (default: inferred)")
    run_parser.add_argument(
        "--destination", "-d", default=None,
        help="Simulator to run on, e.g. '15 pro' (default: the booted simulator)",
    )
    run_parser.set_defaults(handler=_cmd_run)

    build_cmd = subparsers.add_parser("build", help="Build the project")
    build_cmd.add_argument("--scheme", "-s", default=None, help="Scheme to build (default: inferred)")
    build_cmd.add_argument(
        "--destination", "-d", default=None,
        help="xcodebuild destination or simulator name (default: generic iOS Simulator)",
    )
    build_cmd.set_defaults(handler=_cmd_build)

    test_parser = subparsers.add_parser("test", help="Build and run tests")
    test_parser.add_argument("--scheme", "-s", default=None, help="Scheme to test (default: inferred)")
    test_parser.add_argument(
        "--destination", "-d", default=None,
        help="xcodebuild destination or simulator name, e.g. '15 pro'",
    )
    test_parser.add_argument(
        "--only", default=None,
        help="Run only one test class or method (e.g. MyAppTests/LoginTests)",
    )
    test_parser.add_argument(
        "--coverage", "-c", action="store_true", default=False,
        help="Enable code coverage and print the report",
    )
    test_parser.set_defaults(handler=_cmd_test)

    clean_parser = subparsers.add_parser("clean", help="Clean the project")
    clean_parser.add_argument(
        "--deep", action="store_true", default=False,
        help="Also delete this project's DerivedData folder",
    )
    clean_parser.set_defaults(handler=_cmd_clean)

    info_parser = subparsers.add_parser("info", help="Show project files and schemes")
    info_parser.set_defaults(handler=_cmd_info)

    open_parser = subparsers.add_parser("open", help="Open the project in Xcode")
    open_parser.add_argument(
        "--derived-data", action="store_true", default=False,
        help="Open the project's DerivedData folder instead",
    )
    open_parser.set_defaults(handler=_cmd_open)

    logs_parser = subparsers.add_parser("logs", help="Stream a simulator's log")
    logs_parser.add_argument(
        "--destination", "-d", default=None,
        help="Simulator to stream from (default: the booted simulator)",
    )
    logs_parser.add_argument(
        "--process", "-p", default=None,
        help="Only show messages from this process or bundle",
    )
    logs_parser.set_defaults(handler=_cmd_logs)

    sim_parser = subparsers.add_parser("sim", help="Manage simulators")
    sim_sub = sim_parser.add_subparsers(dest="sim_command", required=True)
    sim_list = sim_sub.add_parser("list", help="List available simulators")
    sim_list.set_defaults(handler=_cmd_sim_list)
    sim_boot = sim_sub.add_parser("boot", help="Boot a simulator by partial name (e.g. '15 pro')")
    sim_boot.add_argument("query", help="Part of the simulator name to match")
    sim_boot.set_defaults(handler=_cmd_sim_boot)
    sim_shutdown = sim_sub.add_parser("shutdown", help="Shut down a simulator by partial name")
    sim_shutdown.add_argument("query", help="Part of the simulator name to match")
    sim_shutdown.set_defaults(handler=_cmd_sim_shutdown)

    config_parser = subparsers.add_parser("config", help="Show or change settings")
    config_sub = config_parser.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("show", help="Print the effective configuration")
    config_set = config_sub.add_parser("set", help="Set a configuration value")
    config_set.add_argument("key")
    config_set.add_argument("value")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run one command and return its exit status."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = load_config()
    try:
        return asyncio.run(args.handler(args, config))
    except XcpilotError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


def cli() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
