"""Command-line interface for pgxn-build."""

from __future__ import annotations

import argparse
import json
import logging
import signal
from dataclasses import replace
from pathlib import Path

from pgxn_build import __version__
from pgxn_build.build import REPORT_NAME, BuildResult, build_distribution
from pgxn_build.config import load_settings
from pgxn_build.errors import (
    ConfigError,
    MetadataError,
    PgConfigError,
    PipelineSelectionError,
)
from pgxn_build.logging_utils import LogOptions, configure_logging, log_step_output
from pgxn_build.metadata import load_metadata
from pgxn_build.models import ReportStatus, TargetStatus
from pgxn_build.pg_config import target_from_pg_config
from pgxn_build.pipelines.registry import list_families
from pgxn_build.subprocess_utils import CancelToken

EXIT_OK = 0
EXIT_BUILD_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_CANCELLED = 130

LOGGER = logging.getLogger("pgxn_build.cli")


def _add_build_parser(subparsers: argparse._SubParsersAction) -> None:
    build = subparsers.add_parser("build", help="Build a distribution for one or more Postgres installs.")
    build.add_argument("source", help="Path to the unpacked distribution source tree.")
    build.add_argument(
        "--meta",
        help="Distribution metadata JSON (defaults to META.json in the source tree).",
    )
    build.add_argument(
        "--pg-config",
        action="append",
        required=True,
        help="pg_config executable for a target installation (repeatable).",
    )
    build.add_argument("--platform", help="Platform tag recorded for every target.")
    build.add_argument("--output", default="build", help="Directory for the archive and report.")
    build.add_argument("--config", help="Optional settings JSON file.")
    build.add_argument("--jobs", type=int, help="Maximum concurrent target builds.")
    build.add_argument(
        "--step-timeout",
        type=float,
        help="Per-step timeout in seconds (0 disables).",
    )
    build.add_argument(
        "--sudo",
        action="store_true",
        help="Run install steps with sudo.",
    )


def _add_pipelines_parser(subparsers: argparse._SubParsersAction) -> None:
    subparsers.add_parser("pipelines", help="List supported build pipelines in priority order.")


def _add_version_parser(subparsers: argparse._SubParsersAction) -> None:
    subparsers.add_parser("version", help="Print the current version.")


def _exit_code(result: BuildResult) -> int:
    status = result.report.status
    if status is ReportStatus.CANCELLED:
        return EXIT_CANCELLED
    if status is not ReportStatus.SUCCESS or result.packaging_error:
        return EXIT_BUILD_FAILED
    return EXIT_OK


def _log_result(result: BuildResult) -> None:
    report = result.report
    for key in sorted(report.targets):
        outcome = report.targets[key]
        for step in outcome.steps:
            log_step_output(LOGGER, key, step)
        if outcome.ok:
            LOGGER.info("Succeeded in %.1fs", outcome.duration, extra={"target": key})
        elif outcome.status is TargetStatus.CANCELLED:
            LOGGER.warning("Cancelled", extra={"target": key})
        else:
            if outcome.failed_step:
                LOGGER.error("Failed at step %s", outcome.failed_step, extra={"target": key})
            if outcome.error:
                LOGGER.error("%s", outcome.error, extra={"target": key})
    for warning in report.warnings:
        LOGGER.warning("%s", warning)
    if result.artifact:
        LOGGER.info("Archive: %s (sha256 %s)", result.artifact.path, result.artifact.sha256)
    if result.packaging_error:
        LOGGER.error("Packaging failed: %s", result.packaging_error)
    LOGGER.info("Build %s.", report.status.value.replace("_", " "))


def _run_build(args: argparse.Namespace) -> int:
    source = Path(args.source)
    meta_path = Path(args.meta) if args.meta else source / "META.json"
    settings = load_settings(Path(args.config) if args.config else None)
    if args.jobs is not None:
        if args.jobs < 1:
            raise ConfigError("--jobs must be at least 1.")
        settings = replace(settings, max_workers=args.jobs)
    if args.step_timeout is not None:
        settings = replace(settings, step_timeout=args.step_timeout or None)
    if args.sudo:
        settings = replace(settings, use_sudo=True)

    metadata = load_metadata(meta_path, source_dir=source)
    targets = [
        target_from_pg_config(Path(path), platform_tag=args.platform)
        for path in args.pg_config
    ]

    cancel = CancelToken()
    previous = signal.signal(signal.SIGTERM, lambda *_: cancel.cancel())
    try:
        result = build_distribution(
            source_path=source,
            metadata=metadata,
            targets=targets,
            output_dir=Path(args.output),
            settings=settings,
            cancel=cancel,
        )
    finally:
        signal.signal(signal.SIGTERM, previous if previous is not None else signal.SIG_DFL)
    _log_result(result)
    LOGGER.info("Report written to %s", Path(args.output) / REPORT_NAME)
    return _exit_code(result)


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="pgxn-build",
        description="Build PGXN distributions against PostgreSQL installations",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity, including captured step output.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_build_parser(subparsers)
    _add_pipelines_parser(subparsers)
    _add_version_parser(subparsers)

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    configure_logging(
        LogOptions(
            verbose=getattr(args, "verbose", 0) or 0,
            quiet=bool(getattr(args, "quiet", False)),
            log_file=Path(log_file_value) if log_file_value else None,
            json_console=bool(getattr(args, "log_json", False)),
        )
    )

    if args.command == "version":
        print(__version__)
        return EXIT_OK
    if args.command == "pipelines":
        for family in list_families():
            spec = family.spec()
            print(json.dumps({"name": spec.name, "priority": spec.priority, "markers": list(spec.markers)}))
        return EXIT_OK
    if args.command == "build":
        try:
            return _run_build(args)
        except (
            ConfigError,
            MetadataError,
            PgConfigError,
            PipelineSelectionError,
            ValueError,
        ) as exc:
            LOGGER.error("%s", exc)
            return EXIT_CONFIG_ERROR

    parser.error(f"Unknown command: {args.command}")
    return EXIT_CONFIG_ERROR
