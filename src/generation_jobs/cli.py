"""
Command line entry point for maintenance sweeps.

    generation-jobs sweep stuck       # one stuck-job pass
    generation-jobs sweep cleanup     # one retention pass
    generation-jobs sweep all
    generation-jobs schedule          # run both sweeps on their intervals

Configuration comes from GENJOBS_* environment variables (a .env file is
loaded first) or from ``--config path.yaml``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence

from .config import Settings, load_env
from .errors import GenerationJobError
from .jobs import CLEANUP_SWEEP, STUCK_SWEEP
from .service import JobService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="generation-jobs",
        description="Maintenance sweeps for generation job records.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML or TOML settings file (defaults to GENJOBS_* environment variables)",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file to load before reading the environment",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep = subparsers.add_parser("sweep", help="Run one sweep pass and print a JSON report")
    sweep.add_argument("which", choices=[STUCK_SWEEP, CLEANUP_SWEEP, "all"])
    sweep.add_argument(
        "--threshold-seconds",
        type=float,
        default=None,
        help="Override the stuck-job staleness threshold",
    )
    sweep.add_argument(
        "--retention-seconds",
        type=float,
        default=None,
        help="Override the retention window for terminal jobs",
    )

    subparsers.add_parser("schedule", help="Run sweeps on their configured intervals until interrupted")
    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    load_env(args.env_file)
    if args.config:
        return Settings.from_file(args.config)
    return Settings.from_env()


async def run_sweep(
    service: JobService,
    which: str,
    threshold_seconds: float | None = None,
    retention_seconds: float | None = None,
) -> dict[str, dict]:
    reports = {}
    if which in (STUCK_SWEEP, "all"):
        report = await service.janitor.fail_stuck_jobs(threshold_seconds=threshold_seconds)
        reports[STUCK_SWEEP] = report.to_dict()
    if which in (CLEANUP_SWEEP, "all"):
        report = await service.janitor.cleanup_completed_jobs(retention_seconds=retention_seconds)
        reports[CLEANUP_SWEEP] = report.to_dict()
    return reports


async def run_schedule(service: JobService) -> None:
    scheduler = service.scheduler()
    scheduler.start()
    try:
        await scheduler.wait()
    finally:
        await scheduler.stop()


async def _main(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    # stdout carries the JSON report
    service = await JobService.create(settings, log_stream=sys.stderr)
    try:
        if args.command == "sweep":
            reports = await run_sweep(
                service,
                args.which,
                threshold_seconds=args.threshold_seconds,
                retention_seconds=args.retention_seconds,
            )
            print(json.dumps(reports, indent=2))
            return 1 if any(r["errors"] for r in reports.values()) else 0
        await run_schedule(service)
        return 0
    finally:
        await service.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_main(args))
    except KeyboardInterrupt:
        return 130
    except GenerationJobError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
