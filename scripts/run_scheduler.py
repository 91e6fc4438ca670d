#!/usr/bin/env python3
"""
Run the cron scheduler: evaluate scheduled tasks every tick and enqueue
authorized runs as jobs.

Settings come from an optional YAML file plus KIISHA_* environment
variables (see kiisha_kernel.config).  Capability grants are read from a
YAML file; without one every scheduled run is denied.

Usage:
    python3 scripts/run_scheduler.py [--config settings.yaml]
        [--capabilities capabilities.yaml] [--create-tables] [--once]

Examples:
    # Single tick against a local SQLite database
    KIISHA_DATABASE_URL=sqlite:///jobs.db python3 scripts/run_scheduler.py --create-tables --once

    # Long-running scheduler
    python3 scripts/run_scheduler.py --config /etc/kiisha/jobs.yaml --capabilities /etc/kiisha/caps.yaml
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

import yaml

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the KIISHA cron scheduler.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML settings file (keys are JobQueueSettings fields).",
    )
    parser.add_argument(
        "--capabilities",
        type=Path,
        default=None,
        help="YAML capability grants for the static capability registry.",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before starting.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick, print the result and exit.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    from kiisha_kernel.config import load_settings
    from kiisha_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from kiisha_kernel.domain.clock import SystemClock
    from kiisha_kernel.logging_config import configure_logging, get_logger
    from kiisha_jobs.services.capability import StaticCapabilityRegistry
    from kiisha_jobs.services.lifecycle import JobLifecycleManager
    from kiisha_jobs.services.scheduler import CronScheduler

    settings = load_settings(args.config)
    configure_logging(level=settings.log_level)
    logger = get_logger("scripts.run_scheduler")

    init_engine_from_url(settings.database_url)
    if args.create_tables:
        create_tables()

    if args.capabilities is not None:
        with open(args.capabilities, encoding="utf-8") as fh:
            registry = StaticCapabilityRegistry.from_mapping(yaml.safe_load(fh) or {})
    else:
        registry = StaticCapabilityRegistry()
        logger.warning("no_capabilities_configured")

    clock = SystemClock()
    scheduler = CronScheduler(
        session_factory=get_session_factory(),
        lifecycle_factory=lambda session: JobLifecycleManager(
            session, clock=clock, settings=settings,
        ),
        capability_registry=registry,
        clock=clock,
        settings=settings,
    )

    if args.once:
        result = scheduler.tick()
        print(
            f"evaluated={result.evaluated} fired={result.fired} "
            f"denied={result.denied} failed={result.failed} "
            f"paused={result.paused} skipped={result.skipped}"
        )
        return 0

    stopped = threading.Event()

    def _handle_signal(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    try:
        stopped.wait()
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
