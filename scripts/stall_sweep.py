"""Stalled-engagement sweep: report (and optionally notify about) idle engagements.

Reads database settings from the environment / .env, scans the progress
ledger and prints one JSON line per stalled engagement.

Usage:
    python scripts/stall_sweep.py [--days N] [--notify] [--json-logs]
    python scripts/stall_sweep.py --days 14
    python scripts/stall_sweep.py --notify
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import structlog

from src.config.settings import get_settings
from src.infra.logging import setup_logging
from src.progress.database import create_db_engine, ensure_schema, make_session_factory
from src.progress.events import LoggingEventSink
from src.progress.stall import StallDetector, StalledEngagement

logger = structlog.get_logger()


async def _run_sweep(threshold_days: int, notify: bool) -> list[StalledEngagement]:
    settings = get_settings()
    engine = await create_db_engine(settings.database)
    try:
        await ensure_schema(engine, settings.database.schema_)
        detector = StallDetector(make_session_factory(engine), LoggingEventSink())
        if notify:
            return await detector.sweep(threshold_days)
        return await detector.find_stalled(threshold_days)
    finally:
        await engine.dispose()


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Find engagements with no recent progress")
    parser.add_argument(
        "--days", type=int, default=settings.stall.threshold_days,
        help=f"Days of inactivity to consider stalled (default: {settings.stall.threshold_days})",
    )
    parser.add_argument(
        "--notify", action="store_true",
        help="Publish an EngagementStalled event per result to the logging sink",
    )
    parser.add_argument(
        "--json-logs", action="store_true",
        help="Render logs as JSON instead of console output",
    )
    args = parser.parse_args()

    if args.days <= 0:
        parser.error("--days must be positive")

    setup_logging(json_output=args.json_logs, log_level=settings.logging.level)
    stalled = asyncio.run(_run_sweep(args.days, args.notify))

    for item in stalled:
        print(json.dumps({
            "engagement_id": item.engagement_id,
            "current_milestone": item.current_milestone,
            "last_activity_at": item.last_activity_at.isoformat(),
            "total_history_count": item.total_history_count,
        }))
    print(f"{len(stalled)} stalled engagement(s) (threshold: {args.days} days)", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
