"""Cron entry point for the reconciliation sweep."""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone

from printcraft.config import AppConfig
from printcraft.dependencies import build_infrastructure, build_sweep
from printcraft.domain.models import utcnow
from printcraft.logging import configure_logging
from printcraft.workers.reconciliation import SweepReport


def perform_sweep(*, reference_time: datetime | None = None) -> SweepReport:
    """Run one sweep against the configured database and return its counters."""
    config = AppConfig.build_default()
    infra = build_infrastructure(config, create_schema=False)
    try:
        now = reference_time or utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return build_sweep(config, infra).run_once(now=now)
    finally:
        infra.engine.dispose()


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Re-enqueue generation jobs the queue lost track of."
    )
    parser.add_argument(
        "--at",
        type=datetime.fromisoformat,
        default=None,
        help="Reference time (ISO 8601, UTC); defaults to now.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging()
    try:
        report = perform_sweep(reference_time=args.at)
    except Exception as exc:
        print(f"reconciliation failed: {exc}", file=sys.stderr)
        return 2

    print(
        f"reconciliation done, pending_requeued={report.pending_requeued}, "
        f"stuck_requeued={report.stuck_requeued}, skipped={report.skipped}",
        file=sys.stdout,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
