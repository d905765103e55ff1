"""Run the generation worker pool and the periodic reconciliation sweep."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from printcraft.config import AppConfig
from printcraft.dependencies import build_infrastructure, build_sweep, build_worker_pool
from printcraft.lifecycle import run_periodic_reconciliation
from printcraft.logging import configure_logging

logger = logging.getLogger("printcraft.scripts.run_worker")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process queued generation jobs.")
    parser.add_argument("--workers", type=int, default=None, help="Override worker loop count.")
    parser.add_argument(
        "--concurrency", type=int, default=None, help="Override in-flight job limit."
    )
    parser.add_argument(
        "--no-sweep",
        action="store_true",
        help="Do not run the reconciliation sweep in this process.",
    )
    return parser.parse_args(argv)


async def serve(config: AppConfig, *, sweep_enabled: bool) -> None:
    infra = build_infrastructure(config, create_schema=False)
    pool = build_worker_pool(config, infra)
    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:  # pragma: no cover - windows
            pass

    tasks = [asyncio.create_task(pool.run(shutdown_event), name="printcraft-pool")]
    if sweep_enabled:
        tasks.append(
            asyncio.create_task(
                run_periodic_reconciliation(
                    sweep=build_sweep(config, infra),
                    shutdown_event=shutdown_event,
                    interval_seconds=config.sweep_interval_seconds,
                ),
                name="printcraft-reconciliation",
            )
        )
    logger.info("worker.process.started", extra={"sweep": sweep_enabled})
    try:
        await asyncio.gather(*tasks)
    finally:
        infra.engine.dispose()
        logger.info("worker.process.stopped")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging()
    overrides = {}
    if args.workers is not None:
        overrides["worker_count"] = args.workers
    if args.concurrency is not None:
        overrides["worker_concurrency"] = args.concurrency
    try:
        config = AppConfig(**overrides)
    except Exception as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 2
    try:
        asyncio.run(serve(config, sweep_enabled=not args.no_sweep))
    except ValueError as exc:
        # raised by the provider factory on missing credentials
        print(f"worker failed to start: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
